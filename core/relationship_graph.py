"""Relationship graph over task-owned edges.

Pure domain logic, no I/O: every function receives a snapshot of tasks.

Edges are stored only on their source task, so there is no materialized
adjacency structure. Anything that needs incoming edges (``relationships_touching``)
scans every task's owned list: O(V+E) per call. Cycle checks run against the
snapshot the caller hands in, which must be fetched immediately before the
check.
"""

import secrets
import time
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from .errors import CycleError
from .task import Relationship, Task


def generate_relationship_id() -> str:
    """Return ``rel-<base36 ms timestamp>-<16 hex chars>``.

    The timestamp prefix keeps ids roughly sortable by creation time.
    """
    return f"rel-{_base36(int(time.time() * 1000))}-{secrets.token_hex(8)}"


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def build_adjacency(tasks: Iterable[Task]) -> Dict[str, List[str]]:
    """Map each task id to the targets of its owned edges."""
    return {task.id: [rel.to_task_id for rel in task.relationships] for task in tasks}


def would_create_cycle(from_task_id: str, to_task_id: str, tasks: Iterable[Task]) -> bool:
    """Check whether adding ``from -> to`` would close a directed cycle.

    Breadth-first search from ``to_task_id`` along owned outgoing edges; if it
    reaches ``from_task_id`` the new edge would complete a loop.
    """
    if from_task_id == to_task_id:
        return True
    graph = build_adjacency(tasks)
    visited: Set[str] = set()
    queue = deque([to_task_id])
    while queue:
        current = queue.popleft()
        if current == from_task_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        queue.extend(n for n in graph.get(current, []) if n not in visited)
    return False


def find_cycle(tasks: Iterable[Task]) -> Optional[List[str]]:
    """Return one cycle as a path of task ids (first == last), or None."""
    graph = build_adjacency(tasks)
    visited: Set[str] = set()
    on_stack: Set[str] = set()
    path: List[str] = []

    def dfs(node: str) -> Optional[List[str]]:
        visited.add(node)
        on_stack.add(node)
        path.append(node)
        for neighbor in graph.get(node, []):
            if neighbor not in visited:
                cycle = dfs(neighbor)
                if cycle:
                    return cycle
            elif neighbor in on_stack:
                start = path.index(neighbor)
                return path[start:] + [neighbor]
        path.pop()
        on_stack.remove(node)
        return None

    for node in list(graph):
        if node not in visited:
            cycle = dfs(node)
            if cycle:
                return cycle
    return None


def topological_order(tasks: Iterable[Task]) -> List[str]:
    """Order task ids so every edge source precedes its target (Kahn).

    Targets that are not part of the snapshot are ignored.

    Raises:
        CycleError: if the owned edges contain a cycle.
    """
    task_list = list(tasks)
    graph = build_adjacency(task_list)
    in_degree: Dict[str, int] = {task.id: 0 for task in task_list}
    for targets in graph.values():
        for target in targets:
            if target in in_degree:
                in_degree[target] += 1

    queue = deque(tid for tid in in_degree if in_degree[tid] == 0)
    order: List[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for target in graph.get(current, []):
            if target not in in_degree:
                continue
            in_degree[target] -= 1
            if in_degree[target] == 0:
                queue.append(target)

    if len(order) != len(in_degree):
        stuck = [tid for tid, deg in in_degree.items() if deg > 0]
        raise CycleError(stuck[0], stuck[-1])
    return order


def collect_relationships(tasks: Iterable[Task], live_ids: Optional[Set[str]] = None) -> List[Relationship]:
    """Flatten every task's owned edges.

    When ``live_ids`` is given, edges whose endpoints are not in it are dropped
    (dangling after a hard delete).
    """
    out: List[Relationship] = []
    for task in tasks:
        for rel in task.relationships:
            if live_ids is not None and (rel.from_task_id not in live_ids or rel.to_task_id not in live_ids):
                continue
            out.append(rel)
    return out


def relationships_touching(task_id: str, tasks: Iterable[Task], live_ids: Optional[Set[str]] = None) -> List[Relationship]:
    """Incoming and outgoing edges of ``task_id``. Full scan of the snapshot."""
    return [
        rel
        for rel in collect_relationships(tasks, live_ids)
        if rel.from_task_id == task_id or rel.to_task_id == task_id
    ]


def find_existing(owner: Task, to_task_id: str, rel_type: str) -> Optional[Relationship]:
    for rel in owner.relationships:
        if rel.same_edge(owner.id, to_task_id, rel_type):
            return rel
    return None


__all__ = [
    "generate_relationship_id",
    "build_adjacency",
    "would_create_cycle",
    "find_cycle",
    "topological_order",
    "collect_relationships",
    "relationships_touching",
    "find_existing",
]
