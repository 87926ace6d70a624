"""Per-task mutation serializer.

Callers for the same key run one at a time, strictly in arrival order
(ticket queue); different keys never wait on each other. Release happens on
every exit path. A failing action raises to its own caller and the next
ticket proceeds. Keys are evicted once nobody holds or waits on them.

There is no timeout or cancellation: a stuck action stalls its own key only.
The lock is not re-entrant.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from threading import Condition, Lock
from typing import Callable, Dict, Iterator, TypeVar

T = TypeVar("T")


@dataclass
class _KeyQueue:
    cond: Condition
    issued: int = 0
    serving: int = 0


class TaskMutationSerializer:
    def __init__(self) -> None:
        self._guard = Lock()
        self._queues: Dict[str, _KeyQueue] = {}

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            queue = self._queues.get(key)
            if queue is None:
                queue = _KeyQueue(Condition(self._guard))
                self._queues[key] = queue
            ticket = queue.issued
            queue.issued += 1
            while queue.serving != ticket:
                queue.cond.wait()
        try:
            yield
        finally:
            with self._guard:
                queue.serving += 1
                if queue.serving == queue.issued:
                    del self._queues[key]
                else:
                    queue.cond.notify_all()

    def with_lock(self, key: str, action: Callable[[], T]) -> T:
        with self.lock(key):
            return action()

    def pending(self, key: str) -> int:
        """Number of callers holding or waiting for ``key``."""
        with self._guard:
            queue = self._queues.get(key)
            return 0 if queue is None else queue.issued - queue.serving

    def active_keys(self) -> int:
        with self._guard:
            return len(self._queues)


__all__ = ["TaskMutationSerializer"]
