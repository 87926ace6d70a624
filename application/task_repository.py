"""Task repository facade.

Composes the attribute codec, the custom-field slots and the mutation
serializer on top of a flat TaskStore.

Every mutation of a task runs under that task's serializer key and follows the
same path: fetch the stored record, decode the description blob, merge the
supplied fields over the decoded state, re-encode, write the custom-field
slots (non-fatal), then issue one store write only if a flat field or the
blob actually changed. Fields absent from an update payload are never
touched.

Relationships are owned by their source task. Queries that need incoming
edges (``get_task_relationships``, ``delete_relationship``) scan every task:
cost is O(tasks + edges) per call.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from core.errors import BackendError, CycleError, NotFoundError, SelfReferenceError, ValidationError
from core.metadata_codec import AttributeCodec, DecodedText, MetadataCodec, has_marker
from core.relationship_graph import (
    collect_relationships,
    find_cycle,
    find_existing,
    generate_relationship_id,
    relationships_touching,
    would_create_cycle,
)
from core.result import Result
from core.status import Status
from core.task import (
    Activity,
    MilestoneLink,
    Position,
    Relationship,
    Task,
    TaskMetadata,
    current_timestamp,
    parse_timestamp,
)

from .mutation_serializer import TaskMutationSerializer
from .ports import FieldSlots, NewTask, StoredTask, TaskStore

logger = logging.getLogger("pmt.repository")

METADATA_FIELDS = (
    "work_type",
    "target_outcome",
    "activities",
    "resources",
    "position",
    "grid_position",
    "deleted_at",
    "sort_order",
)
UPDATE_FIELDS = frozenset(
    METADATA_FIELDS
    + ("title", "description", "status", "due_date", "start_date", "tags", "relationships", "milestones")
)
GRAPH_LOCK_KEY = "__relationship-graph__"
DEFAULT_TAG_COLOR = "#888888"


def format_date(value: Optional[str]) -> Optional[str]:
    """Expand a bare ``YYYY-MM-DD`` date to 09:00 UTC; pass timestamps through."""
    if not value:
        return None
    value = str(value)
    if "T" in value:
        return value
    return f"{value}T09:00:00.000Z"


def resolve_status(value: Any) -> Status:
    if isinstance(value, Status):
        return value
    try:
        return Status.from_string(str(value))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _dedupe(items: Iterable[Any]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for item in items:
        if item is None:
            continue
        text = str(item)
        if text and text not in seen:
            seen.add(text)
            out.append(text)
    return out


@dataclass
class TaskFilters:
    include_deleted: bool = False
    only_deleted: bool = False
    search: Optional[str] = None
    status: Optional[str] = None
    dimension: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> "TaskFilters":
        if value is None:
            return cls()
        if isinstance(value, TaskFilters):
            return value
        if isinstance(value, Mapping):
            aliases = {"includeDeleted": "include_deleted", "onlyDeleted": "only_deleted"}
            known = set(cls.__dataclass_fields__)
            kwargs = {aliases.get(k, k): v for k, v in value.items()}
            filters = cls(**{k: v for k, v in kwargs.items() if k in known})
            if filters.status:
                resolve_status(filters.status)
            return filters
        raise ValidationError(f"Invalid filters: {value!r}")

    def matches(self, task: Task) -> bool:
        if self.only_deleted and not task.is_deleted:
            return False
        if task.is_deleted and not (self.include_deleted or self.only_deleted):
            return False
        if self.search:
            needle = self.search.lower()
            if needle not in (task.title or "").lower() and needle not in (task.description or "").lower():
                return False
        if self.status and task.status is not resolve_status(self.status):
            return False
        if self.dimension:
            dim = self.dimension.lower()
            if not any(dim in tag.lower() for tag in task.tags):
                return False
        return True


@dataclass
class _UpdateOutcome:
    task: Task
    failures: List[Any]

    def failed(self, field_name: str) -> bool:
        return any(getattr(f, "field_name", None) == field_name for f in self.failures)


class TaskRepository:
    def __init__(
        self,
        store: TaskStore,
        fields: FieldSlots,
        container_id: str,
        codec: Optional[AttributeCodec] = None,
        serializer: Optional[TaskMutationSerializer] = None,
        relationships_field: str = "PMT_Relationships",
        milestones_field: str = "PMT_Milestones",
    ) -> None:
        self.store = store
        self.fields = fields
        self.container_id = container_id
        self.codec = codec or MetadataCodec()
        self.serializer = serializer or TaskMutationSerializer()
        self.relationships_field = relationships_field
        self.milestones_field = milestones_field

    # ------------------------------------------------------------------ reads

    def _decode(self, record: StoredTask) -> Tuple[Task, DecodedText]:
        source = record.html if has_marker(record.html) else record.text
        decoded = self.codec.decode(source)
        meta = decoded.metadata
        relationships: List[Relationship] = []
        for raw in self.fields.read_list(record, self.relationships_field):
            try:
                relationships.append(Relationship.from_dict(raw))
            except ValueError as exc:
                logger.warning("Task %s: dropping malformed relationship: %s", record.id, exc)
        milestones = _dedupe(self.fields.read_list(record, self.milestones_field))
        task = Task(
            id=record.id,
            title=record.title,
            description=decoded.description,
            status=Status.from_done(record.done),
            due_date=record.due_at,
            start_date=record.started_at,
            tags=[t.title for t in record.tags],
            work_type=meta.work_type,
            target_outcome=meta.target_outcome,
            activities=list(meta.activities),
            resources=dict(meta.resources),
            position=meta.position or Position(),
            grid_position=meta.grid_position,
            sort_order=meta.sort_order or 0,
            deleted_at=meta.deleted_at,
            relationships=relationships,
            milestones=milestones,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        return task, decoded

    def _snapshot(self) -> List[Task]:
        """Every task in the container, tombstones included."""
        return [self._decode(record)[0] for record in self.store.list_tasks(self.container_id)]

    def _fetch(self, task_id: str) -> StoredTask:
        record = self.store.get_task(task_id)
        if record is None:
            raise NotFoundError(f"Task not found: {task_id}", task_id)
        return record

    def get_tasks(self, filters: Any = None) -> List[Task]:
        criteria = TaskFilters.coerce(filters)
        tasks = [task for task in self._snapshot() if criteria.matches(task)]
        return sorted(tasks, key=lambda t: t.sort_order)

    def get_task(self, task_id: str, include_deleted: bool = False) -> Task:
        task, _ = self._decode(self._fetch(task_id))
        if task.is_deleted and not include_deleted:
            raise NotFoundError(f"Task not found: {task_id}", task_id)
        return task

    def get_deleted_tasks(self) -> List[Task]:
        return self.get_tasks(TaskFilters(only_deleted=True))

    # ---------------------------------------------------------------- create

    def create_task(self, data: Mapping[str, Any]) -> Task:
        """Create a task with no relationships and no milestones."""
        unknown = set(data) - UPDATE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if data.get("relationships") or data.get("milestones"):
            raise ValidationError("New tasks start without relationships or milestones")
        raw_title = data.get("title")
        if raw_title is not None and not isinstance(raw_title, str):
            raise ValidationError("Task title must be a string")
        title = (raw_title or "").strip()
        if not title:
            raise ValidationError("Task title is required")
        target_status = resolve_status(data["status"]) if data.get("status") is not None else None
        metadata = self._merge_metadata(TaskMetadata(), data)
        blob = self.codec.encode(data.get("description") or "", metadata)
        record = self.store.create_task(
            self.container_id,
            NewTask(
                title=title,
                description=blob,
                due_at=format_date(data.get("due_date")),
                started_at=format_date(data.get("start_date")),
            ),
        )
        if target_status is not None and target_status.is_done and not record.done:
            record = self.store.toggle_done(record.id)
        task, _ = self._decode(record)
        if data.get("tags"):
            applied = self._apply_tags(record.id, data["tags"])
            if applied.ok:
                task.tags = list(applied.value or [])
        logger.info("Created task %s", task.id)
        return task

    # ---------------------------------------------------------------- update

    def update_task(self, task_id: str, updates: Mapping[str, Any]) -> Task:
        """Merge-patch ``updates`` onto the stored task and return the result.

        Custom-field writes (relationships, milestones) are best-effort: a
        failure is logged and the flat fields are still written, so the
        returned record may keep the previous relationship/milestone lists.
        """
        self._check_keys(updates)
        if "relationships" in updates:
            with self.serializer.lock(GRAPH_LOCK_KEY), self.serializer.lock(task_id):
                record = self._fetch(task_id)
                rels = self._check_relationship_list(task_id, updates["relationships"])
                return self._apply_update(record, {**updates, "relationships": rels}).task
        with self.serializer.lock(task_id):
            return self._apply_update(self._fetch(task_id), updates).task

    def modify_task(self, task_id: str, mutator: Callable[[Task], Mapping[str, Any]]) -> Task:
        """Read-modify-write under the task's lock.

        ``mutator`` receives the current task and returns an update mapping
        (same keys as ``update_task``; relationships are managed through
        ``create_relationship``/``delete_relationship`` instead).
        """
        with self.serializer.lock(task_id):
            record = self._fetch(task_id)
            current, _ = self._decode(record)
            updates = mutator(current) or {}
            self._check_keys(updates)
            if "relationships" in updates:
                raise ValidationError("Relationships cannot be changed through modify_task")
            return self._apply_update(record, updates).task

    def _check_keys(self, updates: Mapping[str, Any]) -> None:
        unknown = set(updates) - UPDATE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "title" in updates:
            if not isinstance(updates["title"], str):
                raise ValidationError("Task title must be a string")
            if not updates["title"].strip():
                raise ValidationError("Task title cannot be empty")

    def _apply_update(self, record: StoredTask, updates: Mapping[str, Any]) -> _UpdateOutcome:
        task_id = record.id
        current, decoded = self._decode(record)
        target_status = resolve_status(updates["status"]) if "status" in updates else None

        changes: Dict[str, Any] = {}
        if "title" in updates and updates["title"].strip() != record.title:
            changes["title"] = updates["title"].strip()
        if "due_date" in updates and format_date(updates["due_date"]) != record.due_at:
            changes["due_at"] = format_date(updates["due_date"])
        if "start_date" in updates and format_date(updates["start_date"]) != record.started_at:
            changes["started_at"] = format_date(updates["start_date"])
        if "description" in updates or any(key in updates for key in METADATA_FIELDS):
            merged = self._merge_metadata(decoded.metadata, updates)
            description = updates["description"] if "description" in updates else decoded.description
            blob = self.codec.encode(description or "", merged)
            source = record.html if has_marker(record.html) else record.text
            if blob != source:
                changes["html"] = blob

        failures: List[Any] = []
        written: Dict[str, List[Any]] = {}
        if "relationships" in updates:
            rels = self._coerce_relationships(updates["relationships"])
            result = self.fields.set_value(task_id, self.relationships_field, [r.to_dict() for r in rels])
            if result.ok:
                written["relationships"] = rels
            else:
                failures.append(result.error)
        if "milestones" in updates:
            milestones = _dedupe(updates["milestones"] or [])
            result = self.fields.set_value(task_id, self.milestones_field, milestones)
            if result.ok:
                written["milestones"] = milestones
            else:
                failures.append(result.error)

        latest = record
        if changes:
            latest = self.store.update_task(task_id, changes)
        if target_status is not None and latest.done != target_status.is_done:
            latest = self.store.toggle_done(task_id)

        task, _ = self._decode(latest) if latest is not record else (current, decoded)
        if "relationships" in written:
            task.relationships = written["relationships"]
        if "milestones" in written:
            task.milestones = written["milestones"]
        if "tags" in updates:
            applied = self._apply_tags(task_id, updates["tags"] or [])
            if applied.ok:
                task.tags = list(applied.value or [])
        if failures:
            logger.warning("Task %s updated with %d field write failure(s)", task_id, len(failures))
        return _UpdateOutcome(task=task, failures=failures)

    def _merge_metadata(self, current: TaskMetadata, updates: Mapping[str, Any]) -> TaskMetadata:
        def pick(key: str, fallback: Any, convert: Callable[[Any], Any]) -> Any:
            return convert(updates[key]) if key in updates else fallback

        try:
            return TaskMetadata(
                work_type=pick("work_type", current.work_type, lambda v: v or None),
                target_outcome=pick("target_outcome", current.target_outcome, lambda v: v or None),
                activities=pick("activities", current.activities, lambda v: [Activity.from_dict(a) for a in v or []]),
                resources=pick("resources", current.resources, _as_resources),
                position=pick("position", current.position, lambda v: Position.from_dict(v) if v else None),
                grid_position=pick("grid_position", current.grid_position, lambda v: dict(v) if v else None),
                deleted_at=pick("deleted_at", current.deleted_at, lambda v: v or None),
                sort_order=pick("sort_order", current.sort_order, lambda v: int(v) if v is not None else None),
                extra=dict(current.extra),
            )
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid task metadata: {exc}") from exc

    def _apply_tags(self, task_id: str, names: Iterable[Any]) -> Result[List[str]]:
        wanted = _dedupe(names)

        def run() -> List[str]:
            existing = {tag.title: tag.id for tag in self.store.list_tags()}
            tag_ids = []
            for name in wanted:
                tag_id = existing.get(name)
                if not tag_id:
                    tag_id = self.store.create_tag(name, DEFAULT_TAG_COLOR).id
                tag_ids.append(tag_id)
            self.store.set_task_tags(task_id, tag_ids)
            return wanted

        result = Result.best_effort(run, default=None)
        if not result.ok:
            logger.warning("Task %s: failed to set tags %s: %s", task_id, wanted, result.error)
        return result

    # ---------------------------------------------------------------- delete

    def delete_task(self, task_id: str, permanent: bool = False) -> Dict[str, Any]:
        """Soft-delete (tombstone) or permanently remove a task.

        A permanent delete does not cascade: edges and milestone links held by
        other tasks are filtered out lazily on read.
        """
        if permanent:
            with self.serializer.lock(task_id):
                if not self.store.delete_task(task_id):
                    raise NotFoundError(f"Task not found: {task_id}", task_id)
            logger.info("Permanently deleted task %s", task_id)
            return {"id": task_id}
        deleted_at = current_timestamp()
        self.update_task(task_id, {"deleted_at": deleted_at})
        return {"id": task_id, "deleted_at": deleted_at}

    def restore_task(self, task_id: str) -> Task:
        return self.update_task(task_id, {"deleted_at": None})

    def empty_trash(self, older_than_days: Optional[int] = None) -> Dict[str, int]:
        candidates = self.get_deleted_tasks()
        if older_than_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
            candidates = [
                t for t in candidates if (parse_timestamp(t.deleted_at) or datetime.max.replace(tzinfo=timezone.utc)) < cutoff
            ]
        deleted = failed = 0
        for task in candidates:
            try:
                self.delete_task(task.id, permanent=True)
                deleted += 1
            except (BackendError, NotFoundError) as exc:
                logger.warning("Failed to purge task %s: %s", task.id, exc)
                failed += 1
        return {"deleted": deleted, "failed": failed}

    # --------------------------------------------------------- relationships

    def _coerce_relationships(self, value: Any) -> List[Relationship]:
        out: List[Relationship] = []
        for item in value or []:
            if isinstance(item, Relationship):
                out.append(item)
                continue
            try:
                out.append(Relationship.from_dict(item))
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
        return out

    def _check_relationship_list(self, task_id: str, value: Any) -> List[Relationship]:
        """Validate a full replacement of ``task_id``'s owned edges.

        Edges not already stored on the task must point at an existing,
        non-tombstoned task. Repeated (from, to, type) triples collapse to the
        first occurrence. Returns the list to write.
        """
        snapshot = {task.id: task for task in self._snapshot()}
        owner = snapshot.get(task_id)
        stored_ids = {r.id for r in owner.relationships} if owner is not None else set()

        rels: List[Relationship] = []
        for rel in self._coerce_relationships(value):
            if rel.from_task_id != task_id:
                raise ValidationError(f"Relationship {rel.id} is not owned by {task_id}")
            if rel.to_task_id == task_id:
                raise SelfReferenceError(task_id)
            if rel.id not in stored_ids:
                target = snapshot.get(rel.to_task_id)
                if target is None or target.is_deleted:
                    raise NotFoundError("Target task not found", rel.to_task_id)
            if any(kept.same_edge(rel.from_task_id, rel.to_task_id, rel.type) for kept in rels):
                continue
            rels.append(rel)

        if owner is not None:
            owner.relationships = rels
        cycle = find_cycle(snapshot.values())
        if cycle:
            raise CycleError(cycle[0], cycle[1])
        return rels

    def create_relationship(
        self, from_task_id: str, to_task_id: str, rel_type: str, label: Optional[str] = None
    ) -> Relationship:
        """Add the edge ``from -> to`` to the source task.

        Idempotent on (from, to, type): a repeated request returns the stored
        edge. Validation happens before any write.

        Raises:
            ValidationError: missing endpoint ids or type.
            SelfReferenceError: ``from == to``.
            NotFoundError: an endpoint is missing or tombstoned.
            CycleError: the edge would close a directed cycle.
            BackendError: the relationship slot could not be written.
        """
        if not from_task_id or not to_task_id or not rel_type:
            raise ValidationError("Missing required fields: from_task_id, to_task_id, or type")
        if from_task_id == to_task_id:
            raise SelfReferenceError(from_task_id)

        with self.serializer.lock(GRAPH_LOCK_KEY), self.serializer.lock(from_task_id):
            records = {r.id: r for r in self.store.list_tasks(self.container_id)}
            snapshot = {tid: self._decode(r)[0] for tid, r in records.items()}
            source = snapshot.get(from_task_id)
            if source is None or source.is_deleted:
                raise NotFoundError("Source task not found", from_task_id)
            target = snapshot.get(to_task_id)
            if target is None or target.is_deleted:
                raise NotFoundError("Target task not found", to_task_id)
            if would_create_cycle(from_task_id, to_task_id, snapshot.values()):
                raise CycleError(from_task_id, to_task_id)
            existing = find_existing(source, to_task_id, rel_type)
            if existing is not None:
                return existing

            rel = Relationship(
                id=generate_relationship_id(),
                from_task_id=from_task_id,
                to_task_id=to_task_id,
                type=rel_type,
                label=label,
                created_at=current_timestamp(),
            )
            kept = [r for r in source.relationships if r.to_task_id in snapshot]
            outcome = self._apply_update(records[from_task_id], {"relationships": kept + [rel]})
            if outcome.failed(self.relationships_field):
                raise BackendError(f"Failed to store relationship for task {from_task_id}")
        logger.info("Created relationship %s (%s -[%s]-> %s)", rel.id, from_task_id, rel_type, to_task_id)
        return rel

    def get_all_relationships(self) -> List[Relationship]:
        """Every edge between active tasks. Full scan."""
        active = [t for t in self._snapshot() if not t.is_deleted]
        return collect_relationships(active, {t.id for t in active})

    def get_task_relationships(self, task_id: str) -> List[Relationship]:
        """Incoming and outgoing edges of ``task_id``. Full scan, O(tasks + edges)."""
        active = [t for t in self._snapshot() if not t.is_deleted]
        return relationships_touching(task_id, active, {t.id for t in active})

    def delete_relationship(self, relationship_id: str) -> Relationship:
        owner_id = None
        for task in self._snapshot():
            if any(r.id == relationship_id for r in task.relationships):
                owner_id = task.id
                break
        if owner_id is None:
            raise NotFoundError(f"Relationship not found: {relationship_id}")

        with self.serializer.lock(owner_id):
            record = self._fetch(owner_id)
            owner, _ = self._decode(record)
            removed = next((r for r in owner.relationships if r.id == relationship_id), None)
            if removed is None:
                raise NotFoundError(f"Relationship not found: {relationship_id}")
            remaining = [r for r in owner.relationships if r.id != relationship_id]
            outcome = self._apply_update(record, {"relationships": remaining})
            if outcome.failed(self.relationships_field):
                raise BackendError(f"Failed to remove relationship {relationship_id}")
        return removed

    # ------------------------------------------------------------ milestones

    def link_task_to_milestone(self, task_id: str, milestone_id: str) -> MilestoneLink:
        if not task_id or not milestone_id:
            raise ValidationError("Missing required fields: task_id or milestone_id")
        with self.serializer.lock(task_id):
            record = self._fetch(task_id)
            task, _ = self._decode(record)
            if task.is_deleted:
                raise NotFoundError("Task not found", task_id)
            if milestone_id in task.milestones:
                return MilestoneLink(task_id, milestone_id, already_linked=True)
            outcome = self._apply_update(record, {"milestones": task.milestones + [milestone_id]})
            if outcome.failed(self.milestones_field):
                raise BackendError(f"Failed to link task {task_id} to milestone {milestone_id}")
        return MilestoneLink(task_id, milestone_id, created_at=current_timestamp())

    def unlink_task_from_milestone(self, task_id: str, milestone_id: str) -> bool:
        with self.serializer.lock(task_id):
            record = self._fetch(task_id)
            task, _ = self._decode(record)
            if milestone_id not in task.milestones:
                return False
            remaining = [m for m in task.milestones if m != milestone_id]
            outcome = self._apply_update(record, {"milestones": remaining})
            if outcome.failed(self.milestones_field):
                raise BackendError(f"Failed to unlink task {task_id} from milestone {milestone_id}")
        return True

    def get_tasks_for_milestone(self, milestone_id: str) -> List[Task]:
        return [t for t in self.get_tasks() if milestone_id in t.milestones]

    def get_milestone_progress(self, milestone_id: str) -> Dict[str, int]:
        tasks = self.get_tasks_for_milestone(milestone_id)
        if not tasks:
            return {"progress": 0, "total": 0, "completed": 0}
        completed = sum(1 for t in tasks if t.status.is_done)
        return {
            "progress": int(completed * 100 / len(tasks) + 0.5),
            "total": len(tasks),
            "completed": completed,
        }

    # -------------------------------------------------------------- comments

    def get_task_comments(self, task_id: str) -> Result[List[Dict[str, Any]]]:
        """Best-effort: on failure the Result carries ``[]`` and the error."""
        result = Result.best_effort(lambda: self.store.list_comments(task_id), default=[])
        if not result.ok:
            logger.warning("Task %s: comments unavailable: %s", task_id, result.error)
        return result

    def add_comment(self, task_id: str, text: str, html: Optional[str] = None) -> Dict[str, Any]:
        if not (text or "").strip():
            raise ValidationError("Comment text is required")
        return self.store.create_comment(task_id, text, html)


def _as_resources(value: Any) -> Dict[str, Any]:
    if not value:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError("resources must be a mapping")
    return {str(k): v for k, v in value.items()}
