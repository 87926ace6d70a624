from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .status import Status, normalize_activity_status


def current_timestamp() -> str:
    """UTC timestamp with millisecond precision, e.g. 2025-01-01T09:00:00.000Z."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Activity:
    title: str
    status: str = "todo"
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Activity":
        if isinstance(data, Activity):
            return data
        if isinstance(data, str):
            return cls(title=data)
        if not isinstance(data, dict):
            raise ValueError(f"Invalid activity: {data!r}")
        extra = {k: v for k, v in data.items() if k not in ("title", "status")}
        try:
            status = normalize_activity_status(str(data.get("status") or "todo"))
        except ValueError:
            status = "todo"
        return cls(title=str(data.get("title") or ""), status=status, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out["title"] = self.title
        out["status"] = self.status
        return out


@dataclass
class Position:
    x: float = 0
    y: float = 0

    @classmethod
    def from_dict(cls, data: Any) -> "Position":
        if isinstance(data, Position):
            return data
        if not isinstance(data, dict):
            return cls()
        return cls(x=data.get("x", 0) or 0, y=data.get("y", 0) or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y}


@dataclass
class TaskMetadata:
    """Structured payload carried in the description blob.

    ``extra`` holds keys written by a newer codec version that this one does
    not understand; they are written back untouched.
    """

    work_type: Optional[str] = None
    target_outcome: Optional[str] = None
    activities: List[Activity] = field(default_factory=list)
    resources: Dict[str, Any] = field(default_factory=dict)
    position: Optional[Position] = None
    grid_position: Optional[Dict[str, Any]] = None
    deleted_at: Optional[str] = None
    sort_order: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not any(
            (
                self.work_type,
                self.target_outcome,
                self.activities,
                self.resources,
                self.position,
                self.grid_position,
                self.deleted_at,
                self.sort_order,
                self.extra,
            )
        )


@dataclass(frozen=True)
class Relationship:
    id: str
    from_task_id: str
    to_task_id: str
    type: str
    label: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Relationship":
        if not isinstance(data, dict):
            raise ValueError(f"Invalid relationship: {data!r}")
        from_id = data.get("fromTaskId", data.get("from_task_id"))
        to_id = data.get("toTaskId", data.get("to_task_id"))
        if not from_id or not to_id:
            raise ValueError(f"Relationship without endpoints: {data!r}")
        return cls(
            id=str(data.get("id") or ""),
            from_task_id=str(from_id),
            to_task_id=str(to_id),
            type=str(data.get("type") or ""),
            label=data.get("label"),
            created_at=str(data.get("createdAt", data.get("created_at")) or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fromTaskId": self.from_task_id,
            "toTaskId": self.to_task_id,
            "type": self.type,
            "label": self.label,
            "createdAt": self.created_at,
        }

    def same_edge(self, from_task_id: str, to_task_id: str, rel_type: str) -> bool:
        return self.from_task_id == from_task_id and self.to_task_id == to_task_id and self.type == rel_type


@dataclass(frozen=True)
class MilestoneLink:
    task_id: str
    milestone_id: str
    already_linked: bool = False
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"taskId": self.task_id, "milestoneId": self.milestone_id}
        if self.already_linked:
            out["alreadyLinked"] = True
        if self.created_at:
            out["createdAt"] = self.created_at
        return out


@dataclass
class Task:
    id: str
    title: str
    description: str = ""
    status: Status = Status.IN_PROGRESS
    due_date: Optional[str] = None
    start_date: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    work_type: Optional[str] = None
    target_outcome: Optional[str] = None
    activities: List[Activity] = field(default_factory=list)
    resources: Dict[str, Any] = field(default_factory=dict)
    position: Position = field(default_factory=Position)
    grid_position: Optional[Dict[str, Any]] = None
    sort_order: int = 0
    deleted_at: Optional[str] = None
    relationships: List[Relationship] = field(default_factory=list)
    milestones: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return bool(self.deleted_at)

    def metadata(self, extra: Optional[Dict[str, Any]] = None) -> TaskMetadata:
        return TaskMetadata(
            work_type=self.work_type,
            target_outcome=self.target_outcome,
            activities=list(self.activities),
            resources=dict(self.resources),
            position=self.position,
            grid_position=self.grid_position,
            deleted_at=self.deleted_at,
            sort_order=self.sort_order,
            extra=dict(extra or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "dueDate": self.due_date,
            "startDate": self.start_date,
            "tags": list(self.tags),
            "workType": self.work_type,
            "targetOutcome": self.target_outcome,
            "activities": [a.to_dict() for a in self.activities],
            "resources": dict(self.resources),
            "position": self.position.to_dict(),
            "gridPosition": self.grid_position,
            "sortOrder": self.sort_order,
            "deletedAt": self.deleted_at,
            "relationships": [r.to_dict() for r in self.relationships],
            "milestones": list(self.milestones),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
