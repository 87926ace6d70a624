from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from core.result import Result


@dataclass
class StoredTag:
    id: str
    title: str
    color: str = ""


@dataclass
class CustomFieldValue:
    id: str
    name: str
    value: Any = None


@dataclass
class StoredTask:
    """A task exactly as the backing store returns it (flat fields only)."""

    id: str
    title: str = ""
    text: str = ""
    html: str = ""
    done: bool = False
    tags: List[StoredTag] = field(default_factory=list)
    custom_fields: List[CustomFieldValue] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    due_at: Optional[str] = None
    started_at: Optional[str] = None

    def custom_field(self, name: str) -> Optional[CustomFieldValue]:
        for cf in self.custom_fields:
            if cf is not None and cf.name == name:
                return cf
        return None


@dataclass
class NewTask:
    title: str
    description: str = ""
    due_at: Optional[str] = None
    started_at: Optional[str] = None


class TaskStore(Protocol):
    """Operations the engine needs from the backing task store.

    ``update_task`` accepts any of ``title``, ``html``, ``due_at``,
    ``started_at``; custom fields are never merged by the store, callers
    always send the full value through ``set_custom_field_value``.
    Every method raises ``BackendError`` on transport or store failure.
    """

    def list_tasks(self, container_id: str) -> List[StoredTask]:
        ...

    def get_task(self, task_id: str) -> Optional[StoredTask]:
        ...

    def create_task(self, container_id: str, task: NewTask) -> StoredTask:
        ...

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> StoredTask:
        ...

    def delete_task(self, task_id: str) -> bool:
        ...

    def toggle_done(self, task_id: str) -> StoredTask:
        ...

    def list_custom_fields(self, container_id: str) -> List[Dict[str, str]]:
        ...

    def create_custom_field(self, name: str, field_type: str, container_id: str) -> str:
        ...

    def set_custom_field_value(self, task_id: str, field_id: str, text: str) -> None:
        ...

    def list_tags(self) -> List[StoredTag]:
        ...

    def create_tag(self, name: str, color: str) -> StoredTag:
        ...

    def set_task_tags(self, task_id: str, tag_ids: List[str]) -> None:
        ...

    def list_comments(self, task_id: str) -> List[Dict[str, Any]]:
        ...

    def create_comment(self, task_id: str, text: str, html: Optional[str] = None) -> Dict[str, Any]:
        ...


class FieldSlots(Protocol):
    """Named custom-field slots holding JSON lists."""

    def get_field_id(self, name: str) -> Optional[str]:
        ...

    def set_value(self, task_id: str, name: str, value: Any) -> Result[None]:
        ...

    def read_list(self, record: StoredTask, name: str) -> List[Any]:
        ...
