import copy
import itertools
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

import pytest

from application.ports import CustomFieldValue, NewTask, StoredTag, StoredTask
from application.task_repository import TaskRepository
from core.errors import BackendError
from infrastructure.custom_field_adapter import CustomFieldAdapter


class FakeTaskStore:
    """In-memory TaskStore. ``fail_on`` maps method names to exceptions to raise."""

    def __init__(self) -> None:
        self.tasks: Dict[str, StoredTask] = {}
        self.fields: List[Dict[str, str]] = []
        self.tags: List[StoredTag] = []
        self.comments: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, Exception] = {}
        self.read_hook: Optional[Callable[[str], None]] = None
        self._ids = itertools.count(1)
        self._lock = Lock()

    def _enter(self, name: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((name,) + args)
        exc = self.fail_on.get(name)
        if exc is not None:
            raise exc

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def list_tasks(self, container_id: str) -> List[StoredTask]:
        self._enter("list_tasks", container_id)
        with self._lock:
            return [copy.deepcopy(t) for t in self.tasks.values()]

    def get_task(self, task_id: str) -> Optional[StoredTask]:
        self._enter("get_task", task_id)
        if self.read_hook is not None:
            self.read_hook(task_id)
        with self._lock:
            record = self.tasks.get(task_id)
            return copy.deepcopy(record) if record else None

    def create_task(self, container_id: str, task: NewTask) -> StoredTask:
        self._enter("create_task", container_id, task.title)
        with self._lock:
            task_id = f"todo-{next(self._ids)}"
            record = StoredTask(
                id=task_id,
                title=task.title,
                text=task.description,
                html=task.description,
                due_at=task.due_at,
                started_at=task.started_at,
                created_at="2025-01-01T00:00:00.000Z",
                updated_at="2025-01-01T00:00:00.000Z",
            )
            self.tasks[task_id] = record
            return copy.deepcopy(record)

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> StoredTask:
        self._enter("update_task", task_id, dict(fields))
        with self._lock:
            record = self.tasks.get(task_id)
            if record is None:
                raise BackendError(f"Todo not found: {task_id}")
            for key, value in fields.items():
                if key == "html":
                    record.html = value
                    record.text = value
                else:
                    setattr(record, key, value)
            return copy.deepcopy(record)

    def delete_task(self, task_id: str) -> bool:
        self._enter("delete_task", task_id)
        with self._lock:
            return self.tasks.pop(task_id, None) is not None

    def toggle_done(self, task_id: str) -> StoredTask:
        self._enter("toggle_done", task_id)
        with self._lock:
            record = self.tasks[task_id]
            record.done = not record.done
            return copy.deepcopy(record)

    def list_custom_fields(self, container_id: str) -> List[Dict[str, str]]:
        self._enter("list_custom_fields", container_id)
        with self._lock:
            return [dict(f) for f in self.fields]

    def create_custom_field(self, name: str, field_type: str, container_id: str) -> str:
        self._enter("create_custom_field", name, field_type, container_id)
        with self._lock:
            field_id = f"cf-{len(self.fields) + 1}"
            self.fields.append({"id": field_id, "name": name})
            return field_id

    def set_custom_field_value(self, task_id: str, field_id: str, text: str) -> None:
        self._enter("set_custom_field_value", task_id, field_id, text)
        with self._lock:
            name = next(f["name"] for f in self.fields if f["id"] == field_id)
            record = self.tasks[task_id]
            record.custom_fields = [cf for cf in record.custom_fields if cf.id != field_id]
            record.custom_fields.append(CustomFieldValue(id=field_id, name=name, value=text))

    def list_tags(self) -> List[StoredTag]:
        self._enter("list_tags")
        return list(self.tags)

    def create_tag(self, name: str, color: str) -> StoredTag:
        self._enter("create_tag", name, color)
        tag = StoredTag(id=f"tag-{len(self.tags) + 1}", title=name, color=color)
        self.tags.append(tag)
        return tag

    def set_task_tags(self, task_id: str, tag_ids: List[str]) -> None:
        self._enter("set_task_tags", task_id, list(tag_ids))
        with self._lock:
            by_id = {t.id: t for t in self.tags}
            self.tasks[task_id].tags = [by_id[tid] for tid in tag_ids]

    def list_comments(self, task_id: str) -> List[Dict[str, Any]]:
        self._enter("list_comments", task_id)
        return list(self.comments.get(task_id, []))

    def create_comment(self, task_id: str, text: str, html: Optional[str] = None) -> Dict[str, Any]:
        self._enter("create_comment", task_id, text)
        comment = {"id": f"c-{task_id}-{len(self.comments.get(task_id, []))}", "text": text, "html": html or text}
        self.comments.setdefault(task_id, []).append(comment)
        return comment


@pytest.fixture
def store() -> FakeTaskStore:
    return FakeTaskStore()


@pytest.fixture
def fields(store) -> CustomFieldAdapter:
    return CustomFieldAdapter(store, "project-1")


@pytest.fixture
def repo(store, fields) -> TaskRepository:
    return TaskRepository(store, fields, "list-1")
