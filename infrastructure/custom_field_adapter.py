"""Named custom-field slots holding JSON lists (relationships, milestones).

Slots are provisioned lazily: the first lookup of a name re-queries the
store's field list and only creates the field when it is still missing.
Lookup and creation run under one lock, so concurrent first uses converge on
a single id; a create that fails with "already exists" falls back to another
lookup.

Writes are best-effort: ``set_value`` returns a Result and logs, it never
raises. Anything stored that is not a JSON list reads as [].
"""

import json
import logging
from threading import Lock
from typing import Any, Dict, List, Optional

from application.ports import StoredTask, TaskStore
from core.errors import BackendError, FieldWriteFailure
from core.result import Result

from .store_client.field_cache import FieldIdCache

logger = logging.getLogger("pmt.fields")


class CustomFieldAdapter:
    def __init__(
        self,
        store: TaskStore,
        project_id: str,
        field_type: str = "TEXT_MULTI",
        cache: Optional[FieldIdCache] = None,
    ) -> None:
        self.store = store
        self.project_id = project_id
        self.field_type = field_type
        self.cache = cache
        self._ids: Dict[str, str] = {}
        self._lock = Lock()

    def get_field_id(self, name: str) -> Optional[str]:
        """Resolve (and create on first use) the slot called ``name``.

        Returns None when the slot cannot be provisioned. Listing failures
        raise BackendError.
        """
        with self._lock:
            if name in self._ids:
                return self._ids[name]
            if self.cache is not None:
                cached = self.cache.get(self.project_id, name)
                if cached:
                    self._ids[name] = cached
                    return cached
            field_id = self._lookup(name)
            if not field_id:
                field_id = self._create(name)
            if field_id:
                self._remember(name, field_id)
            return field_id

    def _lookup(self, name: str) -> Optional[str]:
        found: Optional[str] = None
        for cf in self.store.list_custom_fields(self.project_id):
            if cf.get("name") == name and cf.get("id"):
                found = found or cf["id"]
        return found

    def _create(self, name: str) -> Optional[str]:
        logger.info("Creating custom field %s", name)
        try:
            return self.store.create_custom_field(name, self.field_type, self.project_id)
        except BackendError as exc:
            if "already exists" in str(exc).lower():
                return self._lookup(name)
            logger.warning("Failed to create custom field %s: %s", name, exc)
            return None

    def _remember(self, name: str, field_id: str) -> None:
        self._ids[name] = field_id
        if self.cache is None:
            return
        self.cache.set(self.project_id, name, field_id)
        try:
            self.cache.persist()
        except OSError as exc:
            logger.warning("Unable to persist custom field cache: %s", exc)

    def forget(self, name: str) -> None:
        with self._lock:
            self._ids.pop(name, None)
            if self.cache is not None:
                self.cache.invalidate(self.project_id, name)

    def set_value(self, task_id: str, name: str, value: Any) -> Result[None]:
        text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        try:
            field_id = self.get_field_id(name)
        except BackendError as exc:
            return self._failed(task_id, name, f"field lookup failed: {exc}")
        if not field_id:
            return self._failed(task_id, name, "Field not found")
        try:
            self.store.set_custom_field_value(task_id, field_id, text)
        except BackendError as exc:
            self.forget(name)
            return self._failed(task_id, name, str(exc))
        return Result.success()

    def _failed(self, task_id: str, name: str, reason: str) -> Result[None]:
        failure = FieldWriteFailure(task_id=task_id, field_name=name, reason=reason)
        logger.warning("Failed to update custom field: %s", failure)
        return Result.failure(failure)

    def read_list(self, record: StoredTask, name: str) -> List[Any]:
        cf = record.custom_field(name)
        if cf is None or cf.value in (None, ""):
            return []
        value = cf.value
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError as exc:
                logger.warning("Task %s: failed to parse %s: %s (value=%r)", record.id, name, exc, cf.value[:100])
                return []
        if not isinstance(value, list):
            logger.warning("Task %s: %s is not a list, got %s", record.id, name, type(value).__name__)
            return []
        return value
