import hashlib
import time
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Optional

import yaml


class FieldIdCache:
    """Credential-aware YAML cache of custom-field ids per project.

    Layout on disk::

        __meta__: {credentials: <sha1>, ts: <epoch>, ttl_seconds: <int>}
        <project_id>: {fields: {<name>: <id>}, ts: <epoch>}

    Entries older than the TTL are ignored. A cache written under different
    credentials is discarded. ``path=None`` keeps the cache in memory only.
    """

    def __init__(
        self,
        path: Optional[Path],
        ttl_seconds: int,
        credentials_digest_source: Callable[[], str],
    ) -> None:
        self.path = path
        self.ttl_seconds = ttl_seconds
        self.credentials_digest_source = credentials_digest_source
        self._data: Dict[str, Dict[str, object]] = {}
        self._lock = Lock()
        self._loaded = False

    def _digest(self) -> str:
        source = self.credentials_digest_source() or ""
        return hashlib.sha1(source.encode()).hexdigest() if source else ""

    def load(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            if self._loaded:
                return dict(self._data)
            self._loaded = True
        if self.path is None or not self.path.exists():
            return dict(self._data)
        try:
            raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError):
            return dict(self._data)
        if not isinstance(raw, dict):
            return dict(self._data)
        meta = raw.get("__meta__") if isinstance(raw.get("__meta__"), dict) else {}
        stored_digest = meta.get("credentials") or ""
        if stored_digest and self._digest() and stored_digest != self._digest():
            self.path.unlink(missing_ok=True)
            with self._lock:
                self._data.clear()
            return {}
        ttl_override = meta.get("ttl_seconds")
        ttl_limit = (
            int(ttl_override)
            if isinstance(ttl_override, (int, float)) and int(ttl_override) > 0
            else self.ttl_seconds
        )
        now = time.time()
        for key, value in raw.items():
            if key == "__meta__" or not isinstance(value, dict):
                continue
            if not isinstance(value.get("fields"), dict):
                continue
            try:
                ts_val = float(value.get("ts")) if value.get("ts") is not None else None
            except (TypeError, ValueError):
                ts_val = None
            if ts_val and now - ts_val > ttl_limit:
                continue
            with self._lock:
                self._data[str(key)] = value
        return dict(self._data)

    def get(self, project_id: str, name: str) -> Optional[str]:
        self.load()
        with self._lock:
            entry = self._data.get(project_id) or {}
            fields = entry.get("fields") or {}
            value = fields.get(name) if isinstance(fields, dict) else None
            return str(value) if value else None

    def set(self, project_id: str, name: str, field_id: str) -> None:
        self.load()
        with self._lock:
            entry = self._data.setdefault(project_id, {"fields": {}, "ts": time.time()})
            fields = entry.setdefault("fields", {})
            fields[name] = field_id  # type: ignore[index]

    def invalidate(self, project_id: str, name: Optional[str] = None) -> None:
        self.load()
        with self._lock:
            if name is None:
                self._data.pop(project_id, None)
                return
            fields = (self._data.get(project_id) or {}).get("fields")
            if isinstance(fields, dict):
                fields.pop(name, None)

    def persist(self) -> None:
        if self.path is None:
            return
        self.load()
        with self._lock:
            if not self._data:
                if self.path.exists():
                    self.path.unlink()
                return
            data: Dict[str, object] = {k: dict(v) for k, v in self._data.items()}
            data["__meta__"] = {
                "credentials": self._digest(),
                "ts": time.time(),
                "ttl_seconds": self.ttl_seconds,
            }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
