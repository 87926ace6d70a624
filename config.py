from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

DEFAULT_CONFIG_PATH = Path.home() / ".pmt_config.yaml"
DEFAULT_ENDPOINT = "https://api.blue.cc/graphql"
DEFAULT_FIELD_CACHE_PATH = Path.home() / ".cache" / "pmt" / "custom_fields.yaml"

# env var -> StoreConfig attribute
_ENV_KEYS = {
    "PMT_API_ENDPOINT": "endpoint",
    "BLUE_TOKEN_ID": "token_id",
    "BLUE_SECRET_ID": "token_secret",
    "BLUE_COMPANY_ID": "company_id",
    "BLUE_PROJECT_ID": "project_id",
    "BLUE_TODO_LIST_ID": "todo_list_id",
    "PMT_FIELD_CACHE_PATH": "field_cache_path",
    "PMT_FIELD_CACHE_TTL_SECONDS": "field_cache_ttl_seconds",
    "PMT_HTTP_TIMEOUT": "timeout",
    "PMT_HTTP_MAX_ATTEMPTS": "max_attempts",
}
_INT_KEYS = {"field_cache_ttl_seconds", "timeout", "max_attempts"}


@dataclass(frozen=True)
class StoreConfig:
    """Connection and layout settings, built once at startup and passed down."""

    endpoint: str = DEFAULT_ENDPOINT
    token_id: str = ""
    token_secret: str = ""
    company_id: str = ""
    project_id: str = ""
    todo_list_id: str = ""
    timeout: int = 30
    max_attempts: int = 3
    relationships_field: str = "PMT_Relationships"
    milestones_field: str = "PMT_Milestones"
    custom_field_type: str = "TEXT_MULTI"
    field_cache_path: Optional[Path] = DEFAULT_FIELD_CACHE_PATH
    field_cache_ttl_seconds: int = 86400

    @property
    def has_credentials(self) -> bool:
        return bool(self.token_id and self.token_secret)


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        return {}
    return data if isinstance(data, dict) else {}


def _coerce(key: str, value: Any) -> Any:
    if key in _INT_KEYS:
        return int(value)
    if key == "field_cache_path":
        text = str(value).strip()
        return Path(text).expanduser() if text else None
    return str(value).strip()


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> StoreConfig:
    """Build a StoreConfig from YAML (``PMT_CONFIG`` or ~/.pmt_config.yaml) and env.

    Environment variables win over the file. Unknown file keys are ignored.
    """
    env = os.environ if environ is None else environ
    cfg_path = path or Path(env.get("PMT_CONFIG") or DEFAULT_CONFIG_PATH)
    values: Dict[str, Any] = {}
    known = set(StoreConfig.__dataclass_fields__)
    for key, value in _load_file(cfg_path).items():
        if key in known and value is not None:
            values[key] = _coerce(key, value)
    for env_key, attr in _ENV_KEYS.items():
        raw = env.get(env_key)
        if raw not in (None, ""):
            values[attr] = _coerce(attr, raw)
    return replace(StoreConfig(), **values)


def save_config(config: StoreConfig, path: Optional[Path] = None) -> None:
    """Write non-secret settings back to YAML. Credentials stay in the environment."""
    cfg_path = path or DEFAULT_CONFIG_PATH
    data = {
        "endpoint": config.endpoint,
        "company_id": config.company_id,
        "project_id": config.project_id,
        "todo_list_id": config.todo_list_id,
        "relationships_field": config.relationships_field,
        "milestones_field": config.milestones_field,
    }
    data = {k: v for k, v in data.items() if v}
    if not data:
        if cfg_path.exists():
            cfg_path.unlink()
        return
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    cfg_path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
