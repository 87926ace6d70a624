"""Attribute blob codec for task descriptions.

The backing store only offers a free-text body per task, so structured
metadata rides behind the human-readable description:

    <description>

    ---PMT-META---
    <base64 of compact JSON>

The JSON object uses short key aliases and a schema tag ``v``. Blobs written
before the tag existed are treated as version 0; both versions share the same
key set. Keys this codec does not know are preserved in ``TaskMetadata.extra``
so a newer writer's fields survive a read-modify-write by an older reader.

Decoding never raises: a missing marker means "plain description", and a
metadata segment that fails to parse degrades to the whole blob being the
description (logged as a decode fallback).
"""

import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from .task import Activity, Position, TaskMetadata

logger = logging.getLogger("pmt.codec")

META_MARKER = "---PMT-META---"
SCHEMA_VERSION = 1
VERSION_KEY = "v"

# alias -> long name accepted on read
_ALIASES: Dict[str, str] = {
    "wt": "workType",
    "to": "targetOutcome",
    "a": "activities",
    "r": "resources",
    "p": "position",
    "g": "gridPosition",
    "d": "deletedAt",
    "so": "sortOrder",
}
_LONG_TO_ALIAS = {v: k for k, v in _ALIASES.items()}

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s")


@dataclass
class DecodedText:
    description: str = ""
    metadata: TaskMetadata = field(default_factory=TaskMetadata)
    version: Optional[int] = None
    fallback: bool = False


class AttributeCodec(Protocol):
    def encode(self, description: str, metadata: Optional[TaskMetadata]) -> str:
        ...

    def decode(self, blob: Optional[str]) -> DecodedText:
        ...


def has_marker(blob: Optional[str]) -> bool:
    return META_MARKER in (blob or "")


class MetadataCodec:
    marker = META_MARKER
    version = SCHEMA_VERSION

    def encode(self, description: str, metadata: Optional[TaskMetadata]) -> str:
        description = description or ""
        if metadata is None or metadata.is_empty():
            return description
        compact = self._compact(metadata)
        payload = json.dumps(compact, separators=(",", ":"), ensure_ascii=False)
        encoded = base64.b64encode(payload.encode("utf-8")).decode("ascii")
        return f"{description}\n\n{self.marker}\n{encoded}"

    def decode(self, blob: Optional[str]) -> DecodedText:
        if not blob:
            return DecodedText()
        if self.marker not in blob:
            return DecodedText(description=blob)
        head, _, tail = blob.rpartition(self.marker)
        segment = _WS_RE.sub("", _TAG_RE.sub("", tail))
        if not segment:
            return DecodedText(description=blob)
        try:
            raw = json.loads(base64.b64decode(segment, validate=True).decode("utf-8"))
            if not isinstance(raw, dict):
                raise ValueError(f"metadata is {type(raw).__name__}, expected object")
            version = raw.pop(VERSION_KEY, 0)
            metadata = self._expand(raw)
        except (ValueError, TypeError) as exc:
            logger.warning(
                "Failed to parse task metadata (%s); segment=%r text=%r",
                exc,
                segment[:50],
                blob[:100],
            )
            return DecodedText(description=blob, fallback=True)
        if isinstance(version, int) and version > self.version:
            logger.info("Decoded metadata schema v%s with codec v%s", version, self.version)
        return DecodedText(
            description=head.strip(),
            metadata=metadata,
            version=version if isinstance(version, int) else 0,
        )

    def _compact(self, metadata: TaskMetadata) -> Dict[str, Any]:
        out: Dict[str, Any] = {VERSION_KEY: self.version}
        candidates = {
            "wt": metadata.work_type,
            "to": metadata.target_outcome,
            "a": [a.to_dict() for a in metadata.activities],
            "r": dict(metadata.resources),
            "p": metadata.position.to_dict() if metadata.position is not None else None,
            "g": metadata.grid_position,
            "d": metadata.deleted_at,
            "so": metadata.sort_order,
        }
        for key, value in candidates.items():
            if value:
                out[key] = value
        for key, value in metadata.extra.items():
            if key not in out and key not in _LONG_TO_ALIAS:
                out[key] = value
        return out

    def _expand(self, raw: Dict[str, Any]) -> TaskMetadata:
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in raw.items():
            if key in _ALIASES:
                values[key] = value
            elif key in _LONG_TO_ALIAS:
                values.setdefault(_LONG_TO_ALIAS[key], value)
            else:
                extra[key] = value

        activities_raw = values.get("a") or []
        if not isinstance(activities_raw, list):
            activities_raw = []
        activities = []
        for item in activities_raw:
            try:
                activities.append(Activity.from_dict(item))
            except ValueError:
                continue

        resources = values.get("r") or {}
        if not isinstance(resources, dict):
            resources = {}

        position = Position.from_dict(values["p"]) if isinstance(values.get("p"), dict) else None
        grid = values.get("g") if isinstance(values.get("g"), dict) else None

        sort_order = values.get("so")
        if sort_order is not None:
            try:
                sort_order = int(sort_order)
            except (TypeError, ValueError):
                sort_order = None

        return TaskMetadata(
            work_type=values.get("wt") or None,
            target_outcome=values.get("to") or None,
            activities=activities,
            resources=resources,
            position=position,
            grid_position=grid,
            deleted_at=values.get("d") or None,
            sort_order=sort_order,
            extra=extra,
        )


__all__ = ["AttributeCodec", "DecodedText", "MetadataCodec", "META_MARKER", "SCHEMA_VERSION", "has_marker"]
