import base64
import json
import logging

from core import Activity, MetadataCodec, Position, TaskMetadata
from core.metadata_codec import META_MARKER, SCHEMA_VERSION


def _meta_segment(blob: str) -> dict:
    encoded = blob.split(META_MARKER)[1].strip()
    return json.loads(base64.b64decode(encoded).decode("utf-8"))


def _rich_metadata() -> TaskMetadata:
    return TaskMetadata(
        work_type="content",
        target_outcome="Publish the welcome post: ünïcode ✓",
        activities=[Activity("Draft outline", "done"), Activity("Edit", "in-progress")],
        resources={"doc": "https://example.com/doc", "budget": 120},
        position=Position(40, -12.5),
        grid_position={"col": 2, "row": 1},
        sort_order=7,
    )


def test_roundtrip_preserves_every_non_empty_field():
    codec = MetadataCodec()
    meta = _rich_metadata()

    decoded = codec.decode(codec.encode("Write the intro post", meta))

    assert decoded.description == "Write the intro post"
    assert decoded.metadata == meta
    assert decoded.fallback is False
    assert decoded.version == SCHEMA_VERSION


def test_encode_uses_short_aliases_and_omits_empty_fields():
    codec = MetadataCodec()
    blob = codec.encode("desc", TaskMetadata(work_type="practice", activities=[], resources={}, sort_order=0))

    segment = _meta_segment(blob)
    assert segment == {"v": SCHEMA_VERSION, "wt": "practice"}
    assert blob.startswith("desc\n\n" + META_MARKER + "\n")


def test_empty_metadata_yields_bare_description():
    codec = MetadataCodec()
    assert codec.encode("just text", TaskMetadata()) == "just text"
    assert codec.encode("just text", None) == "just text"
    assert codec.encode("", None) == ""


def test_decode_without_marker_is_plain_description():
    decoded = MetadataCodec().decode("No metadata here")
    assert decoded.description == "No metadata here"
    assert decoded.metadata.is_empty()
    assert MetadataCodec().decode(None).description == ""


def test_decode_falls_back_on_garbage(caplog):
    blob = f"Some text\n\n{META_MARKER}\n!!!not-base64!!!"
    with caplog.at_level(logging.WARNING, logger="pmt.codec"):
        decoded = MetadataCodec().decode(blob)

    assert decoded.description == blob
    assert decoded.metadata.is_empty()
    assert decoded.fallback is True
    assert "Failed to parse task metadata" in caplog.text


def test_decode_falls_back_when_payload_is_not_an_object():
    encoded = base64.b64encode(json.dumps([1, 2, 3]).encode()).decode()
    blob = f"Text\n\n{META_MARKER}\n{encoded}"
    decoded = MetadataCodec().decode(blob)
    assert decoded.description == blob
    assert decoded.fallback is True


def test_decode_strips_html_around_metadata():
    codec = MetadataCodec()
    blob = codec.encode("Body", TaskMetadata(work_type="books"))
    head, encoded = blob.split(META_MARKER)
    wrapped = f"<p>Body</p><p>{META_MARKER}</p><p>{encoded.strip()[:10]}\n{encoded.strip()[10:]}</p>"

    decoded = codec.decode(wrapped)

    assert decoded.metadata.work_type == "books"
    assert decoded.description == "<p>Body</p><p>"


def test_decode_accepts_legacy_long_keys_without_version():
    legacy = {"workType": "walk", "activities": [{"title": "Scout route", "status": "todo"}], "sortOrder": "3"}
    encoded = base64.b64encode(json.dumps(legacy).encode()).decode()

    decoded = MetadataCodec().decode(f"Legacy\n\n{META_MARKER}\n{encoded}")

    assert decoded.version == 0
    assert decoded.metadata.work_type == "walk"
    assert decoded.metadata.activities == [Activity("Scout route", "todo")]
    assert decoded.metadata.sort_order == 3


def test_unknown_keys_survive_reencode():
    future = {"v": SCHEMA_VERSION + 1, "wt": "b2b", "zz": {"nested": True}}
    encoded = base64.b64encode(json.dumps(future).encode()).decode()
    codec = MetadataCodec()

    decoded = codec.decode(f"Future\n\n{META_MARKER}\n{encoded}")
    assert decoded.metadata.extra == {"zz": {"nested": True}}

    again = _meta_segment(codec.encode(decoded.description, decoded.metadata))
    assert again["zz"] == {"nested": True}
    assert again["wt"] == "b2b"


def test_malformed_field_types_degrade_to_empty():
    raw = {"a": "not a list", "r": ["nope"], "p": 5, "so": "abc"}
    encoded = base64.b64encode(json.dumps(raw).encode()).decode()

    meta = MetadataCodec().decode(f"x\n\n{META_MARKER}\n{encoded}").metadata

    assert meta.activities == []
    assert meta.resources == {}
    assert meta.position is None
    assert meta.sort_order is None


def test_description_containing_marker_text_roundtrips():
    codec = MetadataCodec()
    description = f"Docs mention {META_MARKER} literally"
    decoded = codec.decode(codec.encode(description, TaskMetadata(deleted_at="2025-02-01T00:00:00.000Z")))
    assert decoded.description == description
    assert decoded.metadata.deleted_at == "2025-02-01T00:00:00.000Z"
