from .status import Status, normalize_task_status, normalize_activity_status
from .task import (
    Activity,
    MilestoneLink,
    Position,
    Relationship,
    Task,
    TaskMetadata,
    current_timestamp,
    parse_timestamp,
)
from .errors import (
    BackendError,
    CycleError,
    EngineError,
    FieldWriteFailure,
    NotFoundError,
    SelfReferenceError,
    ValidationError,
)
from .result import Result
from .metadata_codec import AttributeCodec, DecodedText, MetadataCodec, META_MARKER
from .relationship_graph import (
    collect_relationships,
    find_cycle,
    generate_relationship_id,
    relationships_touching,
    topological_order,
    would_create_cycle,
)

__all__ = [
    "Status",
    "normalize_task_status",
    "normalize_activity_status",
    # Model
    "Activity",
    "MilestoneLink",
    "Position",
    "Relationship",
    "Task",
    "TaskMetadata",
    "current_timestamp",
    "parse_timestamp",
    # Errors
    "BackendError",
    "CycleError",
    "EngineError",
    "FieldWriteFailure",
    "NotFoundError",
    "SelfReferenceError",
    "ValidationError",
    "Result",
    # Codec
    "AttributeCodec",
    "DecodedText",
    "MetadataCodec",
    "META_MARKER",
    # Graph
    "collect_relationships",
    "find_cycle",
    "generate_relationship_id",
    "relationships_touching",
    "topological_order",
    "would_create_cycle",
]
