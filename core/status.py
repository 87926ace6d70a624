from enum import Enum
from typing import Final


class Status(Enum):
    IN_PROGRESS = "In Progress"
    DONE = "Done"

    @classmethod
    def from_string(cls, value: str) -> "Status":
        token = normalize_task_status(value)
        return cls.DONE if token == "DONE" else cls.IN_PROGRESS

    @classmethod
    def from_done(cls, done: bool) -> "Status":
        return cls.DONE if done else cls.IN_PROGRESS

    @property
    def is_done(self) -> bool:
        return self is Status.DONE


_TASK_ALIASES: Final[dict] = {
    "DONE": "DONE",
    "COMPLETE": "DONE",
    "COMPLETED": "DONE",
    "IN_PROGRESS": "IN_PROGRESS",
    "INPROGRESS": "IN_PROGRESS",
    "ACTIVE": "IN_PROGRESS",
    "TODO": "IN_PROGRESS",
}

ACTIVITY_STATUSES: Final[frozenset[str]] = frozenset({"todo", "in-progress", "done"})


def normalize_task_status(value: str) -> str:
    """Normalize task status input to DONE or IN_PROGRESS.

    Accepts the display labels ("In Progress", "Done") as well as common
    spellings. Raises ValueError for anything else.
    """
    token = (value or "").strip().upper().replace(" ", "_").replace("-", "_")
    if token in _TASK_ALIASES:
        return _TASK_ALIASES[token]
    raise ValueError(f"Invalid task status: {value!r}")


def normalize_activity_status(value: str) -> str:
    token = (value or "todo").strip().lower().replace("_", "-").replace(" ", "-")
    if token == "inprogress":
        token = "in-progress"
    if token not in ACTIVITY_STATUSES:
        raise ValueError(f"Invalid activity status: {value!r}")
    return token
