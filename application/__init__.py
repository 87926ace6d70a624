from .mutation_serializer import TaskMutationSerializer
from .ports import CustomFieldValue, FieldSlots, NewTask, StoredTag, StoredTask, TaskStore
from .task_repository import TaskFilters, TaskRepository

__all__ = [
    "TaskMutationSerializer",
    "CustomFieldValue",
    "FieldSlots",
    "NewTask",
    "StoredTag",
    "StoredTask",
    "TaskStore",
    "TaskFilters",
    "TaskRepository",
]
