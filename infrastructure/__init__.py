from .custom_field_adapter import CustomFieldAdapter
from .graphql_task_store import GraphQLTaskStore

__all__ = ["CustomFieldAdapter", "GraphQLTaskStore"]
