from .field_cache import FieldIdCache
from .graphql_client import GraphQLClient, GraphQLClientError, GraphQLPermissionError, GraphQLRateLimitError
from .rate_limiter import RateLimiter
from .workspace import WorkspaceContext, resolve_workspace

__all__ = [
    "FieldIdCache",
    "GraphQLClient",
    "GraphQLClientError",
    "GraphQLPermissionError",
    "GraphQLRateLimitError",
    "RateLimiter",
    "WorkspaceContext",
    "resolve_workspace",
]
