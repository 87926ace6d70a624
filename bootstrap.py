"""Startup wiring: config -> transport -> workspace -> store -> repository.

Nothing here is memoized at module level; callers own the returned objects
and build them once at startup.
"""

import logging
from typing import Optional

import requests

from application.mutation_serializer import TaskMutationSerializer
from application.task_repository import TaskRepository
from config import StoreConfig, load_config
from core.metadata_codec import MetadataCodec
from infrastructure.custom_field_adapter import CustomFieldAdapter
from infrastructure.graphql_task_store import GraphQLTaskStore
from infrastructure.store_client import FieldIdCache, GraphQLClient, RateLimiter, WorkspaceContext, resolve_workspace

logger = logging.getLogger("pmt.bootstrap")


def build_client(config: StoreConfig, session: Optional[requests.Session] = None) -> GraphQLClient:
    return GraphQLClient(
        config.endpoint,
        session,
        lambda: (config.token_id, config.token_secret),
        RateLimiter(),
        timeout=config.timeout,
        max_attempts=config.max_attempts,
    )


def create_repository(
    config: Optional[StoreConfig] = None,
    session: Optional[requests.Session] = None,
    workspace: Optional[WorkspaceContext] = None,
) -> TaskRepository:
    config = config or load_config()
    client = build_client(config, session)
    workspace = workspace or resolve_workspace(client, config)
    logger.info(
        "Workspace resolved: company=%s project=%s list=%s",
        workspace.company_id,
        workspace.project_id,
        workspace.todo_list_id,
    )
    store = GraphQLTaskStore(client, workspace)
    cache = FieldIdCache(
        config.field_cache_path,
        config.field_cache_ttl_seconds,
        lambda: f"{config.token_id}:{config.token_secret}" if config.has_credentials else "",
    )
    fields = CustomFieldAdapter(store, workspace.project_id, config.custom_field_type, cache)
    return TaskRepository(
        store,
        fields,
        workspace.todo_list_id,
        codec=MetadataCodec(),
        serializer=TaskMutationSerializer(),
        relationships_field=config.relationships_field,
        milestones_field=config.milestones_field,
    )
