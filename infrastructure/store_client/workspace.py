"""Workspace resolution.

Company, project and todo-list ids are resolved once at startup into an
immutable WorkspaceContext that is passed to every collaborator. Ids already
present in the configuration are used as-is; missing ones are discovered from
the most recent project visible to the credentials.
"""

import logging
from dataclasses import dataclass

from config import StoreConfig
from core.errors import BackendError

from .graphql_client import GraphQLClient

logger = logging.getLogger("pmt.store")

RECENT_PROJECTS_QUERY = """
query GetRecentProjects {
  recentProjects {
    id
    uid
    name
    company { id uid name }
  }
}
"""

TODO_LISTS_QUERY = """
query GetTodoLists($projectId: String!) {
  todoLists(projectId: $projectId) {
    id
    title
  }
}
"""


@dataclass(frozen=True)
class WorkspaceContext:
    company_id: str
    project_id: str
    todo_list_id: str


def resolve_workspace(client: GraphQLClient, config: StoreConfig) -> WorkspaceContext:
    company_id = config.company_id
    project_id = config.project_id
    if not company_id or not project_id:
        data = client.execute(RECENT_PROJECTS_QUERY)
        projects = data.get("recentProjects") or []
        if not projects:
            raise BackendError("No project found for these credentials")
        recent = projects[0]
        if not company_id:
            company_id = (recent.get("company") or {}).get("id") or ""
            if not company_id:
                raise BackendError("No company found for these credentials")
            logger.info("Using company %s", (recent.get("company") or {}).get("name"))
        if not project_id:
            project_id = recent["id"]
            logger.info("Using project %s", recent.get("name"))

    todo_list_id = config.todo_list_id
    if not todo_list_id:
        data = client.execute(TODO_LISTS_QUERY, {"projectId": project_id}, company_id=company_id, project_id=project_id)
        lists = data.get("todoLists") or []
        if not lists:
            raise BackendError(f"No todo list found in project {project_id}")
        todo_list_id = lists[0]["id"]
        logger.info("Using todo list %s", lists[0].get("title"))

    return WorkspaceContext(company_id=company_id, project_id=project_id, todo_list_id=todo_list_id)
