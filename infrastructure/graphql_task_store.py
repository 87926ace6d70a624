"""TaskStore adapter for the GraphQL task-tracker API.

Translates the engine's flat store operations into GraphQL queries and
mutations and maps ``todo`` payloads onto StoredTask records. All failures
surface as BackendError subclasses raised by the GraphQL client.
"""

import logging
from typing import Any, Dict, List, Optional

from application.ports import CustomFieldValue, NewTask, StoredTag, StoredTask
from core.errors import BackendError

from .store_client import GraphQLClient, WorkspaceContext

logger = logging.getLogger("pmt.store")

TODO_FIELDS = """
  id
  title
  text
  html
  done
  tags { id title color }
  customFields { id name value }
  createdAt
  updatedAt
  duedAt
  startedAt
"""

LIST_TODOS = (
    "query GetTodos($todoListId: String!) { todoList(id: $todoListId) { todos {" + TODO_FIELDS + "} } }"
)
GET_TODO = "query GetTodo($id: String!) { todo(id: $id) {" + TODO_FIELDS + "} }"
CREATE_TODO = "mutation CreateTodo($input: CreateTodoInput!) { createTodo(input: $input) {" + TODO_FIELDS + "} }"
EDIT_TODO = "mutation EditTodo($input: EditTodoInput!) { editTodo(input: $input) {" + TODO_FIELDS + "} }"
DELETE_TODO = "mutation DeleteTodo($input: DeleteTodoInput!) { deleteTodo(input: $input) { success } }"
TOGGLE_DONE = "mutation Toggle($id: String!) { updateTodoDoneStatus(todoId: $id) {" + TODO_FIELDS + "} }"

PROJECT_FIELDS = "query GetProjectFields($projectId: String!) { project(id: $projectId) { customFields { id name } } }"
CREATE_FIELD = "mutation CreateCF($input: CreateCustomFieldInput!) { createCustomField(input: $input) { id name } }"
SET_FIELD = "mutation SetValue($input: SetTodoCustomFieldInput!) { setTodoCustomField(input: $input) { id } }"

LIST_TAGS = "query GetTags { tags { id title color } }"
CREATE_TAG = "mutation CreateTag($input: CreateTagInput!) { createTag(input: $input) { id title color } }"
SET_TAGS = "mutation SetTodoTags($input: SetTodoTagsInput!) { setTodoTags(input: $input) }"

LIST_COMMENTS = (
    "query GetComments($categoryId: String!) {"
    " commentList(categoryId: $categoryId, category: TODO, first: 50) { id text html createdAt } }"
)
CREATE_COMMENT = (
    "mutation CreateComment($input: CreateCommentInput!) { createComment(input: $input) { id text html createdAt } }"
)

# editTodo input keys by StoredTask-side name
_EDIT_KEYS = {"title": "title", "html": "html", "due_at": "duedAt", "started_at": "startedAt"}


def todo_to_record(todo: Dict[str, Any]) -> StoredTask:
    tags = [
        StoredTag(id=str(t.get("id") or ""), title=str(t.get("title") or ""), color=str(t.get("color") or ""))
        for t in (todo.get("tags") or [])
        if isinstance(t, dict)
    ]
    fields = [
        CustomFieldValue(id=str(cf.get("id") or ""), name=str(cf.get("name") or ""), value=cf.get("value"))
        for cf in (todo.get("customFields") or [])
        if isinstance(cf, dict)
    ]
    return StoredTask(
        id=str(todo["id"]),
        title=todo.get("title") or "",
        text=todo.get("text") or "",
        html=todo.get("html") or "",
        done=bool(todo.get("done")),
        tags=tags,
        custom_fields=fields,
        created_at=todo.get("createdAt"),
        updated_at=todo.get("updatedAt"),
        due_at=todo.get("duedAt"),
        started_at=todo.get("startedAt"),
    )


class GraphQLTaskStore:
    def __init__(self, client: GraphQLClient, workspace: WorkspaceContext) -> None:
        self.client = client
        self.workspace = workspace

    def _run(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.client.execute(
            query,
            variables or {},
            company_id=self.workspace.company_id,
            project_id=self.workspace.project_id,
        )

    def list_tasks(self, container_id: str) -> List[StoredTask]:
        data = self._run(LIST_TODOS, {"todoListId": container_id})
        todo_list = data.get("todoList")
        if not isinstance(todo_list, dict) or not isinstance(todo_list.get("todos"), list):
            raise BackendError("Invalid response structure from API")
        return [todo_to_record(todo) for todo in todo_list["todos"] if isinstance(todo, dict)]

    def get_task(self, task_id: str) -> Optional[StoredTask]:
        todo = self._run(GET_TODO, {"id": task_id}).get("todo")
        return todo_to_record(todo) if isinstance(todo, dict) else None

    def create_task(self, container_id: str, task: NewTask) -> StoredTask:
        payload = {
            "todoListId": container_id,
            "title": task.title,
            "description": task.description,
            "duedAt": task.due_at,
            "startedAt": task.started_at,
        }
        return todo_to_record(self._run(CREATE_TODO, {"input": payload})["createTodo"])

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> StoredTask:
        payload: Dict[str, Any] = {"todoId": task_id}
        for key, value in fields.items():
            if key not in _EDIT_KEYS:
                raise ValueError(f"Unsupported update field: {key}")
            payload[_EDIT_KEYS[key]] = value
        return todo_to_record(self._run(EDIT_TODO, {"input": payload})["editTodo"])

    def delete_task(self, task_id: str) -> bool:
        data = self._run(DELETE_TODO, {"input": {"todoId": task_id}})
        return bool((data.get("deleteTodo") or {}).get("success"))

    def toggle_done(self, task_id: str) -> StoredTask:
        return todo_to_record(self._run(TOGGLE_DONE, {"id": task_id})["updateTodoDoneStatus"])

    def list_custom_fields(self, container_id: str) -> List[Dict[str, str]]:
        project = self._run(PROJECT_FIELDS, {"projectId": container_id}).get("project") or {}
        return [
            {"id": str(cf["id"]), "name": str(cf.get("name") or "")}
            for cf in (project.get("customFields") or [])
            if isinstance(cf, dict) and cf.get("id")
        ]

    def create_custom_field(self, name: str, field_type: str, container_id: str) -> str:
        payload = {"name": name, "type": field_type, "referenceProjectId": container_id}
        created = self._run(CREATE_FIELD, {"input": payload})["createCustomField"]
        logger.info("Created custom field %s: %s", name, created["id"])
        return str(created["id"])

    def set_custom_field_value(self, task_id: str, field_id: str, text: str) -> None:
        self._run(SET_FIELD, {"input": {"todoId": task_id, "customFieldId": field_id, "text": text}})

    def list_tags(self) -> List[StoredTag]:
        tags = self._run(LIST_TAGS).get("tags") or []
        return [StoredTag(id=str(t["id"]), title=t.get("title") or "", color=t.get("color") or "") for t in tags]

    def create_tag(self, name: str, color: str) -> StoredTag:
        created = self._run(CREATE_TAG, {"input": {"title": name, "color": color}})["createTag"]
        return StoredTag(id=str(created["id"]), title=created.get("title") or name, color=created.get("color") or color)

    def set_task_tags(self, task_id: str, tag_ids: List[str]) -> None:
        self._run(SET_TAGS, {"input": {"todoId": task_id, "tagIds": list(tag_ids)}})

    def list_comments(self, task_id: str) -> List[Dict[str, Any]]:
        return list(self._run(LIST_COMMENTS, {"categoryId": task_id}).get("commentList") or [])

    def create_comment(self, task_id: str, text: str, html: Optional[str] = None) -> Dict[str, Any]:
        payload = {"category": "TODO", "categoryId": task_id, "text": text, "html": html or text}
        return dict(self._run(CREATE_COMMENT, {"input": payload})["createComment"])
