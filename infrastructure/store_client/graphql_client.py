"""GraphQL transport for the task-tracker API.

One POST per operation. Network failures, 5xx answers and rate-limit errors
are retried with jittered exponential backoff up to ``max_attempts``; anything
else is raised as a ``GraphQLClientError`` (a ``BackendError``) carrying the
upstream message.
"""

import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from core.errors import BackendError

from .rate_limiter import looks_like_rate_limit

logger = logging.getLogger("pmt.store")

Credentials = Tuple[Optional[str], Optional[str]]

_PERMISSION_KEYWORDS = (
    "unauthorized",
    "unauthenticated",
    "forbidden",
    "access denied",
    "not authorized",
    "invalid token",
    "does not have permission",
)
_PERMISSION_CODES = ("forbidden", "unauthenticated")


class GraphQLClientError(BackendError):
    def __init__(self, message: Any) -> None:
        super().__init__(_format_errors(message))
        self.errors = message if isinstance(message, list) else None


class GraphQLPermissionError(GraphQLClientError):
    pass


class GraphQLRateLimitError(GraphQLClientError):
    pass


def _format_errors(errors: Any) -> str:
    if isinstance(errors, list):
        messages = [str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors]
        return "; ".join(messages) or "GraphQL error"
    return str(errors)


def is_permission_error(errors: Optional[List[Any]]) -> bool:
    for err in errors or []:
        if not isinstance(err, dict):
            continue
        message = str(err.get("message", "")).lower()
        code = str((err.get("extensions") or {}).get("code", "")).lower()
        if code in _PERMISSION_CODES or any(key in message for key in _PERMISSION_KEYWORDS):
            return True
    return False


class _RetryableError(Exception):
    def __init__(self, final: GraphQLClientError) -> None:
        super().__init__(str(final))
        self.final = final


class GraphQLClient:
    """Authenticated GraphQL client.

    ``credentials_provider`` returns ``(token_id, token_secret)`` and is called
    per request so rotated credentials take effect without a rebuild. Company
    and project ids travel as headers; the API scopes most queries by them.
    """

    def __init__(
        self,
        endpoint: str,
        session: Optional[requests.Session],
        credentials_provider: Callable[[], Credentials],
        rate_limiter,
        timeout: int = 30,
        max_attempts: int = 3,
    ) -> None:
        self.endpoint = endpoint
        self.session = session or requests.Session()
        self.credentials_provider = credentials_provider
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.max_attempts = max_attempts

    def _headers(self, company_id: Optional[str], project_id: Optional[str]) -> Dict[str, str]:
        token_id, secret = self.credentials_provider()
        if not token_id or not secret:
            raise GraphQLPermissionError("API token id/secret missing")
        headers = {
            "X-Bloo-Token-ID": token_id,
            "X-Bloo-Token-Secret": secret,
            "Content-Type": "application/json",
        }
        if company_id:
            headers["X-Bloo-Company-ID"] = company_id
        if project_id:
            headers["X-Bloo-Project-ID"] = project_id
        return headers

    def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        company_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = self._headers(company_id, project_id)
        body = {"query": query, "variables": variables or {}}
        delay = 1.0
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._attempt(body, headers)
            except _RetryableError as exc:
                if attempt >= self.max_attempts:
                    raise exc.final from None
                logger.warning("API request failed (attempt %s/%s): %s", attempt, self.max_attempts, exc)
                self._sleep(delay)
                delay *= 2
        raise GraphQLClientError("API request was not attempted")

    def _attempt(self, body: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        self.rate_limiter.acquire()
        try:
            response = self.session.post(self.endpoint, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise _RetryableError(GraphQLClientError(f"API network error: {exc}")) from exc
        self.rate_limiter.update(response.headers)
        status = response.status_code
        if status >= 500:
            raise _RetryableError(GraphQLClientError(f"API error: {status} {response.text}"))
        if status in (401, 403):
            raise GraphQLPermissionError(f"HTTP {status}")
        if status >= 400:
            raise GraphQLClientError(f"API error: {status} {response.text}")

        payload = response.json()
        errors = payload.get("errors")
        if errors:
            self.rate_limiter.update(response.headers, errors)
            if looks_like_rate_limit(errors):
                raise _RetryableError(GraphQLRateLimitError(errors))
            if is_permission_error(errors):
                raise GraphQLPermissionError(errors)
            raise GraphQLClientError(errors)
        return payload.get("data") or {}

    def _sleep(self, base_delay: float) -> None:
        time.sleep(base_delay + random.uniform(0, base_delay))
