"""HTTP client for the collection tracker backend.

The backend publishes a machine-readable API description (Swagger 2.0 or
OpenAPI 3.x JSON) at ``TRACKER_SCHEMA_PATH``.  This client downloads and
caches it, flattens it into a list of :class:`Operation` records (with
local ``$ref`` pointers resolved), and executes an operation given its
split path / query / body arguments and a bearer token.

Which operations exist is entirely up to the backend; nothing here knows
about cards.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urljoin

import httpx

from mtg_agent import config
from mtg_agent.services.cache import LRUCache
from mtg_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 20.0

HTTP_METHODS = ("get", "put", "post", "delete", "patch", "head", "options")
# Only these are resent after a timeout or a 5xx; the tracker may already
# have applied a write.
RETRYABLE_METHODS = ("GET", "HEAD", "OPTIONS")

_CK_SCHEMA = "schema"


class TrackerAPIError(Exception):
    """Raised when a tracker call fails (after retries for transient errors)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class Operation:
    """One backend operation, normalized across Swagger 2 and OpenAPI 3."""

    method: str
    path: str
    operation_id: str | None = None
    description: str | None = None
    # Each entry: {"name", "in", "required", "schema", "description"}
    parameters: list[dict[str, Any]] = field(default_factory=list)
    body_schema: dict[str, Any] | None = None
    body_required: bool = False

    @property
    def path_param_names(self) -> set[str]:
        return {p["name"] for p in self.parameters if p["in"] == "path"}

    @property
    def query_param_names(self) -> set[str]:
        return {p["name"] for p in self.parameters if p["in"] == "query"}


# ── Schema helpers ──────────────────────────────────────────────────


def _lookup_pointer(root: dict[str, Any], ref: str) -> Any:
    if not ref.startswith("#/"):
        raise TrackerAPIError(f"Only local $ref pointers are supported: {ref}")
    node: Any = root
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        node = node[part]
    return node


def resolve_refs(node: Any, root: dict[str, Any], _seen: frozenset[str] = frozenset()) -> Any:
    """Return a copy of *node* with every local ``$ref`` inlined.

    A self-referencing schema is cut at the point of recursion and
    replaced by a bare ``{"type": "object"}``.
    """
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str):
            if ref in _seen:
                return {"type": "object"}
            target = _lookup_pointer(root, ref)
            return resolve_refs(copy.deepcopy(target), root, _seen | {ref})
        return {k: resolve_refs(v, root, _seen) for k, v in node.items()}
    if isinstance(node, list):
        return [resolve_refs(item, root, _seen) for item in node]
    return node


def parse_operations(schema: dict[str, Any]) -> list[Operation]:
    """Flatten a Swagger/OpenAPI document into :class:`Operation` records."""
    operations: list[Operation] = []
    for path, path_item in (schema.get("paths") or {}).items():
        path_item = resolve_refs(path_item, schema)
        shared_params = path_item.get("parameters", [])
        for method in HTTP_METHODS:
            details = path_item.get(method)
            if not details:
                continue

            op = Operation(
                method=method.upper(),
                path=path,
                operation_id=details.get("operationId"),
                description=details.get("description") or details.get("summary"),
            )

            for param in [*shared_params, *details.get("parameters", [])]:
                location = param.get("in")
                if location == "body":
                    # Swagger 2 carries the body as a parameter
                    op.body_schema = param.get("schema") or {"type": "object"}
                    op.body_required = bool(param.get("required"))
                elif location in ("path", "query"):
                    param_schema = param.get("schema") or {
                        k: param[k] for k in ("type", "enum", "format", "items") if k in param
                    }
                    op.parameters.append({
                        "name": param["name"],
                        "in": location,
                        "required": bool(param.get("required")) or location == "path",
                        "schema": param_schema or {"type": "string"},
                        "description": param.get("description", ""),
                    })

            request_body = details.get("requestBody")
            if request_body:
                content = request_body.get("content", {})
                media = content.get("application/json") or next(iter(content.values()), {})
                op.body_schema = media.get("schema") or {"type": "object"}
                op.body_required = bool(request_body.get("required"))

            operations.append(op)
    return operations


def api_base_url(schema: dict[str, Any], tracker_url: str) -> str:
    """Base URL that operation paths are relative to."""
    base = tracker_url.rstrip("/")
    base_path = (schema.get("basePath") or "").strip("/")
    if base_path:
        return f"{base}/{base_path}"
    servers = schema.get("servers") or []
    if servers and servers[0].get("url"):
        server_url = servers[0]["url"]
        if server_url.startswith(("http://", "https://")):
            return server_url.rstrip("/")
        return urljoin(base + "/", server_url.lstrip("/")).rstrip("/")
    return base


class TrackerClient:
    """Schema-driven client for the collection tracker backend."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        schema_path: str | None = None,
        cache: LRUCache | None = None,
    ):
        self._base_url = (base_url or config.TRACKER_API_URL).rstrip("/")
        self._schema_path = schema_path or config.TRACKER_SCHEMA_PATH
        self._client = httpx.Client(
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        self._cache = cache or LRUCache(ttl_seconds=config.TRACKER_SCHEMA_TTL_SECONDS)

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        label: str | None = None,
    ) -> Any:
        """Execute an HTTP request with exponential-backoff retries.

        Failures to connect are always retried.  Timeouts after the request
        went out and 5xx responses are retried for read-only methods only.
        *label* names the request in metrics and defaults to the URL path.
        """
        label = label or f"{method} {url.replace(self._base_url, '')}"
        retryable = method.upper() in RETRYABLE_METHODS
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                with metrics.track("tracker", label):
                    response = self._client.request(
                        method, url, params=params, json=json_body, headers=headers,
                    )
                    if response.status_code >= 500:
                        raise TrackerAPIError(
                            f"Server error {response.status_code}: {response.text}",
                            status_code=response.status_code,
                        )
                    if response.status_code >= 400:
                        raise TrackerAPIError(
                            f"Client error {response.status_code}: {response.text}",
                            status_code=response.status_code,
                        )
                    if not response.content:
                        return None
                    return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                sent = not isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout))
                if sent and not retryable:
                    raise TrackerAPIError(f"Tracker request timed out: {exc}") from exc
                last_error = exc
                logger.warning(
                    "Tracker attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt, MAX_RETRIES, type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except TrackerAPIError as exc:
                if exc.status_code and exc.status_code >= 500 and retryable:
                    last_error = exc
                    logger.warning(
                        "Tracker server error on attempt %d/%d. Retrying…",
                        attempt, MAX_RETRIES,
                    )
                else:
                    raise

            time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise TrackerAPIError(
            f"Tracker request failed after {MAX_RETRIES} retries: {last_error}"
        )

    # ── Schema ───────────────────────────────────────────────────────

    def get_schema(self) -> dict[str, Any]:
        """Return the backend API description (cached with a TTL)."""
        cached = self._cache.get(_CK_SCHEMA)
        if cached is not None:
            return cached
        schema = self._request("GET", f"{self._base_url}{self._schema_path}")
        if not isinstance(schema, dict) or "paths" not in schema:
            raise TrackerAPIError("Tracker schema has no 'paths' section")
        self._cache.put(_CK_SCHEMA, schema)
        return schema

    def operations(self) -> list[Operation]:
        return parse_operations(self.get_schema())

    # ── Execution ────────────────────────────────────────────────────

    def call(
        self,
        operation: Operation,
        *,
        token: str,
        path_params: dict[str, Any] | None = None,
        query_params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """Invoke *operation* and return the decoded JSON response."""
        path = operation.path
        for name, value in (path_params or {}).items():
            path = path.replace("{" + name + "}", quote(str(value), safe=""))
        if "{" in path:
            raise TrackerAPIError(f"Missing path parameter for {operation.method} {operation.path}")

        url = api_base_url(self.get_schema(), self._base_url) + path
        return self._request(
            operation.method,
            url,
            params=query_params or None,
            json_body=body,
            headers={"Authorization": f"Bearer {token}"},
            label=f"{operation.method} {operation.path}",
        )


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: TrackerClient | None = None
_client_lock = threading.Lock()


def get_tracker_client() -> TrackerClient:
    """Return a module-level TrackerClient singleton."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = TrackerClient()
    return _client
