"""Tool execution for the orchestration loop.

``ToolDispatcher.dispatch`` is the error boundary between the model and the
outside world: whatever goes wrong while a tool runs (Scryfall down, a
tracker 4xx, a failed token exchange) comes back as an error-shaped
result the model can explain to the user.  The only thing that is raised
is :class:`UnknownToolError`, so the loop can decide how to skip it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from langchain_core.messages import BaseMessage

from mtg_agent.config import TRACKER_TOOL_PREFIX
from mtg_agent.history import SelectedCard, latest_search_summary
from mtg_agent.services.credentials import CredentialProvider, get_credential_provider
from mtg_agent.services.scryfall_client import ScryfallClient, get_scryfall_client
from mtg_agent.services.tracker_client import (
    Operation,
    TrackerAPIError,
    TrackerClient,
    get_tracker_client,
)
from mtg_agent.tools.catalog import REFERENCE_TOOL, SEARCH_TOOL, SELECT_TOOL, tool_name_for
from mtg_agent.tools.reference import search_reference

logger = logging.getLogger(__name__)

SEARCH_FILTERS = ("name", "oracle_text", "type_line", "reserved", "colors", "set", "page", "order", "dir")

# A nested object is treated as a reference when it has a display name and
# one of these identifier keys.
_REFERENCE_ID_KEYS = ("id", "_id", "uri", "url", "code")


class UnknownToolError(Exception):
    """The model asked for a tool nothing is registered for."""


@dataclass
class ToolOutcome:
    """Result of one tool call.

    ``content`` is what goes back to the model as the tool result.
    ``candidates`` holds full card records for a search, ``selected`` the
    card recorded by ``select_card``.
    """

    payload: dict[str, Any]
    content: str
    candidates: list[dict[str, Any]] | None = None
    selected: SelectedCard | None = None

    @property
    def ok(self) -> bool:
        return self.payload.get("status") == "success"


def error_outcome(message: str) -> ToolOutcome:
    payload = {"status": "error", "message": message}
    return ToolOutcome(payload=payload, content=json.dumps(payload))


def flatten_references(data: Any) -> Any:
    """Collapse nested reference objects to ``<key>_name`` fields.

    ``{"qty": 2, "source": {"_id": "7", "name": "Scryfall"}}`` becomes
    ``{"qty": 2, "source_name": "Scryfall"}``.  Lists are handled
    element-wise; other nested objects are left intact.
    """
    if isinstance(data, list):
        return [flatten_references(item) for item in data]
    if not isinstance(data, dict):
        return data
    flat: dict[str, Any] = {}
    for key, value in data.items():
        if (
            isinstance(value, dict)
            and "name" in value
            and any(k in value for k in _REFERENCE_ID_KEYS)
        ):
            flat[f"{key}_name"] = value["name"]
        else:
            flat[key] = flatten_references(value)
    return flat


class ToolDispatcher:
    """Maps tool names to executors and runs them."""

    def __init__(
        self,
        *,
        scryfall: ScryfallClient | None = None,
        tracker: TrackerClient | None = None,
        credentials: CredentialProvider | None = None,
    ) -> None:
        self._scryfall = scryfall
        self._tracker = tracker
        self._credentials = credentials
        self._executors: dict[str, Callable[[dict[str, Any], list[BaseMessage]], ToolOutcome]] = {
            SEARCH_TOOL: self._run_search,
            SELECT_TOOL: self._run_select,
            REFERENCE_TOOL: self._run_reference,
        }

    # Clients are resolved lazily so a dispatcher can be built without
    # network configuration (tests inject their own).
    @property
    def scryfall(self) -> ScryfallClient:
        if self._scryfall is None:
            self._scryfall = get_scryfall_client()
        return self._scryfall

    @property
    def tracker(self) -> TrackerClient:
        if self._tracker is None:
            self._tracker = get_tracker_client()
        return self._tracker

    @property
    def credentials(self) -> CredentialProvider:
        if self._credentials is None:
            self._credentials = get_credential_provider()
        return self._credentials

    def has_executor(self, name: str) -> bool:
        return name.startswith(TRACKER_TOOL_PREFIX) or name in self._executors

    def dispatch(
        self,
        name: str,
        arguments: dict[str, Any] | str | None,
        history: list[BaseMessage] | None = None,
    ) -> ToolOutcome:
        """Run tool *name* with *arguments*; never raises except for unknown names."""
        if not self.has_executor(name):
            raise UnknownToolError(name)

        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except ValueError:
                return error_outcome(f"Arguments for {name} are not valid JSON")
        args = arguments or {}
        if not isinstance(args, dict):
            return error_outcome(f"Arguments for {name} must be a JSON object")

        logger.info("Executing tool %s with args %s", name, json.dumps(args, default=str))
        try:
            if name.startswith(TRACKER_TOOL_PREFIX):
                return self._run_tracker(name, args)
            return self._executors[name](args, history or [])
        except Exception as exc:
            logger.error("Tool %s failed: %s", name, exc)
            return error_outcome(str(exc))

    # ── Static tools ─────────────────────────────────────────────────

    def _run_search(self, args: dict[str, Any], history: list[BaseMessage]) -> ToolOutcome:
        filters = {k: args[k] for k in SEARCH_FILTERS if args.get(k) not in (None, "", [])}
        result = self.scryfall.search_cards(**filters)
        logger.info("scryfall_search returned %d printing(s)", len(result.summary))
        payload = {
            "status": "success",
            "summary": result.summary,
            "details": result.details,
            "total_cards": result.total_cards,
            "has_more": result.has_more,
        }
        # Only the terse summary goes back to the model
        return ToolOutcome(
            payload=payload,
            content=json.dumps(result.summary),
            candidates=result.details,
        )

    def _run_select(self, args: dict[str, Any], history: list[BaseMessage]) -> ToolOutcome:
        missing = [f for f in ("set_code", "collector_number") if not args.get(f)]
        if missing:
            return error_outcome(f"Missing required field(s): {', '.join(missing)}")

        set_code = str(args["set_code"])
        number = str(args["collector_number"])
        summary = latest_search_summary(history)
        if summary is None:
            return error_outcome("No scryfall_search result to select from. Search first.")
        match = next(
            (
                entry for entry in summary
                if str(entry.get("set", "")).lower() == set_code.lower()
                and str(entry.get("collector_number")) == number
            ),
            None,
        )
        if match is None:
            return error_outcome(
                f"{set_code} #{number} is not in the latest scryfall_search result."
            )

        # Record the codes exactly as Scryfall reported them
        selected = SelectedCard(match["set"], str(match["collector_number"]), args.get("image_url"))
        payload = {
            "status": "success",
            "set_code": selected.set_code,
            "collector_number": selected.collector_number,
            "image_url": selected.image_url,
        }
        logger.info("Card selected: %s #%s", selected.set_code, selected.collector_number)
        return ToolOutcome(payload=payload, content=json.dumps(payload), selected=selected)

    def _run_reference(self, args: dict[str, Any], history: list[BaseMessage]) -> ToolOutcome:
        text = search_reference(str(args.get("query", "")))
        return ToolOutcome(payload={"status": "success", "message": text}, content=text)

    # ── Tracker tools ────────────────────────────────────────────────

    def _find_operation(self, name: str) -> Operation | None:
        return next((op for op in self.tracker.operations() if tool_name_for(op) == name), None)

    def _run_tracker(self, name: str, args: dict[str, Any]) -> ToolOutcome:
        operation = self._find_operation(name)
        if operation is None:
            return error_outcome(f"The tracker has no operation matching {name}")

        path_params = {k: args[k] for k in operation.path_param_names if k in args}
        query_params = {k: args[k] for k in operation.query_param_names if k in args}
        body = args.get("body")
        if body is None and operation.body_schema is not None:
            # Tolerate body fields supplied at the top level
            props = operation.body_schema.get("properties", {})
            body = {k: args[k] for k in props if k in args} or None

        def _call(token: str) -> Any:
            return self.tracker.call(
                operation, token=token,
                path_params=path_params, query_params=query_params, body=body,
            )

        try:
            result = _call(self.credentials.get_bearer_token())
        except TrackerAPIError as exc:
            if exc.status_code != 401:
                raise
            logger.info("Tracker rejected the bearer token; exchanging a new one")
            self.credentials.invalidate_bearer_token()
            result = _call(self.credentials.get_bearer_token())

        payload = {
            "status": "success",
            "message": flatten_references(result) if result is not None else "OK",
        }
        return ToolOutcome(payload=payload, content=json.dumps(payload, default=str))
