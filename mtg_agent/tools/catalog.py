"""Tool descriptors exposed to the model.

Descriptors use the OpenAI function format
(``{"type": "function", "function": {name, description, parameters}}``),
which ``ChatAnthropic.bind_tools`` converts to Anthropic tool definitions.

Two pools exist:

* **static** tools, fixed at import time: Scryfall search, the
  ``select_card`` marker and (when a reference document is installed)
  ``search_reference``;
* **tracker** tools, translated from the backend's API schema, one per
  operation, all sharing the ``tracker_`` prefix so the dispatcher can
  route them to a single generic executor.
"""

from __future__ import annotations

import logging
import re
from enum import StrEnum
from typing import Any

from mtg_agent.config import TRACKER_TOOL_PREFIX
from mtg_agent.services.tracker_client import Operation, TrackerClient, get_tracker_client
from mtg_agent.tools import reference

logger = logging.getLogger(__name__)

SEARCH_TOOL = "scryfall_search"
SELECT_TOOL = "select_card"
REFERENCE_TOOL = "search_reference"

COLOR_CODES = ["W", "U", "B", "R", "G", "C"]
SORT_FIELDS = [
    "name", "set", "released", "rarity", "color", "usd", "tix", "eur",
    "cmc", "power", "toughness", "edhrec", "penny", "artist",
]

# Anthropic tool names must match ^[a-zA-Z0-9_-]{1,64}$
_TOOL_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")
_MAX_TOOL_NAME = 64

# Swagger/OpenAPI keywords that are not part of JSON Schema proper
_NON_SCHEMA_KEYS = {"example", "examples", "xml", "externalDocs", "discriminator", "nullable"}


class Phase(StrEnum):
    """Workflow stage that decides instructions and tool catalog."""

    IDENTIFY = "identify"
    OPERATE = "operate"


def _function(name: str, description: str, parameters: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


SCRYFALL_SEARCH = _function(
    SEARCH_TOOL,
    "Search Magic: The Gathering cards on Scryfall. All filters are optional and "
    "combined with AND. Returns the matching paper printings as set code + "
    "collector number pairs.",
    {
        "type": "object",
        "properties": {
            "name": {
                "type": "string",
                "description": "Card name (exact or partial). Example: 'Stomping Ground'.",
            },
            "oracle_text": {
                "type": "string",
                "description": "Words in the rules (Oracle) text. Example: 'proliferate'.",
            },
            "type_line": {
                "type": "string",
                "description": "Words in the type line. Example: 'Legendary Creature'.",
            },
            "reserved": {
                "type": "boolean",
                "description": "Only cards on the Reserved List.",
            },
            "colors": {
                "type": "array",
                "items": {"type": "string", "enum": COLOR_CODES},
                "description": "Restrict results to these colors. Example: ['R', 'G'].",
            },
            "set": {
                "type": "string",
                "description": "Set code, e.g. 'GPT' for Guildpact.",
            },
            "page": {"type": "integer", "description": "Results page (default 1)."},
            "order": {
                "type": "string",
                "enum": SORT_FIELDS,
                "description": "Sort field. Default: 'name'.",
            },
            "dir": {
                "type": "string",
                "enum": ["auto", "asc", "desc"],
                "description": "Sort direction.",
            },
        },
    },
)

SELECT_CARD = _function(
    SELECT_TOOL,
    "Call this once a single card printing has been unambiguously identified in the "
    "most recent scryfall_search result. Records the set code and collector number "
    "so collection operations become available.",
    {
        "type": "object",
        "properties": {
            "set_code": {"type": "string", "description": "Set code, e.g. 'GPT'."},
            "collector_number": {
                "type": "string",
                "description": "Collector number within the set, e.g. '165'.",
            },
            "image_url": {"type": "string", "description": "URL of the normal card image."},
        },
        "required": ["set_code", "collector_number"],
    },
)

SEARCH_REFERENCE = _function(
    REFERENCE_TOOL,
    "Look up the reference notes on set codes, collector numbers, finishes, "
    "conditions and collection conventions. Not authoritative for card data; "
    "confirm printings with scryfall_search.",
    {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Question or keywords."},
        },
        "required": ["query"],
    },
)


def static_tools() -> list[dict[str, Any]]:
    tools = [SCRYFALL_SEARCH, SELECT_CARD]
    if reference.is_available():
        tools.append(SEARCH_REFERENCE)
    return tools


# ── Backend translation ─────────────────────────────────────────────


def tool_name_for(operation: Operation) -> str:
    """``tracker_<operationId>``, or ``tracker_<method>_<path>`` without one."""
    if operation.operation_id:
        raw = f"{TRACKER_TOOL_PREFIX}{operation.operation_id}"
    else:
        raw = f"{TRACKER_TOOL_PREFIX}{operation.method.lower()}_{operation.path}"
    return _TOOL_NAME_UNSAFE.sub("_", raw)[:_MAX_TOOL_NAME]


def _clean_schema(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {k: _clean_schema(v) for k, v in schema.items() if k not in _NON_SCHEMA_KEYS}
    if isinstance(schema, list):
        return [_clean_schema(item) for item in schema]
    return schema


def _param_property(param: dict[str, Any]) -> dict[str, Any]:
    schema = param.get("schema") or {}
    prop: dict[str, Any] = {"type": schema.get("type", "string")}
    if prop["type"] == "array":
        prop["items"] = _clean_schema(schema.get("items") or {"type": "string"})
    if "enum" in schema:
        prop["enum"] = schema["enum"]
    if param.get("description"):
        prop["description"] = param["description"]
    return prop


def operation_to_tool(operation: Operation) -> dict[str, Any]:
    """Translate one backend operation into a tool descriptor.

    Path and query parameters become top-level scalar properties; the
    request body, when present, is nested under a single ``body`` property.
    """
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in operation.parameters:
        properties[param["name"]] = _param_property(param)
        if param["required"]:
            required.append(param["name"])

    if operation.body_schema is not None:
        properties["body"] = _clean_schema(operation.body_schema)
        if operation.body_required:
            required.append("body")

    parameters: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = required

    description = operation.description or f"{operation.method} {operation.path}"
    return _function(tool_name_for(operation), description, parameters)


def tracker_tools(client: TrackerClient | None = None) -> list[dict[str, Any]]:
    """Tool descriptors for every backend operation.

    An unreachable or malformed schema yields an empty list; the request
    carries on without collection tools.
    """
    client = client or get_tracker_client()
    try:
        operations = client.operations()
    except Exception as exc:
        logger.warning("Could not load tracker schema, no tracker tools this turn: %s", exc)
        return []
    tools = [operation_to_tool(op) for op in operations]
    logger.debug("Translated %d tracker operations into tools", len(tools))
    return tools


def tools_for_phase(phase: Phase, client: TrackerClient | None = None) -> list[dict[str, Any]]:
    """Return the catalog for *phase*.

    ``identify`` exposes the static tools only.  ``operate`` adds the
    tracker tools but leaves out ``select_card``: the search a selection was
    made from is no longer in the curated history, so switching cards has
    to start with a new ``scryfall_search`` (which returns the turn to
    ``identify``).
    """
    if phase == Phase.OPERATE:
        static = [t for t in static_tools() if t is not SELECT_CARD]
        return static + tracker_tools(client)
    return static_tools()
