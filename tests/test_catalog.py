"""Tests for tool descriptors and backend-operation translation."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from mtg_agent.services.tracker_client import Operation, TrackerAPIError, parse_operations
from mtg_agent.tools.catalog import (
    REFERENCE_TOOL,
    SEARCH_TOOL,
    SELECT_TOOL,
    Phase,
    operation_to_tool,
    static_tools,
    tool_name_for,
    tools_for_phase,
    tracker_tools,
)


def _names(tools: list[dict]) -> list[str]:
    return [t["function"]["name"] for t in tools]


def _op(schema: dict, operation_id: str) -> Operation:
    return next(op for op in parse_operations(schema) if op.operation_id == operation_id)


class TestToolNames:
    def test_uses_operation_id(self):
        assert tool_name_for(Operation("POST", "/cards", operation_id="addCard")) == "tracker_addCard"

    def test_falls_back_to_method_and_path(self):
        assert tool_name_for(Operation("PUT", "/cards/{id}")) == "tracker_put__cards__id_"

    def test_name_is_capped_at_64_characters(self):
        name = tool_name_for(Operation("GET", "/" + "x" * 100))
        assert len(name) == 64
        assert name.startswith("tracker_get__")


class TestOperationToTool:
    def test_body_is_nested_under_body_property(self, tracker_schema):
        tool = operation_to_tool(_op(tracker_schema, "addCard"))
        params = tool["function"]["parameters"]
        assert tool["type"] == "function"
        assert tool["function"]["description"] == "Add copies of a card to the collection"
        assert params["required"] == ["body"]
        body = params["properties"]["body"]
        assert body["required"] == ["set_code", "collector_number"]
        assert body["properties"]["finishes"]["properties"]["foil"] == {"type": "integer"}

    def test_non_schema_keywords_are_removed(self, tracker_schema):
        tool = operation_to_tool(_op(tracker_schema, "addCard"))
        set_code = tool["function"]["parameters"]["properties"]["body"]["properties"]["set_code"]
        assert set_code == {"type": "string"}

    def test_path_params_are_required_scalars(self, tracker_schema):
        tool = operation_to_tool(_op(tracker_schema, "deleteCard"))
        params = tool["function"]["parameters"]
        assert params["properties"]["id"] == {"type": "string", "description": "Card id"}
        assert params["required"] == ["id"]

    def test_optional_query_params(self, tracker_schema):
        tool = operation_to_tool(_op(tracker_schema, "listCards"))
        params = tool["function"]["parameters"]
        assert set(params["properties"]) == {"set_code", "collector_number"}
        assert "required" not in params

    def test_description_falls_back_to_method_and_path(self):
        tool = operation_to_tool(Operation("GET", "/stats"))
        assert tool["function"]["description"] == "GET /stats"


class TestCatalogByPhase:
    def test_static_tools_include_reference_when_available(self):
        with patch("mtg_agent.tools.catalog.reference.is_available", return_value=True):
            assert _names(static_tools()) == [SEARCH_TOOL, SELECT_TOOL, REFERENCE_TOOL]

    def test_reference_tool_hidden_without_document(self):
        with patch("mtg_agent.tools.catalog.reference.is_available", return_value=False):
            assert _names(static_tools()) == [SEARCH_TOOL, SELECT_TOOL]

    def test_identify_phase_has_no_tracker_tools(self):
        client = MagicMock()
        names = _names(tools_for_phase(Phase.IDENTIFY, client))
        assert not any(n.startswith("tracker_") for n in names)
        client.operations.assert_not_called()

    def test_operate_phase_adds_tracker_tools(self, tracker_schema):
        client = MagicMock()
        client.operations.return_value = parse_operations(tracker_schema)
        names = _names(tools_for_phase(Phase.OPERATE, client))
        assert SEARCH_TOOL in names
        assert SELECT_TOOL not in names
        assert {"tracker_listCards", "tracker_addCard", "tracker_deleteCard"} <= set(names)

    def test_unreachable_backend_yields_no_tracker_tools(self):
        client = MagicMock()
        client.operations.side_effect = TrackerAPIError("down", status_code=503)
        assert tracker_tools(client) == []
