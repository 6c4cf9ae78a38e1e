"""Shared test fixtures for the MTG collection agent test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py and the credential provider
    never reach for AWS.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("TRACKER_USERNAME", "collector")
    os.environ.setdefault("TRACKER_PASSWORD", "s3cret")
    os.environ.setdefault("TRACKER_API_URL", "http://tracker.test")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ.setdefault("PHASE_ROUTING", "inspect")


@pytest.fixture
def mock_http_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        mock.content = b"" if data is None else str(data).encode()
        return mock

    return _make


@pytest.fixture
def card_records():
    """Two normalized Stomping Ground printings, as ScryfallClient returns them."""
    return [
        {
            "name": "Stomping Ground",
            "set": "GPT",
            "set_name": "Guildpact",
            "collector_number": "165",
            "type_line": "Land — Mountain Forest",
            "oracle_text": "({T}: Add {R} or {G}.)",
            "rarity": "rare",
            "colors": [],
            "image_url": "https://cards.scryfall.io/normal/front/gpt-165.jpg",
            "prices": {"usd": "80.00"},
            "finishes": ["nonfoil"],
            "scryfall_uri": "https://scryfall.com/card/gpt/165",
        },
        {
            "name": "Stomping Ground",
            "set": "RNA",
            "set_name": "Ravnica Allegiance",
            "collector_number": "259",
            "type_line": "Land — Mountain Forest",
            "oracle_text": "({T}: Add {R} or {G}.)",
            "rarity": "rare",
            "colors": [],
            "image_url": "https://cards.scryfall.io/normal/front/rna-259.jpg",
            "prices": {"usd": "15.00"},
            "finishes": ["nonfoil", "foil"],
            "scryfall_uri": "https://scryfall.com/card/rna/259",
        },
    ]


@pytest.fixture
def tracker_schema():
    """A small Swagger 2.0 document in the shape the tracker backend serves."""
    return {
        "swagger": "2.0",
        "basePath": "/api",
        "paths": {
            "/cards": {
                "get": {
                    "operationId": "listCards",
                    "summary": "List cards in the collection",
                    "parameters": [
                        {"name": "set_code", "in": "query", "type": "string"},
                        {"name": "collector_number", "in": "query", "type": "string"},
                    ],
                },
                "post": {
                    "operationId": "addCard",
                    "description": "Add copies of a card to the collection",
                    "parameters": [
                        {
                            "name": "card",
                            "in": "body",
                            "required": True,
                            "schema": {"$ref": "#/definitions/Card"},
                        },
                    ],
                },
            },
            "/cards/{id}": {
                "parameters": [
                    {"name": "id", "in": "path", "type": "string", "description": "Card id"},
                ],
                "delete": {"operationId": "deleteCard", "summary": "Remove a card"},
                "put": {
                    "parameters": [
                        {"name": "card", "in": "body", "schema": {"$ref": "#/definitions/Card"}},
                    ],
                },
            },
        },
        "definitions": {
            "Card": {
                "type": "object",
                "required": ["set_code", "collector_number"],
                "properties": {
                    "set_code": {"type": "string", "example": "GPT"},
                    "collector_number": {"type": "string"},
                    "quantity": {"type": "integer"},
                    "finishes": {"$ref": "#/definitions/Finishes"},
                },
            },
            "Finishes": {
                "type": "object",
                "properties": {
                    "nonfoil": {"type": "integer"},
                    "foil": {"type": "integer"},
                },
            },
        },
    }
