"""Tests for the ScryfallClient service."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from mtg_agent.services.cache import LRUCache
from mtg_agent.services.scryfall_client import (
    INITIAL_BACKOFF_SECONDS,
    MAX_RETRIES,
    ScryfallAPIError,
    ScryfallClient,
    build_query,
    normalize_card,
)

GPT_CARD = {
    "object": "card",
    "name": "Stomping Ground",
    "set": "gpt",
    "set_name": "Guildpact",
    "collector_number": "165",
    "type_line": "Land — Mountain Forest",
    "oracle_text": "({T}: Add {R} or {G}.)",
    "rarity": "rare",
    "colors": [],
    "image_uris": {"small": "s.jpg", "normal": "n.jpg"},
    "prices": {"usd": "80.00"},
    "finishes": ["nonfoil"],
    "scryfall_uri": "https://scryfall.com/card/gpt/165",
}


def _search_page(*cards, has_more=False) -> dict:
    return {"object": "list", "total_cards": len(cards), "has_more": has_more, "data": list(cards)}


# ── Tests: build_query ───────────────────────────────────────────────


class TestBuildQuery:
    def test_name_only_is_restricted_to_paper_prints(self):
        assert build_query(name="Stomping Ground") == 'name:"Stomping Ground" game:paper unique:prints'

    def test_filters_are_combined_in_order(self):
        query = build_query(
            name="Stomping Ground", type_line="Land", colors=["R", "G"], set="GPT",
        )
        assert query == 'name:"Stomping Ground" t:"Land" c:rg set:gpt game:paper unique:prints'

    def test_oracle_text_and_reserved(self):
        query = build_query(oracle_text="proliferate", reserved=True)
        assert query.startswith('o:"proliferate" is:reserved')

    def test_reserved_false_is_omitted(self):
        assert "is:reserved" not in build_query(name="X", reserved=False)

    def test_no_filters_still_scoped(self):
        assert build_query() == "game:paper unique:prints"


# ── Tests: normalize_card ────────────────────────────────────────────


class TestNormalizeCard:
    def test_set_code_is_upper_cased(self):
        card = normalize_card(GPT_CARD)
        assert card["set"] == "GPT"
        assert card["collector_number"] == "165"
        assert card["image_url"] == "n.jpg"

    def test_double_faced_card_uses_first_face(self):
        dfc = {
            "name": "Delver of Secrets // Insectile Aberration",
            "set": "isd",
            "collector_number": "51",
            "card_faces": [
                {"oracle_text": "Front", "image_uris": {"normal": "front.jpg"}},
                {"oracle_text": "Back", "image_uris": {"normal": "back.jpg"}},
            ],
        }
        card = normalize_card(dfc)
        assert card["image_url"] == "front.jpg"
        assert card["oracle_text"] == "Front\n//\nBack"


# ── Tests: search_cards ──────────────────────────────────────────────


class TestSearchCards:
    def test_returns_summary_and_details(self, mock_http_response):
        client = ScryfallClient(cache=LRUCache())
        with patch.object(
            client._client, "request", return_value=mock_http_response(_search_page(GPT_CARD)),
        ) as mock_req:
            result = client.search_cards(name="Stomping Ground", set="gpt")

        assert result.summary == [{"set": "GPT", "collector_number": "165"}]
        assert result.details[0]["name"] == "Stomping Ground"
        assert result.total_cards == 1
        params = mock_req.call_args[1]["params"]
        assert params["q"] == 'name:"Stomping Ground" set:gpt game:paper unique:prints'

    def test_not_found_is_an_empty_result(self, mock_http_response):
        client = ScryfallClient(cache=LRUCache())
        not_found = {"object": "error", "code": "not_found", "status": 404}
        with patch.object(
            client._client, "request", return_value=mock_http_response(not_found, 404),
        ):
            result = client.search_cards(name="Nonexistent Card")
        assert result.summary == []
        assert result.details == []

    def test_sort_options_are_passed_through(self, mock_http_response):
        client = ScryfallClient(cache=LRUCache())
        with patch.object(
            client._client, "request", return_value=mock_http_response(_search_page(GPT_CARD)),
        ) as mock_req:
            client.search_cards(name="Stomping Ground", order="released", dir="desc", page=2)
        params = mock_req.call_args[1]["params"]
        assert params["order"] == "released"
        assert params["dir"] == "desc"
        assert params["page"] == 2

    def test_results_are_cached(self, mock_http_response):
        client = ScryfallClient(cache=LRUCache())
        with patch.object(
            client._client, "request", return_value=mock_http_response(_search_page(GPT_CARD)),
        ) as mock_req:
            client.search_cards(name="Stomping Ground")
            client.search_cards(name="Stomping Ground")
            assert mock_req.call_count == 1


# ── Tests: retry logic ──────────────────────────────────────────────


class TestRetryLogic:
    @patch("mtg_agent.services.scryfall_client.time.sleep")
    def test_retries_on_timeout(self, mock_sleep, mock_http_response):
        client = ScryfallClient(cache=LRUCache())
        with patch.object(
            client._client, "request",
            side_effect=[
                httpx.TimeoutException("timeout"),
                mock_http_response(_search_page(GPT_CARD)),
            ],
        ):
            result = client.search_cards(name="Stomping Ground")
            assert len(result.summary) == 1
            mock_sleep.assert_called_once_with(INITIAL_BACKOFF_SECONDS)

    @patch("mtg_agent.services.scryfall_client.time.sleep")
    def test_retries_on_500_error(self, mock_sleep, mock_http_response):
        client = ScryfallClient(cache=LRUCache())
        with patch.object(
            client._client, "request",
            side_effect=[
                mock_http_response({"error": "down"}, 503),
                mock_http_response(_search_page(GPT_CARD)),
            ],
        ):
            result = client.search_cards(name="Stomping Ground")
            assert len(result.summary) == 1

    @patch("mtg_agent.services.scryfall_client.time.sleep")
    def test_does_not_retry_on_400_error(self, mock_sleep, mock_http_response):
        client = ScryfallClient(cache=LRUCache())
        with patch.object(
            client._client, "request",
            return_value=mock_http_response({"details": "bad query"}, 400),
        ):
            with pytest.raises(ScryfallAPIError) as exc_info:
                client.search_cards(name="x")
            assert exc_info.value.status_code == 400
            mock_sleep.assert_not_called()

    @patch("mtg_agent.services.scryfall_client.time.sleep")
    def test_raises_after_max_retries(self, mock_sleep):
        client = ScryfallClient(cache=LRUCache())
        with patch.object(
            client._client, "request",
            side_effect=httpx.ConnectError("refused"),
        ):
            with pytest.raises(ScryfallAPIError, match="after"):
                client.search_cards(name="Stomping Ground")
            assert mock_sleep.call_count == MAX_RETRIES
