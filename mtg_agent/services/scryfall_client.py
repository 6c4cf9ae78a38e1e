"""HTTP client for the Scryfall card-search API.

Scryfall docs: https://scryfall.com/docs/api/cards/search

Only ``GET /cards/search`` is used.  The query string is assembled from
structured filters and is always restricted to paper printings with one
result per printing (``game:paper unique:prints``), since the agent is
looking for a physical card to put in a collection.

Scryfall asks clients to send a descriptive User-Agent and to cache
results; both are handled here.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from mtg_agent.config import SCRYFALL_BASE_URL
from mtg_agent.services.cache import LRUCache
from mtg_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0
SEARCH_CACHE_TTL_SECONDS = 6 * 60 * 60

USER_AGENT = "mtg-collection-agent/1.0"


class ScryfallAPIError(Exception):
    """Raised when a Scryfall call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class CardSearchResult:
    """Normalized search result.

    ``summary`` is the terse half fed back to the model (set code and
    collector number only); ``details`` is the full record list shown to
    the user when several printings match.
    """

    summary: list[dict[str, str]] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)
    total_cards: int = 0
    has_more: bool = False


def build_query(
    *,
    name: str | None = None,
    oracle_text: str | None = None,
    type_line: str | None = None,
    reserved: bool | None = None,
    colors: list[str] | None = None,
    set: str | None = None,  # noqa: A002
) -> str:
    """Combine the filters conjunctively into a Scryfall query string."""
    terms: list[str] = []
    if name:
        terms.append(f'name:"{name}"')
    if oracle_text:
        terms.append(f'o:"{oracle_text}"')
    if type_line:
        terms.append(f't:"{type_line}"')
    if reserved:
        terms.append("is:reserved")
    if colors:
        terms.append(f"c:{''.join(colors).lower()}")
    if set:
        terms.append(f"set:{set.lower()}")
    terms.append("game:paper")
    terms.append("unique:prints")
    return " ".join(terms)


def _image_url(card: dict[str, Any]) -> str | None:
    if "image_uris" in card:
        return card["image_uris"].get("normal")
    # Double-faced cards carry images per face
    faces = card.get("card_faces") or []
    if faces and "image_uris" in faces[0]:
        return faces[0]["image_uris"].get("normal")
    return None


def normalize_card(card: dict[str, Any]) -> dict[str, Any]:
    """Reduce a Scryfall card object to the fields the agent works with."""
    oracle_text = card.get("oracle_text")
    if oracle_text is None and card.get("card_faces"):
        oracle_text = "\n//\n".join(f.get("oracle_text", "") for f in card["card_faces"])
    return {
        "name": card.get("name"),
        "set": card.get("set", "").upper(),
        "set_name": card.get("set_name"),
        "collector_number": card.get("collector_number"),
        "type_line": card.get("type_line"),
        "oracle_text": oracle_text,
        "rarity": card.get("rarity"),
        "colors": card.get("colors", []),
        "image_url": _image_url(card),
        "prices": card.get("prices", {}),
        "finishes": card.get("finishes", []),
        "scryfall_uri": card.get("scryfall_uri"),
    }


class ScryfallClient:
    """Thin wrapper around ``/cards/search`` with retries and caching."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        cache: LRUCache | None = None,
    ):
        self._base_url = base_url or SCRYFALL_BASE_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        self._cache = cache or LRUCache(ttl_seconds=SEARCH_CACHE_TTL_SECONDS)

    def _request(self, path: str, params: dict[str, Any]) -> dict[str, Any] | None:
        """GET with exponential-backoff retries.  ``None`` means no matches."""
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                with metrics.track("scryfall", f"GET {path}"):
                    response = self._client.request("GET", path, params=params)
                    if response.status_code == 404:
                        # Scryfall answers an empty search with a not_found error
                        return None
                    if response.status_code >= 500:
                        raise ScryfallAPIError(
                            f"Server error {response.status_code}: {response.text}",
                            status_code=response.status_code,
                        )
                    if response.status_code >= 400:
                        raise ScryfallAPIError(
                            f"Client error {response.status_code}: {response.text}",
                            status_code=response.status_code,
                        )
                    return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                logger.warning(
                    "Scryfall attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt, MAX_RETRIES, type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except ScryfallAPIError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Scryfall server error on attempt %d/%d. Retrying…",
                        attempt, MAX_RETRIES,
                    )
                else:
                    raise

            time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise ScryfallAPIError(
            f"Scryfall request failed after {MAX_RETRIES} retries: {last_error}"
        )

    def search_cards(
        self,
        *,
        name: str | None = None,
        oracle_text: str | None = None,
        type_line: str | None = None,
        reserved: bool | None = None,
        colors: list[str] | None = None,
        set: str | None = None,  # noqa: A002
        page: int | None = None,
        order: str | None = None,
        dir: str | None = None,  # noqa: A002
    ) -> CardSearchResult:
        """Search paper printings matching every supplied filter."""
        query = build_query(
            name=name, oracle_text=oracle_text, type_line=type_line,
            reserved=reserved, colors=colors, set=set,
        )
        params: dict[str, Any] = {"q": query}
        if page:
            params["page"] = page
        if order:
            params["order"] = order
        if dir:
            params["dir"] = dir

        cache_key = "search:" + "&".join(f"{k}={params[k]}" for k in sorted(params))
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug("Scryfall cache hit for %s", query)
            return cached

        logger.info("Scryfall search: %s", query)
        data = self._request("/cards/search", params)
        if data is None:
            result = CardSearchResult()
        else:
            details = [normalize_card(c) for c in data.get("data", [])]
            result = CardSearchResult(
                summary=[
                    {"set": d["set"], "collector_number": d["collector_number"]}
                    for d in details
                ],
                details=details,
                total_cards=data.get("total_cards", len(details)),
                has_more=bool(data.get("has_more")),
            )

        self._cache.put(cache_key, result)
        return result


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: ScryfallClient | None = None
_client_lock = threading.Lock()


def get_scryfall_client() -> ScryfallClient:
    """Return a module-level ScryfallClient singleton."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = ScryfallClient()
    return _client
