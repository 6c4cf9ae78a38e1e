"""History curation and state recovery from replayed message history.

The client resends everything it received on the previous turn.  Before
that history goes back to the model it is curated:

1. leading system / developer entries are stripped (fresh ones are
   prepended every turn) and so are any later developer notes;
2. a trailing structured assistant entry (the candidate listing shown to
   the user) is dropped, as is any other structured assistant entry;
3. tool call/result pairs are superseded: only the newest pair per tool
   name survives, a card selection is dropped once a newer search exists,
   and searches older than the retained selection are dropped.  Failed
   selections only survive while no successful one exists;
4. once a successful selection is retained, assistant replies older than
   it are dropped so the context centres on the chosen card;
5. only the newest ``HISTORY_MAX_TURNS`` plain user/assistant turns are kept;
6. finally every retained call is emitted immediately followed by its
   result, and calls or results without a partner are discarded.

Phase and the selected card are derived from the curated history alone;
nothing is kept between requests.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage

from mtg_agent.config import HISTORY_MAX_TURNS
from mtg_agent.messages import is_developer, is_structured, is_text_turn, text_of
from mtg_agent.tools.catalog import SEARCH_TOOL, SELECT_TOOL

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SelectedCard:
    """A printing the model asserted as unambiguous via ``select_card``."""

    set_code: str
    collector_number: str
    image_url: str | None = None


@dataclass
class _Pair:
    name: str
    call_index: int
    result_index: int


def _split_tool_calls(messages: list[BaseMessage]) -> list[BaseMessage]:
    """One ``AIMessage`` per tool call, with any text as its own reply."""
    out: list[BaseMessage] = []
    for message in messages:
        if isinstance(message, AIMessage) and message.tool_calls:
            text = text_of(message.content)
            if text:
                out.append(AIMessage(content=text))
            for call in message.tool_calls:
                out.append(AIMessage(content="", tool_calls=[call]))
        else:
            out.append(message)
    return out


def _find_pairs(messages: list[BaseMessage]) -> list[_Pair]:
    """Complete call/result pairs, ordered by call position."""
    results: dict[str, int] = {}
    for i, message in enumerate(messages):
        if isinstance(message, ToolMessage) and message.tool_call_id not in results:
            results[message.tool_call_id] = i

    pairs: list[_Pair] = []
    seen: set[str] = set()
    for i, message in enumerate(messages):
        if not (isinstance(message, AIMessage) and message.tool_calls):
            continue
        call = message.tool_calls[0]
        call_id = call.get("id")
        if not call_id or call_id in seen or call_id not in results:
            continue
        seen.add(call_id)
        pairs.append(_Pair(call["name"], i, results[call_id]))
    return pairs


def _payload(message: BaseMessage) -> Any:
    try:
        return json.loads(text_of(message.content))
    except (TypeError, ValueError):
        return None


def _succeeded(message: BaseMessage) -> bool:
    payload = _payload(message)
    return isinstance(payload, dict) and payload.get("status") == "success"


def _superseded(pairs: list[_Pair], messages: list[BaseMessage]) -> list[_Pair]:
    """Pairs made stale by a newer pair.

    A failed selection never supersedes a successful one, and only a
    successful selection makes the search it was picked from stale.
    """
    latest: dict[str, _Pair] = {}
    for pair in pairs:
        if pair.name != SELECT_TOOL:
            latest[pair.name] = pair
    stale = [p for p in pairs if p.name != SELECT_TOOL and latest[p.name] is not p]

    selections = [p for p in pairs if p.name == SELECT_TOOL]
    succeeded = [p for p in selections if _succeeded(messages[p.result_index])]
    selection = (succeeded or selections or [None])[-1]
    stale.extend(p for p in selections if p is not selection)

    search = latest.get(SEARCH_TOOL)
    if search and selection:
        if search.call_index > selection.call_index:
            stale.append(selection)
        elif selection in succeeded:
            stale.append(search)
    return stale


def _repair_pairs(messages: list[BaseMessage]) -> list[BaseMessage]:
    """Place each result right after its call; drop anything unpaired."""
    results: dict[str, ToolMessage] = {}
    for message in messages:
        if isinstance(message, ToolMessage):
            results.setdefault(message.tool_call_id, message)

    out: list[BaseMessage] = []
    emitted: set[str] = set()
    for message in messages:
        if isinstance(message, ToolMessage):
            continue
        if isinstance(message, AIMessage) and message.tool_calls:
            call_id = message.tool_calls[0].get("id")
            if call_id in results and call_id not in emitted:
                out.extend([message, results[call_id]])
                emitted.add(call_id)
            else:
                logger.debug("Dropping unpaired tool call %s", call_id)
            continue
        out.append(message)
    return out


def curate(
    messages: list[BaseMessage],
    max_turns: int = HISTORY_MAX_TURNS,
) -> list[BaseMessage]:
    """Return a bounded, de-duplicated copy of *messages* safe to replay."""
    msgs = list(messages)

    while msgs and (isinstance(msgs[0], SystemMessage) or is_developer(msgs[0])):
        msgs.pop(0)
    if msgs and is_structured(msgs[-1]):
        msgs.pop()

    msgs = [
        m for m in msgs
        if not (isinstance(m, SystemMessage) or is_developer(m) or is_structured(m))
    ]
    msgs = _split_tool_calls(msgs)

    # Superseding
    pairs = _find_pairs(msgs)
    drop: set[int] = set()
    for pair in _superseded(pairs, msgs):
        drop.update((pair.call_index, pair.result_index))

    # Phase lock: replies older than the retained selection are noise
    retained = [p for p in pairs if p.call_index not in drop]
    selection = next(
        (
            p for p in reversed(retained)
            if p.name == SELECT_TOOL and _succeeded(msgs[p.result_index])
        ),
        None,
    )
    if selection is not None:
        drop.update(
            i for i, m in enumerate(msgs[: selection.call_index])
            if isinstance(m, AIMessage) and is_text_turn(m)
        )

    # Bounded retention of plain turns, newest first
    kept_turns = 0
    for i in range(len(msgs) - 1, -1, -1):
        if i in drop or not is_text_turn(msgs[i]):
            continue
        if kept_turns >= max_turns:
            drop.add(i)
        else:
            kept_turns += 1

    curated = _repair_pairs([m for i, m in enumerate(msgs) if i not in drop])
    logger.debug("Curated history: %d → %d messages", len(messages), len(curated))
    return curated


# ── State recovery ───────────────────────────────────────────────────


def find_selected_card(messages: list[BaseMessage]) -> SelectedCard | None:
    """The newest successful selection not followed by a newer search."""
    pairs = _find_pairs(messages)
    for pair in reversed(pairs):
        if pair.name == SEARCH_TOOL:
            return None
        if pair.name != SELECT_TOOL:
            continue
        payload = _payload(messages[pair.result_index])
        if (
            isinstance(payload, dict)
            and payload.get("status") == "success"
            and payload.get("set_code")
            and payload.get("collector_number")
        ):
            return SelectedCard(
                set_code=payload["set_code"],
                collector_number=payload["collector_number"],
                image_url=payload.get("image_url"),
            )
    return None


def latest_search_summary(messages: list[BaseMessage]) -> list[dict[str, Any]] | None:
    """Summary list from the newest search result, or ``None`` if absent."""
    for pair in reversed(_find_pairs(messages)):
        if pair.name == SEARCH_TOOL:
            payload = _payload(messages[pair.result_index])
            return payload if isinstance(payload, list) else None
    return None
