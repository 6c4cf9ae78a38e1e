"""Tests for history curation and state recovery."""

from __future__ import annotations

import json

from langchain_core.messages import AIMessage, ChatMessage, HumanMessage, SystemMessage, ToolMessage

from mtg_agent.history import SelectedCard, curate, find_selected_card, latest_search_summary

# ── Helpers ──────────────────────────────────────────────────────────


def _call(call_id: str, name: str, args: dict | None = None) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"id": call_id, "name": name, "args": args or {}, "type": "tool_call"}],
    )


def _result(call_id: str, name: str, payload) -> ToolMessage:
    return ToolMessage(content=json.dumps(payload), tool_call_id=call_id, name=name)


def _search(call_id: str, *printings: tuple[str, str]) -> list:
    summary = [{"set": s, "collector_number": n} for s, n in printings]
    return [_call(call_id, "scryfall_search", {"name": "Stomping Ground"}), _result(call_id, "scryfall_search", summary)]


def _select(call_id: str, set_code: str, number: str, status: str = "success") -> list:
    payload = {"status": status, "set_code": set_code, "collector_number": number, "image_url": None}
    return [
        _call(call_id, "select_card", {"set_code": set_code, "collector_number": number}),
        _result(call_id, "select_card", payload),
    ]


def _tool_ids(messages) -> list[str]:
    ids = []
    for m in messages:
        if isinstance(m, AIMessage) and m.tool_calls:
            ids.append(m.tool_calls[0]["id"])
    return ids


def _assert_paired(messages):
    """Every call is immediately followed by its result and vice versa."""
    for i, m in enumerate(messages):
        if isinstance(m, AIMessage) and m.tool_calls:
            nxt = messages[i + 1]
            assert isinstance(nxt, ToolMessage)
            assert nxt.tool_call_id == m.tool_calls[0]["id"]
        if isinstance(m, ToolMessage):
            prev = messages[i - 1]
            assert isinstance(prev, AIMessage) and prev.tool_calls
            assert prev.tool_calls[0]["id"] == m.tool_call_id


# ── Tests: curate ────────────────────────────────────────────────────


class TestCurateCleanup:
    def test_strips_leading_instructions(self):
        curated = curate([
            SystemMessage(content="old instructions"),
            ChatMessage(role="developer", content="old note"),
            HumanMessage(content="hi"),
        ])
        assert curated == [HumanMessage(content="hi")]

    def test_drops_trailing_candidate_listing(self, card_records):
        history = [HumanMessage(content="Stomping Ground"), *_search("s1", ("GPT", "165"), ("RNA", "259"))]
        curated = curate([*history, AIMessage(content=card_records)])
        assert not any(isinstance(m.content, list) and m.content for m in curated)
        assert _tool_ids(curated) == ["s1"]

    def test_drops_mid_history_developer_notes(self):
        curated = curate([
            HumanMessage(content="add it"),
            ChatMessage(role="developer", content="summarize"),
            AIMessage(content="Done."),
        ])
        assert [m.content for m in curated] == ["add it", "Done."]

    def test_multi_call_message_is_split(self):
        combined = AIMessage(content="", tool_calls=[
            {"id": "s1", "name": "scryfall_search", "args": {}, "type": "tool_call"},
            {"id": "r1", "name": "search_reference", "args": {}, "type": "tool_call"},
        ])
        curated = curate([
            HumanMessage(content="q"),
            combined,
            _result("s1", "scryfall_search", []),
            _result("r1", "search_reference", "text"),
        ])
        assert _tool_ids(curated) == ["s1", "r1"]
        _assert_paired(curated)


class TestCurateSuperseding:
    def test_only_latest_search_survives(self):
        curated = curate([
            HumanMessage(content="Stomping Ground"),
            *_search("s1", ("GPT", "165"), ("RNA", "259")),
            HumanMessage(content="the Guildpact one"),
            *_search("s2", ("GPT", "165")),
        ])
        assert _tool_ids(curated) == ["s2"]

    def test_selection_supersedes_older_search(self):
        curated = curate([
            HumanMessage(content="Stomping Ground from Guildpact"),
            *_search("s1", ("GPT", "165")),
            *_select("c1", "GPT", "165"),
        ])
        assert _tool_ids(curated) == ["c1"]

    def test_newer_search_supersedes_selection(self):
        curated = curate([
            HumanMessage(content="Stomping Ground from Guildpact"),
            *_select("c1", "GPT", "165"),
            HumanMessage(content="now Opt"),
            *_search("s2", ("XLN", "65")),
        ])
        assert _tool_ids(curated) == ["s2"]

    def test_failed_selection_keeps_earlier_successful_one(self):
        curated = curate([
            HumanMessage(content="Stomping Ground"),
            *_search("s1", ("GPT", "165"), ("RNA", "259")),
            HumanMessage(content="the Guildpact one"),
            *_select("c1", "GPT", "165"),
            HumanMessage(content="number 166 actually"),
            *_select("c2", "GPT", "166", status="error"),
        ])
        assert _tool_ids(curated) == ["c1"]
        assert find_selected_card(curated) == SelectedCard("GPT", "165")
        _assert_paired(curated)

    def test_failed_selection_keeps_search(self):
        curated = curate([
            HumanMessage(content="Stomping Ground"),
            *_search("s1", ("GPT", "165"), ("RNA", "259")),
            HumanMessage(content="the Zendikar one"),
            *_select("c1", "ZEN", "1", status="error"),
        ])
        assert _tool_ids(curated) == ["s1", "c1"]
        assert latest_search_summary(curated) == [
            {"set": "GPT", "collector_number": "165"},
            {"set": "RNA", "collector_number": "259"},
        ]
        assert find_selected_card(curated) is None

    def test_failed_selection_does_not_lock_phase(self):
        curated = curate([
            HumanMessage(content="Stomping Ground"),
            AIMessage(content="Which set?"),
            HumanMessage(content="Zendikar"),
            *_search("s1", ("GPT", "165")),
            *_select("c1", "ZEN", "1", status="error"),
        ])
        assert AIMessage(content="Which set?") in curated

    def test_tracker_calls_keep_latest_per_name(self):
        curated = curate([
            HumanMessage(content="add one"),
            _call("t1", "tracker_addCard"), _result("t1", "tracker_addCard", {"status": "success"}),
            HumanMessage(content="add another"),
            _call("t2", "tracker_addCard"), _result("t2", "tracker_addCard", {"status": "success"}),
        ])
        assert _tool_ids(curated) == ["t2"]


class TestCuratePhaseLock:
    def test_replies_before_selection_are_dropped(self):
        curated = curate([
            HumanMessage(content="Stomping Ground"),
            AIMessage(content="Which set?"),
            HumanMessage(content="Guildpact"),
            *_search("s1", ("GPT", "165")),
            *_select("c1", "GPT", "165"),
            AIMessage(content="Selected GPT #165. What should I do with it?"),
        ])
        texts = [m.content for m in curated if not (isinstance(m, AIMessage) and m.tool_calls)]
        assert "Which set?" not in texts
        assert "Stomping Ground" in texts
        assert texts[-1].startswith("Selected GPT #165")


class TestCurateRetention:
    def test_keeps_only_latest_turns(self):
        history = []
        for i in range(6):
            history += [HumanMessage(content=f"q{i}"), AIMessage(content=f"a{i}")]
        curated = curate(history, max_turns=5)
        assert [m.content for m in curated] == ["a3", "q4", "a4", "q5", "a5"]

    def test_tool_pairs_do_not_count_as_turns(self):
        history = [
            HumanMessage(content="q0"),
            *_search("s1", ("GPT", "165")),
            AIMessage(content="a0"),
        ]
        curated = curate(history, max_turns=2)
        assert len(curated) == 4


class TestCuratePairing:
    def test_orphan_call_is_dropped(self):
        curated = curate([HumanMessage(content="q"), _call("s1", "scryfall_search")])
        assert curated == [HumanMessage(content="q")]

    def test_orphan_result_is_dropped(self):
        curated = curate([HumanMessage(content="q"), _result("s1", "scryfall_search", [])])
        assert curated == [HumanMessage(content="q")]

    def test_separated_result_is_moved_next_to_its_call(self):
        curated = curate([
            HumanMessage(content="q"),
            _call("s1", "scryfall_search"),
            AIMessage(content="interleaved"),
            _result("s1", "scryfall_search", []),
        ])
        _assert_paired(curated)
        assert curated[-1].content == "interleaved"


# ── Tests: state recovery ────────────────────────────────────────────


class TestFindSelectedCard:
    def test_returns_latest_successful_selection(self):
        messages = [*_search("s1", ("GPT", "165")), *_select("c1", "GPT", "165")]
        assert find_selected_card(messages) == SelectedCard("GPT", "165")

    def test_failed_selection_is_ignored(self):
        messages = [*_search("s1", ("GPT", "165")), *_select("c1", "XXX", "1", status="error")]
        assert find_selected_card(messages) is None

    def test_newer_search_clears_selection(self):
        messages = [*_select("c1", "GPT", "165"), *_search("s2", ("XLN", "65"))]
        assert find_selected_card(messages) is None

    def test_tracker_calls_after_selection_keep_it(self):
        messages = [
            *_select("c1", "GPT", "165"),
            _call("t1", "tracker_addCard"), _result("t1", "tracker_addCard", {"status": "success"}),
        ]
        assert find_selected_card(messages) == SelectedCard("GPT", "165")

    def test_empty_history(self):
        assert find_selected_card([]) is None


class TestLatestSearchSummary:
    def test_returns_newest_summary(self):
        messages = [*_search("s1", ("GPT", "165"), ("RNA", "259")), *_search("s2", ("RNA", "259"))]
        assert latest_search_summary(messages) == [{"set": "RNA", "collector_number": "259"}]

    def test_none_without_search(self):
        assert latest_search_summary([HumanMessage(content="hi")]) is None
