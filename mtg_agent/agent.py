"""LangGraph orchestration loop for the MTG collection agent.

Architecture:
  Every request replays the client's history, so the graph is compiled
  without a checkpointer and each invocation handles exactly one turn.
  Three nodes form the state machine:

    1. **route**  (ROUTING)         — derives the phase from the curated
                                      history (optionally confirmed by a
                                      cheap router model) and selects
                                      instructions + tool catalog
    2. **model**  (AWAITING_MODEL)  — calls the main model with tools bound
    3. **tools**  (EXECUTING_TOOLS) — runs the requested tool calls one at a
                                      time, in order, appending each result
                                      right after its call

  Routing:
    route → model → (tool calls?)     → tools → (candidates shown?) → END
                                              → model (loop)
                  → (no tool calls?)  → END   (DONE)

  Selecting a card inside ``tools`` switches to the operate phase at once:
  the next ``model`` call already sees the tracker tools.  When the last
  tool run is a search with several candidates, the candidate records are
  returned to the user directly and the model is not called again.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Annotated, Any, Iterator

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    ChatMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from mtg_agent.config import (
    MODEL_MAX_TOKENS,
    MODEL_NAME,
    MODEL_TEMPERATURE,
    PHASE_ROUTING,
    ROUTER_MODEL_NAME,
    TRACKER_TOOL_PREFIX,
)
from mtg_agent.history import SelectedCard, curate, find_selected_card
from mtg_agent.messages import DEVELOPER_ROLE, from_wire, text_of, to_model_input, to_wire_list
from mtg_agent.prompts import DEVELOPER_NOTE, ROUTER_PROMPT, TRACKER_FOLLOWUP_NOTE, get_instructions
from mtg_agent.services.credentials import get_credential_provider
from mtg_agent.services.metrics import metrics
from mtg_agent.tools.catalog import SEARCH_TOOL, Phase, tools_for_phase
from mtg_agent.tools.dispatcher import ToolDispatcher, UnknownToolError, error_outcome

logger = logging.getLogger(__name__)

RECURSION_LIMIT = 25


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict, total=False):
    """The state that flows through the graph for one turn.

    ``messages`` is the curated history plus everything produced this
    turn; the ``add_messages`` reducer appends node output.  The other
    keys are derived each turn and never leave the process.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    phase: Phase
    selected: SelectedCard | None
    instructions: str
    tools: list[dict[str, Any]]
    pending_tool_calls: list[dict[str, Any]]
    done: bool


# ── LLM builders ────────────────────────────────────────────────────


def _build_router_llm() -> ChatAnthropic:
    """Cheap model for the optional phase classifier (no tools)."""
    return ChatAnthropic(
        model=ROUTER_MODEL_NAME,
        api_key=get_credential_provider().get_llm_api_key(),
        temperature=0.0,
        max_tokens=20,
    )


def _build_llm() -> ChatAnthropic:
    """Main model; tools are bound per call since the catalog varies by phase."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=get_credential_provider().get_llm_api_key(),
        temperature=MODEL_TEMPERATURE,
        max_tokens=MODEL_MAX_TOKENS,
    )


# ── Node: route ──────────────────────────────────────────────────────


def _build_router_context(messages: list[BaseMessage], max_turns: int = 3) -> str:
    """Recent plain turns, truncated, for the classifier prompt."""
    recent = [
        m for m in messages[:-1]
        if isinstance(m, HumanMessage) or (isinstance(m, AIMessage) and not m.tool_calls)
    ][-(max_turns * 2):]
    if not recent:
        return ""
    lines = ["Recent conversation:"]
    for msg in recent:
        speaker = "User" if isinstance(msg, HumanMessage) else "Assistant"
        lines.append(f"  {speaker}: {text_of(msg.content)[:200]}")
    lines.append("")
    return "\n".join(lines) + "\n"


def _parse_phase(raw: str) -> Phase:
    """Classifier output → phase.  Anything unexpected means identify."""
    try:
        value = json.loads(raw.strip()).get("phase")
    except (ValueError, AttributeError):
        return Phase.IDENTIFY
    return Phase.OPERATE if value in (2, "2", "operate") else Phase.IDENTIFY


def _make_route_node():
    """Create the node that decides phase, instructions and tool catalog.

    A selection found in the curated history gates the operate phase.
    With ``PHASE_ROUTING=classify`` the router model additionally confirms
    that the new message concerns the selected card; its failures fall
    back to the identify phase.
    """
    router_llm = _build_router_llm() if PHASE_ROUTING == "classify" else None

    def classify(messages: list[BaseMessage], selected: SelectedCard) -> Phase:
        latest = text_of(messages[-1].content) if messages else ""
        prompt = ROUTER_PROMPT.format(
            set_code=selected.set_code,
            collector_number=selected.collector_number,
            context=_build_router_context(messages),
            message=latest,
        )
        t0 = time.perf_counter()
        try:
            response = router_llm.invoke([HumanMessage(content=prompt)])
        except Exception as exc:
            metrics.record_failure(
                "anthropic", "router_classify",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            logger.warning("Router failed, defaulting to identify phase: %s", exc)
            return Phase.IDENTIFY
        metrics.record_success(
            "anthropic", "router_classify", latency_ms=(time.perf_counter() - t0) * 1000,
        )
        phase = _parse_phase(text_of(response.content))
        logger.debug("Router (%s) classified as %s", ROUTER_MODEL_NAME, phase)
        return phase

    def route_node(state: AgentState) -> dict:
        messages = state["messages"]
        selected = find_selected_card(messages)
        phase = Phase.OPERATE if selected else Phase.IDENTIFY
        if selected and router_llm is not None:
            phase = classify(messages, selected)
        if phase == Phase.IDENTIFY:
            selected = None

        tools = tools_for_phase(phase)
        logger.info("Phase: %s (%d tools)", phase, len(tools))
        return {
            "phase": phase,
            "selected": selected,
            "instructions": get_instructions(phase, selected),
            "tools": tools,
            "pending_tool_calls": [],
            "done": False,
        }

    return route_node


# ── Node: model ──────────────────────────────────────────────────────


def _make_model_node():
    """Create the node that calls the main model.

    The client is built once and captured in the closure; only the tool
    binding changes between calls.
    """
    llm = _build_llm()

    def model_node(state: AgentState) -> dict:
        tools = state.get("tools") or []
        runnable = llm.bind_tools(tools, tool_choice="auto") if tools else llm
        system = f"{state['instructions']}\n\n{DEVELOPER_NOTE}"
        t0 = time.perf_counter()
        try:
            response = runnable.invoke(to_model_input(system, state["messages"]))
        except Exception as exc:
            metrics.record_failure(
                "anthropic", "llm_invoke",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "llm_invoke", latency_ms=elapsed)

        new_messages: list[BaseMessage] = []
        text = text_of(response.content)
        if text:
            new_messages.append(AIMessage(content=text))
        tool_calls = list(getattr(response, "tool_calls", None) or [])
        logger.debug(
            "Model (%s) responded in %.0fms with %d tool call(s)",
            MODEL_NAME, elapsed, len(tool_calls),
        )
        return {"messages": new_messages, "pending_tool_calls": tool_calls}

    return model_node


# ── Node: tools ──────────────────────────────────────────────────────


def _make_tools_node(dispatcher: ToolDispatcher | None = None):
    """Create the node that executes pending tool calls sequentially."""
    dispatcher = dispatcher or ToolDispatcher()

    def tools_node(state: AgentState) -> dict:
        working = list(state["messages"])
        new_messages: list[BaseMessage] = []
        phase = state.get("phase", Phase.IDENTIFY)
        selected = state.get("selected")
        tools = state.get("tools") or []
        instructions = state.get("instructions", "")
        ran_tracker = False
        last_name: str | None = None
        last_outcome = None

        for call in state.get("pending_tool_calls") or []:
            name = call["name"]
            try:
                outcome = dispatcher.dispatch(name, call.get("args"), history=working)
            except UnknownToolError:
                logger.warning("No executor found for tool %s; skipping", name)
                outcome = error_outcome(f"Unknown tool: {name}")

            pair = [
                AIMessage(content="", tool_calls=[call]),
                ToolMessage(content=outcome.content, tool_call_id=call["id"], name=name),
            ]
            working.extend(pair)
            new_messages.extend(pair)
            last_name, last_outcome = name, outcome

            if outcome.selected is not None:
                phase, selected = Phase.OPERATE, outcome.selected
                instructions = get_instructions(phase, selected)
                tools = tools_for_phase(phase)
                logger.info("Phase: operate (%d tools)", len(tools))
            elif name == SEARCH_TOOL and outcome.ok and phase == Phase.OPERATE:
                # A new search means the user moved on from the selected card
                phase, selected = Phase.IDENTIFY, None
                instructions = get_instructions(phase)
                tools = tools_for_phase(phase)
                logger.info("Phase: identify (%d tools)", len(tools))
            if name.startswith(TRACKER_TOOL_PREFIX):
                ran_tracker = True

        if ran_tracker:
            new_messages.append(ChatMessage(role=DEVELOPER_ROLE, content=TRACKER_FOLLOWUP_NOTE))

        done = (
            last_name == SEARCH_TOOL
            and last_outcome is not None
            and len(last_outcome.candidates or []) > 1
        )
        if done:
            logger.info("Showing %d candidates to the user", len(last_outcome.candidates))
            new_messages.append(AIMessage(content=last_outcome.candidates))

        return {
            "messages": new_messages,
            "pending_tool_calls": [],
            "phase": phase,
            "selected": selected,
            "instructions": instructions,
            "tools": tools,
            "done": done,
        }

    return tools_node


# ── Conditional edges ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to the tools node when the model requested tool calls."""
    if state.get("pending_tool_calls"):
        return "tools"
    return END


def after_tools(state: AgentState) -> str:
    """End the turn early when candidates were shown, otherwise loop."""
    if state.get("done"):
        return END
    return "model"


# ── Graph assembly ───────────────────────────────────────────────────


def create_collection_agent(dispatcher: ToolDispatcher | None = None):
    """Build and compile the collection agent graph.

    Returns a compiled graph; drive it with :func:`run_turn` or
    :func:`stream_turn`.
    """
    graph = StateGraph(AgentState)

    graph.add_node("route", _make_route_node())
    graph.add_node("model", _make_model_node())
    graph.add_node("tools", _make_tools_node(dispatcher))

    graph.set_entry_point("route")
    graph.add_edge("route", "model")
    graph.add_conditional_edges("model", should_use_tools, {"tools": "tools", END: END})
    graph.add_conditional_edges("tools", after_tools, {"model": "model", END: END})

    compiled = graph.compile()
    logger.debug("Collection agent compiled (model: %s, routing: %s)", MODEL_NAME, PHASE_ROUTING)
    return compiled


# ── Turn drivers ─────────────────────────────────────────────────────


def _initial_state(message: str, history: list[dict[str, Any]]) -> AgentState:
    curated = curate(from_wire(history))
    return {
        "messages": [*curated, HumanMessage(content=message)],
        "pending_tool_calls": [],
        "done": False,
    }


def _final_history(state: AgentState) -> list[dict[str, Any]]:
    """Instructions prefix + conversation, in the client-facing shape."""
    prefix: list[BaseMessage] = [
        SystemMessage(content=state["instructions"]),
        ChatMessage(role=DEVELOPER_ROLE, content=DEVELOPER_NOTE),
    ]
    return to_wire_list(prefix + list(state["messages"]))


def run_turn(agent, message: str, history: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Handle one user message and return the full updated history.

    The caller must send the returned list back, unchanged, with its next
    message.
    """
    state = agent.invoke(
        _initial_state(message, history),
        config={"recursion_limit": RECURSION_LIMIT},
    )
    return _final_history(state)


def _describe_update(node: str, update: dict[str, Any]) -> list[str]:
    if node == "route":
        return [f"Phase: {update.get('phase')}"]
    if node == "model":
        calls = update.get("pending_tool_calls") or []
        if calls:
            return [f"Executing {c['name']} with arguments: {json.dumps(c.get('args', {}))}" for c in calls]
        return ["Composing answer..."]
    if node == "tools":
        steps = [
            f"{m.name} completed"
            for m in update.get("messages", [])
            if isinstance(m, ToolMessage)
        ]
        if update.get("done"):
            steps.append("Multiple printings found; showing candidates")
        return steps
    return []


def stream_turn(agent, message: str, history: list[dict[str, Any]]) -> Iterator[dict[str, Any]]:
    """Like :func:`run_turn`, but yields progress frames first.

    Frames are ``{"step": str}`` while the graph runs, then a single
    ``{"messages": [...]}`` with the full history.
    """
    yield {"step": "Preparing tools and context..."}
    final: AgentState | None = None
    for mode, chunk in agent.stream(
        _initial_state(message, history),
        config={"recursion_limit": RECURSION_LIMIT},
        stream_mode=["updates", "values"],
    ):
        if mode == "values":
            final = chunk
            continue
        for node, update in chunk.items():
            for step in _describe_update(node, update or {}):
                yield {"step": step}
    yield {"step": "Finalizing response..."}
    yield {"messages": _final_history(final)}
