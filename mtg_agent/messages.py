"""Conversion between the client-facing message format and LangChain messages.

The service is stateless: the client sends back the full history it
received on the previous turn.  That history uses a plain JSON shape::

    {"role": "user", "content": "find Stomping Ground"}
    {"role": "assistant", "content": null,
     "tool_calls": [{"id": "toolu_1", "name": "scryfall_search",
                     "arguments": "{\\"name\\": \\"Stomping Ground\\"}"}]}
    {"role": "tool", "tool_call_id": "toolu_1", "name": "scryfall_search",
     "content": "[{\\"set\\": \\"GPT\\", \\"collector_number\\": \\"165\\"}]"}
    {"role": "assistant", "content": [{...card record...}, ...]}

Roles are ``system``, ``developer``, ``user``, ``assistant`` and ``tool``.
Inside the agent every entry is a ``langchain_core`` message; an
assistant entry carrying several tool calls is split into one
``AIMessage`` per call so each call can sit right next to its result.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    ChatMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

logger = logging.getLogger(__name__)

DEVELOPER_ROLE = "developer"
TRIMMED_PLACEHOLDER = "(Earlier conversation trimmed.)"


def text_of(content: Any) -> str:
    """Plain text of a message ``content`` (string or content-block list)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


def is_developer(message: BaseMessage) -> bool:
    return isinstance(message, ChatMessage) and message.role == DEVELOPER_ROLE


def is_structured(message: BaseMessage) -> bool:
    """True for an assistant entry whose content is data, not a reply.

    The candidate listing surfaced after an ambiguous search is stored this
    way (a list of card records).
    """
    if not isinstance(message, AIMessage) or not isinstance(message.content, list):
        return False
    return any(
        not (isinstance(block, str) or (isinstance(block, dict) and block.get("type") == "text"))
        for block in message.content
    )


def is_text_turn(message: BaseMessage) -> bool:
    """A plain user message or an assistant reply without tool calls."""
    if isinstance(message, HumanMessage):
        return True
    return (
        isinstance(message, AIMessage)
        and not message.tool_calls
        and not is_structured(message)
    )


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Dropping malformed tool-call arguments in history: %r", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ── Wire → LangChain ─────────────────────────────────────────────────


def from_wire(entries: list[dict[str, Any]]) -> list[BaseMessage]:
    """Decode client-supplied history into LangChain messages."""
    messages: list[BaseMessage] = []
    for entry in entries:
        role = entry.get("role")
        content = entry.get("content")

        if role == "system":
            messages.append(SystemMessage(content=text_of(content)))
        elif role == DEVELOPER_ROLE:
            messages.append(ChatMessage(role=DEVELOPER_ROLE, content=text_of(content)))
        elif role == "user":
            messages.append(HumanMessage(content=text_of(content)))
        elif role == "assistant":
            tool_calls = entry.get("tool_calls") or []
            text = content if isinstance(content, str) else None
            if text or (not tool_calls and content is not None):
                messages.append(AIMessage(content=content if text is None else text))
            for call in tool_calls:
                messages.append(AIMessage(
                    content="",
                    tool_calls=[{
                        "id": call.get("id"),
                        "name": call.get("name", ""),
                        "args": _parse_arguments(call.get("arguments")),
                        "type": "tool_call",
                    }],
                ))
        elif role == "tool":
            if not isinstance(content, str):
                content = json.dumps(content)
            messages.append(ToolMessage(
                content=content,
                tool_call_id=entry.get("tool_call_id") or "",
                name=entry.get("name"),
            ))
        else:
            logger.warning("Ignoring history entry with unknown role %r", role)
    return messages


# ── LangChain → wire ─────────────────────────────────────────────────


def to_wire(message: BaseMessage) -> dict[str, Any]:
    """Encode one LangChain message in the client-facing shape."""
    if isinstance(message, SystemMessage):
        return {"role": "system", "content": text_of(message.content)}
    if is_developer(message):
        return {"role": DEVELOPER_ROLE, "content": text_of(message.content)}
    if isinstance(message, HumanMessage):
        return {"role": "user", "content": text_of(message.content)}
    if isinstance(message, ToolMessage):
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "name": message.name,
            "content": text_of(message.content),
        }
    if isinstance(message, AIMessage):
        if message.tool_calls:
            return {
                "role": "assistant",
                "content": text_of(message.content) or None,
                "tool_calls": [
                    {"id": c["id"], "name": c["name"], "arguments": json.dumps(c["args"])}
                    for c in message.tool_calls
                ],
            }
        if is_structured(message):
            return {"role": "assistant", "content": message.content}
        return {"role": "assistant", "content": text_of(message.content)}
    raise TypeError(f"Cannot encode message of type {type(message).__name__}")


def to_wire_list(messages: list[BaseMessage]) -> list[dict[str, Any]]:
    return [to_wire(m) for m in messages]


# ── Model input ──────────────────────────────────────────────────────


def to_model_input(
    instructions: str,
    messages: list[BaseMessage],
) -> list[BaseMessage]:
    """Build the message list sent to the model.

    Anthropic accepts a single leading system message and expects the
    conversation itself to open with a user turn, so developer notes inside
    the history are sent as user-side instructions and a placeholder user
    turn is inserted when trimming left an assistant entry first.
    Structured assistant entries are never replayed.
    """
    body: list[BaseMessage] = []
    for message in messages:
        if isinstance(message, SystemMessage) or is_structured(message):
            continue
        if is_developer(message):
            body.append(HumanMessage(content=f"[Instruction] {text_of(message.content)}"))
        else:
            body.append(message)

    if body and not isinstance(body[0], HumanMessage):
        body.insert(0, HumanMessage(content=TRIMMED_PLACEHOLDER))
    return [SystemMessage(content=instructions), *body]
