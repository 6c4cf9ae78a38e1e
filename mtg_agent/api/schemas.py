"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ToolCall(BaseModel):
    """A tool-call request carried by an assistant message."""

    id: str
    name: str
    arguments: str = Field("{}", description="JSON-encoded arguments")


class Message(BaseModel):
    """One history entry, in the shape the service returns it."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["system", "developer", "user", "assistant", "tool"]
    content: str | list[Any] | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None


class ChatRequest(BaseModel):
    """A new user message plus the history returned by the previous turn."""

    message: str = Field(..., min_length=1, max_length=2000, description="The user's message")
    messages: list[Message] = Field(
        default_factory=list,
        description="History returned by the previous call, resent verbatim",
    )


class ChatResponse(BaseModel):
    """Full updated history; resend it with the next message."""

    messages: list[Message]


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "mtg-collection-agent"
