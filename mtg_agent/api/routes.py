"""FastAPI route definitions for the collection agent API."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from mtg_agent.agent import run_turn, stream_turn
from mtg_agent.api.schemas import ChatRequest, ChatResponse, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_agent(request: Request):
    """Retrieve the compiled agent graph from app state (set in the lifespan)."""
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return agent


def _history(request: ChatRequest) -> list[dict[str, Any]]:
    return [m.model_dump(exclude_none=True) for m in request.messages]


@router.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(request: ChatRequest, http_request: Request):
    """Run one turn and return the full updated history.

    ``run_turn`` blocks on the model and tool HTTP calls, so it runs in a
    worker thread to keep the event loop free for other requests.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        messages = await asyncio.to_thread(
            run_turn, agent, request.message, _history(request),
        )
        return ChatResponse(messages=messages)

    except HTTPException:
        raise
    except Exception as e:
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail=f"An internal error occurred: {e}",
        ) from e


@router.post("/chat/stream")
async def chat_stream(request: ChatRequest, http_request: Request):
    """Server-sent events variant of ``/chat``.

    Emits ``data: {"step": ...}`` progress frames, then
    ``data: {"messages": [...]}`` and finally ``data: {"done": true}``.
    Errors after the stream has started are reported as an
    ``{"error": ...}`` frame.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    history = _history(request)

    def _events() -> Iterator[str]:
        try:
            for frame in stream_turn(agent, request.message, history):
                yield f"data: {json.dumps(frame, default=str)}\n\n"
        except Exception as e:
            logger.exception("[%s] Error while streaming chat response", request_id)
            error = {"error": f"An internal error occurred: {e}"}
            yield f"data: {json.dumps(error)}\n\n"
        yield f"data: {json.dumps({'done': True})}\n\n"

    # StreamingResponse iterates a sync generator in the threadpool
    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
