"""FastAPI server for the MTG collection agent.

Run with:
    uvicorn mtg_agent.server:app --reload --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from mtg_agent.agent import create_collection_agent
from mtg_agent.api.routes import router
from mtg_agent.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Compile the agent graph once and keep it in app state.

    The graph holds no conversation state, so one instance serves every
    request.
    """
    logger.info("Compiling collection agent…")
    application.state.agent = create_collection_agent()
    logger.info("Agent ready.")
    yield


app = FastAPI(
    title="MTG Collection Agent",
    description=(
        "Conversational agent that identifies a Magic: The Gathering printing "
        "and manages it in a collection tracker."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["Content-Length", "X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (client-supplied or generated) for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": "MTG Collection Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting MTG collection agent on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "mtg_agent.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
