"""Centralized configuration for the MTG collection agent.

Plain settings are read from environment variables (a ``.env`` file is
loaded for local development).  Secrets are *not* resolved here: the
credential provider in ``mtg_agent.services.credentials`` fetches them
lazily, either from the environment or from AWS Secrets Manager.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

_REPO_ROOT = Path(__file__).resolve().parent.parent

# ── LLM ─────────────────────────────────────────────────────────────
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
ROUTER_MODEL_NAME: str = os.getenv("ROUTER_MODEL_NAME", "claude-haiku-4-5")
MODEL_TEMPERATURE: float = float(os.getenv("MODEL_TEMPERATURE", "0.2"))
MODEL_MAX_TOKENS: int = int(os.getenv("MODEL_MAX_TOKENS", "2048"))

# "inspect" decides the phase from history alone; "classify" additionally
# asks the router model whether the user still wants the selected card.
PHASE_ROUTING: str = os.getenv("PHASE_ROUTING", "inspect").lower()

# ── Secrets (names only; values resolved lazily) ────────────────────
ANTHROPIC_API_KEY_SECRET_ARN: str | None = os.getenv("ANTHROPIC_API_KEY_SECRET_ARN")
TRACKER_CREDENTIALS_SECRET_ARN: str | None = os.getenv("TRACKER_CREDENTIALS_SECRET_ARN")
AWS_REGION: str = os.getenv("AWS_REGION", "eu-central-1")

# ── Scryfall ────────────────────────────────────────────────────────
SCRYFALL_BASE_URL: str = os.getenv("SCRYFALL_BASE_URL", "https://api.scryfall.com")

# ── Collection tracker backend ──────────────────────────────────────
TRACKER_API_URL: str = os.getenv("TRACKER_API_URL", "http://localhost:3000")
TRACKER_SCHEMA_PATH: str = os.getenv("TRACKER_SCHEMA_PATH", "/api-docs/swagger.json")
TRACKER_TOKEN_PATH: str = os.getenv("TRACKER_TOKEN_PATH", "/gettoken")
TRACKER_TOOL_PREFIX: str = "tracker_"
TRACKER_SCHEMA_TTL_SECONDS: float = float(os.getenv("TRACKER_SCHEMA_TTL_SECONDS", "300"))

# ── History curation ────────────────────────────────────────────────
HISTORY_MAX_TURNS: int = int(os.getenv("HISTORY_MAX_TURNS", "5"))

# ── Reference document for the search_reference tool ────────────────
REFERENCE_DOCS_PATH: Path = Path(
    os.getenv("REFERENCE_DOCS_PATH", str(_REPO_ROOT / "REFERENCE.md"))
)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8080"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000",
).split(",")
