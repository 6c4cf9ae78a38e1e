"""Lazy, process-wide credential resolution.

Three secrets are needed at runtime:

* the Anthropic API key,
* the tracker backend's basic-auth username/password,
* the tracker bearer token obtained by exchanging those credentials at
  ``TRACKER_API_URL + TRACKER_TOKEN_PATH``.

Resolution order for the first two (per secret):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS Secrets Manager, when the matching ``*_SECRET_ARN`` is set

Every value is resolved on first use and cached for the lifetime of the
process.  Each cache slot uses double-checked locking so concurrent first
requests trigger at most one lookup or token exchange.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import threading

import httpx

from mtg_agent import config
from mtg_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

TOKEN_TIMEOUT_SECONDS = 10.0


class CredentialError(Exception):
    """Raised when a secret cannot be resolved or the token exchange fails."""


def _get_secret_string(secret_id: str) -> str:
    """Fetch a SecretString from AWS Secrets Manager."""
    import boto3  # noqa: PLC0415  (only needed on AWS)

    client = boto3.client("secretsmanager", region_name=config.AWS_REGION)
    with metrics.track("credentials", "GetSecretValue"):
        resp = client.get_secret_value(SecretId=secret_id)
    return resp["SecretString"]


class CredentialProvider:
    """Resolves and caches the LLM key, backend credentials and bearer token."""

    def __init__(
        self,
        *,
        tracker_url: str | None = None,
        token_path: str | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._tracker_url = (tracker_url or config.TRACKER_API_URL).rstrip("/")
        self._token_path = token_path or config.TRACKER_TOKEN_PATH
        self._client = http_client or httpx.Client(timeout=TOKEN_TIMEOUT_SECONDS)

        self._api_key: str | None = None
        self._basic_auth: tuple[str, str] | None = None
        self._bearer_token: str | None = None

        self._api_key_lock = threading.Lock()
        self._basic_auth_lock = threading.Lock()
        self._token_lock = threading.Lock()

    # ── Anthropic API key ────────────────────────────────────────────

    def get_llm_api_key(self) -> str:
        """Return the Anthropic API key (env first, then Secrets Manager)."""
        if self._api_key is None:
            with self._api_key_lock:
                if self._api_key is None:
                    self._api_key = self._resolve_llm_api_key()
        return self._api_key

    def _resolve_llm_api_key(self) -> str:
        value = os.getenv("ANTHROPIC_API_KEY")
        if value and not value.startswith("your_"):
            return value
        if config.ANTHROPIC_API_KEY_SECRET_ARN:
            logger.info("Loading Anthropic API key from Secrets Manager")
            return _get_secret_string(config.ANTHROPIC_API_KEY_SECRET_ARN).strip()
        raise CredentialError(
            "Missing Anthropic API key. Set ANTHROPIC_API_KEY (local) "
            "or ANTHROPIC_API_KEY_SECRET_ARN (AWS)."
        )

    # ── Tracker basic-auth credentials ───────────────────────────────

    def get_basic_auth(self) -> tuple[str, str]:
        """Return the tracker ``(username, password)`` pair."""
        if self._basic_auth is None:
            with self._basic_auth_lock:
                if self._basic_auth is None:
                    self._basic_auth = self._resolve_basic_auth()
        return self._basic_auth

    def _resolve_basic_auth(self) -> tuple[str, str]:
        username = os.getenv("TRACKER_USERNAME")
        password = os.getenv("TRACKER_PASSWORD")
        if username and password:
            return username, password
        if config.TRACKER_CREDENTIALS_SECRET_ARN:
            logger.info("Loading tracker credentials from Secrets Manager")
            raw = _get_secret_string(config.TRACKER_CREDENTIALS_SECRET_ARN)
            try:
                secret = json.loads(raw)
                return secret["username"], secret["password"]
            except (ValueError, KeyError, TypeError) as exc:
                raise CredentialError(
                    "Tracker credentials secret must be JSON with 'username' and 'password'"
                ) from exc
        raise CredentialError(
            "Missing tracker credentials. Set TRACKER_USERNAME and TRACKER_PASSWORD "
            "(local) or TRACKER_CREDENTIALS_SECRET_ARN (AWS)."
        )

    # ── Tracker bearer token ─────────────────────────────────────────

    def get_bearer_token(self) -> str:
        """Return the cached bearer token, exchanging credentials if absent."""
        if self._bearer_token is None:
            with self._token_lock:
                if self._bearer_token is None:
                    self._bearer_token = self._exchange_token()
        return self._bearer_token

    def invalidate_bearer_token(self) -> None:
        """Drop the cached token so the next call performs a fresh exchange."""
        with self._token_lock:
            self._bearer_token = None
        logger.info("Tracker bearer token invalidated")

    def _exchange_token(self) -> str:
        username, password = self.get_basic_auth()
        basic = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        url = f"{self._tracker_url}{self._token_path}"
        try:
            with metrics.track("credentials", f"GET {self._token_path}"):
                response = self._client.get(url, headers={"Authorization": f"Basic {basic}"})
                response.raise_for_status()
                token = response.json().get("token")
        except (httpx.HTTPError, ValueError) as exc:
            raise CredentialError(f"Token exchange with the tracker failed: {exc}") from exc
        if not token:
            raise CredentialError("Token exchange succeeded but no token was returned")
        logger.info("Obtained tracker bearer token")
        return token


# ── Module-level singleton (thread-safe) ────────────────────────────
_provider: CredentialProvider | None = None
_provider_lock = threading.Lock()


def get_credential_provider() -> CredentialProvider:
    """Return the process-wide ``CredentialProvider``."""
    global _provider
    if _provider is None:
        with _provider_lock:
            if _provider is None:
                _provider = CredentialProvider()
    return _provider
