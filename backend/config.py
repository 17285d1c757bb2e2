"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No orchestration logic
- No behavioral constants (see spec.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import (
    DEEPGRAM_MODEL_DEFAULT,
    SPEECH_LANGUAGE_DEFAULT,
    TOKEN_REQUEST_TIMEOUT_S,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to gateway/controller bootstrap code.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    host: str = "0.0.0.0"
    port: int = 8000

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    token_server_url: str = "http://localhost:3001"
    token_request_timeout_s: float = TOKEN_REQUEST_TIMEOUT_S

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    transport_provider: str = "livekit"
    audio_output: bool = True

    # ------------------------------------------------------------------
    # Speech capture
    # ------------------------------------------------------------------

    speech_provider: str = "deepgram"
    deepgram_api_key: str | None = None
    deepgram_model: str = DEEPGRAM_MODEL_DEFAULT
    speech_language: str = SPEECH_LANGUAGE_DEFAULT

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """Load configuration from environment variables."""
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "8000")),

            token_server_url=os.environ.get("TOKEN_SERVER_URL", "http://localhost:3001").rstrip("/"),
            token_request_timeout_s=float(
                os.environ.get("TOKEN_REQUEST_TIMEOUT_S", str(TOKEN_REQUEST_TIMEOUT_S))
            ),

            transport_provider=os.environ.get("TRANSPORT_PROVIDER", "livekit"),
            audio_output=os.environ.get("AUDIO_OUTPUT", "1") == "1",

            speech_provider=os.environ.get("SPEECH_PROVIDER", "deepgram"),
            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY"),
            deepgram_model=os.environ.get("DEEPGRAM_MODEL", DEEPGRAM_MODEL_DEFAULT),
            speech_language=os.environ.get("SPEECH_LANGUAGE", SPEECH_LANGUAGE_DEFAULT),
        )
