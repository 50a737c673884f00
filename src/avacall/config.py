"""Startup configuration.

``validate_config()`` checks that the environment variables the selected
mode needs are set before the server accepts calls, so a missing key is a
clear startup failure instead of a mid-call crash. ``get_settings()`` reads
the tunables once into a frozen Settings object.
"""

import os
import sys
import logging
from dataclasses import dataclass

from avacall.reaper import IDLE_TIMEOUT_SECONDS, REAP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

REALTIME = "realtime"
TURNS = "turns"
MODES = (REALTIME, TURNS)

REQUIRED_VARS = [
    "OPENAI_API_KEY",
    "STORE_API_URL",
    "STORE_API_KEY",
]

OPTIONAL_VARS = [
    "PUBLIC_HOST",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TURN_LOG_WEBHOOK_URL",
    "LOG_LEVEL",
]


@dataclass(frozen=True)
class Settings:
    mode: str = REALTIME
    public_host: str = "localhost:8765"
    openai_api_key: str = ""
    chat_model: str = "gpt-4o-mini"
    realtime_model: str = "gpt-4o-realtime-preview"
    voice: str = "alloy"
    silence_duration_ms: int = 700
    store_api_url: str = ""
    store_api_key: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    turn_log_webhook_url: str = ""
    idle_timeout_seconds: float = IDLE_TIMEOUT_SECONDS
    reap_interval_seconds: float = REAP_INTERVAL_SECONDS

    @property
    def base_url(self) -> str:
        scheme = "http" if self.public_host.startswith("localhost") else "https"
        return f"{scheme}://{self.public_host}"

    @property
    def stream_url(self) -> str:
        scheme = "ws" if self.public_host.startswith("localhost") else "wss"
        return f"{scheme}://{self.public_host}/ws/media"


def _mode() -> str:
    mode = os.getenv("AI_BACKEND_MODE", REALTIME).strip().lower()
    if mode not in MODES:
        logger.warning("Unknown AI_BACKEND_MODE %r, using %s", mode, REALTIME)
        return REALTIME
    return mode


def get_settings() -> Settings:
    return Settings(
        mode=_mode(),
        public_host=os.getenv("PUBLIC_HOST", "localhost:8765"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        chat_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        realtime_model=os.getenv("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview"),
        voice=os.getenv("OPENAI_VOICE", "alloy"),
        silence_duration_ms=int(os.getenv("SILENCE_DURATION_MS", "700")),
        store_api_url=os.getenv("STORE_API_URL", ""),
        store_api_key=os.getenv("STORE_API_KEY", ""),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
        turn_log_webhook_url=os.getenv("TURN_LOG_WEBHOOK_URL", ""),
        idle_timeout_seconds=float(os.getenv("IDLE_TIMEOUT_SECONDS", IDLE_TIMEOUT_SECONDS)),
        reap_interval_seconds=float(os.getenv("REAP_INTERVAL_SECONDS", REAP_INTERVAL_SECONDS)),
    )


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the deployment's secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)

    if _mode() == REALTIME and not (os.getenv("TWILIO_ACCOUNT_SID") and os.getenv("TWILIO_AUTH_TOKEN")):
        logger.warning("Twilio credentials missing: callers won't hear an apology if the AI backend is down")
