"""
Configuration - Environment-driven settings, read once at process start.

Values come from the process environment; a local `.env` file is loaded first
when present. Collaborators receive only the section they need.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

DEFAULT_START_URL = "https://api.banana.dev/start/v4"
DEFAULT_CHECK_URL = "https://api.banana.dev/check/v4"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_tokens(raw: str | None) -> dict[str, str]:
    """Parse "token:user,token2:user2" into a token -> user map."""
    tokens: dict[str, str] = {}
    if not raw:
        return tokens
    for pair in raw.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token and user_id:
            tokens[token] = user_id
    return tokens


@dataclass
class ImageServiceConfig:
    """Settings for the remote image generation service."""
    api_key: str | None = None
    model_key: str = "gemini-nano"
    start_url: str = DEFAULT_START_URL
    check_url: str = DEFAULT_CHECK_URL
    poll_interval: float = 2.0
    max_poll_attempts: int = 30
    request_timeout: float = 120.0

    @property
    def placeholder_mode(self) -> bool:
        return not self.api_key


@dataclass
class ModerationConfig:
    """Settings for the moderation gate."""
    audit_enabled: bool = True


@dataclass
class AppConfig:
    """Top-level application configuration."""
    env: str = "development"
    database_url: str | None = None
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    auth_header: str = "X-User-Id"
    api_tokens: dict[str, str] = field(default_factory=dict)
    image: ImageServiceConfig = field(default_factory=ImageServiceConfig)
    moderation: ModerationConfig = field(default_factory=ModerationConfig)

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @classmethod
    def from_env(cls) -> AppConfig:
        """Build configuration from environment variables."""
        return cls(
            env=os.getenv("EXQUISITE_ENV", "development"),
            database_url=os.getenv("DATABASE_URL") or None,
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            auth_header=os.getenv("AUTH_HEADER", "X-User-Id"),
            api_tokens=_parse_tokens(os.getenv("API_TOKENS")),
            image=ImageServiceConfig(
                api_key=os.getenv("BANANA_API_KEY") or None,
                model_key=os.getenv("BANANA_MODEL_KEY", "gemini-nano"),
                start_url=os.getenv("BANANA_START_URL", DEFAULT_START_URL),
                check_url=os.getenv("BANANA_CHECK_URL", DEFAULT_CHECK_URL),
                poll_interval=float(os.getenv("IMAGE_POLL_INTERVAL", "2.0")),
                max_poll_attempts=int(os.getenv("IMAGE_MAX_POLL_ATTEMPTS", "30")),
                request_timeout=float(os.getenv("IMAGE_REQUEST_TIMEOUT", "120")),
            ),
            moderation=ModerationConfig(
                audit_enabled=_env_bool("ENABLE_CONTENT_MODERATION", True),
            ),
        )


def configure_logging(level: str = "INFO"):
    """Configure root logging for the server and CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
