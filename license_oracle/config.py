"""
Runtime configuration — loaded once at startup from the environment / .env.

Required values (bot token, OpenServ key, workspace and default agent) abort
startup when missing. The TON values are optional: without a mnemonic the
ledger recorder runs in demo mode and never touches the network.
"""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_VARIABLES = ("TELEGRAM_BOT_TOKEN", "OPENSERV_API_KEY", "WORKSPACE_ID", "AGENT_ID")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
QUIET_LOGGERS = ("httpx", "httpcore")


class Settings(BaseSettings):
    """Application settings. Field names map to upper-case env variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Required ────────────────────────────────────────────────────
    telegram_bot_token: str
    openserv_api_key: str
    workspace_id: int
    agent_id: int

    # ── Optional ledger credentials ─────────────────────────────────
    ton_api_key: str | None = None
    ton_mnemonic: str | None = None

    # ── Remote agents ───────────────────────────────────────────────
    openserv_api_url: str = "https://api.openserv.ai"
    agent_poll_interval: float = 5.0
    agent_response_timeout: float = 120.0
    agent_recency_buffer: float = 30.0
    agent_fallback_window: float = 300.0
    agent_cache_ttl: float = 300.0

    # ── Ledger ──────────────────────────────────────────────────────
    ton_api_url: str = "https://testnet.toncenter.com/api/v2"
    ledger_receiver_address: str = "0QDvE6RYrv2gKTi7dfytJ0_vNfCVh_c5pa8Dl3v4qCzPGAAc"
    ledger_transfer_value: str = "0.01"  # TON
    ledger_confirm_timeout: float = 60.0
    ledger_poll_interval: float = 2.0
    require_ledger_confirmation: bool = False

    # ── OCR ─────────────────────────────────────────────────────────
    ocr_language: str = "eng"
    ocr_min_width: int = 800

    # ── Transport ───────────────────────────────────────────────────
    telegram_api_url: str = "https://api.telegram.org"
    telegram_webhook_secret: str | None = None

    log_level: str = "INFO"

    @property
    def ledger_configured(self) -> bool:
        return bool(self.ton_mnemonic and self.ton_mnemonic.strip())


def load_settings(**overrides) -> Settings:
    """Load settings from the environment, failing loudly on missing values.

    Raises:
        ConfigurationError: listing every missing or malformed variable.
    """
    load_dotenv()
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        problems = sorted({str(err["loc"][0]).upper() for err in e.errors() if err["loc"]})
        missing = [name for name in problems if name in REQUIRED_VARIABLES]
        raise ConfigurationError(
            f"Invalid or missing configuration: {', '.join(problems)}",
            details={"variables": problems, "missing_required": missing},
        ) from e

    for name in REQUIRED_VARIABLES:
        logger.debug("%s: set", name)
    logger.info("TON mnemonic: %s", "set" if settings.ledger_configured else "not set (demo mode)")
    logger.info("TON API key: %s", "set" if settings.ton_api_key else "not set")
    return settings


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for an entry point."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs full request URLs at INFO, and the Telegram URL embeds the bot token.
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
