"""
Ingestor configuration.

Loaded once from environment variables (and an optional .env file) at
process start, then passed explicitly to every component.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from .models import Subscription, activity_trades_subscription, clob_user_subscription
from .polymarket_client import PING_INTERVAL, WS_URL

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """
    Process configuration with sensible defaults.
    """

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # Feed
    ws_url: str = WS_URL
    ping_interval: float = PING_INTERVAL
    verbose: bool = False

    # Kafka
    kafka_enabled: bool = True
    kafka_brokers: str = "localhost:19092"
    kafka_topic: str = "polymarket-trades"

    # QuestDB
    questdb_enabled: bool = False
    questdb_host: str = "localhost"
    questdb_ilp_port: int = 9009
    questdb_http_port: int = 9000
    questdb_protocol: str = "tcp"  # tcp or http
    questdb_flush_interval: float = 1.0

    # Optional CLOB credentials for the clob_user topic
    polymarket_api_key: Optional[str] = None
    polymarket_secret: Optional[str] = None
    polymarket_passphrase: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Load configuration from environment variables.

        Args:
            dotenv: Read a .env file first (existing variables win)

        Returns:
            Validated Settings instance

        Raises:
            ValueError: If a variable cannot be parsed or fails validation
        """
        if dotenv and not load_dotenv():
            logger.info("No .env file found. Reading configuration from environment variables.")

        try:
            settings = cls(
                host=os.environ.get("APP_HOST", "0.0.0.0"),
                port=int(os.environ.get("APP_PORT", "8080")),
                log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
                ws_url=os.environ.get("POLYMARKET_WS_URL", WS_URL),
                ping_interval=float(os.environ.get("PING_INTERVAL_SECONDS", str(PING_INTERVAL))),
                verbose=_env_bool("VERBOSE", "false"),
                kafka_enabled=_env_bool("KAFKA_ENABLED", "true"),
                kafka_brokers=os.environ.get("KAFKA_BROKERS", "localhost:19092").strip(),
                kafka_topic=os.environ.get("KAFKA_TOPIC", "polymarket-trades"),
                questdb_enabled=_env_bool("QUESTDB_ENABLED", "false"),
                questdb_host=os.environ.get("QUESTDB_HOST", "localhost"),
                questdb_ilp_port=int(os.environ.get("QUESTDB_ILP_PORT", "9009")),
                questdb_http_port=int(os.environ.get("QUESTDB_HTTP_PORT", "9000")),
                questdb_protocol=os.environ.get("QUESTDB_PROTOCOL", "tcp").lower(),
                questdb_flush_interval=float(os.environ.get("QUESTDB_FLUSH_INTERVAL_SECONDS", "1.0")),
                polymarket_api_key=os.environ.get("POLYMARKET_APIKEY") or None,
                polymarket_secret=os.environ.get("POLYMARKET_SECRET") or None,
                polymarket_passphrase=os.environ.get("POLYMARKET_PASSPHRASE") or None,
            )
        except ValueError as e:
            raise ValueError(f"Invalid configuration value: {e}") from e

        settings.validate()

        logger.info("Loaded ingestor configuration:")
        logger.info(f"  - Feed: {settings.ws_url} (ping every {settings.ping_interval}s)")
        if settings.kafka_enabled:
            logger.info(f"  - Kafka: {settings.kafka_brokers} -> {settings.kafka_topic}")
        else:
            logger.info("  - Kafka: DISABLED")
        if settings.questdb_enabled:
            logger.info(f"  - QuestDB: {settings.questdb_protocol}://{settings.questdb_host}:{settings.questdb_port}")
        else:
            logger.info("  - QuestDB: DISABLED")
        logger.info(f"  - clob_user subscription: {'ENABLED' if settings.has_clob_credentials else 'DISABLED'}")
        logger.info(f"  - Server: {settings.host}:{settings.port}")

        return settings

    @property
    def questdb_port(self) -> int:
        return self.questdb_http_port if self.questdb_protocol == "http" else self.questdb_ilp_port

    @property
    def has_clob_credentials(self) -> bool:
        return bool(self.polymarket_api_key and self.polymarket_secret and self.polymarket_passphrase)

    def subscriptions(self) -> List[Subscription]:
        """Subscriptions for the feed: public activity trades, plus clob_user when credentials exist."""
        subs = [activity_trades_subscription()]
        if self.has_clob_credentials:
            subs.append(
                clob_user_subscription(
                    self.polymarket_api_key,
                    self.polymarket_secret,
                    self.polymarket_passphrase,
                )
            )
        return subs

    def validate(self) -> bool:
        """
        Validate configuration.

        Raises:
            ValueError: If configuration is invalid
        """
        if not 0 < self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}")

        if self.ping_interval <= 0:
            raise ValueError(f"Ping interval must be positive: {self.ping_interval}s")

        if self.questdb_protocol not in ("tcp", "http"):
            raise ValueError(f"QUESTDB_PROTOCOL must be 'tcp' or 'http', got {self.questdb_protocol!r}")

        if self.questdb_flush_interval <= 0:
            raise ValueError(f"QuestDB flush interval must be positive: {self.questdb_flush_interval}s")

        if self.kafka_enabled and not self.kafka_brokers:
            raise ValueError("KAFKA_BROKERS is empty but Kafka is enabled")

        if not self.kafka_enabled and not self.questdb_enabled:
            logger.warning("Both Kafka and QuestDB are disabled; trades will only be counted")

        return True
