"""Environment configuration. Loads the project .env file on import."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from botocore.config import Config
from dotenv import load_dotenv

from stockroom.models.inventory import UserIdentity, UserRole

# Project root .env; real environment variables win
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


@dataclass(frozen=True)
class StoreConfig:
    backend: str = "memory"
    region_name: str = "us-west-2"
    table_prefix: str = ""
    endpoint_url: Optional[str] = None
    connect_timeout: float = 5.0
    read_timeout: float = 10.0
    max_attempts: int = 3
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "StoreConfig":
        return cls(
            backend=os.environ.get("STOCKROOM_STORE", "memory").lower(),
            region_name=os.environ.get("AWS_DEFAULT_REGION", "us-west-2"),
            table_prefix=os.environ.get("STOCKROOM_TABLE_PREFIX", ""),
            endpoint_url=os.environ.get("DYNAMODB_ENDPOINT_URL") or None,
            connect_timeout=float(os.environ.get("STOCKROOM_CONNECT_TIMEOUT", "5")),
            read_timeout=float(os.environ.get("STOCKROOM_READ_TIMEOUT", "10")),
            max_attempts=int(os.environ.get("STOCKROOM_MAX_ATTEMPTS", "3")),
            log_level=os.environ.get("STOCKROOM_LOG_LEVEL", "INFO").upper(),
        )

    def table_name(self, collection: str) -> str:
        return f"{self.table_prefix}{collection}"

    def boto_config(self) -> Config:
        return Config(
            region_name=self.region_name,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            retries={"max_attempts": self.max_attempts, "mode": "standard"},
        )


def acting_user_from_env() -> UserIdentity:
    """Identity used by scripts and the MCP server when no login exists."""
    return UserIdentity(
        id=os.environ.get("STOCKROOM_USER_ID", "system"),
        display_name=os.environ.get("STOCKROOM_USER_NAME", "System"),
        email=os.environ.get("STOCKROOM_USER_EMAIL", ""),
        role=UserRole(os.environ.get("STOCKROOM_USER_ROLE", UserRole.USER.value).upper()),
    )


def configure_logging(config: Optional[StoreConfig] = None) -> None:
    level_name = (config or StoreConfig.from_env()).log_level
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("mcp").setLevel(logging.WARNING)
