"""
Reshard Configuration Settings

This module contains the configuration constants for the resharding tool.
Every value can be overridden from the environment.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class Settings:
    """Resharding configuration settings."""

    # Slot space
    MAX_SLOT: int = 16383

    # Key transfer settings
    MIGRATE_TIMEOUT_MS: int = int(os.environ.get("RESHARD_MIGRATE_TIMEOUT_MS", "2000"))
    MIGRATE_DB: int = int(os.environ.get("RESHARD_MIGRATE_DB", "0"))

    # Connection settings
    COMMAND_TIMEOUT: float = float(os.environ.get("RESHARD_COMMAND_TIMEOUT", "5.0"))
    CONNECT_TIMEOUT: float = float(os.environ.get("RESHARD_CONNECT_TIMEOUT", "5.0"))
    COMMAND_ATTEMPTS: int = int(os.environ.get("RESHARD_COMMAND_ATTEMPTS", "1"))
    PASSWORD: Optional[str] = os.environ.get("RESHARD_PASSWORD") or None

    # Failure handling
    ROLLBACK_ON_ABORT: bool = _env_bool("RESHARD_ROLLBACK_ON_ABORT", "true")

    # Seconds to wait for source and destination to learn about each other
    MEET_TIMEOUT: float = float(os.environ.get("RESHARD_MEET_TIMEOUT", "10.0"))
    MEET_POLL_INTERVAL: float = 0.5

    # Logging settings
    DEBUG: bool = _env_bool("RESHARD_DEBUG", "false")
    LOG_LEVEL: str = os.environ.get("RESHARD_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
