"""
yieldledger configuration.

All settings come from environment variables with the ``YIELDLEDGER_``
prefix so that deployments never need code changes:

    YIELDLEDGER_LOG_LEVEL        logging level (default INFO)
    YIELDLEDGER_LOG_FILE         JSON log file path (default: console only)
    YIELDLEDGER_ENVIRONMENT      environment tag added to log records
    YIELDLEDGER_STORE_PATH       JSON file backing the persistent store
    YIELDLEDGER_CHAIN_ID         chain identifier of this ledger instance
    YIELDLEDGER_METRICS_ENABLED  "1" to record Prometheus metrics
    YIELDLEDGER_MAX_FEE_RATE     fee-rate ceiling, 1e18 = 100% (default 1e18)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .safe_math import WAD

logger = logging.getLogger(__name__)

ENV_PREFIX = "YIELDLEDGER_"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _env(environ: Mapping[str, str], name: str, default: str = "") -> str:
    return environ.get(ENV_PREFIX + name, default).strip()


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = _env(environ, name)
    if not raw:
        return default
    try:
        return int(float(raw)) if "e" in raw.lower() else int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class LedgerConfig:
    log_level: str = "INFO"
    log_file: Optional[str] = None
    environment: str = "production"
    store_path: Optional[str] = None
    chain_id: str = "1"
    metrics_enabled: bool = False
    max_fee_rate: int = WAD

    def __post_init__(self) -> None:
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.log_level}")
        if not self.chain_id:
            raise ConfigurationError("Chain id cannot be empty")
        if not 0 <= self.max_fee_rate <= WAD:
            raise ConfigurationError(
                f"Max fee rate must be within [0, {WAD}], got {self.max_fee_rate}"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LedgerConfig":
        environ = os.environ if environ is None else environ
        config = cls(
            log_level=_env(environ, "LOG_LEVEL", "INFO").upper(),
            log_file=_env(environ, "LOG_FILE") or None,
            environment=_env(environ, "ENVIRONMENT", "production"),
            store_path=_env(environ, "STORE_PATH") or None,
            chain_id=_env(environ, "CHAIN_ID", "1"),
            metrics_enabled=_env(environ, "METRICS_ENABLED", "0") == "1",
            max_fee_rate=_env_int(environ, "MAX_FEE_RATE", WAD),
        )
        logger.debug(
            "Ledger configuration loaded",
            extra={"event": "config.loaded", "chain_id": config.chain_id},
        )
        return config
