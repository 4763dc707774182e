"""Runtime configuration for the FIPE lookup service."""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_BASE_URL = "https://brasilapi.com.br/api/fipe/preco/v1"
DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT = 10.0
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class FipeConfig:
    """Settings shared by the portal, the Lambda handler and the CLI."""

    base_url: str = DEFAULT_BASE_URL
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FipeConfig":
        """Build a configuration from ``FIPE_*``, ``HOST`` and ``PORT`` variables."""

        env = os.environ if environ is None else environ
        base_url = (env.get("FIPE_API_BASE") or DEFAULT_BASE_URL).strip()
        return cls(
            base_url=base_url.rstrip("/"),
            concurrency=coerce_positive_int(
                env.get("FIPE_CONCURRENCY", DEFAULT_CONCURRENCY), "FIPE_CONCURRENCY"
            ),
            timeout=coerce_positive_float(env.get("FIPE_TIMEOUT", DEFAULT_TIMEOUT), "FIPE_TIMEOUT"),
            host=env.get("HOST") or DEFAULT_HOST,
            port=coerce_positive_int(env.get("PORT", DEFAULT_PORT), "PORT"),
        )


def coerce_positive_int(value: object, field: str) -> int:
    try:
        candidate = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be an integer") from exc
    if candidate <= 0:
        raise ValueError(f"{field} must be a positive integer")
    return candidate


def coerce_positive_float(value: object, field: str) -> float:
    try:
        candidate = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be a number") from exc
    if candidate <= 0:
        raise ValueError(f"{field} must be positive")
    return candidate


def configure_logging(level: int | str = logging.INFO) -> None:
    """Attach a stdout handler to the ``fipe`` logger for CLI and server use."""

    logger = logging.getLogger("fipe")
    if logger.handlers:
        logger.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_TIMEOUT",
    "FipeConfig",
    "coerce_positive_float",
    "coerce_positive_int",
    "configure_logging",
]
