from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError

from .api_models import StrategyOptions
from .runtime import split_node_name


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _default_node_name() -> str:
    return os.getenv("CMR_NODE_NAME") or f"cmr@{socket.gethostname()}"


@dataclass(frozen=True)
class Settings:
    # Registry
    service_name: str = os.getenv("CMR_SERVICE_NAME", "")
    service_port: int = _env_int("CMR_SERVICE_PORT", 0)
    root: str = os.getenv("CMR_ROOT", "http://localhost:8500")
    request_timeout_s: float = _env_float("CMR_REQUEST_TIMEOUT_S", 5.0)

    # Timers (milliseconds)
    polling_interval: int = _env_int("CMR_POLLING_INTERVAL", 5000)
    heartbeat_interval: int = _env_int("CMR_HEARTBEAT_INTERVAL", 5000)

    # Reserved for check customization; accepted and ignored.
    check: Any = None

    # Identity of this node, "name@host". Peer node ids reuse the name part.
    node_name: str = _default_node_name()

    # Event log
    db_path: str = os.getenv("CMR_DB_PATH", "cmr.db")

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "Settings":
        """Build settings from a keyword option map.

        Unset options fall back to the environment-derived defaults above.
        Raises ValueError on unknown or invalid options.
        """
        try:
            parsed = StrategyOptions.model_validate(dict(options))
        except ValidationError as e:
            raise ValueError(f"Invalid cluster options: {e}") from e
        return cls(**parsed.model_dump(exclude_unset=True, exclude_none=True))

    def validate(self) -> None:
        if not self.service_name:
            raise ValueError("service_name is required.")
        split_node_name(self.node_name)
        if self.polling_interval <= 0 or self.heartbeat_interval <= 0:
            raise ValueError("polling_interval and heartbeat_interval must be positive (ms).")

    @property
    def polling_interval_s(self) -> float:
        return self.polling_interval / 1000.0

    @property
    def heartbeat_interval_s(self) -> float:
        return self.heartbeat_interval / 1000.0


settings = Settings()
