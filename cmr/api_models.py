from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .runtime import split_node_name


class StrategyOptions(BaseModel):
    """Keyword options accepted by the clustering runtime."""

    model_config = ConfigDict(extra="forbid")

    service_name: str = Field(..., min_length=1, description="Registry service name shared by all peers")
    service_port: int = Field(0, ge=0, le=65535, description="Port advertised in the registry entry")
    root: str = Field("http://localhost:8500", description="Registry base URL")
    polling_interval: int = Field(5000, gt=0, description="Milliseconds between reconciliation cycles")
    heartbeat_interval: int = Field(5000, gt=0, description="Milliseconds between health reports")
    check: Any = Field(None, description="Reserved for check customization (unused)")
    node_name: str | None = Field(None, description="This node's own id, name@host")
    request_timeout_s: float = Field(5.0, gt=0, description="Per-request registry timeout")
    db_path: str | None = Field(None, description="SQLite event log path")

    @field_validator("root")
    @classmethod
    def _root_is_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("root must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("node_name")
    @classmethod
    def _node_name_is_name_at_host(cls, v: str | None) -> str | None:
        if v is not None:
            split_node_name(v)
        return v


class CycleView(BaseModel):
    ok: bool
    started_at: str
    finished_at: str
    added: list[str]
    removed: list[str]
    failed_adds: dict[str, str]
    failed_removes: dict[str, str]
    error: str | None = None


class MembershipView(BaseModel):
    service: str
    node: str
    members: list[str]
    last_cycle: CycleView | None = None
