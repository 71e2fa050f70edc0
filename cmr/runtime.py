from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AbstractSet, Mapping

# "name@address"; equality is the only operation the reconciler relies on.
NodeId = str


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def split_node_name(node: str) -> tuple[str, str]:
    """Split ``name@host``; both parts must be non-empty."""
    name, sep, host = node.partition("@")
    if not sep or not name or not host:
        raise ValueError(f"node name must look like 'name@host', got {node!r}")
    return name, host


def node_id_for_address(self_node: str, address: str) -> NodeId:
    """Derive a peer's node id from its registry address.

    Peers run under the same name as this node, so only the host part differs:
    ``node_id_for_address("app@10.0.0.1", "10.0.0.7") == "app@10.0.0.7"``.
    """
    name, _ = split_node_name(self_node)
    return f"{name}@{address}"


class HealthStatus(str, Enum):
    PASSING = "passing"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Delta:
    to_add: frozenset[NodeId]
    to_remove: frozenset[NodeId]

    @property
    def empty(self) -> bool:
        return not self.to_add and not self.to_remove


def compute_delta(tracked: AbstractSet[NodeId], discovered: AbstractSet[NodeId]) -> Delta:
    return Delta(
        to_add=frozenset(discovered) - frozenset(tracked),
        to_remove=frozenset(tracked) - frozenset(discovered),
    )


@dataclass(frozen=True)
class ApplyOutcome:
    """Result of a driver batch: the nodes that could not be applied, with reasons."""

    failed: Mapping[NodeId, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    @classmethod
    def success(cls) -> "ApplyOutcome":
        return cls({})

    @classmethod
    def all_failed(cls, nodes: AbstractSet[NodeId], reason: str) -> "ApplyOutcome":
        return cls({n: reason for n in nodes})


@dataclass
class CycleReport:
    """What one reconciliation cycle saw and did."""

    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
    discovered: frozenset[NodeId] | None = None
    error: str | None = None
    delta: Delta = field(default_factory=lambda: Delta(frozenset(), frozenset()))
    failed_adds: dict[NodeId, str] = field(default_factory=dict)
    failed_removes: dict[NodeId, str] = field(default_factory=dict)
    members: frozenset[NodeId] = frozenset()

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def added(self) -> frozenset[NodeId]:
        return self.delta.to_add - frozenset(self.failed_adds)

    @property
    def removed(self) -> frozenset[NodeId]:
        return self.delta.to_remove - frozenset(self.failed_removes)
