"""Cluster Membership Reconciler (CMR).

Keeps a node's peer connections in line with a Consul-compatible registry:
 - discovers passing instances of a service
 - connects to new peers and disconnects from departed ones
 - tracks only the peers that are actually connected
 - keeps this node's own TTL health check alive

Peers are connected and disconnected through a driver supplied by the host
runtime; this package only decides which peers that should be.
"""
from .driver import CallbackDriver, InMemoryDriver, MembershipDriver, PartialApplyError
from .heartbeat import Heartbeat
from .reconciler import Reconciler
from .registry import ConsulRegistry, RegistryError, RegistryTransportError
from .runtime import ApplyOutcome, CycleReport, Delta, HealthStatus, compute_delta
from .settings import Settings
from .strategy import ClusterStrategy

__all__ = [
    "ApplyOutcome",
    "CallbackDriver",
    "ClusterStrategy",
    "ConsulRegistry",
    "CycleReport",
    "Delta",
    "HealthStatus",
    "Heartbeat",
    "InMemoryDriver",
    "MembershipDriver",
    "PartialApplyError",
    "Reconciler",
    "RegistryError",
    "RegistryTransportError",
    "Settings",
    "compute_delta",
]
