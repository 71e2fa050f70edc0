from __future__ import annotations

from threading import Lock
from typing import AbstractSet, Callable, Iterable, Mapping, Protocol

from .runtime import ApplyOutcome, NodeId


class PartialApplyError(Exception):
    """Some nodes of a connect/disconnect batch could not be applied."""

    def __init__(self, failed: Mapping[NodeId, str]):
        super().__init__(f"{len(failed)} node(s) failed: " + ", ".join(sorted(failed)))
        self.failed = dict(failed)


class MembershipDriver(Protocol):
    """Connects and disconnects peers on behalf of the reconciler.

    A batch call returns the nodes it could not apply; returning None means
    the whole batch went through. It may also raise PartialApplyError; any
    other exception, or an outcome without a usable ``failed`` mapping, fails
    the whole batch.
    """

    def connect_many(self, nodes: AbstractSet[NodeId]) -> ApplyOutcome | None: ...

    def disconnect_many(self, nodes: AbstractSet[NodeId]) -> ApplyOutcome | None: ...

    def list_connected(self) -> frozenset[NodeId]: ...


class CallbackDriver:
    """Adapts per-node callables supplied by the hosting runtime.

    ``connect(node)`` / ``disconnect(node)`` return True (or None) on success
    and False on failure; an exception counts as a failure with its text as the
    reason. Nodes already connected are not connected again, and nodes that are
    not connected are not disconnected.
    """

    def __init__(
        self,
        connect: Callable[[NodeId], bool | None],
        disconnect: Callable[[NodeId], bool | None],
        list_nodes: Callable[[], Iterable[NodeId]],
    ):
        self._connect = connect
        self._disconnect = disconnect
        self._list_nodes = list_nodes

    def list_connected(self) -> frozenset[NodeId]:
        return frozenset(self._list_nodes())

    def connect_many(self, nodes: AbstractSet[NodeId]) -> ApplyOutcome:
        connected = self.list_connected()
        return self._apply(sorted(set(nodes) - connected), self._connect, "connect failed")

    def disconnect_many(self, nodes: AbstractSet[NodeId]) -> ApplyOutcome:
        connected = self.list_connected()
        return self._apply(sorted(set(nodes) & connected), self._disconnect, "disconnect failed")

    def _apply(self, nodes: list[NodeId], fn: Callable[[NodeId], bool | None], reason: str) -> ApplyOutcome:
        failed: dict[NodeId, str] = {}
        for n in nodes:
            try:
                result = fn(n)
            except Exception as e:
                failed[n] = f"{type(e).__name__}: {e}"
                continue
            if result is False:
                failed[n] = reason
        return ApplyOutcome(failed)


class InMemoryDriver:
    """Set-backed driver for local runs and tests.

    Nodes listed in ``fail_connect`` / ``fail_disconnect`` are refused.
    """

    def __init__(
        self,
        connected: Iterable[NodeId] = (),
        fail_connect: Iterable[NodeId] = (),
        fail_disconnect: Iterable[NodeId] = (),
    ):
        self._lock = Lock()
        self._connected: set[NodeId] = set(connected)
        self.fail_connect: set[NodeId] = set(fail_connect)
        self.fail_disconnect: set[NodeId] = set(fail_disconnect)

    def list_connected(self) -> frozenset[NodeId]:
        with self._lock:
            return frozenset(self._connected)

    def connect_many(self, nodes: AbstractSet[NodeId]) -> ApplyOutcome:
        failed: dict[NodeId, str] = {}
        with self._lock:
            for n in nodes:
                if n in self.fail_connect:
                    failed[n] = "connect refused"
                else:
                    self._connected.add(n)
        return ApplyOutcome(failed)

    def disconnect_many(self, nodes: AbstractSet[NodeId]) -> ApplyOutcome:
        failed: dict[NodeId, str] = {}
        with self._lock:
            for n in nodes:
                if n in self.fail_disconnect:
                    failed[n] = "disconnect refused"
                else:
                    self._connected.discard(n)
        return ApplyOutcome(failed)
