from __future__ import annotations

from types import TracebackType
from typing import Any, Iterable, Mapping

from . import db
from .driver import MembershipDriver
from .heartbeat import Heartbeat
from .reconciler import Reconciler
from .registry import ConsulRegistry, RegistryError
from .runtime import NodeId
from .settings import Settings


class ClusterStrategy:
    """Registry-driven clustering for one node.

    Owns the registry client, the reconciler and the heartbeat. Use it as a
    context manager so the node's check is marked critical on the way out::

        with ClusterStrategy.from_options({"service_name": "app"}, driver):
            serve_forever()
    """

    def __init__(
        self,
        settings: Settings,
        driver: MembershipDriver,
        registry: ConsulRegistry | None = None,
        members: Iterable[NodeId] = (),
    ):
        settings.validate()
        self.settings = settings
        self.driver = driver
        self._owns_registry = registry is None
        self.registry = registry or ConsulRegistry(
            settings.root,
            self_node=settings.node_name,
            timeout_s=settings.request_timeout_s,
        )
        self.reconciler = Reconciler(self.registry, driver, settings, members=members)
        self.heartbeat = Heartbeat(self.registry, settings)
        self._started = False

    @classmethod
    def from_options(cls, options: Mapping[str, Any], driver: MembershipDriver, **kwargs: Any) -> "ClusterStrategy":
        return cls(Settings.from_options(options), driver, **kwargs)

    @property
    def members(self) -> frozenset[NodeId]:
        return self.reconciler.members

    def start(self) -> None:
        if self._started:
            return
        db.configure(self.settings.db_path)
        db.init_db()

        name = self.settings.service_name
        self._log("INFO", f"Registering/updating consul service: {name}")
        try:
            self.registry.register_self(name, self.settings.service_port)
        except RegistryError as e:
            self._log("ERROR", f"Service registration failed: {e}")

        self.heartbeat.beat()
        self.heartbeat.start()
        self.reconciler.start()
        self._started = True

    def stop(self, reason: object = "shutdown") -> None:
        if not self._started:
            return
        self._started = False
        try:
            self.reconciler.stop()
            self.heartbeat.stop(reason)
        finally:
            if self._owns_registry:
                self.registry.close()
        self._log("INFO", f"Stopped: {reason}")

    def __enter__(self) -> "ClusterStrategy":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop(repr(exc) if exc is not None else "shutdown")

    def _log(self, level: str, message: str) -> None:
        db.log_event(level, message, service_name=self.settings.service_name, node=self.settings.node_name)
