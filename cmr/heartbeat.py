from __future__ import annotations

from threading import Event, Thread, current_thread

from . import db
from .registry import ConsulRegistry, RegistryError
from .runtime import HealthStatus
from .settings import Settings


class Heartbeat:
    """Keeps this node's TTL check passing until stopped.

    Runs on its own timer and never touches membership. Every report is best
    effort: registry errors are logged, not raised.
    """

    def __init__(self, registry: ConsulRegistry, settings: Settings):
        self.registry = registry
        self.settings = settings
        self._stop = Event()
        self._thr: Thread | None = None
        self._stopped = False

    @property
    def running_message(self) -> str:
        return f"node {self.settings.node_name} is running"

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._stopped = False
        self._thr = Thread(target=self._loop, name="cmr-heartbeat", daemon=True)
        self._thr.start()

    def _loop(self) -> None:
        while not self._stop.wait(self.settings.heartbeat_interval_s):
            try:
                self.beat()
            except Exception as e:
                self._log("ERROR", f"Heartbeat tick failed: {type(e).__name__}: {e}")

    def beat(self) -> bool:
        return self._report(HealthStatus.PASSING, self.running_message)

    def stop(self, reason: object = "shutdown", timeout: float | None = None) -> None:
        """Stop ticking and mark the check critical. Safe to call more than once."""
        self._stop.set()
        if self._thr and self._thr is not current_thread():
            self._thr.join(timeout)
        if self._stopped:
            return
        self._stopped = True
        try:
            self._report(HealthStatus.CRITICAL, f"Terminated with reason: {reason}")
        except Exception as e:
            self._log("ERROR", f"Final health update failed: {type(e).__name__}: {e}")

    def _report(self, status: HealthStatus, message: str) -> bool:
        try:
            self.registry.report_health(self.settings.service_name, status, message)
            return True
        except RegistryError as e:
            self._log("WARN", f"Health update ({status.value}) failed: {e}")
            return False

    def _log(self, level: str, message: str) -> None:
        db.log_event(level, message, service_name=self.settings.service_name, node=self.settings.node_name)
