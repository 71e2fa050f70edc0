from __future__ import annotations

from threading import Event, Thread, current_thread
from typing import AbstractSet, Callable, Iterable

from . import db
from .driver import MembershipDriver, PartialApplyError
from .registry import ConsulRegistry, RegistryError
from .runtime import ApplyOutcome, CycleReport, NodeId, compute_delta, utc_now
from .settings import Settings


class Reconciler:
    """Continuously reconciles tracked membership with the registry.

    The tracked set follows actual connectivity: the registry is only the
    target to converge toward. It is written by one thread only, by replacing
    the frozenset at the end of each cycle.
    """

    def __init__(
        self,
        registry: ConsulRegistry,
        driver: MembershipDriver,
        settings: Settings,
        members: Iterable[NodeId] = (),
    ):
        self.registry = registry
        self.driver = driver
        self.settings = settings
        self._members: frozenset[NodeId] = frozenset(members)
        self._last_report: CycleReport | None = None
        self._stop = Event()
        self._wake = Event()
        self._thr: Thread | None = None

    @property
    def members(self) -> frozenset[NodeId]:
        return self._members

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._wake.clear()
        self._thr = Thread(target=self._loop, name="cmr-reconciler", daemon=True)
        self._thr.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thr and self._thr is not current_thread():
            self._thr.join(timeout)

    def wake(self) -> None:
        """Run the next cycle now instead of after the polling interval."""
        self._wake.set()

    def _loop(self) -> None:
        self._log("INFO", "Reconciler started")
        while not self._stop.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                self._log("ERROR", f"Reconcile cycle failed: {type(e).__name__}: {e}")
            # The next cycle is armed only once this one has committed.
            self._wake.wait(self.settings.polling_interval_s)
            self._wake.clear()
        self._log("INFO", "Reconciler stopped")

    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        tracked = self._members

        try:
            discovered = self.registry.discover(self.settings.service_name)
        except RegistryError as e:
            # A registry outage is not "everyone left": keep what we have.
            report.error = str(e)
            report.members = tracked
            self._log("ERROR", f"Discovery failed, keeping {len(tracked)} tracked node(s): {e}")
            return self._finish(report)

        report.discovered = discovered
        report.delta = compute_delta(tracked, discovered)
        candidate = set(discovered)

        # Still connected, so still tracked.
        report.failed_removes = self._apply(self.driver.disconnect_many, report.delta.to_remove, "disconnect")
        candidate.update(report.failed_removes)

        # Not connected, so not tracked.
        report.failed_adds = self._apply(self.driver.connect_many, report.delta.to_add, "connect")
        candidate.difference_update(report.failed_adds)

        report.members = frozenset(candidate)
        self._members = report.members

        if not report.delta.empty:
            self._log(
                "INFO",
                f"Membership updated: +{len(report.added)} -{len(report.removed)}, "
                f"{len(report.members)} node(s) tracked",
            )
        return self._finish(report)

    def _apply(
        self,
        fn: Callable[[AbstractSet[NodeId]], ApplyOutcome | None],
        nodes: frozenset[NodeId],
        action: str,
    ) -> dict[NodeId, str]:
        """Run one driver batch and return the nodes it failed on."""
        if not nodes:
            return {}
        try:
            outcome = fn(nodes)
            # None means the whole batch went through.
            failed = dict(outcome.failed) if outcome is not None else {}
        except PartialApplyError as e:
            failed = dict(e.failed)
        except Exception as e:
            failed = {n: f"{type(e).__name__}: {e}" for n in nodes}

        # Ignore reports about nodes that were not part of the batch.
        failed = {n: r for n, r in failed.items() if n in nodes}

        for n in sorted(failed):
            self._log("WARN", f"Failed to {action} {n}: {failed[n]}", node=n)
        for n in sorted(nodes - frozenset(failed)):
            self._log("INFO", f"{action.capitalize()}ed {n}", node=n)
        return failed

    def _finish(self, report: CycleReport) -> CycleReport:
        report.finished_at = utc_now()
        self._last_report = report
        db.record_cycle(report, service_name=self.settings.service_name)
        return report

    def _log(self, level: str, message: str, node: str | None = None) -> None:
        db.log_event(level, message, service_name=self.settings.service_name, node=node or self.settings.node_name)
