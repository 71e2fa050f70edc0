from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Query, status

from . import db
from .api_models import CycleView, MembershipView
from .runtime import CycleReport
from .strategy import ClusterStrategy


def _cycle_view(report: CycleReport) -> CycleView:
    return CycleView(
        ok=report.ok,
        started_at=report.started_at,
        finished_at=report.finished_at or report.started_at,
        added=sorted(report.added),
        removed=sorted(report.removed),
        failed_adds=dict(sorted(report.failed_adds.items())),
        failed_removes=dict(sorted(report.failed_removes.items())),
        error=report.error,
    )


def create_app(strategy: ClusterStrategy) -> FastAPI:
    """Status API for a running strategy. Membership is read-only here."""
    app = FastAPI(title=f"Cluster membership: {strategy.settings.service_name}")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/membership", response_model=MembershipView)
    def membership() -> MembershipView:
        report = strategy.reconciler.last_report
        return MembershipView(
            service=strategy.settings.service_name,
            node=strategy.settings.node_name,
            members=sorted(strategy.members),
            last_cycle=_cycle_view(report) if report else None,
        )

    @app.get("/events")
    def events(limit: int = Query(20, ge=1, le=1000)) -> list[dict[str, Any]]:
        return db.latest_events(limit)

    @app.get("/cycles")
    def cycles(limit: int = Query(20, ge=1, le=1000)) -> list[dict[str, Any]]:
        return db.latest_cycles(limit)

    @app.post("/reconcile", status_code=status.HTTP_202_ACCEPTED)
    def reconcile() -> dict[str, bool]:
        strategy.reconciler.wake()
        return {"scheduled": True}

    return app
