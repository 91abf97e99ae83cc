"""FastAPI backend that exposes read-only dashboard endpoints.

- GET /health
- GET /queue
- GET /analytics/moderation
- GET /analytics/security
- GET /analytics/reports
- GET /analytics/dashboard

Ingestion is not exposed here; content and events reach the engine through
its Python API.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query

from safeguard.engine import SafeguardEngine
from safeguard.models.analytics import (
    DashboardSummary, ModerationAnalytics, ReportAnalytics, SecurityAnalytics
)
from safeguard.models.enums import QueueStatus, ReviewPriority
from safeguard.models.review import ModerationFilters


def create_app(engine: Optional[SafeguardEngine] = None) -> FastAPI:
    engine = engine or SafeguardEngine.from_env()
    app = FastAPI(title="Safeguard API", version="0.1.0")

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/queue")
    def queue(
        priority: Optional[ReviewPriority] = None,
        status: Optional[QueueStatus] = None,
        content_type: Optional[str] = None,
        limit: int = Query(default=50, ge=1, le=200),
    ) -> List[Dict[str, Any]]:
        entries = engine.moderation.get_queue(ModerationFilters(
            priority=priority, status=status, content_type=content_type, limit=limit,
        ))
        return [e.model_dump(mode="json") for e in entries]

    @app.get("/analytics/moderation", response_model=ModerationAnalytics)
    def moderation_analytics() -> ModerationAnalytics:
        return engine.analytics.moderation_analytics()

    @app.get("/analytics/security", response_model=SecurityAnalytics)
    def security_analytics() -> SecurityAnalytics:
        return engine.analytics.security_analytics()

    @app.get("/analytics/reports", response_model=ReportAnalytics)
    def report_analytics() -> ReportAnalytics:
        return engine.analytics.report_analytics()

    @app.get("/analytics/dashboard", response_model=DashboardSummary)
    def dashboard() -> DashboardSummary:
        return engine.analytics.dashboard()

    return app
