"""Server-rendered pages: the landing page and the analytics dashboard."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import HTMLResponse

from .analytics import AnalyticsEngine, BasicStats, spots_remaining
from .dashboard import RECENT_SIGNUP_LIMIT, dashboard_context, error_context, template_environment
from .database import Database, StoreError
from .models import CHALLENGE_LABELS, SKILL_LABELS

logger = logging.getLogger("zintle.web")


def register_ui_routes(
    app: FastAPI,
    *,
    database: Database,
    analytics: AnalyticsEngine,
    admin: Callable[..., Any],
    spots_total: int,
    websocket_path: str,
) -> None:
    templates = template_environment()
    router = APIRouter()

    @router.get("/", response_class=HTMLResponse, name="ui_home")
    async def landing(request: Request):
        try:
            stats = analytics.basic_stats()
        except StoreError:
            logger.exception("Failed to load counters for the landing page")
            stats = BasicStats(
                total_signups=0,
                spots_left=spots_remaining(0, spots_total),
                timestamp=datetime.now(timezone.utc),
            )
        context = {
            "stats": stats,
            "websocket_path": websocket_path,
            "skills": [(skill.value, label) for skill, label in SKILL_LABELS.items()],
            "challenges": [(challenge.value, label) for challenge, label in CHALLENGE_LABELS.items()],
        }
        return templates.TemplateResponse(request, "landing.html", context)

    @router.get(
        "/dashboard",
        response_class=HTMLResponse,
        name="ui_dashboard",
        dependencies=[Depends(admin)],
    )
    async def dashboard(request: Request):
        try:
            report = analytics.comprehensive_stats()
            users = database.list_recent_users(RECENT_SIGNUP_LIMIT)
        except Exception as exc:
            logger.exception("Failed to build the analytics dashboard")
            return templates.TemplateResponse(
                request,
                "dashboard_error.html",
                error_context(exc),
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return templates.TemplateResponse(request, "dashboard.html", dashboard_context(report, users))

    app.include_router(router)


__all__ = ["register_ui_routes"]
