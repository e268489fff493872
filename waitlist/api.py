"""JSON API and realtime channel for the waitlist service."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException

from .analytics import AnalyticsEngine
from .database import Database, StoreError
from .mailer import Mailer
from .realtime import ConnectionRegistry
from .signup import ConflictError, SignupPipeline, ValidationError

logger = logging.getLogger("zintle.service")

WEBSOCKET_PATH = "/ws"


class SendUpdateRequest(BaseModel):
    subject: Optional[str] = None
    content: Optional[str] = None


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    payload: Dict[str, Any] = {"error": message}
    payload.update(extra)
    return JSONResponse(status_code=status_code, content=payload)


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise ValidationError([{"field": "body", "message": "Request body must be valid JSON"}]) from exc


def register_api_routes(
    app: FastAPI,
    *,
    database: Database,
    mailer: Mailer,
    registry: ConnectionRegistry,
    analytics: AnalyticsEngine,
    pipeline: SignupPipeline,
    admin: Callable[..., Any],
) -> None:
    """Attach the ``/api`` routes and the ``/ws`` channel to ``app``."""

    router = APIRouter(prefix="/api")
    admin_router = APIRouter(prefix="/api", dependencies=[Depends(admin)])

    @router.get("/stats")
    async def read_stats() -> JSONResponse:
        try:
            stats = analytics.basic_stats()
        except StoreError:
            logger.exception("Failed to fetch stats")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch stats")
        return JSONResponse(stats.to_payload())

    @router.post("/waitlist", status_code=status.HTTP_201_CREATED)
    async def join_waitlist(request: Request) -> JSONResponse:
        try:
            payload = await _read_json(request)
            result = await pipeline.submit_payload(payload)
        except ValidationError as exc:
            return _error(status.HTTP_400_BAD_REQUEST, "Validation failed", details=exc.details)
        except ConflictError:
            return _error(status.HTTP_409_CONFLICT, "Email already registered")
        except Exception:
            logger.exception("Waitlist signup failed")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content={
                "success": result.success,
                "message": "Successfully joined waitlist",
                "userId": result.user_id,
                "emailSent": result.email_sent,
                "position": result.position,
            },
        )

    @admin_router.post("/send-update")
    async def send_update(request: Request) -> JSONResponse:
        try:
            body = SendUpdateRequest.model_validate(await _read_json(request))
        except ValidationError as exc:
            return _error(status.HTTP_400_BAD_REQUEST, "Validation failed", details=exc.details)
        except PydanticValidationError as exc:
            details = [
                {"field": ".".join(str(part) for part in error["loc"]) or "body", "message": error["msg"]}
                for error in exc.errors()
            ]
            return _error(status.HTTP_400_BAD_REQUEST, "Validation failed", details=details)
        if not body.subject or not body.content:
            return _error(status.HTTP_400_BAD_REQUEST, "Subject and content are required")

        try:
            emails = database.list_emails()
            result = await mailer.send_broadcast(emails, body.subject, body.content)
        except Exception:
            logger.exception("Failed to send progress update")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to send updates")

        if result.failed:
            logger.warning("Progress update reached %s of %s users", result.sent, result.total)
        return JSONResponse(
            {
                "success": result.success,
                "sent": result.sent,
                "total": result.total,
                "message": f"Progress update sent to {result.sent}/{result.total} users",
            }
        )

    @admin_router.get("/analytics")
    async def read_analytics() -> JSONResponse:
        try:
            summary = analytics.summary()
        except StoreError:
            logger.exception("Failed to fetch analytics")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch analytics")
        return JSONResponse(summary.to_payload())

    @admin_router.get("/analytics/comprehensive")
    async def read_comprehensive_analytics() -> JSONResponse:
        try:
            report = analytics.comprehensive_stats()
        except StoreError:
            logger.exception("Failed to fetch comprehensive analytics")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch comprehensive analytics")
        return JSONResponse(report.to_payload())

    app.include_router(router)
    app.include_router(admin_router)

    @app.websocket(WEBSOCKET_PATH)
    async def counter_updates(websocket: WebSocket) -> None:
        await registry.connect(websocket)
        try:
            while True:
                # Inbound messages carry no meaning and are dropped.
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except (WebSocketDisconnect, RuntimeError):
            pass
        finally:
            registry.discard(websocket)
            logger.debug("Realtime subscriber disconnected (%s open)", len(registry))


def error_response_for(exc: HTTPException) -> JSONResponse:
    """Render an :class:`HTTPException` as ``{"error": ...}``."""

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


__all__ = ["SendUpdateRequest", "WEBSOCKET_PATH", "error_response_for", "register_api_routes"]
