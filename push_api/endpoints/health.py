"""Health, readiness y stats del servicio de push."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, Field

from ..service import PushService


class ServicesStatus(BaseModel):
    redis: bool
    mqtt: bool


class HealthOut(BaseModel):
    status: str
    timestamp: str
    services: ServicesStatus
    config: Dict[str, Any] = Field(default_factory=dict)
    stats: Dict[str, Any] = Field(default_factory=dict)


class StatsOut(BaseModel):
    started_at: str
    total_published: int
    last_publish_time: Optional[str] = None
    errors: int
    uptime: int
    is_running: bool
    redis_connected: bool
    mqtt_connected: bool


class RegisterOut(BaseModel):
    registered: bool


def create_router(service: PushService) -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get("/health", response_model=HealthOut)
    def health():
        """Liveness: estado por backend, siempre 200."""
        return service.health_check()

    @router.get("/ready")
    def ready():
        """Readiness: 503 si algún backend no está listo."""
        report = service.health_check()
        if report["status"] != "healthy":
            raise HTTPException(status_code=503, detail=report["services"])
        return {"status": "ready"}

    @router.get("/stats", response_model=StatsOut)
    def stats():
        return service.get_stats()

    @router.post("/device/register", response_model=RegisterOut)
    def register_device():
        """Reenvía la identidad del gateway al topic de registro."""
        if not service.manual_register_device():
            raise HTTPException(status_code=503, detail="device registration failed")
        return {"registered": True}

    return router


def create_app(service: PushService) -> FastAPI:
    app = FastAPI(title="IoT Push Service", version="0.1.0")
    app.include_router(create_router(service))
    return app
