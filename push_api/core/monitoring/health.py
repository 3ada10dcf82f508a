"""Health checks del servicio."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

HEALTHY = "healthy"
DEGRADED = "degraded"
STOPPED = "stopped"


@dataclass
class HealthStatus:
    """Estado de salud: proceso + cada backend por separado."""
    running: bool
    redis_ready: bool
    mqtt_ready: bool
    config: Dict[str, Any] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        if not self.running:
            return STOPPED
        if self.redis_ready and self.mqtt_ready:
            return HEALTHY
        return DEGRADED

    @property
    def ready(self) -> bool:
        return self.status == HEALTHY

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {
                "redis": self.redis_ready,
                "mqtt": self.mqtt_ready,
            },
            "config": self.config,
            "stats": self.stats,
        }
