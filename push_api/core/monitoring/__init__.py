"""Monitoring layer - Métricas y observabilidad."""

from .health import HealthStatus
from .stats import Stats

__all__ = ["Stats", "HealthStatus"]
