"""Estadísticas de publicación."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..domain.reading import PublishResult


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Stats:
    """Estadísticas del proceso; solo se reinician al reiniciar."""

    total_published: int = 0
    errors: int = 0
    last_publish_time: Optional[datetime] = None
    started_at: datetime = field(default_factory=_utc_now)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __str__(self) -> str:
        return f"Stats: published={self.total_published} errors={self.errors}"

    def record_error(self, count: int = 1) -> None:
        with self._lock:
            self.errors += count

    def record_results(self, results: Iterable[PublishResult]) -> int:
        """Agrega los resultados de un ciclo. Devuelve lecturas publicadas."""
        published = 0
        failed = 0
        for result in results:
            if result.ok:
                published += result.reading_count
            else:
                failed += 1

        with self._lock:
            self.total_published += published
            self.errors += failed
            if published:
                self.last_publish_time = _utc_now()
        return published

    def uptime_seconds(self) -> int:
        return int((_utc_now() - self.started_at).total_seconds())

    def to_dict(self) -> dict:
        """Convierte a diccionario."""
        with self._lock:
            return {
                "started_at": self.started_at.isoformat(),
                "total_published": self.total_published,
                "last_publish_time": (
                    self.last_publish_time.isoformat() if self.last_publish_time else None
                ),
                "errors": self.errors,
                "uptime": self.uptime_seconds(),
            }
