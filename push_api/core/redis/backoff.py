"""Política de reintentos para la conexión a Redis.

Tres cortes escalonados:
1. Conexión rechazada → abortar inmediatamente
2. Tiempo acumulado de reintentos > max_total_seconds → abortar
3. Intentos > max_attempts → abortar
Si no, esperar min(attempt * base_delay, max_delay).
"""

from __future__ import annotations

import errno
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ..domain.errors import ConnectRefused, RetryBudgetExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKEND = "redis"


def is_connection_refused(error: BaseException) -> bool:
    """Detecta ECONNREFUSED aunque venga envuelto por redis-py."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return True
        if isinstance(current, OSError) and current.errno == errno.ECONNREFUSED:
            return True
        if "connection refused" in str(current).lower():
            return True
        current = current.__cause__ or current.__context__
    return False


@dataclass
class ReconnectPolicy:
    """Configuración de backoff lineal con tope."""

    base_delay: float = 0.1  # segundos
    max_delay: float = 3.0  # segundos
    max_attempts: int = 10
    max_total_seconds: float = 3600.0

    def calculate_delay(self, attempt: int) -> float:
        """Delay antes del siguiente intento (attempt 1-indexed)."""
        return min(attempt * self.base_delay, self.max_delay)

    def next_delay(self, attempt: int, elapsed: float, error: BaseException) -> float:
        """Decide si reintentar tras el fallo del intento `attempt`.

        Returns:
            Delay en segundos antes del próximo intento

        Raises:
            ConnectRefused: el servidor rechazó la conexión
            RetryBudgetExceeded: tiempo o intentos agotados
        """
        if is_connection_refused(error):
            raise ConnectRefused(BACKEND, "server refused the connection", error)
        if elapsed > self.max_total_seconds:
            raise RetryBudgetExceeded(BACKEND, attempt, elapsed, error)
        if attempt > self.max_attempts:
            raise RetryBudgetExceeded(BACKEND, attempt, elapsed, error)
        return self.calculate_delay(attempt)


class ReconnectExecutor:
    """Ejecuta un intento de conexión aplicando la política."""

    def __init__(
        self,
        policy: Optional[ReconnectPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._policy = policy or ReconnectPolicy()
        self._sleep = sleep
        self._clock = clock
        self._total_attempts = 0
        self._total_retries = 0

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    @property
    def stats(self) -> dict:
        return {
            "total_attempts": self._total_attempts,
            "total_retries": self._total_retries,
        }

    def execute(
        self,
        func: Callable[[], T],
        should_continue: Callable[[], bool] = lambda: True,
    ) -> T:
        """Reintenta `func` hasta que funcione o la política aborte."""
        started = self._clock()
        attempt = 0

        while True:
            attempt += 1
            self._total_attempts += 1
            try:
                return func()
            except (ConnectRefused, RetryBudgetExceeded):
                raise
            except Exception as e:
                elapsed = self._clock() - started
                delay = self._policy.next_delay(attempt, elapsed, e)
                self._total_retries += 1
                logger.warning(
                    "[REDIS] Connect attempt %d/%d failed, retrying in %.2fs: %s",
                    attempt,
                    self._policy.max_attempts,
                    delay,
                    e,
                )
                self._sleep(delay)
                if not should_continue():
                    raise RetryBudgetExceeded(BACKEND, attempt, self._clock() - started, e)
