"""Errores del servicio de push.

Cada tipo de error de conexión es distinto porque dispara decisiones
de backoff diferentes.
"""

from __future__ import annotations

from typing import Optional


class PushServiceError(Exception):
    """Base de todos los errores del servicio."""


class NotConnected(PushServiceError):
    """Operación intentada con un backend que no está listo."""

    def __init__(self, backend: str):
        self.backend = backend
        super().__init__(f"{backend} is not connected")


class MissingField(PushServiceError):
    """Dato requerido ausente en una lectura del backend."""

    def __init__(self, field: str, source: str = "redis"):
        self.field = field
        self.source = source
        super().__init__(f"Missing field '{field}' in {source}")


class IncompleteIdentity(PushServiceError):
    """DeviceIdentity sin serial o sin IP."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Incomplete device identity, missing: {', '.join(missing)}")


class ConnectError(PushServiceError):
    """Fallo al establecer una conexión."""

    def __init__(self, backend: str, message: str, cause: Optional[BaseException] = None):
        self.backend = backend
        self.cause = cause
        super().__init__(f"[{backend}] {message}")


class ConnectTimeout(ConnectError):
    """La conexión no se estableció dentro del timeout."""


class ConnectRefused(ConnectError):
    """El servidor rechazó la conexión; no se reintenta."""


class RetryBudgetExceeded(ConnectError):
    """Se agotó el presupuesto de reintentos (tiempo o intentos)."""

    def __init__(
        self,
        backend: str,
        attempts: int,
        elapsed_seconds: float,
        cause: Optional[BaseException] = None,
    ):
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            backend,
            f"retry budget exceeded after {attempts} attempts ({elapsed_seconds:.1f}s)",
            cause,
        )


class DecodeFailure(PushServiceError):
    """No se pudo decodificar un texto con escapes legacy."""

    def __init__(self, text: str, reason: str):
        self.text = text
        self.reason = reason
        super().__init__(f"Cannot decode legacy text: {reason}")


class PublishFailure(PushServiceError):
    """El broker rechazó o no completó una publicación."""

    def __init__(self, topic: str, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Publish to '{topic}' failed: {reason}")
