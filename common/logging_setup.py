"""Configuración de logging del proceso.

Consola + archivos rotativos (combined/error).
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5


def configure_logging(level: str = "info", log_dir: Optional[str] = "logs") -> None:
    """Inicializa el root logger.

    Args:
        level: Nivel de log ("debug", "info", "warning", ...)
        log_dir: Directorio para los archivos; None desactiva archivos
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(
            path / "combined.log", maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
        )
        errors = RotatingFileHandler(
            path / "error.log", maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
        )
        errors.setLevel(logging.ERROR)
        handlers.extend([combined, errors])

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
