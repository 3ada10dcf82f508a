"""CLI entry point del servicio de push."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import threading
from typing import List, Optional

import uvicorn

from common.config import ConfigError, Settings, get_settings
from common.logging_setup import configure_logging

from .core.domain.errors import PushServiceError
from .endpoints.health import create_app
from .service import PushService

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="IoT push service: Redis → MQTT")
    p.add_argument("--env-file", default=None, help="env file to load (default: config.env)")
    p.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    p.add_argument("--http-port", type=int, default=None, help="health API port, 0 disables it")
    return p.parse_args(argv)


def _start_http(service: PushService, port: int) -> threading.Thread:
    config = uvicorn.Config(create_app(service), host="0.0.0.0", port=port, log_level="warning")
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="push-http", daemon=True)
    thread.start()
    logger.info("[MAIN] Health API listening on :%d", port)
    return thread


def _log_stats_until_stopped(service: PushService, settings: Settings) -> None:
    while not service.wait(settings.stats_log_interval):
        logger.info("[MAIN] Service stats: %s", service.get_stats())


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        settings = get_settings(args.env_file)
    except ConfigError as e:
        configure_logging("error", log_dir=None)
        logger.error("[MAIN] Invalid configuration: %s", e)
        return 2

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.http_port is not None:
        overrides["http_port"] = args.http_port
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    configure_logging(settings.log_level, settings.log_dir)

    service = PushService(settings)
    try:
        service.start()
    except PushServiceError as e:
        logger.error("[MAIN] Service failed to start: %s", e)
        return 1
    except Exception as e:
        logger.exception("[MAIN] Unexpected error during start: %s", e)
        return 1

    if settings.http_port:
        _start_http(service, settings.http_port)

    try:
        _log_stats_until_stopped(service, settings)
    except KeyboardInterrupt:
        service.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
