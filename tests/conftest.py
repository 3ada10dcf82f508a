"""Fixtures compartidas."""

import time
from typing import Callable

import pytest

from common.config import Settings


def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0, step: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step)
    return predicate()


@pytest.fixture
def wait_until():
    """Espera activa hasta que un predicado sea verdadero o venza el timeout."""
    return _wait_until


@pytest.fixture
def settings() -> Settings:
    """Settings de test: timeouts cortos, sin flush ni auto-registro."""
    return Settings(
        mqtt_client_id="test-client",
        mqtt_connect_timeout=0.2,
        mqtt_watchdog_interval=60.0,
        mqtt_publish_ack_timeout=0.2,
        mqtt_flush_delay=0.0,
        poll_interval_ms=60000,
        log_dir="",
        auto_register_on_start=False,
    )


@pytest.fixture
def raw_reading() -> dict:
    """Item típico del array SENINF en Redis."""
    return {
        "SN": "S1",
        "ADDRESS": 1,
        "DES": "\\xe6\\xba\\xab\\xe5\\xba\\xa6",
        "name": "Galpón 1",
        "profile": "poultry",
        "value": [
            {"_id": "t1", "name": "temp", "code": "A", "min": -1, "max": 60, "calc": ""},
        ],
    }
