"""Tests del watchdog de reconexión."""

import threading
from unittest.mock import MagicMock

from push_api.core.transport.watchdog import ReconnectWatchdog


class TestReconnectWatchdog:

    def test_fires_while_disconnected(self, wait_until):
        action = MagicMock()
        watchdog = ReconnectWatchdog(0.01, action, is_connected=lambda: False)

        assert watchdog.arm() is True
        assert wait_until(lambda: action.call_count >= 3)
        assert watchdog.fired >= 3

        watchdog.disarm()

    def test_arm_is_idempotent(self):
        watchdog = ReconnectWatchdog(10, MagicMock(), is_connected=lambda: False)

        assert watchdog.arm() is True
        first_thread = watchdog._thread
        assert watchdog.arm() is False
        assert watchdog._thread is first_thread

        watchdog.disarm()

    def test_self_disarms_when_connected(self, wait_until):
        connected = threading.Event()
        action = MagicMock(side_effect=connected.set)
        watchdog = ReconnectWatchdog(0.01, action, is_connected=connected.is_set)

        watchdog.arm()

        assert wait_until(lambda: not watchdog.armed)
        assert action.call_count == 1

    def test_action_errors_do_not_stop_it(self, wait_until):
        action = MagicMock(side_effect=RuntimeError("broker down"))
        watchdog = ReconnectWatchdog(0.01, action, is_connected=lambda: False)

        watchdog.arm()

        assert wait_until(lambda: action.call_count >= 2)
        assert watchdog.armed
        watchdog.disarm()

    def test_disarm(self, wait_until):
        action = MagicMock()
        watchdog = ReconnectWatchdog(10, action, is_connected=lambda: False)

        watchdog.arm()
        assert watchdog.disarm() is True
        assert watchdog.disarm() is False
        assert not watchdog.armed
        action.assert_not_called()

    def test_can_rearm_after_disarm(self, wait_until):
        action = MagicMock()
        watchdog = ReconnectWatchdog(0.01, action, is_connected=lambda: False)

        watchdog.arm()
        watchdog.disarm()
        assert watchdog.arm() is True
        assert wait_until(lambda: action.call_count >= 1)
        watchdog.disarm()
