"""Tests for the notification registry."""
from __future__ import annotations

import asyncio
import threading
import unittest
from typing import List

from brainlink_bridge.events import EventHub, SessionEvent


class EventHubTest(unittest.TestCase):
    def test_handlers_run_in_subscription_order_and_can_unsubscribe(self) -> None:
        hub = EventHub()
        calls: List[str] = []
        hub.subscribe(SessionEvent.CONNECTED, lambda: calls.append("first"))
        unsubscribe = hub.subscribe(SessionEvent.CONNECTED, lambda: calls.append("second"))

        hub.emit(SessionEvent.CONNECTED)
        unsubscribe()
        unsubscribe()
        hub.emit(SessionEvent.CONNECTED)

        self.assertEqual(calls, ["first", "second", "first"])
        self.assertEqual(hub.subscriber_count(SessionEvent.CONNECTED), 1)

    def test_async_handler_without_loop_is_dropped_with_warning(self) -> None:
        hub = EventHub()

        async def _handler(enabled: bool) -> None:  # pragma: no cover - never awaited
            raise AssertionError("should not run")

        hub.subscribe(SessionEvent.BLUETOOTH_STATE_CHANGED, _handler)
        with self.assertLogs("brainlink_bridge.events", level="WARNING"):
            hub.emit(SessionEvent.BLUETOOTH_STATE_CHANGED, True)


class EventHubAsyncTest(unittest.IsolatedAsyncioTestCase):
    async def test_async_handler_runs_on_current_loop(self) -> None:
        hub = EventHub()
        received: List[List[str]] = []

        async def _handler(devices: List[str]) -> None:
            received.append(devices)

        hub.subscribe(SessionEvent.DEVICE_LIST_UPDATED, _handler)
        hub.emit(SessionEvent.DEVICE_LIST_UPDATED, ["AA:11"])
        await asyncio.sleep(0)
        self.assertEqual(received, [["AA:11"]])

    async def test_async_handler_from_foreign_thread_uses_bound_loop(self) -> None:
        hub = EventHub(loop=asyncio.get_running_loop())
        done = asyncio.Event()

        async def _handler() -> None:
            done.set()

        hub.subscribe(SessionEvent.DISCONNECTED, _handler)
        worker = threading.Thread(target=hub.emit, args=(SessionEvent.DISCONNECTED,))
        worker.start()
        await asyncio.wait_for(done.wait(), timeout=1.0)
        worker.join(timeout=1.0)


if __name__ == "__main__":
    unittest.main()
