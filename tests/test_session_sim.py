"""Simulation tests for the connection session using a recording bridge."""
from __future__ import annotations

import threading
import unittest
from typing import Any, List, Tuple

from brainlink_bridge.config import SessionConfig
from brainlink_bridge.events import SessionEvent
from brainlink_bridge.session import ConnectionSession, SessionState, parse_device_list
from fakes import RecordingBridge


def test_parse_device_list_trims_and_drops_empty_entries():
    assert parse_device_list(" AA:11 ; ;BB:22;") == ["AA:11", "BB:22"]
    assert parse_device_list("") == []
    assert parse_device_list(";;;") == []


class ConnectionSessionTest(unittest.TestCase):
    def setUp(self) -> None:
        self.bridge = RecordingBridge()
        self.session = ConnectionSession(self.bridge, config=SessionConfig(auto_connect_first=False, scan_on_start=False))
        self.session.start()
        self.events: List[Tuple[Any, ...]] = []
        for kind in SessionEvent:
            self.session.events.subscribe(kind, lambda *args, _kind=kind: self.events.append((_kind, *args)))

    def test_start_binds_bridge_and_honours_scan_on_start(self) -> None:
        bridge = RecordingBridge()
        session = ConnectionSession(bridge, config=SessionConfig(scan_on_start=True))
        session.start()
        self.assertIs(bridge._callbacks, session)
        self.assertEqual(bridge.names(), ["start_scan"])
        self.assertEqual(session.state, SessionState.SCANNING)

    def test_start_skips_scan_when_radio_is_off(self) -> None:
        bridge = RecordingBridge(enabled=False)
        session = ConnectionSession(bridge, config=SessionConfig(scan_on_start=True))
        session.start()
        self.assertEqual(bridge.names(), [])
        self.assertEqual(session.state, SessionState.IDLE)

    def test_start_scan_is_idempotent(self) -> None:
        self.session.start_scan()
        self.session.start_scan()
        self.assertEqual(self.bridge.names(), ["start_scan"])
        self.assertTrue(self.session.is_scanning)
        self.assertEqual(self.session.state, SessionState.SCANNING)

    def test_stop_scan_is_idempotent_and_clears_devices(self) -> None:
        self.session.stop_scan()
        self.assertEqual(self.bridge.names(), [])

        self.session.start_scan()
        self.session.on_scan_result("AA:11;BB:22")
        self.session.stop_scan()
        self.session.stop_scan()
        self.assertEqual(self.bridge.names(), ["start_scan", "stop_scan"])
        self.assertEqual(self.session.devices, [])
        self.assertEqual(self.session.state, SessionState.IDLE)

    def test_scan_result_replaces_device_list_and_notifies(self) -> None:
        self.session.start_scan()
        self.session.on_scan_result("AA:11")
        self.session.on_scan_result(" BB:22 ;CC:33;")
        self.assertEqual(self.session.devices, ["BB:22", "CC:33"])
        self.assertEqual(
            self.events,
            [
                (SessionEvent.DEVICE_LIST_UPDATED, ["AA:11"]),
                (SessionEvent.DEVICE_LIST_UPDATED, ["BB:22", "CC:33"]),
            ],
        )

    def test_auto_connect_selects_first_device(self) -> None:
        self.session.config.auto_connect_first = True
        self.session.start_scan()
        self.session.on_scan_result("AA:11;BB:22")
        self.assertEqual(self.session.devices, ["AA:11", "BB:22"])
        self.assertEqual(self.bridge.calls[-1], ("select_device", 0))
        self.assertEqual(self.session.state, SessionState.CONNECTING)

    def test_auto_connect_skips_empty_list(self) -> None:
        self.session.config.auto_connect_first = True
        self.session.on_scan_result(";;")
        self.assertNotIn("select_device", self.bridge.names())

    def test_out_of_range_connect_is_dropped(self) -> None:
        self.session.start_scan()
        self.session.on_scan_result("AA:11")
        calls_before = list(self.bridge.calls)
        state_before = self.session.state
        for index in (-1, 1, 5):
            self.session.connect_to_device(index)
        self.assertEqual(self.bridge.calls, calls_before)
        self.assertEqual(self.session.state, state_before)

    def test_connection_life_cycle(self) -> None:
        self.session.start_scan()
        self.session.on_scan_result("AA:11")
        self.session.connect_to_device(0)
        self.assertEqual(self.session.state, SessionState.CONNECTING)

        self.session.on_services_discovered("")
        self.assertEqual(self.session.state, SessionState.CONNECTED)

        self.session.disconnect()
        self.assertEqual(self.session.state, SessionState.CONNECTED)
        self.assertEqual(self.bridge.calls[-1], ("disconnect",))

        self.session.on_disconnected("")
        self.assertEqual(self.session.state, SessionState.DISCONNECTED)
        kinds = [event[0] for event in self.events]
        self.assertEqual(kinds[-2:], [SessionEvent.CONNECTED, SessionEvent.DISCONNECTED])

    def test_failed_connection_looks_like_disconnect(self) -> None:
        self.session.start_scan()
        self.session.on_scan_result("AA:11")
        self.session.connect_to_device(0)
        self.session.on_fail_to_connect("")
        self.assertEqual(self.session.state, SessionState.DISCONNECTED)
        self.assertEqual(self.events[-1], (SessionEvent.DISCONNECTED,))

    def test_start_scan_after_disconnect_rescans(self) -> None:
        self.session.on_disconnected()
        self.session.start_scan()
        self.assertEqual(self.session.state, SessionState.SCANNING)

    def test_bluetooth_closed_stops_scan_from_any_state(self) -> None:
        self.session.start_scan()
        self.session.on_scan_result("AA:11;BB:22")
        self.session.connect_to_device(1)
        self.session.on_bluetooth_closed("")
        self.assertEqual(self.session.devices, [])
        self.assertFalse(self.session.is_scanning)
        self.assertEqual(self.events[-1], (SessionEvent.BLUETOOTH_STATE_CHANGED, False))

        # Already idle: still a clean, empty, non-scanning session.
        self.session.on_bluetooth_closed("")
        self.assertEqual(self.session.devices, [])
        self.assertFalse(self.session.is_scanning)

    def test_scan_failure_allows_a_new_scan_request(self) -> None:
        self.session.start_scan()
        self.session.on_scan_result("AA:11")
        self.session.on_scan_failed("adapter busy")
        self.assertFalse(self.session.is_scanning)
        self.assertEqual(self.session.state, SessionState.IDLE)
        self.assertEqual(self.session.devices, ["AA:11"])
        self.assertEqual(self.events, [(SessionEvent.DEVICE_LIST_UPDATED, ["AA:11"])])

        self.session.start_scan()
        self.assertEqual(self.bridge.names(), ["start_scan", "start_scan"])
        self.assertEqual(self.session.state, SessionState.SCANNING)

    def test_bluetooth_opened_notifies_then_rescans(self) -> None:
        self.session.on_bluetooth_opened("")
        self.assertEqual(self.events[0], (SessionEvent.BLUETOOTH_STATE_CHANGED, True))
        self.assertEqual(self.bridge.names(), ["start_scan"])
        self.session.on_bluetooth_opened("")
        self.assertEqual(self.bridge.names(), ["start_scan"])

    def test_raw_data_feeds_telemetry(self) -> None:
        self.session.on_raw_data("Attention:70\nMeditation:40\nPoorSignalLevel:0")
        self.assertEqual(
            self.session.telemetry_snapshot(),
            {"Attention": 70, "Meditation": 40, "PoorSignalLevel": 0},
        )
        self.assertEqual(self.events[-1][0], SessionEvent.DATA_RECEIVED)

    def test_bridge_failures_do_not_propagate(self) -> None:
        bridge = RecordingBridge(failing={"start_scan", "select_device", "disconnect", "is_bluetooth_enabled"})
        session = ConnectionSession(bridge, config=SessionConfig(auto_connect_first=False, scan_on_start=False))
        session.start()

        with self.assertLogs("brainlink_bridge.session", level="ERROR"):
            session.start_scan()
        self.assertFalse(session.is_scanning)
        self.assertEqual(session.state, SessionState.IDLE)

        session.on_scan_result("AA:11")
        with self.assertLogs("brainlink_bridge.session", level="ERROR"):
            session.connect_to_device(0)
        self.assertEqual(session.state, SessionState.IDLE)

        with self.assertLogs("brainlink_bridge.session", level="ERROR"):
            session.disconnect()
        self.assertTrue(session.is_bluetooth_enabled())

    def test_subscriber_errors_are_isolated(self) -> None:
        received: List[List[str]] = []

        def _boom(_: List[str]) -> None:
            raise ValueError("subscriber bug")

        self.session.events.subscribe(SessionEvent.DEVICE_LIST_UPDATED, _boom)
        self.session.events.subscribe(SessionEvent.DEVICE_LIST_UPDATED, received.append)
        with self.assertLogs("brainlink_bridge.events", level="ERROR"):
            self.session.on_scan_result("AA:11")
        self.assertEqual(received, [["AA:11"]])

    def test_subscriber_may_call_back_into_session(self) -> None:
        self.session.events.subscribe(SessionEvent.DEVICE_LIST_UPDATED, lambda devices: self.session.stop_scan())
        self.session.start_scan()
        self.session.on_scan_result("AA:11")
        self.assertFalse(self.session.is_scanning)
        self.assertEqual(self.session.devices, [])

    def test_callbacks_from_another_thread(self) -> None:
        self.session.start_scan()
        worker = threading.Thread(target=self.session.on_scan_result, args=("AA:11;BB:22",))
        worker.start()
        worker.join(timeout=2.0)
        self.assertEqual(self.session.devices, ["AA:11", "BB:22"])

    def test_close_stops_scan_and_closes_bridge(self) -> None:
        self.session.start_scan()
        with self.session:
            pass
        self.assertIn("stop_scan", self.bridge.names())
        self.assertTrue(self.bridge.closed)

    def test_status_payload(self) -> None:
        self.session.start_scan()
        self.session.on_scan_result("AA:11")
        self.session.on_raw_data("Attention:3")
        status = self.session.status()
        self.assertEqual(status["state"], "scanning")
        self.assertTrue(status["scanning"])
        self.assertTrue(status["bluetooth"])
        self.assertEqual(status["devices"], ["AA:11"])
        self.assertEqual(status["telemetry"], {"Attention": 3})


if __name__ == "__main__":
    unittest.main()
