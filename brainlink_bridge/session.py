"""Connection session: device discovery, connection life cycle and notifications."""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Dict, List, Optional, TYPE_CHECKING

from brainlink_bridge.config import SessionConfig
from brainlink_bridge.events import EventHub, SessionEvent
from brainlink_bridge.telemetry import TelemetryParser

if TYPE_CHECKING:  # pragma: no cover - typing helper only
	from brainlink_bridge.bridge import NativeBleBridge

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
	IDLE = "idle"
	SCANNING = "scanning"
	CONNECTING = "connecting"
	CONNECTED = "connected"
	DISCONNECTED = "disconnected"


def parse_device_list(csv: str) -> List[str]:
	"""Split a ``addr1;addr2;...`` scan result into trimmed, non-empty addresses."""
	return [entry.strip() for entry in csv.split(";") if entry.strip()]


class ConnectionSession:
	"""Owns the device list, scanning flag and session state for one headset link.

	Public operations are fire-and-forget: they forward a request to the
	native bridge and return. Outcomes arrive later through the ``on_*``
	callbacks, which the bridge may invoke from any thread. All shared state is
	guarded by a single lock; notifications are emitted after releasing it and
	the bridge is never called while holding it.
	"""

	def __init__(
		self,
		bridge: "NativeBleBridge",
		*,
		config: SessionConfig | None = None,
		events: Optional[EventHub] = None,
		telemetry: Optional[TelemetryParser] = None,
	) -> None:
		self.bridge = bridge
		self.config = config or SessionConfig()
		self.events = events or (telemetry.events if telemetry is not None else EventHub())
		self._lock = threading.RLock()
		self.telemetry = telemetry or TelemetryParser(self.events, lock=self._lock)
		self._devices: List[str] = []
		self._scanning = False
		self._state = SessionState.IDLE
		self._started = False

	# ------------------------------------------------------------------
	# Lifetime
	# ------------------------------------------------------------------
	def start(self) -> None:
		if self._started:
			return
		self._started = True
		self.bridge.bind(self)
		logger.info("BrainLink session started (auto_connect_first=%s)", self.config.auto_connect_first)
		if self.config.scan_on_start and self.is_bluetooth_enabled():
			self.start_scan()

	def close(self) -> None:
		if not self._started:
			return
		self.stop_scan()
		try:
			self.bridge.close()
		except Exception:
			logger.exception("native bridge failed to close cleanly")
		self._started = False
		logger.info("BrainLink session closed")

	def __enter__(self) -> "ConnectionSession":
		self.start()
		return self

	def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
		self.close()

	# ------------------------------------------------------------------
	# Read-only views
	# ------------------------------------------------------------------
	@property
	def state(self) -> SessionState:
		with self._lock:
			return self._state

	@property
	def is_scanning(self) -> bool:
		with self._lock:
			return self._scanning

	@property
	def devices(self) -> List[str]:
		with self._lock:
			return list(self._devices)

	def telemetry_snapshot(self) -> Dict[str, int]:
		return self.telemetry.snapshot()

	# ------------------------------------------------------------------
	# Public operations
	# ------------------------------------------------------------------
	def start_scan(self) -> None:
		with self._lock:
			if self._scanning:
				return
			previous = self._state
			self._scanning = True
			if self._state in (SessionState.IDLE, SessionState.DISCONNECTED):
				self._state = SessionState.SCANNING

		logger.info("starting BLE scan")
		try:
			self.bridge.start_scan()
		except Exception:
			logger.exception("native bridge failed to start scanning")
			with self._lock:
				self._scanning = False
				self._state = previous

	def stop_scan(self) -> None:
		with self._lock:
			if not self._scanning:
				return
			self._scanning = False
			self._devices.clear()
			if self._state is SessionState.SCANNING:
				self._state = SessionState.IDLE

		logger.info("stopping BLE scan")
		try:
			self.bridge.stop_scan()
		except Exception:
			logger.exception("native bridge failed to stop scanning")

	def connect_to_device(self, index: int) -> None:
		with self._lock:
			if index < 0 or index >= len(self._devices):
				logger.debug("ignoring connect request for index %s (%d device(s) known)", index, len(self._devices))
				return
			address = self._devices[index]
			previous = self._state
			if self._state is not SessionState.CONNECTED:
				self._state = SessionState.CONNECTING

		logger.info("connecting to device #%d (%s)", index, address)
		try:
			self.bridge.select_device(index)
		except Exception:
			logger.exception("native bridge failed to select device #%d", index)
			with self._lock:
				if self._state is SessionState.CONNECTING:
					self._state = previous

	def disconnect(self) -> None:
		logger.info("disconnect requested")
		try:
			self.bridge.disconnect()
		except Exception:
			logger.exception("native bridge failed to disconnect")

	def is_bluetooth_enabled(self) -> bool:
		try:
			return bool(self.bridge.is_bluetooth_enabled())
		except Exception:
			logger.warning("Bluetooth state query failed; assuming enabled", exc_info=True)
			return True

	# ------------------------------------------------------------------
	# Native callbacks
	# ------------------------------------------------------------------
	def on_scan_result(self, csv: str = "") -> None:
		addresses = parse_device_list(csv or "")
		with self._lock:
			self._devices[:] = addresses
			snapshot = list(self._devices)
			auto_connect = self.config.auto_connect_first and bool(snapshot)

		logger.debug("scan result: %d device(s)", len(snapshot))
		self.events.emit(SessionEvent.DEVICE_LIST_UPDATED, snapshot)
		if auto_connect:
			self.connect_to_device(0)

	def on_bluetooth_closed(self, _: str = "") -> None:
		logger.info("Bluetooth radio turned off")
		self.stop_scan()
		self.events.emit(SessionEvent.BLUETOOTH_STATE_CHANGED, False)

	def on_bluetooth_opened(self, _: str = "") -> None:
		logger.info("Bluetooth radio turned on")
		self.events.emit(SessionEvent.BLUETOOTH_STATE_CHANGED, True)
		self.start_scan()

	def on_scan_failed(self, reason: str = "") -> None:
		"""The native scan ended on its own; forget the outstanding request."""
		with self._lock:
			self._scanning = False
			if self._state is SessionState.SCANNING:
				self._state = SessionState.IDLE
		logger.warning("BLE scan stopped unexpectedly: %s", reason or "unknown error")

	def on_services_discovered(self, _: str = "") -> None:
		with self._lock:
			self._state = SessionState.CONNECTED
		logger.info("headset connected")
		self.events.emit(SessionEvent.CONNECTED)

	def on_disconnected(self, _: str = "") -> None:
		self._mark_disconnected("disconnected")

	def on_fail_to_connect(self, _: str = "") -> None:
		# Reported to subscribers exactly like a disconnect.
		self._mark_disconnected("connection attempt failed")

	def on_raw_data(self, text: str = "") -> None:
		self.telemetry.parse(text or "")

	def _mark_disconnected(self, reason: str) -> None:
		with self._lock:
			self._state = SessionState.DISCONNECTED
		logger.info("headset %s", reason)
		self.events.emit(SessionEvent.DISCONNECTED)

	def status(self) -> Dict[str, object]:
		with self._lock:
			payload: Dict[str, object] = {
				"state": self._state.value,
				"scanning": self._scanning,
				"devices": list(self._devices),
			}
		payload["bluetooth"] = self.is_bluetooth_enabled()
		payload["telemetry"] = self.telemetry.snapshot()
		return payload


__all__ = [
	"ConnectionSession",
	"SessionState",
	"parse_device_list",
]
