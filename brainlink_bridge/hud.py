"""Heads-up display model fed by session notifications."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, Mapping, Optional, TYPE_CHECKING

from rich.console import Group
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from brainlink_bridge.events import SessionEvent

if TYPE_CHECKING:  # pragma: no cover
	from brainlink_bridge.session import ConnectionSession

logger = logging.getLogger(__name__)

GAUGE_MAX = 100


def signal_quality(poor_signal_level: int) -> int:
	"""ThinkGear reports 0 for a clean signal and 200 for no contact."""
	return GAUGE_MAX - poor_signal_level


@dataclass(slots=True)
class HudState:
	status: str = ""
	connect_enabled: bool = False
	attention: int = 0
	meditation: int = 0
	signal: int = 0


class BrainLinkHud:
	"""Status label, connect button and attention/meditation/signal gauges."""

	def __init__(self) -> None:
		self._state = HudState()
		self._lock = threading.Lock()
		self._session: Optional["ConnectionSession"] = None
		self._unsubscribers: List[Callable[[], None]] = []

	@property
	def state(self) -> HudState:
		with self._lock:
			return replace(self._state)

	def attach(self, session: "ConnectionSession") -> None:
		self.detach()
		self._session = session
		events = session.events
		self._unsubscribers = [
			events.subscribe(SessionEvent.BLUETOOTH_STATE_CHANGED, self.handle_bluetooth_state),
			events.subscribe(SessionEvent.DEVICE_LIST_UPDATED, self.handle_device_list),
			events.subscribe(SessionEvent.CONNECTED, self.handle_connected),
			events.subscribe(SessionEvent.DISCONNECTED, self.handle_disconnected),
			events.subscribe(SessionEvent.DATA_RECEIVED, self.update_gauges),
		]
		self.handle_bluetooth_state(session.is_bluetooth_enabled())

	def detach(self) -> None:
		for unsubscribe in self._unsubscribers:
			unsubscribe()
		self._unsubscribers = []
		self._session = None

	def press_connect(self) -> None:
		with self._lock:
			self._state.status = "Scanning..."
		if self._session is None:
			logger.warning("connect pressed with no session attached")
			return
		self._session.start_scan()

	# ------------------------------------------------------------------
	# Notification handlers
	# ------------------------------------------------------------------
	def handle_bluetooth_state(self, enabled: bool) -> None:
		with self._lock:
			self._state.status = "Bluetooth ready" if enabled else "Please enable Bluetooth"
			self._state.connect_enabled = enabled

	def handle_device_list(self, devices: List[str]) -> None:
		with self._lock:
			self._state.status = "No headset found" if not devices else "Connecting..."

	def handle_connected(self) -> None:
		with self._lock:
			self._state.status = "CONNECTED"

	def handle_disconnected(self) -> None:
		with self._lock:
			self._state.status = "DISCONNECTED - press Connect"
			self._state.attention = 0
			self._state.meditation = 0
			self._state.signal = 0

	def update_gauges(self, data: Mapping[str, int]) -> None:
		with self._lock:
			if "Attention" in data:
				self._state.attention = data["Attention"]
			if "Meditation" in data:
				self._state.meditation = data["Meditation"]
			if "PoorSignalLevel" in data:
				self._state.signal = signal_quality(data["PoorSignalLevel"])

	# ------------------------------------------------------------------
	# Rendering
	# ------------------------------------------------------------------
	def render(self) -> Panel:
		state = self.state
		table = Table.grid(padding=(0, 2))
		table.add_column(justify="right", style="bold")
		table.add_column(width=40)
		table.add_column(justify="right")
		for label, value in (
			("Attention", state.attention),
			("Meditation", state.meditation),
			("Signal", state.signal),
		):
			clamped = max(0, min(GAUGE_MAX, value))
			table.add_row(label, ProgressBar(total=GAUGE_MAX, completed=clamped, width=40), str(value))

		button = Text("[ Connect ]", style="bold green" if state.connect_enabled else "dim")
		return Panel(Group(Text(state.status), table, button), title="BrainLink", expand=False)


__all__ = [
	"BrainLinkHud",
	"GAUGE_MAX",
	"HudState",
	"signal_quality",
]
