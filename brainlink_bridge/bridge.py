"""Native BLE bridge strategies.

The session only ever talks to a :class:`NativeBleBridge`. Outbound requests
are fire-and-forget; results come back through the bound callbacks object
(the session's ``on_*`` methods).
"""
from __future__ import annotations

import abc
import asyncio
import codecs
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, List, Optional, Protocol, Set, TYPE_CHECKING, TypeAlias, Union

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakBluetoothNotAvailableError

from brainlink_bridge.config import BridgeConfig

if TYPE_CHECKING:  # pragma: no cover - typing helper only
	from bleak.backends.device import BLEDevice as _BLEDevice
	from bleak.backends.scanner import AdvertisementData as _AdvertisementData
else:  # pragma: no cover
	_BLEDevice = Any
	_AdvertisementData = Any

BLEDevice: TypeAlias = _BLEDevice
AdvertisementData: TypeAlias = _AdvertisementData
PendingFuture = Union[asyncio.Future, concurrent.futures.Future]

logger = logging.getLogger(__name__)


class NativeCallbacks(Protocol):
	def on_scan_result(self, csv: str = "") -> None: ...

	def on_bluetooth_closed(self, _: str = "") -> None: ...

	def on_bluetooth_opened(self, _: str = "") -> None: ...

	def on_scan_failed(self, reason: str = "") -> None: ...

	def on_services_discovered(self, _: str = "") -> None: ...

	def on_disconnected(self, _: str = "") -> None: ...

	def on_fail_to_connect(self, _: str = "") -> None: ...

	def on_raw_data(self, text: str = "") -> None: ...


class NativeBleBridge(abc.ABC):
	"""Platform capability used by the session to reach the BLE stack."""

	def __init__(self) -> None:
		self._callbacks: Optional[NativeCallbacks] = None

	def bind(self, callbacks: NativeCallbacks) -> None:
		self._callbacks = callbacks

	@abc.abstractmethod
	def start_scan(self) -> None: ...

	@abc.abstractmethod
	def stop_scan(self) -> None: ...

	@abc.abstractmethod
	def select_device(self, index: int) -> None: ...

	@abc.abstractmethod
	def disconnect(self) -> None: ...

	def is_bluetooth_enabled(self) -> bool:
		return True

	def close(self) -> None:
		pass

	async def wait_idle(self, timeout: Optional[float] = None) -> None:
		"""Wait for in-flight requests to settle. A running scan counts as in flight."""

	def _notify(self, name: str, *args: Any) -> None:
		callbacks = self._callbacks
		if callbacks is None:
			logger.debug("dropping %s callback; no session bound", name)
			return
		try:
			getattr(callbacks, name)(*args)
		except Exception:
			logger.exception("session callback %s raised", name)


class NullBridge(NativeBleBridge):
	"""Bridge for hosts without a native BLE plugin. Every request is a no-op."""

	def start_scan(self) -> None:
		logger.debug("NullBridge.start_scan ignored")

	def stop_scan(self) -> None:
		logger.debug("NullBridge.stop_scan ignored")

	def select_device(self, index: int) -> None:
		logger.debug("NullBridge.select_device(%s) ignored", index)

	def disconnect(self) -> None:
		logger.debug("NullBridge.disconnect ignored")


class BleakBridge(NativeBleBridge):
	"""Desktop native layer built on :mod:`bleak`.

	Runs on the asyncio loop passed in, or on a private loop in a daemon thread
	when none is given. Every callback is delivered from that loop, so the
	session sees them serialized and in arrival order.
	"""

	def __init__(self, config: BridgeConfig | None = None, *, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
		super().__init__()
		self.config = config or BridgeConfig()
		self._loop = loop
		self._owns_loop = False
		self._thread: Optional[threading.Thread] = None
		self._loop_lock = threading.Lock()
		self._pending: Set[PendingFuture] = set()
		self._pending_lock = threading.Lock()

		# Loop-confined state below.
		self._addresses: List[str] = []
		self._scanning = False
		self._stop_event: Optional[asyncio.Event] = None
		self._scan_task: Optional[asyncio.Task] = None
		self._client: Optional[BleakClient] = None
		self._connecting: Optional[str] = None
		self._radio_enabled = True
		self._rx_buffer = ""
		self._decoder = codecs.getincrementaldecoder(self.config.encoding)(errors="replace")

	# ------------------------------------------------------------------
	# Outbound requests
	# ------------------------------------------------------------------
	def start_scan(self) -> None:
		self._submit(self._scan())

	def stop_scan(self) -> None:
		self._submit(self._stop_scan())

	def select_device(self, index: int) -> None:
		self._submit(self._connect(index))

	def disconnect(self) -> None:
		self._submit(self._disconnect())

	def is_bluetooth_enabled(self) -> bool:
		return self._radio_enabled

	def close(self) -> None:
		loop = self._loop
		if loop is None or loop.is_closed():
			return
		future = self._submit(self._shutdown())
		if self._on_loop_thread(loop):
			return
		if isinstance(future, concurrent.futures.Future):
			try:
				future.result(timeout=self.config.connect_timeout)
			except concurrent.futures.TimeoutError:
				logger.warning("BLE bridge shutdown timed out")
			except Exception:
				logger.exception("BLE bridge shutdown failed")
		if self._owns_loop:
			loop.call_soon_threadsafe(loop.stop)
			if self._thread is not None:
				self._thread.join(timeout=self.config.connect_timeout)
				if not self._thread.is_alive():
					loop.close()
			self._thread = None
			self._loop = None
			self._owns_loop = False

	async def wait_idle(self, timeout: Optional[float] = None) -> None:
		with self._pending_lock:
			pending = [
				future if isinstance(future, asyncio.Future) else asyncio.wrap_future(future)
				for future in self._pending
			]
		if pending:
			await asyncio.wait(pending, timeout=timeout)

	# ------------------------------------------------------------------
	# Loop-side coroutines
	# ------------------------------------------------------------------
	async def _scan(self) -> None:
		previous = self._scan_task
		if previous is not None and not previous.done() and self._stop_event is not None and self._stop_event.is_set():
			# A stopped scanner is still unwinding; let it release the adapter first.
			await asyncio.wait([previous], timeout=self.config.connect_timeout)
		if self._scanning:
			logger.debug("scan already running")
			return
		self._scanning = True
		self._addresses = []
		stop_event = asyncio.Event()
		self._stop_event = stop_event
		self._scan_task = asyncio.current_task()

		scanner = BleakScanner(detection_callback=self._on_detection, **self._scanner_kwargs())
		try:
			async with scanner:
				self._set_radio(True)
				logger.info("BLE scan running (name prefixes: %s)", ", ".join(self.config.name_prefixes) or "any")
				await stop_event.wait()
		except BleakBluetoothNotAvailableError as exc:
			logger.warning("Bluetooth is not available: %s", exc)
			self._set_radio(False)
		except Exception as exc:
			logger.exception("BLE scan failed: %s", exc)
			self._notify("on_scan_failed", str(exc))
		finally:
			self._scanning = False
			if self._stop_event is stop_event:
				self._stop_event = None
			if self._scan_task is asyncio.current_task():
				self._scan_task = None
			logger.debug("BLE scan finished")

	async def _stop_scan(self) -> None:
		if self._stop_event is not None:
			self._stop_event.set()

	async def _connect(self, index: int) -> None:
		if index < 0 or index >= len(self._addresses):
			logger.warning("no discovered device at index %s", index)
			self._notify("on_fail_to_connect", "")
			return
		address = self._addresses[index]

		if self._connecting is not None:
			logger.debug("connection to %s already in progress; ignoring request for %s", self._connecting, address)
			return
		if self._client is not None:
			if self._client.address == address:
				logger.debug("already connected to %s", address)
				return
			await self._disconnect()

		self._connecting = address
		self._reset_rx()
		client = BleakClient(address, **self._client_kwargs())
		try:
			connected = await client.connect()
		except Exception as exc:
			logger.warning("connection to %s failed: %s", address, exc)
			self._notify("on_fail_to_connect", address)
			return
		finally:
			self._connecting = None
		if connected is False:
			logger.warning("connection to %s was refused", address)
			self._notify("on_fail_to_connect", address)
			return

		self._client = client
		# bleak resolves the GATT services as part of connect().
		self._notify("on_services_discovered", address)

		if self.config.rx_characteristic:
			try:
				await client.start_notify(self.config.rx_characteristic, self._on_notify)
			except Exception:
				logger.exception("failed to subscribe to %s on %s", self.config.rx_characteristic, address)

	async def _disconnect(self) -> None:
		client = self._client
		if client is None:
			return
		try:
			await client.disconnect()
		except Exception as exc:
			logger.warning("disconnect from %s raised: %s", client.address, exc)
		if self._client is client:
			# The backend did not invoke the disconnected callback.
			self._client = None
			self._notify("on_disconnected", client.address)

	async def _shutdown(self) -> None:
		await self._stop_scan()
		task = self._scan_task
		if task is not None and task is not asyncio.current_task() and not task.done():
			await asyncio.wait([task], timeout=self.config.connect_timeout)
		await self._disconnect()

	# ------------------------------------------------------------------
	# bleak callbacks (loop thread)
	# ------------------------------------------------------------------
	def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData | None) -> None:
		name = device.name
		if advertisement is not None and getattr(advertisement, "local_name", None):
			name = advertisement.local_name
		if not self.config.accepts_name(name):
			return
		if device.address in self._addresses:
			return
		self._addresses.append(device.address)
		logger.debug("discovered %s (%s)", device.address, name)
		self._notify("on_scan_result", ";".join(self._addresses))

	def _on_client_disconnected(self, client: BleakClient) -> None:
		if client is not self._client:
			return
		self._client = None
		self._notify("on_disconnected", client.address)

	def _on_notify(self, _: Any, data: bytearray) -> None:
		self._rx_buffer += self._decoder.decode(bytes(data))
		if "\n" not in self._rx_buffer:
			return
		complete, _, self._rx_buffer = self._rx_buffer.rpartition("\n")
		self._notify("on_raw_data", complete + "\n")

	# ------------------------------------------------------------------
	# Helpers
	# ------------------------------------------------------------------
	def _set_radio(self, enabled: bool) -> None:
		if enabled == self._radio_enabled:
			if not enabled:
				self._notify("on_bluetooth_closed", "")
			return
		self._radio_enabled = enabled
		self._notify("on_bluetooth_opened" if enabled else "on_bluetooth_closed", "")

	def _reset_rx(self) -> None:
		self._rx_buffer = ""
		self._decoder.reset()

	def _scanner_kwargs(self) -> dict:
		kwargs: dict = {}
		if self.config.adapter:
			kwargs["adapter"] = self.config.adapter
		return kwargs

	def _client_kwargs(self) -> dict:
		kwargs: dict = {
			"disconnected_callback": self._on_client_disconnected,
			"timeout": self.config.connect_timeout,
		}
		if self.config.adapter:
			kwargs["adapter"] = self.config.adapter
		return kwargs

	def _ensure_loop(self) -> asyncio.AbstractEventLoop:
		with self._loop_lock:
			if self._loop is not None and not self._loop.is_closed():
				return self._loop
			loop = asyncio.new_event_loop()
			thread = threading.Thread(target=loop.run_forever, name="BleakBridgeLoop", daemon=True)
			thread.start()
			self._loop = loop
			self._thread = thread
			self._owns_loop = True
			return loop

	@staticmethod
	def _on_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
		try:
			return asyncio.get_running_loop() is loop
		except RuntimeError:
			return False

	def _submit(self, coro: Awaitable[None]) -> PendingFuture:
		loop = self._ensure_loop()
		future: PendingFuture
		if self._on_loop_thread(loop):
			future = loop.create_task(coro)  # type: ignore[arg-type]
		else:
			future = asyncio.run_coroutine_threadsafe(coro, loop)  # type: ignore[arg-type]
		with self._pending_lock:
			self._pending.add(future)
		future.add_done_callback(self._on_request_done)
		return future

	def _on_request_done(self, future: PendingFuture) -> None:
		with self._pending_lock:
			self._pending.discard(future)
		if future.cancelled():
			return
		exc = future.exception()
		if exc is not None:  # pragma: no cover - coroutines absorb their own errors
			logger.error("BLE bridge request failed", exc_info=exc)


def create_bridge(
	config: BridgeConfig | None = None,
	*,
	loop: Optional[asyncio.AbstractEventLoop] = None,
) -> NativeBleBridge:
	"""Pick the bridge strategy named by ``config.backend``."""
	config = config or BridgeConfig()
	if config.backend == "bleak":
		return BleakBridge(config, loop=loop)
	if config.backend == "null":
		return NullBridge()
	raise ValueError(f"unknown bridge backend {config.backend!r}")


__all__ = [
	"BleakBridge",
	"NativeBleBridge",
	"NativeCallbacks",
	"NullBridge",
	"create_bridge",
]
