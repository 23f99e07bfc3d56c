"""Observer registry used to publish session notifications."""
from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

Handler = Callable[..., Union[None, Awaitable[None]]]


class SessionEvent(str, Enum):
	"""Notification kinds published to application subscribers."""

	DEVICE_LIST_UPDATED = "devices"
	DATA_RECEIVED = "data"
	CONNECTED = "connected"
	DISCONNECTED = "disconnected"
	BLUETOOTH_STATE_CHANGED = "bluetooth"


class EventHub:
	"""One ordered subscriber list per :class:`SessionEvent`.

	Handlers run synchronously on the emitting thread, in subscription order.
	A handler returning a coroutine is scheduled on the running loop, or on
	``loop`` when the emit happens on a thread without one.
	"""

	def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
		self._loop = loop
		self._handlers: Dict[SessionEvent, List[Handler]] = {kind: [] for kind in SessionEvent}
		self._lock = threading.Lock()

	def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
		self._loop = loop

	def subscribe(self, kind: SessionEvent, handler: Handler) -> Callable[[], None]:
		with self._lock:
			self._handlers[kind].append(handler)

		def _unsubscribe() -> None:
			self.unsubscribe(kind, handler)

		return _unsubscribe

	def unsubscribe(self, kind: SessionEvent, handler: Handler) -> None:
		with self._lock:
			try:
				self._handlers[kind].remove(handler)
			except ValueError:
				pass

	def subscriber_count(self, kind: SessionEvent) -> int:
		with self._lock:
			return len(self._handlers[kind])

	def emit(self, kind: SessionEvent, *args: Any) -> None:
		with self._lock:
			handlers = list(self._handlers[kind])
		for handler in handlers:
			self._dispatch(kind, handler, args)

	def _dispatch(self, kind: SessionEvent, handler: Handler, args: tuple) -> None:
		try:
			outcome = handler(*args)
		except Exception:
			logger.exception("%s subscriber raised an exception", kind.value)
			return
		if asyncio.iscoroutine(outcome):
			self._schedule(kind, outcome)

	def _schedule(self, kind: SessionEvent, coro: Awaitable[None]) -> None:
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			loop = None
		if loop is not None:
			loop.create_task(coro)  # type: ignore[arg-type]
			return
		if self._loop is not None and not self._loop.is_closed():
			asyncio.run_coroutine_threadsafe(coro, self._loop)  # type: ignore[arg-type]
			return
		logger.warning("no event loop available for async %s subscriber; dropping", kind.value)
		coro.close()  # type: ignore[attr-defined]


__all__ = [
	"EventHub",
	"Handler",
	"SessionEvent",
]
