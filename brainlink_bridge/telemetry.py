"""Parser for the headset's line-oriented ``label:value`` telemetry text."""
from __future__ import annotations

import logging
import re
import threading
from typing import Any, ContextManager, Dict, List, Optional, Tuple

from brainlink_bridge.events import EventHub, SessionEvent

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


def _parse_int32(text: str) -> Optional[int]:
	if not _INT_PATTERN.fullmatch(text):
		return None
	value = int(text)
	if value < _INT32_MIN or value > _INT32_MAX:
		return None
	return value


def parse_telemetry_lines(raw: str) -> List[Tuple[str, int]]:
	"""Return accepted ``(label, value)`` pairs in document order.

	Each line may carry any number of leading ``prefix:`` fields; only the
	last two colon-delimited fields are used. Lines without a colon or with a
	non-integer value are skipped.
	"""
	if not raw.endswith("\n"):
		raw += "\n"

	pairs: List[Tuple[str, int]] = []
	for line in raw.split("\n"):
		if not line:
			continue
		parts = line.split(":")
		if len(parts) < 2:
			continue
		value = _parse_int32(parts[-1].strip())
		if value is None:
			logger.debug("dropping telemetry line with non-integer value: %r", line)
			continue
		pairs.append((parts[-2].strip(), value))
	return pairs


class TelemetryParser:
	"""Merges telemetry blobs into a persistent store and republishes it."""

	def __init__(self, events: Optional[EventHub] = None, *, lock: Optional[ContextManager[Any]] = None) -> None:
		self.events = events or EventHub()
		self._lock = lock or threading.Lock()
		self._store: Dict[str, int] = {}

	def parse(self, raw: str) -> Dict[str, int]:
		if not raw:
			return self.snapshot()

		pairs = parse_telemetry_lines(raw)
		with self._lock:
			for label, value in pairs:
				self._store[label] = value
			snapshot = dict(self._store)

		logger.debug("telemetry update: %d pair(s), %d metric(s) stored", len(pairs), len(snapshot))
		self.events.emit(SessionEvent.DATA_RECEIVED, snapshot)
		return snapshot

	def snapshot(self) -> Dict[str, int]:
		with self._lock:
			return dict(self._store)

	def get(self, label: str, default: Optional[int] = None) -> Optional[int]:
		with self._lock:
			return self._store.get(label, default)


__all__ = [
	"TelemetryParser",
	"parse_telemetry_lines",
]
