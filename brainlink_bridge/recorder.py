"""CSV recorder for session notifications and telemetry snapshots."""
from __future__ import annotations

import csv
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TYPE_CHECKING

from brainlink_bridge.events import SessionEvent

if TYPE_CHECKING:  # pragma: no cover
    from brainlink_bridge.session import ConnectionSession

logger = logging.getLogger(__name__)

FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "status",
    "value",
    "extra",
)


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _encode_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), ensure_ascii=True, sort_keys=True)
    except (TypeError, ValueError):
        return repr(extra)


@dataclass(slots=True)
class RecordRow:
    timestamp: str
    event: str
    status: str = ""
    value: Optional[int] = None
    extra: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "event": self.event,
            "status": self.status,
            "value": self.value if self.value is not None else "",
            "extra": self.extra,
        }


class SessionRecorder:
    """Appends one CSV row per session notification.

    Rows are flushed as they are written so the file can be tailed while a
    monitor runs.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._unsubscribers: List[Callable[[], None]] = []
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_header()

    def attach(self, session: "ConnectionSession") -> None:
        self.detach()
        events = session.events
        self._unsubscribers = [
            events.subscribe(SessionEvent.DEVICE_LIST_UPDATED, self._on_devices),
            events.subscribe(SessionEvent.DATA_RECEIVED, self._on_data),
            events.subscribe(SessionEvent.CONNECTED, self._on_connected),
            events.subscribe(SessionEvent.DISCONNECTED, self._on_disconnected),
            events.subscribe(SessionEvent.BLUETOOTH_STATE_CHANGED, self._on_bluetooth),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def record(
        self,
        event: str,
        *,
        status: str = "",
        value: Optional[int] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        row = RecordRow(
            timestamp=self._timestamp(),
            event=event,
            status=status,
            value=value,
            extra=_encode_extra(extra or {}),
        )
        with self._lock:
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=FIELDS)
                writer.writerow(row.as_dict())
                handle.flush()

    def _on_devices(self, devices: List[str]) -> None:
        self.record(SessionEvent.DEVICE_LIST_UPDATED.value, status="ok", value=len(devices), extra={"devices": devices})

    def _on_data(self, data: Mapping[str, int]) -> None:
        self.record(SessionEvent.DATA_RECEIVED.value, status="ok", value=len(data), extra=dict(data))

    def _on_connected(self) -> None:
        self.record(SessionEvent.CONNECTED.value, status="ok")

    def _on_disconnected(self) -> None:
        self.record(SessionEvent.DISCONNECTED.value, status="ok")

    def _on_bluetooth(self, enabled: bool) -> None:
        self.record(SessionEvent.BLUETOOTH_STATE_CHANGED.value, status="enabled" if enabled else "disabled")

    def _ensure_header(self) -> None:
        if self.path.exists() and self.path.stat().st_size > 0:
            return
        with self._lock:
            with self.path.open("w", newline="", encoding="utf-8") as handle:
                csv.DictWriter(handle, fieldnames=FIELDS).writeheader()
                handle.flush()

    def _timestamp(self) -> str:
        try:
            dt = self._clock()
        except Exception:  # pragma: no cover - guard against faulty clock
            logger.debug("recorder clock failed; using system time", exc_info=True)
            dt = datetime.now(timezone.utc)
        return _ensure_utc(dt).isoformat(timespec="milliseconds")


__all__ = [
    "FIELDS",
    "RecordRow",
    "SessionRecorder",
]
