"""Adapter between a host application and BrainLink / ThinkGear BLE headsets."""
from __future__ import annotations

__version__ = "0.1.0"

from brainlink_bridge.bridge import BleakBridge, NativeBleBridge, NullBridge, create_bridge
from brainlink_bridge.config import AppConfig, BridgeConfig, SessionConfig
from brainlink_bridge.events import EventHub, SessionEvent
from brainlink_bridge.session import ConnectionSession, SessionState, parse_device_list
from brainlink_bridge.telemetry import TelemetryParser, parse_telemetry_lines

__all__ = [
	"AppConfig",
	"BleakBridge",
	"BridgeConfig",
	"ConnectionSession",
	"EventHub",
	"NativeBleBridge",
	"NullBridge",
	"SessionConfig",
	"SessionEvent",
	"SessionState",
	"TelemetryParser",
	"__version__",
	"create_bridge",
	"parse_device_list",
	"parse_telemetry_lines",
]
