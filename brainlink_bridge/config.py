"""Configuration bundles for the bridge, the session and the CLI/API hosts."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

# Nordic UART service TX characteristic, used by BrainLink BLE modules to
# stream telemetry notifications.
DEFAULT_RX_CHARACTERISTIC = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"
DEFAULT_NAME_PREFIXES: Tuple[str, ...] = ("BrainLink",)

BACKENDS: Tuple[str, ...] = ("bleak", "null")

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off", ""})


def _parse_bool(name: str, raw: str) -> bool:
	value = raw.strip().lower()
	if value in _TRUTHY:
		return True
	if value in _FALSY:
		return False
	raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def _parse_float(name: str, raw: str) -> float:
	try:
		return float(raw)
	except ValueError as exc:
		raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(slots=True)
class BridgeConfig:
	"""Settings for the native BLE bridge."""

	backend: str = "bleak"
	name_prefixes: Tuple[str, ...] = DEFAULT_NAME_PREFIXES
	rx_characteristic: Optional[str] = DEFAULT_RX_CHARACTERISTIC
	connect_timeout: float = 10.0
	adapter: Optional[str] = None
	encoding: str = "utf-8"

	def __post_init__(self) -> None:
		if self.backend not in BACKENDS:
			raise ValueError(f"unknown bridge backend {self.backend!r}; expected one of {', '.join(BACKENDS)}")
		if self.connect_timeout <= 0:
			raise ValueError("connect_timeout must be positive")
		self.name_prefixes = tuple(prefix for prefix in self.name_prefixes if prefix)
		try:
			"".encode(self.encoding)
		except LookupError as exc:
			raise ValueError(f"unknown text encoding {self.encoding!r}") from exc

	def accepts_name(self, name: Optional[str]) -> bool:
		if not self.name_prefixes:
			return True
		if not name:
			return False
		return name.startswith(self.name_prefixes)


@dataclass(slots=True)
class SessionConfig:
	"""Policy flags for :class:`~brainlink_bridge.session.ConnectionSession`."""

	auto_connect_first: bool = True
	scan_on_start: bool = True


@dataclass(slots=True)
class AppConfig:
	bridge: BridgeConfig = field(default_factory=BridgeConfig)
	session: SessionConfig = field(default_factory=SessionConfig)

	@classmethod
	def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
		"""Build a config from ``BRAINLINK_*`` environment variables."""
		env = os.environ if environ is None else environ

		bridge_kwargs = {}
		if "BRAINLINK_BACKEND" in env:
			bridge_kwargs["backend"] = env["BRAINLINK_BACKEND"].strip().lower()
		if "BRAINLINK_NAME_PREFIXES" in env:
			bridge_kwargs["name_prefixes"] = tuple(
				item.strip() for item in env["BRAINLINK_NAME_PREFIXES"].split(",") if item.strip()
			)
		if "BRAINLINK_RX_CHARACTERISTIC" in env:
			bridge_kwargs["rx_characteristic"] = env["BRAINLINK_RX_CHARACTERISTIC"].strip() or None
		if "BRAINLINK_CONNECT_TIMEOUT" in env:
			bridge_kwargs["connect_timeout"] = _parse_float(
				"BRAINLINK_CONNECT_TIMEOUT", env["BRAINLINK_CONNECT_TIMEOUT"]
			)
		if "BRAINLINK_ADAPTER" in env:
			bridge_kwargs["adapter"] = env["BRAINLINK_ADAPTER"].strip() or None
		if "BRAINLINK_ENCODING" in env:
			bridge_kwargs["encoding"] = env["BRAINLINK_ENCODING"].strip()

		session_kwargs = {}
		if "BRAINLINK_AUTO_CONNECT" in env:
			session_kwargs["auto_connect_first"] = _parse_bool("BRAINLINK_AUTO_CONNECT", env["BRAINLINK_AUTO_CONNECT"])
		if "BRAINLINK_SCAN_ON_START" in env:
			session_kwargs["scan_on_start"] = _parse_bool("BRAINLINK_SCAN_ON_START", env["BRAINLINK_SCAN_ON_START"])

		return cls(bridge=BridgeConfig(**bridge_kwargs), session=SessionConfig(**session_kwargs))


__all__ = [
	"AppConfig",
	"BACKENDS",
	"BridgeConfig",
	"DEFAULT_NAME_PREFIXES",
	"DEFAULT_RX_CHARACTERISTIC",
	"SessionConfig",
]
