"""One-shot runtime permission request run at application startup."""
from __future__ import annotations

import logging
from typing import Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)

BLUETOOTH_SCAN = "android.permission.BLUETOOTH_SCAN"
BLUETOOTH_CONNECT = "android.permission.BLUETOOTH_CONNECT"
# Still required for BLE scans on platforms that predate the dedicated
# Bluetooth permissions.
FINE_LOCATION = "android.permission.ACCESS_FINE_LOCATION"

BLUETOOTH_PERMISSIONS: Tuple[str, ...] = (BLUETOOTH_SCAN, BLUETOOTH_CONNECT, FINE_LOCATION)


class PermissionProvider(Protocol):
	def has_permission(self, name: str) -> bool: ...

	def request_permission(self, name: str) -> None: ...


class DesktopPermissionProvider:
	"""Desktop BLE stacks have no runtime permission dialog; everything is granted."""

	def has_permission(self, name: str) -> bool:
		return True

	def request_permission(self, name: str) -> None:
		logger.debug("permission %s needs no runtime request on desktop", name)


def request_bluetooth_permissions(
	provider: PermissionProvider,
	permissions: Sequence[str] = BLUETOOTH_PERMISSIONS,
) -> None:
	"""Ask for every missing permission. The outcome is not inspected."""
	for name in permissions:
		if provider.has_permission(name):
			continue
		logger.info("requesting permission %s", name)
		provider.request_permission(name)


__all__ = [
	"BLUETOOTH_CONNECT",
	"BLUETOOTH_PERMISSIONS",
	"BLUETOOTH_SCAN",
	"DesktopPermissionProvider",
	"FINE_LOCATION",
	"PermissionProvider",
	"request_bluetooth_permissions",
]
