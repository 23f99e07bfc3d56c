"""Tests for configuration parsing and the permission request routine."""
from __future__ import annotations

import unittest
from typing import List

import pytest

from brainlink_bridge.config import DEFAULT_RX_CHARACTERISTIC, AppConfig, BridgeConfig
from brainlink_bridge.permissions import (
    BLUETOOTH_CONNECT,
    BLUETOOTH_SCAN,
    FINE_LOCATION,
    DesktopPermissionProvider,
    request_bluetooth_permissions,
)


class AppConfigTest(unittest.TestCase):
    def test_defaults(self) -> None:
        config = AppConfig.from_env({})
        self.assertEqual(config.bridge.backend, "bleak")
        self.assertEqual(config.bridge.name_prefixes, ("BrainLink",))
        self.assertEqual(config.bridge.rx_characteristic, DEFAULT_RX_CHARACTERISTIC)
        self.assertTrue(config.session.auto_connect_first)
        self.assertTrue(config.session.scan_on_start)

    def test_environment_overrides(self) -> None:
        config = AppConfig.from_env(
            {
                "BRAINLINK_BACKEND": "NULL",
                "BRAINLINK_NAME_PREFIXES": "BrainLink, MindWave,",
                "BRAINLINK_RX_CHARACTERISTIC": "",
                "BRAINLINK_CONNECT_TIMEOUT": "4.5",
                "BRAINLINK_ADAPTER": "hci1",
                "BRAINLINK_ENCODING": "latin-1",
                "BRAINLINK_AUTO_CONNECT": "no",
                "BRAINLINK_SCAN_ON_START": "Off",
            }
        )
        self.assertEqual(config.bridge.backend, "null")
        self.assertEqual(config.bridge.name_prefixes, ("BrainLink", "MindWave"))
        self.assertIsNone(config.bridge.rx_characteristic)
        self.assertEqual(config.bridge.connect_timeout, 4.5)
        self.assertEqual(config.bridge.adapter, "hci1")
        self.assertEqual(config.bridge.encoding, "latin-1")
        self.assertFalse(config.session.auto_connect_first)
        self.assertFalse(config.session.scan_on_start)

    def test_empty_prefix_list_accepts_every_name(self) -> None:
        config = AppConfig.from_env({"BRAINLINK_NAME_PREFIXES": ""})
        self.assertTrue(config.bridge.accepts_name(None))
        self.assertTrue(config.bridge.accepts_name("Phone"))

    def test_invalid_values_raise(self) -> None:
        for env in (
            {"BRAINLINK_BACKEND": "serial"},
            {"BRAINLINK_CONNECT_TIMEOUT": "soon"},
            {"BRAINLINK_CONNECT_TIMEOUT": "0"},
            {"BRAINLINK_AUTO_CONNECT": "maybe"},
            {"BRAINLINK_ENCODING": "no-such-codec"},
        ):
            with self.subTest(env=env):
                with self.assertRaises(ValueError):
                    AppConfig.from_env(env)


def test_name_filter_uses_prefixes():
    config = BridgeConfig()
    assert config.accepts_name("BrainLink_Pro")
    assert not config.accepts_name("Phone")
    assert not config.accepts_name(None)


class _RecordingProvider:
    def __init__(self, granted: List[str]) -> None:
        self.granted = set(granted)
        self.requested: List[str] = []

    def has_permission(self, name: str) -> bool:
        return name in self.granted

    def request_permission(self, name: str) -> None:
        self.requested.append(name)


@pytest.mark.parametrize(
    "granted, expected",
    [
        ([], [BLUETOOTH_SCAN, BLUETOOTH_CONNECT, FINE_LOCATION]),
        ([BLUETOOTH_SCAN], [BLUETOOTH_CONNECT, FINE_LOCATION]),
        ([BLUETOOTH_SCAN, BLUETOOTH_CONNECT, FINE_LOCATION], []),
    ],
)
def test_permissions_requested_only_when_missing(granted, expected):
    provider = _RecordingProvider(granted)
    request_bluetooth_permissions(provider)
    assert provider.requested == expected


def test_desktop_provider_grants_everything():
    provider = DesktopPermissionProvider()
    assert all(provider.has_permission(name) for name in (BLUETOOTH_SCAN, BLUETOOTH_CONNECT, FINE_LOCATION))


if __name__ == "__main__":
    unittest.main()
