"""BrainLink bridge command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import json
import logging
import signal
import sys
from pathlib import Path
from time import monotonic
from typing import List, Optional

import uvicorn
from rich.console import Console
from rich.live import Live
from rich.table import Table

from brainlink_bridge.api import create_app
from brainlink_bridge.bridge import create_bridge
from brainlink_bridge.config import BACKENDS, AppConfig
from brainlink_bridge.events import SessionEvent
from brainlink_bridge.hud import BrainLinkHud
from brainlink_bridge.permissions import DesktopPermissionProvider, request_bluetooth_permissions
from brainlink_bridge.recorder import SessionRecorder
from brainlink_bridge.session import ConnectionSession, SessionState
from brainlink_bridge.telemetry import TelemetryParser

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE = 5.0


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, stop_event.set)


async def _wait_or_stop(stop_event: asyncio.Event, duration: float) -> None:
	with contextlib.suppress(asyncio.TimeoutError):
		await asyncio.wait_for(stop_event.wait(), timeout=duration)


async def _cmd_scan(args: argparse.Namespace) -> int:
	config: AppConfig = args.config
	config.session.auto_connect_first = False
	bridge = create_bridge(config.bridge, loop=asyncio.get_running_loop())
	session = ConnectionSession(bridge, config=config.session)

	stop_event = asyncio.Event()
	_install_stop_handlers(stop_event)
	session.start()
	try:
		if not session.is_scanning:
			session.start_scan()
		await _wait_or_stop(stop_event, args.timeout)
		devices = session.devices
	finally:
		session.close()
		await bridge.wait_idle(timeout=SHUTDOWN_GRACE)

	if args.json:
		json.dump(devices, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0
	console = Console()
	table = Table(title="BrainLink Scan Results", show_lines=False)
	table.add_column("INDEX", justify="right")
	table.add_column("ADDRESS")
	for index, address in enumerate(devices):
		table.add_row(str(index), address)
	console.print(table)
	return 0


async def _cmd_monitor(args: argparse.Namespace) -> int:
	config: AppConfig = args.config
	request_bluetooth_permissions(DesktopPermissionProvider())
	if args.index is not None:
		config.session.auto_connect_first = False

	bridge = create_bridge(config.bridge, loop=asyncio.get_running_loop())
	session = ConnectionSession(bridge, config=config.session)
	hud = BrainLinkHud()
	hud.attach(session)

	recorder: Optional[SessionRecorder] = None
	if args.log:
		recorder = SessionRecorder(Path(args.log))
		recorder.attach(session)

	if args.index is not None:
		target = args.index

		def _connect_target(devices: List[str]) -> None:
			if session.state in (SessionState.CONNECTING, SessionState.CONNECTED):
				return
			if target < len(devices):
				session.connect_to_device(target)

		session.events.subscribe(SessionEvent.DEVICE_LIST_UPDATED, _connect_target)

	stop_event = asyncio.Event()
	_install_stop_handlers(stop_event)
	deadline = monotonic() + args.runtime if args.runtime else None

	try:
		with Live(hud.render(), console=Console(), refresh_per_second=4) as live:
			session.start()
			if not session.is_scanning:
				hud.press_connect()
			while not stop_event.is_set():
				if deadline and monotonic() >= deadline:
					break
				live.update(hud.render())
				await _wait_or_stop(stop_event, 0.25)
	finally:
		session.disconnect()
		session.close()
		await bridge.wait_idle(timeout=SHUTDOWN_GRACE)
		hud.detach()
		if recorder is not None:
			recorder.detach()
	return 0


async def _cmd_parse(args: argparse.Namespace) -> int:
	if args.file and args.file != "-":
		raw = Path(args.file).read_text(encoding=args.config.bridge.encoding)
	else:
		raw = sys.stdin.read()
	store = TelemetryParser().parse(raw)
	json.dump(store, sys.stdout, indent=2)
	sys.stdout.write("\n")
	return 0


async def _cmd_serve(args: argparse.Namespace) -> int:
	config: AppConfig = args.config
	request_bluetooth_permissions(DesktopPermissionProvider())
	bridge = create_bridge(config.bridge, loop=asyncio.get_running_loop())
	session = ConnectionSession(bridge, config=config.session)
	app = create_app(session)
	server = uvicorn.Server(
		uvicorn.Config(app, host=args.host, port=args.port, log_level=args.log_level.lower())
	)
	try:
		await server.serve()
	finally:
		await bridge.wait_idle(timeout=SHUTDOWN_GRACE)
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="BrainLink headset bridge utilities")
	parser.add_argument("--backend", choices=BACKENDS, help="Native bridge backend (default from BRAINLINK_BACKEND or bleak)")
	parser.add_argument(
		"--log-level",
		default="WARNING",
		choices=("DEBUG", "INFO", "WARNING", "ERROR"),
		help="Logging verbosity",
	)
	sub = parser.add_subparsers(dest="command", required=True)

	scan = sub.add_parser("scan", help="List nearby BrainLink headsets")
	scan.add_argument("--timeout", type=float, default=6.0, help="Scan duration in seconds")
	scan.add_argument("--json", action="store_true", help="Output JSON")
	scan.set_defaults(handler=_cmd_scan)

	monitor = sub.add_parser("monitor", help="Connect to a headset and show live gauges")
	monitor.add_argument("--index", type=int, help="Device index to connect (default: first found)")
	monitor.add_argument("--runtime", type=float, help="Optional monitor duration seconds")
	monitor.add_argument("--log", help="CSV file to record notifications to")
	monitor.set_defaults(handler=_cmd_monitor)

	parse = sub.add_parser("parse", help="Parse a telemetry text blob and print the metric store")
	parse.add_argument("file", nargs="?", help="Telemetry file (default: stdin)")
	parse.set_defaults(handler=_cmd_parse)

	serve = sub.add_parser("serve", help="Run the HTTP control API")
	serve.add_argument("--host", default="127.0.0.1", help="Bind address")
	serve.add_argument("--port", type=int, default=8000, help="Bind port")
	serve.set_defaults(handler=_cmd_serve)

	return parser


def _load_config(args: argparse.Namespace) -> AppConfig:
	config = AppConfig.from_env()
	if args.backend:
		config.bridge = dataclasses.replace(config.bridge, backend=args.backend)
	return config


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(
		level=getattr(logging, args.log_level),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	try:
		args.config = _load_config(args)
	except ValueError as exc:
		parser.error(str(exc))
	if args.command == "monitor" and args.index is not None and args.index < 0:
		parser.error("--index must not be negative")
	return asyncio.run(args.handler(args))


if __name__ == "__main__":
	sys.exit(main())
