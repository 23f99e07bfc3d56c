from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Tuple

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from brainlink_bridge import __version__
from brainlink_bridge.events import SessionEvent
from brainlink_bridge.session import ConnectionSession

logger = logging.getLogger(__name__)


def event_message(kind: SessionEvent, args: Tuple[Any, ...]) -> Dict[str, Any]:
    """JSON payload pushed to ``/events`` subscribers for one notification."""
    message: Dict[str, Any] = {"event": kind.value}
    if kind is SessionEvent.DEVICE_LIST_UPDATED:
        message["devices"] = list(args[0])
    elif kind is SessionEvent.DATA_RECEIVED:
        message["data"] = dict(args[0])
    elif kind is SessionEvent.BLUETOOTH_STATE_CHANGED:
        message["enabled"] = bool(args[0])
    return message


def create_app(session: ConnectionSession, *, manage_lifecycle: bool = True) -> FastAPI:
    """Build the HTTP surface around an already constructed session.

    With ``manage_lifecycle`` the app starts the session on startup and
    closes it on shutdown.
    """

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        session.events.bind_loop(asyncio.get_running_loop())
        if manage_lifecycle:
            session.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                session.close()
            session.events.bind_loop(None)

    app = FastAPI(title="BrainLink Bridge API", version=__version__, lifespan=lifespan)
    app.state.session = session

    @app.get("/health")
    async def health():
        return {"status": "ok", "time": time.time()}

    @app.get("/status")
    async def status():
        return session.status()

    @app.get("/devices")
    async def devices():
        return {"devices": session.devices}

    @app.get("/telemetry")
    async def telemetry():
        return session.telemetry_snapshot()

    @app.post("/scan/start", status_code=202)
    async def scan_start():
        session.start_scan()
        return {"status": "requested", "action": "start_scan"}

    @app.post("/scan/stop", status_code=202)
    async def scan_stop():
        session.stop_scan()
        return {"status": "requested", "action": "stop_scan"}

    @app.post("/connect/{index}", status_code=202)
    async def connect(index: int):
        # Out-of-range indices are dropped by the session without an error.
        session.connect_to_device(index)
        return {"status": "requested", "action": "connect", "index": index}

    @app.post("/disconnect", status_code=202)
    async def disconnect():
        session.disconnect()
        return {"status": "requested", "action": "disconnect"}

    @app.websocket("/events")
    async def events(ws: WebSocket):
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()

        def _forward(kind: SessionEvent) -> Callable[..., None]:
            def _handler(*args: Any) -> None:
                loop.call_soon_threadsafe(queue.put_nowait, event_message(kind, args))

            return _handler

        async def _pump() -> None:
            while True:
                await ws.send_json(await queue.get())

        async def _wait_for_close() -> None:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    return

        unsubscribers: List[Callable[[], None]] = [
            session.events.subscribe(kind, _forward(kind)) for kind in SessionEvent
        ]
        try:
            await ws.accept()
            await ws.send_json({"event": "status", **session.status()})
            sender = asyncio.create_task(_pump())
            try:
                # Incoming frames are ignored; only the disconnect matters.
                await _wait_for_close()
            finally:
                sender.cancel()
                with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                    await sender
            logger.debug("events websocket closed by client")
        except WebSocketDisconnect:
            logger.debug("events websocket closed by client")
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()

    return app


__all__ = ["create_app", "event_message"]
