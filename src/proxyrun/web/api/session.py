"""REST and WebSocket API for the proxy session."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from proxyrun.session.models import SessionState, TrafficStats

logger = logging.getLogger(__name__)

router = APIRouter(tags=["session"])


class StartRequest(BaseModel):
    profile_id: int | None = None


def _status(controller) -> dict:
    profile = controller.data.profile
    return {
        "state": controller.state.value,
        "mode": controller.mode.tag,
        "profile_name": controller.profile_name,
        "profile_id": profile.id if profile is not None else None,
    }


@router.get("/session")
async def get_session(request: Request):
    return _status(request.app.state.controller)


@router.post("/session/start")
async def start_session(body: StartRequest, request: Request):
    controller = request.app.state.controller
    if body.profile_id is not None:
        request.app.state.config.profile_id = body.profile_id
    started = await run_in_threadpool(controller.start)
    return {"started": started, **_status(controller)}


@router.post("/session/stop")
async def stop_session(request: Request):
    controller = request.app.state.controller
    stopped = await run_in_threadpool(controller.stop, None, False)
    return {"stopped": stopped, **_status(controller)}


@router.post("/session/reload")
async def reload_session(request: Request):
    controller = request.app.state.controller
    await run_in_threadpool(controller.reload)
    return _status(controller)


class WebSocketObserver:
    """Forwards session events from the broadcast thread onto an asyncio queue."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self.queue: asyncio.Queue[dict] = asyncio.Queue()

    def _put(self, message: dict) -> None:
        self._loop.call_soon_threadsafe(self.queue.put_nowait, message)

    def state_changed(
        self, state: SessionState, profile_name: str, message: str | None
    ) -> None:
        self._put(
            {
                "type": "state",
                "data": {"state": state.value, "profile_name": profile_name, "message": message},
            }
        )

    def traffic_updated(self, profile_id: int, stats: TrafficStats) -> None:
        self._put(
            {
                "type": "traffic",
                "data": {
                    "profile_id": profile_id,
                    "tx_rate": stats.tx_rate,
                    "rx_rate": stats.rx_rate,
                    "tx_total": stats.tx_total,
                    "rx_total": stats.rx_total,
                },
            }
        )

    def traffic_persisted(self, profile_id: int) -> None:
        self._put({"type": "persisted", "data": {"profile_id": profile_id}})


@router.websocket("/ws/session")
async def session_ws(websocket: WebSocket, bandwidth: bool = False):
    """Stream state changes (and bandwidth, when asked) in real-time."""
    await websocket.accept()

    controller = websocket.app.state.controller
    observer = WebSocketObserver(asyncio.get_running_loop())
    controller.register_observer(observer)
    if bandwidth:
        controller.start_listening_for_bandwidth(observer)

    try:
        await websocket.send_text(json.dumps({"type": "status", "data": _status(controller)}))
        while True:
            message = await observer.queue.get()
            await websocket.send_text(json.dumps(message))
    except WebSocketDisconnect:
        pass
    finally:
        controller.unregister_observer(observer)
