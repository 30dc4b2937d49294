"""REST and WebSocket API for the SDR dashboard.

  GET  /api/sdrs                        boards with state
  GET  /api/sdrs/{id}                   one board
  POST /api/sdrs/{id}/init              baseline init
  POST /api/sdrs/{id}/reconnect         drop session + init
  POST /api/sdrs/{id}/gain              {"value": number}
  POST /api/sdrs/{id}/freq              {"value": number}
  POST /api/sdrs/{id}/sampling_freq     {"value": number}
  POST /api/sdrs/{id}/set_mode          {"mode": "wn"|"fsk"|"bpsk"|"qpsk"|"ntsc"|"none"}
  POST /api/sdrs/{id}/restart_usb       power-cycle one board
  POST /api/restart_usb                 power-cycle the fleet
  WS   /ws                              initialStates, then sdrUpdate events
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from sdrfleet.errors import (
    FleetError,
    InvalidValue,
    NotInitialized,
    UnknownDevice,
)
from sdrfleet.manager import FleetManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sdrs"])


# ── Helpers ───────────────────────────────────────────────────────

def _manager(request: Request) -> FleetManager:
    return request.app.state.manager


def _http_error(exc: FleetError) -> HTTPException:
    if isinstance(exc, UnknownDevice):
        return HTTPException(status_code=404, detail="SDR not found")
    if isinstance(exc, (InvalidValue, NotInitialized)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _ok(manager: FleetManager, device_id: str) -> dict:
    return {"success": True, "state": manager.get_state(device_id).to_dict()}


# ── Request models ────────────────────────────────────────────────

class ValueRequest(BaseModel):
    value: Any = None


class ModeRequest(BaseModel):
    mode: Any = None


# ── Endpoints ─────────────────────────────────────────────────────

@router.get("/sdrs")
async def list_sdrs(request: Request):
    return _manager(request).list_boards()


@router.get("/sdrs/{device_id}")
async def get_sdr(device_id: str, request: Request):
    try:
        return _manager(request).get_board(device_id)
    except FleetError as exc:
        raise _http_error(exc)


@router.post("/sdrs/{device_id}/init")
async def init_sdr(device_id: str, request: Request):
    manager = _manager(request)
    try:
        await manager.init(device_id)
    except FleetError as exc:
        raise _http_error(exc)
    return _ok(manager, device_id)


@router.post("/sdrs/{device_id}/reconnect")
async def reconnect_sdr(device_id: str, request: Request):
    manager = _manager(request)
    try:
        await manager.reconnect(device_id)
    except FleetError as exc:
        raise _http_error(exc)
    return _ok(manager, device_id)


@router.post("/sdrs/{device_id}/gain")
async def set_gain(device_id: str, req: ValueRequest, request: Request):
    manager = _manager(request)
    try:
        await manager.set_gain(device_id, req.value)
    except FleetError as exc:
        raise _http_error(exc)
    return _ok(manager, device_id)


@router.post("/sdrs/{device_id}/freq")
async def set_freq(device_id: str, req: ValueRequest, request: Request):
    manager = _manager(request)
    try:
        await manager.set_freq(device_id, req.value)
    except FleetError as exc:
        raise _http_error(exc)
    return _ok(manager, device_id)


@router.post("/sdrs/{device_id}/sampling_freq")
async def set_sampling_freq(device_id: str, req: ValueRequest, request: Request):
    manager = _manager(request)
    try:
        await manager.set_sampling_freq(device_id, req.value)
    except FleetError as exc:
        raise _http_error(exc)
    return _ok(manager, device_id)


@router.post("/sdrs/{device_id}/set_mode")
async def set_mode(device_id: str, req: ModeRequest, request: Request):
    manager = _manager(request)
    try:
        await manager.set_mode(device_id, req.mode)
    except FleetError as exc:
        raise _http_error(exc)
    return _ok(manager, device_id)


@router.post("/sdrs/{device_id}/restart_usb")
async def restart_sdr_usb(device_id: str, request: Request):
    manager = _manager(request)
    try:
        report = await manager.restart_power(device_id)
    except FleetError as exc:
        raise _http_error(exc)
    return {"success": report.success, **report.to_dict(),
            "state": manager.get_state(device_id).to_dict()}


@router.post("/restart_usb")
async def restart_usb(request: Request):
    manager = _manager(request)
    try:
        report = await manager.restart_power()
    except FleetError as exc:
        logger.error("USB restart failed: %s", exc)
        raise _http_error(exc)
    return {"success": report.success, **report.to_dict()}


# ── WebSocket ─────────────────────────────────────────────────────


class StateBroadcaster:
    """Tracks dashboard WebSockets and fans manager events out to them."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def publish(self, event: dict) -> None:
        for ws in list(self._clients):
            try:
                await ws.send_json(event)
            except Exception as exc:
                logger.debug("Dropping dashboard client: %s", exc)
                self._clients.discard(ws)

    async def handle(self, websocket: WebSocket, manager: FleetManager) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        client = websocket.client.host if websocket.client else "?"
        logger.info("Dashboard client connected: %s", client)
        try:
            await websocket.send_json({
                "type": "initialStates",
                "states": manager.store.snapshot(),
            })
            # Clients only listen; drain anything they send until they leave
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Dashboard client disconnected: %s", client)
        finally:
            self._clients.discard(websocket)


async def dashboard_ws_handler(websocket: WebSocket) -> None:
    """Mount via ``app.add_api_websocket_route("/ws", dashboard_ws_handler)``."""
    app = websocket.app
    await app.state.broadcaster.handle(websocket, app.state.manager)
