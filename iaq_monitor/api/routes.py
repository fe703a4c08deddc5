from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from ..core.config import Settings
from ..domain.iaq import calculate_iaq, channel_status
from ..domain.models import AcquisitionError, ConnectionState, Publication
from ..services.broadcaster import Broadcaster
from .schemas import (
    ConnectResponse,
    IAQResponse,
    ToggleSimulationRequest,
    ToggleSimulationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependency getters ---
# create_app() wires the real broadcaster in via app.dependency_overrides.
def get_broadcaster() -> Broadcaster:  # overridden in main
    raise RuntimeError("Broadcaster dependency not configured")


def get_settings() -> Settings:  # overridden in main
    raise RuntimeError("Settings dependency not configured")


@router.get("/status")
async def status(b: Broadcaster = Depends(get_broadcaster), cfg: Settings = Depends(get_settings)):
    body = b.status().to_dict()
    body["port"] = cfg.rs485_port
    body["deviceId"] = cfg.rs485_slave_id
    return body


@router.get("/sensors")
async def sensors(b: Broadcaster = Depends(get_broadcaster)):
    reading = await b.request_immediate()
    return {"success": True, "data": reading.to_wire()}


@router.post("/connect", response_model=ConnectResponse)
@router.post("/test-config", response_model=ConnectResponse)
async def connect(b: Broadcaster = Depends(get_broadcaster)):
    accepted = await b.request_reconnect()
    st = b.status()
    if not accepted:
        message = "Simulation mode forced - sensor connection disabled"
    elif st.connection_state is ConnectionState.CONNECTED:
        message = "Connected successfully"
    else:
        message = "Connection failed, retrying in the background"
    return ConnectResponse(
        success=accepted and st.connection_state is ConnectionState.CONNECTED,
        connected=st.connection_state is ConnectionState.CONNECTED,
        connectionState=st.connection_state.value,
        message=message,
    )


@router.post("/toggle-simulation", response_model=ToggleSimulationResponse)
async def toggle_simulation(req: ToggleSimulationRequest, b: Broadcaster = Depends(get_broadcaster)):
    await b.set_simulation(req.enabled)
    return ToggleSimulationResponse(
        simulation=req.enabled,
        message="Switched to simulation mode" if req.enabled else "Attempting sensor connection",
    )


@router.get("/iaq", response_model=IAQResponse)
async def iaq(b: Broadcaster = Depends(get_broadcaster)):
    reading = b.last_reading
    if reading is None:
        raise HTTPException(status_code=404, detail="No reading available yet")
    result = calculate_iaq(reading.values)
    return IAQResponse(
        index=result.index if result else None,
        level=result.level if result else None,
        components={ch.value: score for ch, score in (result.components.items() if result else [])},
        status={ch.value: channel_status(ch, v) for ch, v in reading.values.items()},
        timestamp=reading.captured_at.isoformat(),
    )


def _messages(payload: Publication) -> list[dict]:
    if isinstance(payload, AcquisitionError):
        out = [{"event": "sensorError", "data": payload.to_wire()}]
        if payload.reading is not None:
            out.append({"event": "sensorData", "data": payload.reading.to_wire()})
        return out
    return [{"event": "sensorData", "data": payload.to_wire()}]


@router.websocket("/stream")
async def stream(ws: WebSocket, b: Broadcaster = Depends(get_broadcaster)):
    await ws.accept()

    async def deliver(payload: Publication) -> None:
        for msg in _messages(payload):
            await ws.send_json(msg)

    await ws.send_json({"event": "connectionStatus", "data": b.status().to_dict()})
    handle = await b.subscribe(deliver)
    try:
        while True:
            text = await ws.receive_text()
            if text == "requestData":
                await b.request_immediate()
            else:
                logger.debug("Ignoring stream message: %r", text)
    except WebSocketDisconnect:
        pass
    finally:
        b.unsubscribe(handle)
