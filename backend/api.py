"""FastAPI backend for the peer compass device."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketDisconnect

from common.config import create_async_redis_client, settings
from common.status_log import StatusLog, install_status_log, remove_status_log
from db.database import SessionLocal
from db.init_db import init_db
from navigation.exceptions import (
    CapabilityUnavailableError,
    InvalidCoordinateError,
    OrientationPermissionDeniedError,
)
from navigation.heading import OrientationSample
from navigation.validation import parse_coordinate
from peer.exceptions import PeerAlreadyConnectedError, SessionNotReadyError
from runtime import CompassRuntime
from sensors.base import PositionError, PositionErrorCode, PositionFix
from sensors.push import PushOrientationSource, PushPositionSource
from signaling.base import SignalingClient
from signaling.redis_signaling import RedisSignalingClient
from storage.state_store import StateStore

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Peer Compass Backend API",
    description="Bearing, distance and turn guidance toward a fixed target or a live peer",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_origin_regex=r"^https?://(10\.\d+\.\d+\.\d+|192\.168\.\d+\.\d+|172\.(1[6-9]|2\d|3[0-1])\.\d+\.\d+)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

runtime: CompassRuntime | None = None
position_source: PushPositionSource | None = None
orientation_source: PushOrientationSource | None = None
status_log: StatusLog | None = None

_POSITION_ERROR_STATUS = {
    PositionErrorCode.PERMISSION_DENIED: 403,
    PositionErrorCode.UNAVAILABLE: 503,
    PositionErrorCode.TIMEOUT: 504,
}


class TargetRequest(BaseModel):
    # Raw form values; validated by parse_coordinate
    latitude: float | str
    longitude: float | str


class PositionSampleRequest(BaseModel):
    latitude: float
    longitude: float
    accuracy: float | None = Field(None, ge=0)


class PositionErrorRequest(BaseModel):
    code: PositionErrorCode
    message: str = ""


class OrientationSampleRequest(BaseModel):
    compass_heading: float | None = None
    alpha: float | None = None
    absolute: bool = False


class PermissionRequest(BaseModel):
    granted: bool


class CapabilitiesRequest(BaseModel):
    position: bool | None = None
    orientation: bool | None = None
    orientation_requires_permission: bool | None = None


class ConnectRequest(BaseModel):
    address: str = Field(..., min_length=1)


class ShareLinkRequest(BaseModel):
    url: str = Field(..., min_length=1)


def create_signaling_client(redis_client, loop: asyncio.AbstractEventLoop) -> SignalingClient:
    return RedisSignalingClient(redis_client, loop)


@asynccontextmanager
async def lifespan(_: FastAPI):
    global runtime, position_source, orientation_source, status_log

    init_db()
    status_log = install_status_log(settings.status_log_capacity)
    loop = asyncio.get_running_loop()
    app.state.redis_client = create_async_redis_client()

    position_source = PushPositionSource(loop)
    orientation_source = PushOrientationSource()
    runtime = CompassRuntime(
        loop=loop,
        signaling=create_signaling_client(app.state.redis_client, loop),
        store=StateStore(SessionLocal),
        position_source=position_source,
        orientation_source=orientation_source,
        share_base_url=settings.share_base_url,
    )
    runtime.boot()

    yield

    runtime.shutdown()
    runtime = None
    await app.state.redis_client.aclose()
    remove_status_log(status_log)
    status_log = None


app.router.lifespan_context = lifespan


def _require_runtime() -> CompassRuntime:
    if not runtime:
        raise HTTPException(status_code=503, detail="Runtime not initialized")
    return runtime


@app.get("/")
async def read_root():
    return {
        "status": "ok",
        "message": "Peer Compass Backend API is running",
        "endpoints": {
            "navigation": "/api/navigation",
            "navigation_ws": "/api/navigation/ws",
            "target": "/api/target",
            "target_current_location": "/api/target/current-location",
            "sensors": "/api/sensors",
            "session": "/api/session",
            "status": "/api/status",
            "health": "/health",
        },
    }


@app.get("/health")
async def health_check():
    rt = _require_runtime()
    return {"status": "ok", "session_state": rt.session.state.value}


# ---------- Navigation ----------

@app.get("/api/navigation")
async def get_navigation():
    return _require_runtime().snapshot()


@app.post("/api/target")
async def save_target(body: TargetRequest):
    rt = _require_runtime()
    try:
        rt.save_target(body.latitude, body.longitude)
    except InvalidCoordinateError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return rt.snapshot()


@app.post("/api/target/current-location")
async def use_current_location():
    rt = _require_runtime()
    try:
        await rt.use_current_location()
    except CapabilityUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except PositionError as exc:
        raise HTTPException(status_code=_POSITION_ERROR_STATUS[exc.code], detail=exc.message)
    return rt.snapshot()


# ---------- Sensors ----------

@app.post("/api/sensors/start")
async def start_sensors():
    rt = _require_runtime()
    try:
        await rt.start_monitoring()
    except OrientationPermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return rt.snapshot()


@app.post("/api/sensors/stop")
async def stop_sensors():
    rt = _require_runtime()
    rt.stop_monitoring()
    return rt.snapshot()


@app.post("/api/sensors/capabilities", status_code=204)
async def set_capabilities(body: CapabilitiesRequest):
    _require_runtime()
    if body.position is not None:
        position_source.set_available(body.position)
    orientation_source.configure(
        available=body.orientation,
        requires_permission=body.orientation_requires_permission,
    )


@app.post("/api/sensors/position", status_code=202)
async def push_position(body: PositionSampleRequest):
    _require_runtime()
    try:
        coordinate = parse_coordinate(body.latitude, body.longitude)
    except InvalidCoordinateError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    position_source.push_fix(PositionFix(coordinate=coordinate, accuracy_m=body.accuracy))
    return {"accepted": True}


@app.post("/api/sensors/position/error", status_code=202)
async def push_position_error(body: PositionErrorRequest):
    _require_runtime()
    position_source.push_error(PositionError(body.code, body.message))
    return {"accepted": True}


@app.post("/api/sensors/orientation", status_code=202)
async def push_orientation(body: OrientationSampleRequest):
    rt = _require_runtime()
    orientation_source.push_sample(
        OrientationSample(
            compass_heading=body.compass_heading,
            alpha=body.alpha,
            absolute=body.absolute,
        )
    )
    return {"heading": rt.aggregator.heading}


@app.post("/api/sensors/orientation/permission", status_code=204)
async def record_orientation_permission(body: PermissionRequest):
    _require_runtime()
    orientation_source.record_permission(body.granted)


# ---------- Peer session ----------

@app.get("/api/session")
async def get_session():
    return _require_runtime().session_info()


@app.post("/api/session/connect", status_code=202)
async def connect_peer(body: ConnectRequest):
    rt = _require_runtime()
    try:
        rt.connect(body.address)
    except (SessionNotReadyError, PeerAlreadyConnectedError) as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return rt.session_info()


@app.post("/api/session/open-link")
async def open_share_link(body: ShareLinkRequest):
    rt = _require_runtime()
    try:
        address, stripped = rt.open_share_link(body.url)
    except (SessionNotReadyError, PeerAlreadyConnectedError) as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"peer_address": address, "url": stripped, "session": rt.session_info()}


@app.delete("/api/session", status_code=204)
async def teardown_session():
    _require_runtime().session.teardown()


@app.get("/api/status")
async def get_status(limit: int | None = None):
    _require_runtime()
    return {"lines": status_log.lines(limit) if status_log else []}


# ---------- Live updates ----------

def _offer_latest(queue: asyncio.Queue, item) -> None:
    """Keep the queue non-blocking and biased toward the newest snapshot."""
    try:
        queue.put_nowait(item)
    except asyncio.QueueFull:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        queue.put_nowait(item)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Client messages are ignored; only the disconnect matters.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@app.websocket("/api/navigation/ws")
async def websocket_navigation(websocket: WebSocket):
    await websocket.accept()

    if not runtime:
        await websocket.send_json({"type": "error", "message": "Runtime unavailable"})
        await websocket.close(code=1011)
        return

    rt = runtime
    updates: asyncio.Queue = asyncio.Queue(maxsize=1)
    unsubscribe = rt.subscribe(lambda _result: _offer_latest(updates, rt.snapshot()))
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))

    try:
        await websocket.send_json({"type": "navigation", **rt.snapshot()})
        while True:
            next_update = asyncio.create_task(updates.get())
            done, _ = await asyncio.wait(
                {next_update, disconnected}, return_when=asyncio.FIRST_COMPLETED
            )
            if disconnected in done:
                next_update.cancel()
                break
            await websocket.send_json({"type": "navigation", **next_update.result()})
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Navigation websocket stream failed")
    finally:
        unsubscribe()
        disconnected.cancel()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, workers=1, loop="asyncio")
