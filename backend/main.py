from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from controllers import ErrorKind, SmartViewError
from device_manager import DeviceManager

logger = logging.getLogger(__name__)

app = FastAPI(title="SmartView Remote API", version="1.0.0")
manager = DeviceManager()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    ErrorKind.INVALID_CONFIGURATION: 400,
    ErrorKind.ALREADY_CONNECTED: 409,
    ErrorKind.ALREADY_SEARCHING: 409,
    ErrorKind.PRECONDITION_VIOLATION: 412,
    ErrorKind.DENIED: 403,
    ErrorKind.DECODE_FAILURE: 502,
    ErrorKind.TRANSPORT_FAILURE: 502,
    ErrorKind.FETCH_FAILURE: 502,
    ErrorKind.DISCOVERY_TIMEOUT: 504,
}


@app.on_event("startup")
async def startup_event() -> None:
    await manager.startup()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await manager.shutdown()


class ScanRequest(BaseModel):
    timeout: Optional[float] = Field(default=None, gt=0)
    target_id: Optional[str] = None


class AddDeviceRequest(BaseModel):
    address: str
    name: Optional[str] = None
    mac: Optional[str] = None


class ConnectRequest(BaseModel):
    app_name: Optional[str] = None


class KeyRequest(BaseModel):
    key: str
    action: str = "Click"


class TextRequest(BaseModel):
    text: str


@app.get("/api/health")
async def health() -> Dict[str, str]:
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


@app.get("/api/devices")
async def list_devices() -> Dict[str, List[Dict[str, object]]]:
    devices = await manager.get_devices()
    return {"devices": devices}


@app.post("/api/devices")
async def add_device(request: AddDeviceRequest) -> Dict[str, object]:
    return manager.add_device(request.address, name=request.name, mac=request.mac)


@app.post("/api/scan")
async def trigger_scan(request: Optional[ScanRequest] = None) -> Dict[str, object]:
    request = request or ScanRequest()
    discovered = await manager.scan(request.timeout, target_id=request.target_id)
    stats = await manager.stats()
    return {"discovered": discovered, "stats": stats}


@app.post("/api/devices/{device_id}/refresh")
async def refresh_device(device_id: str) -> Dict[str, object]:
    await _require_device(device_id)
    return await manager.refresh_device(device_id)


@app.post("/api/devices/{device_id}/connect")
async def connect_device(device_id: str, request: Optional[ConnectRequest] = None) -> Dict[str, object]:
    await _require_device(device_id)
    return await manager.connect_device(device_id, app_name=request.app_name if request else None)


@app.post("/api/devices/{device_id}/disconnect")
async def disconnect_device(device_id: str) -> Dict[str, object]:
    await _require_device(device_id)
    return await manager.disconnect_device(device_id)


@app.post("/api/devices/{device_id}/key")
async def send_key(device_id: str, request: KeyRequest) -> Dict[str, str]:
    await _require_device(device_id)
    await manager.send_key(device_id, request.key, request.action)
    return {"status": "written", "device": device_id, "key": request.key}


@app.post("/api/devices/{device_id}/text")
async def send_text(device_id: str, request: TextRequest) -> Dict[str, str]:
    await _require_device(device_id)
    await manager.send_text(device_id, request.text)
    return {"status": "written", "device": device_id}


@app.post("/api/devices/{device_id}/wake")
async def wake_device(device_id: str) -> Dict[str, str]:
    await _require_device(device_id)
    await manager.wake_device(device_id)
    return {"status": "sent", "device": device_id}


@app.get("/api/devices/{device_id}/events")
async def device_events(device_id: str) -> Dict[str, Any]:
    await _require_device(device_id)
    return {"device": device_id, "events": manager.events(device_id)}


@app.get("/api/devices/{device_id}/apps/{app_id}")
async def app_status(device_id: str, app_id: str) -> Dict[str, object]:
    await _require_device(device_id)
    status = await manager.app_status(device_id, app_id)
    return status.to_dict()


@app.post("/api/devices/{device_id}/apps/{app_id}/launch")
async def launch_app(device_id: str, app_id: str) -> Dict[str, str]:
    await _require_device(device_id)
    await manager.launch_app(device_id, app_id)
    return {"status": "launched", "device": device_id, "app": app_id}


@app.delete("/api/devices/{device_id}/token")
async def forget_token(device_id: str) -> Dict[str, object]:
    await _require_device(device_id)
    return {"device": device_id, "removed": manager.forget_token(device_id)}


@app.get("/api/stats")
async def get_stats() -> Dict[str, int]:
    return await manager.stats()


@app.exception_handler(SmartViewError)
async def smartview_exception_handler(_, exc: SmartViewError) -> JSONResponse:
    status = ERROR_STATUS.get(exc.kind, 500)
    if status >= 500:
        logger.warning("Request failed: %s", exc)
    return JSONResponse(status_code=status, content={"detail": exc.reason, "error": exc.to_dict()})


async def _require_device(device_id: str) -> Dict[str, object]:
    device = await manager.get_device(device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Unknown device")
    return device


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
