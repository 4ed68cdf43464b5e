from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .device import Device
from .errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_REST_PORT = 8001


class AppState(str, Enum):
    NOT_INSTALLED = "not-installed"
    STOPPED = "stopped"
    RUNNING = "running"
    VISIBLE = "visible"


@dataclass(frozen=True)
class AppStatus:
    app_id: str
    state: AppState
    name: Optional[str] = None
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.app_id, "state": self.state.value, "name": self.name, "version": self.version}


class SamsungRestClient:
    """Request/response helpers for the television's plain HTTP API.

    Calls use urllib in a worker thread so the event loop never blocks.
    """

    def __init__(self, *, port: int = DEFAULT_REST_PORT, timeout: float = 5.0) -> None:
        self._port = port
        self._timeout = timeout

    async def fetch_device_info(self, device: Device) -> Device:
        """Return ``device`` refreshed with the metadata the television reports."""
        url = self._url(device, "/api/v2/")
        _, payload = await asyncio.to_thread(self._request, "GET", url)
        if not isinstance(payload, dict):
            raise FetchError("device info is not a json object", url)
        info = payload.get("device") if isinstance(payload.get("device"), dict) else {}
        metadata: Dict[str, object] = {}
        for key, field_name in (("wifiMac", "mac"), ("type", "type"), ("firmwareVersion", "firmware")):
            value = info.get(key) or payload.get(key)
            if value:
                metadata[field_name] = value
        if "TokenAuthSupport" in info:
            metadata["token_auth"] = str(info["TokenAuthSupport"]).lower() == "true"
        identifier = str(info.get("id") or payload.get("id") or device.id)
        if identifier.lower().startswith("uuid:"):
            identifier = identifier[5:]
        return device.refreshed(
            id=identifier,
            name=str(info.get("name") or payload.get("name") or device.name),
            model=info.get("modelName") or device.model,
            metadata=metadata,
        )

    async def get_app_status(self, device: Device, app_id: str) -> AppStatus:
        url = self._url(device, f"/api/v2/applications/{app_id}")
        try:
            _, payload = await asyncio.to_thread(self._request, "GET", url)
        except FetchError as exc:
            if exc.status == 404:
                return AppStatus(app_id=app_id, state=AppState.NOT_INSTALLED)
            raise
        if not isinstance(payload, dict):
            raise FetchError("app status is not a json object", url)
        if payload.get("visible"):
            state = AppState.VISIBLE
        elif payload.get("running"):
            state = AppState.RUNNING
        else:
            state = AppState.STOPPED
        return AppStatus(
            app_id=str(payload.get("id") or app_id),
            state=state,
            name=payload.get("name"),
            version=payload.get("version"),
        )

    async def launch_app(self, device: Device, app_id: str) -> None:
        url = self._url(device, f"/api/v2/applications/{app_id}")
        await asyncio.to_thread(self._request, "POST", url)
        logger.info("Launched %s on %s", app_id, device.address)

    async def close_app(self, device: Device, app_id: str) -> None:
        url = self._url(device, f"/api/v2/applications/{app_id}")
        await asyncio.to_thread(self._request, "DELETE", url)

    def _url(self, device: Device, path: str) -> str:
        return f"http://{device.address}:{self._port}{path}"

    def _request(self, method: str, url: str):
        req = urllib.request.Request(url, method=method, headers={"User-Agent": "SmartViewRemote/1.0"})
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                status = resp.status
                body = resp.read()
        except urllib.error.HTTPError as exc:
            raise FetchError(f"{method} returned {exc.code}", url, status=exc.code) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise FetchError(f"{method} failed: {exc}", url) from exc
        if not body.strip():
            return status, None
        try:
            payload: Any = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise FetchError("response is not json", url, status=status) from exc
        return status, payload
