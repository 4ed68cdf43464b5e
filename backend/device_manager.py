from __future__ import annotations

import json
import logging
import os
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from controllers import (
    AppStatus,
    ConnectionEvent,
    ConnectionManager,
    Device,
    DiscoveryEngine,
    DiscoveryEvent,
    DiscoveryEventKind,
    EventKind,
    KeyAction,
    RemoteKey,
    SamsungRestClient,
    send_wake_packet,
)
from controllers.errors import InvalidConfigurationError, SmartViewError
from controllers.samsung import AuthorizationState, ConnectionState, Connector

STATE_VERSION = 1
APP_NAME = os.getenv("SMARTVIEW_APP_NAME", "SmartView Remote")
SCAN_TIMEOUT = float(os.getenv("SMARTVIEW_SCAN_TIMEOUT", "6"))
TOKEN_STATE_FILE = Path(os.getenv("SMARTVIEW_TOKEN_STORE", "state/tokens.json"))
EVENT_HISTORY = int(os.getenv("SMARTVIEW_EVENT_HISTORY", "50"))
VERBOSE = bool(os.getenv("SMARTVIEW_VERBOSE", ""))

logger = logging.getLogger(__name__)


@dataclass
class TelevisionRecord:
    key: str
    device: Device
    mac: Optional[str] = None
    last_seen: str = "Unknown"
    events: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=EVENT_HISTORY))

    def to_dict(self, connection: Optional[ConnectionManager], paired: bool) -> Dict[str, object]:
        payload = self.device.to_dict()
        payload["key"] = self.key
        payload["mac"] = self.mac or self.device.metadata.get("mac")
        payload["last_seen"] = self.last_seen
        payload["paired"] = paired
        if connection is not None:
            payload["state"] = connection.state.value
            payload["authorization"] = connection.authorization.value
        else:
            payload["state"] = "disconnected"
            payload["authorization"] = "none"
        return payload


class DeviceManager:
    """Registry of televisions plus the one piece of state worth keeping.

    Devices live in memory and are rebuilt by scanning or adding an address.
    The authorization token each television issues is the only value written
    to disk, so an approved app skips the pairing prompt after a restart.
    """

    def __init__(
        self,
        *,
        token_path: Path = TOKEN_STATE_FILE,
        discovery: Optional[DiscoveryEngine] = None,
        rest: Optional[SamsungRestClient] = None,
        connector: Optional[Connector] = None,
        app_name: str = APP_NAME,
    ) -> None:
        self.devices: Dict[str, TelevisionRecord] = {}
        self._tokens: Dict[str, str] = {}
        self._connections: Dict[str, ConnectionManager] = {}
        self._token_path = Path(token_path)
        self._app_name = app_name
        self._connector = connector
        self.discovery = discovery or DiscoveryEngine()
        self.rest = rest or SamsungRestClient()

    async def startup(self) -> None:
        await self._load_tokens()

    async def _load_tokens(self) -> None:
        if not self._token_path.exists():
            return
        try:
            data = json.loads(self._token_path.read_text())
        except (OSError, ValueError):
            logger.exception("Failed to read token store %s", self._token_path)
            return
        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            logger.warning("Ignoring token store with unexpected format")
            return
        tokens = data.get("tokens")
        if not isinstance(tokens, dict):
            logger.warning("Ignoring token store with unexpected format")
            return
        self._tokens = {str(key): str(value) for key, value in tokens.items() if value}

    def _persist_tokens(self) -> None:
        payload = {
            "version": STATE_VERSION,
            "tokens": self._tokens,
            "saved_at": datetime.utcnow().isoformat(),
        }
        self._token_path.parent.mkdir(parents=True, exist_ok=True)
        self._token_path.write_text(json.dumps(payload, indent=2))

    async def scan(self, timeout: Optional[float] = None, target_id: Optional[str] = None) -> List[Dict[str, object]]:
        """Run one discovery session and fold the results into the registry.

        A session that reported an error and found nothing raises that error.
        """
        errors: List[SmartViewError] = []

        def collect(event: DiscoveryEvent) -> None:
            if event.kind is DiscoveryEventKind.ERROR and event.error is not None:
                errors.append(event.error)

        self.discovery.add_observer(collect)
        try:
            found = await self.discovery.discover(timeout or SCAN_TIMEOUT, target_id=target_id)
        finally:
            self.discovery.remove_observer(collect)
        if errors and not found:
            raise errors[0]
        now = datetime.utcnow().isoformat()
        discovered: List[Dict[str, object]] = []
        for device in found:
            record = self.devices.get(device.id)
            if record is None:
                record = TelevisionRecord(key=device.id, device=device)
                self.devices[device.id] = record
            else:
                record.device = device
            record.last_seen = now
            discovered.append(self._describe(record))
        return discovered

    def add_device(self, address: str, name: Optional[str] = None, mac: Optional[str] = None) -> Dict[str, object]:
        device = Device.from_address(address, name=name)
        record = self.devices.get(device.id)
        if record is None:
            record = TelevisionRecord(key=device.id, device=device)
            self.devices[device.id] = record
        if mac:
            record.mac = mac
        return self._describe(record)

    async def get_devices(self) -> List[Dict[str, object]]:
        return [self._describe(record) for record in self.devices.values()]

    async def get_device(self, device_id: str) -> Optional[Dict[str, object]]:
        record = self.devices.get(device_id)
        return self._describe(record) if record else None

    async def refresh_device(self, device_id: str) -> Dict[str, object]:
        record = self._record(device_id)
        device = await self.rest.fetch_device_info(record.device)
        record.device = device
        record.last_seen = datetime.utcnow().isoformat()
        return self._describe(record)

    async def connect_device(self, device_id: str, app_name: Optional[str] = None) -> Dict[str, object]:
        record = self._record(device_id)
        connection = self._connection(device_id)
        connection.connect(record.device, app_name or self._app_name, token=self._tokens.get(device_id))
        return self._describe(record)

    async def disconnect_device(self, device_id: str) -> Dict[str, object]:
        record = self._record(device_id)
        connection = self._connections.get(device_id)
        if connection is not None:
            await connection.disconnect()
        return self._describe(record)

    async def send_key(self, device_id: str, key: str, action: str = "Click") -> None:
        try:
            key_action = KeyAction(action)
        except ValueError:
            raise InvalidConfigurationError(f"unknown key action {action!r}") from None
        await self._connection(device_id).send_key(RemoteKey.parse(key), key_action)

    async def send_text(self, device_id: str, text: str) -> None:
        await self._connection(device_id).send_text(text)

    async def wake_device(self, device_id: str) -> None:
        record = self._record(device_id)
        mac = record.mac or record.device.metadata.get("mac")
        if not mac:
            raise InvalidConfigurationError("device has no MAC address", device=device_id)
        await send_wake_packet(str(mac))

    async def app_status(self, device_id: str, app_id: str) -> AppStatus:
        return await self.rest.get_app_status(self._record(device_id).device, app_id)

    async def launch_app(self, device_id: str, app_id: str) -> None:
        await self.rest.launch_app(self._record(device_id).device, app_id)

    def events(self, device_id: str) -> List[Dict[str, Any]]:
        return list(self._record(device_id).events)

    def forget_token(self, device_id: str) -> bool:
        self._record(device_id)
        if self._tokens.pop(device_id, None) is None:
            return False
        self._persist_tokens()
        return True

    async def stats(self) -> Dict[str, int]:
        ready = sum(1 for conn in self._connections.values() if conn.state is ConnectionState.READY)
        return {"devices": len(self.devices), "ready": ready, "paired": len(self._tokens)}

    async def shutdown(self) -> None:
        self.discovery.stop_search()
        for connection in self._connections.values():
            await connection.disconnect()

    def _on_event(self, device_id: str, event: ConnectionEvent) -> None:
        record = self.devices.get(device_id)
        if record is not None:
            entry = event.to_dict()
            entry["timestamp"] = datetime.utcnow().isoformat()
            record.events.append(entry)
        if event.kind is not EventKind.AUTHORIZATION_CHANGED:
            return
        if event.authorization is AuthorizationState.ALLOWED and event.token:
            if self._tokens.get(device_id) != event.token:
                self._tokens[device_id] = event.token
                self._persist_tokens()
        elif event.authorization is AuthorizationState.DENIED:
            if self._tokens.pop(device_id, None) is not None:
                self._persist_tokens()

    def _record(self, device_id: str) -> TelevisionRecord:
        record = self.devices.get(device_id)
        if record is None:
            raise KeyError(device_id)
        return record

    def _connection(self, device_id: str) -> ConnectionManager:
        self._record(device_id)
        connection = self._connections.get(device_id)
        if connection is None:
            connection = ConnectionManager(connector=self._connector, verbose=VERBOSE)
            connection.add_observer(lambda event, key=device_id: self._on_event(key, event))
            self._connections[device_id] = connection
        return connection

    def _describe(self, record: TelevisionRecord) -> Dict[str, object]:
        return record.to_dict(self._connections.get(record.key), record.key in self._tokens)
