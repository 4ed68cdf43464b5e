"""SSDP discovery of SmartView televisions.

A search session re-sends an ``M-SEARCH`` datagram every ``interval`` seconds
and reports each distinct responder once. Responses that cannot be parsed are
dropped: SSDP runs over UDP and is best-effort.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .device import Device
from .errors import (
    AlreadySearchingError,
    DiscoveryTimeoutError,
    InvalidConfigurationError,
    PacketDecodeError,
    SmartViewError,
    TransportError,
)

logger = logging.getLogger(__name__)

SSDP_ADDRESS = "239.255.255.250"
SSDP_PORT = 1900
SEARCH_TARGET = "urn:samsung.com:device:RemoteControlReceiver:1"
DEFAULT_SEARCH_INTERVAL = 3.0
DEFAULT_MX = 2

_NAME_HEADERS = ("FRIENDLYNAME", "X-FRIENDLY-NAME", "X-FRIENDLYNAME")


class DiscoveryEventKind(str, Enum):
    FOUND = "found"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class DiscoveryEvent:
    kind: DiscoveryEventKind
    device: Optional[Device] = None
    error: Optional[SmartViewError] = None


DiscoveryObserver = Callable[[DiscoveryEvent], None]


def build_search_request(search_target: str = SEARCH_TARGET, mx: int = DEFAULT_MX) -> bytes:
    lines = [
        "M-SEARCH * HTTP/1.1",
        f"HOST: {SSDP_ADDRESS}:{SSDP_PORT}",
        'MAN: "ssdp:discover"',
        f"MX: {mx}",
        f"ST: {search_target}",
        "",
        "",
    ]
    return "\r\n".join(lines).encode("ascii")


def parse_search_response(data: bytes, addr: Tuple[str, int]) -> Device:
    """Turn one SSDP response datagram into a ``Device``."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PacketDecodeError("response is not utf-8", data) from exc
    lines = text.splitlines()
    if not lines or not lines[0].upper().startswith("HTTP/1.1 200"):
        raise PacketDecodeError("not an ssdp search response", data)
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if sep and name.strip():
            headers[name.strip().upper()] = value.strip()

    usn = headers.get("USN", "")
    identifier = usn.split("::", 1)[0]
    if identifier.lower().startswith("uuid:"):
        identifier = identifier[5:]
    if not identifier:
        raise PacketDecodeError("response missing USN", data)

    location = headers.get("LOCATION", "")
    address = urlparse(location).hostname if location else None
    address = address or addr[0]
    name = next((headers[key] for key in _NAME_HEADERS if headers.get(key)), None)
    metadata: Dict[str, object] = {}
    for key, field_name in (("LOCATION", "location"), ("SERVER", "server"), ("ST", "search_target")):
        if headers.get(key):
            metadata[field_name] = headers[key]
    try:
        return Device(
            id=identifier,
            name=name or f"Samsung TV ({address})",
            address=address,
            metadata=metadata,
        )
    except InvalidConfigurationError as exc:
        raise PacketDecodeError(exc.reason, data) from exc


class _SearchProtocol(asyncio.DatagramProtocol):
    def __init__(self, engine: "DiscoveryEngine") -> None:
        self._engine = engine

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self._engine.handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.debug("SSDP socket error: %s", exc)


class DiscoveryEngine:
    """Cancellable SSDP search sessions, one at a time."""

    def __init__(
        self,
        *,
        search_target: str = SEARCH_TARGET,
        address: str = SSDP_ADDRESS,
        port: int = SSDP_PORT,
        interval: float = DEFAULT_SEARCH_INTERVAL,
    ) -> None:
        self._search_target = search_target
        self._address = address
        self._port = port
        self._interval = interval
        self._observers: List[DiscoveryObserver] = []
        self._found: Dict[str, Device] = {}
        self._target_id: Optional[str] = None
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None

    @property
    def is_searching(self) -> bool:
        return self._task is not None

    @property
    def devices(self) -> List[Device]:
        return list(self._found.values())

    def add_observer(self, observer: DiscoveryObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: DiscoveryObserver) -> None:
        with contextlib.suppress(ValueError):
            self._observers.remove(observer)

    def start_search(self, target_id: Optional[str] = None, timeout: Optional[float] = None) -> asyncio.Task:
        """Begin a search session; must be called from a running event loop.

        With ``target_id`` the session ends on the first matching response.
        Without ``timeout`` it runs until ``stop_search()``.
        """
        if self._task is not None:
            error = AlreadySearchingError()
            self._emit(DiscoveryEventKind.ERROR, error=error)
            raise error
        self._found = {}
        self._target_id = target_id or None
        self._stopped = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._search(timeout))
        logger.info("Discovery started (target=%s, timeout=%s)", self._target_id, timeout)
        return self._task

    def stop_search(self) -> bool:
        """End the active session. Returns False when nothing was running."""
        if self._task is None:
            return False
        task = self._task
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        self._finish()
        return True

    async def wait_stopped(self) -> None:
        if self._stopped is not None:
            await self._stopped.wait()

    async def discover(self, timeout: float, target_id: Optional[str] = None) -> List[Device]:
        """Run one bounded session and return every device it reported."""
        self.start_search(target_id=target_id, timeout=timeout)
        await self.wait_stopped()
        return self.devices

    def handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        if self._task is None:
            return
        try:
            device = parse_search_response(data, addr)
        except PacketDecodeError as exc:
            logger.debug("Dropping SSDP response from %s: %s", addr[0], exc.reason)
            return
        if self._target_id is not None and device.id != self._target_id:
            return
        if device.id in self._found:
            return
        self._found[device.id] = device
        logger.info("Discovered %s (%s) at %s", device.name, device.id, device.address)
        self._emit(DiscoveryEventKind.FOUND, device=device)
        if self._target_id is not None:
            self.stop_search()

    async def _open_endpoint(self) -> asyncio.DatagramTransport:
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _SearchProtocol(self),
            local_addr=("0.0.0.0", 0),
            allow_broadcast=True,
        )
        return transport

    async def _search(self, timeout: Optional[float]) -> None:
        try:
            self._transport = await self._open_endpoint()
        except OSError as exc:
            self._emit(DiscoveryEventKind.ERROR, error=TransportError(f"cannot open ssdp socket: {exc}"))
            self._finish()
            return
        request = build_search_request(self._search_target)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        while deadline is None or loop.time() < deadline:
            try:
                self._transport.sendto(request, (self._address, self._port))
            except OSError as exc:
                self._emit(DiscoveryEventKind.ERROR, error=TransportError(f"ssdp send failed: {exc}"))
                self._finish()
                return
            wait = self._interval
            if deadline is not None:
                wait = min(wait, max(deadline - loop.time(), 0.0))
            await asyncio.sleep(wait)
        if self._target_id is not None:
            self._emit(DiscoveryEventKind.ERROR, error=DiscoveryTimeoutError(self._target_id, timeout))
        self._finish()

    def _finish(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
        self._task = None
        self._emit(DiscoveryEventKind.STOPPED)
        if self._stopped is not None:
            self._stopped.set()
        logger.info("Discovery stopped with %d device(s)", len(self._found))

    def _emit(self, kind: DiscoveryEventKind, **fields: object) -> None:
        event = DiscoveryEvent(kind=kind, **fields)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception("Discovery observer failed on %s", kind.value)
