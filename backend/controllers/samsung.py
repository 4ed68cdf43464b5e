from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import ssl
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from .commands import CommandEncoder, KeyAction, RemoteCommand, RemoteKey
from .device import Device
from .errors import (
    AlreadyConnectedError,
    AuthorizationDeniedError,
    InvalidConfigurationError,
    PacketDecodeError,
    PreconditionError,
    SmartViewError,
    TransportError,
)
from .packets import (
    EVENT_CHANNEL_CONNECT,
    EVENT_CHANNEL_TIMEOUT,
    EVENT_CHANNEL_UNAUTHORIZED,
    EVENT_ERROR,
    EVENT_REMOTE_CONTROL,
    InboundFrame,
    decode_frame,
    encode_base64,
)

DEFAULT_PORT = 8002
CHANNEL_PATH = "/api/v2/channels/samsung.remote.control"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHORIZING = "authorizing"
    READY = "ready"
    CLOSING = "closing"


class AuthorizationState(str, Enum):
    NONE = "none"
    PENDING = "pending"
    ALLOWED = "allowed"
    DENIED = "denied"


class EventKind(str, Enum):
    CONNECTED = "connected"
    AUTHORIZING = "authorizing"
    AUTHORIZATION_CHANGED = "authorization-changed"
    READY = "ready"
    COMMAND_WRITTEN = "command-written"
    COMMAND_ACKNOWLEDGED = "command-acknowledged"
    DISCONNECTED = "disconnected"
    ERROR = "error"


_TRANSITIONS: Dict[ConnectionState, frozenset] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.CONNECTED, ConnectionState.CLOSING, ConnectionState.DISCONNECTED}),
    ConnectionState.CONNECTED: frozenset({ConnectionState.AUTHORIZING, ConnectionState.CLOSING, ConnectionState.DISCONNECTED}),
    ConnectionState.AUTHORIZING: frozenset({ConnectionState.READY, ConnectionState.CLOSING, ConnectionState.DISCONNECTED}),
    ConnectionState.READY: frozenset({ConnectionState.CLOSING, ConnectionState.DISCONNECTED}),
    ConnectionState.CLOSING: frozenset({ConnectionState.DISCONNECTED}),
}


@dataclass(frozen=True)
class SessionConfig:
    """Parameters of one connect/authorize lifecycle."""

    address: str
    app_name: str
    token: Optional[str] = None
    port: int = DEFAULT_PORT

    def __post_init__(self) -> None:
        if not str(self.address or "").strip():
            raise InvalidConfigurationError("device address required")
        if not str(self.app_name or "").strip():
            raise InvalidConfigurationError("app name required", address=self.address)
        if not 0 < int(self.port) < 65536:
            raise InvalidConfigurationError(f"invalid port {self.port}", address=self.address)

    @property
    def url(self) -> str:
        params = {"name": encode_base64(self.app_name)}
        if self.token:
            params["token"] = self.token
        return f"wss://{self.address}:{self.port}{CHANNEL_PATH}?{urlencode(params)}"


@dataclass(frozen=True)
class ConnectionEvent:
    kind: EventKind
    state: ConnectionState
    authorization: AuthorizationState
    token: Optional[str] = None
    command: Optional[RemoteCommand] = None
    error: Optional[SmartViewError] = None
    ok: bool = True

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind": self.kind.value,
            "state": self.state.value,
            "authorization": self.authorization.value,
        }
        # The token is a credential; serialized events only say one exists.
        if self.token:
            payload["has_token"] = True
        if self.command is not None:
            payload["command"] = self.command.label
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        if self.kind is EventKind.COMMAND_ACKNOWLEDGED:
            payload["ok"] = self.ok
        return payload


ConnectionObserver = Callable[[ConnectionEvent], None]
CertificateValidator = Callable[[bytes], bool]
Connector = Callable[..., Awaitable[Any]]


class ConnectionManager:
    """SmartView remote-control channel for one television.

    ``connect()`` checks its preconditions synchronously and runs the TLS
    websocket handshake and the authorization wait in a background task.
    Progress is reported to observers in the order the transport events
    occurred. Samsung ships a self-signed SmartViewSDK CA, so certificate
    verification is left to the optional ``certificate_validator`` hook,
    which receives the peer certificate in DER form.
    """

    def __init__(
        self,
        *,
        certificate_validator: Optional[CertificateValidator] = None,
        port: int = DEFAULT_PORT,
        connector: Optional[Connector] = None,
        verbose: bool = False,
    ) -> None:
        self._ssl = ssl.create_default_context()
        self._ssl.check_hostname = False
        self._ssl.verify_mode = ssl.CERT_NONE
        self._certificate_validator = certificate_validator
        self._port = port
        self._connector: Connector = connector or websockets.connect
        self._encoder = CommandEncoder()
        self._observers: List[ConnectionObserver] = []
        self._send_lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._authorization = AuthorizationState.NONE
        self._token: Optional[str] = None
        self._config: Optional[SessionConfig] = None
        self._device: Optional[Device] = None
        self._websocket: Any = None
        self._task: Optional[asyncio.Task] = None
        # Commands written but not yet acknowledged, oldest first.
        self._pending: Deque[RemoteCommand] = deque()
        self._logger = logging.getLogger("controllers.samsung")
        self._verbose = bool(verbose)
        if self._verbose:
            logdir = os.getenv("SMARTVIEW_LOG_DIR", "/var/log/smartview")
            try:
                os.makedirs(logdir, exist_ok=True)
                fh = logging.FileHandler(os.path.join(logdir, "samsung.log"))
            except OSError:
                self._logger.warning("Cannot write verbose log to %s", logdir)
            else:
                fh.setLevel(logging.DEBUG)
                self._logger.addHandler(fh)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def authorization(self) -> AuthorizationState:
        return self._authorization

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def device(self) -> Optional[Device]:
        return self._device

    @property
    def config(self) -> Optional[SessionConfig]:
        return self._config

    def add_observer(self, observer: ConnectionObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: ConnectionObserver) -> None:
        with contextlib.suppress(ValueError):
            self._observers.remove(observer)

    def connect(self, device: Device, app_name: str, token: Optional[str] = None) -> asyncio.Task:
        """Start the handshake with ``device`` and return the session task.

        Must be called from a running event loop. The supplied token lets a
        previously approved app skip the pairing prompt; the manager still
        waits for the device's explicit answer.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            self._reject(AlreadyConnectedError(self._state.value))
        try:
            config = SessionConfig(address=device.address, app_name=app_name, token=token or None, port=self._port)
        except InvalidConfigurationError as exc:
            self._emit(EventKind.ERROR, error=exc)
            raise
        self._config = config
        self._device = device
        self._token = config.token
        self._authorization = AuthorizationState.NONE
        self._pending.clear()
        self._set_state(ConnectionState.CONNECTING)
        self._logger.info("Connecting to %s as %r", device.address, config.app_name)
        self._task = asyncio.get_running_loop().create_task(self._run(config))
        return self._task

    async def disconnect(self) -> bool:
        """Close the channel and end in ``disconnected``.

        Returns False without emitting anything when already disconnected or
        when another close is in progress.
        """
        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSING):
            self._logger.debug("disconnect ignored in state %s", self._state.value)
            return False
        self._set_state(ConnectionState.CLOSING)
        task = self._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._close_transport()
        self._finish()
        return True

    async def send_remote_command(self, command: RemoteCommand) -> None:
        """Write ``command`` to the device.

        Completion means the frame was written to the transport, not that the
        television executed it.
        """
        async with self._send_lock:
            if self._state is not ConnectionState.READY:
                self._reject(PreconditionError(
                    f"connection state is {self._state.value}, expected ready",
                    state=self._state.value,
                ))
            if self._authorization is not AuthorizationState.ALLOWED:
                self._reject(PreconditionError(
                    f"authorization is {self._authorization.value}, expected allowed",
                    authorization=self._authorization.value,
                ))
            payload = self._encoder.encode(command)
            if self._verbose:
                self._logger.debug("Sending %s", payload)
            websocket = self._websocket
            try:
                await websocket.send(payload)
            except (ConnectionClosed, OSError) as exc:
                error = TransportError(f"send failed: {exc}", command=command.label)
                await self._fail(error)
                raise error from exc
            if self._websocket is not websocket:
                # Channel torn down while the frame was in flight.
                return
            self._pending.append(command)
            self._emit(EventKind.COMMAND_WRITTEN, command=command)

    async def send_key(self, key: RemoteKey, action: KeyAction = KeyAction.CLICK) -> None:
        await self.send_remote_command(RemoteCommand.press(key, action))

    async def send_keys(self, keys: Sequence[RemoteKey], *, delay: float = 0.0) -> None:
        """Click each key in order; ``delay`` seconds separate consecutive keys."""
        for index, key in enumerate(keys):
            await self.send_key(key)
            if delay > 0 and index < len(keys) - 1:
                await asyncio.sleep(delay)

    async def send_text(self, text: str) -> None:
        await self.send_remote_command(RemoteCommand.literal(text))

    async def _run(self, config: SessionConfig) -> None:
        try:
            websocket = await self._open_channel(config)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            await self._fail(TransportError(f"could not open channel: {exc}", address=config.address))
            return
        self._websocket = websocket
        self._set_state(ConnectionState.CONNECTED)
        self._emit(EventKind.CONNECTED)
        if self._certificate_validator is not None and not self._certificate_accepted(websocket):
            await self._fail(TransportError("certificate rejected", address=config.address))
            return
        self._authorization = AuthorizationState.PENDING
        self._set_state(ConnectionState.AUTHORIZING)
        self._emit(EventKind.AUTHORIZING)
        await self._read_loop(websocket)

    async def _open_channel(self, config: SessionConfig) -> Any:
        opening = asyncio.ensure_future(self._connector(
            config.url,
            ssl=self._ssl,
            ping_interval=30,
            ping_timeout=10,
            close_timeout=1.0,
            max_size=4 * 1024 * 1024,
        ))
        try:
            return await opening
        except asyncio.CancelledError:
            # The socket may have opened just before the cancel landed.
            if opening.done() and not opening.cancelled() and opening.exception() is None:
                with contextlib.suppress(ConnectionClosed, OSError):
                    await opening.result().close()
            raise

    def _certificate_accepted(self, websocket: Any) -> bool:
        transport = getattr(websocket, "transport", None)
        ssl_object = transport.get_extra_info("ssl_object") if transport is not None else None
        certificate = ssl_object.getpeercert(binary_form=True) if ssl_object is not None else None
        if not certificate:
            self._logger.warning("No peer certificate available for validation")
            return False
        try:
            return bool(self._certificate_validator(certificate))
        except Exception:
            self._logger.exception("Certificate validator failed")
            return False

    async def _read_loop(self, websocket: Any) -> None:
        while True:
            try:
                raw = await websocket.recv()
            except ConnectionClosedOK:
                if self._websocket is not websocket:
                    return
                self._logger.info("Device closed the channel")
                await self._shutdown()
                return
            except (ConnectionClosed, OSError) as exc:
                if self._websocket is not websocket:
                    return
                await self._fail(TransportError(f"connection lost: {exc}"))
                return
            if self._verbose:
                self._logger.debug("Received %r", raw)
            try:
                frame = decode_frame(raw)
            except PacketDecodeError as exc:
                self._logger.warning("Dropping undecodable frame: %s", exc)
                self._emit(EventKind.ERROR, error=exc)
                continue
            if not await self._dispatch(frame):
                return

    async def _dispatch(self, frame: InboundFrame) -> bool:
        if self._state is ConnectionState.AUTHORIZING:
            return await self._handle_authorization(frame)
        if self._state is ConnectionState.READY:
            self._handle_ready(frame)
        return True

    async def _handle_authorization(self, frame: InboundFrame) -> bool:
        if frame.event == EVENT_CHANNEL_CONNECT:
            self._authorization = AuthorizationState.ALLOWED
            self._token = frame.token or self._token
            self._logger.info("Authorization allowed by %s", self._config.address)
            self._emit(EventKind.AUTHORIZATION_CHANGED, token=self._token)
            self._set_state(ConnectionState.READY)
            self._emit(EventKind.READY, token=self._token)
        elif frame.event == EVENT_CHANNEL_UNAUTHORIZED:
            self._authorization = AuthorizationState.DENIED
            self._token = None
            self._logger.warning("Authorization denied by %s", self._config.address)
            self._emit(EventKind.AUTHORIZATION_CHANGED)
            self._emit(EventKind.ERROR, error=AuthorizationDeniedError(self._config.address))
            await self._shutdown()
            return False
        elif frame.event == EVENT_CHANNEL_TIMEOUT:
            self._authorization = AuthorizationState.NONE
            self._emit(EventKind.AUTHORIZATION_CHANGED)
        else:
            self._logger.debug("Ignoring %s while authorizing", frame.event)
        return True

    def _handle_ready(self, frame: InboundFrame) -> None:
        if frame.event == EVENT_REMOTE_CONTROL and self._pending:
            self._emit(EventKind.COMMAND_ACKNOWLEDGED, command=self._pending.popleft())
        elif frame.event == EVENT_ERROR:
            command = self._pending.popleft() if self._pending else None
            error = TransportError(frame.message or "device reported an error", event=frame.event)
            if command is not None:
                self._emit(EventKind.COMMAND_ACKNOWLEDGED, command=command, ok=False)
            self._emit(EventKind.ERROR, command=command, error=error)
        else:
            self._logger.debug("Ignoring %s event", frame.event)

    async def _fail(self, error: SmartViewError) -> None:
        if self._state in (ConnectionState.CLOSING, ConnectionState.DISCONNECTED):
            return
        self._logger.warning("Transport failure: %s", error.reason)
        self._set_state(ConnectionState.CLOSING)
        self._emit(EventKind.ERROR, error=error)
        await self._close_transport()
        self._finish()

    async def _shutdown(self) -> None:
        if self._state in (ConnectionState.CLOSING, ConnectionState.DISCONNECTED):
            return
        self._set_state(ConnectionState.CLOSING)
        await self._close_transport()
        self._finish()

    async def _close_transport(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is None:
            return
        try:
            await websocket.close()
        except (ConnectionClosed, OSError):
            self._logger.debug("Error closing websocket", exc_info=True)

    def _finish(self) -> None:
        self._task = None
        self._pending.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        self._emit(EventKind.DISCONNECTED)

    def _set_state(self, state: ConnectionState) -> None:
        if state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"illegal transition {self._state.value} -> {state.value}")
        self._logger.debug("state %s -> %s", self._state.value, state.value)
        self._state = state

    def _reject(self, error: SmartViewError) -> None:
        self._emit(EventKind.ERROR, error=error)
        raise error

    def _emit(self, kind: EventKind, **fields: Any) -> None:
        event = ConnectionEvent(kind=kind, state=self._state, authorization=self._authorization, **fields)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                self._logger.exception("Connection observer failed on %s", kind.value)
