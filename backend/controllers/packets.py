from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import PacketDecodeError

METHOD_REMOTE_CONTROL = "ms.remote.control"

EVENT_CHANNEL_CONNECT = "ms.channel.connect"
EVENT_CHANNEL_UNAUTHORIZED = "ms.channel.unauthorized"
EVENT_CHANNEL_TIMEOUT = "ms.channel.timeOut"
EVENT_REMOTE_CONTROL = "ms.remote.control"
EVENT_ERROR = "ms.error"


@dataclass(frozen=True)
class Envelope:
    """Outbound message: a method discriminator plus its parameters."""

    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method, "params": dict(self.params)}


@dataclass(frozen=True)
class InboundFrame:
    """Event pushed by the device over the control channel."""

    event: str
    data: Any = None

    @property
    def message(self) -> Optional[str]:
        if isinstance(self.data, dict):
            message = self.data.get("message") or self.data.get("status_message")
            if isinstance(message, str) and message:
                return message
        return None

    @property
    def token(self) -> Optional[str]:
        if isinstance(self.data, dict):
            token = self.data.get("token")
            if isinstance(token, (str, int)) and str(token):
                return str(token)
        return None


def encode_envelope(envelope: Envelope) -> str:
    return json.dumps(envelope.to_dict())


def decode_envelope(payload: Any) -> Envelope:
    parsed = _load_json(payload)
    method = parsed.get("method")
    if not isinstance(method, str) or not method:
        raise PacketDecodeError("envelope missing method", payload)
    params = parsed.get("params")
    if not isinstance(params, dict):
        raise PacketDecodeError("envelope missing params", payload)
    return Envelope(method=method, params=params)


def decode_frame(payload: Any) -> InboundFrame:
    parsed = _load_json(payload)
    event = parsed.get("event")
    if not isinstance(event, str) or not event:
        raise PacketDecodeError("frame missing event", payload)
    return InboundFrame(event=event, data=parsed.get("data"))


def encode_base64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def decode_base64(value: str) -> str:
    try:
        return base64.b64decode(value.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise PacketDecodeError(f"invalid base64 payload: {exc}", value) from exc


def _load_json(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PacketDecodeError("frame is not utf-8", payload) from exc
    if not isinstance(payload, str):
        raise PacketDecodeError(f"unsupported frame type {type(payload).__name__}")
    text = payload.strip()
    if not text:
        raise PacketDecodeError("empty frame")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PacketDecodeError(f"invalid json: {exc.msg}", text) from exc
    if not isinstance(parsed, dict):
        raise PacketDecodeError("frame is not a json object", text)
    return parsed
