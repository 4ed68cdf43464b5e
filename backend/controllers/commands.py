from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import InvalidConfigurationError, PacketDecodeError
from .packets import (
    METHOD_REMOTE_CONTROL,
    Envelope,
    decode_base64,
    decode_envelope,
    encode_base64,
    encode_envelope,
)

REMOTE_TYPE_KEY = "SendRemoteKey"
REMOTE_TYPE_TEXT = "SendInputString"
TEXT_DATA_MARKER = "base64"


class RemoteKey(str, Enum):
    POWER = "KEY_POWER"
    POWER_OFF = "KEY_POWEROFF"
    UP = "KEY_UP"
    DOWN = "KEY_DOWN"
    LEFT = "KEY_LEFT"
    RIGHT = "KEY_RIGHT"
    ENTER = "KEY_ENTER"
    RETURN = "KEY_RETURN"
    EXIT = "KEY_EXIT"
    HOME = "KEY_HOME"
    MENU = "KEY_MENU"
    SOURCE = "KEY_SOURCE"
    GUIDE = "KEY_GUIDE"
    INFO = "KEY_INFO"
    TOOLS = "KEY_TOOLS"
    CHANNEL_LIST = "KEY_CH_LIST"
    CHANNEL_UP = "KEY_CHUP"
    CHANNEL_DOWN = "KEY_CHDOWN"
    VOLUME_UP = "KEY_VOLUP"
    VOLUME_DOWN = "KEY_VOLDOWN"
    MUTE = "KEY_MUTE"
    PLAY = "KEY_PLAY"
    PAUSE = "KEY_PAUSE"
    STOP = "KEY_STOP"
    FAST_FORWARD = "KEY_FF"
    REWIND = "KEY_REWIND"
    NUMBER_0 = "KEY_0"
    NUMBER_1 = "KEY_1"
    NUMBER_2 = "KEY_2"
    NUMBER_3 = "KEY_3"
    NUMBER_4 = "KEY_4"
    NUMBER_5 = "KEY_5"
    NUMBER_6 = "KEY_6"
    NUMBER_7 = "KEY_7"
    NUMBER_8 = "KEY_8"
    NUMBER_9 = "KEY_9"

    @classmethod
    def parse(cls, value: str) -> "RemoteKey":
        """Resolve ``enter``, ``ENTER``, ``KEY_ENTER`` or ``volume_up`` to a key."""
        cleaned = str(value or "").strip().upper().replace("-", "_")
        if not cleaned:
            raise InvalidConfigurationError("remote key required")
        if cleaned in cls.__members__:
            return cls[cleaned]
        code = cleaned if cleaned.startswith("KEY_") else f"KEY_{cleaned}"
        try:
            return cls(code)
        except ValueError:
            raise InvalidConfigurationError(f"unknown remote key {value!r}", key=value) from None


class KeyAction(str, Enum):
    CLICK = "Click"
    PRESS = "Press"
    RELEASE = "Release"


@dataclass(frozen=True)
class RemoteCommand:
    """Either a named key press or a literal text payload, never both."""

    key: Optional[RemoteKey] = None
    text: Optional[str] = None
    action: KeyAction = KeyAction.CLICK

    def __post_init__(self) -> None:
        if (self.key is None) == (self.text is None):
            raise InvalidConfigurationError("remote command needs exactly one of key or text")

    @classmethod
    def press(cls, key: RemoteKey, action: KeyAction = KeyAction.CLICK) -> "RemoteCommand":
        return cls(key=key, action=action)

    @classmethod
    def literal(cls, text: str) -> "RemoteCommand":
        return cls(text=text)

    @property
    def is_text(self) -> bool:
        return self.text is not None

    @property
    def label(self) -> str:
        if self.key is not None:
            return self.key.name.lower()
        return "text"


class CommandEncoder:
    """Maps ``RemoteCommand`` values to and from ``ms.remote.control`` envelopes."""

    def encode(self, command: RemoteCommand) -> str:
        return encode_envelope(self.to_envelope(command))

    def to_envelope(self, command: RemoteCommand) -> Envelope:
        if command.text is not None:
            params = {
                "Cmd": encode_base64(command.text),
                "DataOfCmd": TEXT_DATA_MARKER,
                "TypeOfRemote": REMOTE_TYPE_TEXT,
            }
        else:
            params = {
                "Cmd": command.action.value,
                "DataOfCmd": command.key.value,
                "Option": "false",
                "TypeOfRemote": REMOTE_TYPE_KEY,
            }
        return Envelope(method=METHOD_REMOTE_CONTROL, params=params)

    def decode(self, payload: object) -> RemoteCommand:
        envelope = decode_envelope(payload)
        if envelope.method != METHOD_REMOTE_CONTROL:
            raise PacketDecodeError(f"unexpected method {envelope.method}", payload)
        params = envelope.params
        remote_type = params.get("TypeOfRemote")
        cmd = params.get("Cmd")
        data = params.get("DataOfCmd")
        if not isinstance(cmd, str) or not isinstance(data, str):
            raise PacketDecodeError("params missing Cmd or DataOfCmd", payload)
        if remote_type == REMOTE_TYPE_TEXT:
            if data != TEXT_DATA_MARKER:
                raise PacketDecodeError(f"unsupported text encoding {data}", payload)
            return RemoteCommand.literal(decode_base64(cmd))
        if remote_type == REMOTE_TYPE_KEY:
            try:
                key = RemoteKey(data)
                action = KeyAction(cmd)
            except ValueError as exc:
                raise PacketDecodeError(str(exc), payload) from exc
            return RemoteCommand.press(key, action)
        raise PacketDecodeError(f"unknown TypeOfRemote {remote_type!r}", payload)
