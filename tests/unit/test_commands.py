"""Unit tests for remote commands and the command encoder."""

from __future__ import annotations

import base64
import json

import pytest

from controllers.commands import CommandEncoder, KeyAction, RemoteCommand, RemoteKey
from controllers.errors import InvalidConfigurationError, PacketDecodeError


@pytest.fixture
def encoder() -> CommandEncoder:
    return CommandEncoder()


class TestRemoteKey:
    @pytest.mark.parametrize("value", ["enter", "ENTER", "KEY_ENTER", " key_enter "])
    def test_parse_accepts_names_and_codes(self, value: str) -> None:
        assert RemoteKey.parse(value) is RemoteKey.ENTER

    def test_parse_numeric_key(self) -> None:
        assert RemoteKey.parse("7") is RemoteKey.NUMBER_7

    def test_parse_member_name_with_dash(self) -> None:
        assert RemoteKey.parse("volume-up") is RemoteKey.VOLUME_UP

    def test_parse_unknown_key(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            RemoteKey.parse("teleport")


class TestRemoteCommand:
    def test_needs_exactly_one_payload(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            RemoteCommand()
        with pytest.raises(InvalidConfigurationError):
            RemoteCommand(key=RemoteKey.ENTER, text="hi")

    def test_labels(self) -> None:
        assert RemoteCommand.press(RemoteKey.ENTER).label == "enter"
        assert RemoteCommand.literal("hello").label == "text"
        assert RemoteCommand.literal("").is_text


class TestCommandEncoder:
    def test_key_payload_shape(self, encoder: CommandEncoder) -> None:
        payload = json.loads(encoder.encode(RemoteCommand.press(RemoteKey.ENTER)))

        assert payload == {
            "method": "ms.remote.control",
            "params": {
                "Cmd": "Click",
                "DataOfCmd": "KEY_ENTER",
                "Option": "false",
                "TypeOfRemote": "SendRemoteKey",
            },
        }

    def test_long_press_action(self, encoder: CommandEncoder) -> None:
        payload = json.loads(encoder.encode(RemoteCommand.press(RemoteKey.POWER, KeyAction.PRESS)))

        assert payload["params"]["Cmd"] == "Press"
        assert payload["params"]["DataOfCmd"] == "KEY_POWER"

    def test_text_payload_shape(self, encoder: CommandEncoder) -> None:
        payload = json.loads(encoder.encode(RemoteCommand.literal("Netflix")))

        params = payload["params"]
        assert payload["method"] == "ms.remote.control"
        assert params["TypeOfRemote"] == "SendInputString"
        assert params["DataOfCmd"] == "base64"
        assert base64.b64decode(params["Cmd"]).decode("utf-8") == "Netflix"

    @pytest.mark.parametrize("text", ["hello world", "", "ünïcødé ✓", "line1\nline2"])
    def test_text_round_trip(self, encoder: CommandEncoder, text: str) -> None:
        command = RemoteCommand.literal(text)

        assert encoder.decode(encoder.encode(command)) == command

    def test_key_round_trip(self, encoder: CommandEncoder) -> None:
        command = RemoteCommand.press(RemoteKey.VOLUME_DOWN, KeyAction.RELEASE)

        assert encoder.decode(encoder.encode(command)) == command

    def test_decode_rejects_missing_type(self, encoder: CommandEncoder) -> None:
        raw = json.dumps({"method": "ms.remote.control", "params": {"Cmd": "Click", "DataOfCmd": "KEY_ENTER"}})

        with pytest.raises(PacketDecodeError, match="TypeOfRemote"):
            encoder.decode(raw)

    def test_decode_rejects_other_methods(self, encoder: CommandEncoder) -> None:
        raw = json.dumps({"method": "ms.channel.emit", "params": {}})

        with pytest.raises(PacketDecodeError, match="unexpected method"):
            encoder.decode(raw)

    def test_decode_rejects_unknown_key(self, encoder: CommandEncoder) -> None:
        raw = json.dumps({
            "method": "ms.remote.control",
            "params": {"Cmd": "Click", "DataOfCmd": "KEY_TELEPORT", "TypeOfRemote": "SendRemoteKey"},
        })

        with pytest.raises(PacketDecodeError):
            encoder.decode(raw)
