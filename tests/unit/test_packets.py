"""Unit tests for the envelope codec."""

from __future__ import annotations

import json

import pytest

from controllers.errors import ErrorKind, PacketDecodeError
from controllers.packets import (
    EVENT_CHANNEL_CONNECT,
    Envelope,
    decode_base64,
    decode_envelope,
    decode_frame,
    encode_base64,
    encode_envelope,
)


def test_encode_envelope_is_json_with_method_and_params() -> None:
    payload = encode_envelope(Envelope(method="ms.remote.control", params={"Cmd": "Click"}))

    assert json.loads(payload) == {"method": "ms.remote.control", "params": {"Cmd": "Click"}}


def test_decode_envelope_accepts_bytes() -> None:
    envelope = decode_envelope(b'{"method": "ms.remote.control", "params": {"a": 1}}')

    assert envelope.method == "ms.remote.control"
    assert envelope.params == {"a": 1}


@pytest.mark.parametrize(
    "payload",
    [
        '{"params": {}}',
        '{"method": "", "params": {}}',
        '{"method": "ms.remote.control"}',
        '{"method": "ms.remote.control", "params": []}',
    ],
)
def test_decode_envelope_rejects_missing_discriminators(payload: str) -> None:
    with pytest.raises(PacketDecodeError) as excinfo:
        decode_envelope(payload)

    assert excinfo.value.kind is ErrorKind.DECODE_FAILURE


def test_decode_frame_reads_event_and_token() -> None:
    frame = decode_frame(json.dumps({"event": EVENT_CHANNEL_CONNECT, "data": {"token": 12345678}}))

    assert frame.event == EVENT_CHANNEL_CONNECT
    assert frame.token == "12345678"


def test_decode_frame_without_event_is_rejected() -> None:
    with pytest.raises(PacketDecodeError, match="frame missing event"):
        decode_frame('{"data": {"token": "abc"}}')


@pytest.mark.parametrize("payload", ["", "   ", "not json", "[1, 2]", b"\xff\xfe"])
def test_decode_frame_rejects_garbage(payload) -> None:
    with pytest.raises(PacketDecodeError):
        decode_frame(payload)


def test_frame_message_prefers_message_field() -> None:
    frame = decode_frame('{"event": "ms.error", "data": {"message": "unrecognized method"}}')

    assert frame.message == "unrecognized method"
    assert frame.token is None


def test_decode_error_preview_is_truncated() -> None:
    error = PacketDecodeError("invalid json", "x" * 500)

    assert len(error.preview) == 64


def test_base64_helpers_handle_unicode() -> None:
    encoded = encode_base64("Wohnzimmer – TV")

    assert decode_base64(encoded) == "Wohnzimmer – TV"


def test_decode_base64_rejects_invalid_input() -> None:
    with pytest.raises(PacketDecodeError):
        decode_base64("not*base64")
