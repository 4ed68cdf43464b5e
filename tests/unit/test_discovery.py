"""Unit tests for SSDP discovery."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from controllers.discovery import (
    SEARCH_TARGET,
    DiscoveryEngine,
    DiscoveryEvent,
    DiscoveryEventKind,
    build_search_request,
    parse_search_response,
)
from controllers.errors import AlreadySearchingError, ErrorKind, PacketDecodeError
from tests.fakes import FakeDatagramTransport, settle

SENDER = ("10.0.0.5", 1900)


def ssdp_response(uuid: str, host: str = "10.0.0.5", extra: str = "") -> bytes:
    return (
        "HTTP/1.1 200 OK\r\n"
        "CACHE-CONTROL: max-age=1800\r\n"
        f"LOCATION: http://{host}:9197/dmr\r\n"
        "SERVER: SHP, UPnP/1.0, Samsung UPnP SDK/1.0\r\n"
        f"ST: {SEARCH_TARGET}\r\n"
        f"USN: uuid:{uuid}::{SEARCH_TARGET}\r\n"
        f"{extra}"
        "\r\n"
    ).encode("utf-8")


class DiscoveryEngineTestHarness(DiscoveryEngine):
    """Swap the UDP socket for an in-memory transport."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fake_transport = FakeDatagramTransport()
        self.open_error: Exception | None = None

    async def _open_endpoint(self) -> asyncio.DatagramTransport:
        if self.open_error is not None:
            raise self.open_error
        return self.fake_transport


@pytest.fixture
def events() -> List[DiscoveryEvent]:
    return []


@pytest.fixture
def engine(events: List[DiscoveryEvent]) -> DiscoveryEngineTestHarness:
    harness = DiscoveryEngineTestHarness(interval=0.01)
    harness.add_observer(events.append)
    return harness


class TestParsing:
    def test_search_request_format(self) -> None:
        request = build_search_request().decode("ascii")

        assert request.startswith("M-SEARCH * HTTP/1.1\r\n")
        assert "HOST: 239.255.255.250:1900\r\n" in request
        assert 'MAN: "ssdp:discover"\r\n' in request
        assert f"ST: {SEARCH_TARGET}\r\n" in request
        assert request.endswith("\r\n\r\n")

    def test_parse_response(self) -> None:
        device = parse_search_response(ssdp_response("0ee6b8a4-1234"), SENDER)

        assert device.id == "0ee6b8a4-1234"
        assert device.address == "10.0.0.5"
        assert device.name == "Samsung TV (10.0.0.5)"
        assert device.metadata["location"] == "http://10.0.0.5:9197/dmr"

    def test_parse_uses_friendly_name_header(self) -> None:
        device = parse_search_response(ssdp_response("abc", extra="FRIENDLYNAME: Bedroom TV\r\n"), SENDER)

        assert device.name == "Bedroom TV"

    def test_parse_falls_back_to_sender_address(self) -> None:
        data = b"HTTP/1.1 200 OK\r\nUSN: uuid:abc\r\n\r\n"

        assert parse_search_response(data, ("192.168.1.20", 1900)).address == "192.168.1.20"

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"\xff\xfe\xfd",
            b"NOTIFY * HTTP/1.1\r\nUSN: uuid:abc\r\n\r\n",
            b"HTTP/1.1 200 OK\r\nLOCATION: http://10.0.0.5/\r\n\r\n",
        ],
    )
    def test_parse_rejects_malformed(self, data: bytes) -> None:
        with pytest.raises(PacketDecodeError):
            parse_search_response(data, SENDER)


class TestSearchSession:
    @pytest.mark.asyncio
    async def test_broadcasts_search_request(self, engine) -> None:
        engine.start_search()
        await settle()

        data, addr = engine.fake_transport.sent[0]
        assert data == build_search_request()
        assert addr == ("239.255.255.250", 1900)
        engine.stop_search()

    @pytest.mark.asyncio
    async def test_repeats_search_until_stopped(self, engine) -> None:
        engine.start_search()
        await asyncio.sleep(0.05)

        assert len(engine.fake_transport.sent) > 1
        engine.stop_search()

    @pytest.mark.asyncio
    async def test_reports_each_device_once(self, engine, events) -> None:
        engine.start_search()
        await settle()

        engine.handle_datagram(ssdp_response("tv-1"), SENDER)
        engine.handle_datagram(ssdp_response("tv-1"), SENDER)
        engine.handle_datagram(ssdp_response("tv-2", host="10.0.0.6"), ("10.0.0.6", 1900))

        found = [event.device.id for event in events if event.kind is DiscoveryEventKind.FOUND]
        assert sorted(found) == ["tv-1", "tv-2"]
        assert engine.is_searching
        engine.stop_search()

    @pytest.mark.asyncio
    async def test_malformed_responses_are_dropped(self, engine, events) -> None:
        engine.start_search()
        await settle()

        engine.handle_datagram(b"garbage", SENDER)

        assert events == []
        assert engine.is_searching
        engine.stop_search()

    @pytest.mark.asyncio
    async def test_target_stops_on_first_match(self, engine, events) -> None:
        engine.start_search(target_id="tv-2")
        await settle()

        engine.handle_datagram(ssdp_response("tv-1"), SENDER)
        engine.handle_datagram(ssdp_response("tv-2"), SENDER)
        engine.handle_datagram(ssdp_response("tv-3"), SENDER)
        await settle()

        assert [event.kind for event in events] == [DiscoveryEventKind.FOUND, DiscoveryEventKind.STOPPED]
        assert events[0].device.id == "tv-2"
        assert not engine.is_searching
        assert engine.fake_transport.closed

    @pytest.mark.asyncio
    async def test_second_search_is_rejected(self, engine, events) -> None:
        engine.start_search()

        with pytest.raises(AlreadySearchingError):
            engine.start_search()

        assert events[-1].error.kind is ErrorKind.ALREADY_SEARCHING
        assert engine.is_searching
        engine.stop_search()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent_and_silences_events(self, engine, events) -> None:
        engine.start_search()
        await settle()

        assert engine.stop_search() is True
        assert engine.stop_search() is False
        engine.handle_datagram(ssdp_response("late"), SENDER)

        assert [event.kind for event in events] == [DiscoveryEventKind.STOPPED]

    @pytest.mark.asyncio
    async def test_timeout_without_target(self, engine, events) -> None:
        devices = await asyncio.wait_for(engine.discover(timeout=0.03), timeout=1)

        assert devices == []
        assert [event.kind for event in events] == [DiscoveryEventKind.STOPPED]
        assert engine.fake_transport.closed

    @pytest.mark.asyncio
    async def test_timeout_with_missing_target(self, engine, events) -> None:
        engine.start_search(target_id="tv-9", timeout=0.03)
        await asyncio.wait_for(engine.wait_stopped(), timeout=1)

        assert [event.kind for event in events] == [DiscoveryEventKind.ERROR, DiscoveryEventKind.STOPPED]
        assert events[0].error.kind is ErrorKind.DISCOVERY_TIMEOUT

    @pytest.mark.asyncio
    async def test_socket_failure_is_reported(self, engine, events) -> None:
        engine.open_error = OSError("address in use")

        engine.start_search()
        await settle()

        assert [event.kind for event in events] == [DiscoveryEventKind.ERROR, DiscoveryEventKind.STOPPED]
        assert events[0].error.kind is ErrorKind.TRANSPORT_FAILURE
        assert not engine.is_searching

    @pytest.mark.asyncio
    async def test_observer_added_mid_search(self, engine) -> None:
        late: List[DiscoveryEvent] = []
        engine.start_search()
        await settle()

        engine.add_observer(late.append)
        engine.handle_datagram(ssdp_response("tv-1"), SENDER)
        engine.stop_search()

        assert [event.kind for event in late] == [DiscoveryEventKind.FOUND, DiscoveryEventKind.STOPPED]
