from __future__ import annotations

import asyncio
import logging

import wakeonlan

from .errors import InvalidConfigurationError, TransportError

logger = logging.getLogger(__name__)

BROADCAST_ADDRESS = "255.255.255.255"
WAKE_PORT = 9


def build_magic_packet(mac: str) -> bytes:
    """6 bytes of 0xFF followed by the MAC repeated 16 times (102 bytes)."""
    try:
        return wakeonlan.create_magic_packet(str(mac or "").strip())
    except ValueError as exc:
        raise InvalidConfigurationError(f"invalid MAC address {mac!r}", mac=mac) from exc


async def send_wake_packet(mac: str, *, broadcast: str = BROADCAST_ADDRESS, port: int = WAKE_PORT) -> None:
    """Broadcast one magic packet. Delivery is never confirmed."""
    build_magic_packet(mac)
    try:
        await asyncio.to_thread(wakeonlan.send_magic_packet, mac, ip_address=broadcast, port=port)
    except OSError as exc:
        raise TransportError(f"wake packet not sent: {exc}", mac=mac) from exc
    logger.info("Sent wake packet for %s to %s:%d", mac, broadcast, port)
