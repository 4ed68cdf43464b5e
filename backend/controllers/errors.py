"""Error taxonomy shared by the SmartView controllers.

Every failure the core reports carries an ``ErrorKind`` so callers can branch
on the kind without matching exception classes or message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

PREVIEW_LENGTH = 64


class ErrorKind(str, Enum):
    INVALID_CONFIGURATION = "invalid-configuration"
    ALREADY_CONNECTED = "already-connected"
    ALREADY_SEARCHING = "already-searching"
    TRANSPORT_FAILURE = "transport-failure"
    DECODE_FAILURE = "decode-failure"
    PRECONDITION_VIOLATION = "precondition-violation"
    DENIED = "denied"
    DISCOVERY_TIMEOUT = "discovery-timeout"
    FETCH_FAILURE = "fetch-failure"


class SmartViewError(Exception):
    """Base exception for every error surfaced by the controllers.

    Attributes:
        kind: Error kind reported on the notification channel
        reason: Human readable failure reason
        context: Extra values describing where the failure happened
    """

    kind: ErrorKind = ErrorKind.TRANSPORT_FAILURE

    def __init__(self, reason: str, **context: Any) -> None:
        self.reason = reason
        self.context: Dict[str, Any] = context
        super().__init__(f"{self.kind.value}: {reason}")

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "reason": self.reason, "context": dict(self.context)}


class InvalidConfigurationError(SmartViewError):
    """Bad address, app name or MAC supplied by the caller."""

    kind = ErrorKind.INVALID_CONFIGURATION


class AlreadyConnectedError(SmartViewError):
    kind = ErrorKind.ALREADY_CONNECTED

    def __init__(self, state: str) -> None:
        self.state = state
        super().__init__(f"connection already active (state: {state})", state=state)


class AlreadySearchingError(SmartViewError):
    kind = ErrorKind.ALREADY_SEARCHING

    def __init__(self) -> None:
        super().__init__("a discovery session is already running")


class TransportError(SmartViewError):
    """Open, send or read failure at the network layer.

    Certificate rejection by the caller's validator is reported the same way.
    """

    kind = ErrorKind.TRANSPORT_FAILURE


class PacketDecodeError(SmartViewError):
    """Inbound or outbound frame cannot be decoded.

    Only the first ``PREVIEW_LENGTH`` characters of the offending payload are
    kept so tokens in large frames do not end up in logs.
    """

    kind = ErrorKind.DECODE_FAILURE

    def __init__(self, reason: str, payload: Any = None) -> None:
        if isinstance(payload, (bytes, bytearray)):
            preview: Optional[str] = bytes(payload[:PREVIEW_LENGTH]).decode("utf-8", errors="replace")
        elif payload is None:
            preview = None
        else:
            preview = str(payload)[:PREVIEW_LENGTH]
        self.preview = preview
        super().__init__(reason, preview=preview)


class PreconditionError(SmartViewError):
    kind = ErrorKind.PRECONDITION_VIOLATION

    def __init__(self, requirement: str, **context: Any) -> None:
        self.requirement = requirement
        super().__init__(requirement, **context)


class AuthorizationDeniedError(SmartViewError):
    kind = ErrorKind.DENIED

    def __init__(self, address: str) -> None:
        super().__init__(f"device at {address} refused authorization", address=address)


class DiscoveryTimeoutError(SmartViewError):
    kind = ErrorKind.DISCOVERY_TIMEOUT

    def __init__(self, target_id: str, timeout: float) -> None:
        self.target_id = target_id
        self.timeout = timeout
        super().__init__(
            f"device {target_id} not found within {timeout}s", target_id=target_id, timeout=timeout
        )


class FetchError(SmartViewError):
    """HTTP collaborator failure (network error or unexpected status)."""

    kind = ErrorKind.FETCH_FAILURE

    def __init__(self, reason: str, url: str, status: Optional[int] = None) -> None:
        self.url = url
        self.status = status
        super().__init__(reason, url=url, status=status)
