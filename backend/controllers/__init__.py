"""SmartView television controllers."""

from .commands import CommandEncoder, KeyAction, RemoteCommand, RemoteKey  # noqa: F401
from .device import Device  # noqa: F401
from .discovery import DiscoveryEngine, DiscoveryEvent, DiscoveryEventKind  # noqa: F401
from .errors import ErrorKind, SmartViewError  # noqa: F401
from .rest import AppState, AppStatus, SamsungRestClient  # noqa: F401
from .samsung import (  # noqa: F401
    AuthorizationState,
    ConnectionEvent,
    ConnectionManager,
    ConnectionState,
    EventKind,
    SessionConfig,
)
from .wake import build_magic_packet, send_wake_packet  # noqa: F401
