from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Dict, Optional

from .errors import InvalidConfigurationError


@dataclass(frozen=True)
class Device:
    """A television reachable on the local network.

    ``id`` is the identifier the television reports about itself (the UUID
    from its SSDP ``USN`` or REST ``id``). Devices built from a bare address
    use the address until a metadata fetch supplies the real identifier.
    """

    id: str
    name: str
    address: str
    model: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not str(self.address or "").strip():
            raise InvalidConfigurationError("device address required")
        if not str(self.id or "").strip():
            raise InvalidConfigurationError("device id required", address=self.address)

    @classmethod
    def from_address(cls, address: str, name: Optional[str] = None) -> "Device":
        address = str(address or "").strip()
        return cls(id=address, name=name or f"Samsung TV ({address})", address=address)

    def refreshed(self, **changes: object) -> "Device":
        """Return a copy with fields from a metadata fetch applied."""
        metadata = dict(self.metadata)
        metadata.update(changes.pop("metadata", None) or {})
        return replace(self, metadata=metadata, **changes)

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        if payload.get("model") is None:
            payload.pop("model", None)
        return payload
