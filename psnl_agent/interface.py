"""
Network interface descriptor codec.

Proxmox stores each guest NIC as a flat comma separated string such as
``name=eth0,bridge=vmbr0,hwaddr=BC:24:11:00:00:01,rate=5``. This module turns
that string into an ordered key/value container, changes the ``rate`` key
and writes it back without touching anything else.
"""
from typing import Dict, Iterator, Optional, Tuple, Union

RATE_KEY = "rate"

Rate = Union[int, float]


class InterfaceDescriptor:
    """Ordered key/value view of one interface string. Treated as immutable."""

    __slots__ = ("_fields",)

    def __init__(self, fields: Optional[Dict[str, str]] = None):
        self._fields: Dict[str, str] = dict(fields or {})

    @classmethod
    def decode(cls, raw: str) -> "InterfaceDescriptor":
        fields: Dict[str, str] = {}
        for segment in raw.split(","):
            key, sep, value = segment.partition("=")
            # "key" without "=" has no value at all; "key=" keeps the empty string
            if not key or not sep:
                continue
            fields[key] = value
        return cls(fields)

    def encode(self) -> str:
        return ",".join(f"{key}={value}" for key, value in self._fields.items())

    def with_rate(self, rate: Optional[Rate]) -> "InterfaceDescriptor":
        """Return a copy with ``rate`` set, or removed when ``rate`` is falsy."""
        fields = dict(self._fields)
        if not rate:
            fields.pop(RATE_KEY, None)
        else:
            fields[RATE_KEY] = format_rate(rate)
        return InterfaceDescriptor(fields)

    @property
    def rate(self) -> Optional[str]:
        return self._fields.get(RATE_KEY)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._fields.get(key, default)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._fields.items())

    def as_dict(self) -> Dict[str, str]:
        return dict(self._fields)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __getitem__(self, key: str) -> str:
        return self._fields[key]

    def __len__(self) -> int:
        return len(self._fields)

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, InterfaceDescriptor):
            return self._fields == other._fields
        if isinstance(other, dict):
            return self._fields == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"InterfaceDescriptor({self.encode()!r})"


def format_rate(rate: Rate) -> str:
    """Render a rate the way Proxmox expects it: ``7`` not ``7.0``."""
    if isinstance(rate, float) and rate.is_integer():
        return str(int(rate))
    return str(rate)


def decode(raw: str) -> InterfaceDescriptor:
    return InterfaceDescriptor.decode(raw)


def encode(descriptor: InterfaceDescriptor) -> str:
    return descriptor.encode()


def apply_rate(descriptor: InterfaceDescriptor, rate: Optional[Rate]) -> InterfaceDescriptor:
    """Set the rate ceiling in MB/s. A rate of 0 removes the ceiling entirely."""
    return descriptor.with_rate(rate)
