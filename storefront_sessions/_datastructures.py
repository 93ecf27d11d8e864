"""
Core data structures for header handling.

Provides:
- Headers: Case-insensitive header access over ASGI raw pairs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Dict, Iterable, Iterator, List, Mapping, Optional, Tuple
)


RawHeaders = List[Tuple[bytes, bytes]]


def _to_bytes(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("latin-1")


# ============================================================================
# Headers
# ============================================================================

@dataclass
class Headers:
    """
    Case-insensitive header access with raw preservation.

    Normalizes header names while preserving original casing. Mutations
    keep ``raw`` in ASGI form so it can be handed straight to ``send``.
    """

    raw: RawHeaders = field(default_factory=list)
    _index: Dict[str, List[Tuple[bytes, bytes]]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        """Build case-insensitive index."""
        self.raw = [(_to_bytes(name), _to_bytes(value)) for name, value in self.raw]
        self._reindex()

    def _reindex(self) -> None:
        self._index = {}
        for name, value in self.raw:
            key = name.decode("latin-1").lower()
            if key not in self._index:
                self._index[key] = []
            self._index[key].append((name, value))

    @classmethod
    def from_mapping(cls, headers: Mapping[str, str]) -> Headers:
        """Build from a plain name -> value mapping."""
        return cls(raw=[(_to_bytes(k), _to_bytes(v)) for k, v in headers.items()])

    @classmethod
    def from_asgi(cls, raw: Iterable[Tuple[bytes, bytes]]) -> Headers:
        """Build from an ASGI ``headers`` list (copied)."""
        return cls(raw=list(raw))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for header (case-insensitive)."""
        key = name.lower()
        pairs = self._index.get(key)
        if pairs:
            return pairs[0][1].decode("latin-1")
        return default

    def get_all(self, name: str) -> List[str]:
        """Get all values for header (case-insensitive)."""
        key = name.lower()
        pairs = self._index.get(key, [])
        return [value.decode("latin-1") for _, value in pairs]

    def has(self, name: str) -> bool:
        """Check if header exists."""
        return name.lower() in self._index

    def set(self, name: str, value: str) -> None:
        """Replace every value of a header with a single one."""
        key = name.lower()
        self.raw = [(n, v) for n, v in self.raw if n.decode("latin-1").lower() != key]
        self.raw.append((key.encode("latin-1"), _to_bytes(value)))
        self._reindex()

    def remove(self, name: str) -> None:
        """Remove a header (no-op if absent)."""
        key = name.lower()
        self.raw = [(n, v) for n, v in self.raw if n.decode("latin-1").lower() != key]
        self._reindex()

    def items(self) -> Iterator[Tuple[str, str]]:
        """Iterate over all headers."""
        for name, value in self.raw:
            yield name.decode("latin-1"), value.decode("latin-1")

    def keys(self) -> Iterator[str]:
        """Iterate over header names."""
        for name, _ in self.raw:
            yield name.decode("latin-1")

    def __contains__(self, name: str) -> bool:
        """Check if header exists (case-insensitive)."""
        return self.has(name)

    def __getitem__(self, name: str) -> str:
        """Get header value (raises KeyError if not found)."""
        value = self.get(name)
        if value is None:
            raise KeyError(f"Header '{name}' not found")
        return value

    def __setitem__(self, name: str, value: str) -> None:
        self.set(name, value)

    def __len__(self) -> int:
        return len(self.raw)

    def __repr__(self) -> str:
        items = list(self.items())
        return f"Headers({items})"
