"""
Sessions - Header transport.

Moves the signed session token across the wire:
- Inbound: ``<header-name>: Session <token>``
- Outbound: ``<header-name>: <token>`` (bare token)

Reads from whatever header container the hosting server hands over:
an ASGI raw header list, a ``Headers`` object, a case-insensitive
mapping, or a WSGI ``environ`` (``HTTP_<NAME>`` keys).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, MutableMapping, TYPE_CHECKING

from storefront_sessions._datastructures import Headers

if TYPE_CHECKING:
    from .policy import TransportPolicy


logger = logging.getLogger("storefront_sessions.sessions.transport")

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def server_key(header_name: str) -> str:
    """
    WSGI/CGI environ key for a header name.

    Example:
        >>> server_key("woocommerce-session")
        'HTTP_WOOCOMMERCE_SESSION'
    """
    return "HTTP_" + _NON_ALNUM.sub("_", header_name).upper()


def _is_wsgi_environ(headers: Mapping[str, Any]) -> bool:
    return "wsgi.version" in headers or "REQUEST_METHOD" in headers


# ============================================================================
# HeaderReading - Inbound Evidence
# ============================================================================

@dataclass(frozen=True)
class HeaderReading:
    """
    What the inbound session header held.

    - absent: header missing or empty
    - malformed: header present but not ``<scheme> <token>``
    - token: header carried a token (not yet verified)
    """

    present: bool
    token: str | None = None

    @property
    def is_absent(self) -> bool:
        return not self.present

    @property
    def is_malformed(self) -> bool:
        return self.present and self.token is None


ABSENT = HeaderReading(present=False)
MALFORMED = HeaderReading(present=True)


# ============================================================================
# HeaderTransport
# ============================================================================

class HeaderTransport:
    """
    Header-based session token transport.

    Example:
        >>> transport = HeaderTransport(TransportPolicy())
        >>> transport.extract({"WooCommerce-Session": "Session abc.def.ghi"})
        'abc.def.ghi'
        >>> transport.emit({}, "abc.def.ghi")
        {'woocommerce-session': 'abc.def.ghi'}
    """

    def __init__(self, policy: TransportPolicy):
        """
        Initialize header transport.

        Args:
            policy: Transport policy with header settings
        """
        self.policy = policy
        self.header_name = policy.header_name
        self.scheme = policy.scheme

    def raw_value(self, headers: Any) -> str | None:
        """Look up the raw header value in any supported container."""
        if headers is None:
            return None

        if isinstance(headers, Headers):
            return headers.get(self.header_name)

        if isinstance(headers, (list, tuple)):
            return Headers.from_asgi(headers).get(self.header_name)

        if isinstance(headers, Mapping):
            if _is_wsgi_environ(headers):
                return headers.get(server_key(self.header_name))

            wanted = self.header_name.lower()
            for name, value in headers.items():
                if isinstance(name, bytes):
                    name = name.decode("latin-1")
                if name.lower() == wanted:
                    if isinstance(value, bytes):
                        value = value.decode("latin-1")
                    return value
            return None

        raise TypeError(f"Unsupported header container: {type(headers).__name__}")

    def read(self, headers: Any) -> HeaderReading:
        """Classify the inbound session header."""
        value = self.raw_value(headers)
        if value is None or not value.strip():
            return ABSENT

        prefix = f"{self.scheme} "
        if not value.startswith(prefix):
            logger.debug("Session header without '%s' scheme", self.scheme)
            return MALFORMED

        parts = value[len(prefix):].split()
        if not parts:
            return MALFORMED

        return HeaderReading(present=True, token=parts[0])

    def extract(self, headers: Any) -> str | None:
        """Extract the token from the session header (None if absent or malformed)."""
        return self.read(headers).token

    def emit(self, headers: Any, token: str | None) -> Any:
        """
        Set the outbound session header.

        Mutates and returns ``headers``. With no token the container is
        returned untouched.
        """
        if not token:
            return headers

        if isinstance(headers, Headers):
            headers.set(self.header_name, token)
            return headers

        if isinstance(headers, list):
            key = self.header_name.lower().encode("latin-1")
            headers[:] = [(n, v) for n, v in headers if n.lower() != key]
            headers.append((key, token.encode("latin-1")))
            return headers

        if isinstance(headers, MutableMapping):
            wanted = self.header_name.lower()
            for name in [n for n in headers if isinstance(n, str) and n.lower() == wanted]:
                del headers[name]
            headers[self.header_name] = token
            return headers

        raise TypeError(f"Unsupported header container: {type(headers).__name__}")
