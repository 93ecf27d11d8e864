"""
Sessions - Core types.

Defines fundamental session data structures:
- SessionToken: Verified claims of a signed session token
- SessionRecord: Persisted session data keyed by customer id
- ManagerState: Per-request bookkeeping of the token manager
- TokenState: Outcome of evaluating the inbound token
"""

from __future__ import annotations

import copy
import secrets
import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from storefront_sessions.faults import Fault


# ============================================================================
# Customer ID
# ============================================================================

GUEST_ID_PREFIX = "t_"


def generate_customer_id() -> str:
    """
    Generate a random guest customer id.

    Rules:
    - Never encode meaning (no user ID, no timestamps)
    - Cryptographically random (15 bytes = 120 bits entropy)
    - Prefixed so guest ids never collide with numeric user ids

    Example:
        >>> cid = generate_customer_id()
        >>> cid.startswith("t_"), len(cid)
        (True, 32)
    """
    return f"{GUEST_ID_PREFIX}{secrets.token_hex(15)}"


def is_guest_id(customer_id: str) -> bool:
    """Check whether a customer id was generated for a guest."""
    return customer_id.startswith(GUEST_ID_PREFIX)


# ============================================================================
# TokenState - Request Evaluation Outcome
# ============================================================================

class TokenState(str, Enum):
    """
    Outcome of evaluating the inbound session token.

    - NO_TOKEN: No header, a fresh guest session was started
    - VALID_TOKEN: Token verified, session resumed
    - EXPIRING_SOON: Token verified but inside the renewal window; renewed
    - INVALID_TOKEN: Header present but unusable; no session was fabricated
    """

    NO_TOKEN = "no_token"
    VALID_TOKEN = "valid_token"
    EXPIRING_SOON = "expiring_soon"
    INVALID_TOKEN = "invalid_token"

    @property
    def is_resumed(self) -> bool:
        """Check if the inbound token was accepted."""
        return self in (TokenState.VALID_TOKEN, TokenState.EXPIRING_SOON)


# ============================================================================
# SessionToken - Verified Claims
# ============================================================================

@dataclass(frozen=True)
class SessionToken:
    """
    Claims carried by a signed session token.

    Reconstructed per request from the inbound header; never persisted.

    Attributes:
        customer_id: Session key (guest id or user id)
        issued_at: ``iat``, seconds since epoch
        not_before: ``nbf``, token invalid before this instant
        expires_at: ``exp``, token invalid after this instant
        issuer: ``iss``, origin URL of the issuing server
        claims: Extra top-level claims added by payload transforms

    Example:
        >>> token = SessionToken("t_abc", 1000, 1000, 173800, issuer="https://shop.test")
        >>> token.lifetime
        172800
    """

    customer_id: str
    issued_at: int
    not_before: int
    expires_at: int
    issuer: str = ""
    claims: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.customer_id:
            raise ValueError("SessionToken requires a customer id")
        if not (self.issued_at <= self.not_before <= self.expires_at):
            raise ValueError(
                "SessionToken timestamps must satisfy issued_at <= not_before <= expires_at "
                f"(got {self.issued_at}, {self.not_before}, {self.expires_at})"
            )

    @property
    def lifetime(self) -> int:
        """Seconds between issuance and expiry."""
        return self.expires_at - self.issued_at

    def remaining(self, now: int) -> int:
        """Seconds of validity left at ``now``."""
        return self.expires_at - now


# ============================================================================
# SessionRecord - Persisted Data
# ============================================================================

@dataclass
class SessionRecord:
    """
    Session data persisted in a SessionStore, keyed by customer id.

    Attributes:
        data: Opaque session key/value mapping (cart contents, etc.)
        expires_at: Expiry mirrored from the token for store-side TTL
        dirty: Pending persistence (set on every mutation)

    Example:
        >>> record = SessionRecord(expires_at=173800)
        >>> record["cart"] = {"sku-1": 2}
        >>> record.dirty
        True
    """

    data: dict[str, Any] = field(default_factory=dict)
    expires_at: int = 0
    dirty: bool = field(default=False, compare=False)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __contains__(self, key: str) -> bool:
        return key in self.data

    def get(self, key: str, default: Any = None) -> Any:
        """Get data value with default."""
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set data value (marks dirty)."""
        self.data[key] = value
        self.dirty = True

    def delete(self, key: str) -> None:
        """Delete data key (marks dirty)."""
        if key in self.data:
            del self.data[key]
            self.dirty = True

    def clear(self) -> None:
        """Clear all session data (marks dirty)."""
        self.data.clear()
        self.dirty = True

    def is_expired(self, now: int | None = None) -> bool:
        """Check if record has passed its store-side expiry."""
        if not self.expires_at:
            return False
        if now is None:
            now = int(time.time())
        return now > self.expires_at

    def copy(self) -> SessionRecord:
        """Detached copy (stores never share a record with the caller)."""
        return SessionRecord(
            data=copy.deepcopy(self.data),
            expires_at=self.expires_at,
            dirty=self.dirty,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize record to dictionary (for storage)."""
        return {"data": self.data, "expires_at": self.expires_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionRecord:
        """Deserialize record from dictionary."""
        return cls(
            data=dict(data.get("data") or {}),
            expires_at=int(data.get("expires_at") or 0),
        )


# ============================================================================
# ManagerState - Per-request Bookkeeping
# ============================================================================

@dataclass
class ManagerState:
    """
    In-memory state of one SessionTokenManager (one request).

    Attributes:
        customer_id: Resolved session key (None until resolved)
        state: Outcome of inbound token evaluation
        has_token: A verified token was presented
        header_present: The session header was present at all
        token: The verified inbound token
        error: Verification or header fault for INVALID_TOKEN
        issued_at: ``iat`` for the next token
        expires_at: ``exp`` for the next token and store TTL
        expiring_at: Instant after which the session is renewed
        pending_outbound_token: Signed token waiting for emission
        previous_customer_id: Guest id replaced by an identity migration
    """

    customer_id: str | None = None
    state: TokenState | None = None
    has_token: bool = False
    header_present: bool = False
    token: SessionToken | None = None
    error: Fault | None = None
    issued_at: int = 0
    expires_at: int = 0
    expiring_at: int = 0
    pending_outbound_token: str | None = None
    previous_customer_id: str | None = None
