"""
Sessions - Policy types.

Defines the policies that govern token sessions:
- ExpirationPolicy: Token lifetime and renewal window
- TransportPolicy: Which header carries the token
- TokenPolicy: Signing secret, issuer and clock leeway
- TokenHooks: Extension points applied while minting a token
- SessionTokenPolicy: Master policy contract
"""

from __future__ import annotations

from datetime import timedelta
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping


DEFAULT_TTL = timedelta(hours=48)
DEFAULT_RENEWAL_WINDOW = timedelta(hours=1)
DEFAULT_HEADER_NAME = "woocommerce-session"
DEFAULT_SCHEME = "Session"


# Hook signatures
NotBeforeHook = Callable[[int, str, Mapping[str, Any]], int]
PayloadTransform = Callable[[dict, str, Mapping[str, Any]], dict]
SignedTokenFilter = Callable[[str, str, Mapping[str, Any]], "str | None"]


# ============================================================================
# Sub-Policies
# ============================================================================

@dataclass
class ExpirationPolicy:
    """
    Controls token lifetime and renewal.

    Attributes:
        ttl: Lifetime of a freshly issued token
        renewal_window: Remaining lifetime under which a session is renewed

    Example:
        >>> policy = ExpirationPolicy()
        >>> policy.calculate(1000)
        (1000, 173800, 170200)
        >>> policy.should_renew(expires_at=173800, now=170201)
        True
    """

    ttl: timedelta = DEFAULT_TTL
    renewal_window: timedelta = DEFAULT_RENEWAL_WINDOW

    def __post_init__(self):
        if self.ttl.total_seconds() <= 0:
            raise ValueError("ttl must be positive")
        if self.renewal_window.total_seconds() < 0:
            raise ValueError("renewal_window must not be negative")
        if self.renewal_window >= self.ttl:
            raise ValueError("renewal_window must be shorter than ttl")

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    @property
    def renewal_seconds(self) -> int:
        return int(self.renewal_window.total_seconds())

    def calculate(self, now: int) -> tuple[int, int, int]:
        """
        Compute timestamps for a session issued at ``now``.

        Returns:
            Tuple of (issued_at, expires_at, expiring_at)
        """
        expires_at = now + self.ttl_seconds
        return now, expires_at, self.expiring_at(expires_at)

    def expiring_at(self, expires_at: int) -> int:
        """Instant after which a session expiring at ``expires_at`` is renewed."""
        return expires_at - self.renewal_seconds

    def should_renew(self, expires_at: int, now: int) -> bool:
        """Check if less than the renewal window remains."""
        return now > self.expiring_at(expires_at)


@dataclass
class TransportPolicy:
    """
    Controls how the token travels.

    Inbound value is ``"<scheme> <token>"``; the outbound header carries
    the bare token under the same name.

    Attributes:
        header_name: Header carrying the token
        scheme: Case-sensitive prefix of the inbound value
    """

    header_name: str = DEFAULT_HEADER_NAME
    scheme: str = DEFAULT_SCHEME


@dataclass
class TokenPolicy:
    """
    Controls signing and verification.

    Attributes:
        secret: HMAC secret (never logged)
        issuer: Origin URL of this server, matched exactly against ``iss``
        leeway: Clock skew tolerance in seconds
        algorithm: Signing algorithm (only HS256 is supported)
    """

    secret: str
    issuer: str
    leeway: int = 60
    algorithm: str = "HS256"

    def __post_init__(self):
        if not self.secret:
            raise ValueError("TokenPolicy requires a secret")
        if self.algorithm != "HS256":
            raise ValueError(f"Unsupported token algorithm: {self.algorithm}")
        if self.leeway < 0:
            raise ValueError("leeway must not be negative")

    def __repr__(self) -> str:
        return f"TokenPolicy(issuer={self.issuer!r}, leeway={self.leeway}, algorithm={self.algorithm!r})"


@dataclass
class TokenHooks:
    """
    Extension points applied when a token is minted.

    Attributes:
        not_before: ``fn(issued_at, customer_id, data) -> nbf``
        payload_transforms: Ordered ``fn(payload, customer_id, data) -> payload``
            run before signing
        signed_token_filters: Ordered ``fn(token, customer_id, data) -> token``
            run after signing; a falsy result vetoes issuance

    Example:
        >>> hooks = TokenHooks(
        ...     payload_transforms=[lambda p, cid, data: {**p, "store": "eu"}],
        ... )
    """

    not_before: NotBeforeHook | None = None
    payload_transforms: list[PayloadTransform] = field(default_factory=list)
    signed_token_filters: list[SignedTokenFilter] = field(default_factory=list)

    def compute_not_before(self, issued_at: int, customer_id: str, data: Mapping[str, Any]) -> int:
        if self.not_before is None:
            return issued_at
        return int(self.not_before(issued_at, customer_id, data))

    def transform_payload(self, payload: dict, customer_id: str, data: Mapping[str, Any]) -> dict:
        for transform in self.payload_transforms:
            payload = transform(payload, customer_id, data)
        return payload

    def filter_token(self, token: str, customer_id: str, data: Mapping[str, Any]) -> str | None:
        for token_filter in self.signed_token_filters:
            token = token_filter(token, customer_id, data)
            if not token:
                return None
        return token


# ============================================================================
# Master Policy
# ============================================================================

@dataclass
class SessionTokenPolicy:
    """
    Master policy for token sessions.

    Attributes:
        token: Signing and verification settings
        expiration: Lifetime and renewal settings
        transport: Header settings
        hooks: Issuance extension points

    Example:
        >>> policy = SessionTokenPolicy(
        ...     token=TokenPolicy(secret="s3cret", issuer="https://shop.test"),
        ...     expiration=ExpirationPolicy(ttl=timedelta(hours=48)),
        ... )
    """

    token: TokenPolicy
    expiration: ExpirationPolicy = None  # type: ignore
    transport: TransportPolicy = None  # type: ignore
    hooks: TokenHooks = None  # type: ignore

    def __post_init__(self):
        """Initialize sub-policies with defaults if not provided."""
        if self.expiration is None:
            self.expiration = ExpirationPolicy()

        if self.transport is None:
            self.transport = TransportPolicy()

        if self.hooks is None:
            self.hooks = TokenHooks()

    @classmethod
    def from_dict(cls, config: dict, hooks: TokenHooks | None = None) -> SessionTokenPolicy:
        """
        Create policy from configuration dictionary.

        Args:
            config: Configuration dict with ``tokens``, ``expiration`` and
                ``transport`` sections (durations in seconds)
            hooks: Optional issuance hooks (code, not configuration)

        Returns:
            SessionTokenPolicy instance
        """
        tokens_config = config.get("tokens", {})
        token = TokenPolicy(
            secret=tokens_config.get("secret_key"),
            issuer=tokens_config.get("issuer", ""),
            leeway=int(tokens_config.get("leeway", 60)),
            algorithm=tokens_config.get("algorithm", "HS256"),
        )

        # Parse durations (seconds to timedelta)
        expiration_config = config.get("expiration", {})
        expiration = ExpirationPolicy(
            ttl=timedelta(seconds=expiration_config.get("ttl", DEFAULT_TTL.total_seconds())),
            renewal_window=timedelta(
                seconds=expiration_config.get("renewal_window", DEFAULT_RENEWAL_WINDOW.total_seconds())
            ),
        )

        transport_config = config.get("transport", {})
        transport = TransportPolicy(
            header_name=transport_config.get("header_name", DEFAULT_HEADER_NAME),
            scheme=transport_config.get("scheme", DEFAULT_SCHEME),
        )

        return cls(token=token, expiration=expiration, transport=transport, hooks=hooks)
