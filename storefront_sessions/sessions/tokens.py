"""
Sessions - Token codec.

Compact signed session tokens (JWT compact serialization, HS256):

    base64url(header) . base64url(payload) . base64url(HMAC-SHA256)

- header:  {"alg": "HS256", "typ": "JWT"}
- payload: {"iss": ..., "iat": ..., "nbf": ..., "exp": ...,
            "data": {"customer_id": ...}}

``encode`` and ``decode`` are pure. ``decode`` never raises for a bad
token; it hands back a ``VerificationFault`` instead.
"""

from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from .core import SessionToken
from .faults import (
    VerificationFault,
    SignatureInvalidFault,
    TokenMalformedFault,
    TokenExpiredFault,
    TokenNotYetValidFault,
    IssuerMismatchFault,
    CustomerIdMissingFault,
)


ALGORITHM = "HS256"
DEFAULT_LEEWAY = 60

# Claims owned by the codec; payload transforms may add anything else
RESERVED_CLAIMS = frozenset({"iss", "iat", "nbf", "exp", "data"})

_HEADER = {"alg": ALGORITHM, "typ": "JWT"}


# ============================================================================
# Encoding
# ============================================================================

def token_to_payload(token: SessionToken) -> dict[str, Any]:
    """Build the claim set for a token."""
    payload = {k: v for k, v in token.claims.items() if k not in RESERVED_CLAIMS}
    payload.update({
        "iss": token.issuer,
        "iat": token.issued_at,
        "nbf": token.not_before,
        "exp": token.expires_at,
        "data": {"customer_id": token.customer_id},
    })
    return payload


def sign_payload(payload: dict[str, Any], secret: str) -> str:
    """Sign an arbitrary claim set."""
    header_b64 = _base64_encode_json(_HEADER)
    payload_b64 = _base64_encode_json(payload)

    signing_input = f"{header_b64}.{payload_b64}".encode()
    signature_b64 = _base64_encode(_create_signature(signing_input, secret))

    return f"{header_b64}.{payload_b64}.{signature_b64}"


def encode(token: SessionToken, secret: str) -> str:
    """
    Serialize and sign a session token.

    Deterministic: the same token and secret always give the same string.

    Example:
        >>> token = SessionToken("t_abc", 1000, 1000, 173800, issuer="https://shop.test")
        >>> encode(token, "s3cret") == encode(token, "s3cret")
        True
    """
    return sign_payload(token_to_payload(token), secret)


# ============================================================================
# Decoding
# ============================================================================

def decode(
    token_string: str,
    secret: str,
    leeway: int = DEFAULT_LEEWAY,
    issuer: str | None = None,
    now: int | None = None,
) -> SessionToken | VerificationFault:
    """
    Verify and decode a session token.

    Checks, in order:
    1. Signature over exactly 3 segments (anything else fails as SignatureInvalid)
    2. Header (alg must be HS256)
    3. Claim types
    4. ``nbf`` and ``iat`` not after ``now + leeway``
    5. ``exp`` not before ``now - leeway``
    6. ``iss`` equals ``issuer`` (skipped when ``issuer`` is None)
    7. Customer id present

    Args:
        token_string: Compact token
        secret: HMAC secret
        leeway: Clock skew tolerance in seconds (applied symmetrically)
        issuer: Expected ``iss`` value
        now: Current time (defaults to time.time())

    Returns:
        SessionToken on success, VerificationFault otherwise
    """
    if now is None:
        now = int(time.time())

    try:
        payload = _verify(token_string, secret)
        return _payload_to_token(payload, leeway=leeway, issuer=issuer, now=now)
    except VerificationFault as fault:
        return fault


def _verify(token_string: str, secret: str) -> dict[str, Any]:
    """Check signature over the raw segments, then parse them."""
    if not isinstance(token_string, str) or not token_string:
        raise TokenMalformedFault(reason="empty token")

    parts = token_string.split(".")
    if len(parts) != 3:
        # No signature can be checked over a token that does not split cleanly
        raise SignatureInvalidFault(reason="expected 3 segments")

    header_b64, payload_b64, signature_b64 = parts

    try:
        signature = _base64_decode(signature_b64)
    except ValueError:
        raise SignatureInvalidFault(reason="undecodable signature")

    # Reject non-canonical encodings (spare bits in the last character)
    if _base64_encode(signature) != signature_b64:
        raise SignatureInvalidFault(reason="non-canonical signature encoding")

    signing_input = f"{header_b64}.{payload_b64}".encode()
    if not _verify_signature(signing_input, signature, secret):
        raise SignatureInvalidFault()

    try:
        header = _base64_decode_json(header_b64)
        payload = _base64_decode_json(payload_b64)
    except ValueError as e:
        raise TokenMalformedFault(reason=f"undecodable segment ({e.__class__.__name__})")

    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise TokenMalformedFault(reason="segments must be JSON objects")

    if header.get("alg") != ALGORITHM:
        raise SignatureInvalidFault(reason=f"algorithm not allowed: {header.get('alg')!r}")

    return payload


def _payload_to_token(
    payload: dict[str, Any],
    *,
    leeway: int,
    issuer: str | None,
    now: int,
) -> SessionToken:
    iat = _int_claim(payload, "iat")
    nbf = _int_claim(payload, "nbf")
    exp = _int_claim(payload, "exp")

    if nbf > now + leeway:
        raise TokenNotYetValidFault(reason="nbf is in the future")

    if iat > now + leeway:
        raise TokenNotYetValidFault(reason="iat is in the future")

    if exp < now - leeway:
        raise TokenExpiredFault(expires_at=exp)

    iss = payload.get("iss")
    if issuer is not None and iss != issuer:
        raise IssuerMismatchFault(expected=issuer, actual=iss if isinstance(iss, str) else None)

    customer_id = _customer_id_claim(payload)
    if customer_id is None:
        raise CustomerIdMissingFault()

    claims = {k: v for k, v in payload.items() if k not in RESERVED_CLAIMS}

    try:
        return SessionToken(
            customer_id=customer_id,
            issued_at=iat,
            not_before=nbf,
            expires_at=exp,
            issuer=iss if isinstance(iss, str) else "",
            claims=claims,
        )
    except ValueError as e:
        raise TokenMalformedFault(reason=str(e))


def _int_claim(payload: dict[str, Any], name: str) -> int:
    value = payload.get(name)
    # bool is an int subclass; a boolean timestamp is still malformed
    if isinstance(value, bool) or not isinstance(value, int):
        raise TokenMalformedFault(reason=f"claim {name!r} must be an integer timestamp")
    return value


def _customer_id_claim(payload: dict[str, Any]) -> str | None:
    """Read ``data.customer_id`` or the older ``data.customer.id`` shape."""
    data = payload.get("data")
    if not isinstance(data, dict):
        return None

    value = data.get("customer_id")
    if value is None and isinstance(data.get("customer"), dict):
        value = data["customer"].get("id")

    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None

    value = str(value)
    return value or None


# ============================================================================
# TokenCodec - Configured Codec
# ============================================================================

@dataclass(frozen=True)
class TokenCodec:
    """
    Codec bound to a secret, issuer and leeway.

    Example:
        >>> codec = TokenCodec(secret="s3cret", issuer="https://shop.test")
        >>> token = SessionToken("t_abc", 1000, 1000, 173800, issuer="https://shop.test")
        >>> codec.decode(codec.encode(token), now=2000) == token
        True
    """

    secret: str
    issuer: str
    leeway: int = DEFAULT_LEEWAY

    def __repr__(self) -> str:
        return f"TokenCodec(issuer={self.issuer!r}, leeway={self.leeway})"

    def encode(self, token: SessionToken) -> str:
        return encode(token, self.secret)

    def sign(self, payload: dict[str, Any]) -> str:
        return sign_payload(payload, self.secret)

    def to_payload(self, token: SessionToken) -> dict[str, Any]:
        return token_to_payload(token)

    def decode(self, token_string: str, now: int | None = None) -> SessionToken | VerificationFault:
        return decode(
            token_string,
            self.secret,
            leeway=self.leeway,
            issuer=self.issuer,
            now=now,
        )


# ============================================================================
# Primitives
# ============================================================================

def _create_signature(message: bytes, secret: str) -> bytes:
    h = hmac.HMAC(secret.encode(), hashes.SHA256())
    h.update(message)
    return h.finalize()


def _verify_signature(message: bytes, signature: bytes, secret: str) -> bool:
    h = hmac.HMAC(secret.encode(), hashes.SHA256())
    h.update(message)
    try:
        h.verify(signature)
        return True
    except InvalidSignature:
        return False


def _base64_encode(data: bytes) -> str:
    """URL-safe base64 encode."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _base64_decode(data: str) -> bytes:
    """URL-safe base64 decode (strict alphabet)."""
    padding = 4 - (len(data) % 4)
    if padding != 4:
        data += "=" * padding

    # validate rejects stray characters; the canonical re-encode check covers the rest
    return base64.b64decode(data.encode("ascii", "strict"), altchars=b"-_", validate=True)


def _base64_encode_json(data: dict) -> str:
    """Encode JSON as URL-safe base64 (canonical key order)."""
    json_bytes = json.dumps(data, separators=(",", ":"), sort_keys=True).encode()
    return _base64_encode(json_bytes)


def _base64_decode_json(data: str) -> Any:
    """Decode URL-safe base64 as JSON."""
    return json.loads(_base64_decode(data))
