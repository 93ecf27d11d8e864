"""
Sessions - Fault definitions.

All session errors are structured Faults, not bare exceptions.

Verification faults (everything under ``VerificationFault``) are returned
as values by the token codec and the manager. Storage and issuance faults
are raised and propagate to the caller.
"""

from __future__ import annotations

from storefront_sessions.faults.core import Fault, Severity, FaultDomain


# ============================================================================
# Session Fault Base
# ============================================================================

class SessionFault(Fault):
    """Base class for session-related faults."""

    domain = FaultDomain.SESSION


# ============================================================================
# Transport Faults
# ============================================================================

class SessionHeaderMalformedFault(SessionFault):
    """
    Session header present but not of the form ``Session <token>``.

    Kept apart from a missing header so callers can log the anomaly.
    """

    code = "SESSION_HEADER_MALFORMED"
    message = "Session header is malformed"
    severity = Severity.WARN
    public = True
    retryable = False

    def __init__(self, header_name: str, **kwargs):
        super().__init__(**kwargs)
        self.header_name = header_name
        self.metadata["header"] = header_name


# ============================================================================
# Token Verification Faults
# ============================================================================

class VerificationFault(SessionFault):
    """
    Session token failed verification.

    Every subclass shares the same public message so clients cannot tell
    which check failed.
    """

    domain = FaultDomain.SECURITY
    code = "SESSION_TOKEN_INVALID"
    message = "The cart session token is invalid"
    public_message = "The cart session token is invalid"
    severity = Severity.WARN
    public = True
    retryable = False

    def __init__(self, reason: str | None = None, **kwargs):
        super().__init__(**kwargs)
        if reason:
            self.message = f"{self.message}: {reason}"
            self.metadata["reason"] = reason

    def to_public_dict(self) -> dict:
        """Same body for every verification failure."""
        return {"code": VerificationFault.code, "message": self.public_message}


class SignatureInvalidFault(VerificationFault):
    """Signature does not match header and payload (or the algorithm is not accepted)."""

    code = "SESSION_TOKEN_SIGNATURE_INVALID"
    message = "Session token signature is invalid"


class TokenMalformedFault(VerificationFault):
    """Token is not three base64url segments of JSON, or a claim has the wrong type."""

    code = "SESSION_TOKEN_MALFORMED"
    message = "Session token is malformed"


class TokenExpiredFault(VerificationFault):
    """``exp`` is in the past (beyond the leeway)."""

    code = "SESSION_TOKEN_EXPIRED"
    message = "Session token has expired"

    def __init__(self, expires_at: int | None = None, **kwargs):
        super().__init__(**kwargs)
        self.expires_at = expires_at
        self.metadata["expires_at"] = expires_at


class TokenNotYetValidFault(VerificationFault):
    """``nbf`` or ``iat`` is in the future (beyond the leeway)."""

    code = "SESSION_TOKEN_NOT_YET_VALID"
    message = "Session token is not valid yet"


class IssuerMismatchFault(VerificationFault):
    """``iss`` does not match this server's origin."""

    code = "SESSION_TOKEN_ISSUER_MISMATCH"
    message = "The iss do not match with this server"

    def __init__(self, expected: str, actual: str | None, **kwargs):
        super().__init__(**kwargs)
        self.expected = expected
        self.actual = actual
        self.metadata.update({"expected": expected, "actual": actual})


class CustomerIdMissingFault(VerificationFault):
    """Token carries no customer id."""

    code = "SESSION_TOKEN_CUSTOMER_MISSING"
    message = "Customer ID not found in the token"


# ============================================================================
# Storage Faults
# ============================================================================

class SessionStoreUnavailableFault(SessionFault):
    """
    Session store is unavailable.

    Fatal to the current request's session features. Never answered with
    empty session data.
    """

    code = "SESSION_STORE_UNAVAILABLE"
    message = "Session storage unavailable"
    severity = Severity.ERROR
    public = False
    retryable = True

    def __init__(self, store_name: str, cause: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.store_name = store_name
        self.cause = cause
        if cause:
            self.message = f"Session store '{store_name}' unavailable: {cause}"
        else:
            self.message = f"Session store '{store_name}' unavailable"


class SessionStoreCorruptedFault(SessionFault):
    """
    Session data in store is corrupted.

    Data cannot be deserialized or is structurally invalid.
    """

    code = "SESSION_STORE_CORRUPTED"
    message = "Session data corrupted"
    severity = Severity.ERROR
    public = False
    retryable = False

    def __init__(self, customer_id: str | None = None, **kwargs):
        super().__init__(**kwargs)
        if customer_id:
            self.metadata["customer_id_hash"] = self._hash_identifier(customer_id)


# ============================================================================
# Lifecycle Faults
# ============================================================================

class SessionUnresolvedFault(SessionFault):
    """
    Session has no customer identity yet.

    Raised when data is written or a token is requested before
    initialization, or after an invalid token left the request without a
    session and the caller did not start a fresh one.
    """

    code = "SESSION_UNRESOLVED"
    message = "Session has no resolved customer identity"
    severity = Severity.ERROR
    public = False
    retryable = False


class CustomerIdExhaustedFault(SessionFault):
    """
    Every freshly drawn guest id was already present in the store.

    Points at a broken id generator or a store that answers ``exists``
    with True for everything.
    """

    code = "SESSION_ID_EXHAUSTED"
    message = "Could not draw an unused customer id"
    severity = Severity.ERROR
    public = False
    retryable = True
