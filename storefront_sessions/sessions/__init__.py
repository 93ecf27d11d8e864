"""
Token sessions - Cart session continuity for stateless API clients.

This package replaces the cookie session identifier with a signed token
carried in a custom header:
- HMAC-signed session tokens (JWT compact form, HS256)
- Guest sessions keyed by random customer ids
- Guest to user migration on login
- Renewal shortly before expiry
- Issuance on demand, emitted exactly once per response

Philosophy:
- Tokens are verified before anything is trusted
- Verification failures are values, never a fabricated session
- One manager per request (no hidden globals)
- Storage is a collaborator, not a concern of this package
"""

from .core import (
    SessionToken,
    SessionRecord,
    ManagerState,
    TokenState,
    generate_customer_id,
    is_guest_id,
)

from .policy import (
    SessionTokenPolicy,
    ExpirationPolicy,
    TransportPolicy,
    TokenPolicy,
    TokenHooks,
)

from .tokens import (
    TokenCodec,
    encode,
    decode,
)

from .transport import (
    HeaderTransport,
    HeaderReading,
    server_key,
)

from .store import (
    SessionStore,
    MemoryStore,
    FileStore,
    create_store,
)

from .identity import (
    IdentityProvider,
    AnonymousIdentity,
    StaticIdentity,
    ScopeIdentity,
)

from .manager import SessionTokenManager
from .middleware import SessionTokenMiddleware

from .faults import (
    SessionFault,
    SessionHeaderMalformedFault,
    VerificationFault,
    SignatureInvalidFault,
    TokenMalformedFault,
    TokenExpiredFault,
    TokenNotYetValidFault,
    IssuerMismatchFault,
    CustomerIdMissingFault,
    SessionStoreUnavailableFault,
    SessionStoreCorruptedFault,
    SessionUnresolvedFault,
    CustomerIdExhaustedFault,
)

__all__ = [
    # Core
    "SessionToken",
    "SessionRecord",
    "ManagerState",
    "TokenState",
    "generate_customer_id",
    "is_guest_id",
    # Policy
    "SessionTokenPolicy",
    "ExpirationPolicy",
    "TransportPolicy",
    "TokenPolicy",
    "TokenHooks",
    # Codec
    "TokenCodec",
    "encode",
    "decode",
    # Transport
    "HeaderTransport",
    "HeaderReading",
    "server_key",
    # Store
    "SessionStore",
    "MemoryStore",
    "FileStore",
    "create_store",
    # Identity
    "IdentityProvider",
    "AnonymousIdentity",
    "StaticIdentity",
    "ScopeIdentity",
    # Lifecycle
    "SessionTokenManager",
    "SessionTokenMiddleware",
    # Faults
    "SessionFault",
    "SessionHeaderMalformedFault",
    "VerificationFault",
    "SignatureInvalidFault",
    "TokenMalformedFault",
    "TokenExpiredFault",
    "TokenNotYetValidFault",
    "IssuerMismatchFault",
    "CustomerIdMissingFault",
    "SessionStoreUnavailableFault",
    "SessionStoreCorruptedFault",
    "SessionUnresolvedFault",
    "CustomerIdExhaustedFault",
]
