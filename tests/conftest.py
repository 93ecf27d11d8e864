"""
Shared test fixtures and helpers for the storefront sessions test suite.
"""

from typing import List, Optional, Tuple

import pytest

from storefront_sessions.sessions import (
    MemoryStore,
    SessionToken,
    SessionTokenManager,
    SessionTokenPolicy,
    TokenCodec,
    TokenPolicy,
)


SECRET = "test-secret-4f1c2a9e8b7d6c5a"
ISSUER = "https://shop.test"
NOW = 1_700_000_000
TTL = 172800
HEADER = "woocommerce-session"


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Controllable time source."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


# ============================================================================
# Token / Header Helpers
# ============================================================================

def make_token(
    customer_id: str = "t_guest",
    issued_at: int = NOW,
    ttl: int = TTL,
    issuer: str = ISSUER,
    **kwargs,
) -> SessionToken:
    """Build a token whose lifetime starts at ``issued_at``."""
    return SessionToken(
        customer_id=customer_id,
        issued_at=issued_at,
        not_before=kwargs.pop("not_before", issued_at),
        expires_at=kwargs.pop("expires_at", issued_at + ttl),
        issuer=issuer,
        **kwargs,
    )


def session_headers(token: Optional[str], name: str = HEADER) -> List[Tuple[bytes, bytes]]:
    """ASGI raw headers carrying ``Session <token>``."""
    if token is None:
        return []
    return [(name.encode("latin-1"), f"Session {token}".encode("latin-1"))]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return SessionTokenPolicy(token=TokenPolicy(secret=SECRET, issuer=ISSUER))


@pytest.fixture
def codec():
    return TokenCodec(secret=SECRET, issuer=ISSUER)


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def make_manager(policy, store, clock):
    """Factory for managers sharing the policy, store and clock fixtures."""

    def factory(headers=None, identity=None, **kwargs):
        kwargs.setdefault("clock", clock)
        return SessionTokenManager(
            kwargs.pop("policy", policy),
            kwargs.pop("store", store),
            headers=headers,
            identity=identity,
            **kwargs,
        )

    return factory
