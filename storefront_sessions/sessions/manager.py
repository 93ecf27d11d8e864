"""
Sessions - Token session manager.

The SessionTokenManager carries one request through the token session
lifecycle:

1. Detection - Read the session header
2. Verification - Decode and verify the signed token
3. Resolution - Resume the stored record or start a guest session
4. Reconciliation - Migrate a guest session to a logged-in user
5. Renewal - Extend a session close to expiry
6. Issuance - Mint a replacement token on demand
7. Emission - Write the token to the response header once
8. Commit - Flush dirty data to the store

One manager per request. It holds no state shared between requests;
everything durable lives in the SessionStore.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Any, Callable, TYPE_CHECKING

from .core import (
    ManagerState,
    SessionRecord,
    SessionToken,
    TokenState,
    generate_customer_id,
)
from .faults import (
    CustomerIdExhaustedFault,
    SessionHeaderMalformedFault,
    SessionUnresolvedFault,
    VerificationFault,
)
from .identity import AnonymousIdentity
from .tokens import TokenCodec
from .transport import HeaderTransport

if TYPE_CHECKING:
    from storefront_sessions.faults import Fault
    from .identity import IdentityProvider
    from .policy import SessionTokenPolicy
    from .store import SessionStore


# Attempts at drawing an unused guest id before giving up
MAX_ID_ATTEMPTS = 10


class SessionTokenManager:
    """
    Per-request token session lifecycle.

    Example:
        >>> manager = SessionTokenManager(policy, store, headers=scope["headers"])
        >>> await manager.initialize()
        >>> manager.set("cart", {"sku-1": 2})
        >>> manager.request_issuance(True)
        >>> response_headers = manager.set_session_header(response_headers)
        >>> await manager.save_data()
    """

    def __init__(
        self,
        policy: SessionTokenPolicy,
        store: SessionStore,
        headers: Any = None,
        identity: IdentityProvider | None = None,
        *,
        transport: HeaderTransport | None = None,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
        event_handlers: list[Callable[[dict], None]] | None = None,
    ):
        """
        Initialize token session manager.

        Args:
            policy: Token session policy
            store: Session store (persistence)
            headers: Inbound request headers in any form the transport reads
            identity: Authenticated user collaborator (anonymous by default)
            transport: Header transport (built from the policy by default)
            clock: Time source
            logger: Optional logger
            event_handlers: Observability callbacks (see on_event)
        """
        self.policy = policy
        self.store = store
        self.headers = headers
        self.identity = identity or AnonymousIdentity()
        self.transport = transport or HeaderTransport(policy.transport)
        self.codec = TokenCodec(
            secret=policy.token.secret,
            issuer=policy.token.issuer,
            leeway=policy.token.leeway,
        )
        self.logger = logger or logging.getLogger("storefront_sessions.sessions.manager")

        self.state = ManagerState()
        self.record: SessionRecord | None = None

        self._clock = clock
        self._initialized = False
        self._event_handlers: list[Callable[[dict], None]] = list(event_handlers or [])

    def now(self) -> int:
        return int(self._clock())

    @property
    def customer_id(self) -> str | None:
        return self.state.customer_id

    @property
    def pending_outbound_token(self) -> str | None:
        return self.state.pending_outbound_token

    @property
    def error(self) -> Fault | None:
        return self.state.error

    # ========================================================================
    # Phase 1-5: Detection, Verification, Resolution, Reconciliation, Renewal
    # ========================================================================

    async def initialize(self) -> TokenState:
        """
        Evaluate the inbound token once and resolve the session.

        Returns:
            The resulting TokenState

        Raises:
            SessionStoreUnavailableFault: Store failed while loading
        """
        if self._initialized:
            return self.state.state

        self._initialized = True
        reading = self.transport.read(self.headers)
        self.state.header_present = reading.present

        if reading.is_absent:
            self.state.state = TokenState.NO_TOKEN
            await self.start_new_session()
            self._emit_event("session_created")
        elif reading.is_malformed:
            self._invalidate(SessionHeaderMalformedFault(header_name=self.transport.header_name))
            self._emit_event("header_malformed")
        else:
            result = self.codec.decode(reading.token, now=self.now())
            if isinstance(result, VerificationFault):
                self._invalidate(result)
                self._emit_event("token_invalid", code=result.code)
            else:
                await self._resume(result)

        return self.state.state

    async def start_new_session(self) -> None:
        """
        Start a fresh session without a token.

        Guests get a new random customer id; a logged-in user is keyed by
        their user id and keeps any record already stored under it. Also
        used to fall back to an anonymous session after INVALID_TOKEN.

        Raises:
            SessionStoreUnavailableFault: Store failed while checking ids
        """
        self.set_session_expiration()

        if self.identity.is_authenticated():
            customer_id = str(self.identity.current_user_id())
            record = await self.store.get(customer_id)
        else:
            customer_id = await self._new_customer_id()
            record = None

        self.state.customer_id = customer_id
        self.record = record or SessionRecord()
        self.record.expires_at = self.state.expires_at
        if self.state.state is None:
            self.state.state = TokenState.NO_TOKEN

    async def _resume(self, token: SessionToken) -> None:
        """Resume a session from a verified token."""
        self.state.state = TokenState.VALID_TOKEN
        self.state.has_token = True
        self.state.token = token
        self.state.customer_id = token.customer_id
        self.state.issued_at = token.issued_at
        self.state.expires_at = token.expires_at
        self.state.expiring_at = self.policy.expiration.expiring_at(token.expires_at)

        record = await self.store.get(token.customer_id)
        self.record = record or SessionRecord(expires_at=token.expires_at)
        self._emit_event("session_resumed")

        await self._migrate_identity()

        if self.now() > self.state.expiring_at:
            self.state.state = TokenState.EXPIRING_SOON
            self.set_session_expiration()
            await self.update_session_timestamp(self.state.customer_id, self.state.expires_at)
            self.request_issuance(True)
            self._emit_event("session_renewed", expires_at=self.state.expires_at)

    async def _migrate_identity(self) -> None:
        """Adopt a guest session for the user who just logged in."""
        if not self.identity.is_authenticated():
            return

        user_id = str(self.identity.current_user_id())
        if user_id == self.state.customer_id:
            return

        guest_id = self.state.customer_id
        self.state.previous_customer_id = guest_id
        self.state.customer_id = user_id
        self.record.dirty = True

        await self.save_data(guest_id)
        self.request_issuance(True)
        self._emit_event("session_migrated", previous_customer_id_hash=_hash(guest_id))

    def _invalidate(self, error: Fault) -> None:
        self.state.state = TokenState.INVALID_TOKEN
        self.state.error = error
        self.logger.info(
            "Rejected session token: %s", error.code,
            extra={"fault_code": error.code, "reason": error.metadata.get("reason")},
        )

    async def _new_customer_id(self) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            customer_id = generate_customer_id()
            if not await self.store.exists(customer_id):
                return customer_id
            self.logger.warning("Generated guest id already in use, drawing again")

        raise CustomerIdExhaustedFault(metadata={"attempts": MAX_ID_ATTEMPTS})

    # ========================================================================
    # Introspection
    # ========================================================================

    def get_session_token(self) -> SessionToken | Fault | None:
        """
        The inbound token as evaluated at initialization.

        Returns:
            SessionToken if verified, the fault if rejected, None if absent
        """
        if self.state.token is not None:
            return self.state.token
        return self.state.error

    def has_session(self) -> bool:
        """Check if a verified token was presented or the user is logged in."""
        return self.state.has_token or self.identity.is_authenticated()

    def nonce_identity(self, fallback: str | int | None = None) -> str | int | None:
        """
        Identity to seed nonces with for logged-out users.

        Returns the customer id while a session exists, otherwise the
        caller's fallback.
        """
        if self.has_session() and self.state.customer_id:
            return self.state.customer_id
        return fallback

    # ========================================================================
    # Expiration
    # ========================================================================

    def set_session_expiration(self, now: int | None = None) -> None:
        """Restart the session clock at ``now``."""
        if now is None:
            now = self.now()
        issued_at, expires_at, expiring_at = self.policy.expiration.calculate(now)
        self.state.issued_at = issued_at
        self.state.expires_at = expires_at
        self.state.expiring_at = expiring_at
        if self.record is not None:
            self.record.expires_at = expires_at

    async def update_session_timestamp(self, customer_id: str, expires_at: int) -> None:
        """Push a new expiry to the stored record (if one exists)."""
        record = await self.store.get(customer_id)
        if record is None:
            return
        record.expires_at = expires_at
        await self.store.put(customer_id, record)

    # ========================================================================
    # Phase 6-7: Issuance + Emission
    # ========================================================================

    def request_issuance(self, should_issue: bool) -> None:
        """
        Mint a token for the current session if asked to.

        Runs the issuance hooks, signs, and queues the result for the
        response. Last call wins. A signed-token filter returning nothing
        vetoes issuance and leaves any earlier queued token in place.

        Raises:
            SessionUnresolvedFault: No customer id is bound to the request
        """
        if not should_issue:
            return

        if self.state.customer_id is None:
            raise SessionUnresolvedFault()

        hooks = self.policy.hooks
        customer_id = self.state.customer_id
        data = self.record.data if self.record is not None else {}

        token = SessionToken(
            customer_id=customer_id,
            issued_at=self.state.issued_at,
            not_before=hooks.compute_not_before(self.state.issued_at, customer_id, data),
            expires_at=self.state.expires_at,
            issuer=self.codec.issuer,
        )

        payload = hooks.transform_payload(self.codec.to_payload(token), customer_id, data)
        signed = hooks.filter_token(self.codec.sign(payload), customer_id, data)

        if not signed:
            self.logger.debug("Token issuance vetoed by signed token filter")
            return

        self.state.pending_outbound_token = signed
        self._emit_event("token_issued", expires_at=self.state.expires_at)

    def set_session_header(self, headers: Any) -> Any:
        """Emit the pending token into response headers, then forget it."""
        token = self.state.pending_outbound_token
        if not token:
            return headers

        headers = self.transport.emit(headers, token)
        self.state.pending_outbound_token = None
        self._emit_event("token_emitted")
        return headers

    # ========================================================================
    # Session Data
    # ========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        if self.record is None:
            return default
        return self.record.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """
        Set a session value (marks dirty).

        Raises:
            SessionUnresolvedFault: No session record for this request
        """
        if self.record is None:
            raise SessionUnresolvedFault()
        self.record.set(key, value)

    def delete(self, key: str) -> None:
        if self.record is None:
            raise SessionUnresolvedFault()
        self.record.delete(key)

    @property
    def data(self) -> dict[str, Any]:
        if self.record is None:
            return {}
        return self.record.data

    # ========================================================================
    # Phase 8: Commit
    # ========================================================================

    async def save_data(self, old_customer_id: str | None = None) -> bool:
        """
        Flush the record if dirty.

        Args:
            old_customer_id: Previous key (migration); the record is
                written under it as well

        Returns:
            True if anything was written

        Raises:
            SessionStoreUnavailableFault: Store failed (never swallowed)
        """
        if self.record is None or not self.record.dirty or self.state.customer_id is None:
            return False

        self.record.expires_at = self.state.expires_at
        await self.store.put(self.state.customer_id, self.record)
        if old_customer_id and old_customer_id != self.state.customer_id:
            await self.store.put(old_customer_id, self.record)

        self.record.dirty = False
        self._emit_event("session_saved")
        return True

    async def forget_session(self) -> None:
        """
        Drop everything about this session without deleting from the store.

        The replacement guest id is drawn the same way as for a new visitor.

        Raises:
            CustomerIdExhaustedFault: No unused guest id could be drawn
        """
        self.state.pending_outbound_token = None
        self.state.customer_id = await self._new_customer_id()
        if self.record is None:
            self.record = SessionRecord(expires_at=self.state.expires_at)
        self.record.data = {}
        self.record.dirty = False

    async def destroy_session(self) -> None:
        """
        Logout: delete the stored record, then forget the session.

        Raises:
            SessionStoreUnavailableFault: Store failed
        """
        customer_id = self.state.customer_id
        if customer_id is not None:
            await self.store.delete(customer_id)
            self._emit_event("session_destroyed", customer_id=customer_id)
        await self.forget_session()

    # ========================================================================
    # Observability
    # ========================================================================

    def _emit_event(self, event_name: str, customer_id: str | None = None, **fields: Any) -> None:
        """
        Emit session event for observability.

        Customer ids are hashed; tokens and secrets are never included.
        """
        customer_id = customer_id or self.state.customer_id
        event_data = {
            "event": event_name,
            "timestamp": self.now(),
            "state": self.state.state.value if self.state.state else None,
        }
        if customer_id:
            event_data["customer_id_hash"] = _hash(customer_id)
        event_data.update(fields)

        for handler in self._event_handlers:
            try:
                handler(event_data)
            except Exception:
                self.logger.exception("Session event handler failed for %s", event_name)

        self.logger.debug(f"Session event: {event_name}", extra={"session_event": event_data})

    def on_event(self, handler: Callable[[dict], None]) -> None:
        """
        Register event handler for observability.

        Args:
            handler: Callable that receives event dict
        """
        self._event_handlers.append(handler)

    def __repr__(self) -> str:
        state = self.state.state.value if self.state.state else "uninitialized"
        return f"SessionTokenManager(state={state}, pending={self.pending_outbound_token is not None})"


def _hash(customer_id: str) -> str:
    return f"sha256:{hashlib.sha256(customer_id.encode()).hexdigest()[:16]}"
