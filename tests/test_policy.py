"""
Tests for session value types, policies and identity collaborators.
"""

from datetime import timedelta

import pytest

from storefront_sessions.faults import Fault, FaultDomain
from storefront_sessions.sessions import (
    AnonymousIdentity,
    ExpirationPolicy,
    ScopeIdentity,
    SessionRecord,
    SessionStoreUnavailableFault,
    SessionToken,
    SessionTokenPolicy,
    StaticIdentity,
    TokenExpiredFault,
    TokenHooks,
    TokenPolicy,
    TokenState,
    generate_customer_id,
    is_guest_id,
)

from tests.conftest import SECRET, ISSUER


# ============================================================================
# Value Types
# ============================================================================

class TestCustomerId:

    def test_guest_id_shape(self):
        customer_id = generate_customer_id()
        assert customer_id.startswith("t_")
        assert len(customer_id) == 32
        assert is_guest_id(customer_id)

    def test_user_ids_are_not_guests(self):
        assert not is_guest_id("42")


class TestSessionToken:

    def test_timestamp_order_enforced(self):
        with pytest.raises(ValueError):
            SessionToken("t_a", issued_at=100, not_before=50, expires_at=200)
        with pytest.raises(ValueError):
            SessionToken("t_a", issued_at=100, not_before=300, expires_at=200)

    def test_customer_id_required(self):
        with pytest.raises(ValueError):
            SessionToken("", issued_at=100, not_before=100, expires_at=200)

    def test_lifetime_and_remaining(self):
        token = SessionToken("t_a", issued_at=100, not_before=100, expires_at=400)
        assert token.lifetime == 300
        assert token.remaining(350) == 50


class TestTokenState:

    def test_resumed_states(self):
        assert TokenState.VALID_TOKEN.is_resumed
        assert TokenState.EXPIRING_SOON.is_resumed
        assert not TokenState.NO_TOKEN.is_resumed
        assert not TokenState.INVALID_TOKEN.is_resumed


class TestSessionRecord:

    def test_mutations_mark_dirty(self):
        record = SessionRecord()
        assert record.dirty is False
        record["cart"] = {}
        assert record.dirty is True

    def test_delete_missing_key_stays_clean(self):
        record = SessionRecord()
        record.delete("nope")
        assert record.dirty is False

    def test_expiry(self):
        record = SessionRecord(expires_at=100)
        assert not record.is_expired(100)
        assert record.is_expired(101)
        assert not SessionRecord().is_expired(10 ** 12)

    def test_copy_is_detached(self):
        record = SessionRecord(data={"cart": {"mug": 1}}, expires_at=100)
        clone = record.copy()
        clone.data["cart"]["mug"] = 5
        assert record.data == {"cart": {"mug": 1}}

    def test_dict_form(self):
        record = SessionRecord.from_dict({"data": {"cart": {}}, "expires_at": "100"})
        assert record.expires_at == 100
        assert record.to_dict() == {"data": {"cart": {}}, "expires_at": 100}


# ============================================================================
# Policies
# ============================================================================

class TestExpirationPolicy:

    def test_defaults(self):
        policy = ExpirationPolicy()
        assert policy.calculate(1000) == (1000, 173800, 170200)

    def test_renewal_is_strict(self):
        policy = ExpirationPolicy()
        assert not policy.should_renew(expires_at=173800, now=170200)
        assert policy.should_renew(expires_at=173800, now=170201)

    def test_zero_window_never_renews_live_tokens(self):
        policy = ExpirationPolicy(renewal_window=timedelta(0))
        assert not policy.should_renew(expires_at=1000, now=1000)

    @pytest.mark.parametrize("ttl, window", [
        (timedelta(0), timedelta(0)),
        (timedelta(hours=1), timedelta(hours=1)),
        (timedelta(hours=1), timedelta(seconds=-1)),
    ])
    def test_invalid(self, ttl, window):
        with pytest.raises(ValueError):
            ExpirationPolicy(ttl=ttl, renewal_window=window)


class TestTokenPolicy:

    def test_secret_required(self):
        with pytest.raises(ValueError):
            TokenPolicy(secret="", issuer=ISSUER)

    def test_only_hs256(self):
        with pytest.raises(ValueError):
            TokenPolicy(secret=SECRET, issuer=ISSUER, algorithm="none")

    def test_repr_hides_secret(self):
        assert SECRET not in repr(TokenPolicy(secret=SECRET, issuer=ISSUER))


class TestTokenHooks:

    def test_defaults_are_identity(self):
        hooks = TokenHooks()
        assert hooks.compute_not_before(10, "t_a", {}) == 10
        assert hooks.transform_payload({"a": 1}, "t_a", {}) == {"a": 1}
        assert hooks.filter_token("tok", "t_a", {}) == "tok"

    def test_filter_veto_stops_chain(self):
        calls = []
        hooks = TokenHooks(signed_token_filters=[
            lambda token, cid, data: "",
            lambda token, cid, data: calls.append(token) or token,
        ])
        assert hooks.filter_token("tok", "t_a", {}) is None
        assert calls == []


class TestSessionTokenPolicy:

    def test_sub_policy_defaults(self):
        policy = SessionTokenPolicy(token=TokenPolicy(secret=SECRET, issuer=ISSUER))
        assert policy.expiration.ttl == timedelta(hours=48)
        assert policy.transport.header_name == "woocommerce-session"
        assert isinstance(policy.hooks, TokenHooks)

    def test_from_dict(self):
        policy = SessionTokenPolicy.from_dict({
            "tokens": {"secret_key": SECRET, "issuer": ISSUER, "leeway": "5"},
            "expiration": {"ttl": 7200, "renewal_window": 60},
            "transport": {"header_name": "x-cart"},
        })
        assert policy.token.leeway == 5
        assert policy.expiration.ttl_seconds == 7200
        assert policy.expiration.renewal_seconds == 60
        assert policy.transport.header_name == "x-cart"
        assert policy.transport.scheme == "Session"


# ============================================================================
# Identity
# ============================================================================

class _User:
    def __init__(self, id):
        self.id = id


class TestIdentity:

    def test_anonymous(self):
        identity = AnonymousIdentity()
        assert not identity.is_authenticated()
        assert identity.current_user_id() is None

    def test_static(self):
        assert StaticIdentity(42).current_user_id() == "42"
        assert not StaticIdentity(None).is_authenticated()
        assert not StaticIdentity("").is_authenticated()

    def test_scope_identity_from_scope_user(self):
        identity = ScopeIdentity({"user": _User(7), "headers": []})
        assert identity.current_user_id() == "7"

    def test_scope_identity_plain_user_id(self):
        assert ScopeIdentity({"user": "42", "headers": []}).current_user_id() == "42"
        assert not ScopeIdentity({"user": True, "headers": []}).is_authenticated()

    def test_scope_identity_ignores_header_by_default(self):
        identity = ScopeIdentity({"headers": [(b"x-authenticated-user", b"42")]})
        assert not identity.is_authenticated()
        assert identity.current_user_id() is None

    def test_scope_identity_trusted_header(self):
        identity = ScopeIdentity(
            {"headers": [(b"x-authenticated-user", b" 42 ")]},
            trusted_header="x-authenticated-user",
        )
        assert identity.current_user_id() == "42"

    def test_scope_identity_custom_trusted_header(self):
        identity = ScopeIdentity({"headers": [(b"x-user", b"9")]}, trusted_header="X-User")
        assert identity.current_user_id() == "9"

    def test_scope_user_wins_over_trusted_header(self):
        identity = ScopeIdentity(
            {"user": _User(7), "headers": [(b"x-authenticated-user", b"42")]},
            trusted_header="x-authenticated-user",
        )
        assert identity.current_user_id() == "7"

    def test_scope_identity_anonymous(self):
        assert not ScopeIdentity({"headers": []}, trusted_header="x-authenticated-user").is_authenticated()


# ============================================================================
# Faults
# ============================================================================

class TestFaults:

    def test_verification_faults_share_public_body(self):
        expired = TokenExpiredFault(expires_at=100)
        assert isinstance(expired, Fault)
        assert expired.domain is FaultDomain.SECURITY
        assert expired.to_public_dict()["code"] == "SESSION_TOKEN_INVALID"
        assert expired.code == "SESSION_TOKEN_EXPIRED"

    def test_store_fault_retryable(self):
        fault = SessionStoreUnavailableFault(store_name="file", cause="disk full")
        assert fault.retryable is True
        assert "disk full" in fault.message
        assert fault.to_public_dict() == {"code": "INTERNAL", "message": "Internal error"}
