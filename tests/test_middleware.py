"""
Test: SessionTokenMiddleware + demo storefront

End-to-end cart flows over ASGI: token issuance on cart changes, token
reuse, renewal, guest to user migration, logout and invalid tokens.
"""

import logging

import httpx
import pytest

from storefront_sessions.config import Settings
from storefront_sessions.demo import create_app
from storefront_sessions.sessions import (
    MemoryStore,
    SessionRecord,
    SessionStoreUnavailableFault,
    SessionTokenMiddleware,
    TokenCodec,
)

from tests.conftest import SECRET, ISSUER, NOW, TTL, HEADER, FakeClock


# ── Helpers ──────────────────────────────────────────────────────────────────


def make_settings(**middleware) -> Settings:
    return Settings.from_dict({
        "tokens": {"secret_key": SECRET, "issuer": ISSUER},
        "middleware": middleware,
    }).validate()


def client_for(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://shop.test")


def auth(token: str, user: str = None) -> dict:
    headers = {HEADER: f"Session {token}"}
    if user is not None:
        headers["X-Authenticated-User"] = user
    return headers


def make_scope(path: str = "/", headers=None) -> dict:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": headers or [],
    }


async def empty_receive():
    return {"type": "http.request", "body": b"", "more_body": False}


class ResponseCapture:
    """Collects ASGI send() messages."""

    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)

    @property
    def start(self) -> dict:
        return next(m for m in self.messages if m["type"] == "http.response.start")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def codec():
    return TokenCodec(secret=SECRET, issuer=ISSUER)


@pytest.fixture
def app(store, clock):
    return create_app(make_settings(), store=store, clock=clock)


@pytest.fixture
def gateway_app(store, clock):
    return create_app(make_settings(trusted_user_header="x-authenticated-user"), store=store, clock=clock)


# ═════════════════════════════════════════════════════════════════════════════
#  Cart flow
# ═════════════════════════════════════════════════════════════════════════════


class TestCartFlow:

    @pytest.mark.asyncio
    async def test_first_visit_has_no_token(self, app):
        async with client_for(app) as client:
            resp = await client.get("/cart")

        assert resp.status_code == 200
        assert resp.json()["count"] == 0
        assert resp.json()["customer_id"].startswith("t_")
        assert HEADER not in resp.headers

    @pytest.mark.asyncio
    async def test_add_to_cart_issues_token(self, app, codec):
        async with client_for(app) as client:
            resp = await client.post("/cart/items", json={"sku": "mug", "quantity": 2})

        assert resp.status_code == 200
        token = codec.decode(resp.headers[HEADER], now=NOW)
        assert token.customer_id == resp.json()["customer_id"]
        assert token.expires_at == NOW + TTL

    @pytest.mark.asyncio
    async def test_token_resumes_cart(self, app, store):
        async with client_for(app) as client:
            added = await client.post("/cart/items", json={"sku": "mug", "quantity": 2})
            token = added.headers[HEADER]

            again = await client.post("/cart/items", json={"sku": "mug"}, headers=auth(token))
            cart = await client.get("/cart", headers=auth(token))

        assert cart.json()["customer_id"] == added.json()["customer_id"]
        assert cart.json()["items"] == {"mug": 3}
        assert HEADER not in cart.headers
        assert again.headers[HEADER]

        stored = await store.get(added.json()["customer_id"])
        assert stored.data == {"cart": {"mug": 3}}

    @pytest.mark.asyncio
    async def test_bad_item_rejected(self, app):
        async with client_for(app) as client:
            resp = await client.post("/cart/items", json={"quantity": 1})
        assert resp.status_code == 400
        assert HEADER not in resp.headers

    @pytest.mark.asyncio
    async def test_unknown_route(self, app):
        async with client_for(app) as client:
            resp = await client.get("/nope")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_logout_empties_cart(self, app):
        async with client_for(app) as client:
            added = await client.post("/cart/items", json={"sku": "mug"})
            token = added.headers[HEADER]

            await client.post("/logout", headers=auth(token))
            cart = await client.get("/cart", headers=auth(token))

        assert cart.json()["items"] == {}


# ═════════════════════════════════════════════════════════════════════════════
#  Renewal + migration
# ═════════════════════════════════════════════════════════════════════════════


class TestRenewalAndMigration:

    @pytest.mark.asyncio
    async def test_renewed_near_expiry(self, app, clock, codec):
        async with client_for(app) as client:
            added = await client.post("/cart/items", json={"sku": "mug"})
            token = added.headers[HEADER]

            clock.advance(TTL - 30 * 60)
            resp = await client.get("/session", headers=auth(token))

        assert resp.json()["state"] == "expiring_soon"
        renewed = codec.decode(resp.headers[HEADER], now=clock.now)
        assert renewed.expires_at == clock.now + TTL

    @pytest.mark.asyncio
    async def test_login_adopts_guest_cart(self, gateway_app, codec, store):
        async with client_for(gateway_app) as client:
            added = await client.post("/cart/items", json={"sku": "mug", "quantity": 2})
            guest_token = added.headers[HEADER]

            resp = await client.get("/cart", headers=auth(guest_token, user="42"))

        assert resp.json()["customer_id"] == "42"
        assert resp.json()["items"] == {"mug": 2}
        assert codec.decode(resp.headers[HEADER], now=NOW).customer_id == "42"
        assert (await store.get("42")).data == {"cart": {"mug": 2}}

    @pytest.mark.asyncio
    async def test_logged_in_without_token(self, gateway_app):
        async with client_for(gateway_app) as client:
            resp = await client.get("/session", headers={"X-Authenticated-User": "42"})

        assert resp.json()["customer_id"] == "42"
        assert resp.json()["has_session"] is True

    @pytest.mark.asyncio
    async def test_user_header_ignored_by_default(self, app, store):
        await store.put("42", SessionRecord(data={"cart": {"ring": 1}}, expires_at=NOW + TTL))

        async with client_for(app) as client:
            resp = await client.post(
                "/cart/items", json={"sku": "mug"}, headers={"X-Authenticated-User": "42"},
            )

        body = resp.json()
        assert body["customer_id"].startswith("t_")
        assert body["items"] == {"mug": 1}
        assert (await store.get("42")).data == {"cart": {"ring": 1}}

    @pytest.mark.asyncio
    async def test_scope_user_adopts_guest_cart(self, store, clock):
        class User:
            id = 42

        session_app = create_app(make_settings(), store=store, clock=clock)

        async def with_user(scope, receive, send):
            if any(name == b"x-test-login" for name, _ in scope["headers"]):
                scope = dict(scope, user=User())
            await session_app(scope, receive, send)

        async with client_for(with_user) as client:
            added = await client.post("/cart/items", json={"sku": "mug"})
            resp = await client.get(
                "/cart", headers={**auth(added.headers[HEADER]), "X-Test-Login": "1"},
            )

        assert resp.json()["customer_id"] == "42"
        assert resp.json()["items"] == {"mug": 1}


# ═════════════════════════════════════════════════════════════════════════════
#  Invalid tokens
# ═════════════════════════════════════════════════════════════════════════════


class TestInvalidToken:

    @pytest.mark.asyncio
    async def test_anonymous_fallback(self, app):
        async with client_for(app) as client:
            resp = await client.get("/session", headers=auth("abc.def.ghi"))

        body = resp.json()
        assert resp.status_code == 200
        assert body["state"] == "invalid_token"
        assert body["has_session"] is False
        assert body["customer_id"].startswith("t_")
        assert body["error"] == "SESSION_TOKEN_SIGNATURE_INVALID"

    @pytest.mark.asyncio
    async def test_reject_mode(self, store, clock):
        app = create_app(make_settings(invalid_token_behavior="reject"), store=store, clock=clock)
        async with client_for(app) as client:
            resp = await client.get("/cart", headers=auth("abc.def.ghi"))

        assert resp.status_code == 401
        assert resp.json() == {
            "error": {"code": "SESSION_TOKEN_INVALID", "message": "The cart session token is invalid"},
        }
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_reject_mode_hides_failure_reason(self, store, clock, codec):
        app = create_app(make_settings(invalid_token_behavior="reject"), store=store, clock=clock)
        forged = TokenCodec(secret="other-secret", issuer=ISSUER)

        async with client_for(app) as client:
            added = await client.post("/cart/items", json={"sku": "mug"})
            clock.advance(TTL + 3600)
            expired = await client.get("/cart", headers=auth(added.headers[HEADER]))
            clock.advance(-(TTL + 3600))
            wrong_key = await client.get(
                "/cart",
                headers=auth(forged.sign({"iss": ISSUER, "iat": NOW, "nbf": NOW, "exp": NOW + TTL,
                                          "data": {"customer_id": "t_x"}})),
            )

        assert expired.status_code == wrong_key.status_code == 401
        assert expired.json() == wrong_key.json()

    def test_unknown_behavior(self, store):
        policy = make_settings().to_policy()
        with pytest.raises(ValueError):
            SessionTokenMiddleware(lambda s, r, se: None, policy, store, invalid_token_behavior="ignore")


# ═════════════════════════════════════════════════════════════════════════════
#  ASGI plumbing
# ═════════════════════════════════════════════════════════════════════════════


class TestASGIPlumbing:

    @pytest.mark.asyncio
    async def test_non_http_scopes_pass_through(self, store, clock):
        seen = []

        async def inner(scope, receive, send):
            seen.append(scope["type"])

        middleware = SessionTokenMiddleware(inner, make_settings().to_policy(), store, clock=clock)
        await middleware({"type": "lifespan"}, empty_receive, ResponseCapture())

        assert seen == ["lifespan"]
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_header_emitted_once(self, store, clock, codec):
        async def inner(scope, receive, send):
            session = scope["state"]["session"]
            session.request_issuance(True)
            await send({
                "type": "http.response.start",
                "status": 200,
                "headers": [(HEADER.encode(), b"stale"), (b"content-type", b"text/plain")],
            })
            await send({"type": "http.response.body", "body": b"ok"})

        middleware = SessionTokenMiddleware(inner, make_settings().to_policy(), store, clock=clock)
        send = ResponseCapture()
        await middleware(make_scope(), empty_receive, send)

        values = [v for n, v in send.start["headers"] if n == HEADER.encode()]
        assert len(values) == 1
        assert codec.decode(values[0].decode(), now=NOW).customer_id.startswith("t_")

    @pytest.mark.asyncio
    async def test_late_issuance_warns(self, store, clock, caplog):
        async def inner(scope, receive, send):
            await send({"type": "http.response.start", "status": 200, "headers": []})
            await send({"type": "http.response.body", "body": b"ok"})
            scope["state"]["session"].request_issuance(True)

        middleware = SessionTokenMiddleware(inner, make_settings().to_policy(), store, clock=clock)
        send = ResponseCapture()
        with caplog.at_level(logging.WARNING, logger="storefront_sessions.middleware"):
            await middleware(make_scope(), empty_receive, send)

        assert send.start["headers"] == []
        assert "not delivered" in caplog.text

    @pytest.mark.asyncio
    async def test_store_failure_surfaces(self, clock):
        class DownStore(MemoryStore):
            async def put(self, customer_id, record):
                raise SessionStoreUnavailableFault(store_name="down")

        app = create_app(make_settings(), store=DownStore(clock=clock), clock=clock)
        async with client_for(app) as client:
            with pytest.raises(SessionStoreUnavailableFault):
                await client.post("/cart/items", json={"sku": "mug"})

    @pytest.mark.asyncio
    async def test_session_in_scope_state(self, store, clock):
        captured = {}

        async def inner(scope, receive, send):
            captured["session"] = scope["state"]["session"]
            await send({"type": "http.response.start", "status": 204, "headers": []})
            await send({"type": "http.response.body", "body": b""})

        middleware = SessionTokenMiddleware(inner, make_settings().to_policy(), store, clock=clock)
        await middleware(make_scope(), empty_receive, ResponseCapture())

        assert captured["session"].customer_id.startswith("t_")
