"""
Demo storefront - a tiny cart API on top of SessionTokenMiddleware.

Routes:
    GET  /cart         - Cart contents of the current session
    POST /cart/items   - Add ``{"sku": ..., "quantity": ...}``; issues a token
    POST /logout       - Destroy the session
    GET  /session      - Session diagnostics (state, has_session)

A logged-in user comes from ``scope["user"]``. To simulate logins with the
``X-Authenticated-User`` header, set
``SFS_MIDDLEWARE__TRUSTED_USER_HEADER=x-authenticated-user``.

Run with:
    storefront-sessions serve
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from storefront_sessions.config import Settings
from storefront_sessions.sessions import SessionTokenMiddleware, SessionTokenManager


logger = logging.getLogger("storefront_sessions.demo")

CART_KEY = "cart"


async def _read_json(receive: Callable) -> Any:
    body = b""
    more_body = True
    while more_body:
        message = await receive()
        body += message.get("body", b"")
        more_body = message.get("more_body", False)

    if not body:
        return {}
    return json.loads(body)


async def _respond(send: Callable, status: int, payload: Any) -> None:
    body = json.dumps(payload).encode()
    await send({
        "type": "http.response.start",
        "status": status,
        "headers": [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ],
    })
    await send({"type": "http.response.body", "body": body})


def _cart_payload(session: SessionTokenManager) -> dict:
    cart = session.get(CART_KEY, {})
    return {
        "customer_id": session.customer_id,
        "items": cart,
        "count": sum(cart.values()),
    }


async def cart_app(scope: dict, receive: Callable, send: Callable) -> None:
    """The undecorated storefront (expects the middleware in front)."""
    if scope["type"] != "http":
        return

    session: SessionTokenManager = scope["state"]["session"]
    method, path = scope["method"], scope["path"]

    if method == "GET" and path == "/cart":
        await _respond(send, 200, _cart_payload(session))

    elif method == "POST" and path == "/cart/items":
        try:
            item = await _read_json(receive)
            sku = str(item["sku"])
            quantity = int(item.get("quantity", 1))
        except (ValueError, KeyError, TypeError):
            await _respond(send, 400, {"error": {"code": "BAD_ITEM", "message": "Expected {sku, quantity}"}})
            return

        if quantity < 1:
            await _respond(send, 400, {"error": {"code": "BAD_ITEM", "message": "quantity must be positive"}})
            return

        cart = dict(session.get(CART_KEY, {}))
        cart[sku] = cart.get(sku, 0) + quantity
        session.set(CART_KEY, cart)

        # Cart changed: hand the client a token for this session
        session.request_issuance(True)
        await _respond(send, 200, _cart_payload(session))

    elif method == "POST" and path == "/logout":
        await session.destroy_session()
        await _respond(send, 200, {"ok": True})

    elif method == "GET" and path == "/session":
        error = session.error
        await _respond(send, 200, {
            "state": session.state.state.value,
            "has_session": session.has_session(),
            "customer_id": session.customer_id,
            "expires_at": session.state.expires_at,
            "error": error.code if error else None,
        })

    else:
        await _respond(send, 404, {"error": {"code": "NOT_FOUND", "message": "Not found"}})


def create_app(settings: Settings | None = None, **kwargs: Any) -> SessionTokenMiddleware:
    """
    Build the demo storefront.

    Args:
        settings: Validated settings (loaded from the environment if omitted)
        **kwargs: Passed to SessionTokenMiddleware.from_settings
    """
    if settings is None:
        settings = Settings.load().validate()
    return SessionTokenMiddleware.from_settings(cart_app, settings, **kwargs)
