"""
Session Middleware - Runs the token session lifecycle around an ASGI app.

This middleware orchestrates one SessionTokenManager per request:
1. Initialize the manager from the inbound headers (verify, resolve, migrate, renew)
2. Store the manager in ``scope["state"]["session"]``
3. Emit the pending token when the response starts
4. Flush session data after the app returns
"""

from __future__ import annotations

import functools
import json
import logging
import time
from typing import Any, Awaitable, Callable, Literal, TYPE_CHECKING

from storefront_sessions._datastructures import Headers
from .core import TokenState
from .identity import ScopeIdentity
from .manager import SessionTokenManager

if TYPE_CHECKING:
    from storefront_sessions.config import Settings
    from .identity import IdentityProvider
    from .policy import SessionTokenPolicy, TokenHooks
    from .store import SessionStore


ASGIApp = Callable[[dict, Callable, Callable], Awaitable[None]]
IdentityFactory = Callable[[dict], "IdentityProvider"]

InvalidTokenBehavior = Literal["anonymous", "reject"]


class SessionTokenMiddleware:
    """
    ASGI middleware that integrates SessionTokenManager with the request lifecycle.

    On an invalid token the request either continues with a fresh
    anonymous session (``"anonymous"``, default) or is answered with
    401 (``"reject"``).

    Store faults are not caught here; they reach the server like any
    other application error.

    Example:
        >>> app = SessionTokenMiddleware(cart_app, policy, MemoryStore())
        >>> # handler:
        >>> session = scope["state"]["session"]
        >>> session.set("cart", cart)
        >>> session.request_issuance(True)
    """

    def __init__(
        self,
        app: ASGIApp,
        policy: SessionTokenPolicy,
        store: SessionStore,
        identity_factory: IdentityFactory = ScopeIdentity,
        *,
        invalid_token_behavior: InvalidTokenBehavior = "anonymous",
        clock: Callable[[], float] = time.time,
        event_handlers: list[Callable[[dict], None]] | None = None,
    ):
        """
        Initialize session middleware.

        Args:
            app: Wrapped ASGI application
            policy: Token session policy (app-scoped)
            store: Session store (app-scoped)
            identity_factory: Builds the identity collaborator from the scope
                (``scope["user"]`` only by default)
            invalid_token_behavior: ``"anonymous"`` or ``"reject"``
            clock: Time source handed to every manager
            event_handlers: Observability callbacks handed to every manager
        """
        if invalid_token_behavior not in ("anonymous", "reject"):
            raise ValueError(f"Unsupported invalid_token_behavior: {invalid_token_behavior}")

        self.app = app
        self.policy = policy
        self.store = store
        self.identity_factory = identity_factory
        self.invalid_token_behavior = invalid_token_behavior
        self.clock = clock
        self.event_handlers = list(event_handlers or [])
        self.logger = logging.getLogger("storefront_sessions.middleware")

    @classmethod
    def from_settings(
        cls,
        app: ASGIApp,
        settings: Settings,
        store: SessionStore | None = None,
        hooks: TokenHooks | None = None,
        **kwargs: Any,
    ) -> SessionTokenMiddleware:
        """
        Build the middleware (and a store, if none given) from Settings.

        Raises:
            InsecureSecretFault: Insecure or unset secret outside dev mode
            ConfigFault: Any other invalid setting
        """
        policy = settings.to_policy(hooks=hooks)

        trusted_header = settings.middleware.trusted_user_header
        if trusted_header and "identity_factory" not in kwargs:
            kwargs["identity_factory"] = functools.partial(ScopeIdentity, trusted_header=trusted_header)

        return cls(
            app,
            policy,
            store if store is not None else settings.create_store(),
            invalid_token_behavior=settings.middleware.invalid_token_behavior,
            **kwargs,
        )

    def create_manager(self, scope: dict) -> SessionTokenManager:
        return SessionTokenManager(
            self.policy,
            self.store,
            headers=scope.get("headers") or [],
            identity=self.identity_factory(scope),
            clock=self.clock,
            event_handlers=self.event_handlers,
        )

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        manager = self.create_manager(scope)
        state = await manager.initialize()

        if state is TokenState.INVALID_TOKEN:
            if self.invalid_token_behavior == "reject":
                await self._reject(manager, send)
                return
            await manager.start_new_session()

        scope.setdefault("state", {})["session"] = manager

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers") or [])
                message["headers"] = manager.set_session_header(headers)
            await send(message)

        await self.app(scope, receive, send_wrapper)

        if manager.pending_outbound_token:
            self.logger.warning(
                "Session token issued after the response started; it was not delivered",
                extra={"path": scope.get("path")},
            )

        await manager.save_data()

    async def _reject(self, manager: SessionTokenManager, send: Callable) -> None:
        fault = manager.error
        body = json.dumps({"error": fault.to_public_dict()}).encode()
        headers = Headers()
        headers["content-type"] = "application/json"
        headers["content-length"] = str(len(body))

        await send({"type": "http.response.start", "status": 401, "headers": headers.raw})
        await send({"type": "http.response.body", "body": body})
