"""
Sessions - Identity collaborators.

The token manager never authenticates anyone itself. It asks an
IdentityProvider whether the current request belongs to a logged-in user,
and if so which user id the session should be keyed by.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from storefront_sessions._datastructures import Headers


class IdentityProvider(Protocol):
    """Source of the authenticated user for one request."""

    def is_authenticated(self) -> bool:
        ...

    def current_user_id(self) -> str | None:
        ...


class AnonymousIdentity:
    """Nobody is logged in."""

    def is_authenticated(self) -> bool:
        return False

    def current_user_id(self) -> str | None:
        return None

    def __repr__(self) -> str:
        return "AnonymousIdentity()"


class StaticIdentity:
    """
    Fixed user identity (tests, CLI, trusted upstream).

    Example:
        >>> identity = StaticIdentity("42")
        >>> identity.is_authenticated(), identity.current_user_id()
        (True, '42')
    """

    def __init__(self, user_id: str | int | None):
        self.user_id = str(user_id) if user_id not in (None, "") else None

    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def current_user_id(self) -> str | None:
        return self.user_id

    def __repr__(self) -> str:
        return f"StaticIdentity({self.user_id!r})"


class ScopeIdentity:
    """
    Identity resolved from an ASGI scope.

    Checks, in order:
    1. ``scope["user"]`` set by an upstream auth middleware (an object with
       ``id`` or ``identity_id``, or a plain id)
    2. ``trusted_header``, only when one is configured. Use it solely behind
       a gateway that strips the header from client requests; otherwise any
       client can claim any user id.

    Example:
        >>> ScopeIdentity({"headers": [(b"x-authenticated-user", b"42")]}).is_authenticated()
        False
        >>> ScopeIdentity(scope, trusted_header="x-authenticated-user").current_user_id()
        '42'
    """

    def __init__(self, scope: Mapping[str, Any], trusted_header: str | None = None):
        self.trusted_header = trusted_header
        self.user_id = self._resolve(scope)

    def _resolve(self, scope: Mapping[str, Any]) -> str | None:
        user = scope.get("user")
        if user is not None:
            for attr in ("id", "identity_id"):
                value = getattr(user, attr, None)
                if value not in (None, ""):
                    return str(value)
            if isinstance(user, (str, int)) and not isinstance(user, bool) and user != "":
                return str(user)

        if not self.trusted_header:
            return None

        value = Headers.from_asgi(scope.get("headers") or []).get(self.trusted_header)
        if value and value.strip():
            return value.strip()
        return None

    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def current_user_id(self) -> str | None:
        return self.user_id

    def __repr__(self) -> str:
        return f"ScopeIdentity(authenticated={self.is_authenticated()})"
