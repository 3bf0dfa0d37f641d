"""Connection gatekeeper — classify a WebSocket handshake into a role.

Learn: This is NOT an authorization boundary. It is fail-open on purpose:
a missing, unknown or malformed token, or any error while reading the
handshake, yields a guest. No connection is ever rejected here. The only
thing a role decides is whether the connection auto-joins the admin room
and may send admin commands.

Token sources, first match wins:
1. ?token=... query parameter
2. Authorization: Bearer ... header
3. token=... cookie

Two fixed sentinel values (PIZZATRACK_WS_USER_TOKEN / _ADMIN_TOKEN) map to
user and admin. Classification runs once per connection; the result is
frozen and never re-evaluated.
"""

import enum
from dataclasses import dataclass
from http.cookies import CookieError, SimpleCookie
from typing import Mapping, Optional

import structlog

from pizzatrack.config import settings

logger = structlog.get_logger()


class Role(str, enum.Enum):
    GUEST = "guest"
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class ConnectionIdentity:
    user_id: str
    role: Role
    permissions: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_authenticated(self) -> bool:
        return self.role != Role.GUEST

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


GUEST = ConnectionIdentity("guest", Role.GUEST, frozenset({"read"}))
USER = ConnectionIdentity("user-1", Role.USER, frozenset({"read", "write"}))
ADMIN = ConnectionIdentity("admin-1", Role.ADMIN, frozenset({"read", "write", "admin"}))


@dataclass(frozen=True)
class SentinelTokens:
    user: str
    admin: str

    @classmethod
    def from_settings(cls) -> "SentinelTokens":
        return cls(user=settings.ws_user_token, admin=settings.ws_admin_token)


def extract_token(
    query_params: Optional[Mapping[str, str]],
    headers: Optional[Mapping[str, str]],
    cookies: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Pull the credential out of the handshake, or None."""
    if query_params:
        token = query_params.get("token")
        if token:
            return token

    if headers:
        auth = _header(headers, "authorization")
        if auth and auth.startswith("Bearer "):
            token = auth[7:].strip()
            if token:
                return token

    if cookies is None and headers:
        cookies = _parse_cookie_header(_header(headers, "cookie"))
    if cookies:
        token = cookies.get("token")
        if token:
            return token

    return None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain dicts as well as Headers."""
    value = headers.get(name)
    if value is not None:
        return value
    for key, value in headers.items():
        if isinstance(key, str) and key.lower() == name:
            return value
    return None


def _parse_cookie_header(raw: Optional[str]) -> dict[str, str]:
    if not raw:
        return {}
    jar = SimpleCookie()
    try:
        jar.load(raw)
    except CookieError:
        return {}
    return {key: morsel.value for key, morsel in jar.items()}


def classify_connection(
    query_params: Optional[Mapping[str, str]],
    headers: Optional[Mapping[str, str]],
    cookies: Optional[Mapping[str, str]] = None,
    tokens: Optional[SentinelTokens] = None,
) -> ConnectionIdentity:
    """Map a handshake to an identity. Total: never raises, worst case guest."""
    try:
        tokens = tokens or SentinelTokens.from_settings()
        token = extract_token(query_params, headers, cookies)
        if token is None:
            return GUEST
        if token == tokens.admin:
            return ADMIN
        if token == tokens.user:
            return USER
        return GUEST
    except Exception as e:
        logger.warning("realtime.classify_failed", error=str(e))
        return GUEST
