"""Per-request / per-socket caller identity.

Two regimes live side by side: every caller is known by network address,
and a caller presenting a valid token is additionally known as a user.
"""
import logging
from typing import Optional

from starlette.requests import HTTPConnection

from .accounts import TokenService
from .models import Actor, GuestActor, UserActor, ROLE_USER

logger = logging.getLogger(__name__)


def normalize_ip(ip: str) -> str:
    """Loopback and IPv4-mapped IPv6 forms become dotted IPv4."""
    ip = ip.strip()
    if ip == "::1":
        return "127.0.0.1"
    if ip.lower().startswith("::ffff:"):
        return ip[7:]
    return ip


def client_ip(conn: HTTPConnection, trust_forwarded_for: bool = True) -> str:
    if trust_forwarded_for:
        forwarded = conn.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return normalize_ip(first)
    host = conn.client.host if conn.client else ""
    return normalize_ip(host or "unknown")


def presented_token(conn: HTTPConnection) -> Optional[str]:
    """Bearer header on HTTP, ``?token=`` on the websocket."""
    auth = conn.headers.get("authorization", "")
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return conn.query_params.get("token") or None


class IdentityResolver:
    def __init__(self, tokens: TokenService, admin_key: str = "", trust_forwarded_for: bool = True):
        self.tokens = tokens
        self.admin_key = admin_key
        self.trust_forwarded_for = trust_forwarded_for

    def resolve(self, conn: HTTPConnection) -> Actor:
        ip = client_ip(conn, self.trust_forwarded_for)

        token = presented_token(conn)
        if token:
            claims = self.tokens.verify(token)
            if claims:
                return UserActor(
                    id=str(claims["sub"]),
                    username=claims["username"],
                    name=claims.get("name") or claims["username"],
                    role=claims.get("role") or ROLE_USER,
                    ip=ip,
                )
            logger.info("Invalid or expired token from %s, continuing as guest", ip)

        admin = bool(self.admin_key) and conn.headers.get("x-admin-auth") == self.admin_key
        return GuestActor(ip=ip, admin=admin)
