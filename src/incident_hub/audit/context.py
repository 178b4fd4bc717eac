"""Requester metadata captured alongside audit entries."""

from dataclasses import dataclass
from typing import Optional

from starlette.requests import HTTPConnection

# Checked in order after X-Forwarded-For.
_PROXY_IP_HEADERS = ("x-real-ip", "cf-connecting-ip", "true-client-ip")

_LOOPBACK_FORMS = {"::1", "::ffff:127.0.0.1"}
_MAPPED_PREFIX = "::ffff:"


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str = "unknown"
    user_agent: Optional[str] = None
    method: str = ""
    path: str = ""

    @property
    def route(self) -> str:
        return f"{self.method} {self.path}".strip()


SYSTEM_META = RequestMeta(ip_address="system", user_agent=None)


def normalize_ip(address: str) -> str:
    """Fold loopback and IPv4-mapped IPv6 forms into plain IPv4."""
    address = address.strip()
    if address in _LOOPBACK_FORMS:
        return "127.0.0.1"
    if address.startswith(_MAPPED_PREFIX):
        return address[len(_MAPPED_PREFIX):]
    return address


def client_ip(conn: HTTPConnection) -> str:
    """Best-effort client address, honouring proxy headers."""
    forwarded = conn.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return normalize_ip(first)
    for header in _PROXY_IP_HEADERS:
        value = conn.headers.get(header)
        if value:
            return normalize_ip(value)
    if conn.client and conn.client.host:
        return normalize_ip(conn.client.host)
    return "unknown"


def request_meta(conn: HTTPConnection) -> RequestMeta:
    return RequestMeta(
        ip_address=client_ip(conn),
        user_agent=conn.headers.get("user-agent"),
        method=conn.scope.get("method", "WS" if conn.scope.get("type") == "websocket" else ""),
        path=conn.url.path,
    )
