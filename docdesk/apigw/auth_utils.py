"""
Utilitaires d'identification de l'appelant pour le contrôle d'admission.

Ce module dérive la clé d'identité utilisée pour attribuer la consommation de quota :
- appelant authentifié (JWT valide) → identifiant utilisateur stable
- sinon → origine réseau normalisée (IPv4-mapped IPv6 ramené à l'IPv4)
"""

import ipaddress
import logging

from fastapi import Request

from docdesk.core.settings import Settings
from docdesk.domain.auth import decode_token

log = logging.getLogger(__name__)

UNKNOWN_ORIGIN = "unknown"


def normalize_origin(address: str | None) -> str:
    """
    Normalize a network address so one origin is never counted under two forms.

    `::ffff:127.0.0.1` and `127.0.0.1` both become `127.0.0.1`. IPv6 addresses are rendered in
    their compressed canonical form. Anything that is not an IP address collapses to `unknown`, so
    arbitrary header values cannot mint new identities.
    """
    if not address or not address.strip():
        return UNKNOWN_ORIGIN
    raw = address.strip()
    try:
        ip = ipaddress.ip_address(raw)
    except ValueError:
        return UNKNOWN_ORIGIN
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def bearer_token(request: Request) -> str | None:
    """Return the bearer token of the Authorization header, if any."""
    authorization = request.headers.get("Authorization")
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def authenticated_user_id(request: Request, settings: Settings) -> str | None:
    """Stable user id of the caller, or None when the caller is anonymous."""
    user = getattr(request.state, "user", None)
    if user and user.get("id"):
        return str(user["id"])
    token = bearer_token(request)
    if token is None:
        return None
    data = decode_token(token, settings.JWT_SECRET, settings.JWT_ALG)
    return data.sub if data else None


def client_origin(request: Request, settings: Settings) -> str:
    """Network origin of the request; X-Forwarded-For is honoured only when trusted."""
    if settings.RATE_LIMIT_TRUST_FORWARDED:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            origin = normalize_origin(forwarded.split(",")[0])
            if origin != UNKNOWN_ORIGIN:
                return origin
    host = request.client.host if request.client else None
    return normalize_origin(host)


def resolve_identity_key(request: Request, settings: Settings) -> str:
    """
    Derive the identity key attributing quota usage for this request.

    Returns:
        `user:<id>` for authenticated callers, `ip:<origin>` otherwise.
    """
    user_id = authenticated_user_id(request, settings)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{client_origin(request, settings)}"
