"""Principal resolution for bearer credentials.

Handlers never look at the token themselves: they depend on ``require_user`` or
``require_admin``, which ask the configured ``PrincipalResolver`` who is calling.
"""

import base64
import hashlib
import hmac
import json
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from fastapi import Depends, Request

from .errors import AuthError, Forbidden

AUTH_SECRET = os.getenv("AUTH_SECRET", "change-me")
TOKEN_TTL_S = int(os.getenv("TOKEN_TTL_S", str(24 * 60 * 60)))


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class PrincipalResolver(Protocol):
    def resolve(self, authorization: Optional[str]) -> Principal: ...


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _sign(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode("ascii"), hashlib.sha256).digest()
    return _b64encode(digest)


def issue_token(user_id: Any, role: str = "customer", secret: str = AUTH_SECRET,
                ttl_s: Optional[int] = TOKEN_TTL_S) -> str:
    """Mint an HS256 token carrying ``userId`` and ``role``."""
    header = {"alg": "HS256", "typ": "JWT"}
    payload: Dict[str, Any] = {"userId": user_id, "role": role}
    if ttl_s is not None:
        payload["exp"] = int(time.time()) + ttl_s
    signing_input = ".".join(
        _b64encode(json.dumps(part, separators=(",", ":")).encode()) for part in (header, payload)
    )
    return f"{signing_input}.{_sign(signing_input, secret)}"


class TokenResolver:
    """Verifies ``Authorization: Bearer <header.payload.signature>`` credentials."""

    def __init__(self, secret: str = AUTH_SECRET) -> None:
        self._secret = secret

    def resolve(self, authorization: Optional[str]) -> Principal:
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthError("missing bearer token")
        token = authorization[len("Bearer "):].strip()
        parts = token.split(".")
        if len(parts) != 3:
            raise AuthError("malformed token")

        signing_input = f"{parts[0]}.{parts[1]}"
        if not hmac.compare_digest(_sign(signing_input, self._secret), parts[2]):
            raise AuthError("bad token signature")

        try:
            payload = json.loads(_b64decode(parts[1]))
        except ValueError as exc:
            raise AuthError("malformed token payload") from exc
        if not isinstance(payload, dict):
            raise AuthError("malformed token payload")

        exp = payload.get("exp")
        if exp is not None:
            if isinstance(exp, bool) or not isinstance(exp, (int, float)):
                raise AuthError("malformed token expiry")
            if exp < time.time():
                raise AuthError("token expired")

        user_id = payload.get("userId")
        if user_id is None or user_id == "":
            raise AuthError("token has no userId")
        return Principal(user_id=str(user_id), role=str(payload.get("role") or "customer"))


_resolver = TokenResolver()


def get_principal_resolver() -> PrincipalResolver:
    return _resolver


def require_user(request: Request, resolver: PrincipalResolver = Depends(get_principal_resolver)) -> Principal:
    return resolver.resolve(request.headers.get("Authorization"))


def require_admin(principal: Principal = Depends(require_user)) -> Principal:
    if not principal.is_admin:
        raise Forbidden("admin role required")
    return principal
