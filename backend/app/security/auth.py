"""Authentication & authorization for the admin ingestion endpoint.

Design:
- Bearer JWT tokens (HS256) signed with SLOT_JWT_SECRET.
- Roles come from a `role` string claim or a `roles` list claim.
- Default deny. Only admin-class roles may ingest.

Failures raise the ingestion AuthError so the transport boundary renders them
like every other pipeline error.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import time
from dataclasses import dataclass
from typing import Any

from fastapi import Request

from app.security.roles import Role, has_admin_role, parse_roles
from ingestion.core.errors import AuthError, InternalError

JWT_SECRET_ENV = "SLOT_JWT_SECRET"


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated principal extracted from token claims."""

    sub: str
    roles: frozenset[Role]
    token_fingerprint: str  # stable, non-sensitive identifier for audit logs


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _get_jwt_secret() -> bytes:
    secret = os.environ.get(JWT_SECRET_ENV)
    if not secret:
        raise InternalError(f"Missing required env var {JWT_SECRET_ENV}.")
    return secret.encode("utf-8")


def _hmac_sha256(key: bytes, msg: bytes) -> bytes:
    return hmac.new(key, msg, hashlib.sha256).digest()


def sign_jwt(claims: dict[str, Any], secret: str) -> str:
    """Encode claims as an HS256 JWT. Used by operator tooling and tests."""
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_b64 = _b64url_encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
    return f"{header_b64}.{payload_b64}.{_b64url_encode(_hmac_sha256(secret.encode('utf-8'), signing_input))}"


def decode_and_verify_jwt(token: str) -> dict[str, Any]:
    """Verify HS256 JWT signature and minimal standard claims.

    Required claims:
    - sub: subject identifier
    - role or roles
    Optional:
    - exp: unix epoch seconds
    """
    try:
        header_b64, payload_b64, sig_b64 = token.split(".")
    except ValueError as e:
        raise AuthError("Invalid token format") from e

    signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
    expected_sig = _b64url_encode(_hmac_sha256(_get_jwt_secret(), signing_input))
    if not hmac.compare_digest(expected_sig, sig_b64):
        raise AuthError("Invalid token signature")

    try:
        header = json.loads(_b64url_decode(header_b64))
        payload = json.loads(_b64url_decode(payload_b64))
    except Exception as e:  # noqa: BLE001
        raise AuthError("Invalid token encoding") from e

    if header.get("alg") != "HS256" or header.get("typ") != "JWT":
        raise AuthError("Unsupported token header")

    exp = payload.get("exp")
    if exp is not None:
        try:
            exp_i = int(exp)
        except (TypeError, ValueError) as e:
            raise AuthError("Invalid exp claim") from e
        if int(time.time()) >= exp_i:
            raise AuthError("Token expired")

    if "sub" not in payload or ("role" not in payload and "roles" not in payload):
        raise AuthError("Missing required claims")

    return payload


def token_fingerprint(token: str) -> str:
    """Non-reversible token fingerprint for audit logs."""
    raw = hashlib.sha256(token.encode("utf-8")).digest()
    return _b64url_encode(raw[:18])


def _claimed_roles(claims: dict[str, Any]) -> frozenset[Role]:
    raw: list[str] = []
    if isinstance(claims.get("role"), str):
        raw.append(claims["role"])
    if isinstance(claims.get("roles"), list):
        raw.extend(str(r) for r in claims["roles"])
    return parse_roles(raw)


def get_current_principal(request: Request) -> Principal:
    """Extract and validate bearer token, returning Principal."""
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise AuthError("Missing or invalid Authorization header")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise AuthError("Missing or invalid Authorization header")

    claims = decode_and_verify_jwt(token)
    sub = str(claims["sub"]).strip()
    if not sub:
        raise AuthError("Invalid sub claim")

    return Principal(sub=sub, roles=_claimed_roles(claims), token_fingerprint=token_fingerprint(token))


def require_admin(request: Request) -> Principal:
    """FastAPI dependency: authenticated principal holding an admin-class role."""
    principal = get_current_principal(request)
    if not has_admin_role(principal.roles):
        raise AuthError("Admin role required", {"roles": sorted(r.value for r in principal.roles)})
    return principal
