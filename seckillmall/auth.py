"""Gateway response bodies, CORS headers and bearer-token authentication."""

import base64
import hashlib
import hmac
import json
import re
import time
from dataclasses import dataclass

BLACKLIST_KEY_PREFIX = "user:blacklist:"
UNAUTHORIZED = 401

_RAW_URL_B64 = re.compile(r"[A-Za-z0-9_-]*")

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With",
    "Access-Control-Max-Age": "86400",
}


class TokenError(ValueError):
    """A token that is malformed, wrongly signed or expired."""


class AuthError(Exception):
    """A request refused by authentication."""

    def __init__(self, message, code=UNAUTHORIZED):
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = UNAUTHORIZED

    def body(self):
        """The JSON body sent with the refusal."""
        return error_body(self.code, self.message)


@dataclass(frozen=True)
class JWTClaims:
    """The claims the gateway reads from an access token."""

    user_id: int = 0
    jti: str = ""


def success_body(data=None):
    """The uniform success response; data is left out when None."""
    body = {"code": 0, "message": "success"}
    if data is not None:
        body["data"] = data
    return body


def error_body(code, message):
    """The uniform error response."""
    return {"code": code, "message": message}


def cors_headers():
    """Headers allowing cross-origin calls from any origin."""
    return dict(_CORS_HEADERS)


def _raw_url_b64decode(text):
    if len(text) % 4 == 1 or not _RAW_URL_B64.fullmatch(text):
        raise ValueError("not unpadded URL-safe base64")
    return base64.b64decode(text + "=" * (-len(text) % 4), altchars=b"-_", validate=True)


def _reject_constant(name):
    raise ValueError(f"invalid JSON constant {name}")


def _number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def parse_token(token, secret):
    """Verify an HS256 token's signature and expiry and return its claims."""
    parts = token.split(".")
    if len(parts) != 3:
        raise TokenError("invalid token format")
    header_b64, payload_b64, signature_b64 = parts

    expected = hmac.new(
        secret.encode("utf-8"), f"{header_b64}.{payload_b64}".encode("utf-8"), hashlib.sha256
    ).digest()
    try:
        signature = _raw_url_b64decode(signature_b64)
    except ValueError as err:
        raise TokenError("invalid signature encoding") from err
    if not hmac.compare_digest(expected, signature):
        raise TokenError("invalid signature")

    try:
        payload_json = _raw_url_b64decode(payload_b64)
    except ValueError as err:
        raise TokenError("invalid payload encoding") from err
    try:
        payload = json.loads(
            payload_json.decode("utf-8", errors="replace"), parse_constant=_reject_constant
        )
    except ValueError as err:
        raise TokenError("invalid payload format") from err
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise TokenError("invalid payload format")

    exp = _number(payload.get("exp"))
    if exp is not None and exp < int(time.time()):
        raise TokenError("token expired")

    user_id = _number(payload.get("userId")) or 0
    jti = payload.get("jti")
    return JWTClaims(user_id=user_id, jti=jti if isinstance(jti, str) else "")


def _is_blacklisted(redis_client, jti):
    if redis_client is None or not jti:
        return False
    try:
        return bool(redis_client.exists(BLACKLIST_KEY_PREFIX + jti))
    except Exception:
        return False


def authenticate(authorization_header, secret, redis_client=None):
    """Check an Authorization header and return the token's claims.

    Raises AuthError when the header is missing or malformed, the token is
    invalid, or its jti is on the revocation list in Redis.
    """
    if not authorization_header:
        raise AuthError("未提供认证信息")

    parts = authorization_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthError("Token 格式错误")

    try:
        claims = parse_token(parts[1], secret)
    except TokenError as err:
        raise AuthError("无效的 Token") from err

    if _is_blacklisted(redis_client, claims.jti):
        raise AuthError("Token 已失效")
    return claims