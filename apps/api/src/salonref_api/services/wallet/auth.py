"""Per-pass authentication tokens for the Wallet web service."""

from __future__ import annotations

import hashlib
import hmac

AUTH_SCHEME = "ApplePass"


def pass_authentication_token(secret: str, serial_number: str) -> str:
    """Token embedded in ``pass.json`` and echoed back by devices."""

    return hmac.new(secret.encode("utf-8"), serial_number.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_pass_authorization(authorization: str | None, *, secret: str, serial_number: str) -> bool:
    if not secret or not authorization:
        return False
    scheme, _, token = authorization.strip().partition(" ")
    if scheme != AUTH_SCHEME or not token.strip():
        return False
    expected = pass_authentication_token(secret, serial_number)
    return hmac.compare_digest(expected.encode("utf-8"), token.strip().encode("utf-8"))
