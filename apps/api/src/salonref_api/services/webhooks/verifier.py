"""Square webhook signature verification."""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Mapping

SIGNATURE_HEADERS = ("x-square-hmacsha256-signature", "x-square-signature")


def compute_square_signature(raw_body: bytes, signature_key: str, notification_url: str | None = None) -> str:
    """Return the base64 HMAC-SHA256 Square would send for ``raw_body``."""

    message = (notification_url or "").encode("utf-8") + raw_body
    digest = hmac.new(signature_key.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_square_signature(
    raw_body: bytes,
    signature: str | None,
    *,
    signature_key: str | None,
    notification_url: str | None = None,
) -> bool:
    """Check ``signature`` against the exact request bytes.

    Returns False when the key or the header is missing. The body must be
    the unparsed request payload; re-serialized JSON will not match.
    """

    if not signature_key or not signature:
        return False
    expected = compute_square_signature(raw_body, signature_key, notification_url)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8"))


def extract_signature(headers: Mapping[str, str]) -> str | None:
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None
