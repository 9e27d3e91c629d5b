"""Signing and nonce helpers shared by the REST and real-time clients."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Any
from urllib.parse import urlencode

from .const import LOGIN_PAGE_URL, NONCE_ALPHABET, NONCE_LENGTH


def sign(data: str | bytes, secret: str) -> str:
    """Sign data with HMAC-SHA256 and return the base64-encoded digest.

    Args:
        data: Payload to sign, exactly as it will be sent.
        secret: Application secret.

    Returns:
        Base64 signature suitable for an ``Authorization: Sign`` header.

    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), data, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def generate_nonce(length: int = NONCE_LENGTH) -> str:
    """Generate a random alphanumeric nonce."""
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def sequence() -> str:
    """Return the current time in milliseconds as a string sequence number."""
    return str(int(time.time() * 1000))


def encode_body(payload: dict[str, Any]) -> str:
    """Serialize a request body; the same bytes are signed and sent."""
    return json.dumps(payload, separators=(",", ":"))


def build_login_url(
    app_id: str,
    app_secret: str,
    redirect_url: str,
    state: str,
) -> str:
    """Build the OAuth login page URL for the authorization-code flow.

    Args:
        app_id: Application identifier.
        app_secret: Application secret used to sign ``<app_id>_<seq>``.
        redirect_url: URL the login page redirects to with ``code`` and ``region``.
        state: Opaque state echoed back on redirect.

    Returns:
        Fully-qualified login URL.

    """
    seq = sequence()
    params = {
        "state": state,
        "clientId": app_id,
        "authorization": sign(f"{app_id}_{seq}", app_secret),
        "seq": seq,
        "redirectUrl": redirect_url,
        "nonce": generate_nonce(),
        "grantType": "authorization_code",
    }
    return f"{LOGIN_PAGE_URL}?{urlencode(params)}"


def mask_token(token: str | None) -> str:
    """Shorten a token for log output."""
    if not token:
        return "<none>"
    return f"{token[:6]}..."
