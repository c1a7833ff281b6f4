from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Optional
from urllib.parse import urlencode

from config import Config


def _secret() -> str:
    value = Config.UNSUBSCRIBE_SECRET
    if not value:
        raise RuntimeError("UNSUBSCRIBE_SECRET is not configured")
    return value


def build_contact_token(contact_id: int | None, email: str) -> str:
    payload = f"{contact_id or ''}:{email}"
    sig = hmac.new(_secret().encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()
    raw = f"{payload}:{sig}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def parse_contact_token(token: str) -> Optional[tuple[int | None, str]]:
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("utf-8")).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return None
    parts = raw.split(":")
    if len(parts) < 3:
        return None
    contact_id_str = parts[0]
    sig = parts[-1]
    email = ":".join(parts[1:-1])
    payload = f"{contact_id_str}:{email}"
    expected = hmac.new(_secret().encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(sig, expected):
        return None
    if not contact_id_str:
        return None, email
    try:
        contact_id = int(contact_id_str)
    except ValueError:
        return None
    return contact_id, email


def build_open_pixel_url(token: str) -> str:
    return f"{Config.PUBLIC_BASE_URL}/tracking/open/{token}.gif"


def build_unsubscribe_url(token: str) -> str:
    return f"{Config.PUBLIC_BASE_URL}/unsubscribe/{token}"


def _link_signature(token: str, url: str) -> str:
    payload = f"{token}|{url}"
    return hmac.new(_secret().encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()[:32]


def build_click_url(token: str, url: str) -> str:
    query = urlencode({"url": url, "sig": _link_signature(token, url)})
    return f"{Config.PUBLIC_BASE_URL}/tracking/click/{token}?{query}"


def verify_click(token: str, url: str, sig: str) -> bool:
    """Only links we rewrote ourselves may be redirected to."""
    if not url.lower().startswith(("http://", "https://")):
        return False
    return hmac.compare_digest(sig or "", _link_signature(token, url))
