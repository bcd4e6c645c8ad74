import hmac
import re
import secrets

from flask import Request, session


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from form, header, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")

    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")

    expected = session.get("csrf_token")
    return bool(token and expected and hmac.compare_digest(str(token), str(expected)))


def bearer_token(req: Request) -> str | None:
    header = (req.headers.get("Authorization") or "").strip()
    if not header.lower().startswith("bearer "):
        return None
    return header[7:].strip() or None


def secret_matches(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(value: str | None) -> str:
    """Drop tags from user-supplied plain-text fields (display names, subjects)."""
    if not value:
        return ""
    return _TAG_RE.sub("", value).strip()
