from __future__ import annotations

import hashlib
import hmac
import json
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

SIGNATURE_TOLERANCE_SECONDS = 300


class StripeError(RuntimeError):
    pass


class StripeRateLimited(StripeError):
    pass


class StripeSignatureError(StripeError):
    pass


def _flatten(data: Any, prefix: str = "") -> list[tuple[str, str]]:
    """Stripe form encoding: metadata[user_id]=1, line_items[0][price]=..."""
    out: list[tuple[str, str]] = []
    if isinstance(data, dict):
        for k, v in data.items():
            key = f"{prefix}[{k}]" if prefix else str(k)
            out.extend(_flatten(v, key))
    elif isinstance(data, (list, tuple)):
        for i, v in enumerate(data):
            out.extend(_flatten(v, f"{prefix}[{i}]"))
    elif data is None:
        pass
    elif isinstance(data, bool):
        out.append((prefix, "true" if data else "false"))
    else:
        out.append((prefix, str(data)))
    return out


def encode_form(data: dict[str, Any]) -> bytes:
    return urllib.parse.urlencode(_flatten(data)).encode("utf-8")


def parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    ts: int | None = None
    sigs: list[str] = []
    for part in (header or "").split(","):
        k, _, v = part.strip().partition("=")
        if k == "t":
            try:
                ts = int(v)
            except ValueError:
                ts = None
        elif k == "v1" and v:
            sigs.append(v)
    return ts, sigs


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    *,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: float | None = None,
) -> dict[str, Any]:
    """Returns the decoded event, or raises StripeSignatureError."""
    if not header:
        raise StripeSignatureError("Missing stripe-signature header")
    ts, sigs = parse_signature_header(header)
    if ts is None or not sigs:
        raise StripeSignatureError("Malformed stripe-signature header")
    expected = compute_signature(payload, ts, secret)
    if not any(hmac.compare_digest(expected, sig) for sig in sigs):
        raise StripeSignatureError("No matching signature")
    current = time.time() if now is None else now
    if tolerance and abs(current - ts) > tolerance:
        raise StripeSignatureError("Timestamp outside tolerance")
    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StripeSignatureError("Invalid JSON payload") from e
    if not isinstance(event, dict):
        raise StripeSignatureError("Invalid event payload")
    return event


@dataclass(frozen=True)
class StripeClient:
    secret_key: str
    base_url: str = "https://api.stripe.com/v1"
    timeout_seconds: int = 30

    def request_json(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        retries: int = 2,
    ) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        body = encode_form(data) if data else None
        if method == "GET" and body:
            url += "?" + body.decode("utf-8")
            body = None

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=body, method=method)
                req.add_header("Authorization", f"Bearer {self.secret_key}")
                req.add_header("Accept", "application/json")
                if body is not None:
                    req.add_header("Content-Type", "application/x-www-form-urlencoded")
                if idempotency_key:
                    req.add_header("Idempotency-Key", idempotency_key)
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8"))
                    except json.JSONDecodeError as e:
                        raise StripeError(f"Invalid JSON from Stripe ({path})") from e
            except urllib.error.HTTPError as e:
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = StripeRateLimited("Rate limited (429)")
                    continue
                try:
                    detail = json.loads(e.read().decode("utf-8", errors="ignore")).get("error", {}).get("message")
                except (json.JSONDecodeError, AttributeError):
                    detail = None
                raise StripeError(f"HTTP {e.code} from Stripe: {detail or 'request failed'}") from e
            except (urllib.error.URLError, TimeoutError) as e:
                last_err = e
                time.sleep(min(attempt + 1, 5))
                continue
        raise StripeError(f"Stripe request failed after retries: {last_err}")

    def create_checkout_session(self, params: dict[str, Any], *, idempotency_key: str | None = None) -> dict[str, Any]:
        return self.request_json("POST", "/checkout/sessions", data=params, idempotency_key=idempotency_key)

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        return self.request_json("GET", f"/checkout/sessions/{urllib.parse.quote(session_id)}")

    def create_refund(self, *, payment_intent: str, amount: int, reason: str | None = None) -> dict[str, Any]:
        data: dict[str, Any] = {"payment_intent": payment_intent, "amount": amount}
        if reason:
            data["metadata"] = {"reason": reason[:500]}
        return self.request_json("POST", "/refunds", data=data)

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self.request_json("DELETE", f"/subscriptions/{urllib.parse.quote(subscription_id)}")


def stripe_from_config(config: dict) -> StripeClient:
    key = (config.get("STRIPE_SECRET_KEY") or "").strip()
    if not key:
        raise StripeError("STRIPE_SECRET_KEY is not configured")
    return StripeClient(secret_key=key)
