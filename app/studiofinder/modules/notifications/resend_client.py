from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any


class EmailSendError(RuntimeError):
    pass


@dataclass(frozen=True)
class ResendClient:
    api_key: str
    base_url: str = "https://api.resend.com"
    timeout_seconds: int = 20

    def request_json(self, path: str, payload: dict[str, Any], *, retries: int = 2) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        body = json.dumps(payload).encode("utf-8")
        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=body, method="POST")
                req.add_header("Authorization", f"Bearer {self.api_key}")
                req.add_header("Content-Type", "application/json")
                req.add_header("Accept", "application/json")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8")) if raw else {}
                    except json.JSONDecodeError as e:
                        raise EmailSendError(f"Invalid JSON from Resend ({path})") from e
            except urllib.error.HTTPError as e:
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = EmailSendError("Rate limited (429)")
                    continue
                detail = e.read().decode("utf-8", errors="ignore")
                raise EmailSendError(f"HTTP {e.code} from Resend: {detail[:300]}") from e
            except (urllib.error.URLError, TimeoutError) as e:
                last_err = e
                time.sleep(min(attempt + 1, 5))
                continue
        raise EmailSendError(f"Resend request failed after retries: {last_err}")

    def send_email(
        self,
        *,
        from_email: str,
        to: str | list[str],
        subject: str,
        html: str,
        text: str | None = None,
        reply_to: str | None = None,
    ) -> str | None:
        """Returns the provider message id."""
        payload: dict[str, Any] = {
            "from": from_email,
            "to": [to] if isinstance(to, str) else to,
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        if reply_to:
            payload["reply_to"] = reply_to
        return self.request_json("/emails", payload).get("id")
