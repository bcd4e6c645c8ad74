from __future__ import annotations

import json
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any


class SentryApiError(RuntimeError):
    pass


@dataclass(frozen=True)
class SentryClient:
    auth_token: str
    org_slug: str
    project_slug: str
    base_url: str = "https://sentry.io/api/0"
    timeout_seconds: int = 30

    def request_json(self, path: str, params: dict[str, Any] | None = None, *, retries: int = 2) -> Any:
        url = self.base_url.rstrip("/") + path
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, method="GET")
                req.add_header("Authorization", f"Bearer {self.auth_token}")
                req.add_header("Accept", "application/json")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8")) if raw else []
                    except json.JSONDecodeError as e:
                        raise SentryApiError(f"Invalid JSON from Sentry ({path})") from e
            except urllib.error.HTTPError as e:
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = SentryApiError("Rate limited (429)")
                    continue
                detail = e.read().decode("utf-8", errors="ignore")
                raise SentryApiError(f"HTTP {e.code} from Sentry: {detail[:300]}") from e
            except (urllib.error.URLError, TimeoutError) as e:
                last_err = e
                time.sleep(min(attempt + 1, 5))
                continue
        raise SentryApiError(f"Sentry request failed after retries: {last_err}")

    def list_issues(self, *, stats_period: str = "30d") -> list[dict[str, Any]]:
        """Resolved, unresolved and ignored issues seen in the period."""
        path = f"/projects/{self.org_slug}/{self.project_slug}/issues/"
        data = self.request_json(path, {"query": "is:unresolved OR is:resolved OR is:ignored", "statsPeriod": stats_period})
        if not isinstance(data, list):
            raise SentryApiError("Unexpected issues payload from Sentry")
        return data


def sentry_from_config(config: dict) -> SentryClient | None:
    token = (config.get("SENTRY_AUTH_TOKEN") or "").strip()
    org = (config.get("SENTRY_ORG_SLUG") or "").strip()
    project = (config.get("SENTRY_PROJECT_SLUG") or "").strip()
    if not (token and org and project):
        return None
    return SentryClient(auth_token=token, org_slug=org, project_slug=project)
