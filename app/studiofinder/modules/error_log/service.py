from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.studiofinder.audit import record_event
from app.studiofinder.modules.error_log.models import (
    ERROR_IGNORED,
    ERROR_RESOLVED,
    ERROR_STATUSES,
    ERROR_UNRESOLVED,
    ErrorLogGroup,
)
from app.studiofinder.utils import parse_iso_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.studiofinder.models import User
    from app.studiofinder.modules.error_log.sentry_client import SentryClient

logger = logging.getLogger(__name__)

REDACTED = "[redacted]"
_SENSITIVE_KEY_RE = re.compile(r"pass|secret|token|auth|cookie|session|api[_-]?key|card|email", re.IGNORECASE)
_SENSITIVE_VALUE_RE = re.compile(
    r"(sk_(live|test)_[A-Za-z0-9]+|whsec_[A-Za-z0-9]+|re_[A-Za-z0-9]{16,}|Bearer\s+\S+|[\w.+-]+@[\w-]+\.[\w.-]+)"
)
MAX_DEPTH = 8
TITLE_MAX = 512


def redact(value: Any, depth: int = 0) -> Any:
    """Recursively blank sensitive keys and scrub secrets/emails out of strings."""
    if depth > MAX_DEPTH:
        return REDACTED
    if isinstance(value, dict):
        return {
            k: (REDACTED if isinstance(k, str) and _SENSITIVE_KEY_RE.search(k) else redact(v, depth + 1))
            for k, v in value.items()
        }
    if isinstance(value, list):
        # Sentry tags arrive as [key, value] pairs.
        if len(value) == 2 and isinstance(value[0], str) and _SENSITIVE_KEY_RE.search(value[0]):
            return [value[0], REDACTED]
        return [redact(v, depth + 1) for v in value]
    if isinstance(value, str):
        return _SENSITIVE_VALUE_RE.sub(REDACTED, value)
    return value


def sanitize_event(event: dict | None) -> dict | None:
    """Keep the fields useful for debugging; drop headers, cookies, bodies, emails and IPs."""
    if not isinstance(event, dict):
        return None
    request = event.get("request") if isinstance(event.get("request"), dict) else None
    user = event.get("user") if isinstance(event.get("user"), dict) else None
    sample = {
        "event_id": event.get("event_id") or event.get("id"),
        "message": event.get("message"),
        "exception": event.get("exception"),
        "stacktrace": event.get("stacktrace"),
        "tags": event.get("tags"),
        "contexts": event.get("contexts"),
        "breadcrumbs": event.get("breadcrumbs"),
        "platform": event.get("platform"),
        "timestamp": event.get("timestamp"),
        "release": event.get("release"),
        "request": {"url": (request.get("url") or "").split("?")[0], "method": request.get("method")} if request else None,
        "user": {"id": user.get("id"), "username": user.get("username")} if user else None,
    }
    return redact(sample)


def _ts(value: Any) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.utcfromtimestamp(value)
    if isinstance(value, str):
        return parse_iso_datetime(value)
    return None


def upsert_from_webhook(s: "Session", payload: dict, *, now: datetime | None = None) -> ErrorLogGroup | None:
    """Returns None when the payload carries no issue."""
    now = now or datetime.utcnow()
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    issue = data.get("issue") if isinstance(data.get("issue"), dict) else None
    if issue is None or issue.get("id") is None:
        return None

    group = _upsert_issue(s, issue, now)
    sample = sanitize_event(data.get("event"))
    if sample is not None:
        group.sample_event = sample
        s.flush()
    logger.info("Stored error group %s for Sentry issue %s (count=%s)", group.id, group.sentry_issue_id, group.event_count)
    return group


_SENTRY_STATUS = {
    "resolved": ERROR_RESOLVED,
    "ignored": ERROR_IGNORED,
    "muted": ERROR_IGNORED,
}


def sync_sentry_issues(s: "Session", client: "SentryClient", *, now: datetime | None = None) -> dict[str, int]:
    """Pull the project's issues and refresh ErrorLogGroup rows. Status follows Sentry; samples are kept."""
    now = now or datetime.utcnow()
    synced = skipped = 0
    for issue in client.list_issues():
        if not isinstance(issue, dict) or issue.get("id") is None:
            skipped += 1
            continue
        group = _upsert_issue(s, issue, now)
        group.status = _SENTRY_STATUS.get(str(issue.get("status") or "").lower(), ERROR_UNRESOLVED)
        synced += 1
    s.flush()
    logger.info("Sentry sync stored %s issues (%s skipped)", synced, skipped)
    return {"synced": synced, "skipped": skipped}


def _upsert_issue(s: "Session", issue: dict, now: datetime) -> ErrorLogGroup:
    issue_id = str(issue["id"])
    metadata = issue.get("metadata") if isinstance(issue.get("metadata"), dict) else {}
    title = redact(str(issue.get("title") or issue.get("culprit") or "Unknown error"))[:TITLE_MAX]
    try:
        count = int(issue.get("count") or 1)
    except (TypeError, ValueError):
        count = 1

    group = s.query(ErrorLogGroup).filter(ErrorLogGroup.sentry_issue_id == issue_id).one_or_none()
    if group is None:
        group = ErrorLogGroup(
            sentry_issue_id=issue_id,
            status=ERROR_UNRESOLVED,
            first_seen_at=_ts(issue.get("firstSeen")) or now,
        )
        s.add(group)
    group.title = title
    group.level = str(issue.get("level") or "error")[:32]
    culprit = issue.get("culprit")
    group.culprit = redact(str(culprit))[:TITLE_MAX] if culprit else None
    group.permalink = issue.get("permalink") or group.permalink
    group.environment = metadata.get("environment") or group.environment
    group.event_count = max(count, group.event_count or 0)
    group.last_seen_at = _ts(issue.get("lastSeen")) or now
    s.flush()
    return group


def set_error_status(s: "Session", group: ErrorLogGroup, status: str, admin: "User", notes: str | None = None) -> None:
    status = (status or "").strip().upper()
    if status not in ERROR_STATUSES:
        raise ValueError(f"Unknown status: {status}")
    old = group.status
    group.status = status
    if notes is not None:
        group.notes = notes.strip() or None
    record_event(
        s,
        actor=admin,
        action="error_log.status_change",
        entity_type="ErrorLogGroup",
        entity_id=str(group.id),
        metadata={"old_status": old, "new_status": status},
    )
