"""Guards around data-retention operations: rate limits, eligibility,
confirmation tokens and the audit trail."""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Hashable, Iterator, Optional

from config import Settings, get_settings
from errors import (
    ConfirmationRequired,
    NotAuthorizedError,
    RateLimitExceeded,
    SpendwiseError,
    ValidationError,
)
from models import AccountStatus, User, UserRole

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")

CONFIRMATION_TEXT = "DELETE_MY_DATA"
ADMIN_CONFIRMATION_TEXT = "GLOBAL_CLEANUP_CONFIRMED"
GLOBAL_CLEANUP_KEY = "global-cleanup"

ALLOWED_STATUSES = frozenset({AccountStatus.active, AccountStatus.verified})
BLOCKED_STATUSES = frozenset(
    {AccountStatus.suspended, AccountStatus.banned, AccountStatus.pending}
)
ADMIN_ROLES = frozenset({UserRole.admin, UserRole.super_admin})
SENSITIVE_FIELDS = ("password", "token", "secret")
REDACTED = "[REDACTED]"

SECURITY_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class SecurityEvent(str, Enum):
    unauthorized_access = "unauthorized_access"
    bulk_deletion = "bulk_deletion"
    admin_operation = "admin_operation"
    failed_confirmation = "failed_confirmation"
    rate_limit_exceeded = "rate_limit_exceeded"
    suspicious_activity = "suspicious_activity"


SEVERITY = {
    SecurityEvent.unauthorized_access: "HIGH",
    SecurityEvent.bulk_deletion: "MEDIUM",
    SecurityEvent.admin_operation: "LOW",
    SecurityEvent.failed_confirmation: "MEDIUM",
    SecurityEvent.rate_limit_exceeded: "LOW",
    SecurityEvent.suspicious_activity: "HIGH",
}


class SlidingWindowRateLimiter:
    """At most ``limit`` hits per key within any ``window_secs`` span."""

    def __init__(
        self,
        limit: int,
        window_secs: float,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_secs = window_secs
        self.name = name
        self.clock = clock
        self._windows: dict[Hashable, list[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: Hashable, now: float) -> list[float]:
        cutoff = now - self.window_secs
        window = [stamp for stamp in self._windows.get(key, ()) if stamp > cutoff]
        if window:
            self._windows[key] = window
        else:
            self._windows.pop(key, None)
        return window

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)

    def check(self, key: Hashable) -> bool:
        with self._lock:
            return len(self._prune(key, self.clock())) < self.limit

    def hit(self, key: Hashable) -> None:
        """Record one attempt, or raise if the window is already full."""
        with self._lock:
            now = self.clock()
            window = self._prune(key, now)
            if len(window) >= self.limit:
                retry_after = max(1, math.ceil(window[0] + self.window_secs - now))
                raise RateLimitExceeded(
                    f"Too many {self.name} requests. Try again in {retry_after} seconds.",
                    retry_after_secs=retry_after,
                )
            window.append(now)
            self._windows[key] = window

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def validate_retention_months(months: Any, settings: Optional[Settings] = None) -> int:
    settings = settings or get_settings()
    if isinstance(months, bool) or not isinstance(months, int):
        raise ValidationError("Retention period must be an integer")
    if months < settings.min_retention_months:
        raise ValidationError(
            f"Minimum retention period is {settings.min_retention_months} month(s)"
        )
    if months > settings.max_retention_months:
        raise ValidationError(
            f"Maximum retention period is {settings.max_retention_months} month(s)"
        )
    return months


def check_account_eligibility(
    user: User,
    *,
    now: Optional[datetime] = None,
    min_age_days: int = 7,
) -> None:
    status = AccountStatus(user.status)
    if status in BLOCKED_STATUSES:
        raise NotAuthorizedError(
            f"Account status '{status.value}' is not allowed for data retention operations"
        )
    if status not in ALLOWED_STATUSES:
        raise NotAuthorizedError(
            "Account must be verified to perform data retention operations"
        )
    now = now or datetime.utcnow()
    age = now - user.created_at
    if age < timedelta(days=min_age_days):
        raise NotAuthorizedError(
            f"Account must be at least {min_age_days} days old. "
            f"Current age: {age.days} days"
        )


def require_admin(user: User) -> None:
    if UserRole(user.role) not in ADMIN_ROLES:
        raise NotAuthorizedError("Administrator role required")


def require_confirmation(provided: Optional[str], expected: str) -> None:
    if provided != expected:
        raise ConfirmationRequired(expected)


def sanitize_audit(data: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not data:
        return {}
    sanitized = {}
    for key, value in data.items():
        if any(field in key.lower() for field in SENSITIVE_FIELDS):
            sanitized[key] = REDACTED
        elif isinstance(value, dict):
            sanitized[key] = sanitize_audit(value)
        else:
            sanitized[key] = value
    return sanitized


def audit(
    operation: str,
    owner: Optional[int],
    *,
    success: bool,
    status_code: int,
    request_data: Optional[dict[str, Any]] = None,
    error: Optional[str] = None,
) -> dict[str, Any]:
    entry = {
        "type": "DATA_RETENTION_AUDIT",
        "timestamp": datetime.utcnow().isoformat(),
        "operation": operation,
        "owner": owner,
        "success": success,
        "status_code": status_code,
        "request_data": sanitize_audit(request_data),
    }
    if error:
        entry["error"] = error
    audit_logger.info(json.dumps(entry, default=str))
    return entry


def log_security_event(event: SecurityEvent, details: dict[str, Any]) -> dict[str, Any]:
    entry = {
        "type": "SECURITY_EVENT",
        "event_type": event.value,
        "timestamp": datetime.utcnow().isoformat(),
        "severity": SEVERITY.get(event, "MEDIUM"),
        "details": sanitize_audit(details),
    }
    audit_logger.warning(json.dumps(entry, default=str))
    return entry


class PermissionGate:
    """Runs the checks that precede a data-retention operation.

    Rate-limit hits are recorded first, so rejected attempts still count
    against the caller's window.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings
        self.general = SlidingWindowRateLimiter(
            s.general_rate_limit, s.general_rate_window_secs, name="data retention", clock=clock
        )
        self.cleanup = SlidingWindowRateLimiter(
            s.cleanup_rate_limit, s.cleanup_rate_window_secs, name="cleanup", clock=clock
        )
        self.admin = SlidingWindowRateLimiter(
            s.admin_rate_limit, s.admin_rate_window_secs, name="global cleanup", clock=clock
        )

    def reset(self) -> None:
        for limiter in (self.general, self.cleanup, self.admin):
            limiter.reset()

    @staticmethod
    def _limited(limiter: SlidingWindowRateLimiter, key: Hashable, owner: int) -> None:
        try:
            limiter.hit(key)
        except RateLimitExceeded:
            log_security_event(
                SecurityEvent.rate_limit_exceeded,
                {"owner": owner, "limiter": limiter.name},
            )
            raise

    def authorize_general(self, user: User) -> None:
        self._limited(self.general, user.id, user.id)

    def authorize_settings(self, user: User, *, now: Optional[datetime] = None) -> None:
        self._limited(self.general, user.id, user.id)
        self._eligible(user, now)

    def authorize_cleanup(
        self,
        user: User,
        confirmation: Optional[str],
        *,
        now: Optional[datetime] = None,
    ) -> None:
        self._limited(self.cleanup, user.id, user.id)
        self._eligible(user, now)
        self._confirmed(user, confirmation, CONFIRMATION_TEXT)

    def _eligible(self, user: User, now: Optional[datetime]) -> None:
        try:
            check_account_eligibility(
                user, now=now, min_age_days=self.settings.min_account_age_days
            )
        except NotAuthorizedError as exc:
            log_security_event(
                SecurityEvent.unauthorized_access,
                {"owner": user.id, "reason": exc.message},
            )
            raise

    def authorize_global_cleanup(self, user: User, confirmation: Optional[str]) -> None:
        # Role check precedes the shared global window so non-admins cannot use it up.
        try:
            require_admin(user)
        except NotAuthorizedError:
            log_security_event(
                SecurityEvent.unauthorized_access,
                {"owner": user.id, "operation": "global_cleanup"},
            )
            raise
        self._limited(self.admin, GLOBAL_CLEANUP_KEY, user.id)
        self._confirmed(user, confirmation, ADMIN_CONFIRMATION_TEXT)
        log_security_event(
            SecurityEvent.admin_operation,
            {"owner": user.id, "operation": "global_cleanup"},
        )

    @staticmethod
    def _confirmed(user: User, provided: Optional[str], expected: str) -> None:
        try:
            require_confirmation(provided, expected)
        except ConfirmationRequired:
            log_security_event(
                SecurityEvent.failed_confirmation,
                {"owner": user.id, "provided": provided},
            )
            raise


@contextmanager
def audited(
    operation: str,
    owner: Optional[int],
    request_data: Optional[dict[str, Any]] = None,
    *,
    success_status: int = 200,
) -> Iterator[None]:
    """Emit exactly one audit line for the wrapped attempt."""
    try:
        yield
    except SpendwiseError as exc:
        audit(
            operation,
            owner,
            success=False,
            status_code=exc.status_code,
            request_data=request_data,
            error=exc.message,
        )
        raise
    except Exception as exc:
        audit(
            operation,
            owner,
            success=False,
            status_code=500,
            request_data=request_data,
            error=str(exc),
        )
        raise
    else:
        audit(
            operation,
            owner,
            success=True,
            status_code=success_status,
            request_data=request_data,
        )
