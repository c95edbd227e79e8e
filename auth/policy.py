"""
auth/policy.py -- Which account statuses may sign in.

Status strings come straight from the users table and are matched
case-insensitively ("Suspended" == "suspended"). A missing or empty status
means active.

Unrecognized statuses are allowed by default. Set DENY_UNRECOGNIZED_STATUS
to flip this to an explicit allow-list (only "active" and empty pass).

Layer rule: no imports from api/, web/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from auth.models import AccountStatus

DENIED_MESSAGES: dict[str, str] = {
    AccountStatus.suspended.value: "This account has been suspended. Please contact support.",
    AccountStatus.blocked.value: "This account has been blocked. Please contact support.",
    AccountStatus.banned.value: "This account has been banned. Please contact support.",
}

UNRECOGNIZED_MESSAGE = "This account is not permitted to sign in. Please contact support."


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    status: str = AccountStatus.active.value
    message: Optional[str] = None


def normalize_status(status: Optional[str]) -> str:
    """Lowercase and trim a raw status value; empty/None becomes "active"."""
    if status is None:
        return AccountStatus.active.value
    normalized = str(status).strip().lower()
    return normalized or AccountStatus.active.value


class SessionPolicy:
    def __init__(self, deny_unrecognized: bool = False) -> None:
        self.deny_unrecognized = deny_unrecognized

    def is_login_allowed(self, status: Optional[str]) -> PolicyDecision:
        normalized = normalize_status(status)
        if normalized == AccountStatus.active.value:
            return PolicyDecision(allowed=True, status=normalized)
        if normalized in DENIED_MESSAGES:
            return PolicyDecision(allowed=False, status=normalized, message=DENIED_MESSAGES[normalized])
        if self.deny_unrecognized:
            return PolicyDecision(allowed=False, status=normalized, message=UNRECOGNIZED_MESSAGE)
        return PolicyDecision(allowed=True, status=normalized)
