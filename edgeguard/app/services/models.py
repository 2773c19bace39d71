"""Data models shared by the filter stages."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class Outcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class FilterMode(str, Enum):
    """Whether store-backed checks run.

    ENFORCED runs the full chain; DISABLED admits every request and records
    nothing (fail-open when the store is missing or unreachable).
    """
    ENFORCED = "enforced"
    DISABLED = "disabled"


class DenyReason(str, Enum):
    COUNTRY_BLOCKED = "country_blocked"
    IDENTITY_NOT_ALLOWED = "identity_not_allowed"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class ClientRequest:
    """What the filter needs to know about one inbound request.

    Attributes:
        client_key: Stable client identifier (rate limit key)
        identity: Declared client label, usually the User-Agent header
        country: Upper-case ISO country code, None when unknown
        path: Request path, for logging only
    """
    client_key: str
    identity: str = ""
    country: Optional[str] = None
    path: str = "/"


@dataclass(frozen=True)
class FilterDecision:
    """Result of a filter stage or of the whole chain.

    ``headers`` is a read-only mapping and takes no part in hashing.
    """
    outcome: Outcome
    reason: Optional[DenyReason] = None
    status_code: Optional[int] = None
    message: str = ""
    headers: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @classmethod
    def allow(cls, headers: Optional[dict[str, str]] = None) -> "FilterDecision":
        return cls(outcome=Outcome.ALLOW, headers=dict(headers or {}))

    @classmethod
    def deny(
        cls,
        reason: DenyReason,
        status_code: int,
        message: str,
        headers: Optional[dict[str, str]] = None,
    ) -> "FilterDecision":
        return cls(
            outcome=Outcome.DENY,
            reason=reason,
            status_code=status_code,
            message=message,
            headers=dict(headers or {}),
        )

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW


@dataclass(frozen=True)
class AttackCounters:
    """Snapshot of the attack detection counters for the current window.

    Attributes:
        total: Requests that passed every check in the window
        blocked: Requests denied by any check in the window
    """
    total: int
    blocked: int

    @property
    def passed(self) -> int:
        return self.total - self.blocked

    def strength(self, window_seconds: int) -> float:
        """Requests per second over the detection window."""
        return self.total / window_seconds
