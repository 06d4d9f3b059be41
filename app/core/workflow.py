from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional
from urllib.parse import unquote, urlparse
from app.core.config import settings

MAX_VERIFICATION_ATTEMPTS = settings.max_verification_attempts


class PhaseKind(str, Enum):
    ANALYZE = "analyze"
    EXTRACT = "extract"
    PLAN = "plan"
    IMPLEMENT = "implement"
    VERIFY = "verify"


PHASE_ORDER = [
    PhaseKind.ANALYZE,
    PhaseKind.EXTRACT,
    PhaseKind.PLAN,
    PhaseKind.IMPLEMENT,
    PhaseKind.VERIFY,
]


class PhaseState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PhaseOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    NEEDS_RETRY = "needs_retry"


class OverallStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_USER_INPUT = "awaiting_user_input"


# Statuses in which the orchestrator accepts no further phase work
# until something outside the orchestrator intervenes.
HALTED_STATUSES = frozenset({
    OverallStatus.COMPLETED,
    OverallStatus.FAILED,
    OverallStatus.AWAITING_USER_INPUT,
    OverallStatus.PAUSED,
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def phases_before(phase: PhaseKind) -> List[PhaseKind]:
    return PHASE_ORDER[:PHASE_ORDER.index(phase)]


@dataclass(frozen=True)
class CloneRequest:
    source_url: str
    feature_name: str
    page_slug: str
    is_dynamic_route: bool = False
    parent_route: Optional[str] = None
    resume: bool = False


@dataclass(frozen=True)
class PhaseResult:
    phase: PhaseKind
    outcome: PhaseOutcome
    payload: Any = None
    errors: tuple = ()
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def ok(self) -> bool:
        return self.outcome == PhaseOutcome.SUCCESS


def slug_from_url(url: str) -> str:
    """Derive a page slug from the last path segment of a URL."""
    try:
        path = unquote(urlparse(url).path)
    except ValueError:
        return "page"
    segments = [s for s in path.split("/") if s]
    last = segments[-1] if segments else "index"
    slug = re.sub(r"[^\w\s-]", "", last.lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or "page"
