"""Recovery policy: a pure mapping from a classified error to what happens next."""
from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple
from app.core.diagnostics import AutoFixSuggestion, suggest_auto_fix
from app.core.errors import (
    AcquisitionCode,
    ClassifiedError,
    ErrorDomain,
    GenerationCode,
    GenerationFailure,
    VerificationCode,
)
from app.core.workflow import MAX_VERIFICATION_ATTEMPTS


class RecoveryAction(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    PAUSE = "pause"
    FIX = "fix"
    ABORT = "abort"


@dataclass(frozen=True)
class RecoveryStrategy:
    action: RecoveryAction
    user_message: str
    delay_ms: Optional[int] = None
    max_attempts: Optional[int] = None
    auto_fix: Optional[AutoFixSuggestion] = None

    def to_dict(self) -> dict:
        data = {
            "action": self.action.value,
            "user_message": self.user_message,
            "delay_ms": self.delay_ms,
            "max_attempts": self.max_attempts,
        }
        if self.auto_fix is not None:
            data["auto_fix"] = {
                "description": self.auto_fix.description,
                "old_text": self.auto_fix.old_text,
                "new_text": self.auto_fix.new_text,
                "confidence": self.auto_fix.confidence,
            }
        return data


DEFAULT_STRATEGY = RecoveryStrategy(
    RecoveryAction.ABORT, "Unknown error occurred. Manual review required."
)

_PAUSE_FOR_HUMAN = RecoveryStrategy(
    RecoveryAction.PAUSE, "CAPTCHA or bot detection encountered. Manual intervention required."
)

_POLICY: Dict[Tuple[ErrorDomain, str], RecoveryStrategy] = {
    (ErrorDomain.ACQUISITION, AcquisitionCode.TIMEOUT): RecoveryStrategy(
        RecoveryAction.RETRY, "Page load timed out. Retrying with longer timeout...", delay_ms=5000, max_attempts=3
    ),
    # The delay is a baseline; the rate limiter applies exponential backoff on top.
    (ErrorDomain.ACQUISITION, AcquisitionCode.RATE_LIMITED): RecoveryStrategy(
        RecoveryAction.RETRY, "Rate limited. Waiting before retry...", delay_ms=5000, max_attempts=5
    ),
    (ErrorDomain.ACQUISITION, AcquisitionCode.CAPTCHA): _PAUSE_FOR_HUMAN,
    (ErrorDomain.ACQUISITION, AcquisitionCode.BLOCKED): _PAUSE_FOR_HUMAN,
    (ErrorDomain.ACQUISITION, AcquisitionCode.NOT_FOUND): RecoveryStrategy(
        RecoveryAction.SKIP, "Page not found. Skipping this URL."
    ),
    (ErrorDomain.ACQUISITION, AcquisitionCode.PARSE_ERROR): RecoveryStrategy(
        RecoveryAction.RETRY, "Failed to parse page content. Retrying...", delay_ms=2000, max_attempts=2
    ),
    (ErrorDomain.GENERATION, GenerationCode.TYPE_ERROR): RecoveryStrategy(
        RecoveryAction.FIX, "Type error detected. Attempting auto-fix..."
    ),
    (ErrorDomain.GENERATION, GenerationCode.LINT_ERROR): RecoveryStrategy(
        RecoveryAction.FIX, "Lint error detected. Attempting auto-fix..."
    ),
    (ErrorDomain.GENERATION, GenerationCode.BUILD_ERROR): RecoveryStrategy(
        RecoveryAction.ABORT, "Build error detected. Manual review required."
    ),
    (ErrorDomain.GENERATION, GenerationCode.PATTERN_MISMATCH): RecoveryStrategy(
        RecoveryAction.ABORT, "Code pattern mismatch. Manual review required."
    ),
    (ErrorDomain.GENERATION, GenerationCode.FILE_WRITE): RecoveryStrategy(
        RecoveryAction.RETRY, "File write failed. Retrying...", delay_ms=1000, max_attempts=2
    ),
    (ErrorDomain.VERIFICATION, VerificationCode.VISUAL_MISMATCH): RecoveryStrategy(
        RecoveryAction.FIX, "Visual differences detected. Attempting to fix...", max_attempts=MAX_VERIFICATION_ATTEMPTS
    ),
    (ErrorDomain.VERIFICATION, VerificationCode.LINK_BROKEN): RecoveryStrategy(
        RecoveryAction.FIX, "Broken links detected. Attempting to fix...", max_attempts=MAX_VERIFICATION_ATTEMPTS
    ),
    (ErrorDomain.VERIFICATION, VerificationCode.TEST_FAILED): RecoveryStrategy(
        RecoveryAction.FIX, "Tests failed. Attempting to fix...", max_attempts=MAX_VERIFICATION_ATTEMPTS
    ),
    (ErrorDomain.VERIFICATION, VerificationCode.CONSOLE_ERROR): RecoveryStrategy(
        RecoveryAction.FIX, "Console errors detected. Attempting to fix...", max_attempts=MAX_VERIFICATION_ATTEMPTS
    ),
    (ErrorDomain.VERIFICATION, VerificationCode.DATA_INCOMPLETE): RecoveryStrategy(
        RecoveryAction.RETRY, "Data incomplete. Re-extracting...", delay_ms=2000, max_attempts=2
    ),
}


def resolve_recovery(error: ClassifiedError) -> RecoveryStrategy:
    """Look up the recovery strategy for a classified error. Never raises."""
    domain = getattr(error, "domain", None)
    code = getattr(error, "code", None)
    try:
        strategy = _POLICY.get((domain, code), DEFAULT_STRATEGY)
    except TypeError:
        return DEFAULT_STRATEGY

    if isinstance(error, GenerationFailure) and strategy.action == RecoveryAction.FIX:
        for diagnostic in error.diagnostics:
            fix = suggest_auto_fix(diagnostic)
            if fix is not None:
                return replace(strategy, auto_fix=fix)
    return strategy
