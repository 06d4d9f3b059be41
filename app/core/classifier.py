"""Failure classification.

`classify_error` turns anything raised during a clone into exactly one
ClassifiedError value. Rules are checked in order and the first match wins;
anything unmatched becomes a non-retryable acquisition parse error, so the
function is total.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from app.core.diagnostics import parse_type_diagnostics
from app.core.errors import (
    AcquisitionCode,
    AcquisitionFailure,
    ClassifiedError,
    GenerationCode,
    GenerationFailure,
    VerificationCode,
    VerificationFailure,
)
from app.core.workflow import PhaseKind

CAPTCHA_PATTERNS = (
    "captcha",
    "recaptcha",
    "hcaptcha",
    "robot",
    "verify you are human",
    "are you a robot",
    "human verification",
    "security check",
    "access denied",
    "blocked",
    "cloudflare",
    "challenge-platform",
    "cf-browser-verification",
    "please wait while we verify",
    "checking your browser",
    "ddos protection",
    "bot detection",
    "unusual traffic",
    "automated access",
)

RATE_LIMIT_PATTERNS = ("429", "too many requests", "rate limit")
TIMEOUT_PATTERNS = ("timeout", "timed out")
NOT_FOUND_PATTERNS = ("404", "not found")
TYPE_PATTERNS = ("typescript", "ts(", "error ts", "type error")
BUILD_PATTERNS = ("build", "compile", "webpack")
LINT_PATTERNS = ("lint", "eslint")

BLOCKING_STATUS_CODES = frozenset({403, 429, 503})


def detect_captcha(text: Optional[str]) -> bool:
    """True if a page capture or message contains bot-detection vocabulary."""
    if not text or not isinstance(text, str):
        return False
    lowered = text.lower()
    return any(pattern in lowered for pattern in CAPTCHA_PATTERNS)


def is_blocking_status_code(status_code: Optional[int]) -> bool:
    return status_code in BLOCKING_STATUS_CODES


def _failure_text(error: Any) -> str:
    if isinstance(error, BaseException):
        text = str(error)
        # Some exceptions (asyncio.TimeoutError) carry no message
        return text if text else type(error).__name__
    return str(error)


def _contains_any(text: str, patterns) -> bool:
    return any(p in text for p in patterns)


def classify_error(
    error: Any,
    phase: Optional[Union[PhaseKind, str]] = None,
    url: Optional[str] = None,
    file_path: Optional[str] = None,
) -> ClassifiedError:
    message = _failure_text(error)
    lowered = message.lower()
    source_url = url or "unknown"
    target_file = file_path or "unknown"

    if detect_captcha(message):
        return AcquisitionFailure(AcquisitionCode.CAPTCHA, message, False, source_url)

    if _contains_any(lowered, RATE_LIMIT_PATTERNS):
        return AcquisitionFailure(AcquisitionCode.RATE_LIMITED, message, True, source_url)

    if _contains_any(lowered, TIMEOUT_PATTERNS):
        return AcquisitionFailure(AcquisitionCode.TIMEOUT, message, True, source_url)

    if _contains_any(lowered, NOT_FOUND_PATTERNS):
        return AcquisitionFailure(AcquisitionCode.NOT_FOUND, message, False, source_url)

    if _contains_any(lowered, TYPE_PATTERNS):
        return GenerationFailure(
            GenerationCode.TYPE_ERROR,
            message,
            file_path=target_file,
            auto_fixable=True,
            diagnostics=tuple(parse_type_diagnostics(message)),
        )

    if _contains_any(lowered, BUILD_PATTERNS):
        return GenerationFailure(GenerationCode.BUILD_ERROR, message, file_path=target_file, auto_fixable=False)

    if _contains_any(lowered, LINT_PATTERNS):
        return GenerationFailure(GenerationCode.LINT_ERROR, message, file_path=target_file, auto_fixable=True)

    if "test" in lowered and ("fail" in lowered or "error" in lowered):
        return VerificationFailure(VerificationCode.TEST_FAILED, message, details=(message,))

    if phase == PhaseKind.VERIFY:
        if "mismatch" in lowered or "different" in lowered:
            return VerificationFailure(VerificationCode.VISUAL_MISMATCH, message, details=(message,))
        if "incomplete" in lowered or "missing" in lowered:
            return VerificationFailure(VerificationCode.DATA_INCOMPLETE, message, details=(message,))
        if "link" in lowered or "broken" in lowered:
            return VerificationFailure(VerificationCode.LINK_BROKEN, message, details=(message,))
        if "console" in lowered:
            return VerificationFailure(VerificationCode.CONSOLE_ERROR, message, details=(message,))

    return AcquisitionFailure(AcquisitionCode.PARSE_ERROR, message, False, source_url)


_ACQUISITION_MESSAGES = {
    AcquisitionCode.TIMEOUT: "The page took too long to load. Please check your internet connection and try again.",
    AcquisitionCode.BLOCKED: "Access to the page was blocked. The website may have anti-bot protection.",
    AcquisitionCode.CAPTCHA: "A CAPTCHA challenge was detected. Manual verification is required.",
    AcquisitionCode.NOT_FOUND: "The page was not found. Please verify the URL is correct.",
    AcquisitionCode.RATE_LIMITED: "Too many requests. Please wait a moment before trying again.",
    AcquisitionCode.PARSE_ERROR: "Failed to parse the page content. The page structure may have changed.",
}

_GENERATION_MESSAGES = {
    GenerationCode.TYPE_ERROR: "Type error in {file_path}. Auto-fix may be available.",
    GenerationCode.LINT_ERROR: "Lint error in {file_path}. Auto-fix may be available.",
    GenerationCode.BUILD_ERROR: "Build failed. Please check the error details and fix manually.",
    GenerationCode.FILE_WRITE: "Failed to write file {file_path}. Check file permissions.",
    GenerationCode.PATTERN_MISMATCH: "The generated code does not match expected patterns. Manual review required.",
}

_VERIFICATION_MESSAGES = {
    VerificationCode.VISUAL_MISMATCH: "The cloned page looks different from the source. Adjustments needed.",
    VerificationCode.DATA_INCOMPLETE: "Some data was not extracted completely. Re-extraction may be needed.",
    VerificationCode.LINK_BROKEN: "Some links are broken or pointing to incorrect destinations.",
    VerificationCode.TEST_FAILED: "One or more tests failed. Please review the test output.",
    VerificationCode.CONSOLE_ERROR: "Console errors were detected on the cloned page.",
}


def user_message(error: ClassifiedError) -> str:
    """Operator-facing message for a classified error, independent of the raw text."""
    if isinstance(error, AcquisitionFailure):
        return _ACQUISITION_MESSAGES[error.code]
    if isinstance(error, GenerationFailure):
        return _GENERATION_MESSAGES[error.code].format(file_path=error.file_path)
    if isinstance(error, VerificationFailure):
        return _VERIFICATION_MESSAGES[error.code]
    return "An unexpected error occurred."


def is_retryable(error: ClassifiedError) -> bool:
    if isinstance(error, AcquisitionFailure):
        return error.retryable
    if isinstance(error, GenerationFailure):
        return error.code == GenerationCode.FILE_WRITE
    if isinstance(error, VerificationFailure):
        return error.code == VerificationCode.DATA_INCOMPLETE
    return False


def format_error_for_logging(error: ClassifiedError, **context: Any) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "type": error.domain.value,
    }
    entry.update(error.to_response())
    entry.update(context)
    return entry
