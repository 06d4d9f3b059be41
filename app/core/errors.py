"""Classified failure values.

Every failure raised during a clone is normalized into exactly one of three
domains before any recovery decision is made. These are plain frozen values,
not exceptions: the `domain` tag and `code` are what callers dispatch on.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple, Union


class ErrorDomain(str, Enum):
    ACQUISITION = "acquisition"
    GENERATION = "generation"
    VERIFICATION = "verification"


class AcquisitionCode(str, Enum):
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"
    PARSE_ERROR = "parse_error"
    CAPTCHA = "captcha"
    RATE_LIMITED = "rate_limited"


class GenerationCode(str, Enum):
    FILE_WRITE = "file_write"
    TYPE_ERROR = "type_error"
    LINT_ERROR = "lint_error"
    BUILD_ERROR = "build_error"
    PATTERN_MISMATCH = "pattern_mismatch"


class VerificationCode(str, Enum):
    VISUAL_MISMATCH = "visual_mismatch"
    DATA_INCOMPLETE = "data_incomplete"
    LINK_BROKEN = "link_broken"
    TEST_FAILED = "test_failed"
    CONSOLE_ERROR = "console_error"


@dataclass(frozen=True)
class Diagnostic:
    """One compiler diagnostic line."""
    file: str
    line: int
    column: int
    code: str
    message: str
    severity: str  # "error" or "warning"


@dataclass(frozen=True)
class AcquisitionFailure:
    """Fetching the source page or its content failed."""
    code: AcquisitionCode
    message: str
    retryable: bool
    source_url: str = "unknown"
    domain: ErrorDomain = field(default=ErrorDomain.ACQUISITION, init=False)

    def to_response(self) -> Dict[str, Any]:
        return {
            "domain": self.domain.value,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "source_url": self.source_url,
        }


@dataclass(frozen=True)
class GenerationFailure:
    """Producing output artifacts (files, code, builds) failed."""
    code: GenerationCode
    message: str
    file_path: str = "unknown"
    auto_fixable: bool = False
    diagnostics: Tuple[Diagnostic, ...] = ()
    domain: ErrorDomain = field(default=ErrorDomain.GENERATION, init=False)

    def to_response(self) -> Dict[str, Any]:
        return {
            "domain": self.domain.value,
            "code": self.code.value,
            "message": self.message,
            "file_path": self.file_path,
            "auto_fixable": self.auto_fixable,
            "diagnostic_count": len(self.diagnostics),
        }


@dataclass(frozen=True)
class VerificationFailure:
    """Post-hoc QA of the cloned page failed."""
    code: VerificationCode
    message: str
    details: Tuple[str, ...] = ()
    fix_attempts: int = 0
    domain: ErrorDomain = field(default=ErrorDomain.VERIFICATION, init=False)

    def to_response(self) -> Dict[str, Any]:
        return {
            "domain": self.domain.value,
            "code": self.code.value,
            "message": self.message,
            "details": list(self.details),
            "fix_attempts": self.fix_attempts,
        }


ClassifiedError = Union[AcquisitionFailure, GenerationFailure, VerificationFailure]
