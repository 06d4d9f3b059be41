"""Compiler diagnostic parsing and auto-fix suggestions."""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from app.core.errors import Diagnostic


@dataclass(frozen=True)
class AutoFixSuggestion:
    description: str
    old_text: str
    new_text: str
    confidence: str  # "high", "medium" or "low"


_DIAGNOSTIC_PATTERNS = [
    # file.ts(12,5): error TS2304: Cannot find name 'Foo'.
    re.compile(r"^(.+?)\((\d+),(\d+)\):\s*(error|warning)\s+(TS\d+):\s*(.+)$", re.MULTILINE),
    # file.ts:12:5 - error TS2304: Cannot find name 'Foo'.
    re.compile(r"^(.+?):(\d+):(\d+)\s*-\s*(error|warning)\s+(TS\d+):\s*(.+)$", re.MULTILINE),
]


def parse_type_diagnostics(output: str) -> List[Diagnostic]:
    """
    Parse compiler output into Diagnostic records.

    Both the parenthesised `file(line,col)` form and the `file:line:col -` form
    are recognised. Lines in neither form are ignored.
    """
    if not output or not isinstance(output, str):
        return []

    diagnostics: List[Diagnostic] = []
    for pattern in _DIAGNOSTIC_PATTERNS:
        for match in pattern.finditer(output):
            diagnostics.append(Diagnostic(
                file=match.group(1).strip(),
                line=int(match.group(2)),
                column=int(match.group(3)),
                severity=match.group(4),
                code=match.group(5),
                message=match.group(6).strip(),
            ))
    return diagnostics


_FixBuilder = Callable[["re.Match[str]"], AutoFixSuggestion]

_AUTO_FIX_PATTERNS: List[Tuple["re.Pattern[str]", _FixBuilder]] = [
    (
        re.compile(r"Cannot find name '(\w+)'"),
        lambda m: AutoFixSuggestion(
            description=f"Add import for '{m.group(1)}'",
            old_text="",
            new_text=f"import {{ {m.group(1)} }} from './{m.group(1).lower()}';\n",
            confidence="low",
        ),
    ),
    (
        re.compile(r"'(\w+)' is declared but its value is never read"),
        lambda m: AutoFixSuggestion(
            description=f"Remove unused variable '{m.group(1)}' or prefix with underscore",
            old_text=m.group(1),
            new_text=f"_{m.group(1)}",
            confidence="high",
        ),
    ),
    (
        re.compile(r"';' expected"),
        lambda m: AutoFixSuggestion(
            description="Add missing semicolon",
            old_text="",
            new_text=";",
            confidence="high",
        ),
    ),
    (
        re.compile(r"Type '(.+)' is not assignable to type '(.+)'"),
        lambda m: AutoFixSuggestion(
            description=f"Add type assertion to convert '{m.group(1)}' to '{m.group(2)}'",
            old_text="",
            new_text=f" as {m.group(2)}",
            confidence="medium",
        ),
    ),
    (
        re.compile(r"Property '(\w+)' does not exist on type '(.+)'"),
        lambda m: AutoFixSuggestion(
            description=f"Add '{m.group(1)}' property to type '{m.group(2)}' or use optional chaining",
            old_text=f".{m.group(1)}",
            new_text=f"?.{m.group(1)}",
            confidence="medium",
        ),
    ),
    (
        re.compile(r"Function lacks ending return statement"),
        lambda m: AutoFixSuggestion(
            description="Add return statement or change return type to void",
            old_text="",
            new_text="return;",
            confidence="low",
        ),
    ),
]


def suggest_auto_fix(diagnostic: Diagnostic) -> Optional[AutoFixSuggestion]:
    for pattern, build in _AUTO_FIX_PATTERNS:
        match = pattern.search(diagnostic.message)
        if match:
            return build(match)
    return None
