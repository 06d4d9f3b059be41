"""Interfaces of the external collaborators each phase delegates to.

Implementations may be plain or async callables; the phase agents await
whatever comes back.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol
from app.schemas.collaborators import (
    ExtractedData,
    ImplementationOutput,
    ImplementationPlan,
    PageAnalysis,
    PageCapture,
    PlanOptions,
    VerificationReport,
)


class PageAnalyzer(Protocol):
    async def analyze(self, snapshot: str, title: str, breakpoints: Optional[List[str]] = None) -> PageAnalysis: ...


class ContentExtractor(Protocol):
    async def extract(self, markup: str, source_url: str) -> ExtractedData: ...


class ImplementationPlanner(Protocol):
    async def plan(self, analysis: PageAnalysis, extracted: ExtractedData, options: PlanOptions) -> ImplementationPlan: ...


class Implementer(Protocol):
    async def implement(self, plan: ImplementationPlan, extracted: ExtractedData) -> ImplementationOutput: ...


class CloneVerifier(Protocol):
    async def verify(
        self,
        source_snapshot: str,
        clone_snapshot: str,
        attempt_number: int,
        extras: Dict[str, Any],
    ) -> VerificationReport: ...


class PageSource(Protocol):
    async def capture(self, url: str) -> PageCapture: ...


@dataclass
class Collaborators:
    analyzer: PageAnalyzer
    extractor: ContentExtractor
    planner: ImplementationPlanner
    verifier: CloneVerifier
    implementer: Optional[Implementer] = None
    page_source: Optional[PageSource] = None
