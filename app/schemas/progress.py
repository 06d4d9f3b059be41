from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Optional
from datetime import datetime
from app.core.workflow import OverallStatus, PhaseKind, PhaseState, PHASE_ORDER
from app.schemas.collaborators import ExtractedData, ImplementationPlan, PageAnalysis


class PhaseStatus(BaseModel):
    state: PhaseState = PhaseState.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class ErrorLogEntry(BaseModel):
    phase: PhaseKind
    message: str
    timestamp: datetime
    resolution: Optional[str] = None


def _initial_phases() -> Dict[PhaseKind, PhaseStatus]:
    return {phase: PhaseStatus() for phase in PHASE_ORDER}


class ProgressRecord(BaseModel):
    """Durable, resumable state of one clone operation, keyed by page slug."""
    source_url: str
    page_slug: str
    created_at: datetime
    last_updated_at: datetime
    status: OverallStatus = OverallStatus.IDLE
    phases: Dict[PhaseKind, PhaseStatus] = Field(default_factory=_initial_phases)
    page_analysis: Optional[PageAnalysis] = None
    extracted_data: Optional[ExtractedData] = None
    implementation_plan: Optional[ImplementationPlan] = None
    files_created: List[str] = Field(default_factory=list)
    files_modified: List[str] = Field(default_factory=list)
    errors: List[ErrorLogEntry] = Field(default_factory=list)
    verification_attempts: int = Field(default=0, ge=0)
    completed_at: Optional[datetime] = None

    @field_validator("phases")
    @classmethod
    def _all_phases_present(cls, value: Dict[PhaseKind, PhaseStatus]) -> Dict[PhaseKind, PhaseStatus]:
        missing = [p.value for p in PHASE_ORDER if p not in value]
        if missing:
            raise ValueError(f"missing phases: {', '.join(missing)}")
        return value

    def state_of(self, phase: PhaseKind) -> PhaseState:
        return self.phases[phase].state

    def last_completed_phase(self) -> Optional[PhaseKind]:
        last = None
        for phase in PHASE_ORDER:
            if self.state_of(phase) != PhaseState.COMPLETED:
                break
            last = phase
        return last

    def next_phase(self) -> Optional[PhaseKind]:
        for phase in PHASE_ORDER:
            if self.state_of(phase) != PhaseState.COMPLETED:
                return phase
        return None

    def all_completed(self) -> bool:
        return self.next_phase() is None


class CloneCreateRequest(BaseModel):
    source_url: str = Field(..., examples=["https://example.com/free-ai-tools"])
    feature_name: str = Field(..., examples=["free-ai-tools"])
    page_slug: Optional[str] = None
    is_dynamic_route: bool = False
    parent_route: Optional[str] = None
    resume: bool = False


class CloneJobResponse(BaseModel):
    task_id: str
    page_slug: str


class ProgressSummary(BaseModel):
    page_slug: str
    source_url: str
    status: OverallStatus
    next_phase: Optional[PhaseKind] = None
    verification_attempts: int
    error_count: int
    last_updated_at: datetime


class NextPhaseResponse(BaseModel):
    page_slug: str
    last_completed_phase: Optional[PhaseKind] = None
    next_phase: Optional[PhaseKind] = None


class ArchivedRecordResponse(BaseModel):
    id: str
    page_slug: str
    archived_at: datetime
    record: ProgressRecord
