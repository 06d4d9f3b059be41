"""Payloads exchanged with the external phase collaborators.

The collaborators (page analysis, content extraction, planning, file generation
and verification) live outside this service. These models only pin down the
fields the orchestrator reads or persists; anything else a collaborator returns
is kept as extra data.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow")


class PageCapture(_Payload):
    url: str
    title: str = ""
    html: str = ""
    snapshot: str = ""
    status_code: Optional[int] = None


class PageAnalysis(_Payload):
    url: str
    title: str = ""
    sections: List[Dict[str, Any]] = Field(default_factory=list)
    navigation: List[Dict[str, Any]] = Field(default_factory=list)
    interactive_elements: List[Dict[str, Any]] = Field(default_factory=list)
    responsive_breakpoints: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)


class ExtractedData(_Payload):
    metadata: Dict[str, Any] = Field(default_factory=dict)
    text_content: List[Dict[str, Any]] = Field(default_factory=list)
    images: List[Dict[str, Any]] = Field(default_factory=list)
    links: List[Dict[str, Any]] = Field(default_factory=list)
    lists: List[Dict[str, Any]] = Field(default_factory=list)
    forms: List[Dict[str, Any]] = Field(default_factory=list)
    structured_data: Dict[str, Any] = Field(default_factory=dict)
    extracted_at: Optional[datetime] = None
    item_counts: Dict[str, int] = Field(default_factory=dict)


class PlanOptions(BaseModel):
    feature_name: str
    page_slug: str
    is_dynamic_route: bool = False
    parent_route: Optional[str] = None


class ImplementationPlan(_Payload):
    page_route: str
    components: List[Dict[str, Any]] = Field(default_factory=list)
    data_files: List[Dict[str, Any]] = Field(default_factory=list)
    service_updates: List[Dict[str, Any]] = Field(default_factory=list)
    type_definitions: List[Dict[str, Any]] = Field(default_factory=list)
    config_updates: List[Dict[str, Any]] = Field(default_factory=list)


class ImplementationOutput(BaseModel):
    files_created: List[str] = Field(default_factory=list)
    files_modified: List[str] = Field(default_factory=list)


class AnalyzeInput(BaseModel):
    snapshot: str
    title: str = ""
    html: Optional[str] = None
    breakpoints: Optional[List[str]] = None

    @classmethod
    def from_capture(cls, capture: PageCapture) -> "AnalyzeInput":
        return cls(snapshot=capture.snapshot or capture.html, title=capture.title, html=capture.html)


class ExtractInput(BaseModel):
    html: str


class VerifyInput(BaseModel):
    """Inputs for one verification attempt. Missing snapshots are captured on demand."""
    source_snapshot: Optional[str] = None
    clone_snapshot: Optional[str] = None
    console_messages: List[Dict[str, str]] = Field(default_factory=list)
    diagnostics: List[Dict[str, Any]] = Field(default_factory=list)
    test_results: Optional[Dict[str, Any]] = None


class VerificationReport(_Payload):
    passed: bool
    # The orchestrator still enforces its own attempt ceiling
    can_retry: bool = True
    fix_suggestions: List[str] = Field(default_factory=list)
