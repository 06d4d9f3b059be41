from typing import List
from fastapi import APIRouter, Depends, HTTPException
from app.core.exceptions import PreconditionError, ProgressStoreError
from app.core.workflow import slug_from_url
from app.schemas.progress import (
    ArchivedRecordResponse,
    CloneCreateRequest,
    CloneJobResponse,
    NextPhaseResponse,
    ProgressRecord,
    ProgressSummary,
)
from app.services.progress_store import ProgressStore
from app.tasks.clones import run_clone_job

router = APIRouter(prefix="/clones")


def get_store() -> ProgressStore:
    return ProgressStore()


def _summary(record: ProgressRecord) -> ProgressSummary:
    return ProgressSummary(
        page_slug=record.page_slug,
        source_url=record.source_url,
        status=record.status,
        next_phase=record.next_phase(),
        verification_attempts=record.verification_attempts,
        error_count=len(record.errors),
        last_updated_at=record.last_updated_at,
    )


def _raise_http(e: Exception) -> None:
    if isinstance(e, ProgressStoreError):
        if e.code == "not_found":
            raise HTTPException(status_code=404, detail=str(e))
        if e.code == "already_exists":
            raise HTTPException(status_code=409, detail=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    if isinstance(e, PreconditionError):
        raise HTTPException(status_code=409, detail=str(e))
    raise e


@router.post("", response_model=CloneJobResponse, status_code=202)
def create_clone(req: CloneCreateRequest, store: ProgressStore = Depends(get_store)):
    slug = req.page_slug or slug_from_url(req.source_url)
    if store.exists(slug) and not req.resume:
        raise HTTPException(
            status_code=409,
            detail=f"Clone '{slug}' already in progress. Resume it or discard it first.",
        )
    task = run_clone_job.delay(
        source_url=req.source_url,
        feature_name=req.feature_name,
        page_slug=slug,
        is_dynamic_route=req.is_dynamic_route,
        parent_route=req.parent_route,
        resume=req.resume,
    )
    return CloneJobResponse(task_id=task.id, page_slug=slug)


@router.get("", response_model=List[ProgressSummary])
def list_clones(store: ProgressStore = Depends(get_store)):
    return [_summary(record) for record in store.list_active()]


@router.get("/{slug}", response_model=ProgressRecord)
def get_clone(slug: str, store: ProgressStore = Depends(get_store)):
    record = store.read(slug)
    if not record:
        raise HTTPException(status_code=404, detail="Clone not found")
    return record


@router.get("/{slug}/next", response_model=NextPhaseResponse)
def get_next_phase(slug: str, store: ProgressStore = Depends(get_store)):
    record = store.read(slug)
    if not record:
        raise HTTPException(status_code=404, detail="Clone not found")
    return NextPhaseResponse(
        page_slug=slug,
        last_completed_phase=record.last_completed_phase(),
        next_phase=record.next_phase(),
    )


@router.post("/{slug}/archive", response_model=ArchivedRecordResponse)
def archive_clone(slug: str, store: ProgressStore = Depends(get_store)):
    try:
        archive_id = store.archive(slug)
    except (ProgressStoreError, PreconditionError) as e:
        _raise_http(e)
    archived = next(a for a in store.list_archived(slug) if a.id == archive_id)
    return ArchivedRecordResponse(
        id=archived.id,
        page_slug=archived.page_slug,
        archived_at=archived.archived_at,
        record=archived.record,
    )


@router.get("/{slug}/archive", response_model=List[ArchivedRecordResponse])
def list_archived_clones(slug: str, store: ProgressStore = Depends(get_store)):
    return [
        ArchivedRecordResponse(id=a.id, page_slug=a.page_slug, archived_at=a.archived_at, record=a.record)
        for a in store.list_archived(slug)
    ]


@router.delete("/{slug}", status_code=204)
def discard_clone(slug: str, store: ProgressStore = Depends(get_store)):
    try:
        store.discard(slug)
    except ProgressStoreError as e:
        _raise_http(e)
