"""
Durable progress records for clone operations.

One active record per page slug lives in `clone_progress`; completed records
are moved to `clone_progress_archive`. Every operation reads, modifies and
writes a single record inside one transaction, so a failed write leaves the
stored record exactly as it was.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, List, Optional, TypeVar, Union
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from app.core.exceptions import PreconditionError, ProgressStoreError
from app.core.workflow import OverallStatus, PhaseKind, PhaseState, phases_before, utcnow
from app.db.models import ArchivedCloneProgress, CloneProgress
from app.db.session import SessionLocal
from app.schemas.collaborators import ExtractedData, ImplementationPlan, PageAnalysis
from app.schemas.progress import ErrorLogEntry, ProgressRecord

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ArchivedRecord:
    id: str
    page_slug: str
    archived_at: datetime
    record: ProgressRecord


class ProgressStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def _transaction(self, write: bool = True) -> Iterator[Session]:
        db: Session = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            if write:
                raise ProgressStoreError(f"Progress store write failed: {e}", "write_error", retryable=True) from e
            raise ProgressStoreError(f"Progress store read failed: {e}", "parse_error", retryable=True) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _load(row: Union[CloneProgress, ArchivedCloneProgress]) -> ProgressRecord:
        try:
            return ProgressRecord.model_validate(row.record)
        except ValidationError as e:
            raise ProgressStoreError(
                f"Progress record validation failed for '{row.page_slug}': {e}",
                "validation_error",
            ) from e

    @staticmethod
    def _dump(row: CloneProgress, record: ProgressRecord) -> None:
        # Reassign the JSON column so the change is tracked
        row.record = record.model_dump(mode="json")
        row.status = record.status.value
        row.updated_at = record.last_updated_at

    @staticmethod
    def _not_found(slug: str) -> ProgressStoreError:
        return ProgressStoreError(f"Progress record not found for '{slug}'", "not_found")

    def _mutate(self, slug: str, change: Callable[[ProgressRecord], T]) -> T:
        with self._transaction() as db:
            row = db.get(CloneProgress, slug)
            if row is None:
                raise self._not_found(slug)
            record = self._load(row)
            result = change(record)
            record.last_updated_at = utcnow()
            self._dump(row, record)
            return result

    # -- lifecycle ---------------------------------------------------------

    def create(self, source_url: str, slug: str, resume: bool = False) -> ProgressRecord:
        """
        Create the record for a new clone.

        An existing record for the slug is an error unless `resume` is set, in
        which case the existing record is returned untouched.
        """
        with self._transaction() as db:
            row = db.get(CloneProgress, slug)
            if row is not None:
                if resume:
                    return self._load(row)
                raise ProgressStoreError(
                    f"Progress record already exists for '{slug}'", "already_exists"
                )
            now = utcnow()
            record = ProgressRecord(
                source_url=source_url,
                page_slug=slug,
                created_at=now,
                last_updated_at=now,
            )
            row = CloneProgress(page_slug=slug, source_url=source_url, created_at=now)
            self._dump(row, record)
            db.add(row)
        log.info("Created progress record", extra={"slug": slug, "phase": "-"})
        return record

    def read(self, slug: str) -> Optional[ProgressRecord]:
        with self._transaction(write=False) as db:
            row = db.get(CloneProgress, slug)
            return self._load(row) if row is not None else None

    def exists(self, slug: str) -> bool:
        with self._transaction(write=False) as db:
            return db.get(CloneProgress, slug) is not None

    def list_active(self) -> List[ProgressRecord]:
        with self._transaction(write=False) as db:
            rows = db.scalars(select(CloneProgress).order_by(CloneProgress.updated_at.desc())).all()
            return [self._load(row) for row in rows]

    def discard(self, slug: str) -> None:
        """Drop an active record so the clone can start over."""
        with self._transaction() as db:
            row = db.get(CloneProgress, slug)
            if row is None:
                raise self._not_found(slug)
            db.delete(row)
        log.info("Discarded progress record", extra={"slug": slug, "phase": "-"})

    def archive(self, slug: str) -> str:
        """Move a completed record to the archive. Returns the archive entry id."""
        with self._transaction() as db:
            row = db.get(CloneProgress, slug)
            if row is None:
                raise self._not_found(slug)
            record = self._load(row)
            if record.status != OverallStatus.COMPLETED:
                raise PreconditionError(
                    f"Cannot archive '{slug}' while its status is '{record.status.value}'"
                )
            now = utcnow()
            record.completed_at = record.completed_at or now
            record.last_updated_at = now
            archived = ArchivedCloneProgress(
                page_slug=slug,
                archived_at=now,
                record=record.model_dump(mode="json"),
            )
            db.add(archived)
            db.delete(row)
            db.flush()
            archive_id = archived.id
        log.info("Archived progress record", extra={"slug": slug, "phase": "-"})
        return archive_id

    def list_archived(self, slug: Optional[str] = None) -> List[ArchivedRecord]:
        with self._transaction(write=False) as db:
            query = select(ArchivedCloneProgress).order_by(ArchivedCloneProgress.archived_at.desc())
            if slug is not None:
                query = query.where(ArchivedCloneProgress.page_slug == slug)
            return [
                ArchivedRecord(
                    id=row.id,
                    page_slug=row.page_slug,
                    archived_at=row.archived_at,
                    record=self._load(row),
                )
                for row in db.scalars(query).all()
            ]

    # -- phase state -------------------------------------------------------

    def update_phase(
        self,
        slug: str,
        phase: PhaseKind,
        state: PhaseState,
        error_message: Optional[str] = None,
    ) -> ProgressRecord:
        def change(record: ProgressRecord) -> ProgressRecord:
            if state == PhaseState.IN_PROGRESS:
                blocking = [p.value for p in phases_before(phase) if record.state_of(p) != PhaseState.COMPLETED]
                if blocking:
                    raise PreconditionError(
                        f"Cannot start '{phase.value}' before {', '.join(blocking)} completed"
                    )
            now = utcnow()
            current = record.phases[phase]
            current.state = state
            current.error = error_message
            if state == PhaseState.IN_PROGRESS:
                current.started_at = current.started_at or now
                current.completed_at = None
                record.status = OverallStatus.RUNNING
            elif state in (PhaseState.COMPLETED, PhaseState.FAILED):
                current.completed_at = now
            return record

        return self._mutate(slug, change)

    def set_status(self, slug: str, status: OverallStatus) -> ProgressRecord:
        def change(record: ProgressRecord) -> ProgressRecord:
            record.status = status
            if status == OverallStatus.COMPLETED:
                record.completed_at = utcnow()
            return record

        return self._mutate(slug, change)

    # -- payloads ----------------------------------------------------------

    def save_analysis(self, slug: str, analysis: PageAnalysis) -> ProgressRecord:
        def change(record: ProgressRecord) -> ProgressRecord:
            record.page_analysis = analysis
            return record

        return self._mutate(slug, change)

    def save_extracted(self, slug: str, payload: ExtractedData) -> ProgressRecord:
        def change(record: ProgressRecord) -> ProgressRecord:
            record.extracted_data = payload
            return record

        return self._mutate(slug, change)

    def save_implementation_plan(self, slug: str, plan: ImplementationPlan) -> ProgressRecord:
        def change(record: ProgressRecord) -> ProgressRecord:
            record.implementation_plan = plan
            return record

        return self._mutate(slug, change)

    def append_created_file(self, slug: str, path: str) -> ProgressRecord:
        def change(record: ProgressRecord) -> ProgressRecord:
            if path not in record.files_created:
                record.files_created.append(path)
            return record

        return self._mutate(slug, change)

    def append_modified_file(self, slug: str, path: str) -> ProgressRecord:
        def change(record: ProgressRecord) -> ProgressRecord:
            if path not in record.files_modified:
                record.files_modified.append(path)
            return record

        return self._mutate(slug, change)

    def log_error(
        self,
        slug: str,
        phase: PhaseKind,
        message: str,
        resolution: Optional[str] = None,
    ) -> ProgressRecord:
        def change(record: ProgressRecord) -> ProgressRecord:
            record.errors.append(ErrorLogEntry(
                phase=phase,
                message=message,
                timestamp=utcnow(),
                resolution=resolution,
            ))
            return record

        return self._mutate(slug, change)

    def increment_verification_attempts(self, slug: str) -> int:
        def change(record: ProgressRecord) -> int:
            record.verification_attempts += 1
            return record.verification_attempts

        return self._mutate(slug, change)

    # -- resume helpers ----------------------------------------------------

    def last_completed_phase(self, slug: str) -> Optional[PhaseKind]:
        record = self.read(slug)
        return record.last_completed_phase() if record else None

    def next_phase(self, slug: str) -> Optional[PhaseKind]:
        record = self.read(slug)
        if record is None:
            return PhaseKind.ANALYZE
        return record.next_phase()
