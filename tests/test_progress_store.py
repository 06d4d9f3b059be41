"""Tests for the SQLite-backed ProgressStore."""
import pytest
from app.core.exceptions import PreconditionError, ProgressStoreError
from app.core.workflow import OverallStatus, PHASE_ORDER, PhaseKind, PhaseState
from app.schemas.collaborators import ExtractedData, ImplementationPlan, PageAnalysis

URL = "https://example.com/free-ai-tools"
SLUG = "free-ai-tools"


def complete_all(store, slug=SLUG):
    for phase in PHASE_ORDER:
        store.update_phase(slug, phase, PhaseState.IN_PROGRESS)
        store.update_phase(slug, phase, PhaseState.COMPLETED)


def test_create_initializes_all_phases_pending(store):
    record = store.create(URL, SLUG)
    assert record.status == OverallStatus.IDLE
    assert set(record.phases) == set(PHASE_ORDER)
    assert all(record.state_of(p) == PhaseState.PENDING for p in PHASE_ORDER)
    assert record.verification_attempts == 0
    assert store.exists(SLUG)


def test_create_duplicate_rejected_unless_resume(store):
    store.create(URL, SLUG)
    store.update_phase(SLUG, PhaseKind.ANALYZE, PhaseState.IN_PROGRESS)

    with pytest.raises(ProgressStoreError) as exc:
        store.create(URL, SLUG)
    assert exc.value.code == "already_exists"

    resumed = store.create(URL, SLUG, resume=True)
    assert resumed.state_of(PhaseKind.ANALYZE) == PhaseState.IN_PROGRESS


def test_read_missing_returns_none(store):
    assert store.read("nope") is None
    assert not store.exists("nope")


def test_mutations_on_missing_record_raise_not_found(store):
    with pytest.raises(ProgressStoreError) as exc:
        store.update_phase("nope", PhaseKind.ANALYZE, PhaseState.IN_PROGRESS)
    assert exc.value.code == "not_found"


def test_resume_round_trip(store):
    """A record written by one store instance reads back identically through another."""
    store.create(URL, SLUG)
    store.update_phase(SLUG, PhaseKind.ANALYZE, PhaseState.IN_PROGRESS)
    store.save_analysis(SLUG, PageAnalysis(url=URL, title="Free AI Tools", sections=[{"type": "hero"}]))
    store.update_phase(SLUG, PhaseKind.ANALYZE, PhaseState.COMPLETED)
    store.update_phase(SLUG, PhaseKind.EXTRACT, PhaseState.IN_PROGRESS)
    store.save_extracted(SLUG, ExtractedData(metadata={"title": "Free AI Tools"}))
    store.update_phase(SLUG, PhaseKind.EXTRACT, PhaseState.COMPLETED)
    store.log_error(SLUG, PhaseKind.EXTRACT, "flaky", "retried")
    before = store.read(SLUG)

    from app.services.progress_store import ProgressStore
    reopened = ProgressStore(store._session_factory).read(SLUG)
    assert reopened == before
    assert reopened.last_completed_phase() == PhaseKind.EXTRACT
    assert reopened.next_phase() == PhaseKind.PLAN
    assert reopened.page_analysis.sections == [{"type": "hero"}]
    assert reopened.errors[0].resolution == "retried"


def test_in_progress_requires_earlier_phases(store):
    store.create(URL, SLUG)
    with pytest.raises(PreconditionError):
        store.update_phase(SLUG, PhaseKind.PLAN, PhaseState.IN_PROGRESS)
    assert store.read(SLUG).state_of(PhaseKind.PLAN) == PhaseState.PENDING


def test_update_phase_timestamps_and_status(store):
    store.create(URL, SLUG)
    started = store.update_phase(SLUG, PhaseKind.ANALYZE, PhaseState.IN_PROGRESS)
    assert started.status == OverallStatus.RUNNING
    first_start = started.phases[PhaseKind.ANALYZE].started_at
    assert first_start is not None

    failed = store.update_phase(SLUG, PhaseKind.ANALYZE, PhaseState.FAILED, "boom")
    assert failed.phases[PhaseKind.ANALYZE].error == "boom"
    assert failed.phases[PhaseKind.ANALYZE].completed_at is not None

    again = store.update_phase(SLUG, PhaseKind.ANALYZE, PhaseState.IN_PROGRESS)
    assert again.phases[PhaseKind.ANALYZE].started_at == first_start
    assert again.phases[PhaseKind.ANALYZE].error is None
    assert again.last_updated_at >= failed.last_updated_at


def test_append_file_is_idempotent(store):
    store.create(URL, SLUG)
    store.append_created_file(SLUG, "app/page.tsx")
    store.append_created_file(SLUG, "app/page.tsx")
    store.append_modified_file(SLUG, "next.config.js")
    record = store.append_modified_file(SLUG, "next.config.js")
    assert record.files_created == ["app/page.tsx"]
    assert record.files_modified == ["next.config.js"]


def test_verification_attempts_monotonic(store):
    store.create(URL, SLUG)
    counts = [store.increment_verification_attempts(SLUG) for _ in range(4)]
    assert counts == [1, 2, 3, 4]
    assert store.read(SLUG).verification_attempts == 4


def test_save_plan(store):
    store.create(URL, SLUG)
    record = store.save_implementation_plan(SLUG, ImplementationPlan(page_route="/free-ai-tools"))
    assert record.implementation_plan.page_route == "/free-ai-tools"


def test_archive_rejected_unless_completed(store):
    store.create(URL, SLUG)
    store.set_status(SLUG, OverallStatus.RUNNING)
    with pytest.raises(PreconditionError):
        store.archive(SLUG)
    assert store.exists(SLUG)


def test_archive_moves_record(store):
    store.create(URL, SLUG)
    complete_all(store)
    store.set_status(SLUG, OverallStatus.COMPLETED)

    archive_id = store.archive(SLUG)

    assert not store.exists(SLUG)
    archived = store.list_archived(SLUG)
    assert [a.id for a in archived] == [archive_id]
    assert archived[0].record.status == OverallStatus.COMPLETED
    assert archived[0].record.completed_at is not None

    # A new clone of the same slug starts from zero
    fresh = store.create(URL, SLUG)
    assert fresh.verification_attempts == 0


def test_list_active_and_discard(store):
    store.create(URL, SLUG)
    store.create("https://example.com/other", "other")
    assert {r.page_slug for r in store.list_active()} == {SLUG, "other"}

    store.discard("other")
    assert [r.page_slug for r in store.list_active()] == [SLUG]
    with pytest.raises(ProgressStoreError):
        store.discard("other")


def test_next_phase_helpers(store):
    assert store.next_phase(SLUG) == PhaseKind.ANALYZE
    assert store.last_completed_phase(SLUG) is None
    store.create(URL, SLUG)
    complete_all(store)
    assert store.next_phase(SLUG) is None
    assert store.last_completed_phase(SLUG) == PhaseKind.VERIFY


def test_corrupt_record_raises_validation_error(store):
    from app.db.models import CloneProgress

    store.create(URL, SLUG)
    with store._session_factory() as db:
        row = db.get(CloneProgress, SLUG)
        row.record = {"source_url": URL}
        db.commit()

    with pytest.raises(ProgressStoreError) as exc:
        store.read(SLUG)
    assert exc.value.code == "validation_error"


def test_failed_write_leaves_record_unchanged(store):
    """An exception inside a mutation rolls the whole change back."""
    store.create(URL, SLUG)
    before = store.read(SLUG)

    def explode(record):
        record.files_created.append("half-written.tsx")
        raise RuntimeError("disk full")

    with pytest.raises(RuntimeError):
        store._mutate(SLUG, explode)
    assert store.read(SLUG) == before


def test_corrupt_archive_entry_raises_validation_error(store):
    from app.db.models import ArchivedCloneProgress

    store.create(URL, SLUG)
    store.set_status(SLUG, OverallStatus.COMPLETED)
    archive_id = store.archive(SLUG)
    with store._session_factory() as db:
        row = db.get(ArchivedCloneProgress, archive_id)
        row.record = {"page_slug": SLUG}
        db.commit()

    with pytest.raises(ProgressStoreError) as exc:
        store.list_archived(SLUG)
    assert exc.value.code == "validation_error"


def test_database_failures_labelled_by_operation(tmp_path):
    from app.db.session import make_engine, make_session_factory
    from app.services.progress_store import ProgressStore

    # No tables created: every statement fails inside SQLAlchemy
    engine = make_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    bare = ProgressStore(make_session_factory(engine))

    with pytest.raises(ProgressStoreError) as read_exc:
        bare.read(SLUG)
    assert read_exc.value.code == "parse_error"

    with pytest.raises(ProgressStoreError) as write_exc:
        bare.create(URL, SLUG)
    assert write_exc.value.code == "write_error"
    engine.dispose()
