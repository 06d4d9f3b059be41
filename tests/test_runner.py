"""Tests for the unattended clone driver and single-phase stepping."""
import dataclasses
from unittest.mock import AsyncMock, MagicMock
import pytest
from app.core.exceptions import OrchestratorStateError, PreconditionError
from app.core.runner import clone_page, resume_info, step_phase
from app.core.workflow import OverallStatus, PhaseKind, PhaseOutcome, PhaseState
from app.schemas.collaborators import PageAnalysis, PageCapture, VerificationReport


@pytest.mark.asyncio
async def test_clone_page_runs_every_phase(make_collaborators, clone_request, store, limiter):
    result = await clone_page(clone_request, make_collaborators(), store=store, rate_limiter=limiter)

    assert result.success is True
    assert result.status == OverallStatus.COMPLETED
    assert [r.phase for r in result.phases] == [
        PhaseKind.ANALYZE, PhaseKind.EXTRACT, PhaseKind.PLAN, PhaseKind.IMPLEMENT, PhaseKind.VERIFY,
    ]
    assert store.list_archived(clone_request.page_slug)


@pytest.mark.asyncio
async def test_clone_page_requires_implementer(make_collaborators, clone_request, store, limiter):
    with pytest.raises(PreconditionError):
        await clone_page(clone_request, make_collaborators(implementer=False), store=store, rate_limiter=limiter)


@pytest.mark.asyncio
async def test_clone_page_drives_verify_loop(make_collaborators, clone_request, store, limiter):
    """Each failed verification calls the fix hook before the next attempt."""
    collaborators = make_collaborators(verify_results=[
        VerificationReport(passed=False, fix_suggestions=["Fix hero spacing"]),
        VerificationReport(passed=True),
    ])
    hook = MagicMock()

    result = await clone_page(
        clone_request, collaborators, store=store, rate_limiter=limiter, on_verify_retry=hook,
    )

    assert result.success is True
    hook.assert_called_once()
    retry_result, attempts = hook.call_args.args
    assert retry_result.errors == ("Fix hero spacing",)
    assert attempts == 1


@pytest.mark.asyncio
async def test_clone_page_stops_at_verification_ceiling(make_collaborators, clone_request, store, limiter):
    collaborators = make_collaborators(verify_results=[
        VerificationReport(passed=False, fix_suggestions=["Fix hero spacing"]) for _ in range(3)
    ])

    result = await clone_page(
        clone_request, collaborators, store=store, rate_limiter=limiter, max_verification_attempts=3,
    )

    assert result.success is False
    assert result.status == OverallStatus.AWAITING_USER_INPUT
    assert collaborators.verifier.verify.await_count == 3
    assert store.read(clone_request.page_slug).verification_attempts == 3
    assert store.read(clone_request.page_slug).status == OverallStatus.AWAITING_USER_INPUT


@pytest.mark.asyncio
async def test_clone_page_honors_retry_strategy(make_collaborators, clone_request, store, limiter):
    """A timeout is retried after the strategy's delay and then succeeds."""
    collaborators = make_collaborators()
    collaborators.extractor.extract = AsyncMock(side_effect=[
        TimeoutError("Timed out waiting for page"),
        {"metadata": {"title": "Free AI Tools"}},
    ])
    sleep = AsyncMock()

    result = await clone_page(clone_request, collaborators, store=store, rate_limiter=limiter, sleep=sleep)

    assert result.success is True
    sleep.assert_awaited_once_with(5.0)


@pytest.mark.asyncio
async def test_clone_page_gives_up_after_max_attempts(make_collaborators, clone_request, store, limiter):
    collaborators = make_collaborators()
    collaborators.extractor.extract = AsyncMock(side_effect=TimeoutError("Timed out waiting for page"))
    sleep = AsyncMock()

    result = await clone_page(clone_request, collaborators, store=store, rate_limiter=limiter, sleep=sleep)

    assert result.success is False
    assert collaborators.extractor.extract.await_count == 3
    assert sleep.await_count == 2
    collaborators.planner.plan.assert_not_called()


@pytest.mark.asyncio
async def test_clone_page_resumes_where_it_stopped(make_collaborators, clone_request, store, limiter):
    collaborators = make_collaborators()
    collaborators.planner.plan = AsyncMock(side_effect=Exception("Build failed while planning"))
    first = await clone_page(clone_request, collaborators, store=store, rate_limiter=limiter)
    assert first.status == OverallStatus.FAILED

    # A failed clone is not silently restarted
    with pytest.raises(OrchestratorStateError):
        await clone_page(
            dataclasses.replace(clone_request, resume=True), make_collaborators(),
            store=store, rate_limiter=limiter,
        )


@pytest.mark.asyncio
async def test_captcha_run_can_be_resumed(make_collaborators, clone_request, store, limiter):
    """A clone stopped by bot detection stays resumable and finishes once the page loads."""
    blocked = make_collaborators()
    blocked.page_source.capture = AsyncMock(return_value=PageCapture(
        url=clone_request.source_url,
        snapshot="Please complete the CAPTCHA to continue",
        status_code=200,
    ))
    first = await clone_page(clone_request, blocked, store=store, rate_limiter=limiter)

    assert first.success is False
    assert first.status == OverallStatus.AWAITING_USER_INPUT
    assert store.read(clone_request.page_slug).status == OverallStatus.AWAITING_USER_INPUT

    second = await clone_page(
        dataclasses.replace(clone_request, resume=True), make_collaborators(),
        store=store, rate_limiter=limiter,
    )

    assert second.success is True
    assert second.status == OverallStatus.COMPLETED


@pytest.mark.asyncio
async def test_verification_ceiling_can_be_resumed(make_collaborators, clone_request, store, limiter):
    failing = make_collaborators(verify_results=[
        VerificationReport(passed=False, fix_suggestions=["Fix hero spacing"]) for _ in range(2)
    ])
    first = await clone_page(
        clone_request, failing, store=store, rate_limiter=limiter, max_verification_attempts=2,
    )
    assert first.status == OverallStatus.AWAITING_USER_INPUT

    collaborators = make_collaborators()
    second = await clone_page(
        dataclasses.replace(clone_request, resume=True), collaborators,
        store=store, rate_limiter=limiter, max_verification_attempts=2,
    )

    assert second.success is True
    # Earlier phases are not redone
    collaborators.planner.plan.assert_not_called()
    assert [r.phase for r in second.phases] == [PhaseKind.VERIFY]


@pytest.mark.asyncio
async def test_resume_after_pause(make_collaborators, clone_request, store, limiter):
    store.create(clone_request.source_url, clone_request.page_slug)
    store.update_phase(clone_request.page_slug, PhaseKind.ANALYZE, PhaseState.IN_PROGRESS)
    store.save_analysis(clone_request.page_slug, PageAnalysis(url=clone_request.source_url, title="Free AI Tools"))
    store.update_phase(clone_request.page_slug, PhaseKind.ANALYZE, PhaseState.COMPLETED)
    store.update_phase(clone_request.page_slug, PhaseKind.EXTRACT, PhaseState.IN_PROGRESS)
    store.set_status(clone_request.page_slug, OverallStatus.PAUSED)

    collaborators = make_collaborators()
    result = await clone_page(
        dataclasses.replace(clone_request, resume=True), collaborators, store=store, rate_limiter=limiter,
    )

    assert result.success is True
    # Analyze was already completed before the pause
    collaborators.analyzer.analyze.assert_not_called()
    assert result.phases[0].phase == PhaseKind.EXTRACT


@pytest.mark.asyncio
async def test_step_phase(make_collaborators, clone_request, store, limiter):
    store.create(clone_request.source_url, clone_request.page_slug)

    result = await step_phase(clone_request, make_collaborators(), PhaseKind.ANALYZE, store=store, rate_limiter=limiter)

    assert result.outcome == PhaseOutcome.SUCCESS
    assert store.read(clone_request.page_slug).state_of(PhaseKind.ANALYZE) == PhaseState.COMPLETED


def test_resume_info(store):
    assert resume_info("missing", store=store) is None
    store.create("https://example.com/free-ai-tools", "free-ai-tools")
    info = resume_info("free-ai-tools", store=store)
    assert info["next_phase"] == PhaseKind.ANALYZE
    assert info["last_completed_phase"] is None
    assert info["status"] == OverallStatus.IDLE
