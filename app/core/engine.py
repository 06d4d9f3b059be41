from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from app.agents.base import PhaseContext, coerce, maybe_await
from app.agents.ports import Collaborators
from app.agents.registry import AgentRegistry
from app.core.cancellation import CancellationToken
from app.core.classifier import (
    classify_error,
    detect_captcha,
    format_error_for_logging,
    is_blocking_status_code,
    user_message,
)
from app.core.config import settings
from app.core.errors import AcquisitionCode, AcquisitionFailure, ClassifiedError
from app.core.exceptions import (
    CaptureError,
    CloneCancelledError,
    OrchestratorStateError,
    PreconditionError,
    ProgressStoreError,
)
from app.core.rate_limiter import RateLimiter, get_rate_limiter
from app.core.recovery import RecoveryAction, resolve_recovery
from app.core.workflow import (
    HALTED_STATUSES,
    MAX_VERIFICATION_ATTEMPTS,
    PHASE_ORDER,
    CloneRequest,
    OverallStatus,
    PhaseKind,
    PhaseOutcome,
    PhaseResult,
    PhaseState,
)
from app.schemas.collaborators import (
    AnalyzeInput,
    ExtractedData,
    ExtractInput,
    ImplementationPlan,
    PageAnalysis,
    PageCapture,
    VerificationReport,
    VerifyInput,
)
from app.schemas.progress import ErrorLogEntry, ProgressRecord
from app.services.progress_store import ProgressStore

log = logging.getLogger(__name__)

MAX_ATTEMPTS_MARKER = "Max verification attempts reached"

_OUTCOME_ICONS = {
    PhaseOutcome.SUCCESS: "✓",
    PhaseOutcome.NEEDS_RETRY: "↻",
    PhaseOutcome.FAILED: "✗",
}


@dataclass
class CloneResult:
    success: bool
    page_slug: str
    source_url: str
    status: OverallStatus
    phases: List[PhaseResult]
    files_created: List[str]
    files_modified: List[str]
    errors: List[ErrorLogEntry]
    summary: str
    implementation_plan: Optional[ImplementationPlan] = None
    extracted_data: Optional[ExtractedData] = None
    page_analysis: Optional[PageAnalysis] = None
    archive_id: Optional[str] = None


class CloneOrchestrator:
    """
    Drives one clone through analyze -> extract -> plan -> implement -> verify.

    The ProgressStore record is the source of truth: every phase starts by
    re-reading it, and `self.record` is only ever replaced by what the store
    returned from a successful write. Phase failures never escape as
    exceptions; they are classified, logged to the record and returned as a
    failed or needs-retry PhaseResult.
    """

    def __init__(
        self,
        request: CloneRequest,
        collaborators: Collaborators,
        store: Optional[ProgressStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        registry: Optional[AgentRegistry] = None,
        max_verification_attempts: Optional[int] = None,
        summary_file_limit: Optional[int] = None,
        clone_base_url: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.request = request
        self.collaborators = collaborators
        self.store = store or ProgressStore()
        self.rate_limiter = rate_limiter or get_rate_limiter(request.source_url)
        self.registry = registry or AgentRegistry.default()
        self.max_verification_attempts = max_verification_attempts or MAX_VERIFICATION_ATTEMPTS
        self.summary_file_limit = summary_file_limit or settings.summary_file_limit
        self.clone_base_url = clone_base_url or settings.clone_base_url
        self.cancel_token = cancel_token or CancellationToken()
        self.history: List[PhaseResult] = []
        self.record: Optional[ProgressRecord] = None
        self._source_capture: Optional[PageCapture] = None
        self.last_verification_attempt: Optional[int] = None
        # Attempts made before the last resume do not count toward the ceiling
        self._verification_floor = 0

    @property
    def slug(self) -> str:
        return self.request.page_slug

    @property
    def status(self) -> OverallStatus:
        return self.record.status if self.record else OverallStatus.IDLE

    def _extra(self, phase: Optional[PhaseKind] = None) -> Dict[str, Any]:
        return {"slug": self.slug, "phase": phase.value if phase else "-"}

    # -- persistence -------------------------------------------------------

    async def _persist(self, fn: Callable[..., Any], *args: Any, check_cancel: bool = True) -> Any:
        if check_cancel:
            self.cancel_token.raise_if_cancelled()
        result = await asyncio.to_thread(fn, *args)
        if isinstance(result, ProgressRecord):
            self.record = result
        return result

    async def _refresh(self, check_cancel: bool = True) -> ProgressRecord:
        record = await self._persist(self.store.read, self.slug, check_cancel=check_cancel)
        if record is None:
            raise OrchestratorStateError(
                f"No progress record for '{self.slug}'. Call initialize() first."
            )
        return record

    async def initialize(self) -> ProgressRecord:
        """Load the existing record when resuming, otherwise create a new one."""
        log.info(f"Initializing clone of {self.request.source_url}", extra=self._extra())
        if self.request.resume:
            existing = await self._persist(self.store.read, self.slug)
            if existing is not None:
                log.info(
                    f"Resumed from existing progress record (next phase: {existing.next_phase()})",
                    extra=self._extra(),
                )
                return existing
            log.error(
                "Resume requested but no progress record exists; starting fresh",
                extra=self._extra(),
            )
        return await self._persist(self.store.create, self.request.source_url, self.slug)

    # -- phase template ----------------------------------------------------

    def _context(self) -> PhaseContext:
        return PhaseContext(request=self.request, record=self.record, collaborators=self.collaborators)

    async def _run_phase(
        self,
        phase: PhaseKind,
        work: Callable[[PhaseContext], Awaitable[PhaseResult]],
    ) -> PhaseResult:
        record = await self._refresh()
        if record.status in HALTED_STATUSES:
            raise OrchestratorStateError(
                f"Clone '{self.slug}' is {record.status.value}; no further phases accepted"
            )
        log.info(f"Starting {phase.value} phase", extra=self._extra(phase))
        try:
            await self._persist(self.store.update_phase, self.slug, phase, PhaseState.IN_PROGRESS)
            return await work(self._context())
        except CloneCancelledError:
            await self._halt_cancelled(phase)
            raise
        except Exception as e:
            return await self._handle_phase_error(phase, e)

    def _succeed(self, phase: PhaseKind, payload: Any) -> PhaseResult:
        result = PhaseResult(phase, PhaseOutcome.SUCCESS, payload)
        self.history.append(result)
        log.info(f"Finished {phase.value} phase", extra=self._extra(phase))
        return result

    async def _complete_phase(self, phase: PhaseKind) -> None:
        await self._persist(self.store.update_phase, self.slug, phase, PhaseState.COMPLETED)

    async def _handle_phase_error(self, phase: PhaseKind, error: Exception) -> PhaseResult:
        classified = classify_error(error, phase=phase, url=self.request.source_url)
        return await self._handle_classified(phase, classified)

    async def _handle_classified(self, phase: PhaseKind, classified: ClassifiedError) -> PhaseResult:
        recovery = resolve_recovery(classified)
        message = user_message(classified)
        log.warning(
            f"Phase {phase.value} failed ({classified.domain.value}/{classified.code.value}); "
            f"recovery: {recovery.action.value}",
            extra={**self._extra(phase), "error": format_error_for_logging(classified, phase=phase.value)},
        )

        new_status = None
        if recovery.action == RecoveryAction.PAUSE:
            new_status = OverallStatus.AWAITING_USER_INPUT
        elif recovery.action in (RecoveryAction.ABORT, RecoveryAction.SKIP):
            new_status = OverallStatus.FAILED

        try:
            await self._persist(self.store.log_error, self.slug, phase, message, recovery.user_message, check_cancel=False)
            await self._persist(self.store.update_phase, self.slug, phase, PhaseState.FAILED, message, check_cancel=False)
            if new_status is not None:
                await self._persist(self.store.set_status, self.slug, new_status, check_cancel=False)
        except ProgressStoreError:
            log.exception("Could not record phase failure", extra=self._extra(phase))

        outcome = PhaseOutcome.NEEDS_RETRY if recovery.action == RecoveryAction.RETRY else PhaseOutcome.FAILED
        result = PhaseResult(
            phase,
            outcome,
            payload={"error": classified.to_response(), "recovery": recovery.to_dict()},
            errors=(message,),
        )
        self.history.append(result)
        return result

    async def _halt_cancelled(self, phase: PhaseKind) -> None:
        log.warning(f"Cancelled during {phase.value} phase; pausing clone", extra=self._extra(phase))
        try:
            await self._persist(self.store.set_status, self.slug, OverallStatus.PAUSED, check_cancel=False)
        except ProgressStoreError:
            log.exception("Could not record pause after cancellation", extra=self._extra(phase))

    # -- capture -----------------------------------------------------------

    def clone_url(self, record: ProgressRecord) -> str:
        route = record.implementation_plan.page_route if record.implementation_plan else self.slug
        return f"{self.clone_base_url.rstrip('/')}/{route.lstrip('/')}"

    async def _capture(self, url: str, limiter: Optional[RateLimiter] = None) -> PageCapture:
        """Fetch a page through the page source, paced by the limiter for its host."""
        limiter = limiter or self.rate_limiter
        source = self.collaborators.page_source
        if source is None:
            raise PreconditionError(f"No page source configured to capture {url}")
        self.cancel_token.raise_if_cancelled()
        await limiter.wait_before_request()
        self.cancel_token.raise_if_cancelled()
        try:
            capture = coerce(PageCapture, await maybe_await(source.capture(url)))
        except CaptureError as e:
            if is_blocking_status_code(e.status_code):
                limiter.record_blocking_signal(e.status_code)
            raise
        if is_blocking_status_code(capture.status_code):
            limiter.record_blocking_signal(capture.status_code)
        elif detect_captcha(capture.snapshot or capture.html):
            limiter.record_blocking_signal("captcha")
        return capture

    async def _source_page(self) -> PageCapture:
        if self._source_capture is None:
            self._source_capture = await self._capture(self.request.source_url)
        return self._source_capture

    # -- phases ------------------------------------------------------------

    async def execute_analyze_phase(self, phase_input: Optional[AnalyzeInput] = None) -> PhaseResult:
        """
        Analyze the source page structure.

        Without input the source page is captured first. A capture that shows
        bot-detection signatures goes straight to the captcha classification.
        """
        agent = self.registry.get(PhaseKind.ANALYZE)

        async def work(ctx: PhaseContext) -> PhaseResult:
            data = phase_input
            if data is None:
                capture = await self._capture(self.request.source_url)
                self._source_capture = capture
                data = AnalyzeInput.from_capture(capture)
            if detect_captcha(data.snapshot):
                return await self._handle_classified(PhaseKind.ANALYZE, AcquisitionFailure(
                    AcquisitionCode.CAPTCHA,
                    "CAPTCHA or bot detection encountered",
                    False,
                    self.request.source_url,
                ))
            agent.check_preconditions(ctx)
            self.cancel_token.raise_if_cancelled()
            analysis = await agent.run(ctx, data)
            await self._persist(self.store.save_analysis, self.slug, analysis)
            await self._complete_phase(PhaseKind.ANALYZE)
            return self._succeed(PhaseKind.ANALYZE, analysis)

        return await self._run_phase(PhaseKind.ANALYZE, work)

    async def execute_extract_phase(self, phase_input: Optional[ExtractInput] = None) -> PhaseResult:
        agent = self.registry.get(PhaseKind.EXTRACT)

        async def work(ctx: PhaseContext) -> PhaseResult:
            data = phase_input
            if data is None:
                capture = await self._source_page()
                data = ExtractInput(html=capture.html)
            agent.check_preconditions(ctx)
            self.cancel_token.raise_if_cancelled()
            extracted = await agent.run(ctx, data)
            await self._persist(self.store.save_extracted, self.slug, extracted)
            await self._complete_phase(PhaseKind.EXTRACT)
            return self._succeed(PhaseKind.EXTRACT, extracted)

        return await self._run_phase(PhaseKind.EXTRACT, work)

    async def execute_plan_phase(self) -> PhaseResult:
        agent = self.registry.get(PhaseKind.PLAN)

        async def work(ctx: PhaseContext) -> PhaseResult:
            agent.check_preconditions(ctx)
            self.cancel_token.raise_if_cancelled()
            plan = await agent.run(ctx)
            await self._persist(self.store.save_implementation_plan, self.slug, plan)
            await self._complete_phase(PhaseKind.PLAN)
            log.info(
                f"Planned {len(plan.components)} components, {len(plan.data_files)} data files",
                extra=self._extra(PhaseKind.PLAN),
            )
            return self._succeed(PhaseKind.PLAN, plan)

        return await self._run_phase(PhaseKind.PLAN, work)

    async def execute_implement_phase(self) -> PhaseResult:
        """
        Materialize the plan through the injected implementer.

        Without an implementer the plan and instructions are returned and the
        phase stays in progress until `record_implementation` is called.
        """
        agent = self.registry.get(PhaseKind.IMPLEMENT)

        async def work(ctx: PhaseContext) -> PhaseResult:
            agent.check_preconditions(ctx)
            self.cancel_token.raise_if_cancelled()
            output = await agent.run(ctx)
            if output is None:
                log.info("Implementation handed to caller", extra=self._extra(PhaseKind.IMPLEMENT))
                return self._succeed(PhaseKind.IMPLEMENT, agent.instructions(ctx))
            await self._record_files(output.files_created, output.files_modified)
            await self._complete_phase(PhaseKind.IMPLEMENT)
            return self._succeed(PhaseKind.IMPLEMENT, output)

        return await self._run_phase(PhaseKind.IMPLEMENT, work)

    async def _record_files(self, files_created: Sequence[str], files_modified: Sequence[str]) -> None:
        for path in files_created:
            await self._persist(self.store.append_created_file, self.slug, path)
        for path in files_modified:
            await self._persist(self.store.append_modified_file, self.slug, path)

    async def record_implementation(
        self,
        files_created: Sequence[str],
        files_modified: Sequence[str],
    ) -> ProgressRecord:
        """Record files the caller produced from the plan and complete the implement phase."""
        record = await self._refresh()
        if record.state_of(PhaseKind.PLAN) != PhaseState.COMPLETED:
            raise PreconditionError("Plan phase has not completed; nothing to implement yet.")
        if record.state_of(PhaseKind.IMPLEMENT) != PhaseState.IN_PROGRESS:
            await self._persist(self.store.update_phase, self.slug, PhaseKind.IMPLEMENT, PhaseState.IN_PROGRESS)
        await self._record_files(files_created, files_modified)
        await self._complete_phase(PhaseKind.IMPLEMENT)
        log.info(
            f"Implement phase completed - {len(files_created)} files created, "
            f"{len(files_modified)} files modified",
            extra=self._extra(PhaseKind.IMPLEMENT),
        )
        return self.record

    async def _exhaust_verification(
        self,
        report: Optional[VerificationReport],
        suggestions: Sequence[str],
    ) -> PhaseResult:
        message = f"{MAX_ATTEMPTS_MARKER}. User intervention required."
        await self._persist(self.store.log_error, self.slug, PhaseKind.VERIFY, message,
                            "Review fix suggestions, then resume the clone", check_cancel=False)
        await self._persist(self.store.update_phase, self.slug, PhaseKind.VERIFY, PhaseState.FAILED, message,
                            check_cancel=False)
        await self._persist(self.store.set_status, self.slug, OverallStatus.AWAITING_USER_INPUT, check_cancel=False)
        result = PhaseResult(
            PhaseKind.VERIFY,
            PhaseOutcome.FAILED,
            report,
            (MAX_ATTEMPTS_MARKER,) + tuple(suggestions),
        )
        self.history.append(result)
        log.warning("Verification failed - max attempts reached", extra=self._extra(PhaseKind.VERIFY))
        return result

    def _attempts_used(self, attempts: int) -> int:
        return attempts - self._verification_floor

    async def execute_verify_phase(self, phase_input: Optional[VerifyInput] = None) -> PhaseResult:
        """
        Run one verification attempt.

        The attempt counter is persisted before the verifier runs. A failed
        attempt below the ceiling returns NEEDS_RETRY with fix suggestions; the
        caller applies fixes and calls again. At the ceiling the clone moves to
        awaiting_user_input, whether the last attempt failed its report or
        raised. Once the ceiling is reached the verifier is not called again
        until the clone is resumed.
        """
        agent = self.registry.get(PhaseKind.VERIFY)
        data = phase_input or VerifyInput()

        async def work(ctx: PhaseContext) -> PhaseResult:
            if self._attempts_used(ctx.record.verification_attempts) >= self.max_verification_attempts:
                return await self._exhaust_verification(None, ())
            agent.check_preconditions(ctx)
            source_snapshot = data.source_snapshot
            if source_snapshot is None:
                capture = await self._source_page()
                source_snapshot = capture.snapshot or capture.html
            clone_snapshot = data.clone_snapshot
            if clone_snapshot is None:
                clone_url = self.clone_url(ctx.record)
                capture = await self._capture(clone_url, get_rate_limiter(clone_url))
                clone_snapshot = capture.snapshot or capture.html

            attempt = await self._persist(self.store.increment_verification_attempts, self.slug)
            self.last_verification_attempt = attempt
            used = self._attempts_used(attempt)
            log.info(
                f"Verification attempt {used}/{self.max_verification_attempts}",
                extra=self._extra(PhaseKind.VERIFY),
            )
            self.cancel_token.raise_if_cancelled()
            try:
                report = await agent.run(ctx, source_snapshot, clone_snapshot, attempt, data)
            except CloneCancelledError:
                raise
            except Exception as e:
                result = await self._handle_phase_error(PhaseKind.VERIFY, e)
                if used >= self.max_verification_attempts and self.status not in HALTED_STATUSES:
                    return await self._exhaust_verification(None, result.errors)
                return result

            if report.passed:
                await self._complete_phase(PhaseKind.VERIFY)
                return self._succeed(PhaseKind.VERIFY, report)

            suggestions = tuple(report.fix_suggestions)
            if report.can_retry and used < self.max_verification_attempts:
                result = PhaseResult(PhaseKind.VERIFY, PhaseOutcome.NEEDS_RETRY, report, suggestions)
                self.history.append(result)
                log.info(
                    f"Verification needs retry - attempt {used}/{self.max_verification_attempts}",
                    extra=self._extra(PhaseKind.VERIFY),
                )
                return result

            return await self._exhaust_verification(report, suggestions)

        return await self._run_phase(PhaseKind.VERIFY, work)

    async def execute_phase(self, phase: PhaseKind, phase_input: Any = None) -> PhaseResult:
        if phase == PhaseKind.ANALYZE:
            return await self.execute_analyze_phase(phase_input)
        if phase == PhaseKind.EXTRACT:
            return await self.execute_extract_phase(phase_input)
        if phase == PhaseKind.PLAN:
            return await self.execute_plan_phase()
        if phase == PhaseKind.IMPLEMENT:
            return await self.execute_implement_phase()
        return await self.execute_verify_phase(phase_input)

    # -- status ------------------------------------------------------------

    async def next_phase(self) -> Optional[PhaseKind]:
        record = await self._refresh()
        return record.next_phase()

    async def pause(self) -> ProgressRecord:
        record = await self._refresh(check_cancel=False)
        if record.status not in (OverallStatus.IDLE, OverallStatus.RUNNING):
            raise OrchestratorStateError(f"Cannot pause a clone that is {record.status.value}")
        log.info("Clone paused", extra=self._extra())
        return await self._persist(self.store.set_status, self.slug, OverallStatus.PAUSED, check_cancel=False)

    async def resume(self) -> ProgressRecord:
        """Explicit intervention: reopen a paused or awaiting-input clone."""
        record = await self._refresh(check_cancel=False)
        if record.status not in (OverallStatus.PAUSED, OverallStatus.AWAITING_USER_INPUT):
            raise OrchestratorStateError(f"Cannot resume a clone that is {record.status.value}")
        if self.cancel_token.cancelled:
            self.cancel_token = CancellationToken()
        if record.status == OverallStatus.AWAITING_USER_INPUT:
            self._verification_floor = record.verification_attempts
        log.info(f"Clone resumed from {record.status.value}", extra=self._extra())
        return await self._persist(self.store.set_status, self.slug, OverallStatus.RUNNING)

    # -- completion --------------------------------------------------------

    def _latest_results(self) -> Dict[PhaseKind, PhaseResult]:
        latest: Dict[PhaseKind, PhaseResult] = {}
        for result in self.history:
            latest[result.phase] = result
        return latest

    async def complete(self) -> CloneResult:
        """
        Finish the clone: archive on success, mark failed otherwise, and build
        the summary. A clone waiting on the user (paused or awaiting input)
        keeps that status so it can still be resumed. Phase states are left
        untouched.
        """
        record = await self._refresh(check_cancel=False)
        latest = self._latest_results()
        success = all(r.ok for r in latest.values()) and record.all_completed()

        archive_id = None
        if success:
            record = await self._persist(self.store.set_status, self.slug, OverallStatus.COMPLETED, check_cancel=False)
            try:
                archive_id = await self._persist(self.store.archive, self.slug, check_cancel=False)
                log.info("Progress record archived", extra=self._extra())
            except (ProgressStoreError, PreconditionError) as e:
                log.warning(f"Failed to archive progress record: {e}", extra=self._extra())
        elif record.status not in (OverallStatus.AWAITING_USER_INPUT, OverallStatus.PAUSED):
            record = await self._persist(self.store.set_status, self.slug, OverallStatus.FAILED, check_cancel=False)

        return CloneResult(
            success=success,
            page_slug=self.slug,
            source_url=self.request.source_url,
            status=record.status,
            phases=list(self.history),
            files_created=list(record.files_created),
            files_modified=list(record.files_modified),
            errors=list(record.errors),
            summary=self.build_summary(record, success),
            implementation_plan=record.implementation_plan,
            extracted_data=record.extracted_data,
            page_analysis=record.page_analysis,
            archive_id=archive_id,
        )

    def _file_lines(self, label: str, paths: List[str]) -> List[str]:
        if not paths:
            return []
        lines = ["", f"{label}: {len(paths)}"]
        for path in paths[:self.summary_file_limit]:
            lines.append(f"  - {path}")
        if len(paths) > self.summary_file_limit:
            lines.append(f"  ... and {len(paths) - self.summary_file_limit} more")
        return lines

    def build_summary(self, record: ProgressRecord, success: bool) -> str:
        latest = self._latest_results()
        lines = [
            "=== Page Cloning Complete ===" if success else "=== Page Cloning Failed ===",
            f"Source: {self.request.source_url}",
            f"Feature: {self.request.feature_name}",
            f"Page Slug: {self.slug}",
            "",
            "Phase results:",
        ]
        for phase in PHASE_ORDER:
            result = latest.get(phase)
            if result is None:
                lines.append(f"  - {phase.value}: {record.state_of(phase).value}")
                continue
            lines.append(f"  {_OUTCOME_ICONS[result.outcome]} {phase.value}: {result.outcome.value}")
            if not result.ok:
                for error in result.errors:
                    lines.append(f"      - {error}")
        lines.extend(self._file_lines("Files created", record.files_created))
        lines.extend(self._file_lines("Files modified", record.files_modified))
        lines.append("=============================")
        return "\n".join(lines)


async def create_orchestrator(request: CloneRequest, collaborators: Collaborators, **kwargs: Any) -> CloneOrchestrator:
    orchestrator = CloneOrchestrator(request, collaborators, **kwargs)
    await orchestrator.initialize()
    return orchestrator
