"""
Drivers around CloneOrchestrator.

`clone_page` runs a whole clone unattended (used by the worker task);
`step_phase` runs a single phase for callers that interleave their own
work, such as applying fix suggestions between verification attempts.
"""
from __future__ import annotations
import asyncio
import dataclasses
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from app.agents.base import maybe_await
from app.agents.ports import Collaborators
from app.core.engine import CloneOrchestrator, CloneResult, create_orchestrator
from app.core.exceptions import OrchestratorStateError, PreconditionError
from app.core.workflow import (
    PHASE_ORDER,
    CloneRequest,
    OverallStatus,
    PhaseKind,
    PhaseOutcome,
    PhaseResult,
    PhaseState,
)
from app.services.progress_store import ProgressStore

log = logging.getLogger(__name__)

VerifyRetryHook = Callable[[PhaseResult, int], Any]


def _recovery_of(result: PhaseResult) -> Dict[str, Any]:
    if isinstance(result.payload, dict):
        return result.payload.get("recovery") or {}
    return {}


async def run_phase_with_recovery(
    orchestrator: CloneOrchestrator,
    phase: PhaseKind,
    phase_input: Any = None,
    on_verify_retry: Optional[VerifyRetryHook] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PhaseResult:
    """
    Execute a phase, honoring retry strategies until it succeeds or gives up.

    A classified failure with a retry strategy is re-run after its delay, up to
    the strategy's max_attempts. A failed verification report is re-run until
    the orchestrator's attempt ceiling turns it into a failure.
    """
    error_attempts = 0
    while True:
        result = await orchestrator.execute_phase(phase, phase_input)
        if result.outcome != PhaseOutcome.NEEDS_RETRY:
            return result

        recovery = _recovery_of(result)
        if recovery:
            error_attempts += 1
            max_attempts = recovery.get("max_attempts") or 1
            if error_attempts >= max_attempts:
                log.warning(
                    f"Giving up on {phase.value} after {error_attempts} attempts",
                    extra={"slug": orchestrator.slug, "phase": phase.value},
                )
                return result
            delay_ms = recovery.get("delay_ms") or 0
            log.info(
                f"Retrying {phase.value} in {delay_ms}ms ({error_attempts}/{max_attempts})",
                extra={"slug": orchestrator.slug, "phase": phase.value},
            )
            await sleep(delay_ms / 1000)
            continue

        # Verification report asked for another attempt
        if on_verify_retry is not None:
            await maybe_await(on_verify_retry(result, orchestrator.last_verification_attempt))


async def clone_page(
    request: CloneRequest,
    collaborators: Collaborators,
    store: Optional[ProgressStore] = None,
    phase_inputs: Optional[Dict[PhaseKind, Any]] = None,
    on_verify_retry: Optional[VerifyRetryHook] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **orchestrator_kwargs: Any,
) -> CloneResult:
    """Run every outstanding phase, then complete the clone."""
    if collaborators.implementer is None:
        raise PreconditionError("Unattended cloning needs an implementer collaborator")
    phase_inputs = phase_inputs or {}

    orchestrator = await create_orchestrator(request, collaborators, store=store, **orchestrator_kwargs)
    if orchestrator.status in (OverallStatus.PAUSED, OverallStatus.AWAITING_USER_INPUT):
        # A resume request is the operator's go-ahead
        await orchestrator.resume()
    elif orchestrator.status in (OverallStatus.COMPLETED, OverallStatus.FAILED):
        raise OrchestratorStateError(
            f"Clone '{request.page_slug}' already {orchestrator.status.value}; discard it to start over"
        )

    for phase in PHASE_ORDER:
        if orchestrator.record.state_of(phase) == PhaseState.COMPLETED:
            continue
        result = await run_phase_with_recovery(
            orchestrator,
            phase,
            phase_inputs.get(phase),
            on_verify_retry=on_verify_retry,
            sleep=sleep,
        )
        if not result.ok:
            break

    result = await orchestrator.complete()
    log.info(
        f"Clone finished: {result.status.value}",
        extra={"slug": request.page_slug, "phase": "-"},
    )
    return result


async def step_phase(
    request: CloneRequest,
    collaborators: Collaborators,
    phase: PhaseKind,
    phase_input: Any = None,
    store: Optional[ProgressStore] = None,
    **orchestrator_kwargs: Any,
) -> PhaseResult:
    """Run one phase against the stored record for the request's slug."""
    orchestrator = await create_orchestrator(
        dataclasses.replace(request, resume=True),
        collaborators,
        store=store,
        **orchestrator_kwargs,
    )
    return await orchestrator.execute_phase(phase, phase_input)


def resume_info(slug: str, store: Optional[ProgressStore] = None) -> Optional[Dict[str, Any]]:
    """Where a clone stands and the payloads saved so far, or None if there is no record."""
    store = store or ProgressStore()
    record = store.read(slug)
    if record is None:
        return None
    return {
        "page_slug": record.page_slug,
        "source_url": record.source_url,
        "status": record.status,
        "last_completed_phase": record.last_completed_phase(),
        "next_phase": record.next_phase(),
        "verification_attempts": record.verification_attempts,
        "page_analysis": record.page_analysis,
        "extracted_data": record.extracted_data,
        "implementation_plan": record.implementation_plan,
    }
