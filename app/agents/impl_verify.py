from app.agents.base import BasePhaseAgent, PhaseContext, coerce, maybe_await
from app.core.exceptions import PreconditionError
from app.core.workflow import PhaseKind, PhaseState
from app.schemas.collaborators import VerificationReport, VerifyInput


class VerifyAgent(BasePhaseAgent):
    phase = PhaseKind.VERIFY

    def check_preconditions(self, ctx: PhaseContext) -> None:
        if ctx.record.state_of(PhaseKind.IMPLEMENT) != PhaseState.COMPLETED:
            raise PreconditionError("Implement phase has not completed. Record implementation results first.")

    async def run(
        self,
        ctx: PhaseContext,
        source_snapshot: str,
        clone_snapshot: str,
        attempt_number: int,
        data: VerifyInput,
    ) -> VerificationReport:
        extras = data.model_dump(exclude={"source_snapshot", "clone_snapshot"})
        extras["source_data"] = ctx.record.extracted_data
        extras["source_analysis"] = ctx.record.page_analysis
        result = await maybe_await(ctx.collaborators.verifier.verify(
            source_snapshot, clone_snapshot, attempt_number, extras,
        ))
        return coerce(VerificationReport, result)
