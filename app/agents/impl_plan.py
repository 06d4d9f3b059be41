from app.agents.base import BasePhaseAgent, PhaseContext, coerce, maybe_await
from app.core.exceptions import PreconditionError
from app.core.workflow import PhaseKind
from app.schemas.collaborators import ImplementationPlan, PlanOptions


class PlanAgent(BasePhaseAgent):
    phase = PhaseKind.PLAN

    def check_preconditions(self, ctx: PhaseContext) -> None:
        if ctx.record.page_analysis is None:
            raise PreconditionError("Page analysis not available. Run analyze phase first.")
        if ctx.record.extracted_data is None:
            raise PreconditionError("Extracted data not available. Run extract phase first.")

    async def run(self, ctx: PhaseContext) -> ImplementationPlan:
        options = PlanOptions(
            feature_name=ctx.request.feature_name,
            page_slug=ctx.request.page_slug,
            is_dynamic_route=ctx.request.is_dynamic_route,
            parent_route=ctx.request.parent_route,
        )
        result = await maybe_await(ctx.collaborators.planner.plan(
            ctx.record.page_analysis, ctx.record.extracted_data, options,
        ))
        return coerce(ImplementationPlan, result)
