from typing import Any, Dict, Optional
from app.agents.base import BasePhaseAgent, PhaseContext, coerce, maybe_await
from app.core.exceptions import PreconditionError
from app.core.workflow import PhaseKind
from app.schemas.collaborators import ImplementationOutput

IMPLEMENTATION_STEPS = [
    "Create type definitions from typeDefinitions",
    "Create data files from dataFiles with extracted data",
    "Create service functions from serviceUpdates",
    "Create components from components list",
    "Create page, loading, and error components",
    "Apply configUpdates (e.g. remote image hosts)",
    "Check diagnostics after each file",
]


class ImplementAgent(BasePhaseAgent):
    phase = PhaseKind.IMPLEMENT

    def check_preconditions(self, ctx: PhaseContext) -> None:
        if ctx.record.implementation_plan is None:
            raise PreconditionError("Implementation plan not available. Run plan phase first.")

    def instructions(self, ctx: PhaseContext) -> Dict[str, Any]:
        """What the calling agent needs in order to materialize the plan itself."""
        record = ctx.record
        return {
            "plan": record.implementation_plan.model_dump(mode="json"),
            "extracted_data": record.extracted_data.model_dump(mode="json") if record.extracted_data else None,
            "page_analysis": record.page_analysis.model_dump(mode="json") if record.page_analysis else None,
            "instructions": list(IMPLEMENTATION_STEPS),
        }

    async def run(self, ctx: PhaseContext) -> Optional[ImplementationOutput]:
        """Run the injected implementer, or return None when the caller implements the plan."""
        implementer = ctx.collaborators.implementer
        if implementer is None:
            return None
        result = await maybe_await(implementer.implement(
            ctx.record.implementation_plan, ctx.record.extracted_data,
        ))
        return coerce(ImplementationOutput, result)
