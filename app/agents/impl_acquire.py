import logging
from app.agents.base import BasePhaseAgent, PhaseContext, coerce, maybe_await
from app.core.workflow import PhaseKind
from app.schemas.collaborators import AnalyzeInput, ExtractedData, ExtractInput, PageAnalysis

log = logging.getLogger(__name__)


class AnalyzeAgent(BasePhaseAgent):
    phase = PhaseKind.ANALYZE

    async def run(self, ctx: PhaseContext, data: AnalyzeInput) -> PageAnalysis:
        result = await maybe_await(ctx.collaborators.analyzer.analyze(
            data.snapshot, data.title, data.breakpoints,
        ))
        analysis = coerce(PageAnalysis, result)
        log.info(
            f"Analyzed page: {len(analysis.sections)} sections, "
            f"{len(analysis.interactive_elements)} interactive elements",
            extra={"slug": ctx.request.page_slug, "phase": self.phase.value},
        )
        return analysis


class ExtractAgent(BasePhaseAgent):
    phase = PhaseKind.EXTRACT

    async def run(self, ctx: PhaseContext, data: ExtractInput) -> ExtractedData:
        result = await maybe_await(ctx.collaborators.extractor.extract(data.html, ctx.request.source_url))
        extracted = coerce(ExtractedData, result)
        log.info(
            f"Extracted {len(extracted.text_content)} text blocks, "
            f"{len(extracted.images)} images, {len(extracted.links)} links",
            extra={"slug": ctx.request.page_slug, "phase": self.phase.value},
        )
        return extracted
