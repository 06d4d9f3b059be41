from dataclasses import dataclass
from typing import Dict
from app.core.workflow import PhaseKind
from app.agents.base import BasePhaseAgent
from app.agents.impl_acquire import AnalyzeAgent, ExtractAgent
from app.agents.impl_plan import PlanAgent
from app.agents.impl_build import ImplementAgent
from app.agents.impl_verify import VerifyAgent

@dataclass
class AgentRegistry:
    mapping: Dict[PhaseKind, BasePhaseAgent]

    def get(self, phase: PhaseKind) -> BasePhaseAgent:
        return self.mapping[phase]

    @staticmethod
    def default() -> "AgentRegistry":
        return AgentRegistry(mapping={
            PhaseKind.ANALYZE: AnalyzeAgent(),
            PhaseKind.EXTRACT: ExtractAgent(),
            PhaseKind.PLAN: PlanAgent(),
            PhaseKind.IMPLEMENT: ImplementAgent(),
            PhaseKind.VERIFY: VerifyAgent(),
        })
