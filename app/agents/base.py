import inspect
from dataclasses import dataclass
from typing import Any, Type, TypeVar
from pydantic import BaseModel
from app.agents.ports import Collaborators
from app.core.workflow import CloneRequest, PhaseKind
from app.schemas.progress import ProgressRecord

M = TypeVar("M", bound=BaseModel)


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def coerce(model: Type[M], value: Any) -> M:
    """Accept either the model itself or anything it can validate (e.g. a dict)."""
    if isinstance(value, model):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump()
    return model.model_validate(value)


@dataclass
class PhaseContext:
    request: CloneRequest
    record: ProgressRecord
    collaborators: Collaborators


class BasePhaseAgent:
    phase: PhaseKind

    def check_preconditions(self, ctx: PhaseContext) -> None:
        """Raise PreconditionError if the record lacks what this phase needs."""
        return None

    async def run(self, ctx: PhaseContext, *args, **kwargs) -> Any:
        raise NotImplementedError
