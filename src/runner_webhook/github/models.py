"""GitHub REST API models for JIT runner registration."""

from typing import List, Optional

from pydantic import BaseModel, Field


class JITConfigRequest(BaseModel):
    """Body of a ``generate-jitconfig`` request.

    Attributes:
        name: Name of the runner to register.
        runner_group_id: Runner group the runner joins.
        labels: Labels the runner registers with.
        work_folder: Working directory of the runner, relative to its root.
    """

    name: str = Field(..., min_length=1)
    runner_group_id: int = Field(default=1, ge=1)
    labels: List[str] = Field(..., min_length=1)
    work_folder: str = "_work"


class JITRunnerConfig(BaseModel):
    """Response of a ``generate-jitconfig`` request.

    ``encoded_jit_config`` is a single-use bearer credential for one
    runner registration. It is excluded from ``repr`` so it cannot leak
    into logs through the model.
    """

    encoded_jit_config: str = Field(..., min_length=1, repr=False)
    runner_id: Optional[int] = None
    runner_name: Optional[str] = None
