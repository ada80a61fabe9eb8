"""Configuration for graphs and runs.

``GraphConfig`` holds engine-wide settings and reads ``GRAPHFLOW_*``
environment variables. ``RunConfig`` is built per ``invoke``/``resume`` call
and carries the identifiers used to group checkpoints.
"""

from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def new_execution_id() -> str:
    """Generate a fresh execution id."""
    return f"exec_{uuid4().hex}"


class GraphConfig(BaseSettings):
    """Engine settings.

    Attributes:
        max_steps: Maximum supersteps per invoke/resume call
        max_concurrency: Upper bound on handlers running at once in a superstep
        checkpoint_enabled: Save a checkpoint after every superstep
        checkpoint_input: Also save the initial state before the first superstep
        max_checkpoints: Keep at most this many checkpoints per execution
    """

    model_config = SettingsConfigDict(
        env_prefix="GRAPHFLOW_",
        case_sensitive=False,
        validate_assignment=True,
    )

    max_steps: int = Field(default=25, gt=0)
    max_concurrency: Optional[int] = Field(default=None, gt=0)
    checkpoint_enabled: bool = True
    checkpoint_input: bool = True
    max_checkpoints: Optional[int] = Field(default=None, gt=0)


class RunConfig(BaseModel):
    """Per-call options for ``Runnable.invoke`` and ``Runnable.resume``.

    Attributes:
        execution_id: Identifies one execution; every checkpoint carries it
        thread_id: Optional conversation/thread key for grouping checkpoints
        session_id: Optional session key for grouping checkpoints
        interrupt_before: Pause before running any of these nodes
        interrupt_after: Pause after running any of these nodes
        metadata: Extra metadata copied onto every checkpoint
        timeout: Seconds until the run's cancellation token expires
    """

    execution_id: str = Field(default_factory=new_execution_id)
    thread_id: Optional[str] = None
    session_id: Optional[str] = None
    interrupt_before: List[str] = Field(default_factory=list)
    interrupt_after: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
