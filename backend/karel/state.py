"""Execution state shared between the controller and whatever renders it."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from . import config


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"
    SUCCESS = "success"


TERMINAL_STATUSES = (ExecutionStatus.ERROR, ExecutionStatus.SUCCESS)


class ExecutionState(BaseModel):
    """Observable run state.

    Only the `ExecutionController` mutates an instance; observers receive it
    through listener callbacks and should treat it as read-only.
    """

    status: ExecutionStatus = ExecutionStatus.IDLE
    current_line: Optional[int] = None
    error_line: Optional[int] = None
    step_count: int = Field(default=0, ge=0)
    error: Optional[str] = None
    error_code: Optional[str] = None
    step_delay_ms: int = Field(default=config.DEFAULT_STEP_DELAY_MS, ge=0)


def create_default_execution_state() -> ExecutionState:
    return ExecutionState()
