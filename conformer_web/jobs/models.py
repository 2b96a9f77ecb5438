"""Job record and submission parameters."""

import math
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RelayState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    STREAMING = "streaming"
    TERMINAL = "terminal"
    CLOSED = "closed"


class PipelineParameters(BaseModel):
    """Validated inputs for one run of the conformer pipeline tool."""
    smiles: str
    sample_size: int = Field(ge=1)
    max_ensemble_size: int = Field(ge=1)
    dielectric: float = Field(ge=0)
    geom_opt: bool = False
    ref_confo_path: Optional[str] = None

    @field_validator("smiles")
    @classmethod
    def _check_smiles(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("SMILES must not be empty")
        if any(ch in value for ch in ("\x00", "\n", "\r")):
            raise ValueError("SMILES must be a single line")
        return value

    @field_validator("dielectric")
    @classmethod
    def _check_dielectric(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("dielectric must be a finite number")
        return value


class JobRecord(BaseModel):
    """Tracks one pipeline invocation from submission to the terminal event."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    params: PipelineParameters
    ref_filename: Optional[str] = None
    workspace_path: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    relay_state: RelayState = RelayState.IDLE
    logs: List[str] = Field(default_factory=list)
    output_files: List[str] = Field(default_factory=list)
    exit_code: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
