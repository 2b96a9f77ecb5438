"""Stream events pushed from the relay to the client.

Wire format: one ``data: <json>\\n\\n`` frame per event. Incremental frames
carry ``{"log": ...}``; the terminal frame carries
``{"status", "logs", "outputFiles", "jobId"}``.
"""

import json
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

FRAME_PREFIX = "data: "
FRAME_DELIMITER = "\n\n"


class LogEvent(BaseModel):
    log: str


class TerminalEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    logs: List[str] = Field(default_factory=list)
    output_files: List[str] = Field(default_factory=list, alias="outputFiles")
    job_id: Optional[str] = Field(default=None, alias="jobId")
    error: Optional[str] = None


StreamEvent = Union[LogEvent, TerminalEvent]


def encode_frame(event: StreamEvent) -> str:
    payload = event.model_dump(by_alias=True, exclude_none=True)
    return f"{FRAME_PREFIX}{json.dumps(payload)}{FRAME_DELIMITER}"


def decode_event(payload: str) -> StreamEvent:
    """Decode the JSON body of one frame (without the ``data: `` prefix)."""
    data = json.loads(payload)
    if "log" in data:
        return LogEvent.model_validate(data)
    return TerminalEvent.model_validate(data)
