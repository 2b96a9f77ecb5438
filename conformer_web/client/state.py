"""Client-side view of a pipeline run, fed by stream events."""

from dataclasses import dataclass, field
from typing import List, Optional

from conformer_web.jobs.events import LogEvent, StreamEvent, TerminalEvent

CLUSTER_SEGMENT = "cluster_rep_conformers"
REFERENCE_EXTENSIONS = (".sdf", ".mol2", ".pdb", ".xyz")


@dataclass
class ConformerGroups:
    reference: Optional[str] = None
    sdf_files: List[str] = field(default_factory=list)
    xyz_files: List[str] = field(default_factory=list)


def categorize_outputs(output_files: List[str]) -> ConformerGroups:
    """Split output paths into the reference conformer and cluster representatives."""
    groups = ConformerGroups()
    for path in output_files:
        if CLUSTER_SEGMENT in path:
            if path.endswith(".sdf"):
                groups.sdf_files.append(path)
            elif path.endswith(".xyz"):
                groups.xyz_files.append(path)
        elif path.endswith(REFERENCE_EXTENSIONS):
            groups.reference = path
    return groups


@dataclass
class PipelineView:
    """What the results page shows: logs, status and the files to display."""
    job_id: Optional[str] = None
    logs: List[str] = field(default_factory=list)
    output_files: List[str] = field(default_factory=list)
    status: Optional[str] = None
    error: Optional[str] = None
    running: bool = False

    def start(self, job_id: Optional[str] = None) -> None:
        self.job_id = job_id
        self.logs = []
        self.output_files = []
        self.status = None
        self.error = None
        self.running = True

    def apply(self, event: StreamEvent) -> None:
        if isinstance(event, LogEvent):
            self.logs.append(event.log)
        elif isinstance(event, TerminalEvent):
            # The terminal event carries the full log; it replaces what streamed in
            self.logs = list(event.logs)
            self.output_files = list(event.output_files)
            self.status = event.status
            self.error = event.error
            if event.job_id:
                self.job_id = event.job_id
            self.running = False

    @property
    def conformers(self) -> ConformerGroups:
        return categorize_outputs(self.output_files)
