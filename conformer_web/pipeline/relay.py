"""Streaming relay: runs one job and turns it into an ordered event stream.

Relay states move strictly ``idle -> started -> streaming -> terminal ->
closed``. Every job ends with exactly one terminal event, success or not.
The job runs in its own task, so a client that disconnects stops receiving
events but does not stop the pipeline or free the job slot early.
"""

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional, Set

from conformer_web.config import Settings
from conformer_web.core.exceptions import ArtifactRecoveryError, ConformerWebError
from conformer_web.core.logging import bind_context, clear_context, get_logger
from conformer_web.jobs.events import LogEvent, StreamEvent, TerminalEvent, encode_frame
from conformer_web.jobs.models import JobRecord, JobStatus, PipelineParameters, RelayState
from conformer_web.jobs.slot import JobSlot
from conformer_web.pipeline.artifacts import ArtifactRecovery
from conformer_web.pipeline.container import DockerEnvironment
from conformer_web.pipeline.invoker import DEFAULT_FAILURE_CODE, PipelineInvoker
from conformer_web.storage.workspace import WorkspaceManager

logger = get_logger(__name__)

_TRANSITIONS = {
    RelayState.IDLE: (RelayState.STARTED,),
    RelayState.STARTED: (RelayState.STREAMING,),
    RelayState.STREAMING: (RelayState.TERMINAL,),
    RelayState.TERMINAL: (RelayState.CLOSED,),
    RelayState.CLOSED: (),
}


@dataclass
class ReferenceUpload:
    """A reference conformer file received with the submission."""
    filename: str
    data: bytes


class JobStream:
    """Event queue between a running job and the HTTP response reading it."""

    def __init__(self, job: JobRecord):
        self.job = job
        self.task: Optional[asyncio.Task] = None
        self.process: Optional[asyncio.subprocess.Process] = None
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, event: StreamEvent) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def frames(self) -> AsyncIterator[str]:
        async for event in self.events():
            yield encode_frame(event)


class PipelineRelay:
    """Prepares, runs and reports pipeline jobs against the shared container."""

    def __init__(
        self,
        settings: Settings,
        workspace: WorkspaceManager,
        environment: DockerEnvironment,
        slot: JobSlot,
    ):
        self._settings = settings
        self._workspace = workspace
        self._env = environment
        self._slot = slot
        self._invoker = PipelineInvoker(environment, settings)
        self._artifacts = ArtifactRecovery(environment, workspace, settings)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def workspace(self) -> WorkspaceManager:
        return self._workspace

    @property
    def environment(self) -> DockerEnvironment:
        return self._env

    @property
    def slot(self) -> JobSlot:
        return self._slot

    async def prepare(
        self, params: PipelineParameters, upload: Optional[ReferenceUpload] = None
    ) -> JobRecord:
        """Claim the job slot and clean host and container state for a new job.

        Raises before anything is spawned if cleanup or staging fails; the
        slot is released again in that case.
        """
        job = JobRecord(params=params, ref_filename=upload.filename if upload else None)
        await self._slot.acquire(job)
        try:
            job_dir = self._workspace.prepare(job.id)
            job.workspace_path = str(job_dir)
            await self._invoker.clear_state()
            if upload is not None:
                await self._stage_reference(job, upload)
        except Exception:
            job.status = JobStatus.FAILED
            job.completed_at = datetime.utcnow()
            self._slot.release(job)
            raise

        self._transition(job, RelayState.STARTED)
        logger.info(
            "Job accepted",
            job_id=job.id,
            smiles=params.smiles,
            sample_size=params.sample_size,
            max_ensemble_size=params.max_ensemble_size,
            dielectric=params.dielectric,
            geom_opt=params.geom_opt,
            ref_file=job.ref_filename,
        )
        return job

    def start(self, job: JobRecord) -> JobStream:
        """Run a prepared job in the background and return its event stream."""
        stream = JobStream(job)
        task = asyncio.create_task(self._run(job, stream), name=f"pipeline-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        stream.task = task
        return stream

    async def shutdown(self) -> None:
        """Cancel running jobs and wait until each has emitted its terminal event."""
        # A task cancelled before its first step never runs its cleanup.
        await asyncio.sleep(0)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("Cancelling running jobs", count=len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _stage_reference(self, job: JobRecord, upload: ReferenceUpload) -> None:
        host_path = self._workspace.save_upload(job.id, upload.filename, upload.data)
        container_path = self._env.container_path(upload.filename)
        await self._env.copy_in(str(host_path), container_path)
        job.params.ref_confo_path = container_path
        logger.info("Reference conformer staged", job_id=job.id, container_path=container_path)

    async def _run(self, job: JobRecord, stream: JobStream) -> None:
        bind_context(job_id=job.id)
        job.status = JobStatus.RUNNING
        job.started_at = datetime.utcnow()
        exit_code = DEFAULT_FAILURE_CODE
        try:
            self._transition(job, RelayState.STREAMING)
            exit_code = await self._execute(job, stream)
            logger.info("Pipeline exited", job_id=job.id, exit_code=exit_code)
            if exit_code == 0:
                job.output_files = await self._recover(job)
                job.status = JobStatus.COMPLETED
            else:
                job.status = JobStatus.FAILED
        except Exception as exc:
            logger.exception("Pipeline relay failed", job_id=job.id)
            job.status = JobStatus.FAILED
            job.output_files = []
            job.error = exc.message if isinstance(exc, ConformerWebError) else str(exc)
        except asyncio.CancelledError:
            logger.warning("Pipeline job cancelled", job_id=job.id)
            job.status = JobStatus.FAILED
            job.output_files = []
            job.error = "Pipeline job was cancelled"
            _kill(stream.process)
            raise
        finally:
            job.exit_code = exit_code
            job.completed_at = datetime.utcnow()
            self._finish(job, stream)
            self._slot.release(job)
            clear_context()

    async def _execute(self, job: JobRecord, stream: JobStream) -> int:
        process = await self._invoker.start(job.params)
        stream.process = process

        async def relay_output() -> int:
            async for chunk in self._invoker.iter_output(process):
                job.logs.append(chunk)
                stream.push(LogEvent(log=chunk))
            return await self._invoker.wait(process)

        timeout = self._settings.pipeline_timeout_seconds
        if timeout is None:
            return await relay_output()

        try:
            return await asyncio.wait_for(relay_output(), timeout)
        except asyncio.TimeoutError:
            _kill(process)
            await process.wait()
            message = f"Pipeline timed out after {timeout:g}s"
            logger.warning("Pipeline timed out", job_id=job.id, timeout_seconds=timeout)
            job.logs.append(message + os.linesep)
            stream.push(LogEvent(log=message + os.linesep))
            job.error = message
            return DEFAULT_FAILURE_CODE

    async def _recover(self, job: JobRecord):
        try:
            return await self._artifacts.recover(job)
        except ArtifactRecoveryError as exc:
            if self._settings.artifact_failure_policy == "empty":
                logger.warning("Artifact recovery failed, reporting no files", job_id=job.id, error=exc.message)
                return []
            raise

    def _finish(self, job: JobRecord, stream: JobStream) -> None:
        self._transition(job, RelayState.TERMINAL)
        stream.push(
            TerminalEvent(
                status=job.status.value,
                logs=list(job.logs),
                output_files=list(job.output_files),
                job_id=job.id,
                error=job.error,
            )
        )
        self._transition(job, RelayState.CLOSED)
        stream.close()
        logger.info("Job finished", job_id=job.id, status=job.status.value, output_files=len(job.output_files))

    def _transition(self, job: JobRecord, new_state: RelayState) -> None:
        if new_state not in _TRANSITIONS[job.relay_state]:
            raise RuntimeError(f"Invalid relay transition {job.relay_state.value} -> {new_state.value}")
        job.relay_state = new_state


def _kill(process: Optional[asyncio.subprocess.Process]) -> None:
    if process is None or process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass
