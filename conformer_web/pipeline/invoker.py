"""Builds and runs the ``run_pipeline`` command inside the container."""

import asyncio
import codecs
import shlex
from typing import AsyncIterator, List, Optional

from conformer_web.config import Settings
from conformer_web.core.logging import get_logger
from conformer_web.jobs.models import PipelineParameters
from conformer_web.pipeline.container import DockerEnvironment

logger = get_logger(__name__)

# Exit code reported when the process dies without one (e.g. killed by a signal)
DEFAULT_FAILURE_CODE = 1

CHUNK_SIZE = 4096


def build_pipeline_args(params: PipelineParameters, command: str = "run_pipeline") -> List[str]:
    """Structured argument list for the pipeline CLI."""
    args = [
        command,
        params.smiles,
        "--num-conf", str(params.sample_size),
        "--num-clusters", str(params.max_ensemble_size),
        "--dielectric-value", repr(float(params.dielectric)),
    ]
    if params.geom_opt:
        args.append("--geom-opt")
    if params.ref_confo_path:
        args.extend(["--ref-confo-path", params.ref_confo_path])
    return args


def render_script(args: List[str], env_setup: str = "") -> str:
    """Join the arguments into a bash line, quoting each one separately."""
    command = " ".join(shlex.quote(arg) for arg in args)
    if env_setup:
        return f"{env_setup} && {command}"
    return command


class PipelineInvoker:
    """Launches the pipeline tool and exposes its output as a chunk stream."""

    def __init__(self, environment: DockerEnvironment, settings: Settings):
        self._env = environment
        self._settings = settings

    async def clear_state(self) -> None:
        """Remove result directories left in the container by earlier jobs."""
        await self._env.remove_matching(f"{self._settings.container_temp_prefix}*")

    def command_for(self, params: PipelineParameters) -> str:
        args = build_pipeline_args(params, self._settings.pipeline_command)
        return render_script(args, self._settings.pipeline_env_setup)

    async def start(self, params: PipelineParameters) -> asyncio.subprocess.Process:
        script = self.command_for(params)
        logger.info("Starting pipeline", container=self._env.name, command=script)
        return await self._env.spawn(script)

    async def iter_output(self, process: asyncio.subprocess.Process) -> AsyncIterator[str]:
        """Yield stdout and stderr chunks in the order they arrive.

        The two pipes are read concurrently; there is no ordering guarantee
        between them beyond arrival order.
        """
        queue: asyncio.Queue = asyncio.Queue()
        streams = [s for s in (process.stdout, process.stderr) if s is not None]
        readers = [asyncio.create_task(_pump(stream, queue)) for stream in streams]
        remaining = len(readers)
        try:
            while remaining:
                chunk = await queue.get()
                if chunk is None:
                    remaining -= 1
                    continue
                yield chunk
            await asyncio.gather(*readers)
        finally:
            for task in readers:
                if not task.done():
                    task.cancel()

    async def wait(self, process: asyncio.subprocess.Process) -> int:
        returncode: Optional[int] = await process.wait()
        if returncode is None or returncode < 0:
            logger.warning("Pipeline terminated abnormally", returncode=returncode)
            return DEFAULT_FAILURE_CODE
        return returncode


async def _pump(stream: asyncio.StreamReader, queue: asyncio.Queue) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        while True:
            data = await stream.read(CHUNK_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                queue.put_nowait(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            queue.put_nowait(tail)
    finally:
        queue.put_nowait(None)
