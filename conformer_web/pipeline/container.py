"""Async wrapper around the docker CLI for the shared pipeline container.

Every call goes through ``asyncio.create_subprocess_exec`` with an explicit
argument list; the host never runs a shell.
"""

import asyncio
import posixpath
from dataclasses import dataclass
from typing import List

from conformer_web.core.exceptions import ContainerError
from conformer_web.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class DockerEnvironment:
    """An already-running container reached via ``docker exec`` and ``docker cp``."""

    def __init__(self, name: str, docker_bin: str = "docker", workdir: str = "/app"):
        self.name = name
        self.docker_bin = docker_bin
        self.workdir = workdir

    def container_path(self, *parts: str) -> str:
        return posixpath.join(self.workdir, *parts)

    async def run(self, *args: str) -> CommandResult:
        """Run ``docker <args>`` to completion and capture its output."""
        proc = await asyncio.create_subprocess_exec(
            self.docker_bin,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        return CommandResult(
            returncode=proc.returncode if proc.returncode is not None else 1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

    async def exec_shell(self, script: str) -> CommandResult:
        return await self.run("exec", self.name, "bash", "-c", script)

    async def spawn(self, script: str) -> asyncio.subprocess.Process:
        """Start ``script`` inside the container with both output pipes captured."""
        return await asyncio.create_subprocess_exec(
            self.docker_bin,
            "exec",
            self.name,
            "bash",
            "-c",
            script,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def remove_matching(self, pattern: str) -> None:
        """Delete every path under the workdir matching a glob such as ``temp_*``."""
        target = self.container_path(pattern)
        result = await self.exec_shell(f"rm -rf {target}")
        if not result.ok:
            raise ContainerError(
                f"Failed to clean up {target}", returncode=result.returncode, stderr=result.stderr
            )
        logger.info("Container state cleared", container=self.name, pattern=target)

    async def copy_in(self, host_path: str, container_path: str) -> None:
        result = await self.run("cp", host_path, f"{self.name}:{container_path}")
        if not result.ok:
            raise ContainerError(
                f"Failed to copy {host_path} into container",
                returncode=result.returncode,
                stderr=result.stderr,
            )

    async def copy_out(self, container_path: str, host_dir: str) -> None:
        result = await self.run("cp", f"{self.name}:{container_path}", host_dir)
        if not result.ok:
            raise ContainerError(
                f"Failed to copy {container_path} out of container",
                returncode=result.returncode,
                stderr=result.stderr,
            )

    async def list_dir(self, path: str) -> List[str]:
        result = await self.run("exec", self.name, "ls", "-1", path)
        if not result.ok:
            raise ContainerError(
                f"Failed to list {path}", returncode=result.returncode, stderr=result.stderr
            )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def is_running(self) -> bool:
        try:
            result = await self.run("inspect", "-f", "{{.State.Running}}", self.name)
        except OSError:
            return False
        return result.ok and result.stdout.strip() == "true"
