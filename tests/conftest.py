"""Shared fixtures: settings on tmp_path, a directory-backed fake container,
and the relay wired into the FastAPI app."""

import asyncio
import os
import shutil
import sys
import textwrap
from pathlib import Path
from typing import Callable, List, Optional

import pytest
from fastapi.testclient import TestClient

from conformer_web.client.stream import EventStreamDecoder
from conformer_web.config import Settings
from conformer_web.core.exceptions import ContainerError
from conformer_web.jobs.slot import JobSlot
from conformer_web.main import app, wire_relay
from conformer_web.pipeline.container import DockerEnvironment
from conformer_web.pipeline.relay import PipelineRelay
from conformer_web.storage.workspace import WorkspaceManager


def python_program(stdout: List[str] = (), stderr: List[str] = (), exit_code: int = 0, sleep: float = 0.0) -> str:
    """Source of a tiny program that prints lines and exits with ``exit_code``."""
    return textwrap.dedent(
        f"""
        import sys, time
        for line in {list(stdout)!r}:
            sys.stdout.write(line + "\\n"); sys.stdout.flush()
        for line in {list(stderr)!r}:
            sys.stderr.write(line + "\\n"); sys.stderr.flush()
        time.sleep({sleep!r})
        sys.exit({exit_code!r})
        """
    )


class FakeContainer(DockerEnvironment):
    """Container stand-in: ``/app`` maps to a host directory and the pipeline
    is a local Python subprocess."""

    def __init__(self, root: Path):
        super().__init__(name="fake-pipeline", docker_bin="docker", workdir="/app")
        self.root = root
        (root / "app").mkdir(parents=True, exist_ok=True)
        self.program = python_program(stdout=["sampling conformers", "clustering"])
        self.results: List[str] = []
        self.on_spawn: Optional[Callable[["FakeContainer"], None]] = None
        self.spawned_scripts: List[str] = []
        self.removed_patterns: List[str] = []
        self.fail_remove = False
        self.fail_copy_out = False

    def set_program(self, **kwargs) -> None:
        self.program = python_program(**kwargs)

    def host_path(self, container_path: str) -> Path:
        return self.root / container_path.lstrip("/")

    def add_results(self, *names: str, result_dir: str = "temp_run") -> None:
        """Files the 'tool' writes under ``/app/<result_dir>/cluster_rep_conformers``."""
        self.results = [f"{result_dir}/cluster_rep_conformers/{name}" for name in names]

    async def remove_matching(self, pattern: str) -> None:
        if self.fail_remove:
            raise ContainerError("Failed to clean up", returncode=1, stderr="permission denied")
        self.removed_patterns.append(pattern)
        for path in (self.root / "app").glob(pattern):
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()

    async def copy_in(self, host_path: str, container_path: str) -> None:
        shutil.copy(host_path, self.host_path(container_path))

    async def copy_out(self, container_path: str, host_dir: str) -> None:
        if self.fail_copy_out:
            raise ContainerError("Failed to copy out", returncode=1, stderr="no space left")
        source = self.host_path(container_path)
        if not source.exists():
            raise ContainerError(f"No such path {container_path}", returncode=1)
        shutil.copytree(source, Path(host_dir) / source.name)

    async def list_dir(self, path: str) -> List[str]:
        target = self.host_path(path)
        if not target.is_dir():
            raise ContainerError(f"Failed to list {path}", returncode=2)
        return sorted(os.listdir(target))

    async def spawn(self, script: str) -> asyncio.subprocess.Process:
        self.spawned_scripts.append(script)
        for rel in self.results:
            target = self.root / "app" / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(f"conformer {target.name}\n")
        if self.on_spawn is not None:
            self.on_spawn(self)
        return await asyncio.create_subprocess_exec(
            sys.executable,
            "-c",
            self.program,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def is_running(self) -> bool:
        return True


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(workspace_dir=str(tmp_path / "workspace"), _env_file=None)


@pytest.fixture
def container(tmp_path) -> FakeContainer:
    return FakeContainer(tmp_path / "container")


@pytest.fixture
def workspace(test_settings) -> WorkspaceManager:
    return WorkspaceManager(test_settings.workspace_dir)


@pytest.fixture
def relay(test_settings, workspace, container) -> PipelineRelay:
    slot = JobSlot(busy_policy=test_settings.busy_policy, history_size=test_settings.job_history_size)
    return PipelineRelay(test_settings, workspace, container, slot)


@pytest.fixture
def client(relay):
    with TestClient(app) as test_client:
        wire_relay(relay)
        yield test_client
    wire_relay(None)


@pytest.fixture
def valid_form():
    return {
        "smiles": "CCO",
        "sampleSize": "1000",
        "maxEnsembleSize": "20",
        "dielectric": "1.0",
        "geomOpt": "false",
    }


@pytest.fixture
def parse_events():
    """Decode a complete response body into stream events."""

    def _parse(body: bytes):
        decoder = EventStreamDecoder()
        return decoder.feed(body) + decoder.close()

    return _parse
