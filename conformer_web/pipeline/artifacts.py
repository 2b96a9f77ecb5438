"""Recovers cluster-representative conformers from the container after a run."""

import os
from typing import List

from conformer_web.config import Settings
from conformer_web.core.exceptions import ArtifactRecoveryError, ContainerError
from conformer_web.core.logging import get_logger
from conformer_web.jobs.models import JobRecord
from conformer_web.pipeline.container import DockerEnvironment
from conformer_web.storage.workspace import WorkspaceManager

logger = get_logger(__name__)


class ArtifactRecovery:
    """Copies ``<workdir>/temp_*/cluster_rep_conformers`` into the job workspace.

    A missing result directory is not an error: the job simply has no
    artifacts. Copy and listing failures raise ``ArtifactRecoveryError``.
    """

    def __init__(self, environment: DockerEnvironment, workspace: WorkspaceManager, settings: Settings):
        self._env = environment
        self._workspace = workspace
        self._settings = settings

    async def find_result_dir(self) -> str | None:
        entries = await self._list(self._env.workdir)
        prefix = self._settings.container_temp_prefix
        # Cleanup before the run leaves at most one of these
        candidates = sorted(e for e in entries if e.startswith(prefix))
        if not candidates:
            return None
        return self._env.container_path(candidates[0])

    async def recover(self, job: JobRecord) -> List[str]:
        result_dir = await self.find_result_dir()
        if result_dir is None:
            logger.info("No result directory in container", job_id=job.id)
            return []

        cluster_subdir = self._settings.cluster_subdir
        if cluster_subdir not in await self._list(result_dir):
            logger.info("No cluster directory in result", job_id=job.id, result_dir=result_dir)
            return []

        job_dir = self._workspace.job_dir(job.id)
        source = f"{result_dir}/{cluster_subdir}"
        logger.info("Copying cluster conformers", job_id=job.id, source=source, dest=str(job_dir))
        try:
            await self._env.copy_out(source, str(job_dir))
        except ContainerError as exc:
            raise ArtifactRecoveryError(exc.message, returncode=exc.returncode, stderr=exc.stderr) from exc

        local_cluster_dir = job_dir / cluster_subdir
        try:
            names = sorted(os.listdir(local_cluster_dir))
        except OSError as exc:
            raise ArtifactRecoveryError(f"Failed to list {local_cluster_dir}: {exc}") from exc

        extensions = tuple(self._settings.output_extensions)
        output_files = [
            self._workspace.relative_path(local_cluster_dir / name)
            for name in names
            if name.endswith(extensions)
        ]

        if job.ref_filename:
            output_files.append(self._workspace.relative_path(job_dir / job.ref_filename))

        logger.info("Artifacts recovered", job_id=job.id, output_files=output_files)
        return output_files

    async def _list(self, path: str) -> List[str]:
        try:
            return await self._env.list_dir(path)
        except ContainerError as exc:
            raise ArtifactRecoveryError(exc.message, returncode=exc.returncode, stderr=exc.stderr) from exc
