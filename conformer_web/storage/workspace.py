"""Host-side workspace holding one job's uploaded and recovered files."""

import os
import shutil
from pathlib import Path, PurePosixPath
from typing import Union

from conformer_web.core.exceptions import ForbiddenPathError, NotFoundError, WorkspaceError
from conformer_web.core.logging import get_logger

logger = get_logger(__name__)

JOB_DIR_PREFIX = "temp_"


class WorkspaceManager:
    """Owns the scratch root; every subdirectory is one job's artifacts.

    Only the most recent job's directory survives: ``prepare`` wipes every
    existing subdirectory before creating the new one.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self._base_dir = Path(base_dir).resolve()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def job_dir_name(self, job_id: str) -> str:
        return f"{JOB_DIR_PREFIX}{job_id}"

    def job_dir(self, job_id: str) -> Path:
        return self._base_dir / self.job_dir_name(job_id)

    def prepare(self, job_id: str) -> Path:
        """Clear previous jobs' directories and create a fresh one for ``job_id``."""
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            removed = 0
            for entry in os.scandir(self._base_dir):
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                    removed += 1
            job_dir = self.job_dir(job_id)
            job_dir.mkdir(parents=True)
        except OSError as exc:
            raise WorkspaceError(f"Failed to prepare workspace: {exc}", path=str(self._base_dir)) from exc

        logger.info("Workspace prepared", job_id=job_id, removed_dirs=removed, path=str(job_dir))
        return job_dir

    def save_upload(self, job_id: str, filename: str, data: bytes) -> Path:
        path = self.job_dir(job_id) / filename
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise WorkspaceError(f"Failed to save upload: {exc}", path=str(path)) from exc
        return path

    def relative_path(self, path: Union[str, Path]) -> str:
        """Workspace-relative POSIX path, the form handed to clients."""
        return Path(path).resolve().relative_to(self._base_dir).as_posix()

    def resolve(self, relative: str) -> Path:
        """Map a client-supplied relative path back to a file in the workspace."""
        candidate = PurePosixPath(relative.replace("\\", "/"))
        if candidate.is_absolute() or ".." in candidate.parts or not candidate.parts:
            raise ForbiddenPathError(relative)

        path = (self._base_dir / candidate).resolve()
        if self._base_dir not in path.parents:
            raise ForbiddenPathError(relative)
        if not path.is_file():
            raise NotFoundError("File", relative)
        return path
