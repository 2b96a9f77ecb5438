"""Artifact download endpoint."""

from typing import Optional

from fastapi import APIRouter
from fastapi.responses import FileResponse

from conformer_web.core.exceptions import ConformerWebError
from conformer_web.storage.workspace import WorkspaceManager

router = APIRouter()

_workspace: Optional[WorkspaceManager] = None

_MEDIA_TYPES = {
    ".sdf": "chemical/x-mdl-sdfile",
    ".mol2": "chemical/x-mol2",
    ".pdb": "chemical/x-pdb",
    ".xyz": "chemical/x-xyz",
}


def set_workspace(workspace: Optional[WorkspaceManager]):
    global _workspace
    _workspace = workspace


@router.get("/files/{file_path:path}")
async def get_file(file_path: str):
    """Return the raw bytes of a workspace file, e.g. ``temp_<id>/cluster_rep_conformers/a.sdf``."""
    if _workspace is None:
        raise ConformerWebError("Workspace not initialized", code="NOT_READY", status_code=503)

    path = _workspace.resolve(file_path)
    media_type = _MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream")
    return FileResponse(path, media_type=media_type, filename=path.name)
