"""Pipeline submission endpoint: validates the form and streams the job.

  POST /api/run-pipeline  multipart form -> text/event-stream
  GET, PUT, PATCH, DELETE  405, logged
"""

import re
from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from conformer_web.config import settings
from conformer_web.core.exceptions import (
    ConformerWebError,
    InvalidSubmissionError,
    UploadTooLargeError,
)
from conformer_web.core.logging import get_logger
from conformer_web.jobs.models import PipelineParameters
from conformer_web.pipeline.relay import PipelineRelay, ReferenceUpload

logger = get_logger(__name__)

router = APIRouter()

# Wired in during lifespan (same pattern as jobs.py / files.py)
_relay: Optional[PipelineRelay] = None

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_REFERENCE_PREFIX = "ref_"

_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def set_relay(relay: Optional[PipelineRelay]):
    global _relay
    _relay = relay


def parse_parameters(
    smiles: Optional[str],
    sample_size: Optional[str],
    max_ensemble_size: Optional[str],
    dielectric: Optional[str],
    geom_opt: Optional[str],
) -> PipelineParameters:
    """Turn raw form strings into validated parameters or raise a 400."""
    try:
        return PipelineParameters(
            smiles=smiles,
            sample_size=sample_size,
            max_ensemble_size=max_ensemble_size,
            dielectric=dielectric,
            geom_opt=(geom_opt or "").strip().lower() == "true",
        )
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise InvalidSubmissionError(details={"errors": errors}) from exc


def sanitize_reference_filename(filename: str) -> str:
    """Reduce an uploaded filename to a basename safe for the workspace and ``docker cp``.

    ``ligand (1).sdf`` becomes ``ligand__1_.sdf``. Names that would look like
    a result directory (``temp_*``, the cluster directory) or a hidden
    file get a ``ref_`` prefix.
    """
    name = filename.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not name:
        raise InvalidSubmissionError("Reference file has no name", details={"filename": filename})

    name = _UNSAFE_FILENAME_CHARS.sub("_", name)
    if name.startswith((settings.container_temp_prefix, ".")) or name == settings.cluster_subdir:
        name = _REFERENCE_PREFIX + name
    return name


async def read_reference_upload(upload: UploadFile) -> ReferenceUpload:
    filename = sanitize_reference_filename(upload.filename or "")
    chunks = []
    total = 0
    while True:
        chunk = await upload.read(1024 * 1024)  # 1 MB chunks
        if not chunk:
            break
        total += len(chunk)
        if total > settings.max_upload_bytes:
            raise UploadTooLargeError(settings.max_upload_bytes)
        chunks.append(chunk)
    return ReferenceUpload(filename=filename, data=b"".join(chunks))


@router.post("/run-pipeline")
async def run_pipeline(
    smiles: Optional[str] = Form(None),
    sample_size: Optional[str] = Form(None, alias="sampleSize"),
    max_ensemble_size: Optional[str] = Form(None, alias="maxEnsembleSize"),
    dielectric: Optional[str] = Form(None),
    geom_opt: Optional[str] = Form(None, alias="geomOpt"),
    ref_confo_file: Optional[UploadFile] = File(None, alias="refConfoFile"),
):
    """Start a pipeline job and stream its console output as server-sent events."""
    if _relay is None:
        raise ConformerWebError("Pipeline relay not initialized", code="NOT_READY", status_code=503)

    params = parse_parameters(smiles, sample_size, max_ensemble_size, dielectric, geom_opt)

    upload = None
    if ref_confo_file is not None and ref_confo_file.filename:
        upload = await read_reference_upload(ref_confo_file)

    job = await _relay.prepare(params, upload)
    stream = _relay.start(job)

    return StreamingResponse(
        stream.frames(),
        media_type="text/event-stream",
        headers={**_STREAM_HEADERS, "X-Job-Id": job.id},
    )


@router.api_route("/run-pipeline", methods=["GET", "PUT", "PATCH", "DELETE"])
async def run_pipeline_not_allowed(request: Request):
    logger.warning(
        "Unexpected request method on /api/run-pipeline",
        method=request.method,
        url=str(request.url),
        headers=dict(request.headers),
    )
    return JSONResponse(
        status_code=405,
        content={"error": f"Method {request.method} not allowed. Use POST for pipeline execution."},
        headers={"Allow": "POST"},
    )
