"""Service exceptions and their HTTP rendering."""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from conformer_web.core.logging import get_logger

logger = get_logger(__name__)


class ConformerWebError(Exception):
    """Base exception for the service."""

    def __init__(
        self,
        message: str,
        code: str = "SERVER_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InvalidSubmissionError(ConformerWebError):
    """Malformed, missing or out-of-range form input."""

    def __init__(self, message: str = "Invalid input parameters", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="INVALID_INPUT",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class UploadTooLargeError(ConformerWebError):
    def __init__(self, limit_bytes: int):
        super().__init__(
            message=f"Reference file too large (max {limit_bytes} bytes)",
            code="UPLOAD_TOO_LARGE",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            details={"limit_bytes": limit_bytes},
        )


class WorkspaceError(ConformerWebError):
    """Host-side workspace could not be cleaned or created."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(
            message=message,
            code="WORKSPACE_ERROR",
            details={"path": path} if path else {},
        )


class ContainerError(ConformerWebError):
    """A docker command against the execution environment failed."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            message=message,
            code="CONTAINER_ERROR",
            details={"returncode": returncode, "stderr": stderr.strip()},
        )


class ArtifactRecoveryError(ContainerError):
    """Result files could not be copied or listed after a successful run."""


class JobSlotBusyError(ConformerWebError):
    def __init__(self, active_job_id: str):
        super().__init__(
            message="A pipeline job is already running",
            code="JOB_SLOT_BUSY",
            status_code=status.HTTP_409_CONFLICT,
            details={"active_job_id": active_job_id},
        )


class NotFoundError(ConformerWebError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            code="NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "identifier": str(identifier)},
        )


class ForbiddenPathError(ConformerWebError):
    def __init__(self, path: str):
        super().__init__(
            message=f"Path is outside the workspace: {path}",
            code="FORBIDDEN_PATH",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"path": path},
        )


async def conformer_web_error_handler(request: Request, exc: ConformerWebError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code, "details": exc.details},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ConformerWebError, conformer_web_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
