"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # External execution environment
    container_name: str = "satish-molconsul-cli-test"
    docker_bin: str = "docker"
    container_workdir: str = "/app"
    container_temp_prefix: str = "temp_"
    cluster_subdir: str = "cluster_rep_conformers"

    # Pipeline tool
    pipeline_command: str = "run_pipeline"
    pipeline_env_setup: str = (
        "source $(poetry env info --path)/bin/activate"
        " && export LD_LIBRARY_PATH=/opt/conda/lib:$LD_LIBRARY_PATH"
    )
    pipeline_timeout_seconds: Optional[float] = None  # None = wait forever

    # Host workspace
    workspace_dir: str = "./temp"
    max_upload_bytes: int = 50 * 1024 * 1024
    output_extensions: List[str] = [".sdf", ".xyz"]

    # Job handling
    busy_policy: str = "reject"  # "reject" or "queue"
    artifact_failure_policy: str = "fail"  # "fail" or "empty"
    job_history_size: int = 50

    # Service
    compute_port: int = 8001
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
