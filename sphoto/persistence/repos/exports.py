from __future__ import annotations

from pathlib import Path
from typing import Callable

from sphoto.core.config import get_settings
from sphoto.domain.models import ExportJob
from sphoto.persistence.store import locked, read_model, write_model


def exports_dir() -> Path:
    return get_settings().exports_dir


def _jobs_dir() -> Path:
    return exports_dir() / "jobs"


def _job_path(job_id: str) -> Path:
    return _jobs_dir() / f"{job_id}.json"


def load_export_job(job_id: str) -> ExportJob | None:
    return read_model(_job_path(job_id), ExportJob)


def save_export_job(job: ExportJob) -> None:
    write_model(_job_path(job.id), job)


def delete_export_job(job_id: str) -> None:
    _job_path(job_id).unlink(missing_ok=True)


def list_export_jobs() -> list[ExportJob]:
    root = _jobs_dir()
    if not root.is_dir():
        return []
    jobs: list[ExportJob] = []
    for path in root.glob("*.json"):
        job = read_model(path, ExportJob)
        if job is not None:
            jobs.append(job)
    return sorted(jobs, key=lambda job: job.created_at, reverse=True)


async def update_export_job(job_id: str, mutate: Callable[[ExportJob], None]) -> ExportJob | None:
    async with locked(f"export:{job_id}"):
        job = load_export_job(job_id)
        if job is None:
            return None
        mutate(job)
        save_export_job(job)
        return job
