from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
import shutil
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sphoto.core.config import get_settings
from sphoto.core.errors import ExportNotFoundError, InstanceNotFoundError
from sphoto.domain.models import ExportJob
from sphoto.persistence.repos.exports import (
    delete_export_job,
    exports_dir,
    list_export_jobs as _list_jobs,
    load_export_job,
    save_export_job,
    update_export_job,
)
from sphoto.persistence.repos.instances import load_instance
from sphoto.providers.shell import run_command
from sphoto.services.email import send_export_ready_email
from sphoto.services.telemetry import increment_counter, record_external_call
from sphoto.services.usage import uploads_path


logger = logging.getLogger(__name__)

TOKEN_LENGTH = 32
ARCHIVER = "zip"
ARCHIVE_TIMEOUT_S = 6 * 3600
MSG_INTERRUPTED = "Export durch Neustart unterbrochen"
MSG_NO_UPLOADS = "No uploads found"

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits
# Strong references so background exports are not collected mid-flight.
_PENDING: set[asyncio.Task] = set()


@dataclass(frozen=True)
class ExportDownload:
    job: ExportJob
    path: Path


@dataclass(frozen=True)
class ExportCleanup:
    expired_jobs: int
    orphan_archives: int


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_export_token() -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def archive_path(job_id: str) -> Path:
    return exports_dir() / f"{job_id}.zip"


def _staging_dir(job_id: str) -> Path:
    return exports_dir() / job_id


def download_url(token: str) -> str:
    return f"https://api.{get_settings().domain}/api/exports/{token}"


def _file_listing(root: Path) -> list[dict]:
    entries: list[dict] = []
    for current, _dirs, names in os.walk(root):
        for name in names:
            full = Path(current) / name
            try:
                info = full.lstat()
            except OSError:
                continue
            if not full.is_file():
                continue
            entries.append(
                {
                    "path": full.relative_to(root).as_posix(),
                    "size": info.st_size,
                    "modified": datetime.fromtimestamp(info.st_mtime, tz=timezone.utc).isoformat(),
                }
            )
    return entries


async def _archive(args: list[str], cwd: Path) -> None:
    start = time.monotonic()
    try:
        result = await run_command(args, cwd=cwd, timeout_s=ARCHIVE_TIMEOUT_S)
    except (OSError, asyncio.TimeoutError) as exc:
        record_external_call(integration="archiver", latency_ms=(time.monotonic() - start) * 1000.0, success=False)
        raise RuntimeError(f"{args[0]} failed: {str(exc) or exc.__class__.__name__}") from exc
    record_external_call(integration="archiver", latency_ms=(time.monotonic() - start) * 1000.0, success=result.ok)
    if not result.ok:
        raise RuntimeError(f"{args[0]} {args[1]} exited {result.returncode}: {result.stderr.strip()}")


async def start_export(instance_id: str) -> ExportJob:
    if load_instance(instance_id) is None:
        raise InstanceNotFoundError(instance_id)
    now = _utc_now()
    job = ExportJob(
        id=f"{instance_id}-{int(now.timestamp() * 1000)}",
        instance_id=instance_id,
        created_at=now,
    )
    save_export_job(job)
    task = asyncio.create_task(process_export(job.id))
    _PENDING.add(task)
    task.add_done_callback(_PENDING.discard)
    logger.info("export_queued job_id=%s instance_id=%s", job.id, instance_id)
    return job


async def drain_exports() -> None:
    # Wait for in-flight background exports; used at shutdown and by callers that need the result.
    if _PENDING:
        await asyncio.gather(*list(_PENDING), return_exceptions=True)


async def _mark_failed(job_id: str, error: str) -> None:
    def _apply(job: ExportJob) -> None:
        job.status = "failed"
        job.error = error
        job.completed_at = _utc_now()

    await update_export_job(job_id, _apply)
    increment_counter("export_failed")
    logger.warning("export_failed job_id=%s error=%s", job_id, error)


async def process_export(job_id: str) -> ExportJob | None:
    """Build the archive for one export job.

    The job moves to ``processing`` before any file is touched and ends as
    ``completed`` with a download token or ``failed`` with the error. The
    staging directory is always removed.
    """
    job = load_export_job(job_id)
    if job is None or job.status != "pending":
        return job
    record = load_instance(job.instance_id)
    started = _utc_now()

    def _processing(item: ExportJob) -> None:
        item.status = "processing"
        item.started_at = started

    await update_export_job(job_id, _processing)
    if record is None:
        await _mark_failed(job_id, f"Instance not found: {job.instance_id}")
        return load_export_job(job_id)

    source = uploads_path(job.instance_id)
    if not source.is_dir():
        await _mark_failed(job_id, MSG_NO_UPLOADS)
        return load_export_job(job_id)

    staging = _staging_dir(job_id)
    archive = archive_path(job_id)
    try:
        staging.mkdir(parents=True, exist_ok=True)
        metadata = {
            "instance_id": record.id,
            "email": record.email,
            "plan": record.plan,
            "created": record.created.isoformat(),
            "exported_at": _utc_now().isoformat(),
        }
        (staging / "metadata.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        listing = await asyncio.to_thread(_file_listing, source)
        (staging / "files.json").write_text(json.dumps(listing, indent=2), encoding="utf-8")
        await _archive([ARCHIVER, "-r", str(archive), ".", "-x", "*.log"], source)
        await _archive([ARCHIVER, "-u", str(archive), "metadata.json", "files.json"], staging)
        size = archive.stat().st_size
    except Exception as exc:  # noqa: BLE001 - any archiving failure is recorded on the job.
        archive.unlink(missing_ok=True)
        await _mark_failed(job_id, str(exc) or exc.__class__.__name__)
        return load_export_job(job_id)
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    completed_at = _utc_now()
    expires_at = completed_at + timedelta(hours=get_settings().export_expiry_hours)

    def _completed(item: ExportJob) -> None:
        item.status = "completed"
        item.completed_at = completed_at
        item.file_path = str(archive)
        item.file_size = size
        item.token = generate_export_token()
        item.expires_at = expires_at

    done = await update_export_job(job_id, _completed)
    increment_counter("export_completed")
    logger.info("export_completed job_id=%s bytes=%s", job_id, size)
    return done


def get_export_job(job_id: str) -> ExportJob | None:
    return load_export_job(job_id)


def list_export_jobs(instance_id: str | None = None) -> list[ExportJob]:
    jobs = _list_jobs()
    if instance_id is None:
        return jobs
    return [job for job in jobs if job.instance_id == instance_id]


def get_export_by_token(token: str, now: datetime | None = None) -> ExportDownload | None:
    # Only completed, unexpired jobs whose archive still exists are downloadable.
    now = now or _utc_now()
    for job in _list_jobs():
        if job.status != "completed" or not job.token:
            continue
        if not secrets.compare_digest(job.token, token):
            continue
        if job.expires_at is None or job.expires_at <= now:
            return None
        path = archive_path(job.id)
        if not path.is_file():
            return None
        return ExportDownload(job=job, path=path)
    return None


async def cleanup_expired_exports(now: datetime | None = None) -> ExportCleanup:
    now = now or _utc_now()
    expired = 0
    known: set[str] = set()
    for job in _list_jobs():
        if job.status == "completed" and job.expires_at is not None and job.expires_at <= now:
            archive_path(job.id).unlink(missing_ok=True)
            delete_export_job(job.id)
            expired += 1
            logger.info("export_expired job_id=%s", job.id)
            continue
        known.add(job.id)

    orphans = 0
    root = exports_dir()
    cutoff = now.timestamp() - get_settings().export_expiry_hours * 3600
    if root.is_dir():
        for archive in root.glob("*.zip"):
            if archive.stem in known:
                continue
            try:
                mtime = archive.stat().st_mtime
            except OSError:
                continue
            if mtime < cutoff:
                archive.unlink(missing_ok=True)
                orphans += 1
                logger.info("export_orphan_removed file=%s", archive.name)
    return ExportCleanup(expired_jobs=expired, orphan_archives=orphans)


async def recover_interrupted_exports() -> list[str]:
    # Jobs left mid-flight by a restart can never finish; fail them and drop partial files.
    recovered: list[str] = []
    for job in _list_jobs():
        if job.status not in ("pending", "processing"):
            continue
        shutil.rmtree(_staging_dir(job.id), ignore_errors=True)
        archive_path(job.id).unlink(missing_ok=True)
        await _mark_failed(job.id, MSG_INTERRUPTED)
        recovered.append(job.id)
    if recovered:
        logger.info("exports_recovered count=%s", len(recovered))
    return recovered


async def notify_export_ready(instance_id: str, job_id: str) -> bool:
    record = load_instance(instance_id)
    if record is None:
        raise InstanceNotFoundError(instance_id)
    job = load_export_job(job_id)
    if (
        job is None
        or job.instance_id != instance_id
        or job.status != "completed"
        or not job.token
        or job.expires_at is None
    ):
        raise ExportNotFoundError(f"No completed export {job_id} for {instance_id}")
    return await send_export_ready_email(record.email, download_url(job.token), job.expires_at)
