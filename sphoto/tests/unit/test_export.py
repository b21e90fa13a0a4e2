from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import pytest

from sphoto.core.errors import ExportNotFoundError, InstanceNotFoundError
from sphoto.domain.models import ExportJob
from sphoto.persistence.repos.exports import load_export_job, save_export_job
from sphoto.providers.shell import CommandResult
from sphoto.services import export, scheduler
from sphoto.tests.utils.factories import fake_email, make_instance, utc_now, write_upload


def _fake_archiver(monkeypatch, *, returncode: int = 0) -> list[list[str]]:
    calls: list[list[str]] = []

    async def _run(args: list[str], *, cwd: Path | None = None, timeout_s: float | None = None) -> CommandResult:
        calls.append(args)
        if returncode == 0:
            archive = Path(args[2])
            archive.parent.mkdir(parents=True, exist_ok=True)
            with archive.open("ab") as handle:
                handle.write(b"PK" * 8)
            return CommandResult(0, "", "")
        return CommandResult(returncode, "", "zip error: Nothing to do!")

    monkeypatch.setattr(export, "run_command", _run)
    return calls


def _pending_job(instance_id: str = "anna-ab12", job_id: str = "anna-ab12-1") -> ExportJob:
    job = ExportJob(id=job_id, instance_id=instance_id, created_at=utc_now())
    save_export_job(job)
    return job


@pytest.mark.asyncio
async def test_export_builds_archive_and_issues_token(monkeypatch) -> None:
    make_instance("anna-ab12")
    write_upload("anna-ab12", "2024/a.jpg", 10)
    calls = _fake_archiver(monkeypatch)

    queued = await export.start_export("anna-ab12")
    await export.drain_exports()

    assert queued.status == "pending"
    job = load_export_job(queued.id)
    assert job is not None
    assert job.status == "completed"
    assert job.file_size == 32
    assert job.token is not None and len(job.token) == export.TOKEN_LENGTH
    assert job.expires_at - job.completed_at == timedelta(hours=24)
    assert calls[0][:2] == ["zip", "-r"]
    assert calls[1][-2:] == ["metadata.json", "files.json"]
    assert not (export.exports_dir() / job.id).exists()

    download = export.get_export_by_token(job.token)
    assert download is not None
    assert download.path == export.archive_path(job.id)


@pytest.mark.asyncio
async def test_export_without_uploads_fails(monkeypatch) -> None:
    record = make_instance("anna-ab12")
    export.uploads_path(record.id).rmdir()
    _fake_archiver(monkeypatch)
    _pending_job()

    job = await export.process_export("anna-ab12-1")

    assert job is not None
    assert job.status == "failed"
    assert job.error == export.MSG_NO_UPLOADS


@pytest.mark.asyncio
async def test_archiver_failure_is_recorded(monkeypatch) -> None:
    make_instance("anna-ab12")
    _fake_archiver(monkeypatch, returncode=12)
    _pending_job()

    job = await export.process_export("anna-ab12-1")

    assert job is not None
    assert job.status == "failed"
    assert "exited 12" in job.error
    assert not export.archive_path(job.id).exists()


@pytest.mark.asyncio
async def test_only_pending_jobs_are_processed(monkeypatch) -> None:
    make_instance("anna-ab12")
    calls = _fake_archiver(monkeypatch)
    job = _pending_job()
    job.status = "failed"
    save_export_job(job)

    await export.process_export(job.id)

    assert calls == []


@pytest.mark.asyncio
async def test_start_export_requires_instance() -> None:
    with pytest.raises(InstanceNotFoundError):
        await export.start_export("missing-xx00")


@pytest.mark.asyncio
async def test_expired_tokens_are_not_downloadable(monkeypatch) -> None:
    make_instance("anna-ab12")
    _fake_archiver(monkeypatch)
    _pending_job()
    job = await export.process_export("anna-ab12-1")

    assert export.get_export_by_token("not-the-token") is None
    assert export.get_export_by_token(job.token, now=job.expires_at + timedelta(seconds=1)) is None


@pytest.mark.asyncio
async def test_cleanup_removes_expired_jobs_and_orphans(monkeypatch) -> None:
    make_instance("anna-ab12")
    _fake_archiver(monkeypatch)
    _pending_job()
    job = await export.process_export("anna-ab12-1")

    orphan = export.exports_dir() / "stale.zip"
    orphan.write_bytes(b"PK")
    old = (utc_now() - timedelta(days=5)).timestamp()
    os.utime(orphan, (old, old))

    result = await export.cleanup_expired_exports(now=job.expires_at + timedelta(minutes=1))

    assert result.expired_jobs == 1
    assert result.orphan_archives == 1
    assert load_export_job(job.id) is None
    assert not export.archive_path(job.id).exists()
    assert not orphan.exists()


@pytest.mark.asyncio
async def test_recover_fails_interrupted_jobs() -> None:
    make_instance("anna-ab12")
    _pending_job(job_id="anna-ab12-1")
    processing = _pending_job(job_id="anna-ab12-2")
    processing.status = "processing"
    save_export_job(processing)

    recovered = await export.recover_interrupted_exports()

    assert sorted(recovered) == ["anna-ab12-1", "anna-ab12-2"]
    assert load_export_job("anna-ab12-2").error == export.MSG_INTERRUPTED


@pytest.mark.asyncio
async def test_worker_startup_leaves_running_exports_alone() -> None:
    make_instance("anna-ab12")
    running = _pending_job(job_id="anna-ab12-1")
    running.status = "processing"
    save_export_job(running)

    await scheduler.run_startup_jobs(recover_exports=False)
    assert load_export_job("anna-ab12-1").status == "processing"

    await scheduler.run_startup_jobs()
    assert load_export_job("anna-ab12-1").status == "failed"


@pytest.mark.asyncio
async def test_notify_sends_download_link(monkeypatch) -> None:
    make_instance("anna-ab12")
    _fake_archiver(monkeypatch)
    _pending_job()
    job = await export.process_export("anna-ab12-1")

    assert await export.notify_export_ready("anna-ab12", job.id) is True
    html = fake_email().sent[0].html
    assert f"https://api.sphoto.test/api/exports/{job.token}" in html

    with pytest.raises(ExportNotFoundError):
        await export.notify_export_ready("anna-ab12", "anna-ab12-missing")
