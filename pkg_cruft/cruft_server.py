"""Local pkg-cruft report server (FastAPI).

Runs the same read-only audits as the CLI as background jobs and serves
their findings as JSON. Nothing here changes package state or keeps
results beyond the lifetime of the process.

Default host is 127.0.0.1 (localhost-only).
"""

from __future__ import annotations

import argparse
import logging
import threading
import time
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .commands import Command, Toolbox, run_audit
from .config import ConfigError, CruftConfig
from .cruft_cli import configure_logging

LOGGER = logging.getLogger("pkg_cruft.server")

MAX_RETAINED_JOBS = 64
FINISHED = {"completed", "failed"}


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


# ---------------------------- Response Helpers ------------------------------ #


def api_ok(data: Any, *, meta: dict[str, Any] | None = None) -> JSONResponse:
    body = {
        "status": "ok",
        "timestamp": now_utc_iso(),
        "meta": meta or {},
        "data": data,
    }
    return JSONResponse(body)


def api_error(code: str, message: str, status_code: int = 400) -> JSONResponse:
    body = {
        "status": "error",
        "timestamp": now_utc_iso(),
        "error": {"code": code, "message": message},
    }
    return JSONResponse(body, status_code=status_code)


class AuditStarted(BaseModel):
    job_id: str
    command: Command
    status: str


# ------------------------------- Job Manager -------------------------------- #


@dataclass
class JobState:
    job_id: str
    command: str
    status: str = "queued"
    created_at: str = field(default_factory=now_utc_iso)
    updated_at: str = field(default_factory=now_utc_iso)
    duration_sec: float | None = None
    findings: list[str] | None = None
    error: dict[str, Any] | None = None


class JobManager:
    """Runs audits in the background and keeps the most recent results.

    Once more than ``max_jobs`` are held, the oldest finished jobs are
    dropped. Queued and running jobs are never evicted.
    """

    def __init__(self, max_workers: int = 2, max_jobs: int = MAX_RETAINED_JOBS):
        self.executor = ThreadPoolExecutor(max_workers=max_workers)
        self.max_jobs = max_jobs
        self._jobs: dict[str, JobState] = {}
        self._lock = threading.Lock()

    def create_job(self, command: Command) -> JobState:
        job = JobState(job_id=uuid.uuid4().hex, command=command.value)
        with self._lock:
            self._jobs[job.job_id] = job
            self._evict_finished()
        return job

    def _evict_finished(self) -> None:
        excess = len(self._jobs) - self.max_jobs
        if excess <= 0:
            return
        stale = [job_id for job_id, job in self._jobs.items() if job.status in FINISHED][:excess]
        for job_id in stale:
            del self._jobs[job_id]
        if stale:
            LOGGER.debug("jobs_evicted count=%s retained=%s", len(stale), len(self._jobs))

    def get(self, job_id: str) -> JobState | None:
        with self._lock:
            return self._jobs.get(job_id)

    def _update(self, job_id: str, **changes: Any) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            for key, value in changes.items():
                setattr(job, key, value)
            job.updated_at = now_utc_iso()

    def submit(self, job: JobState, func: Callable[[], list[str]]) -> None:
        self._update(job.job_id, status="running")

        def runner() -> None:
            started = time.perf_counter()
            try:
                findings = func()
                self._update(
                    job.job_id,
                    status="completed",
                    findings=findings,
                    duration_sec=round(time.perf_counter() - started, 3),
                )
                LOGGER.info("audit_complete job=%s command=%s findings=%s", job.job_id, job.command, len(findings))
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("audit_failed job=%s command=%s err=%s", job.job_id, job.command, exc)
                self._update(
                    job.job_id,
                    status="failed",
                    error={"code": "AUDIT_FAILED", "message": str(exc), "traceback": traceback.format_exc()},
                    duration_sec=round(time.perf_counter() - started, 3),
                )

        self.executor.submit(runner)


# --------------------------------- App -------------------------------------- #


def create_app(config: CruftConfig | None = None, tools: Toolbox | None = None) -> FastAPI:
    app = FastAPI(
        title="pkg-cruft",
        version=__version__,
        description="Read-only package cruft audits.",
    )
    app.state.config = config or CruftConfig.from_env()
    app.state.tools = tools or Toolbox()
    app.state.jobs = JobManager()

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_: Request, exc: Exception):
        LOGGER.exception("Unhandled server error: %s", exc)
        return api_error("INTERNAL_SERVER_ERROR", str(exc), status_code=500)

    @app.get("/healthz")
    async def healthz():
        return api_ok({"version": __version__, "prefix": app.state.config.prefix})

    @app.post("/api/v1/audits/{command}", summary="Start an audit", response_description="Job ID for tracking")
    async def start_audit(command: str):
        try:
            cmd = Command(command)
        except ValueError:
            raise HTTPException(status_code=404, detail=f"Unknown audit: {command}") from None
        job = app.state.jobs.create_job(cmd)
        app.state.jobs.submit(job, lambda: list(run_audit(cmd, app.state.config, app.state.tools)))
        started = AuditStarted(job_id=job.job_id, command=cmd, status=job.status)
        return api_ok(started.model_dump(mode="json"))

    @app.get("/api/v1/jobs/{job_id}", summary="Get audit status and findings")
    async def get_job(job_id: str):
        job = app.state.jobs.get(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return api_ok(asdict(job))

    return app


# --------------------------------- Main ------------------------------------- #


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pkg-cruft-server", description="Local pkg-cruft report server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8002)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    import uvicorn

    args = parse_args(argv)
    configure_logging(logging.INFO)
    try:
        app = create_app()
    except ConfigError as exc:
        LOGGER.error("config_invalid err=%s", exc)
        return 1
    LOGGER.info("Starting pkg-cruft server host=%s port=%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
