"""Run every configured job concurrently and aggregate the outcome."""

from __future__ import annotations

import asyncio
from typing import Sequence

import httpx
import structlog

from probe_watch.models import Job, JobResult, JobState, RunSummary
from probe_watch.runner import RunSettings, run_job
from probe_watch.sinks import AlertSink, LogSink


logger = structlog.get_logger(__name__)


async def run_jobs(
    jobs: Sequence[Job],
    *,
    settings: RunSettings,
    log_sink: LogSink,
    alert_sink: AlertSink,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RunSummary:
    """
    One asyncio task per job. Jobs never cancel each other; a job that raises
    unexpectedly is reported as failed instead of propagating.
    """
    tasks = [
        asyncio.create_task(
            run_job(job, settings=settings, log_sink=log_sink, alert_sink=alert_sink, transport=transport),
            name=f"job:{job.name}",
        )
        for job in jobs
    ]
    gathered = await asyncio.gather(*tasks, return_exceptions=True)

    results: list[JobResult] = []
    for job, item in zip(jobs, gathered):
        if isinstance(item, BaseException):
            if isinstance(item, (KeyboardInterrupt, SystemExit, asyncio.CancelledError)):
                raise item
            logger.error("Job crashed", job=job.name, error=f"{type(item).__name__}: {item}", exc_info=item)
            results.append(JobResult(job=job.name, state=JobState.FAILED, reason="crashed"))
        else:
            results.append(item)

    summary = RunSummary(results=tuple(results))
    if summary.ok:
        logger.info("Run finished", jobs=len(results))
    else:
        logger.warning("Run finished with failures", jobs=len(results), failed=summary.failed_jobs)
    return summary
