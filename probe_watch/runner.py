"""Sequential execution of one job's checks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import httpx
import structlog

from probe_watch.classify import classify
from probe_watch.models import AlertRecord, AlertSeverity, Job, JobResult, JobState, ProbeOutcome
from probe_watch.probe import ClientSettings, SetupError, build_client, execute_probe
from probe_watch.sinks import AlertSink, LogSink


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RunSettings:
    client: ClientSettings = field(default_factory=ClientSettings)
    slow_threshold: float = 0.5
    # Politeness pause between checks of the same job; 0 disables it.
    inter_check_delay: float = 1.0


async def run_job(
    job: Job,
    *,
    settings: RunSettings,
    log_sink: LogSink,
    alert_sink: AlertSink,
    transport: httpx.AsyncBaseTransport | None = None,
) -> JobResult:
    log = logger.bind(job=job.name)

    try:
        client = build_client(job, settings.client, transport=transport)
    except SetupError as e:
        log.error("Job setup failed", error=str(e))
        return JobResult(job=job.name, state=JobState.FAILED, reason="setup_error")

    outcomes: list[ProbeOutcome] = []
    alerts: list[AlertRecord] = []
    state = JobState.RUNNING
    reason = "ok"

    async with client:
        for idx, check in enumerate(job.checks):
            if idx > 0 and settings.inter_check_delay > 0:
                await asyncio.sleep(settings.inter_check_delay)

            outcome = await execute_probe(check, client, deadline=settings.client.request_timeout)
            outcomes.append(outcome)
            result = classify(
                outcome,
                job=job.name,
                component=check.name,
                url=check.url,
                slow_threshold=settings.slow_threshold,
            )

            log_sink.record(check, outcome)
            log.debug(
                "Probe finished",
                check=check.name,
                status_code=outcome.status_code,
                elapsed_ms=outcome.elapsed_ms,
                severity=result.severity.name,
                error=outcome.error,
            )

            if result.alert is not None:
                alerts.append(result.alert)
                try:
                    await alert_sink.deliver(result.alert)
                except Exception:
                    # A broken alert channel must not stop the monitoring itself.
                    log.exception("Alert delivery failed", check=check.name, summary=result.alert.summary)

            if result.severity >= AlertSeverity.ERROR:
                state = JobState.FAILED
                reason = "check_failed"
                skipped = len(job.checks) - idx - 1
                if skipped:
                    log.warning("Stopping job after failed check", check=check.name, skipped=skipped)
                break

    if state is JobState.RUNNING:
        state = JobState.COMPLETED

    log.info("Job finished", state=state.value, reason=reason, checks_run=len(outcomes), alerts=len(alerts))
    return JobResult(
        job=job.name,
        state=state,
        reason=reason,
        outcomes=tuple(outcomes),
        alerts=tuple(alerts),
    )
