from __future__ import annotations

import httpx
import pytest

import probe_watch.runner as runner
from probe_watch.models import AlertRecord, AlertSeverity, EndpointCheck, Job, JobState, ProbeOutcome
from probe_watch.probe import ClientSettings
from probe_watch.runner import RunSettings, run_job
from probe_watch.sinks import AlertDeliveryError


OFFLINE = RunSettings(client=ClientSettings(request_timeout=5.0), slow_threshold=0.5, inter_check_delay=0)


class RecordingLogSink:
    def __init__(self) -> None:
        self.records: list[tuple[EndpointCheck, ProbeOutcome]] = []

    def record(self, check: EndpointCheck, outcome: ProbeOutcome) -> None:
        self.records.append((check, outcome))


class RecordingAlertSink:
    def __init__(self) -> None:
        self.alerts: list[AlertRecord] = []

    async def deliver(self, alert: AlertRecord) -> None:
        self.alerts.append(alert)


class BrokenAlertSink:
    def __init__(self) -> None:
        self.attempts = 0

    async def deliver(self, alert: AlertRecord) -> None:
        self.attempts += 1
        raise AlertDeliveryError("Could not show notification.")


def _job(*paths: str, max_redirects: int = 0) -> Job:
    return Job(
        name="Proj",
        checks=tuple(EndpointCheck(url=f"https://a.test{p}", name=p.strip("/")) for p in paths),
        max_redirects=max_redirects,
    )


def _fake_probe(statuses: dict[str, int | None], calls: list[str], duration: float = 0.05):
    async def fake_execute_probe(check: EndpointCheck, client: httpx.AsyncClient, **kwargs) -> ProbeOutcome:
        calls.append(check.url)
        return ProbeOutcome(timestamp=1700000000, duration=duration, status_code=statuses[check.url])

    return fake_execute_probe


@pytest.mark.asyncio
async def test_single_fast_200_completes_without_alerts() -> None:
    job = _job("/ok")
    log_sink, alert_sink = RecordingLogSink(), RecordingAlertSink()
    transport = httpx.MockTransport(lambda request: httpx.Response(200))

    result = await run_job(job, settings=OFFLINE, log_sink=log_sink, alert_sink=alert_sink, transport=transport)

    assert result.state is JobState.COMPLETED
    assert result.ok is True
    assert result.reason == "ok"
    assert len(log_sink.records) == 1
    assert alert_sink.alerts == []


@pytest.mark.asyncio
async def test_timeout_on_second_check_fails_job_with_one_error_alert() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/down":
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200)

    job = _job("/ok", "/down")
    log_sink, alert_sink = RecordingLogSink(), RecordingAlertSink()

    result = await run_job(
        job, settings=OFFLINE, log_sink=log_sink, alert_sink=alert_sink, transport=httpx.MockTransport(handler)
    )

    assert result.state is JobState.FAILED
    assert result.reason == "check_failed"
    assert [c.url for c, _ in log_sink.records] == ["https://a.test/ok", "https://a.test/down"]
    assert len(alert_sink.alerts) == 1
    assert alert_sink.alerts[0].severity is AlertSeverity.ERROR
    assert alert_sink.alerts[0].url == "https://a.test/down"
    assert alert_sink.alerts[0].persistent is True


@pytest.mark.asyncio
async def test_checks_after_an_error_are_never_probed(monkeypatch: pytest.MonkeyPatch) -> None:
    job = _job("/c1", "/c2", "/c3")
    calls: list[str] = []
    statuses = {"https://a.test/c1": 200, "https://a.test/c2": 500, "https://a.test/c3": 200}
    monkeypatch.setattr(runner, "execute_probe", _fake_probe(statuses, calls))
    log_sink, alert_sink = RecordingLogSink(), RecordingAlertSink()

    result = await run_job(job, settings=OFFLINE, log_sink=log_sink, alert_sink=alert_sink)

    assert calls == ["https://a.test/c1", "https://a.test/c2"]
    assert result.state is JobState.FAILED
    assert len(result.outcomes) == 2
    assert len(log_sink.records) == 2


@pytest.mark.asyncio
async def test_warnings_do_not_stop_the_job(monkeypatch: pytest.MonkeyPatch) -> None:
    job = _job("/slow", "/created", "/ok")
    calls: list[str] = []
    statuses = {"https://a.test/slow": 200, "https://a.test/created": 201, "https://a.test/ok": 200}
    monkeypatch.setattr(runner, "execute_probe", _fake_probe(statuses, calls, duration=0.9))
    alert_sink = RecordingAlertSink()

    result = await run_job(job, settings=OFFLINE, log_sink=RecordingLogSink(), alert_sink=alert_sink)

    assert result.state is JobState.COMPLETED
    assert len(calls) == 3
    assert [a.severity for a in alert_sink.alerts] == [AlertSeverity.WARN] * 3
    assert result.alerts == tuple(alert_sink.alerts)


@pytest.mark.asyncio
async def test_plaintext_target_fails_job_before_any_probe(monkeypatch: pytest.MonkeyPatch) -> None:
    job = Job(
        name="Proj",
        checks=(EndpointCheck(url="https://a.test/ok", name="ok"), EndpointCheck(url="http://a.test/", name="plain")),
    )
    calls: list[str] = []
    monkeypatch.setattr(runner, "execute_probe", _fake_probe({}, calls))
    log_sink = RecordingLogSink()

    result = await run_job(job, settings=OFFLINE, log_sink=log_sink, alert_sink=RecordingAlertSink())

    assert result.state is JobState.FAILED
    assert result.reason == "setup_error"
    assert calls == []
    assert log_sink.records == []


@pytest.mark.asyncio
async def test_alert_delivery_failure_does_not_abort_job(monkeypatch: pytest.MonkeyPatch) -> None:
    job = _job("/a", "/b")
    calls: list[str] = []
    statuses = {"https://a.test/a": 204, "https://a.test/b": 200}
    monkeypatch.setattr(runner, "execute_probe", _fake_probe(statuses, calls))
    alert_sink = BrokenAlertSink()

    result = await run_job(job, settings=OFFLINE, log_sink=RecordingLogSink(), alert_sink=alert_sink)

    assert alert_sink.attempts == 1
    assert len(calls) == 2
    assert result.state is JobState.COMPLETED


@pytest.mark.asyncio
async def test_inter_check_delay_between_checks_only(monkeypatch: pytest.MonkeyPatch) -> None:
    job = _job("/a", "/b", "/c")
    calls: list[str] = []
    sleeps: list[float] = []
    statuses = {"https://a.test/a": 200, "https://a.test/b": 200, "https://a.test/c": 200}
    monkeypatch.setattr(runner, "execute_probe", _fake_probe(statuses, calls))

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    monkeypatch.setattr(runner.asyncio, "sleep", fake_sleep)
    settings = RunSettings(client=ClientSettings(), slow_threshold=0.5, inter_check_delay=1.0)

    await run_job(job, settings=settings, log_sink=RecordingLogSink(), alert_sink=RecordingAlertSink())

    assert sleeps == [1.0, 1.0]


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_url", ["https://a.test:abc/", "https://[::1/", "https://exa\x00mple.com/"])
async def test_malformed_url_fails_job_at_setup(bad_url: str) -> None:
    job = Job(
        name="Proj",
        checks=(EndpointCheck(url="https://a.test/ok", name="ok"), EndpointCheck(url=bad_url, name="bad")),
    )
    log_sink, alert_sink = RecordingLogSink(), RecordingAlertSink()
    transport = httpx.MockTransport(lambda request: httpx.Response(200))

    result = await run_job(job, settings=OFFLINE, log_sink=log_sink, alert_sink=alert_sink, transport=transport)

    assert result.state is JobState.FAILED
    assert result.reason == "setup_error"
    assert log_sink.records == []
    assert result.outcomes == ()
