from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


# Only used when rendering an outcome into the columnar log record.
TRANSPORT_FAILURE_STATUS = -1


@dataclass(frozen=True)
class EndpointCheck:
    url: str
    name: str


@dataclass(frozen=True)
class Job:
    name: str
    checks: tuple[EndpointCheck, ...]
    max_redirects: int = 0

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Job name must not be empty")
        if int(self.max_redirects) < 0:
            raise ValueError(f"max_redirects must be >= 0, got {self.max_redirects!r}")
        # Accept any sequence but store an immutable tuple.
        object.__setattr__(self, "checks", tuple(self.checks))


@dataclass(frozen=True)
class ProbeOutcome:
    """
    Result of one probe.

    status_code is the HTTP status, or None when the request never produced one
    (timeout, DNS, TLS, refused connection, too many redirects, ...).
    """

    timestamp: int
    duration: float
    status_code: int | None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise ValueError(f"duration must be >= 0, got {self.duration!r}")
        if self.status_code is not None and not 100 <= self.status_code <= 599:
            raise ValueError(f"HTTP status out of range: {self.status_code!r}")

    @property
    def transport_failed(self) -> bool:
        return self.status_code is None

    @property
    def elapsed_ms(self) -> int:
        # Truncated like a millisecond counter, after absorbing float noise at microsecond precision.
        return int(round(self.duration * 1_000_000)) // 1000

    @property
    def log_status(self) -> int:
        return TRANSPORT_FAILURE_STATUS if self.status_code is None else self.status_code


class AlertSeverity(IntEnum):
    NONE = 0
    WARN = 1
    ERROR = 2

    @classmethod
    def highest(cls, *severities: AlertSeverity) -> AlertSeverity:
        return max(severities, default=cls.NONE)


@dataclass(frozen=True)
class AlertRecord:
    job: str
    component: str
    url: str
    severity: AlertSeverity
    summary: str
    body: str
    persistent: bool = False

    @property
    def icon(self) -> str:
        return "error" if self.severity >= AlertSeverity.ERROR else "warning"


@dataclass(frozen=True)
class Classification:
    severity: AlertSeverity
    alert: AlertRecord | None = None


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class JobResult:
    job: str
    state: JobState
    reason: str
    outcomes: tuple[ProbeOutcome, ...] = ()
    alerts: tuple[AlertRecord, ...] = ()

    @property
    def ok(self) -> bool:
        return self.state is JobState.COMPLETED


@dataclass(frozen=True)
class RunSummary:
    results: tuple[JobResult, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed_jobs(self) -> list[str]:
        return [r.job for r in self.results if not r.ok]

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
