"""Turn a probe outcome into an alert severity and, when needed, an alert."""

from __future__ import annotations

from probe_watch.models import AlertRecord, AlertSeverity, Classification, ProbeOutcome


def _ms(seconds: float) -> int:
    return int(seconds * 1000)


def classify(
    outcome: ProbeOutcome,
    *,
    job: str,
    component: str,
    url: str,
    slow_threshold: float,
) -> Classification:
    """
    Classify one outcome.

    Every applicable rule contributes a candidate; the highest severity wins and
    its alert is the one returned. ``slow_threshold`` is in seconds.
    """
    candidates: list[Classification] = []
    status = outcome.status_code

    if status == 200 and outcome.duration > slow_threshold:
        candidates.append(
            Classification(
                AlertSeverity.WARN,
                AlertRecord(
                    job=job,
                    component=component,
                    url=url,
                    severity=AlertSeverity.WARN,
                    summary=f"{job} Slow {component}",
                    body=f"{outcome.elapsed_ms} > {_ms(slow_threshold)} for {url}.",
                ),
            )
        )

    if status == 200:
        candidates.append(Classification(AlertSeverity.NONE))
    elif status is not None and 201 <= status <= 299:
        candidates.append(
            Classification(
                AlertSeverity.WARN,
                AlertRecord(
                    job=job,
                    component=component,
                    url=url,
                    severity=AlertSeverity.WARN,
                    summary=f"{job} {component} Unexpected HTTP {status}",
                    body=f"{url} returned HTTP {status}, not HTTP 200 OK as expected.",
                ),
            )
        )
    elif status is None:
        # Usually, but not necessarily, a network problem.
        candidates.append(
            Classification(
                AlertSeverity.ERROR,
                AlertRecord(
                    job=job,
                    component=component,
                    url=url,
                    severity=AlertSeverity.ERROR,
                    summary=f"{job} {component} Down",
                    body=f"The HTTP request to {url} could not be completed.",
                    persistent=True,
                ),
            )
        )
    else:
        candidates.append(
            Classification(
                AlertSeverity.ERROR,
                AlertRecord(
                    job=job,
                    component=component,
                    url=url,
                    severity=AlertSeverity.ERROR,
                    summary=f"{job} {component} Down",
                    body=f"{url} returned HTTP {status}.",
                    persistent=True,
                ),
            )
        )

    severity = AlertSeverity.highest(*(c.severity for c in candidates))
    for candidate in candidates:
        if candidate.severity == severity and candidate.alert is not None:
            return candidate
    return Classification(severity)
