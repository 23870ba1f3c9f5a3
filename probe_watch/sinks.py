from __future__ import annotations

import asyncio
import json
import shutil
import sys
from dataclasses import dataclass
from typing import Protocol, TextIO

import httpx
import structlog

from probe_watch.models import AlertRecord, AlertSeverity, EndpointCheck, ProbeOutcome


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900
URL_COLUMN_WIDTH = 50


class AlertDeliveryError(RuntimeError):
    """An alert channel could not render an alert."""


class LogSink(Protocol):
    def record(self, check: EndpointCheck, outcome: ProbeOutcome) -> None: ...


class AlertSink(Protocol):
    async def deliver(self, alert: AlertRecord) -> None: ...


def format_log_line(outcome: ProbeOutcome, url: str) -> str:
    return (
        f"{outcome.timestamp:>11}, "
        f"{outcome.log_status:>3}, "
        f"{outcome.elapsed_ms:>6}, "
        f"{url:<{URL_COLUMN_WIDTH}.{URL_COLUMN_WIDTH}}"
    )


class ConsoleLogSink:
    """Writes one fixed-width record per probe, stdout by default."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream

    def record(self, check: EndpointCheck, outcome: ProbeOutcome) -> None:
        stream = self.stream or sys.stdout
        print(format_log_line(outcome, check.url), file=stream, flush=True)


class LoggingAlertSink:
    async def deliver(self, alert: AlertRecord) -> None:
        log = logger.error if alert.severity >= AlertSeverity.ERROR else logger.warning
        log(
            alert.summary,
            job=alert.job,
            component=alert.component,
            body=alert.body,
            persistent=alert.persistent,
        )


class DesktopAlertSink:
    """Desktop popups through the freedesktop ``notify-send`` tool."""

    def __init__(self, executable: str = "notify-send", *, app_name: str = "probe-watch"):
        self.executable = executable
        self.app_name = app_name

    @staticmethod
    def available(executable: str = "notify-send") -> bool:
        return shutil.which(executable) is not None

    def build_command(self, alert: AlertRecord) -> list[str]:
        cmd = [self.executable, "--app-name", self.app_name, "--icon", alert.icon]
        if alert.persistent:
            # The resident hint is not supported everywhere; a zero expire time is.
            cmd += ["--urgency", "critical", "--expire-time", "0", "--hint", "boolean:resident:true"]
        cmd += [alert.summary, alert.body]
        return cmd

    async def deliver(self, alert: AlertRecord) -> None:
        cmd = self.build_command(alert)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate()
        except OSError as e:
            raise AlertDeliveryError(f"Could not show notification: {type(e).__name__}: {e}") from e
        if proc.returncode != 0:
            detail = (stderr or b"").decode("utf-8", errors="replace").strip()
            raise AlertDeliveryError(f"Could not show notification: exit={proc.returncode} {detail}".rstrip())


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str


def telegram_alert_messages(alert: AlertRecord, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    """
    Render an alert as one or more Telegram messages.

    Oversized alerts are split on the body only; every part repeats the summary
    line with a ``(n/total)`` counter so each message stands alone.
    """
    max_len = max(40, int(max_len))
    marker = "🔴" if alert.severity >= AlertSeverity.ERROR else "🟠"
    header = f"{marker} {alert.summary}"[: max_len // 2]
    text = alert.body.strip()
    if alert.persistent:
        text += "\n\nStays open until acknowledged."

    single = f"{header}\n\n{text}"
    if len(single) <= max_len:
        return [single]

    # Room left for the body after "<header> (nn/nn)\n\n".
    room = max_len - len(header) - len(" (99/99)\n\n")
    chunks: list[str] = []
    while text:
        cut = len(text) if len(text) <= room else text.rfind(" ", 0, room + 1)
        if cut <= 0:
            cut = room
        chunks.append(text[:cut].rstrip())
        text = text[cut:].lstrip()
    return [f"{header} ({n}/{len(chunks)})\n\n{chunk}" for n, chunk in enumerate(chunks, 1)]


def redact_telegram_response(data: dict) -> str:
    safe = {"ok": data.get("ok")}
    if isinstance(data.get("result"), dict):
        safe["result"] = {"message_id": data["result"].get("message_id")}
    if data.get("error"):
        safe["error"] = data.get("error")
    if data.get("description"):
        safe["description"] = data.get("description")
    return json.dumps(safe, ensure_ascii=False)


async def send_telegram_message(
    client: httpx.AsyncClient, config: TelegramConfig, text: str
) -> tuple[bool, dict]:
    url = f"https://api.telegram.org/bot{config.bot_token}/sendMessage"
    payload = {"chat_id": config.chat_id, "text": text}
    try:
        resp = await client.post(url, json=payload, timeout=15.0)
        data = resp.json()
        return bool(data.get("ok")), data
    except (httpx.HTTPError, ValueError) as e:
        msg = f"{type(e).__name__}: {e}"
        if config.bot_token:
            msg = msg.replace(config.bot_token, "<redacted>")
        return False, {"ok": False, "error": msg}


class TelegramAlertSink:
    def __init__(self, client: httpx.AsyncClient, config: TelegramConfig):
        self.client = client
        self.config = config

    async def deliver(self, alert: AlertRecord) -> None:
        failures: list[str] = []
        for part in telegram_alert_messages(alert):
            ok, resp = await send_telegram_message(self.client, self.config, part)
            if not ok:
                failures.append(redact_telegram_response(resp))
        if failures:
            raise AlertDeliveryError(f"Telegram delivery failed: {'; '.join(failures)}")


class FanOutAlertSink:
    """Delivers to every channel, then reports the ones that failed."""

    def __init__(self, sinks: list[AlertSink]):
        self.sinks = list(sinks)

    async def deliver(self, alert: AlertRecord) -> None:
        errors: list[str] = []
        for sink in self.sinks:
            try:
                await sink.deliver(alert)
            except AlertDeliveryError as e:
                errors.append(f"{type(sink).__name__}: {e}")
        if errors:
            raise AlertDeliveryError("; ".join(errors))
