"""
Activity: Notifications — renders outcome mails and delivers them over SMTP.
"""

from __future__ import annotations

import html
import logging
import mimetypes
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Iterable, Protocol

import config
from models.schemas import NotificationPayload, Outcome, PipelineRun

log = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    def send(
        self,
        to: Iterable[str],
        subject: str,
        body_html: str,
        attachments: Iterable[Path] | None = None,
    ) -> int: ...


class SmtpChannel:
    """Sends HTML mail through an SMTP relay; returns 0 on success."""

    def __init__(
        self,
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        sender: str = config.NOTIFY_FROM,
        user: str = config.SMTP_USER,
        password: str = config.SMTP_PASSWORD,
        timeout: float = 30,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password
        self.timeout = timeout

    def send(self, to, subject, body_html, attachments=None) -> int:
        recipients = list(to)
        if not recipients:
            log.info("No recipients configured, skipping mail %r", subject)
            return 0

        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(body_html, subtype="html")
        for path in attachments or ():
            path = Path(path)
            if not path.is_file():
                log.warning("Attachment %s missing, skipped", path)
                continue
            ctype, _ = mimetypes.guess_type(path.name)
            maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
            msg.add_attachment(path.read_bytes(), maintype=maintype, subtype=subtype, filename=path.name)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.user:
                smtp.starttls()
                smtp.login(self.user, self.password)
            smtp.send_message(msg)
        log.info("Sent %r to %s", subject, ", ".join(recipients))
        return 0


# ── Rendering ─────────────────────────────────────────────────────────

_HEADLINES = {
    Outcome.SUCCESS: "Build succeeded",
    Outcome.FAILURE: "Build FAILED",
    Outcome.UNSTABLE: "Build UNSTABLE",
}


def build_payload(run: PipelineRun) -> NotificationPayload:
    lines = []
    for r in run.results:
        line = f"{r.ordinal}. {r.stage_name}: {r.status.value}"
        if r.error:
            line += f" ({r.error.splitlines()[0][:200]})"
        lines.append(line)
    return NotificationPayload(
        job_name=run.job_name,
        run_id=run.run_id,
        outcome=run.outcome,
        log_url=run.log_url,
        stage_lines=tuple(lines),
    )


def render_subject(payload: NotificationPayload) -> str:
    return f"{_HEADLINES[payload.outcome]}: {payload.job_name} #{payload.run_id}"


def render_body(payload: NotificationPayload, detailed: bool = True) -> str:
    """HTML body; the success mail is a short confirmation without the stage list."""
    link = html.escape(payload.log_url)
    parts = [
        f"<h2>{html.escape(_HEADLINES[payload.outcome])}</h2>",
        f"<p>Job: <b>{html.escape(payload.job_name)}</b><br>",
        f"Run: <b>{html.escape(payload.run_id)}</b><br>",
        f"Outcome: <b>{payload.outcome.value.upper()}</b></p>",
    ]
    if payload.outcome == Outcome.UNSTABLE:
        parts.append("<p>The pipeline completed, but some checks failed or reported problems.</p>")
    if detailed and payload.stage_lines:
        items = "".join(f"<li>{html.escape(line)}</li>" for line in payload.stage_lines)
        parts.append(f"<ul>{items}</ul>")
    if link:
        parts.append(f'<p>Logs: <a href="{link}">{link}</a></p>')
    return "\n".join(parts)
