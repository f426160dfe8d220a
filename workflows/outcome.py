"""
Outcome Dispatcher — the post-run phase of every pipeline.

Sends exactly one outcome-specific notification, then always runs the
cleanup actions. Neither a failed notification nor a failed cleanup can
change the outcome already recorded for the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, Sequence

from activities.notify import NotificationChannel, build_payload, render_body, render_subject
from models.schemas import NotificationPayload, Outcome, PipelineRun
from workflows.executor import classify_outcome

log = logging.getLogger(__name__)

CleanupAction = Callable[[], None]


@dataclass
class DispatchReport:
    outcome: Outcome
    notified: bool = False
    notification_error: str | None = None
    cleanup_errors: list[str] = field(default_factory=list)


class OutcomeDispatcher:
    def __init__(
        self,
        channel: NotificationChannel,
        recipients: Sequence[str],
        cleanup_actions: Iterable[tuple[str, CleanupAction]] = (),
        attachments: Iterable[Path] = (),
    ):
        self.channel = channel
        self.recipients = list(recipients)
        self.cleanup_actions = list(cleanup_actions)
        self.attachments = list(attachments)

    def finalize(self, run: PipelineRun) -> DispatchReport:
        outcome = classify_outcome(run.results, run.unstable_reasons)
        if outcome != run.outcome:
            log.warning("Run %s recorded %s but classifies as %s", run.run_id, run.outcome.value, outcome.value)
        report = DispatchReport(outcome=outcome)
        payload = replace(build_payload(run), outcome=outcome)

        try:
            handler = {
                Outcome.SUCCESS: self.notify_success,
                Outcome.FAILURE: self.notify_failure,
                Outcome.UNSTABLE: self.notify_unstable,
            }[outcome]
            handler(payload)
            report.notified = True
        except Exception as e:
            report.notification_error = str(e)
            log.error("Notification for run %s failed: %s", run.run_id, e)
        finally:
            report.cleanup_errors = self.cleanup()

        log.info("Run %s finalized as %s", run.run_id, outcome.value.upper())
        return report

    def notify_success(self, payload: NotificationPayload) -> None:
        self._send(payload, detailed=False)

    def notify_failure(self, payload: NotificationPayload) -> None:
        self._send(payload, detailed=True, attachments=self.attachments)

    def notify_unstable(self, payload: NotificationPayload) -> None:
        self._send(payload, detailed=True, attachments=self.attachments)

    def _send(self, payload: NotificationPayload, detailed: bool, attachments: Iterable[Path] = ()) -> None:
        code = self.channel.send(
            self.recipients,
            render_subject(payload),
            render_body(payload, detailed=detailed),
            attachments=list(attachments) or None,
        )
        if code != 0:
            raise RuntimeError(f"notification channel returned {code}")

    def cleanup(self) -> list[str]:
        """Run every cleanup action; failures are logged and collected, never raised."""
        errors = []
        for name, action in self.cleanup_actions:
            try:
                action()
                log.info("Cleanup %s done", name)
            except Exception as e:
                errors.append(f"{name}: {e}")
                log.warning("Cleanup %s failed: %s", name, e)
        return errors
