"""
Failure reporting for the sfdocpipe pipeline.

The ErrorReporter always logs every failed URL with its cause. It can also
hand the run's failures to a notifier (webhook, e-mail, or any Notifier
subclass the caller injects). Notification is best-effort: a notifier that
fails is logged and never fails the run.
"""

from abc import ABC, abstractmethod
import logging
import smtplib
from email.message import EmailMessage
from typing import List, Optional, Sequence

import requests

from ..utils.data_models import FailureRecord, RunSummary
from ..utils.errors import NotificationError

logger = logging.getLogger(__name__)


def format_failures(failures: Sequence[FailureRecord], summary: Optional[RunSummary] = None) -> str:
    """Renders a plain-text digest of a run's failures."""
    lines = []
    if summary is not None:
        lines.append(
            f"Run {summary.status.value}: {summary.urls_succeeded}/{summary.urls_attempted} URLs "
            f"succeeded, {summary.urls_failed} failed, {summary.documents_stored} documents stored "
            f"in {summary.duration_seconds:.1f}s."
        )
        lines.append("")
    lines.append(f"{len(failures)} failed URL(s):")
    for failure in failures:
        lines.append(
            f"- {failure.source_url} [{failure.stage}, {failure.attempts} attempt(s)]: {failure.cause}"
        )
    return "\n".join(lines)


class Notifier(ABC):
    """Abstract base class for failure notification channels."""

    @abstractmethod
    def notify(self, failures: Sequence[FailureRecord], summary: Optional[RunSummary] = None):
        """
        Sends one aggregated notification for a run.

        Raises:
            NotificationError: If the notification could not be delivered.
        """
        pass


class WebhookNotifier(Notifier):
    """Posts the failure digest as JSON to a webhook URL (Slack-compatible)."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def notify(self, failures: Sequence[FailureRecord], summary: Optional[RunSummary] = None):
        payload = {
            "text": format_failures(failures, summary),
            "failures": [failure.to_dict() for failure in failures],
        }
        if summary is not None:
            payload["summary"] = summary.to_dict()
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise NotificationError(
                f"Webhook notification to '{self.url}' failed: {e}",
                component="webhook_notifier",
            ) from e
        logger.info(f"Sent failure notification to webhook '{self.url}'.")


class EmailNotifier(Notifier):
    """Sends the failure digest by e-mail over SMTP."""

    def __init__(
        self,
        sender: str,
        recipients: List[str],
        host: str = "localhost",
        port: int = 587,
        username: str = None,
        password: str = None,
        use_tls: bool = True,
        subject: str = "sfdocpipe: ingestion failures",
        timeout: float = 10.0,
    ):
        self.sender = sender
        self.recipients = recipients
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.subject = subject
        self.timeout = timeout

    def build_message(
        self, failures: Sequence[FailureRecord], summary: Optional[RunSummary] = None
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = f"{self.subject} ({len(failures)})"
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message.set_content(format_failures(failures, summary))
        return message

    def notify(self, failures: Sequence[FailureRecord], summary: Optional[RunSummary] = None):
        message = self.build_message(failures, summary)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                f"E-mail notification via {self.host}:{self.port} failed: {e}",
                component="email_notifier",
            ) from e
        logger.info(f"Sent failure notification to {', '.join(self.recipients)}.")


class ErrorReporter:
    """
    Logs failures and optionally dispatches a single notification per run.

    Args:
        notifier (Notifier): Where to send the digest; None disables notification.
        notify_on_failure (bool): Gate for the notifier.
    """

    def __init__(self, notifier: Optional[Notifier] = None, notify_on_failure: bool = False):
        self.notifier = notifier
        self.notify_on_failure = notify_on_failure

    def report(
        self, failures: Sequence[FailureRecord], summary: Optional[RunSummary] = None
    ) -> bool:
        """
        Reports a run's failures.

        Returns:
            bool: True if a notification was delivered.
        """
        for failure in failures:
            logger.error(
                f"Failed to ingest '{failure.source_url}' at stage '{failure.stage}' "
                f"after {failure.attempts} attempt(s): {failure.cause}"
            )

        if not failures or not self.notify_on_failure or self.notifier is None:
            return False

        try:
            self.notifier.notify(failures, summary)
            return True
        except NotificationError as e:
            logger.warning(f"Failure notification could not be sent: {e}")
        except Exception as e:
            logger.warning(
                f"Unexpected error while sending failure notification: {e}",
                exc_info=True,
            )
        return False
