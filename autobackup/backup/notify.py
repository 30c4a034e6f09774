"""
Email status reports.

Delivery is best-effort: a missing mail relay or a send failure is
logged as a warning and never changes the outcome of the run.
"""

import shutil
import socket
import smtplib
import logging
import subprocess
from email.message import EmailMessage
from typing import Optional, Sequence

from autobackup.errors import NotifyWarning
from .compression import format_size


logger = logging.getLogger(__name__)


class MailSender:
    """Delivers one plain-text message."""

    def send(self, message: EmailMessage):
        """
        Raises:
            NotifyWarning: If the message cannot be delivered
        """
        raise NotImplementedError


class SendmailSender(MailSender):
    """Pipes the message to a sendmail-compatible command (sendmail, ssmtp, msmtp)."""

    def __init__(self, command: Sequence[str] = ('sendmail', '-t', '-oi')):
        self.command = list(command)

    def send(self, message):
        if shutil.which(self.command[0]) is None:
            raise NotifyWarning(f"'{self.command[0]}' command not found. Cannot send email notification.")

        try:
            result = subprocess.run(
                self.command,
                input=message.as_bytes(),
                capture_output=True,
                timeout=60
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise NotifyWarning(f"Failed to run {self.command[0]}: {e}")

        if result.returncode != 0:
            stderr = result.stderr.decode(errors='replace').strip()
            raise NotifyWarning(f"{self.command[0]} exited with code {result.returncode}: {stderr}")


class SMTPSender(MailSender):
    """Sends through an SMTP relay."""

    def __init__(self, host: str, port: int = 25, user: Optional[str] = None,
                 password: Optional[str] = None, starttls: bool = False):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.starttls = starttls

    def send(self, message):
        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.starttls:
                    server.starttls()
                if self.user:
                    server.login(self.user, self.password or '')
                server.send_message(message)
        except (OSError, smtplib.SMTPException) as e:
            raise NotifyWarning(f"SMTP delivery via {self.host}:{self.port} failed: {e}")


def create_mail_sender(config) -> MailSender:
    if config.mail_transport == 'smtp':
        return SMTPSender(
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
            password=config.smtp_password,
            starttls=config.smtp_starttls
        )
    return SendmailSender(config.sendmail_command)


class Notifier:
    """Builds and sends the success/failure summary for a run."""

    def __init__(self, config, sender: MailSender = None):
        self.config = config
        self.sender = sender or create_mail_sender(config)
        self.hostname = socket.gethostname()

    @property
    def enabled(self) -> bool:
        return self.config.notifications_active

    def build_message(self, run) -> EmailMessage:
        if run.succeeded:
            subject = f"Backup SUCCESSFUL on {self.hostname}"
            body = (
                "Backup process completed successfully.\n"
                "\n"
                "Summary:\n"
                f"- Hostname: {self.hostname}\n"
                f"- Archive Path: {run.archive_path}\n"
                f"- Archive Size: {format_size(run.archive_size or 0)}\n"
                f"- Duration: {run.duration:.1f} seconds\n"
                f"- Log File: {self.config.log_path}\n"
            )
        else:
            subject = f"Backup FAILED on {self.hostname}"
            body = (
                f"The backup on {self.hostname} failed during the "
                f"'{run.failed_stage}' stage.\n"
                "\n"
                f"Error: {run.error}\n"
                "\n"
                f"Please check the log file for details: {self.config.log_path}\n"
            )

        message = EmailMessage()
        message['To'] = self.config.notify_recipient
        message['From'] = self.config.notify_sender or f"autobackup@{self.hostname}"
        message['Subject'] = subject
        message.set_content(body)
        return message

    def notify(self, run) -> bool:
        """
        Send the report for a finished run.

        Returns:
            True if a message was handed to the mail relay
        """
        if not self.enabled:
            return False

        try:
            message = self.build_message(run)
            logger.info(f"Sending email notification to {self.config.notify_recipient}.")
            self.sender.send(message)
        except NotifyWarning as e:
            logger.warning(str(e))
            return False
        except Exception as e:
            logger.warning(f"Cannot send email notification: {e}")
            return False

        return True
