from __future__ import annotations

import logging
import os
import smtplib
from contextlib import closing
from email.message import EmailMessage
from typing import Any, Callable

from ..config import EmailConfig
from ..models import Briefing, Report
from ..storage import get_user
from ..utils import log_event


class LogEmailSender:
    def __init__(self) -> None:
        self._logger = logging.getLogger("briefcore.email")

    def send(self, message: EmailMessage) -> None:
        log_event(
            self._logger,
            logging.INFO,
            "email_logged",
            to=message["To"],
            subject=message["Subject"],
        )


class SmtpEmailSender:
    def __init__(self, config: EmailConfig) -> None:
        self._config = config

    def send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port, timeout=30) as smtp:
            if self._config.smtp_use_tls:
                smtp.starttls()
            if self._config.smtp_username:
                password = os.environ.get(self._config.smtp_password_env, "")
                smtp.login(self._config.smtp_username, password)
            smtp.send_message(message)


def build_email_sender(config: EmailConfig):
    if config.sender == "smtp":
        return SmtpEmailSender(config)
    return LogEmailSender()


class ReportEmailDeliveryService:
    def __init__(
        self,
        connect: Callable[[], Any],
        ai_service,
        sender,
        from_address: str,
    ) -> None:
        self._connect = connect
        self._ai = ai_service
        self._sender = sender
        self._from_address = from_address
        self._logger = logging.getLogger("briefcore.email")

    def send_report_email(self, briefing: Briefing, report: Report) -> bool:
        if not briefing.email_delivery_enabled:
            log_event(
                self._logger,
                logging.DEBUG,
                "report_email_skipped",
                briefing_id=briefing.id,
                reason="disabled",
            )
            return False
        if report.is_empty:
            log_event(
                self._logger,
                logging.INFO,
                "report_email_skipped",
                briefing_id=briefing.id,
                report_id=report.id,
                reason="empty_report",
            )
            return False
        with closing(self._connect()) as conn:
            user = get_user(conn, briefing.user_id)
        if user is None or not user.email:
            log_event(
                self._logger,
                logging.WARNING,
                "report_email_skipped",
                briefing_id=briefing.id,
                reason="no_recipient",
            )
            return False

        items_text = "\n".join(
            f"{entry.position}. {entry.title or entry.news_item_id} (score {entry.score})"
            for entry in report.items
        )
        content = self._ai.generate_report_email_content(
            briefing.title, briefing.description, items_text
        )
        message = EmailMessage()
        message["From"] = self._from_address
        message["To"] = user.email
        message["Subject"] = content.subject
        lines = [content.summary, ""]
        for entry in report.items:
            lines.append(f"{entry.position}. {entry.title or 'Untitled'}")
            if entry.link:
                lines.append(f"   {entry.link}")
        message.set_content("\n".join(lines))
        self._sender.send(message)
        log_event(
            self._logger,
            logging.INFO,
            "report_email_sent",
            briefing_id=briefing.id,
            report_id=report.id,
            items=len(report.items),
        )
        return True
