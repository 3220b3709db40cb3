"""Outbound email for confirmation and recovery links.

Two backends share one ``send`` signature:

* ``SMTPMailer`` hands the message to an SMTP relay through aiosmtplib.
* ``Outbox`` keeps messages in a bounded in-memory list and writes the link to
  the ``discipleship.mail`` logger, for local development and tests.

``get_mailer()`` picks one from ``settings.MAIL_BACKEND``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.text import MIMEText

import aiosmtplib

from ..config import settings

_LOGGER = logging.getLogger("discipleship.mail")


class MailDeliveryError(Exception):
    pass


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str
    link: str
    kind: str
    sent_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class Outbox:
    def __init__(self, max_messages: int = 200):
        self._messages: deque = deque(maxlen=max_messages)
        self._lock = threading.Lock()

    def send(self, *, to: str, subject: str, body: str, link: str, kind: str) -> EmailMessage:
        message = EmailMessage(to=to, subject=subject, body=body, link=link, kind=kind)
        with self._lock:
            self._messages.append(message)
        _LOGGER.info(
            "email_queued %s",
            json.dumps({"to": to, "kind": kind, "subject": subject, "link": link}, ensure_ascii=True),
        )
        return message

    def last_for(self, to: str, kind: str | None = None) -> EmailMessage | None:
        """Return the most recent message sent to `to`, optionally of one `kind`."""
        with self._lock:
            for message in reversed(self._messages):
                if message.to == to and (kind is None or message.kind == kind):
                    return message
        return None


class SMTPMailer:
    """Deliver through the relay configured by the ``SMTP_*`` settings.

    ``send`` is synchronous because it is called from sync request handlers,
    which run in worker threads without an event loop of their own.
    """

    def __init__(self, config=settings):
        self.config = config

    def send(self, *, to: str, subject: str, body: str, link: str, kind: str) -> EmailMessage:
        message = EmailMessage(to=to, subject=subject, body=body, link=link, kind=kind)
        try:
            asyncio.run(self._deliver(self._mime(message)))
        except (aiosmtplib.SMTPException, OSError) as exc:
            _LOGGER.error("email_failed %s", json.dumps({"to": to, "kind": kind, "error": str(exc)}))
            raise MailDeliveryError(f"could not deliver {kind} email") from exc
        _LOGGER.info("email_sent %s", json.dumps({"to": to, "kind": kind, "subject": subject}, ensure_ascii=True))
        return message

    def _mime(self, message: EmailMessage) -> MIMEText:
        mime = MIMEText(message.body, "plain", "utf-8")
        mime["From"] = self.config.MAIL_FROM
        mime["To"] = message.to
        mime["Subject"] = message.subject
        return mime

    async def _deliver(self, mime: MIMEText):
        smtp = aiosmtplib.SMTP(
            hostname=self.config.SMTP_HOST,
            port=self.config.SMTP_PORT,
            use_tls=self.config.SMTP_USE_TLS,
            start_tls=self.config.SMTP_START_TLS,
            timeout=self.config.SMTP_TIMEOUT,
        )
        await smtp.connect()
        try:
            if self.config.SMTP_USERNAME and self.config.SMTP_PASSWORD:
                await smtp.login(self.config.SMTP_USERNAME, self.config.SMTP_PASSWORD)
            await smtp.send_message(mime)
        finally:
            try:
                await smtp.quit()
            except aiosmtplib.SMTPException:
                _LOGGER.debug("smtp quit failed", exc_info=True)


outbox = Outbox()


def get_mailer():
    if settings.MAIL_BACKEND == "smtp":
        return SMTPMailer()
    return outbox
