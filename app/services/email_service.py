"""
Email delivery.

Handles:
- Provider selection (SMTP via aiosmtplib, SendGrid SDK)
- Template rendering and EmailLog bookkeeping
- Global and per-recipient rate limits over a fixed window
- Retry of failed sends with linear backoff
- Recipient opt-out
"""

import asyncio
import logging
import time
from datetime import timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiosmtplib
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.utils import as_utc, utcnow
from app.models.notification import EmailLog, EmailStatus
from app.models.user import User
from app.services.email_templates import render_template

logger = logging.getLogger(__name__)

RETRY_MAX_AGE = timedelta(hours=24)
RETRY_BATCH_SIZE = 50


class EmailDeliveryError(Exception):
    """The provider refused or failed to accept a message."""


class EmailRateLimiter:
    """
    In-process send counters.

    Both counters reset together when the fixed window rolls over.
    """

    def __init__(self, window_seconds: int, max_per_window: int, max_per_recipient: int):
        self.window_seconds = window_seconds
        self.max_per_window = max_per_window
        self.max_per_recipient = max_per_recipient
        self.reset()

    def reset(self) -> None:
        self.window_start = time.monotonic()
        self.total = 0
        self.per_recipient: Dict[str, int] = {}

    def _roll(self) -> None:
        if time.monotonic() - self.window_start >= self.window_seconds:
            self.reset()

    def check(self, recipient: str) -> Optional[str]:
        """Return the reason a send would exceed a limit, or None."""
        self._roll()
        if self.total >= self.max_per_window:
            return "Global email rate limit exceeded"
        if self.per_recipient.get(recipient.lower(), 0) >= self.max_per_recipient:
            return f"Rate limit exceeded for recipient {recipient}"
        return None

    def record(self, recipient: str) -> None:
        self._roll()
        self.total += 1
        key = recipient.lower()
        self.per_recipient[key] = self.per_recipient.get(key, 0) + 1


rate_limiter = EmailRateLimiter(
    config.EMAIL_RATE_LIMIT_WINDOW_SECONDS,
    config.EMAIL_RATE_LIMIT_MAX_PER_WINDOW,
    config.EMAIL_RATE_LIMIT_MAX_PER_RECIPIENT,
)


def unsubscribe_url(email: str) -> str:
    return f"{config.APP_URL}{config.API_PREFIX}/email/unsubscribe?email={quote(email)}"


class EmailService:
    """Async email service using SMTP or SendGrid."""

    def __init__(self, provider: Optional[str] = None):
        self.provider = (provider or config.EMAIL_PROVIDER).lower()
        self.from_email = config.EMAIL_FROM_ADDRESS
        self.from_name = config.EMAIL_FROM_NAME

    @property
    def from_header(self) -> str:
        return formataddr((self.from_name, self.from_email))

    async def _deliver(self, to_email: str, subject: str, html: str, text: str) -> str:
        """Hand the message to the provider; return its message ID."""
        if self.provider == "sendgrid":
            return await self._send_via_sendgrid(to_email, subject, html, text)
        return await self._send_via_smtp(to_email, subject, html, text)

    async def _send_via_smtp(self, to_email: str, subject: str, html: str, text: str) -> str:
        message = MIMEMultipart("alternative")
        message["From"] = self.from_header
        message["To"] = to_email
        message["Subject"] = subject
        message_id = make_msgid(domain=self.from_email.split("@")[-1])
        message["Message-ID"] = message_id
        message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname=config.SMTP_HOST,
                port=config.SMTP_PORT,
                username=config.SMTP_USER or None,
                password=config.SMTP_PASSWORD or None,
                use_tls=config.SMTP_SECURE,
                start_tls=not config.SMTP_SECURE and config.SMTP_PORT == 587,
                timeout=30,
            )
        except aiosmtplib.SMTPException as e:
            raise EmailDeliveryError(f"SMTP error: {e}") from e
        except OSError as e:
            raise EmailDeliveryError(f"SMTP connection failed: {e}") from e
        return message_id

    async def _send_via_sendgrid(self, to_email: str, subject: str, html: str, text: str) -> str:
        if not config.SENDGRID_API_KEY:
            raise EmailDeliveryError("SENDGRID_API_KEY is not configured")

        message = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=To(to_email),
            subject=subject,
        )
        message.add_content(Content("text/plain", text))
        message.add_content(Content("text/html", html))

        client = SendGridAPIClient(config.SENDGRID_API_KEY)
        loop = asyncio.get_running_loop()
        try:
            # The SDK is synchronous
            response = await loop.run_in_executor(None, client.send, message)
        except Exception as e:
            raise EmailDeliveryError(f"SendGrid error: {e}") from e

        if response.status_code not in (200, 201, 202):
            raise EmailDeliveryError(f"SendGrid returned status {response.status_code}")
        return response.headers.get("X-Message-Id", "")

    async def send_email(
        self,
        db: AsyncSession,
        to: str,
        template_name: str,
        data: Optional[Dict[str, Any]] = None,
        notification_id: Optional[int] = None,
    ) -> EmailLog:
        """
        Render and send a templated email, recording the outcome.

        Raises UnknownTemplateError for an unregistered template. Every
        other outcome (sent, skipped, failed) is returned as the EmailLog.
        """
        data = dict(data or {})
        data.setdefault("unsubscribe_url", unsubscribe_url(to))
        subject, html, text = render_template(template_name, data)

        log = EmailLog(
            notification_id=notification_id,
            to_address=to,
            from_address=self.from_email,
            subject=subject,
            template_name=template_name,
            template_data=data,
            status=EmailStatus.PENDING,
        )
        db.add(log)

        if await self._opted_out(db, to):
            self._skip(log)
            await db.commit()
            logger.info("Skipped %s to %s: opted out", template_name, to)
            return log

        await self._attempt(log, subject, html, text)
        await db.commit()
        return log

    @staticmethod
    async def _opted_out(db: AsyncSession, address: str) -> bool:
        result = await db.execute(
            select(User.email_opt_out).where(User.email == address.strip().lower())
        )
        return bool(result.scalar_one_or_none())

    @staticmethod
    def _skip(log: EmailLog) -> None:
        log.status = EmailStatus.SKIPPED
        log.failure_reason = "Recipient has opted out of email"
        log.unsubscribed = True

    async def _attempt(self, log: EmailLog, subject: str, html: str, text: str) -> bool:
        reason = rate_limiter.check(log.to_address)
        if reason:
            log.status = EmailStatus.FAILED
            log.failure_reason = reason
            logger.warning("Email to %s not sent: %s", log.to_address, reason)
            return False

        try:
            message_id = await self._deliver(log.to_address, subject, html, text)
        except EmailDeliveryError as e:
            log.status = EmailStatus.FAILED
            log.failure_reason = str(e)
            logger.error("Email %s to %s failed: %s", log.template_name, log.to_address, e)
            return False

        rate_limiter.record(log.to_address)
        log.status = EmailStatus.SENT
        log.sent_at = utcnow()
        log.message_id = message_id
        log.failure_reason = None
        logger.info("Sent %s to %s", log.template_name, log.to_address)
        return True

    async def retry_failed_emails(self, db: AsyncSession) -> Dict[str, int]:
        """
        Retry failed sends younger than 24 hours.

        A log is due when `(last_retry_at or created_at) + delay * (retry_count + 1)`
        has passed. At most 50 logs are retried per run.
        """
        now = utcnow()
        result = await db.execute(
            select(EmailLog)
            .where(
                EmailLog.status == EmailStatus.FAILED,
                EmailLog.retry_count < config.EMAIL_MAX_RETRIES,
                EmailLog.created_at >= now - RETRY_MAX_AGE,
            )
            .order_by(EmailLog.created_at)
        )

        due = []
        for log in result.scalars().all():
            reference = as_utc(log.last_retry_at or log.created_at)
            delay = timedelta(seconds=config.EMAIL_RETRY_DELAY_SECONDS * (log.retry_count + 1))
            if now >= reference + delay:
                due.append(log)
            if len(due) >= RETRY_BATCH_SIZE:
                break

        sent = failed = skipped = 0
        for log in due:
            if not log.template_name:
                continue
            if await self._opted_out(db, log.to_address):
                self._skip(log)
                skipped += 1
                logger.info("Dropped retry of %s to %s: opted out", log.template_name, log.to_address)
                continue
            subject, html, text = render_template(log.template_name, log.template_data or {})
            log.retry_count += 1
            log.last_retry_at = utcnow()
            if await self._attempt(log, subject, html, text):
                sent += 1
            else:
                failed += 1

        await db.commit()
        logger.info(
            "Email retry run: %d retried, %d sent, %d failed, %d skipped",
            len(due), sent, failed, skipped,
        )
        return {"retried": len(due), "sent": sent, "failed": failed, "skipped": skipped}

    async def unsubscribe(self, db: AsyncSession, email: str) -> bool:
        """Opt the address out of all email. Returns False for unknown addresses."""
        result = await db.execute(select(User).where(User.email == email.lower()))
        user = result.scalar_one_or_none()
        if user is None:
            return False

        user.email_opt_out = True
        await db.execute(
            update(EmailLog).where(EmailLog.to_address == user.email).values(unsubscribed=True)
        )
        await db.commit()
        logger.info("User %s unsubscribed from email", user.id)
        return True


email_service = EmailService()
