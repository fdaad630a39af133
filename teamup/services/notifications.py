"""In-app notifications, with optional email delivery over SMTP.

Emails are simulated to the log when no SMTP credentials are configured.
"""

import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teamup.config import settings
from teamup.models.notification import Notification, NotificationKind
from teamup.models.user import User

logger = logging.getLogger(__name__)

HTML_TEMPLATE_BASE = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body { font-family: 'Inter', -apple-system, sans-serif; background-color: #f8f9fa; color: #333; margin: 0; padding: 0; }
        .container { max-width: 600px; margin: 40px auto; background: #ffffff; border-radius: 12px; overflow: hidden; }
        .header { background: #0d6efd; padding: 30px 40px; text-align: center; }
        .header h1 { color: #ffffff; margin: 0; font-size: 24px; }
        .content { padding: 40px; line-height: 1.6; }
        .message-box { background: #f8f9fa; border-left: 4px solid #6c757d; padding: 16px 20px; font-style: italic; }
        .button-wrap { text-align: center; margin-top: 30px; }
        .btn { display: inline-block; background: #0d6efd; color: #ffffff; text-decoration: none; padding: 14px 28px; border-radius: 8px; }
        .footer { background: #f1f3f5; padding: 20px; text-align: center; color: #6c757d; font-size: 13px; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>{app_name}</h1>
        </div>
        <div class="content">
            {body}
        </div>
        <div class="footer">
            <p>You received this email because you are a registered user of {app_name}.</p>
        </div>
    </div>
</body>
</html>
"""


def _render(body: str) -> str:
    return HTML_TEMPLATE_BASE.replace("{app_name}", settings.APP_NAME).replace("{body}", body)


def _send_email_sync(recipient_email: str, subject: str, html_body: str):
    """Synchronous function to actually send or simulate the email."""
    if not settings.SMTP_USERNAME or not settings.SMTP_PASSWORD:
        logger.info(f"Simulated email to {recipient_email}: {subject}")
        return

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.APP_NAME} <{settings.SMTP_USERNAME}>"
    msg["To"] = recipient_email
    msg.attach(MIMEText(html_body, "html"))

    try:
        server = smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT)
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)
        server.quit()
        logger.info(f"Email sent to {recipient_email}")
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email to {recipient_email}: {e}")


async def send_notification_email(recipient_email: str, title: str, message: str, link: Optional[str] = None):
    """Mirror an in-app notification by email."""
    # Team and student names end up in title and message
    body = f"""
    <h2>{html.escape(title)}</h2>
    <p>{html.escape(message)}</p>
    """
    if link:
        body += f"""
    <div class="button-wrap">
        <a href="{html.escape(settings.APP_BASE_URL + link)}" class="btn">Open {settings.APP_NAME}</a>
    </div>
    """
    # Run synchronous SMTP in a threadpool to avoid blocking the event loop
    await asyncio.to_thread(_send_email_sync, recipient_email, title, _render(body))


class NotificationService:
    """Writes in-app notification rows; the caller commits.

    Emails wait in an outbox until the caller has committed the rows and
    calls ``flush_outbox``. ``discard_outbox`` drops them after a rollback.
    """

    def __init__(self, db: AsyncSession, *, email: Optional[bool] = None):
        self.db = db
        self.email = settings.EMAIL_NOTIFICATIONS if email is None else email
        self.outbox: List[Tuple[str, str, str, Optional[str]]] = []

    async def notify(
        self,
        user_id: int,
        kind: str,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> None:
        if not user_id:
            return
        self.db.add(
            Notification(
                user_id=user_id,
                kind=NotificationKind(kind),
                title=title,
                message=message,
                link=link,
            )
        )
        await self.db.flush()

        if self.email:
            result = await self.db.execute(select(User.email).where(User.id == user_id))
            recipient = result.scalar_one_or_none()
            if recipient:
                self.outbox.append((recipient, title, message, link))

    async def flush_outbox(self) -> None:
        pending, self.outbox = self.outbox, []
        for recipient, title, message, link in pending:
            await send_notification_email(recipient, title, message, link)

    def discard_outbox(self) -> None:
        if self.outbox:
            logger.info(f"Dropped {len(self.outbox)} email(s) from a rolled-back notification")
        self.outbox = []
