"""
Outbound notification channels: FCM push, Twilio SMS and SMTP email.

Each channel is optional. A channel whose credentials are missing is
simply not built (None) and a warning is logged once at startup; callers
skip channels they don't have.
"""

import asyncio
import logging
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

import aiosmtplib

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""
    pass


class PushSender(Protocol):
    async def send_push(self, token: str, title: str, body: str, data: dict[str, str]) -> str:
        ...


class SmsSender(Protocol):
    async def send_sms(self, to: str, body: str) -> str:
        ...


class EmailSender(Protocol):
    async def send_email(self, to: str, subject: str, html: str) -> None:
        ...


class FcmPushNotifier:
    """Firebase Cloud Messaging; messaging.send is blocking."""

    def __init__(self, app=None) -> None:
        from firebase_admin import messaging

        self._messaging = messaging
        self._app = app

    async def send_push(self, token: str, title: str, body: str, data: dict[str, str]) -> str:
        message = self._messaging.Message(
            token=token,
            notification=self._messaging.Notification(title=title, body=body),
            data={key: str(value) for key, value in data.items()},
        )
        try:
            return await asyncio.to_thread(self._messaging.send, message, app=self._app)
        except Exception as e:
            raise NotificationError(f"Push notification failed: {e}")


class TwilioSmsNotifier:

    def __init__(self, account_sid: str, auth_token: str, from_number: str) -> None:
        from twilio.rest import Client

        self._client = Client(account_sid, auth_token)
        self._from = from_number
        logger.info("Twilio SMS service initialized")

    async def send_sms(self, to: str, body: str) -> str:
        try:
            message = await asyncio.to_thread(
                self._client.messages.create,
                body=body,
                from_=self._from,
                to=to,
            )
        except Exception as e:
            raise NotificationError(f"SMS to {to} failed: {e}")
        return message.sid


class SmtpEmailNotifier:
    """HTML email over SMTP with aiosmtplib."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        use_tls: bool = False,
        start_tls: bool = True,
        sender: Optional[str] = None,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._start_tls = start_tls
        self._sender = sender or username
        logger.info("Email service initialized", extra={"host": host})

    def build_message(self, to: str, subject: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self._sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    async def send_email(self, to: str, subject: str, html: str) -> None:
        try:
            await aiosmtplib.send(
                self.build_message(to, subject, html),
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                use_tls=self._use_tls,
                start_tls=self._start_tls if not self._use_tls else False,
            )
        except aiosmtplib.SMTPException as e:
            raise NotificationError(f"Email to {to} failed: {e}")


class RecordingNotifier:
    """Collects every notification instead of sending it. Used in mock mode."""

    def __init__(self) -> None:
        self.pushes: list[dict] = []
        self.sms: list[dict] = []
        self.emails: list[dict] = []

    async def send_push(self, token: str, title: str, body: str, data: dict[str, str]) -> str:
        self.pushes.append({"token": token, "title": title, "body": body, "data": data})
        return f"mock-push-{len(self.pushes)}"

    async def send_sms(self, to: str, body: str) -> str:
        self.sms.append({"to": to, "body": body})
        return f"mock-sms-{len(self.sms)}"

    async def send_email(self, to: str, subject: str, html: str) -> None:
        self.emails.append({"to": to, "subject": subject, "html": html})


@dataclass
class NotificationChannels:
    push: Optional[PushSender] = None
    sms: Optional[SmsSender] = None
    email: Optional[EmailSender] = None


def create_notification_channels(settings, firebase_app=None) -> NotificationChannels:
    """
    Build whichever channels are configured.

    With Firebase in mock mode every channel is a shared RecordingNotifier
    so nothing leaves the process.
    """
    if settings.firebase_mock_mode:
        recorder = RecordingNotifier()
        return NotificationChannels(push=recorder, sms=recorder, email=recorder)

    channels = NotificationChannels(push=FcmPushNotifier(firebase_app))

    if settings.twilio_configured:
        channels.sms = TwilioSmsNotifier(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
        )
    else:
        logger.warning("Twilio not configured - SMS alerts disabled")

    if settings.email_configured:
        channels.email = SmtpEmailNotifier(
            host=settings.email_host,
            port=settings.email_port,
            username=settings.email_user,
            password=settings.email_pass,
            use_tls=settings.email_use_tls,
            start_tls=settings.email_start_tls,
        )
    else:
        logger.warning("Email not configured - email alerts disabled")

    return channels
