# backend/utils/mailer.py
import logging
from email.message import EmailMessage

import aiosmtplib
from fastapi import Request

from config import Settings

logger = logging.getLogger(__name__)


class SMTPMailer:
    def __init__(self, host: str, port: int, username: str, password: str, sender: str, use_tls: bool = True):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls

    @classmethod
    def from_settings(cls, settings: Settings) -> "SMTPMailer":
        return cls(
            host=settings.MAIL_HOST,
            port=settings.MAIL_PORT,
            username=settings.MAIL_USERNAME,
            password=settings.MAIL_PASSWORD,
            sender=settings.MAIL_FROM,
            use_tls=settings.MAIL_USE_TLS,
        )

    async def send(self, to: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = f"Storefront <{self.sender}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")

        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                use_tls=self.use_tls,
            )
        except aiosmtplib.SMTPException as e:
            logger.error("Email send error to %s: %s", to, e)
            raise
        logger.info("Sent '%s' to %s", subject, to)


def reset_code_email(name: str, otp: str, expires_minutes: int) -> str:
    return (
        f"<p>Hello {name},</p>"
        f"<p>Your password reset code is <strong>{otp}</strong>.</p>"
        f"<p>It expires in {expires_minutes} minutes. If you did not ask for it, ignore this email.</p>"
    )


def get_mailer(request: Request):
    return request.app.state.mailer
