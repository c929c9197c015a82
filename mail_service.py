import logging
from email.message import EmailMessage

import aiosmtplib
from fastapi import Request

import config
from envelope import ExternalServiceError

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(
        self,
        host: str = config.EMAIL_HOST,
        port: int = config.EMAIL_PORT,
        username: str = config.EMAIL_USER,
        password: str = config.EMAIL_PASS,
        sender_name: str = config.EMAIL_SENDER_NAME,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender_name = sender_name

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    async def send(self, to: str, subject: str, body: str, reply_to: str = None) -> None:
        if not self.configured:
            # Bodies carry verification codes; only the envelope is logged.
            logger.warning("Email not configured; dropped message to %s (%s)", to, subject)
            return
        message = EmailMessage()
        message["From"] = f'"{self.sender_name}" <{self.username}>'
        message["To"] = to
        message["Subject"] = subject
        if reply_to:
            message["Reply-To"] = reply_to
        message.set_content(body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=True,
            )
        except aiosmtplib.SMTPException as exc:
            logger.error("Email to %s failed: %s", to, exc)
            raise ExternalServiceError("Failed to send email")
        logger.info("Email sent to %s: %s", to, subject)

    async def send_reset_code(self, to: str, code: str) -> None:
        await self.send(
            to,
            "Password reset code",
            f"Hello!\n\nYour password reset code: {code}\n\n"
            f"The code expires in {config.CODE_EXPIRE_MINUTES} minutes. "
            "If you did not request it, ignore this message.",
        )

    async def send_email_change_code(self, to: str, code: str) -> None:
        await self.send(
            to,
            "Confirm your new email address",
            f"Your verification code: {code}\n\n"
            f"The code expires in {config.CODE_EXPIRE_MINUTES} minutes.",
        )

    async def send_contact_message(self, name: str, email: str, message: str) -> None:
        await self.send(
            config.CONTACT_INBOX,
            f"New message from {name}",
            f"Name: {name}\nEmail: {email}\n\nMessage:\n{message}",
            reply_to=email,
        )


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer
