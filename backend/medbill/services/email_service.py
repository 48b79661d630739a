"""Email service for password reset messages via SMTP."""
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

import structlog

from medbill.config import get_settings

logger = structlog.get_logger(__name__)


class EmailService:
    """Service for sending emails via SMTP."""

    def __init__(self):
        settings = get_settings()
        self.sender = settings.smtp_username
        self.password = settings.smtp_password
        self.smtp_server = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.frontend_url = settings.frontend_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.sender and self.password)

    def send_password_reset(self, to_email: str, full_name: str, token: str, expires_minutes: int) -> dict:
        """Send the reset link. Returns a status dict; delivery problems are logged, not raised."""
        if not self.configured:
            logger.warning("email.skipped", reason="smtp_not_configured", to=to_email)
            return {"success": False, "error": "SMTP not configured", "to": to_email}

        message = MIMEMultipart()
        message["From"] = self.sender
        message["To"] = to_email
        message["Subject"] = "Password reset request"

        body = f"""
Hello {full_name},

We received a request to reset your password. Use the link below to choose a new one:

{self.frontend_url}/reset-password/{token}

The link expires in {expires_minutes} minutes. If you did not request a reset, ignore this message.
        """.strip()

        message.attach(MIMEText(body, "plain"))

        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                server.starttls()
                server.login(self.sender, self.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email.failed", to=to_email, error=str(e))
            return {"success": False, "error": str(e), "to": to_email}

        logger.info("email.sent", to=to_email, kind="password_reset")
        return {"success": True, "message": f"Email sent to {to_email}", "to": to_email}


email_service = EmailService()
