import logging
import smtplib
from email.message import EmailMessage

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class NotificationGateway:
    """Fire-and-forget delivery to a patient or staff contact.

    Email addresses go out over SMTP when it is configured. Anything else is
    treated as a phone number; no SMS provider is wired in, so those messages
    land in the log for the front desk. Failures are logged, never raised.
    """

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or default_settings

    @property
    def email_enabled(self) -> bool:
        return bool(self._settings.smtp_host and self._settings.smtp_from)

    def notify(self, recipient: str, message: str, subject: str = "Your dental appointment") -> None:
        channel = "email" if "@" in recipient else "sms"
        if channel == "email" and self.email_enabled:
            delivered = self._deliver(self._compose(recipient, subject, message))
        else:
            delivered = False
        logger.info(
            "notification channel=%s to=%s delivered=%s message=%r",
            channel,
            recipient,
            delivered,
            message,
        )

    def _compose(self, recipient: str, subject: str, body: str) -> EmailMessage:
        email = EmailMessage()
        email["Subject"] = subject
        email["From"] = self._settings.smtp_from
        email["To"] = recipient
        email.set_content(body)
        return email

    def _deliver(self, email: EmailMessage) -> bool:
        smtp = self._settings
        try:
            with smtplib.SMTP(smtp.smtp_host, smtp.smtp_port, timeout=10) as server:
                if smtp.smtp_use_tls:
                    server.starttls()
                if smtp.smtp_user:
                    server.login(smtp.smtp_user, smtp.smtp_password)
                server.send_message(email)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("email_send_failed to=%s error=%s", email["To"], exc)
            return False
        return True
