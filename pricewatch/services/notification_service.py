"""
Notification delivery to external channels (email, push, SMS)
"""
import asyncio
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Iterable

from pricewatch.core.config import settings as default_settings
from pricewatch.core.types import NotificationMethod

logger = logging.getLogger(__name__)

class NotificationService:
    """Hands persisted notifications to delivery channels"""

    def __init__(self, settings=default_settings):
        self.settings = settings
        self.email_enabled = settings.EMAIL_ENABLED
        self.email_config = {
            "host": settings.EMAIL_HOST,
            "port": settings.EMAIL_PORT,
            "user": settings.EMAIL_USER,
            "password": settings.EMAIL_PASSWORD
        }

        logger.info("Notification service initialized")

    async def deliver(self, notification, methods: Iterable[str], priority: str = "medium") -> Dict[str, bool]:
        """
        Deliver a notification over the alert's configured channels

        Args:
            notification: Persisted notification row
            methods: Channel identifiers (push, email, sms)
            priority: Alert priority (low, medium, high)

        Returns:
            Mapping of channel to delivery success
        """
        results: Dict[str, bool] = {}
        for method in methods or []:
            try:
                if method == NotificationMethod.EMAIL.value:
                    results[method] = await self._send_email(notification.title, notification.message, priority)
                elif method == NotificationMethod.PUSH.value:
                    results[method] = self._send_push(notification, priority)
                elif method == NotificationMethod.SMS.value:
                    results[method] = self._send_sms(notification, priority)
                else:
                    logger.warning(f"Unknown notification method: {method}")
                    results[method] = False
            except Exception as e:
                logger.error(f"Error delivering notification {notification.id} via {method}: {e}")
                results[method] = False
        return results

    def _send_push(self, notification, priority: str) -> bool:
        # Push transport is an external collaborator; the payload is logged for it.
        logger.info(
            f"PUSH [{priority.upper()}] user={notification.user_id} {notification.title} - {notification.message}"
        )
        return True

    def _send_sms(self, notification, priority: str) -> bool:
        logger.warning(f"SMS delivery not configured; dropping notification {notification.id} [{priority.upper()}]")
        return False

    async def _send_email(self, subject: str, body: str, priority: str = "medium") -> bool:
        """
        Send email notification

        Args:
            subject: Email subject
            body: Email body
            priority: Message priority

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.is_email_enabled():
            logger.warning("Email notifications not configured")
            return False

        recipients = self.settings.get_email_recipients() or [self.email_config["user"]]
        return await asyncio.to_thread(self._smtp_send, subject, body, priority, recipients)

    def _smtp_send(self, subject: str, body: str, priority: str, recipients) -> bool:
        try:
            msg = MIMEMultipart()
            msg['From'] = self.email_config["user"]
            msg['To'] = ", ".join(recipients)
            msg['Subject'] = f"[{priority.upper()}] {subject}"
            msg.attach(MIMEText(body, 'plain'))

            with smtplib.SMTP(self.email_config["host"], self.email_config["port"], timeout=15) as server:
                server.starttls()
                server.login(self.email_config["user"], self.email_config["password"])
                server.sendmail(self.email_config["user"], recipients, msg.as_string())

            logger.info(f"Email sent successfully: {subject}")
            return True

        except Exception as e:
            logger.error(f"Error sending email: {e}")
            return False

    def is_email_enabled(self) -> bool:
        """Check if email notifications are enabled"""
        return self.email_enabled and all([
            self.email_config["user"],
            self.email_config["password"],
            self.email_config["host"]
        ])
