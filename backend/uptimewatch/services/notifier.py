"""Notification dispatcher - delivers alert messages by email and chat webhooks."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Tuple

import httpx

from ..config import settings
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_SLACK = "slack"
CHANNEL_DISCORD = "discord"


@dataclass
class EmailConfig:
    """SMTP configuration for sending emails."""
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    from_address: str = ""

    @classmethod
    def from_settings(cls) -> "EmailConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.email_from,
        )


@dataclass
class AlertMessage:
    """Channel-independent content of one notification."""
    monitor_name: str
    url: str
    status: str  # down, up
    headline: str
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    escalation_level: Optional[int] = None
    downtime_minutes: Optional[int] = None
    timestamp: Optional[datetime] = None

    @property
    def is_down(self) -> bool:
        return self.status == "down"


def build_email_subject(message: AlertMessage) -> str:
    if message.is_down:
        if message.escalation_level and message.escalation_level > 1:
            return f"ALERT (level {message.escalation_level}): {message.monitor_name} is DOWN"
        return f"ALERT: {message.monitor_name} is DOWN"
    return f"RECOVERY: {message.monitor_name} is back UP"


def build_email_body(message: AlertMessage) -> str:
    timestamp = message.timestamp or utcnow()
    lines = [
        message.headline,
        "=" * 40,
        "",
        f"Service: {message.monitor_name}",
        f"URL: {message.url}",
        f"Status: {message.status.upper()}",
    ]
    if message.escalation_level:
        lines.append(f"Escalation level: {message.escalation_level}")
    if message.downtime_minutes is not None:
        lines.append(f"Downtime: {message.downtime_minutes} min")
    if message.response_time_ms is not None:
        lines.append(f"Response Time: {message.response_time_ms}ms")
    if message.error_message:
        lines.append(f"Error: {message.error_message}")
    lines.append(f"Time: {timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    lines.extend([
        "",
        "--",
        "This is an automated alert from UptimeWatch.",
        f"View Dashboard: {settings.frontend_url}",
    ])
    return "\n".join(lines)


def build_slack_payload(message: AlertMessage) -> dict:
    response_time = f"{message.response_time_ms}ms" if message.response_time_ms is not None else "N/A"
    text = (
        f"*Monitor:* {message.monitor_name}\n"
        f"*URL:* {message.url}\n"
        f"*Status:* {message.headline}\n"
        f"*Response Time:* {response_time}"
    )
    if message.error_message:
        text += f"\n*Error:* {message.error_message}"
    return {
        "text": f"Monitor Alert: {message.monitor_name}",
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
        ],
    }


def build_discord_payload(message: AlertMessage) -> dict:
    timestamp = message.timestamp or utcnow()
    response_time = f"{message.response_time_ms}ms" if message.response_time_ms is not None else "N/A"
    return {
        "content": f"**Monitor Alert: {message.monitor_name}**",
        "embeds": [
            {
                "title": message.monitor_name,
                "url": message.url,
                "color": 0xFF0000 if message.is_down else 0x00FF00,
                "fields": [
                    {"name": "Status", "value": message.headline, "inline": True},
                    {"name": "Response Time", "value": response_time, "inline": True},
                    {"name": "Error", "value": message.error_message or "None", "inline": False},
                ],
                "timestamp": timestamp.isoformat() + "Z",
            }
        ],
    }


def resolve_targets(monitor, destinations, channels) -> List[Tuple[str, str]]:
    """Pair each requested channel with a destination, if the monitor and owner allow it.

    Email needs an owner address; chat channels need a webhook URL on the monitor.
    """
    if destinations is None:
        return []
    targets = []
    if CHANNEL_EMAIL in channels and monitor.alert_email and destinations.notify_email and destinations.email:
        targets.append((CHANNEL_EMAIL, destinations.email))
    if CHANNEL_SLACK in channels and monitor.slack_webhook and destinations.notify_slack:
        targets.append((CHANNEL_SLACK, monitor.slack_webhook))
    if CHANNEL_DISCORD in channels and monitor.discord_webhook and destinations.notify_discord:
        targets.append((CHANNEL_DISCORD, monitor.discord_webhook))
    return targets


class NotificationDispatcher:
    """Delivers one message to one destination per call.

    Every method returns True/False and logs failures; nothing is retried
    and nothing is raised, so one channel can never block another.
    """

    def __init__(
        self,
        email_config: Optional[EmailConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        webhook_timeout: float = 10,
    ):
        self.email_config = email_config or EmailConfig.from_settings()
        self.transport = transport
        self.webhook_timeout = webhook_timeout

    async def deliver(self, channel: str, destination: str, message: AlertMessage) -> bool:
        if channel == CHANNEL_EMAIL:
            return await self.send_email(
                destination, build_email_subject(message), build_email_body(message)
            )
        if channel == CHANNEL_SLACK:
            return await self.send_webhook(destination, build_slack_payload(message))
        if channel == CHANNEL_DISCORD:
            return await self.send_webhook(destination, build_discord_payload(message))
        logger.warning(f"Unknown notification channel: {channel}")
        return False

    async def send_webhook(self, url: str, payload: dict) -> bool:
        """Send a webhook POST request."""
        try:
            async with httpx.AsyncClient(timeout=self.webhook_timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload)
            if response.status_code < 400:
                logger.info(f"Webhook delivered to {httpx.URL(url).host}")
                return True
            logger.warning(f"Webhook returned {response.status_code}")
            return False
        except Exception as e:
            logger.error(f"Failed to send webhook: {e}")
            return False

    async def send_email(self, destination: str, subject: str, body: str) -> bool:
        """Send an email through SMTP in a worker thread (smtplib is blocking)."""
        config = self.email_config
        recipients = self._parse_recipients(destination)
        if not config.host or not recipients:
            logger.warning("Email not configured - missing SMTP host or recipient")
            return False

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_smtp, config, recipients, subject, body)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return False
        except (ConnectionRefusedError, TimeoutError) as e:
            logger.error(f"Could not reach {config.host}:{config.port}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending email: {type(e).__name__}: {e}")
            return False

        logger.info(f"Email sent to {len(recipients)} recipient(s): {subject}")
        return True

    def _parse_recipients(self, to_address: str) -> List[str]:
        """Parse comma-separated email addresses into a list."""
        if not to_address:
            return []
        return [addr.strip() for addr in to_address.split(",") if addr.strip()]

    def _send_smtp(self, config: EmailConfig, recipients: List[str], subject: str, body: str):
        from_addr = config.from_address or config.username

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(config.host, config.port, timeout=30) as server:
            if config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if config.username and config.password:
                server.login(config.username, config.password)
            server.sendmail(from_addr, recipients, msg.as_string())
