"""Notifier back-ends for session events."""

import asyncio
import base64
import hashlib
import hmac
import logging
import smtplib
import time
from email.message import EmailMessage
from typing import ClassVar
from urllib.parse import quote_plus

import aiohttp

from ..core.config import AlertsConfig
from ..core.errors import NotifierError
from ..core.events import EventKind, SessionEvent

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

TITLES = {
    EventKind.LOGIN: "🔐 User login",
    EventKind.LOGOUT: "🚪 User logout",
}


def format_message(event: SessionEvent) -> str:
    """Format a session event as plain text."""
    lines = [
        TITLES[event.kind],
        "",
        f"User: {event.username}",
        f"Source: {event.source}",
        f"Time: {event.timestamp.astimezone().strftime(TIME_FORMAT)}",
    ]
    if event.server_info is not None:
        lines += [
            "",
            f"Hostname: {event.server_info.hostname}",
            f"Server IP: {event.server_info.ip}",
            f"OS: {event.server_info.os_type}",
        ]
    return "\n".join(lines)


class Notifier:
    """Base class: one instance per configured provider."""

    name: ClassVar[str] = "notifier"

    def __init__(self, timeout_seconds: float = 10.0):
        self.enabled = True
        self.timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def send(self, event: SessionEvent) -> None:
        if event.kind is EventKind.LOGIN:
            await self.send_login(event)
        else:
            await self.send_logout(event)

    async def send_login(self, event: SessionEvent) -> None:
        await self._deliver(TITLES[EventKind.LOGIN], format_message(event))

    async def send_logout(self, event: SessionEvent) -> None:
        await self._deliver(TITLES[EventKind.LOGOUT], format_message(event))

    async def _deliver(self, title: str, text: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class FeishuNotifier(Notifier):
    name = "feishu"

    def __init__(self, webhook_url: str, timeout_seconds: float = 10.0):
        super().__init__(timeout_seconds)
        self.webhook_url = webhook_url

    async def _deliver(self, title: str, text: str) -> None:
        payload = {"msg_type": "text", "content": {"text": text}}
        session = self._get_session()
        try:
            async with session.post(self.webhook_url, json=payload) as response:
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise NotifierError(self.name, f"request failed: {e}") from e

        if not isinstance(body, dict):
            raise NotifierError(self.name, f"unexpected response: {body!r}")
        if body.get("code", 0) != 0:
            raise NotifierError(
                self.name, f"API error: code={body['code']}, msg={body.get('msg')}"
            )
        logger.debug("Feishu message sent")


class DingTalkNotifier(Notifier):
    name = "dingtalk"

    def __init__(
        self, webhook_url: str, secret: str | None = None, timeout_seconds: float = 10.0
    ):
        super().__init__(timeout_seconds)
        self.webhook_url = webhook_url
        self.secret = secret

    def sign(self, timestamp_ms: int) -> str:
        """Signature for webhooks created with the 'additional signature' option."""
        string_to_sign = f"{timestamp_ms}\n{self.secret}"
        digest = hmac.new(
            self.secret.encode(), string_to_sign.encode(), hashlib.sha256
        ).digest()
        return base64.b64encode(digest).decode()

    def signed_url(self, timestamp_ms: int | None = None) -> str:
        if not self.secret:
            return self.webhook_url
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        separator = "&" if "?" in self.webhook_url else "?"
        return (
            f"{self.webhook_url}{separator}timestamp={timestamp_ms}"
            f"&sign={quote_plus(self.sign(timestamp_ms))}"
        )

    async def _deliver(self, title: str, text: str) -> None:
        markdown = "### " + text.replace("\n", "\n\n")
        payload = {"msgtype": "markdown", "markdown": {"title": title, "text": markdown}}
        session = self._get_session()
        try:
            async with session.post(self.signed_url(), json=payload) as response:
                if response.status != 200:
                    raise NotifierError(self.name, f"HTTP status {response.status}")
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NotifierError(self.name, f"request failed: {e}") from e
        logger.debug("DingTalk message sent")


class TelegramNotifier(Notifier):
    name = "telegram"
    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, bot_token: str, chat_id: str, timeout_seconds: float = 10.0):
        super().__init__(timeout_seconds)
        self.bot_token = bot_token
        self.chat_id = chat_id

    async def _deliver(self, title: str, text: str) -> None:
        url = self.API_URL.format(token=self.bot_token)
        payload = {"chat_id": self.chat_id, "text": text}
        session = self._get_session()
        try:
            async with session.post(url, json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise NotifierError(
                        self.name, f"HTTP status {response.status}: {error_text}"
                    )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NotifierError(self.name, f"request failed: {e}") from e
        logger.debug("Telegram message sent to chat %s", self.chat_id)


class EmailNotifier(Notifier):
    """SMTP notifier. A send timeout disables it for the rest of the run."""

    name = "email"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: str,
        recipients: list[str],
        starttls: bool = True,
        timeout_seconds: float = 10.0,
    ):
        super().__init__(timeout_seconds)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.recipients = recipients
        self.starttls = starttls

    def _build_message(self, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message["Subject"] = subject
        message.set_content(body)
        return message

    def _send_mail(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
            if self.starttls:
                server.starttls()
            server.login(self.username, self.password)
            server.send_message(message)

    async def _deliver(self, title: str, text: str) -> None:
        if not self.enabled:
            logger.warning("Email notifier disabled, skipping message")
            return

        message = self._build_message(title, text)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send_mail, message),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            self.enabled = False
            logger.warning(
                "Email send timed out after %ss, disabling email notifier",
                self.timeout_seconds,
            )
            raise NotifierError(self.name, "send timed out") from e
        except (smtplib.SMTPException, OSError) as e:
            raise NotifierError(self.name, f"send failed: {e}") from e
        logger.info(f"Email sent to {', '.join(self.recipients)}")


def create_notifiers(config: AlertsConfig) -> list[Notifier]:
    """Instantiate a notifier for every enabled provider section."""
    notifiers: list[Notifier] = []

    if config.feishu.enabled:
        notifiers.append(
            FeishuNotifier(
                str(config.feishu.webhook_url),
                timeout_seconds=config.feishu.timeout_seconds,
            )
        )
    if config.dingtalk.enabled:
        notifiers.append(
            DingTalkNotifier(
                str(config.dingtalk.webhook_url),
                secret=config.dingtalk.secret,
                timeout_seconds=config.dingtalk.timeout_seconds,
            )
        )
    if config.telegram.enabled:
        notifiers.append(
            TelegramNotifier(
                config.telegram.bot_token,
                config.telegram.chat_id,
                timeout_seconds=config.telegram.timeout_seconds,
            )
        )
    if config.email.enabled:
        email = config.email
        notifiers.append(
            EmailNotifier(
                host=email.host,
                port=email.port,
                username=email.username,
                password=email.password,
                sender=email.sender,
                recipients=email.recipients,
                starttls=email.starttls,
                timeout_seconds=email.timeout_seconds,
            )
        )

    for notifier in notifiers:
        logger.info(f"Notifier enabled: {notifier.name}")
    return notifiers
