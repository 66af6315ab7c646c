"""Configuration handling for the session monitor."""

from pathlib import Path
from typing import Any, ClassVar, Literal

import toml
from pydantic import BaseModel, HttpUrl, model_validator

MASK = "******"
_SECRET_FIELDS = {"webhook_url", "secret", "bot_token", "password"}


class MonitoringConfig(BaseModel):
    """Configuration for monitoring sources."""

    log_file: str | None = None  # auto-detected from /etc/os-release when unset
    follower: Literal["auto", "tail", "watchdog"] = "auto"
    server_refresh_seconds: float = 300.0
    system_enabled: bool = True
    system_interval_seconds: float = 60.0
    stop_timeout_seconds: float = 5.0


class DeduplicationConfig(BaseModel):
    """Configuration for logout deduplication."""

    window_seconds: float = 5.0
    janitor_interval_seconds: float = 1.0


class BusConfig(BaseModel):
    """Configuration for the event bus."""

    buffer_size: int = 100


class NotifierConfig(BaseModel):
    """Settings shared by every notifier."""

    enabled: bool = False
    timeout_seconds: float = 10.0

    required_options: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _check_required(self):
        if self.enabled:
            missing = [
                name for name in self.required_options if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"missing required option(s): {', '.join(missing)}")
        return self


class FeishuConfig(NotifierConfig):
    webhook_url: HttpUrl | None = None

    required_options: ClassVar[tuple[str, ...]] = ("webhook_url",)


class DingTalkConfig(NotifierConfig):
    webhook_url: HttpUrl | None = None
    secret: str | None = None

    required_options: ClassVar[tuple[str, ...]] = ("webhook_url",)


class TelegramConfig(NotifierConfig):
    bot_token: str | None = None
    chat_id: str | None = None

    required_options: ClassVar[tuple[str, ...]] = ("bot_token", "chat_id")


class EmailConfig(NotifierConfig):
    host: str | None = None
    port: int = 587
    username: str | None = None
    password: str | None = None
    sender: str | None = None
    recipients: list[str] = []
    starttls: bool = True

    required_options: ClassVar[tuple[str, ...]] = (
        "host",
        "username",
        "password",
        "sender",
        "recipients",
    )


class AlertsConfig(BaseModel):
    """Alert system configuration."""

    feishu: FeishuConfig = FeishuConfig()
    dingtalk: DingTalkConfig = DingTalkConfig()
    telegram: TelegramConfig = TelegramConfig()
    email: EmailConfig = EmailConfig()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file: str | None = "/var/log/user-session-monitor.log"
    max_size_mb: int = 100
    backup_count: int = 5


class Config(BaseModel):
    """Main configuration class."""

    monitoring: MonitoringConfig = MonitoringConfig()
    deduplication: DeduplicationConfig = DeduplicationConfig()
    bus: BusConfig = BusConfig()
    alerts: AlertsConfig = AlertsConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def load(cls, config_path: Path) -> "Config":
        """Load configuration from TOML file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = toml.load(f)

        return cls(**data)

    def masked(self) -> dict[str, Any]:
        """Dump the configuration with credentials replaced by a mask."""
        data = self.model_dump(mode="json")
        for section in data["alerts"].values():
            for name in _SECRET_FIELDS & section.keys():
                if section[name]:
                    section[name] = MASK
        return data
