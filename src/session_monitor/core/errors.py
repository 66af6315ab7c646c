"""Exception types for the session monitor."""


class MonitorError(Exception):
    """Base class for session monitor errors."""


class LogSourceError(MonitorError):
    """The authentication log cannot be resolved or read."""


class ServerInfoError(MonitorError):
    """The host identity (hostname, IPv4) cannot be resolved."""


class NotifierError(MonitorError):
    """A notifier back-end failed to deliver a message."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
