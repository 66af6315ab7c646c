"""Regular expressions for SSH login and logout lines in the auth log."""

import re
from dataclasses import dataclass

IPV4 = r"\d{1,3}(?:\.\d{1,3}){3}"

# sshd[1234]: Accepted publickey for alice from 10.0.0.5 port 4422 ssh2
LOGIN_PATTERN = re.compile(
    rf"sshd\[\d+\]: Accepted (?:password|publickey) for (\w+) from ({IPV4}) port (\d+)"
)

# Tried in order, first match wins. The order decides which fields are
# taken from the line and which are looked up from the session table.
LOGOUT_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    # Received disconnect from 10.0.0.5 port 4422:11: disconnected by user
    (
        "received_disconnect",
        re.compile(
            rf"Received disconnect from (?P<ip>{IPV4}) port (?P<port>\d+):11: "
            r"disconnected by user"
        ),
    ),
    # Disconnected from user alice 10.0.0.5 port 4422
    (
        "disconnected_from_user",
        re.compile(
            rf"Disconnected from user (?P<user>\w+) (?P<ip>{IPV4}) port (?P<port>\d+)"
        ),
    ),
    # pam_unix(sshd:session): session closed for user alice
    (
        "session_closed",
        re.compile(
            r"pam_unix\(sshd:session\): session closed for user (?P<user>\w+)(?:\s|$)"
        ),
    ),
)


@dataclass(frozen=True)
class LoginMatch:
    username: str
    ip: str
    port: str


@dataclass(frozen=True)
class LogoutMatch:
    """Fields extracted from a logout line; missing ones are None."""

    pattern: str
    username: str | None = None
    ip: str | None = None
    port: str | None = None


def match_login(line: str) -> LoginMatch | None:
    match = LOGIN_PATTERN.search(line)
    if not match:
        return None
    username, ip, port = match.groups()
    if not (username and ip and port):
        return None
    return LoginMatch(username, ip, port)


def match_logout(line: str) -> LogoutMatch | None:
    for name, pattern in LOGOUT_PATTERNS:
        match = pattern.search(line)
        if not match:
            continue
        fields = match.groupdict()
        if not all(fields.values()):
            return None
        return LogoutMatch(
            pattern=name,
            username=fields.get("user"),
            ip=fields.get("ip"),
            port=fields.get("port"),
        )
    return None


def parse_line(line: str) -> LoginMatch | LogoutMatch | None:
    """Classify a raw auth log line. Login is tried before logout."""
    return match_login(line) or match_logout(line)
