"""Redaction of credentials in DSNs and logged statement parameters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional
from urllib.parse import parse_qs, urlencode, urlparse

REDACTED_VALUE = "***"

_SENSITIVE_TOKENS = (
    "password",
    "passwd",
    "pwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "private_key",
    "bearer",
    "authorization",
)


def is_sensitive(text: str) -> bool:
    lowered = text.lower()
    return any(token in lowered for token in _SENSITIVE_TOKENS)


def redact_value(value: Any, *, key: str | None = None) -> Any:
    if key is not None and is_sensitive(key):
        return REDACTED_VALUE
    if isinstance(value, dict):
        return {k: redact_value(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact_value(item) for item in value)
    if isinstance(value, bytes):
        decoded = value.decode("utf-8", errors="ignore")
        return REDACTED_VALUE if decoded and is_sensitive(decoded) else value
    if isinstance(value, str) and is_sensitive(value):
        return REDACTED_VALUE
    return value


def redact_params(params: Iterable[Any] | None) -> list[Any]:
    return [redact_value(value) for value in params or ()]


@dataclass
class DSNConfig:
    driver: str
    username: Optional[str]
    password: Optional[str]
    host: Optional[str]
    port: Optional[int]
    database: Optional[str]
    path: str
    query: dict[str, str]

    def redacted(self) -> str:
        """
        Return the DSN with the password and sensitive query values masked.
        """
        netloc = ""
        if self.username:
            netloc += self.username
            if self.password:
                netloc += f":{REDACTED_VALUE}"
            netloc += "@"
        if self.host:
            netloc += self.host
        if self.port:
            netloc += f":{self.port}"
        query = {k: REDACTED_VALUE if is_sensitive(k) else v for k, v in self.query.items()}
        result = f"{self.driver}://{netloc}{self.path or ''}"
        if query:
            result += f"?{urlencode(query)}"
        return result


def parse_dsn(dsn: str) -> DSNConfig:
    parsed = urlparse(dsn)
    return DSNConfig(
        driver=parsed.scheme,
        username=parsed.username,
        password=parsed.password,
        host=parsed.hostname,
        port=parsed.port,
        database=parsed.path.lstrip("/") or None,
        path=parsed.path or "",
        query={k: v[0] for k, v in parse_qs(parsed.query).items()},
    )
