"""Protocol logging for SAML flows.

Records the protocol messages of a login or logout round trip, with
configurable log levels and sensitive data protection.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones (request issued, response received)
- DEBUG: Log message details (ids, destinations, bindings)
- TRACE: Log full XML documents (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import Any

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Module logger
logger = logging.getLogger("samlsp.protocol")

# Longest XML excerpt written to the log
MAX_LOGGED_XML = 4000


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


# Patterns for sensitive data redaction
SENSITIVE_PATTERNS = [
    # Binding parameters in URLs and form bodies
    (re.compile(r"(SAMLRequest=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(SAMLResponse=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(RelayState=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(Signature=)[^&\s]+"), r"\1[REDACTED]"),
    # Hidden form fields
    (
        re.compile(r'(name="(?:SAMLRequest|SAMLResponse|RelayState)"\s+value=")[^"]*(")'),
        r"\1[REDACTED]\2",
    ),
    # Key material and signature bodies
    (
        re.compile(r"(-----BEGIN [A-Z ]*PRIVATE KEY-----).*?(-----END [A-Z ]*PRIVATE KEY-----)", re.DOTALL),
        r"\1[REDACTED]\2",
    ),
    (re.compile(r"(<(?:\w+:)?X509Certificate\b[^>]*>)[^<]*(<)"), r"\1[REDACTED]\2"),
    (re.compile(r"(<(?:\w+:)?SignatureValue\b[^>]*>)[^<]*(<)"), r"\1[REDACTED]\2"),
    # Cookies
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Set-Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
]


def redact_sensitive(text: str) -> str:
    """Redact sensitive information from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class Direction(StrEnum):
    """Which way a protocol message travelled."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"


@dataclass
class ProtocolMessage:
    """A single SAML protocol message sent or received."""

    direction: Direction
    message_type: str
    binding: str
    message_id: str | None = None
    destination: str | None = None
    xml: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Args:
            include_sensitive: If True, include the raw XML unredacted.

        Returns:
            Dictionary representation of the message.
        """
        xml = self.xml
        if xml is not None and not include_sensitive:
            xml = redact_sensitive(xml)
        return {
            "direction": str(self.direction),
            "message_type": self.message_type,
            "binding": self.binding,
            "message_id": self.message_id,
            "destination": self.destination,
            "xml": xml,
            "timestamp": self.timestamp.isoformat(),
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the message for logging.

        Args:
            level: Log level determines how much detail to include.
            include_sensitive: If True, include the raw XML unredacted.

        Returns:
            Formatted log string.
        """
        arrow = "->" if self.direction == Direction.OUTBOUND else "<-"
        lines = [f"SAML {self.message_type} {arrow} {self.destination or '(no destination)'}"]

        if level <= LogLevel.DEBUG:
            lines.append(f"  ID: {self.message_id or '(none)'}")
            lines.append(f"  Binding: {self.binding}")

        if level <= LogLevel.TRACE and self.xml:
            xml = self.xml if include_sensitive else redact_sensitive(self.xml)
            lines.append("  XML:")
            lines.append(f"    {xml[:MAX_LOGGED_XML]}{'...' if len(xml) > MAX_LOGGED_XML else ''}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Collects protocol messages for one round trip."""

    flow_type: str = "saml_sso"
    messages: list[ProtocolMessage] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def add_message(self, message: ProtocolMessage) -> None:
        """Add a protocol message to the log."""
        self.messages.append(message)

    def complete(self) -> None:
        """Mark the log as complete."""
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        return {
            "flow_type": self.flow_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "messages": [m.to_dict(include_sensitive) for m in self.messages],
            "message_count": len(self.messages),
        }


class ProtocolLogger:
    """Configurable protocol logger for SAML flows.

    Holds only level settings. Messages are appended to the ProtocolLog
    passed in by the caller, which belongs to a single session.
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
    ) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE level is enabled (for raw XML).
        """
        self._level = level
        self._trace_enabled = trace_enabled

    @property
    def level(self) -> LogLevel:
        """Get current log level."""
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def trace_enabled(self) -> bool:
        """Whether TRACE level is enabled."""
        return self._trace_enabled

    @trace_enabled.setter
    def trace_enabled(self, value: bool) -> None:
        self._trace_enabled = value

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self._level == LogLevel.TRACE and not self._trace_enabled:
            return LogLevel.DEBUG
        return self._level

    def log_message(self, log: ProtocolLog | None, message: ProtocolMessage) -> None:
        """Record a protocol message.

        Args:
            log: The session's protocol log, if it keeps one.
            message: The message sent or received.
        """
        if log is not None:
            log.add_message(message)

        effective = self.effective_level
        include_sensitive = self._trace_enabled and self._level <= LogLevel.TRACE

        if effective <= LogLevel.TRACE:
            logger.log(TRACE, message.format_log(effective, include_sensitive))
        elif effective <= LogLevel.DEBUG:
            logger.debug(message.format_log(effective))
        elif effective <= LogLevel.INFO:
            logger.info(message.format_log(effective))


# Global protocol logger instance (level configuration only)
_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance.

    Args:
        logger_instance: ProtocolLogger to use globally.
    """
    global _global_logger
    _global_logger = logger_instance


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure protocol logging.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (logs raw XML).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger.
    """
    if isinstance(level, str):
        level_map = {
            "ERROR": LogLevel.ERROR,
            "INFO": LogLevel.INFO,
            "DEBUG": LogLevel.DEBUG,
            "TRACE": LogLevel.TRACE,
        }
        level = level_map.get(level.upper(), LogLevel.INFO)

    # The package logger covers samlsp.protocol and every module logger
    package_logger = logging.getLogger("samlsp")
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        logger.warning(
            "TRACE logging enabled - raw SAML documents will be logged!"
        )

    return protocol_logger
