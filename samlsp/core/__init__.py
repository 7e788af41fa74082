"""Core SAML service provider engine."""

from samlsp.core.logging import (
    Direction,
    LogLevel,
    ProtocolLog,
    ProtocolLogger,
    ProtocolMessage,
    configure_logging,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)

__all__ = [
    "Direction",
    "LogLevel",
    "ProtocolLog",
    "ProtocolLogger",
    "ProtocolMessage",
    "configure_logging",
    "get_protocol_logger",
    "redact_sensitive",
    "set_protocol_logger",
]
