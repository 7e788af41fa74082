"""Error types for the SAML engine.

Exceptions are reserved for deployment defects and for the codec layer.
Per-message rejections are recorded as ``ValidationError`` values on the
parsed message and only rendered to text at the session boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class SAMLError(Exception):
    """Base exception for SAML engine errors."""


class ConfigurationError(SAMLError):
    """Raised when settings are missing or inconsistent."""


class DecodeError(SAMLError, ValueError):
    """Raised when a protocol message cannot be decoded from its binding."""


class ErrorKind(StrEnum):
    """Category of a validation error."""

    STRUCTURAL = "structural"
    TRUST = "trust"
    CONFIGURATION = "configuration"


class ValidationRule(StrEnum):
    """The rule that produced a validation error."""

    RESPONSE_PRESENT = "response_present"
    DECODE = "decode"
    XML = "xml"
    ISSUER = "issuer"
    STATUS = "status"
    IN_RESPONSE_TO = "in_response_to"
    DESTINATION = "destination"
    ASSERTION_ISSUER = "assertion_issuer"
    NOT_BEFORE = "not_before"
    NOT_ON_OR_AFTER = "not_on_or_after"
    AUDIENCE = "audience"
    ASSERTION_MISSING = "assertion_missing"
    SIGNATURE = "signature"
    REPLAY = "replay"


@dataclass(frozen=True)
class ValidationError:
    """A single failed rule with its human-readable message."""

    kind: ErrorKind
    rule: ValidationRule
    message: str

    def __str__(self) -> str:
        return self.message


def structural_error(rule: ValidationRule, message: str) -> ValidationError:
    return ValidationError(ErrorKind.STRUCTURAL, rule, message)


def trust_error(rule: ValidationRule, message: str) -> ValidationError:
    return ValidationError(ErrorKind.TRUST, rule, message)


def configuration_error(rule: ValidationRule, message: str) -> ValidationError:
    return ValidationError(ErrorKind.CONFIGURATION, rule, message)
