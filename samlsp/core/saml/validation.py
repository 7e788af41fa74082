"""Trust validation of parsed SAML Responses.

Rules run in a fixed order and stop at the first failure. Every failing
rule records a specific error on the response; errors recorded earlier
(for example by the parser) are kept.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from samlsp.core.saml.constants import StatusCode
from samlsp.core.saml.errors import (
    ErrorKind,
    ValidationError,
    ValidationRule,
    configuration_error,
    trust_error,
)
from samlsp.core.saml.signature import SignatureLocation, validate_signature
from samlsp.core.saml.utils import format_saml_time, utc_now

if TYPE_CHECKING:
    from samlsp.core.config import SAMLSettings
    from samlsp.core.saml.replay import ReplayCache
    from samlsp.core.saml.response import Assertion, ParsedResponse

logger = logging.getLogger(__name__)

# How long a response ID is remembered when the assertion has no expiry
DEFAULT_REPLAY_TTL = timedelta(minutes=5)


class _RuleFailed(Exception):
    def __init__(self, error: ValidationError) -> None:
        super().__init__(error.message)
        self.error = error


class AssertionValidator:
    """Validates SAML Responses against the engine settings.

    Args:
        settings: SP, IdP and security configuration.
        replay_cache: Optional store of accepted response IDs. When given,
            a response is registered once every other rule passed and a
            repeat is rejected.
    """

    def __init__(self, settings: SAMLSettings, replay_cache: ReplayCache | None = None) -> None:
        self.settings = settings
        self.replay_cache = replay_cache

    def validate(
        self,
        response: ParsedResponse,
        expected_request_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Run the rule pipeline on a parsed response.

        Args:
            response: The parsed response; its errors and validity flag are
                updated.
            expected_request_id: ID of the AuthnRequest this response must
                answer. Empty or None skips the InResponseTo check.
            now: Validation time (defaults to the current UTC time).

        Returns:
            True if the response is valid.
        """
        response.is_valid = False
        if response.errors:
            return False

        now = now or utc_now()
        try:
            self._check_response(response, expected_request_id)
            if response.assertion is not None:
                self._check_assertion(response.assertion, now)
            elif self.settings.security.want_assertions_signed:
                raise _RuleFailed(
                    trust_error(ValidationRule.ASSERTION_MISSING, "Assertion expected but not found")
                )
            self._check_signatures(response)
            self._check_replay(response, now)
        except _RuleFailed as e:
            self._record(response, e.error)
            return False

        response.is_valid = True
        logger.info("Accepted SAML Response %s from %s", response.id, response.issuer)
        return True

    def _record(self, response: ParsedResponse, error: ValidationError) -> None:
        response.add_error(error)
        if error.kind == ErrorKind.CONFIGURATION:
            logger.error("SAML configuration error (%s): %s", error.rule, error.message)
        else:
            logger.warning("Rejected SAML Response %s (%s): %s", response.id, error.rule, error.message)

    def _check_response(self, response: ParsedResponse, expected_request_id: str | None) -> None:
        idp = self.settings.idp

        if response.issuer != idp.entity_id:
            raise _RuleFailed(
                trust_error(
                    ValidationRule.ISSUER,
                    f"Invalid issuer: expected {idp.entity_id}, got {response.issuer}",
                )
            )

        if response.status_code != StatusCode.SUCCESS:
            detail = f" ({response.sub_status_code})" if response.sub_status_code else ""
            message = f": {response.status_message}" if response.status_message else ""
            raise _RuleFailed(
                trust_error(
                    ValidationRule.STATUS,
                    f"SAML Response status is not success: {response.status_code}{detail}{message}",
                )
            )

        if expected_request_id and response.in_response_to != expected_request_id:
            raise _RuleFailed(
                trust_error(
                    ValidationRule.IN_RESPONSE_TO,
                    f"Invalid InResponseTo: expected {expected_request_id}, got {response.in_response_to}",
                )
            )

        acs_url = self.settings.sp.acs_url
        if self.settings.strict and response.destination and response.destination != acs_url:
            raise _RuleFailed(
                trust_error(
                    ValidationRule.DESTINATION,
                    f"Invalid Destination: expected {acs_url}, got {response.destination}",
                )
            )

    def _check_assertion(self, assertion: Assertion, now: datetime) -> None:
        idp_entity_id = self.settings.idp.entity_id
        if assertion.issuer != idp_entity_id:
            raise _RuleFailed(
                trust_error(
                    ValidationRule.ASSERTION_ISSUER,
                    f"Invalid assertion issuer: expected {idp_entity_id}, got {assertion.issuer}",
                )
            )

        if assertion.not_before is not None and now < assertion.not_before:
            raise _RuleFailed(
                trust_error(
                    ValidationRule.NOT_BEFORE,
                    f"Assertion is not yet valid (NotBefore: {format_saml_time(assertion.not_before)})",
                )
            )

        # Half-open window: the instant NotOnOrAfter itself is already expired
        if assertion.not_on_or_after is not None and now >= assertion.not_on_or_after:
            raise _RuleFailed(
                trust_error(
                    ValidationRule.NOT_ON_OR_AFTER,
                    f"Assertion has expired (NotOnOrAfter: {format_saml_time(assertion.not_on_or_after)})",
                )
            )

        sp_entity_id = self.settings.sp.entity_id
        if self.settings.strict and assertion.audiences and sp_entity_id not in assertion.audiences:
            raise _RuleFailed(
                trust_error(
                    ValidationRule.AUDIENCE,
                    f"SP entity ID {sp_entity_id} is not in the assertion audience {assertion.audiences}",
                )
            )

    def _check_signatures(self, response: ParsedResponse) -> None:
        security = self.settings.security
        if not security.requires_signature:
            return

        idp = self.settings.idp
        if not idp.has_trust_anchor:
            raise _RuleFailed(
                configuration_error(
                    ValidationRule.SIGNATURE,
                    "Signature required but no IdP certificate or fingerprint is configured",
                )
            )
        trust = idp.signature_trust()

        required = []
        if security.want_messages_signed:
            required.append((SignatureLocation.RESPONSE, "Response"))
        if security.want_assertions_signed:
            required.append((SignatureLocation.ASSERTION, "Assertion"))

        for location, label in required:
            result = validate_signature(response.xml, trust, security, location)
            for line in result.trace:
                logger.debug("%s signature: %s", label, line)
            if not result.is_valid:
                raise _RuleFailed(
                    trust_error(
                        ValidationRule.SIGNATURE,
                        f"{label} signature validation failed: {result.message}",
                    )
                )

    def _check_replay(self, response: ParsedResponse, now: datetime) -> None:
        if self.replay_cache is None:
            return
        if not response.id:
            raise _RuleFailed(trust_error(ValidationRule.REPLAY, "Response has no ID to check for replay"))

        expires_at = None
        if response.assertion is not None:
            expires_at = response.assertion.not_on_or_after
        if expires_at is None:
            expires_at = now + DEFAULT_REPLAY_TTL

        if not self.replay_cache.add_if_absent(response.id, expires_at):
            raise _RuleFailed(
                trust_error(ValidationRule.REPLAY, f"Response {response.id} has already been processed")
            )


def validate_response(
    response: ParsedResponse,
    settings: SAMLSettings,
    expected_request_id: str | None = None,
    now: datetime | None = None,
    replay_cache: ReplayCache | None = None,
) -> bool:
    """Validate a parsed response (see AssertionValidator.validate)."""
    return AssertionValidator(settings, replay_cache).validate(response, expected_request_id, now)
