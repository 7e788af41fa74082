"""SAML Service Provider routes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flask import Blueprint, Response, current_app, jsonify, redirect, request, session

from samlsp.core.saml.auth import AuthSession, AuthSessionController, RequestContext
from samlsp.core.saml.constants import Binding
from samlsp.core.saml.errors import ConfigurationError
from samlsp.core.saml.metadata import build_sp_metadata

if TYPE_CHECKING:
    from werkzeug.wrappers import Response as WerkzeugResponse

    from samlsp.core.config import SAMLSettings

logger = logging.getLogger(__name__)

saml_bp = Blueprint("saml", __name__, url_prefix="/saml")

# Flask session keys
REQUEST_ID_KEY = "saml_request_id"
LOGOUT_REQUEST_ID_KEY = "saml_logout_request_id"
USER_KEY = "saml_user"

LOGIN_BINDINGS = {"post": Binding.HTTP_POST, "redirect": Binding.HTTP_REDIRECT}


def get_settings() -> SAMLSettings:
    return current_app.config["SAML_SETTINGS"]


def get_controller() -> AuthSessionController:
    return AuthSessionController(replay_cache=current_app.extensions.get("samlsp_replay_cache"))


def new_auth_session() -> AuthSession:
    """Build an engine session from the Flask session and the current request."""
    auth = AuthSession(settings=get_settings(), context=RequestContext.from_flask(request))
    auth.last_request_id = session.get(REQUEST_ID_KEY, "")
    auth.last_logout_request_id = session.get(LOGOUT_REQUEST_ID_KEY, "")

    user = session.get(USER_KEY)
    if user:
        auth.authenticated = True
        auth.name_id = user.get("name_id")
        auth.name_id_format = user.get("name_id_format")
        auth.session_index = user.get("session_index")
        auth.attributes = user.get("attributes", {})
    return auth


def user_payload(auth: AuthSession) -> dict[str, Any]:
    return {
        "authenticated": auth.is_authenticated,
        "name_id": auth.name_id,
        "attributes": auth.attributes,
        "errors": auth.errors,
    }


@saml_bp.errorhandler(ConfigurationError)
def configuration_error(error: ConfigurationError) -> tuple[Response, int]:
    logger.error("SAML configuration error: %s", error)
    return jsonify({"error": str(error)}), 500


@saml_bp.route("/login")
def login() -> str | WerkzeugResponse:
    """Start SP-initiated SSO.

    Query parameters: ``return_to`` (sent as RelayState), ``force_authn``,
    ``passive`` and ``binding`` (``post`` or ``redirect``) to override the
    binding of the IdP SSO endpoint.
    """
    auth = new_auth_session()
    binding = LOGIN_BINDINGS.get(request.args.get("binding", ""), auth.settings.idp.single_sign_on_service.binding)

    target = get_controller().login(
        auth,
        return_to=request.args.get("return_to", ""),
        force_authn=request.args.get("force_authn") == "true",
        is_passive=request.args.get("passive") == "true",
        binding=binding,
    )
    session[REQUEST_ID_KEY] = auth.last_request_id

    if binding == Binding.HTTP_POST:
        return target
    return redirect(target)


@saml_bp.route("/acs", methods=["POST"])
def acs() -> tuple[Response, int]:
    """Assertion Consumer Service - handles the SAML Response from the IdP."""
    auth = new_auth_session()
    # A request ID answers exactly one response
    session.pop(REQUEST_ID_KEY, None)

    if not get_controller().process_response(auth):
        session.pop(USER_KEY, None)
        return jsonify(user_payload(auth)), 401

    session[USER_KEY] = {
        "name_id": auth.name_id,
        "name_id_format": auth.name_id_format,
        "session_index": auth.session_index,
        "attributes": auth.attributes,
    }
    return jsonify(user_payload(auth)), 200


@saml_bp.route("/metadata")
def metadata() -> Response:
    """Generate SP metadata XML."""
    settings = get_settings()
    response: Response = current_app.make_response(build_sp_metadata(settings.sp, settings.security))
    response.headers["Content-Type"] = "application/xml"
    return response


@saml_bp.route("/logout")
def logout() -> WerkzeugResponse | tuple[Response, int]:
    """Start SP-initiated single logout for the signed-in user."""
    auth = new_auth_session()
    if not auth.is_authenticated:
        return jsonify({"error": "Not authenticated"}), 400

    target = get_controller().logout(auth, return_to=request.args.get("return_to", ""))
    session[LOGOUT_REQUEST_ID_KEY] = auth.last_logout_request_id
    return redirect(target)


@saml_bp.route("/sls", methods=["GET", "POST"])
def sls() -> WerkzeugResponse | tuple[Response, int]:
    """Single Logout Service - LogoutResponses and IdP-initiated LogoutRequests."""
    auth = new_auth_session()
    result = get_controller().process_slo(auth)

    if result is False:
        return jsonify({"logged_out": False, "errors": auth.errors}), 400

    session.pop(USER_KEY, None)
    session.pop(LOGOUT_REQUEST_ID_KEY, None)
    if isinstance(result, str):
        return redirect(result)
    return jsonify({"logged_out": True, "errors": []}), 200
