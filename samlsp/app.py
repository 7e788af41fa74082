"""Flask application factory."""

from __future__ import annotations

import os
import secrets
import ssl
from pathlib import Path
from typing import TYPE_CHECKING

from flask import Flask

from samlsp.core.saml.replay import InMemoryReplayCache

if TYPE_CHECKING:
    from samlsp.core.config import SAMLSettings

# Key under which the engine settings live in app.config
SETTINGS_KEY = "SAML_SETTINGS"


def create_app(settings: SAMLSettings, config: dict | None = None) -> Flask:
    """Create and configure the Flask application.

    The Flask session is the session store: it carries the pending request
    IDs and the authenticated user between requests. Engine objects are
    created per request.

    Args:
        settings: Engine settings.
        config: Optional configuration dictionary to override defaults.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SAMLSP_SECRET_KEY") or secrets.token_hex(32),
        SESSION_COOKIE_SECURE=True,
        SESSION_COOKIE_HTTPONLY=True,
        # The IdP posts to the ACS cross-site, so Lax would drop the cookie
        SESSION_COOKIE_SAMESITE="None",
    )
    app.config[SETTINGS_KEY] = settings

    if config:
        app.config.from_mapping(config)

    # One replay cache per process
    app.extensions["samlsp_replay_cache"] = InMemoryReplayCache()

    from samlsp import web

    web.init_app(app)

    return app


def create_ssl_context(cert_path: Path, key_path: Path) -> ssl.SSLContext:
    """Create an SSL context for HTTPS.

    Args:
        cert_path: Path to the certificate file (PEM format).
        key_path: Path to the private key file (PEM format).

    Returns:
        Configured SSL context.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(cert_path), str(key_path))
    return context


def run_server(
    settings: SAMLSettings,
    host: str = "127.0.0.1",
    port: int = 8443,
    cert_path: Path | None = None,
    key_path: Path | None = None,
) -> None:
    """Run the Flask development server.

    Args:
        settings: Engine settings.
        host: Interface to bind to.
        port: Port to bind to.
        cert_path: TLS certificate; without it the server speaks plain HTTP.
        key_path: TLS private key.
    """
    config = {}
    ssl_context: ssl.SSLContext | None = None
    if cert_path and key_path:
        ssl_context = create_ssl_context(cert_path, key_path)
        protocol = "https"
    else:
        # Secure cookies are never sent back over plain HTTP
        config["SESSION_COOKIE_SECURE"] = False
        protocol = "http"
        print("WARNING: TLS is disabled. Browsers drop cross-site cookies without it.")
        print("")

    app = create_app(settings, config)
    app.debug = settings.debug

    print("Starting samlsp server...")
    print(f"  URL: {protocol}://{host}:{port}")
    print(f"  SP entity ID: {settings.sp.entity_id}")
    print("")

    app.run(host=host, port=port, ssl_context=ssl_context)
