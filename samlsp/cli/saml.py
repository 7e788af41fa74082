"""SAML message CLI commands."""

from __future__ import annotations

from pathlib import Path

import click

from samlsp.cli.config import config_option, load_cli_settings
from samlsp.core.saml.errors import ConfigurationError, DecodeError


@click.command()
@config_option
def metadata(config_path: Path) -> None:
    """Print the SP metadata document.

    Hand the output to the IdP administrator to register this SP.
    """
    from samlsp.core.saml.metadata import build_sp_metadata

    settings = load_cli_settings(config_path)
    click.echo(build_sp_metadata(settings.sp, settings.security), nl=False)


@click.command("login-url")
@config_option
@click.option("--relay-state", "-r", default="", help="RelayState to send with the request")
@click.option("--force-authn", is_flag=True, help="Ask the IdP to re-authenticate the user")
@click.option("--passive", is_flag=True, help="Ask the IdP not to interact with the user")
@click.option(
    "--post/--redirect",
    "use_post",
    default=None,
    help="Print an HTTP-POST form or a Redirect URL (default: the binding of the IdP SSO endpoint)",
)
def login_url(
    config_path: Path,
    relay_state: str,
    force_authn: bool,
    passive: bool,
    use_post: bool | None,
) -> None:
    """Build an AuthnRequest and print where to send the browser.

    Examples:

        # Redirect URL or form, following the IdP SSO binding
        samlsp login-url --config config.yaml

        # Auto-submitting form, saved for a browser
        samlsp login-url --post > login.html
    """
    from samlsp.core.saml.authn_request import AuthnRequestBuilder
    from samlsp.core.saml.constants import Binding

    settings = load_cli_settings(config_path)
    if use_post is None:
        use_post = settings.idp.single_sign_on_service.binding == Binding.HTTP_POST
    try:
        request = AuthnRequestBuilder(settings).build(force_authn=force_authn, is_passive=passive)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from None

    click.echo(f"Request ID: {request.id}", err=True)
    if use_post:
        click.echo(request.to_post_form(relay_state), nl=False)
    else:
        click.echo(request.to_redirect_url(relay_state))


@click.command()
@click.argument("value")
@click.option(
    "--redirect",
    is_flag=True,
    help="Value uses the HTTP-Redirect binding (deflated); default is HTTP-POST",
)
def decode(value: str, redirect: bool) -> None:
    """Decode a SAMLRequest or SAMLResponse value and pretty-print it."""
    from samlsp.core.saml.bindings import decode_post, decode_redirect
    from samlsp.core.saml.utils import pretty_print_xml

    try:
        xml = decode_redirect(value) if redirect else decode_post(value)
    except DecodeError as e:
        raise click.ClickException(str(e)) from None
    click.echo(pretty_print_xml(xml))


@click.command()
@config_option
@click.option("--host", "-h", default="127.0.0.1", show_default=True, help="Host to bind to")
@click.option("--port", "-p", type=int, default=8443, show_default=True, help="Port to bind to")
@click.option(
    "--cert",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS certificate (PEM format)",
)
@click.option(
    "--key",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS private key (PEM format)",
)
def serve(config_path: Path, host: str, port: int, cert: Path | None, key: Path | None) -> None:
    """Start the SP web server.

    Serves /saml/login, /saml/acs, /saml/metadata, /saml/logout and
    /saml/sls. Without --cert and --key the server uses plain HTTP.
    """
    from samlsp.app import run_server

    if bool(cert) != bool(key):
        raise click.UsageError("--cert and --key must be given together")

    settings = load_cli_settings(config_path)
    run_server(settings, host=host, port=port, cert_path=cert, key_path=key)
