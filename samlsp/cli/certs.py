"""Certificate management CLI commands."""

from pathlib import Path

import click

from samlsp.core.saml.constants import FingerprintAlgorithm


@click.group()
def certs() -> None:
    """Manage SP signing certificates and keys.

    A key pair is only needed when the SP signs AuthnRequests or
    LogoutRequests; the certificate is published in the SP metadata.
    """
    pass


@certs.command("generate")
@click.option(
    "--common-name",
    "-cn",
    default="samlsp",
    help="Common Name (CN) for the certificate",
)
@click.option(
    "--days",
    "-d",
    type=int,
    default=365,
    help="Days the certificate is valid",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),  # type: ignore[type-var]
    default=Path("."),
    help="Output directory for certificate files",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing certificate files",
)
def certs_generate(common_name: str, days: int, output: Path, force: bool) -> None:
    """Generate a self-signed SAML signing certificate.

    Writes signing.key (PKCS#8, unencrypted) and signing.crt to the
    output directory.

    Examples:

        # Generate into the current directory
        samlsp certs generate

        # Generate with custom common name and lifetime
        samlsp certs generate --common-name sp.example.com --days 730

        # Generate to specific directory
        samlsp certs generate --output /path/to/certs
    """
    from samlsp.core.crypto import (
        generate_private_key,
        generate_signing_certificate,
        get_certificate_info,
        get_certificate_pem,
        get_private_key_pem,
    )

    cert_path = output / "signing.crt"
    key_path = output / "signing.key"

    if days <= 0:
        raise click.BadParameter("must be a positive number of days", param_hint="--days")

    if not force and (cert_path.exists() or key_path.exists()):
        raise click.ClickException(
            f"Certificate files already exist at {output}. Use --force to overwrite."
        )

    click.echo("Generating signing certificate...")
    click.echo(f"  Common Name: {common_name}")
    click.echo(f"  Valid for: {days} days")
    click.echo("")

    private_key = generate_private_key()
    cert = generate_signing_certificate(private_key, common_name=common_name, days_valid=days)

    output.mkdir(parents=True, exist_ok=True)
    key_path.write_text(get_private_key_pem(private_key))
    key_path.chmod(0o600)
    cert_path.write_text(get_certificate_pem(cert))

    info = get_certificate_info(cert)
    click.echo("Certificate generated successfully!")
    click.echo(f"  Certificate: {cert_path}")
    click.echo(f"  Private key: {key_path}")
    click.echo("")
    click.echo("Certificate details:")
    click.echo(f"  Subject: {info.subject}")
    click.echo(f"  Serial: {info.serial_number}")
    click.echo(f"  Valid from: {info.not_before.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    click.echo(f"  Valid until: {info.not_after.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    click.echo(f"  Key: {info.key_type} {info.key_size}")
    click.echo(f"  SHA-256 fingerprint: {info.fingerprint_sha256}")


@certs.command("fingerprint")
@click.argument("cert_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))  # type: ignore[type-var]
@click.option(
    "--algorithm",
    "-a",
    type=click.Choice([a.value for a in FingerprintAlgorithm]),
    default=FingerprintAlgorithm.SHA1.value,
    show_default=True,
    help="Hash algorithm",
)
def certs_fingerprint(cert_file: Path, algorithm: str) -> None:
    """Print the colon-separated fingerprint of a PEM certificate.

    The output can be used as idp.cert_fingerprint in config.yaml.
    """
    from samlsp.core.crypto import fingerprint

    try:
        click.echo(fingerprint(cert_file.read_text(), algorithm))
    except ValueError as e:
        raise click.ClickException(str(e)) from None
