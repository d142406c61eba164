"""Certificate management CLI commands."""

from pathlib import Path

import click


@click.group()
def certs() -> None:
    """Manage signing and TLS certificates.

    The Identity Provider signs assertions with the signing key; the
    Authorization Server pins the matching certificate. Both are
    auto-generated on first run if missing.
    """
    pass


@certs.command("generate")
@click.option(
    "--type",
    "cert_type",
    type=click.Choice(["signing", "tls"]),
    default="signing",
    help="Certificate type (signing for SAML assertions, tls for HTTPS)",
)
@click.option(
    "--common-name",
    "-cn",
    default=None,
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
    type=click.Path(path_type=Path),  # type: ignore[type-var]
    help="Output directory for certificate files",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing certificate files",
)
def certs_generate(
    cert_type: str,
    common_name: str | None,
    days: int,
    output: Path | None,
    force: bool,
) -> None:
    """Generate a new key pair and self-signed certificate.

    Examples:

        # Generate the IdP signing certificate
        fedgate certs generate

        # Generate a TLS certificate for the Authorization Server
        fedgate certs generate --type tls

        # Generate to specific directory
        fedgate certs generate --output /path/to/certs
    """
    from fedgate.core.crypto.certs import (
        generate_private_key,
        generate_self_signed_certificate,
        generate_tls_certificate,
        get_cert_dir,
        get_certificate_info,
        save_certificate,
        save_private_key,
    )

    output_dir = output or get_cert_dir()

    if cert_type == "tls":
        cert_path = output_dir / "server.crt"
        key_path = output_dir / "server.key"
        common_name = common_name or "localhost"
    else:
        cert_path = output_dir / "signing.crt"
        key_path = output_dir / "signing.key"
        common_name = common_name or "SAMLIdentityProvider"

    if not force and (cert_path.exists() or key_path.exists()):
        raise click.ClickException(
            f"Certificate files already exist at {output_dir}. Use --force to overwrite."
        )

    click.echo(f"Generating {cert_type} certificate...")
    click.echo(f"  Common Name: {common_name}")
    click.echo(f"  Valid for: {days} days")
    click.echo("")

    private_key = generate_private_key()
    if cert_type == "tls":
        cert = generate_tls_certificate(private_key, common_name=common_name, days_valid=days)
    else:
        cert = generate_self_signed_certificate(
            private_key, common_name=common_name, days_valid=days
        )

    save_private_key(private_key, key_path)
    save_certificate(cert, cert_path)

    info = get_certificate_info(cert)

    click.echo("Certificate generated successfully!")
    click.echo("")
    click.echo("Files created:")
    click.echo(f"  Certificate: {cert_path}")
    click.echo(f"  Private key: {key_path}")
    click.echo("")
    click.echo("Certificate details:")
    click.echo(f"  Subject: {info.subject}")
    click.echo(f"  Valid until: {info.not_after.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    click.echo(f"  Fingerprint (SHA-256): {info.fingerprint_sha256}")


@certs.command("show")
@click.argument(
    "cert_path",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    required=False,
)
def certs_show(cert_path: Path | None) -> None:
    """Show a certificate's details (default: the IdP signing certificate)."""
    from fedgate.core.crypto.certs import (
        CertificateLoadError,
        get_cert_dir,
        get_certificate_info,
        is_certificate_valid,
        load_certificate,
    )

    cert_path = cert_path or get_cert_dir() / "signing.crt"
    try:
        cert = load_certificate(cert_path)
    except CertificateLoadError as e:
        raise click.ClickException(str(e)) from None

    info = get_certificate_info(cert)
    valid = is_certificate_valid(cert)

    click.echo(f"Certificate: {cert_path}")
    click.echo(f"  Subject: {info.subject}")
    click.echo(f"  Issuer: {info.issuer}")
    click.echo(f"  Not Before: {info.not_before.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    click.echo(f"  Not After: {info.not_after.strftime('%Y-%m-%d %H:%M:%S UTC')}")

    status = "VALID" if valid else "EXPIRED"
    click.echo(click.style(f"  Status: {status}", fg="green" if valid else "red"))
    click.echo(f"  Key Size: {info.key_size} bits")
    click.echo(f"  SHA-256: {info.fingerprint_sha256}")
    click.echo(f"  Serial Number: {info.serial_number}")
