"""Server CLI commands."""

from pathlib import Path

import click

from fedgate.core.config import SERVICE_NAMES


@click.command()
@click.option(
    "--service",
    "-s",
    "services",
    type=click.Choice(SERVICE_NAMES),
    multiple=True,
    help="Service to host; repeat for several (default: from config, all four)",
)
@click.option(
    "--host",
    "-h",
    default=None,
    help="Host to bind to (default: from config or 127.0.0.1)",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to bind to (default: from config or 33222)",
)
@click.option(
    "--tls/--no-tls",
    default=None,
    help="Serve over HTTPS with a self-signed or configured certificate",
)
@click.option(
    "--cert",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS certificate (PEM format)",
)
@click.option(
    "--key",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS private key (PEM format)",
)
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    default=None,
    help="Log level (default: from config or INFO)",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode",
)
def serve(
    services: tuple[str, ...],
    host: str | None,
    port: int | None,
    tls: bool | None,
    cert: Path | None,
    key: Path | None,
    log_level: str | None,
    debug: bool,
) -> None:
    """Start one or more fedgate services.

    Each service can run in its own process, or all four in one.

    Examples:

        # Everything in one process on port 33222
        fedgate serve

        # The Authorization Server alone, over HTTPS
        fedgate serve --service authz --port 44301 --tls

        # Identity Provider and Resource Server together
        fedgate serve -s idp -s resource --port 33848
    """
    from fedgate.app import run_server
    from fedgate.core.config import load_config
    from fedgate.core.errors import ConfigurationError

    # Validate cert/key pair
    if cert and not key:
        raise click.ClickException("--key is required when --cert is provided")
    if key and not cert:
        raise click.ClickException("--cert is required when --key is provided")

    try:
        config = load_config()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from None

    # Apply CLI overrides
    if tls is not None:
        config.server.tls.enabled = tls

    if cert:
        config.server.tls.cert_path = cert
        config.server.tls.key_path = key
        config.server.tls.enabled = True

    if log_level:
        config.logging.level = log_level.upper()

    if debug:
        config.server.debug = True

    try:
        run_server(app_config=config, host=host, port=port, services=list(services) or None)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from None
