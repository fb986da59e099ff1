"""Server administration commands for ZeroDrop CLI.

Commands:
- server run: Start the ZeroDrop server
- server purge-expired: Delete expired objects from blob storage
"""

from __future__ import annotations

import click


@click.group()
def server() -> None:
    """Server management commands.

    These commands are for server administrators. Configuration is read from
    ZERODROP_* environment variables.
    """


@server.command("run")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port.")
def run_cmd(host: str, port: int) -> None:
    """Start the ZeroDrop server with uvicorn."""
    import uvicorn

    uvicorn.run("zerodrop.server.app:app_factory", factory=True, host=host, port=port)


@server.command("purge-expired")
@click.option(
    "--storage-path",
    type=click.Path(),
    default=None,
    help="Path to local storage (default: ZERODROP_STORAGE_PATH or ./storage).",
)
def purge_expired_cmd(storage_path: str | None) -> None:
    """Delete expired encrypted objects and IVs.

    The server purges hourly on its own; this command can be run manually or
    via cron when the server's scheduler is disabled.

    Examples:

        # Purge the configured storage
        zerodrop server purge-expired

        # Purge a specific local storage directory
        zerodrop server purge-expired --storage-path /var/lib/zerodrop/storage
    """
    from zerodrop.server.scheduler import purge_expired_blobs
    from zerodrop.server.settings import ServerSettings
    from zerodrop.server.storage import create_storage

    settings = ServerSettings.from_env()
    config = dict(settings.storage)
    if storage_path:
        config = {"type": "local", "local_path": storage_path}

    storage = create_storage(config)
    click.echo(f"Storage: {storage.location}")
    deleted = purge_expired_blobs(storage)
    if deleted > 0:
        click.echo(f"Purged {deleted} expired objects.")
    else:
        click.echo("No expired objects.")
