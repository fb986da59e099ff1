"""Account commands for ZeroDrop CLI.

Commands:
- register: Create a user on a server and store its token
- whoami: Show the registered user
"""

from __future__ import annotations

import click

from zerodrop.client.api import ConflictError, ZeroDropClient
from zerodrop.client.cli.common import api_errors, fail, open_api
from zerodrop.client.credentials import (
    DEFAULT_SERVER_URL,
    get_config_file,
    load_config,
    save_credentials,
)
from zerodrop.core.config import ServerConfig


@click.command()
@click.option(
    "--server",
    default=None,
    help=f"Server URL (default: configured server or {DEFAULT_SERVER_URL}).",
)
@click.option("--name", prompt="Display name", help="Name shown to paired users.")
@click.option("--email", prompt="Email", help="Email address (unique per server).")
def register(server: str | None, name: str, email: str) -> None:
    """Register a new user with a ZeroDrop server.

    The bearer token is stored in the OS keyring.
    """
    config = load_config()
    server_url = (server or config.get("server_url") or DEFAULT_SERVER_URL).rstrip("/")

    if config.get("user_id") and not click.confirm(
        f"Already registered as {config.get('user_name')}. Register a new user?"
    ):
        return

    with ZeroDropClient(ServerConfig(server_url)) as api, api_errors():
        try:
            token, user = api.register_user(name, email)
        except ConflictError:
            fail(f"Email '{email}' is already registered on {server_url}.")

    save_credentials(server_url, token, user.id, user.name, user.email)
    click.echo("User registered successfully!")
    click.echo(f"Server:  {server_url}")
    click.echo(f"Name:    {user.name}")
    click.echo(f"User ID: {user.id}")


@click.command()
def whoami() -> None:
    """Show the registered user."""
    with open_api() as api, api_errors():
        user = api.get_me()
        click.echo(f"Server:  {api.server_url}")
    click.echo(f"Name:    {user.name}")
    click.echo(f"Email:   {user.email}")
    click.echo(f"User ID: {user.id}")
    click.echo(f"Config:  {get_config_file()}")
