"""Pairing commands for ZeroDrop CLI.

Commands:
- pair code: Issue a code for another user to redeem
- pair connect: Redeem another user's code
- pair list: List connections
- pair remove: Remove a connection
"""

from __future__ import annotations

from datetime import UTC, datetime

import click

from zerodrop.client.api import APIError, ConflictError, NotFoundError
from zerodrop.client.cli.common import api_errors, fail, open_api


@click.group()
def pair() -> None:
    """Connect with other users to share files directly."""


@pair.command("code")
def pair_code() -> None:
    """Issue a 6-digit pairing code.

    Read the code to the other user out of band. It is valid for 5 minutes
    and can be redeemed once.
    """
    with open_api() as api, api_errors():
        info = api.create_pairing_code()

    remaining = max(0, int((info.expires_at - datetime.now(UTC)).total_seconds()))
    click.echo(f"Pairing code: {info.code}")
    click.echo(f"Expires in {remaining // 60}m{remaining % 60:02d}s")


@pair.command("connect")
@click.argument("code")
def pair_connect(code: str) -> None:
    """Redeem another user's pairing CODE."""
    with open_api() as api, api_errors():
        try:
            pairing_id, user_name = api.redeem_code(code)
        except NotFoundError:
            fail("Invalid or expired code.")
        except ConflictError:
            fail("You are already connected with this user.")
        except APIError as e:
            if e.status_code == 400:
                fail("You cannot connect with yourself.")
            raise

    click.echo(f"Connected with {user_name} (pairing {pairing_id})")


@pair.command("list")
def pair_list() -> None:
    """List your connections."""
    with open_api() as api, api_errors():
        connections = api.list_pairings()

    if not connections:
        click.echo("No connections yet. Use 'zerodrop pair code' to invite someone.")
        return

    for connection in connections:
        user = connection.user
        click.echo(f"{connection.id}  {user.name} <{user.email}>  user {user.id}")


@pair.command("remove")
@click.argument("pairing_id")
@click.option("--yes", is_flag=True, help="Skip confirmation prompt.")
def pair_remove(pairing_id: str, yes: bool) -> None:
    """Remove the connection PAIRING_ID in both directions."""
    if not yes and not click.confirm(f"Remove connection {pairing_id}?"):
        return
    with open_api() as api, api_errors():
        api.remove_pairing(pairing_id)
    click.echo("Connection removed.")
