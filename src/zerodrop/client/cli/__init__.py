"""Command-line interface for ZeroDrop.

This module provides the main CLI entry point and assembles all commands.

Commands:
- register: Register a user with a server
- whoami: Show the registered user
- send: Encrypt and upload a file
- receive: Download and decrypt a file from a share link
- inbox: List files shared with you
- fetch: Download and decrypt a file from your inbox
- pair: Pairing commands (code, connect, list, remove)
- server: Server administration commands
"""

from __future__ import annotations

import logging

import click

from zerodrop import __version__
from zerodrop.client.cli.account import register, whoami
from zerodrop.client.cli.pair import pair
from zerodrop.client.cli.server import server
from zerodrop.client.cli.transfer import fetch, inbox, receive, send


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """ZeroDrop - Zero-knowledge encrypted file transfer."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Account commands
cli.add_command(register)
cli.add_command(whoami)

# Transfer commands
cli.add_command(send)
cli.add_command(receive)
cli.add_command(inbox)
cli.add_command(fetch)

# Pairing commands
cli.add_command(pair)

# Server admin commands
cli.add_command(server)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = ["cli", "main"]
