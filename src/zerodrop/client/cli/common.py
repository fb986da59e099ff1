"""Shared helpers for ZeroDrop CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import NoReturn

import click
import httpx

from zerodrop.client.api import APIError, AuthenticationFailedError, ZeroDropClient
from zerodrop.client.credentials import get_server_url, load_config, load_token
from zerodrop.client.transfer import ProgressCallback
from zerodrop.core.config import ServerConfig


def fail(message: str) -> NoReturn:
    """Print an error to stderr and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def open_api(require_auth: bool = True, server_url: str | None = None) -> ZeroDropClient:
    """Build an API client from the stored configuration.

    Args:
        require_auth: Exit with an error when no user is registered.
        server_url: Server URL overriding the configured one.
    """
    config = load_config()
    token = load_token(config)
    if require_auth and not token:
        fail("Not registered. Run 'zerodrop register' first.")
    return ZeroDropClient(ServerConfig(server_url or get_server_url(config), token=token))


@contextmanager
def api_errors() -> Iterator[None]:
    """Turn API and network errors into CLI errors."""
    try:
        yield
    except AuthenticationFailedError:
        fail("Authentication failed. Run 'zerodrop register' again.")
    except APIError as e:
        fail(str(e))
    except httpx.ConnectError:
        fail("Could not connect to server. Make sure it is running and accessible.")
    except httpx.HTTPError as e:
        fail(f"Request failed: {e}")


@contextmanager
def progress_bar(label: str, enabled: bool = True) -> Iterator[ProgressCallback | None]:
    """Yield a progress callback drawing a click progress bar."""
    if not enabled:
        yield None
        return

    with click.progressbar(length=100, label=label) as bar:
        shown = 0

        def update(fraction: float) -> None:
            nonlocal shown
            target = int(fraction * 100)
            if target > shown:
                bar.update(target - shown)
                shown = target

        yield update


def format_size(size_bytes: int) -> str:
    """Format size in bytes to human-readable string."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    if size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    return f"{size_bytes / (1024 * 1024 * 1024):.2f} GB"
