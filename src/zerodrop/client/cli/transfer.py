"""File transfer commands for ZeroDrop CLI.

Commands:
- send: Encrypt and upload a file, then deliver its key
- receive: Download and decrypt a file from a share link
- inbox: List files shared with you
- fetch: Download and decrypt a file from your inbox
"""

from __future__ import annotations

from pathlib import Path

import click

from zerodrop.client.api import ForbiddenError, NotFoundError
from zerodrop.client.cli.common import api_errors, fail, format_size, open_api, progress_bar
from zerodrop.client.transfer import (
    PartialUploadError,
    TransferClient,
    TransferError,
    receive_link,
    receive_share,
    send_file,
)
from zerodrop.core.crypto import AuthenticationError, compute_file_hash
from zerodrop.core.keys import KeyFormatError

_workers_option = click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Threads used for chunk encryption/decryption.",
)
_no_progress_option = click.option("--no-progress", is_flag=True, help="Disable progress bars.")


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--to", "recipient_id", default=None, help="User ID of a paired recipient.")
@click.option("--link-base", default=None, help="Base URL of download links (default: server URL).")
@_workers_option
@_no_progress_option
def send(
    file: Path,
    recipient_id: str | None,
    link_base: str | None,
    workers: int,
    no_progress: bool,
) -> None:
    """Encrypt FILE and upload it.

    Without --to, prints a link carrying the key in its fragment: anyone
    holding the link can decrypt the file. With --to, the key is delivered
    to a paired user's inbox instead.
    """
    with open_api(require_auth=recipient_id is not None) as api, api_errors():
        transfer = TransferClient(api)
        try:
            with progress_bar("Uploading", enabled=not no_progress) as progress:
                result = send_file(
                    transfer,
                    file,
                    link_base=link_base,
                    recipient_id=recipient_id,
                    progress=progress,
                    workers=workers,
                )
        except PartialUploadError as e:
            fail(f"{e}. Run the command again to re-upload.")
        except ForbiddenError:
            fail(f"You are not connected with user {recipient_id}.")

    click.echo(f"Uploaded {file.name} ({format_size(file.stat().st_size)})")
    click.echo(f"File ID: {result.file_id}")
    if result.share is not None:
        click.echo(f"Shared with user {recipient_id}. It will appear in their inbox.")
    else:
        click.echo("Share this link (it contains the decryption key):")
        click.echo(result.link)


@click.command()
@click.argument("link")
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Output file or directory (default: current directory).",
)
@click.option("--server", default=None, help="Server URL (default: configured server).")
@_workers_option
@_no_progress_option
def receive(
    link: str,
    output: Path | None,
    server: str | None,
    workers: int,
    no_progress: bool,
) -> None:
    """Download and decrypt the file behind a share LINK."""
    with open_api(require_auth=False, server_url=server) as api, api_errors():
        transfer = TransferClient(api)
        try:
            with progress_bar("Downloading", enabled=not no_progress) as progress:
                received = receive_link(transfer, link, output, progress=progress, workers=workers)
        except (KeyFormatError, ValueError) as e:
            fail(f"Invalid link: {e}")
        except NotFoundError:
            fail("File not found or expired.")
        except TransferError as e:
            fail(str(e))
        except AuthenticationError:
            fail("File corrupted or wrong key.")

    click.echo(f"Saved {received.path} ({format_size(received.metadata.original_size)})")
    click.echo(f"SHA-256: {compute_file_hash(received.path)}")


@click.command()
def inbox() -> None:
    """List files shared with you."""
    with open_api() as api, api_errors():
        shares = api.list_shares()

    if not shares:
        click.echo("Your inbox is empty.")
        return

    for share in shares:
        sender = share.sender.name if share.sender else "unknown"
        state = "downloaded" if share.downloaded else "new"
        click.echo(
            f"{share.id}  {share.file_name}  {format_size(share.file_size)}  "
            f"from {sender}  {share.created_at:%Y-%m-%d %H:%M}  [{state}]"
        )


@click.command()
@click.argument("share_id")
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Output file or directory (default: current directory).",
)
@_workers_option
@_no_progress_option
def fetch(share_id: str, output: Path | None, workers: int, no_progress: bool) -> None:
    """Download and decrypt the inbox file SHARE_ID."""
    with open_api() as api, api_errors():
        share = next((s for s in api.list_shares() if s.id == share_id), None)
        if share is None:
            fail(f"No file {share_id} in your inbox.")

        transfer = TransferClient(api)
        try:
            with progress_bar("Downloading", enabled=not no_progress) as progress:
                received = receive_share(transfer, share, output, progress=progress, workers=workers)
        except KeyFormatError as e:
            fail(f"Invalid key in share record: {e}")
        except NotFoundError:
            fail("File not found or expired.")
        except TransferError as e:
            fail(str(e))
        except AuthenticationError:
            fail("File corrupted or wrong key.")

    click.echo(f"Saved {received.path} ({format_size(received.metadata.original_size)})")
    click.echo(f"SHA-256: {compute_file_hash(received.path)}")
