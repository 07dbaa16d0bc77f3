# msgbox/cli/main.py
"""
CLI for running an encrypted message box against a ledger.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from msgbox.box.messages import format_message
from msgbox.box.service import BoxStatus, MessageBox
from msgbox.core.encoding import hex_to_bytes
from msgbox.core.errors import MessageBoxError
from msgbox.core.types import ED25519, ENCRYPTION_TYPES, KEY_TYPES, RSA, SignerCredentials
from msgbox.crypto.keys import derive_public_key, generate_signer
from msgbox.crypto.keystore import RSAKeyStore
from msgbox.network import create_backend

app = typer.Typer(
    name="msgbox",
    help="Set up, send to and read end-to-end encrypted message boxes",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def get_db_path(db_flag: Optional[Path] = None) -> Path:
    """Resolve ledger DB path in this order:
    1. --db flag
    2. MSGBOX_DB_PATH environment variable
    3. Default: ~/.msgbox/ledger.db
    """
    if db_flag:
        path = db_flag.resolve()
    else:
        env_path = os.environ.get("MSGBOX_DB_PATH")
        if env_path:
            path = Path(env_path).resolve()
        else:
            path = Path.home() / ".msgbox" / "ledger.db"

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def get_credentials(account: Optional[str]) -> SignerCredentials:
    account_id = account or os.environ.get("MSGBOX_ACCOUNT_ID")
    private_hex = os.environ.get("MSGBOX_PRIVATE_KEY")
    key_type = (os.environ.get("MSGBOX_KEY_TYPE") or ED25519).upper()

    if not account_id or not private_hex:
        console.print("[red]Missing account credentials.[/]")
        console.print("  Set MSGBOX_ACCOUNT_ID and MSGBOX_PRIVATE_KEY (raw hex), or use --account")
        raise typer.Exit(1)
    if key_type not in KEY_TYPES:
        console.print(f"[red]Unsupported MSGBOX_KEY_TYPE: {key_type}[/] (expected one of {', '.join(KEY_TYPES)})")
        raise typer.Exit(1)
    try:
        private_key = hex_to_bytes(private_hex, "MSGBOX_PRIVATE_KEY")
    except ValueError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)
    return SignerCredentials(account_id=account_id, private_key=private_key, key_type=key_type)


def get_encryption_type(flag: Optional[str] = None) -> str:
    value = (flag or os.environ.get("MSGBOX_ENCRYPTION_TYPE") or RSA).upper()
    if value not in ENCRYPTION_TYPES:
        console.print(f"[red]Unsupported encryption type: {value}[/] (expected RSA or ECIES)")
        raise typer.Exit(1)
    return value


def confirm_decision(status: BoxStatus) -> bool:
    return typer.confirm(status.question, default=True)


def open_box(
    db: Optional[Path],
    account: Optional[str],
    encryption: Optional[str] = None,
    yes: bool = False,
) -> MessageBox:
    signer = get_credentials(account)
    ledger = create_backend(f"sqlite://{get_db_path(db)}", operator_id=signer.account_id)
    mirror_url = os.environ.get("MSGBOX_MIRROR_URL")
    mirror = create_backend(mirror_url) if mirror_url else ledger
    return MessageBox(
        ledger,
        mirror,
        signer,
        encryption_type=get_encryption_type(encryption),
        keystore=RSAKeyStore(),
        decide=(lambda status: True) if yes else confirm_decision,
    )


async def _close(box: MessageBox) -> None:
    if box.mirror is not box.ledger:
        await box.mirror.close()
    await box.ledger.close()


def run(box: MessageBox, coro):
    """Run one operation, closing the clients and reporting protocol errors."""
    async def _main():
        try:
            return await coro
        finally:
            await _close(box)

    try:
        return asyncio.run(_main())
    except MessageBoxError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Manage HIP-9999 encrypted message boxes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command()
def register(
    account_id: str = typer.Argument(..., help="Account id to create on the local ledger, e.g. 0.0.1234"),
    key_type: str = typer.Option(ED25519, "--key-type", "-k", help="ED25519 or ECDSA_SECP256K1"),
    private_key: Optional[str] = typer.Option(None, "--private-key", help="Existing raw private key (hex)"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to ledger DB (overrides MSGBOX_DB_PATH)"),
):
    """Create an account on the local SQLite ledger."""
    key_type = key_type.upper()
    if key_type not in KEY_TYPES:
        console.print(f"[red]Unsupported key type: {key_type}[/]")
        raise typer.Exit(1)

    try:
        if private_key:
            signer = SignerCredentials(account_id, hex_to_bytes(private_key, "--private-key"), key_type)
        else:
            signer = generate_signer(account_id, key_type)
        public = derive_public_key(signer.private_key, key_type)
    except (ValueError, MessageBoxError) as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    with create_backend(f"sqlite://{get_db_path(db)}") as ledger:
        ledger.register_account(account_id, public, key_type)

    console.print(f"[green]Account {account_id} registered ({key_type})[/]")
    if not private_key:
        console.print("Use these credentials:", soft_wrap=True)
        console.print(f"  export MSGBOX_ACCOUNT_ID={account_id}", soft_wrap=True)
        console.print(f"  export MSGBOX_KEY_TYPE={key_type}", soft_wrap=True)
        console.print(f"  export MSGBOX_PRIVATE_KEY={signer.private_key.hex()}", soft_wrap=True)


@app.command()
def setup(
    account: Optional[str] = typer.Option(None, "--account", "-a", help="Account id (overrides MSGBOX_ACCOUNT_ID)"),
    encryption: Optional[str] = typer.Option(None, "--encryption", "-e", help="RSA or ECIES (overrides MSGBOX_ENCRYPTION_TYPE)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Create a new box without asking"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Create the account's message box, or confirm the existing one is usable."""
    box = open_box(db, account, encryption, yes)
    box_id = run(box, box.setup())
    console.print(f"[green]✓ Message box ready: {box_id}[/]")
    console.print(f"  Encryption: {box.keypair().encryption_type}")


@app.command()
def remove(
    account: Optional[str] = typer.Option(None, "--account", "-a"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Clear the account memo so senders no longer find the box."""
    box = open_box(db, account)
    if run(box, box.remove()):
        console.print("[green]Message box removed from account memo[/]")
    else:
        console.print("[yellow]Account has no message box memo[/]")


@app.command()
def send(
    recipient: str = typer.Argument(..., help="Recipient account id"),
    message: str = typer.Argument(..., help="Message text"),
    use_cbor: bool = typer.Option(False, "--cbor", help="Encode the envelope as CBOR instead of JSON"),
    account: Optional[str] = typer.Option(None, "--account", "-a"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Encrypt a message to a recipient's verified box and publish it."""
    box = open_box(db, account)
    receipt = run(box, box.send(recipient, message, "cbor" if use_cbor else "json"))
    console.print(
        f"[green]✓ Sent to {recipient}[/] box {receipt.box_id}, "
        f"sequence {receipt.sequence} ({receipt.format.upper()})"
    )


@app.command()
def check(
    start: int = typer.Argument(1, help="First sequence number"),
    end: Optional[int] = typer.Argument(None, help="Last sequence number (default: latest)"),
    account: Optional[str] = typer.Option(None, "--account", "-a"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Read and decrypt messages from the account's own box by sequence range."""
    if start < 1 or (end is not None and end < start):
        console.print("[red]Invalid range: START must be >= 1 and END >= START[/]")
        raise typer.Exit(1)

    box = open_box(db, account)
    messages = run(box, box.check(start, end))
    if not messages:
        console.print("[yellow]No messages in range[/]")
        return

    table = Table(title="Message Box")
    table.add_column("Seq")
    table.add_column("Time")
    table.add_column("Format")
    table.add_column("From")
    table.add_column("Content")
    for msg in messages:
        content = msg.content if not msg.error else f"[red]{msg.error}[/]"
        table.add_row(str(msg.sequence), msg.timestamp, msg.format.upper(), msg.sender, content)
    console.print(table)


@app.command()
def listen(
    interval: float = typer.Option(3.0, "--interval", "-i", help="Seconds between polls"),
    account: Optional[str] = typer.Option(None, "--account", "-a"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Poll the account's box and print new messages until interrupted."""
    box = open_box(db, account)

    async def _listen():
        state = await box.poll_state()
        console.print(f"[cyan]Listening on {state.box_id} every {interval:g}s (Ctrl+C to stop)[/]")
        await box.listen(state, interval, on_message=lambda m: console.print(format_message(m)))

    try:
        run(box, _listen())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped listening[/]")


if __name__ == "__main__":
    app()
