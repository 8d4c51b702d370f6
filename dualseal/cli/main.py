"""
CLI for creating, approving, finalizing and reconciling mutual-approval document exchanges.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from dualseal.config import Settings
from dualseal.core.canon import canonical_json_str
from dualseal.core.errors import BlobNotFound, DualSealError, ReconciliationError
from dualseal.core.types import RecordStatus
from dualseal.crypto.keys import IdentityKeyPair
from dualseal.ledger.host import LedgerHost, new_ledger_address
from dualseal.storage import SQLiteStorage
from dualseal.vault.reconcile import RetryPolicy
from dualseal.vault.session import VaultSession

app = typer.Typer(
    name="dualseal",
    help="Exchange documents that neither party can read until both have approved",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

META_NAMESPACE = "ledger-meta"

STATUS_LABELS = {
    RecordStatus.AWAITING_COUNTERPARTY_APPROVAL: "[yellow]awaiting counterparty approval[/]",
    RecordStatus.AWAITING_INITIATOR_FINALIZATION: "[cyan]awaiting initiator finalization[/]",
    RecordStatus.FINALIZED: "[green]finalized[/]",
}


def get_settings(db_flag: Optional[Path] = None) -> Settings:
    settings = Settings.from_env(db_flag)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    return settings


def open_storage(settings: Settings) -> SQLiteStorage:
    try:
        return SQLiteStorage(settings.db_path)
    except Exception as e:
        console.print(f"[red]Failed to open database: {str(e)}[/]")
        console.print("[yellow]The file may be corrupted or not a valid SQLite DB.[/]")
        raise typer.Exit(1)


def open_ledger(settings: Settings) -> LedgerHost:
    storage = open_storage(settings)
    address = settings.ledger_address
    if not address:
        try:
            address = storage.get(META_NAMESPACE, "default").decode("ascii")
        except BlobNotFound:
            storage.close()
            console.print("[red]No record store deployed in this database.[/]")
            console.print("[yellow]To get started:[/]")
            console.print("  • Run: dualseal deploy")
            console.print("  • Or set DUALSEAL_LEDGER_ADDRESS to an existing store address")
            raise typer.Exit(1)
    return LedgerHost(address=address, storage=storage)


def load_identity(settings: Settings, name: str) -> IdentityKeyPair:
    key_path = settings.key_dir / f"{name}.key"
    if not key_path.exists():
        console.print(f"[red]No key named '{name}' in {settings.key_dir}[/]")
        console.print(f"  Create one with: dualseal keygen {name}")
        raise typer.Exit(1)
    return IdentityKeyPair.load(key_path)


def resolve_address(settings: Settings, value: str) -> str:
    """Accept either a 0x address or the name of a local key."""
    if value.lower().startswith("0x"):
        return value.lower()
    return load_identity(settings, value).address


def open_session(settings: Settings, name: str) -> VaultSession:
    ledger = open_ledger(settings)
    retry = RetryPolicy(
        max_retries=settings.max_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    return VaultSession(
        ledger=ledger,
        identity=load_identity(settings, name),
        timeout=settings.timeout,
        retry=retry,
    )


def fail(e: DualSealError) -> None:
    console.print(f"[red]✗ {e.kind.value}: {e}[/]")
    raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log ledger and pipeline activity"),
):
    """Manage mutual-approval document exchanges."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )


@app.command()
def keygen(
    name: str = typer.Argument(..., help="Local name for the new identity"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing key"),
):
    """Generate an identity key and print its address."""
    settings = get_settings()
    key_path = settings.key_dir / f"{name}.key"
    if key_path.exists() and not force:
        console.print(f"[red]Key '{name}' already exists at {key_path}[/] (use --force to replace)")
        raise typer.Exit(1)

    identity = IdentityKeyPair.generate()
    identity.save(key_path)
    console.print(f"[green]Created identity '{name}'[/]")
    console.print(f"  address: {identity.address}")


@app.command()
def deploy(
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Create a new, empty record store and make it the default."""
    settings = get_settings(db)
    storage = open_storage(settings)
    address = new_ledger_address()
    storage.put(META_NAMESPACE, "default", address.encode("ascii"))
    storage.close()
    console.print(f"[green]Record store deployed at {address}[/]")


@app.command()
def address(
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Print the address of the record store in use."""
    ledger = open_ledger(get_settings(db))
    console.print(f"Record store address is {ledger.address}")
    ledger.close()


@app.command()
def create(
    sender: str = typer.Option(..., "--as", help="Key name of the initiator"),
    title: str = typer.Option(..., "--title", help="Exchange title"),
    counterparty: str = typer.Option(..., "--counterparty", help="Counterparty address or key name"),
    content: Optional[str] = typer.Option(None, "--content", help="Document text"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read document text from file"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Commit a new exchange: encrypted fingerprint on-ledger, sealed document off-ledger."""
    if (content is None) == (file is None):
        console.print("[red]Pass exactly one of --content or --file[/]")
        raise typer.Exit(1)
    if file is not None:
        content = file.read_text(encoding="utf-8")

    settings = get_settings(db)
    other = resolve_address(settings, counterparty)
    session = open_session(settings, sender)
    try:
        record = session.create_exchange(title, other, content)
    except DualSealError as e:
        fail(e)
    finally:
        session.close()
        session.ledger.close()

    console.print(f"[green]Record created with ID: {record.id}[/]")
    console.print(f"  initiator:    {record.initiator}")
    console.print(f"  counterparty: {record.counterparty}")


@app.command()
def approve(
    record_id: int = typer.Argument(..., help="Record ID"),
    sender: str = typer.Option(..., "--as", help="Key name of the counterparty"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Counterparty approval (first step)."""
    session = open_session(get_settings(db), sender)
    try:
        receipt = session.approve(record_id)
    except DualSealError as e:
        fail(e)
    finally:
        session.close()
        session.ledger.close()
    console.print(f"[green]Record {record_id} approved[/] (block {receipt.block_number}, tx {receipt.tx_hash[:18]}…)")


@app.command()
def finalize(
    record_id: int = typer.Argument(..., help="Record ID"),
    sender: str = typer.Option(..., "--as", help="Key name of the initiator"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Initiator finalization (second step); unlocks the fingerprint for both parties."""
    session = open_session(get_settings(db), sender)
    try:
        receipt = session.finalize(record_id)
    except DualSealError as e:
        fail(e)
    finally:
        session.close()
        session.ledger.close()
    console.print(f"[green]Record {record_id} finalized[/] (block {receipt.block_number}, tx {receipt.tx_hash[:18]}…)")


@app.command()
def show(
    record_id: int = typer.Argument(..., help="Record ID"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Show the public ledger fields of one record."""
    ledger = open_ledger(get_settings(db))
    try:
        record = ledger.read("get_record", record_id)
    except DualSealError as e:
        fail(e)
    finally:
        ledger.close()

    table = Table(title=f"Record {record.id}", show_header=False)
    table.add_row("Title", record.title)
    table.add_row("Status", STATUS_LABELS[record.status])
    table.add_row("Initiator", record.initiator)
    table.add_row("Counterparty", record.counterparty)
    table.add_row("Created", str(record.created_at))
    table.add_row("Approved", str(record.counterparty_approved_at or "—"))
    table.add_row("Finalized", str(record.initiator_finalized_at or "—"))
    console.print(table)
    console.print(f"  fingerprint handle: {record.fingerprint_handle}")


@app.command("list")
def list_records(
    sender: str = typer.Option(..., "--as", help="Key name or address whose records to list"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """List records where an identity is initiator or counterparty."""
    settings = get_settings(db)
    who = resolve_address(settings, sender)
    ledger = open_ledger(settings)

    rows = [(rid, "initiator") for rid in ledger.read("records_by_initiator", who)]
    rows += [(rid, "counterparty") for rid in ledger.read("records_by_counterparty", who)]

    if not rows:
        console.print(f"[yellow]No records found for {who}[/]")
        ledger.close()
        return

    table = Table(title=f"Records for {who}")
    table.add_column("ID")
    table.add_column("Role")
    table.add_column("Title")
    table.add_column("Status")
    for rid, role in sorted(rows):
        record = ledger.read("get_record", rid)
        table.add_row(str(rid), role, record.title, STATUS_LABELS[record.status])
    ledger.close()

    console.print(table)


@app.command()
def reconcile(
    record_id: int = typer.Argument(..., help="Record ID"),
    sender: str = typer.Option(..., "--as", help="Key name of the initiator or counterparty"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the document here instead of printing it"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Decrypt a finalized document and check it against the on-ledger fingerprint."""
    session = open_session(get_settings(db), sender)
    try:
        plaintext = session.reconcile(record_id)
    except ReconciliationError as e:
        console.print(f"[red]✗ Reconciliation failed for record {record_id}: {e.kind.value}[/]")
        console.print(f"  {e.args[0]}")
        if e.kind.fatal:
            console.print("[yellow]  Verification outcome is final; retrying will not help.[/]")
        raise typer.Exit(1)
    finally:
        session.close()
        session.ledger.close()

    console.print(f"[green]✓ Record {record_id} verified against its ledger fingerprint[/]")
    if output:
        output.write_text(plaintext, encoding="utf-8")
        console.print(f"Document written to {output}")
    else:
        console.print(plaintext, markup=False, highlight=False)


@app.command()
def events(
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Export as JSONL to this file"),
):
    """Show the record store's event log, or export it as JSONL."""
    ledger = open_ledger(get_settings(db))
    log = ledger.events()
    ledger.close()

    if not log:
        console.print("[yellow]No events recorded yet.[/]")
        return

    if output:
        with open(output, "w", encoding="utf-8") as f:
            for event in log:
                f.write(canonical_json_str(event.to_dict()))
                f.write("\n")
        console.print(f"[green]Exported {len(log)} events to {output}[/]")
        return

    for event in log:
        console.print(f"[bold cyan]{event.time} | {event.name:22} | record {event.record_id}[/]")
        console.print(f"  {json.dumps(event.args, sort_keys=True)}", markup=False, highlight=False)


if __name__ == "__main__":
    app()
