# filetx/cli.py
"""
Command-line interface for filetx.

Applies a change plan as one transaction, records how to undo it in a
journal file, and replays such journals later.
"""
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from filetx import __version__
from filetx.api import get_backup_store, get_config, get_transaction_manager
from filetx.constants import APP_DESCRIPTION, APP_NAME, JOURNAL_DIR_NAME
from filetx.errors import CompensationFailedError, FileTxError
from filetx.models import FileOperation
from filetx.paths import PathResolver
from filetx.rollback import RollbackJournal, journaled_backups, register_journal
from filetx.utils.logging import get_logger, setup_logging

app = typer.Typer(help=f"{APP_NAME}: {APP_DESCRIPTION}")
backups_app = typer.Typer(help="Inspect and prune file backups")
app.add_typer(backups_app, name="backups")

logger = get_logger(__name__)
console = Console()


class ChangePlan(BaseModel):
    """A batch of file operations to apply together."""
    operations: List[FileOperation]


def version_callback(value: bool):
    """Display version information and exit."""
    if value:
        console.print(f"{APP_NAME} version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    version: bool = typer.Option(
        False, "--version", "-v", callback=version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """filetx: reversible multi-file changes"""
    config = get_config()
    setup_logging(debug=debug or config.debug)


@app.command("apply", help="Apply a JSON change plan as one transaction")
def apply_plan(
    plan_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with an 'operations' list"),
    journal: Optional[Path] = typer.Option(None, help="Where to write the undo journal"),
):
    """Apply every operation in PLAN_FILE, or none of them."""
    try:
        plan = ChangePlan.model_validate_json(plan_file.read_bytes())
    except (OSError, PydanticValidationError, FileTxError) as e:
        console.print(f"[red]Invalid change plan {plan_file}:[/red] {e}")
        raise typer.Exit(code=2)

    manager = get_transaction_manager()
    try:
        tx_id = manager.begin()
        for op in plan.operations:
            manager.add_operation(tx_id, op)
        with console.status("[bold green]Applying changes...[/bold green]"):
            transaction = manager.commit(tx_id)
    except CompensationFailedError as e:
        console.print(Panel(
            f"[bold]Could not apply changes:[/bold] {e.original}\n"
            f"[bold]Undoing the partial changes also failed:[/bold]\n"
            + "\n".join(f"- {f}" for f in e.failures)
            + "\n\n[yellow]Files may need manual repair.[/yellow]",
            title="Transaction failed",
            border_style="red",
            expand=False,
        ))
        raise typer.Exit(code=1)
    except FileTxError as e:
        console.print(f"[red]Could not apply changes:[/red] {e}")
        console.print("[yellow]No files were changed.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title=f"Transaction {transaction.id}")
    table.add_column("#", style="cyan")
    table.add_column("Operation", style="white")
    table.add_column("Path", style="blue")
    table.add_column("Backup", style="green")
    for i, op in enumerate(transaction.operations, start=1):
        table.add_row(str(i), op.operation.value, str(op.path), str(op.backup_path) if op.backup_path else "-")
    console.print(table)

    # rollback_actions() is in replay order; the journal replays last-in first-out
    actions = list(reversed(manager.rollback_actions(tx_id)))
    undo = RollbackJournal([(f"{tx_id}:{i}", action) for i, action in enumerate(actions, start=1)])
    journal_dir = manager.backup_store.backup_dir / JOURNAL_DIR_NAME
    journal_path = journal or (journal_dir / f"{tx_id}.json")
    undo.save(journal_path)
    # Keeps retention from evicting backups this journal restores from
    register_journal(journal_dir, journal_path, tx_id)
    logger.info(f"Wrote undo journal for transaction {tx_id} to {journal_path}")

    console.print("\n[bold]Use the following command to undo these changes:[/bold]")
    console.print(f"  [blue]filetx undo {journal_path}[/blue]")


@app.command("undo", help="Replay an undo journal written by 'apply'")
def undo(
    journal_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Undo journal to replay"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
):
    """Undo the changes recorded in JOURNAL_FILE."""
    try:
        journal = RollbackJournal.load(journal_file)
    except (OSError, PydanticValidationError) as e:
        console.print(f"[red]Invalid undo journal {journal_file}:[/red] {e}")
        raise typer.Exit(code=2)

    if journal.action_count == 0:
        console.print("[yellow]Nothing to undo.[/yellow]")
        return

    table = Table(title="Pending undo actions")
    table.add_column("Step", style="cyan")
    table.add_column("Action", style="white")
    table.add_column("Details", style="blue")
    for step_id, action in reversed(journal.entries):
        details = ", ".join(f"{k}={v}" for k, v in action.data.items())
        table.add_row(step_id, action.action_type.value, details)
    console.print(table)

    if not force and not Confirm.ask("Are you sure you want to undo these changes?"):
        console.print("[yellow]Undo cancelled.[/yellow]")
        return

    try:
        results = journal.execute_rollback()
    except FileTxError as e:
        # Keep only what is left so a retry resumes at the failed step
        journal.save(journal_file)
        console.print(f"[red]Could not undo changes:[/red] {e}")
        raise typer.Exit(code=1)

    for result in results:
        style = "yellow" if result.no_op else "green"
        console.print(f"[{style}]{result.message}[/{style}]")
    journal_file.unlink()
    console.print(f"[green]Undid {len(results)} action(s).[/green]")


@backups_app.command("list", help="List stored backups")
def list_backups(
    path: Optional[Path] = typer.Option(None, help="Only show backups of this file"),
):
    """List backups, oldest first."""
    store = get_backup_store()
    records = store.list_backups(PathResolver.resolve(path) if path else None)
    if not records:
        console.print("[yellow]No backups found.[/yellow]")
        return

    table = Table(title=f"Backups in {store.backup_dir}")
    table.add_column("Created", style="green")
    table.add_column("Original", style="white")
    table.add_column("Size", style="cyan", justify="right")
    table.add_column("Backup", style="blue")
    for record in records:
        table.add_row(
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(record.original_path),
            str(record.size),
            record.backup_path.name,
        )
    console.print(table)


@backups_app.command("prune", help="Evict old backups beyond the retention limit")
def prune_backups(
    max_retained: Optional[int] = typer.Option(None, "--max", min=1, help="Backups to keep per file"),
):
    """Apply the retention policy to every backed-up file.

    Backups still referenced by a saved undo journal are kept.
    """
    store = get_backup_store()
    evicted = store.prune(max_retained, protected=journaled_backups(store.backup_dir / JOURNAL_DIR_NAME))
    console.print(f"[green]Evicted {len(evicted)} backup(s).[/green]")


if __name__ == "__main__":
    app()
