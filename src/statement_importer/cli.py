"""Click CLI entry point for the statements command.

Handles argument parsing, config loading, and error display. All business
logic is delegated to ``importer``, ``commit``, ``replace``, ``batches``,
``config`` and ``report`` modules.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from statement_importer import __version__

_MODES = click.Choice(["summary", "transactions"])
_ACCOUNT_TYPES = click.Choice(
    ["checking", "savings", "creditCard", "loan", "cash", "brokerage", "other"]
)
_MAPPING_KEYS = {
    "date": "date_index",
    "description": "description_index",
    "amount": "amount_index",
    "debit": "debit_index",
    "credit": "credit_index",
    "balance": "balance_index",
}


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Set up logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        force=True,
    )


def _parse_columns(text: str):
    """Parse ``date=0,description=1,amount=2`` into a column mapping.

    Raises ``click.BadParameter`` on unknown keys or non-integer indices.
    """
    from statement_importer.parsers.mapping import BankColumnMapping

    values: dict[str, int] = {}
    for part in text.split(","):
        if not part.strip():
            continue
        key, sep, index = part.partition("=")
        key = key.strip().lower()
        if not sep or key not in _MAPPING_KEYS:
            raise click.BadParameter(
                f"Invalid column mapping entry: {part!r}. "
                f"Expected KEY=INDEX with KEY one of {', '.join(_MAPPING_KEYS)}."
            )
        try:
            values[_MAPPING_KEYS[key]] = int(index)
        except ValueError:
            raise click.BadParameter(f"Column index must be an integer: {part!r}") from None
    return BankColumnMapping(**values)


def _load_project(root: Path):
    """Load config and ledger for the project at *root*, exiting on failure."""
    from statement_importer.config import load_config
    from statement_importer.errors import StorageCommitFailed
    from statement_importer.store import Ledger

    try:
        config = load_config(root)
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'statements init' to create the project structure.",
            err=True,
        )
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error loading configuration: {exc}", err=True)
        sys.exit(1)

    try:
        ledger = Ledger.load(root / config.ledger_path)
    except StorageCommitFailed as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    return config, ledger


def _stage(path: Path, mode: str, columns: str | None, session, config):
    """Stage *path*, using a manual column mapping when one is given."""
    from statement_importer.errors import StatementImportError
    from statement_importer.importer import stage_file, stage_with_mapping

    try:
        if columns:
            return stage_with_mapping(path, _parse_columns(columns), session, config)
        return stage_file(path, mode, session, config)
    except click.BadParameter as exc:
        click.echo(f"Error: {exc.format_message()}", err=True)
        sys.exit(1)
    except StatementImportError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="statement-importer")
def cli() -> None:
    """Import bank, card, loan and brokerage statements into a local ledger."""


@cli.command()
@click.option(
    "--dir", "target_dir", default=".", type=click.Path(), help="Directory to initialize."
)
def init(target_dir: str) -> None:
    """Initialize a new data directory with the standard structure."""
    from statement_importer.config import initialize

    target = Path(target_dir).resolve()

    try:
        initialize(target)
    except Exception as exc:
        click.echo(f"Error initializing project: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Initialized statement importer project in {target}")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--mode", type=_MODES, default="summary", show_default=True, help="PDF extraction mode.")
@click.option("--columns", default=None, help="Manual CSV mapping, e.g. date=0,description=1,amount=2.")
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def stage(file: str, mode: str, columns: str | None, verbose: bool, debug: bool) -> None:
    """Parse a statement and preview what an import would save."""
    _configure_logging(verbose, debug)

    from statement_importer.config import load_config
    from statement_importer.models import AppConfig
    from statement_importer.report import print_staging_preview
    from statement_importer.session import ImportSession

    try:
        config = load_config(Path.cwd())
    except FileNotFoundError:
        config = AppConfig()

    result = _stage(Path(file), mode, columns, ImportSession(), config)
    print_staging_preview(result)


@cli.command(name="import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--mode", type=_MODES, default="summary", show_default=True, help="PDF extraction mode.")
@click.option("--columns", default=None, help="Manual CSV mapping, e.g. date=0,description=1,amount=2.")
@click.option("--institution", default=None, help="Institution name (overrides the file-name guess).")
@click.option("--account-type", type=_ACCOUNT_TYPES, default=None, help="Account type of the statement.")
@click.option("--account-id", default=None, help="Existing account to import into.")
@click.option("--flip/--no-flip", default=None, help="Force or forbid credit card sign inversion.")
@click.option("--accept-apr", is_flag=True, default=False, help="Replace an existing APR with the detected one.")
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def import_(
    file: str,
    mode: str,
    columns: str | None,
    institution: str | None,
    account_type: str | None,
    account_id: str | None,
    flip: bool | None,
    accept_apr: bool,
    verbose: bool,
    debug: bool,
) -> None:
    """Parse a statement and commit it to the ledger as a new batch."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config, ledger = _load_project(root)

    from statement_importer.commit import commit_import
    from statement_importer.errors import StatementImportError
    from statement_importer.models import AccountType
    from statement_importer.report import print_commit_result, print_staging_preview
    from statement_importer.session import ImportSession

    chosen_type = AccountType(account_type) if account_type else None
    session = ImportSession(
        user_hint=chosen_type,
        institution_name=institution,
        account_id=account_id,
        account_type_override=chosen_type,
        flip_override=flip,
        accept_detected_apr=accept_apr,
    )

    result = _stage(Path(file), mode, columns, session, config)
    if verbose:
        print_staging_preview(result)
    else:
        for message in result.messages:
            click.echo(f"Note: {message}")

    try:
        commit = commit_import(ledger, result.staged, session, config)
    except StatementImportError as exc:
        click.echo(f"Error saving import: {exc}", err=True)
        sys.exit(1)

    print_commit_result(commit)


@cli.command()
@click.argument("batch_id")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--mode", type=_MODES, default="summary", show_default=True, help="PDF extraction mode.")
@click.option("--columns", default=None, help="Manual CSV mapping, e.g. date=0,description=1,amount=2.")
@click.option("--force-tx", multiple=True, help="Transaction import key to overwrite despite edits.")
@click.option("--force-holding", multiple=True, help="Holding key (SYMBOL@YYYY-MM-DD) to overwrite.")
@click.option("--flip/--no-flip", default=None, help="Override the credit card sign decision recorded on the batch.")
@click.option("--accept-apr", is_flag=True, default=False, help="Replace an existing APR with the detected one.")
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def replace(
    batch_id: str,
    file: str,
    mode: str,
    columns: str | None,
    force_tx: tuple[str, ...],
    force_holding: tuple[str, ...],
    flip: bool | None,
    accept_apr: bool,
    verbose: bool,
    debug: bool,
) -> None:
    """Re-import a statement into an existing batch."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config, ledger = _load_project(root)

    from statement_importer.errors import StatementImportError
    from statement_importer.replace import replace_batch
    from statement_importer.report import print_replace_counts
    from statement_importer.session import ImportSession

    result = _stage(Path(file), mode, columns, ImportSession(), config)

    try:
        counts = replace_batch(
            ledger,
            batch_id,
            result.staged,
            force_tx_keys=force_tx,
            force_holding_keys=force_holding,
            accept_detected_apr=accept_apr,
            flip_override=flip,
            transfer_date_window=config.transfer_date_window,
        )
    except StatementImportError as exc:
        click.echo(f"Error replacing batch: {exc}", err=True)
        sys.exit(1)

    print_replace_counts(counts)


@cli.command()
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def batches(verbose: bool, debug: bool) -> None:
    """List import batches, oldest first."""
    _configure_logging(verbose, debug)
    _, ledger = _load_project(Path.cwd())

    from statement_importer.batches import list_batches
    from statement_importer.report import print_batches

    print_batches(list_batches(ledger))


@cli.command(name="delete-batch")
@click.argument("batch_id", required=False)
@click.option("--all", "delete_all", is_flag=True, default=False, help="Delete every batch.")
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def delete_batch_cmd(batch_id: str | None, delete_all: bool, verbose: bool, debug: bool) -> None:
    """Delete one import batch (or all of them) and everything it saved."""
    _configure_logging(verbose, debug)
    if not batch_id and not delete_all:
        click.echo("Error: give a BATCH_ID or --all.", err=True)
        sys.exit(1)
    _, ledger = _load_project(Path.cwd())

    from statement_importer.batches import delete_all_batches, delete_batch
    from statement_importer.errors import StatementImportError

    try:
        if delete_all:
            count = delete_all_batches(ledger)
            click.echo(f"Deleted {count} batch(es).")
        else:
            removed = delete_batch(ledger, batch_id)
            click.echo(f"Deleted batch {batch_id}.")
            if removed:
                click.echo(f"Removed {removed} empty account(s).")
    except StatementImportError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("account_id")
@click.option("--months", default=600, show_default=True, help="Maximum schedule length.")
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def payoff(account_id: str, months: int, verbose: bool, debug: bool) -> None:
    """Project the payoff schedule of a loan or credit card account."""
    _configure_logging(verbose, debug)
    _, ledger = _load_project(Path.cwd())

    from decimal import Decimal

    from statement_importer.amortization import project_account_payoff
    from statement_importer.errors import MissingRequiredField

    account = ledger.accounts.get(account_id)
    if account is None:
        click.echo(f"Error: Unknown account id: {account_id}", err=True)
        sys.exit(1)
    balances = sorted(ledger.balances_for_account(account_id), key=lambda b: b.as_of_date)
    if not balances:
        click.echo(f"Error: Account {account.name!r} has no balances.", err=True)
        sys.exit(1)

    try:
        schedule = project_account_payoff(account, balances[-1].balance, months)
    except (MissingRequiredField, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    total_interest = sum((row.interest for row in schedule), start=Decimal("0"))
    click.echo()
    click.echo(f"== Payoff: {account.name} ==")
    click.echo(f"  Months:          {len(schedule)}")
    click.echo(f"  Total interest:  {total_interest}")
    if verbose:
        click.echo()
        for row in schedule:
            click.echo(f"  {row.month:>4}  {row.payment:>10}  {row.interest:>9}  {row.balance:>12}")
    click.echo()
