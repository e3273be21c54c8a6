"""Human-readable summaries printed by the CLI."""

from __future__ import annotations

from collections import Counter

import click

from statement_importer.batches import BatchSummary
from statement_importer.models import CommitResult, ReplaceCounts, StagingResult

_PREVIEW_ROWS = 10


def print_staging_preview(result: StagingResult) -> None:
    """Print a preview of a staged import.

    The preview includes:

    - Parser, suggested account type and confidence.
    - Transaction count by kind, and the first few transactions.
    - Every staged balance with its label and APR.
    - Holdings count.
    - Advisory messages, if any.
    """
    staged = result.staged
    suggested = staged.suggested_account_type.value if staged.suggested_account_type else "unknown"

    click.echo()
    click.echo(f"== {staged.source_file_name} ==")
    click.echo(f"  Parser:            {staged.parser_id}")
    click.echo(f"  Suggested type:    {suggested}")
    click.echo(f"  Confidence:        {result.confidence}")

    kinds = Counter(t.kind.value for t in staged.transactions)
    click.echo(f"  Transactions:      {len(staged.transactions)}")
    for kind, count in sorted(kinds.items()):
        click.echo(f"    {kind:<16} {count}")
    for t in staged.transactions[:_PREVIEW_ROWS]:
        click.echo(f"    {t.date_posted}  {t.amount:>12}  {t.payee[:48]}")
    if len(staged.transactions) > _PREVIEW_ROWS:
        click.echo(f"    ... {len(staged.transactions) - _PREVIEW_ROWS} more")

    click.echo(f"  Balances:          {len(staged.balances)}")
    for b in staged.balances:
        apr = f"  APR {b.interest_rate_apr * 100:.{b.interest_rate_scale or 2}f}%" if b.interest_rate_apr is not None else ""
        label = b.source_account_label or "-"
        click.echo(f"    {b.as_of_date}  {b.balance:>12}  {label}{apr}")

    click.echo(f"  Holdings:          {len(staged.holdings)}")

    if result.messages:
        click.echo()
        click.echo("Notes:")
        for message in result.messages:
            click.echo(f"  - {message}")
    click.echo()


def print_commit_result(result: CommitResult) -> None:
    """Print the counts of a commit."""
    click.echo()
    click.echo("== Import Summary ==")
    click.echo(f"  Batch:                 {result.batch_id}")
    click.echo(f"  Transactions added:    {result.inserted_transactions}")
    click.echo(f"  Duplicates skipped:    {result.skipped_duplicates}")
    click.echo(f"  Balances added:        {result.inserted_balances}")
    click.echo(f"  Holdings added:        {result.inserted_holdings}")
    click.echo(f"  Transfers linked:      {result.linked_transfers}")
    if result.message:
        click.echo()
        click.echo(result.message)
    click.echo()


def print_replace_counts(counts: ReplaceCounts) -> None:
    """Print the nine update/insert/delete counts of a batch replace."""
    click.echo()
    click.echo("== Replace Summary ==")
    click.echo(f"  {'':<14}{'updated':>9}{'inserted':>10}{'deleted':>9}")
    click.echo(
        f"  {'Transactions':<14}{counts.updated_transactions:>9}"
        f"{counts.inserted_transactions:>10}{counts.deleted_transactions:>9}"
    )
    click.echo(
        f"  {'Balances':<14}{counts.updated_balances:>9}"
        f"{counts.inserted_balances:>10}{counts.deleted_balances:>9}"
    )
    click.echo(
        f"  {'Holdings':<14}{counts.updated_holdings:>9}"
        f"{counts.inserted_holdings:>10}{counts.deleted_holdings:>9}"
    )
    if counts.linked_transfers:
        click.echo(f"  Transfers linked: {counts.linked_transfers}")
    click.echo()


def print_batches(summaries: list[BatchSummary]) -> None:
    """Print one line per import batch."""
    if not summaries:
        click.echo("No import batches.")
        return
    for s in summaries:
        created = s.batch.created_at.strftime("%Y-%m-%d %H:%M")
        click.echo(
            f"{s.batch.id}  {created}  {s.batch.label:<32}  "
            f"tx={s.transactions} balances={s.balances} holdings={s.holdings}"
        )
