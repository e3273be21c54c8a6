"""Bank statement PDF transactions parser.

Consumes the ``date, description, amount, balance, account`` rows produced
by :func:`statement_importer.pdftext.extract_statement_rows` in
transactions mode.  Section headers, totals and page furniture that the
line scanner picked up as rows are rejected here.

When at least two rows carry a running balance, each amount takes the sign
of the balance delta from the previous balance row whenever their
magnitudes agree within one cent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from statement_importer.errors import FormatUnrecognized
from statement_importer.models import AccountType, StagedImport, StagedTransaction, TransactionKind
from statement_importer.pdftext import PDF_HEADERS, parse_normalized_date
from statement_importer.tabular import cell, sanitize_amount

logger = logging.getLogger(__name__)

PARSER_ID = "pdf.transactions"

SIGN_TOLERANCE = Decimal("0.01")

_SECTION_HEADERS = frozenset({
    "deposits and additions",
    "electronic withdrawals",
    "electronic deposits",
    "electronic credits",
    "electronic debits",
    "deposits",
    "withdrawals",
    "checks",
    "other withdrawals",
    "fees",
    "interest",
    "daily ending balance",
    "daily balance",
    "ending balance",
    "beginning balance",
    "opening balance",
    "closing balance",
    "deposits additions",
    "electronic withdrawal",
})


@dataclass
class _RowItem:
    posted: date
    desc: str
    amount: Decimal
    balance: Decimal | None
    account: str | None


def can_parse(headers: list[str]) -> bool:
    """Accept only the normalized header row the PDF extractor emits."""
    return [h.strip().lower() for h in headers] == PDF_HEADERS


def parse(rows: list[list[str]], headers: list[str]) -> StagedImport:
    """Build bank transactions from extracted PDF rows.

    Raises:
        FormatUnrecognized: When no row survives filtering.
    """
    items: list[_RowItem] = []
    for index, row in enumerate(rows):
        date_text = cell(row, headers, "date")
        posted = parse_normalized_date(date_text) if date_text else None
        if posted is None:
            logger.debug("Row %d skipped: no parseable date", index)
            continue

        desc = cell(row, headers, "description")
        joined = " ".join(
            v for v in (
                date_text,
                desc,
                cell(row, headers, "amount"),
                cell(row, headers, "balance"),
            )
            if v
        )
        if is_header_or_total(desc or "") or is_header_or_total(joined):
            logger.debug("Row %d skipped: header/total %r", index, desc)
            continue

        amount = sanitize_amount(cell(row, headers, "amount"))
        if amount is None:
            logger.debug("Row %d skipped: missing amount", index)
            continue

        items.append(
            _RowItem(
                posted=posted,
                desc=desc or "Unknown",
                amount=amount,
                balance=sanitize_amount(cell(row, headers, "balance")),
                account=cell(row, headers, "account"),
            )
        )

    signed = infer_signs([it.amount for it in items], [it.balance for it in items])
    transactions = [
        StagedTransaction(
            date_posted=it.posted,
            amount=amount,
            payee=it.desc,
            kind=TransactionKind.BANK,
            source_account_label=it.account,
        )
        for it, amount in zip(items, signed)
    ]
    if not transactions:
        raise FormatUnrecognized()

    labels = {it.account.strip().lower() for it in items if it.account and it.account.strip()}
    suggested = None
    if labels == {"checking"}:
        suggested = AccountType.CHECKING
    elif labels == {"savings"}:
        suggested = AccountType.SAVINGS

    logger.debug("%s: produced %d transactions", PARSER_ID, len(transactions))
    return StagedImport(
        parser_id=PARSER_ID,
        source_file_name="Unknown.pdf",
        suggested_account_type=suggested,
        transactions=transactions,
    )


def infer_signs(amounts: list[Decimal], balances: list[Decimal | None]) -> list[Decimal]:
    """Replace amounts with running-balance deltas where the magnitudes agree.

    Only applies when at least two balances are present.  Rows without a
    balance, or without an earlier balance row, keep their amount.
    """
    if sum(1 for b in balances if b is not None) < 2:
        return list(amounts)
    signed: list[Decimal] = []
    previous: Decimal | None = None
    for amount, balance in zip(amounts, balances):
        value = amount
        if balance is not None and previous is not None:
            delta = balance - previous
            if abs(abs(delta) - abs(amount)) <= SIGN_TOLERANCE:
                value = delta
        if balance is not None:
            previous = balance
        signed.append(value)
    return signed


def is_header_or_total(text: str) -> bool:
    """Return True for section headers, totals, column headers and page furniture."""
    s = text.strip()
    if not s:
        return True
    lower = s.lower()
    normalized = _letters_only(lower)

    if any(h in lower or h in normalized for h in _SECTION_HEADERS):
        return True
    if lower.startswith("total ") or normalized.startswith("total ") or " total " in lower:
        if any(k in lower for k in ("deposit", "withdrawal", "check", "fee", "addition", "electronic")):
            return True
    if "date" in lower and "description" in lower and ("amount" in lower or "balance" in lower):
        return True
    if "page " in lower and " of " in lower:
        return True
    if "statement" in lower and ("date" in lower or "period" in lower):
        return True
    if "account number" in lower or "account ending" in lower:
        return True
    has_lower = any(c.islower() for c in s)
    has_digits = any(c.isdigit() for c in s)
    return not has_lower and not has_digits and len(s) <= 48


def _letters_only(lower: str) -> str:
    out: list[str] = []
    last_space = False
    for ch in lower:
        if ch.isalpha():
            out.append(ch)
            last_space = False
        elif not last_space:
            out.append(" ")
            last_space = True
    return "".join(out).strip()
