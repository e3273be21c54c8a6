"""Staging orchestration.

:func:`stage_file` turns a statement file into a reviewed-ready
:class:`~statement_importer.models.StagingResult`:

1. **Extract** -- CSV/TSV rows via :mod:`statement_importer.tabular`, PDF
   rows via :mod:`statement_importer.pdftext`.
2. **Select and parse** -- the first registered parser that accepts the
   headers.  PDF summary mode falls back to transactions mode when summary
   extraction or parsing fails.
3. **Enrich** (PDF only) -- card-summary fallback, minimum-payment capture
   and APR back-fill.
4. **Classify** -- account-type guess, liability label safety net, and the
   liability balance filter.
5. **Advise** -- confidence and user-facing messages.

Staging never touches the ledger.  Hints that must survive until commit
(typical payments, the institution guess) are written to the
:class:`~statement_importer.session.ImportSession`.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

from statement_importer.errors import FormatUnrecognized, ParseFailure
from statement_importer.heuristics import (
    TYPICAL_PAYMENT_SENTINEL,
    detect_typical_payments,
    extract_apr,
    extract_card_summary,
    guess_account_type,
    guess_institution_name,
    normalize_source_label,
)
from statement_importer.models import (
    AccountType,
    AppConfig,
    StagedBalance,
    StagedImport,
    StagingResult,
)
from statement_importer.parsers import select_parser
from statement_importer.parsers.mapping import BankColumnMapping, apply_bank_mapping
from statement_importer.pdftext import (
    MODE_SUMMARY,
    MODE_TRANSACTIONS,
    balance_summary_section,
    extract_statement_rows,
    full_text,
    interest_charges_section,
    read_pdf_pages,
)
from statement_importer.session import ImportSession
from statement_importer.tabular import read_csv_file

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_PDF = "Low confidence parsing PDF. Consider importing a CSV for best results."
MANUAL_ENTRY_HINT = "If your institution fails to parse, fill in the data manually"
SUMMARY_MODE_HINT = "For a monthly snapshot, try Summary Only mode; for mid-month detail, import a CSV."
PDF_TRANSACTIONS_NOTE = "PDF transactions are experimental. Please review signs before saving."
NO_CSV_ROWS = "No rows detected in CSV. Check delimiter and header mapping."
BROKERAGE_ACTIVITY_ONLY = (
    "Brokerage activity won't affect Net Worth until you import a statement with "
    "balances/holdings or set a starting balance."
)
SAFETY_NET_APPLIED = "Mapped statement balances to a credit card based on your selection."

SUPPORTED_EXTENSIONS = (".csv", ".tsv", ".pdf")

_ASSET_LABELS = frozenset({"checking", "savings", "brokerage", "investment", "default"})
_LIABILITY_BALANCE_LABELS = frozenset({"loan", "creditCard", "default"})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def stage_file(
    path: Path,
    mode: str = MODE_SUMMARY,
    session: ImportSession | None = None,
    config: AppConfig | None = None,
) -> StagingResult:
    """Parse the statement at *path* into a staged import.

    Args:
        path: A ``.csv``, ``.tsv`` or ``.pdf`` file.
        mode: PDF extraction mode, ``"summary"`` or ``"transactions"``.
            Ignored for CSV files.
        session: Import session receiving detected hints.  A fresh one is
            used when omitted.
        config: Application configuration (scan caps, payment rules).

    Returns:
        A :class:`StagingResult`.

    Raises:
        FormatUnrecognized: Unsupported extension, unreadable PDF, or no
            parser accepts the headers.  For CSV files the caller may fall
            back to :func:`stage_with_mapping`.
        InvalidTabularData: The CSV has no usable header.
        ParseFailure: The parser recognized the file but found nothing.
    """
    session = session if session is not None else ImportSession()
    config = config or AppConfig()
    ext = path.suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise FormatUnrecognized(f"Unsupported file type: {ext or path.name}")
    logger.info("Staging %s", path.name)

    if ext == ".pdf":
        pages = read_pdf_pages(path)
        return stage_pdf_pages(pages, path.name, mode, session, config)
    headers, rows = read_csv_file(path)
    return stage_rows(headers, rows, path.name, session, config)


def stage_rows(
    headers: list[str],
    rows: list[list[str]],
    file_name: str,
    session: ImportSession | None = None,
    config: AppConfig | None = None,
) -> StagingResult:
    """Stage already-extracted CSV rows.  See :func:`stage_file`."""
    session = session if session is not None else ImportSession()
    config = config or AppConfig()
    messages: list[str] = []
    confidence = "high" if rows else "none"
    if not rows:
        messages.append(NO_CSV_ROWS)

    session.typical_payments = detect_typical_payments(headers, rows)
    parser = select_parser(headers)
    if parser is None:
        logger.info("No parser matched headers %s", headers)
        raise FormatUnrecognized(
            "Unrecognized statement format. Map the columns manually "
            f"(headers: {', '.join(headers)})."
        )
    logger.debug("Using parser %s", parser.id)
    staged = parser.parse(rows, headers)
    staged.source_file_name = file_name

    _classify(staged, headers, rows, session, config, messages)
    return StagingResult(staged=staged, messages=messages, confidence=confidence, headers=headers)


def stage_pdf_pages(
    pages: list[str],
    file_name: str,
    mode: str = MODE_SUMMARY,
    session: ImportSession | None = None,
    config: AppConfig | None = None,
) -> StagingResult:
    """Stage a PDF from its per-page text.  See :func:`stage_file`."""
    session = session if session is not None else ImportSession()
    config = config or AppConfig()
    limits = config.scan_limits
    text = full_text(pages)

    staged, headers, rows, used_mode = _parse_pdf(pages, text, mode, limits)
    staged.source_file_name = file_name
    confidence = _pdf_confidence(len(rows))
    messages: list[str] = []
    if used_mode == MODE_TRANSACTIONS:
        messages.append(PDF_TRANSACTIONS_NOTE)
    if confidence in ("none", "low"):
        messages.append(MANUAL_ENTRY_HINT)
        if used_mode == MODE_TRANSACTIONS:
            messages.append(SUMMARY_MODE_HINT)
        messages.append(LOW_CONFIDENCE_PDF)

    session.typical_payments = detect_typical_payments(headers, rows)
    _card_summary_fallback(staged, pages, session, config)
    _backfill_apr(staged, text, config)
    _classify(staged, headers, rows, session, config, messages)
    return StagingResult(staged=staged, messages=messages, confidence=confidence, headers=headers)


def stage_with_mapping(
    path: Path,
    mapping: BankColumnMapping,
    session: ImportSession | None = None,
    config: AppConfig | None = None,
) -> StagingResult:
    """Stage a CSV no parser accepts, using user-chosen column indices."""
    session = session if session is not None else ImportSession()
    config = config or AppConfig()
    headers, rows = read_csv_file(path)
    staged = apply_bank_mapping(rows, mapping)
    staged.source_file_name = path.name
    messages = [] if rows else [NO_CSV_ROWS]
    _classify(staged, headers, rows, session, config, messages)
    return StagingResult(
        staged=staged, messages=messages, confidence="high" if rows else "none", headers=headers
    )


def apply_liability_safety_net(staged: StagedImport, user_hint: AccountType | None) -> bool:
    """Relabel asset-labelled balances when the import is clearly a liability.

    Applies when the user said the document is a credit card, or the
    suggestion is a loan or credit card, and every balance label is an
    asset label or unlabelled.  Balances become ``loan`` when the user said
    loan, else ``creditcard``.

    Returns:
        True when balances were relabelled.
    """
    suggested = staged.suggested_account_type
    applies = user_hint == AccountType.CREDIT_CARD or (
        suggested is not None and suggested.is_liability
    )
    if not applies or not staged.balances:
        return False
    labels = [normalize_source_label(b.source_account_label) or "default" for b in staged.balances]
    if not all(label in _ASSET_LABELS for label in labels):
        return False
    target = "loan" if user_hint == AccountType.LOAN else "creditcard"
    for balance in staged.balances:
        if balance.source_account_label == TYPICAL_PAYMENT_SENTINEL:
            continue
        balance.source_account_label = target
    logger.debug("Safety net: relabelled %d balance(s) as %s", len(staged.balances), target)
    return True


def filter_liability_balances(staged: StagedImport, import_type: AccountType | None) -> int:
    """Drop asset-labelled balances from a liability import; return how many."""
    if import_type is None or not import_type.is_liability:
        return 0
    before = len(staged.balances)
    staged.balances = [
        b for b in staged.balances
        if (normalize_source_label(b.source_account_label) or "default") in _LIABILITY_BALANCE_LABELS
    ]
    dropped = before - len(staged.balances)
    if dropped:
        logger.debug("Liability import: dropped %d of %d balance(s)", dropped, before)
    return dropped


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _parse_pdf(pages, text, mode, limits):
    """Extract and parse, falling back from summary to transactions mode."""
    if mode == MODE_SUMMARY:
        try:
            rows, headers = _pdf_rows(pages, text, MODE_SUMMARY, limits)
            parser = select_parser(headers)
            if parser is None:
                raise FormatUnrecognized()
            logger.debug("Using parser %s", parser.id)
            return parser.parse(rows, headers), headers, rows, MODE_SUMMARY
        except (FormatUnrecognized, ParseFailure) as exc:
            logger.info("PDF summary parsing failed (%s); retrying transactions mode", exc)

    rows, headers = _pdf_rows(pages, text, MODE_TRANSACTIONS, limits)
    parser = select_parser(headers, start_after="pdf.summary")
    if parser is None:
        raise FormatUnrecognized()
    logger.debug("Using parser %s", parser.id)
    return parser.parse(rows, headers), headers, rows, MODE_TRANSACTIONS


def _pdf_rows(pages, text, mode, limits):
    rows, headers = extract_statement_rows(pages, mode)
    interest = interest_charges_section(text, limits.interest_section_chars)
    if interest:
        rows.append([interest])
    summary = balance_summary_section(text, limits.balance_summary_lines)
    if summary:
        rows.append([summary])
    return rows, headers


def _pdf_confidence(row_count: int) -> str:
    if row_count == 0:
        return "none"
    if row_count < 5:
        return "low"
    if row_count < 20:
        return "medium"
    return "high"


def _card_summary_fallback(
    staged: StagedImport, pages: list[str], session: ImportSession, config: AppConfig
) -> None:
    """Use the card header figures when the parser found no usable balance."""
    balances = staged.balances
    need_balance = not balances or (len(balances) == 1 and balances[0].balance == 0)
    labels = [normalize_source_label(b.source_account_label) or "default" for b in balances]
    all_bank = bool(labels) and all(label in ("checking", "savings") for label in labels)

    summary = None
    if need_balance or all_bank:
        summary = extract_card_summary(pages, config.minimum_payment, config.scan_limits)
        if summary is None:
            logger.debug("Card summary fallback found no header fields")
        else:
            as_of = summary.due_date or (balances[0].as_of_date if balances else None)
            if as_of is None:
                as_of = date.today()
            snap = StagedBalance(
                as_of_date=as_of, balance=summary.new_balance, source_account_label="creditCard"
            )
            if balances:
                balances[0] = snap
            else:
                balances.append(snap)
            if summary.minimum_payment is not None and summary.minimum_payment > 0:
                session.typical_payments["creditCard"] = summary.minimum_payment
                session.typical_payments["default"] = summary.minimum_payment
            if staged.suggested_account_type is None:
                staged.suggested_account_type = AccountType.CREDIT_CARD
            logger.info("Applied card summary: new balance %s", summary.new_balance)

    if "creditCard" not in session.typical_payments:
        summary = summary or extract_card_summary(pages, config.minimum_payment, config.scan_limits)
        if summary is not None and summary.minimum_payment is not None and summary.minimum_payment > 0:
            session.typical_payments["creditCard"] = summary.minimum_payment
            session.typical_payments["default"] = summary.minimum_payment
            if staged.suggested_account_type is None:
                staged.suggested_account_type = AccountType.CREDIT_CARD
            logger.debug("Captured minimum payment %s from card summary", summary.minimum_payment)


def _backfill_apr(staged: StagedImport, text: str, config: AppConfig) -> None:
    if not staged.balances or any(b.interest_rate_apr is not None for b in staged.balances):
        return
    section = interest_charges_section(text, config.scan_limits.interest_section_chars)
    found = (extract_apr(section, config.scan_limits) if section else None) or extract_apr(
        text, config.scan_limits
    )
    if found is None:
        return
    apr, scale = found
    for balance in staged.balances:
        balance.interest_rate_apr = apr
        balance.interest_rate_scale = scale
    logger.debug("Back-filled APR %s (scale %d) on %d balance(s)", apr, scale, len(staged.balances))


def _classify(
    staged: StagedImport,
    headers: list[str],
    rows: list[list[str]],
    session: ImportSession,
    config: AppConfig,
    messages: list[str],
) -> None:
    """Type guess, safety net, liability filter, advisory messages."""
    sample = rows[: config.scan_limits.sample_rows]
    guessed = guess_account_type(
        staged.source_file_name, headers, sample, session.user_hint, config.scan_limits.sample_rows
    )
    logger.debug("Account type guess: %s", guessed.value if guessed else None)
    if staged.suggested_account_type is None and guessed is not None:
        staged.suggested_account_type = guessed

    if apply_liability_safety_net(staged, session.user_hint) and SAFETY_NET_APPLIED not in messages:
        messages.append(SAFETY_NET_APPLIED)
    filter_liability_balances(staged, staged.suggested_account_type or session.account_type_override)

    if not (session.institution_name or "").strip():
        session.institution_name = guess_institution_name(staged.source_file_name)

    brokerage = AccountType.BROKERAGE in (staged.suggested_account_type, session.account_type_override)
    if brokerage and staged.transactions and not staged.balances and not staged.holdings:
        messages.append(BROKERAGE_ACTIVITY_ONLY)
