"""Classifier heuristics for staged statements.

All functions here are pure: they look at file names, headers, rows or
statement text and return a best guess (or ``None``).  Nothing in this
module touches the ledger.

Every scan that walks forward through lines or characters is bounded by a
:class:`~statement_importer.models.ScanLimits` value.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import PurePath

from statement_importer.models import AccountType, MinimumPaymentRules, ScanLimits

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------

_BROKERAGE_HEADER_SIGNALS = (
    "symbol", "ticker", "cusip", "qty", "quantity", "shares", "share", "price",
    "security", "securities", "stock", "stocks", "equity", "equities", "option",
    "options", "portfolio", "market value", "cost basis",
)
_DESCRIPTION_HEADER_KEYS = (
    "description", "activity", "action", "details", "detail", "type", "transaction type",
)
_BROKERAGE_ROW_KEYWORDS = (
    "buy", "bought", "sell", "sold", "dividend", "reinvest", "reinvestment", "interest",
    "cap gain", "capital gain", "distribution", "split", "spinoff", "spin-off", "option",
    "call", "put", "exercise", "assign", "assignment", "expiration", "short", "cover",
)
_CC_HEADER_SIGNALS = (
    "credit card", "card number", "new balance", "minimum payment", "payment due",
    "credit limit", "late fee", "interest charge",
)
_CC_ROW_SIGNALS = (
    "minimum payment", "payment due", "new balance", "previous balance",
    "late payment warning", "payment due date", "credit limit", "interest charge",
    "purchases", "fees charged", "cash advances",
)
_LOAN_HEADER_SIGNALS = (
    "loan", "mortgage", "auto loan", "student loan", "home equity", "heloc", "installment",
)
_LOAN_ROW_SIGNALS = (
    "current amount due", "amount due", "minimum amount due", "total amount due",
    "past due amount", "past-due amount", "payment due", "due date", "principal balance",
    "outstanding principal", "original balance", "escrow", "late fee",
)

# Ordered: the first pattern found in the normalized file stem wins.
KNOWN_INSTITUTIONS: tuple[tuple[str, str], ...] = (
    ("americanexpress", "American Express"),
    ("amex", "American Express"),
    ("bankofamerica", "Bank of America"),
    ("boa", "Bank of America"),
    ("wellsfargo", "Wells Fargo"),
    ("capitalone", "Capital One"),
    ("capone", "Capital One"),
    ("charlesschwab", "Charles Schwab"),
    ("schwab", "Charles Schwab"),
    ("fidelity", "Fidelity"),
    ("vanguard", "Vanguard"),
    ("robinhood", "Robinhood"),
    ("discover", "Discover"),
    ("citibank", "Citi"),
    ("citi", "Citi"),
    ("chase", "Chase"),
    ("sofi", "SoFi"),
)

_TYPICAL_PAYMENT_KEYWORDS = (
    "estimated monthly payment (loan)",
    "typical payment (loan)",
    "minimum payment",
    "minimum payment due",
    "minimum payment due (mpd)",
    "minimum amount due",
    "min payment",
    "min. payment",
    "payment due",
    "amount due",
    "current amount due",
    "past due amount",
)

LIABILITY_LABELS = frozenset({"loan", "creditCard"})
TYPICAL_PAYMENT_SENTINEL = "__typical_payment__"

_APR_PERCENT = r"([0-9]{1,2}(?:\.[0-9]{1,4})?)\s*%"
_APR_PERCENT_RE = re.compile(_APR_PERCENT)
_APR_PURCHASE_PATTERNS = (
    re.compile(r"(?:standard\s+)?purchases?\s*apr[^0-9%]{0,32}" + _APR_PERCENT, re.I),
    re.compile(r"purchases?[^\n\r]{0,40}?apr[^0-9%]{0,32}" + _APR_PERCENT, re.I),
    re.compile(r"(?:purchases?|purchase)[\s\S]{0,80}?" + _APR_PERCENT, re.I),
)
_APR_LABELED_RE = re.compile(
    r"(?:purchases?|cash\s+advances?)\s*apr[^0-9%]{0,32}" + _APR_PERCENT, re.I
)
_APR_GENERIC_RE = re.compile(
    r"(?:(?:annual\s+percentage\s+rate\s*\(apr\))|apr)[^0-9%]{0,64}" + _APR_PERCENT, re.I
)

_AMOUNT_TOKEN = r"(\$?\s*[0-9]{1,3}(?:,[0-9]{3})*(?:\.[0-9]{2})|\$?\s*[0-9]+(?:\.[0-9]{2})?)"
_CURRENCY_TOKEN = r"(\$\s*[0-9]{1,3}(?:,[0-9]{3})*(?:\.[0-9]{2})|\$\s*[0-9]+(?:\.[0-9]{2})?)"
_MIN_PAY_LABEL = r"(?:total\s+minimum\s+payment\s+due|min(?:imum)?\s+payment(?:\s+due)?)"
_NEW_BALANCE_RE = re.compile(r"(?:new\s*balance)\s*[:\-]?\s*" + _AMOUNT_TOKEN, re.I)
_MIN_PAY_PATTERNS = tuple(
    re.compile(_MIN_PAY_LABEL + sep + token, re.I | re.S)
    for token in (_CURRENCY_TOKEN, _AMOUNT_TOKEN)
    for sep in (r"\s*[:\-]?\s*", r"\s*[:\-\n\r]*")
)
_DUE_DATE_RE = re.compile(
    r"(?:payment\s+due\s+date)\s*[:\-]?\s*"
    r"([A-Za-z]{3,9}\s+[0-9]{1,2},\s*[0-9]{2,4}|[0-9]{1,2}/[0-9]{1,2}/[0-9]{2,4})",
    re.I,
)
_CURRENCY_RE = re.compile(_CURRENCY_TOKEN)
_AMOUNT_RE = re.compile(_AMOUNT_TOKEN)
_PAYMENT_IGNORE_KEYWORDS = ("if you", "only", "additional", "add ", "pay off", "years", "months")


@dataclass
class CardSummary:
    """Header figures of a credit card statement.

    Attributes:
        new_balance: The "New Balance" amount.
        minimum_payment: A plausible minimum payment, or ``None``.
        due_date: The payment due date, if found.
    """

    new_balance: Decimal
    minimum_payment: Decimal | None = None
    due_date: date | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def guess_account_type(
    file_name: str,
    headers: list[str],
    sample_rows: list[list[str]],
    user_hint: AccountType | None = None,
    sample_limit: int = 50,
) -> AccountType | None:
    """Guess the source account type from a file name, headers and rows.

    The tiers are strict, first match wins: brokerage headers, brokerage
    row keywords, credit card signals, loan signals, file name, then the
    user's hint.

    Args:
        file_name: Base name of the imported file.
        headers: Raw header row.
        sample_rows: Body rows; only the first *sample_limit* are examined.
        user_hint: The type the user said the document is, if any.
        sample_limit: Row cap for the keyword tiers.

    Returns:
        The guessed type or ``None``.
    """
    rows = sample_rows[:sample_limit]
    lower_headers = [h.strip().lower() for h in headers]

    if _any_header_matches(lower_headers, _BROKERAGE_HEADER_SIGNALS):
        logger.debug("Account type guess: brokerage by header")
        return AccountType.BROKERAGE

    desc_idx = next(
        (i for i, h in enumerate(lower_headers) if any(k in h for k in _DESCRIPTION_HEADER_KEYS)),
        None,
    )
    hits = 0
    for row in rows:
        if desc_idx is not None and desc_idx < len(row):
            text = row[desc_idx].lower()
        else:
            text = " ".join(row).lower()
        if any(k in text for k in _BROKERAGE_ROW_KEYWORDS):
            hits += 1
            if hits >= 2:
                break
    if hits >= 2 or (hits == 1 and len(rows) <= 5):
        logger.debug("Account type guess: brokerage by %d row keyword hit(s)", hits)
        return AccountType.BROKERAGE

    if _any_header_matches(lower_headers, _CC_HEADER_SIGNALS) or _row_hits(rows, _CC_ROW_SIGNALS) >= 2:
        logger.debug("Account type guess: credit card by statement signals")
        return AccountType.CREDIT_CARD

    if _any_header_matches(lower_headers, _LOAN_HEADER_SIGNALS) or _row_hits(rows, _LOAN_ROW_SIGNALS) >= 2:
        logger.debug("Account type guess: loan by statement signals")
        return AccountType.LOAN

    name = _squash(file_name)
    if "creditcard" in name or ("credit" in name and "card" in name) or "cc" in name:
        logger.debug("Account type guess: credit card by file name")
        return AccountType.CREDIT_CARD
    if any(k in name for k in ("ira", "roth", "401k", "brokerage", "investment", "retirement")):
        logger.debug("Account type guess: brokerage by file name")
        return AccountType.BROKERAGE

    if user_hint is not None:
        logger.debug("Account type guess: falling back to user hint %s", user_hint.value)
    return user_hint


def guess_institution_name(file_name: str) -> str | None:
    """Infer an institution display name from a file name.

    The stem is lowercased with spaces, ``-`` and ``_`` removed and matched
    against :data:`KNOWN_INSTITUTIONS` in order.  There is no fallback.
    """
    stem = _squash(PurePath(file_name).stem)
    for pattern, display in KNOWN_INSTITUTIONS:
        if pattern in stem:
            return display
    return None


def normalize_source_label(raw: str | None) -> str | None:
    """Map a raw account label or description onto a canonical grouping key.

    Returns one of ``checking``, ``savings``, ``creditCard``, ``loan``,
    ``brokerage`` or ``None``.
    """
    if raw is None:
        return None
    s = raw.strip().lower()
    if not s:
        return None
    if "checking" in s:
        return "checking"
    if "savings" in s:
        return "savings"
    if any(k in s for k in ("creditcard", "credit card", "visa", "mastercard", "amex", "american express", "discover")):
        return "creditCard"
    if "loan" in s or "mortgage" in s:
        return "loan"
    if any(k in s for k in ("brokerage", "investment", "stock", "options")):
        return "brokerage"
    return None


def type_for_label(label: str | None) -> AccountType | None:
    """Map a canonical or raw label to an account type."""
    if label is None:
        return None
    lower = label.strip().lower()
    if lower in ("checking", "savings", "brokerage"):
        return AccountType(lower)
    if lower in ("loan", "mortgage"):
        return AccountType.LOAN
    if lower in ("creditcard", "credit card"):
        return AccountType.CREDIT_CARD
    return None


def is_liability_label(raw: str | None) -> bool:
    return normalize_source_label(raw) in LIABILITY_LABELS


def detect_typical_payments(headers: list[str], rows: list[list[str]]) -> dict[str, Decimal]:
    """Find minimum-payment / amount-due rows and return amounts per label.

    The description column is the header equal to "description" (else
    column 1) and the amount column the header equal to "amount" (else
    column 2).  An empty amount falls back to the "balance" column.  The
    label comes from an "account" column, then from the description, else
    ``"default"``.  Later rows overwrite earlier ones.
    """
    lower = [h.strip().lower() for h in headers]
    desc_idx = lower.index("description") if "description" in lower else 1
    amount_idx = lower.index("amount") if "amount" in lower else 2
    balance_idx = lower.index("balance") if "balance" in lower else None
    account_idx = lower.index("account") if "account" in lower else None

    found: dict[str, Decimal] = {}
    for row in rows:
        if desc_idx >= len(row):
            continue
        desc = row[desc_idx]
        if not any(k in desc.lower() for k in _TYPICAL_PAYMENT_KEYWORDS):
            continue
        text = row[amount_idx] if amount_idx < len(row) else ""
        if not text.strip() and balance_idx is not None and balance_idx < len(row):
            text = row[balance_idx]
        amount = _to_decimal(text.replace(",", "").replace("$", ""))
        if amount is None:
            continue
        account_raw = row[account_idx] if account_idx is not None and account_idx < len(row) else None
        label = normalize_source_label(account_raw) or normalize_source_label(desc) or "default"
        found[label] = amount
        logger.debug("Typical payment hint: label=%s amount=%s", label, amount)
    return found


def extract_apr(text: str, limits: ScanLimits | None = None) -> tuple[Decimal, int] | None:
    """Find the purchase APR in full statement text.

    Tiers, in order: an APR table ("type of balance" + "apr", or "interest
    charge calculation") scanned for a purchases row then a cash advance
    row; any line with "purchases" and a percentage; purchase-APR
    patterns; labeled purchase/cash-advance APRs; a generic APR mention
    that is not a disclaimer.

    Returns:
        ``(apr_fraction, scale)`` where *scale* is the number of digits
        after the decimal point in the source token, or ``None``.
    """
    limits = limits or ScanLimits()
    lower = text.lower()
    lines = lower.splitlines()

    header_idx: int | None = None
    for i, line in enumerate(lines):
        if "type of balance" in line and "apr" in line:
            header_idx = i
            break
        if header_idx is None and "interest charge calculation" in line:
            header_idx = i
    if header_idx is not None:
        end = min(len(lines), header_idx + limits.apr_table_lines)
        for keyword in ("purchases", "cash advance"):
            hit = _table_row_percent(lines, header_idx + 1, end, keyword, limits.apr_lookahead_lines)
            if hit is not None:
                logger.debug("APR from table row %r: %s", keyword, hit)
                return hit

    for line in lines:
        if "purchases" in line:
            hit = _first_percent(line)
            if hit is not None:
                return hit

    for pattern in _APR_PURCHASE_PATTERNS:
        m = pattern.search(lower)
        if m:
            hit = _percent_token(m.group(1))
            if hit is not None:
                return hit

    best: tuple[Decimal, int, int] | None = None
    for m in _APR_LABELED_RE.finditer(lower):
        hit = _percent_token(m.group(1))
        if hit is None:
            continue
        line = _line_around(lower, m.start(), m.end())
        score = 2 if "purchases" in line else (1 if "cash advance" in line else 0)
        if best is None or score > best[2]:
            best = (hit[0], hit[1], score)
    if best is not None:
        return best[0], best[1]

    for m in _APR_GENERIC_RE.finditer(lower):
        line = _line_around(lower, m.start(), m.end())
        if "will not exceed" in line or "maximum" in line or "not exceed" in line:
            continue
        hit = _percent_token(m.group(1))
        if hit is not None:
            return hit

    logger.debug("APR extraction: no APR found")
    return None


def is_plausible_minimum_payment(
    amount: Decimal, new_balance: Decimal, rules: MinimumPaymentRules | None = None
) -> bool:
    """Return True when *amount* looks like a real minimum payment for *new_balance*."""
    rules = rules or MinimumPaymentRules()
    if new_balance <= 0:
        return False
    if rules.whole_dollar and amount != amount.to_integral_value():
        return False
    ratio = amount / new_balance
    return amount >= rules.min_amount and rules.min_ratio <= ratio <= rules.max_ratio


def pick_plausible_minimum_payment(
    candidates: list[Decimal], new_balance: Decimal, rules: MinimumPaymentRules | None = None
) -> Decimal | None:
    """Choose the plausible candidate whose ratio is closest to the target ratio."""
    rules = rules or MinimumPaymentRules()
    plausible = [c for c in candidates if is_plausible_minimum_payment(c, new_balance, rules)]
    if not plausible:
        return None
    return min(plausible, key=lambda c: abs(c / new_balance - rules.target_ratio))


def extract_card_summary(
    pages: list[str],
    rules: MinimumPaymentRules | None = None,
    limits: ScanLimits | None = None,
) -> CardSummary | None:
    """Read New Balance, Minimum Payment and Payment Due Date from the first pages.

    The minimum payment is only kept when it passes the plausibility
    filter.  When the labelled match is implausible, every amount on the
    label line and the short lookahead is considered and the best one
    picked.

    Returns:
        A :class:`CardSummary`, or ``None`` when no New Balance is found.
    """
    rules = rules or MinimumPaymentRules()
    limits = limits or ScanLimits()
    text = "\n" + "\n".join(pages[: limits.card_summary_pages])
    text = (
        text.replace("\u00a0", " ")
        .replace("\u202f", " ")
        .replace("\ufe69", "$")
        .replace("\uff04", "$")
    )

    minimum: Decimal | None = None
    for pattern in _MIN_PAY_PATTERNS:
        m = pattern.search(text)
        if m:
            minimum = _parse_amount(m.group(1))
            break
    if minimum is None:
        minimum = _minimum_payment_from_window(text, limits)

    due = None
    m = _DUE_DATE_RE.search(text)
    if m:
        due = _parse_due_date(m.group(1))

    m = _NEW_BALANCE_RE.search(text)
    if m is None:
        logger.debug("Card summary: no New Balance match")
        return None
    new_balance = _parse_amount(m.group(1))
    if new_balance is None:
        return None

    if new_balance > 0:
        if minimum is None or not is_plausible_minimum_payment(minimum, new_balance, rules):
            candidates = _minimum_payment_candidates(text, limits)
            picked = pick_plausible_minimum_payment(candidates, new_balance, rules)
            if picked is not None:
                minimum = picked
        if minimum is not None and not is_plausible_minimum_payment(minimum, new_balance, rules):
            logger.debug("Card summary: discarding implausible minimum payment %s", minimum)
            minimum = None

    logger.debug("Card summary: new_balance=%s minimum=%s due=%s", new_balance, minimum, due)
    return CardSummary(new_balance=new_balance, minimum_payment=minimum, due_date=due)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _squash(text: str) -> str:
    return text.lower().replace(" ", "").replace("-", "").replace("_", "")


def _any_header_matches(lower_headers: list[str], signals: tuple[str, ...]) -> bool:
    return any(sig in h for h in lower_headers for sig in signals)


def _row_hits(rows: list[list[str]], signals: tuple[str, ...]) -> int:
    hits = 0
    for row in rows:
        text = " ".join(row).lower()
        if any(s in text for s in signals):
            hits += 1
            if hits >= 2:
                break
    return hits


def _to_decimal(text: str) -> Decimal | None:
    text = text.strip()
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def _scale_of(token: str) -> int:
    return len(token.split(".", 1)[1]) if "." in token else 0


def _percent_token(token: str) -> tuple[Decimal, int] | None:
    token = token.replace("%", "")
    value = _to_decimal(token)
    if value is None:
        return None
    if value > 1:
        value = value / 100
    return value, _scale_of(token)


def _first_percent(line: str) -> tuple[Decimal, int] | None:
    m = _APR_PERCENT_RE.search(line)
    return _percent_token(m.group(1)) if m else None


def _table_row_percent(
    lines: list[str], start: int, end: int, keyword: str, lookahead: int
) -> tuple[Decimal, int] | None:
    for j in range(start, end):
        if keyword not in lines[j]:
            continue
        hit = _first_percent(lines[j])
        if hit is not None:
            return hit
        for k in range(j + 1, min(end, j + lookahead)):
            hit = _first_percent(lines[k])
            if hit is not None:
                return hit
    return None


def _line_around(text: str, start: int, end: int) -> str:
    line_start = text.rfind("\n", 0, start) + 1
    line_end = text.find("\n", end)
    return text[line_start:] if line_end == -1 else text[line_start:line_end]


def _parse_amount(token: str) -> Decimal | None:
    cleaned = (
        token.replace(",", "")
        .replace("$", "")
        .replace("\u00a0", "")
        .replace("\u202f", "")
    )
    return _to_decimal(cleaned)


def _parse_due_date(text: str) -> date | None:
    text = " ".join(text.split())
    for fmt in ("%m/%d/%Y", "%m/%d/%y", "%B %d, %Y", "%b %d, %Y", "%B %d,%Y", "%b %d,%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _payment_label_index(lines: list[str], limits: ScanLimits) -> int | None:
    lower = [ln.lower() for ln in lines]
    start = next((i for i, ln in enumerate(lower) if "payment information" in ln), None)
    if start is None:
        start = next((i for i, ln in enumerate(lower) if "minimum payment" in ln), None)
    if start is None:
        return None
    for i in range(start, min(len(lines), start + limits.payment_window_lines)):
        ln = lower[i]
        if "minimum payment" in ln and not any(k in ln for k in _PAYMENT_IGNORE_KEYWORDS):
            return i
    return None


def _minimum_payment_from_window(text: str, limits: ScanLimits) -> Decimal | None:
    lines = text.splitlines()
    label_idx = _payment_label_index(lines, limits)
    if label_idx is None:
        return None
    for regex in (_CURRENCY_RE, _AMOUNT_RE):
        m = regex.search(lines[label_idx])
        if m:
            value = _parse_amount(m.group(1))
            if value is not None:
                return value
    end = min(len(lines), label_idx + 1 + limits.payment_lookahead_lines)
    for j in range(label_idx + 1, end):
        if any(k in lines[j].lower() for k in _PAYMENT_IGNORE_KEYWORDS):
            continue
        for regex in (_CURRENCY_RE, _AMOUNT_RE):
            for m in regex.finditer(lines[j]):
                value = _parse_amount(m.group(1))
                if value is not None:
                    return value
    return None


def _minimum_payment_candidates(text: str, limits: ScanLimits) -> list[Decimal]:
    lines = text.splitlines()
    label_idx = _payment_label_index(lines, limits)
    if label_idx is None:
        return []
    candidates: list[Decimal] = []
    end = min(len(lines), label_idx + 1 + limits.payment_lookahead_lines)
    for j in range(label_idx, end):
        if j > label_idx and any(k in lines[j].lower() for k in _PAYMENT_IGNORE_KEYWORDS):
            continue
        for regex in (_CURRENCY_RE, _AMOUNT_RE):
            for m in regex.finditer(lines[j]):
                value = _parse_amount(m.group(1))
                if value is not None and value not in candidates:
                    candidates.append(value)
    return candidates
