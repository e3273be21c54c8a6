"""Statement summary PDF parser.

Consumes the rows produced by
:func:`statement_importer.pdftext.extract_statement_rows` in summary mode
and keeps only balance-bearing summary lines:

* credit card summary phrases ("new balance", "minimum payment due", ...);
* the synthetic ``Statement Beginning/Ending Balance`` rows;
* loan summary phrases ("amount due", "principal balance", ...);
* single-cell "balance summary" text blocks, whose product lines carry
  beginning and ending columns.

Each balance is labelled (``creditcard``, ``checking``, ``savings``,
``brokerage`` or ``loan``) and annotated with an APR when one can be found.
The result is deduplicated by (label, day), preferring non-zero values.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import date
from decimal import Decimal, InvalidOperation

from statement_importer.errors import ParseFailure
from statement_importer.models import StagedBalance, StagedImport
from statement_importer.pdftext import PDF_HEADERS, parse_normalized_date
from statement_importer.tabular import cell

logger = logging.getLogger(__name__)

PARSER_ID = "pdf.summary"

NO_BALANCES_MESSAGE = (
    "We couldn't detect statement balances in this PDF. Try Transactions mode to "
    "import activity, or export a CSV for best results."
)

PURCHASES_WINDOW_CHARS = 1800
PURCHASES_CONTEXT_CHARS = 220
PENALTY_APR_THRESHOLD = Decimal("0.28")

_CREDIT_CARD_PHRASES = (
    "new balance", "previous balance", "minimum payment due", "payment due date",
    "credit limit", "available credit", "card ending",
)
_CREDIT_CARD_DOC_PHRASES = _CREDIT_CARD_PHRASES + (
    "interest charges", "annual percentage rate", "balance type",
)
_STATEMENT_PHRASES = ("statement beginning balance", "statement ending balance")
_LOAN_PHRASES = (
    "beginning balance", "ending balance", "current amount due", "amount due",
    "payment due", "principal balance", "outstanding principal",
)
_LOAN_LABEL_PHRASES = (
    "loan", "mortgage", "principal balance", "outstanding principal", "amount due", "payment due",
)

# APR context vocabulary
_BAD_WORDS = (
    "fee", "minimum", "min", "of the new balance", "transaction fee", "foreign",
    "balance transfer fee", "cash advance fee", "late fee", "overlimit", "penalty",
    "penalty apr", "late payment", "late payment warning",
)
_PROMO_WORDS = ("promo", "promotional", "intro", "introductory", "offer")
_PURCHASE_WORDS = ("purchase", "purchases", "purchase apr")
_DEMOTE_WORDS = ("cash advance", "balance transfer")
_PRIOR_WORDS = ("prior to", "previous")
_HEADER_WORDS = (
    "annual percentage rate", "interest charges", "balance type", "interest rate",
    "annual interest rate",
)
_BANKING_WORDS = (
    "savings", "checking", "statement ending balance", "statement beginning balance",
    "annual percentage yield", "apy", "money market", "certificate of deposit", "cd",
)
_LIABILITY_WORDS = (
    "loan", "mortgage", "home equity", "principal balance", "outstanding principal",
    "current amount due", "amount due", "payment due", "estimated monthly payment",
)
_REWARD_WORDS = (
    "cash back", "cashback", "rewards", "points", "miles", "bonus", "bonus category",
    "category", "dining", "drugstore", "groceries", "gas", "travel",
)
_PURCHASE_REWARD_WORDS = tuple(w for w in _REWARD_WORDS if w != "bonus")
_FX_WORDS = (
    "foreign transaction", "foreign exchange", "international transaction",
    "currency conversion", "conversion fee",
)
_FEE_WORDS = ("transaction fee", "monthly fee", "fee-based", "pay over time")

_APR_LABEL_RE = re.compile(
    r"(?:(?:interest\s*rate)|apr)[^0-9%]{0,64}([0-9]{1,3}(?:\.[0-9]{1,4})?)\s*%?", re.I
)
_APR_BARE_RE = re.compile(r"([0-9]{1,3}(?:\.[0-9]{1,4})?)\s*%", re.I)
_APR_RANGE_RE = re.compile(
    r"([0-9]{1,3}(?:\.[0-9]{1,4})?)\s*%?\s*(?:–|-|to)\s*([0-9]{1,3}(?:\.[0-9]{1,4})?)\s*%?",
    re.I,
)
_PURCHASES_RE = re.compile(r"purchases?", re.I)
_CURRENCY_VALUE_RE = re.compile(
    r"\(?\$?\s*[-+]?[0-9]{1,3}(?:,[0-9]{3})*(?:\.[0-9]{1,4})?\)?"
    r"|\(?\$?\s*[-+]?[0-9]+(?:\.[0-9]{1,4})?\)?"
)


def can_parse(headers: list[str]) -> bool:
    """Accept only the normalized header row the PDF extractor emits.

    CSV exports with date, description, amount and balance columns fall
    through to the bank CSV parser.
    """
    return [h.strip().lower() for h in headers] == PDF_HEADERS


def parse(rows: list[list[str]], headers: list[str]) -> StagedImport:
    """Build statement balances from summary rows.

    Raises:
        ParseFailure: When no balance can be found.
    """
    doc = " ".join(c for row in rows for c in row).lower()
    global_apr = _global_apr(rows, doc)
    has_cc = any(
        any(p in " ".join(row).lower() for p in _CREDIT_CARD_DOC_PHRASES) for row in rows
    )
    doc_has_penalty = "penalty" in doc or "late payment warning" in doc
    doc_has_purchase = "purchase" in doc
    logger.debug(
        "%s: rows=%d global_apr=%s cc=%s penalty=%s purchase=%s",
        PARSER_ID, len(rows), global_apr, has_cc, doc_has_penalty, doc_has_purchase,
    )

    dates = [d for d in (parse_normalized_date(cell(r, headers, "date") or "") for r in rows) if d]
    start = min(dates) if dates else None
    end = max(dates) if dates else None

    balances: list[StagedBalance] = []
    context: str | None = None
    for row in rows:
        desc_raw = cell(row, headers, "description")
        account_raw = cell(row, headers, "account")
        context = _update_context(context, desc_raw, account_raw)
        desc = (desc_raw or "").lower()

        is_cc = any(p in desc for p in _CREDIT_CARD_PHRASES)
        is_statement = any(p in desc for p in _STATEMENT_PHRASES)
        is_loan = any(p in desc for p in _LOAN_PHRASES)
        if not (is_cc or is_statement or is_loan):
            continue
        as_of = parse_normalized_date(cell(row, headers, "date") or "")
        if as_of is None:
            continue
        raw = cell(row, headers, "balance") or cell(row, headers, "amount")
        value = _to_decimal(raw.replace(",", "").replace("$", "")) if raw else None
        if value is None:
            continue

        balance = StagedBalance(as_of_date=as_of, balance=value)
        row_apr = extract_apr_candidate(desc)
        if row_apr is not None:
            has_purchase = "purchase" in desc
            has_penalty = "penalty" in desc or "late payment" in desc
            if has_penalty or (not has_purchase and row_apr[0] >= PENALTY_APR_THRESHOLD):
                logger.debug("Row APR rejected by context: %s %r", row_apr[0], desc)
            else:
                balance.interest_rate_apr, balance.interest_rate_scale = row_apr
        if balance.interest_rate_apr is None and global_apr is not None:
            if global_apr[0] >= PENALTY_APR_THRESHOLD and (doc_has_penalty or not doc_has_purchase):
                logger.debug("Skipping penalty-like global APR %s", global_apr[0])
            else:
                balance.interest_rate_apr, balance.interest_rate_scale = global_apr

        if is_cc or has_cc:
            balance.source_account_label = "creditcard"
        else:
            label = _summary_label(account_raw) or _summary_label(desc) or context
            if label is None and any(p in desc for p in _LOAN_LABEL_PHRASES):
                label = "loan"
            balance.source_account_label = label
        balances.append(balance)
        logger.debug(
            "Summary row: %s %s label=%s %r", as_of, value, balance.source_account_label, desc_raw
        )

    balances.extend(_balance_summary_blocks(rows, start, end))

    if has_cc and balances:
        logger.debug("Coercing %d balance label(s) to creditcard", len(balances))
        for balance in balances:
            balance.source_account_label = "creditcard"

    balances = dedupe_balances(balances)
    if not balances:
        raise ParseFailure(NO_BALANCES_MESSAGE)

    return StagedImport(
        parser_id=PARSER_ID,
        source_file_name="Unknown.pdf",
        suggested_account_type=None,
        balances=balances,
    )


def dedupe_balances(balances: list[StagedBalance]) -> list[StagedBalance]:
    """Keep one balance per (label, day); a non-zero value replaces a zero one."""
    chosen: dict[tuple[str, date], StagedBalance] = {}
    for b in balances:
        key = ((b.source_account_label or "default").strip().lower(), b.as_of_date)
        existing = chosen.get(key)
        if existing is None or (existing.balance == 0 and b.balance != 0):
            chosen[key] = b
    return list(chosen.values())


def extract_apr_candidate(text: str) -> tuple[Decimal, int] | None:
    """Score labelled and bare percentages in *text* and return the best APR.

    Candidates in banking, reward, FX, fee or penalty contexts are
    rejected, as are bare percentages without an APR header or purchases
    nearby.  Purchases context scores up; prior-period, cash advance and
    balance transfer context, and range bounds, score down.  Ties prefer
    a non-range value, then the lower value.

    Returns:
        ``(apr_fraction, scale)`` or ``None``.
    """
    lower = text.lower()
    doc_has_penalty = "penalty" in lower or "late payment warning" in lower
    has_promo = _contains_any(lower, _PROMO_WORDS)

    # (score, is_range, value, scale)
    candidates: list[tuple[int, bool, Decimal, int]] = []
    matches = [(m, "label") for m in _APR_LABEL_RE.finditer(lower)]
    matches += [(m, "bare") for m in _APR_BARE_RE.finditer(lower)]
    for m, source in matches:
        token = m.group(1)
        value = _to_decimal(token)
        if value is None:
            continue
        scale = len(token.split(".", 1)[1]) if "." in token else 0
        if value > 1:
            value = value / 100

        ctx = lower[max(0, m.start() - 260): m.end() + 300]
        has_header = _contains_any(ctx, _HEADER_WORDS)
        has_reward = _contains_any(ctx, _REWARD_WORDS)
        has_purchase = not has_reward and _contains_any(ctx, _PURCHASE_WORDS)
        has_apr_token = "apr" in ctx or "annual percentage rate" in ctx

        if (
            _contains_any(ctx, _BANKING_WORDS)
            and not has_purchase
            and not has_apr_token
            and not _contains_any(ctx, _LIABILITY_WORDS)
        ):
            continue
        if has_reward or _contains_any(ctx, _FX_WORDS) or _contains_any(ctx, _FEE_WORDS):
            continue
        if "no interest" in ctx:
            continue
        if not (has_header or has_purchase):
            continue
        if _contains_any(ctx, _BAD_WORDS):
            continue
        if doc_has_penalty and value >= PENALTY_APR_THRESHOLD and not has_purchase:
            continue
        if value == 0:
            if not has_promo:
                continue
        elif value < Decimal("0.005") or value > Decimal("0.6"):
            continue

        is_range = False
        is_upper = False
        for rm in _APR_RANGE_RE.finditer(ctx):
            if token in (rm.group(1), rm.group(2)):
                is_range = True
                is_upper = rm.group(2) == token
                break

        score = 0
        if has_purchase:
            score += 7
        if _contains_any(ctx, _PRIOR_WORDS):
            score -= 3
        if _contains_any(ctx, _DEMOTE_WORDS):
            score -= 3
        if is_range:
            score -= 4
        if is_upper:
            score -= 3
        if source == "label":
            score += 1
        if has_header:
            score += 2
        logger.debug("APR candidate %s (%s) score=%d range=%s", value, source, score, is_range)
        candidates.append((score, is_range, value, scale))

    if not candidates:
        return None
    best = max(candidates, key=lambda c: (c[0], not c[1], -c[2]))
    return best[2], best[3]


def extract_purchases_apr(doc: str) -> tuple[Decimal, int] | None:
    """Find the Purchases APR in the window after an "interest charges" anchor.

    Without the anchor the window starts at the beginning of *doc*.  Each
    "purchase(s)" mention contributes the first percentage that follows
    it, unless the nearby text is rewards, FX or fee copy.  Mentions near
    "prior"/"previous" score lower.
    """
    lower = doc.lower()
    anchor = lower.find("interest charges")
    begin = anchor + len("interest charges") if anchor >= 0 else 0
    window = lower[begin: begin + PURCHASES_WINDOW_CHARS]

    # (score, value, scale)
    candidates: list[tuple[int, Decimal, int]] = []
    for pm in _PURCHASES_RE.finditer(window):
        ctx = window[pm.start(): pm.end() + PURCHASES_CONTEXT_CHARS]
        if (
            _contains_any(ctx, _PURCHASE_REWARD_WORDS)
            or _contains_any(ctx, _FX_WORDS)
            or _contains_any(ctx, _FEE_WORDS)
            or "no interest" in ctx
        ):
            continue
        m = _APR_BARE_RE.search(ctx)
        if m is None:
            continue
        token = m.group(1)
        value = _to_decimal(token)
        if value is None:
            continue
        scale = len(token.split(".", 1)[1]) if "." in token else 0
        if value > 1:
            value = value / 100
        score = -2 if ("prior" in ctx or "previous" in ctx) else 3
        logger.debug("Purchases APR candidate %s score=%d", value, score)
        candidates.append((score, value, scale))

    if not candidates:
        return None
    best = max(candidates, key=lambda c: (c[0], -c[1]))
    return best[1], best[2]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _contains_any(text: str, words: Iterable[str]) -> bool:
    return any(w in text for w in words)


def _to_decimal(text: str | None) -> Decimal | None:
    if text is None:
        return None
    try:
        value = Decimal(text.strip())
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def _global_apr(rows: list[list[str]], doc: str) -> tuple[Decimal, int] | None:
    """Document-level APR: the purchases table, then the most frequent row APR, then the whole text."""
    found = extract_purchases_apr(doc)
    if found is not None:
        return found

    counts: dict[str, list] = {}
    for row in rows:
        hit = extract_apr_candidate(" ".join(row))
        if hit is None:
            continue
        key = f"{hit[0]:.4f}"
        if key in counts:
            counts[key][2] += 1
        else:
            counts[key] = [hit[0], hit[1], 1]
    if counts:
        value, scale, _count = max(counts.values(), key=lambda e: (e[2], -e[0]))
        return value, scale

    return extract_apr_candidate(" ".join(c for row in rows for c in row))


def _summary_label(raw: str | None) -> str | None:
    if raw is None:
        return None
    s = raw.strip().lower()
    if not s:
        return None
    if "checking" in s:
        return "checking"
    if "savings" in s:
        return "savings"
    if _contains_any(s, ("brokerage", "investment", "ira", "roth", "401k", "stock", "options", "portfolio")):
        return "brokerage"
    return None


def _is_all_caps_header(text: str) -> bool:
    if len(text.split()) < 2:
        return False
    letters = [c for c in text if c.isalpha()]
    if not letters:
        return False
    return sum(1 for c in letters if c.isupper()) / len(letters) >= 0.9


def _account_context(text: str | None) -> str | None:
    if text is None or not text.strip():
        return None
    lower = text.lower()
    if "checking" in lower:
        return "checking"
    if "savings" in lower or "money market" in lower:
        return "savings"
    if "credit card" in lower or "card ending" in lower:
        return "creditcard"
    if _contains_any(lower, ("brokerage", "investment", "ira", "roth", "401k", "portfolio")):
        return "brokerage"
    if _contains_any(lower, ("loan", "mortgage", "home equity")):
        return "loan"
    return None


def _update_context(current: str | None, desc: str | None, account: str | None) -> str | None:
    from_account = _account_context(account)
    if from_account is not None:
        return from_account
    if not desc:
        return current
    if _is_all_caps_header(desc) or "summary" in desc.lower():
        return _account_context(desc) or current
    return current


def _currency_values(line: str) -> list[Decimal]:
    values: list[Decimal] = []
    for m in _CURRENCY_VALUE_RE.finditer(line):
        token = m.group(0).strip()
        negative = False
        if token.startswith("(") and token.endswith(")"):
            negative = True
            token = token[1:-1]
        token = token.lstrip("(").rstrip(")")
        token = token.replace("$", "").replace(",", "").replace(" ", "")
        if token.endswith("-"):
            negative = True
            token = token[:-1]
        if token.startswith("-"):
            negative = True
            token = token[1:]
        value = _to_decimal(token)
        if value is not None:
            values.append(-value if negative else value)
    return values


def _last_amount(line: str) -> Decimal | None:
    for token in reversed(line.split()):
        value = _to_decimal(token.replace(",", "").replace("$", ""))
        if value is not None:
            return value
    return None


def _balance_summary_blocks(
    rows: list[list[str]], start: date | None, end: date | None
) -> list[StagedBalance]:
    """Read product lines out of single-cell "balance summary" text blocks.

    A line with two or more values yields a beginning balance at *start*
    and an ending balance at *end*; a line with one value yields a single
    balance at *end*.
    """
    balances: list[StagedBalance] = []
    blocks = [
        row[0].strip()
        for row in rows
        if len(row) == 1 and "balance" in row[0].lower() and "summary" in row[0].lower()
    ]
    for block in blocks:
        for raw in block.replace("\r", "\n").split("\n"):
            line = raw.strip()
            lower = line.lower()
            if not line or any(k in lower for k in ("summary", "assets", "account")) or lower.startswith("total"):
                continue
            label = _summary_label(line)
            values = _currency_values(line)
            if len(values) >= 2:
                if start is not None:
                    balances.append(
                        StagedBalance(as_of_date=start, balance=values[0], source_account_label=label)
                    )
                end_date = end or start
                if end_date is not None:
                    balances.append(
                        StagedBalance(as_of_date=end_date, balance=values[-1], source_account_label=label)
                    )
                continue
            amount = _last_amount(line)
            if amount is not None:
                balances.append(
                    StagedBalance(
                        as_of_date=end or start or date.today(),
                        balance=amount,
                        source_account_label=label,
                    )
                )
    return balances
