"""PDF statement text extraction.

Turns the text layer of a statement PDF into the five-column row shape
``date, description, amount, balance, account`` consumed by the PDF parsers.

Page text comes from ``pdfplumber``.  Everything after that works on plain
strings, so the line heuristics can be exercised directly with page text.
There is no OCR: scanned statements without a text layer yield no rows.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from pathlib import Path

import pdfplumber

from statement_importer.errors import FormatUnrecognized

logger = logging.getLogger(__name__)

MODE_SUMMARY = "summary"
MODE_TRANSACTIONS = "transactions"

PAGE_BREAK = "<<<PAGE_BREAK>>>"
PDF_HEADERS = ["date", "description", "amount", "balance", "account"]

BEGINNING_BALANCE_DESC = "Statement Beginning Balance"
ENDING_BALANCE_DESC = "Statement Ending Balance"

_MONTH_NAMES = (
    "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec|January|February|March|"
    "April|May|June|July|August|September|October|November|December"
)
DATE_TOKEN = (
    r"(?:\d{1,2}/\d{1,2}(?:/\d{2,4})?|(?:" + _MONTH_NAMES + r")\s+\d{1,2}(?:,?\s*\d{2,4})?)"
)
MONEY_TOKEN = (
    r"\(?-?\s?\$?\d{1,3}(?:,\d{3})*(?:\.\d{2})?-?\)?(?:\s*(?:CR|DR|CREDIT|DEBIT))?"
)

_DATE_START_RE = re.compile(r"^" + DATE_TOKEN)
_ANY_DATE_RE = re.compile(DATE_TOKEN, re.IGNORECASE)
_ROW_RE = re.compile(
    r"^(" + DATE_TOKEN + r")(?:\s+(" + DATE_TOKEN + r"))?\s+(.*?)\s+("
    + MONEY_TOKEN + r")(?:\s+(" + MONEY_TOKEN + r"))?$",
    re.IGNORECASE,
)
_AMOUNT_ONLY_RE = re.compile(r"^" + MONEY_TOKEN + r"$", re.IGNORECASE)
_AMOUNT_ANYWHERE_RE = re.compile(MONEY_TOKEN, re.IGNORECASE)
_DATE_AND_DESC_RE = re.compile(
    r"^(" + DATE_TOKEN + r")(?:\s+" + DATE_TOKEN + r")?\s+(.*)$", re.IGNORECASE
)
_DATE_RANGE_RE = re.compile(
    r"^\s*(" + DATE_TOKEN + r")(?:\s*(?:through|to|–|—|-)\s*)(" + DATE_TOKEN + r")\s*$",
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r"\b(20\d{2}|19\d{2})\b")
_NUMERIC_NO_YEAR_RE = re.compile(r"^\d{1,2}/\d{1,2}$")
_MONTH_NO_YEAR_RE = re.compile(r"^(?:" + _MONTH_NAMES + r")\s+\d{1,2},?$", re.IGNORECASE)

_MONTH_NUMBERS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11,
    "december": 12, "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7,
    "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

_NORMALIZE_FORMATS = (
    "%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d", "%Y/%m/%d",
    "%d-%b-%Y", "%d-%b-%y", "%d %b %Y", "%d %b %y",
    "%b %d, %Y", "%B %d, %Y", "%b %d, %y", "%B %d, %y",
    "%b %d %Y", "%B %d %Y",
)

_SIGN_MARKERS = ("CREDIT", "DEBIT", "CR", "DR")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def read_pdf_pages(path: Path) -> list[str]:
    """Return the text of each page of the PDF at *path*.

    Pages without a text layer contribute an empty string.

    Raises:
        FormatUnrecognized: If the file cannot be opened as a PDF.
    """
    try:
        with pdfplumber.open(path) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:  # pdfplumber raises several pdfminer exception types
        raise FormatUnrecognized(f"Could not read PDF {path.name}: {exc}") from exc
    logger.debug("PDF pages: %d", len(pages))
    return pages


def statement_lines(pages: list[str]) -> list[str]:
    """Join *pages* into trimmed non-empty lines with page-break markers between pages."""
    text = ""
    for i, page in enumerate(pages):
        text += page + "\n"
        if i < len(pages) - 1:
            text += PAGE_BREAK + "\n"
    return [ln.strip() for ln in text.splitlines() if ln.strip()]


def full_text(pages: list[str]) -> str:
    """Return all page text joined with newlines."""
    return "\n".join(pages)


def extract_statement_rows(
    pages: list[str], mode: str = MODE_SUMMARY
) -> tuple[list[list[str]], list[str]]:
    """Extract statement rows from page text.

    Every row has five string cells: a ``MM/dd/yyyy`` date (or the raw
    token when it cannot be normalized), a description of at most 120
    characters, a sanitized amount, a sanitized balance or ``""``, and an
    account label (``checking``, ``savings`` or ``unknown``).

    When the text carries "beginning balance" / "ending balance" labels,
    synthetic ``Statement Beginning Balance`` and ``Statement Ending
    Balance`` rows are appended.  In summary mode only those rows are kept
    when present, and every other row loses its balance cell.

    Args:
        pages: Per-page text.
        mode: ``"summary"`` or ``"transactions"``.

    Returns:
        ``(rows, headers)`` where headers are :data:`PDF_HEADERS`.

    Raises:
        FormatUnrecognized: When no row could be extracted.
    """
    lines = statement_lines(pages)
    logger.debug("PDF extracted lines: %d", len(lines))

    scanner = _StatementScanner(lines)
    rows = scanner.scan()
    if not rows:
        logger.debug("PDF primary pass found 0 rows, running permissive fallback")
        rows = scanner.permissive_scan()

    did_append_summary = _append_summary_rows(lines, rows)

    if mode == MODE_SUMMARY:
        if did_append_summary:
            rows = [r for r in rows if _is_statement_balance_row(r)]
        for row in rows:
            if row[3].strip() and not _is_statement_balance_row(row):
                row[3] = ""

    logger.debug("PDF matched rows: %d", len(rows))
    if not rows:
        raise FormatUnrecognized()
    return rows, list(PDF_HEADERS)


def sanitize_pdf_amount(text: str) -> str:
    """Normalize a money token to a plain signed decimal string.

    Parentheses, a leading or trailing minus, and ``DR``/``DEBIT`` markers
    mean negative.  ``CR``/``CREDIT`` markers win over any negative hint.
    ``$``, ``,`` and spaces are removed.
    """
    raw = text.strip()
    upper = raw.upper()
    negative = False
    positive = False

    if raw.startswith("(") and raw.endswith(")"):
        negative = True
        raw = raw[1:-1]
    if raw.endswith("-"):
        negative = True
        raw = raw[:-1]
    if raw.startswith("-"):
        negative = True
        raw = raw[1:]

    if "DR" in upper or "DEBIT" in upper:
        negative = True
    if "CR" in upper or "CREDIT" in upper:
        positive = True

    cleaned = raw.replace("$", "").replace(",", "").replace(" ", "")
    for marker in _SIGN_MARKERS:
        cleaned = re.sub(marker, "", cleaned, flags=re.IGNORECASE)
    cleaned = cleaned.strip()

    if negative and not positive and not cleaned.startswith("-"):
        cleaned = "-" + cleaned
    return cleaned


def is_date_start(line: str) -> bool:
    """Return True when *line* begins with a date token."""
    return _DATE_START_RE.match(line) is not None


def money_tokens(text: str) -> list[str]:
    """Return every money token in *text*, left to right."""
    return [m.group(0) for m in _AMOUNT_ANYWHERE_RE.finditer(text)]


def is_amount_only(line: str) -> bool:
    return _AMOUNT_ONLY_RE.match(line) is not None


def parse_normalized_date(text: str) -> date | None:
    """Parse a ``MM/dd/yyyy`` cell produced by the extractor."""
    try:
        return datetime.strptime(text.strip(), "%m/%d/%Y").date()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _is_statement_balance_row(row: list[str]) -> bool:
    if len(row) < 2:
        return False
    desc = row[1].lower()
    return "statement beginning balance" in desc or "statement ending balance" in desc


def _month_number(token: str) -> int | None:
    lower = token.lower()
    for name, number in _MONTH_NUMBERS.items():
        if lower.startswith(name):
            return number
    parts = token.split("/")
    try:
        return max(1, min(12, int(parts[0])))
    except ValueError:
        return None


def _month_year(token: str) -> tuple[int | None, int | None]:
    trimmed = token.strip().replace(",", "")
    month = _month_number(trimmed)
    if month is None:
        return None, None
    m = _YEAR_RE.search(trimmed)
    if m:
        return month, int(m.group(1))
    parts = trimmed.split("/")
    if len(parts) >= 3 and parts[2].isdigit():
        yy = int(parts[2])
        return month, 2000 + yy if yy < 100 else yy
    return month, None


def _detect_inferred_year(lines: list[str]) -> int | None:
    for line in lines:
        m = _YEAR_RE.search(line)
        if m:
            return int(m.group(1))
    return None


def _detect_statement_period(
    lines: list[str], inferred_year: int | None
) -> tuple[int, int, int, int] | None:
    """Return ``(start_month, start_year, end_month, end_year)`` of the first date-range line."""
    fallback_year = inferred_year or date.today().year
    for line in lines:
        m = _DATE_RANGE_RE.match(line)
        if not m:
            continue
        a_month, a_year = _month_year(m.group(1))
        b_month, b_year = _month_year(m.group(2))
        if a_month is not None and b_month is not None:
            period = (a_month, a_year or fallback_year, b_month, b_year or fallback_year)
            logger.debug("PDF statement period: %s -> %s => %s", m.group(1), m.group(2), period)
            return period
    return None


def _clean_desc(text: str) -> str:
    return " ".join(text.split())[:120]


def _has_digits(text: str) -> bool:
    return any(c.isdigit() for c in text)


def _has_lowercase(text: str) -> bool:
    return any(c.islower() for c in text)


def _is_incidental_mention(lower: str) -> bool:
    return (
        "from a checking" in lower
        or "from checking" in lower
        or "transfer" in lower
        or "automatic" in lower
    )


def is_savings_header(line: str) -> bool:
    """Return True when *line* looks like a savings section header."""
    raw = line.strip()
    lower = raw.lower()
    if _is_incidental_mention(lower):
        return False
    if "savings summary" in lower or lower.startswith("chase savings") or "savings account" in lower:
        return True
    return (
        "savings" in lower
        and "checking" not in lower
        and not _has_digits(raw)
        and (not _has_lowercase(raw) or len(raw) <= 24)
    )


def is_checking_header(line: str) -> bool:
    """Return True when *line* looks like a checking section header."""
    raw = line.strip()
    lower = raw.lower()
    if _is_incidental_mention(lower):
        return False
    if "checking summary" in lower or lower.startswith("chase checking"):
        return True
    if "checking account" in lower:
        return True
    return (
        "checking" in lower
        and "savings" not in lower
        and not _has_digits(raw)
        and (not _has_lowercase(raw) or len(raw) <= 24)
    )


def _is_deposits_header(line: str) -> bool:
    lower = line.lower()
    return "deposits" in lower or "additions" in lower or "credits" in lower


def _is_withdrawals_header(line: str) -> bool:
    lower = line.lower()
    return "withdrawals" in lower or "checks" in lower or "fees" in lower or "debits" in lower


def _is_account_meta_line(line: str) -> bool:
    lower = line.lower()
    return (
        "account number" in lower
        or "account ending" in lower
        or "primary account" in lower
    )


def _is_statement_period_line(line: str) -> bool:
    lower = line.lower()
    if _AMOUNT_ANYWHERE_RE.search(line):
        return False
    if "statement period" in lower or "statement from" in lower:
        return True
    if "through" in lower:
        count = len(_ANY_DATE_RE.findall(line))
        return count >= 2 if is_date_start(line) else count >= 1
    return False


def _is_through_continuation(line: str) -> bool:
    if "$" in line:
        return False
    return line.strip().lower().startswith("through ")


def _is_totals_or_section_line(line: str) -> bool:
    lower = line.strip().lower()
    if lower.startswith("total "):
        return True
    if any(
        k in lower
        for k in (
            "total deposits",
            "total withdrawals",
            "total electronic withdrawals",
            "total checks",
            "total fees",
        )
    ):
        return True
    return _is_deposits_header(line) or _is_withdrawals_header(line)


def _normalize_date(token: str, inferred_year: int | None, period) -> str:
    trimmed = token.strip()

    def pick_year(month: int) -> int | None:
        if period is not None:
            start_month, start_year, _end_month, end_year = period
            if start_year == end_year:
                return start_year
            return start_year if month >= start_month else end_year
        return inferred_year

    if _NUMERIC_NO_YEAR_RE.match(trimmed):
        year = pick_year(int(trimmed.split("/")[0]))
        if year is not None:
            trimmed = f"{trimmed}/{year}"
    elif _MONTH_NO_YEAR_RE.match(trimmed):
        month = _month_number(trimmed)
        year = pick_year(month) if month is not None else None
        if year is not None:
            trimmed = f"{trimmed.replace(',', '')}, {year}"

    for fmt in _NORMALIZE_FORMATS:
        try:
            return datetime.strptime(trimmed, fmt).strftime("%m/%d/%Y")
        except ValueError:
            continue
    return trimmed


class _StatementScanner:
    """Stateful line scanner tracking account and deposit/withdrawal context."""

    def __init__(self, lines: list[str]) -> None:
        self.lines = lines
        self.inferred_year = _detect_inferred_year(lines)
        self.period = _detect_statement_period(lines, self.inferred_year)
        self.account = "unknown"
        self.flow = "none"
        self.context: list[str] = []
        self.page_index = 0
        self.page_defaults: dict[int, str] = {}
        page = 0
        for line in lines:
            if line == PAGE_BREAK:
                page += 1
                continue
            if page not in self.page_defaults:
                if is_savings_header(line):
                    self.page_defaults[page] = "savings"
                elif is_checking_header(line):
                    self.page_defaults[page] = "checking"

    # -- state -------------------------------------------------------------

    def account_label(self) -> str:
        if self.account != "unknown":
            return self.account
        return self.page_defaults.get(self.page_index, "unknown")

    def push_context(self, line: str) -> None:
        lower = line.strip().lower()
        if not lower:
            return
        self.context.append(lower)
        del self.context[:-12]

    def context_savings(self) -> bool:
        return any("savings" in c for c in self.context) and not any(
            "checking" in c for c in self.context
        )

    def context_checking(self) -> bool:
        for line in self.context:
            if _is_incidental_mention(line):
                continue
            if "checking summary" in line or line.startswith("chase checking"):
                return True
            if (
                "checking" in line
                and "savings" not in line
                and not _has_digits(line)
                and len(line) <= 24
            ):
                return True
        return False

    def section_sign(self, amount: str) -> str:
        if self.flow == "withdrawal" and not amount.startswith("-"):
            return "-" + amount
        if self.flow == "deposit" and amount.startswith("-"):
            return amount[1:]
        return amount

    def normalize_date(self, token: str) -> str:
        return _normalize_date(token, self.inferred_year, self.period)

    def note_description(self, desc: str) -> None:
        if is_savings_header(desc):
            self.account = "savings"

    def observe(self, line: str, index: int) -> None:
        """Update section state from a line that does not start with a date."""
        if line == PAGE_BREAK:
            logger.debug("PDF page break, resetting section/account state")
            self.account = "unknown"
            self.flow = "none"
            self.context.clear()
            self.page_index += 1
            return
        self.push_context(line)
        if is_savings_header(line):
            self.account = "savings"
        elif is_checking_header(line):
            self.account = "checking"
        if _is_account_meta_line(line):
            lower = line.lower()
            if "savings" in lower:
                self.account = "savings"
            elif "checking" in lower:
                self.account = "checking"
        if _is_deposits_header(line):
            self.flow = "deposit"
        elif _is_withdrawals_header(line):
            self.flow = "withdrawal"
        logger.debug("PDF line %d: account=%s flow=%s", index, self.account, self.flow)

    # -- passes ------------------------------------------------------------

    def scan(self) -> list[list[str]]:
        lines = self.lines
        rows: list[list[str]] = []
        i = 0
        while i < len(lines):
            line = lines[i]
            if not is_date_start(line):
                self.observe(line, i)
                i += 1
                continue

            if _DATE_RANGE_RE.match(line) or _is_statement_period_line(line) or _is_account_meta_line(line):
                i += 1
                continue

            if self.account == "unknown":
                if self.context_savings():
                    self.account = "savings"
                elif self.context_checking():
                    self.account = "checking"

            multi = self.multi_line_row(i)
            if multi is not None:
                row, consumed = multi
                row[2] = self.section_sign(row[2])
                row.append(self.account_label())
                rows.append(row)
                i += consumed
                continue

            m = _ROW_RE.match(line)
            if m:
                token = m.group(2) if m.group(2) and m.group(2).strip() else m.group(1)
                desc = _clean_desc(m.group(3))
                self.note_description(desc)
                amount = self.section_sign(sanitize_pdf_amount(m.group(4)))
                balance = sanitize_pdf_amount(m.group(5)) if m.group(5) else ""
                rows.append([self.normalize_date(token), desc, amount, balance, self.account_label()])
                i += 1
                continue

            if i + 1 < len(lines) and is_amount_only(lines[i + 1]):
                dd = _DATE_AND_DESC_RE.match(line)
                if dd:
                    desc = _clean_desc(dd.group(2))
                    self.note_description(desc)
                    amount = self.section_sign(sanitize_pdf_amount(lines[i + 1]))
                    rows.append(
                        [self.normalize_date(dd.group(1)), desc, amount, "", self.account_label()]
                    )
                    i += 2
                    continue

            i += 1
        return rows

    def multi_line_row(self, start: int) -> tuple[list[str], int] | None:
        """Rebuild a row whose description and amount span several lines."""
        lines = self.lines
        dd = _DATE_AND_DESC_RE.match(lines[start])
        if dd is None:
            return None
        date_raw = dd.group(1).strip()
        parts: list[str] = []
        rest = dd.group(2).strip()
        if rest:
            parts.append(rest)

        amount: str | None = None
        j = start + 1
        while j < len(lines):
            ln = lines[j]
            if is_date_start(ln) or _is_totals_or_section_line(ln):
                break
            if _is_statement_period_line(ln) or _is_through_continuation(ln) or _is_account_meta_line(ln):
                break
            if is_amount_only(ln):
                amount = sanitize_pdf_amount(ln)
                j += 1
                break
            am = _AMOUNT_ANYWHERE_RE.search(ln)
            if am:
                before = ln[: am.start()]
                if not any(c.isalpha() for c in before) and "total" not in before.lower():
                    amount = sanitize_pdf_amount(am.group(0))
                    cont = _clean_desc(before)
                    if cont:
                        parts.append(cont)
                    j += 1
                break
            cont = _clean_desc(ln)
            if cont:
                parts.append(cont)
            j += 1

        if amount is None:
            return None
        desc = _clean_desc(" ".join(parts))
        self.note_description(desc)
        return [self.normalize_date(date_raw), desc, amount, ""], max(1, j - start)

    def permissive_scan(self) -> list[list[str]]:
        lines = self.lines
        rows: list[list[str]] = []
        k = 0
        while k < len(lines):
            ln = lines[k]
            if not is_date_start(ln):
                k += 1
                continue

            m = _ROW_RE.match(ln)
            if m:
                desc = _clean_desc(m.group(3))
                self.note_description(desc)
                amount = self.section_sign(sanitize_pdf_amount(m.group(4)))
                balance = sanitize_pdf_amount(m.group(5)) if m.group(5) else ""
                rows.append([self.normalize_date(m.group(1)), desc, amount, balance, self.account_label()])
                k += 1
                continue

            dd = _DATE_AND_DESC_RE.match(ln)
            if dd:
                date_text = self.normalize_date(dd.group(1))
                rest = dd.group(2)
                am = _AMOUNT_ANYWHERE_RE.search(ln)
                if am:
                    desc = _clean_desc(rest.replace(am.group(0), ""))
                    self.note_description(desc)
                    amount = self.section_sign(sanitize_pdf_amount(am.group(0)))
                    rows.append([date_text, desc, amount, "", self.account_label()])
                    k += 1
                    continue
                if k + 1 < len(lines) and is_amount_only(lines[k + 1]):
                    desc = _clean_desc(rest)
                    self.note_description(desc)
                    amount = self.section_sign(sanitize_pdf_amount(lines[k + 1]))
                    rows.append([date_text, desc, amount, "", self.account_label()])
                    k += 2
                    continue
            k += 1
        return rows


def _amount_near(lines: list[str], index: int, label: str) -> str | None:
    current = lines[index]
    pos = current.lower().find(label)
    if pos >= 0:
        tokens = money_tokens(current[pos + len(label):])
        if tokens:
            return sanitize_pdf_amount(tokens[-1])
    tokens = money_tokens(current)
    if tokens:
        return sanitize_pdf_amount(tokens[-1])
    if index + 1 < len(lines):
        nxt = lines[index + 1]
        if is_amount_only(nxt):
            return sanitize_pdf_amount(nxt)
        tokens = money_tokens(nxt)
        if tokens:
            return sanitize_pdf_amount(tokens[-1])
    return None


def _append_summary_rows(lines: list[str], rows: list[list[str]]) -> bool:
    """Append synthetic beginning/ending balance rows; return True if any were added."""
    dates = [d for d in (parse_normalized_date(r[0]) for r in rows if r) if d is not None]
    if not dates:
        return False
    earliest, latest = min(dates), max(dates)

    beginning: str | None = None
    ending: str | None = None
    for idx, line in enumerate(lines):
        lower = line.lower()
        if beginning is None and "beginning balance" in lower:
            beginning = _amount_near(lines, idx, "beginning balance")
        if ending is None and "ending balance" in lower:
            ending = _amount_near(lines, idx, "ending balance")
        if beginning is not None and ending is not None:
            break

    appended = False
    if beginning is not None:
        day = (earliest - timedelta(days=1)).strftime("%m/%d/%Y")
        rows.append([day, BEGINNING_BALANCE_DESC, "0", beginning, "unknown"])
        logger.debug("PDF summary: beginning balance %s @ %s", beginning, day)
        appended = True
    if ending is not None:
        day = latest.strftime("%m/%d/%Y")
        rows.append([day, ENDING_BALANCE_DESC, "0", ending, "unknown"])
        logger.debug("PDF summary: ending balance %s @ %s", ending, day)
        appended = True
    return appended


# ---------------------------------------------------------------------------
# Section extraction
# ---------------------------------------------------------------------------

_INTEREST_ANCHORS = (
    "interest charges",
    "interest charge calculation",
    "interest charge",
    "annual percentage rate",
)


def interest_charges_section(text: str, max_chars: int = 2500) -> str | None:
    """Return the "Interest Charges" section of a card statement, if any.

    The window starts at the earliest anchor and runs for at most
    *max_chars* characters, stopping early at the next all-caps header that
    is not itself about interest.  The window is only returned when it
    carries APR wording plus either "purchase" or a percent sign.
    """
    lower = text.lower()
    starts = [lower.find(a) for a in _INTEREST_ANCHORS if a in lower]
    if not starts:
        return None
    start = min(starts)
    window = text[start:start + max_chars]

    collected: list[str] = []
    for line in window.split("\n"):
        trimmed = line.strip()
        tl = trimmed.lower()
        if _is_caps_header(trimmed, 0.9) and not (
            "interest charge" in tl or "annual percentage rate" in tl or "apr" in tl
        ):
            window = "\n".join(collected)
            break
        collected.append(line)

    candidate = window.strip()
    cl = candidate.lower()
    has_apr = "annual percentage rate" in cl or "apr" in cl or "interest rate" in cl
    if has_apr and ("purchase" in cl or "%" in candidate):
        logger.debug("Interest charges section: %d chars", len(candidate))
        return candidate
    return None


def balance_summary_section(text: str, max_lines: int = 120) -> str | None:
    """Return a bank-agnostic "balance summary" block, if any.

    The block starts at the first line mentioning both "balance" and
    "summary" (an all-caps header, or any line of at most 64 characters)
    and runs until the next all-caps header without "balance", capped at
    *max_lines* lines.
    """
    lines = text.replace("\r", "\n").split("\n")
    start = None
    for i, raw in enumerate(lines):
        s = raw.strip()
        lower = s.lower()
        if "balance" in lower and "summary" in lower and (_is_caps_header(s, 0.85) or len(s) <= 64):
            start = i
            break
    if start is None:
        return None

    collected: list[str] = []
    for j in range(start, min(len(lines), start + max_lines)):
        s = lines[j]
        if j > start and _is_caps_header(s.strip(), 0.85) and "balance" not in s.lower():
            break
        collected.append(s)
    joined = "\n".join(collected).strip()
    return joined or None


def _is_caps_header(text: str, ratio: float) -> bool:
    if len(text.split()) < 2:
        return False
    letters = [c for c in text if c.isalpha()]
    if not letters:
        return False
    return sum(1 for c in letters if c.isupper()) / len(letters) >= ratio
