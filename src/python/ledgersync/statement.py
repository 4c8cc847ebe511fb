"""Parse delimited credit-card statement text into import lines."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
import csv
import datetime as dt
import io
import logging
import re
import unicodedata

from ledgersync.models import ImportLine

logger = logging.getLogger(__name__)

DELIMITER_CANDIDATES = (";", ",", "\t")

DEFAULT_COLUMN_MAP = {
    "date": 0,
    "description": 1,
    "amount": 2,
    "installment_index": 3,
    "installment_total": 4,
    "note": 5,
    "card_last_digits": 6,
}

# Header spellings seen in exported statements, compared after normalize_header.
HEADER_ALIASES = {
    "date": ["DATA", "DATE", "DATA_COMPRA", "DATA_DE_COMPRA", "DT_COMPRA", "DATA_LANCAMENTO"],
    "description": [
        "DESCRICAO", "DESCRIPTION", "HISTORICO", "ESTABELECIMENTO", "LANCAMENTO", "MERCHANT",
    ],
    "amount": [
        "VALOR", "AMOUNT", "TOTAL", "VALOR_COMPRA", "VALOR_EM_R", "VALOR_R", "VALOR_EM_REAIS",
    ],
    "installment_index": [
        "PARCELA_NUMERO", "PARCELA_N", "NUMERO_PARCELA", "N_PARCELA", "PARCELA", "INSTALLMENT",
    ],
    "installment_total": ["PARCELA_TOTAL", "TOTAL_PARCELAS", "PARCELAS", "INSTALLMENTS"],
    "card_last_digits": [
        "FINAL_CARTAO", "FINAL_DO_CARTAO", "CARTAO_FINAL", "ULTIMOS_4", "ULTIMOS_DIGITOS",
        "CARD_LAST_DIGITS",
    ],
    "note": ["OBS", "OBSERVACAO", "COMPLEMENTO", "NOTA", "NOTE"],
}

SINGLE_INSTALLMENT_WORDS = {"UNICA", "UNICO"}

_NON_WORD = re.compile(r"[^A-Za-z0-9]+")
_FRACTION = re.compile(r"^(\d+)\s*/\s*(\d+)$")
_BR_DATE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def normalize_header(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NON_WORD.sub("_", stripped).strip("_").upper()


_KNOWN_HEADERS = {
    normalize_header(alias) for aliases in HEADER_ALIASES.values() for alias in aliases
}


def parse_money(value: str) -> Decimal | None:
    """Parse ``1.234,56``, ``1,234.56``, ``R$ 10,00`` and plain numbers."""
    text = re.sub(r"[R$\s]", "", value or "")
    if not text:
        return None
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    text = text.replace(",", ".", 1)
    text = re.sub(r"[^0-9.\-]", "", text)
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def parse_date(value: str) -> dt.date | None:
    """Accept ``YYYY-MM-DD`` or ``DD/MM/YYYY``."""
    text = (value or "").strip()
    try:
        if _ISO_DATE.match(text):
            return dt.date.fromisoformat(text)
        match = _BR_DATE.match(text)
        if match:
            day, month, year = (int(part) for part in match.groups())
            return dt.date(year, month, day)
    except ValueError:
        return None
    return None


def parse_installment(value: str) -> tuple[int | None, int | None]:
    """Return ``(index, total)`` from ``n/t``, a bare ``n`` or a single-payment word."""
    text = (value or "").strip()
    if not text or normalize_header(text) in SINGLE_INSTALLMENT_WORDS:
        return None, None
    fraction = _FRACTION.match(text)
    if fraction:
        index, total = int(fraction.group(1)), int(fraction.group(2))
        if index > 0 and total > 0:
            return index, total
        return None, None
    if text.isdigit() and int(text) > 0:
        return int(text), None
    return None, None


def _count_outside_quotes(line: str, delimiter: str) -> int:
    in_quotes = False
    count = 0
    index = 0
    while index < len(line):
        char = line[index]
        if char == '"':
            if in_quotes and line[index + 1:index + 2] == '"':
                index += 1
            else:
                in_quotes = not in_quotes
        elif not in_quotes and char == delimiter:
            count += 1
        index += 1
    return count


def detect_delimiter(text: str) -> str:
    """Pick the candidate delimiter occurring most often in the first non-blank line."""
    first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
    if not first_line:
        return DELIMITER_CANDIDATES[0]
    best = DELIMITER_CANDIDATES[0]
    best_count = -1
    for candidate in DELIMITER_CANDIDATES:
        count = _count_outside_quotes(first_line, candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def read_rows(text: str, delimiter: str | None = None) -> list[list[str]]:
    delimiter = delimiter or detect_delimiter(text)
    reader = csv.reader(io.StringIO(text), delimiter=delimiter, quotechar='"')
    rows = []
    for row in reader:
        cells = [cell.strip() for cell in row]
        if any(cells):
            rows.append(cells)
    return rows


def looks_like_header(row: list[str]) -> bool:
    if not row or parse_date(row[0]) is not None:
        return False
    return any(normalize_header(cell) in _KNOWN_HEADERS for cell in row)


def column_map_from_header(row: list[str]) -> dict[str, int]:
    normalized = [normalize_header(cell) for cell in row]
    column_map = {
        **DEFAULT_COLUMN_MAP,
        "installment_index": -1,
        "installment_total": -1,
        "note": -1,
        "card_last_digits": -1,
    }
    for key, aliases in HEADER_ALIASES.items():
        wanted = {normalize_header(alias) for alias in aliases}
        for position, cell in enumerate(normalized):
            if cell in wanted:
                column_map[key] = position
                break
    return column_map


def _cell(row: list[str], position: int) -> str:
    if position < 0 or position >= len(row):
        return ""
    return row[position].strip()


def parse_rows(rows: list[list[str]]) -> list[ImportLine]:
    """Turn raw rows into import lines, skipping rows that are not purchases."""
    if not rows:
        return []
    has_header = looks_like_header(rows[0])
    column_map = column_map_from_header(rows[0]) if has_header else DEFAULT_COLUMN_MAP
    data_rows = rows[1:] if has_header else rows

    lines: list[ImportLine] = []
    skipped = 0
    for row in data_rows:
        date = parse_date(_cell(row, column_map["date"]))
        description = _cell(row, column_map["description"])
        amount = parse_money(_cell(row, column_map["amount"]))
        if date is None or not description or amount is None or amount <= 0:
            skipped += 1
            continue

        installment_index, installment_total = parse_installment(
            _cell(row, column_map["installment_index"])
        )
        other_index, other_total = parse_installment(_cell(row, column_map["installment_total"]))
        # a bare number in the total column is the total; "n/t" there fills both
        if other_total is None:
            other_index, other_total = None, other_index
        if installment_index is None:
            installment_index = other_index
        if installment_total is None:
            installment_total = other_total
        lines.append(
            ImportLine(
                date=date,
                description=description,
                amount=amount,
                installment_index=installment_index,
                installment_total=installment_total,
                card_last_digits=_cell(row, column_map["card_last_digits"]),
                note=_cell(row, column_map["note"]),
            )
        )
    if skipped:
        logger.debug("Skipped %d statement rows without a valid date, description or amount", skipped)
    return lines


def parse_statement(text: str, delimiter: str | None = None) -> list[ImportLine]:
    """Parse statement text (CSV, semicolon or tab separated)."""
    return parse_rows(read_rows(text, delimiter))
