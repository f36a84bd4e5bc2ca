import csv
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO
from typing import Iterable, Optional

from models import QUANTITY_SCALE


TRUTHY = {"1", "true", "yes", "y", "on"}
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d-%m-%Y", "%d.%m.%Y")
# Largest cents, micros or bps value a single cell may carry.
MAX_SCALED_VALUE = 10**15

_HEADER_NOISE = re.compile(r"[\s\-_/()%]+")
_THOUSANDS_COMMA = re.compile(r"^-?\d{1,3}(,\d{3})+$")


@dataclass
class ImportRowError:
    row: int
    error: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass
class ImportResult:
    imported_count: int = 0
    skipped_count: int = 0
    errors: list[ImportRowError] = field(default_factory=list)
    id_mapping: dict[str, int] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.imported_count > 0

    def add_error(self, row: int, error: str, data: Optional[dict] = None) -> None:
        self.errors.append(ImportRowError(row=row, error=error, data=data or {}))

    def as_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "imported_count": self.imported_count,
            "skipped_count": self.skipped_count,
            "errors": [
                {"row": err.row, "error": err.error, "data": err.data}
                for err in self.errors
            ],
            "id_mapping": self.id_mapping,
        }


@dataclass
class ParsedCSV:
    headers: list[str]
    rows: list[tuple[int, dict[str, str]]]
    skipped: int


def normalize_header(name: str) -> str:
    return _HEADER_NOISE.sub("", (name or "").strip().lower())


def read_csv(content: str) -> ParsedCSV:
    """Split CSV text into normalized headers and numbered data rows.

    Rows are numbered by CSV record, header included, so the first data
    row directly under the header is row 2. Blank rows are skipped and
    counted.
    """
    content = content.lstrip("\ufeff")
    reader = csv.reader(StringIO(content))
    headers: list[str] = []
    rows: list[tuple[int, dict[str, str]]] = []
    skipped = 0
    for idx, record in enumerate(reader, start=1):
        if not any(cell.strip() for cell in record):
            if headers:
                skipped += 1
            continue
        if not headers:
            headers = [normalize_header(cell) for cell in record]
            continue
        values = {
            headers[pos]: cell.strip()
            for pos, cell in enumerate(record)
            if pos < len(headers) and headers[pos]
        }
        rows.append((idx, values))
    if not headers:
        raise ValueError("CSV file is empty")
    return ParsedCSV(headers=headers, rows=rows, skipped=skipped)


def pick(row: dict[str, str], *aliases: str) -> str:
    for alias in aliases:
        value = row.get(alias)
        if value:
            return value
    return ""


def missing_columns(
    headers: Iterable[str], required: dict[str, tuple[str, ...]]
) -> list[str]:
    present = set(headers)
    return [
        label
        for label, aliases in required.items()
        if not any(alias in present for alias in aliases)
    ]


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValueError(f"Invalid date '{value}'") from exc


def _parse_decimal(value: str) -> Decimal:
    clean = value.strip()
    for symbol in ("€", "$", "£", "₹", " ", "\u00a0"):
        clean = clean.replace(symbol, "")
    if _THOUSANDS_COMMA.match(clean):
        clean = clean.replace(",", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        number = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid number '{value}'") from exc
    if not number.is_finite():
        raise ValueError(f"Invalid number '{value}'")
    return number


def _scaled(number: Decimal, scale: int, raw: str) -> int:
    try:
        scaled = int((number * scale).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError(f"Number '{raw}' is too large") from exc
    if abs(scaled) > MAX_SCALED_VALUE:
        raise ValueError(f"Number '{raw}' is too large")
    return scaled


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    cents = _scaled(_parse_decimal(value), 100, value)
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def parse_quantity(value: str) -> int:
    quantity = _parse_decimal(value)
    if quantity < 0:
        raise ValueError("Quantity must be positive")
    return _scaled(quantity, QUANTITY_SCALE, value)


def parse_rate_bps(value: str) -> int:
    rate = _parse_decimal(value.replace("%", ""))
    if rate < 0:
        raise ValueError("Interest rate must be positive")
    return _scaled(rate, 100, value)


def parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUTHY


def split_tags(value: str) -> list[str]:
    tags: list[str] = []
    seen: set[str] = set()
    for part in re.split(r"[;,]", value or ""):
        name = part.strip()
        if name and name.lower() not in seen:
            seen.add(name.lower())
            tags.append(name)
    return tags
