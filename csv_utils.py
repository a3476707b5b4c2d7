import csv
import re
from datetime import datetime, time
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Iterator, Mapping, Sequence

from models import Transaction, TransactionType
from schemas import CSVRow


CSV_COLUMNS = ("Date", "Type", "Category", "Amount", "Description")
EXPORT_DATE_FORMAT = "%b %d, %Y"
UNKNOWN_CATEGORY = "Unknown"


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> datetime:
    value = value.strip()
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        pass
    else:
        if len(value) == 10:
            return datetime.combine(parsed.date(), time(12, 0))
        return parsed
    for fmt in ("%d.%m.%Y", EXPORT_DATE_FORMAT, "%m/%d/%Y"):
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return datetime.combine(parsed.date(), time(12, 0))
    raise ValueError(f"Invalid date '{value}'")


def parse_amount(value: str) -> float:
    clean = value.strip()
    for token in ("Rs.", "Rs", "PKR", "$", "€", " "):
        clean = clean.replace(token, "")
    clean = clean.replace(",", "")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount <= 0:
        raise ValueError("Amount must be positive")
    return float(amount)


def _normalise_headers(raw: Mapping[str, str]) -> dict[str, str]:
    return {(key or "").strip().lower(): (val or "") for key, val in raw.items()}


def iter_csv_rows(content: str) -> Iterator[tuple[int, dict[str, str]]]:
    reader = csv.DictReader(StringIO(content.lstrip("\ufeff")))
    headers = {(name or "").strip().lower() for name in (reader.fieldnames or [])}
    missing = [col for col in CSV_COLUMNS if col.lower() not in headers]
    if missing:
        raise ValueError(
            "The file format is invalid; missing columns: " + ", ".join(missing)
        )
    for idx, raw in enumerate(reader, start=1):
        yield idx, _normalise_headers(raw)


def parse_row(raw: Mapping[str, str]) -> CSVRow:
    type_raw = (raw.get("type") or "").strip().lower()
    try:
        type_value = TransactionType(type_raw)
    except ValueError as exc:
        raise ValueError(f"Invalid type '{type_raw}'") from exc
    category = (raw.get("category") or "").strip()
    if not category:
        raise ValueError("Category is required")
    description = (raw.get("description") or "").strip()
    return CSVRow(
        date=parse_date(raw.get("date") or ""),
        type=type_value,
        amount=parse_amount(raw.get("amount") or "0"),
        category=category,
        description=description if description and description != "-" else "",
    )


def export_transactions(
    transactions: Sequence[Transaction], category_names: Mapping[int, str]
) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    for txn in transactions:
        writer.writerow(
            [
                txn.date.strftime(EXPORT_DATE_FORMAT),
                txn.type.value,
                sanitize_csv_value(
                    category_names.get(txn.category_id, UNKNOWN_CATEGORY)
                ),
                f"{txn.amount:.2f}",
                sanitize_csv_value(txn.description),
            ]
        )
    return output.getvalue()
