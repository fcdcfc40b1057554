"""
Row normalization for imported bank statement lines.

Turns loosely-typed raw rows (strings from a file, or already-typed values
from an upstream parser) into NormalizedRow records and computes the
de-duplication key.
"""

import hashlib
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Optional

from ..errors import ParseError, ValidationError

CURRENCY_PATTERN = re.compile(r"[€$£\s]|EUR|USD|GBP", re.IGNORECASE)
ISO_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
DAY_FIRST_PATTERN = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{2}|\d{4})$")
WHITESPACE_PATTERN = re.compile(r"\s+")

# Amounts at or above this are treated as malformed.
MAX_AMOUNT = Decimal("1e13")

FIELD_ALIASES = {
    "transaction_date": ("transaction_date", "date", "booking_date"),
    "value_date": ("value_date",),
    "amount": ("amount",),
    "description": ("description",),
    "balance": ("balance", "balance_after"),
    "reference": ("reference", "bank_reference"),
}
REQUIRED_FIELDS = ("transaction_date", "amount", "description")


@dataclass
class NormalizedRow:
    """A validated statement line, ready to be stored."""
    transaction_date: date
    amount_cents: int
    description: str
    value_date: Optional[date] = None
    balance_after_cents: Optional[int] = None
    bank_reference: Optional[str] = None

    @property
    def dedup_key(self) -> str:
        return compute_dedup_key(
            self.bank_reference,
            self.transaction_date,
            self.amount_cents,
            self.description,
        )


def compute_dedup_key(
    bank_reference: Optional[str],
    transaction_date: date,
    amount_cents: int,
    description: str,
) -> str:
    """
    Bank reference when present, otherwise a hash of date + amount + description.
    """
    if bank_reference:
        return f"ref:{bank_reference.strip().upper()}"

    hash_input = "|".join([
        transaction_date.isoformat(),
        str(amount_cents),
        WHITESPACE_PATTERN.sub(" ", description.strip().lower()),
    ])
    return "fp:" + hashlib.sha256(hash_input.encode("utf-8")).hexdigest()


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a statement date.

    Supports date/datetime objects, ISO YYYY-MM-DD (time or offset suffix
    ignored) and day-first D/M/YY, DD/MM/YYYY, DD-MM-YYYY, DD.MM.YYYY.
    Two-digit years below 50 are 20xx, the rest 19xx.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    try:
        iso = ISO_DATE_PATTERN.match(text)
        if iso:
            year, month, day = (int(p) for p in iso.groups())
            return date(year, month, day)

        day_first = DAY_FIRST_PATTERN.match(text)
        if day_first:
            day, month, year = (int(p) for p in day_first.groups())
            if year < 100:
                year = 2000 + year if year < 50 else 1900 + year
            return date(year, month, day)
    except ValueError:
        # Out-of-range day or month
        return None

    return None


def parse_amount_cents(value: Any) -> Optional[int]:
    """
    Parse an amount into integer cents.

    Strings may use Italian (-1.234,56) or international (-1,234.56)
    separators and carry a currency symbol. Rounds half-up to the cent.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, Decimal)):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        text = CURRENCY_PATTERN.sub("", str(value))
        if not text:
            return None

        if "," in text and "." in text:
            if text.rfind(",") > text.rfind("."):
                # 1.234,56
                text = text.replace(".", "").replace(",", ".")
            else:
                # 1,234.56
                text = text.replace(",", "")
        elif "," in text:
            parts = text.split(",")
            if len(parts) == 2 and len(parts[1]) != 3:
                # 1234,56 or 12,5
                text = text.replace(",", ".")
            else:
                # 1,234 or 1,234,567
                text = text.replace(",", "")
        elif text.count(".") > 1:
            # 1.234.567
            text = text.replace(".", "")

        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None

    if not amount.is_finite() or abs(amount) >= MAX_AMOUNT:
        return None

    cents = (amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def _pick(raw: Mapping[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        if key in raw:
            return raw[key]
    return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class RowNormalizer:
    """Validates raw rows one at a time."""

    max_description_length = 500
    max_reference_length = 100

    def normalize(self, raw: Any, row: int) -> NormalizedRow:
        """
        Normalize one raw row.

        Raises:
            ParseError: the row is not a mapping or lacks a required field
            ValidationError: a field is present but its value is unusable
        """
        if not isinstance(raw, Mapping):
            raise ParseError(
                f"Row is not a record (got {type(raw).__name__})",
                row=row,
            )

        for name in REQUIRED_FIELDS:
            if _is_blank(_pick(raw, name)):
                raise ParseError(f"Missing required field: {name}", row=row, field=name)

        raw_date = _pick(raw, "transaction_date")
        transaction_date = parse_date(raw_date)
        if transaction_date is None:
            raise ValidationError(
                "Invalid transaction date",
                row=row,
                field="transaction_date",
                value=str(raw_date),
            )

        raw_amount = _pick(raw, "amount")
        amount_cents = parse_amount_cents(raw_amount)
        if amount_cents is None:
            raise ValidationError(
                "Invalid amount",
                row=row,
                field="amount",
                value=str(raw_amount),
            )

        description = WHITESPACE_PATTERN.sub(" ", str(_pick(raw, "description"))).strip()
        if len(description) > self.max_description_length:
            raise ValidationError(
                f"Description longer than {self.max_description_length} characters",
                row=row,
                field="description",
            )

        # Optional fields: an unreadable value date is dropped, as banks often leave it blank
        value_date = parse_date(_pick(raw, "value_date"))

        balance_after_cents = None
        raw_balance = _pick(raw, "balance")
        if not _is_blank(raw_balance):
            balance_after_cents = parse_amount_cents(raw_balance)
            if balance_after_cents is None:
                raise ValidationError(
                    "Invalid balance",
                    row=row,
                    field="balance",
                    value=str(raw_balance),
                )

        bank_reference = None
        raw_reference = _pick(raw, "reference")
        if not _is_blank(raw_reference):
            bank_reference = str(raw_reference).strip()
            if len(bank_reference) > self.max_reference_length:
                raise ValidationError(
                    f"Bank reference longer than {self.max_reference_length} characters",
                    row=row,
                    field="reference",
                    value=bank_reference,
                )

        return NormalizedRow(
            transaction_date=transaction_date,
            amount_cents=amount_cents,
            description=description,
            value_date=value_date,
            balance_after_cents=balance_after_cents,
            bank_reference=bank_reference,
        )
