"""
Turns raw spreadsheet rows and request payloads into typed book/pricing fields.
"""

import math
from typing import Optional, Dict, Any

from bookcatalog.reconcile.fields import FieldMapConfig
from bookcatalog.reconcile.models import BookFields, PricingFields, NormalizedRow

DEFAULT_CURRENCY = "USD"


def clean_value(value: Any) -> Optional[str]:
    """Stringify and trim a cell; blank cells become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_number(value: Any) -> Optional[float]:
    """Parse a number, returning None for anything non-numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def to_year(value: Any) -> Optional[int]:
    number = to_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def to_discount(value: Any) -> float:
    number = to_number(value)
    return number if number is not None else 0.0


class RowNormalizer:
    """
    Normalizes rows into (BookFields, PricingFields).

    Args:
        field_map: Tables deciding which fields are pricing fields
        default_currency: Currency used when a row has none
    """

    def __init__(
        self,
        field_map: Optional[FieldMapConfig] = None,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        self.field_map = field_map or FieldMapConfig()
        self.default_currency = default_currency

    def normalize(
        self,
        raw_row: Dict[str, Any],
        mapping: Dict[str, Optional[str]],
        source_name: Optional[str],
    ) -> NormalizedRow:
        """
        Normalize one spreadsheet row.

        Args:
            raw_row: Header label to cell value
            mapping: Header label to canonical field; None entries are ignored
            source_name: Pricing source used when the row has no Source column

        Returns:
            NormalizedRow; check is_valid before using it
        """
        book_data: Dict[str, str] = {}
        pricing_data: Dict[str, str] = {}

        for header, target in mapping.items():
            if not target:
                continue
            value = clean_value(raw_row.get(header))
            if value is None:
                continue
            if target in self.field_map.pricing_fields:
                pricing_data[target] = value
            else:
                book_data[target] = value

        return NormalizedRow(
            book=self.book_fields(book_data),
            pricing=self.pricing_fields(pricing_data, default_source=source_name),
        )

    def book_fields(self, data: Dict[str, Any]) -> BookFields:
        """Build BookFields from a flat dict, ignoring unknown keys."""
        book = BookFields()
        for name in self.field_map.book_fields:
            if name not in data or not hasattr(book, name):
                continue
            if name == "year":
                book.year = to_year(data[name])
            else:
                setattr(book, name, clean_value(data[name]))

        tags = data.get("tags")
        if isinstance(tags, (list, tuple)):
            book.tags = [t for t in (clean_value(tag) for tag in tags) if t]
        elif isinstance(tags, str):
            book.tags = [t.strip() for t in tags.split(",") if t.strip()]
        return book

    def pricing_fields(
        self,
        data: Dict[str, Any],
        default_source: Optional[str] = None,
    ) -> PricingFields:
        """Build PricingFields from a flat dict, applying defaults."""
        return PricingFields(
            source=clean_value(data.get("source")) or default_source,
            rate=to_number(data.get("rate")),
            discount=to_discount(data.get("discount")),
            currency=clean_value(data.get("currency")) or self.default_currency,
        )
