"""
Spreadsheet header to catalog field mapping.

Headers are looked up in the header table as written; anything else is
lower-cased and looked up in the synonym table. A header found in neither
is ignored by the import.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, List, Iterable

from pydantic import BaseModel, Field

BOOK_FIELDS = (
    "isbn", "nonisbn", "other_code", "title", "author", "edition", "year",
    "publisher_name", "publisher_code", "binding_type", "classification",
    "remarks",
)
PRICING_FIELDS = ("rate", "discount", "currency", "source")

DEFAULT_HEADER_MAP: Dict[str, str] = {
    # Book fields
    "ISBN": "isbn",
    "Non ISBN": "nonisbn",
    "Other Code": "other_code",
    "Title": "title",
    "Author": "author",
    "EDITION": "edition",
    "Edition": "edition",
    "Year": "year",
    "Publisher Code": "publisher_code",
    "Publisher": "publisher_name",
    "Binding Type": "binding_type",
    "Sub_Subject": "classification",
    "Subject": "remarks",
    "Classification": "classification",
    "Remarks": "remarks",

    # Pricing fields
    "Price": "rate",
    "Rate": "rate",
    "Curr": "currency",
    "Currency": "currency",
    "Discount": "discount",
    "Source": "source",
}

DEFAULT_SYNONYMS: Dict[str, str] = {
    "book title": "title",
    "book name": "title",
    "name": "title",
    "writer": "author",
    "book author": "author",
    "cost": "rate",
    "amount": "rate",
    "price": "rate",
    "usd": "currency",
    "inr": "currency",
    "rs": "currency",
    "rupees": "currency",
    "dollars": "currency",
    "publisher": "publisher_name",
    "publishing house": "publisher_name",
    "category": "classification",
    "subject": "classification",
    "type": "binding_type",
    "binding": "binding_type",
    "hardcover": "binding_type",
    "paperback": "binding_type",
    "notes": "remarks",
    "comment": "remarks",
    "description": "remarks",
}


class FieldMapConfig(BaseModel):
    """Header and synonym tables used by the FieldMapper."""

    header_map: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADER_MAP))
    synonyms: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SYNONYMS))
    book_fields: List[str] = Field(default_factory=lambda: list(BOOK_FIELDS))
    pricing_fields: List[str] = Field(default_factory=lambda: list(PRICING_FIELDS))
    required_book_fields: List[str] = Field(default_factory=lambda: ["title", "author"])
    required_pricing_fields: List[str] = Field(default_factory=lambda: ["rate", "currency"])


def load_field_map(path: Optional[str]) -> FieldMapConfig:
    """
    Load header tables from a JSON file.

    Keys missing from the file keep their defaults. Returns the defaults
    when path is empty.
    """
    if not path:
        return FieldMapConfig()
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return FieldMapConfig(**data)


@dataclass
class MappingValidation:
    """Advisory check that the required columns are mapped."""
    has_required_book_fields: bool
    has_required_pricing_fields: bool
    missing_book_fields: List[str] = field(default_factory=list)
    missing_pricing_fields: List[str] = field(default_factory=list)
    mapped_book_fields: List[str] = field(default_factory=list)
    mapped_pricing_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "hasRequiredBookFields": self.has_required_book_fields,
            "hasRequiredPricingFields": self.has_required_pricing_fields,
            "missingBookFields": self.missing_book_fields,
            "missingPricingFields": self.missing_pricing_fields,
            "mappedFields": {
                "book": self.mapped_book_fields,
                "pricing": self.mapped_pricing_fields,
            },
        }


@dataclass
class HeaderAnalysis:
    headers: List[str]
    mapping: Dict[str, str]
    unmapped_headers: List[str]
    suggested_mapping: Dict[str, str]
    validation: MappingValidation

    def to_dict(self) -> dict:
        return {
            "headers": self.headers,
            "mapping": self.mapping,
            "unmappedHeaders": self.unmapped_headers,
            "suggestedMapping": self.suggested_mapping,
            "validation": self.validation.to_dict(),
        }


class FieldMapper:
    """
    Maps spreadsheet headers to book and pricing fields.

    Args:
        config: Header and synonym tables. Defaults to the built-in tables.
    """

    def __init__(self, config: Optional[FieldMapConfig] = None):
        self.config = config or FieldMapConfig()

    def is_pricing_field(self, name: str) -> bool:
        return name in self.config.pricing_fields

    def exact(self, header: str) -> Optional[str]:
        """Look a header up in the header table."""
        if header is None:
            return None
        return self.config.header_map.get(str(header).strip())

    def suggest(self, header: str) -> Optional[str]:
        """Look a lower-cased header up in the synonym table."""
        if header is None:
            return None
        return self.config.synonyms.get(str(header).strip().lower())

    def map(self, header: str) -> Optional[str]:
        """Map one header, or None if the column should be ignored."""
        return self.exact(header) or self.suggest(header)

    def build_mapping(self, headers: Iterable[str]) -> Dict[str, str]:
        """Map every header that resolves, exact or suggested."""
        mapping = {}
        for header in headers:
            target = self.map(header)
            if target:
                mapping[header] = target
        return mapping

    def validate(self, mapping: Dict[str, Optional[str]]) -> MappingValidation:
        targets = [t for t in mapping.values() if t]
        mapped_book = [t for t in targets if t in self.config.book_fields]
        mapped_pricing = [t for t in targets if t in self.config.pricing_fields]
        missing_book = [f for f in self.config.required_book_fields if f not in mapped_book]
        missing_pricing = [f for f in self.config.required_pricing_fields if f not in mapped_pricing]
        return MappingValidation(
            has_required_book_fields=not missing_book,
            has_required_pricing_fields=not missing_pricing,
            missing_book_fields=missing_book,
            missing_pricing_fields=missing_pricing,
            mapped_book_fields=mapped_book,
            mapped_pricing_fields=mapped_pricing,
        )

    def analyze(self, headers: Iterable[str]) -> HeaderAnalysis:
        """
        Split headers into exact matches, suggestions and unmapped columns.

        Validation is computed on the exact matches only, so a caller can
        see what is missing before accepting any suggestion.
        """
        clean = [str(h).strip() for h in headers if h is not None and str(h).strip()]
        mapping: Dict[str, str] = {}
        unmapped: List[str] = []
        suggested: Dict[str, str] = {}

        for header in clean:
            target = self.exact(header)
            if target:
                mapping[header] = target
                continue
            unmapped.append(header)
            suggestion = self.suggest(header)
            if suggestion:
                suggested[header] = suggestion

        return HeaderAnalysis(
            headers=clean,
            mapping=mapping,
            unmapped_headers=unmapped,
            suggested_mapping=suggested,
            validation=self.validate(mapping),
        )
