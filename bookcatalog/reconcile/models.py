"""
Data models for reconciliation and bulk import.
"""

from dataclasses import dataclass, field, asdict, fields as dataclass_fields
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from bookcatalog.store.base import BookRecord, PricingRecord


class MatchKind(str, Enum):
    """How an incoming book relates to the catalog."""
    NEW = "NEW"
    DUPLICATE = "DUPLICATE"
    DUPLICATE_WITH_CONFLICTS = "DUPLICATE_WITH_CONFLICTS"
    AUTHOR_CONFLICT = "AUTHOR_CONFLICT"
    CONFLICT = "CONFLICT"

    @property
    def is_conflict(self) -> bool:
        return self in (
            MatchKind.DUPLICATE_WITH_CONFLICTS,
            MatchKind.AUTHOR_CONFLICT,
            MatchKind.CONFLICT,
        )


class PricingKind(str, Enum):
    """How incoming pricing relates to the pricing stored for the same source."""
    NEW = "NEW"
    DUPLICATE = "DUPLICATE"
    CONFLICT = "CONFLICT"


class Action(str, Enum):
    INSERT_BOOK_AND_PRICING = "INSERT_BOOK_AND_PRICING"
    ADD_PRICING = "ADD_PRICING"
    UPDATE_BOOK_AND_PRICING = "UPDATE_BOOK_AND_PRICING"
    UPDATE_PRICING_ONLY = "UPDATE_PRICING_ONLY"
    SKIP = "SKIP"
    FLAG_CONFLICT = "FLAG_CONFLICT"

    @property
    def is_update(self) -> bool:
        return self in (
            Action.ADD_PRICING,
            Action.UPDATE_BOOK_AND_PRICING,
            Action.UPDATE_PRICING_ONLY,
        )


# Conflict types reported for flagged rows that are not book conflicts
PRICING_CONFLICT = "PRICING_CONFLICT"
NEW_PRICING_FOR_EXISTING_BOOK = "NEW_PRICING_FOR_EXISTING_BOOK"


@dataclass
class BookFields:
    """Normalized book data from a row or a request."""
    isbn: Optional[str] = None
    other_code: Optional[str] = None
    nonisbn: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    edition: Optional[str] = None
    year: Optional[int] = None
    publisher_name: Optional[str] = None
    publisher_code: Optional[str] = None
    binding_type: Optional[str] = None
    classification: Optional[str] = None
    remarks: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """A book needs a title or an ISBN to be matched or stored."""
        return bool(self.title or self.isbn)

    def to_dict(self, exclude_empty: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if exclude_empty:
            data = {k: v for k, v in data.items() if v is not None and v != []}
        return data


@dataclass
class PricingFields:
    """Normalized pricing data for one source."""
    source: Optional[str] = None
    rate: Optional[float] = None
    discount: float = 0.0
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NormalizedRow:
    book: BookFields
    pricing: PricingFields

    @property
    def is_valid(self) -> bool:
        return self.book.is_valid


@dataclass
class ConflictField:
    old: Any
    new: Any


@dataclass
class PricingDifference:
    field: str
    existing: Any
    new: Any


@dataclass
class MatchOutcome:
    """
    Result of matching a book against the catalog.

    conflict_fields maps a field name to its old/new values, or to None for
    a field that was compared and agreed.
    """
    kind: MatchKind
    existing_book: Optional[BookRecord] = None
    conflict_fields: Dict[str, Optional[ConflictField]] = field(default_factory=dict)
    matched_by: Optional[str] = None  # isbn, other_code, title

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "matchedBy": self.matched_by,
            "existingBook": self.existing_book.to_dict() if self.existing_book else None,
            "conflictFields": {
                name: asdict(value) if value else None
                for name, value in self.conflict_fields.items()
            },
        }


@dataclass
class PricingOutcome:
    """Result of matching pricing for (book, source)."""
    kind: PricingKind
    existing_pricing: Optional[PricingRecord] = None
    differences: List[PricingDifference] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "existingPricing": self.existing_pricing.to_dict() if self.existing_pricing else None,
            "differences": [asdict(d) for d in self.differences],
        }


@dataclass
class ImportPolicy:
    """Caller-supplied flags for a reconciliation."""
    skip_duplicates: bool = True
    skip_conflicts: bool = True
    update_existing: bool = False

    @classmethod
    def from_options(
        cls,
        options: Optional[Dict[str, Any]],
        defaults: Optional["ImportPolicy"] = None,
    ) -> "ImportPolicy":
        """
        Build a policy from request options, accepting camelCase or
        snake_case keys and string booleans ("true", "1", "on").
        """
        defaults = defaults or cls()
        options = options or {}
        if not isinstance(options, dict):
            raise TypeError("policy options must be an object")
        values = {}
        for f in dataclass_fields(cls):
            camel = _camel_case(f.name)
            raw = options.get(f.name, options.get(camel))
            values[f.name] = getattr(defaults, f.name) if raw is None else to_bool(raw)
        return cls(**values)


@dataclass
class Decision:
    action: Action
    conflict_type: Optional[str] = None


@dataclass
class ReconcileResult:
    """Everything known about one reconciled record."""
    match: MatchOutcome
    pricing: PricingOutcome
    decision: Decision
    book: Optional[BookRecord] = None
    pricing_record: Optional[PricingRecord] = None

    @property
    def action(self) -> Action:
        return self.decision.action


class RowStatus(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass
class ConflictDetail:
    row: int
    conflict_type: str
    book_data: Dict[str, Any]
    pricing_data: Dict[str, Any]
    existing_book_id: Optional[int] = None
    conflict_fields: Dict[str, Any] = field(default_factory=dict)
    pricing_conflicts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "conflictType": self.conflict_type,
            "book": self.book_data.get("title"),
            "isbn": self.book_data.get("isbn"),
            "bookData": self.book_data,
            "pricingData": self.pricing_data,
            "existingBookId": self.existing_book_id,
            "conflictFields": self.conflict_fields,
            "pricingConflicts": self.pricing_conflicts,
        }


@dataclass
class DuplicateDetail:
    row: int
    conflict_type: str
    book_data: Dict[str, Any]
    existing_book_id: Optional[int] = None
    pricing_duplicate: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "conflictType": self.conflict_type,
            "book": self.book_data.get("title"),
            "isbn": self.book_data.get("isbn"),
            "existingBookId": self.existing_book_id,
        }


@dataclass
class ErrorDetail:
    row: int
    error: str
    data: Dict[str, Any]
    rollback_failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "error": self.error,
            "data": self.data,
            "rollbackFailed": self.rollback_failed,
        }


@dataclass
class RowResult:
    """Outcome of one row of a bulk import."""
    row: int
    status: RowStatus
    detail: Any = None
    book_id: Optional[int] = None


@dataclass
class ImportStats:
    """Counters and detail lists for one bulk import run."""
    total: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    conflicts: int = 0
    duplicates: int = 0
    errors: int = 0
    conflict_details: List[ConflictDetail] = field(default_factory=list)
    duplicate_details: List[DuplicateDetail] = field(default_factory=list)
    error_details: List[ErrorDetail] = field(default_factory=list)

    def add(self, result: RowResult) -> "ImportStats":
        """Fold one row result into the counters."""
        self.total += 1
        if result.status == RowStatus.INSERTED:
            self.inserted += 1
        elif result.status == RowStatus.UPDATED:
            self.updated += 1
        elif result.status == RowStatus.SKIPPED:
            self.skipped += 1
        elif result.status == RowStatus.DUPLICATE:
            self.duplicates += 1
            self.duplicate_details.append(result.detail)
        elif result.status == RowStatus.CONFLICT:
            self.conflicts += 1
            self.conflict_details.append(result.detail)
        elif result.status == RowStatus.ERROR:
            self.errors += 1
            self.error_details.append(result.detail)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "conflicts": self.conflicts,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "conflictDetails": [d.to_dict() for d in self.conflict_details],
            "duplicateDetails": [d.to_dict() for d in self.duplicate_details],
            "errorDetails": [d.to_dict() for d in self.error_details],
        }


@dataclass
class ImportReport:
    """Result of a complete bulk import."""
    run_id: str
    source_name: str
    policy: ImportPolicy
    started_at: datetime
    stats: ImportStats = field(default_factory=ImportStats)
    completed_at: Optional[datetime] = None
    log_file: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None

    @property
    def summary(self) -> Dict[str, int]:
        s = self.stats
        return {
            "totalProcessed": s.total,
            "successful": s.inserted + s.updated,
            "failed": s.conflicts + s.duplicates + s.errors + s.skipped,
            "conflicts": s.conflicts,
            "duplicates": s.duplicates,
            "errors": s.errors,
            "skipped": s.skipped,
        }

    @property
    def actionable(self) -> List[Dict[str, Any]]:
        """Rows needing attention; skip flags drop duplicates/conflicts from this list."""
        items: List[Dict[str, Any]] = []
        if not self.policy.skip_conflicts:
            items.extend(d.to_dict() for d in self.stats.conflict_details)
        if not self.policy.skip_duplicates:
            items.extend(d.to_dict() for d in self.stats.duplicate_details)
        return sorted(items, key=lambda item: item["row"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": "Bulk import completed successfully" if self.success else "Error during bulk import",
            "runId": self.run_id,
            "source": self.source_name,
            "error": self.error_message,
            "stats": self.stats.to_dict(),
            "summary": self.summary,
            "actionable": self.actionable,
            "logFile": self.log_file,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
