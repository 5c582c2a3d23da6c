"""
Book and pricing matching for the Book Catalog Service.

Matches incoming books against the catalog using ISBN, the alternate code
and the title, then classifies how the incoming data differs from what is
stored.
"""

from typing import Optional, Dict, List

from bookcatalog.reconcile.models import (
    BookFields,
    ConflictField,
    MatchKind,
    MatchOutcome,
    PricingDifference,
    PricingFields,
    PricingKind,
    PricingOutcome,
)
from bookcatalog.store.base import BookRecord, CatalogStore
from bookcatalog.utils.logging import get_logger

logger = get_logger(__name__)

MATCH_BY_ISBN = "isbn"
MATCH_BY_OTHER_CODE = "other_code"
MATCH_BY_TITLE = "title"


def _same_text(a: Optional[str], b: Optional[str]) -> bool:
    return (a.casefold() if a is not None else None) == (b.casefold() if b is not None else None)


def classify_match(
    existing: BookRecord,
    book: BookFields,
    matched_by: str,
) -> MatchOutcome:
    """
    Classify an incoming book against the catalog book it matched.

    Args:
        existing: Book found in the catalog
        book: Incoming book fields
        matched_by: Which lookup found the book (isbn, other_code, title)

    Returns:
        MatchOutcome of any kind except NEW
    """
    same_title = _same_text(existing.title, book.title)
    same_author = _same_text(existing.author, book.author)
    by_title = matched_by == MATCH_BY_TITLE
    conflict_fields: Dict[str, Optional[ConflictField]] = {}

    if same_title and same_author:
        if existing.year == book.year and existing.publisher_name == book.publisher_name:
            kind = MatchKind.DUPLICATE
        else:
            kind = MatchKind.DUPLICATE_WITH_CONFLICTS
            if by_title:
                conflict_fields["isbn"] = ConflictField(existing.isbn, book.isbn)
                conflict_fields["other_code"] = ConflictField(existing.other_code, book.other_code)
            if existing.year != book.year:
                conflict_fields["year"] = ConflictField(existing.year, book.year)
            if existing.publisher_name != book.publisher_name:
                conflict_fields["publisher_name"] = ConflictField(
                    existing.publisher_name, book.publisher_name
                )
    elif same_title:
        kind = MatchKind.AUTHOR_CONFLICT
        if by_title:
            conflict_fields["isbn"] = ConflictField(existing.isbn, book.isbn)
        conflict_fields["author"] = ConflictField(existing.author, book.author)
    else:
        kind = MatchKind.CONFLICT
        conflict_fields["title"] = None if same_title else ConflictField(existing.title, book.title)
        conflict_fields["author"] = None if same_author else ConflictField(existing.author, book.author)

    return MatchOutcome(
        kind=kind,
        existing_book=existing,
        conflict_fields=conflict_fields,
        matched_by=matched_by,
    )


def compare_pricing(existing, pricing: PricingFields) -> List[PricingDifference]:
    """List the rate/discount/currency fields that differ."""
    differences = []
    for name in ("rate", "discount", "currency"):
        old = getattr(existing, name)
        new = getattr(pricing, name)
        if old != new:
            differences.append(PricingDifference(field=name, existing=old, new=new))
    return differences


class BookMatcher:
    """
    Matches incoming books against the catalog.

    Matching priority (first hit wins):
    1. ISBN, exact
    2. Other code, exact
    3. Title, whole string, case-insensitive
    """

    def __init__(self, store: CatalogStore):
        self.store = store

    def find_existing(self, book: BookFields):
        """
        Find the catalog book an incoming book refers to.

        Returns:
            Tuple of (BookRecord, lookup name), or (None, None)
        """
        if book.isbn:
            existing = self.store.find_book_by_isbn(book.isbn)
            if existing:
                logger.debug("Matched by ISBN", title=book.title, isbn=book.isbn)
                return existing, MATCH_BY_ISBN

        if book.other_code:
            existing = self.store.find_book_by_other_code(book.other_code)
            if existing:
                logger.debug("Matched by other code", title=book.title, other_code=book.other_code)
                return existing, MATCH_BY_OTHER_CODE

        if book.title:
            existing = self.store.find_book_by_title(book.title)
            if existing:
                logger.debug("Matched by title", title=book.title)
                return existing, MATCH_BY_TITLE

        return None, None

    def resolve(self, book: BookFields) -> MatchOutcome:
        """Classify an incoming book against the catalog."""
        existing, matched_by = self.find_existing(book)
        if not existing:
            logger.debug("No match found", title=book.title, isbn=book.isbn)
            return MatchOutcome(kind=MatchKind.NEW)
        return classify_match(existing, book, matched_by)


class PricingMatcher:
    """Matches incoming pricing against the pricing stored for the same source."""

    def __init__(self, store: CatalogStore):
        self.store = store

    def resolve(self, book_id: int, pricing: PricingFields) -> PricingOutcome:
        existing = self.store.find_pricing(book_id, pricing.source)
        if not existing:
            return PricingOutcome(kind=PricingKind.NEW)

        differences = compare_pricing(existing, pricing)
        if differences:
            return PricingOutcome(
                kind=PricingKind.CONFLICT,
                existing_pricing=existing,
                differences=differences,
            )
        return PricingOutcome(kind=PricingKind.DUPLICATE, existing_pricing=existing)
