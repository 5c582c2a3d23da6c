"""
Reconciliation engine for the Book Catalog Service.

Turns a match outcome and a pricing outcome into an action, and carries the
action out against the catalog store.
"""

from dataclasses import dataclass
from typing import Optional

from bookcatalog.reconcile.matcher import BookMatcher, PricingMatcher
from bookcatalog.reconcile.models import (
    Action,
    BookFields,
    Decision,
    ImportPolicy,
    MatchKind,
    MatchOutcome,
    NEW_PRICING_FOR_EXISTING_BOOK,
    PRICING_CONFLICT,
    PricingFields,
    PricingKind,
    PricingOutcome,
    ReconcileResult,
)
from bookcatalog.store.base import CatalogStore
from bookcatalog.utils.logging import get_logger, ImportLogger

logger = get_logger(__name__)


@dataclass
class RowProcessingError(Exception):
    """
    A record could not be written.

    rollback_failed is set when a book was inserted, its pricing failed, and
    deleting the book failed as well, leaving a book without pricing.
    """
    message: str
    rollback_failed: bool = False
    book_id: Optional[int] = None

    def __str__(self) -> str:
        return self.message


def decide(
    match: MatchOutcome,
    pricing: PricingOutcome,
    policy: ImportPolicy,
) -> Decision:
    """
    Pick the action for a record. Pure; touches nothing.

    Rules, in order:
    - new book: insert book and pricing
    - duplicate book, duplicate pricing: skip
    - duplicate book, different pricing: update pricing or flag
    - conflicting book: update book and pricing or flag
    - duplicate book, pricing source not seen before: add pricing or flag
    """
    if match.kind == MatchKind.NEW:
        return Decision(Action.INSERT_BOOK_AND_PRICING)

    if match.kind == MatchKind.DUPLICATE and pricing.kind == PricingKind.DUPLICATE:
        return Decision(Action.SKIP, conflict_type=MatchKind.DUPLICATE.value)

    if match.kind == MatchKind.DUPLICATE and pricing.kind == PricingKind.CONFLICT:
        if policy.update_existing:
            return Decision(Action.UPDATE_PRICING_ONLY)
        return Decision(Action.FLAG_CONFLICT, conflict_type=PRICING_CONFLICT)

    if match.kind.is_conflict:
        if policy.update_existing:
            return Decision(Action.UPDATE_BOOK_AND_PRICING)
        return Decision(Action.FLAG_CONFLICT, conflict_type=match.kind.value)

    # Duplicate book with a pricing source it does not have yet
    if policy.update_existing:
        return Decision(Action.ADD_PRICING)
    return Decision(Action.FLAG_CONFLICT, conflict_type=NEW_PRICING_FOR_EXISTING_BOOK)


class ReconciliationEngine:
    """
    Matches, decides and writes a single record.

    Shared by the interactive check, the single-record write and the bulk
    import so that all three classify records the same way.
    """

    def __init__(self, store: CatalogStore):
        self.store = store
        self.book_matcher = BookMatcher(store)
        self.pricing_matcher = PricingMatcher(store)

    def evaluate(
        self,
        book: BookFields,
        pricing: PricingFields,
        policy: ImportPolicy,
    ) -> ReconcileResult:
        """Classify a record and decide what to do, without writing."""
        match = self.book_matcher.resolve(book)
        if match.existing_book is not None:
            pricing_outcome = self.pricing_matcher.resolve(match.existing_book.id, pricing)
        else:
            pricing_outcome = PricingOutcome(kind=PricingKind.NEW)

        return ReconcileResult(
            match=match,
            pricing=pricing_outcome,
            decision=decide(match, pricing_outcome, policy),
        )

    def reconcile(
        self,
        book: BookFields,
        pricing: PricingFields,
        policy: ImportPolicy,
        import_logger: Optional[ImportLogger] = None,
    ) -> ReconcileResult:
        """Classify a record, decide, and carry out the decision."""
        result = self.evaluate(book, pricing, policy)
        return self.execute(book, pricing, result, import_logger)

    def execute(
        self,
        book: BookFields,
        pricing: PricingFields,
        result: ReconcileResult,
        import_logger: Optional[ImportLogger] = None,
    ) -> ReconcileResult:
        """
        Carry out a decision against the store.

        Events go to import_logger when given, so a bulk run tags them with
        its run id.

        Raises:
            RowProcessingError: If inserting a new book's pricing fails
            CatalogStoreError: If any other store operation fails
        """
        log = import_logger or logger
        action = result.action
        existing = result.match.existing_book
        existing_pricing = result.pricing.existing_pricing
        book_data = book.to_dict(exclude_empty=True)
        pricing_data = pricing.to_dict()

        if action == Action.INSERT_BOOK_AND_PRICING:
            result.book, result.pricing_record = self._insert_book_and_pricing(book_data, pricing_data, log)
            log.info(
                "Inserted new book",
                title=book.title,
                book_id=result.book.id
            )

        elif action == Action.ADD_PRICING:
            result.book = existing
            result.pricing_record = self.store.insert_pricing(existing.id, pricing_data)
            log.info(
                "Added new pricing for existing book",
                title=book.title,
                book_id=existing.id,
                source=pricing.source
            )

        elif action == Action.UPDATE_PRICING_ONLY:
            result.book = existing
            result.pricing_record = self.store.update_pricing(existing_pricing.id, pricing_data)
            log.info(
                "Updated pricing for existing book",
                title=book.title,
                book_id=existing.id,
                source=pricing.source
            )

        elif action == Action.UPDATE_BOOK_AND_PRICING:
            result.book = self.store.update_book(existing.id, book_data)
            if existing_pricing:
                result.pricing_record = self.store.update_pricing(existing_pricing.id, pricing_data)
            else:
                result.pricing_record = self.store.insert_pricing(existing.id, pricing_data)
            log.info(
                "Updated conflicting book",
                title=book.title,
                book_id=existing.id,
                conflict=result.match.kind.value
            )

        else:
            result.book = existing
            result.pricing_record = existing_pricing

        return result

    def _insert_book_and_pricing(self, book_data: dict, pricing_data: dict, log):
        saved_book = self.store.insert_book(book_data)

        try:
            saved_pricing = self.store.insert_pricing(saved_book.id, pricing_data)
        except Exception as pricing_error:
            # No transaction spans the two inserts; remove the book by hand
            try:
                self.store.delete_book(saved_book.id)
            except Exception as rollback_error:
                log.error(
                    "Pricing create failed and book rollback failed",
                    book_id=saved_book.id,
                    pricing_error=str(pricing_error),
                    rollback_error=str(rollback_error)
                )
                raise RowProcessingError(
                    f"Pricing creation failed ({pricing_error}) and the book could not be "
                    f"removed ({rollback_error}). Book {saved_book.id} has no pricing.",
                    rollback_failed=True,
                    book_id=saved_book.id,
                ) from rollback_error

            log.warning(
                "Pricing create failed, book rolled back",
                book_id=saved_book.id,
                error=str(pricing_error)
            )
            raise RowProcessingError(
                f"Pricing creation failed. Book was removed. ({pricing_error})",
                book_id=saved_book.id,
            ) from pricing_error

        return saved_book, saved_pricing
