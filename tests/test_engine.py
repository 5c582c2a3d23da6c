"""Tests for bookcatalog.reconcile.engine module."""
from __future__ import annotations

import pytest

from bookcatalog.reconcile.engine import ReconciliationEngine, RowProcessingError, decide
from bookcatalog.reconcile.models import (
    Action,
    BookFields,
    ImportPolicy,
    MatchKind,
    MatchOutcome,
    NEW_PRICING_FOR_EXISTING_BOOK,
    PRICING_CONFLICT,
    PricingFields,
    PricingKind,
    PricingOutcome,
)
from bookcatalog.store.base import CatalogStoreError
from bookcatalog.store.sql import SqlCatalogStore

KEEP = ImportPolicy(update_existing=False)
UPDATE = ImportPolicy(update_existing=True)


def _decide(match_kind, pricing_kind, policy):
    return decide(MatchOutcome(kind=match_kind), PricingOutcome(kind=pricing_kind), policy)


class TestDecide:
    """Test the decision table."""

    @pytest.mark.parametrize("pricing_kind", list(PricingKind))
    @pytest.mark.parametrize("policy", [KEEP, UPDATE])
    def test_new_book_is_inserted(self, pricing_kind, policy):
        assert _decide(MatchKind.NEW, pricing_kind, policy).action == Action.INSERT_BOOK_AND_PRICING

    @pytest.mark.parametrize("policy", [KEEP, UPDATE])
    def test_full_duplicate_is_skipped(self, policy):
        decision = _decide(MatchKind.DUPLICATE, PricingKind.DUPLICATE, policy)

        assert decision.action == Action.SKIP
        assert decision.conflict_type == "DUPLICATE"

    def test_pricing_conflict(self):
        flagged = _decide(MatchKind.DUPLICATE, PricingKind.CONFLICT, KEEP)
        assert flagged.action == Action.FLAG_CONFLICT
        assert flagged.conflict_type == PRICING_CONFLICT

        assert _decide(MatchKind.DUPLICATE, PricingKind.CONFLICT, UPDATE).action == Action.UPDATE_PRICING_ONLY

    def test_new_pricing_for_existing_book(self):
        flagged = _decide(MatchKind.DUPLICATE, PricingKind.NEW, KEEP)
        assert flagged.action == Action.FLAG_CONFLICT
        assert flagged.conflict_type == NEW_PRICING_FOR_EXISTING_BOOK

        assert _decide(MatchKind.DUPLICATE, PricingKind.NEW, UPDATE).action == Action.ADD_PRICING

    @pytest.mark.parametrize(
        "match_kind",
        [MatchKind.DUPLICATE_WITH_CONFLICTS, MatchKind.AUTHOR_CONFLICT, MatchKind.CONFLICT],
    )
    @pytest.mark.parametrize("pricing_kind", list(PricingKind))
    def test_book_conflicts(self, match_kind, pricing_kind):
        flagged = _decide(match_kind, pricing_kind, KEEP)
        assert flagged.action == Action.FLAG_CONFLICT
        assert flagged.conflict_type == match_kind.value

        assert _decide(match_kind, pricing_kind, UPDATE).action == Action.UPDATE_BOOK_AND_PRICING

    def test_skip_flags_do_not_change_the_action(self):
        loud = ImportPolicy(skip_duplicates=False, skip_conflicts=False)
        quiet = ImportPolicy(skip_duplicates=True, skip_conflicts=True)

        for match_kind in MatchKind:
            for pricing_kind in PricingKind:
                assert _decide(match_kind, pricing_kind, loud) == _decide(match_kind, pricing_kind, quiet)


class FailingPricingStore(SqlCatalogStore):
    """Store whose pricing inserts always fail."""

    def insert_pricing(self, book_id, fields):
        raise CatalogStoreError("disk full", operation="insert_pricing")


class StuckBookStore(FailingPricingStore):
    """Store that can neither insert pricing nor delete books."""

    def delete_book(self, book_id):
        raise CatalogStoreError("connection lost", operation="delete_book")


@pytest.mark.database
class TestReconciliationEngine:
    """Test reconciliation against the catalog store."""

    def test_insert_new_book(self, engine: ReconciliationEngine, store: SqlCatalogStore,
                             dune_book: BookFields, vendor_pricing: PricingFields):
        result = engine.reconcile(dune_book, vendor_pricing, KEEP)

        assert result.action == Action.INSERT_BOOK_AND_PRICING
        assert result.book.id is not None
        assert result.pricing_record.book_id == result.book.id
        assert store.count_books() == 1

    def test_same_record_twice_is_skipped(self, engine: ReconciliationEngine, store: SqlCatalogStore,
                                          dune_book: BookFields, vendor_pricing: PricingFields):
        first = engine.reconcile(dune_book, vendor_pricing, KEEP)
        second = engine.reconcile(dune_book, vendor_pricing, KEEP)

        assert second.action == Action.SKIP
        assert second.match.existing_book.id == first.book.id
        assert store.count_books() == 1

    def test_non_ascii_title_without_isbn_is_matched(self, engine: ReconciliationEngine,
                                                     store: SqlCatalogStore, vendor_pricing: PricingFields):
        book = BookFields(title="Über Dinge", author="Anna Weber")

        first = engine.reconcile(book, vendor_pricing, KEEP)
        second = engine.reconcile(BookFields(title="über dinge", author="Anna Weber"), vendor_pricing, KEEP)

        assert first.action == Action.INSERT_BOOK_AND_PRICING
        assert second.action == Action.SKIP
        assert second.match.existing_book.id == first.book.id
        assert store.count_books() == 1

    def test_pricing_conflict_is_flagged_without_writing(self, engine: ReconciliationEngine,
                                                         store: SqlCatalogStore, dune_book: BookFields):
        engine.reconcile(dune_book, PricingFields(source="vendorA", rate=10.0), KEEP)

        result = engine.reconcile(dune_book, PricingFields(source="vendorA", rate=11.0), KEEP)

        assert result.action == Action.FLAG_CONFLICT
        assert result.decision.conflict_type == PRICING_CONFLICT
        assert store.find_pricing(result.book.id, "vendorA").rate == 10.0

    def test_update_pricing_only(self, engine: ReconciliationEngine, store: SqlCatalogStore,
                                 dune_book: BookFields):
        engine.reconcile(dune_book, PricingFields(source="vendorA", rate=10.0), KEEP)

        result = engine.reconcile(dune_book, PricingFields(source="vendorA", rate=11.0, discount=5), UPDATE)

        assert result.action == Action.UPDATE_PRICING_ONLY
        pricing = store.find_pricing(result.book.id, "vendorA")
        assert pricing.rate == 11.0
        assert pricing.discount == 5.0

    def test_add_pricing_for_new_source(self, engine: ReconciliationEngine, store: SqlCatalogStore,
                                        dune_book: BookFields):
        first = engine.reconcile(dune_book, PricingFields(source="vendorA", rate=10.0), KEEP)

        flagged = engine.reconcile(dune_book, PricingFields(source="vendorB", rate=9.0), KEEP)
        assert flagged.decision.conflict_type == NEW_PRICING_FOR_EXISTING_BOOK
        assert store.find_pricing(first.book.id, "vendorB") is None

        added = engine.reconcile(dune_book, PricingFields(source="vendorB", rate=9.0), UPDATE)
        assert added.action == Action.ADD_PRICING
        assert store.find_pricing(first.book.id, "vendorB").rate == 9.0

    def test_update_conflicting_book(self, engine: ReconciliationEngine, store: SqlCatalogStore,
                                     dune_book: BookFields, vendor_pricing: PricingFields):
        first = engine.reconcile(dune_book, vendor_pricing, KEEP)
        changed = BookFields(isbn=dune_book.isbn, title="Dune (Deluxe)", author="Frank Herbert")

        flagged = engine.reconcile(changed, vendor_pricing, KEEP)
        assert flagged.action == Action.FLAG_CONFLICT
        assert flagged.decision.conflict_type == MatchKind.CONFLICT.value
        assert store.get_book(first.book.id).title == "Dune"

        updated = engine.reconcile(changed, PricingFields(source="vendorA", rate=20.0), UPDATE)
        assert updated.action == Action.UPDATE_BOOK_AND_PRICING
        book = store.get_book(first.book.id)
        assert book.title == "Dune (Deluxe)"
        # Fields missing from the incoming record are left alone
        assert book.year == 1965
        assert store.find_pricing(first.book.id, "vendorA").rate == 20.0

    def test_evaluate_never_writes(self, engine: ReconciliationEngine, store: SqlCatalogStore,
                                   dune_book: BookFields, vendor_pricing: PricingFields):
        result = engine.evaluate(dune_book, vendor_pricing, UPDATE)

        assert result.action == Action.INSERT_BOOK_AND_PRICING
        assert result.book is None
        assert store.count_books() == 0

    def test_failed_pricing_removes_new_book(self, database, dune_book: BookFields,
                                             vendor_pricing: PricingFields):
        store = FailingPricingStore()

        with pytest.raises(RowProcessingError) as excinfo:
            ReconciliationEngine(store).reconcile(dune_book, vendor_pricing, KEEP)

        assert not excinfo.value.rollback_failed
        assert "Book was removed" in str(excinfo.value)
        assert store.count_books() == 0

    def test_failed_rollback_is_reported(self, database, dune_book: BookFields,
                                         vendor_pricing: PricingFields):
        store = StuckBookStore()

        with pytest.raises(RowProcessingError) as excinfo:
            ReconciliationEngine(store).reconcile(dune_book, vendor_pricing, KEEP)

        error = excinfo.value
        assert error.rollback_failed
        assert store.get_book(error.book_id).title == "Dune"
