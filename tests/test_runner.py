"""Tests for bookcatalog.reconcile.runner module."""
from __future__ import annotations

from pathlib import Path
from typing import List
from unittest.mock import Mock

import pytest

from bookcatalog.db.database import get_db_session
from bookcatalog.db.models import ImportRun
from bookcatalog.reconcile.models import ImportPolicy, RowStatus
from bookcatalog.reconcile.runner import BatchRunner
from bookcatalog.sources.tabular import RowListSource
from bookcatalog.store.base import CatalogStore, CatalogStoreError
from bookcatalog.store.sql import SqlCatalogStore

MAPPING = {"ISBN": "isbn", "Title": "title", "Author": "author", "Price": "rate"}


class BrokenTitleStore(SqlCatalogStore):
    """Store that refuses to insert books titled 'Broken'."""

    def insert_book(self, fields):
        if fields.get("title") == "Broken":
            raise CatalogStoreError("constraint failed", operation="insert_book")
        return super().insert_book(fields)


class NoPricingStore(SqlCatalogStore):
    """Store whose pricing inserts always fail."""

    def insert_pricing(self, book_id, fields):
        raise CatalogStoreError("disk full", operation="insert_pricing")


class StuckNoPricingStore(NoPricingStore):
    """Store whose pricing inserts fail and whose book deletes fail too."""

    def delete_book(self, book_id):
        raise CatalogStoreError("database locked", operation="delete_book")


def _row(isbn, title, author="Frank Herbert", price=10):
    return {"ISBN": isbn, "Title": title, "Author": author, "Price": price}


class TestProcessRow:
    """Test single-row processing."""

    @pytest.mark.parametrize("row", [{}, {"Title": None, "ISBN": "  "}])
    def test_empty_row_is_skipped_without_store_calls(self, row):
        store = Mock(spec=CatalogStore)
        runner = BatchRunner(store, record_runs=False)

        result = runner.process_row(1, row, MAPPING, "vendorA", ImportPolicy())

        assert result.status == RowStatus.SKIPPED
        assert store.method_calls == []

    def test_row_without_title_or_isbn_is_skipped(self):
        store = Mock(spec=CatalogStore)
        runner = BatchRunner(store, record_runs=False)

        result = runner.process_row(3, {"Author": "Nobody", "Price": "5"}, MAPPING, "s", ImportPolicy())

        assert result.status == RowStatus.SKIPPED
        assert result.row == 3
        assert store.method_calls == []

    def test_store_errors_become_error_results(self):
        store = Mock(spec=CatalogStore)
        store.find_book_by_isbn.side_effect = CatalogStoreError("timeout", operation="find_book_by_isbn")
        runner = BatchRunner(store, record_runs=False)

        result = runner.process_row(2, _row("1", "Dune"), MAPPING, "s", ImportPolicy())

        assert result.status == RowStatus.ERROR
        assert "timeout" in result.detail.error
        assert result.detail.data == _row("1", "Dune")
        assert not result.detail.rollback_failed


@pytest.mark.database
class TestBatchRunner:
    """Test complete bulk imports."""

    def test_import_rows(self, runner: BatchRunner, store: SqlCatalogStore, sample_rows: List[dict]):
        report = runner.run(RowListSource(sample_rows), source_name="vendorA")

        assert report.success
        assert report.stats.total == 2
        assert report.stats.inserted == 2
        assert store.count_books() == 2
        dune = store.find_book_by_isbn("9780441013593")
        assert dune.year == 1965
        assert store.find_pricing(dune.id, "vendorA").rate == 12.5

    def test_rows_see_books_inserted_earlier_in_the_same_import(self, runner: BatchRunner,
                                                                 store: SqlCatalogStore):
        rows = [_row("1", "Dune"), _row("1", "Dune")]

        report = runner.run(RowListSource(rows), source_name="vendorA")

        assert report.stats.inserted == 1
        assert report.stats.duplicates == 1
        assert report.stats.duplicate_details[0].row == 2
        assert store.count_books() == 1

    def test_one_bad_row_does_not_stop_the_import(self, database, audit_dir: Path):
        store = BrokenTitleStore()
        runner = BatchRunner(store, audit_log_dir=str(audit_dir))
        rows = [_row("1", "Dune"), _row("2", "Broken"), _row("3", "Foundation")]

        report = runner.run(RowListSource(rows), source_name="vendorA")

        assert report.success
        assert report.stats.inserted == 2
        assert report.stats.errors == 1
        assert report.stats.error_details[0].row == 2
        assert store.count_books() == 2

    def test_failed_pricing_counts_an_error_and_leaves_no_book(self, database):
        store = NoPricingStore()
        runner = BatchRunner(store, record_runs=False)

        report = runner.run(RowListSource([_row("1", "Dune")]), source_name="vendorA")

        assert report.stats.errors == 1
        assert report.stats.inserted == 0
        assert not report.stats.error_details[0].rollback_failed
        assert store.count_books() == 0

    def test_failed_pricing_and_failed_rollback_flags_the_orphan(self, database):
        store = StuckNoPricingStore()
        runner = BatchRunner(store, record_runs=False)

        report = runner.run(RowListSource([_row("1", "Dune")]), source_name="vendorA")

        assert report.stats.errors == 1
        assert report.stats.inserted == 0
        assert report.stats.error_details[0].rollback_failed
        assert "could not be removed" in report.stats.error_details[0].error
        assert store.count_books() == 1

    def test_non_ascii_titles_without_isbn_match_earlier_rows(self, runner: BatchRunner,
                                                              store: SqlCatalogStore):
        rows = [_row(None, "Ökonomie", author="X"), _row(None, "Ökonomie", author="X")]

        report = runner.run(RowListSource(rows), source_name="vendorA")

        assert report.stats.inserted == 1
        assert report.stats.duplicates == 1
        assert store.count_books() == 1

    def test_summary_and_audit_log(self, database, audit_dir: Path):
        runner = BatchRunner(BrokenTitleStore(), audit_log_dir=str(audit_dir))
        rows = [
            _row("1", "Dune"),
            _row("1", "Dune"),
            _row("1", "Dune Messiah"),
            _row("2", "Broken"),
            {"ISBN": None, "Title": None},
        ]
        policy = ImportPolicy(skip_duplicates=False, skip_conflicts=False)

        report = runner.run(RowListSource(rows), source_name="vendor A", policy=policy)

        assert report.summary == {
            "totalProcessed": 5,
            "successful": 1,
            "failed": 4,
            "conflicts": 1,
            "duplicates": 1,
            "errors": 1,
            "skipped": 1,
        }
        assert [item["row"] for item in report.actionable] == [2, 3]
        assert report.stats.conflict_details[0].conflict_type == "CONFLICT"

        text = Path(report.log_file).read_text(encoding="utf-8")
        assert Path(report.log_file).name.startswith("bulk-import-vendor_A-")
        assert text.index("CONFLICTS (1 records):") < text.index("DUPLICATES (1 records):")
        assert text.index("DUPLICATES (1 records):") < text.index("ERRORS (1 records):")

    def test_skip_flags_only_filter_actionable(self, runner: BatchRunner):
        rows = [_row("1", "Dune"), _row("1", "Dune"), _row("1", "Dune Messiah")]

        report = runner.run(RowListSource(rows), source_name="vendorA", policy=ImportPolicy())

        assert report.stats.duplicates == 1
        assert report.stats.conflicts == 1
        assert report.actionable == []

    def test_update_existing_applies_conflicts(self, runner: BatchRunner, store: SqlCatalogStore):
        rows = [_row("1", "Dune", price=10), _row("1", "Dune", price=12)]

        report = runner.run(
            RowListSource(rows), source_name="vendorA", policy=ImportPolicy(update_existing=True)
        )

        assert report.stats.updated == 1
        book = store.find_book_by_isbn("1")
        assert store.find_pricing(book.id, "vendorA").rate == 12.0

    def test_explicit_mapping_is_used(self, runner: BatchRunner, store: SqlCatalogStore):
        rows = [{"Code": "X1", "Name": "Dune", "Cost": "4"}]

        report = runner.run(
            RowListSource(rows),
            mapping={"Code": "isbn", "Name": "title", "Cost": None},
            source_name="vendorA",
        )

        assert report.stats.inserted == 1
        book = store.find_book_by_isbn("X1")
        assert store.find_pricing(book.id, "vendorA").rate is None

    def test_run_is_recorded(self, runner: BatchRunner, sample_rows: List[dict]):
        report = runner.run(RowListSource(sample_rows), source_name="vendorA")

        with get_db_session() as session:
            run = session.query(ImportRun).filter(ImportRun.run_id == report.run_id).one()
            assert run.status == "completed"
            assert run.total == 2
            assert run.inserted == 2
            assert run.log_file == report.log_file

    def test_source_failure_marks_report_failed(self, runner: BatchRunner):
        source = Mock()
        source.name = "broken"
        source.headers.return_value = ["Title"]
        source.rows.side_effect = OSError("file vanished")

        report = runner.run(source)

        assert not report.success
        assert report.error_message == "file vanished"
        assert report.to_dict()["message"] == "Error during bulk import"
