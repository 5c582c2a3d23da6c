"""
Bulk import runner for the Book Catalog Service.

Reads a tabular source row by row, reconciles each row against the catalog
and folds the per-row results into import statistics.
"""

import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from bookcatalog.db.database import get_db_session
from bookcatalog.db.models import ImportRun
from bookcatalog.reconcile.audit import audit_log_name, write_audit_log
from bookcatalog.reconcile.engine import ReconciliationEngine, RowProcessingError
from bookcatalog.reconcile.fields import FieldMapper
from bookcatalog.reconcile.models import (
    Action,
    ConflictDetail,
    DuplicateDetail,
    ErrorDetail,
    ImportPolicy,
    ImportReport,
    PricingKind,
    RowResult,
    RowStatus,
)
from bookcatalog.reconcile.normalizer import RowNormalizer
from bookcatalog.sources.tabular import TabularSource
from bookcatalog.store.base import CatalogStore
from bookcatalog.utils.logging import get_logger, ImportLogger

logger = get_logger(__name__)


class BatchRunner:
    """
    Runs bulk imports.

    Rows are processed strictly in source order, one at a time: a row can
    match a book inserted by an earlier row of the same import.
    """

    def __init__(
        self,
        store: CatalogStore,
        mapper: Optional[FieldMapper] = None,
        normalizer: Optional[RowNormalizer] = None,
        audit_log_dir: Optional[str] = None,
        record_runs: bool = True,
    ):
        """
        Initialize the runner.

        Args:
            store: Catalog store to reconcile against
            mapper: Field mapper used when no mapping is given
            normalizer: Row normalizer
            audit_log_dir: Directory for audit logs; None disables them
            record_runs: Whether to record runs in the import_runs table
        """
        self.store = store
        self.engine = ReconciliationEngine(store)
        self.mapper = mapper or FieldMapper()
        self.normalizer = normalizer or RowNormalizer(self.mapper.config)
        self.audit_log_dir = audit_log_dir
        self.record_runs = record_runs

    def run(
        self,
        source: TabularSource,
        mapping: Optional[Dict[str, Optional[str]]] = None,
        source_name: Optional[str] = None,
        policy: Optional[ImportPolicy] = None,
        run_id: Optional[str] = None,
    ) -> ImportReport:
        """
        Import every row of a source.

        Args:
            source: Rows to import
            mapping: Header to field mapping; built from the headers if omitted
            source_name: Pricing source for rows without one; defaults to source.name
            policy: Import policy
            run_id: Optional run ID (auto-generated if not provided)

        Returns:
            ImportReport; row failures are reported, never raised
        """
        policy = policy or ImportPolicy()
        source_name = source_name or source.name
        run_id = run_id or str(uuid.uuid4())[:8]
        import_logger = ImportLogger(run_id)

        report = ImportReport(
            run_id=run_id,
            source_name=source_name,
            policy=policy,
            started_at=datetime.utcnow(),
        )
        self._start_run(report)

        import_logger.info(
            "Starting bulk import",
            source=source_name,
            update_existing=policy.update_existing
        )

        try:
            if mapping is None:
                mapping = self.mapper.build_mapping(source.headers())

            stats = report.stats
            for index, row in enumerate(source.rows(), start=1):
                stats.add(self.process_row(index, row, mapping, source_name, policy, import_logger))

            if self.audit_log_dir:
                report.log_file = write_audit_log(
                    self.audit_log_dir,
                    audit_log_name(source_name, report.started_at),
                    stats.conflict_details,
                    stats.duplicate_details,
                    stats.error_details,
                )

            import_logger.info(
                "Bulk import completed",
                total=stats.total,
                inserted=stats.inserted,
                updated=stats.updated,
                skipped=stats.skipped,
                conflicts=stats.conflicts,
                duplicates=stats.duplicates,
                errors=stats.errors
            )

        except Exception as e:
            import_logger.exception("Bulk import failed", error=str(e))
            report.success = False
            report.error_message = str(e)

        report.completed_at = datetime.utcnow()
        self._finish_run(report)
        return report

    def process_row(
        self,
        index: int,
        row: Dict[str, Any],
        mapping: Dict[str, Optional[str]],
        source_name: str,
        policy: ImportPolicy,
        import_logger: Optional[ImportLogger] = None,
    ) -> RowResult:
        """
        Reconcile one row. Never raises: failures come back as ERROR results.

        Args:
            index: 1-based row number
            row: Header label to raw value
            mapping: Header to field mapping
            source_name: Default pricing source
            policy: Import policy
        """
        import_logger = import_logger or ImportLogger()

        if not row or all(v is None or str(v).strip() == "" for v in row.values()):
            return RowResult(row=index, status=RowStatus.SKIPPED)

        try:
            normalized = self.normalizer.normalize(row, mapping, source_name)
            if not normalized.is_valid:
                import_logger.warning("Skipping row: no title or ISBN provided", row=index)
                return RowResult(row=index, status=RowStatus.SKIPPED)

            book, pricing = normalized.book, normalized.pricing
            result = self.engine.reconcile(book, pricing, policy, import_logger)

        except Exception as e:
            rollback_failed = isinstance(e, RowProcessingError) and e.rollback_failed
            if rollback_failed:
                import_logger.error("Orphan book left after failed rollback", row=index, error=str(e))
            else:
                import_logger.error("Error processing row", row=index, error=str(e))
            return RowResult(
                row=index,
                status=RowStatus.ERROR,
                detail=ErrorDetail(
                    row=index,
                    error=str(e),
                    data=dict(row),
                    rollback_failed=rollback_failed,
                ),
            )

        action = result.action
        existing_id = result.match.existing_book.id if result.match.existing_book else None

        if action == Action.INSERT_BOOK_AND_PRICING:
            return RowResult(row=index, status=RowStatus.INSERTED, book_id=result.book.id)

        if action.is_update:
            return RowResult(row=index, status=RowStatus.UPDATED, book_id=existing_id)

        if action == Action.SKIP:
            return RowResult(
                row=index,
                status=RowStatus.DUPLICATE,
                book_id=existing_id,
                detail=DuplicateDetail(
                    row=index,
                    conflict_type=result.match.kind.value,
                    book_data=book.to_dict(exclude_empty=True),
                    existing_book_id=existing_id,
                    pricing_duplicate=result.pricing.kind == PricingKind.DUPLICATE,
                ),
            )

        return RowResult(
            row=index,
            status=RowStatus.CONFLICT,
            book_id=existing_id,
            detail=ConflictDetail(
                row=index,
                conflict_type=result.decision.conflict_type,
                book_data=book.to_dict(exclude_empty=True),
                pricing_data=pricing.to_dict(),
                existing_book_id=existing_id,
                conflict_fields=result.match.to_dict()["conflictFields"],
                pricing_conflicts=[
                    {"field": d.field, "existing": d.existing, "new": d.new}
                    for d in result.pricing.differences
                ],
            ),
        )

    def _start_run(self, report: ImportReport) -> None:
        if not self.record_runs:
            return
        try:
            with get_db_session() as session:
                session.add(ImportRun(
                    run_id=report.run_id,
                    source_name=report.source_name,
                    started_at=report.started_at,
                    status="running",
                ))
        except Exception as e:
            logger.error("Failed to record import run", run_id=report.run_id, error=str(e))

    def _finish_run(self, report: ImportReport) -> None:
        if not self.record_runs:
            return
        try:
            with get_db_session() as session:
                run = session.query(ImportRun).filter(
                    ImportRun.run_id == report.run_id
                ).first()

                if run:
                    stats = report.stats
                    run.completed_at = report.completed_at
                    run.status = "completed" if report.success else "failed"
                    run.total = stats.total
                    run.inserted = stats.inserted
                    run.updated = stats.updated
                    run.skipped = stats.skipped
                    run.conflicts = stats.conflicts
                    run.duplicates = stats.duplicates
                    run.errors = stats.errors
                    run.log_file = report.log_file
                    run.error_message = report.error_message
        except Exception as e:
            logger.error("Failed to update import run", run_id=report.run_id, error=str(e))
