"""
Catalog service: the entry points used by the HTTP API.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any

from bookcatalog.config import CatalogConfig, ConfigManager
from bookcatalog.db.database import get_db_session
from bookcatalog.reconcile.engine import ReconciliationEngine
from bookcatalog.reconcile.fields import FieldMapper, load_field_map
from bookcatalog.reconcile.models import (
    BookFields,
    ImportPolicy,
    PricingFields,
    PricingKind,
    ReconcileResult,
)
from bookcatalog.reconcile.normalizer import RowNormalizer
from bookcatalog.reconcile.runner import BatchRunner
from bookcatalog.store.sql import SqlCatalogStore

# Pricing action labels shown by the interactive check
PRICE_ADDED = "PRICE_ADDED"
ADD_PRICE = "ADD_PRICE"
UPDATE_POSSIBLE = "UPDATE_POSSIBLE"
NO_CHANGE = "NO_CHANGE"


def pricing_action(result: ReconcileResult) -> str:
    """Describe what would happen to the pricing of a checked record."""
    if result.match.existing_book is None:
        return PRICE_ADDED
    if result.pricing.kind == PricingKind.NEW:
        return ADD_PRICE
    if result.pricing.kind == PricingKind.CONFLICT:
        return UPDATE_POSSIBLE
    return NO_CHANGE


@dataclass
class CatalogService:
    """Check and write single records, and run bulk imports."""
    store: SqlCatalogStore
    config: CatalogConfig
    mapper: FieldMapper
    normalizer: RowNormalizer

    @property
    def default_policy(self) -> ImportPolicy:
        return ImportPolicy(
            skip_duplicates=self.config.skip_duplicates,
            skip_conflicts=self.config.skip_conflicts,
            update_existing=self.config.update_existing,
        )

    def policy_from(self, options: Optional[Dict[str, Any]]) -> ImportPolicy:
        return ImportPolicy.from_options(options, defaults=self.default_policy)

    def engine(self) -> ReconciliationEngine:
        return ReconciliationEngine(self.store)

    def fields_from(
        self,
        book_data: Dict[str, Any],
        pricing_data: Dict[str, Any],
    ):
        """Normalize request payloads into (BookFields, PricingFields)."""
        book = self.normalizer.book_fields(book_data or {})
        pricing = self.normalizer.pricing_fields(pricing_data or {})
        return book, pricing

    def check(
        self,
        book: BookFields,
        pricing: PricingFields,
        policy: Optional[ImportPolicy] = None,
    ) -> ReconcileResult:
        """Classify a record and decide what would happen, without writing."""
        return self.engine().evaluate(book, pricing, policy or self.default_policy)

    def apply(
        self,
        book: BookFields,
        pricing: PricingFields,
        policy: Optional[ImportPolicy] = None,
    ) -> ReconcileResult:
        """Classify a record and carry out the decision."""
        return self.engine().reconcile(book, pricing, policy or self.default_policy)

    def runner(self, record_runs: bool = True) -> BatchRunner:
        return BatchRunner(
            self.store,
            mapper=self.mapper,
            normalizer=self.normalizer,
            audit_log_dir=self.config.audit_log_dir if self.config.write_audit_log else None,
            record_runs=record_runs,
        )


def create_catalog_service(config: CatalogConfig, store: Optional[SqlCatalogStore] = None) -> CatalogService:
    """Build a service from a configuration."""
    field_map = load_field_map(config.field_map_file)
    mapper = FieldMapper(field_map)
    return CatalogService(
        store=store or SqlCatalogStore(),
        config=config,
        mapper=mapper,
        normalizer=RowNormalizer(field_map, default_currency=config.default_currency),
    )


def create_catalog_service_from_config(env_config: Optional[CatalogConfig] = None) -> CatalogService:
    """
    Create a catalog service from the current configuration.

    Database-stored import settings take precedence over the environment.
    """
    with get_db_session() as db_session:
        config = ConfigManager(db_session=db_session, env_config=env_config).get_config()
    return create_catalog_service(config)
