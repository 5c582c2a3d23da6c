"""
Catalog store interface for the Book Catalog Service.

The reconciliation code talks to the catalog only through CatalogStore.
Every operation either returns an optional record or succeeds/fails; there
are no batch or transaction primitives.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List


@dataclass
class CatalogStoreError(Exception):
    """Raised when a store operation fails (connection, constraint, query)."""
    message: str
    operation: Optional[str] = None

    def __str__(self) -> str:
        if self.operation:
            return f"Catalog store error in {self.operation}: {self.message}"
        return f"Catalog store error: {self.message}"


@dataclass
class BookRecord:
    """A book as stored in the catalog."""
    id: int
    title: Optional[str] = None
    author: Optional[str] = None
    edition: Optional[str] = None
    year: Optional[int] = None
    publisher_name: Optional[str] = None
    publisher_code: Optional[str] = None
    isbn: Optional[str] = None
    nonisbn: Optional[str] = None
    other_code: Optional[str] = None
    binding_type: Optional[str] = None
    classification: Optional[str] = None
    remarks: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PricingRecord:
    """Pricing for one book from one source."""
    id: int
    book_id: int
    source: str
    rate: Optional[float] = None
    discount: float = 0.0
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CatalogStore(ABC):
    """
    Read/write access to books and their pricing.

    Lookups return None when nothing matches; failures raise CatalogStoreError.
    """

    @abstractmethod
    def find_book_by_isbn(self, isbn: str) -> Optional[BookRecord]:
        """Exact lookup by ISBN."""

    @abstractmethod
    def find_book_by_other_code(self, other_code: str) -> Optional[BookRecord]:
        """Exact lookup by the alternate identifier."""

    @abstractmethod
    def find_book_by_title(self, title: str) -> Optional[BookRecord]:
        """Whole-string, case-insensitive title lookup."""

    @abstractmethod
    def insert_book(self, fields: Dict[str, Any]) -> BookRecord:
        """Insert a book and return it with its generated id."""

    @abstractmethod
    def update_book(self, book_id: int, fields: Dict[str, Any]) -> Optional[BookRecord]:
        """Set the given fields on a book."""

    @abstractmethod
    def delete_book(self, book_id: int) -> bool:
        """Delete a book. Returns False if it did not exist."""

    @abstractmethod
    def find_pricing(self, book_id: int, source: str) -> Optional[PricingRecord]:
        """Exact lookup by (book, source)."""

    @abstractmethod
    def insert_pricing(self, book_id: int, fields: Dict[str, Any]) -> PricingRecord:
        """Insert pricing for a book."""

    @abstractmethod
    def update_pricing(self, pricing_id: int, fields: Dict[str, Any]) -> Optional[PricingRecord]:
        """Set the given fields on a pricing record."""

    @abstractmethod
    def delete_pricing_by_book(self, book_id: int) -> int:
        """Delete all pricing for a book, returning the number removed."""
