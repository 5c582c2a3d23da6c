"""
SQLAlchemy-backed catalog store.

Each operation runs in its own session and commits on its own, so a
multi-step write (book, then pricing) is not atomic. Callers compensate.
"""

from contextlib import contextmanager
from typing import Optional, Dict, Any, List, Tuple, Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from bookcatalog.db.database import get_db_session
from bookcatalog.db.models import Book, BookPricing
from bookcatalog.store.base import CatalogStore, CatalogStoreError, BookRecord, PricingRecord

BOOK_COLUMNS = (
    "title", "author", "edition", "year", "publisher_name", "publisher_code",
    "isbn", "nonisbn", "other_code", "binding_type", "classification",
    "remarks", "tags",
)
PRICING_COLUMNS = ("source", "rate", "discount", "currency")

# Filters applied as case-insensitive substring matches
SUBSTRING_FILTERS = ("author", "isbn", "publisher_name")


def title_key(title: Optional[str]) -> Optional[str]:
    """Case-folded title; SQLite lower() only folds ASCII."""
    return title.casefold() if title else None


def to_book_record(book: Book) -> BookRecord:
    return BookRecord(
        id=book.id,
        title=book.title,
        author=book.author,
        edition=book.edition,
        year=book.year,
        publisher_name=book.publisher_name,
        publisher_code=book.publisher_code,
        isbn=book.isbn,
        nonisbn=book.nonisbn,
        other_code=book.other_code,
        binding_type=book.binding_type,
        classification=book.classification,
        remarks=book.remarks,
        tags=list(book.tags or []),
    )


def to_pricing_record(pricing: BookPricing) -> PricingRecord:
    return PricingRecord(
        id=pricing.id,
        book_id=pricing.book_id,
        source=pricing.source,
        rate=pricing.rate,
        discount=pricing.discount if pricing.discount is not None else 0.0,
        currency=pricing.currency,
    )


class SqlCatalogStore(CatalogStore):
    """
    Catalog store over the application database.

    Args:
        session_scope: Context manager factory yielding a session that
            commits on exit. Defaults to the application session.
    """

    def __init__(self, session_scope: Callable = get_db_session):
        self.session_scope = session_scope

    @contextmanager
    def _scope(self, operation: str):
        try:
            with self.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            raise CatalogStoreError(str(e), operation=operation) from e

    # Books

    def get_book(self, book_id: int) -> Optional[BookRecord]:
        with self._scope("get_book") as session:
            book = session.get(Book, book_id)
            return to_book_record(book) if book else None

    def find_book_by_isbn(self, isbn: str) -> Optional[BookRecord]:
        with self._scope("find_book_by_isbn") as session:
            book = session.query(Book).filter(Book.isbn == isbn).first()
            return to_book_record(book) if book else None

    def find_book_by_other_code(self, other_code: str) -> Optional[BookRecord]:
        with self._scope("find_book_by_other_code") as session:
            book = session.query(Book).filter(Book.other_code == other_code).first()
            return to_book_record(book) if book else None

    def find_book_by_title(self, title: str) -> Optional[BookRecord]:
        with self._scope("find_book_by_title") as session:
            book = session.query(Book).filter(
                Book.title_key == title_key(title)
            ).order_by(Book.id.asc()).first()
            return to_book_record(book) if book else None

    def insert_book(self, fields: Dict[str, Any]) -> BookRecord:
        values = {k: v for k, v in fields.items() if k in BOOK_COLUMNS}
        with self._scope("insert_book") as session:
            book = Book(**values)
            book.title_key = title_key(book.title)
            session.add(book)
            session.flush()
            return to_book_record(book)

    def update_book(self, book_id: int, fields: Dict[str, Any]) -> Optional[BookRecord]:
        with self._scope("update_book") as session:
            book = session.get(Book, book_id)
            if not book:
                return None
            for key, value in fields.items():
                if key in BOOK_COLUMNS:
                    setattr(book, key, value)
            book.title_key = title_key(book.title)
            session.flush()
            return to_book_record(book)

    def delete_book(self, book_id: int) -> bool:
        with self._scope("delete_book") as session:
            book = session.get(Book, book_id)
            if not book:
                return False
            session.delete(book)
            return True

    def list_books(
        self,
        filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[BookRecord], int]:
        """
        List books newest first with optional filters.

        Args:
            filters: title/author/isbn/publisher_name match as substrings,
                year and classification match exactly
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (books on this page, total matching books)
        """
        filters = filters or {}
        with self._scope("list_books") as session:
            query = session.query(Book)
            if filters.get("title"):
                query = query.filter(
                    Book.title_key.contains(title_key(str(filters["title"])), autoescape=True)
                )
            for name in SUBSTRING_FILTERS:
                value = filters.get(name)
                if value:
                    column = getattr(Book, name)
                    query = query.filter(
                        func.lower(column).contains(str(value).lower(), autoescape=True)
                    )
            if filters.get("year") is not None:
                query = query.filter(Book.year == filters["year"])
            if filters.get("classification"):
                query = query.filter(Book.classification == filters["classification"])

            total = query.count()
            books = query.order_by(Book.created_at.desc(), Book.id.desc())\
                .offset((page - 1) * limit)\
                .limit(limit)\
                .all()
            return [to_book_record(b) for b in books], total

    def count_books(self) -> int:
        with self._scope("count_books") as session:
            return session.query(Book).count()

    # Pricing

    def find_pricing(self, book_id: int, source: str) -> Optional[PricingRecord]:
        with self._scope("find_pricing") as session:
            pricing = session.query(BookPricing).filter(
                BookPricing.book_id == book_id,
                BookPricing.source == source,
            ).order_by(BookPricing.id.asc()).first()
            return to_pricing_record(pricing) if pricing else None

    def insert_pricing(self, book_id: int, fields: Dict[str, Any]) -> PricingRecord:
        values = {k: v for k, v in fields.items() if k in PRICING_COLUMNS}
        with self._scope("insert_pricing") as session:
            pricing = BookPricing(book_id=book_id, **values)
            session.add(pricing)
            session.flush()
            return to_pricing_record(pricing)

    def update_pricing(self, pricing_id: int, fields: Dict[str, Any]) -> Optional[PricingRecord]:
        with self._scope("update_pricing") as session:
            pricing = session.get(BookPricing, pricing_id)
            if not pricing:
                return None
            for key, value in fields.items():
                if key in PRICING_COLUMNS:
                    setattr(pricing, key, value)
            session.flush()
            return to_pricing_record(pricing)

    def get_pricing(self, pricing_id: int) -> Optional[PricingRecord]:
        with self._scope("get_pricing") as session:
            pricing = session.get(BookPricing, pricing_id)
            return to_pricing_record(pricing) if pricing else None

    def delete_pricing(self, pricing_id: int) -> bool:
        with self._scope("delete_pricing") as session:
            pricing = session.get(BookPricing, pricing_id)
            if not pricing:
                return False
            session.delete(pricing)
            return True

    def delete_pricing_by_book(self, book_id: int) -> int:
        with self._scope("delete_pricing_by_book") as session:
            return session.query(BookPricing).filter(
                BookPricing.book_id == book_id
            ).delete(synchronize_session=False)

    def list_pricing(self, book_ids: List[int]) -> Dict[int, List[PricingRecord]]:
        """Get pricing for several books, newest first, keyed by book id."""
        result: Dict[int, List[PricingRecord]] = {book_id: [] for book_id in book_ids}
        if not book_ids:
            return result
        with self._scope("list_pricing") as session:
            rows = session.query(BookPricing).filter(
                BookPricing.book_id.in_(book_ids)
            ).order_by(BookPricing.created_at.desc(), BookPricing.id.desc()).all()
            for pricing in rows:
                result[pricing.book_id].append(to_pricing_record(pricing))
        return result
