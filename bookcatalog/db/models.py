"""
SQLAlchemy database models for the Book Catalog Service.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, JSON, Boolean, ForeignKey
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Book(Base):
    """A catalog book. Identity is the store-generated id; isbn is unique when present."""
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True)
    title = Column(String(500), nullable=True, index=True)
    title_key = Column(String(500), nullable=True, index=True)  # casefolded title for lookups
    author = Column(String(500), nullable=True)
    edition = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    publisher_name = Column(String(500), nullable=True)
    publisher_code = Column(String(100), nullable=True)
    isbn = Column(String(32), unique=True, index=True, nullable=True)
    nonisbn = Column(String(100), nullable=True)
    other_code = Column(String(100), index=True, nullable=True)
    binding_type = Column(String(100), nullable=True)
    classification = Column(String(255), nullable=True)
    remarks = Column(Text, nullable=True)
    tags = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BookPricing(Base):
    """Pricing for a book from one source (vendor or sheet)."""
    __tablename__ = 'book_pricing'

    id = Column(Integer, primary_key=True)
    book_id = Column(Integer, ForeignKey('books.id', ondelete='CASCADE'), index=True, nullable=False)
    source = Column(String(255), index=True, nullable=False)
    rate = Column(Float, nullable=True)
    discount = Column(Float, default=0.0)
    currency = Column(String(10), default='USD')
    created_at = Column(DateTime, default=datetime.utcnow)
    last_updated = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ImportSettings(Base):
    """Import defaults stored in database, overriding environment values."""
    __tablename__ = 'import_settings'

    id = Column(Integer, primary_key=True)
    default_currency = Column(String(10), nullable=True)
    skip_duplicates = Column(Boolean, nullable=True)
    skip_conflicts = Column(Boolean, nullable=True)
    update_existing = Column(Boolean, nullable=True)
    write_audit_log = Column(Boolean, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ImportLog(Base):
    """Detailed logs for import operations."""
    __tablename__ = 'import_logs'

    id = Column(Integer, primary_key=True)
    level = Column(String(20), nullable=False)  # DEBUG, INFO, WARNING, ERROR
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    import_run_id = Column(String(50), index=True, nullable=True)  # Group logs by import run
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class ImportRun(Base):
    """Represents a single bulk import run."""
    __tablename__ = 'import_runs'

    id = Column(Integer, primary_key=True)
    run_id = Column(String(50), unique=True, index=True, nullable=False)
    source_name = Column(String(255), nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    status = Column(String(20), default='running')  # running, completed, failed
    total = Column(Integer, default=0)
    inserted = Column(Integer, default=0)
    updated = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    conflicts = Column(Integer, default=0)
    duplicates = Column(Integer, default=0)
    errors = Column(Integer, default=0)
    log_file = Column(String(1000), nullable=True)
    error_message = Column(Text, nullable=True)
