"""SQLAlchemy models for finance reference data (categories and vendors)."""

from sqlalchemy import Boolean, Column, Index, Integer, String, Text, func
from sqlalchemy.types import DateTime

from finance_importer.db.base import Base


class FinanceCategory(Base):
    __tablename__ = "finance_categories"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(16), nullable=False)  # income | expense
    name = Column(String(100), nullable=False)
    description = Column(Text)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_finance_categories_owner_kind_name", owner_id, kind, func.lower(name)),
    )


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    address = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_vendors_owner_name", owner_id, func.lower(name)),)
