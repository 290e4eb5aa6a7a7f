"""SQLAlchemy models for income and expense records."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from finance_importer.db.base import Base


class Income(Base):
    __tablename__ = "incomes"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(500), nullable=False)
    date = Column(Date, nullable=False)
    category_id = Column(Integer, ForeignKey("finance_categories.id"), nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=False)
    import_job_id = Column(String(36), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (Index("ix_incomes_owner_date", owner_id, date),)


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(64), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(500), nullable=False)
    date = Column(Date, nullable=False)
    category_id = Column(Integer, ForeignKey("finance_categories.id"))
    vendor_id = Column(Integer, ForeignKey("vendors.id"))
    is_recurring = Column(Boolean, nullable=False, default=False)
    import_job_id = Column(String(36), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (Index("ix_expenses_owner_date", owner_id, date),)


RECORD_MODELS = {"income": Income, "expense": Expense}
