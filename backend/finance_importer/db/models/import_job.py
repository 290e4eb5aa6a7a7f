"""Track finance import jobs: status, counters and row errors."""

import uuid

from sqlalchemy import Boolean, Column, Index, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from finance_importer.db.base import Base, JSONType

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

ACTIVE_STATUSES = (PENDING, PROCESSING)
TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)
ALL_STATUSES = ACTIVE_STATUSES + TERMINAL_STATUSES


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), nullable=False, index=True)
    record_type = Column(String(16), nullable=False)
    format = Column(String(16), nullable=False)
    source_filename = Column(Text)
    status = Column(String(32), nullable=False, default=PENDING)

    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    succeeded_rows = Column(Integer, nullable=False, default=0)
    failed_rows = Column(Integer, nullable=False, default=0)
    created_rows = Column(Integer, nullable=False, default=0)
    updated_rows = Column(Integer, nullable=False, default=0)

    errors = Column(JSONType, nullable=False, default=list)
    warnings = Column(JSONType, nullable=False, default=list)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text)
    failed_at_row = Column(Integer)

    mapping = Column(JSONType)
    options = Column(JSONType)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("ix_import_jobs_owner_created", owner_id, created_at),)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
