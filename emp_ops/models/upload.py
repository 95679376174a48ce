"""Upload (ingested batch) model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from emp_ops.db.session import Base
from emp_ops.models.base import TimestampMixin, UUIDMixin


class Upload(Base, UUIDMixin, TimestampMixin):
    """
    One ingested CSV batch.

    ``records`` holds the raw CSV rows and ``rows`` the per-record submission
    state (see ``emp_ops.schemas.upload.RowState``). The two lists are
    parallel: ``rows[i]`` always describes ``records[i]`` and every mutation
    that removes one removes the other.
    """

    __tablename__ = "uploads"

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str | None] = mapped_column(String(255))

    # Merchant account whose company config is used for submission (None = default config)
    account_id: Mapped[str | None] = mapped_column(String(36), index=True)

    records: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    rows: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # Aggregate counters
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    blacklisted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Reconciliation
    last_reconciled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reconciliation_report: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    # Chargeback / blacklist filtering
    filtered_records: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON)
    chargeback_filtered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    chargeback_filter_stats: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    @property
    def display_filename(self) -> str:
        return self.original_filename or self.filename
