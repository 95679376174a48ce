"""Gateway ground-truth models.

These tables are a cache of the gateway's own records (transactions and
chargebacks), synced from the gateway's reporting API by an external job.
They are read-mostly here.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from emp_ops.db.session import Base
from emp_ops.models.base import TimestampMixin, UUIDMixin


class GatewayTransaction(Base, UUIDMixin, TimestampMixin):
    """A transaction as recorded by the gateway (reconcile export)."""

    __tablename__ = "gateway_transactions"

    unique_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    transaction_id: Mapped[str | None] = mapped_column(String(255), index=True)
    transaction_type: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str | None] = mapped_column(String(50))

    amount_minor: Mapped[int | None] = mapped_column(BigInteger)
    currency: Mapped[str | None] = mapped_column(String(3))

    # Normalized (uppercase, no whitespace) account identifiers
    bank_account_number: Mapped[str | None] = mapped_column(String(64), index=True)
    card_number: Mapped[str | None] = mapped_column(String(64))

    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_email: Mapped[str | None] = mapped_column(String(255))

    transaction_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_gateway_transactions_account_date", "bank_account_number", "transaction_date"),
    )


class Chargeback(Base, UUIDMixin, TimestampMixin):
    """A chargeback reported by the gateway."""

    __tablename__ = "chargebacks"

    unique_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    # Logical reference to GatewayTransaction.unique_id (not a foreign key:
    # the original transaction may not be cached yet)
    original_transaction_unique_id: Mapped[str | None] = mapped_column(String(64), index=True)
    reason_code: Mapped[str | None] = mapped_column(String(10), index=True)
    reason_description: Mapped[str | None] = mapped_column(Text)
    amount_minor: Mapped[int | None] = mapped_column(BigInteger)
    currency: Mapped[str | None] = mapped_column(String(3))
    post_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
