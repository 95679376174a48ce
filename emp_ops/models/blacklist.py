"""Blacklist model."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from emp_ops.db.session import Base
from emp_ops.models.base import TimestampMixin, UUIDMixin


class BlacklistEntry(Base, UUIDMixin, TimestampMixin):
    """
    A deny-list entry.

    Values are stored normalized: IBAN and BIC uppercase without whitespace,
    email lowercase, name uppercase. ``bic`` is a pattern: any input BIC
    containing it matches.
    """

    __tablename__ = "blacklist_entries"

    iban: Mapped[str | None] = mapped_column(String(64), unique=True)
    iban_masked: Mapped[str | None] = mapped_column(String(64))
    name: Mapped[str | None] = mapped_column(String(255), index=True)
    email: Mapped[str | None] = mapped_column(String(255), index=True)
    bic: Mapped[str | None] = mapped_column(String(16))
    reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(100))
