"""Merchant account and application settings models."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from emp_ops.db.session import Base
from emp_ops.models.base import TimestampMixin, UUIDMixin


class MerchantAccount(Base, UUIDMixin, TimestampMixin):
    """Tenant account whose company config shapes its submissions."""

    __tablename__ = "merchant_accounts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255))
    # {"baseUrl": ..., "successPath": ..., "failurePath": ..., "pendingPath": ..., "cancelPath": ...}
    return_urls: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    dynamic_descriptor: Mapped[str | None] = mapped_column(String(25))
    fallback_description: Mapped[str | None] = mapped_column(String(255))


class AppSetting(Base, TimestampMixin):
    """Key/value settings document (e.g. the custom CSV field mapping)."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict[str, Any] | None] = mapped_column(JSON)
