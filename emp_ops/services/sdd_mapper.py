"""Map a raw CSV record to an SDD sale request.

Transaction ids are a pure function of upload identity and row index, so a
row keeps its base id across runs. Duplicate-id retries derive
``<base>-r<n>``; base ids always end in ``-<row_index>`` and can therefore
never be mistaken for a retry id of another row.
"""

import hashlib
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from emp_ops.core.config import settings
from emp_ops.core.errors import FieldMappingError
from emp_ops.integrations.interfaces.base import ReturnUrls, SddSaleRequest
from emp_ops.models import MerchantAccount
from emp_ops.services.field_aliases import (
    get_country,
    get_field_value,
    get_full_address,
    mask_iban,
    normalize_iban,
    split_full_name,
)

__all__ = [
    "CompanyConfig",
    "build_base_transaction_id",
    "build_retry_transaction_id",
    "map_record_to_sdd_sale",
    "mask_iban",
    "parse_amount_minor",
    "resolve_names",
    "strip_retry_suffix",
]

MERCHANT_NAME_MAX = 25

_RETRY_SUFFIX = re.compile(r"-r\d+$")


@dataclass
class CompanyConfig:
    """Per-tenant settings that shape a submission."""

    name: str
    contact_email: str | None = None
    return_urls: dict[str, str] | None = None
    dynamic_descriptor: str | None = None
    fallback_description: str | None = None

    @classmethod
    def default(cls) -> "CompanyConfig":
        return cls(
            name=settings.DEFAULT_COMPANY_NAME,
            contact_email=settings.DEFAULT_CONTACT_EMAIL or None,
            return_urls=None,
            dynamic_descriptor=settings.DEFAULT_DYNAMIC_DESCRIPTOR or None,
            fallback_description=settings.DEFAULT_FALLBACK_DESCRIPTION or None,
        )

    @classmethod
    def from_account(cls, account: MerchantAccount | None) -> "CompanyConfig":
        if account is None:
            return cls.default()
        return cls(
            name=account.name,
            contact_email=account.contact_email,
            return_urls=account.return_urls,
            dynamic_descriptor=account.dynamic_descriptor,
            fallback_description=account.fallback_description,
        )

    def resolve_return_urls(self) -> ReturnUrls | None:
        """Account URLs win over the EMP_RETURN_BASE_URL default."""
        custom = self.return_urls or {}
        base = (custom.get("baseUrl") or "").rstrip("/")
        paths = custom if base else {}
        if not base:
            base = settings.EMP_RETURN_BASE_URL.rstrip("/")
        if not base:
            return None
        return ReturnUrls(
            success=base + (paths.get("successPath") or "/success"),
            failure=base + (paths.get("failurePath") or "/failure"),
            pending=base + (paths.get("pendingPath") or "/pending"),
            cancel=base + (paths.get("cancelPath") or "/cancel"),
        )


def build_base_transaction_id(upload_key: str, row_index: int) -> str:
    """
    Stable id for (upload, row).

    ``upload_key`` is the upload id when known; a filename is hashed to keep
    the id short and free of characters the gateway rejects.
    """
    key = upload_key
    if not re.fullmatch(r"[A-Za-z0-9_-]{1,40}", key):
        key = hashlib.sha1(upload_key.encode("utf-8")).hexdigest()[:12]
    return f"sdd-{key}-{row_index}"


def build_retry_transaction_id(base_id: str, retry_count: int) -> str:
    if retry_count <= 0:
        return base_id
    return f"{base_id}-r{retry_count}"


def strip_retry_suffix(transaction_id: str) -> str:
    return _RETRY_SUFFIX.sub("", transaction_id)


def parse_amount_minor(raw: str | None) -> int:
    """
    Parse "1,99", "1.99", "1.234,56" or "1,234.56" into minor units.

    Raises:
        FieldMappingError: missing, non-numeric or non-positive amount
    """
    if raw is None or not str(raw).strip():
        raise FieldMappingError("Amount is required", field="amount")

    text = re.sub(r"[^\d,.\-]", "", str(raw))
    if "," in text and "." in text:
        # The right-most separator is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    else:
        text = text.replace(",", ".")

    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise FieldMappingError(f"Amount is not a valid number: {raw}", field="amount")

    minor = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if minor <= 0:
        raise FieldMappingError(f"Amount must be greater than 0: {raw}", field="amount")
    return minor


def resolve_names(
    record: dict[str, Any], custom_mapping: dict[str, str] | None = None
) -> tuple[str, str]:
    """
    Pick (first, last) without mixing sources.

    A fully populated first/last pair wins. Otherwise a combined name field is
    split; a half-populated pair is only used when no combined name exists.
    """
    first = get_field_value(record, "firstName", custom_mapping)
    last = get_field_value(record, "lastName", custom_mapping)
    if first and last:
        return first, last

    full = get_field_value(record, "name", custom_mapping)
    if full:
        split_first, split_last = split_full_name(full)
        if split_first:
            return split_first, split_last

    single = first or last or ""
    return single, single


def map_record_to_sdd_sale(
    record: dict[str, Any],
    row_index: int,
    custom_mapping: dict[str, str] | None,
    source_filename: str,
    company_config: CompanyConfig,
    upload_id: str | None = None,
) -> SddSaleRequest:
    """
    Build the gateway request for one record.

    Raises:
        FieldMappingError: amount or IBAN cannot be resolved
    """
    amount_minor = parse_amount_minor(get_field_value(record, "amount", custom_mapping))

    iban = normalize_iban(get_field_value(record, "iban", custom_mapping))
    if not iban:
        raise FieldMappingError("IBAN is required", field="iban")

    first_name, last_name = resolve_names(record, custom_mapping)

    description = get_field_value(record, "description", custom_mapping)
    descriptor = (
        get_field_value(record, "productDescriptor", custom_mapping)
        or description
        or company_config.dynamic_descriptor
    )

    currency = (
        get_field_value(record, "currency", custom_mapping) or settings.DEFAULT_CURRENCY
    ).upper()

    return SddSaleRequest(
        transaction_id=build_base_transaction_id(upload_id or source_filename, row_index),
        amount_minor=amount_minor,
        currency=currency,
        iban=iban,
        usage=description or company_config.fallback_description,
        first_name=first_name or None,
        last_name=last_name or None,
        address1=get_full_address(record, custom_mapping) or None,
        zip_code=get_field_value(record, "postalCode", custom_mapping),
        city=get_field_value(record, "city", custom_mapping),
        country=get_country(record, custom_mapping),
        customer_email=get_field_value(record, "email", custom_mapping)
        or company_config.contact_email,
        bic=get_field_value(record, "bic", custom_mapping),
        merchant_name=descriptor[:MERCHANT_NAME_MAX] if descriptor else None,
        return_urls=company_config.resolve_return_urls(),
    )
