"""Row validation for uploaded records.

Flags records that would fail or be rejected downstream: missing or
non-positive amounts, broken or placeholder names, placeholder addresses
and impossible postal codes.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from emp_ops.services.field_aliases import (
    get_country,
    get_field_value,
    get_full_address,
    get_full_name,
)

PLACEHOLDER_VALUES = frozenset(
    {"unknown", "unknown street", "n/a", "na", "none", "null", "-", "."}
)

INVALID_ZIP_CODES = frozenset({"00000", "0000", "000000", "99999"})

INVALID_NAME_PATTERN = re.compile(r"[0-9*#@$%^&+=\[\]{}|\\<>]")

# Broken UTF-8 decoded as Latin-1/CP1252 (mojibake)
ENCODING_ISSUE_PATTERNS = (
    re.compile("Ã[±']"),
    re.compile("Ã[¡-¿]"),
    re.compile("Ã[À-Ï]"),
    re.compile("Ã[à-ï]"),
    re.compile(r"Â[^\s\w]", re.ASCII),
    re.compile(r"Ä[^\s\w]", re.ASCII),
    re.compile("\ufffd"),
    re.compile("ï¿½"),
)

_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)")


def is_placeholder(value: str | None) -> bool:
    if not value:
        return False
    return value.strip().lower() in PLACEHOLDER_VALUES


def is_invalid_zip(value: str | None) -> bool:
    if not value:
        return False
    return value.strip() in INVALID_ZIP_CODES


def has_encoding_issue(value: str | None) -> bool:
    if not value:
        return False
    return any(pattern.search(value) for pattern in ENCODING_ISSUE_PATTERNS)


def validate_amount(amount: str | None) -> str | None:
    """Return the error for ``amount`` or None when it is usable.

    Only the leading number counts ("12.50 EUR" is 12.50).
    """
    if not amount:
        return "Amount is required"
    match = _LEADING_NUMBER.match(amount)
    if match is None:
        return "Amount is not a valid number"
    if float(match.group(0)) <= 0:
        return "Amount must be greater than 0"
    return None


def validate_name(name: str | None) -> str | None:
    if not name or not name.strip():
        return "Name is required"
    if is_placeholder(name):
        return "Name contains placeholder value"
    if has_encoding_issue(name):
        return "Name contains encoding issues (broken characters)"
    if INVALID_NAME_PATTERN.search(name):
        return "Name contains numbers or symbols"
    return None


def validate_required_fields(
    record: dict[str, Any], custom_mapping: dict[str, str] | None = None
) -> list[str]:
    errors = []

    address = get_full_address(record, custom_mapping)
    if not address:
        errors.append("Address is required")
    elif is_placeholder(address):
        errors.append("Address contains placeholder value (unknown)")

    postal_code = get_field_value(record, "postalCode", custom_mapping)
    if not postal_code:
        errors.append("Postal Code is required")
    elif is_invalid_zip(postal_code):
        errors.append("Postal Code is invalid (00000)")
    elif is_placeholder(postal_code):
        errors.append("Postal Code contains placeholder value")

    city = get_field_value(record, "city", custom_mapping)
    if not city:
        errors.append("City is required")
    elif is_placeholder(city):
        errors.append("City contains placeholder value")

    if not get_country(record, custom_mapping):
        errors.append("Country is required (not found in columns or IBAN)")

    return errors


def validate_row(record: dict[str, Any], custom_mapping: dict[str, str] | None = None) -> list[str]:
    """All validation errors for one record; empty when valid."""
    errors = []
    amount_error = validate_amount(get_field_value(record, "amount", custom_mapping))
    if amount_error:
        errors.append(amount_error)
    name_error = validate_name(get_full_name(record, custom_mapping))
    if name_error:
        errors.append(name_error)
    errors.extend(validate_required_fields(record, custom_mapping))
    return errors


@dataclass
class InvalidRow:
    index: int
    errors: list[str]


@dataclass
class ValidationSummary:
    invalid_rows: list[InvalidRow] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.invalid_rows

    @property
    def summary(self) -> str:
        if self.valid:
            return "All rows valid"
        return f"{len(self.invalid_rows)} row(s) have validation errors"

    def as_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "invalidRows": [{"index": r.index, "errors": r.errors} for r in self.invalid_rows],
            "summary": self.summary,
        }


def validate_rows(
    records: list[dict[str, Any]], custom_mapping: dict[str, str] | None = None
) -> ValidationSummary:
    result = ValidationSummary()
    for index, record in enumerate(records):
        errors = validate_row(record, custom_mapping)
        if errors:
            result.invalid_rows.append(InvalidRow(index=index, errors=errors))
    return result
