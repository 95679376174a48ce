"""CSV column aliasing.

``FIELD_ALIASES`` maps each canonical field to the source-column spellings
seen in merchant exports, in priority order. Onboarding a new CSV layout
means adding spellings here; the resolver below does not change.
"""

import re
from typing import Any

FIELD_ALIASES: dict[str, list[str]] = {
    # Address
    "address": [
        "Address", "address",
        "Street", "street",
        "Street Address", "street_address", "streetAddress",
        "Strasse", "Straße", "strasse",
    ],
    "streetNumber": [
        "Street Number", "street_number", "streetNumber",
        "House Number", "house_number", "houseNumber",
        "Hausnummer", "hausnummer",
        "Number", "number", "No", "no",
    ],
    "floor": ["Floor", "floor", "Level", "level"],
    "door": ["Door", "door"],
    "apartment": [
        "Apartment", "apartment", "Apratment",
        "Apt", "apt",
        "Unit", "unit",
        "Flat", "flat",
    ],
    # Location
    "postalCode": [
        "Postal Code", "postal_code", "postalCode",
        "Postcode", "postcode",
        "ZIP", "zip", "Zip",
        "ZIP Code", "zip_code", "zipCode",
        "PLZ", "plz",
    ],
    "city": [
        "City", "city",
        "Town", "town",
        "Locality", "locality",
        "Ort", "ort", "Stadt", "stadt",
    ],
    "country": [
        "Country", "country",
        "Land", "land",
        "Province", "province",
        "State", "state",
        "Region", "region",
    ],
    # Person
    "name": [
        "Name", "name",
        "Full Name", "full_name", "fullName",
        "Customer Name", "customer_name", "customerName", "customername",
        "Debtor Name", "debtor_name", "debtorName",
        "Client Name", "client_name", "clientName",
        "Kundenname", "kundenname",
    ],
    "firstName": [
        "First Name", "first_name", "firstName", "firstname",
        "Customer First Name", "customer_first_name", "customerfirstname",
        "Given Name", "given_name", "givenName",
        "Forename", "forename",
        "Vorname", "vorname",
    ],
    "lastName": [
        "Last Name", "last_name", "lastName", "lastname",
        "Customer Last Name", "customer_last_name", "customerlastname",
        "Surname", "surname",
        "Family Name", "family_name", "familyName",
        "Nachname", "nachname",
    ],
    # Money
    "amount": [
        "Amount", "amount",
        "Betrag", "betrag",
        "Sum", "sum",
        "Total", "total",
        "Value", "value",
        "Debt", "debt",
        "Balance", "balance",
    ],
    "currency": ["Currency", "currency", "Cur", "cur", "Waehrung", "Währung"],
    # Bank
    "iban": [
        "IBAN", "iban", "Iban",
        "Account", "account",
        "Bank Account", "bank_account", "bankAccount",
        "Kontonummer",
    ],
    "bank": ["Bank", "bank", "Bank Name", "bank_name", "bankName"],
    "bic": [
        "BIC", "bic", "Bic",
        "SWIFT", "swift", "Swift",
        "BIC/SWIFT", "bic_swift",
    ],
    # Contact
    "email": [
        "Email", "email",
        "E-mail", "e-mail", "E-Mail",
        "Email Address", "email_address", "emailAddress",
    ],
    "phone": [
        "Phone", "phone",
        "Phone 1", "phone_1", "phone1",
        "Telephone", "telephone", "Telefon", "telefon",
        "Mobile", "mobile",
        "Primary Phone", "primary_phone", "primaryPhone",
    ],
    # Payment text
    "description": [
        "vzweck1", "Vzweck1", "VZweck1",
        "Verwendungszweck", "verwendungszweck",
        "Description", "description",
        "Usage", "usage",
        "Reference", "reference",
    ],
    "productDescriptor": [
        "product_descriptor", "productDescriptor", "Product Descriptor",
    ],
    "transactionId": [
        "TransactionId", "transactionId", "transaction_id", "Transaction ID",
    ],
}

_NON_ALNUM = re.compile(r"[^0-9a-z]+")
_WHITESPACE = re.compile(r"\s+")


def _header_key(header: str) -> str:
    return _NON_ALNUM.sub("", header.lower())


def _present(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def get_field_value(
    record: dict[str, Any],
    field: str,
    custom_mapping: dict[str, str] | None = None,
) -> str | None:
    """
    Resolve a canonical field from a raw CSV record.

    Order: the operator's custom column mapping, then the exact alias list,
    then a case- and punctuation-insensitive match against the same aliases.
    The first non-empty value wins.
    """
    if custom_mapping and custom_mapping.get(field):
        value = _present(record.get(custom_mapping[field]))
        if value:
            return value

    aliases = FIELD_ALIASES.get(field, [field])
    for alias in aliases:
        value = _present(record.get(alias))
        if value:
            return value

    wanted = {_header_key(alias) for alias in aliases}
    for header, raw in record.items():
        if isinstance(header, str) and _header_key(header) in wanted:
            value = _present(raw)
            if value:
                return value
    return None


def normalize_iban(value: str | None) -> str:
    return _WHITESPACE.sub("", value or "").upper()


def mask_iban(value: str | None) -> str:
    """DE89370400440532013000 -> DE89****3000."""
    clean = normalize_iban(value)
    if len(clean) <= 8:
        return "****"
    return f"{clean[:4]}****{clean[-4:]}"


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def normalize_name(value: str | None) -> str:
    return _WHITESPACE.sub(" ", (value or "").strip()).upper()


def country_from_iban(iban: str | None) -> str | None:
    code = normalize_iban(iban)[:2]
    if len(code) == 2 and code.isalpha() and code.isascii():
        return code
    return None


def get_country(record: dict[str, Any], custom_mapping: dict[str, str] | None = None) -> str | None:
    """Country column, falling back to the IBAN's country prefix."""
    return get_field_value(record, "country", custom_mapping) or country_from_iban(
        get_field_value(record, "iban", custom_mapping)
    )


def get_full_address(record: dict[str, Any], custom_mapping: dict[str, str] | None = None) -> str:
    street = get_field_value(record, "address", custom_mapping)
    if not street:
        return ""
    parts = [street]
    number = get_field_value(record, "streetNumber", custom_mapping)
    if number:
        parts.append(number)
    floor = get_field_value(record, "floor", custom_mapping)
    if floor:
        parts.append(f"Fl.{floor}")
    door = get_field_value(record, "door", custom_mapping)
    if door:
        parts.append(f"Dr.{door}")
    apartment = get_field_value(record, "apartment", custom_mapping)
    if apartment:
        parts.append(f"Apt.{apartment}")
    return " ".join(parts)


def get_full_name(record: dict[str, Any], custom_mapping: dict[str, str] | None = None) -> str:
    full = get_field_value(record, "name", custom_mapping)
    if full:
        return full
    parts = [
        get_field_value(record, "firstName", custom_mapping),
        get_field_value(record, "lastName", custom_mapping),
    ]
    return " ".join(p for p in parts if p)


def get_blacklist_name(record: dict[str, Any], custom_mapping: dict[str, str] | None = None) -> str:
    """Name as compared against the deny-list: full name, else "Last First"."""
    full = get_field_value(record, "name", custom_mapping)
    if full:
        return full
    first = get_field_value(record, "firstName", custom_mapping) or ""
    last = get_field_value(record, "lastName", custom_mapping) or ""
    return f"{last} {first}".strip()


def split_full_name(full_name: str) -> tuple[str, str]:
    """
    Split a combined name into (first, last).

    "Last, First" splits on the comma; otherwise the first token is the first
    name and the remainder the last name. A single token fills both.
    """
    cleaned = _WHITESPACE.sub(" ", full_name.strip())
    if not cleaned:
        return "", ""

    if "," in cleaned:
        last, _, first = cleaned.partition(",")
        last, first = last.strip(), first.strip()
        if first and last:
            return first, last
        single = first or last
        return single, single

    first, _, rest = cleaned.partition(" ")
    if not rest:
        return first, first
    return first, rest
