"""Shared interpretation of gateway statuses and error texts.

The submitter and the reconciler must agree on what "approved", "pending"
and "duplicate transaction id" mean, so the sets and phrases live here as
data. Extending them does not touch either state machine.
"""

from collections.abc import Iterable

APPROVED_STATUSES: frozenset[str] = frozenset({"approved", "success", "successful"})

PENDING_STATUSES: frozenset[str] = frozenset(
    {"pending", "in_progress", "processing", "pending_async", "created"}
)

DECLINED_STATUSES: frozenset[str] = frozenset({"error", "declined"})

# Each entry matches when every phrase occurs in the lower-cased message.
# English only: the gateway reports errors in English regardless of locale.
DUPLICATE_PHRASES: tuple[tuple[str, ...], ...] = (
    ("transaction id", "already"),
    ("transaction_id", "already"),
    ("duplicate transaction",),
    ("duplicate", "transactionid"),
)


def normalize_status(status: str | None) -> str:
    return (status or "").strip().lower()


def is_approved_status(status: str | None) -> bool:
    return normalize_status(status) in APPROVED_STATUSES


def is_pending_status(status: str | None) -> bool:
    return normalize_status(status) in PENDING_STATUSES


def is_declined_status(status: str | None) -> bool:
    return normalize_status(status) in DECLINED_STATUSES


def is_duplicate_transaction_error(messages: Iterable[str | None]) -> bool:
    """True when any of the gateway/exception messages reports a reused transaction id."""
    for raw in messages:
        text = (raw or "").lower()
        if not text:
            continue
        for phrases in DUPLICATE_PHRASES:
            if all(phrase in text for phrase in phrases):
                return True
    return False
