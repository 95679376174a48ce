"""Blacklist checks and chargeback-based upload filtering."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from emp_ops.core.errors import StorageError, UploadEmptyError
from emp_ops.core.metrics import rows_filtered_total
from emp_ops.db.stores import BlacklistStore, TransactionStore, UploadStore
from emp_ops.models import BlacklistEntry
from emp_ops.models.base import utc_now
from emp_ops.schemas.upload import normalize_rows
from emp_ops.services.field_aliases import (
    get_blacklist_name,
    get_field_value,
    mask_iban,
    normalize_email,
    normalize_iban,
    normalize_name,
)
from emp_ops.services.locks import UploadLockRegistry, upload_locks

logger = logging.getLogger("emp.blacklist")

# SEPA return reasons that mean the account is unusable
BLACKLIST_TRIGGER_CODES: dict[str, str] = {
    "AC01": "Invalid/Incorrect Account Identifier",
    "AC04": "Account Closed",
}


@dataclass
class BlacklistMatches:
    """Normalized input values that hit the deny-list, per field."""

    ibans: set[str] = field(default_factory=set)
    emails: set[str] = field(default_factory=set)
    names: set[str] = field(default_factory=set)
    bics: set[str] = field(default_factory=set)

    def counts(self) -> dict[str, int]:
        return {
            "ibans": len(self.ibans),
            "emails": len(self.emails),
            "names": len(self.names),
            "bics": len(self.bics),
        }


class BlacklistService:
    """Deny-list lookups and maintenance."""

    def __init__(self, store: BlacklistStore):
        self.store = store

    async def check_blacklist(
        self,
        ibans: Iterable[str] = (),
        emails: Iterable[str] = (),
        names: Iterable[str] = (),
        bics: Iterable[str] = (),
    ) -> BlacklistMatches:
        """
        Match values against the deny-list.

        IBANs and BICs are compared uppercase without whitespace, emails
        lowercase, names case-insensitively. A stored BIC is a pattern: it
        matches every input BIC that contains it.
        """
        iban_set = {v for v in (normalize_iban(i) for i in ibans) if v}
        email_set = {v for v in (normalize_email(e) for e in emails) if v}
        name_set = {v for v in (normalize_name(n) for n in names) if v}
        bic_set = {v for v in (normalize_iban(b) for b in bics) if v}

        matches = BlacklistMatches()
        for entry in await self.store.find_matches(iban_set, email_set, name_set):
            if entry.iban and entry.iban in iban_set:
                matches.ibans.add(entry.iban)
            if entry.email and entry.email in email_set:
                matches.emails.add(entry.email)
            if entry.name and entry.name in name_set:
                matches.names.add(entry.name)

        if bic_set:
            patterns = {normalize_iban(p) for p in await self.store.list_bic_patterns()}
            patterns.discard("")
            for bic in bic_set:
                if any(pattern in bic for pattern in patterns):
                    matches.bics.add(bic)

        return matches

    async def get_blacklisted_ibans(self, ibans: Iterable[str]) -> set[str]:
        return (await self.check_blacklist(ibans=ibans)).ibans

    async def is_blacklisted(self, iban: str) -> bool:
        return bool(await self.get_blacklisted_ibans([iban]))

    async def add_to_blacklist(
        self,
        iban: str,
        name: str | None = None,
        email: str | None = None,
        bic: str | None = None,
        reason: str | None = None,
        created_by: str | None = None,
    ) -> bool:
        """Insert-if-absent keyed on the IBAN. Returns False when already listed."""
        normalized = normalize_iban(iban)
        if not normalized:
            raise ValueError("IBAN is required")

        entry = BlacklistEntry(
            iban=normalized,
            iban_masked=mask_iban(normalized),
            name=normalize_name(name) or None,
            email=normalize_email(email) or None,
            bic=normalize_iban(bic) or None,
            reason=reason or "Manual blacklist",
            created_by=created_by,
        )
        added = await self.store.add_if_absent(entry)
        logger.info(
            "Blacklist add %s: %s",
            mask_iban(normalized),
            "added" if added else "already listed",
            extra={"event_type": "blacklist.add", "added": added, "created_by": created_by},
        )
        return added

    async def remove_from_blacklist(self, iban: str) -> bool:
        return await self.store.remove_iban(normalize_iban(iban))


@dataclass
class ChargebackBlacklistReport:
    processed: int = 0
    added: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)


async def blacklist_from_chargebacks(
    service: BlacklistService,
    transactions: TransactionStore,
    trigger_codes: Iterable[str] = tuple(BLACKLIST_TRIGGER_CODES),
) -> ChargebackBlacklistReport:
    """
    Blacklist the IBANs behind chargebacks with account-level reason codes.

    Chargebacks reference their original transaction by the gateway's unique
    id; the IBAN comes from that transaction in the ground-truth cache.
    Chargebacks whose original transaction is unknown or has no account are
    ignored.
    """
    chargebacks = await transactions.list_chargebacks(reason_codes=trigger_codes)
    originals = {
        tx.unique_id: tx
        for tx in await transactions.get_by_unique_ids(
            cb.original_transaction_unique_id for cb in chargebacks
        )
    }

    report = ChargebackBlacklistReport()
    for chargeback in chargebacks:
        original = originals.get(chargeback.original_transaction_unique_id or "")
        iban = normalize_iban(original.bank_account_number if original else None)
        if not iban:
            continue

        report.processed += 1
        code = chargeback.reason_code or ""
        detail: dict[str, Any] = {"iban": mask_iban(iban), "reason_code": code}
        try:
            added = await service.add_to_blacklist(
                iban,
                name=original.customer_name,
                email=original.customer_email,
                reason=f"Chargeback {code}: {BLACKLIST_TRIGGER_CODES.get(code, code)}",
                created_by="system-auto-blacklist",
            )
        except (StorageError, ValueError) as exc:
            logger.error(
                "Auto-blacklist failed for %s: %s",
                mask_iban(iban),
                exc,
                extra={"event_type": "blacklist.auto.error", "reason_code": code},
            )
            report.errors += 1
            detail.update(status="error", error=str(exc))
        else:
            if added:
                report.added += 1
                detail["status"] = "added"
            else:
                report.skipped += 1
                detail["status"] = "already_blacklisted"
        report.details.append(detail)

    logger.info(
        "Chargeback blacklisting: %d processed, %d added, %d skipped, %d errors",
        report.processed,
        report.added,
        report.skipped,
        report.errors,
        extra={"event_type": "blacklist.auto.completed"},
    )
    return report


@dataclass
class FilterResult:
    original_count: int
    removed_count: int
    removed_by_chargeback: int
    removed_by_blacklist: int
    remaining_count: int
    chargeback_accounts_checked: int
    blacklist_checked: dict[str, int]

    def as_stats(self) -> dict[str, Any]:
        return {
            "originalCount": self.original_count,
            "removedCount": self.removed_count,
            "removedByChargeback": self.removed_by_chargeback,
            "removedByBlacklist": self.removed_by_blacklist,
            "remainingCount": self.remaining_count,
            "chargebackAccountsChecked": self.chargeback_accounts_checked,
            "blacklistChecked": self.blacklist_checked,
        }


class ChargebackFilter:
    """Removes rows whose account has a chargeback history or hits the deny-list."""

    def __init__(
        self,
        uploads: UploadStore,
        transactions: TransactionStore,
        blacklist: BlacklistService,
        locks: UploadLockRegistry = upload_locks,
    ):
        self.uploads = uploads
        self.transactions = transactions
        self.blacklist = blacklist
        self.locks = locks

    async def chargeback_accounts(self) -> set[str]:
        """
        Accounts (IBAN or card number) with at least one chargeback.

        Two lookups: chargeback -> original unique id, then unique id ->
        account on the ground-truth transaction.
        """
        chargebacks = await self.transactions.list_chargebacks()
        original_ids = {
            cb.original_transaction_unique_id
            for cb in chargebacks
            if cb.original_transaction_unique_id
        }
        accounts: set[str] = set()
        for tx in await self.transactions.get_by_unique_ids(original_ids):
            account = normalize_iban(tx.bank_account_number or tx.card_number)
            if account:
                accounts.add(account)
        return accounts

    async def filter_upload(
        self, upload_id: str, custom_mapping: dict[str, str] | None = None
    ) -> FilterResult:
        async with self.locks.hold(upload_id, "filter-chargebacks"):
            upload = await self.uploads.get(upload_id)
            records = list(upload.records or [])
            if not records:
                raise UploadEmptyError(upload_id)
            rows = normalize_rows(records, upload.rows)

            accounts = await self.chargeback_accounts()

            def field_of(name: str) -> list[str]:
                return [get_field_value(r, name, custom_mapping) or "" for r in records]

            ibans = [normalize_iban(v) for v in field_of("iban")]
            emails = [normalize_email(v) for v in field_of("email")]
            bics = [normalize_iban(v) for v in field_of("bic")]
            names = [normalize_name(get_blacklist_name(r, custom_mapping)) for r in records]

            matches = await self.blacklist.check_blacklist(ibans, emails, names, bics)

            kept_records: list[dict[str, Any]] = []
            kept_rows: list[dict[str, Any]] = []
            removed: list[dict[str, Any]] = []
            by_chargeback = by_blacklist = 0

            for index, record in enumerate(records):
                has_chargeback = bool(ibans[index]) and ibans[index] in accounts
                blacklisted = (
                    (ibans[index] and ibans[index] in matches.ibans)
                    or (emails[index] and emails[index] in matches.emails)
                    or (names[index] and names[index] in matches.names)
                    or (bics[index] and bics[index] in matches.bics)
                )
                if has_chargeback or blacklisted:
                    removed.append(record)
                    by_chargeback += int(has_chargeback)
                    by_blacklist += int(bool(blacklisted))
                else:
                    kept_records.append(record)
                    kept_rows.append(rows[index])

            result = FilterResult(
                original_count=len(records),
                removed_count=len(removed),
                removed_by_chargeback=by_chargeback,
                removed_by_blacklist=by_blacklist,
                remaining_count=len(kept_records),
                chargeback_accounts_checked=len(accounts),
                blacklist_checked=matches.counts(),
            )

            await self.uploads.replace_records(
                upload_id,
                kept_records,
                kept_rows,
                fields={
                    "filtered_records": removed,
                    "chargeback_filtered_at": utc_now(),
                    "chargeback_filter_stats": result.as_stats(),
                },
            )

        rows_filtered_total.labels(reason="chargeback").inc(by_chargeback)
        rows_filtered_total.labels(reason="blacklist").inc(by_blacklist)
        logger.info(
            "Filtered upload %s: removed %d of %d (%d chargeback, %d blacklist)",
            upload_id,
            result.removed_count,
            result.original_count,
            by_chargeback,
            by_blacklist,
            extra={"event_type": "upload.filter.chargebacks", "upload_id": upload_id},
        )
        return result
