"""Narrow data-access stores built on StorageClient.

Each store exposes only the queries its callers need. Values passed in are
expected to be normalized already (see ``emp_ops.services.field_aliases``).
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import String, cast, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from emp_ops.core.errors import UploadNotFoundError
from emp_ops.db.storage import StorageClient
from emp_ops.models import (
    AppSetting,
    BlacklistEntry,
    Chargeback,
    GatewayTransaction,
    MerchantAccount,
    Upload,
)
from emp_ops.models.base import utc_now
from emp_ops.schemas.upload import count_statuses, normalize_rows

# Keep IN (...) lists well under driver parameter limits
_IN_CHUNK = 500


def _chunks(values: list[str], size: int = _IN_CHUNK) -> Iterable[list[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


async def _load_upload(session: AsyncSession, upload_id: str, for_update: bool = False) -> Upload:
    query = select(Upload).where(Upload.id == upload_id)
    if for_update:
        query = query.with_for_update()
    upload = (await session.execute(query)).scalar_one_or_none()
    if upload is None:
        raise UploadNotFoundError(upload_id)
    return upload


class UploadStore:
    """Reads and targeted writes on uploads."""

    def __init__(self, storage: StorageClient):
        self.storage = storage

    async def create(
        self,
        filename: str,
        records: list[dict[str, Any]],
        rows: list[dict[str, Any]] | None = None,
        account_id: str | None = None,
        original_filename: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> Upload:
        """Persist an already-parsed upload (ingestion itself lives elsewhere)."""
        aligned = normalize_rows(records, rows)
        counts = count_statuses(aligned)

        async def _create(session: AsyncSession) -> Upload:
            upload = Upload(
                filename=filename,
                original_filename=original_filename,
                account_id=account_id,
                records=list(records),
                rows=aligned,
                **counts.as_upload_fields(),
            )
            if created_at is not None:
                upload.created_at = created_at
            if updated_at is not None:
                upload.updated_at = updated_at
            session.add(upload)
            await session.flush()
            return upload

        return await self.storage.run(_create, "upload.create")

    async def get(self, upload_id: str) -> Upload:
        async def _get(session: AsyncSession) -> Upload:
            return await _load_upload(session, upload_id)

        return await self.storage.run(_get, "upload.get")

    async def list_created_since(
        self, since: datetime, exclude_id: str | None = None
    ) -> list[Upload]:
        async def _list(session: AsyncSession) -> list[Upload]:
            query = select(Upload).where(Upload.created_at >= since)
            if exclude_id:
                query = query.where(Upload.id != exclude_id)
            result = await session.execute(query.order_by(Upload.created_at))
            return list(result.scalars().all())

        return await self.storage.run(_list, "upload.list_created_since")

    async def find_by_remote_unique_id(self, unique_id: str) -> tuple[Upload, int] | None:
        """Locate the upload and row index whose gateway unique id matches."""

        async def _find(session: AsyncSession) -> tuple[Upload, int] | None:
            # Text pre-filter on the JSON column, exact match below
            query = select(Upload).where(cast(Upload.rows, String).contains(unique_id))
            for upload in (await session.execute(query)).scalars():
                for index, row in enumerate(upload.rows or []):
                    if ((row or {}).get("emp") or {}).get("unique_id") == unique_id:
                        return upload, index
            return None

        return await self.storage.run(_find, "upload.find_by_remote_unique_id")

    async def patch_rows(
        self,
        upload_id: str,
        patches: dict[int, dict[str, Any]],
        recount: bool = False,
        fields: dict[str, Any] | None = None,
    ) -> Upload:
        """
        Merge field patches into individual rows under a row lock.

        Only the patched keys of the addressed rows change; every other row is
        written back as stored. With ``recount`` the aggregate counters are
        recomputed from the merged rows. ``fields`` sets additional upload
        columns in the same transaction.
        """

        async def _patch(session: AsyncSession) -> Upload:
            upload = await _load_upload(session, upload_id, for_update=True)
            records = upload.records or []
            rows = [dict(row or {}) for row in normalize_rows(records, upload.rows)]

            for index, patch in patches.items():
                if 0 <= index < len(rows):
                    rows[index].update(patch)

            upload.rows = rows
            if recount:
                for key, value in count_statuses(rows).as_upload_fields().items():
                    setattr(upload, key, value)
            for key, value in (fields or {}).items():
                setattr(upload, key, value)
            upload.updated_at = utc_now()
            return upload

        return await self.storage.run(_patch, "upload.patch_rows")

    async def replace_records(
        self,
        upload_id: str,
        records: list[dict[str, Any]],
        rows: list[dict[str, Any]],
        fields: dict[str, Any] | None = None,
    ) -> Upload:
        """Replace records and rows together; counters are recomputed."""
        if len(records) != len(rows):
            raise ValueError(
                f"records/rows length mismatch ({len(records)} != {len(rows)})"
            )

        async def _replace(session: AsyncSession) -> Upload:
            upload = await _load_upload(session, upload_id, for_update=True)
            upload.records = list(records)
            upload.rows = list(rows)
            for key, value in count_statuses(rows).as_upload_fields().items():
                setattr(upload, key, value)
            for key, value in (fields or {}).items():
                setattr(upload, key, value)
            upload.updated_at = utc_now()
            return upload

        return await self.storage.run(_replace, "upload.replace_records")


class TransactionStore:
    """Read access to the gateway ground-truth cache."""

    def __init__(self, storage: StorageClient):
        self.storage = storage

    async def find_by_accounts(
        self, accounts: Iterable[str], since: datetime, until: datetime
    ) -> list[GatewayTransaction]:
        values = sorted(set(accounts))
        if not values:
            return []

        async def _find(session: AsyncSession) -> list[GatewayTransaction]:
            found: list[GatewayTransaction] = []
            for chunk in _chunks(values):
                result = await session.execute(
                    select(GatewayTransaction).where(
                        GatewayTransaction.bank_account_number.in_(chunk),
                        GatewayTransaction.transaction_date >= since,
                        GatewayTransaction.transaction_date <= until,
                    )
                )
                found.extend(result.scalars().all())
            return found

        return await self.storage.run(_find, "transactions.find_by_accounts")

    async def get_by_unique_ids(self, unique_ids: Iterable[str]) -> list[GatewayTransaction]:
        values = sorted({uid for uid in unique_ids if uid})
        if not values:
            return []

        async def _get(session: AsyncSession) -> list[GatewayTransaction]:
            found: list[GatewayTransaction] = []
            for chunk in _chunks(values):
                result = await session.execute(
                    select(GatewayTransaction).where(GatewayTransaction.unique_id.in_(chunk))
                )
                found.extend(result.scalars().all())
            return found

        return await self.storage.run(_get, "transactions.get_by_unique_ids")

    async def list_chargebacks(self, reason_codes: Iterable[str] | None = None) -> list[Chargeback]:
        codes = sorted(set(reason_codes)) if reason_codes is not None else None

        async def _list(session: AsyncSession) -> list[Chargeback]:
            query = select(Chargeback)
            if codes is not None:
                query = query.where(Chargeback.reason_code.in_(codes))
            result = await session.execute(query.order_by(Chargeback.created_at))
            return list(result.scalars().all())

        return await self.storage.run(_list, "transactions.list_chargebacks")


class BlacklistStore:
    """Deny-list lookups and idempotent inserts."""

    def __init__(self, storage: StorageClient):
        self.storage = storage

    async def find_matches(
        self, ibans: set[str], emails: set[str], names: set[str]
    ) -> list[BlacklistEntry]:
        conditions = []
        if ibans:
            conditions.append(BlacklistEntry.iban.in_(sorted(ibans)))
        if emails:
            conditions.append(BlacklistEntry.email.in_(sorted(emails)))
        if names:
            conditions.append(BlacklistEntry.name.in_(sorted(names)))
        if not conditions:
            return []

        async def _find(session: AsyncSession) -> list[BlacklistEntry]:
            result = await session.execute(select(BlacklistEntry).where(or_(*conditions)))
            return list(result.scalars().all())

        return await self.storage.run(_find, "blacklist.find_matches")

    async def list_bic_patterns(self) -> list[str]:
        async def _list(session: AsyncSession) -> list[str]:
            result = await session.execute(
                select(BlacklistEntry.bic).where(BlacklistEntry.bic.isnot(None))
            )
            return [bic for bic in result.scalars().all() if bic]

        return await self.storage.run(_list, "blacklist.list_bic_patterns")

    async def add_if_absent(self, entry: BlacklistEntry) -> bool:
        """Insert ``entry`` unless its IBAN is already listed. Returns True when added."""

        async def _add(session: AsyncSession) -> bool:
            if entry.iban:
                existing = await session.execute(
                    select(BlacklistEntry.id).where(BlacklistEntry.iban == entry.iban)
                )
                if existing.scalar_one_or_none() is not None:
                    return False
            session.add(entry)
            await session.flush()
            return True

        return await self.storage.run(_add, "blacklist.add")

    async def remove_iban(self, iban: str) -> bool:
        async def _remove(session: AsyncSession) -> bool:
            result = await session.execute(
                delete(BlacklistEntry).where(BlacklistEntry.iban == iban)
            )
            return result.rowcount > 0

        return await self.storage.run(_remove, "blacklist.remove")


class SettingsStore:
    """Custom field mapping and merchant account configuration."""

    FIELD_MAPPING_KEY = "field_mapping"

    def __init__(self, storage: StorageClient):
        self.storage = storage

    async def get_field_mapping(self) -> dict[str, str] | None:
        async def _get(session: AsyncSession) -> dict[str, str] | None:
            setting = await session.get(AppSetting, self.FIELD_MAPPING_KEY)
            if setting is None or not setting.value:
                return None
            return dict(setting.value)

        return await self.storage.run(_get, "settings.get_field_mapping")

    async def save_field_mapping(self, mapping: dict[str, str]) -> None:
        async def _save(session: AsyncSession) -> None:
            setting = await session.get(AppSetting, self.FIELD_MAPPING_KEY)
            if setting is None:
                session.add(AppSetting(key=self.FIELD_MAPPING_KEY, value=dict(mapping)))
            else:
                setting.value = dict(mapping)

        await self.storage.run(_save, "settings.save_field_mapping")

    async def get_account(self, account_id: str) -> MerchantAccount | None:
        async def _get(session: AsyncSession) -> MerchantAccount | None:
            return await session.get(MerchantAccount, account_id)

        return await self.storage.run(_get, "settings.get_account")
