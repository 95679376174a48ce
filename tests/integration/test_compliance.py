"""Integration tests for the IBAN cooldown gate."""

from datetime import datetime, timedelta, timezone

import pytest

from emp_ops.services.compliance import (
    SOURCE_EMP_SUBMISSION,
    SOURCE_RECONCILE,
    SOURCE_UPLOAD,
    IbanRef,
    ThresholdViolation,
    extract_ibans_from_records,
    violation_message,
)
from tests.factories import ground_truth_transaction, iban_for, make_record

IBAN_A = "DE89370400440532013000"
IBAN_B = "AT611904300234573201"


class TestCooldownGroundTruth:
    """Prior debits recorded by the gateway."""

    @pytest.mark.asyncio
    async def test_recent_debit_is_a_violation(self, compliance, add_ground_truth):
        await add_ground_truth(ground_truth_transaction(IBAN_A, days_ago=10, unique_id="g1"))

        result = await compliance.check_threshold([IbanRef(IBAN_A, 0), IbanRef(IBAN_B, 1)], window_days=30)

        assert result.checked_count == 2
        assert result.violated_ibans == {IBAN_A}
        violation = result.violations[0]
        assert violation.row_index == 0
        assert violation.days_ago == 10
        assert violation.source == SOURCE_RECONCILE
        assert violation.filename is None

    @pytest.mark.asyncio
    async def test_last_day_inside_window(self, compliance, add_ground_truth):
        await add_ground_truth(ground_truth_transaction(IBAN_A, days_ago=29, unique_id="g1"))

        result = await compliance.check_threshold([IbanRef(IBAN_A, 0)], window_days=30)

        assert result.violated_ibans == {IBAN_A}
        assert result.violations[0].days_ago == 29

    @pytest.mark.asyncio
    async def test_debit_outside_window_is_ignored(self, compliance, add_ground_truth):
        await add_ground_truth(ground_truth_transaction(IBAN_A, days_ago=31, unique_id="g1"))

        result = await compliance.check_threshold([IbanRef(IBAN_A, 0)], window_days=30)

        assert result.violations == []
        assert result.checked_count == 1

    @pytest.mark.asyncio
    async def test_input_is_normalized(self, compliance, add_ground_truth):
        await add_ground_truth(ground_truth_transaction(IBAN_A, days_ago=1, unique_id="g1"))

        result = await compliance.check_threshold([IbanRef(" de89 3704 0044 0532 0130 00", 3)])

        assert result.violated_ibans == {IBAN_A}
        assert result.violations[0].row_index == 3

    @pytest.mark.asyncio
    async def test_every_row_with_the_iban_is_reported(self, compliance, add_ground_truth):
        await add_ground_truth(ground_truth_transaction(IBAN_A, days_ago=2, unique_id="g1"))

        result = await compliance.check_threshold([IbanRef(IBAN_A, 0), IbanRef(IBAN_A, 4)])

        assert [v.row_index for v in result.violations] == [0, 4]
        assert result.violated_ibans == {IBAN_A}

    @pytest.mark.asyncio
    async def test_no_ibans(self, compliance):
        result = await compliance.check_threshold([IbanRef("  ", 0)])
        assert result.checked_count == 0
        assert result.violations == []


class TestCooldownOtherUploads:
    """Prior use inside other uploads."""

    @pytest.mark.asyncio
    async def test_unsent_rows_count_from_upload_creation(self, compliance, upload_factory):
        created = datetime.now(timezone.utc) - timedelta(days=3)
        await upload_factory(
            records=[make_record(iban=IBAN_A)],
            filename="march.csv",
            created_at=created,
            updated_at=created,
        )

        result = await compliance.check_threshold([IbanRef(IBAN_A, 0)])

        violation = result.violations[0]
        assert violation.source == SOURCE_UPLOAD
        assert violation.filename == "march.csv"
        assert violation.days_ago == 3

    @pytest.mark.asyncio
    async def test_sent_rows_count_as_gateway_submissions(self, compliance, upload_factory):
        created = datetime.now(timezone.utc) - timedelta(days=6)
        await upload_factory(
            records=[make_record(iban=IBAN_A)],
            rows=[{"status": "approved", "emp": {"unique_id": "u-1"}}],
            created_at=created,
            updated_at=created + timedelta(days=2),
        )

        result = await compliance.check_threshold([IbanRef(IBAN_A, 0)])

        violation = result.violations[0]
        assert violation.source == SOURCE_EMP_SUBMISSION
        assert violation.days_ago == 4

    @pytest.mark.asyncio
    async def test_excluded_upload_is_not_prior_use(self, compliance, upload_factory):
        upload = await upload_factory(records=[make_record(iban=IBAN_A)])

        result = await compliance.check_threshold(
            [IbanRef(IBAN_A, 0)], exclude_upload_id=upload.id
        )

        assert result.violations == []

    @pytest.mark.asyncio
    async def test_most_recent_occurrence_wins(self, compliance, upload_factory, add_ground_truth):
        await add_ground_truth(ground_truth_transaction(IBAN_A, days_ago=20, unique_id="g1"))
        created = datetime.now(timezone.utc) - timedelta(days=2)
        await upload_factory(
            records=[make_record(iban=IBAN_A)],
            filename="recent.csv",
            created_at=created,
            updated_at=created,
        )

        result = await compliance.check_threshold([IbanRef(IBAN_A, 0)])

        assert len(result.violations) == 1
        assert result.violations[0].source == SOURCE_UPLOAD
        assert result.violations[0].days_ago == 2

    @pytest.mark.asyncio
    async def test_old_uploads_are_outside_the_window(self, compliance, upload_factory):
        created = datetime.now(timezone.utc) - timedelta(days=45)
        await upload_factory(records=[make_record(iban=IBAN_A)], created_at=created, updated_at=created)

        result = await compliance.check_threshold([IbanRef(IBAN_A, 0)], window_days=30)

        assert result.violations == []


class TestHelpers:
    def test_extract_ibans_skips_rows_without_iban(self):
        records = [make_record(iban=iban_for(1)), {"Name": "No Account"}, make_record(iban=iban_for(2))]
        refs = extract_ibans_from_records(records)
        assert [(r.row_index, r.iban) for r in refs] == [(0, iban_for(1)), (2, iban_for(2))]

    def test_violation_message(self):
        violation = ThresholdViolation(
            iban=IBAN_A,
            row_index=0,
            days_ago=5,
            source=SOURCE_RECONCILE,
            date=datetime.now(timezone.utc),
        )
        assert violation_message(violation, 30) == "Invalid: IBAN processed 5 day(s) ago (must wait 30 days)"
