"""Integration tests for batch submission against the mock gateway."""

import logging

import pytest

from emp_ops.core.errors import GatewayError, UploadBusyError, UploadEmptyError, UploadNotFoundError
from emp_ops.integrations.adapters.mock import MockGateway, declined, duplicate_error
from emp_ops.integrations.interfaces.base import GatewayResponse
from emp_ops.services.batch_submitter import ALL_PROCESSED_MESSAGE, BatchSubmitter, SubmitOptions
from emp_ops.services.field_aliases import mask_iban
from tests.factories import ground_truth_transaction, iban_for, make_record, merchant_account


def base_id(upload, index: int) -> str:
    return f"sdd-{upload.id}-{index}"


@pytest.fixture
def make_submitter(upload_store, settings_store, compliance, locks):
    def _make(gateway: MockGateway, **kwargs) -> BatchSubmitter:
        kwargs.setdefault("checkpoint_interval", 0.0)
        return BatchSubmitter(
            upload_store, settings_store, gateway, compliance, locks=locks, **kwargs
        )

    return _make


@pytest.fixture
def submitter(make_submitter, gateway) -> BatchSubmitter:
    return make_submitter(gateway)


class TestSubmitBatch:
    """Happy paths and row selection."""

    @pytest.mark.asyncio
    async def test_all_rows_approved(self, submitter, gateway, upload_factory, upload_store):
        upload = await upload_factory(count=3)

        result = await submitter.submit_batch(upload.id)

        assert result.processed == 3
        assert (result.total, result.approved, result.errors, result.pending) == (3, 3, 0, 0)
        assert result.groups == 1
        assert result.message is None
        assert sorted(gateway.submitted_ids()) == sorted(base_id(upload, i) for i in range(3))

        stored = await upload_store.get(upload.id)
        assert stored.approved_count == 3
        assert stored.error_count == 0
        row = stored.rows[0]
        assert row["status"] == "approved"
        assert row["attempts"] == 1
        assert row["last_transaction_id"] == base_id(upload, 0)
        assert row["emp"]["unique_id"] == MockGateway.unique_id_for(base_id(upload, 0))
        assert row["request"]["iban"] == mask_iban(iban_for(0))

    @pytest.mark.asyncio
    async def test_run_milestones_are_logged(self, submitter, upload_factory, caplog):
        upload = await upload_factory(count=2)
        caplog.set_level(logging.DEBUG, logger="emp.submit")

        await submitter.submit_batch(upload.id)

        events = [getattr(r, "event_type", None) for r in caplog.records if r.name == "emp.submit"]
        assert events[0] == "submit.batch.started"
        assert "submit.checkpoint" in events
        assert events[-1] == "submit.batch.completed"

    @pytest.mark.asyncio
    async def test_second_run_submits_nothing(self, submitter, gateway, upload_factory):
        upload = await upload_factory(count=2)
        await submitter.submit_batch(upload.id)

        result = await submitter.submit_batch(upload.id)

        assert result.processed == 0
        assert result.approved == 2
        assert result.message == ALL_PROCESSED_MESSAGE
        assert len(gateway.submissions) == 2

    @pytest.mark.asyncio
    async def test_pending_gateway_status_leaves_row_submitted(
        self, make_submitter, upload_factory, upload_store
    ):
        gateway = MockGateway(default_status="pending_async")
        upload = await upload_factory(count=2)

        result = await make_submitter(gateway).submit_batch(upload.id)

        assert result.approved == 0
        assert result.pending == 2
        stored = await upload_store.get(upload.id)
        assert [r["status"] for r in stored.rows] == ["submitted", "submitted"]
        assert stored.rows[0]["emp"]["message"] == "Transaction successful"

    @pytest.mark.asyncio
    async def test_terminal_rows_are_skipped(self, submitter, gateway, upload_factory):
        upload = await upload_factory(
            count=4,
            rows=[{"status": "blacklisted"}, {"status": "approved"}, {"status": "error"}, {}],
        )

        result = await submitter.submit_batch(upload.id)

        assert result.processed == 1
        assert gateway.submitted_ids() == [base_id(upload, 3)]
        assert (result.approved, result.errors, result.blacklisted) == (2, 1, 1)

    @pytest.mark.asyncio
    async def test_max_records(self, submitter, gateway, upload_factory):
        upload = await upload_factory(count=5)

        result = await submitter.submit_batch(upload.id, SubmitOptions.from_request(max_records=2))

        assert result.processed == 2
        assert sorted(gateway.submitted_ids()) == [base_id(upload, 0), base_id(upload, 1)]
        assert result.pending == 3

    @pytest.mark.asyncio
    async def test_amount_filter_and_limit(self, submitter, gateway, upload_factory):
        amounts = ["9.99", "5.00", "9,99", "9.99"]
        records = [make_record(iban=iban_for(i), amount=a) for i, a in enumerate(amounts)]
        upload = await upload_factory(records=records)

        options = SubmitOptions.from_request(filter_by_amount="9.99", amount_limit=2, max_records=1)
        result = await submitter.submit_batch(upload.id, options)

        assert result.processed == 2
        assert sorted(gateway.submitted_ids()) == [base_id(upload, 0), base_id(upload, 2)]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded_by_group_size(self, make_submitter, upload_factory):
        gateway = MockGateway(latency=0.01)
        upload = await upload_factory(count=10)

        result = await make_submitter(gateway).submit_batch(
            upload.id, SubmitOptions.from_request(concurrency=3, chunk_size=20)
        )

        assert result.processed == 10
        assert result.groups == 4
        assert 1 <= gateway.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_twenty_rows_in_groups_of_five(self, make_submitter, upload_factory):
        gateway = MockGateway(latency=0.01)
        upload = await upload_factory(count=20)

        result = await make_submitter(gateway).submit_batch(
            upload.id, SubmitOptions.from_request(concurrency=5, chunk_size=5)
        )

        assert (result.processed, result.approved) == (20, 20)
        assert result.groups == 4
        assert gateway.max_in_flight <= 5

    @pytest.mark.asyncio
    async def test_groups_ignore_chunk_size(self, make_submitter, upload_factory):
        gateway = MockGateway(latency=0.01)
        upload = await upload_factory(count=10)

        result = await make_submitter(gateway).submit_batch(
            upload.id, SubmitOptions.from_request(concurrency=10, chunk_size=2)
        )

        assert result.groups == 1
        assert result.processed == 10

    @pytest.mark.asyncio
    async def test_account_descriptor_is_sent(self, submitter, gateway, upload_factory, add_ground_truth):
        await add_ground_truth(merchant_account(id="acct-1", dynamic_descriptor="ACME SPORTS"))
        upload = await upload_factory(count=1, account_id="acct-1")

        await submitter.submit_batch(upload.id)

        assert gateway.submissions[0].merchant_name == "ACME SPORTS"


class TestRowFailures:
    """Per-row errors never abort the run."""

    @pytest.mark.asyncio
    async def test_declined_row(self, submitter, gateway, upload_factory, upload_store):
        upload = await upload_factory(count=3)
        gateway.script(base_id(upload, 1), declined())

        result = await submitter.submit_batch(upload.id)

        assert (result.approved, result.errors) == (2, 1)
        assert [e.as_dict() for e in result.error_details] == [
            {"row": 1, "message": "Transaction declined"}
        ]
        stored = await upload_store.get(upload.id)
        assert stored.rows[1]["status"] == "error"
        assert stored.rows[1]["emp"]["status"] == "declined"
        assert stored.error_count == 1

    @pytest.mark.asyncio
    async def test_gateway_exception(self, submitter, gateway, upload_factory, upload_store):
        upload = await upload_factory(count=2)
        gateway.script(base_id(upload, 0), GatewayError("connection reset"))

        result = await submitter.submit_batch(upload.id)

        assert result.errors == 1
        stored = await upload_store.get(upload.id)
        assert stored.rows[0]["status"] == "error"
        assert stored.rows[0]["emp"]["message"] == "connection reset"
        assert stored.rows[1]["status"] == "approved"

    @pytest.mark.asyncio
    async def test_unmappable_row_is_not_sent(self, submitter, gateway, upload_factory, upload_store):
        records = [make_record(iban=iban_for(0)), make_record(IBAN="")]
        upload = await upload_factory(records=records)

        result = await submitter.submit_batch(upload.id)

        assert result.processed == 2
        assert gateway.submitted_ids() == [base_id(upload, 0)]
        stored = await upload_store.get(upload.id)
        assert stored.rows[1]["status"] == "error"
        assert stored.rows[1]["emp"]["message"] == "IBAN is required"

    @pytest.mark.asyncio
    async def test_cooldown_rows_marked_and_not_sent(
        self, submitter, gateway, upload_factory, upload_store, add_ground_truth
    ):
        upload = await upload_factory(count=3)
        await add_ground_truth(ground_truth_transaction(iban_for(1), days_ago=5, unique_id="g1"))

        result = await submitter.submit_batch(upload.id)

        assert base_id(upload, 1) not in gateway.submitted_ids()
        assert result.processed == 2
        assert (result.approved, result.errors) == (2, 1)
        stored = await upload_store.get(upload.id)
        assert stored.rows[1]["status"] == "error"
        assert stored.rows[1]["emp"]["message"] == (
            "Invalid: IBAN processed 5 day(s) ago (must wait 30 days)"
        )
        assert stored.error_count == 1


class TestDuplicateHandling:
    """Duplicate transaction ids: adopt the existing transaction or retry."""

    @pytest.mark.asyncio
    async def test_duplicate_then_retry_with_suffix(self, submitter, gateway, upload_factory, upload_store):
        upload = await upload_factory(count=1)
        gateway.script(base_id(upload, 0), duplicate_error())

        result = await submitter.submit_batch(upload.id)

        assert result.approved == 1
        assert gateway.submitted_ids() == [base_id(upload, 0), f"{base_id(upload, 0)}-r1"]
        assert gateway.reconcile_calls == [(None, base_id(upload, 0))]
        row = (await upload_store.get(upload.id)).rows[0]
        assert row["status"] == "approved"
        assert row["retry_count"] == 1
        assert row["duplicate_retries"] == 1
        assert row["attempts"] == 2
        assert row["base_transaction_id"] == base_id(upload, 0)
        assert row["last_transaction_id"] == f"{base_id(upload, 0)}-r1"

    @pytest.mark.asyncio
    async def test_two_duplicates_then_success(self, submitter, gateway, upload_factory, upload_store):
        upload = await upload_factory(count=1)
        gateway.script(base_id(upload, 0), duplicate_error(), duplicate_error())

        result = await submitter.submit_batch(upload.id)

        assert (result.approved, result.errors) == (1, 0)
        assert gateway.submitted_ids() == [
            base_id(upload, 0),
            f"{base_id(upload, 0)}-r1",
            f"{base_id(upload, 0)}-r2",
        ]
        row = (await upload_store.get(upload.id)).rows[0]
        assert row["status"] == "approved"
        assert row["retry_count"] == 2
        assert row["duplicate_retries"] == 2
        assert row["attempts"] == 3
        assert row["last_transaction_id"] == f"{base_id(upload, 0)}-r2"

    @pytest.mark.asyncio
    async def test_existing_transaction_is_adopted(self, submitter, gateway, upload_factory, upload_store):
        upload = await upload_factory(count=1)
        gateway.script(base_id(upload, 0), duplicate_error())
        gateway.set_reconcile_result(
            base_id(upload, 0),
            GatewayResponse(ok=True, status="approved", unique_id="existing-uid"),
        )

        result = await submitter.submit_batch(upload.id)

        assert result.approved == 1
        assert len(gateway.submissions) == 1
        row = (await upload_store.get(upload.id)).rows[0]
        assert row["emp"]["unique_id"] == "existing-uid"
        assert row["emp_status"] == "approved"
        assert row["emp"]["message"] == f"Existing transaction {base_id(upload, 0)} adopted (approved)"

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, make_submitter, gateway, upload_factory, upload_store):
        upload = await upload_factory(count=1)
        gateway.script(base_id(upload, 0), *[duplicate_error() for _ in range(4)])

        result = await make_submitter(gateway, max_duplicate_retries=3).submit_batch(upload.id)

        assert result.errors == 1
        assert len(gateway.submissions) == 4
        assert gateway.submitted_ids()[-1] == f"{base_id(upload, 0)}-r3"
        row = (await upload_store.get(upload.id)).rows[0]
        assert row["status"] == "error"
        assert row["attempts"] == 4
        assert row["duplicate_retries"] == 4
        assert row["emp"]["message"].startswith(
            "Duplicate transaction_id retries exhausted after 4 attempts"
        )

    @pytest.mark.asyncio
    async def test_retry_suffix_survives_a_new_run(self, submitter, gateway, upload_factory):
        upload = await upload_factory(
            count=1,
            rows=[
                {
                    "status": "submitted",
                    "retry_count": 2,
                    "base_transaction_id": "sdd-legacy-0",
                }
            ],
        )

        await submitter.submit_batch(upload.id)

        assert gateway.submitted_ids() == ["sdd-legacy-0-r2"]


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_unknown_upload(self, submitter):
        with pytest.raises(UploadNotFoundError):
            await submitter.submit_batch("no-such-upload")

    @pytest.mark.asyncio
    async def test_empty_upload(self, submitter, upload_factory):
        upload = await upload_factory(records=[])
        with pytest.raises(UploadEmptyError):
            await submitter.submit_batch(upload.id)

    @pytest.mark.asyncio
    async def test_busy_upload(self, submitter, gateway, upload_factory, locks):
        upload = await upload_factory(count=1)

        async with locks.hold(upload.id, "reconcile"):
            with pytest.raises(UploadBusyError):
                await submitter.submit_batch(upload.id)

        assert gateway.submissions == []
