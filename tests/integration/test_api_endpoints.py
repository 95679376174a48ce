"""API tests for the operator endpoints and the gateway callback."""

import hashlib
from urllib.parse import urlencode

import pytest
from jose import jwt

from emp_ops.core.config import settings
from emp_ops.db.session import engine
from emp_ops.integrations.adapters.mock import declined
from tests.factories import ground_truth_transaction, iban_for

API = settings.API_V1_PREFIX


def signature_for(unique_id: str) -> str:
    return hashlib.sha1(f"{unique_id}{settings.EMP_GENESIS_PASSWORD}".encode()).hexdigest()


class TestOperatorBoundary:
    """Bearer token and role checks."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client, upload_factory):
        upload = await upload_factory(count=1)
        response = await client.post(f"{API}/emp/submit-batch/{upload.id}")
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_1001"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get(
            f"{API}/emp/settings/mapping", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_refresh_tokens_are_rejected(self, client):
        token = jwt.encode(
            {"sub": "operator-1", "type": "refresh", "role": "super_owner"},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
        )
        response = await client.get(
            f"{API}/emp/settings/mapping", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_read_role_cannot_write(self, client, read_headers, upload_factory, gateway):
        upload = await upload_factory(count=1)
        response = await client.post(f"{API}/emp/submit-batch/{upload.id}", headers=read_headers)
        assert response.status_code == 403
        assert gateway.submissions == []

    @pytest.mark.asyncio
    async def test_read_role_can_read(self, client, read_headers):
        response = await client.get(f"{API}/emp/settings/mapping", headers=read_headers)
        assert response.status_code == 200
        assert response.json() == {"mapping": None}


class TestSubmitAndReconcile:
    @pytest.mark.asyncio
    async def test_submit_batch(self, client, write_headers, upload_factory, gateway):
        upload = await upload_factory(count=3)
        gateway.script(f"sdd-{upload.id}-2", declined())

        response = await client.post(
            f"{API}/emp/submit-batch/{upload.id}",
            headers=write_headers,
            json={"concurrency": 2, "chunkSize": 10},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert (data["processed"], data["approved"], data["errors"], data["pending"]) == (3, 2, 1, 0)
        assert data["groups"] == 2
        assert data["errorDetails"] == [{"row": 2, "message": "Transaction declined"}]

    @pytest.mark.asyncio
    async def test_submit_without_body_uses_defaults(self, client, write_headers, upload_factory):
        upload = await upload_factory(count=2)
        response = await client.post(f"{API}/emp/submit-batch/{upload.id}", headers=write_headers)
        assert response.status_code == 200
        assert response.json()["groups"] == 1

    @pytest.mark.asyncio
    async def test_unknown_upload(self, client, write_headers):
        response = await client.post(f"{API}/emp/submit-batch/missing", headers=write_headers)
        assert response.status_code == 404
        assert response.json()["code"] == "RES_4001"

    @pytest.mark.asyncio
    async def test_empty_upload(self, client, write_headers, upload_factory):
        upload = await upload_factory(records=[])
        response = await client.post(f"{API}/emp/submit-batch/{upload.id}", headers=write_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_reconcile_after_submit(self, client, write_headers, upload_factory):
        upload = await upload_factory(count=2)
        await client.post(f"{API}/emp/submit-batch/{upload.id}", headers=write_headers)

        response = await client.post(f"{API}/emp/reconcile/{upload.id}", headers=write_headers)

        assert response.status_code == 200
        report = response.json()["report"]
        assert (report["total"], report["submitted"], report["approved"]) == (2, 2, 2)
        assert report["missingInEmp"] == []

    @pytest.mark.asyncio
    async def test_reconcile_recent_with_nothing_to_do(self, client, write_headers):
        response = await client.post(f"{API}/emp/reconcile-recent", headers=write_headers)
        data = response.json()
        assert response.status_code == 200
        assert data["results"] == []
        assert data["message"] == f"No uploads found in the last {settings.RECONCILE_RECENT_HOURS} hours"

    @pytest.mark.asyncio
    async def test_reconcile_schedule(self, client, read_headers):
        response = await client.get(f"{API}/emp/reconcile-schedule", headers=read_headers)
        assert response.status_code == 200
        assert response.json() == {"running": False, "jobs": []}


class TestUploadEndpoints:
    @pytest.mark.asyncio
    async def test_validation_summary(self, client, read_headers, upload_factory):
        upload = await upload_factory(count=2, rows=[{"status": "approved"}])

        response = await client.get(f"{API}/emp/uploads/{upload.id}/validation", headers=read_headers)

        data = response.json()
        assert data["valid"] is True
        assert data["recordCount"] == 2
        assert data["rowStatuses"] == ["approved", "pending"]

    @pytest.mark.asyncio
    async def test_delete_invalid(self, client, read_headers, upload_factory):
        upload = await upload_factory(count=1)
        response = await client.delete(
            f"{API}/emp/uploads/delete-invalid/{upload.id}", headers=read_headers
        )
        assert response.status_code == 200
        assert response.json()["deletedCount"] == 0

    @pytest.mark.asyncio
    async def test_filter_chargebacks(self, client, write_headers, upload_factory, blacklist_service):
        upload = await upload_factory(count=3)
        await blacklist_service.add_to_blacklist(iban_for(1))

        response = await client.post(
            f"{API}/emp/uploads/filter-chargebacks/{upload.id}", headers=write_headers
        )

        data = response.json()
        assert response.status_code == 200
        assert data["message"] == "Removed 1 row(s) (0 chargebacks, 1 blacklisted)"
        assert data["remainingCount"] == 2


class TestComplianceEndpoint:
    @pytest.mark.asyncio
    async def test_check(self, client, read_headers, add_ground_truth):
        await add_ground_truth(ground_truth_transaction(iban_for(1), days_ago=3, unique_id="g1"))

        response = await client.post(
            f"{API}/emp/compliance/check",
            headers=read_headers,
            json={"ibans": [iban_for(0), iban_for(1)]},
        )

        data = response.json()
        assert data["checkedCount"] == 2
        assert data["violatedIbans"] == [iban_for(1)]
        violation = data["violations"][0]
        assert (violation["rowIndex"], violation["daysAgo"], violation["source"]) == (1, 3, "reconcile")

    @pytest.mark.asyncio
    async def test_window_is_validated(self, client, read_headers):
        response = await client.post(
            f"{API}/emp/compliance/check",
            headers=read_headers,
            json={"ibans": [iban_for(0)], "windowDays": 0},
        )
        assert response.status_code == 422


class TestBlacklistEndpoints:
    @pytest.mark.asyncio
    async def test_add_then_conflict(self, client, write_headers):
        body = {"iban": "de89 3704 0044 0532 0130 00", "chargebackCode": "AC04"}

        first = await client.post(f"{API}/blacklist/add", headers=write_headers, json=body)
        second = await client.post(f"{API}/blacklist/add", headers=write_headers, json=body)

        assert first.status_code == 200
        assert first.json() == {
            "success": True,
            "message": "IBAN successfully blacklisted",
            "iban": "DE89****3000",
        }
        assert second.status_code == 409
        assert second.json()["message"] == "IBAN already blacklisted"

    @pytest.mark.asyncio
    async def test_add_requires_iban(self, client, write_headers):
        response = await client.post(f"{API}/blacklist/add", headers=write_headers, json={"iban": " "})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_check(self, client, read_headers, blacklist_service):
        await blacklist_service.add_to_blacklist(iban_for(4), email="fraud@example.com")

        response = await client.post(
            f"{API}/blacklist/check",
            headers=read_headers,
            json={"ibans": [iban_for(4), iban_for(5)], "emails": ["FRAUD@example.com"]},
        )

        data = response.json()
        assert data["blacklistedIbans"] == [iban_for(4)]
        assert data["count"] == 1
        assert data["matches"]["emails"] == ["fraud@example.com"]

    @pytest.mark.asyncio
    async def test_batch_from_chargebacks(self, client, write_headers):
        response = await client.post(f"{API}/blacklist/batch-from-chargebacks", headers=write_headers)
        assert response.status_code == 200
        assert response.json()["processed"] == 0


class TestSettingsEndpoints:
    @pytest.mark.asyncio
    async def test_save_and_read_mapping(self, client, write_headers):
        response = await client.post(
            f"{API}/emp/settings/mapping",
            headers=write_headers,
            json={"mapping": {"amount": " Betrag ", "iban": "", "name": None}},
        )
        assert response.json() == {"ok": True}

        response = await client.get(f"{API}/emp/settings/mapping", headers=write_headers)
        assert response.json() == {"mapping": {"amount": "Betrag"}}

    @pytest.mark.asyncio
    async def test_invalid_mapping(self, client, write_headers):
        response = await client.post(
            f"{API}/emp/settings/mapping", headers=write_headers, json={"mapping": ["amount"]}
        )
        assert response.status_code == 400


class TestGatewayNotification:
    URL = f"{API}/emp/notifications/emerchantpay"

    @pytest.mark.asyncio
    async def test_signed_form_notification(self, client, upload_factory, upload_store):
        upload = await upload_factory(
            count=1, rows=[{"status": "submitted", "emp": {"unique_id": "uid-77"}}]
        )
        body = urlencode(
            {"unique_id": "uid-77", "status": "approved", "signature": signature_for("uid-77")}
        )

        response = await client.post(
            self.URL,
            content=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<unique_id>uid-77</unique_id>" in response.text
        stored = await upload_store.get(upload.id)
        assert stored.rows[0]["status"] == "approved"

    @pytest.mark.asyncio
    async def test_json_notification_for_unknown_transaction(self, client):
        response = await client.post(
            self.URL,
            json={"uniqueId": "uid-x", "status": "approved", "signature": signature_for("uid-x")},
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_bad_signature(self, client):
        response = await client.post(
            self.URL, json={"unique_id": "uid-1", "status": "approved", "signature": "deadbeef"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_fields(self, client):
        response = await client.post(self.URL, json={"unique_id": "uid-1"})
        assert response.status_code == 400


class TestServiceEndpoints:
    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["docs"] == f"{API}/docs"

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "emp_batch_rows_total" in response.text

    @pytest.mark.asyncio
    async def test_health(self, client):
        try:
            response = await client.get("/health")
        finally:
            await engine.dispose()

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["gateway_adapter"] == settings.GATEWAY_ADAPTER
