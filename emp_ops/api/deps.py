"""API dependencies for dependency injection."""

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from emp_ops.core.config import settings
from emp_ops.core.errors import ForbiddenError, UnauthorizedError
from emp_ops.core.security import decode_token
from emp_ops.db.session import AsyncSessionLocal, engine
from emp_ops.db.storage import StorageClient
from emp_ops.db.stores import BlacklistStore, SettingsStore, TransactionStore, UploadStore
from emp_ops.integrations.adapters.factory import get_gateway
from emp_ops.integrations.interfaces.base import PaymentGateway
from emp_ops.services.batch_submitter import BatchSubmitter
from emp_ops.services.blacklist import BlacklistService, ChargebackFilter
from emp_ops.services.compliance import ComplianceGate
from emp_ops.services.reconciler import Reconciler
from emp_ops.services.reconciliation import ReconciliationService
from emp_ops.services.upload_maintenance import UploadMaintenance

# Security audit logger - separate from general logging for SIEM integration
auth_logger = logging.getLogger("security.auth")

security = HTTPBearer(auto_error=False)


@dataclass
class Operator:
    """The authenticated operator behind a request."""

    id: str
    role: str | None = None

    @property
    def can_write(self) -> bool:
        return self.role in settings.WRITE_ACCESS_ROLES


# =============================================================================
# Storage and gateway
# =============================================================================


def get_storage() -> StorageClient:
    return StorageClient(AsyncSessionLocal, engine)


def get_payment_gateway() -> PaymentGateway:
    return get_gateway()


StorageDep = Annotated[StorageClient, Depends(get_storage)]
GatewayDep = Annotated[PaymentGateway, Depends(get_payment_gateway)]


def get_upload_store(storage: StorageDep) -> UploadStore:
    return UploadStore(storage)


def get_transaction_store(storage: StorageDep) -> TransactionStore:
    return TransactionStore(storage)


def get_blacklist_store(storage: StorageDep) -> BlacklistStore:
    return BlacklistStore(storage)


def get_settings_store(storage: StorageDep) -> SettingsStore:
    return SettingsStore(storage)


Uploads = Annotated[UploadStore, Depends(get_upload_store)]
Transactions = Annotated[TransactionStore, Depends(get_transaction_store)]
SettingsStoreDep = Annotated[SettingsStore, Depends(get_settings_store)]


# =============================================================================
# Services
# =============================================================================


def get_compliance_gate(uploads: Uploads, transactions: Transactions) -> ComplianceGate:
    return ComplianceGate(transactions, uploads)


def get_blacklist_service(
    store: Annotated[BlacklistStore, Depends(get_blacklist_store)],
) -> BlacklistService:
    return BlacklistService(store)


def get_batch_submitter(
    uploads: Uploads,
    settings_store: SettingsStoreDep,
    gateway: GatewayDep,
    compliance: Annotated[ComplianceGate, Depends(get_compliance_gate)],
) -> BatchSubmitter:
    return BatchSubmitter(uploads, settings_store, gateway, compliance)


def get_reconciliation_service(uploads: Uploads, gateway: GatewayDep) -> ReconciliationService:
    return ReconciliationService(uploads, Reconciler(gateway))


def get_chargeback_filter(
    uploads: Uploads,
    transactions: Transactions,
    blacklist: Annotated[BlacklistService, Depends(get_blacklist_service)],
) -> ChargebackFilter:
    return ChargebackFilter(uploads, transactions, blacklist)


def get_upload_maintenance(uploads: Uploads, settings_store: SettingsStoreDep) -> UploadMaintenance:
    return UploadMaintenance(uploads, settings_store)


# =============================================================================
# Operator boundary
# =============================================================================


async def require_session(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Operator:
    """Any valid operator token."""
    if credentials is None:
        raise UnauthorizedError()

    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("type") != "access" or not payload.get("sub"):
        auth_logger.warning(
            "AUTH_FAILURE: invalid token",
            extra={"event_type": "auth.token.invalid", "path": request.url.path},
        )
        raise UnauthorizedError("Could not validate credentials")

    return Operator(id=str(payload["sub"]), role=payload.get("role"))


async def require_write_access(
    request: Request,
    operator: Annotated[Operator, Depends(require_session)],
) -> Operator:
    """Operators allowed to submit, reconcile and modify uploads."""
    if not operator.can_write:
        auth_logger.warning(
            f"AUTH_FAILURE: role_required - operator={operator.id} path={request.url.path}",
            extra={
                "event_type": "auth.role.denied",
                "operator_id": operator.id,
                "role": operator.role,
                "path": request.url.path,
                "method": request.method,
            },
        )
        raise ForbiddenError("Write access required")
    return operator


# Type aliases for commonly used dependencies
SessionOperator = Annotated[Operator, Depends(require_session)]
WriteOperator = Annotated[Operator, Depends(require_write_access)]
