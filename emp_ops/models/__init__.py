"""Database models for the EMP operations backend."""

from emp_ops.models.blacklist import BlacklistEntry
from emp_ops.models.gateway import Chargeback, GatewayTransaction
from emp_ops.models.settings import AppSetting, MerchantAccount
from emp_ops.models.upload import Upload

__all__ = [
    "AppSetting",
    "BlacklistEntry",
    "Chargeback",
    "GatewayTransaction",
    "MerchantAccount",
    "Upload",
]
