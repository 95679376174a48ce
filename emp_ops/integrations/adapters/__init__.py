"""Gateway adapter implementations."""

from emp_ops.integrations.adapters.factory import AdapterFactory, get_gateway
from emp_ops.integrations.adapters.mock import MockGateway

__all__ = [
    "MockGateway",
    "get_gateway",
    "AdapterFactory",
]
