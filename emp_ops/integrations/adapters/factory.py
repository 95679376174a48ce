"""Adapter factory for the payment gateway."""

from emp_ops.core.config import settings
from emp_ops.integrations.interfaces.base import PaymentGateway


class AdapterFactory:
    """Creates the gateway adapter selected by ``GATEWAY_ADAPTER``."""

    _instance: PaymentGateway | None = None

    @classmethod
    def get_adapter(cls) -> PaymentGateway:
        """Get the configured gateway adapter (singleton)."""
        if cls._instance is None:
            cls._instance = cls._create_adapter()
        return cls._instance

    @classmethod
    def _create_adapter(cls) -> PaymentGateway:
        adapter_type = settings.GATEWAY_ADAPTER

        if adapter_type == "mock":
            from emp_ops.integrations.adapters.mock import MockGateway

            return MockGateway()

        elif adapter_type == "genesis":
            from emp_ops.integrations.adapters.genesis import GenesisGateway

            return GenesisGateway()

        else:
            raise ValueError(f"Unknown gateway adapter: {adapter_type}")

    @classmethod
    async def close(cls) -> None:
        if cls._instance is not None:
            await cls._instance.close()
        cls._instance = None


def get_gateway() -> PaymentGateway:
    """Convenience function to get the gateway adapter."""
    return AdapterFactory.get_adapter()
