"""Tests for the reconcile scheduler and gateway adapter selection."""

import pytest
from apscheduler.triggers.cron import CronTrigger

from emp_ops.integrations.adapters.factory import AdapterFactory, get_gateway
from emp_ops.integrations.adapters.mock import MockGateway
from emp_ops.scheduler import get_scheduler_status, start_scheduler
from emp_ops.scheduler.reconcile_scheduler import create_cron_trigger


class TestCronTrigger:
    def test_five_field_expression(self):
        trigger = create_cron_trigger("*/30 * * * *", "UTC")
        assert isinstance(trigger, CronTrigger)
        assert "minute='*/30'" in str(trigger)

    @pytest.mark.parametrize("expression", ["*/30 * * *", "0 0 * * * *", ""])
    def test_invalid_expression(self, expression):
        with pytest.raises(ValueError):
            create_cron_trigger(expression, "UTC")


class TestSchedulerLifecycle:
    @pytest.mark.asyncio
    async def test_empty_cron_leaves_scheduler_disabled(self):
        await start_scheduler()
        assert get_scheduler_status() == {"running": False, "jobs": []}


class TestAdapterFactory:
    @pytest.mark.asyncio
    async def test_mock_adapter_is_a_singleton(self):
        try:
            gateway = get_gateway()
            assert isinstance(gateway, MockGateway)
            assert get_gateway() is gateway
        finally:
            await AdapterFactory.close()
        assert AdapterFactory._instance is None
