"""Unit tests for Auditor."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from inventorybus.audit import Auditor
from inventorybus.events import AuditRecord, AuditStatus
from inventorybus.exceptions import PublishError


@pytest.fixture
def publisher() -> MagicMock:
    publisher = MagicMock()
    publisher.publish_event = AsyncMock()
    return publisher


class TestAuditor:
    @pytest.mark.asyncio
    async def test_record_publishes_info(self, publisher: MagicMock) -> None:
        auditor = Auditor(publisher)

        record = await auditor.record("orderCreated", "orderEvents", "success", "Stock reserved")

        publisher.publish_event.assert_awaited_once_with(record)
        assert isinstance(record, AuditRecord)
        assert record.status is AuditStatus.SUCCESS
        assert record.get_routing_key() == "audit.info"
        assert auditor.recorded_count == 1

    @pytest.mark.asyncio
    async def test_record_error_routes_to_audit_error(self, publisher: MagicMock) -> None:
        auditor = Auditor(publisher)

        record = await auditor.record("orderCreated", "orderEvents", AuditStatus.ERROR, "No stock")

        assert record.get_routing_key() == "audit.error"

    @pytest.mark.asyncio
    async def test_invalid_status_raises(self, publisher: MagicMock) -> None:
        auditor = Auditor(publisher)

        with pytest.raises(ValueError):
            await auditor.record("orderCreated", "orderEvents", "maybe", "?")

        publisher.publish_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged_not_raised(
        self,
        publisher: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        publisher.publish_event.side_effect = PublishError("audit.events", "audit.info", "down")
        auditor = Auditor(publisher)

        with caplog.at_level(logging.WARNING, logger="inventorybus.audit"):
            record = await auditor.record("orderCreated", "orderEvents", "success", "ok")

        assert record.action == "orderCreated"
        assert auditor.failed_count == 1
        assert auditor.recorded_count == 0
        assert any("Failed to publish audit record" in r.message for r in caplog.records)
