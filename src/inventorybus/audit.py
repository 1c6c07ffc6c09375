"""Audit trail records published to the audit exchange."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from inventorybus.events import AuditRecord, AuditStatus
from inventorybus.exceptions import InventoryBusError

if TYPE_CHECKING:
    from inventorybus.publisher import Publisher

logger = logging.getLogger(__name__)


class Auditor:
    """
    Logs audit records and publishes them as ``audit.info`` / ``audit.error``.

    Auditing is best effort: a record that cannot be published is logged at
    warning level and the business operation carries on.

    Example:
        >>> auditor = Auditor(publisher)
        >>> await auditor.record("orderCreated", "orderEvents", "success", "Stock reserved")
    """

    def __init__(self, publisher: Publisher) -> None:
        self._publisher = publisher
        self._recorded = 0
        self._failed = 0

    @property
    def recorded_count(self) -> int:
        return self._recorded

    @property
    def failed_count(self) -> int:
        return self._failed

    async def record(
        self,
        action: str,
        source: str,
        status: AuditStatus | str,
        message: str,
    ) -> AuditRecord:
        """
        Record an audit entry.

        Args:
            action: What happened, e.g. "orderCreated"
            source: Where it came from, e.g. "orderEvents"
            status: "success" or "error"
            message: Human readable detail

        Returns:
            The record that was built, whether or not it was published
        """
        record = AuditRecord(
            action=action,
            source=source,
            status=AuditStatus(status),
            message=message,
        )

        log_level = logging.WARNING if record.status is AuditStatus.ERROR else logging.INFO
        logger.log(
            log_level,
            f"Audit: {action} - {source} - {record.status} - {message}",
            extra={
                "action": action,
                "source": source,
                "status": record.status.value,
                "event_id": str(record.event_id),
            },
        )

        try:
            await self._publisher.publish_event(record)
        except InventoryBusError as e:
            self._failed += 1
            logger.warning(
                f"Failed to publish audit record {action}: {e}",
                extra={
                    "action": action,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
        else:
            self._recorded += 1

        return record


__all__ = ["Auditor"]
