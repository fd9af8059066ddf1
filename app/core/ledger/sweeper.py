"""Overdue sweep: marks Pending installments past their due date as Overdue."""

import logging
from datetime import date, timedelta
from typing import Optional

from app.core.enums import AuditAction
from app.core.ledger.collaborators import AuditSink
from app.core.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


def overdue_cutoff(today: date, threshold_days: Optional[int] = None) -> date:
    """Installments due strictly before the cutoff are overdue."""
    return today - timedelta(days=threshold_days or 0)


class OverdueSweeper:
    def __init__(self, store: LedgerStore, audit: AuditSink) -> None:
        self.store = store
        self.audit = audit

    async def sweep(self, threshold_days: Optional[int] = None, today: Optional[date] = None) -> int:
        if threshold_days is not None and threshold_days < 0:
            raise ValueError("threshold_days must not be negative")
        cutoff = overdue_cutoff(today or date.today(), threshold_days)
        async with self.store.unit_of_work() as uow:
            count = await uow.promote_overdue(cutoff)
        logger.info("Overdue sweep (cutoff %s) marked %d installment(s) overdue", cutoff, count)
        if count:
            await self.audit.record(
                AuditAction.OVERDUE_SWEEP,
                "Installment",
                cutoff,
                after={"marked_overdue": count, "cutoff": cutoff},
                note=f"{count} installment(s) marked overdue",
                performed_by="System",
            )
        return count
