"""
Interval Store

Data access for reservation intervals. Works inside the caller's session so
a read-check-write sequence stays in one transaction.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.models import COUNTED_LEVELS, CommitmentLevel, OrderLine, ReservationInterval
from rental_engine.transitions import check_level_transition

logger = logging.getLogger(__name__)


class IntervalStore:

    def __init__(self, session: AsyncSession):
        self.session = session

    def provisional_for(self, line: OrderLine, at: datetime) -> ReservationInterval:
        """Attach a PROVISIONAL interval mirroring the line's product, quantity and window."""
        interval = ReservationInterval(
            id=str(uuid4()),
            order_id=line.order_id,
            product_id=line.product_id,
            quantity=line.quantity,
            start_at=line.start_at,
            end_at=line.end_at,
            level=CommitmentLevel.PROVISIONAL,
            created_at=at,
            updated_at=at,
        )
        line.interval = interval
        return interval

    async def reserved_units(
        self,
        product_id: str,
        start: datetime,
        end: datetime,
        exclude_order_id: Optional[str] = None,
    ) -> int:
        """Sum of COMMITTED/ACTIVE quantities overlapping [start, end)."""
        # Half-open windows: [a.start, a.end) meets [b.start, b.end) iff a.start < b.end and b.start < a.end
        stmt = select(func.coalesce(func.sum(ReservationInterval.quantity), 0)).where(
            ReservationInterval.product_id == product_id,
            ReservationInterval.level.in_(COUNTED_LEVELS),
            ReservationInterval.start_at < end,
            ReservationInterval.end_at > start,
        )
        if exclude_order_id is not None:
            stmt = stmt.where(ReservationInterval.order_id != exclude_order_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    def transition(
        self,
        intervals: Iterable[ReservationInterval],
        from_levels: Sequence[CommitmentLevel],
        target: CommitmentLevel,
        at: datetime,
    ) -> int:
        """Move every interval currently in from_levels to target; returns how many moved."""
        moved = 0
        for interval in intervals:
            if interval.level not in from_levels:
                continue
            check_level_transition(interval.level, target)
            interval.level = target
            interval.updated_at = at
            if target is CommitmentLevel.RELEASED:
                interval.released_at = at
            moved += 1
        logger.debug(f"{moved} interval(s) moved to {target.value}")
        return moved
