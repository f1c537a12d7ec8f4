"""Monthly admin statistics.

Counts are taken as of the last second of the month and stored per
``(year, month)``; recomputing a month overwrites its row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Optional, Tuple

from ExtRegistry.Maintenance.catalog.models import AdminStatistics

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.catalog.store import SQLiteCatalog
    from ExtRegistry.Maintenance.orchestrator.models import JobContext

__all__ = ["AdminStatisticsService", "AdminStatisticsHandler", "previous_month", "month_end"]

logger = logging.getLogger(__name__)


def month_end(year: int, month: int) -> datetime:
    """Last second of ``year``-``month`` in UTC."""
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    if month == 12:
        start_of_next = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        start_of_next = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start_of_next - timedelta(seconds=1)


def previous_month(now: datetime) -> Tuple[int, int]:
    """``(year, month)`` of the month before ``now``.

    Example:
        >>> previous_month(datetime(2024, 1, 15))
        (2023, 12)
    """
    if now.month == 1:
        return now.year - 1, 12
    return now.year, now.month - 1


class AdminStatisticsService:
    def __init__(self, catalog: "SQLiteCatalog") -> None:
        self.catalog = catalog

    def compute(self, year: int, month: int) -> AdminStatistics:
        until = month_end(year, month).isoformat(timespec="seconds")
        counts = self.catalog.count_statistics(until)
        stats = AdminStatistics(
            year=year,
            month=month,
            computed_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            **counts,
        )
        self.catalog.save_admin_statistics(stats)
        logger.info(
            f"Admin statistics {year}-{month:02d}: {stats.extensions} extensions, "
            f"{stats.versions} versions, {stats.publishers} publishers"
        )
        return stats


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdminStatisticsHandler:
    """Computes the month given in the payload, or the previous month."""

    def __init__(
        self, service: AdminStatisticsService, clock: Callable[[], datetime] = _utcnow
    ) -> None:
        self.service = service
        self._clock = clock

    def execute(self, ctx: "JobContext") -> None:
        year: Optional[int] = ctx.payload.get("year")
        month: Optional[int] = ctx.payload.get("month")
        if year is None or month is None:
            year, month = previous_month(self._clock())
        self.service.compute(int(year), int(month))
