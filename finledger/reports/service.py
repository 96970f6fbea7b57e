"""
Report Service

Holds the active report filter and the latest result. LedgerService calls
`refresh()` after every mutation so the result never goes stale.
"""

from typing import Optional

import structlog

from finledger.models.report import ReportFilter, ReportResult
from finledger.reports.builder import ReportBuilder
from finledger.services.storage import EntryStorageInterface

logger = structlog.get_logger(__name__)


class ReportService:
    """Computes reports from storage and caches the latest one."""

    def __init__(
        self,
        store: EntryStorageInterface,
        builder: Optional[ReportBuilder] = None,
        report_filter: Optional[ReportFilter] = None,
    ):
        self._store = store
        self._builder = builder or ReportBuilder()
        self._filter = report_filter or ReportFilter()
        self._latest: Optional[ReportResult] = None

    @property
    def current_filter(self) -> ReportFilter:
        return self._filter

    @property
    def latest(self) -> Optional[ReportResult]:
        """The most recent result, or None before the first computation."""
        return self._latest

    async def generate(self, report_filter: Optional[ReportFilter] = None) -> ReportResult:
        """
        Build a report from the stored entries.

        Does not change the active filter or the cached result.
        """
        entries = await self._store.get_all()
        return self._builder.build(entries, report_filter or self._filter)

    async def set_filter(self, report_filter: ReportFilter) -> ReportResult:
        """Make `report_filter` the active filter and recompute."""
        self._filter = report_filter
        return await self.refresh()

    async def refresh(self) -> ReportResult:
        """Recompute the result for the active filter."""
        self._latest = await self.generate()
        logger.debug(
            "report_refreshed",
            result_count=self._latest.result_count,
            description=self._latest.description,
        )
        return self._latest
