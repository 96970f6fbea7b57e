"""Filtering and aggregation of ledger entries."""

from finledger.reports.builder import ReportBuilder
from finledger.reports.service import ReportService

__all__ = ["ReportBuilder", "ReportService"]
