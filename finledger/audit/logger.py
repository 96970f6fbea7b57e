"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged. Balances change only
through payments, so the audit trail is how a user reconstructs why an
account holds the value it does.

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from finledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_intent_rejected(
        self,
        intent_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction intent that failed validation."""
        await self.log(AuditEventBuilder.intent_rejected(
            intent_id=intent_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_entry_created(
        self,
        entry_id: UUID,
        kind: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a single entry creation."""
        await self.log(AuditEventBuilder.entry_created(
            entry_id=entry_id,
            kind=kind,
            amount=str(amount),
            correlation_id=correlation_id,
        ))

    async def log_batch_created(
        self,
        intent_id: UUID,
        mode: str,
        entry_ids: list[UUID],
        total_amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an installment or recurrence batch."""
        await self.log(AuditEventBuilder.entries_batch_created(
            intent_id=intent_id,
            mode=mode,
            entry_ids=entry_ids,
            total_amount=str(total_amount),
            correlation_id=correlation_id,
        ))

    async def log_entry_updated(
        self,
        entry_id: UUID,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.entry_updated(
            entry_id=entry_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_entry_deleted(
        self,
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.entry_deleted(
            entry_id=entry_id,
            correlation_id=correlation_id,
        ))

    async def log_expense_paid(
        self,
        entry_id: UUID,
        account_id: UUID,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a payment and the resulting account balance."""
        await self.log(AuditEventBuilder.expense_paid(
            entry_id=entry_id,
            account_id=account_id,
            amount=str(amount),
            new_balance=str(new_balance),
            correlation_id=correlation_id,
        ))

    async def log_expense_unpaid(
        self,
        entry_id: UUID,
        account_id: UUID,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a reversed payment and the resulting account balance."""
        await self.log(AuditEventBuilder.expense_unpaid(
            entry_id=entry_id,
            account_id=account_id,
            amount=str(amount),
            new_balance=str(new_balance),
            correlation_id=correlation_id,
        ))

    async def log_payment_rejected(
        self,
        entry_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.payment_rejected(
            entry_id=entry_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_reference_changed(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an account, category or credit card change."""
        await self.log(AuditEventBuilder.reference_changed(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_postponed(
        self,
        entry_ids: list[UUID],
        new_due_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expenses_postponed(
            entry_ids=entry_ids,
            new_due_date=new_due_date,
            correlation_id=correlation_id,
        ))

    async def log_report_generated(
        self,
        result_count: int,
        filter_description: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.report_generated(
            result_count=result_count,
            filter_description=filter_description,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a storage backend failure."""
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., creating an
    installment purchase). Pass it through all subsequent operations.
    """
    return uuid4()
