"""
Audit Models for the Ledger

Every mutation of ledger data is logged as an AuditEvent. This gives a
history of what changed, which user action caused it, and why an action
was refused.

Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finledger.models.entry import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Entry creation
    INTENT_REJECTED = "intent_rejected"
    ENTRY_CREATED = "entry_created"
    ENTRIES_BATCH_CREATED = "entries_batch_created"

    # Entry maintenance
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    EXPENSES_POSTPONED = "expenses_postponed"

    # Reconciliation
    EXPENSE_PAID = "expense_paid"
    EXPENSE_UNPAID = "expense_unpaid"
    PAYMENT_REJECTED = "payment_rejected"

    # Reference data
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    CREDIT_CARD_CREATED = "credit_card_created"
    CREDIT_CARD_UPDATED = "credit_card_updated"
    CREDIT_CARD_DELETED = "credit_card_deleted"

    # Reporting
    REPORT_GENERATED = "report_generated"

    # System events
    STORAGE_ERROR = "storage_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'account', 'category')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events of one user action
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entry_created(entry_id, kind, amount, correlation_id)
        event = AuditEventBuilder.expense_paid(entry_id, account_id, amount, correlation_id)
    """

    @staticmethod
    def intent_rejected(
        intent_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTENT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="intent",
            entity_id=intent_id,
            correlation_id=correlation_id,
            description=f"Transaction intent rejected with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def entry_created(
        entry_id: UUID,
        kind: str,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_CREATED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} created: {amount}",
            details={"kind": kind, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def entries_batch_created(
        intent_id: UUID,
        mode: str,
        entry_ids: list[UUID],
        total_amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRIES_BATCH_CREATED,
            entity_type="intent",
            entity_id=intent_id,
            correlation_id=correlation_id,
            description=f"{len(entry_ids)} entries created ({mode})",
            details={
                "mode": mode,
                "entry_ids": [str(i) for i in entry_ids],
                "total_amount": total_amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def entry_updated(
        entry_id: UUID,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry updated: {', '.join(changed_fields) or 'no fields'}",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def entry_deleted(
        entry_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_DELETED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description="Entry deleted",
            is_user_action=True,
        )

    @staticmethod
    def expenses_postponed(
        entry_ids: list[UUID],
        new_due_date: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSES_POSTPONED,
            entity_type="entry",
            correlation_id=correlation_id,
            description=f"{len(entry_ids)} overdue expenses postponed to {new_due_date}",
            details={
                "entry_ids": [str(i) for i in entry_ids],
                "new_due_date": new_due_date,
            },
        )

    @staticmethod
    def expense_paid(
        entry_id: UUID,
        account_id: UUID,
        amount: str,
        new_balance: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_PAID,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Expense paid: {amount} debited",
            details={
                "account_id": str(account_id),
                "amount": amount,
                "new_balance": new_balance,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_unpaid(
        entry_id: UUID,
        account_id: UUID,
        amount: str,
        new_balance: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UNPAID,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Expense marked unpaid: {amount} re-credited",
            details={
                "account_id": str(account_id),
                "amount": amount,
                "new_balance": new_balance,
            },
            is_user_action=True,
        )

    @staticmethod
    def payment_rejected(
        entry_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description="Payment rejected",
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def reference_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        """Account, category and credit card create/update/delete."""
        action = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.replace('_', ' ').capitalize()} {action}: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def report_generated(
        result_count: int,
        filter_description: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPORT_GENERATED,
            severity=AuditSeverity.DEBUG,
            entity_type="report",
            correlation_id=correlation_id,
            description=f"Report generated with {result_count} entries",
            details={"filter": filter_description, "result_count": result_count},
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
