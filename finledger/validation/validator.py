"""
Two-Stage Intent Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Value ranges (amount, counts)
- Conflicting options (installments AND recurrence, account AND card)
- This catches malformed form input

STAGE 2 - SEMANTIC VALIDATION:
- Configured limits
- Suspicious amounts
- References to accounts, cards and categories that must exist
- This catches input that is well-formed but cannot be honoured

Stage 2 runs only when stage 1 passes, and needs storage for the
reference checks.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the user can correct the intent.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from finledger.config import get_settings
from finledger.models.entry import (
    EntryKind,
    TransactionIntent,
    ValidationIssue,
    ValidationResult,
)
from finledger.services.storage import LedgerStorageInterface

CENT = Decimal("0.01")


class InvalidIntentError(ValueError):
    """
    Raised when user input cannot be turned into ledger entries.

    Recoverable: `issues` tells the user what to correct.
    """

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None, intent_id=None):
        self.issues = issues or []
        self.intent_id = intent_id
        super().__init__(message)

    @classmethod
    def from_result(cls, result: ValidationResult) -> "InvalidIntentError":
        errors = result.errors
        summary = "; ".join(issue.message for issue in errors)
        return cls(
            f"Invalid transaction intent: {summary}",
            issues=errors,
            intent_id=result.intent_id,
        )


class IntentValidator:
    """
    Validates transaction intents through a two-stage pipeline.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (uses storage for reference checks)
    """

    def __init__(
        self,
        store: Optional[LedgerStorageInterface] = None,
    ):
        """
        Initialize validator.

        Args:
            store: Storage used to check that referenced accounts, cards
                   and categories exist. If None, those checks are skipped.
        """
        self._store = store
        self._settings = get_settings().ledger

    def _validate_schema(
        self,
        intent: TransactionIntent,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not intent.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
                severity="error",
                suggested_fix="Describe what the entry is about",
            ))

        if intent.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
                severity="error",
            ))
        elif intent.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
            ))
        elif intent.amount != intent.amount.quantize(CENT):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message=f"Amount {intent.amount} has more than 2 decimal places",
                severity="error",
                suggested_fix="Round the amount to cents",
            ))

        if intent.start_date is None:
            issues.append(ValidationIssue(
                field="start_date",
                issue_type="missing",
                message="Due date is required",
                severity="error",
            ))

        if intent.installment_count < 1:
            issues.append(ValidationIssue(
                field="installment_count",
                issue_type="invalid_value",
                message="Installment count must be at least 1",
                severity="error",
            ))

        if intent.max_occurrences is not None and intent.max_occurrences < 1:
            issues.append(ValidationIssue(
                field="max_occurrences",
                issue_type="invalid_value",
                message="Number of occurrences must be at least 1",
                severity="error",
            ))

        if intent.is_installment and intent.is_recurring:
            issues.append(ValidationIssue(
                field="recurrence",
                issue_type="conflict",
                message="An entry cannot be split into installments and recur at the same time",
                severity="error",
                suggested_fix="Choose either installments or a recurrence",
            ))

        if intent.account_id and intent.credit_card_id:
            issues.append(ValidationIssue(
                field="credit_card_id",
                issue_type="conflict",
                message="An entry cannot use both a bank account and a credit card",
                severity="error",
                suggested_fix="Pick one payment source",
            ))

        if intent.kind == EntryKind.INCOME:
            if intent.credit_card_id:
                issues.append(ValidationIssue(
                    field="credit_card_id",
                    issue_type="invalid_value",
                    message="Incomes cannot be linked to a credit card",
                    severity="error",
                ))
            if intent.is_paid:
                issues.append(ValidationIssue(
                    field="is_paid",
                    issue_type="invalid_value",
                    message="Only expenses can be marked as paid",
                    severity="error",
                ))
        elif intent.is_paid:
            if intent.is_installment or intent.is_recurring:
                issues.append(ValidationIssue(
                    field="is_paid",
                    issue_type="conflict",
                    message="Installment and recurring expenses are created unpaid",
                    severity="error",
                    suggested_fix="Pay each occurrence once it is due",
                ))
            if not intent.account_id:
                issues.append(ValidationIssue(
                    field="is_paid",
                    issue_type="unlinked_account",
                    message="An expense without a bank account cannot be marked as paid",
                    severity="error",
                    suggested_fix="Link a bank account to the expense",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def _validate_semantic(
        self,
        intent: TransactionIntent,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation (checks that need no storage).

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        max_installments = self._settings.max_installments
        if intent.installment_count > max_installments:
            issues.append(ValidationIssue(
                field="installment_count",
                issue_type="limit_exceeded",
                message=(
                    f"Installment count {intent.installment_count} exceeds "
                    f"the maximum of {max_installments}"
                ),
                severity="error",
            ))

        max_occurrences = self._settings.max_recurrence_occurrences
        if intent.max_occurrences is not None and intent.max_occurrences > max_occurrences:
            issues.append(ValidationIssue(
                field="max_occurrences",
                issue_type="limit_exceeded",
                message=(
                    f"Number of occurrences {intent.max_occurrences} exceeds "
                    f"the maximum of {max_occurrences}"
                ),
                severity="error",
            ))

        if not issues:
            try:
                self._last_due_date(intent)
            except (ValueError, OverflowError):
                issues.append(ValidationIssue(
                    field="start_date",
                    issue_type="out_of_range",
                    message="The series would run past the last supported date",
                    severity="error",
                    suggested_fix="Pick an earlier due date or fewer occurrences",
                ))

        threshold = Decimal(str(self._settings.large_amount_warning))
        if intent.amount is not None and intent.amount > threshold:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=(
                    f"Amount ({self._settings.currency} {intent.amount:,.2f}) "
                    "seems unusually high"
                ),
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def _last_due_date(self, intent: TransactionIntent) -> date:
        """Due date of the last row the intent expands into."""
        # finledger.engine imports this module
        from finledger.engine.schedule import INSTALLMENT_STEP, step_for

        if intent.is_installment:
            return intent.start_date + INSTALLMENT_STEP * (intent.installment_count - 1)
        if intent.is_recurring:
            count = intent.max_occurrences or self._settings.max_recurrence_occurrences
            return intent.start_date + step_for(intent.recurrence) * (count - 1)
        return intent.start_date

    async def _check_references(
        self,
        intent: TransactionIntent,
    ) -> list[ValidationIssue]:
        """
        Check that referenced records exist.

        This requires storage access. Storage errors propagate.
        """
        issues = []

        if self._store is None:
            return issues

        if intent.account_id:
            account = await self._store.get_account(intent.account_id)
            if account is None:
                issues.append(ValidationIssue(
                    field="account_id",
                    issue_type="not_found",
                    message=f"Account {intent.account_id} does not exist",
                    severity="error",
                ))

        if intent.credit_card_id:
            card = await self._store.get_credit_card(intent.credit_card_id)
            if card is None:
                issues.append(ValidationIssue(
                    field="credit_card_id",
                    issue_type="not_found",
                    message=f"Credit card {intent.credit_card_id} does not exist",
                    severity="error",
                ))

        if intent.category_id:
            category = await self._store.get_category(intent.category_id)
            if category is None:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="not_found",
                    message=f"Category {intent.category_id} does not exist",
                    severity="error",
                ))
            elif category.type != intent.kind:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="conflict",
                    message=(
                        f"Category '{category.name}' is for {category.type.value}s, "
                        f"not {intent.kind.value}s"
                    ),
                    severity="error",
                    suggested_fix=f"Pick a category of type {intent.kind.value}",
                ))

        return issues

    def _build_result(
        self,
        intent: TransactionIntent,
        schema_valid: bool,
        semantic_valid: bool,
        issues: list[ValidationIssue],
    ) -> ValidationResult:
        warnings = [issue.message for issue in issues if issue.severity == "warning"]
        return ValidationResult(
            intent_id=intent.intent_id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=issues,
            warnings=warnings,
        )

    def check(self, intent: TransactionIntent) -> ValidationResult:
        """
        Run both stages without touching storage.

        Used by the generator, which must stay free of I/O.
        """
        schema_valid, issues = self._validate_schema(intent)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(intent)
            issues.extend(semantic_issues)

        return self._build_result(intent, schema_valid, semantic_valid, issues)

    async def validate(self, intent: TransactionIntent) -> ValidationResult:
        """
        Run full two-stage validation pipeline, including reference checks.

        Returns:
            ValidationResult with all issues found
        """
        schema_valid, issues = self._validate_schema(intent)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(intent)
            reference_issues = await self._check_references(intent)
            issues.extend(semantic_issues)
            issues.extend(reference_issues)
            semantic_valid = semantic_valid and not any(
                issue.severity == "error" for issue in reference_issues
            )

        return self._build_result(intent, schema_valid, semantic_valid, issues)

    @staticmethod
    def ensure_valid(result: ValidationResult) -> None:
        """Raise InvalidIntentError if the result carries errors."""
        if not result.is_valid:
            raise InvalidIntentError.from_result(result)

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to non-technical users.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("Please fix the following before saving:")
            for issue in result.errors:
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     Hint: {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
