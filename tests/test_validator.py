"""Tests for the two-stage intent validator."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from finledger.models.entry import Account, Category, CreditCard, EntryKind, Recurrence
from finledger.validation import IntentValidator, InvalidIntentError


def _fields(result):
    return {issue.field for issue in result.errors}


class TestSchemaStage:
    """Stage 1 checks."""

    def test_valid_intent(self, make_intent):
        """Test a complete intent passes both stages."""
        result = IntentValidator().check(make_intent())
        assert result.is_valid
        assert result.schema_valid and result.semantic_valid
        assert result.issues == []

    def test_reports_all_missing_fields_together(self, make_intent):
        """Test every problem is reported, not just the first."""
        result = IntentValidator().check(make_intent(description="", amount=None, start_date=None))
        assert not result.schema_valid
        assert _fields(result) == {"description", "amount", "start_date"}

    def test_amount_precision(self, make_intent):
        """Test sub-cent amounts are rejected, trailing zeros are fine."""
        validator = IntentValidator()
        assert not validator.check(make_intent(amount=Decimal("10.001"))).is_valid
        assert validator.check(make_intent(amount=Decimal("10.100"))).is_valid

    def test_installment_and_recurrence_conflict(self, make_intent):
        """Test an intent cannot use both expansion mechanisms."""
        result = IntentValidator().check(
            make_intent(installment_count=3, recurrence=Recurrence.MONTHLY)
        )
        assert "recurrence" in _fields(result)

    def test_account_and_card_conflict(self, make_intent):
        """Test an intent cannot use both an account and a card."""
        result = IntentValidator().check(make_intent(account_id=uuid4(), credit_card_id=uuid4()))
        assert "credit_card_id" in _fields(result)

    def test_income_rules(self, make_intent):
        """Test incomes cannot use cards or be marked paid."""
        result = IntentValidator().check(make_intent(
            kind=EntryKind.INCOME,
            credit_card_id=uuid4(),
            is_paid=True,
        ))
        assert {"credit_card_id", "is_paid"} <= _fields(result)

    def test_paid_expansion_rejected(self, make_intent):
        """Test installment and recurring intents cannot be created paid."""
        result = IntentValidator().check(
            make_intent(installment_count=2, is_paid=True, account_id=uuid4())
        )
        assert _fields(result) == {"is_paid"}

    def test_paid_without_account(self, make_intent):
        """Test a paid expense needs a bank account."""
        result = IntentValidator().check(make_intent(is_paid=True))
        assert result.errors[0].issue_type == "unlinked_account"

    def test_semantic_stage_skipped_on_schema_errors(self, make_intent):
        """Test stage 2 only runs when stage 1 passes."""
        result = IntentValidator().check(make_intent(description="", installment_count=100))
        assert not result.schema_valid
        assert not result.semantic_valid
        assert "installment_count" not in _fields(result)


class TestSemanticStage:
    """Stage 2 checks."""

    def test_installment_limit(self, make_intent):
        """Test more than 48 installments is rejected."""
        validator = IntentValidator()
        assert validator.check(make_intent(installment_count=48)).is_valid
        result = validator.check(make_intent(installment_count=49))
        assert result.schema_valid
        assert not result.semantic_valid
        assert _fields(result) == {"installment_count"}

    def test_occurrence_limit(self, make_intent):
        """Test max_occurrences cannot exceed the configured cap."""
        validator = IntentValidator()
        assert validator.check(
            make_intent(recurrence=Recurrence.WEEKLY, max_occurrences=12)
        ).is_valid
        result = validator.check(make_intent(recurrence=Recurrence.WEEKLY, max_occurrences=5000))
        assert result.schema_valid
        assert not result.semantic_valid
        assert _fields(result) == {"max_occurrences"}
        assert result.errors[0].issue_type == "limit_exceeded"

    def test_occurrence_limit_follows_settings(self, make_intent, monkeypatch):
        """Test the cap is read from LEDGER_MAX_RECURRENCE_OCCURRENCES."""
        monkeypatch.setenv("LEDGER_MAX_RECURRENCE_OCCURRENCES", "24")
        validator = IntentValidator()
        assert validator.check(
            make_intent(recurrence=Recurrence.MONTHLY, max_occurrences=24)
        ).is_valid
        assert not validator.check(
            make_intent(recurrence=Recurrence.MONTHLY, max_occurrences=25)
        ).is_valid

    @pytest.mark.parametrize("overrides", [
        {"start_date": date(9999, 6, 1), "recurrence": Recurrence.MONTHLY},
        {"start_date": date(9999, 12, 1), "installment_count": 2},
        {"start_date": date(9999, 12, 25), "recurrence": Recurrence.WEEKLY},
        {"start_date": date(9990, 1, 1), "recurrence": Recurrence.ANNUAL},
    ])
    def test_series_past_last_date(self, make_intent, overrides):
        """Test a series whose last date cannot be represented is rejected."""
        result = IntentValidator().check(make_intent(**overrides))
        assert result.schema_valid
        assert not result.is_valid
        assert _fields(result) == {"start_date"}
        assert result.errors[0].issue_type == "out_of_range"

    def test_unique_entry_on_last_year(self, make_intent):
        """Test a single entry late in year 9999 is still accepted."""
        assert IntentValidator().check(make_intent(start_date=date(9999, 12, 31))).is_valid

    def test_large_amount_is_warning_only(self, make_intent):
        """Test very large amounts warn but do not block."""
        result = IntentValidator().check(make_intent(amount=Decimal("2000000.00")))
        assert result.is_valid
        assert len(result.warnings) == 1
        assert "unusually high" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_missing_references(self, store, make_intent):
        """Test references to records that do not exist are errors."""
        result = await IntentValidator(store).validate(make_intent(
            account_id=uuid4(),
            category_id=uuid4(),
        ))
        assert not result.is_valid
        assert _fields(result) == {"account_id", "category_id"}

    @pytest.mark.asyncio
    async def test_missing_credit_card(self, store, make_intent):
        """Test an unknown credit card is reported."""
        result = await IntentValidator(store).validate(make_intent(credit_card_id=uuid4()))
        assert _fields(result) == {"credit_card_id"}

    @pytest.mark.asyncio
    async def test_existing_references(self, store, make_intent):
        """Test stored references pass."""
        account = await store.create_account(Account(name="Main", bank_name="Itaú"))
        category = await store.create_category(Category(name="Food", type=EntryKind.EXPENSE))
        card = await store.create_credit_card(
            CreditCard(name="Gold", bank_name="Nubank", limit_amount=Decimal("1000"), due_day=10)
        )
        validator = IntentValidator(store)
        assert (await validator.validate(
            make_intent(account_id=account.id, category_id=category.id)
        )).is_valid
        assert (await validator.validate(
            make_intent(credit_card_id=card.id, category_id=category.id)
        )).is_valid

    @pytest.mark.asyncio
    async def test_category_type_mismatch(self, store, make_intent):
        """Test an income category cannot classify an expense."""
        category = await store.create_category(Category(name="Salary", type=EntryKind.INCOME))
        result = await IntentValidator(store).validate(make_intent(category_id=category.id))
        assert result.errors[0].issue_type == "conflict"

    @pytest.mark.asyncio
    async def test_without_store_references_are_not_checked(self, make_intent):
        """Test reference checks are skipped when no store is given."""
        result = await IntentValidator().validate(make_intent(account_id=uuid4()))
        assert result.is_valid


class TestInvalidIntentError:
    """Tests for raising and summarising."""

    def test_ensure_valid_raises_with_issues(self, make_intent):
        """Test the error carries the issues and the intent id."""
        intent = make_intent(amount=Decimal("-1"))
        validator = IntentValidator()
        with pytest.raises(InvalidIntentError) as exc_info:
            validator.ensure_valid(validator.check(intent))
        assert exc_info.value.intent_id == intent.intent_id
        assert exc_info.value.issues[0].field == "amount"
        assert "greater than zero" in str(exc_info.value)

    def test_is_a_value_error(self):
        """Test callers can treat it as a ValueError."""
        assert issubclass(InvalidIntentError, ValueError)

    def test_user_friendly_summary(self, make_intent):
        """Test the summary lists errors and hints."""
        validator = IntentValidator()
        summary = validator.get_user_friendly_summary(validator.check(make_intent(description="")))
        assert "Description is required" in summary
        assert "Hint:" in summary

    def test_user_friendly_summary_ok(self, make_intent):
        """Test a clean result gets a short confirmation."""
        validator = IntentValidator()
        assert validator.get_user_friendly_summary(validator.check(make_intent())) == "All checks passed."
