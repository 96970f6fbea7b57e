"""
finledger - Personal Finance Ledger Engine

Tracks bank accounts, credit cards and categorized incomes/expenses,
including installment purchases and recurring entries, and produces
period reports.

DESIGN PRINCIPLES:
1. Validate the whole intent before persisting anything
2. Fail early, fail visibly
3. No silent corrections
4. Balances change only through payment reconciliation
5. Every step must be auditable
6. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "finledger Team"
