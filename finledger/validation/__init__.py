"""Intent validation package."""

from finledger.validation.validator import IntentValidator, InvalidIntentError

__all__ = ["IntentValidator", "InvalidIntentError"]
