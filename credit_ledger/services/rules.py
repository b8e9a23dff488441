"""Pure validation of amounts and balances against the configured credit rules."""

from decimal import Decimal

from credit_ledger.core.config import CreditRules
from credit_ledger.core.exceptions import BalanceOutOfRangeError, InsufficientFundsError, InvalidAmountError
from credit_ledger.models.ledger import CREDIT_QUANTUM, AlertLevel


class RuleEngine:
    """Stateless checks against one immutable CreditRules; safe to share across tasks."""

    def __init__(self, rules: CreditRules):
        self.rules = rules

    def validate_transaction_amount(self, amount: Decimal) -> Decimal:
        """Return the amount as a 4-place Decimal or raise InvalidAmountError.

        Finer precision is rejected rather than rounded.
        """
        try:
            raw = Decimal(str(amount) if isinstance(amount, float) else amount)
        except (ArithmeticError, TypeError, ValueError) as e:
            raise InvalidAmountError("Amount must be a valid number", {"amount": str(amount)}) from e
        if not raw.is_finite() or raw <= 0:
            raise InvalidAmountError("Amount must be positive", {"amount": str(raw)})
        if raw.normalize().as_tuple().exponent < CREDIT_QUANTUM.as_tuple().exponent:
            raise InvalidAmountError("Amount supports at most 4 decimal places", {"amount": str(raw)})
        if raw < self.rules.minimum_transaction:
            raise InvalidAmountError(
                f"Amount below minimum allowed: {self.rules.minimum_transaction}",
                {"amount": str(raw), "minimum": str(self.rules.minimum_transaction)},
            )
        if raw > self.rules.maximum_transaction:
            raise InvalidAmountError(
                f"Amount exceeds maximum allowed: {self.rules.maximum_transaction}",
                {"amount": str(raw), "maximum": str(self.rules.maximum_transaction)},
            )
        return raw.quantize(CREDIT_QUANTUM)

    def validate_resulting_balance(self, candidate: Decimal, debit: bool = False) -> Decimal:
        """Raise BalanceOutOfRangeError (InsufficientFundsError for debits) when out of bounds."""
        details = {
            "candidate_balance": str(candidate),
            "minimum": str(self.rules.minimum_balance),
            "maximum": str(self.rules.maximum_balance),
        }
        if candidate < self.rules.minimum_balance:
            if debit:
                raise InsufficientFundsError("Insufficient credits", details)
            raise BalanceOutOfRangeError("Resulting balance below minimum", details)
        if candidate > self.rules.maximum_balance:
            raise BalanceOutOfRangeError("Resulting balance above maximum", details)
        return candidate

    def classify_alert_level(self, balance: Decimal) -> AlertLevel:
        if balance < self.rules.critical_balance_threshold:
            return AlertLevel.CRITICAL
        if balance < self.rules.low_balance_threshold:
            return AlertLevel.LOW
        return AlertLevel.NORMAL
