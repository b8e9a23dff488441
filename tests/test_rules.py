"""Credit rules: configuration bounds, amount and balance checks, alert levels."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from credit_ledger.core.config import CreditRules, InvalidConfigurationError, Settings
from credit_ledger.core.exceptions import BalanceOutOfRangeError, InsufficientFundsError, InvalidAmountError
from credit_ledger.models.ledger import AlertLevel
from credit_ledger.services.rules import RuleEngine


@pytest.fixture
def engine(rules) -> RuleEngine:
    return RuleEngine(rules)


def test_rules_are_immutable(rules):
    with pytest.raises(ValidationError):
        rules.maximum_balance = Decimal("5")


@pytest.mark.parametrize(
    "overrides",
    [
        {"minimum_balance": Decimal("10"), "maximum_balance": Decimal("5")},
        {"minimum_transaction": Decimal("0")},
        {"minimum_transaction": Decimal("10"), "maximum_transaction": Decimal("1")},
        {"low_balance_threshold": Decimal("1"), "critical_balance_threshold": Decimal("2")},
    ],
)
def test_inconsistent_rules_rejected(overrides):
    with pytest.raises(ValueError):
        CreditRules(**overrides)


def test_settings_raise_invalid_configuration():
    settings = Settings(MIN_CREDIT_BALANCE="100", MAX_CREDIT_BALANCE="10")
    with pytest.raises(InvalidConfigurationError):
        settings.credit_rules()


def test_settings_build_rules_from_env(monkeypatch):
    monkeypatch.setenv("MAX_CREDIT_TRANSACTION", "250")
    rules = Settings().credit_rules()
    assert rules.maximum_transaction == Decimal("250")
    assert rules.minimum_transaction == Decimal("0.01")


def test_amount_keeps_four_places(engine):
    assert engine.validate_transaction_amount(Decimal("1.2345")) == Decimal("1.2345")
    assert engine.validate_transaction_amount(Decimal("1.23450")) == Decimal("1.2345")
    assert engine.validate_transaction_amount(12.5) == Decimal("12.5000")


@pytest.mark.parametrize("amount", [Decimal("1.23456"), Decimal("1.00005"), "0.00001", 1e-05])
def test_finer_precision_rejected(engine, amount):
    with pytest.raises(InvalidAmountError) as exc:
        engine.validate_transaction_amount(amount)
    assert "4 decimal places" in exc.value.message


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("0.0099"), Decimal("500.0001"), "abc"])
def test_invalid_amounts(engine, amount):
    with pytest.raises(InvalidAmountError):
        engine.validate_transaction_amount(amount)


@pytest.mark.parametrize("amount", [Decimal("0.01"), Decimal("500")])
def test_amount_bounds_inclusive(engine, amount):
    assert engine.validate_transaction_amount(amount) == amount


def test_resulting_balance_bounds(engine):
    assert engine.validate_resulting_balance(Decimal("0")) == Decimal("0")
    assert engine.validate_resulting_balance(Decimal("1000")) == Decimal("1000")
    with pytest.raises(BalanceOutOfRangeError):
        engine.validate_resulting_balance(Decimal("1000.0001"))
    with pytest.raises(BalanceOutOfRangeError) as exc:
        engine.validate_resulting_balance(Decimal("-0.0001"))
    assert not isinstance(exc.value, InsufficientFundsError)


def test_debit_below_minimum_is_insufficient_funds(engine):
    with pytest.raises(InsufficientFundsError) as exc:
        engine.validate_resulting_balance(Decimal("-1"), debit=True)
    assert exc.value.code == "INSUFFICIENT_FUNDS"
    assert exc.value.status_code == 402


@pytest.mark.parametrize(
    "balance,level",
    [
        (Decimal("4.9999"), AlertLevel.CRITICAL),
        (Decimal("5"), AlertLevel.LOW),
        (Decimal("9.9999"), AlertLevel.LOW),
        (Decimal("10"), AlertLevel.NORMAL),
    ],
)
def test_alert_levels(engine, balance, level):
    assert engine.classify_alert_level(balance) == level
