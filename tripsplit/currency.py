"""
currency.py - static exchange-rate table and conversion helpers

Rates are expressed as units per one USD. Converting goes through USD:
    (amount / rate[from]) * rate[to]
Amounts are never rounded here; rounding happens only in format_amount().
"""

from typing import Dict, Mapping, Optional

from tripsplit.policy import DegradePolicy, LENIENT


PLACEHOLDER_RATES: Dict[str, float] = {
    "USD": 1.0,
    "EUR": 0.93,
    "JPY": 157.0,
    "GBP": 0.79,
    "AUD": 1.50,
    "CAD": 1.37,
    "CHF": 0.90,
    "CNY": 7.25,
    "SGD": 1.35,
    "MYR": 4.71,
}


def rate_for(code: str, rates: Mapping[str, float], policy: DegradePolicy = LENIENT) -> float:
    """Look up a rate; unknown codes are treated as already in reference units (rate 1)."""
    rate = rates.get(code)
    if rate is None:
        policy.unknown_currency(code)
        return 1.0
    return float(rate)


def convert(
    amount: float,
    from_code: str,
    to_code: str,
    rates: Optional[Mapping[str, float]] = None,
    policy: DegradePolicy = LENIENT,
) -> float:
    if rates is None:
        rates = PLACEHOLDER_RATES
    if from_code == to_code:
        return float(amount)
    return (float(amount) / rate_for(from_code, rates, policy)) * rate_for(to_code, rates, policy)


def format_amount(value: float, currency: str = "") -> str:
    text = f"{value:.2f}"
    return f"{text} {currency}" if currency else text
