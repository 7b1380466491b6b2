"""
policy.py - how the settlement engine reacts to inconsistent input

Three events can occur while folding expenses:
  - a currency code missing from the rate table (rate falls back to 1)
  - an expense with no payers (divisor falls back to 1)
  - a payee/payer id that is not in the member list (contribution dropped)

DegradePolicy decides whether each event is ignored, logged, or raised.
"""

import logging
from dataclasses import dataclass


logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

IGNORE = "ignore"
WARN = "warn"
STRICT = "strict"
MODES = (IGNORE, WARN, STRICT)


class SettlementError(ValueError):
    """Base class for input problems surfaced under the strict policy."""


class UnknownCurrencyError(SettlementError):
    pass


class EmptyPayersError(SettlementError):
    pass


class UnknownMemberError(SettlementError):
    pass


class ValidationError(ValueError):
    """Raised by the tracker when a transaction cannot be logged."""


@dataclass(frozen=True)
class DegradePolicy:
    mode: str = WARN

    def __post_init__(self):
        if self.mode not in MODES:
            raise ValueError(f"unknown degrade policy {self.mode!r}, expected one of {MODES}")

    def _report(self, error_cls, message: str):
        if self.mode == STRICT:
            raise error_cls(message)
        if self.mode == WARN:
            logger.warning(message)

    def unknown_currency(self, code: str):
        self._report(UnknownCurrencyError, f"No rate for currency {code!r}; using 1")

    def empty_payers(self, expense_id: str):
        self._report(EmptyPayersError, f"Expense {expense_id!r} has no payers; owed share is not attributed")

    def unknown_member(self, member_id: str, role: str, expense_id: str):
        self._report(
            UnknownMemberError,
            f"Expense {expense_id!r} references unknown {role} {member_id!r}; contribution dropped",
        )


LENIENT = DegradePolicy(IGNORE)
