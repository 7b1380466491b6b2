"""
models.py - Data model definitions

Members and expense rows are the inputs of the settlement engine; balances,
transaction groups and reports are derived from them and never stored.
Inputs serialize to/from plain dicts so a trip snapshot can be persisted as
JSON in data/trip_data.json.
"""

import datetime
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple, Any


CATEGORIES = ["Hotel", "Flight", "Food and Beverage", "Transport", "Entertainment", "Misc"]
DEFAULT_CATEGORY = "Misc"
CURRENCIES = ["USD", "EUR", "JPY", "GBP", "AUD", "CAD", "CHF", "CNY", "SGD", "MYR"]

# (label, total) pairs consumed by the charts
Aggregate = List[Tuple[str, float]]


def parse_date(value: Any) -> Optional[datetime.datetime]:
    """
    Accept a datetime, a date or an ISO string and return a datetime.
    Empty or unparseable values return None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)
    try:
        return datetime.datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class Member:
    id: str
    display_name: str

    def to_dict(self) -> Dict:
        return {"id": self.id, "display_name": self.display_name}

    @staticmethod
    def from_dict(d: Dict) -> "Member":
        return Member(id=str(d.get("id", "")), display_name=str(d.get("display_name", "") or ""))


@dataclass
class Expense:
    """
    One payee payment within a logged transaction.

    Fields:
      - id: unique row id
      - transaction_group_id: shared by every row logged in the same transaction
      - description, category, expense_date: copied onto every row of a group
      - payee_id: member who fronted the money for this row
      - payers: member ids owing an equal share of `amount`
      - amount: positive amount in `currency`
    """
    id: str = ""
    transaction_group_id: str = ""
    description: str = ""
    category: str = DEFAULT_CATEGORY
    expense_date: Optional[datetime.datetime] = None
    payee_id: str = ""
    payers: List[str] = field(default_factory=list)
    amount: float = 0.0
    currency: str = "USD"

    @property
    def group_key(self) -> str:
        return self.transaction_group_id or self.id

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "transaction_group_id": self.transaction_group_id,
            "description": self.description,
            "category": self.category,
            "expense_date": self.expense_date.isoformat() if self.expense_date else "",
            "payee_id": self.payee_id,
            "payers": list(self.payers),
            "amount": self.amount,
            "currency": self.currency,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Expense":
        """
        Construct an Expense from a dict (inverse of to_dict).
        Uses defaults for missing keys so older snapshots are tolerated.
        """
        return Expense(
            id=str(d.get("id", "") or ""),
            transaction_group_id=str(d.get("transaction_group_id", "") or ""),
            description=d.get("description", "") or "",
            category=d.get("category", DEFAULT_CATEGORY) or DEFAULT_CATEGORY,
            expense_date=parse_date(d.get("expense_date")),
            payee_id=str(d.get("payee_id", "") or ""),
            payers=[str(p) for p in (d.get("payers", []) or [])],
            amount=float(d.get("amount", 0.0) or 0.0),
            currency=d.get("currency", "USD") or "USD",
        )


@dataclass
class Trip:
    """One trip: its own members and expense rows, reported in `default_currency`."""
    id: str
    name: str = "My Trip"
    default_currency: str = "USD"
    members: List[Member] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "default_currency": self.default_currency,
            "members": [m.to_dict() for m in self.members],
            "expenses": [e.to_dict() for e in self.expenses],
        }

    @staticmethod
    def from_dict(d: Dict) -> "Trip":
        return Trip(
            id=str(d.get("id", "") or ""),
            name=d.get("name", "") or "My Trip",
            default_currency=d.get("default_currency", "USD") or "USD",
            members=[Member.from_dict(m) for m in (d.get("members", []) or [])],
            expenses=[Expense.from_dict(e) for e in (d.get("expenses", []) or [])],
        )


@dataclass
class MemberBalance:
    member_id: str
    display_name: str = ""
    total_paid: float = 0.0
    total_owed: float = 0.0

    @property
    def net_balance(self) -> float:
        """Positive: the member is owed money. Negative: the member owes money."""
        return self.total_paid - self.total_owed


@dataclass
class TransactionGroup:
    """Rows sharing a transaction_group_id, presented as one line item."""
    group_id: str
    description: str
    category: str
    expense_date: Optional[datetime.datetime]
    total: float
    payee_names: List[str]
    rows: List[Expense] = field(default_factory=list)

    @property
    def payee_label(self) -> str:
        return ", ".join(self.payee_names)


@dataclass
class Settlement:
    from_id: str
    from_name: str
    to_id: str
    to_name: str
    amount: float

    def describe(self, currency: str) -> str:
        return f"{self.from_name} pays {self.to_name} {self.amount:.2f} {currency}"


@dataclass
class SettlementReport:
    currency: str
    balances: List[MemberBalance]
    by_category: Aggregate
    by_payee: Aggregate
    by_payer_share: Aggregate
    by_day: Aggregate
    total: float = 0.0

    def balance_for(self, member_id: str) -> Optional[MemberBalance]:
        for b in self.balances:
            if b.member_id == member_id:
                return b
        return None
