"""
settlement.py - balances, spending aggregates and settle-up suggestions

Every function here is a pure transform over a snapshot of members and
expense rows: nothing is cached between calls and nothing is mutated.

Responsibilities:
 - convert each row to the display currency
 - fold rows into per-member paid/owed/net balances
 - aggregate spending by category, payee, payer share and day
 - group rows of one logged transaction into a single line item
 - filter rows by the report criteria
 - suggest transfers that settle the net balances
"""

import datetime
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Dict, Optional, Mapping, Sequence, Iterable

from tripsplit.currency import PLACEHOLDER_RATES, convert
from tripsplit.models import (
    Aggregate,
    DEFAULT_CATEGORY,
    Expense,
    Member,
    MemberBalance,
    Settlement,
    SettlementReport,
    TransactionGroup,
)
from tripsplit.policy import DegradePolicy


UNKNOWN_MEMBER = "Unknown"


def calendar_day(value) -> Optional[datetime.date]:
    """
    Calendar date of a date or datetime, taken in UTC.
    Naive datetimes are treated as UTC already.
    """
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(datetime.timezone.utc)
        return value.date()
    return value


def expense_day(expense: Expense) -> Optional[datetime.date]:
    return calendar_day(expense.expense_date)


def recency_key(value) -> float:
    """Sort key for newest-first ordering; undated values sort as oldest."""
    if value is None:
        return 0.0
    if not isinstance(value, datetime.datetime):
        value = datetime.datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.timestamp()


def _names(members: Sequence[Member]) -> Dict[str, str]:
    return {m.id: m.display_name for m in members}


def _share_count(expense: Expense, policy: DegradePolicy) -> int:
    if not expense.payers:
        policy.empty_payers(expense.id)
    return max(1, len(expense.payers))


class _Converter:
    """Converts rows to one display currency with a fixed rate table and policy."""

    def __init__(self, currency: str, rates: Mapping[str, float], policy: DegradePolicy):
        self.currency = currency
        self.rates = rates
        self.policy = policy

    def __call__(self, expense: Expense) -> float:
        return convert(expense.amount, expense.currency, self.currency, self.rates, self.policy)


def compute_balances(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    display_currency: str,
    rates: Mapping[str, float] = PLACEHOLDER_RATES,
    policy: DegradePolicy = DegradePolicy(),
) -> List[MemberBalance]:
    """
    Compute per-member paid/owed totals in the display currency.

    Interpretation:
        - the payee of a row is credited the full converted amount
        - each payer of a row owes converted amount / number of payers
        - ids missing from the member list are skipped
    Balances come back in member-list order, one per member.
    """
    to_display = _Converter(display_currency, rates, policy)
    balances: Dict[str, MemberBalance] = OrderedDict(
        (m.id, MemberBalance(member_id=m.id, display_name=m.display_name)) for m in members
    )
    for e in expenses:
        amount = to_display(e)
        share = amount / _share_count(e, policy)

        payee = balances.get(e.payee_id)
        if payee is None:
            policy.unknown_member(e.payee_id, "payee", e.id)
        else:
            payee.total_paid += amount

        for payer_id in e.payers:
            payer = balances.get(payer_id)
            if payer is None:
                policy.unknown_member(payer_id, "payer", e.id)
                continue
            payer.total_owed += share
    return list(balances.values())


def _accumulate(totals: Dict[str, float], key: str, amount: float):
    totals[key] = totals.get(key, 0.0) + amount


def spending_by_category(
    expenses: Iterable[Expense],
    display_currency: str,
    rates: Mapping[str, float] = PLACEHOLDER_RATES,
    policy: DegradePolicy = DegradePolicy(),
) -> Aggregate:
    to_display = _Converter(display_currency, rates, policy)
    totals: Dict[str, float] = OrderedDict()
    for e in expenses:
        _accumulate(totals, e.category or DEFAULT_CATEGORY, to_display(e))
    return list(totals.items())


def spending_by_payee(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    display_currency: str,
    rates: Mapping[str, float] = PLACEHOLDER_RATES,
    policy: DegradePolicy = DegradePolicy(),
) -> Aggregate:
    """Total fronted by each payee, keyed by display name."""
    names = _names(members)
    to_display = _Converter(display_currency, rates, policy)
    totals: Dict[str, float] = OrderedDict()
    for e in expenses:
        name = names.get(e.payee_id)
        if name is None:
            policy.unknown_member(e.payee_id, "payee", e.id)
            continue
        _accumulate(totals, name, to_display(e))
    return list(totals.items())


def spending_by_payer_share(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    display_currency: str,
    rates: Mapping[str, float] = PLACEHOLDER_RATES,
    policy: DegradePolicy = DegradePolicy(),
) -> Aggregate:
    """
    Consumption per member: each row's converted amount split evenly over
    its payers (not its payee), keyed by display name.
    """
    names = _names(members)
    to_display = _Converter(display_currency, rates, policy)
    totals: Dict[str, float] = OrderedDict()
    for e in expenses:
        share = to_display(e) / _share_count(e, policy)
        for payer_id in e.payers:
            name = names.get(payer_id)
            if name is None:
                policy.unknown_member(payer_id, "payer", e.id)
                continue
            _accumulate(totals, name, share)
    return list(totals.items())


def spending_by_day(
    expenses: Iterable[Expense],
    display_currency: str,
    rates: Mapping[str, float] = PLACEHOLDER_RATES,
    policy: DegradePolicy = DegradePolicy(),
) -> Aggregate:
    """Totals per UTC calendar day ("YYYY-MM-DD"), oldest first. Undated rows are skipped."""
    to_display = _Converter(display_currency, rates, policy)
    totals: Dict[datetime.date, float] = {}
    for e in expenses:
        day = expense_day(e)
        if day is None:
            continue
        totals[day] = totals.get(day, 0.0) + to_display(e)
    return [(day.isoformat(), totals[day]) for day in sorted(totals)]


def group_transactions(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    display_currency: str,
    rates: Mapping[str, float] = PLACEHOLDER_RATES,
    policy: DegradePolicy = DegradePolicy(),
) -> List[TransactionGroup]:
    """
    Collapse rows sharing a transaction_group_id into one line item.
    Rows without a group id stand alone. Most recent groups come first.
    """
    names = _names(members)
    to_display = _Converter(display_currency, rates, policy)
    grouped: Dict[str, List[Expense]] = OrderedDict()
    for e in expenses:
        grouped.setdefault(e.group_key, []).append(e)

    out: List[TransactionGroup] = []
    for group_id, rows in grouped.items():
        first = rows[0]
        payee_names: List[str] = []
        for r in rows:
            name = names.get(r.payee_id, UNKNOWN_MEMBER)
            if name not in payee_names:
                payee_names.append(name)
        out.append(
            TransactionGroup(
                group_id=group_id,
                description=first.description,
                category=first.category or DEFAULT_CATEGORY,
                expense_date=first.expense_date,
                total=sum(to_display(r) for r in rows),
                payee_names=payee_names,
                rows=rows,
            )
        )

    # stable sort keeps insertion order among same-date groups
    out.sort(key=lambda g: recency_key(g.expense_date), reverse=True)
    return out


@dataclass
class ExpenseFilter:
    """Report filter criteria. None means "all" for every field; date bounds are inclusive."""
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    payee_id: Optional[str] = None
    category: Optional[str] = None
    payer_id: Optional[str] = None

    def __post_init__(self):
        # bounds compare against UTC calendar days
        self.start_date = calendar_day(self.start_date)
        self.end_date = calendar_day(self.end_date)

    def matches(self, e: Expense) -> bool:
        if self.payee_id is not None and e.payee_id != self.payee_id:
            return False
        if self.category is not None and e.category != self.category:
            return False
        if self.payer_id is not None and self.payer_id not in e.payers:
            return False
        if self.start_date is not None or self.end_date is not None:
            day = expense_day(e)
            if day is None:
                return False
            if self.start_date is not None and day < self.start_date:
                return False
            if self.end_date is not None and day > self.end_date:
                return False
        return True


def filter_expenses(expenses: Iterable[Expense], criteria: Optional[ExpenseFilter] = None) -> List[Expense]:
    if criteria is None:
        return list(expenses)
    return [e for e in expenses if criteria.matches(e)]


def settle_suggestions(balances: Sequence[MemberBalance], tolerance: float = 0.005) -> List[Settlement]:
    """
    Produce settle-up transfers from net balances.

    Build lists of creditors (positive net) and debtors (negative net), sort
    both descending and greedily match the largest debtor with the largest
    creditor until every balance is within `tolerance` of zero.
    """
    creditors = [[b, b.net_balance] for b in balances if b.net_balance > tolerance]
    debtors = [[b, -b.net_balance] for b in balances if b.net_balance < -tolerance]
    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)

    out: List[Settlement] = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, owes = debtors[i]
        creditor, owed = creditors[j]
        pay = min(owes, owed)
        out.append(
            Settlement(
                from_id=debtor.member_id,
                from_name=debtor.display_name,
                to_id=creditor.member_id,
                to_name=creditor.display_name,
                amount=round(pay, 2),
            )
        )
        debtors[i][1] -= pay
        creditors[j][1] -= pay
        if debtors[i][1] <= tolerance:
            i += 1
        if creditors[j][1] <= tolerance:
            j += 1
    return out


class SettlementEngine:
    """
    Holds the rate table and degrade policy; report() is a pure function of
    the members, rows and display currency it is given.
    """

    def __init__(self, rates: Optional[Mapping[str, float]] = None, policy: Optional[DegradePolicy] = None):
        self.rates = dict(rates if rates is not None else PLACEHOLDER_RATES)
        self.policy = policy or DegradePolicy()

    def convert(self, expense: Expense, display_currency: str) -> float:
        return convert(expense.amount, expense.currency, display_currency, self.rates, self.policy)

    def balances(self, members, expenses, display_currency: str) -> List[MemberBalance]:
        return compute_balances(members, expenses, display_currency, self.rates, self.policy)

    def transactions(self, members, expenses, display_currency: str) -> List[TransactionGroup]:
        return group_transactions(members, expenses, display_currency, self.rates, self.policy)

    def report(
        self,
        members: Sequence[Member],
        expenses: Sequence[Expense],
        display_currency: str,
    ) -> SettlementReport:
        expenses = list(expenses)
        return SettlementReport(
            currency=display_currency,
            balances=self.balances(members, expenses, display_currency),
            by_category=spending_by_category(expenses, display_currency, self.rates, self.policy),
            by_payee=spending_by_payee(members, expenses, display_currency, self.rates, self.policy),
            by_payer_share=spending_by_payer_share(members, expenses, display_currency, self.rates, self.policy),
            by_day=spending_by_day(expenses, display_currency, self.rates, self.policy),
            total=sum(self.convert(e, display_currency) for e in expenses),
        )
