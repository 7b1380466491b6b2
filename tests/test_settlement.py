import datetime

import pytest

from tripsplit.models import Expense, Member
from tripsplit.policy import (
    DegradePolicy,
    EmptyPayersError,
    LENIENT,
    STRICT,
    UnknownCurrencyError,
    UnknownMemberError,
)
from tripsplit.settlement import (
    ExpenseFilter,
    SettlementEngine,
    calendar_day,
    compute_balances,
    filter_expenses,
    group_transactions,
    settle_suggestions,
    spending_by_category,
    spending_by_day,
    spending_by_payee,
    spending_by_payer_share,
)

RATES = {"USD": 1.0, "EUR": 0.93, "JPY": 157.0}
MEMBERS = [Member("a", "Alice"), Member("b", "Bob"), Member("c", "Carol")]


def _exp(id, payee, payers, amount, currency="USD", group="", category="Misc", date=None):
    return Expense(
        id=id,
        transaction_group_id=group,
        description=f"expense {id}",
        category=category,
        expense_date=date,
        payee_id=payee,
        payers=list(payers),
        amount=amount,
        currency=currency,
    )


def _by_id(balances):
    return {b.member_id: b for b in balances}


def test_single_expense_example():
    members = [Member("a", "A"), Member("b", "B")]
    expenses = [_exp("1", "a", ["a", "b"], 100.0)]
    bal = _by_id(compute_balances(members, expenses, "USD", {"USD": 1}, LENIENT))
    assert bal["a"].total_paid == 100.0
    assert bal["a"].total_owed == 50.0
    assert bal["a"].net_balance == 50.0
    assert bal["b"].total_paid == 0.0
    assert bal["b"].total_owed == 50.0
    assert bal["b"].net_balance == -50.0


def test_balances_follow_member_order_and_include_idle_members():
    expenses = [_exp("1", "b", ["a", "b"], 10.0)]
    balances = compute_balances(MEMBERS, expenses, "USD", RATES, LENIENT)
    assert [b.member_id for b in balances] == ["a", "b", "c"]
    assert balances[2].total_paid == 0.0
    assert balances[2].total_owed == 0.0


def test_zero_sum_across_currencies():
    expenses = [
        _exp("1", "a", ["a", "b", "c"], 120.0, "EUR"),
        _exp("2", "b", ["a", "c"], 9000.0, "JPY"),
        _exp("3", "c", ["b"], 33.33, "USD"),
        _exp("4", "a", ["a", "b", "c"], 10.0, "USD"),
    ]
    for currency in ("USD", "EUR", "JPY"):
        balances = compute_balances(MEMBERS, expenses, currency, RATES, LENIENT)
        assert abs(sum(b.net_balance for b in balances)) < 1e-6


def test_display_currency_scales_balances_uniformly():
    expenses = [
        _exp("1", "a", ["a", "b"], 80.0, "EUR"),
        _exp("2", "b", ["a", "b", "c"], 3000.0, "JPY"),
    ]
    usd = _by_id(compute_balances(MEMBERS, expenses, "USD", RATES, LENIENT))
    eur = _by_id(compute_balances(MEMBERS, expenses, "EUR", RATES, LENIENT))
    for member_id in ("a", "b", "c"):
        assert eur[member_id].net_balance == pytest.approx(usd[member_id].net_balance * RATES["EUR"])
        assert eur[member_id].total_paid == pytest.approx(usd[member_id].total_paid * RATES["EUR"])


def test_equal_split_among_payers():
    expenses = [_exp("1", "a", ["a", "b", "c"], 100.0)]
    balances = compute_balances(MEMBERS, expenses, "USD", RATES, LENIENT)
    for b in balances:
        assert b.total_owed == pytest.approx(100.0 / 3)
    assert sum(b.total_owed for b in balances) == pytest.approx(100.0)


def test_empty_payers_does_not_divide_by_zero():
    expenses = [_exp("1", "a", [], 40.0)]
    bal = _by_id(compute_balances(MEMBERS, expenses, "USD", RATES, LENIENT))
    assert bal["a"].total_paid == 40.0
    assert all(b.total_owed == 0.0 for b in bal.values())


def test_unknown_member_is_skipped_without_new_entry():
    expenses = [
        _exp("1", "ghost", ["a", "b"], 30.0),
        _exp("2", "a", ["a", "ghost"], 20.0),
    ]
    balances = compute_balances(MEMBERS, expenses, "USD", RATES, LENIENT)
    bal = _by_id(balances)
    assert len(balances) == 3
    assert "ghost" not in bal
    assert bal["a"].total_paid == 20.0
    assert bal["a"].total_owed == pytest.approx(15.0 + 10.0)
    assert bal["b"].total_owed == pytest.approx(15.0)


def test_unknown_currency_uses_rate_of_one():
    expenses = [_exp("1", "a", ["a", "b"], 50.0, "XYZ")]
    bal = _by_id(compute_balances(MEMBERS, expenses, "EUR", RATES, LENIENT))
    assert bal["a"].total_paid == pytest.approx(50.0 * 0.93)


def test_strict_policy_raises():
    strict = DegradePolicy(STRICT)
    with pytest.raises(UnknownCurrencyError):
        compute_balances(MEMBERS, [_exp("1", "a", ["a"], 5.0, "XYZ")], "USD", RATES, strict)
    with pytest.raises(EmptyPayersError):
        compute_balances(MEMBERS, [_exp("1", "a", [], 5.0)], "USD", RATES, strict)
    with pytest.raises(UnknownMemberError):
        compute_balances(MEMBERS, [_exp("1", "ghost", ["a"], 5.0)], "USD", RATES, strict)


def test_warn_policy_logs_and_keeps_result(caplog):
    warn = DegradePolicy("warn")
    with caplog.at_level("WARNING"):
        bal = _by_id(compute_balances(MEMBERS, [_exp("1", "ghost", ["a"], 5.0)], "USD", RATES, warn))
    assert bal["a"].total_owed == 5.0
    assert any("ghost" in r.getMessage() for r in caplog.records)


def test_invalid_policy_mode_rejected():
    with pytest.raises(ValueError):
        DegradePolicy("loud")


def test_payee_and_payer_share_aggregates_differ():
    expenses = [_exp("1", "a", ["a", "b"], 100.0)]
    assert spending_by_payee(MEMBERS, expenses, "USD", RATES, LENIENT) == [("Alice", 100.0)]
    assert spending_by_payer_share(MEMBERS, expenses, "USD", RATES, LENIENT) == [("Alice", 50.0), ("Bob", 50.0)]


def test_category_aggregate_defaults_to_misc_and_keeps_insertion_order():
    expenses = [
        _exp("1", "a", ["a"], 10.0, category="Hotel"),
        _exp("2", "a", ["a"], 5.0, category=""),
        _exp("3", "b", ["b"], 7.0, category="Hotel"),
    ]
    assert spending_by_category(expenses, "USD", RATES, LENIENT) == [("Hotel", 17.0), ("Misc", 5.0)]


def test_day_aggregate_is_chronological_and_utc():
    tz = datetime.timezone(datetime.timedelta(hours=5))
    expenses = [
        _exp("1", "a", ["a"], 10.0, date=datetime.datetime(2024, 5, 3, 12, 0)),
        # 01:00 at UTC+5 is still May 1st in UTC
        _exp("2", "a", ["a"], 20.0, date=datetime.datetime(2024, 5, 2, 1, 0, tzinfo=tz)),
        _exp("3", "b", ["b"], 5.0, date=datetime.datetime(2024, 5, 3, 23, 0)),
        _exp("4", "b", ["b"], 99.0),
    ]
    assert spending_by_day(expenses, "USD", RATES, LENIENT) == [
        ("2024-05-01", 20.0),
        ("2024-05-03", 15.0),
    ]


def test_aggregate_totals_agree_with_report_total():
    engine = SettlementEngine(RATES, LENIENT)
    expenses = [
        _exp("1", "a", ["a", "b"], 120.0, "EUR", category="Hotel"),
        _exp("2", "b", ["a", "b", "c"], 4500.0, "JPY", category="Food and Beverage"),
        _exp("3", "c", ["c"], 12.5, "USD"),
    ]
    report = engine.report(MEMBERS, expenses, "EUR")
    by_category = sum(v for _, v in report.by_category)
    by_payee = sum(v for _, v in report.by_payee)
    by_share = sum(v for _, v in report.by_payer_share)
    assert by_category == pytest.approx(report.total)
    assert by_payee == pytest.approx(report.total)
    assert by_share == pytest.approx(report.total)
    assert report.currency == "EUR"
    assert report.balance_for("a").total_paid == pytest.approx(120.0)


def test_transaction_group_example():
    members = [Member("a", "A"), Member("b", "B")]
    expenses = [
        _exp("1", "a", ["a", "b"], 60.0, group="g1"),
        _exp("2", "b", ["a", "b"], 40.0, group="g1"),
    ]
    groups = group_transactions(members, expenses, "USD", {"USD": 1}, LENIENT)
    assert len(groups) == 1
    assert groups[0].group_id == "g1"
    assert groups[0].total == 100.0
    assert groups[0].payee_label == "A, B"
    assert len(groups[0].rows) == 2


def test_transaction_groups_sorted_most_recent_first():
    expenses = [
        _exp("1", "a", ["a"], 1.0, group="old", date=datetime.datetime(2024, 1, 1)),
        _exp("2", "b", ["b"], 2.0, group="new", date=datetime.datetime(2024, 3, 1)),
        _exp("3", "a", ["a"], 3.0, group="old", date=datetime.datetime(2024, 1, 1)),
        _exp("solo", "c", ["c"], 4.0, date=datetime.datetime(2024, 2, 1)),
    ]
    groups = group_transactions(MEMBERS, expenses, "USD", RATES, LENIENT)
    assert [g.group_id for g in groups] == ["new", "solo", "old"]
    assert groups[2].total == 4.0
    assert groups[2].payee_names == ["Alice"]


def test_transaction_group_names_unknown_payee():
    expenses = [
        _exp("1", "ghost", ["a"], 5.0, group="g"),
        _exp("2", "a", ["a"], 5.0, group="g"),
    ]
    groups = group_transactions(MEMBERS, expenses, "USD", RATES, LENIENT)
    assert groups[0].payee_names == ["Unknown", "Alice"]
    assert groups[0].total == 10.0


def test_filter_expenses():
    expenses = [
        _exp("1", "a", ["a", "b"], 1.0, category="Hotel", date=datetime.datetime(2024, 5, 1)),
        _exp("2", "b", ["b", "c"], 2.0, category="Flight", date=datetime.datetime(2024, 5, 5)),
        _exp("3", "a", ["c"], 3.0, category="Hotel", date=datetime.datetime(2024, 5, 10)),
        _exp("4", "a", ["a"], 4.0, category="Hotel"),
    ]

    def ids(criteria):
        return [e.id for e in filter_expenses(expenses, criteria)]

    assert ids(None) == ["1", "2", "3", "4"]
    assert ids(ExpenseFilter()) == ["1", "2", "3", "4"]
    assert ids(ExpenseFilter(payee_id="a")) == ["1", "3", "4"]
    assert ids(ExpenseFilter(category="Flight")) == ["2"]
    assert ids(ExpenseFilter(payer_id="c")) == ["2", "3"]
    assert ids(ExpenseFilter(start_date=datetime.date(2024, 5, 5))) == ["2", "3"]
    assert ids(ExpenseFilter(end_date=datetime.date(2024, 5, 5))) == ["1", "2"]
    assert ids(ExpenseFilter(payee_id="a", category="Hotel", end_date=datetime.date(2024, 5, 31))) == ["1", "3"]


def test_settle_suggestions_two_members():
    members = [Member("a", "Alice"), Member("b", "Bob")]
    balances = compute_balances(members, [_exp("1", "a", ["a", "b"], 100.0)], "USD", RATES, LENIENT)
    suggestions = settle_suggestions(balances)
    assert len(suggestions) == 1
    assert suggestions[0].from_id == "b"
    assert suggestions[0].to_id == "a"
    assert suggestions[0].amount == 50.0
    assert suggestions[0].describe("USD") == "Bob pays Alice 50.00 USD"


def test_settle_suggestions_clear_all_balances():
    expenses = [
        _exp("1", "a", ["a", "b", "c"], 90.0),
        _exp("2", "b", ["b", "c"], 20.0),
    ]
    balances = compute_balances(MEMBERS, expenses, "USD", RATES, LENIENT)
    net = {b.member_id: b.net_balance for b in balances}
    for s in settle_suggestions(balances):
        net[s.from_id] += s.amount
        net[s.to_id] -= s.amount
    assert all(abs(v) < 0.01 for v in net.values())


def test_settle_suggestions_empty_when_even():
    balances = compute_balances(MEMBERS, [_exp("1", "a", ["a"], 10.0)], "USD", RATES, LENIENT)
    assert settle_suggestions(balances) == []


def test_filter_accepts_datetime_bounds():
    expenses = [
        _exp("1", "a", ["a"], 1.0, date=datetime.datetime(2024, 4, 30, 23, 0)),
        _exp("2", "a", ["a"], 2.0, date=datetime.datetime(2024, 5, 2, 10, 0)),
        _exp("3", "a", ["a"], 3.0, date=datetime.datetime(2024, 5, 6, 8, 0)),
    ]
    criteria = ExpenseFilter(
        start_date=datetime.datetime(2024, 5, 1),
        end_date=datetime.datetime(2024, 5, 6, 0, 0),
    )
    assert criteria.start_date == datetime.date(2024, 5, 1)
    assert criteria.end_date == datetime.date(2024, 5, 6)
    assert [e.id for e in filter_expenses(expenses, criteria)] == ["2", "3"]


def test_calendar_day_handles_dates_and_aware_datetimes():
    tz = datetime.timezone(datetime.timedelta(hours=-8))
    assert calendar_day(None) is None
    assert calendar_day(datetime.date(2024, 5, 1)) == datetime.date(2024, 5, 1)
    assert calendar_day(datetime.datetime(2024, 5, 1, 20, 0, tzinfo=tz)) == datetime.date(2024, 5, 2)


def test_transaction_groups_accept_plain_dates():
    expenses = [
        _exp("1", "a", ["a"], 1.0, group="older", date=datetime.date(2024, 1, 1)),
        _exp("2", "b", ["b"], 2.0, group="newer", date=datetime.datetime(2024, 2, 1, 9, 0)),
    ]
    groups = group_transactions(MEMBERS, expenses, "USD", RATES, LENIENT)
    assert [g.group_id for g in groups] == ["newer", "older"]
