import datetime
from io import BytesIO

import pandas as pd
import pytest

from tripsplit.models import Expense, Member
from tripsplit.policy import LENIENT
from tripsplit.report import (
    BALANCE_COLUMNS,
    EXPENSE_COLUMNS,
    aggregate_frame,
    balances_frame,
    expenses_frame,
    report_sheets,
    to_xlsx,
)
from tripsplit.settlement import SettlementEngine

MEMBERS = [Member("a", "Alice"), Member("b", "Bob")]
EXPENSES = [
    Expense(id="1", transaction_group_id="g1", description="Hotel", category="Hotel",
            expense_date=datetime.datetime(2024, 5, 1), payee_id="a", payers=["a", "b"],
            amount=93.0, currency="EUR"),
    Expense(id="2", transaction_group_id="g2", description="Taxi", category="Transport",
            expense_date=datetime.datetime(2024, 5, 2), payee_id="b", payers=["a", "ghost"],
            amount=20.0, currency="USD"),
]


def test_expenses_frame():
    df = expenses_frame(MEMBERS, EXPENSES, "USD")
    assert list(df.columns) == EXPENSE_COLUMNS
    assert len(df) == 2
    # most recent first
    assert list(df["date"]) == ["2024-05-02", "2024-05-01"]
    assert df.loc[1, "payee"] == "Alice"
    assert df.loc[1, "payers"] == "Alice, Bob"
    assert df.loc[1, "original_amount"] == 93.0
    assert df.loc[1, "amount"] == pytest.approx(100.0)
    assert df.loc[0, "payers"] == "Alice, Unknown"


def test_expenses_frame_orders_newest_first_and_keeps_ties_stable():
    rows = [
        Expense(id="old", description="Old", expense_date=datetime.date(2024, 4, 1), payee_id="a", payers=["a"], amount=1.0),
        Expense(id="undated", description="Undated", payee_id="a", payers=["a"], amount=2.0),
        Expense(id="new1", description="New 1", expense_date=datetime.datetime(2024, 6, 1), payee_id="a", payers=["a"], amount=3.0),
        Expense(id="new2", description="New 2", expense_date=datetime.datetime(2024, 6, 1), payee_id="b", payers=["b"], amount=4.0),
    ]
    df = expenses_frame(MEMBERS, rows, "USD")
    assert list(df["description"]) == ["New 1", "New 2", "Old", "Undated"]
    assert list(df["date"]) == ["2024-06-01", "2024-06-01", "2024-04-01", ""]


def test_balances_frame_status():
    report = SettlementEngine(policy=LENIENT).report(MEMBERS, EXPENSES[:1], "EUR")
    df = balances_frame(report)
    assert list(df.columns) == BALANCE_COLUMNS
    assert list(df["member"]) == ["Alice", "Bob"]
    assert list(df["status"]) == ["Owed 46.50", "Owes 46.50"]


def test_aggregate_frame_percent():
    df = aggregate_frame([("Hotel", 75.0), ("Misc", 25.0)], label="category")
    assert list(df.columns) == ["category", "amount", "percent"]
    assert list(df["percent"]) == [75.0, 25.0]
    assert aggregate_frame([]).empty


def test_xlsx_export_contains_every_sheet():
    report = SettlementEngine(policy=LENIENT).report(MEMBERS, EXPENSES, "USD")
    data = to_xlsx(report_sheets(MEMBERS, EXPENSES, report))
    assert data[:2] == b"PK"
    sheets = pd.read_excel(BytesIO(data), sheet_name=None)
    assert set(sheets) == {"expenses", "balances", "by_category", "by_payee", "by_payer_share", "by_day"}
    assert len(sheets["expenses"]) == 2
    assert list(sheets["by_day"]["name"]) == ["2024-05-01", "2024-05-02"]
