"""
report.py - tabular views of a trip for display and XLSX export

The Streamlit components render these frames; to_xlsx() packs several of
them into one workbook for the download button.
"""

from io import BytesIO
from typing import Dict, Mapping, Optional, Sequence

import pandas as pd

from tripsplit.currency import PLACEHOLDER_RATES, convert
from tripsplit.models import Aggregate, Expense, Member, SettlementReport
from tripsplit.policy import DegradePolicy, LENIENT
from tripsplit.settlement import UNKNOWN_MEMBER, expense_day, recency_key


EXPENSE_COLUMNS = ["date", "description", "payee", "category", "payers", "original_amount", "currency", "amount"]
BALANCE_COLUMNS = ["member", "total_paid", "total_owed", "net_balance", "status"]


def expenses_frame(
    members: Sequence[Member],
    expenses: Sequence[Expense],
    display_currency: str,
    rates: Optional[Mapping[str, float]] = None,
    policy: DegradePolicy = LENIENT,
) -> pd.DataFrame:
    """
    One row per expense row, most recent first; `amount` is converted to the
    display currency.
    """
    names = {m.id: m.display_name for m in members}
    rows = []
    # stable sort keeps insertion order among same-date rows
    for e in sorted(expenses, key=lambda x: recency_key(x.expense_date), reverse=True):
        day = expense_day(e)
        rows.append({
            "date": day.isoformat() if day else "",
            "description": e.description,
            "payee": names.get(e.payee_id, UNKNOWN_MEMBER),
            "category": e.category,
            # payers stored as ids -> join display names for the table
            "payers": ", ".join(names.get(p, UNKNOWN_MEMBER) for p in e.payers),
            "original_amount": float(e.amount),
            "currency": e.currency,
            "amount": convert(e.amount, e.currency, display_currency, rates or PLACEHOLDER_RATES, policy),
        })
    return pd.DataFrame(rows, columns=EXPENSE_COLUMNS)


def balance_status(net: float) -> str:
    if net >= 0:
        return f"Owed {net:.2f}"
    return f"Owes {abs(net):.2f}"


def balances_frame(report: SettlementReport) -> pd.DataFrame:
    rows = [
        {
            "member": b.display_name,
            "total_paid": b.total_paid,
            "total_owed": b.total_owed,
            "net_balance": b.net_balance,
            "status": balance_status(b.net_balance),
        }
        for b in report.balances
    ]
    return pd.DataFrame(rows, columns=BALANCE_COLUMNS)


def aggregate_frame(pairs: Aggregate, label: str = "name") -> pd.DataFrame:
    """(label, total) pairs as a two-column frame with a percent share, for charting."""
    df = pd.DataFrame(list(pairs), columns=[label, "amount"])
    total = float(df["amount"].sum()) if not df.empty else 0.0
    df["percent"] = df["amount"] / total * 100 if total > 0 else 0.0
    return df


def to_xlsx(sheets: Dict[str, pd.DataFrame]) -> bytes:
    """Write each frame to its own worksheet and return the workbook bytes."""
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for sheet_name, df in sheets.items():
            df.to_excel(writer, index=False, sheet_name=sheet_name[:31])
    buffer.seek(0)
    return buffer.getvalue()


def report_sheets(
    members: Sequence[Member],
    expenses: Sequence[Expense],
    report: SettlementReport,
    rates: Optional[Mapping[str, float]] = None,
) -> Dict[str, pd.DataFrame]:
    sheets: Dict[str, pd.DataFrame] = {
        "expenses": expenses_frame(members, expenses, report.currency, rates),
        "balances": balances_frame(report),
    }
    for key, pairs in (
        ("by_category", report.by_category),
        ("by_payee", report.by_payee),
        ("by_payer_share", report.by_payer_share),
        ("by_day", report.by_day),
    ):
        sheets[key] = aggregate_frame(pairs, label="name")
    return sheets
