"""
components.py - reusable Streamlit components / forms / displays

This module contains pure-UI helpers used by the dashboard:
 - display_transaction_form(on_submit, members, ...) for adding/editing
 - spending charts (by day, by payee, by payer share, by category)
 - recent transactions, balances table, settle suggestions, report table

The form enforces the same rules as TripTracker:
 - description and category required, at least one payer
 - at least one payment line with a payee and an amount > 0
Validation errors raised by the tracker are shown inline.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import datetime

import altair as alt
import pandas as pd
import streamlit as st

from tripsplit.models import CATEGORIES, CURRENCIES, Expense, Member, Settlement, SettlementReport, TransactionGroup
from tripsplit.policy import ValidationError
from tripsplit.report import aggregate_frame, balances_frame, report_sheets, to_xlsx
from tripsplit.settlement import UNKNOWN_MEMBER, calendar_day, expense_day
from tripsplit.tracker import Payment


PALETTE = [
    "#1f77b4", "#ff7f0e", "#2ca02c", "#d62728", "#9467bd",
    "#8c564b", "#e377c2", "#7f7f7f", "#bcbd22", "#17becf"
]


def trigger_rerun():
    # st.rerun replaced experimental_rerun; support both
    if hasattr(st, "rerun"):
        st.rerun()
    elif hasattr(st, "experimental_rerun"):
        st.experimental_rerun()


def _color_scale(labels: List[str]) -> alt.Scale:
    # cycle the palette so every label gets a stable color
    times = (len(labels) + len(PALETTE) - 1) // len(PALETTE) or 1
    return alt.Scale(domain=labels, range=(PALETTE * times)[: max(1, len(labels))])


REMOVED_MEMBER_LABEL = f"{UNKNOWN_MEMBER} (removed member)"


def form_default_date(expense: Optional[Expense]) -> datetime.date:
    """UTC calendar day of an existing row, or today for a new transaction."""
    day = expense_day(expense) if expense else None
    return day or datetime.date.today()


def payee_options(member_ids: Sequence[str], payee_id: Optional[str]) -> Tuple[List[str], int]:
    """
    Choices and selected index for a payee line. A payee id that is no
    longer a trip member is kept as the last option so the edit form does
    not reassign the row to somebody else.
    """
    options = list(member_ids)
    if not payee_id:
        return options, 0
    if payee_id not in options:
        options.append(payee_id)
    return options, options.index(payee_id)


@dataclass
class TransactionInput:
    """Lightweight container passed to the on_submit callback."""
    description: str
    category: str
    expense_date: datetime.date
    payers: List[str]
    payments: List[Payment] = field(default_factory=list)


def display_transaction_form(
    on_submit: Callable[[TransactionInput], None],
    members: Sequence[Member],
    default_currency: str,
    key: str = "transaction_form",
    initial: Optional[TransactionGroup] = None,
):
    """
    Display the add/edit transaction form.

    One payment line per payee; the number of lines is kept in session_state
    so "Add another Payee" survives reruns.
    """
    if not members:
        st.info("Add trip members first.")
        return
    member_ids = [m.id for m in members]
    names = {m.id: m.display_name for m in members}

    lines_key = f"{key}_lines"
    if lines_key not in st.session_state:
        st.session_state[lines_key] = len(initial.rows) if initial else 1
    if st.button("+ Add another Payee", key=f"{key}_add_line"):
        st.session_state[lines_key] += 1

    first = initial.rows[0] if initial else None
    with st.form(key=key):
        description = st.text_input("Description", value=first.description if first else "")
        cat_index = CATEGORIES.index(first.category) if first and first.category in CATEGORIES else 0
        category = st.selectbox("Category", options=CATEGORIES, index=cat_index)
        date_val = st.date_input("Date", value=form_default_date(first))

        payments: List[Payment] = []
        for i in range(st.session_state[lines_key]):
            row = initial.rows[i] if initial and i < len(initial.rows) else None
            col1, col2, col3 = st.columns([2, 2, 1])
            with col1:
                options, payee_idx = payee_options(member_ids, row.payee_id if row else None)
                if row and row.payee_id and row.payee_id not in names:
                    st.warning(f"Payee {row.payee_id!r} is no longer a trip member.")
                payee = st.selectbox("Payee", options=options, index=payee_idx,
                                     format_func=lambda mid: names.get(mid, REMOVED_MEMBER_LABEL),
                                     key=f"{key}_payee_{i}")
            with col2:
                amount = st.number_input("Amount", min_value=0.0, format="%.2f",
                                         value=float(row.amount) if row else 0.0, key=f"{key}_amount_{i}")
            with col3:
                currency = row.currency if row else default_currency
                cur_idx = CURRENCIES.index(currency) if currency in CURRENCIES else 0
                currency = st.selectbox("Currency", options=CURRENCIES, index=cur_idx, key=f"{key}_currency_{i}")
            # zero amount means the line was left blank
            payments.append(Payment(payee_id=payee, amount=amount or None, currency=currency,
                                    id=row.id if row else None))

        default_payers = list(first.payers) if first else member_ids
        payers = st.multiselect(
            "Payers",
            options=member_ids + [p for p in default_payers if p not in names],
            default=default_payers,
            format_func=lambda mid: names.get(mid, REMOVED_MEMBER_LABEL),
        )

        if st.form_submit_button("Save"):
            try:
                on_submit(TransactionInput(
                    description=description.strip(),
                    category=category,
                    expense_date=date_val,
                    payers=payers,
                    payments=payments,
                ))
            except ValidationError as exc:
                st.error(str(exc))
                return
            del st.session_state[lines_key]
            st.success("Transaction saved.")


def display_bar_chart(pairs, currency: str, title: str):
    df = aggregate_frame(pairs, label="day")
    if df.empty:
        st.write("No expenses recorded yet.")
        return
    df["day"] = pd.to_datetime(df["day"])
    chart = alt.Chart(df).mark_bar().encode(
        x=alt.X("day:T", title="Day", axis=alt.Axis(format="%b %d", labelAngle=-45)),
        y=alt.Y("amount:Q", title=f"Amount ({currency})"),
        tooltip=[
            alt.Tooltip("day:T", title="Day", format="%Y-%m-%d"),
            alt.Tooltip("amount:Q", title=f"Amount ({currency})", format=".2f"),
        ],
    ).properties(title=title, width="container", height=300)
    st.altair_chart(chart, use_container_width=True)


def display_pie_chart(pairs, currency: str, title: str):
    df = aggregate_frame(pairs, label="name")
    # Avoid rendering empty/zero-only charts
    if df.empty or df["amount"].sum() <= 0:
        st.write("No expenses recorded yet.")
        return
    labels = list(df["name"])
    pie = alt.Chart(df).mark_arc(innerRadius=50).encode(
        theta=alt.Theta(field="amount", type="quantitative"),
        color=alt.Color(field="name", type="nominal", scale=_color_scale(labels), legend=alt.Legend(title=None)),
        tooltip=[
            alt.Tooltip("name:N", title="Name"),
            alt.Tooltip("amount:Q", title=f"Amount ({currency})", format=".2f"),
            alt.Tooltip("percent:Q", title="Share", format=".1f"),
        ],
    ).properties(title=title)
    st.altair_chart(pie, use_container_width=True)


def display_recent_transactions(
    groups: Sequence[TransactionGroup],
    currency: str,
    on_edit: Optional[Callable[[TransactionGroup], None]] = None,
    on_delete: Optional[Callable[[TransactionGroup], None]] = None,
    limit: int = 10,
):
    st.subheader("Recent Transactions")
    if not groups:
        st.write("No expenses recorded yet.")
        return
    for g in groups[:limit]:
        col1, col2, col3 = st.columns([4, 2, 1])
        with col1:
            st.markdown(f"**{g.description}**")
            st.caption(f"Payees: {g.payee_label} • {g.category}")
        with col2:
            st.markdown(f"**{g.total:.2f} {currency}**")
            day = calendar_day(g.expense_date)
            if day:
                st.caption(day.isoformat())
        with col3:
            if on_edit and st.button("Edit", key=f"edit_{g.group_id}"):
                on_edit(g)
            if on_delete and st.button("Delete", key=f"delete_{g.group_id}"):
                on_delete(g)


def display_balances(report: SettlementReport):
    """Show paid/owed/net per member in the report currency."""
    st.subheader(f"Summary ({report.currency})")
    if not report.balances:
        st.write("No balances to display.")
        return
    df = balances_frame(report)
    st.dataframe(
        df.style.format({"total_paid": "{:.2f}", "total_owed": "{:.2f}", "net_balance": "{:.2f}"}),
        use_container_width=True,
    )


def display_settle_suggestions(suggestions: Sequence[Settlement], currency: str):
    st.subheader("Settle Suggestions")
    if not suggestions:
        st.write("Nothing to settle.")
        return
    for s in suggestions:
        st.write(f"  {s.describe(currency)}")


def display_expense_table(members, expenses, report: SettlementReport, rates: Optional[Dict[str, float]] = None):
    """
    Render the filtered rows with their converted amount and a grand total,
    and provide an XLSX export of every report view.
    """
    sheets = report_sheets(members, expenses, report, rates)
    df = sheets["expenses"]
    if df.empty:
        st.write("No expenses match the filters.")
        return
    st.dataframe(df.style.format({"original_amount": "{:.2f}", "amount": "{:.2f}"}), use_container_width=True)
    st.markdown(f"**Grand Total: {report.total:.2f} {report.currency}**")

    st.download_button(
        label="Download as XLSX",
        data=to_xlsx(sheets),
        file_name="trip_report.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
