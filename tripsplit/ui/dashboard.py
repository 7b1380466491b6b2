"""
dashboard.py - Streamlit UI entrypoint and orchestration

This module wires the UI components (tripsplit.ui.components) with the trip
state (tripsplit.tracker) and the settlement engine. The main() function
builds the sidebar menu and routes actions to components and tracker methods.

Design notes:
 - Keep the dashboard responsible only for UI orchestration and presentation.
 - Persistence and validation live in tripsplit.tracker; every number shown
   comes from tripsplit.settlement.
"""

import datetime

import streamlit as st

from tripsplit.models import CATEGORIES, CURRENCIES
from tripsplit.policy import ValidationError
from tripsplit.settlement import ExpenseFilter, settle_suggestions
from tripsplit.tracker import TripTracker
from tripsplit.ui import components


ALL = "all"


def _currency_selector(tracker: TripTracker, key: str) -> str:
    idx = CURRENCIES.index(tracker.default_currency) if tracker.default_currency in CURRENCIES else 0
    return st.selectbox("Display currency", options=CURRENCIES, index=idx, key=key)


def _report_filters(tracker: TripTracker) -> ExpenseFilter:
    member_ids = [ALL] + [m.id for m in tracker.members]
    names = {m.id: m.display_name for m in tracker.members}

    def label(value):
        return "All" if value == ALL else names.get(value, value)

    with st.expander("Filters"):
        col1, col2 = st.columns(2)
        with col1:
            start = st.date_input("Start date", value=None, key="filter_start")
            payee = st.selectbox("Payee", options=member_ids, format_func=label, key="filter_payee")
            category = st.selectbox("Category", options=[ALL] + CATEGORIES, format_func=label, key="filter_category")
        with col2:
            end = st.date_input("End date", value=None, key="filter_end")
            payer = st.selectbox("Payer", options=member_ids, format_func=label, key="filter_payer")
    return ExpenseFilter(
        start_date=start if isinstance(start, datetime.date) else None,
        end_date=end if isinstance(end, datetime.date) else None,
        payee_id=None if payee == ALL else payee,
        category=None if category == ALL else category,
        payer_id=None if payer == ALL else payer,
    )


def _trip_picker(tracker: TripTracker):
    """Sidebar trip selector plus a small form to start a new trip."""
    trips = tracker.list_trips()
    ids = [t.id for t in trips]
    names = {t.id: t.name for t in trips}
    chosen = st.sidebar.selectbox("Trip", options=ids, index=ids.index(tracker.current_id),
                                  format_func=lambda tid: names.get(tid, tid))
    if chosen != tracker.current_id:
        tracker.select_trip(chosen)
        components.trigger_rerun()

    with st.sidebar.expander("New trip"):
        with st.form(key="new_trip_form", clear_on_submit=True):
            name = st.text_input("Trip name")
            idx = CURRENCIES.index(tracker.fallback_currency) if tracker.fallback_currency in CURRENCIES else 0
            currency = st.selectbox("Default currency", options=CURRENCIES, index=idx)
            if st.form_submit_button("Create trip"):
                try:
                    tracker.create_trip(name, currency)
                    components.trigger_rerun()
                except ValidationError as exc:
                    st.error(str(exc))


def show_dashboard(tracker: TripTracker):
    currency = _currency_selector(tracker, "dashboard_currency")
    report = tracker.report(currency)

    components.display_bar_chart(report.by_day, currency, f"Spending by Day ({currency})")
    col1, col2, col3 = st.columns(3)
    with col1:
        components.display_pie_chart(report.by_payee, currency, f"Spending by Payee ({currency})")
    with col2:
        components.display_pie_chart(report.by_payer_share, currency, f"Spending by Payer ({currency})")
    with col3:
        components.display_pie_chart(report.by_category, currency, f"Spending by Category ({currency})")

    def on_edit(group):
        st.session_state["editing_group"] = group.group_id
        st.info("Open 'Edit Expense' in the sidebar to change this transaction.")

    def on_delete(group):
        if tracker.delete_transaction(group.group_id):
            components.trigger_rerun()

    components.display_recent_transactions(tracker.transactions(currency), currency, on_edit, on_delete)


def show_report(tracker: TripTracker):
    currency = _currency_selector(tracker, "report_currency")
    st.caption(f"All amounts shown in {currency}")
    criteria = _report_filters(tracker)
    expenses = tracker.list_expenses(criteria)
    report = tracker.report(currency, criteria)

    components.display_expense_table(tracker.members, expenses, report, tracker.engine.rates)
    components.display_balances(report)
    components.display_settle_suggestions(settle_suggestions(report.balances), currency)


def show_edit(tracker: TripTracker):
    groups = tracker.transactions()
    if not groups:
        st.info("No expenses recorded.")
        return
    selected_id = st.session_state.get("editing_group")
    index = next((i for i, g in enumerate(groups) if g.group_id == selected_id), 0)
    def label(i):
        g = groups[i]
        return f"{g.description} • {g.payee_label} • {g.total:.2f} {tracker.default_currency}"

    group = groups[st.selectbox("Select transaction", options=list(range(len(groups))), index=index, format_func=label)]

    def on_submit(tx: components.TransactionInput):
        tracker.edit_transaction(group.group_id, tx.description, tx.category, tx.expense_date, tx.payers, tx.payments)

    components.display_transaction_form(
        on_submit, tracker.members, tracker.default_currency, key=f"edit_{group.group_id}", initial=group,
    )

    # Delete UI (separate to avoid accidental deletes)
    st.markdown("---")
    delete_confirm = st.checkbox("I confirm I want to delete this transaction")
    if st.button("Delete transaction") and delete_confirm:
        if tracker.delete_transaction(group.group_id):
            st.success("Transaction deleted.")
            components.trigger_rerun()
        else:
            st.error("Failed to delete transaction.")


def show_trip_settings(tracker: TripTracker):
    with st.form(key="trip_form"):
        name = st.text_input("Trip name", value=tracker.name)
        idx = CURRENCIES.index(tracker.default_currency) if tracker.default_currency in CURRENCIES else 0
        currency = st.selectbox("Default currency", options=CURRENCIES, index=idx)
        if st.form_submit_button("Save trip"):
            try:
                tracker.update_trip(name=name, default_currency=currency)
                st.success("Trip updated.")
            except ValidationError as exc:
                st.error(str(exc))

    st.subheader("Members")
    for m in tracker.members:
        col1, col2 = st.columns([4, 1])
        col1.write(m.display_name)
        if col2.button("Remove", key=f"remove_{m.id}"):
            tracker.remove_member(m.id)
            components.trigger_rerun()
    with st.form(key="member_form", clear_on_submit=True):
        new_name = st.text_input("New member name")
        if st.form_submit_button("Add member"):
            try:
                tracker.add_member(new_name)
                components.trigger_rerun()
            except ValidationError as exc:
                st.error(str(exc))

    st.subheader("Delete trip")
    confirm = st.checkbox(f"Delete {tracker.name!r} with all of its members and expenses", key="confirm_delete_trip")
    if st.button("Delete trip", disabled=not confirm):
        tracker.delete_trip(tracker.current_id)
        components.trigger_rerun()


def main():
    """
    Streamlit page: sidebar menu controls which view is shown.
    Actions:
      - Dashboard: daily bar chart, payee/payer/category pies, recent transactions
      - Report: filters, converted expense table, balances, settle suggestions, XLSX
      - Add Expense / Edit Expense: transaction form backed by TripTracker
      - Trip picker (sidebar): switch between trips or create a new one
      - Trip & Members: rename trip, default currency, member list, delete trip
      - Clear Trip: reset the selected trip (with single-button confirmation)
    """
    tracker = TripTracker()
    _trip_picker(tracker)
    st.title(tracker.name)

    menu = ["Dashboard", "Report", "Add Expense", "Edit Expense", "Trip & Members", "Clear Trip"]
    choice = st.sidebar.selectbox("Select an option", menu)

    if choice == "Dashboard":
        show_dashboard(tracker)

    elif choice == "Report":
        show_report(tracker)

    elif choice == "Add Expense":
        def on_submit(tx: components.TransactionInput):
            tracker.add_transaction(tx.description, tx.category, tx.expense_date, tx.payers, tx.payments)

        components.display_transaction_form(on_submit, tracker.members, tracker.default_currency)

    elif choice == "Edit Expense":
        show_edit(tracker)

    elif choice == "Trip & Members":
        show_trip_settings(tracker)

    elif choice == "Clear Trip":
        # simple confirm button to avoid accidental data loss
        if st.button("Confirm Clear"):
            tracker.clear()
            st.success("Trip cleared.")


if __name__ == "__main__":
    main()
