"""
tracker.py - trip state and persistence

Responsibilities:
 - keep every trip in memory, each with its own name, default currency,
   members and expense rows; one trip is selected at a time
 - log, edit and delete transactions (one row per payee payment)
 - persist/load all trips as a local JSON snapshot, written atomically
 - hand snapshots of the selected trip to the settlement engine for reports
"""

from typing import List, Dict, Optional, Any, Iterable
from collections import OrderedDict
from dataclasses import dataclass
import json
import os
import shutil
import tempfile
import uuid
import logging

from tripsplit.config import load_settings
from tripsplit.currency import PLACEHOLDER_RATES
from tripsplit.models import CATEGORIES, Expense, Member, SettlementReport, TransactionGroup, Trip, parse_date
from tripsplit.policy import DegradePolicy, ValidationError
from tripsplit.settlement import ExpenseFilter, SettlementEngine, filter_expenses


logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

DEFAULT_TRIP_NAME = "My Trip"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Payment:
    """One payee line of the add/edit form. `id` is set for rows that already exist."""
    payee_id: str
    amount: Any
    currency: str = "USD"
    id: Optional[str] = None


class TripTracker:
    """
    Multi-trip tracker. The UI creates one TripTracker() and uses its
    methods to read/write data; reports are recomputed on every call.

    Member, transaction and report methods act on the selected trip. There
    is always at least one trip: a fresh tracker (or one whose last trip was
    deleted) holds an empty "My Trip".
    """

    def __init__(self, data_file: Optional[str] = None, engine: Optional[SettlementEngine] = None):
        settings = load_settings()
        self.data_file = data_file or settings.data_file
        self.engine = engine or SettlementEngine(PLACEHOLDER_RATES, DegradePolicy(settings.degrade_policy))
        self.fallback_currency = settings.display_currency
        self.trips: Dict[str, Trip] = OrderedDict()
        self.current_id: Optional[str] = None
        self.load()
        self._ensure_trip()

    # -----------------------
    # Trips
    # -----------------------
    def _ensure_trip(self):
        if not self.trips:
            trip = Trip(id=_new_id(), name=DEFAULT_TRIP_NAME, default_currency=self.fallback_currency)
            self.trips[trip.id] = trip
        if self.current_id not in self.trips:
            self.current_id = next(iter(self.trips))

    @property
    def current(self) -> Trip:
        return self.trips[self.current_id]

    @property
    def name(self) -> str:
        return self.current.name

    @property
    def default_currency(self) -> str:
        return self.current.default_currency

    @property
    def members(self) -> List[Member]:
        return self.current.members

    @members.setter
    def members(self, value: List[Member]):
        self.current.members = value

    @property
    def expenses(self) -> List[Expense]:
        return self.current.expenses

    @expenses.setter
    def expenses(self, value: List[Expense]):
        self.current.expenses = value

    def list_trips(self) -> List[Trip]:
        return list(self.trips.values())

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        return self.trips.get(trip_id)

    def _trip_name(self, name: Optional[str]) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Trip name is required.")
        return name

    def _trip_currency(self, currency: str) -> str:
        if currency not in PLACEHOLDER_RATES:
            raise ValidationError(f"Unsupported currency {currency!r}.")
        return currency

    def create_trip(self, name: str, default_currency: Optional[str] = None, select: bool = True) -> Trip:
        trip = Trip(
            id=_new_id(),
            name=self._trip_name(name),
            default_currency=self._trip_currency(default_currency or self.fallback_currency),
        )
        self.trips[trip.id] = trip
        if select:
            self.current_id = trip.id
        self.save()
        logger.info("Created trip %s (%r)", trip.id, trip.name)
        return trip

    def select_trip(self, trip_id: str) -> Trip:
        if trip_id not in self.trips:
            raise ValidationError(f"Unknown trip {trip_id!r}.")
        if trip_id != self.current_id:
            self.current_id = trip_id
            self.save()
        return self.current

    def rename_trip(self, trip_id: str, name: str) -> Trip:
        trip = self.trips.get(trip_id)
        if trip is None:
            raise ValidationError(f"Unknown trip {trip_id!r}.")
        trip.name = self._trip_name(name)
        self.save()
        return trip

    def delete_trip(self, trip_id: str) -> bool:
        """
        Drop a trip with all of its members and expenses. Deleting the
        selected trip selects the first remaining one.
        """
        trip = self.trips.pop(trip_id, None)
        if trip is None:
            logger.info("Trip %s not found", trip_id)
            return False
        self._ensure_trip()
        self.save()
        logger.info("Deleted trip %s (%r). Remaining trips=%d.", trip_id, trip.name, len(self.trips))
        return True

    def update_trip(self, name: Optional[str] = None, default_currency: Optional[str] = None):
        """Rename the selected trip and/or change its default currency."""
        if name is not None:
            name = self._trip_name(name)
        if default_currency is not None:
            self.current.default_currency = self._trip_currency(default_currency)
        if name is not None:
            self.current.name = name
        self.save()

    # -----------------------
    # Members
    # -----------------------
    def get_member(self, member_id: str) -> Optional[Member]:
        return next((m for m in self.members if m.id == member_id), None)

    def add_member(self, display_name: str, member_id: Optional[str] = None) -> Member:
        display_name = (display_name or "").strip()
        if not display_name:
            raise ValidationError("Member name is required.")
        member_id = member_id or _new_id()
        if self.get_member(member_id) is not None:
            raise ValidationError(f"Member {member_id!r} already exists.")
        member = Member(id=member_id, display_name=display_name)
        self.members.append(member)
        self.save()
        return member

    def remove_member(self, member_id: str) -> bool:
        """
        Drop a member from the trip. Their expense rows are kept; the engine
        skips the now-unknown id when computing balances.
        """
        before = len(self.members)
        self.members = [m for m in self.members if m.id != member_id]
        if len(self.members) == before:
            return False
        self.save()
        return True

    # -----------------------
    # Transactions
    # -----------------------
    def _build_rows(
        self,
        group_id: str,
        description: str,
        category: str,
        expense_date: Any,
        payers: Iterable[str],
        payments: Iterable[Payment],
    ) -> List[Expense]:
        description = (description or "").strip()
        payers = [p for p in payers]
        if not description or not payers or not category:
            raise ValidationError("Description, Category, and at least one Payer are required.")
        if category not in CATEGORIES:
            raise ValidationError(f"Unknown category {category!r}.")
        when = parse_date(expense_date)
        if when is None:
            raise ValidationError("A valid expense date is required.")

        rows: List[Expense] = []
        for p in payments:
            # payments without a payee or an amount are blank form lines
            if not p.payee_id or p.amount in (None, ""):
                continue
            try:
                amount = float(p.amount)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid amount {p.amount!r}.")
            if amount <= 0:
                raise ValidationError("Amount must be greater than 0.")
            if p.currency not in PLACEHOLDER_RATES:
                raise ValidationError(f"Unsupported currency {p.currency!r}.")
            rows.append(
                Expense(
                    id=p.id or _new_id(),
                    transaction_group_id=group_id,
                    description=description,
                    category=category,
                    expense_date=when,
                    payee_id=p.payee_id,
                    payers=list(payers),
                    amount=amount,
                    currency=p.currency,
                )
            )
        if not rows:
            raise ValidationError("At least one valid payment (Payee and Amount) is required.")
        return rows

    def add_transaction(
        self,
        description: str,
        category: str,
        expense_date: Any,
        payers: Iterable[str],
        payments: Iterable[Payment],
    ) -> List[Expense]:
        """
        Log one transaction: one expense row per payment, all sharing a
        fresh transaction_group_id. Returns the created rows.
        """
        rows = self._build_rows(_new_id(), description, category, expense_date, payers, payments)
        self.expenses.extend(rows)
        self.save()
        logger.info("Added transaction %s (%d rows)", rows[0].transaction_group_id, len(rows))
        return rows

    def transaction_rows(self, group_id: str) -> List[Expense]:
        return [e for e in self.expenses if e.group_key == group_id]

    def edit_transaction(
        self,
        group_id: str,
        description: str,
        category: str,
        expense_date: Any,
        payers: Iterable[str],
        payments: Iterable[Payment],
    ) -> Optional[List[Expense]]:
        """
        Replace the rows of a transaction. Payments carrying an id update that
        row, payments without one become new rows, and existing rows missing
        from `payments` are deleted. Returns None if the group is unknown.
        """
        existing = self.transaction_rows(group_id)
        if not existing:
            logger.info("Transaction %s not found", group_id)
            return None
        rows = self._build_rows(group_id, description, category, expense_date, payers, payments)
        position = self.expenses.index(existing[0])
        kept = [e for e in self.expenses if e.group_key != group_id]
        position = min(position, len(kept))
        self.expenses = kept[:position] + rows + kept[position:]
        self.save()
        logger.info("Updated transaction %s (%d rows, was %d)", group_id, len(rows), len(existing))
        return rows

    def delete_transaction(self, group_id: str) -> bool:
        before = len(self.expenses)
        self.expenses = [e for e in self.expenses if e.group_key != group_id]
        removed = before - len(self.expenses)
        if not removed:
            logger.info("Transaction %s not found", group_id)
            return False
        self.save()
        logger.info("Deleted transaction %s (%d rows). Remaining expenses=%d.", group_id, removed, len(self.expenses))
        return True

    # -----------------------
    # Reports
    # -----------------------
    def list_expenses(self, criteria: Optional[ExpenseFilter] = None) -> List[Expense]:
        return filter_expenses(self.expenses, criteria)

    def transactions(self, display_currency: Optional[str] = None) -> List[TransactionGroup]:
        return self.engine.transactions(self.members, self.expenses, display_currency or self.default_currency)

    def report(
        self,
        display_currency: Optional[str] = None,
        criteria: Optional[ExpenseFilter] = None,
    ) -> SettlementReport:
        return self.engine.report(
            self.members,
            self.list_expenses(criteria),
            display_currency or self.default_currency,
        )

    # -----------------------
    # Persistence
    # -----------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_trip_id": self.current_id,
            "trips": [t.to_dict() for t in self.trips.values()],
        }

    def clear(self):
        """Reset the selected trip: no members, no expenses. Persists the cleared state."""
        self.members = []
        self.expenses = []
        self.save()

    def save(self):
        """
        Persist every trip as JSON atomically: write a temp file in the target
        directory, then move it over the snapshot.
        """
        target = os.path.abspath(self.data_file)
        dirn = os.path.dirname(target)
        os.makedirs(dirn, exist_ok=True)
        logger.info("Saving %d trip(s) to %s (selected %r: members=%d, expenses=%d)",
                    len(self.trips), target, self.name, len(self.members), len(self.expenses))
        fd, tmp_path = tempfile.mkstemp(prefix="tmp_trip_", dir=dirn, text=True)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            shutil.move(tmp_path, target)
        except Exception:
            logger.exception("Failed to save data file")
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _trip_from_dict(self, d: Dict[str, Any]) -> Trip:
        trip = Trip.from_dict(d)
        trip.id = trip.id or _new_id()
        if trip.default_currency not in PLACEHOLDER_RATES:
            logger.warning("Trip %r has unsupported currency %r, falling back to %s",
                           trip.name, trip.default_currency, self.fallback_currency)
            trip.default_currency = self.fallback_currency
        return trip

    def load(self):
        """
        Load the snapshot if one exists; otherwise a single empty trip is used.
        Snapshots written before trips were keyed by id (top-level members and
        expenses) load as one trip.
        """
        if not os.path.exists(self.data_file):
            return
        with open(self.data_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        if "trips" in data:
            entries = data.get("trips") or []
        else:
            entries = [data]
        self.trips = OrderedDict()
        for d in entries:
            trip = self._trip_from_dict(d)
            self.trips[trip.id] = trip
        self.current_id = data.get("current_trip_id")
        self._ensure_trip()
        logger.info("Loaded %d trip(s); selected %r (members=%d, expenses=%d)",
                    len(self.trips), self.name, len(self.members), len(self.expenses))
