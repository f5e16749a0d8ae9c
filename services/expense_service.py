from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from models.expense import Expense, ExpenseType
from models.trip import Trip, TripStatus
from models.truck import Truck
from models.partner import Client
from models.user import User
from services import notification_payloads as payloads
from services.notification_dispatcher import NotificationDispatcher, dispatch_all
from services.reconciliation import reconcile_if_completed
from utils.clock import utcnow
from utils.exceptions import NotFoundError, ValidationError
from utils.permissions import can_create_expense, can_modify_completed_expense, require
from config import settings
import logging

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "trip_id", "truck_id", "client_id", "type", "category", "amount", "quantity",
    "unit_price", "description", "supplier", "location", "date",
)


class ExpenseService:
    """
    Expense create/update/delete.

    Every mutation ends with `reconcile_if_completed` for each trip the expense
    is (or was) linked to, inside the same transaction as the expense write.
    """

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        high_value_threshold: Optional[float] = None,
        allow_refunds: Optional[bool] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.high_value_threshold = (
            high_value_threshold if high_value_threshold is not None else settings.expense_high_threshold
        )
        self.allow_refunds = allow_refunds if allow_refunds is not None else settings.allow_expense_refunds

    def get_expense(self, expense_id: int) -> Expense:
        expense = self.db.query(Expense).filter(Expense.id == expense_id).first()
        if expense is None:
            raise NotFoundError("Expense", expense_id)
        return expense

    def _check_amount(self, amount: Optional[float]) -> None:
        if amount is None:
            raise ValidationError("Amount is required", {"field": "amount"})
        if amount < 0 and not self.allow_refunds:
            raise ValidationError("Amount cannot be negative", {"field": "amount"})

    def _load_trip(self, trip_id: Optional[int]) -> Optional[Trip]:
        if trip_id is None:
            return None
        trip = self.db.query(Trip).filter(Trip.id == trip_id).first()
        if trip is None:
            raise NotFoundError("Trip", trip_id)
        return trip

    def _check_links(self, truck_id: Optional[int], client_id: Optional[int]) -> None:
        if truck_id is not None and self.db.query(Truck).filter(Truck.id == truck_id).first() is None:
            raise NotFoundError("Truck", truck_id)
        if client_id is not None and self.db.query(Client).filter(Client.id == client_id).first() is None:
            raise NotFoundError("Client", client_id)

    def _guard_completed_trip(self, actor: User, trip: Optional[Trip]) -> None:
        if trip is not None and trip.status == TripStatus.COMPLETED:
            require(
                can_modify_completed_expense(actor.role),
                "Drivers cannot change expenses of completed trips. Only managers and administrators can.",
            )

    def create_expense(
        self,
        actor: User,
        type: ExpenseType,
        amount: float,
        trip_id: Optional[int] = None,
        truck_id: Optional[int] = None,
        client_id: Optional[int] = None,
        date: Optional[datetime] = None,
        **details: Any,
    ) -> Expense:
        require(can_create_expense(actor.role, type), "Drivers can only register FUEL expenses")
        self._check_amount(amount)

        events = []
        try:
            trip = self._load_trip(trip_id)
            if trip is not None and truck_id is None:
                truck_id = trip.truck_id
            self._check_links(truck_id, client_id)

            expense = Expense(
                trip_id=trip_id,
                truck_id=truck_id,
                client_id=client_id,
                type=type,
                amount=amount,
                date=date or utcnow(),
                created_by=actor.id,
                **{key: value for key, value in details.items() if key in EDITABLE_FIELDS},
            )
            self.db.add(expense)
            self.db.flush()
            reconcile_if_completed(self.db, trip_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(expense)
        logger.info(f"Expense {expense.id} created: {expense.type.value} {expense.amount:.2f} (trip {trip_id})")

        events.append((payloads.EXPENSE_CREATED, payloads.expense_created(expense)))
        if expense.amount >= self.high_value_threshold:
            events.append((payloads.EXPENSE_HIGH_VALUE, payloads.expense_high_value(expense, self.high_value_threshold)))
        dispatch_all(self.dispatcher, events)
        return expense

    def update_expense(self, expense_id: int, fields: Dict[str, Any], actor: User) -> Expense:
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("Fields cannot be edited", {"fields": sorted(unknown)})
        if "amount" in fields:
            self._check_amount(fields["amount"])
        if "type" in fields and fields["type"] is None:
            raise ValidationError("Expense type cannot be empty", {"field": "type"})
        if "date" in fields and fields["date"] is None:
            raise ValidationError("Expense date cannot be empty", {"field": "date"})

        try:
            expense = self.get_expense(expense_id)
            old_trip_id = expense.trip_id
            self._guard_completed_trip(actor, expense.trip)
            require(
                can_create_expense(actor.role, fields.get("type", expense.type)),
                "Drivers can only register FUEL expenses",
            )

            new_trip_id = fields.get("trip_id", old_trip_id)
            if new_trip_id != old_trip_id:
                self._guard_completed_trip(actor, self._load_trip(new_trip_id))
            self._check_links(fields.get("truck_id"), fields.get("client_id"))

            for key, value in fields.items():
                setattr(expense, key, value)
            self.db.flush()

            reconcile_if_completed(self.db, old_trip_id)
            if new_trip_id != old_trip_id:
                reconcile_if_completed(self.db, new_trip_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(expense)
        logger.info(f"Expense {expense.id} updated: {sorted(fields)}")
        return expense

    def delete_expense(self, expense_id: int, actor: User) -> None:
        try:
            expense = self.get_expense(expense_id)
            trip_id = expense.trip_id
            self._guard_completed_trip(actor, expense.trip)
            if trip_id is None or expense.trip.status != TripStatus.COMPLETED:
                require(
                    can_create_expense(actor.role, expense.type),
                    "Drivers can only remove FUEL expenses",
                )
            self.db.delete(expense)
            self.db.flush()
            reconcile_if_completed(self.db, trip_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Expense {expense_id} deleted by user {actor.id}")
