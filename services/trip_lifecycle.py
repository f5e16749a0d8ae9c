"""
Trip state machine.

    PLANNED --start--> IN_PROGRESS --finish--> COMPLETED
    PLANNED --sweep_delayed--> DELAYED --start--> IN_PROGRESS
    PLANNED/DELAYED/IN_PROGRESS --cancel--> CANCELLED

Every operation loads and locks the rows it touches, applies all writes, and
commits once; on any error the session is rolled back so no partial state is
visible. Notifications are queued while the transaction runs and dispatched
only after the commit succeeds.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from models.trip import Trip, TripStatus, EDITABLE_TRIP_STATUSES, TERMINAL_TRIP_STATUSES
from models.truck import Truck, TruckStatus
from models.user import User, UserRole
from models.partner import Trailer, Client
from models.expense import Expense
from services import notification_payloads as payloads
from services.notification_dispatcher import NotificationDispatcher, dispatch_all
from services.reconciliation import TripFinancials, reconcile_trip
from services.scheduling import SchedulingValidator
from services.maintenance_monitor import check_overdue, overdue_events
from utils.clock import utcnow
from utils.exceptions import (
    InvalidMileageError, InvalidTransitionError, NotEditableError, NotFoundError, StateError, ValidationError,
)
from utils.permissions import (
    can_cancel_trip, can_delete_trip, can_edit_trip, can_operate_trip, can_schedule_trip, require,
)
from config import settings
import logging

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "origin", "destination", "trip_code", "notes", "start_date", "revenue",
    "distance", "truck_id", "driver_id", "trailer_id", "client_id",
)
RESCHEDULING_FIELDS = ("truck_id", "driver_id", "start_date")

Events = List[Tuple[str, Dict[str, Any]]]


class TripLifecycleService:
    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        min_interval_hours: Optional[float] = None,
        profit_low_threshold: Optional[float] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.min_interval_hours = min_interval_hours if min_interval_hours is not None else settings.min_trip_interval_hours
        self.profit_low_threshold = (
            profit_low_threshold if profit_low_threshold is not None else settings.profit_low_threshold_percent
        )

    # -----------------
    # LOOKUPS
    # -----------------

    def get_trip(self, trip_id: int, lock: bool = False) -> Trip:
        query = self.db.query(Trip).filter(Trip.id == trip_id)
        if lock:
            query = query.with_for_update()
        trip = query.first()
        if trip is None:
            raise NotFoundError("Trip", trip_id)
        return trip

    def _get_truck(self, truck_id: int, lock: bool = False) -> Truck:
        query = self.db.query(Truck).filter(Truck.id == truck_id)
        if lock:
            query = query.with_for_update()
        truck = query.first()
        if truck is None:
            raise NotFoundError("Truck", truck_id)
        return truck

    def _check_references(self, truck_id=None, driver_id=None, trailer_id=None, client_id=None) -> None:
        if truck_id is not None:
            self._get_truck(truck_id)
        if driver_id is not None:
            driver = self.db.query(User).filter(User.id == driver_id).first()
            if driver is None:
                raise NotFoundError("Driver", driver_id)
            if driver.role != UserRole.DRIVER or not driver.is_active:
                raise ValidationError("Assigned user is not an active driver", {"driverId": driver_id})
        if trailer_id is not None and self.db.query(Trailer).filter(Trailer.id == trailer_id).first() is None:
            raise NotFoundError("Trailer", trailer_id)
        if client_id is not None and self.db.query(Client).filter(Client.id == client_id).first() is None:
            raise NotFoundError("Client", client_id)

    @staticmethod
    def _check_amounts(revenue: Optional[float], distance: Optional[float]) -> None:
        if revenue is not None and revenue < 0:
            raise ValidationError("Revenue cannot be negative", {"field": "revenue"})
        if distance is not None and distance < 0:
            raise ValidationError("Distance cannot be negative", {"field": "distance"})

    def _dispatch(self, events: Events) -> None:
        dispatch_all(self.dispatcher, events)

    # -----------------
    # TRANSITIONS
    # -----------------

    def schedule(
        self,
        actor: User,
        truck_id: int,
        driver_id: int,
        origin: str,
        destination: str,
        start_date: datetime,
        revenue: float = 0.0,
        distance: float = 0.0,
        trailer_id: Optional[int] = None,
        client_id: Optional[int] = None,
        trip_code: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Trip:
        require(can_schedule_trip(actor.role), "Only admins and managers can schedule trips")
        now = now or utcnow()

        if not origin or not destination:
            raise ValidationError("Origin and destination are required")
        if start_date is None:
            raise ValidationError("Start date is required", {"field": "startDate"})
        self._check_amounts(revenue, distance)

        try:
            self._check_references(truck_id, driver_id, trailer_id, client_id)
            SchedulingValidator.lock_resources(self.db, truck_id, driver_id)
            SchedulingValidator.validate_schedule(
                self.db, truck_id, driver_id, start_date, now,
                min_interval_hours=self.min_interval_hours,
            )
            trip = Trip(
                truck_id=truck_id,
                driver_id=driver_id,
                trailer_id=trailer_id,
                client_id=client_id,
                origin=origin,
                destination=destination,
                trip_code=trip_code,
                notes=notes,
                start_date=start_date,
                revenue=revenue or 0.0,
                distance=distance or 0.0,
                profit=revenue or 0.0,
                status=TripStatus.PLANNED,
            )
            self.db.add(trip)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(trip)
        logger.info(f"Trip {trip.id} scheduled for truck {truck_id} / driver {driver_id} at {start_date.isoformat()}")
        self._dispatch([(payloads.TRIP_SCHEDULED, payloads.trip_scheduled(trip))])
        return trip

    def start(self, trip_id: int, actor: User, now: Optional[datetime] = None) -> Trip:
        now = now or utcnow()
        try:
            trip = self.get_trip(trip_id, lock=True)
            require(can_operate_trip(actor, trip), "Only the assigned driver or a manager can start this trip")
            if trip.status not in (TripStatus.PLANNED, TripStatus.DELAYED):
                raise InvalidTransitionError("trip", trip.status, TripStatus.IN_PROGRESS)

            truck = self._get_truck(trip.truck_id, lock=True)
            trip.start_mileage = truck.current_mileage or 0
            trip.start_date = now
            trip.status = TripStatus.IN_PROGRESS
            truck.status = TruckStatus.IN_TRANSIT
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(trip)
        logger.info(f"Trip {trip.id} started at mileage {trip.start_mileage}")
        return trip

    def finish(
        self,
        trip_id: int,
        actor: User,
        end_mileage: Optional[float] = None,
        end_date: Optional[datetime] = None,
        distance: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Trip:
        now = now or utcnow()
        events: Events = []
        try:
            trip = self.get_trip(trip_id, lock=True)
            require(can_operate_trip(actor, trip), "Only the assigned driver or a manager can finish this trip")
            if trip.status != TripStatus.IN_PROGRESS:
                raise InvalidTransitionError("trip", trip.status, TripStatus.COMPLETED)

            finished_at = end_date or now
            if trip.start_date and finished_at < trip.start_date:
                raise ValidationError(
                    "End date cannot be before the trip start",
                    {"startDate": trip.start_date.isoformat(), "endDate": finished_at.isoformat()},
                )

            if end_mileage is not None:
                if end_mileage < 0:
                    raise InvalidMileageError("End mileage cannot be negative", {"endMileage": end_mileage})
                if trip.start_mileage is not None:
                    travelled = end_mileage - trip.start_mileage
                    if travelled < 0:
                        raise InvalidMileageError(
                            "End mileage must be greater than or equal to start mileage",
                            {"startMileage": trip.start_mileage, "endMileage": end_mileage},
                        )
                    trip.distance = travelled
                trip.end_mileage = end_mileage
            elif distance is not None:
                self._check_amounts(None, distance)
                trip.distance = distance

            financials = reconcile_trip(self.db, trip)
            trip.status = TripStatus.COMPLETED
            trip.end_date = finished_at

            truck = self._get_truck(trip.truck_id, lock=True)
            truck.status = TruckStatus.GARAGE
            newly_overdue = []
            if end_mileage is not None:
                truck.current_mileage = end_mileage
                newly_overdue = check_overdue(self.db, truck)

            events.append((payloads.TRIP_COMPLETED, payloads.trip_completed(trip)))
            if financials.profit_margin < self.profit_low_threshold:
                events.append((payloads.TRIP_LOW_PROFIT, payloads.trip_low_profit(trip, self.profit_low_threshold)))
            events.extend(overdue_events(newly_overdue, truck))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(trip)
        logger.info(
            f"Trip {trip.id} completed: distance={trip.distance} total_cost={trip.total_cost:.2f} "
            f"margin={trip.profit_margin:.2f}%"
        )
        self._dispatch(events)
        return trip

    def edit(self, trip_id: int, fields: Dict[str, Any], actor: User, now: Optional[datetime] = None) -> Trip:
        require(can_edit_trip(actor.role), "Only admins and managers can edit trips")
        now = now or utcnow()

        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("Fields cannot be edited", {"fields": sorted(unknown)})
        self._check_amounts(fields.get("revenue"), fields.get("distance"))
        for required in ("origin", "destination", "start_date", "truck_id", "driver_id"):
            if required in fields and not fields[required]:
                raise ValidationError(f"{required} cannot be empty", {"field": required})
        for numeric in ("revenue", "distance"):
            if numeric in fields and fields[numeric] is None:
                raise ValidationError(f"{numeric} cannot be empty", {"field": numeric})

        try:
            trip = self.get_trip(trip_id, lock=True)
            if trip.status not in EDITABLE_TRIP_STATUSES:
                raise NotEditableError("trip", trip.status)

            changed = {key: value for key, value in fields.items() if getattr(trip, key) != value}
            self._check_references(
                changed.get("truck_id"), changed.get("driver_id"),
                changed.get("trailer_id"), changed.get("client_id"),
            )

            if any(key in changed for key in RESCHEDULING_FIELDS):
                truck_id = changed.get("truck_id", trip.truck_id)
                driver_id = changed.get("driver_id", trip.driver_id)
                start_date = changed.get("start_date", trip.start_date)
                SchedulingValidator.lock_resources(self.db, truck_id, driver_id)
                SchedulingValidator.validate_schedule(
                    self.db, truck_id, driver_id, start_date, now,
                    exclude_trip_id=trip.id,
                    check_retroactive="start_date" in changed,
                    min_interval_hours=self.min_interval_hours,
                )

            for key, value in changed.items():
                setattr(trip, key, value)

            if trip.status == TripStatus.DELAYED and "start_date" in changed and trip.start_date >= now:
                trip.status = TripStatus.PLANNED
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(trip)
        logger.info(f"Trip {trip.id} edited: {sorted(changed)}")
        return trip

    def cancel(self, trip_id: int, actor: User) -> Trip:
        require(can_cancel_trip(actor.role), "Only admins and managers can cancel trips")
        try:
            trip = self.get_trip(trip_id, lock=True)
            if trip.status in TERMINAL_TRIP_STATUSES:
                raise InvalidTransitionError("trip", trip.status, TripStatus.CANCELLED)

            if trip.status == TripStatus.IN_PROGRESS:
                truck = self._get_truck(trip.truck_id, lock=True)
                truck.status = TruckStatus.GARAGE
            trip.status = TripStatus.CANCELLED
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(trip)
        logger.info(f"Trip {trip.id} cancelled by user {actor.id}")
        return trip

    def delete(self, trip_id: int, actor: User) -> None:
        try:
            trip = self.get_trip(trip_id, lock=True)
            require(
                can_delete_trip(actor.role, trip.status),
                f"Your role cannot delete a {trip.status.value} trip",
            )
            self.db.query(Expense).filter(Expense.trip_id == trip.id).update(
                {Expense.trip_id: None}, synchronize_session=False
            )
            self.db.delete(trip)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Trip {trip_id} deleted by user {actor.id}")

    def recalculate(self, trip_id: int) -> TripFinancials:
        """Re-run reconciliation for a completed trip on demand"""
        try:
            trip = self.get_trip(trip_id, lock=True)
            if trip.status != TripStatus.COMPLETED:
                raise StateError("Only completed trips can be reconciled", {"currentStatus": trip.status.value})
            financials = reconcile_trip(self.db, trip)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return financials

    # -----------------
    # PERIODIC SWEEPS
    # -----------------

    def sweep_delayed(self, now: Optional[datetime] = None) -> List[Trip]:
        """
        Move every PLANNED trip whose start time has passed to DELAYED.

        Each row is updated with a `status == PLANNED` guard, so when two
        sweeps overlap only the one that actually flips a trip reports it.
        """
        now = now or utcnow()
        candidate_ids = [
            row[0] for row in self.db.query(Trip.id).filter(
                Trip.status == TripStatus.PLANNED,
                Trip.start_date < now,
            ).all()
        ]

        delayed_ids = []
        try:
            for trip_id in candidate_ids:
                updated = self.db.query(Trip).filter(
                    Trip.id == trip_id,
                    Trip.status == TripStatus.PLANNED,
                ).update({Trip.status: TripStatus.DELAYED}, synchronize_session=False)
                if updated:
                    delayed_ids.append(trip_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        delayed = self.db.query(Trip).filter(Trip.id.in_(delayed_ids)).all() if delayed_ids else []
        if delayed:
            logger.info(f"{len(delayed)} trip(s) marked as delayed")
        self._dispatch([(payloads.TRIP_DELAYED, payloads.trip_delayed(trip, now)) for trip in delayed])
        return delayed

    def check_upcoming(self, now: Optional[datetime] = None, window_minutes: Optional[int] = None) -> List[Trip]:
        now = now or utcnow()
        if window_minutes is None:
            window_minutes = settings.upcoming_trip_window_minutes
        upcoming = self.db.query(Trip).filter(
            Trip.status == TripStatus.PLANNED,
            Trip.start_date >= now,
            Trip.start_date <= now + timedelta(minutes=window_minutes),
        ).order_by(Trip.start_date).all()

        self._dispatch([(payloads.TRIP_UPCOMING, payloads.trip_upcoming(trip)) for trip in upcoming])
        return upcoming
