from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from models.trip import Trip, ACTIVE_TRIP_STATUSES
from models.truck import Truck
from models.user import User
from utils.exceptions import NotFoundError, RetroactiveScheduleError, SchedulingConflictError
from config import settings
import logging

logger = logging.getLogger(__name__)

class SchedulingValidator:
    """Keeps trips of the same truck or driver at least `min_interval_hours` apart"""

    @staticmethod
    def lock_resources(db: Session, truck_id: int, driver_id: int) -> None:
        """
        Take row locks on the truck and the driver for the rest of the transaction.

        Two concurrent schedule/edit calls for the same truck or driver queue up
        here, so the second one sees the first one's trip when it runs the
        conflict query. Rows are locked in a fixed order (truck, then driver)
        to avoid deadlocks. SQLite ignores FOR UPDATE; it serializes writers anyway.
        """
        truck = db.query(Truck).filter(Truck.id == truck_id).with_for_update().first()
        if truck is None:
            raise NotFoundError("Truck", truck_id)
        driver = db.query(User).filter(User.id == driver_id).with_for_update().first()
        if driver is None:
            raise NotFoundError("Driver", driver_id)

    @staticmethod
    def find_conflict(
        db: Session,
        resource: str,
        resource_id: int,
        proposed_start: datetime,
        min_interval_hours: float,
        exclude_trip_id: Optional[int] = None,
    ) -> Optional[tuple]:
        column = Trip.truck_id if resource == "truck" else Trip.driver_id
        query = db.query(Trip).filter(
            column == resource_id,
            Trip.status.in_(ACTIVE_TRIP_STATUSES),
        )
        if exclude_trip_id is not None:
            query = query.filter(Trip.id != exclude_trip_id)

        closest = None
        for existing in query.all():
            gap_hours = abs((proposed_start - existing.start_date).total_seconds()) / 3600
            if gap_hours < min_interval_hours and (closest is None or gap_hours < closest[1]):
                closest = (existing, gap_hours)
        return closest

    @staticmethod
    def validate_schedule(
        db: Session,
        truck_id: int,
        driver_id: int,
        proposed_start: datetime,
        now: datetime,
        exclude_trip_id: Optional[int] = None,
        check_retroactive: bool = True,
        min_interval_hours: Optional[float] = None,
    ) -> None:
        """
        Raise if a trip for this truck and driver may not start at `proposed_start`.

        The retroactive check runs only when the start time is being set
        (creation, or an edit that moves it). Truck and driver are checked
        independently; the truck is reported first when both conflict.
        """
        if min_interval_hours is None:
            min_interval_hours = settings.min_trip_interval_hours

        if check_retroactive and proposed_start < now:
            raise RetroactiveScheduleError(
                "Trips cannot be scheduled in the past",
                {"proposedStart": proposed_start.isoformat(), "now": now.isoformat()},
            )

        for resource, resource_id in (("truck", truck_id), ("driver", driver_id)):
            conflict = SchedulingValidator.find_conflict(
                db, resource, resource_id, proposed_start, min_interval_hours, exclude_trip_id
            )
            if conflict:
                existing, gap_hours = conflict
                logger.warning(
                    f"Scheduling conflict on {resource} {resource_id}: trip {existing.id} "
                    f"is {gap_hours:.1f}h from {proposed_start.isoformat()}"
                )
                raise SchedulingConflictError(resource, gap_hours, existing.id, min_interval_hours)
