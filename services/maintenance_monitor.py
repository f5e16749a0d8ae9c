"""
Mileage-driven maintenance tracking.

A maintenance record with a `scheduled_mileage` becomes overdue (status
PENDING) the first time the truck's odometer reaches that value. The flip
happens once; later mileage increases on an already PENDING record do not
emit the overdue event again.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from models.maintenance import Maintenance, MaintenanceStatus, MaintenancePriority
from models.truck import Truck
from models.user import User
from services import notification_payloads as payloads
from services.notification_dispatcher import NotificationDispatcher, dispatch_all
from utils.clock import utcnow
from utils.exceptions import InvalidMileageError, InvalidTransitionError, NotFoundError, ValidationError
from utils.permissions import can_manage_maintenance, can_update_mileage, require
import logging

logger = logging.getLogger(__name__)

OPEN_MAINTENANCE_STATUSES = (MaintenanceStatus.PENDING, MaintenanceStatus.SCHEDULED)
TERMINAL_MAINTENANCE_STATUSES = (MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED)


def is_mileage_reached(current_mileage: Optional[float], scheduled_mileage: Optional[float]) -> bool:
    if scheduled_mileage is None:
        return False
    return (current_mileage or 0) >= scheduled_mileage


def check_overdue(db: Session, truck: Truck) -> List[Maintenance]:
    """
    Flip SCHEDULED records whose mileage threshold the truck has reached to PENDING.

    Returns the records that changed. Nothing is committed and nothing is
    dispatched; callers do both once their transaction is done.
    """
    candidates = db.query(Maintenance).filter(
        Maintenance.truck_id == truck.id,
        Maintenance.status.in_(OPEN_MAINTENANCE_STATUSES),
        Maintenance.scheduled_mileage.isnot(None),
    ).all()

    newly_overdue = []
    for maintenance in candidates:
        if maintenance.status == MaintenanceStatus.PENDING:
            continue
        if is_mileage_reached(truck.current_mileage, maintenance.scheduled_mileage):
            maintenance.status = MaintenanceStatus.PENDING
            newly_overdue.append(maintenance)
            logger.info(
                f"Maintenance {maintenance.id} overdue for truck {truck.plate}: "
                f"{truck.current_mileage} >= {maintenance.scheduled_mileage}"
            )
    return newly_overdue


def overdue_events(maintenances: List[Maintenance], truck: Truck) -> List[Tuple[str, Dict[str, Any]]]:
    return [(payloads.MAINTENANCE_OVERDUE, payloads.maintenance_overdue(m, truck)) for m in maintenances]


class MaintenanceService:
    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher

    def _get_truck(self, truck_id: int, lock: bool = False) -> Truck:
        query = self.db.query(Truck).filter(Truck.id == truck_id)
        if lock:
            query = query.with_for_update()
        truck = query.first()
        if truck is None:
            raise NotFoundError("Truck", truck_id)
        return truck

    def _get_maintenance(self, maintenance_id: int) -> Maintenance:
        maintenance = self.db.query(Maintenance).filter(Maintenance.id == maintenance_id).with_for_update().first()
        if maintenance is None:
            raise NotFoundError("Maintenance", maintenance_id)
        return maintenance

    def update_mileage(self, truck_id: int, mileage: float, actor: User) -> Tuple[Truck, List[Maintenance]]:
        require(can_update_mileage(actor.role), "Only admins and managers can update truck mileage")

        if mileage is None or mileage < 0:
            raise InvalidMileageError("Mileage must be a non-negative number", {"mileage": mileage})

        try:
            truck = self._get_truck(truck_id, lock=True)
            current = truck.current_mileage or 0
            if mileage < current:
                raise InvalidMileageError(
                    "Mileage cannot go backwards",
                    {"currentMileage": current, "mileage": mileage},
                )
            truck.current_mileage = mileage
            newly_overdue = check_overdue(self.db, truck)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(truck)
        dispatch_all(self.dispatcher, overdue_events(newly_overdue, truck))
        return truck, newly_overdue

    def create_maintenance(
        self,
        actor: User,
        truck_id: int,
        type: str,
        description: str,
        scheduled_mileage: Optional[float] = None,
        scheduled_date: Optional[datetime] = None,
        priority: MaintenancePriority = MaintenancePriority.MEDIUM,
        cost: float = 0.0,
        mileage: Optional[float] = None,
        supplier: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Maintenance:
        require(can_manage_maintenance(actor.role), "Only admins and managers can schedule maintenance")

        if not type or not description:
            raise ValidationError("Maintenance type and description are required")
        if scheduled_mileage is not None and scheduled_mileage < 0:
            raise InvalidMileageError("Scheduled mileage cannot be negative", {"scheduledMileage": scheduled_mileage})
        if cost is not None and cost < 0:
            raise ValidationError("Maintenance cost cannot be negative", {"field": "cost"})

        events = []
        try:
            truck = self._get_truck(truck_id)
            already_due = is_mileage_reached(truck.current_mileage, scheduled_mileage)
            maintenance = Maintenance(
                truck_id=truck.id,
                type=type,
                description=description,
                cost=cost or 0.0,
                mileage=mileage,
                scheduled_mileage=scheduled_mileage,
                scheduled_date=scheduled_date,
                status=MaintenanceStatus.PENDING if already_due else MaintenanceStatus.SCHEDULED,
                priority=priority,
                supplier=supplier,
                notes=notes,
            )
            self.db.add(maintenance)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(maintenance)
        if already_due:
            logger.info(f"Maintenance {maintenance.id} created already overdue for truck {truck.plate}")
            events.append((payloads.MAINTENANCE_OVERDUE, payloads.maintenance_overdue(maintenance, truck)))
        if scheduled_date or scheduled_mileage is not None:
            events.append((payloads.MAINTENANCE_SCHEDULED, payloads.maintenance_scheduled(maintenance, truck)))
        dispatch_all(self.dispatcher, events)
        return maintenance

    def complete_maintenance(
        self,
        maintenance_id: int,
        actor: User,
        completed_date: Optional[datetime] = None,
        cost: Optional[float] = None,
        mileage: Optional[float] = None,
    ) -> Maintenance:
        require(can_manage_maintenance(actor.role), "Only admins and managers can complete maintenance")

        if cost is not None and cost < 0:
            raise ValidationError("Maintenance cost cannot be negative", {"field": "cost"})

        try:
            maintenance = self._get_maintenance(maintenance_id)
            if maintenance.status in TERMINAL_MAINTENANCE_STATUSES:
                raise InvalidTransitionError("maintenance", maintenance.status, MaintenanceStatus.COMPLETED)
            maintenance.status = MaintenanceStatus.COMPLETED
            maintenance.completed_date = completed_date or utcnow()
            if cost is not None:
                maintenance.cost = cost
            if mileage is not None:
                maintenance.mileage = mileage
            truck = self._get_truck(maintenance.truck_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(maintenance)
        dispatch_all(self.dispatcher, [
            (payloads.MAINTENANCE_COMPLETED, payloads.maintenance_completed(maintenance, truck)),
        ])
        return maintenance

    def check_all_overdue(self) -> Dict[str, Any]:
        """Fleet-wide sweep, for maintenance records whose truck moved without a mileage update hook"""
        events = []
        overdue = []
        try:
            truck_ids = [
                row[0] for row in self.db.query(Maintenance.truck_id).filter(
                    Maintenance.status == MaintenanceStatus.SCHEDULED,
                    Maintenance.scheduled_mileage.isnot(None),
                ).distinct().all()
            ]
            for truck_id in truck_ids:
                truck = self._get_truck(truck_id)
                newly_overdue = check_overdue(self.db, truck)
                overdue.extend(newly_overdue)
                events.extend(overdue_events(newly_overdue, truck))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        dispatch_all(self.dispatcher, events)
        return {"checked_trucks": len(truck_ids), "overdue": len(overdue), "maintenances": overdue}
