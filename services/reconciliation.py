"""
Trip cost and profit reconciliation.

`reconcile` is a pure function of a trip, its expenses, its truck and the
diesel price. `reconcile_if_completed` is the single entry point every
expense mutation uses so that completed trips never drift from their
expenses; it writes into the caller's session and leaves the commit to the
caller.
"""
from dataclasses import dataclass, asdict
from typing import Iterable, Optional
from sqlalchemy.orm import Session
from models.trip import Trip, TripStatus
from models.expense import Expense, ExpenseType
from models.truck import Truck
from services.settings_service import SettingsService
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TripFinancials:
    fuel_cost: float
    toll_cost: float
    other_costs: float
    total_cost: float
    profit: float
    profit_margin: float
    fuel_estimated: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


def estimate_fuel_cost(distance: float, avg_consumption: Optional[float], diesel_price: float) -> float:
    """Liters burned over the distance times the diesel price, or 0 when inputs are missing"""
    if not distance or distance <= 0:
        return 0.0
    if not avg_consumption or avg_consumption <= 0:
        return 0.0
    if not diesel_price or diesel_price <= 0:
        return 0.0
    return (distance / avg_consumption) * diesel_price


def profit_margin(revenue: float, profit: float) -> float:
    # Zero revenue reads as 0% margin even when the trip lost money
    if revenue > 0:
        return (profit / revenue) * 100
    return 0.0


def reconcile(
    trip: Trip,
    expenses: Iterable[Expense],
    truck: Optional[Truck],
    diesel_price: float = 0.0,
) -> TripFinancials:
    fuel_cost = 0.0
    toll_cost = 0.0
    other_costs = 0.0
    fuel_entries = 0

    for expense in expenses:
        amount = expense.amount or 0.0
        if expense.type == ExpenseType.FUEL:
            fuel_cost += amount
            fuel_entries += 1
        elif expense.type == ExpenseType.TOLL:
            toll_cost += amount
        else:
            other_costs += amount

    fuel_estimated = False
    if fuel_entries == 0:
        estimate = estimate_fuel_cost(
            trip.distance or 0.0,
            truck.avg_consumption if truck else None,
            diesel_price,
        )
        if estimate > 0:
            fuel_cost = estimate
            fuel_estimated = True

    revenue = trip.revenue or 0.0
    total_cost = fuel_cost + toll_cost + other_costs
    profit = revenue - total_cost

    return TripFinancials(
        fuel_cost=fuel_cost,
        toll_cost=toll_cost,
        other_costs=other_costs,
        total_cost=total_cost,
        profit=profit,
        profit_margin=profit_margin(revenue, profit),
        fuel_estimated=fuel_estimated,
    )


def apply_financials(trip: Trip, financials: TripFinancials) -> Trip:
    trip.fuel_cost = financials.fuel_cost
    trip.toll_cost = financials.toll_cost
    trip.other_costs = financials.other_costs
    trip.total_cost = financials.total_cost
    trip.profit = financials.profit
    trip.profit_margin = financials.profit_margin
    return trip


def reconcile_trip(db: Session, trip: Trip) -> TripFinancials:
    """Recompute a trip from the expenses currently linked to it in the session"""
    db.flush()
    expenses = db.query(Expense).filter(Expense.trip_id == trip.id).all()
    truck = db.query(Truck).filter(Truck.id == trip.truck_id).first()
    financials = reconcile(trip, expenses, truck, SettingsService.get_diesel_price(db))
    apply_financials(trip, financials)
    return financials


def reconcile_if_completed(db: Session, trip_id: Optional[int]) -> Optional[TripFinancials]:
    if trip_id is None:
        return None

    # Lock before reading expenses so concurrent expense writes reconcile one after another
    trip = db.query(Trip).filter(Trip.id == trip_id).with_for_update().first()
    if trip is None or trip.status != TripStatus.COMPLETED:
        return None

    financials = reconcile_trip(db, trip)
    logger.info(
        f"Trip {trip.id} reconciled: total_cost={financials.total_cost:.2f} "
        f"profit={financials.profit:.2f} margin={financials.profit_margin:.2f}%"
    )
    return financials
