"""
Payload builders for every event the fleet services emit.

Field names are camelCase because downstream workflows (n8n, WhatsApp
templates) key on them; do not rename without coordinating with consumers.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from models.trip import Trip
from models.expense import Expense
from models.maintenance import Maintenance
from models.truck import Truck

TRIP_SCHEDULED = "trip.scheduled"
TRIP_COMPLETED = "trip.completed"
TRIP_LOW_PROFIT = "trip.low_profit"
TRIP_DELAYED = "trip.delayed"
TRIP_UPCOMING = "trip.upcoming"
EXPENSE_CREATED = "expense.created"
EXPENSE_HIGH_VALUE = "expense.high_value"
MAINTENANCE_OVERDUE = "maintenance.overdue"
MAINTENANCE_SCHEDULED = "maintenance.scheduled"
MAINTENANCE_COMPLETED = "maintenance.completed"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _plate(truck: Optional[Truck]) -> Optional[str]:
    return truck.plate if truck else None


def trip_scheduled(trip: Trip) -> Dict[str, Any]:
    driver = trip.driver
    return {
        "tripId": trip.id,
        "tripCode": trip.trip_code,
        "truck": _plate(trip.truck),
        "driver": driver.name if driver else None,
        "driverPhone": driver.phone if driver else None,
        "driverEmail": driver.email if driver else None,
        "origin": trip.origin,
        "destination": trip.destination,
        "scheduledDate": _iso(trip.start_date),
        "revenue": trip.revenue,
        "message": f"New trip scheduled for {driver.name if driver else 'driver'}",
    }


def trip_completed(trip: Trip) -> Dict[str, Any]:
    return {
        "tripId": trip.id,
        "truck": _plate(trip.truck),
        "driver": trip.driver.name if trip.driver else None,
        "origin": trip.origin,
        "destination": trip.destination,
        "revenue": trip.revenue,
        "fuelCost": trip.fuel_cost,
        "tollCost": trip.toll_cost,
        "otherCosts": trip.other_costs,
        "totalCost": trip.total_cost,
        "profit": trip.profit,
        "profitMargin": trip.profit_margin,
        "distance": trip.distance,
        "endDate": _iso(trip.end_date),
    }


def trip_low_profit(trip: Trip, threshold: float) -> Dict[str, Any]:
    return {
        "tripId": trip.id,
        "truck": _plate(trip.truck),
        "driver": trip.driver.name if trip.driver else None,
        "revenue": trip.revenue,
        "totalCost": trip.total_cost,
        "profit": trip.profit,
        "profitMargin": trip.profit_margin,
        "threshold": threshold,
        "alertLevel": "warning",
    }


def trip_delayed(trip: Trip, now: datetime) -> Dict[str, Any]:
    driver = trip.driver
    return {
        "tripId": trip.id,
        "truck": _plate(trip.truck),
        "driver": driver.name if driver else None,
        "driverPhone": driver.phone if driver else None,
        "origin": trip.origin,
        "destination": trip.destination,
        "scheduledDate": _iso(trip.start_date),
        "minutesLate": int((now - trip.start_date).total_seconds() // 60),
        "alertLevel": "warning",
    }


def trip_upcoming(trip: Trip) -> Dict[str, Any]:
    driver = trip.driver
    return {
        "tripId": trip.id,
        "truck": _plate(trip.truck),
        "driver": driver.name if driver else None,
        "driverPhone": driver.phone if driver else None,
        "driverEmail": driver.email if driver else None,
        "origin": trip.origin,
        "destination": trip.destination,
        "scheduledDate": _iso(trip.start_date),
    }


def expense_created(expense: Expense) -> Dict[str, Any]:
    return {
        "expenseId": expense.id,
        "tripId": expense.trip_id,
        "truck": _plate(expense.truck),
        "type": _enum_value(expense.type),
        "amount": expense.amount,
        "description": expense.description,
        "supplier": expense.supplier,
        "date": _iso(expense.date),
    }


def expense_high_value(expense: Expense, threshold: float) -> Dict[str, Any]:
    return {
        "expenseId": expense.id,
        "truck": _plate(expense.truck),
        "type": _enum_value(expense.type),
        "amount": expense.amount,
        "threshold": threshold,
        "description": expense.description,
        "alertLevel": "warning",
    }


def maintenance_scheduled(maintenance: Maintenance, truck: Truck) -> Dict[str, Any]:
    return {
        "maintenanceId": maintenance.id,
        "truck": truck.plate,
        "type": maintenance.type,
        "description": maintenance.description,
        "scheduledDate": _iso(maintenance.scheduled_date),
        "scheduledMileage": maintenance.scheduled_mileage,
        "currentMileage": truck.current_mileage,
        "priority": _enum_value(maintenance.priority),
    }


def maintenance_overdue(maintenance: Maintenance, truck: Truck) -> Dict[str, Any]:
    current_mileage = truck.current_mileage or 0
    return {
        "maintenanceId": maintenance.id,
        "truck": truck.plate,
        "type": maintenance.type,
        "description": maintenance.description,
        "scheduledMileage": maintenance.scheduled_mileage,
        "currentMileage": current_mileage,
        "overage": current_mileage - maintenance.scheduled_mileage,
        "priority": _enum_value(maintenance.priority),
        "alertLevel": "critical",
    }


def maintenance_completed(maintenance: Maintenance, truck: Truck) -> Dict[str, Any]:
    return {
        "maintenanceId": maintenance.id,
        "truck": truck.plate,
        "type": maintenance.type,
        "description": maintenance.description,
        "cost": maintenance.cost,
        "completedDate": _iso(maintenance.completed_date),
        "supplier": maintenance.supplier,
    }
