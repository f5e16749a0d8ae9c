"""
Role capabilities for trips, expenses and maintenance.

All role comparisons live here so a rule change touches one function.
"""
from models.user import User, UserRole
from models.trip import Trip, TripStatus
from models.expense import ExpenseType
from utils.exceptions import PermissionDeniedError

PRIVILEGED_ROLES = (UserRole.ADMIN, UserRole.MANAGER)

def is_privileged(role: UserRole) -> bool:
    return role in PRIVILEGED_ROLES

def can_schedule_trip(role: UserRole) -> bool:
    return is_privileged(role)

def can_edit_trip(role: UserRole) -> bool:
    return is_privileged(role)

def can_cancel_trip(role: UserRole) -> bool:
    return is_privileged(role)

def can_delete_trip(role: UserRole, status: TripStatus) -> bool:
    """Admins may remove any trip that never ran; managers only PLANNED ones"""
    if status in (TripStatus.IN_PROGRESS, TripStatus.COMPLETED):
        return False
    if role == UserRole.ADMIN:
        return True
    if role == UserRole.MANAGER:
        return status == TripStatus.PLANNED
    return False

def can_operate_trip(user: User, trip: Trip) -> bool:
    """Start/finish: privileged roles, or the driver assigned to the trip"""
    if is_privileged(user.role):
        return True
    return user.role == UserRole.DRIVER and trip.driver_id == user.id

def can_create_expense(role: UserRole, expense_type: ExpenseType) -> bool:
    if role == UserRole.DRIVER:
        return expense_type == ExpenseType.FUEL
    return is_privileged(role)

def can_modify_completed_expense(role: UserRole) -> bool:
    return is_privileged(role)

def can_update_mileage(role: UserRole) -> bool:
    return is_privileged(role)

def can_manage_maintenance(role: UserRole) -> bool:
    return is_privileged(role)

def can_update_settings(role: UserRole) -> bool:
    return is_privileged(role)

def require(allowed: bool, message: str) -> None:
    if not allowed:
        raise PermissionDeniedError(message)
