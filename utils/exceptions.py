"""
Domain errors raised by the trip, expense and maintenance services.

Routers never catch these; main.py maps each family to an HTTP status so the
caller gets a precise message (e.g. the exact conflicting interval in hours).
"""
from typing import Any, Dict, Optional


class FleetError(Exception):
    """Base class for every error the services raise on purpose"""

    code = "fleet_error"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.detail}


# -----------------
# BAD INPUT
# -----------------

class ValidationError(FleetError):
    code = "validation_error"


class RetroactiveScheduleError(ValidationError):
    code = "retroactive_schedule"


class SchedulingConflictError(ValidationError):
    code = "scheduling_conflict"

    def __init__(self, resource: str, interval_hours: float, conflicting_trip_id: int, min_interval_hours: float):
        self.resource = resource
        self.interval_hours = round(interval_hours, 1)
        self.conflicting_trip_id = conflicting_trip_id
        super().__init__(
            f"The {resource} already has trip {conflicting_trip_id} starting {self.interval_hours:.1f}h apart "
            f"(minimum interval is {min_interval_hours:g}h)",
            {
                "resource": resource,
                "intervalHours": self.interval_hours,
                "conflictingTripId": conflicting_trip_id,
                "minIntervalHours": min_interval_hours,
            },
        )


class InvalidMileageError(ValidationError):
    code = "invalid_mileage"


# -----------------
# WRONG LIFECYCLE MOMENT
# -----------------

class StateError(FleetError):
    code = "state_error"


class InvalidTransitionError(StateError):
    code = "invalid_transition"

    def __init__(self, entity: str, current: Any, target: Any):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Cannot move {entity} from {current_value} to {target_value}",
            {"currentStatus": current_value, "targetStatus": target_value},
        )


class NotEditableError(StateError):
    code = "not_editable"

    def __init__(self, entity: str, status: Any):
        status_value = getattr(status, "value", status)
        super().__init__(
            f"{entity.capitalize()} cannot be edited while {status_value}",
            {"currentStatus": status_value},
        )


# -----------------
# MISSING / FORBIDDEN
# -----------------

class NotFoundError(FleetError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found", {"entity": entity, "id": entity_id})


class PermissionDeniedError(FleetError):
    code = "permission_denied"


class DispatchFailure(FleetError):
    """Webhook delivery failed. Never leaves the dispatcher."""

    code = "dispatch_failure"
