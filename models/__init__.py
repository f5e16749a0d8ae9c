from models.user import User, UserRole
from models.truck import Truck, TruckStatus
from models.partner import Trailer, Client
from models.trip import Trip, TripStatus
from models.expense import Expense, ExpenseType
from models.maintenance import Maintenance, MaintenanceStatus, MaintenancePriority
from models.app_settings import AppSettings

__all__ = ["User", "UserRole", "Truck", "TruckStatus", "Trailer", "Client", "Trip", "TripStatus", "Expense", "ExpenseType", "Maintenance", "MaintenanceStatus", "MaintenancePriority", "AppSettings"]
