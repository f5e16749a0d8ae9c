"""Tests for expense mutations and the reconciliation they trigger."""
import pytest

from conftest import make_expense, make_trip
from models import Expense, ExpenseType, TripStatus
from services.expense_service import ExpenseService
from services.notification_payloads import EXPENSE_CREATED, EXPENSE_HIGH_VALUE
from utils.exceptions import NotFoundError, PermissionDeniedError, ValidationError


@pytest.fixture
def service(db, dispatcher):
    return ExpenseService(db, dispatcher, high_value_threshold=5000, allow_refunds=False)


@pytest.fixture
def completed_trip(db, truck, driver):
    trip = make_trip(db, truck, driver, status=TripStatus.COMPLETED, revenue=1000)
    make_expense(db, trip, ExpenseType.FUEL, 200)
    return trip


class TestCreateExpense:
    """Tests for ExpenseService.create_expense."""

    def test_reconciles_completed_trip(self, db, service, manager, completed_trip):
        service.create_expense(manager, ExpenseType.TOLL, 50, trip_id=completed_trip.id)
        db.refresh(completed_trip)
        assert completed_trip.total_cost == pytest.approx(250)
        assert completed_trip.profit == pytest.approx(750)
        assert completed_trip.profit_margin == pytest.approx(75)

    def test_open_trip_not_reconciled(self, db, service, manager, truck, driver):
        trip = make_trip(db, truck, driver, revenue=1000)
        service.create_expense(manager, ExpenseType.TOLL, 50, trip_id=trip.id)
        db.refresh(trip)
        assert trip.total_cost == 0

    def test_truck_defaults_to_trip_truck(self, service, manager, truck, completed_trip):
        expense = service.create_expense(manager, ExpenseType.FOOD, 30, trip_id=completed_trip.id)
        assert expense.truck_id == truck.id
        assert expense.created_by == manager.id

    def test_driver_limited_to_fuel(self, service, driver, truck, driver_trip):
        with pytest.raises(PermissionDeniedError):
            service.create_expense(driver, ExpenseType.TOLL, 20, trip_id=driver_trip.id)
        expense = service.create_expense(driver, ExpenseType.FUEL, 300, trip_id=driver_trip.id, quantity=55.5)
        assert expense.quantity == 55.5

    def test_negative_amount_rejected(self, service, manager):
        with pytest.raises(ValidationError):
            service.create_expense(manager, ExpenseType.OTHER, -10)

    def test_refund_allowed_when_configured(self, db, dispatcher, manager, completed_trip):
        service = ExpenseService(db, dispatcher, allow_refunds=True)
        service.create_expense(manager, ExpenseType.FUEL, -20, trip_id=completed_trip.id)
        db.refresh(completed_trip)
        assert completed_trip.fuel_cost == pytest.approx(180)

    def test_unknown_trip(self, service, manager):
        with pytest.raises(NotFoundError):
            service.create_expense(manager, ExpenseType.TOLL, 10, trip_id=999)

    def test_events(self, service, dispatcher, manager, truck):
        service.create_expense(manager, ExpenseType.MAINTENANCE, 200, truck_id=truck.id)
        service.create_expense(manager, ExpenseType.INSURANCE, 5000, truck_id=truck.id)
        assert dispatcher.events() == [EXPENSE_CREATED, EXPENSE_CREATED, EXPENSE_HIGH_VALUE]
        payload = dispatcher.payloads(EXPENSE_HIGH_VALUE)[0]
        assert payload["amount"] == 5000
        assert payload["truck"] == truck.plate


@pytest.fixture
def driver_trip(db, truck, driver):
    return make_trip(db, truck, driver, status=TripStatus.IN_PROGRESS)


class TestUpdateExpense:
    """Tests for ExpenseService.update_expense."""

    def test_amount_change_reconciles(self, db, service, manager, completed_trip):
        expense = completed_trip.expenses[0]
        service.update_expense(expense.id, {"amount": 400}, manager)
        db.refresh(completed_trip)
        assert completed_trip.fuel_cost == pytest.approx(400)
        assert completed_trip.profit == pytest.approx(600)

    def test_moving_expense_reconciles_both_trips(self, db, service, manager, truck, other_truck, driver, completed_trip):
        target = make_trip(db, other_truck, driver, status=TripStatus.COMPLETED, revenue=500)
        toll = make_expense(db, completed_trip, ExpenseType.TOLL, 100)

        service.update_expense(toll.id, {"trip_id": target.id}, manager)

        db.refresh(completed_trip)
        db.refresh(target)
        assert completed_trip.total_cost == pytest.approx(200)
        assert target.total_cost == pytest.approx(100)
        assert target.profit_margin == pytest.approx(80)

    def test_driver_cannot_touch_completed_trip(self, db, service, driver, completed_trip):
        expense = completed_trip.expenses[0]
        with pytest.raises(PermissionDeniedError):
            service.update_expense(expense.id, {"amount": 10}, driver)
        db.refresh(expense)
        assert expense.amount == 200

    def test_unknown_field_rejected(self, service, manager, completed_trip):
        with pytest.raises(ValidationError):
            service.update_expense(completed_trip.expenses[0].id, {"created_by": 1}, manager)

    def test_null_date_rejected(self, db, service, manager, completed_trip):
        expense = completed_trip.expenses[0]
        with pytest.raises(ValidationError) as exc_info:
            service.update_expense(expense.id, {"date": None}, manager)
        assert exc_info.value.detail == {"field": "date"}
        db.refresh(expense)
        assert expense.date is not None


class TestDeleteExpense:
    """Tests for ExpenseService.delete_expense."""

    def test_delete_reconciles(self, db, service, manager, completed_trip):
        service.delete_expense(completed_trip.expenses[0].id, manager)
        db.refresh(completed_trip)
        assert db.query(Expense).count() == 0
        assert completed_trip.total_cost == 0
        assert completed_trip.profit == pytest.approx(1000)

    def test_driver_cannot_delete_from_completed_trip(self, service, driver, completed_trip):
        with pytest.raises(PermissionDeniedError):
            service.delete_expense(completed_trip.expenses[0].id, driver)

    def test_driver_deletes_own_fuel_on_open_trip(self, db, service, driver, driver_trip):
        expense = make_expense(db, driver_trip, ExpenseType.FUEL, 80)
        service.delete_expense(expense.id, driver)
        assert db.query(Expense).count() == 0
