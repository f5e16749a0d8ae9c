"""Tests for trip cost and profit reconciliation."""
import pytest
from sqlalchemy.orm import Query

from conftest import make_expense, make_trip
from models import Expense, ExpenseType, Trip, TripStatus, Truck
from services.reconciliation import (
    estimate_fuel_cost,
    profit_margin,
    reconcile,
    reconcile_if_completed,
    reconcile_trip,
)
from services.settings_service import SettingsService


def expense(expense_type, amount):
    return Expense(type=expense_type, amount=amount)


class TestEstimateFuelCost:
    """Tests for estimate_fuel_cost."""

    def test_distance_over_consumption_times_price(self):
        assert estimate_fuel_cost(500, 10, 6) == pytest.approx(300)

    def test_missing_inputs_give_zero(self):
        assert estimate_fuel_cost(0, 10, 6) == 0.0
        assert estimate_fuel_cost(500, None, 6) == 0.0
        assert estimate_fuel_cost(500, 0, 6) == 0.0
        assert estimate_fuel_cost(500, 10, 0) == 0.0


class TestProfitMargin:
    """Tests for profit_margin."""

    def test_percentage_of_revenue(self):
        assert profit_margin(1000, 720) == pytest.approx(72)

    def test_zero_revenue_is_zero_margin(self):
        """A loss on a zero-revenue trip still reads as 0%."""
        assert profit_margin(0, -250) == 0.0


class TestReconcile:
    """Tests for the pure reconcile function."""

    def test_groups_expenses_by_type(self):
        trip = Trip(revenue=1000, distance=0)
        result = reconcile(
            trip,
            [expense(ExpenseType.FUEL, 200), expense(ExpenseType.TOLL, 50), expense(ExpenseType.FOOD, 30)],
            Truck(avg_consumption=10),
            diesel_price=6,
        )
        assert result.fuel_cost == pytest.approx(200)
        assert result.toll_cost == pytest.approx(50)
        assert result.other_costs == pytest.approx(30)
        assert result.total_cost == pytest.approx(280)
        assert result.profit == pytest.approx(720)
        assert result.profit_margin == pytest.approx(72)
        assert result.fuel_estimated is False

    def test_estimates_fuel_without_fuel_expenses(self):
        trip = Trip(revenue=1000, distance=500)
        result = reconcile(trip, [expense(ExpenseType.TOLL, 50)], Truck(avg_consumption=10), diesel_price=6)
        assert result.fuel_cost == pytest.approx(300)
        assert result.fuel_estimated is True
        assert result.total_cost == pytest.approx(350)

    def test_any_fuel_expense_disables_estimate(self):
        """Even a tiny recorded fuel amount replaces the estimate."""
        trip = Trip(revenue=1000, distance=500)
        result = reconcile(trip, [expense(ExpenseType.FUEL, 0.01)], Truck(avg_consumption=10), diesel_price=6)
        assert result.fuel_cost == pytest.approx(0.01)
        assert result.fuel_estimated is False

    def test_zero_amount_fuel_expense_still_disables_estimate(self):
        trip = Trip(revenue=1000, distance=500)
        result = reconcile(trip, [expense(ExpenseType.FUEL, 0)], Truck(avg_consumption=10), diesel_price=6)
        assert result.fuel_cost == 0.0

    def test_no_estimate_without_truck(self):
        trip = Trip(revenue=100, distance=500)
        result = reconcile(trip, [], None, diesel_price=6)
        assert result.fuel_cost == 0.0
        assert result.profit == pytest.approx(100)

    def test_zero_revenue_loss(self):
        trip = Trip(revenue=0, distance=0)
        result = reconcile(trip, [expense(ExpenseType.TOLL, 80)], None)
        assert result.profit == pytest.approx(-80)
        assert result.profit_margin == 0.0

    def test_total_is_sum_of_parts(self):
        trip = Trip(revenue=5000, distance=0)
        result = reconcile(
            trip,
            [expense(ExpenseType.FUEL, 900), expense(ExpenseType.MAINTENANCE, 120), expense(ExpenseType.TIRE, 400)],
            None,
        )
        assert result.total_cost == pytest.approx(result.fuel_cost + result.toll_cost + result.other_costs)
        assert result.profit == pytest.approx(5000 - result.total_cost)


class TestReconcileTrip:
    """Tests for reconciliation against the database."""

    def test_writes_financials_onto_trip(self, db, truck, driver):
        trip = make_trip(db, truck, driver, status=TripStatus.COMPLETED, revenue=1000)
        make_expense(db, trip, ExpenseType.FUEL, 200)
        make_expense(db, trip, ExpenseType.TOLL, 50)
        make_expense(db, trip, ExpenseType.FOOD, 30)

        reconcile_trip(db, trip)
        assert trip.total_cost == pytest.approx(280)
        assert trip.profit == pytest.approx(720)
        assert trip.profit_margin == pytest.approx(72)

    def test_idempotent(self, db, truck, driver):
        trip = make_trip(db, truck, driver, status=TripStatus.COMPLETED, revenue=1000)
        make_expense(db, trip, ExpenseType.FUEL, 200)

        first = reconcile_trip(db, trip)
        second = reconcile_trip(db, trip)
        assert first == second

    def test_uses_configured_diesel_price(self, db, driver):
        from conftest import make_truck

        truck = make_truck(db, plate="DSL0001", avg_consumption=10)
        SettingsService.get_settings(db).diesel_price = 6
        db.commit()
        trip = make_trip(db, truck, driver, status=TripStatus.COMPLETED, revenue=1000, distance=500)

        financials = reconcile_trip(db, trip)
        assert financials.fuel_estimated is True
        assert trip.fuel_cost == pytest.approx(300)

    def test_if_completed_skips_open_trips(self, db, truck, driver):
        trip = make_trip(db, truck, driver, status=TripStatus.PLANNED, revenue=1000)
        make_expense(db, trip, ExpenseType.TOLL, 50)

        assert reconcile_if_completed(db, trip.id) is None
        assert trip.total_cost == 0

    def test_if_completed_ignores_missing_trip(self, db):
        assert reconcile_if_completed(db, None) is None
        assert reconcile_if_completed(db, 999) is None

    def test_if_completed_locks_trip_row(self, db, truck, driver, monkeypatch):
        """The trip row is locked before its expenses are summed."""
        locked = []
        original = Query.with_for_update

        def recording(query, *args, **kwargs):
            locked.append(query.column_descriptions[0]["entity"])
            return original(query, *args, **kwargs)

        trip = make_trip(db, truck, driver, status=TripStatus.COMPLETED, revenue=1000)
        make_expense(db, trip, ExpenseType.TOLL, 50)
        monkeypatch.setattr(Query, "with_for_update", recording)

        reconcile_if_completed(db, trip.id)
        assert Trip in locked
        assert trip.total_cost == pytest.approx(50)
