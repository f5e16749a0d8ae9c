"""Tests for mileage-driven maintenance tracking."""
import pytest

from conftest import make_maintenance, make_truck
from models import MaintenanceStatus
from services.maintenance_monitor import MaintenanceService, check_overdue, is_mileage_reached
from services.notification_payloads import MAINTENANCE_COMPLETED, MAINTENANCE_OVERDUE, MAINTENANCE_SCHEDULED
from utils.exceptions import InvalidMileageError, InvalidTransitionError, NotFoundError, PermissionDeniedError


@pytest.fixture
def service(db, dispatcher):
    return MaintenanceService(db, dispatcher)


class TestIsMileageReached:
    """Tests for is_mileage_reached."""

    def test_at_or_above_threshold(self):
        assert is_mileage_reached(15000, 15000) is True
        assert is_mileage_reached(15001, 15000) is True

    def test_below_threshold(self):
        assert is_mileage_reached(14999, 15000) is False

    def test_no_threshold(self):
        assert is_mileage_reached(15000, None) is False


class TestCheckOverdue:
    """Tests for check_overdue."""

    def test_flips_reached_records_once(self, db, truck):
        due = make_maintenance(db, truck, scheduled_mileage=9000)
        later = make_maintenance(db, truck, scheduled_mileage=20000)

        assert check_overdue(db, truck) == [due]
        assert due.status == MaintenanceStatus.PENDING
        assert later.status == MaintenanceStatus.SCHEDULED
        assert check_overdue(db, truck) == []

    def test_ignores_closed_and_unscheduled_records(self, db, truck):
        make_maintenance(db, truck, scheduled_mileage=5000, status=MaintenanceStatus.COMPLETED)
        make_maintenance(db, truck, scheduled_mileage=5000, status=MaintenanceStatus.IN_PROGRESS)
        make_maintenance(db, truck, scheduled_mileage=None)
        assert check_overdue(db, truck) == []


class TestUpdateMileage:
    """Tests for MaintenanceService.update_mileage."""

    def test_reaching_threshold_emits_overdue(self, db, service, dispatcher, manager, truck):
        maintenance = make_maintenance(db, truck, scheduled_mileage=15000)

        updated, newly_overdue = service.update_mileage(truck.id, 15250, manager)

        assert updated.current_mileage == 15250
        assert [m.id for m in newly_overdue] == [maintenance.id]
        payload = dispatcher.payloads(MAINTENANCE_OVERDUE)[0]
        assert payload["currentMileage"] == 15250
        assert payload["overage"] == 250
        assert payload["alertLevel"] == "critical"

    def test_no_refire_on_further_increase(self, db, service, dispatcher, manager, truck):
        make_maintenance(db, truck, scheduled_mileage=15000)
        service.update_mileage(truck.id, 15100, manager)
        service.update_mileage(truck.id, 16000, manager)
        assert dispatcher.events() == [MAINTENANCE_OVERDUE]

    def test_decrease_rejected(self, db, service, manager, truck):
        with pytest.raises(InvalidMileageError):
            service.update_mileage(truck.id, 9000, manager)
        db.refresh(truck)
        assert truck.current_mileage == 10000

    def test_negative_rejected(self, service, manager, truck):
        with pytest.raises(InvalidMileageError):
            service.update_mileage(truck.id, -1, manager)

    def test_driver_cannot_update(self, service, driver, truck):
        with pytest.raises(PermissionDeniedError):
            service.update_mileage(truck.id, 11000, driver)

    def test_missing_truck(self, service, manager):
        with pytest.raises(NotFoundError):
            service.update_mileage(999, 11000, manager)


class TestCreateMaintenance:
    """Tests for MaintenanceService.create_maintenance."""

    def test_future_threshold_is_scheduled(self, service, dispatcher, manager, truck):
        maintenance = service.create_maintenance(
            manager, truck.id, "Oil change", "Engine oil", scheduled_mileage=20000,
        )
        assert maintenance.status == MaintenanceStatus.SCHEDULED
        assert dispatcher.events() == [MAINTENANCE_SCHEDULED]

    def test_threshold_already_reached_is_overdue(self, service, dispatcher, manager, truck):
        maintenance = service.create_maintenance(
            manager, truck.id, "Brakes", "Replace pads", scheduled_mileage=9500,
        )
        assert maintenance.status == MaintenanceStatus.PENDING
        assert dispatcher.events() == [MAINTENANCE_OVERDUE, MAINTENANCE_SCHEDULED]
        assert dispatcher.payloads(MAINTENANCE_OVERDUE)[0]["overage"] == 500

    def test_unscheduled_record_is_silent(self, service, dispatcher, manager, truck):
        service.create_maintenance(manager, truck.id, "Inspection", "Walk-around check")
        assert dispatcher.sent == []

    def test_negative_threshold_rejected(self, service, manager, truck):
        with pytest.raises(InvalidMileageError):
            service.create_maintenance(manager, truck.id, "Oil", "Oil", scheduled_mileage=-10)


class TestCompleteMaintenance:
    """Tests for MaintenanceService.complete_maintenance."""

    def test_completes_overdue_record(self, db, service, dispatcher, manager, truck):
        maintenance = make_maintenance(db, truck, scheduled_mileage=9000, status=MaintenanceStatus.PENDING)

        completed = service.complete_maintenance(maintenance.id, manager, cost=850, mileage=10000)

        assert completed.status == MaintenanceStatus.COMPLETED
        assert completed.completed_date is not None
        assert completed.cost == 850
        assert dispatcher.payloads(MAINTENANCE_COMPLETED)[0]["cost"] == 850

    def test_completed_twice_rejected(self, db, service, manager, truck):
        maintenance = make_maintenance(db, truck, scheduled_mileage=9000, status=MaintenanceStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            service.complete_maintenance(maintenance.id, manager)


class TestCheckAllOverdue:
    """Tests for the fleet-wide overdue sweep."""

    def test_sweeps_every_truck(self, db, service, dispatcher, truck):
        other = make_truck(db, plate="OVR0001", current_mileage=50000)
        make_maintenance(db, truck, scheduled_mileage=10000)
        make_maintenance(db, other, scheduled_mileage=60000)

        result = service.check_all_overdue()

        assert result["checked_trucks"] == 2
        assert result["overdue"] == 1
        assert len(dispatcher.payloads(MAINTENANCE_OVERDUE)) == 1
