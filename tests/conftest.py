"""Shared fixtures: an in-memory database per test and a dispatcher that records events."""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base, get_db
from models import Expense, ExpenseType, Maintenance, MaintenanceStatus, Trip, TripStatus, Truck, User, UserRole
from services.notification_dispatcher import get_dispatcher
from utils.security import create_access_token

NOW = datetime(2024, 6, 1, 12, 0, 0)


class RecordingDispatcher:
    """Keeps every (event, payload) pair instead of posting it."""

    def __init__(self):
        self.sent = []

    def send(self, event_name, payload):
        self.sent.append((event_name, payload))

    def close(self):
        pass

    def events(self):
        return [name for name, _ in self.sent]

    def payloads(self, event_name):
        return [payload for name, payload in self.sent if name == event_name]


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


def make_user(db, role, name=None, **kwargs):
    user = User(name=name or role.value.title(), role=role, **kwargs)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return make_user(db, UserRole.ADMIN, email="admin@fleet.test")


@pytest.fixture
def manager(db):
    return make_user(db, UserRole.MANAGER, email="manager@fleet.test")


@pytest.fixture
def driver(db):
    return make_user(db, UserRole.DRIVER, name="Joao", email="joao@fleet.test", phone="+5511999990000")


@pytest.fixture
def other_driver(db):
    return make_user(db, UserRole.DRIVER, name="Maria", email="maria@fleet.test")


def make_truck(db, plate="ABC1D23", current_mileage=10000.0, avg_consumption=2.5, **kwargs):
    truck = Truck(plate=plate, current_mileage=current_mileage, avg_consumption=avg_consumption, **kwargs)
    db.add(truck)
    db.commit()
    db.refresh(truck)
    return truck


@pytest.fixture
def truck(db):
    return make_truck(db)


@pytest.fixture
def other_truck(db):
    return make_truck(db, plate="XYZ9K87")


def make_trip(db, truck, driver, start_date=None, status=TripStatus.PLANNED, revenue=1000.0, distance=0.0, **kwargs):
    trip = Trip(
        truck_id=truck.id,
        driver_id=driver.id,
        origin="Sao Paulo",
        destination="Curitiba",
        start_date=start_date or NOW + timedelta(days=1),
        status=status,
        revenue=revenue,
        profit=revenue,
        distance=distance,
        **kwargs,
    )
    db.add(trip)
    db.commit()
    db.refresh(trip)
    return trip


def make_expense(db, trip, expense_type, amount, **kwargs):
    expense = Expense(
        trip_id=trip.id if trip else None,
        truck_id=trip.truck_id if trip else None,
        type=expense_type,
        amount=amount,
        date=NOW,
        **kwargs,
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    return expense


def make_maintenance(db, truck, scheduled_mileage, status=MaintenanceStatus.SCHEDULED, **kwargs):
    maintenance = Maintenance(
        truck_id=truck.id,
        type="Oil change",
        description="Engine oil and filters",
        scheduled_mileage=scheduled_mileage,
        status=status,
        **kwargs,
    )
    db.add(maintenance)
    db.commit()
    db.refresh(maintenance)
    return maintenance


def auth_headers(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db, dispatcher):
    from main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
