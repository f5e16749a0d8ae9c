from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime
from database import get_db
from models.trip import Trip, TripStatus
from models.user import User
from services.notification_dispatcher import NotificationDispatcher, get_dispatcher
from services.trip_lifecycle import TripLifecycleService
from utils.auth_dependency import get_current_user, get_current_manager
from utils.clock import to_naive_utc
from utils.permissions import is_privileged

router = APIRouter(prefix="/api/trips", tags=["Trips"])

class TripCreate(BaseModel):
    truck_id: int
    driver_id: int
    trailer_id: Optional[int] = None
    client_id: Optional[int] = None
    origin: str = Field(..., min_length=1, max_length=255)
    destination: str = Field(..., min_length=1, max_length=255)
    start_date: datetime
    trip_code: Optional[str] = Field(None, max_length=50)
    distance: float = Field(0, ge=0)
    revenue: float = Field(0, ge=0)
    notes: Optional[str] = None

    @validator('start_date')
    def normalize_start(cls, v):
        return to_naive_utc(v)

class TripUpdate(BaseModel):
    """Only PLANNED or DELAYED trips accept edits"""
    truck_id: Optional[int] = None
    driver_id: Optional[int] = None
    trailer_id: Optional[int] = None
    client_id: Optional[int] = None
    origin: Optional[str] = Field(None, min_length=1, max_length=255)
    destination: Optional[str] = Field(None, min_length=1, max_length=255)
    start_date: Optional[datetime] = None
    trip_code: Optional[str] = Field(None, max_length=50)
    distance: Optional[float] = Field(None, ge=0)
    revenue: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None

    @validator('start_date')
    def normalize_start(cls, v):
        return to_naive_utc(v)

class TripFinish(BaseModel):
    end_mileage: Optional[float] = Field(None, ge=0)
    end_date: Optional[datetime] = None
    distance: Optional[float] = Field(None, ge=0)

    @validator('end_date')
    def normalize_end(cls, v):
        return to_naive_utc(v)

class TripResponse(BaseModel):
    id: int
    truck_id: int
    driver_id: int
    trailer_id: Optional[int]
    client_id: Optional[int]
    trip_code: Optional[str]
    origin: str
    destination: str
    notes: Optional[str]
    start_date: datetime
    end_date: Optional[datetime]
    start_mileage: Optional[float]
    end_mileage: Optional[float]
    distance: float
    revenue: float
    fuel_cost: float
    toll_cost: float
    other_costs: float
    total_cost: float
    profit: float
    profit_margin: float
    status: TripStatus
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class FinancialsResponse(BaseModel):
    fuel_cost: float
    toll_cost: float
    other_costs: float
    total_cost: float
    profit: float
    profit_margin: float
    fuel_estimated: bool

class SweepResponse(BaseModel):
    message: str
    count: int
    trip_ids: List[int]

def _lifecycle(db: Session, dispatcher: NotificationDispatcher) -> TripLifecycleService:
    return TripLifecycleService(db, dispatcher)

@router.get("/", response_model=List[TripResponse])
def list_trips(
    status: Optional[TripStatus] = None,
    truck_id: Optional[int] = None,
    driver_id: Optional[int] = None,
    start_from: Optional[datetime] = Query(None),
    start_to: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    List trips, newest first.
    Drivers only see their own trips.
    """
    query = db.query(Trip)
    if not is_privileged(current_user.role):
        query = query.filter(Trip.driver_id == current_user.id)
    elif driver_id:
        query = query.filter(Trip.driver_id == driver_id)

    if status:
        query = query.filter(Trip.status == status)
    if truck_id:
        query = query.filter(Trip.truck_id == truck_id)
    if start_from:
        query = query.filter(Trip.start_date >= to_naive_utc(start_from))
    if start_to:
        query = query.filter(Trip.start_date <= to_naive_utc(start_to))

    return query.order_by(Trip.start_date.desc()).all()

@router.get("/{trip_id}", response_model=TripResponse)
def get_trip(
    trip_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return TripLifecycleService(db).get_trip(trip_id)

@router.post("/", response_model=TripResponse, status_code=201)
def schedule_trip(
    data: TripCreate,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    """Schedule a new trip (admin/manager). Rejects past start times and double-booking."""
    return _lifecycle(db, dispatcher).schedule(actor=current_user, **data.model_dump())

@router.put("/{trip_id}", response_model=TripResponse)
def edit_trip(
    trip_id: int,
    data: TripUpdate,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    fields = data.model_dump(exclude_unset=True)
    return _lifecycle(db, dispatcher).edit(trip_id, fields, current_user)

@router.post("/{trip_id}/start", response_model=TripResponse)
def start_trip(
    trip_id: int,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    return _lifecycle(db, dispatcher).start(trip_id, current_user)

@router.post("/{trip_id}/finish", response_model=TripResponse)
def finish_trip(
    trip_id: int,
    data: TripFinish,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    """Complete an in-progress trip, reconcile its costs and return the truck to the garage"""
    return _lifecycle(db, dispatcher).finish(
        trip_id,
        current_user,
        end_mileage=data.end_mileage,
        end_date=data.end_date,
        distance=data.distance,
    )

@router.post("/{trip_id}/cancel", response_model=TripResponse)
def cancel_trip(
    trip_id: int,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    return _lifecycle(db, dispatcher).cancel(trip_id, current_user)

@router.delete("/{trip_id}", status_code=204)
def delete_trip(
    trip_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    TripLifecycleService(db).delete(trip_id, current_user)

@router.post("/{trip_id}/calculate", response_model=FinancialsResponse)
def recalculate_trip(
    trip_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_manager)
):
    return TripLifecycleService(db).recalculate(trip_id).as_dict()

@router.post("/check-delayed", response_model=SweepResponse)
def check_delayed_trips(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_manager)
):
    """Periodic job: mark PLANNED trips whose start time has passed as DELAYED"""
    delayed = _lifecycle(db, dispatcher).sweep_delayed()
    return SweepResponse(
        message=f"{len(delayed)} trip(s) marked as delayed",
        count=len(delayed),
        trip_ids=[trip.id for trip in delayed],
    )

@router.post("/check-upcoming", response_model=SweepResponse)
def check_upcoming_trips(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_manager)
):
    upcoming = _lifecycle(db, dispatcher).check_upcoming()
    return SweepResponse(
        message=f"{len(upcoming)} upcoming trip(s) found",
        count=len(upcoming),
        trip_ids=[trip.id for trip in upcoming],
    )
