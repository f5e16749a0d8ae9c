from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from database import get_db
from models.truck import Truck, TruckStatus
from models.user import User
from services.maintenance_monitor import MaintenanceService
from services.notification_dispatcher import NotificationDispatcher, get_dispatcher
from utils.auth_dependency import get_current_user, get_current_manager

router = APIRouter(prefix="/api/trucks", tags=["Trucks"])

class TruckCreate(BaseModel):
    plate: str = Field(..., min_length=3, max_length=20)
    model: Optional[str] = Field(None, max_length=100)
    brand: Optional[str] = Field(None, max_length=100)
    year: Optional[int] = Field(None, ge=1950, le=2100)
    capacity: Optional[float] = Field(None, ge=0)
    current_mileage: float = Field(0, ge=0)
    avg_consumption: Optional[float] = Field(None, gt=0)

class MileageUpdate(BaseModel):
    current_mileage: float = Field(..., ge=0)

class TruckResponse(BaseModel):
    id: int
    plate: str
    model: Optional[str]
    brand: Optional[str]
    year: Optional[int]
    capacity: Optional[float]
    current_mileage: float
    avg_consumption: Optional[float]
    status: TruckStatus
    active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class MileageUpdateResponse(BaseModel):
    truck: TruckResponse
    overdue_maintenance_ids: List[int]

@router.get("/", response_model=List[TruckResponse])
def list_trucks(
    status: Optional[TruckStatus] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    query = db.query(Truck)
    if status:
        query = query.filter(Truck.status == status)
    return query.order_by(Truck.plate).all()

@router.get("/{truck_id}", response_model=TruckResponse)
def get_truck(
    truck_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    truck = db.query(Truck).filter(Truck.id == truck_id).first()
    if not truck:
        raise HTTPException(status_code=404, detail="Truck not found")
    return truck

@router.post("/", response_model=TruckResponse, status_code=201)
def create_truck(
    data: TruckCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_manager)
):
    plate = data.plate.strip().upper()
    if db.query(Truck).filter(Truck.plate == plate).first():
        raise HTTPException(status_code=409, detail="Truck with this plate already exists")

    truck = Truck(**{**data.model_dump(), "plate": plate})
    db.add(truck)
    db.commit()
    db.refresh(truck)
    return truck

@router.patch("/{truck_id}/mileage", response_model=MileageUpdateResponse)
def update_truck_mileage(
    truck_id: int,
    data: MileageUpdate,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    """Record a new odometer reading and flag maintenance whose mileage is now due"""
    truck, newly_overdue = MaintenanceService(db, dispatcher).update_mileage(
        truck_id, data.current_mileage, current_user
    )
    return MileageUpdateResponse(
        truck=TruckResponse.model_validate(truck),
        overdue_maintenance_ids=[m.id for m in newly_overdue],
    )
