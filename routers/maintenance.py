from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime
from database import get_db
from models.maintenance import Maintenance, MaintenanceStatus, MaintenancePriority
from models.user import User
from services.maintenance_monitor import MaintenanceService
from services.notification_dispatcher import NotificationDispatcher, get_dispatcher
from utils.auth_dependency import get_current_user, get_current_manager
from utils.clock import to_naive_utc

router = APIRouter(prefix="/api/maintenance", tags=["Maintenance"])

class MaintenanceCreate(BaseModel):
    truck_id: int
    type: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    scheduled_mileage: Optional[float] = Field(None, ge=0)
    scheduled_date: Optional[datetime] = None
    priority: MaintenancePriority = MaintenancePriority.MEDIUM
    cost: float = Field(0, ge=0)
    mileage: Optional[float] = Field(None, ge=0)
    supplier: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None

    @validator('scheduled_date')
    def normalize_date(cls, v):
        return to_naive_utc(v)

class MaintenanceComplete(BaseModel):
    completed_date: Optional[datetime] = None
    cost: Optional[float] = Field(None, ge=0)
    mileage: Optional[float] = Field(None, ge=0)

    @validator('completed_date')
    def normalize_date(cls, v):
        return to_naive_utc(v)

class MaintenanceResponse(BaseModel):
    id: int
    truck_id: int
    type: str
    description: str
    cost: float
    mileage: Optional[float]
    scheduled_mileage: Optional[float]
    scheduled_date: Optional[datetime]
    completed_date: Optional[datetime]
    status: MaintenanceStatus
    priority: MaintenancePriority
    supplier: Optional[str]
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True

class OverdueCheckResponse(BaseModel):
    checked_trucks: int
    overdue: int
    maintenances: List[MaintenanceResponse]

@router.get("/", response_model=List[MaintenanceResponse])
def list_maintenances(
    truck_id: Optional[int] = None,
    status: Optional[MaintenanceStatus] = None,
    priority: Optional[MaintenancePriority] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    query = db.query(Maintenance)
    if truck_id:
        query = query.filter(Maintenance.truck_id == truck_id)
    if status:
        query = query.filter(Maintenance.status == status)
    if priority:
        query = query.filter(Maintenance.priority == priority)
    return query.order_by(Maintenance.created_at.desc()).all()

@router.post("/", response_model=MaintenanceResponse, status_code=201)
def create_maintenance(
    data: MaintenanceCreate,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    """Schedule maintenance; records whose mileage is already reached start as PENDING (overdue)"""
    return MaintenanceService(db, dispatcher).create_maintenance(actor=current_user, **data.model_dump())

@router.post("/{maintenance_id}/complete", response_model=MaintenanceResponse)
def complete_maintenance(
    maintenance_id: int,
    data: MaintenanceComplete,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    return MaintenanceService(db, dispatcher).complete_maintenance(
        maintenance_id, current_user, **data.model_dump()
    )

@router.post("/check-overdue", response_model=OverdueCheckResponse)
def check_overdue_maintenances(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_manager)
):
    return MaintenanceService(db, dispatcher).check_all_overdue()
