from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime
from database import get_db
from models.expense import Expense, ExpenseType
from models.trip import Trip
from models.user import User
from services.expense_service import ExpenseService
from services.notification_dispatcher import NotificationDispatcher, get_dispatcher
from utils.auth_dependency import get_current_user
from utils.clock import to_naive_utc
from utils.permissions import is_privileged

router = APIRouter(prefix="/api/expenses", tags=["Expenses"])

class ExpenseCreate(BaseModel):
    type: ExpenseType
    amount: float
    trip_id: Optional[int] = None
    truck_id: Optional[int] = None
    client_id: Optional[int] = None
    category: Optional[str] = Field(None, max_length=100)
    quantity: Optional[float] = Field(None, ge=0)
    unit_price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    supplier: Optional[str] = Field(None, max_length=200)
    location: Optional[str] = Field(None, max_length=255)
    date: Optional[datetime] = None

    @validator('date')
    def normalize_date(cls, v):
        return to_naive_utc(v)

class ExpenseUpdate(BaseModel):
    type: Optional[ExpenseType] = None
    amount: Optional[float] = None
    trip_id: Optional[int] = None
    truck_id: Optional[int] = None
    client_id: Optional[int] = None
    category: Optional[str] = Field(None, max_length=100)
    quantity: Optional[float] = Field(None, ge=0)
    unit_price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    supplier: Optional[str] = Field(None, max_length=200)
    location: Optional[str] = Field(None, max_length=255)
    date: Optional[datetime] = None

    @validator('date')
    def normalize_date(cls, v):
        return to_naive_utc(v)

class ExpenseResponse(BaseModel):
    id: int
    trip_id: Optional[int]
    truck_id: Optional[int]
    client_id: Optional[int]
    type: ExpenseType
    category: Optional[str]
    amount: float
    quantity: Optional[float]
    unit_price: Optional[float]
    description: Optional[str]
    supplier: Optional[str]
    location: Optional[str]
    date: datetime
    created_by: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True

@router.get("/", response_model=List[ExpenseResponse])
def list_expenses(
    trip_id: Optional[int] = None,
    truck_id: Optional[int] = None,
    type: Optional[ExpenseType] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Drivers only see expenses of their own trips or the ones they registered"""
    query = db.query(Expense)
    if not is_privileged(current_user.role):
        own_trip_ids = db.query(Trip.id).filter(Trip.driver_id == current_user.id)
        query = query.filter(
            (Expense.created_by == current_user.id) | (Expense.trip_id.in_(own_trip_ids))
        )
    if trip_id:
        query = query.filter(Expense.trip_id == trip_id)
    if truck_id:
        query = query.filter(Expense.truck_id == truck_id)
    if type:
        query = query.filter(Expense.type == type)
    return query.order_by(Expense.date.desc()).all()

@router.post("/", response_model=ExpenseResponse, status_code=201)
def create_expense(
    data: ExpenseCreate,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    return ExpenseService(db, dispatcher).create_expense(actor=current_user, **data.model_dump())

@router.put("/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    return ExpenseService(db, dispatcher).update_expense(
        expense_id, data.model_dump(exclude_unset=True), current_user
    )

@router.delete("/{expense_id}", status_code=204)
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user)
):
    ExpenseService(db, dispatcher).delete_expense(expense_id, current_user)
