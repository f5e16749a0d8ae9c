from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from database import get_db
from models.user import User
from services.settings_service import SettingsService
from utils.auth_dependency import get_current_user, get_current_manager

router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsResponse(BaseModel):
    id: int
    company_name: str
    diesel_price: float
    updated_at: datetime
    updated_by: Optional[int]

    class Config:
        from_attributes = True


class UpdateSettingsRequest(BaseModel):
    diesel_price: Optional[float] = Field(None, ge=0)
    company_name: Optional[str] = Field(None, min_length=1, max_length=200)


@router.get("/", response_model=SettingsResponse)
def get_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Get company settings, including the diesel price used for fuel estimates.
    Available to all authenticated users.
    """
    current = SettingsService.get_settings(db)
    db.commit()
    db.refresh(current)
    return current


@router.put("/", response_model=SettingsResponse)
def update_settings(
    request: UpdateSettingsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_manager)
):
    """
    Update company settings.
    Admin/Manager only. New diesel price applies to the next reconciliation.
    """
    return SettingsService.update_settings(
        db,
        current_user,
        diesel_price=request.diesel_price,
        company_name=request.company_name,
    )
