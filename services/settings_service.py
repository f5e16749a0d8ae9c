from sqlalchemy.orm import Session
from typing import Optional
from models.app_settings import AppSettings
from models.user import User
from utils.exceptions import ValidationError
from utils.permissions import can_update_settings, require
from config import settings as app_config
import logging

logger = logging.getLogger(__name__)

class SettingsService:
    @staticmethod
    def get_settings(db: Session) -> AppSettings:
        """Return the singleton settings row, creating it on first use"""
        current = db.query(AppSettings).order_by(AppSettings.id).first()
        if current is None:
            current = AppSettings(
                company_name=app_config.default_company_name,
                diesel_price=app_config.default_diesel_price,
            )
            db.add(current)
            db.flush()
        return current

    @staticmethod
    def get_diesel_price(db: Session) -> float:
        return SettingsService.get_settings(db).diesel_price or 0.0

    @staticmethod
    def update_settings(
        db: Session,
        actor: User,
        diesel_price: Optional[float] = None,
        company_name: Optional[str] = None,
    ) -> AppSettings:
        require(can_update_settings(actor.role), "Only admins and managers can change settings")

        if diesel_price is not None and diesel_price < 0:
            raise ValidationError("Diesel price cannot be negative", {"field": "dieselPrice"})

        try:
            current = SettingsService.get_settings(db)
            if diesel_price is not None:
                current.diesel_price = diesel_price
            if company_name:
                current.company_name = company_name
            current.updated_by = actor.id
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(current)
        logger.info(f"Settings updated by user {actor.id}: diesel_price={current.diesel_price}")
        return current
