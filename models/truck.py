from sqlalchemy import Column, Integer, Float, String, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
import enum

class TruckStatus(str, enum.Enum):
    GARAGE = "GARAGE"
    IN_TRANSIT = "IN_TRANSIT"
    MAINTENANCE = "MAINTENANCE"

class Truck(Base):
    __tablename__ = "trucks"

    id = Column(Integer, primary_key=True, index=True)
    plate = Column(String(20), unique=True, nullable=False, index=True)
    model = Column(String(100), nullable=True)
    brand = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    capacity = Column(Float, nullable=True)
    current_mileage = Column(Float, nullable=False, default=0)
    avg_consumption = Column(Float, nullable=True)  # km per liter
    status = Column(SQLEnum(TruckStatus), nullable=False, default=TruckStatus.GARAGE)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    trips = relationship("Trip", back_populates="truck")
    maintenances = relationship("Maintenance", back_populates="truck")
    expenses = relationship("Expense", back_populates="truck")

    def __repr__(self):
        return f"<Truck(plate={self.plate}, status={self.status}, mileage={self.current_mileage})>"
