from sqlalchemy import Column, Integer, Float, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
import enum

class MaintenanceStatus(str, enum.Enum):
    PENDING = "PENDING"  # overdue: mileage threshold reached without service
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class MaintenancePriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

class Maintenance(Base):
    __tablename__ = "maintenances"

    id = Column(Integer, primary_key=True, index=True)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=False, index=True)
    type = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    cost = Column(Float, nullable=False, default=0)
    mileage = Column(Float, nullable=True)  # odometer at service time
    scheduled_mileage = Column(Float, nullable=True)
    scheduled_date = Column(DateTime, nullable=True)
    completed_date = Column(DateTime, nullable=True)
    status = Column(SQLEnum(MaintenanceStatus), nullable=False, default=MaintenanceStatus.SCHEDULED, index=True)
    priority = Column(SQLEnum(MaintenancePriority), nullable=False, default=MaintenancePriority.MEDIUM)
    supplier = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    truck = relationship("Truck", back_populates="maintenances")

    def __repr__(self):
        return f"<Maintenance(id={self.id}, truck_id={self.truck_id}, status={self.status})>"
