from sqlalchemy import Column, Integer, Float, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
import enum

class TripStatus(str, enum.Enum):
    PLANNED = "PLANNED"
    DELAYED = "DELAYED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

# Trips that still hold their truck and driver
ACTIVE_TRIP_STATUSES = (TripStatus.PLANNED, TripStatus.IN_PROGRESS, TripStatus.DELAYED)
EDITABLE_TRIP_STATUSES = (TripStatus.PLANNED, TripStatus.DELAYED)
TERMINAL_TRIP_STATUSES = (TripStatus.COMPLETED, TripStatus.CANCELLED)

class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trailer_id = Column(Integer, ForeignKey("trailers.id"), nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)

    trip_code = Column(String(50), nullable=True)
    origin = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)

    start_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=True)
    start_mileage = Column(Float, nullable=True)
    end_mileage = Column(Float, nullable=True)
    distance = Column(Float, nullable=False, default=0)

    revenue = Column(Float, nullable=False, default=0)
    fuel_cost = Column(Float, nullable=False, default=0)
    toll_cost = Column(Float, nullable=False, default=0)
    other_costs = Column(Float, nullable=False, default=0)
    total_cost = Column(Float, nullable=False, default=0)
    profit = Column(Float, nullable=False, default=0)
    profit_margin = Column(Float, nullable=False, default=0)

    status = Column(SQLEnum(TripStatus), nullable=False, default=TripStatus.PLANNED, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    truck = relationship("Truck", back_populates="trips")
    driver = relationship("User", back_populates="trips")
    trailer = relationship("Trailer")
    client = relationship("Client")
    expenses = relationship("Expense", back_populates="trip")

    def __repr__(self):
        return f"<Trip(id={self.id}, status={self.status}, truck_id={self.truck_id})>"
