from sqlalchemy import Column, Integer, Float, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
import enum

class ExpenseType(str, enum.Enum):
    FUEL = "FUEL"
    TOLL = "TOLL"
    MAINTENANCE = "MAINTENANCE"
    FOOD = "FOOD"
    LODGING = "LODGING"
    TIRE = "TIRE"
    FINE = "FINE"
    INSURANCE = "INSURANCE"
    OTHER = "OTHER"

class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=True, index=True)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)

    type = Column(SQLEnum(ExpenseType), nullable=False)
    category = Column(String(100), nullable=True)
    amount = Column(Float, nullable=False)
    quantity = Column(Float, nullable=True)  # liters for FUEL
    unit_price = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    supplier = Column(String(200), nullable=True)
    location = Column(String(255), nullable=True)
    date = Column(DateTime, default=datetime.utcnow, nullable=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    trip = relationship("Trip", back_populates="expenses")
    truck = relationship("Truck", back_populates="expenses")
    client = relationship("Client")
