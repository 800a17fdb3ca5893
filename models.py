# models.py - SQLAlchemy models
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Float, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from database import Base


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(str, enum.Enum):
    manager = "manager"
    driver = "driver"


class DriverStatus(str, enum.Enum):
    off_duty = "off_duty"
    active = "active"
    on_break = "on_break"


class RouteStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class DeliveryStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


# Routes still holding a driver, deliveries still holding a route
OPEN_ROUTE_STATUSES = (RouteStatus.pending.value, RouteStatus.active.value)
OPEN_DELIVERY_STATUSES = (DeliveryStatus.pending.value, DeliveryStatus.in_progress.value)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), default=UserRole.manager.value, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Driver(Base):
    __tablename__ = "drivers"
    code_prefix = "DRV"
    code_field = "driver_code"

    id = Column(Integer, primary_key=True, index=True)
    driver_code = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(50), nullable=True)
    license_number = Column(String(100), nullable=True)
    license_expiry = Column(DateTime, nullable=True)
    status = Column(String(20), default=DriverStatus.off_duty.value, nullable=False)
    safety_score = Column(Float, default=5.0, nullable=False)
    total_deliveries = Column(Integer, default=0, nullable=False)
    has_account = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    routes = relationship("Route", back_populates="driver")

    @property
    def open_routes(self):
        return [route for route in self.routes if route.status in OPEN_ROUTE_STATUSES]


class Vehicle(Base):
    __tablename__ = "vehicles"
    code_prefix = "VEH"
    code_field = "vehicle_code"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_code = Column(String(50), unique=True, index=True, nullable=False)
    type = Column(String(50), nullable=True)
    status = Column(String(20), default="available")
    last_maintenance = Column(DateTime, nullable=True)
    mileage = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    routes = relationship("Route", back_populates="vehicle")


class Route(Base):
    __tablename__ = "routes"
    code_prefix = "RT"
    code_field = "route_code"

    id = Column(Integer, primary_key=True, index=True)
    route_code = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    status = Column(String(20), default=RouteStatus.pending.value, nullable=False)
    total_stops = Column(Integer, default=0, nullable=False)
    completed_stops = Column(Integer, default=0, nullable=False)
    estimated_time = Column(String(50), nullable=True)
    actual_time = Column(String(50), nullable=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    driver = relationship("Driver", back_populates="routes")
    vehicle = relationship("Vehicle", back_populates="routes")
    deliveries = relationship("Delivery", back_populates="route", order_by="Delivery.stop_number")


class Delivery(Base):
    __tablename__ = "deliveries"
    code_prefix = "DEL"
    code_field = "delivery_code"

    id = Column(Integer, primary_key=True, index=True)
    delivery_code = Column(String(50), unique=True, index=True, nullable=False)
    address = Column(Text, nullable=False)
    customer = Column(String(255), nullable=True)
    packages = Column(Integer, default=1)
    scheduled_time = Column(String(100), nullable=True)
    status = Column(String(20), default=DeliveryStatus.pending.value, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    phone_number = Column(String(50), nullable=True)
    special_instructions = Column(Text, nullable=True)
    stop_number = Column(Integer, nullable=True)
    route_id = Column(Integer, ForeignKey("routes.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    route = relationship("Route", back_populates="deliveries")


class TrainingModule(Base):
    __tablename__ = "training_modules"
    code_prefix = "TRN"
    code_field = "module_code"

    id = Column(Integer, primary_key=True, index=True)
    module_code = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)
    duration = Column(Integer, nullable=True)  # minutes
    status = Column(String(20), default="active")
    created_at = Column(DateTime, default=utcnow)


class ComplianceDocument(Base):
    __tablename__ = "compliance_documents"

    id = Column(Integer, primary_key=True, index=True)
    document_type = Column(String(100), nullable=False)
    entity_id = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=True)  # driver or vehicle
    issue_date = Column(DateTime, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    status = Column(String(20), default="valid")
    file_path = Column(String(500), nullable=True)  # File path or URL
    created_at = Column(DateTime, default=utcnow)
