# schemas.py - Pydantic schemas for API
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Dict, List, Literal
from datetime import datetime

# Auth schemas
class RegisterRequest(BaseModel):
    username: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    role: Literal["manager", "driver"] = "manager"

class LoginRequest(BaseModel):
    username: str
    password: str

class DriverLoginRequest(BaseModel):
    email: EmailStr
    password: str

class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    role: str

    class Config:
        from_attributes = True

class PrincipalResponse(BaseModel):
    id: int
    role: str
    username: Optional[str] = None
    email: Optional[str] = None
    driver_id: Optional[int] = None
    driver_name: Optional[str] = None

class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: PrincipalResponse

class DriverProfile(BaseModel):
    id: int
    driver_code: str
    name: str
    safety_score: Optional[float] = None

    class Config:
        from_attributes = True

class DriverTokenResponse(TokenResponse):
    driver: DriverProfile

# Driver schemas
class DriverCreate(BaseModel):
    driver_code: Optional[str] = None
    name: str = Field(min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None
    license_expiry: Optional[datetime] = None
    status: str = "off_duty"
    safety_score: float = 5.0

class DriverUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None
    license_expiry: Optional[datetime] = None
    status: Optional[str] = None
    safety_score: Optional[float] = None
    total_deliveries: Optional[int] = Field(default=None, ge=0)

class CreateAccountRequest(BaseModel):
    password: str = Field(min_length=6)

class RouteSummary(BaseModel):
    id: int
    route_code: str
    name: Optional[str]
    status: str
    total_stops: int
    completed_stops: int

    class Config:
        from_attributes = True

class DriverResponse(BaseModel):
    id: int
    driver_code: str
    name: str
    email: Optional[str]
    phone: Optional[str]
    license_number: Optional[str]
    license_expiry: Optional[datetime]
    status: str
    safety_score: float
    total_deliveries: int
    has_account: bool
    created_at: datetime

    class Config:
        from_attributes = True

class DriverWithRoutes(DriverResponse):
    open_routes: List[RouteSummary] = []

class DriverBrief(BaseModel):
    id: int
    driver_code: str
    name: str
    phone: Optional[str] = None

    class Config:
        from_attributes = True

# Vehicle schemas
class VehicleCreate(BaseModel):
    vehicle_code: Optional[str] = None
    type: Optional[str] = None
    status: str = "available"
    last_maintenance: Optional[datetime] = None
    mileage: int = Field(default=0, ge=0)

class VehicleResponse(BaseModel):
    id: int
    vehicle_code: str
    type: Optional[str]
    status: str
    last_maintenance: Optional[datetime]
    mileage: int

    class Config:
        from_attributes = True

class VehicleBrief(BaseModel):
    id: int
    vehicle_code: str
    type: Optional[str] = None

    class Config:
        from_attributes = True

# Delivery schemas
class DeliveryCreate(BaseModel):
    delivery_code: Optional[str] = None
    address: str = Field(min_length=1)
    customer: Optional[str] = None
    packages: int = Field(default=1, ge=0)
    scheduled_time: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notes: Optional[str] = None
    phone_number: Optional[str] = None
    special_instructions: Optional[str] = None
    stop_number: Optional[int] = Field(default=None, ge=1)
    route_id: Optional[int] = None

class DeliveryUpdate(BaseModel):
    address: Optional[str] = None
    customer: Optional[str] = None
    packages: Optional[int] = Field(default=None, ge=0)
    scheduled_time: Optional[str] = None
    status: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notes: Optional[str] = None
    phone_number: Optional[str] = None
    special_instructions: Optional[str] = None
    stop_number: Optional[int] = Field(default=None, ge=1)
    route_id: Optional[int] = None

class StopResponse(BaseModel):
    id: int
    delivery_code: str
    address: str
    customer: Optional[str]
    packages: Optional[int]
    scheduled_time: Optional[str]
    status: str
    latitude: Optional[float]
    longitude: Optional[float]
    notes: Optional[str]
    phone_number: Optional[str]
    special_instructions: Optional[str]
    stop_number: Optional[int]

    class Config:
        from_attributes = True

class RouteOfDelivery(RouteSummary):
    driver: Optional[DriverBrief] = None
    vehicle: Optional[VehicleBrief] = None

class DeliveryResponse(StopResponse):
    route_id: Optional[int]
    route: Optional[RouteOfDelivery] = None
    created_at: datetime

# Route schemas
class RouteCreate(BaseModel):
    name: Optional[str] = None
    status: str = "pending"
    estimated_time: Optional[str] = None
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    delivery_ids: List[int] = []

class RouteUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None
    completed_stops: Optional[int] = Field(default=None, ge=0)
    estimated_time: Optional[str] = None
    actual_time: Optional[str] = None
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None

class RouteResponse(RouteSummary):
    estimated_time: Optional[str]
    actual_time: Optional[str]
    driver_id: Optional[int]
    vehicle_id: Optional[int]
    driver: Optional[DriverBrief] = None
    vehicle: Optional[VehicleBrief] = None
    deliveries: List[StopResponse] = []
    created_at: datetime

class TransferStopsRequest(BaseModel):
    delivery_ids: List[int] = Field(min_length=1)
    from_route_id: int
    to_route_id: int

class RouteStopCount(BaseModel):
    id: int
    total_stops: int

class TransferStopsResponse(BaseModel):
    message: str
    transferred: int
    from_route: RouteStopCount
    to_route: RouteStopCount

# Import schemas
class ImportResponse(BaseModel):
    success: bool = True
    deliveries_imported: int
    routes_created: int
    drivers_assigned: int
    message: str = "Import completed successfully"

# Training and compliance schemas
class TrainingModuleResponse(BaseModel):
    id: int
    module_code: str
    name: str
    category: Optional[str]
    duration: Optional[int]
    status: str

    class Config:
        from_attributes = True

class ComplianceCreate(BaseModel):
    document_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    entity_type: Optional[Literal["driver", "vehicle"]] = None
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    status: str = "valid"
    file_path: Optional[str] = None

class ComplianceResponse(BaseModel):
    id: int
    document_type: str
    entity_id: str
    entity_type: Optional[str]
    issue_date: Optional[datetime]
    expiry_date: Optional[datetime]
    status: str
    file_path: Optional[str]

    class Config:
        from_attributes = True

class MessageResponse(BaseModel):
    message: str

class AccountCreatedResponse(MessageResponse):
    user: UserResponse

# Dashboard schemas
class ManagerDashboard(BaseModel):
    active_vehicles: int
    active_drivers: int
    today_deliveries: int
    today_by_status: Dict[str, int]
    completed_deliveries: int
    active_routes: int
    total_drivers: int
    drivers_with_accounts: int

class DriverDashboard(BaseModel):
    my_routes: int
    my_today_deliveries: int
    my_completed_today: int
    my_total_deliveries: int
