# main.py - Main FastAPI application
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Union
from datetime import datetime, timezone
import logging
import os
from dotenv import load_dotenv

# Import our modules
from database import init_engine, dispose_engine
from errors import FleetError
from auth import (
    Principal, authenticate, authenticate_driver, get_current_principal, get_store, issue_token,
    principal_for, register_user, require_role,
)
from dashboard import dashboard_stats
from importer import DeliveryImporter, read_workbook
from models import UserRole
from schemas import (
    AccountCreatedResponse, ComplianceCreate, ComplianceResponse, CreateAccountRequest,
    DeliveryCreate, DeliveryResponse, DeliveryUpdate, DriverCreate, DriverDashboard, DriverLoginRequest,
    DriverProfile, DriverResponse, DriverTokenResponse, DriverUpdate, DriverWithRoutes, ImportResponse,
    LoginRequest, ManagerDashboard, MessageResponse, PrincipalResponse, RegisterRequest, RouteCreate,
    RouteResponse, RouteStopCount, RouteUpdate, TokenResponse, TrainingModuleResponse,
    TransferStopsRequest, TransferStopsResponse, UserResponse, VehicleCreate, VehicleResponse,
)
from services import DeliveryService, DriverService, RecordService, RouteService, VehicleService
from store import EntityStore

load_dotenv()

logger = logging.getLogger(__name__)

API_PREFIX = os.getenv("API_PREFIX", "/api")

manager_only = require_role(UserRole.manager.value)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_engine()
    yield
    dispose_engine()


app = FastAPI(
    title="FleetCommand API",
    description="Fleet delivery management backend: drivers, vehicles, routes and deliveries",
    version="2.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FleetError)
async def fleet_error_handler(request: Request, exc: FleetError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _principal_response(principal: Principal) -> PrincipalResponse:
    return PrincipalResponse(
        id=principal.user_id,
        role=principal.role,
        username=principal.username,
        email=principal.email,
        driver_id=principal.driver_id,
        driver_name=principal.driver_name,
    )


# Health check endpoint
@app.get("/health")
def health_check():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}


@app.get("/")
def root():
    return {"service": app.title, "status": "running", "api_prefix": API_PREFIX, "docs": "/docs"}


# Authentication endpoints
@app.post(f"{API_PREFIX}/auth/register", response_model=TokenResponse)
def register(payload: RegisterRequest, store: EntityStore = Depends(get_store)):
    user = register_user(store, payload.username, payload.email, payload.password, payload.role)
    principal = principal_for(user)
    return TokenResponse(token=issue_token(principal), user=_principal_response(principal))


@app.post(f"{API_PREFIX}/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, store: EntityStore = Depends(get_store)):
    principal = authenticate(store, payload.username, payload.password)
    return TokenResponse(token=issue_token(principal), user=_principal_response(principal))


@app.post(f"{API_PREFIX}/auth/driver-login", response_model=DriverTokenResponse)
def driver_login(payload: DriverLoginRequest, store: EntityStore = Depends(get_store)):
    principal, driver = authenticate_driver(store, payload.email, payload.password)
    return DriverTokenResponse(
        token=issue_token(principal),
        user=_principal_response(principal),
        driver=DriverProfile.model_validate(driver),
    )


# Driver endpoints
@app.get(f"{API_PREFIX}/drivers", response_model=List[DriverWithRoutes])
def list_drivers(principal: Principal = Depends(get_current_principal), store: EntityStore = Depends(get_store)):
    return DriverService(store).list_drivers()


@app.post(f"{API_PREFIX}/drivers", response_model=DriverResponse, status_code=201)
def create_driver(payload: DriverCreate, principal: Principal = Depends(manager_only),
                  store: EntityStore = Depends(get_store)):
    return DriverService(store).create_driver(payload.model_dump(exclude_none=True))


@app.put(f"{API_PREFIX}/drivers/{{driver_id}}", response_model=DriverResponse)
def update_driver(driver_id: int, payload: DriverUpdate, principal: Principal = Depends(manager_only),
                  store: EntityStore = Depends(get_store)):
    return DriverService(store).update_driver(driver_id, payload.model_dump(exclude_unset=True))


@app.delete(f"{API_PREFIX}/drivers/{{driver_id}}", response_model=MessageResponse)
def delete_driver(driver_id: int, principal: Principal = Depends(manager_only),
                  store: EntityStore = Depends(get_store)):
    DriverService(store).delete_driver(driver_id)
    return MessageResponse(message="Driver deleted successfully")


@app.post(f"{API_PREFIX}/drivers/{{driver_id}}/create-account", response_model=AccountCreatedResponse,
          status_code=201)
def create_driver_account(driver_id: int, payload: CreateAccountRequest,
                          principal: Principal = Depends(manager_only), store: EntityStore = Depends(get_store)):
    user = DriverService(store).create_account(driver_id, payload.password)
    return AccountCreatedResponse(
        message="Driver account created successfully", user=UserResponse.model_validate(user)
    )


# Vehicle endpoints
@app.get(f"{API_PREFIX}/vehicles", response_model=List[VehicleResponse])
def list_vehicles(principal: Principal = Depends(get_current_principal), store: EntityStore = Depends(get_store)):
    return VehicleService(store).list_vehicles()


@app.post(f"{API_PREFIX}/vehicles", response_model=VehicleResponse, status_code=201)
def create_vehicle(payload: VehicleCreate, principal: Principal = Depends(manager_only),
                   store: EntityStore = Depends(get_store)):
    return VehicleService(store).create_vehicle(payload.model_dump(exclude_none=True))


# Route endpoints
@app.get(f"{API_PREFIX}/routes", response_model=List[RouteResponse])
def list_routes(principal: Principal = Depends(get_current_principal), store: EntityStore = Depends(get_store)):
    return RouteService(store).list_routes(principal)


@app.post(f"{API_PREFIX}/routes", response_model=RouteResponse, status_code=201)
def create_route(payload: RouteCreate, principal: Principal = Depends(manager_only),
                 store: EntityStore = Depends(get_store)):
    fields = payload.model_dump(exclude_none=True, exclude={"delivery_ids"})
    return RouteService(store).create_route(fields, payload.delivery_ids)


# Declared before /routes/{route_id} so the literal path wins
@app.post(f"{API_PREFIX}/routes/transfer-stops", response_model=TransferStopsResponse)
def transfer_stops(payload: TransferStopsRequest, principal: Principal = Depends(manager_only),
                   store: EntityStore = Depends(get_store)):
    result = RouteService(store).transfer_stops(payload.delivery_ids, payload.from_route_id, payload.to_route_id)
    return TransferStopsResponse(
        message=f"Transferred {result.transferred} stops successfully",
        transferred=result.transferred,
        from_route=RouteStopCount(id=result.from_route.id, total_stops=result.from_route.total_stops),
        to_route=RouteStopCount(id=result.to_route.id, total_stops=result.to_route.total_stops),
    )


@app.get(f"{API_PREFIX}/routes/{{route_id}}", response_model=RouteResponse)
def get_route(route_id: int, principal: Principal = Depends(get_current_principal),
              store: EntityStore = Depends(get_store)):
    return RouteService(store).get_route(principal, route_id)


@app.put(f"{API_PREFIX}/routes/{{route_id}}", response_model=RouteResponse)
def update_route(route_id: int, payload: RouteUpdate, principal: Principal = Depends(get_current_principal),
                 store: EntityStore = Depends(get_store)):
    return RouteService(store).update_route(principal, route_id, payload.model_dump(exclude_unset=True))


@app.delete(f"{API_PREFIX}/routes/{{route_id}}", response_model=MessageResponse)
def delete_route(route_id: int, principal: Principal = Depends(manager_only),
                 store: EntityStore = Depends(get_store)):
    RouteService(store).delete_route(route_id)
    return MessageResponse(message="Route deleted successfully")


# Delivery endpoints
@app.get(f"{API_PREFIX}/deliveries", response_model=List[DeliveryResponse])
def list_deliveries(principal: Principal = Depends(get_current_principal),
                    store: EntityStore = Depends(get_store)):
    return DeliveryService(store).list_deliveries(principal)


@app.get(f"{API_PREFIX}/deliveries/{{delivery_id}}", response_model=DeliveryResponse)
def get_delivery(delivery_id: int, principal: Principal = Depends(get_current_principal),
                 store: EntityStore = Depends(get_store)):
    return DeliveryService(store).get_delivery(principal, delivery_id)


@app.post(f"{API_PREFIX}/deliveries", response_model=DeliveryResponse, status_code=201)
def create_delivery(payload: DeliveryCreate, principal: Principal = Depends(manager_only),
                    store: EntityStore = Depends(get_store)):
    return DeliveryService(store).create_delivery(payload.model_dump(exclude_none=True))


@app.put(f"{API_PREFIX}/deliveries/{{delivery_id}}", response_model=DeliveryResponse)
def update_delivery(delivery_id: int, payload: DeliveryUpdate,
                    principal: Principal = Depends(get_current_principal), store: EntityStore = Depends(get_store)):
    return DeliveryService(store).update_delivery(principal, delivery_id, payload.model_dump(exclude_unset=True))


# Spreadsheet import
@app.post(f"{API_PREFIX}/import/excel", response_model=ImportResponse)
def import_excel(
    file: UploadFile = File(...),
    optimize_routes: bool = Form(False, alias="optimizeRoutes"),
    assign_drivers: bool = Form(False, alias="assignDrivers"),
    principal: Principal = Depends(manager_only),
    store: EntityStore = Depends(get_store),
):
    rows = read_workbook(file.file.read())
    result = DeliveryImporter(store).import_deliveries(
        rows, optimize_routes=optimize_routes, assign_drivers=assign_drivers
    )
    return ImportResponse(
        deliveries_imported=result.deliveries_imported,
        routes_created=result.routes_created,
        drivers_assigned=result.drivers_assigned,
    )


# Analytics
@app.get(f"{API_PREFIX}/analytics/dashboard", response_model=Union[DriverDashboard, ManagerDashboard])
def get_dashboard(principal: Principal = Depends(get_current_principal), store: EntityStore = Depends(get_store)):
    return dashboard_stats(store, principal)


# Training and compliance
@app.get(f"{API_PREFIX}/training/modules", response_model=List[TrainingModuleResponse])
def list_training_modules(principal: Principal = Depends(get_current_principal),
                          store: EntityStore = Depends(get_store)):
    return RecordService(store).list_training_modules()


@app.get(f"{API_PREFIX}/compliance", response_model=List[ComplianceResponse])
def list_compliance(principal: Principal = Depends(manager_only), store: EntityStore = Depends(get_store)):
    return RecordService(store).list_compliance_documents()


@app.post(f"{API_PREFIX}/compliance", response_model=ComplianceResponse, status_code=201)
def create_compliance(payload: ComplianceCreate, principal: Principal = Depends(manager_only),
                      store: EntityStore = Depends(get_store)):
    return RecordService(store).create_compliance_document(payload.model_dump(exclude_none=True))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
