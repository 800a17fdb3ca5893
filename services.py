# services.py - Fleet domain services
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from auth import Principal, hash_password, scope_to_owned_routes
from errors import (
    AccountExists, DuplicateKey, Forbidden, HasActiveWork, MissingEmail, NotFound, ValidationError,
)
from models import (
    ComplianceDocument, Delivery, DeliveryStatus, Driver, OPEN_DELIVERY_STATUSES, OPEN_ROUTE_STATUSES,
    Route, RouteStatus, TrainingModule, User, UserRole, Vehicle,
)
from store import EntityStore

logger = logging.getLogger(__name__)

# Fields a driver may change on their own route / delivery; anything else is dropped
DRIVER_ROUTE_FIELDS = frozenset({"status", "completed_stops", "actual_time"})
DRIVER_DELIVERY_FIELDS = frozenset({"status", "notes"})

# Driver columns that always hold a value
REQUIRED_DRIVER_FIELDS = ("name", "status", "safety_score", "total_deliveries")

ROUTE_TRANSITIONS = {
    RouteStatus.pending.value: {RouteStatus.active.value, RouteStatus.completed.value, RouteStatus.cancelled.value},
    RouteStatus.active.value: {RouteStatus.completed.value, RouteStatus.cancelled.value},
    RouteStatus.completed.value: set(),
    RouteStatus.cancelled.value: set(),
}

DELIVERY_TRANSITIONS = {
    DeliveryStatus.pending.value: {
        DeliveryStatus.in_progress.value, DeliveryStatus.completed.value,
        DeliveryStatus.failed.value, DeliveryStatus.cancelled.value,
    },
    DeliveryStatus.in_progress.value: {
        DeliveryStatus.completed.value, DeliveryStatus.failed.value, DeliveryStatus.cancelled.value,
    },
    DeliveryStatus.completed.value: set(),
    DeliveryStatus.failed.value: set(),
    DeliveryStatus.cancelled.value: set(),
}


@dataclass
class TransferResult:
    transferred: int
    from_route: Route
    to_route: Route


def _check_transition(kind: str, transitions: Dict[str, set], current: str, new: str):
    if new == current:
        return
    if new not in transitions:
        raise ValidationError(f"Unknown {kind} status", status=new)
    # Statuses outside the known set (legacy rows) may move anywhere
    if current in transitions and new not in transitions[current]:
        raise ValidationError(f"Cannot move {kind} from {current} to {new}", status=new)


def _narrow(fields: Dict[str, Any], allowed: Iterable[str], what: str) -> Dict[str, Any]:
    kept = {key: value for key, value in fields.items() if key in allowed}
    dropped = sorted(set(fields) - set(kept))
    if dropped:
        logger.debug("Driver update on %s ignored fields %s", what, dropped)
    return kept


def refresh_stop_count(store: EntityStore, route: Route) -> int:
    """Recompute ``total_stops`` from the deliveries the route actually owns."""
    store.flush()
    route.total_stops = store.count(Delivery, Delivery.route_id == route.id)
    if route.completed_stops and route.completed_stops > route.total_stops:
        route.completed_stops = route.total_stops
    return route.total_stops


def _next_stop_number(store: EntityStore, route_id: int) -> int:
    store.flush()
    current = store.session.scalar(
        select(func.max(Delivery.stop_number)).where(Delivery.route_id == route_id)
    )
    return (current or 0) + 1


class DriverService:
    def __init__(self, store: EntityStore):
        self.store = store

    def list_drivers(self) -> List[Driver]:
        return self.store.find_many(
            Driver, order_by=[Driver.id], options=[selectinload(Driver.routes)]
        )

    def get_driver(self, driver_id: int) -> Driver:
        return self.store.find_by_id(Driver, driver_id)

    def create_driver(self, fields: Dict[str, Any]) -> Driver:
        with self.store.transaction():
            driver = self.store.create(Driver, **fields)
        logger.info("Created driver %s", driver.driver_code)
        return driver

    def update_driver(self, driver_id: int, fields: Dict[str, Any]) -> Driver:
        """Update a driver, keeping the linked login's email in step."""
        cleared = [name for name in REQUIRED_DRIVER_FIELDS if name in fields and fields[name] is None]
        if cleared:
            raise ValidationError("Fields cannot be cleared", fields=cleared)
        with self.store.transaction():
            driver = self.store.find_by_id(Driver, driver_id, for_update=True)
            new_email = fields.get("email", driver.email)
            if driver.has_account and new_email != driver.email:
                if not new_email:
                    raise ValidationError("A driver with an account must keep an email address")
                user = self.store.find_one(
                    User, User.email == driver.email, User.role == UserRole.driver.value
                )
                if user:
                    self.store.update(user, {"email": new_email})
            self.store.update(driver, fields)
        return driver

    def delete_driver(self, driver_id: int) -> None:
        with self.store.transaction():
            driver = self.store.find_by_id(Driver, driver_id, for_update=True)
            code = driver.driver_code
            blocking = self.store.count(
                Route, Route.driver_id == driver.id, Route.status.in_(OPEN_ROUTE_STATUSES)
            )
            if blocking:
                logger.warning("Refusing to delete driver %s: %d open routes", driver.driver_code, blocking)
                raise HasActiveWork(
                    "Cannot delete driver with active routes. Please reassign or complete routes first.",
                    active_routes_count=blocking,
                )

            if driver.has_account and driver.email:
                user = self.store.find_one(
                    User, User.email == driver.email, User.role == UserRole.driver.value
                )
                if user:
                    self.store.delete(user)

            # Finished routes keep their history without the driver
            for route in self.store.find_many(Route, Route.driver_id == driver.id):
                route.driver_id = None
            self.store.delete(driver)
        logger.info("Deleted driver %s", code)

    def create_account(self, driver_id: int, password: str) -> User:
        """Create a driver login and flag the driver as having one, atomically."""
        with self.store.transaction():
            driver = self.store.find_by_id(Driver, driver_id, for_update=True)
            if not driver.email:
                raise MissingEmail()
            if self.store.find_one(User, User.email == driver.email):
                raise AccountExists()

            username = f"{driver.email.split('@')[0]}_{driver.driver_code}"
            if self.store.find_one(User, User.username == username):
                raise DuplicateKey("Username already taken", username=username)
            user = self.store.create(
                User,
                username=username,
                email=driver.email,
                hashed_password=hash_password(password),
                role=UserRole.driver.value,
            )
            self.store.update(driver, {"has_account": True})
        logger.info("Created login %s for driver %s", user.username, driver.driver_code)
        return user


class VehicleService:
    def __init__(self, store: EntityStore):
        self.store = store

    def list_vehicles(self) -> List[Vehicle]:
        return self.store.find_many(Vehicle, order_by=[Vehicle.id])

    def create_vehicle(self, fields: Dict[str, Any]) -> Vehicle:
        with self.store.transaction():
            vehicle = self.store.create(Vehicle, **fields)
        logger.info("Created vehicle %s", vehicle.vehicle_code)
        return vehicle


class RouteService:
    def __init__(self, store: EntityStore):
        self.store = store

    def list_routes(self, principal: Principal) -> List[Route]:
        criteria = []
        scope = scope_to_owned_routes(self.store, principal)
        if scope is not None:
            criteria.append(Route.id.in_(sorted(scope)))
        return self.store.find_many(
            Route,
            *criteria,
            order_by=[Route.created_at.desc(), Route.id.desc()],
            options=[selectinload(Route.driver), selectinload(Route.vehicle), selectinload(Route.deliveries)],
        )

    def get_route(self, principal: Principal, route_id: int) -> Route:
        route = self.store.find_by_id(
            Route, route_id,
            options=[selectinload(Route.driver), selectinload(Route.vehicle), selectinload(Route.deliveries)],
        )
        if principal.is_driver and route.driver_id != principal.driver_id:
            raise Forbidden("Cannot access routes not assigned to you")
        return route

    def create_route(self, fields: Dict[str, Any], delivery_ids: Optional[List[int]] = None) -> Route:
        fields = dict(fields)
        fields.pop("total_stops", None)
        with self.store.transaction():
            self._check_assignees(fields)
            route = self.store.create(Route, **fields)
            if delivery_ids:
                deliveries = self.store.find_many(
                    Delivery, Delivery.id.in_(delivery_ids), order_by=[Delivery.stop_number, Delivery.id],
                    for_update=True,
                )
                if len(deliveries) != len(set(delivery_ids)):
                    found = {d.id for d in deliveries}
                    raise NotFound("Delivery not found", ids=sorted(set(delivery_ids) - found))
                previous = {d.route_id for d in deliveries if d.route_id is not None}
                for number, delivery in enumerate(deliveries, start=1):
                    delivery.route_id = route.id
                    delivery.stop_number = number
                for old_id in previous:
                    refresh_stop_count(self.store, self.store.find_by_id(Route, old_id))
            refresh_stop_count(self.store, route)
        logger.info("Created route %s with %d stops", route.route_code, route.total_stops)
        return route

    def update_route(self, principal: Principal, route_id: int, fields: Dict[str, Any]) -> Route:
        """Apply ``fields`` to a route.

        Drivers may only touch routes assigned to them, and only their
        status, completed stops and actual time; other submitted fields are
        ignored. ``total_stops`` always follows route membership and is
        never written directly.
        """
        fields = dict(fields)
        fields.pop("total_stops", None)
        with self.store.transaction():
            route = self.store.find_by_id(Route, route_id, for_update=True)
            if principal.is_driver:
                if principal.driver_id is None or route.driver_id != principal.driver_id:
                    raise Forbidden("Cannot update routes not assigned to you")
                fields = _narrow(fields, DRIVER_ROUTE_FIELDS, route.route_code)
            else:
                self._check_assignees(fields)

            if "status" in fields and fields["status"] is not None:
                _check_transition("route", ROUTE_TRANSITIONS, route.status, fields["status"])
            elif "status" in fields:
                fields.pop("status")
            if fields.get("completed_stops") is not None:
                completed = fields["completed_stops"]
                if completed < (route.completed_stops or 0):
                    raise ValidationError("Completed stops cannot decrease", completed_stops=completed)
                if completed > route.total_stops:
                    raise ValidationError(
                        "Completed stops cannot exceed total stops",
                        completed_stops=completed, total_stops=route.total_stops,
                    )
            elif "completed_stops" in fields:
                fields.pop("completed_stops")
            self.store.update(route, fields)
        return route

    def delete_route(self, route_id: int) -> None:
        with self.store.transaction():
            route = self.store.find_by_id(Route, route_id, for_update=True)
            code = route.route_code
            blocking = self.store.count(
                Delivery, Delivery.route_id == route.id, Delivery.status.in_(OPEN_DELIVERY_STATUSES)
            )
            if blocking:
                logger.warning("Refusing to delete route %s: %d open deliveries", route.route_code, blocking)
                raise HasActiveWork(
                    "Cannot delete route with pending deliveries. Please transfer or complete them first.",
                    active_deliveries_count=blocking,
                )
            for delivery in self.store.find_many(Delivery, Delivery.route_id == route.id):
                delivery.route_id = None
            self.store.delete(route)
        logger.info("Deleted route %s", code)

    def transfer_stops(self, delivery_ids: List[int], from_route_id: int, to_route_id: int) -> TransferResult:
        """Move deliveries owned by one route onto another.

        Ids that do not currently belong to ``from_route_id`` are skipped;
        ``transferred`` is the number actually moved. Moved stops are
        numbered after the destination's last stop, in their original order.
        """
        if not delivery_ids:
            raise ValidationError("No deliveries given to transfer")
        if from_route_id == to_route_id:
            raise ValidationError("Source and destination routes must differ")

        with self.store.transaction():
            # Lock in id order so two opposite transfers cannot deadlock
            locked = {
                route.id: route
                for route in self.store.find_many(
                    Route, Route.id.in_([from_route_id, to_route_id]), order_by=[Route.id], for_update=True,
                )
            }
            if from_route_id not in locked or to_route_id not in locked:
                raise NotFound("One or both routes not found")
            from_route, to_route = locked[from_route_id], locked[to_route_id]

            moving = self.store.find_many(
                Delivery,
                Delivery.id.in_(delivery_ids),
                Delivery.route_id == from_route.id,
                order_by=[Delivery.stop_number, Delivery.id],
                for_update=True,
            )
            next_stop = _next_stop_number(self.store, to_route.id)
            for offset, delivery in enumerate(moving):
                delivery.route_id = to_route.id
                delivery.stop_number = next_stop + offset

            refresh_stop_count(self.store, from_route)
            refresh_stop_count(self.store, to_route)

        logger.info(
            "Transferred %d of %d stops from %s to %s",
            len(moving), len(delivery_ids), from_route.route_code, to_route.route_code,
        )
        return TransferResult(transferred=len(moving), from_route=from_route, to_route=to_route)

    def _check_assignees(self, fields: Dict[str, Any]):
        if fields.get("driver_id") is not None:
            self.store.find_by_id(Driver, fields["driver_id"])
        if fields.get("vehicle_id") is not None:
            self.store.find_by_id(Vehicle, fields["vehicle_id"])


class DeliveryService:
    def __init__(self, store: EntityStore):
        self.store = store

    def list_deliveries(self, principal: Principal) -> List[Delivery]:
        criteria = []
        scope = scope_to_owned_routes(self.store, principal)
        if scope is not None:
            criteria.append(Delivery.route_id.in_(sorted(scope)))
        return self.store.find_many(
            Delivery,
            *criteria,
            order_by=[Delivery.stop_number, Delivery.id],
            options=[selectinload(Delivery.route).selectinload(Route.driver),
                     selectinload(Delivery.route).selectinload(Route.vehicle)],
        )

    def get_delivery(self, principal: Principal, delivery_id: int) -> Delivery:
        delivery = self.store.find_by_id(
            Delivery, delivery_id,
            options=[selectinload(Delivery.route).selectinload(Route.driver),
                     selectinload(Delivery.route).selectinload(Route.vehicle)],
        )
        if principal.is_driver and not self._owned_by(principal, delivery):
            raise Forbidden("Cannot access this delivery")
        return delivery

    def create_delivery(self, fields: Dict[str, Any]) -> Delivery:
        fields = dict(fields)
        with self.store.transaction():
            route = None
            if fields.get("route_id") is not None:
                route = self.store.find_by_id(Route, fields["route_id"], for_update=True)
                if fields.get("stop_number") is None:
                    fields["stop_number"] = _next_stop_number(self.store, route.id)
            delivery = self.store.create(Delivery, **fields)
            if route is not None:
                refresh_stop_count(self.store, route)
        logger.info("Created delivery %s", delivery.delivery_code)
        return delivery

    def update_delivery(self, principal: Principal, delivery_id: int, fields: Dict[str, Any]) -> Delivery:
        """Apply ``fields`` to a delivery.

        Drivers may only update status and notes of deliveries on their own
        routes. A manager moving a delivery to another route updates both
        routes' stop counts in the same transaction.
        """
        fields = dict(fields)
        with self.store.transaction():
            delivery = self.store.find_by_id(
                Delivery, delivery_id, for_update=True, options=[selectinload(Delivery.route)]
            )
            if principal.is_driver:
                if not self._owned_by(principal, delivery):
                    raise Forbidden("Cannot update deliveries not assigned to you")
                fields = _narrow(fields, DRIVER_DELIVERY_FIELDS, delivery.delivery_code)

            if "status" in fields and fields["status"] is not None:
                _check_transition("delivery", DELIVERY_TRANSITIONS, delivery.status, fields["status"])
            elif "status" in fields:
                fields.pop("status")

            affected = []
            if "route_id" in fields and fields["route_id"] != delivery.route_id:
                target_id = fields["route_id"]
                route_ids = [i for i in (delivery.route_id, target_id) if i is not None]
                # Lock in id order, as transfer_stops does
                affected = self.store.find_many(
                    Route, Route.id.in_(route_ids), order_by=[Route.id], for_update=True,
                )
                if target_id is not None:
                    if target_id not in {route.id for route in affected}:
                        raise NotFound("Route not found", id=target_id)
                    if fields.get("stop_number") is None:
                        fields["stop_number"] = _next_stop_number(self.store, target_id)

            self.store.update(delivery, fields)
            for route in affected:
                refresh_stop_count(self.store, route)
        return delivery

    @staticmethod
    def _owned_by(principal: Principal, delivery: Delivery) -> bool:
        return (
            principal.driver_id is not None
            and delivery.route is not None
            and delivery.route.driver_id == principal.driver_id
        )


class RecordService:
    """Training modules and compliance documents: plain records."""

    def __init__(self, store: EntityStore):
        self.store = store

    def list_training_modules(self) -> List[TrainingModule]:
        return self.store.find_many(TrainingModule, order_by=[TrainingModule.id])

    def list_compliance_documents(self) -> List[ComplianceDocument]:
        return self.store.find_many(ComplianceDocument, order_by=[ComplianceDocument.id])

    def create_compliance_document(self, fields: Dict[str, Any]) -> ComplianceDocument:
        with self.store.transaction():
            return self.store.create(ComplianceDocument, **fields)
