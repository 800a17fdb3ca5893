# dashboard.py - Dashboard statistics
from datetime import datetime, timezone
from typing import Dict, Optional

from auth import Principal, scope_to_owned_routes
from models import (
    Delivery, DeliveryStatus, Driver, DriverStatus, OPEN_DELIVERY_STATUSES, OPEN_ROUTE_STATUSES,
    Route, RouteStatus, Vehicle,
)
from store import EntityStore

TODAY_STATUSES = (
    DeliveryStatus.pending.value,
    DeliveryStatus.in_progress.value,
    DeliveryStatus.completed.value,
)


def start_of_today(now: Optional[datetime] = None) -> datetime:
    """Local midnight of ``now`` as a naive UTC timestamp, comparable to stored times."""
    local_now = (now or datetime.now(timezone.utc)).astimezone()
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


def dashboard_stats(store: EntityStore, principal: Principal, now: Optional[datetime] = None) -> Dict:
    since = start_of_today(now)
    if principal.is_driver:
        return _driver_stats(store, principal, since)
    return _manager_stats(store, since)


def _manager_stats(store: EntityStore, since: datetime) -> Dict:
    today_by_status = {
        status: store.count(Delivery, Delivery.status == status, Delivery.created_at >= since)
        for status in TODAY_STATUSES
    }
    return {
        "active_vehicles": store.count(Vehicle, Vehicle.status == "active"),
        "active_drivers": store.count(Driver, Driver.status == DriverStatus.active.value),
        "today_deliveries": sum(today_by_status.values()),
        "today_by_status": today_by_status,
        "completed_deliveries": store.count(Delivery, Delivery.status == DeliveryStatus.completed.value),
        "active_routes": store.count(Route, Route.status == RouteStatus.active.value),
        "total_drivers": store.count(Driver),
        "drivers_with_accounts": store.count(Driver, Driver.has_account.is_(True)),
    }


def _driver_stats(store: EntityStore, principal: Principal, since: datetime) -> Dict:
    route_ids = sorted(scope_to_owned_routes(store, principal))
    mine = Delivery.route_id.in_(route_ids)
    return {
        "my_routes": store.count(
            Route, Route.id.in_(route_ids), Route.status.in_(OPEN_ROUTE_STATUSES)
        ),
        "my_today_deliveries": store.count(
            Delivery, mine, Delivery.status.in_(OPEN_DELIVERY_STATUSES), Delivery.created_at >= since
        ),
        "my_completed_today": store.count(
            Delivery, mine, Delivery.status == DeliveryStatus.completed.value, Delivery.updated_at >= since
        ),
        "my_total_deliveries": store.count(Delivery, mine),
    }
