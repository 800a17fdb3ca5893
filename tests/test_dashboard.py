from datetime import datetime, timedelta, timezone

from conftest import driver_principal
from dashboard import dashboard_stats, start_of_today
from models import utcnow


def test_driver_dashboard_counts_only_own_routes(store, factory):
    driver = factory.driver()
    mine = factory.route(stops=2, driver_id=driver.id, status="active")
    factory.route(stops=5, status="active")
    factory.route(stops=4, driver_id=factory.driver().id)
    mine.deliveries[0].status = "completed"
    store.session.commit()

    stats = dashboard_stats(store, driver_principal(driver))

    assert stats == {
        "my_routes": 1,
        "my_today_deliveries": 1,
        "my_completed_today": 1,
        "my_total_deliveries": 2,
    }


def test_driver_without_routes_sees_zeroes(store, factory):
    factory.route(stops=3)
    stats = dashboard_stats(store, driver_principal(factory.driver()))
    assert set(stats.values()) == {0}


def test_manager_dashboard(store, factory, manager):
    factory.driver(status="active", has_account=True)
    factory.driver(status="off_duty")
    factory.vehicle(status="active")
    factory.vehicle(status="maintenance")
    factory.route(stops=2, status="active")
    factory.delivery(status="completed")
    factory.delivery(status="in_progress")
    factory.delivery(status="pending", created_at=utcnow() - timedelta(days=2))

    stats = dashboard_stats(store, manager)

    assert stats["active_vehicles"] == 1
    assert stats["active_drivers"] == 1
    assert stats["total_drivers"] == 2
    assert stats["drivers_with_accounts"] == 1
    assert stats["active_routes"] == 1
    assert stats["completed_deliveries"] == 1
    assert stats["today_by_status"] == {"pending": 2, "in_progress": 1, "completed": 1}
    assert stats["today_deliveries"] == 4


def test_start_of_today_is_local_midnight():
    now = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)
    since = start_of_today(now)

    local_since = since.replace(tzinfo=timezone.utc).astimezone()
    assert (local_since.hour, local_since.minute, local_since.second) == (0, 0, 0)
    assert since <= now.replace(tzinfo=None)
    assert now.replace(tzinfo=None) - since < timedelta(days=1)
