import pytest

from errors import AccountExists, DuplicateKey, HasActiveWork, MissingEmail, NotFound, ValidationError
from models import Driver, Route, User
from services import DriverService


def test_delete_driver_blocked_by_pending_route(store, factory):
    driver = factory.driver()
    route = factory.route(driver_id=driver.id, status="pending", name="Keep me")

    with pytest.raises(HasActiveWork) as excinfo:
        DriverService(store).delete_driver(driver.id)

    assert excinfo.value.extra["active_routes_count"] == 1
    store.session.refresh(route)
    assert route.driver_id == driver.id
    assert route.status == "pending"
    assert route.name == "Keep me"
    assert store.count(Driver) == 1


def test_delete_driver_removes_login_and_detaches_finished_routes(store, factory):
    driver = factory.driver(email="gone@fleetcommand.com")
    finished = factory.route(driver_id=driver.id, status="completed")
    service = DriverService(store)
    service.create_account(driver.id, "secret123")

    service.delete_driver(driver.id)

    assert store.count(Driver) == 0
    assert store.count(User) == 0
    store.session.refresh(finished)
    assert finished.driver_id is None
    assert store.count(Route) == 1


def test_delete_missing_driver(store):
    with pytest.raises(NotFound):
        DriverService(store).delete_driver(42)


def test_create_account_twice(store, factory):
    driver = factory.driver(email="maria@fleetcommand.com", driver_code="DRV-1024")
    service = DriverService(store)

    user = service.create_account(driver.id, "secret123")
    assert user.role == "driver"
    assert user.username == "maria_DRV-1024"
    store.session.refresh(driver)
    assert driver.has_account is True

    with pytest.raises(AccountExists):
        service.create_account(driver.id, "another")

    store.session.refresh(driver)
    assert driver.has_account is True
    assert store.count(User) == 1


def test_create_account_requires_email(store, factory):
    driver = factory.driver()
    with pytest.raises(MissingEmail):
        DriverService(store).create_account(driver.id, "secret123")
    store.session.refresh(driver)
    assert driver.has_account is False
    assert store.count(User) == 0


def test_email_change_follows_into_login(store, factory):
    driver = factory.driver(email="old@fleetcommand.com")
    service = DriverService(store)
    service.create_account(driver.id, "secret123")

    service.update_driver(driver.id, {"email": "new@fleetcommand.com", "phone": "555-0199"})

    user = store.find_one(User, User.role == "driver")
    assert user.email == "new@fleetcommand.com"
    store.session.refresh(driver)
    assert driver.email == "new@fleetcommand.com"
    assert driver.phone == "555-0199"


def test_email_change_without_account_leaves_logins_alone(store, factory):
    driver = factory.driver(email="solo@fleetcommand.com")
    DriverService(store).update_driver(driver.id, {"email": "solo2@fleetcommand.com"})
    assert store.count(User) == 0


def test_driver_with_account_must_keep_email(store, factory):
    driver = factory.driver(email="keep@fleetcommand.com")
    service = DriverService(store)
    service.create_account(driver.id, "secret123")

    with pytest.raises(ValidationError):
        service.update_driver(driver.id, {"email": None})

    store.session.refresh(driver)
    assert driver.email == "keep@fleetcommand.com"


def test_list_drivers_includes_open_routes(store, factory):
    driver = factory.driver()
    open_route = factory.route(driver_id=driver.id, status="active")
    factory.route(driver_id=driver.id, status="completed")

    [listed] = DriverService(store).list_drivers()

    assert [route.id for route in listed.open_routes] == [open_route.id]
    assert len(listed.routes) == 2


def test_required_driver_fields_cannot_be_cleared(store, factory):
    driver = factory.driver(status="active")
    service = DriverService(store)

    for field in ("status", "safety_score", "total_deliveries", "name"):
        with pytest.raises(ValidationError) as excinfo:
            service.update_driver(driver.id, {field: None})
        assert excinfo.value.to_dict()["fields"] == [field]

    store.session.refresh(driver)
    assert driver.status == "active"
    assert driver.safety_score == 5.0
    assert driver.total_deliveries == 0


def test_driver_emails_are_unique(store, factory):
    factory.driver(name="Other", email="shared@fleetcommand.com")
    mine = factory.driver(name="Mine", email="mine@fleetcommand.com")
    service = DriverService(store)

    with pytest.raises(DuplicateKey):
        service.create_driver({"name": "Copy", "email": "shared@fleetcommand.com"})
    with pytest.raises(DuplicateKey):
        service.update_driver(mine.id, {"email": "shared@fleetcommand.com"})

    store.session.refresh(mine)
    assert mine.email == "mine@fleetcommand.com"
    assert store.count(Driver) == 2


def test_drivers_without_email_may_coexist(store, factory):
    factory.driver(name="First")
    factory.driver(name="Second")
    assert store.count(Driver, Driver.email.is_(None)) == 2
