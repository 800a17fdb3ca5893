import pytest

from errors import DuplicateKey, NotFound, ValidationError
from models import Delivery, Driver, Route
from services import DriverService


def test_generated_codes_are_prefixed_and_unique(store, db):
    drivers = [store.create(Driver, name=f"Driver {i}") for i in range(50)]
    routes = [store.create(Route, name=f"Route {i}") for i in range(5)]
    db.commit()

    codes = {driver.driver_code for driver in drivers}
    assert len(codes) == 50
    assert all(code.startswith("DRV-") for code in codes)
    assert all(route.route_code.startswith("RT-") for route in routes)


def test_caller_supplied_code_is_kept(store):
    delivery = store.create(Delivery, delivery_code="DEL-CUSTOM", address="1 Main St")
    assert delivery.delivery_code == "DEL-CUSTOM"


def test_duplicate_code_is_rejected(store):
    DriverService(store).create_driver({"driver_code": "DRV-1", "name": "First"})

    with pytest.raises(DuplicateKey):
        DriverService(store).create_driver({"driver_code": "DRV-1", "name": "Second"})

    assert store.count(Driver) == 1


def test_find_by_id_missing_raises_not_found(store):
    with pytest.raises(NotFound) as excinfo:
        store.find_by_id(Route, 404)
    assert excinfo.value.status_code == 404
    assert excinfo.value.to_dict()["id"] == 404


def test_unknown_fields_are_rejected(store):
    with pytest.raises(ValidationError) as excinfo:
        store.create(Driver, name="X", nickname="Y")
    assert excinfo.value.extra["fields"] == ["nickname"]


def test_count_and_find_many_with_predicates(store, factory):
    factory.driver(name="A", status="active")
    factory.driver(name="B", status="off_duty")
    factory.driver(name="C", status="active")

    assert store.count(Driver) == 3
    assert store.count(Driver, Driver.status == "active") == 2
    names = [d.name for d in store.find_many(Driver, Driver.status == "active", order_by=[Driver.name.desc()])]
    assert names == ["C", "A"]
    assert store.find_one(Driver, Driver.name == "Z") is None


def test_transaction_rolls_back_every_write(store):
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.create(Driver, name="Ghost")
            raise RuntimeError("boom")

    assert store.count(Driver) == 0
