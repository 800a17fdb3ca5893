import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import Principal, hash_password, issue_token, principal_for, register_user
from database import Base, create_db_engine, get_db
from main import app
from models import Delivery, Driver, Route, User, Vehicle
from services import DriverService
from store import EntityStore


class Factory:
    """Committed rows for test setup."""

    def __init__(self, db):
        self.db = db
        self.store = EntityStore(db)

    def _save(self, model, **fields):
        obj = self.store.create(model, **fields)
        self.db.commit()
        return obj

    def driver(self, **fields):
        fields.setdefault("name", "Test Driver")
        return self._save(Driver, **fields)

    def vehicle(self, **fields):
        return self._save(Vehicle, **fields)

    def route(self, stops=0, **fields):
        fields.setdefault("name", "Test Route")
        route = self.store.create(Route, **fields)
        for number in range(1, stops + 1):
            self.store.create(
                Delivery, address=f"{number} Main St", customer=f"Customer {number}",
                stop_number=number, route_id=route.id,
            )
        route.total_stops = stops
        self.db.commit()
        return route

    def delivery(self, **fields):
        fields.setdefault("address", "1 Side St")
        return self._save(Delivery, **fields)

    def user(self, username, email, password="secret", role="manager"):
        return self._save(User, username=username, email=email,
                          hashed_password=hash_password(password), role=role)

    def driver_login(self, driver, password="driverpass") -> Principal:
        """Give ``driver`` a real login and return its principal."""
        if not driver.email:
            self.store.update(driver, {"email": f"driver{driver.id}@fleetcommand.com"})
            self.db.commit()
        user = DriverService(self.store).create_account(driver.id, password)
        return principal_for(user, driver)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def store(db) -> EntityStore:
    return EntityStore(db)


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)


@pytest.fixture
def manager(store) -> Principal:
    user = register_user(store, "boss", "boss@fleetcommand.com", "secret")
    return principal_for(user)


def driver_principal(driver: Driver) -> Principal:
    return Principal(user_id=100 + driver.id, role="driver", email=driver.email,
                     driver_id=driver.id, driver_name=driver.name)


def bearer(principal: Principal) -> dict:
    return {"Authorization": f"Bearer {issue_token(principal)}"}


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
