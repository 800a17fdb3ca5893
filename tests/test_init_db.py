from auth import authenticate
from init_db import seed_sample_data
from models import Driver, TrainingModule, User, Vehicle


def test_seed_fills_empty_database_once(store):
    assert seed_sample_data(store) is True

    assert store.count(Driver) == 4
    assert store.count(Vehicle) == 4
    assert store.count(TrainingModule) == 2
    assert store.count(User) == 1
    assert authenticate(store, "admin", "admin123").is_manager

    assert seed_sample_data(store) is False
    assert store.count(Driver) == 4
