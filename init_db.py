# init_db.py
import sys
import os
import logging
from dotenv import load_dotenv
from database import Base, SessionLocal, engine
from auth import hash_password
from models import Driver, TrainingModule, User, UserRole, Vehicle
from store import EntityStore

load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_DRIVERS = [
    {"driver_code": "DRV-1024", "name": "Maria Rodriguez", "email": "maria@fleetcommand.com",
     "phone": "555-0101", "license_number": "CDL12345", "safety_score": 4.9, "status": "active"},
    {"driver_code": "DRV-2103", "name": "Kevin Johnson", "email": "kevin@fleetcommand.com",
     "phone": "555-0102", "license_number": "CDL23456", "safety_score": 4.8, "status": "active"},
    {"driver_code": "DRV-1027", "name": "Ashley Williams", "email": "ashley@fleetcommand.com",
     "phone": "555-0103", "license_number": "CDL34567", "safety_score": 4.5, "status": "active"},
    {"driver_code": "DRV-1019", "name": "Sarah Chen", "email": "sarah@fleetcommand.com",
     "phone": "555-0104", "license_number": "CDL45678", "safety_score": 4.9, "status": "active"},
]

SAMPLE_VEHICLES = [
    {"vehicle_code": "VAN-1024", "type": "Van", "status": "active", "mileage": 45000},
    {"vehicle_code": "TRUCK-2103", "type": "Truck", "status": "active", "mileage": 67000},
    {"vehicle_code": "VAN-1027", "type": "Van", "status": "active", "mileage": 32000},
    {"vehicle_code": "VAN-1019", "type": "Van", "status": "active", "mileage": 28000},
]

SAMPLE_TRAINING = [
    {"module_code": "TRN-SAFETY", "name": "Defensive Driving", "category": "safety", "duration": 45},
    {"module_code": "TRN-HANDLING", "name": "Package Handling", "category": "operations", "duration": 30},
]


def seed_sample_data(store: EntityStore) -> bool:
    """Insert sample drivers, vehicles and an admin login into an empty database."""
    if store.count(Driver) > 0:
        return False

    with store.transaction():
        for fields in SAMPLE_DRIVERS:
            store.create(Driver, **fields)
        for fields in SAMPLE_VEHICLES:
            store.create(Vehicle, **fields)
        for fields in SAMPLE_TRAINING:
            store.create(TrainingModule, **fields)
        if store.find_one(User, User.username == "admin") is None:
            store.create(
                User,
                username="admin",
                email="admin@fleetcommand.com",
                hashed_password=hash_password(os.getenv("ADMIN_PASSWORD", "admin123")),
                role=UserRole.manager.value,
            )
    logger.info("Sample data created; default manager login: admin")
    return True


def init_database():
    try:
        # Create all tables
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully!")

        if os.getenv("SEED_SAMPLE_DATA", "true").lower() in ("1", "true", "yes"):
            db = SessionLocal()
            try:
                seed_sample_data(EntityStore(db))
            finally:
                db.close()

    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        sys.exit(1)

if __name__ == "__main__":
    init_database()
