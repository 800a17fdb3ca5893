# auth.py - Authentication, tokens and role checks
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Set

from dotenv import load_dotenv
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from database import get_db
from errors import (
    DriverProfileMissing, DuplicateKey, Forbidden, InvalidCredentials, InvalidToken, ValidationError,
)
from models import Driver, Route, User, UserRole
from store import EntityStore

load_dotenv()

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated identity for the lifetime of one request."""

    user_id: int
    role: str
    username: Optional[str] = None
    email: Optional[str] = None
    driver_id: Optional[int] = None
    driver_name: Optional[str] = None

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.manager.value

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.driver.value

    def claims(self) -> dict:
        data = {"sub": str(self.user_id), "role": self.role}
        if self.username:
            data["username"] = self.username
        if self.email:
            data["email"] = self.email
        if self.driver_id is not None:
            data["driver_id"] = self.driver_id
            data["driver_name"] = self.driver_name
        return data


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def issue_token(principal: Principal, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token(principal.claims(), expires_delta)


def verify_token(token: str) -> Principal:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        role = payload.get("role")
        if user_id is None or role not in (UserRole.manager.value, UserRole.driver.value):
            raise InvalidToken()
        return Principal(
            user_id=int(user_id),
            role=role,
            username=payload.get("username"),
            email=payload.get("email"),
            driver_id=payload.get("driver_id"),
            driver_name=payload.get("driver_name"),
        )
    except (JWTError, ValueError) as e:
        raise InvalidToken() from e


def register_user(store: EntityStore, username: str, email: str, password: str,
                  role: str = UserRole.manager.value) -> User:
    """Self-service registration; only manager logins are created here.

    Driver logins come from ``DriverService.create_account`` so the driver
    record is flagged in the same transaction.
    """
    if role == UserRole.driver.value:
        raise ValidationError("Driver accounts are created from the driver profile", role=role)
    if role != UserRole.manager.value:
        raise ValidationError("Unknown role", role=role)
    if store.find_one(User, (User.username == username) | (User.email == email)):
        raise DuplicateKey("Username or email already registered")
    with store.transaction():
        user = store.create(
            User, username=username, email=email, hashed_password=hash_password(password), role=role,
        )
    logger.info("Registered %s account %s", role, username)
    return user


def principal_for(user: User, driver: Optional[Driver] = None) -> Principal:
    return Principal(
        user_id=user.id,
        role=user.role,
        username=user.username,
        email=user.email,
        driver_id=driver.id if driver else None,
        driver_name=driver.name if driver else None,
    )


def authenticate(store: EntityStore, username: str, password: str) -> Principal:
    """Username/password login for managers and drivers."""
    user = store.find_one(User, User.username == username)
    if not user or not verify_password(password, user.hashed_password):
        raise InvalidCredentials()

    driver = None
    if user.role == UserRole.driver.value:
        driver = store.find_one(Driver, Driver.email == user.email)
    return principal_for(user, driver)


def authenticate_driver(store: EntityStore, email: str, password: str):
    """Email/password login restricted to driver accounts.

    Returns the principal together with the linked driver record.
    """
    user = store.find_one(User, User.email == email, User.role == UserRole.driver.value)
    if not user or not verify_password(password, user.hashed_password):
        raise InvalidCredentials()

    driver = store.find_one(Driver, Driver.email == email)
    if not driver:
        raise DriverProfileMissing()
    return principal_for(user, driver), driver


def authorize(principal: Principal, *roles: str) -> None:
    if principal.role not in roles:
        raise Forbidden()


def scope_to_owned_routes(store: EntityStore, principal: Principal) -> Optional[Set[int]]:
    """Route ids a principal may touch; ``None`` means unrestricted."""
    if principal.is_manager:
        return None
    if principal.driver_id is None:
        return set()
    routes = store.find_many(Route, Route.driver_id == principal.driver_id)
    return {route.id for route in routes}


# FastAPI dependencies
def get_store(db: Session = Depends(get_db)) -> EntityStore:
    return EntityStore(db)


def resolve_principal(store: EntityStore, claimed: Principal) -> Principal:
    """Rebuild a token's principal from the stored user.

    Tokens of deleted users, or of a reused id now held by someone else,
    are rejected.
    """
    user = store.find_one(User, User.id == claimed.user_id)
    if user is None or user.role != claimed.role:
        raise InvalidToken()
    if claimed.username and claimed.username != user.username:
        raise InvalidToken()

    driver = None
    if user.role == UserRole.driver.value:
        driver = store.find_one(Driver, Driver.email == user.email)
    return principal_for(user, driver)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: EntityStore = Depends(get_store),
) -> Principal:
    if credentials is None:
        raise InvalidToken("Access denied")
    return resolve_principal(store, verify_token(credentials.credentials))


def require_role(*roles: str):
    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        authorize(principal, *roles)
        return principal
    return dependency
