# store.py - Entity store over a SQLAlchemy session
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import transaction
from errors import DuplicateKey, NotFound, ValidationError

logger = logging.getLogger(__name__)


class EntityStore:
    """Create/find/update/delete/count over the ORM models.

    One store wraps one session, i.e. one request. Predicates are plain
    SQLAlchemy column expressions, e.g. ``store.count(Route, Route.status == "active")``.
    Models that declare ``code_prefix`` and ``code_field`` get an external
    code such as ``RT-3F9A0C21B7`` when the caller does not supply one.
    """

    code_token_length = 10

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def transaction(self):
        with transaction(self.session):
            yield self

    def flush(self):
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            detail = str(e.orig) if e.orig is not None else str(e)
            if "unique" in detail.lower() or "duplicate" in detail.lower():
                raise DuplicateKey(f"Duplicate key: {detail}") from e
            raise ValidationError(f"Constraint violated: {detail}") from e

    def create(self, model, **attrs):
        _check_columns(model, attrs)
        code_field = getattr(model, "code_field", None)
        if code_field and not attrs.get(code_field):
            attrs[code_field] = self.generate_code(model)
        obj = model(**attrs)
        self.session.add(obj)
        self.flush()
        return obj

    def generate_code(self, model) -> str:
        column = getattr(model, model.code_field)
        while True:
            code = f"{model.code_prefix}-{uuid.uuid4().hex[:self.code_token_length].upper()}"
            # Also covers codes handed out earlier in this session but not yet flushed
            pending = any(
                isinstance(obj, model) and getattr(obj, model.code_field) == code
                for obj in self.session.new
            )
            if not pending and self.find_one(model, column == code) is None:
                return code
            logger.warning("Generated %s collided, retrying", code)

    def find_by_id(self, model, id: int, for_update: bool = False, options: Iterable = ()):
        stmt = select(model).where(model.id == id)
        if options:
            stmt = stmt.options(*options)
        if for_update:
            stmt = stmt.with_for_update()
        obj = self.session.scalars(stmt).first()
        if obj is None:
            raise NotFound(f"{model.__name__} not found", id=id)
        return obj

    def find_one(self, model, *criteria):
        return self.session.scalars(select(model).where(*criteria)).first()

    def find_many(
        self,
        model,
        *criteria,
        order_by: Optional[Iterable] = None,
        options: Iterable = (),
        limit: Optional[int] = None,
        for_update: bool = False,
    ) -> List[Any]:
        stmt = select(model).where(*criteria)
        if options:
            stmt = stmt.options(*options)
        if order_by is not None:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.session.scalars(stmt).unique())

    def update(self, obj, attrs: Dict[str, Any]):
        _check_columns(type(obj), attrs)
        for key, value in attrs.items():
            setattr(obj, key, value)
        self.flush()
        return obj

    def delete(self, obj):
        self.session.delete(obj)
        self.flush()

    def count(self, model, *criteria) -> int:
        stmt = select(func.count()).select_from(model).where(*criteria)
        return self.session.scalar(stmt)


def _check_columns(model, attrs):
    columns = model.__table__.columns.keys()
    unknown = sorted(key for key in attrs if key not in columns or key == "id")
    if unknown:
        raise ValidationError(f"Unknown {model.__name__} fields", fields=unknown)

