# importer.py - Spreadsheet import of deliveries
import io
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from dotenv import load_dotenv
from openpyxl import load_workbook

from errors import ValidationError
from models import Delivery, DeliveryStatus, Driver, DriverStatus, Route, RouteStatus
from store import EntityStore

load_dotenv()

logger = logging.getLogger(__name__)

ROUTE_CAPACITY = int(os.getenv("IMPORT_ROUTE_CAPACITY", "35"))
DEFAULT_TIME_WINDOW = "9:00 AM - 5:00 PM"

# Header names tried in order for each delivery field
FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "address": ("Address", "address", "DELIVERY_ADDRESS"),
    "customer": ("Customer", "customer", "NAME"),
    "packages": ("Packages", "packages", "PACKAGE_COUNT"),
    "scheduled_time": ("Time", "time"),
    "phone_number": ("Phone", "phone", "PHONE_NUMBER"),
    "special_instructions": ("Instructions", "instructions", "NOTES"),
}


@dataclass
class ImportResult:
    deliveries_imported: int
    routes_created: int
    drivers_assigned: int = 0
    route_ids: List[int] = field(default_factory=list)


def read_workbook(content: bytes) -> List[Dict[str, Any]]:
    """Rows of the first worksheet as ``{header: value}`` mappings.

    The first row holds the headers; blank rows are skipped.
    """
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ValidationError("Could not read spreadsheet", reason=str(e)) from e

    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        names = [str(cell).strip() if cell is not None else None for cell in header]

        records = []
        for values in rows:
            if all(value is None or str(value).strip() == "" for value in values):
                continue
            # Read-only sheets drop trailing empty cells
            values = tuple(values) + (None,) * (len(names) - len(values))
            records.append({
                name: value for name, value in zip(names, values) if name
            })
        return records
    finally:
        workbook.close()


def _pick(row: Mapping[str, Any], aliases: Iterable[str]) -> Optional[Any]:
    for alias in aliases:
        value = row.get(alias)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def _package_count(value: Any, row_number: int) -> int:
    if value is None:
        return 1
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Package count is not a number", row=row_number, value=str(value))
    if number < 0 or not number.is_integer():
        raise ValidationError("Package count must be a whole number", row=row_number, value=str(value))
    return int(number) or 1


def row_to_delivery_fields(row: Mapping[str, Any], index: int) -> Dict[str, Any]:
    """Delivery attributes for the ``index``-th (zero-based) input row."""
    if not isinstance(row, Mapping):
        raise ValidationError("Row is not a mapping", row=index + 1)

    def text(name: str, default: str) -> str:
        value = _pick(row, FIELD_ALIASES[name])
        return default if value is None else str(value)

    return {
        "address": text("address", f"Address {index}"),
        "customer": text("customer", f"Customer {index}"),
        "packages": _package_count(_pick(row, FIELD_ALIASES["packages"]), index + 1),
        "scheduled_time": text("scheduled_time", DEFAULT_TIME_WINDOW),
        "phone_number": text("phone_number", ""),
        "special_instructions": text("special_instructions", ""),
        "stop_number": index + 1,
        "status": DeliveryStatus.pending.value,
    }


def chunk(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [items[start:start + size] for start in range(0, len(items), size)]


class DeliveryImporter:
    """Turns tabular rows into deliveries, optionally grouped into routes."""

    def __init__(self, store: EntityStore, route_capacity: int = ROUTE_CAPACITY):
        self.store = store
        self.route_capacity = route_capacity

    def import_deliveries(self, rows: Sequence[Mapping[str, Any]], optimize_routes: bool = False,
                          assign_drivers: bool = False) -> ImportResult:
        # Parse every row before writing anything: one bad row rejects the file
        parsed = [row_to_delivery_fields(row, index) for index, row in enumerate(rows)]

        with self.store.transaction():
            deliveries = [self.store.create(Delivery, **fields) for fields in parsed]

            routes = []
            if optimize_routes:
                for number, group in enumerate(chunk(deliveries, self.route_capacity), start=1):
                    route = self.store.create(
                        Route,
                        name=f"Imported Route {number}",
                        status=RouteStatus.pending.value,
                        total_stops=len(group),
                    )
                    for delivery in group:
                        delivery.route_id = route.id
                    routes.append(route)
                self.store.flush()

            assigned = 0
            if assign_drivers and routes:
                assigned = self._assign_drivers(routes)
            route_ids = [route.id for route in routes]

        logger.info(
            "Imported %d deliveries into %d routes (%d drivers assigned)",
            len(deliveries), len(routes), assigned,
        )
        return ImportResult(
            deliveries_imported=len(deliveries),
            routes_created=len(routes),
            drivers_assigned=assigned,
            route_ids=route_ids,
        )

    def _assign_drivers(self, routes: List[Route]) -> int:
        available = self.store.find_many(
            Driver,
            Driver.status == DriverStatus.off_duty.value,
            order_by=[Driver.id],
            limit=len(routes),
            for_update=True,
        )
        for route, driver in zip(routes, available):
            route.driver_id = driver.id
            driver.status = DriverStatus.active.value
        self.store.flush()
        return min(len(routes), len(available))
