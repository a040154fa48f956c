"""In-memory copy of every fleet table, rebuilt from the store on refresh."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pandas as pd
from pydantic import ValidationError

import config
from errors import SnapshotError, StoreError
from schemas import RECORD_MODELS, MaintenanceJobStatus

logger = logging.getLogger(__name__)

# table -> (order column, descending)
TABLE_ORDER = {
    "cities": ("id", False),
    "vehicles": ("id", True),
    "rates": (None, False),
    "bookings": (None, False),
    "batteries": (None, False),
    "customers": ("name", False),
    "users": (None, False),
    "refund_requests": (None, False),
    "vehicle_logs": (None, False),
    "maintenance_jobs": (None, False),
    "spare_parts_master": (None, False),
    "spare_inventory": (None, False),
}


def _in_city(records, city_id):
    if city_id is None:
        return list(records)
    return [r for r in records if r.city_id == city_id]


class FleetSnapshot:

    def __init__(self, store, city_id=config.DEFAULT_CITY_ID, max_workers=config.STORE_WORKERS):
        self.store = store
        self.city_id = city_id
        self.max_workers = max_workers
        self.loaded_at = None
        self._tables = {name: [] for name in TABLE_ORDER}
        self._lock = threading.Lock()

    def _load(self, name):
        order_by, descending = TABLE_ORDER[name]
        rows = self.store.select(name, order_by=order_by, descending=descending)
        model = RECORD_MODELS[name]
        return [model.model_validate(row) for row in rows or []]

    def refresh(self, tables=None):
        """Reload ``tables`` (default: all) concurrently and swap them in together.

        If any read fails nothing is replaced and SnapshotError is raised.
        """
        names = list(TABLE_ORDER) if tables is None else [t for t in tables if t in TABLE_ORDER]
        if not names:
            return self
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(names))) as pool:
            futures = {name: pool.submit(self._load, name) for name in names}
            loaded, failure = {}, None
            for name, future in futures.items():
                try:
                    loaded[name] = future.result()
                except (StoreError, ValidationError) as e:
                    failure = failure or (name, e)
        if failure:
            name, error = failure
            logger.error("Snapshot refresh failed on %s: %s", name, error)
            raise SnapshotError(f"Could not load {name}: {error}") from error

        with self._lock:
            self._tables.update(loaded)
            cities = self._tables["cities"]
            if "cities" in loaded and cities and not any(c.id == self.city_id for c in cities):
                logger.info("City %s no longer exists, switching scope to %s", self.city_id, cities[0].id)
                self.city_id = cities[0].id
            self.loaded_at = datetime.now()
        logger.debug("Snapshot refreshed: %s", ", ".join(names))
        return self

    # --- TYPED GETTERS ---

    def records(self, name):
        with self._lock:
            return list(self._tables[name])

    def cities(self):
        return self.records("cities")

    def rates(self, city_id=None):
        return _in_city(self.records("rates"), city_id)

    def vehicles(self, city_id=None):
        return _in_city(self.records("vehicles"), city_id)

    def batteries(self, city_id=None):
        return _in_city(self.records("batteries"), city_id)

    def bookings(self, city_id=None, status=None):
        bookings = _in_city(self.records("bookings"), city_id)
        if status is not None:
            bookings = [b for b in bookings if b.status == status]
        return bookings

    def customers(self, city_id=None):
        return _in_city(self.records("customers"), city_id)

    def users(self):
        return self.records("users")

    def refund_requests(self):
        return self.records("refund_requests")

    def vehicle_logs(self, vehicle_id=None):
        logs = self.records("vehicle_logs")
        if vehicle_id is not None:
            logs = [log for log in logs if log.vehicle_id == vehicle_id]
        return logs

    def maintenance_jobs(self, city_id=None):
        return _in_city(self.records("maintenance_jobs"), city_id)

    def spare_parts(self):
        return self.records("spare_parts_master")

    def spare_inventory(self, city_id=None):
        return _in_city(self.records("spare_inventory"), city_id)

    def _find(self, name, record_id):
        if record_id is None:
            return None
        return next((r for r in self.records(name) if r.id == record_id), None)

    def vehicle(self, vehicle_id):
        return self._find("vehicles", vehicle_id)

    def battery(self, battery_id):
        return self._find("batteries", battery_id)

    def booking(self, booking_id):
        return self._find("bookings", booking_id)

    def job(self, job_id):
        return self._find("maintenance_jobs", job_id)

    def known_ids(self):
        return {
            "vehicles": {v.id for v in self.records("vehicles")},
            "batteries": {b.id for b in self.records("batteries")},
        }

    # --- DERIVED ---

    def health_counts(self, city_id=None):
        counts = {}
        for vehicle in self.vehicles(city_id):
            counts[vehicle.health_status.value] = counts.get(vehicle.health_status.value, 0) + 1
        return counts

    def open_job_count(self, city_id=None):
        closed = (MaintenanceJobStatus.COMPLETED, MaintenanceJobStatus.CANCELLED)
        return sum(1 for job in self.maintenance_jobs(city_id) if job.status not in closed)

    def low_stock(self, city_id=None):
        parts = {p.id: p for p in self.spare_parts()}
        return [
            stock for stock in self.spare_inventory(city_id)
            if stock.part_id in parts and stock.quantity < parts[stock.part_id].min_stock_level
        ]

    def frame(self, name, city_id=None):
        records = self.records(name)
        if city_id is not None and records and hasattr(records[0], "city_id"):
            records = _in_city(records, city_id)
        return pd.DataFrame([r.model_dump(mode="json") for r in records])
