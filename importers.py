"""Historical booking import and bulk paste parsing.

Import files are loosely structured: the first line holds headers which are
matched by substring, every later line is split on commas. Nothing here tries
to be a CSV dialect parser.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum

import pandas as pd

import config
import inventory
from errors import ImportAbortedError, StoreError
from schemas import BatteryStatus, BookingStatus, HealthStatus, LegacyRow, PaymentMode, VehicleStatus

logger = logging.getLogger(__name__)

MIN_FIELDS = 5

LEGACY_COLUMNS = {
    "customer_name": "customer name",
    "vehicle_id": "vehicleid",
    "battery_id": "batteryid",
    "city_id": "city id",
    "start_date": "start date",
    "end_date": "end date",
    "status": "status",
    "total_rent": "total rent",
    "rent_collected": "total rent collected",
    "rent_online": "total rent collected online",
    "rent_cash": "total rent collected cash",
    "security": "total security collected",
    "fines": "fines",
}

DEFAULT_LEGACY_STATUS = "completed - settled"

_DMY = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$")


# --- STATUS CLASSIFICATION ---

class ImportStatus(str, Enum):
    ACTIVE = "Active"
    PAUSED = "Paused"
    PENDING_PAYMENT = "Pending Payment"
    RETURNED = "Returned"
    UNRECOGNIZED = "Unrecognized"


# Checked in order; the first keyword found anywhere in the text wins
STATUS_KEYWORDS = [
    (("active", "rented"), ImportStatus.ACTIVE),
    (("paused",), ImportStatus.PAUSED),
    (("pending",), ImportStatus.PENDING_PAYMENT),
    (("returned", "completed", "closed", "settled"), ImportStatus.RETURNED),
]


def classify_legacy_status(text):
    lowered = (text or "").lower()
    for keywords, status in STATUS_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return status
    return ImportStatus.UNRECOGNIZED


def booking_status_for(import_status):
    if import_status == ImportStatus.UNRECOGNIZED:
        return BookingStatus.RETURNED
    return BookingStatus(import_status.value)


# --- FIELD PARSING ---

def parse_legacy_date(text, today=None):
    """Normalize DD-MM-YYYY, DD/MM/YYYY or ISO text to a date; today when unparseable."""
    today = today or date.today()
    trimmed = (text or "").strip()
    if not trimmed:
        return today
    match = _DMY.match(trimmed)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return today
    parsed = pd.to_datetime(trimmed, errors="coerce")
    if pd.isna(parsed):
        return today
    return parsed.date()


def _number(text):
    try:
        return float(text) if text else 0.0
    except ValueError:
        return 0.0


def _row_id(text):
    value = _number(text)
    return int(value) if value > 0 else None


def find_column(headers, fragment):
    """Index of the header equal to ``fragment``, else the first one containing it."""
    if fragment in headers:
        return headers.index(fragment)
    return next((i for i, header in enumerate(headers) if fragment in header), None)


def _split(line):
    return [cell.strip().replace('"', '') for cell in line.split(",")]


def parse_legacy_csv(text, today=None):
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []
    headers = [h.lower() for h in _split(lines[0])]
    columns = {key: find_column(headers, fragment) for key, fragment in LEGACY_COLUMNS.items()}

    rows = []
    for i, line in enumerate(lines[1:], start=1):
        cells = _split(line)
        if len(cells) < MIN_FIELDS:
            logger.info("Skipping import line %s: only %s fields", i, len(cells))
            continue

        def cell(key):
            index = columns[key]
            return cells[index] if index is not None and index < len(cells) else ""

        online, cash = _number(cell("rent_online")), _number(cell("rent_cash"))
        collected = online + cash if online + cash > 0 else _number(cell("rent_collected"))
        rows.append(LegacyRow(
            customer_name=cell("customer_name"),
            # Import files carry no phone numbers
            customer_phone=f"{i:010d}",
            vehicle_id=_row_id(cell("vehicle_id")),
            battery_id=_row_id(cell("battery_id")),
            city_id=_row_id(cell("city_id")),
            start_date=parse_legacy_date(cell("start_date"), today),
            end_date=parse_legacy_date(cell("end_date"), today),
            status=cell("status") if columns["status"] is not None else DEFAULT_LEGACY_STATUS,
            total_rent=_number(cell("total_rent")),
            amount_collected=collected,
            security_deposit=_number(cell("security")),
            fine_amount=_number(cell("fines")),
        ))
    return rows


# --- RECONCILER ---

@dataclass
class ImportSummary:
    processed: int = 0
    skipped: int = 0
    seeded_vehicles: int = 0
    seeded_batteries: int = 0
    created_customers: int = 0


class LegacyImporter:
    """Writes parsed legacy rows, creating any vehicle, battery or customer they mention.

    Presence checks are read-then-insert, so two imports running at once can seed
    the same id twice. Rows are committed one by one; a failed customer or
    booking insert stops the run and leaves earlier rows in place.
    """

    def __init__(self, store, default_city_id=config.DEFAULT_CITY_ID):
        self.store = store
        self.default_city_id = default_city_id

    def run(self, rows):
        rows = [r if isinstance(r, LegacyRow) else LegacyRow.model_validate(r) for r in rows]
        summary = ImportSummary()
        self._seed_vehicles(rows, summary)
        self._seed_batteries(rows, summary)

        for row in rows:
            if not row.customer_name:
                summary.skipped += 1
                continue
            try:
                self._import_row(row, summary)
            except StoreError as e:
                logger.error("Legacy import stopped after %s rows: %s", summary.processed, e)
                raise ImportAbortedError(summary.processed, e) from e
            summary.processed += 1

        logger.info("Legacy import finished: %s", summary)
        return summary

    def _city(self, row):
        return row.city_id or self.default_city_id

    def _seed_vehicles(self, rows, summary):
        for vehicle_id in dict.fromkeys(r.vehicle_id for r in rows if r.vehicle_id):
            first = next(r for r in rows if r.vehicle_id == vehicle_id)
            try:
                if self.store.select_one("vehicles", id=vehicle_id) is None:
                    # Status is corrected below by any active booking for it
                    self.store.insert("vehicles", [{
                        "id": vehicle_id,
                        "model_name": "Imported Vehicle",
                        "city_id": self._city(first),
                        "status": VehicleStatus.AVAILABLE,
                        "health_status": HealthStatus.GOOD,
                    }])
                    summary.seeded_vehicles += 1
            except StoreError as e:
                logger.warning("Could not seed vehicle %s: %s", vehicle_id, e)

    def _seed_batteries(self, rows, summary):
        for battery_id in dict.fromkeys(r.battery_id for r in rows if r.battery_id):
            first = next(r for r in rows if r.battery_id == battery_id)
            try:
                if self.store.select_one("batteries", id=battery_id) is None:
                    self.store.insert("batteries", [{
                        "id": battery_id,
                        "serial_number": f"BATT-{battery_id}",
                        "city_id": self._city(first),
                        "status": BatteryStatus.AVAILABLE,
                        "charge_percentage": 100,
                    }])
                    summary.seeded_batteries += 1
            except StoreError as e:
                logger.warning("Could not seed battery %s: %s", battery_id, e)

    def _import_row(self, row, summary):
        phone = row.customer_phone or config.DEFAULT_IMPORT_PHONE
        if self.store.select_one("customers", name=row.customer_name) is None:
            self.store.insert("customers", [{
                "name": row.customer_name,
                "phone": phone,
                "address": "",
                "aadhar_number": "",
                "pan_number": "",
                "bank_details": {},
                "city_id": self._city(row),
            }])
            summary.created_customers += 1

        status = booking_status_for(classify_legacy_status(row.status))
        self.store.insert("bookings", [{
            "customer_name": row.customer_name,
            "customer_phone": phone,
            "vehicle_id": row.vehicle_id,
            "battery_id": row.battery_id,
            "city_id": self._city(row),
            "start_date": row.start_date,
            "end_date": row.end_date,
            "status": status,
            # Legacy files have no rate card to derive a daily rent from
            "daily_rent": 0,
            "total_rent": row.total_rent,
            "amount_collected": row.amount_collected,
            "security_deposit": row.security_deposit,
            "fine_amount": row.fine_amount,
            "mode_of_payment": PaymentMode.CASH,
        }])

        if status == BookingStatus.ACTIVE and row.vehicle_id:
            for update in inventory.for_create_booking(row.vehicle_id, row.battery_id):
                try:
                    self.store.update(update.table, update.patch, id=update.row_id)
                except StoreError as e:
                    logger.warning("Booking for %s imported but %s %s not updated: %s",
                                   row.customer_name, update.table, update.row_id, e)


# --- BULK PASTE ---

def _match_enum(text, enum_cls, default):
    lowered = (text or "").strip().lower()
    return next((member for member in enum_cls if member.value.lower() == lowered), default)


def _city_lookup(cities):
    return {c.name.strip().lower(): c.id for c in cities}


def parse_vehicle_lines(text, cities):
    """``model, city name[, status]`` per line."""
    city_ids = _city_lookup(cities)
    rows = []
    for line in text.splitlines():
        cells = [c.strip() for c in line.split(",")]
        if len(cells) < 2 or not cells[0] or cells[1].lower() not in city_ids:
            continue
        rows.append({
            "model_name": cells[0],
            "city_id": city_ids[cells[1].lower()],
            "status": _match_enum(cells[2] if len(cells) > 2 else "", VehicleStatus, VehicleStatus.AVAILABLE),
            "battery_id": None,
            "health_status": HealthStatus.GOOD,
        })
    return rows


def parse_battery_lines(text, cities):
    """``serial, city name[, charge %, status]`` per line."""
    city_ids = _city_lookup(cities)
    rows = []
    for line in text.splitlines():
        cells = [c.strip() for c in line.split(",")]
        if len(cells) < 2 or not cells[0] or cells[1].lower() not in city_ids:
            continue
        charge = int(_number(cells[2])) if len(cells) > 2 else 0
        rows.append({
            "serial_number": cells[0],
            "city_id": city_ids[cells[1].lower()],
            "charge_percentage": min(charge, 100) if charge > 0 else 100,
            "status": _match_enum(cells[3] if len(cells) > 3 else "", BatteryStatus, BatteryStatus.AVAILABLE),
            "assigned_vehicle_id": None,
        })
    return rows


def parse_customer_lines(text, cities):
    """``name, phone, city name[, aadhar]`` per line."""
    city_ids = _city_lookup(cities)
    rows = []
    for line in text.splitlines():
        cells = [c.strip() for c in line.split(",")]
        if len(cells) < 3 or not cells[0] or not cells[1] or cells[2].lower() not in city_ids:
            continue
        rows.append({
            "name": cells[0],
            "phone": cells[1],
            "city_id": city_ids[cells[2].lower()],
            "address": "",
            "aadhar_number": cells[3] if len(cells) > 3 else "",
            "pan_number": "",
            "bank_details": {"account_name": cells[0], "account_number": "", "bank_name": "", "ifsc_code": ""},
        })
    return rows
