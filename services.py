"""Booking lifecycle and inventory operations for the fleet console.

Each operation reads what it needs from the snapshot, writes the booking row,
then issues the vehicle/battery writes that follow from it. The writes are
independent store calls: if a later one fails the earlier ones stay committed,
and the failure is logged and returned on ``OperationResult.failed`` for the
operator to correct by hand.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import List, Optional

import config
import inventory
from errors import BookingNotFoundError, InvalidTransitionError, SnapshotError, StoreError
from importers import LegacyImporter
from schemas import (
    BatteryStatus, BookingStatus, CreateBookingRequest, CreateMaintenanceJobRequest,
    ChangeBatteryRequest, ExtendBookingRequest, HealthStatus, MaintenanceJobStatus,
    PauseBookingRequest, ResumeBookingRequest, SettleDueRequest, SwapVehicleRequest,
    RECORD_MODELS, VehicleStatus,
)
from snapshot import FleetSnapshot

logger = logging.getLogger(__name__)


def _now():
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class OperationResult:
    record_id: Optional[int] = None
    applied: List[inventory.InventoryUpdate] = field(default_factory=list)
    skipped: List[inventory.InventoryUpdate] = field(default_factory=list)
    failed: List[tuple] = field(default_factory=list)

    @property
    def consistent(self):
        return not self.failed


def run_concurrently(calls, max_workers=config.STORE_WORKERS):
    """Run zero-argument callables in parallel; returns (value, error) pairs in order."""
    if not calls:
        return []
    outcomes = []
    with ThreadPoolExecutor(max_workers=min(max_workers, len(calls))) as pool:
        futures = [pool.submit(call) for call in calls]
        for future in futures:
            try:
                outcomes.append((future.result(), None))
            except StoreError as e:
                outcomes.append((None, e))
    return outcomes


class FleetConsole:

    def __init__(self, store, city_id=config.DEFAULT_CITY_ID, listen=True):
        self.store = store
        self.snapshot = FleetSnapshot(store, city_id)
        self._busy = 0
        self._busy_lock = threading.Lock()
        self._unsubscribe = store.subscribe(self._on_change) if listen else None

    def close(self):
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def refresh(self):
        return self.snapshot.refresh()

    def _on_change(self, event):
        with self._busy_lock:
            if self._busy:
                # The running operation reloads everything when it finishes
                return
        self.snapshot.refresh(tables=[event.table])

    @contextmanager
    def _operation(self, name):
        with self._busy_lock:
            self._busy += 1
        failed = True
        try:
            yield
            failed = False
        finally:
            with self._busy_lock:
                self._busy -= 1
            try:
                self.snapshot.refresh()
            except SnapshotError:
                if not failed:
                    raise
                logger.warning("Reload after failed %s also failed; keeping the old snapshot", name)

    def _apply(self, updates, result=None):
        result = result or OperationResult()
        kept, skipped = inventory.drop_dangling(updates, self.snapshot.known_ids())
        for update in skipped:
            logger.info("Skipping %s update: id %s not in snapshot", update.table, update.row_id)
        result.skipped.extend(skipped)

        calls = [partial(self.store.update, u.table, u.patch, id=u.row_id) for u in kept]
        for update, (count, error) in zip(kept, run_concurrently(calls)):
            if error is not None:
                logger.error("Inventory write failed, state needs manual correction: %s %s: %s",
                             update.table, update.row_id, error)
                result.failed.append((update, error))
            elif not count:
                logger.info("Skipping %s update: id %s vanished", update.table, update.row_id)
                result.skipped.append(update)
            else:
                result.applied.append(update)
        return result

    def _booking(self, booking_id):
        booking = self.snapshot.booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    @staticmethod
    def _check_transition(booking_id, current, target):
        if not inventory.can_transition(current, target):
            raise InvalidTransitionError(booking_id, current.value, target.value)

    @staticmethod
    def _ensure_open(booking, action):
        if booking.status == BookingStatus.RETURNED:
            raise InvalidTransitionError(booking.id, booking.status.value, action)

    # --- BOOKING LIFECYCLE ---

    def create_booking(self, request: CreateBookingRequest) -> OperationResult:
        with self._operation("create booking"):
            row = request.model_dump(mode="json")
            row["status"] = BookingStatus.ACTIVE.value
            row["fine_amount"] = 0
            booking = self.store.insert("bookings", [row])[0]
            logger.info("Booking %s created for %s", booking["id"], request.customer_name)
            updates = inventory.for_create_booking(booking["vehicle_id"], booking["battery_id"])
            return self._apply(updates, OperationResult(record_id=booking["id"]))

    def update_booking_status(self, booking_id, status, checklist=None) -> OperationResult:
        status = BookingStatus(status)
        with self._operation("status change"):
            # Fresh read so the accumulators are the stored ones, not the snapshot's
            current = self.store.select_one("bookings", id=booking_id)
            if current is None:
                raise BookingNotFoundError(booking_id)
            self._check_transition(booking_id, BookingStatus(current["status"]), status)

            patch = {"status": status}
            if checklist is not None:
                patch["fine_amount"] = (current["fine_amount"] or 0) + checklist.fine
                patch["amount_collected"] = (current["amount_collected"] or 0) + checklist.settlement_adjustment
                patch["post_ride_checklist"] = checklist.items
                patch["post_ride_notes"] = checklist.notes
                if checklist.payment_transaction_id:
                    patch["payment_transaction_id"] = checklist.payment_transaction_id
            self.store.update("bookings", patch, id=booking_id)

            result = OperationResult(record_id=booking_id)
            # Pausing already released the vehicle and battery
            if status == BookingStatus.RETURNED and current["status"] != BookingStatus.PAUSED.value:
                target = checklist.resolved_vehicle_status() if checklist is not None else VehicleStatus.AVAILABLE
                updates = inventory.for_return(current["vehicle_id"], current["battery_id"], target)
                self._apply(updates, result)
            return result

    def return_booking(self, booking_id, checklist=None) -> OperationResult:
        return self.update_booking_status(booking_id, BookingStatus.RETURNED, checklist)

    def pause_booking(self, request: PauseBookingRequest) -> OperationResult:
        with self._operation("pause"):
            booking = self._booking(request.booking_id)
            self._check_transition(booking.id, booking.status, BookingStatus.PAUSED)
            self.store.update("bookings", {
                "status": BookingStatus.PAUSED,
                "pause_reason": request.reason,
                "paused_at": _now(),
            }, id=booking.id)
            updates = inventory.for_pause(booking.vehicle_id, booking.battery_id)
            return self._apply(updates, OperationResult(record_id=booking.id))

    def resume_booking(self, request: ResumeBookingRequest) -> OperationResult:
        with self._operation("resume"):
            booking = self._booking(request.booking_id)
            self._check_transition(booking.id, booking.status, BookingStatus.ACTIVE)
            self.store.update("bookings", {
                "status": BookingStatus.ACTIVE,
                "vehicle_id": request.vehicle_id,
                "battery_id": request.battery_id,
            }, id=booking.id)
            updates = inventory.for_resume(request.vehicle_id, request.battery_id)
            return self._apply(updates, OperationResult(record_id=booking.id))

    def change_battery_for_booking(self, request: ChangeBatteryRequest) -> OperationResult:
        with self._operation("battery change"):
            booking = self._booking(request.booking_id)
            self._ensure_open(booking, "battery change")
            self.store.update("bookings", {"battery_id": request.new_battery_id}, id=booking.id)
            updates = inventory.for_battery_change(booking.vehicle_id, booking.battery_id, request.new_battery_id)
            return self._apply(updates, OperationResult(record_id=booking.id))

    def swap_vehicle_for_booking(self, request: SwapVehicleRequest) -> OperationResult:
        with self._operation("vehicle swap"):
            booking = self._booking(request.booking_id)
            self._ensure_open(booking, "vehicle swap")
            self.store.update("bookings", {
                "vehicle_id": request.new_vehicle_id,
                "fine_amount": (booking.fine_amount or 0) + request.fine_adjustment,
            }, id=booking.id)
            updates = inventory.for_vehicle_swap(booking.vehicle_id, request.new_vehicle_id, booking.battery_id)
            result = self._apply(updates, OperationResult(record_id=booking.id))
            if booking.vehicle_id:
                self._log_vehicle(booking.vehicle_id, VehicleStatus.AVAILABLE,
                                  f"Swapped out: {request.reason}", request.checklist, booking.id)
            return result

    def extend_booking(self, request: ExtendBookingRequest) -> OperationResult:
        with self._operation("extension"):
            booking = self._booking(request.booking_id)
            self.store.update("bookings", {
                "total_rent": booking.total_rent + request.extra_rent,
                "amount_collected": booking.amount_collected + request.collection,
                "end_date": request.new_end_date,
            }, id=booking.id)
            return OperationResult(record_id=booking.id)

    def settle_booking_due(self, request: SettleDueRequest) -> OperationResult:
        with self._operation("settlement"):
            booking = self._booking(request.booking_id)
            patch = {"amount_collected": booking.amount_collected + request.amount}
            if request.new_end_date:
                patch["end_date"] = request.new_end_date
            if request.extra_rent:
                patch["total_rent"] = booking.total_rent + request.extra_rent
            self.store.update("bookings", patch, id=booking.id)
            return OperationResult(record_id=booking.id)

    # --- MAINTENANCE ---

    def open_maintenance_job(self, request: CreateMaintenanceJobRequest) -> OperationResult:
        with self._operation("open job"):
            row = request.model_dump(mode="json")
            row.update(status=MaintenanceJobStatus.OPEN.value, started_at=_now())
            job = self.store.insert("maintenance_jobs", [row])[0]
            updates = inventory.for_maintenance_opened(request.vehicle_id)
            return self._apply(updates, OperationResult(record_id=job["id"]))

    def update_job_status(self, job_id, status) -> OperationResult:
        status = MaintenanceJobStatus(status)
        with self._operation("job status"):
            job = self.snapshot.job(job_id)
            if job is None:
                logger.info("Maintenance job %s not in snapshot, nothing to update", job_id)
                return OperationResult()
            completed = status == MaintenanceJobStatus.COMPLETED
            self.store.update("maintenance_jobs", {
                "status": status,
                "completed_at": _now() if completed else None,
            }, id=job_id)
            result = OperationResult(record_id=job_id)
            if completed:
                self._apply(inventory.for_maintenance_completed(job.vehicle_id), result)
            return result

    # --- ADMIN ---

    @staticmethod
    def _check_row(table, row):
        """Raise ValidationError if ``row`` would not load back into the snapshot."""
        model = RECORD_MODELS.get(table)
        if model is not None:
            model.model_validate({"id": 0, **row})

    def add(self, table, records):
        """Insert one record (dict) or a list of them; returns the stored rows."""
        rows = records if isinstance(records, list) else [records]
        for row in rows:
            self._check_row(table, row)
        with self._operation(f"add {table}"):
            return self.store.insert(table, rows)

    def update(self, table, record_id, patch):
        current = self.store.select_one(table, id=record_id)
        if current is not None:
            self._check_row(table, {**current, **patch})
        with self._operation(f"update {table}"):
            return self.store.update(table, patch, id=record_id)

    def delete(self, table, record_id):
        with self._operation(f"delete {table}"):
            return self.store.delete(table, id=record_id)

    def update_vehicle_status(self, vehicle_id, status, notes=None, checklist=None):
        status = VehicleStatus(status)
        with self._operation("vehicle status"):
            count = self.store.update("vehicles", {"status": status}, id=vehicle_id)
            if count:
                self._log_vehicle(vehicle_id, status, notes, checklist)
            return count

    def update_vehicle_health(self, vehicle_id, health):
        return self.update("vehicles", vehicle_id, {"health_status": HealthStatus(health)})

    def update_battery_status(self, battery_id, status):
        return self.update("batteries", battery_id, {"status": BatteryStatus(status)})

    def _log_vehicle(self, vehicle_id, status, notes=None, checklist=None, booking_id=None):
        try:
            self.store.insert("vehicle_logs", [{
                "vehicle_id": vehicle_id,
                "date": _now(),
                "status": status,
                "notes": notes,
                "checklist": checklist or None,
                "booking_id": booking_id,
            }])
        except StoreError as e:
            logger.error("Vehicle log for %s not written: %s", vehicle_id, e)

    # --- IMPORT ---

    def import_legacy(self, rows):
        with self._operation("legacy import"):
            return LegacyImporter(self.store, self.snapshot.city_id).run(rows)
