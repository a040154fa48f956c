"""Vehicle and battery updates implied by booking lifecycle events.

Everything here is pure: functions take ids and return the row patches to
write. Nothing reads or writes the store.
"""
from dataclasses import dataclass, field

from schemas import BatteryStatus, BookingStatus, HealthStatus, VehicleStatus


@dataclass(frozen=True)
class InventoryUpdate:
    table: str
    row_id: int
    patch: dict = field(hash=False)


def vehicle_update(vehicle_id, **patch):
    return InventoryUpdate("vehicles", vehicle_id, patch)


def battery_update(battery_id, **patch):
    return InventoryUpdate("batteries", battery_id, patch)


def _acquire(vehicle_id, battery_id):
    updates = []
    if vehicle_id:
        updates.append(vehicle_update(vehicle_id, status=VehicleStatus.RENTED, battery_id=battery_id))
    if battery_id:
        updates.append(battery_update(battery_id, status=BatteryStatus.IN_USE, assigned_vehicle_id=vehicle_id))
    return updates


def _release(vehicle_id, battery_id, vehicle_status=VehicleStatus.AVAILABLE):
    updates = []
    if vehicle_id:
        updates.append(vehicle_update(vehicle_id, status=vehicle_status, battery_id=None))
    if battery_id:
        updates.append(battery_update(battery_id, status=BatteryStatus.AVAILABLE, assigned_vehicle_id=None))
    return updates


def for_create_booking(vehicle_id, battery_id):
    return _acquire(vehicle_id, battery_id)


def for_return(vehicle_id, battery_id, vehicle_status=VehicleStatus.AVAILABLE):
    return _release(vehicle_id, battery_id, vehicle_status)


def for_pause(vehicle_id, battery_id):
    return _release(vehicle_id, battery_id)


def for_resume(vehicle_id, battery_id):
    return _acquire(vehicle_id, battery_id)


def for_battery_change(vehicle_id, old_battery_id, new_battery_id):
    updates = []
    if old_battery_id and old_battery_id != new_battery_id:
        updates.append(battery_update(old_battery_id, status=BatteryStatus.AVAILABLE, assigned_vehicle_id=None))
    updates.append(battery_update(new_battery_id, status=BatteryStatus.IN_USE, assigned_vehicle_id=vehicle_id))
    if vehicle_id:
        updates.append(vehicle_update(vehicle_id, battery_id=new_battery_id))
    return updates


def for_vehicle_swap(old_vehicle_id, new_vehicle_id, battery_id):
    updates = []
    if old_vehicle_id and old_vehicle_id != new_vehicle_id:
        updates.append(vehicle_update(old_vehicle_id, status=VehicleStatus.AVAILABLE, battery_id=None))
    updates.append(vehicle_update(new_vehicle_id, status=VehicleStatus.RENTED, battery_id=battery_id))
    if battery_id:
        updates.append(battery_update(battery_id, assigned_vehicle_id=new_vehicle_id))
    return updates


def for_maintenance_opened(vehicle_id):
    return [vehicle_update(vehicle_id, status=VehicleStatus.MAINTENANCE)] if vehicle_id else []


def for_maintenance_completed(vehicle_id):
    if not vehicle_id:
        return []
    return [vehicle_update(vehicle_id, status=VehicleStatus.AVAILABLE, health_status=HealthStatus.GOOD)]


def drop_dangling(updates, known_ids):
    """Split updates into those whose row exists in ``known_ids`` and those that dangle."""
    kept, skipped = [], []
    for update in updates:
        if update.row_id in known_ids.get(update.table, ()):
            kept.append(update)
        else:
            skipped.append(update)
    return kept, skipped


# --- BOOKING STATUS MACHINE ---

ALLOWED_TRANSITIONS = {
    BookingStatus.ACTIVE: {BookingStatus.PAUSED, BookingStatus.RETURNED},
    BookingStatus.PAUSED: {BookingStatus.ACTIVE, BookingStatus.RETURNED},
    BookingStatus.PENDING_PAYMENT: {BookingStatus.ACTIVE, BookingStatus.RETURNED},
    BookingStatus.RETURNED: set(),
}


def can_transition(current, target):
    # Re-writing the same status (e.g. to record a checklist) is not a move
    if current == target:
        return current != BookingStatus.RETURNED
    return target in ALLOWED_TRANSITIONS[BookingStatus(current)]
