import gc
from datetime import date

import pytest
from pydantic import ValidationError

from errors import BookingNotFoundError, InvalidTransitionError, StoreError
from schemas import (
    BatteryStatus, BookingStatus, ChangeBatteryRequest, CreateBookingRequest,
    CreateMaintenanceJobRequest, ExtendBookingRequest, HealthStatus, PauseBookingRequest,
    ResumeBookingRequest, ReturnChecklist, SettleDueRequest, SwapVehicleRequest, VehicleStatus,
)
from services import FleetConsole


def booking_request(**overrides):
    data = dict(
        customer_name="Ravi Kumar", customer_phone="9876543210", vehicle_id=5, battery_id=9, city_id=1,
        start_date=date(2024, 3, 1), end_date=date(2024, 3, 31), daily_rent=150, total_rent=4500,
        security_deposit=2000, amount_collected=6500,
    )
    data.update(overrides)
    return CreateBookingRequest(**data)


def vehicle(console, vehicle_id):
    return console.store.select_one("vehicles", id=vehicle_id)


def battery(console, battery_id):
    return console.store.select_one("batteries", id=battery_id)


def booking(console, booking_id):
    return console.store.select_one("bookings", id=booking_id)


@pytest.fixture
def booked(console):
    result = console.create_booking(booking_request())
    return result.record_id


def test_create_booking_rents_vehicle_and_battery(console, booked):
    assert booking(console, booked)["status"] == "Active"
    assert vehicle(console, 5)["status"] == "Rented"
    assert vehicle(console, 5)["battery_id"] == 9
    assert battery(console, 9)["status"] == "InUse"
    assert battery(console, 9)["assigned_vehicle_id"] == 5
    assert console.snapshot.booking(booked).status == BookingStatus.ACTIVE


def test_pause_releases_inventory(console, booked):
    console.pause_booking(PauseBookingRequest(booking_id=booked, reason="Customer travelling"))

    row = booking(console, booked)
    assert row["status"] == "Paused"
    assert row["pause_reason"] == "Customer travelling"
    assert row["paused_at"]
    assert (vehicle(console, 5)["status"], vehicle(console, 5)["battery_id"]) == ("Available", None)
    assert (battery(console, 9)["status"], battery(console, 9)["assigned_vehicle_id"]) == ("Available", None)


def test_resume_without_battery_only_touches_vehicle(console, booked):
    console.pause_booking(PauseBookingRequest(booking_id=booked, reason="Break"))
    result = console.resume_booking(ResumeBookingRequest(booking_id=booked, vehicle_id=5, battery_id=None))

    row = booking(console, booked)
    assert (row["status"], row["vehicle_id"], row["battery_id"]) == ("Active", 5, None)
    assert (vehicle(console, 5)["status"], vehicle(console, 5)["battery_id"]) == ("Rented", None)
    assert [u.table for u in result.applied] == ["vehicles"]
    assert battery(console, 9)["status"] == "Available"


def test_return_without_checklist_frees_everything(console, booked):
    result = console.update_booking_status(booked, BookingStatus.RETURNED)
    assert result.consistent
    assert booking(console, booked)["status"] == "Returned"
    assert (vehicle(console, 5)["status"], vehicle(console, 5)["battery_id"]) == ("Available", None)
    assert (battery(console, 9)["status"], battery(console, 9)["assigned_vehicle_id"]) == ("Available", None)


def test_return_with_damage_sends_vehicle_to_maintenance(console, booked):
    checklist = ReturnChecklist(items={"Broken Mirror": True}, fine=300)
    console.return_booking(booked, checklist)
    assert vehicle(console, 5)["status"] == "Maintenance"
    assert battery(console, 9)["status"] == "Available"


def test_return_target_status_can_be_overridden(console, booked):
    checklist = ReturnChecklist(items={"Broken Mirror": True}, target_vehicle_status=VehicleStatus.AVAILABLE)
    console.return_booking(booked, checklist)
    assert vehicle(console, 5)["status"] == "Available"


def test_checklist_amounts_add_to_stored_totals(fleet):
    console = FleetConsole(fleet, listen=False)
    console.refresh()
    booking_id = console.create_booking(booking_request(amount_collected=1000)).record_id
    # Written behind the console's back: the status change must read the row fresh
    fleet.update("bookings", {"amount_collected": 1500, "fine_amount": 100}, id=booking_id)

    console.return_booking(booking_id, ReturnChecklist(fine=300, settlement_adjustment=5500, notes="Scratched"))
    row = booking(console, booking_id)
    assert row["fine_amount"] == 400
    assert row["amount_collected"] == 7000
    assert row["post_ride_notes"] == "Scratched"


def test_returned_booking_is_terminal(console, booked):
    console.return_booking(booked)
    with pytest.raises(InvalidTransitionError):
        console.update_booking_status(booked, BookingStatus.ACTIVE)
    with pytest.raises(InvalidTransitionError):
        console.pause_booking(PauseBookingRequest(booking_id=booked, reason="Late"))
    with pytest.raises(InvalidTransitionError):
        console.change_battery_for_booking(ChangeBatteryRequest(booking_id=booked, new_battery_id=10))


def test_unknown_booking_raises(console):
    with pytest.raises(BookingNotFoundError):
        console.update_booking_status(404, BookingStatus.RETURNED)
    with pytest.raises(BookingNotFoundError):
        console.settle_booking_due(SettleDueRequest(booking_id=404, amount=10))


def test_extend_and_settle_are_additive(console, booked):
    console.extend_booking(ExtendBookingRequest(booking_id=booked, extra_rent=1050, collection=500,
                                                new_end_date=date(2024, 4, 7)))
    row = booking(console, booked)
    assert (row["total_rent"], row["amount_collected"], row["end_date"]) == (5550, 7000, "2024-04-07")

    console.settle_booking_due(SettleDueRequest(booking_id=booked, amount=550))
    row = booking(console, booked)
    assert (row["total_rent"], row["amount_collected"], row["end_date"]) == (5550, 7550, "2024-04-07")

    console.settle_booking_due(SettleDueRequest(booking_id=booked, amount=0, extra_rent=150,
                                                new_end_date=date(2024, 4, 8)))
    row = booking(console, booked)
    assert (row["total_rent"], row["amount_collected"], row["end_date"]) == (5700, 7550, "2024-04-08")


def test_change_battery_swaps_assignment(console, booked):
    console.change_battery_for_booking(ChangeBatteryRequest(booking_id=booked, new_battery_id=10))
    assert (battery(console, 9)["status"], battery(console, 9)["assigned_vehicle_id"]) == ("Available", None)
    assert (battery(console, 10)["status"], battery(console, 10)["assigned_vehicle_id"]) == ("InUse", 5)
    assert booking(console, booked)["battery_id"] == 10
    assert vehicle(console, 5)["battery_id"] == 10


def test_swap_vehicle_moves_booking_and_battery(console, booked):
    console.swap_vehicle_for_booking(SwapVehicleRequest(booking_id=booked, new_vehicle_id=6,
                                                        reason="Puncture", fine_adjustment=250))
    row = booking(console, booked)
    assert (row["vehicle_id"], row["fine_amount"]) == (6, 250)
    assert (vehicle(console, 5)["status"], vehicle(console, 5)["battery_id"]) == ("Available", None)
    assert (vehicle(console, 6)["status"], vehicle(console, 6)["battery_id"]) == ("Rented", 9)
    assert battery(console, 9)["assigned_vehicle_id"] == 6
    logs = console.snapshot.vehicle_logs(vehicle_id=5)
    assert logs[0].notes == "Swapped out: Puncture"
    assert logs[0].booking_id == booked


def test_dangling_battery_is_skipped(console):
    result = console.create_booking(booking_request(battery_id=999))
    assert booking(console, result.record_id)["battery_id"] == 999
    assert vehicle(console, 5)["status"] == "Rented"
    assert [(u.table, u.row_id) for u in result.skipped] == [("batteries", 999)]
    assert result.consistent


def test_failed_booking_insert_writes_nothing_else(console, monkeypatch):
    def failing_insert(table, rows):
        raise StoreError(table, "insert", "violates check constraint")

    monkeypatch.setattr(console.store, "insert", failing_insert)
    with pytest.raises(StoreError):
        console.create_booking(booking_request())
    assert vehicle(console, 5)["status"] == "Available"
    assert battery(console, 9)["status"] == "Available"


def test_partial_inventory_failure_is_reported_not_rolled_back(console, monkeypatch):
    real_update = console.store.update

    def flaky_update(table, patch, **filters):
        if table == "batteries":
            raise StoreError(table, "update", "connection reset")
        return real_update(table, patch, **filters)

    monkeypatch.setattr(console.store, "update", flaky_update)
    result = console.create_booking(booking_request())

    assert not result.consistent
    assert [(u.table, u.row_id) for u, _ in result.failed] == [("batteries", 9)]
    assert booking(console, result.record_id)["status"] == "Active"
    assert vehicle(console, 5)["status"] == "Rented"
    assert battery(console, 9)["status"] == "Available"


def test_change_feed_refreshes_snapshot(console):
    console.store.update("vehicles", {"status": "Maintenance"}, id=6)
    assert console.snapshot.vehicle(6).status == VehicleStatus.MAINTENANCE


def test_closed_console_stops_listening(console):
    console.close()
    console.store.update("vehicles", {"status": "Maintenance"}, id=6)
    assert console.snapshot.vehicle(6).status == VehicleStatus.AVAILABLE


def test_maintenance_job_open_and_complete(console):
    result = console.open_maintenance_job(CreateMaintenanceJobRequest(
        vehicle_id=6, city_id=1, priority="High", issue_description="Brake noise"))
    assert vehicle(console, 6)["status"] == "Maintenance"
    job = console.snapshot.job(result.record_id)
    assert job.started_at

    console.update_job_status(job.id, "Completed")
    assert vehicle(console, 6)["status"] == "Available"
    assert vehicle(console, 6)["health_status"] == HealthStatus.GOOD.value
    assert console.snapshot.job(job.id).completed_at

    console.update_job_status(job.id, "In Progress")
    assert console.snapshot.job(job.id).completed_at is None


def test_vehicle_status_change_is_logged(console):
    console.update_vehicle_status(5, VehicleStatus.MAINTENANCE, notes="Battery latch loose",
                                  checklist={"Tyres": True})
    log = console.snapshot.vehicle_logs(vehicle_id=5)[0]
    assert log.status == VehicleStatus.MAINTENANCE
    assert log.checklist == {"Tyres": True}


def test_admin_crud(console):
    rows = console.add("cities", {"name": "Chennai"})
    city_id = rows[0]["id"]
    assert any(c.name == "Chennai" for c in console.snapshot.cities())
    console.update("cities", city_id, {"name": "Madras"})
    assert any(c.name == "Madras" for c in console.snapshot.cities())
    console.update_battery_status(10, BatteryStatus.CHARGING)
    assert console.snapshot.battery(10).status == BatteryStatus.CHARGING
    console.update_vehicle_health(6, "Attention")
    assert console.snapshot.vehicle(6).health_status == HealthStatus.ATTENTION
    console.delete("cities", city_id)
    assert all(c.id != city_id for c in console.snapshot.cities())


def test_returning_a_paused_booking_leaves_reassigned_inventory_alone(console, booked):
    console.pause_booking(PauseBookingRequest(booking_id=booked, reason="Out of town"))
    second = console.create_booking(booking_request(customer_name="Meena")).record_id

    result = console.return_booking(booked)
    assert booking(console, booked)["status"] == "Returned"
    assert result.applied == []
    assert booking(console, second)["status"] == "Active"
    assert (vehicle(console, 5)["status"], vehicle(console, 5)["battery_id"]) == ("Rented", 9)
    assert (battery(console, 9)["status"], battery(console, 9)["assigned_vehicle_id"]) == ("InUse", 5)


def test_swap_reason_is_optional(console, booked):
    console.swap_vehicle_for_booking(SwapVehicleRequest(booking_id=booked, new_vehicle_id=6))
    assert booking(console, booked)["vehicle_id"] == 6
    assert console.snapshot.vehicle_logs(vehicle_id=5)[0].notes == "Swapped out: "


def test_admin_rows_the_tables_allow_keep_the_snapshot_loading(console):
    rows = console.add("customers", {"phone": "9999999999", "city_id": 1})
    console.update("batteries", 9, {"charge_percentage": 120})

    console.refresh()
    assert console.snapshot.customers()[0].id == rows[0]["id"]
    assert console.snapshot.customers()[0].name is None
    assert console.snapshot.battery(9).charge_percentage == 120


def test_admin_writes_that_would_not_load_are_refused(console):
    with pytest.raises(ValidationError):
        console.add("vehicles", {"model_name": "Yana X", "city_id": 1, "status": "Flying"})
    with pytest.raises(ValidationError):
        console.update("vehicles", 5, {"health_status": "Wobbly"})

    assert len(console.store.select("vehicles")) == 2
    assert vehicle(console, 5)["health_status"] == "Good"
    console.refresh()


def test_dropped_console_leaves_the_change_feed(fleet):
    consoles = [FleetConsole(fleet) for _ in range(5)]
    assert fleet.listener_count() == 5

    consoles[0].close()
    del consoles
    gc.collect()
    assert fleet.listener_count() == 0
    fleet.update("vehicles", {"status": "Maintenance"}, id=6)
    assert fleet.select_one("vehicles", id=6)["status"] == "Maintenance"
