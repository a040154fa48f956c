from datetime import date

import pytest

from errors import StoreError
from schemas import VehicleStatus


def test_insert_returns_rows_with_generated_ids(store):
    rows = store.insert("cities", [{"name": "Bengaluru"}, {"name": "Pune"}])
    assert [r["name"] for r in rows] == ["Bengaluru", "Pune"]
    assert rows[0]["id"] < rows[1]["id"]


def test_insert_converts_enums_and_dates(store):
    row = store.insert("bookings", [{"customer_name": "Asha", "status": "Active", "start_date": date(2024, 3, 5)}])[0]
    assert row["start_date"] == "2024-03-05"
    vehicle = store.insert("vehicles", [{"model_name": "E1", "status": VehicleStatus.RENTED}])[0]
    assert vehicle["status"] == "Rented"


def test_select_orders_and_filters(fleet):
    assert [v["id"] for v in fleet.select("vehicles", order_by="id", descending=True)] == [6, 5]
    assert [b["id"] for b in fleet.select("batteries", id=[9, 10], order_by="id")] == [9, 10]
    assert fleet.select("vehicles", status="Rented") == []
    assert fleet.select_one("vehicles", id=404) is None
    assert fleet.select_one("cities", name="Pune")["id"] == 2


def test_update_and_delete_report_row_counts(fleet):
    assert fleet.update("vehicles", {"status": "Maintenance"}, id=5) == 1
    assert fleet.select_one("vehicles", id=5)["status"] == "Maintenance"
    assert fleet.update("vehicles", {"status": "Maintenance"}, id=404) == 0
    assert fleet.delete("batteries", id=10) == 1
    assert fleet.select_one("batteries", id=10) is None


def test_unfiltered_writes_are_refused(fleet):
    with pytest.raises(StoreError):
        fleet.update("vehicles", {"status": "Rented"})
    with pytest.raises(StoreError):
        fleet.delete("vehicles")


def test_bad_table_and_column_raise_store_error(store):
    with pytest.raises(StoreError):
        store.select("spaceships")
    with pytest.raises(StoreError):
        store.select("vehicles", colour="red")
    with pytest.raises(StoreError) as excinfo:
        store.insert("vehicles", [{"wheels": 2}])
    assert excinfo.value.table == "vehicles"
    assert excinfo.value.operation == "insert"


def test_change_feed_announces_committed_writes(store):
    events = []
    unsubscribe = store.subscribe(events.append)
    city = store.insert("cities", [{"name": "Mysuru"}])[0]
    store.update("cities", {"name": "Mysore"}, id=city["id"])
    store.update("cities", {"name": "Nowhere"}, id=999)
    store.delete("cities", id=city["id"])
    unsubscribe()
    store.insert("cities", [{"name": "Hubli"}])

    assert [(e.table, e.operation) for e in events] == [
        ("cities", "insert"), ("cities", "update"), ("cities", "delete"),
    ]


def test_failing_listener_does_not_fail_the_write(store):
    def broken(event):
        raise RuntimeError("listener down")

    store.subscribe(broken)
    assert store.insert("cities", [{"name": "Goa"}])[0]["name"] == "Goa"
