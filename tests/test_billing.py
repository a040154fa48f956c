from datetime import date

import billing
from schemas import Booking, VehicleStatus


def make_booking(**fields):
    data = dict(id=1, customer_name="Ravi Kumar", status="Active", start_date=date(2024, 5, 1),
                end_date=date(2024, 5, 10), total_rent=1500, security_deposit=2000, amount_collected=3000)
    data.update(fields)
    return Booking(**data)


def test_pending_due_includes_fines_and_floors_at_zero():
    assert billing.pending_due(make_booking()) == 500
    assert billing.pending_due(make_booking(fine_amount=300)) == 800
    assert billing.pending_due(make_booking(amount_collected=9000)) == 0


def test_overdue_only_counts_active_bookings_past_end_date():
    assert billing.overdue_stats(make_booking(), today=date(2024, 5, 13)) == {"days": 3, "fine": 900}
    assert billing.overdue_stats(make_booking(), today=date(2024, 5, 10)) == {"days": 0, "fine": 0}
    assert billing.overdue_stats(make_booking(status="Returned"), today=date(2024, 6, 1)) == {"days": 0, "fine": 0}


def test_checklist_fine_sums_flagged_items():
    flags = {"Broken Mirror": True, "Body Scratches": True, "Key Missing": False}
    assert billing.checklist_fine(flags) == 800
    assert billing.checklist_fine({"Wobbly seat": True}, items=[{"label": "Wobbly seat", "fine": 75}]) == 75


def test_return_checklist_settles_balance_and_fines():
    checklist = billing.build_return_checklist(make_booking(), {"Tyre Puncture": True}, notes="Flat rear")
    assert checklist.fine == 200
    assert checklist.settlement_adjustment == 700
    assert checklist.resolved_vehicle_status() == VehicleStatus.MAINTENANCE

    clean = billing.build_return_checklist(make_booking(), {"Tyre Puncture": False})
    assert clean.fine == 0
    assert clean.resolved_vehicle_status() == VehicleStatus.AVAILABLE


def test_revenue_summary_filters_by_start_date():
    bookings = [
        make_booking(id=1, start_date=date(2024, 4, 20), amount_collected=1000),
        make_booking(id=2, start_date=date(2024, 5, 2), amount_collected=3500),
        make_booking(id=3, start_date=date(2024, 5, 20), amount_collected=2000),
    ]
    summary = billing.revenue_summary(bookings, date(2024, 5, 1), date(2024, 5, 31))
    assert summary == {"bookings": 2, "collected": 5500, "pending_dues": 1500}


def test_format_date():
    assert billing.format_date(date(2024, 3, 5)) == "05-03-2024"
    assert billing.format_date("2024-03-05") == "05-03-2024"
    assert billing.format_date(None) == "-"
    assert billing.format_date("someday") == "someday"
