from datetime import date, datetime

import config
from schemas import BookingStatus, ReturnChecklist


def pending_due(booking):
    """What the customer still owes; overpayment counts as zero."""
    owed = booking.total_rent + booking.security_deposit + (booking.fine_amount or 0)
    return max(0, owed - (booking.amount_collected or 0))


def overdue_stats(booking, today=None):
    today = today or date.today()
    if booking.status != BookingStatus.ACTIVE or booking.end_date is None or today <= booking.end_date:
        return {"days": 0, "fine": 0}
    days = (today - booking.end_date).days
    return {"days": days, "fine": days * config.LATE_FINE_PER_DAY}


def checklist_fine(flags, items=None):
    items = config.POST_RIDE_CHECKLIST_ITEMS if items is None else items
    return sum(item["fine"] for item in items if flags.get(item["label"]))


def build_return_checklist(booking, flags, notes="", items=None, payment_transaction_id=None):
    """Checklist for ending a ride: flagged items add fines and the full balance is settled."""
    fine = checklist_fine(flags, items)
    return ReturnChecklist(
        items=dict(flags),
        fine=fine,
        notes=notes,
        settlement_adjustment=pending_due(booking) + fine,
        payment_transaction_id=payment_transaction_id,
    )


def revenue_summary(bookings, start=None, end=None):
    selected = [
        b for b in bookings
        if (start is None or (b.start_date and b.start_date >= start))
        and (end is None or (b.start_date and b.start_date <= end))
    ]
    return {
        "bookings": len(selected),
        "collected": sum(b.amount_collected for b in selected),
        "pending_dues": sum(pending_due(b) for b in selected),
    }


def format_date(value):
    """DD-MM-YYYY for display, '-' when missing."""
    if not value:
        return "-"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    return value.strftime("%d-%m-%Y")
