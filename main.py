import logging
from datetime import date, timedelta

import pandas as pd
import streamlit as st
from pydantic import ValidationError

import billing
import config
from database import get_db_engine, init_db
from errors import FleetOpsError, SnapshotError
from exports import export_filename, to_csv_text
from importers import parse_battery_lines, parse_customer_lines, parse_legacy_csv, parse_vehicle_lines
from schemas import (
    BatteryStatus, BookingStatus, ChangeBatteryRequest, CreateBookingRequest,
    CreateMaintenanceJobRequest, ExtendBookingRequest, MaintenanceJobStatus, PauseBookingRequest,
    PaymentMode, ResumeBookingRequest, SettleDueRequest, SwapVehicleRequest, VehicleStatus,
)
from services import FleetConsole
from store import RemoteStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# --- SETUP ---

@st.cache_resource
def get_store():
    """One store per server process, so every session shares the change feed."""
    engine = get_db_engine()
    init_db(engine)
    return RemoteStore(engine)


def get_console():
    if "console" not in st.session_state:
        console = FleetConsole(get_store())
        try:
            console.refresh()
        except SnapshotError as e:
            console.close()
            st.error(f"Could not load fleet data: {e}")
            st.stop()
        st.session_state.console = console
    return st.session_state.console


def run_action(action, success_message):
    """Run a console operation and report the outcome. Returns True on success."""
    try:
        result = action()
    except (FleetOpsError, ValidationError) as e:
        st.error(f"Error: {e}")
        return False
    failed = getattr(result, "failed", None)
    if failed:
        st.warning("Saved, but some inventory updates failed. Fix them from Admin: "
                   + "; ".join(f"{u.table} #{u.row_id}: {err}" for u, err in failed))
    else:
        st.success(success_message)
    return True


def label_vehicle(v):
    return f"#{v.id} {v.model_name} ({v.status.value})"


def label_battery(b):
    return f"#{b.id} {b.serial_number} ({b.charge_percentage}%)"


def label_booking(b):
    return f"#{b.id} {b.customer_name} | vehicle {b.vehicle_id or '-'} | {b.status.value}"


# --- UI PAGES ---

def page_dashboard(console):
    snap = console.snapshot
    city_id = snap.city_id
    st.title(f"🛵 {config.FLEET_NAME} Dashboard")

    bookings = snap.bookings(city_id)
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Active Bookings", len([b for b in bookings if b.status == BookingStatus.ACTIVE]))
    col2.metric("Available Vehicles", len([v for v in snap.vehicles(city_id) if v.status == VehicleStatus.AVAILABLE]))
    col3.metric("Open Jobs", snap.open_job_count(city_id))
    col4.metric("Low Stock Parts", len(snap.low_stock(city_id)))

    st.markdown("---")
    st.subheader("💰 Revenue")
    col1, col2 = st.columns(2)
    start = col1.date_input("From", value=None, key="rev_from")
    end = col2.date_input("To", value=None, key="rev_to")
    summary = billing.revenue_summary(bookings, start, end)
    col1, col2, col3 = st.columns(3)
    col1.metric("Bookings", summary["bookings"])
    col2.metric("Collected", f"₹{summary['collected']:,.0f}")
    col3.metric("Pending Dues", f"₹{summary['pending_dues']:,.0f}")

    st.markdown("---")
    st.subheader(f"⏰ Overdue Returns (₹{config.LATE_FINE_PER_DAY}/day)")
    overdue = []
    for b in bookings:
        stats = billing.overdue_stats(b)
        if stats["days"]:
            overdue.append({
                "Booking": b.id, "Customer": b.customer_name, "End Date": billing.format_date(b.end_date),
                "Days": stats["days"], "Late Fine": stats["fine"], "Due": billing.pending_due(b) + stats["fine"],
            })
    if overdue:
        st.dataframe(pd.DataFrame(overdue), use_container_width=True)
    else:
        st.info("No overdue bookings.")

    st.subheader("Fleet Health")
    st.write(snap.health_counts(city_id) or "No vehicles in this city.")


def page_operations(console):
    snap = console.snapshot
    city_id = snap.city_id
    st.title("🔄 Operations")
    tab_new, tab_manage = st.tabs(["New Booking", "Manage Bookings"])

    available_vehicles = [v for v in snap.vehicles(city_id) if v.status == VehicleStatus.AVAILABLE]
    available_batteries = [b for b in snap.batteries(city_id) if b.status == BatteryStatus.AVAILABLE]

    with tab_new:
        rates = snap.rates(city_id)
        with st.form("new_booking"):
            col1, col2 = st.columns(2)
            name = col1.text_input("Customer Name")
            phone = col2.text_input("Customer Phone", max_chars=10)
            vehicle = st.selectbox("Vehicle", available_vehicles, format_func=label_vehicle)
            battery = st.selectbox("Battery", [None] + available_batteries,
                                   format_func=lambda b: "No battery" if b is None else label_battery(b))
            rate = st.selectbox("Rate Plan", rates, format_func=lambda r: f"{r.client_name or 'Standard'} ₹{r.daily_rent}/day")
            col1, col2 = st.columns(2)
            start = col1.date_input("Start Date", value=date.today())
            end = col2.date_input("End Date", value=date.today() + timedelta(days=7))
            collected = st.number_input("Amount Collected", min_value=0.0, value=0.0)
            mode = st.selectbox("Mode of Payment", list(PaymentMode), format_func=lambda m: m.value)
            submit = st.form_submit_button("Create Booking")

        if submit:
            if vehicle is None:
                st.error("No vehicle available in this city.")
            else:
                daily = rate.daily_rent if rate else 0
                days = max(1, (end - start).days)
                run_action(lambda: console.create_booking(CreateBookingRequest(
                    customer_name=name, customer_phone=phone, vehicle_id=vehicle.id,
                    battery_id=battery.id if battery else None, city_id=city_id,
                    start_date=start, end_date=end, daily_rent=daily, total_rent=daily * days,
                    security_deposit=rate.security_deposit if rate else 0,
                    amount_collected=collected, mode_of_payment=mode,
                )), f"Booking created for {name}.")

    with tab_manage:
        open_bookings = [b for b in snap.bookings(city_id) if b.status != BookingStatus.RETURNED]
        if not open_bookings:
            st.info("No open bookings in this city.")
            return
        booking = st.selectbox("Booking", open_bookings, format_func=label_booking)
        st.write(f"**Due:** ₹{billing.pending_due(booking):,.0f} | **Ends:** {billing.format_date(booking.end_date)}")
        action = st.radio("Action", ["End Ride", "Pause", "Resume", "Change Battery", "Swap Vehicle", "Extend", "Settle Due"],
                          horizontal=True)

        if action == "End Ride":
            labels = [item["label"] for item in config.POST_RIDE_CHECKLIST_ITEMS]
            flagged = st.multiselect("Damage Checklist", labels)
            notes = st.text_area("Notes")
            checklist = billing.build_return_checklist(booking, {label: True for label in flagged}, notes)
            st.write(f"Checklist fine: ₹{checklist.fine} | Settlement due: ₹{checklist.settlement_adjustment:,.0f}")
            if st.button("End Ride"):
                if run_action(lambda: console.return_booking(booking.id, checklist), "Ride ended."):
                    st.rerun()

        elif action == "Pause":
            reason = st.text_input("Pause Reason")
            if st.button("Pause Booking"):
                if run_action(lambda: console.pause_booking(PauseBookingRequest(booking_id=booking.id, reason=reason)),
                              "Booking paused."):
                    st.rerun()

        elif action == "Resume":
            vehicles = available_vehicles + [v for v in snap.vehicles(city_id) if v.id == booking.vehicle_id
                                              and v.status != VehicleStatus.AVAILABLE]
            vehicle = st.selectbox("Vehicle", vehicles, format_func=label_vehicle, key="resume_vehicle")
            battery = st.selectbox("Battery", [None] + available_batteries, key="resume_battery",
                                   format_func=lambda b: "No battery" if b is None else label_battery(b))
            if st.button("Resume Booking") and vehicle is not None:
                if run_action(lambda: console.resume_booking(ResumeBookingRequest(
                        booking_id=booking.id, vehicle_id=vehicle.id, battery_id=battery.id if battery else None)),
                        "Booking resumed."):
                    st.rerun()

        elif action == "Change Battery":
            battery = st.selectbox("New Battery", available_batteries, format_func=label_battery)
            if st.button("Change Battery") and battery is not None:
                if run_action(lambda: console.change_battery_for_booking(ChangeBatteryRequest(
                        booking_id=booking.id, new_battery_id=battery.id)), "Battery changed."):
                    st.rerun()

        elif action == "Swap Vehicle":
            vehicle = st.selectbox("New Vehicle", available_vehicles, format_func=label_vehicle, key="swap_vehicle")
            reason = st.text_input("Reason for Swap", placeholder="e.g. Maintenance, Puncture, Upgrade")
            fine = st.number_input("Damage Fine (If any)", min_value=0.0, value=0.0)
            if st.button("Confirm Swap") and vehicle is not None:
                if run_action(lambda: console.swap_vehicle_for_booking(SwapVehicleRequest(
                        booking_id=booking.id, new_vehicle_id=vehicle.id, reason=reason, fine_adjustment=fine)),
                        "Vehicle swapped."):
                    st.rerun()

        elif action == "Extend":
            new_end = st.date_input("New End Date", value=(booking.end_date or date.today()) + timedelta(days=7))
            extra = st.number_input("Extra Rent", min_value=0.0, value=0.0)
            collection = st.number_input("Collected Now", min_value=0.0, value=0.0)
            if st.button("Extend Booking"):
                if run_action(lambda: console.extend_booking(ExtendBookingRequest(
                        booking_id=booking.id, extra_rent=extra, collection=collection, new_end_date=new_end)),
                        "Booking extended."):
                    st.rerun()

        elif action == "Settle Due":
            amount = st.number_input("Amount", min_value=0.0, value=float(billing.pending_due(booking)))
            if st.button("Settle"):
                if run_action(lambda: console.settle_booking_due(SettleDueRequest(booking_id=booking.id, amount=amount)),
                              "Payment recorded."):
                    st.rerun()


def page_maintenance(console):
    snap = console.snapshot
    city_id = snap.city_id
    st.title("🛠️ Maintenance")

    with st.form("new_job"):
        vehicle = st.selectbox("Vehicle", snap.vehicles(city_id), format_func=label_vehicle)
        priority = st.selectbox("Priority", ["Low", "Medium", "High", "Critical"], index=1)
        issue = st.text_area("Issue Description")
        technician = st.text_input("Assigned Technician")
        cost = st.number_input("Estimated Cost", min_value=0.0, value=0.0)
        submit = st.form_submit_button("Open Job")
    if submit and vehicle is not None:
        if run_action(lambda: console.open_maintenance_job(CreateMaintenanceJobRequest(
                vehicle_id=vehicle.id, city_id=city_id, priority=priority, issue_description=issue,
                assigned_technician=technician or None, estimated_cost=cost)), "Job opened."):
            st.rerun()

    st.markdown("---")
    jobs = snap.maintenance_jobs(city_id)
    if not jobs:
        st.info("No maintenance jobs in this city.")
    for job in jobs:
        with st.expander(f"Job #{job.id} | Vehicle {job.vehicle_id} | {job.priority} | {job.status.value}"):
            st.write(job.issue_description or "")
            statuses = list(MaintenanceJobStatus)
            new_status = st.selectbox("Status", statuses, index=statuses.index(job.status),
                                      format_func=lambda s: s.value, key=f"job_{job.id}")
            if new_status != job.status and st.button("Save Status", key=f"job_btn_{job.id}"):
                if run_action(lambda: console.update_job_status(job.id, new_status), f"Job {job.id} updated."):
                    st.rerun()

    st.subheader("Low Stock")
    parts = {p.id: p for p in snap.spare_parts()}
    low = [{"Part": parts[s.part_id].name, "Quantity": s.quantity, "Minimum": parts[s.part_id].min_stock_level}
           for s in snap.low_stock(city_id)]
    if low:
        st.dataframe(pd.DataFrame(low), use_container_width=True)
    else:
        st.info("All parts above minimum stock.")


def page_admin(console):
    snap = console.snapshot
    st.title("⚙️ Admin")
    tab_import, tab_bulk, tab_export, tab_cities = st.tabs(["Legacy Import", "Bulk Add", "Export", "Cities"])

    with tab_import:
        st.caption("Headers: Customer Name, VehicleID, BatteryID, City ID, Start Date, End Date, Status, Total Rent, "
                   "Total Rent Collected Online, Total Rent Collected Cash, Total Security Collected, Fines")
        upload = st.file_uploader("Legacy CSV", type=["csv"])
        if upload is not None:
            rows = parse_legacy_csv(upload.getvalue().decode("utf-8", errors="replace"))
            st.dataframe(pd.DataFrame([r.model_dump(mode="json") for r in rows]), use_container_width=True)
            if not rows:
                st.error("No valid data found.")
            elif st.button("Import"):
                try:
                    summary = console.import_legacy(rows)
                except FleetOpsError as e:
                    st.error(f"Import failed: {e}")
                else:
                    st.success(f"Import successful! {summary.processed} records processed. "
                               f"Created {summary.seeded_vehicles} vehicles, {summary.seeded_batteries} batteries.")

    with tab_bulk:
        kind = st.radio("Type", ["Vehicles", "Batteries", "Customers"], horizontal=True)
        hints = {
            "Vehicles": "model, city name, status",
            "Batteries": "serial, city name, charge %, status",
            "Customers": "name, phone, city name, aadhar",
        }
        text = st.text_area("Paste CSV data here...", placeholder=hints[kind], height=200)
        if st.button("Add All") and text:
            parser, table = {
                "Vehicles": (parse_vehicle_lines, "vehicles"),
                "Batteries": (parse_battery_lines, "batteries"),
                "Customers": (parse_customer_lines, "customers"),
            }[kind]
            rows = parser(text, snap.cities())
            if not rows:
                st.warning("No lines matched a known city.")
            else:
                run_action(lambda: console.add(table, rows), f"Added {len(rows)} {kind.lower()}.")

    with tab_export:
        for name in ["bookings", "vehicles", "customers"]:
            st.download_button(f"Export {name.title()}", to_csv_text(snap.records(name)),
                               file_name=export_filename(name), mime="text/csv")
        st.dataframe(snap.frame("bookings"), use_container_width=True)

    with tab_cities:
        with st.form("add_city"):
            name = st.text_input("City Name")
            address = st.text_input("Hub Address")
            if st.form_submit_button("Add City") and name:
                run_action(lambda: console.add("cities", {"name": name, "zap_point_address": address or None}),
                           f"City {name} added.")
        st.dataframe(snap.frame("cities"), use_container_width=True)


def main():
    """Main function to run the Streamlit app."""
    st.set_page_config(page_title="Fleet Operations", page_icon="🛵", layout="wide")
    console = get_console()
    admin = config.get_admin_identity()

    st.sidebar.title(config.FLEET_NAME)
    st.sidebar.caption(f"{admin['name']} · {admin['role']}")
    cities = console.snapshot.cities()
    if cities:
        ids = [c.id for c in cities]
        current = ids.index(console.snapshot.city_id) if console.snapshot.city_id in ids else 0
        city = st.sidebar.selectbox("City Hub", cities, index=current, format_func=lambda c: c.name)
        console.snapshot.city_id = city.id
    if st.sidebar.button("🔄 Sync"):
        run_action(console.refresh, "Synced.")

    menu = st.sidebar.radio("Menu", ["Dashboard", "Operations", "Maintenance", "Admin"])
    if menu == "Dashboard":
        page_dashboard(console)
    elif menu == "Operations":
        page_operations(console)
    elif menu == "Maintenance":
        page_maintenance(console)
    elif menu == "Admin":
        page_admin(console)


if __name__ == "__main__":
    main()
