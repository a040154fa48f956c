import streamlit as st

def get_db_url():
    return st.secrets.get("DB_URL", "sqlite:///fleet_ops.db")

def get_admin_identity():
    # No login: every session acts as the admin, scoped to all cities (city_id 0).
    return {"name": st.secrets.get("ADMIN_NAME", "Admin User"), "role": "Admin", "city_id": 0}

FLEET_NAME = "YANA Ops"

# Rs. per day past the booking end date
LATE_FINE_PER_DAY = 300

DEFAULT_CITY_ID = 1
DEFAULT_IMPORT_PHONE = "0000000000"

# Concurrent store calls for snapshot reads and independent writes
STORE_WORKERS = 8

POST_RIDE_CHECKLIST_ITEMS = [
    {"label": "Body Scratches", "fine": 500},
    {"label": "Broken Mirror", "fine": 300},
    {"label": "Tyre Puncture", "fine": 200},
    {"label": "Headlight Damage", "fine": 400},
    {"label": "Charger Missing", "fine": 1000},
    {"label": "Key Missing", "fine": 500},
    {"label": "Needs Cleaning", "fine": 0},
]
