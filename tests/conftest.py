import pytest

from database import create_store_engine, init_db
from services import FleetConsole
from store import RemoteStore


@pytest.fixture
def engine(tmp_path):
    engine = create_store_engine(f"sqlite:///{tmp_path / 'fleet.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return RemoteStore(engine)


@pytest.fixture
def fleet(store):
    """Two cities, vehicles 5 and 6, batteries 9 and 10, all available in city 1."""
    store.insert("cities", [{"name": "Bengaluru"}, {"name": "Pune"}])
    store.insert("vehicles", [
        {"id": 5, "model_name": "Yana E1", "city_id": 1, "status": "Available", "health_status": "Good"},
        {"id": 6, "model_name": "Yana E2", "city_id": 1, "status": "Available", "health_status": "Good"},
    ])
    store.insert("batteries", [
        {"id": 9, "serial_number": "BATT-9", "city_id": 1, "status": "Available", "charge_percentage": 90},
        {"id": 10, "serial_number": "BATT-10", "city_id": 1, "status": "Available", "charge_percentage": 100},
    ])
    return store


@pytest.fixture
def console(fleet):
    console = FleetConsole(fleet)
    console.refresh()
    yield console
    console.close()
