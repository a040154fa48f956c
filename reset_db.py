from database import Base, create_store_engine, init_db
from config import get_db_url


def reset_database(db_url=None):
    """
    Drops every fleet table and recreates the schema.
    This action is irreversible and clears all bookings, inventory, customers and maintenance data.
    """
    db_url = db_url or get_db_url()
    engine = create_store_engine(db_url)

    # 1. Drop existing tables
    try:
        import models  # noqa: F401
        Base.metadata.drop_all(engine)
        print(f"Dropped existing tables in {engine.url.render_as_string(hide_password=True)}")
    except Exception as e:
        print(f"Error dropping tables: {e}")
        return False

    # 2. Re-create the schema
    try:
        print("Creating tables...")
        init_db(engine)
        print("Database reset complete. All data has been cleared.")
        return True
    except Exception as e:
        print(f"An error occurred during re-initialization: {e}")
        return False
    finally:
        engine.dispose()


if __name__ == "__main__":
    confirm = input("WARNING: This will delete ALL fleet data. Type 'RESET' to confirm: ")
    if confirm == "RESET":
        reset_database()
    else:
        print("Reset cancelled.")
