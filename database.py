from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from config import get_db_url
import streamlit as st

Base = declarative_base()

def create_store_engine(db_url):
    connect_args = {}
    if db_url.startswith("sqlite"):
        # Store calls fan out to worker threads
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(db_url, connect_args=connect_args)

@st.cache_resource
def get_db_engine():
    db_url = get_db_url()
    if not db_url:
        st.error("Missing DB_URL in Streamlit Secrets!")
        st.stop()
    return create_store_engine(db_url)

def get_session(engine=None):
    Session = sessionmaker(bind=engine or get_db_engine())
    return Session()

def init_db(engine=None):
    import models  # noqa: F401  registers the tables on Base.metadata
    Base.metadata.create_all(engine or get_db_engine())
