"""
Database connection and setup
SQLite (or any SQLAlchemy URL) for the persistent cache backend
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from readthrough.models import Base


def create_session_factory(database_url: str, echo: bool = False) -> sessionmaker:
    """
    Create an engine for database_url, make sure the tables exist,
    and return a session factory bound to it
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # Needed for SQLite

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=echo  # Set to True to see SQL queries
    )
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine):
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)
