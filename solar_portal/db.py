# solar_portal/db.py
import os
from pathlib import Path

from sqlmodel import Session, SQLModel, create_engine

from solar_portal import models  # noqa: F401  registers tables before create_all()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/app.db")

# SQLite needs this connect arg and a real folder
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
    Path(DATABASE_URL[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session


def new_session() -> Session:
    """Session for work that runs outside a request (background tasks, cron helpers)."""
    return Session(engine)
