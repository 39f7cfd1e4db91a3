from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./sheets.db")

if DATABASE_URL.startswith("sqlite"):
    sqlite_args = {"check_same_thread": False, "timeout": 30}
else:
    sqlite_args = {}

engine = create_engine(DATABASE_URL, connect_args=sqlite_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None, registry=None) -> None:
    """Create the audit tables and the backing table of every registered sheet."""

    # purpose: bootstrap a development or test database without running migrations
    # inputs: optional engine/connection and sheet registry (defaults to the process registry)
    # status: active
    from . import models  # noqa: F401
    from .services.sheet_schema import build_table, get_registry

    target = bind or engine
    Base.metadata.create_all(bind=target)
    for schema in (registry or get_registry()).list():
        build_table(schema).create(bind=target, checkfirst=True)
