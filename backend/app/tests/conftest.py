import os
os.environ["TESTING"] = "1"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[2]))

from app.main import app
from app.auth import ACTOR_HEADER
from app.database import Base, get_db, init_db
from app.services.sheet_schema import build_table, get_registry

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

for _schema in get_registry().list():
    build_table(_schema).drop(bind=engine, checkfirst=True)
Base.metadata.drop_all(bind=engine)
init_db(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

TEST_ACTOR = "alice@example.com"


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for schema in get_registry().list():
            conn.execute(build_table(schema).delete())
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def registry():
    return get_registry()


@pytest.fixture
def financial(registry):
    return registry.require("financial-data")


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def actor_headers(actor: str = TEST_ACTOR):
    """
    purpose: identity headers the authenticating proxy would attach
    outputs: dict suitable for TestClient headers
    status: active
    """

    return {ACTOR_HEADER: actor}
