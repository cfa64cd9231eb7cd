"""Shared fixtures: a fresh in-memory database per test."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import custody
from app import app
from cascade import BatchCascade
from database import Base, get_db
from directory import Assignment
from schemas import RegisterRawMaterial


class FakeDirectory:
    def __init__(self, assignments=None):
        self.assignments = list(assignments or [])

    def list_all_users(self):
        return list(self.assignments)


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def directory():
    return FakeDirectory([
        Assignment("farmer-1", "farmer"),
        Assignment("aggregator-1", "aggregator"),
        Assignment("processor-1", "processor"),
    ])


@pytest.fixture
def cascade(db, directory):
    return BatchCascade(db, directory, recall_scope="transitive")


@pytest.fixture
def raw(db):
    """Register raw material batches: ``raw("F001", "F002")``."""

    def _make(*batch_ids, quantity=50.0, unit="kg"):
        return [
            custody.register_raw_material(db, RegisterRawMaterial(
                batch_id=batch_id,
                owner_id="farmer-1",
                product_name="Ashwagandha Root",
                quantity=quantity,
                unit=unit,
                farmer_name="Ramesh Patil",
            ))
            for batch_id in batch_ids
        ]

    return _make


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
