"""Pytest configuration and shared fixtures."""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from citizenconnect.database import Base
from citizenconnect.models import domain  # noqa: F401  registers the models
from citizenconnect.models.domain import User
from citizenconnect.models.enums import UserRole
from citizenconnect.seed import seed_domain_categories
from citizenconnect.services.lifecycle import ComplaintLifecycle
from citizenconnect.services.policy import Actor

WATER = "Water Department"
ELECTRICAL = "Electrical Department"


class FrozenClock:
    """Deterministic clock; tests move time forward explicitly."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingPublisher:
    """Publisher that remembers every push instead of sending it."""

    def __init__(self):
        self.events = []

    def publish(self, channel, event, payload):
        self.events.append((channel, event, payload))

    def on(self, channel):
        return [(event, payload) for (c, event, payload) in self.events if c == channel]


class FailingPublisher:
    def publish(self, channel, event, payload):
        raise ConnectionError("socket layer is down")


def make_people(session, clock):
    """
    Create one user per role the tests need, in a fixed id order.

    Water Department has three eligible assignees so load balancing and
    the lowest-id tie-break can be observed.
    """
    specs = [
        ("citizen", "Priya Citizen", UserRole.CITIZEN, None, "Ward 12"),
        ("other_citizen", "Karan Citizen", UserRole.CITIZEN, None, "Ward 3"),
        ("asha", "Asha Employee", UserRole.DEPARTMENT_EMPLOYEE, WATER, None),
        ("ravi", "Ravi Employee", UserRole.DEPARTMENT_EMPLOYEE, WATER, None),
        ("water_admin", "Meera Admin", UserRole.DEPARTMENT_ADMIN, WATER, None),
        ("electrician", "Vikram Employee", UserRole.DEPARTMENT_EMPLOYEE, ELECTRICAL, None),
        ("ward_officer", "Sunil Officer", UserRole.WARD_OFFICER, None, "Ward 12"),
        ("city_admin", "Anita City", UserRole.CITY_ADMIN, None, None),
        ("super_admin", "Rahul Super", UserRole.SUPER_ADMIN, None, None),
        ("mayor", "Mayor Rao", UserRole.MAYOR, None, None),
    ]
    users = {}
    for key, name, role, department, ward in specs:
        user = User(
            name=name,
            email=f"{key}@citizenconnect.test",
            role=role,
            department=department,
            ward=ward,
            created_at=clock(),
        )
        session.add(user)
        users[key] = user
    session.commit()
    return SimpleNamespace(**{key: Actor.from_user(user) for key, user in users.items()})


@pytest.fixture
def engine():
    """Fresh in-memory database, shared by every connection in the test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 10, 9, 0, 0))


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def people(db_session, clock):
    return make_people(db_session, clock)


@pytest.fixture
def catalog(db_session):
    seed_domain_categories(db_session)


@pytest.fixture
def lifecycle(db_session, publisher, clock, people, catalog):
    return ComplaintLifecycle(db_session, publisher, clock=clock, max_retries=3)


@pytest.fixture
def file_complaint(lifecycle, people):
    """Factory: file a complaint as the default citizen."""
    def _file(domain="Water", category="Pipe Leakage", citizen=None, **extra):
        return lifecycle.create_complaint(
            citizen or people.citizen,
            title=extra.pop("title", "Leaking main on 5th Cross"),
            description=extra.pop("description", "Water gushing from the pipe since morning"),
            domain=domain,
            category=category,
            **extra,
        )
    return _file
