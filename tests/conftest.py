"""Shared fixtures: an in-memory database per test and a few users."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticketflow_core import crud, schemas
from ticketflow_core.database import enable_sqlite_foreign_keys
from ticketflow_core.models import Base, UserRole
from ticketflow_core.notifier import ChangeNotifier


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with foreign keys enforced."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine):
    """Session with the default project seeded."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    crud.ensure_default_projects(session, include_samples=False)
    yield session
    session.close()


@pytest.fixture
def notifier():
    return ChangeNotifier(max_pending=16)


def _make_actor(db, email, name, role):
    user = crud.create_user(db, email=email, name=name, password_hash="hash:" + email, role=role)
    return crud.get_actor(db, user.id)


@pytest.fixture
def admin(db):
    return _make_actor(db, "admin@example.com", "Ada Admin", UserRole.ADMIN)


@pytest.fixture
def agent(db):
    return _make_actor(db, "agent@example.com", "Alex Agent", UserRole.AGENT)


@pytest.fixture
def user(db):
    return _make_actor(db, "user@example.com", "Uma User", UserRole.USER)


@pytest.fixture
def make_ticket(db, notifier):
    """Factory creating tickets through the coordinator."""

    def _make(actor, title="Ticket", **fields):
        payload = schemas.TicketCreate(title=title, **fields)
        return crud.create_ticket(db, payload, actor, notifier=notifier)

    return _make


@pytest.fixture
def ops_project(db, agent):
    """A second public project owned by nobody."""
    return crud.create_project(db, schemas.ProjectCreate(name="Operations"), agent)


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory over a file-backed database, for tests that use several threads."""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'tickets.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_sqlite_foreign_keys(file_engine)
    Base.metadata.create_all(bind=file_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    with factory() as session:
        crud.ensure_default_projects(session, include_samples=False)
    yield factory
    file_engine.dispose()
