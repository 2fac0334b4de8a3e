"""Shared fixtures: an in-memory database seeded with a workspace and project."""
import re
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql
from sqlalchemy.sql.expression import Select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskboard_core import crud, schemas
from taskboard_core.analysis_jobs import InlineAnalysisDispatcher, NullAnalysisDispatcher
from taskboard_core.models import Base, MemberPermission


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def row_locks(engine):
    """
    Tables read with SELECT ... FOR UPDATE, in execution order.

    SQLite drops the locking clause, so statements are rendered for
    PostgreSQL before they are inspected.
    """
    locked = []

    def capture(conn, clauseelement, multiparams, params, execution_options):
        if isinstance(clauseelement, Select):
            sql = str(clauseelement.compile(dialect=postgresql.dialect()))
            if "FOR UPDATE" in sql:
                locked.append(re.split(r"\sFROM\s", sql, maxsplit=1)[1].split()[0])

    event.listen(engine, "before_execute", capture)
    yield locked
    event.remove(engine, "before_execute", capture)


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def null_dispatcher():
    return NullAnalysisDispatcher()


@pytest.fixture
def inline_dispatcher(session_factory):
    return InlineAnalysisDispatcher(session_factory)


@pytest.fixture
def owner(db):
    return crud.create_user(db, schemas.UserCreate(email="owner@example.com", full_name="Olive Owner"))


@pytest.fixture
def workspace(db, owner):
    return crud.create_workspace(db, schemas.WorkspaceCreate(name="Acme", slug="acme"), owner.id)


@pytest.fixture
def project(db, workspace, owner):
    return crud.create_project(
        db,
        schemas.ProjectCreate(workspace_id=workspace.id, name="Website", key="WEB"),
        owner.id,
    )


@pytest.fixture
def lists(db, project):
    return crud.get_lists(db, project.id)


@pytest.fixture
def make_member(db, workspace):
    """Create a user and add them to the workspace with the given permission."""
    counter = {"n": 0}

    def _make(permission: MemberPermission):
        counter["n"] += 1
        user = crud.create_user(
            db, schemas.UserCreate(email=f"{permission.value}{counter['n']}@example.com")
        )
        crud.add_workspace_member(db, workspace.id, user.id, permission)
        return user

    return _make


@pytest.fixture
def make_task(db, project, owner):
    """Create a task in the project; keyword arguments go to TaskCreate."""

    def _make(title: str, **fields):
        return crud.create_task(
            db,
            schemas.TaskCreate(project_id=project.id, title=title, **fields),
            reporter_id=owner.id,
        )

    return _make
