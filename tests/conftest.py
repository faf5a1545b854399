"""Shared fixtures: an in-memory database with one organization and project."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mbee_core import crud
from mbee_core.models import Base
from mbee_core.permissions import AuthContext

ORG = "org"
PROJECT = "proj"
BRANCH = "master"
BRANCH_ID = f"{ORG}:{PROJECT}:{BRANCH}"


def eid(local, branch_id=BRANCH_ID):
    """Compound id of an element on the test branch."""
    return f"{branch_id}:{local}"


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def admin(db):
    return AuthContext.for_user(crud.create_user(db, {"id": "admin", "admin": True}))


@pytest.fixture
def project(db, admin):
    crud.create_organization(db, admin, {"id": ORG, "name": "Organization"})
    return crud.create_project(db, admin, ORG, {"id": PROJECT, "name": "Project", "visibility": "internal"})


@pytest.fixture
def reader(db, admin, project):
    """A user with read permission on the project."""
    crud.create_user(db, {"id": "reader"})
    crud.add_project_member(db, admin, project.id, {"user_id": "reader", "permission": "read"})
    return AuthContext(user_id="reader")


@pytest.fixture
def writer(db, admin, project):
    """A user with write permission on the project."""
    crud.create_user(db, {"id": "writer"})
    crud.add_organization_member(db, admin, ORG, {"user_id": "writer", "permission": "read"})
    crud.add_project_member(db, admin, project.id, {"user_id": "writer", "permission": "write"})
    return AuthContext(user_id="writer")
