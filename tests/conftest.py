import random

import pytest

from core.database import create_db_engine, init_db
from utils.assignment_manager import AssignmentManager
from utils.attempt_manager import AttemptManager
from utils.class_manager import ClassManager
from utils.document_store import DocumentStore
from utils.user_manager import UserManager


@pytest.fixture
def store(tmp_path):
    """Document store backed by a temporary SQLite file."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test_classroom.db'}")
    init_db(engine)
    yield DocumentStore(engine)
    engine.dispose()


@pytest.fixture
def users(store):
    return UserManager(store)


@pytest.fixture
def classes(store, users):
    return ClassManager(store, users)


@pytest.fixture
def assignments(store):
    return AssignmentManager(store)


@pytest.fixture
def attempts(store):
    return AttemptManager(store, rng=random.Random(1234))


@pytest.fixture
def class_id(classes):
    """A class owned by instructor ``prof``."""
    return classes.create_class("course-1", "Intro to Finance", "prof")


@pytest.fixture
def client(store):
    from fastapi.testclient import TestClient

    from app import app
    from core.database import get_store

    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(uid, email=None):
    from api.routes.auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(uid, email)}"}


def class_doc(store, class_id):
    return store.get(f"classes/{class_id}").to_dict()


def counts(store, class_id):
    return class_doc(store, class_id)["counts"]


def active_members(store, class_id):
    return [
        snap.to_dict()
        for snap in store.query(f"classes/{class_id}/members").get()
        if snap.get("status", "active") == "active"
    ]
