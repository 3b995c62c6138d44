import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import live
import projects


@pytest.fixture(autouse=True)
def mock_db(monkeypatch):
    """Every test gets a fresh in-memory MongoDB and an empty change feed."""
    db = mongomock.MongoClient()["studyhub_test"]
    monkeypatch.setattr(database, "db", db)
    monkeypatch.setattr(live.feed, "_listeners", {})
    monkeypatch.setattr(live.feed, "_streamed", set())
    return db


@pytest.fixture
def user_factory():
    """Create user documents directly, returning their ids."""
    counter = {"n": 0}

    def make(first_name="Ada", last_name="Lovelace", **extra):
        counter["n"] += 1
        data = {
            "email": f"user{counter['n']}@example.com",
            "firstName": first_name,
            "lastName": last_name,
            "createdAt": database.now_iso(),
            "profileComplete": False,
        }
        data.update(extra)
        return database.create_document("users", data)["id"]

    return make


@pytest.fixture
def project(user_factory):
    creator = user_factory()
    return projects.create_project(creator, "CS101 Demo", "CS101", "2025-01-01", "Intro project")


@pytest.fixture
def signup():
    return _signup


def _signup(client, email="student@example.com", password="s3cret-pass", first_name="Sam", last_name="Lee"):
    return client.post("/api/auth/signup", json={
        "email": email,
        "password": password,
        "confirmPassword": password,
        "firstName": first_name,
        "lastName": last_name,
    })


@pytest.fixture
def client():
    import main
    return TestClient(main.app)


@pytest.fixture
def other_client():
    import main
    return TestClient(main.app)
