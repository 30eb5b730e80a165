"""Shared test fixtures."""
import os

os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import issue_token
from database import TESTS, USERS, create_document, ensure_indexes, get_db
from main import app

ADMIN_EMAIL = "admin@example.com"
PATIENT_EMAIL = "patient@example.com"

BLOOD_TEST_SLOTS = [
    "9.00 - 10.00 AM",
    "10.00 - 11.00 AM",
    "11.00 - 12.00 PM",
    "12.00 - 1.00 PM",
]


@pytest.fixture
def db():
    """In-memory MongoDB with the production indexes."""
    database = mongomock.MongoClient()["diagnostic-center-test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    """Factory for Authorization headers carrying a fresh token."""
    def _make(email: str) -> dict:
        return {"Authorization": f"Bearer {issue_token({'email': email})}"}
    return _make


@pytest.fixture
def admin_headers(db, auth_header):
    create_document(db, USERS, {"email": ADMIN_EMAIL, "role": "admin", "status": True})
    return auth_header(ADMIN_EMAIL)


@pytest.fixture
def patient_headers(db, auth_header):
    create_document(db, USERS, {"email": PATIENT_EMAIL, "role": "patient", "status": True})
    return auth_header(PATIENT_EMAIL)


@pytest.fixture
def blood_test(db):
    doc = {
        "slug": "complete-blood-count",
        "title": "Complete Blood Count",
        "description": "No fasting required",
        "image": "https://img.example.com/cbc.png",
        "price": 20.0,
        "discount_percent": 10,
        "promo_code": "CBC10",
        "slots": list(BLOOD_TEST_SLOTS),
    }
    create_document(db, TESTS, doc)
    return doc
