"""Diagnostic test catalog."""
from database import APPOINTMENTS, TESTS, create_document
from tests.conftest import BLOOD_TEST_SLOTS

NEW_TEST = {
    "slug": "thyroid-panel",
    "title": "Thyroid Panel",
    "description": "TSH, T3, T4",
    "image": "https://img.example.com/thyroid.png",
    "price": 35.5,
    "discount_percent": 5,
    "promo_code": "THY5",
    "slots": ["8.00 - 9.00 AM", "9.00 - 10.00 AM"],
}


def _book(db, slot, date="05-06-2024", slug="complete-blood-count", status="pending", email="p@example.com"):
    create_document(db, APPOINTMENTS, {
        "user_email": email,
        "test_slug": slug,
        "booking_date": date,
        "booking_slot": slot,
        "status": status,
    })


def test_admin_creates_test(client, db, admin_headers):
    response = client.post("/tests", json=NEW_TEST, headers=admin_headers)
    assert response.status_code == 201
    assert db[TESTS].find_one({"slug": "thyroid-panel"})["slots"] == NEW_TEST["slots"]


def test_create_test_requires_admin(client, patient_headers):
    assert client.post("/tests", json=NEW_TEST).status_code == 401
    assert client.post("/tests", json=NEW_TEST, headers=patient_headers).status_code == 403


def test_duplicate_slug_conflicts(client, admin_headers):
    client.post("/tests", json=NEW_TEST, headers=admin_headers)
    response = client.post("/tests", json=dict(NEW_TEST, title="Other"), headers=admin_headers)
    assert response.status_code == 409
    assert response.json() == {"status": "fail", "message": "A test already exists with the slug thyroid-panel"}


def test_create_test_rejects_bad_slot_labels(client, admin_headers):
    bad = dict(NEW_TEST, slots=["8:00 to 9:00"])
    response = client.post("/tests", json=bad, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["result"][0]["field"] == "slots"


def test_create_test_rejects_repeated_slots(client, admin_headers):
    bad = dict(NEW_TEST, slots=["8.00 - 9.00 AM", "8.00 - 9.00 AM"])
    assert client.post("/tests", json=bad, headers=admin_headers).status_code == 400


def test_single_test_for_date_subtracts_booked_slots(client, db, blood_test):
    _book(db, "10.00 - 11.00 AM")
    _book(db, "12.00 - 1.00 PM")
    _book(db, "9.00 - 10.00 AM", status="cancelled")
    _book(db, "11.00 - 12.00 PM", date="06-06-2024")
    _book(db, "11.00 - 12.00 PM", slug="thyroid-panel")

    response = client.get("/tests/complete-blood-count/05-06-2024")

    assert response.status_code == 200
    result = response.json()["result"]
    assert result["slots"] == ["9.00 - 10.00 AM", "11.00 - 12.00 PM"]
    assert result["available_slots"] == 2
    assert result["title"] == "Complete Blood Count"


def test_single_test_without_bookings(client, blood_test):
    result = client.get("/tests/complete-blood-count/01-01-2030").json()["result"]
    assert result["slots"] == BLOOD_TEST_SLOTS
    assert result["available_slots"] == len(BLOOD_TEST_SLOTS)


def test_single_test_unknown_slug(client):
    response = client.get("/tests/unknown/05-06-2024")
    assert response.status_code == 404


def test_single_test_bad_date(client, blood_test):
    response = client.get("/tests/complete-blood-count/2024-06-05")
    assert response.status_code == 400
    assert response.json()["status"] == "fail"


def test_catalog_requires_valid_date(client):
    assert client.get("/tests").status_code == 400
    assert client.get("/tests", params={"date": "June 5"}).status_code == 400


def test_admin_upsert_updates_existing(client, db, admin_headers, blood_test):
    response = client.patch(
        "/admin/tests/complete-blood-count",
        json={"price": 25, "slots": ["9.00 - 10.00 AM"]},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["result"]["matched_count"] == 1

    doc = db[TESTS].find_one({"slug": "complete-blood-count"})
    assert doc["price"] == 25
    assert doc["slots"] == ["9.00 - 10.00 AM"]
    assert doc["title"] == "Complete Blood Count"


def test_admin_upsert_inserts_missing(client, db, admin_headers):
    response = client.patch("/admin/tests/lipid-profile", json={"title": "Lipid Profile", "price": 40},
                            headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["result"]["upserted_id"]
    assert db[TESTS].find_one({"slug": "lipid-profile"})["title"] == "Lipid Profile"


def test_admin_deletes_test(client, db, admin_headers, blood_test):
    response = client.delete("/admin/tests/complete-blood-count", headers=admin_headers)
    assert response.status_code == 200
    assert db[TESTS].count_documents({}) == 0
    assert client.delete("/admin/tests/complete-blood-count", headers=admin_headers).status_code == 404


def test_admin_upsert_rejects_bad_slug(client, db, admin_headers):
    response = client.patch("/admin/tests/Bad_Slug", json={"title": "Bad"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid slug: Bad_Slug"
    assert db[TESTS].count_documents({}) == 0


def test_admin_upsert_clears_promo_code(client, db, admin_headers, blood_test):
    response = client.patch("/admin/tests/complete-blood-count", json={"promo_code": None}, headers=admin_headers)
    assert response.status_code == 200
    doc = db[TESTS].find_one({"slug": "complete-blood-count"})
    assert doc["promo_code"] is None
    assert doc["price"] == 20.0
