import pytest
from dateutil import parser as date_parser
from fastapi.testclient import TestClient

from conftest import LANDLORD, TENANT, FakeComposer, FakeExtractor, fixed_clock, local
from viewing_scheduler.main import create_app


FRIDAY_2PM = local(2026, 10, 16, 14)


@pytest.fixture
def client(session_factory):
    app = create_app(
        session_factory=session_factory,
        intent_extractor=FakeExtractor(),
        response_composer=FakeComposer(),
        clock=fixed_clock,
    )
    with TestClient(app) as client:
        yield client


def booking(listing_id, tenant=TENANT, when="2026-10-16T14:00:00-04:00"):
    return {
        "propertyId": listing_id,
        "tenantId": tenant,
        "landlordId": LANDLORD,
        "requestedDateTime": when,
    }


def test_create_viewing_request(client, listing_id):
    response = client.post("/api/viewing-requests", json=booking(listing_id))

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "Pending"
    assert body["tenantId"] == TENANT
    assert body["propertyId"] == listing_id
    assert body["proposedDateTime"] is None
    assert date_parser.isoparse(body["requestedDateTime"]) == FRIDAY_2PM


def test_create_in_taken_slot_is_409(client, listing_id):
    client.post("/api/viewing-requests", json=booking(listing_id, tenant="tenant-a"))

    response = client.post(
        "/api/viewing-requests",
        json=booking(listing_id, tenant="tenant-b", when="2026-10-16T14:30:00-04:00"),
    )

    assert response.status_code == 409


def test_create_for_unknown_listing_is_404(client):
    response = client.post("/api/viewing-requests", json=booking(9999))

    assert response.status_code == 404


@pytest.mark.parametrize("payload", [
    {"tenantId": TENANT, "landlordId": LANDLORD, "requestedDateTime": "2026-10-16T14:00:00-04:00"},
    {"propertyId": 1, "tenantId": TENANT, "landlordId": LANDLORD, "requestedDateTime": "2026-10-16T14:00:00"},
    {"propertyId": 1, "tenantId": "", "landlordId": LANDLORD, "requestedDateTime": "2026-10-16T14:00:00-04:00"},
])
def test_invalid_body_is_400(client, payload):
    response = client.post("/api/viewing-requests", json=payload)

    assert response.status_code == 400


def test_booking_form_invalidates_cached_availability(client, listing_id):
    checker = client.app.state.services.checker
    assert checker.check_availability(LANDLORD, FRIDAY_2PM).available is True

    client.post("/api/viewing-requests", json=booking(listing_id))

    assert checker.check_availability(LANDLORD, FRIDAY_2PM).available is False


def test_dashboard_requires_exactly_one_party(client):
    assert client.get("/api/viewing-requests").status_code == 400
    response = client.get("/api/viewing-requests", params={"landlordId": LANDLORD, "tenantId": TENANT})
    assert response.status_code == 400


def test_dashboards_list_newest_first(client, listing_id):
    first = client.post("/api/viewing-requests", json=booking(listing_id)).json()
    second = client.post(
        "/api/viewing-requests",
        json=booking(listing_id, tenant="tenant-2", when="2026-10-19T10:00:00-04:00"),
    ).json()

    landlord_view = client.get("/api/viewing-requests", params={"landlordId": LANDLORD}).json()
    tenant_view = client.get("/api/viewing-requests", params={"tenantId": TENANT}).json()

    assert [v["id"] for v in landlord_view] == [second["id"], first["id"]]
    assert [v["id"] for v in tenant_view] == [first["id"]]


def test_get_viewing_request(client, listing_id):
    created = client.post("/api/viewing-requests", json=booking(listing_id)).json()

    assert client.get(f"/api/viewing-requests/{created['id']}").json()["id"] == created["id"]
    assert client.get("/api/viewing-requests/4242").status_code == 404


def test_landlord_approves(client, listing_id):
    created = client.post("/api/viewing-requests", json=booking(listing_id)).json()

    response = client.patch(f"/api/viewing-requests/{created['id']}/status", json={"status": "Approved"})

    assert response.status_code == 200
    assert response.json()["status"] == "Approved"
    calendar = client.get("/api/viewing-requests/approved", params={"userId": TENANT, "role": "tenant"}).json()
    assert [v["id"] for v in calendar] == [created["id"]]


def test_landlord_proposes_then_tenant_time_is_replaced(client, listing_id):
    created = client.post("/api/viewing-requests", json=booking(listing_id)).json()
    url = f"/api/viewing-requests/{created['id']}/status"

    proposed = client.patch(url, json={"status": "Proposed", "proposedDateTime": "2026-10-19T10:00:00-04:00"})
    approved = client.patch(url, json={"status": "Approved"})

    assert proposed.json()["status"] == "Proposed"
    assert date_parser.isoparse(approved.json()["requestedDateTime"]) == local(2026, 10, 19, 10)
    assert approved.json()["proposedDateTime"] is None


def test_pending_cannot_be_set_by_hand(client, listing_id):
    created = client.post("/api/viewing-requests", json=booking(listing_id)).json()

    response = client.patch(f"/api/viewing-requests/{created['id']}/status", json={"status": "Pending"})

    assert response.status_code == 400
    assert "Invalid status." in response.text


def test_disallowed_transition_is_409(client, listing_id):
    created = client.post("/api/viewing-requests", json=booking(listing_id)).json()
    url = f"/api/viewing-requests/{created['id']}/status"
    client.patch(url, json={"status": "Declined"})

    assert client.patch(url, json={"status": "Approved"}).status_code == 409


def test_proposal_without_time_is_409(client, listing_id):
    created = client.post("/api/viewing-requests", json=booking(listing_id)).json()

    response = client.patch(f"/api/viewing-requests/{created['id']}/status", json={"status": "Proposed"})

    assert response.status_code == 409


def test_status_update_for_unknown_request_is_404(client):
    assert client.patch("/api/viewing-requests/4242/status", json={"status": "Approved"}).status_code == 404


def test_approved_calendar_rejects_unknown_role(client):
    response = client.get("/api/viewing-requests/approved", params={"userId": LANDLORD, "role": "agent"})

    assert response.status_code == 400


def test_accepting_proposal_into_taken_slot_is_409(client, listing_id):
    client.post("/api/viewing-requests", json=booking(listing_id, tenant="tenant-a"))
    other = client.post(
        "/api/viewing-requests",
        json=booking(listing_id, tenant="tenant-b", when="2026-10-16T17:00:00-04:00"),
    ).json()
    url = f"/api/viewing-requests/{other['id']}/status"
    client.patch(url, json={"status": "Proposed", "proposedDateTime": "2026-10-16T14:30:00-04:00"})

    response = client.patch(url, json={"status": "Approved"})

    assert response.status_code == 409
    assert client.get(f"/api/viewing-requests/{other['id']}").json()["status"] == "Proposed"
