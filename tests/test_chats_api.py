import pytest
from fastapi.testclient import TestClient

from conftest import LANDLORD, TENANT, FakeComposer, FakeExtractor, fixed_clock, intent, local
from viewing_scheduler.main import create_app
from viewing_scheduler.schemas.scheduling import IntentType


FRIDAY_2PM = local(2026, 10, 16, 14)


def make_client(session_factory, *intents):
    app = create_app(
        session_factory=session_factory,
        intent_extractor=FakeExtractor(*intents),
        response_composer=FakeComposer(),
        clock=fixed_clock,
    )
    return TestClient(app)


@pytest.fixture
def client(session_factory):
    with make_client(session_factory) as client:
        yield client


def open_chat(client, listing_id):
    response = client.post("/api/chats", json={
        "tenantId": TENANT,
        "landlordId": LANDLORD,
        "propertyId": listing_id,
        "tenantName": "Alice",
        "landlordName": "Bob",
    })
    assert response.status_code == 200
    return response.json()


def drain(client):
    client.portal.call(client.app.state.services.shim.drain)


def test_open_chat_is_find_or_create(client, listing_id):
    first = open_chat(client, listing_id)
    second = open_chat(client, listing_id)

    assert first["id"] == second["id"]
    assert first["propertyName"] == "Sunny 2-bed on Elm St"
    assert first["tenantName"] == "Alice"


def test_open_chat_for_unknown_listing_is_404(client):
    response = client.post("/api/chats", json={"tenantId": TENANT, "landlordId": LANDLORD, "propertyId": 9999})

    assert response.status_code == 404


def test_messages_of_unknown_chat_is_404(client):
    assert client.get("/api/chats/nope/messages").status_code == 404
    response = client.post(
        "/api/chats/nope/messages",
        json={"senderId": TENANT, "content": "hi", "senderType": "tenant"},
    )
    assert response.status_code == 404


def test_invalid_sender_type_is_400(client, listing_id):
    chat = open_chat(client, listing_id)

    response = client.post(
        f"/api/chats/{chat['id']}/messages",
        json={"senderId": TENANT, "content": "hi", "senderType": "agent"},
    )

    assert response.status_code == 400


def test_landlord_message_is_stored(client, listing_id):
    chat = open_chat(client, listing_id)

    response = client.post(
        f"/api/chats/{chat['id']}/messages",
        json={"senderId": LANDLORD, "content": "Hi Alice!", "senderType": "landlord"},
    )
    drain(client)

    assert response.status_code == 201
    assert response.json()["senderType"] == "landlord"
    messages = client.get(f"/api/chats/{chat['id']}/messages").json()
    assert [m["content"] for m in messages] == ["Hi Alice!"]


def test_tenant_booking_creates_viewing_and_reply(session_factory, listing_id):
    with make_client(session_factory, intent(IntentType.SCHEDULE_VIEWING, FRIDAY_2PM)) as client:
        chat = open_chat(client, listing_id)

        response = client.post(
            f"/api/chats/{chat['id']}/messages",
            json={"senderId": TENANT, "content": "Can I see it Friday at 2pm?", "senderType": "tenant"},
        )
        drain(client)

        assert response.status_code == 201
        messages = client.get(f"/api/chats/{chat['id']}/messages").json()
        assert [m["senderType"] for m in messages] == ["tenant", "landlord"]
        assert messages[1]["content"] == "[viewing_created] for Alice"

        viewings = client.get("/api/viewing-requests", params={"tenantId": TENANT}).json()
        assert len(viewings) == 1
        assert viewings[0]["status"] == "Pending"


def test_websocket_receives_new_messages(session_factory, listing_id):
    with make_client(session_factory, intent(IntentType.SCHEDULE_VIEWING, FRIDAY_2PM)) as client:
        chat = open_chat(client, listing_id)

        with client.websocket_connect(f"/ws/chats/{chat['id']}") as ws:
            client.post(
                f"/api/chats/{chat['id']}/messages",
                json={"senderId": TENANT, "content": "Friday at 2?", "senderType": "tenant"},
            )
            tenant_event = ws.receive_json()
            reply_event = ws.receive_json()

        assert tenant_event["event"] == "new-message"
        assert tenant_event["chat_id"] == chat["id"]
        assert tenant_event["sender_type"] == "tenant"
        assert tenant_event["content"] == "Friday at 2?"
        assert reply_event["sender_type"] == "landlord"
        assert reply_event["sender_id"] == LANDLORD
        assert reply_event["content"] == "[viewing_created] for Alice"
