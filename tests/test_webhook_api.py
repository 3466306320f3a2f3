"""End-to-end tests for the Gupshup webhook routes."""
import pytest

from crm_delivery.dependencies import get_notifier
from crm_delivery.errors import MessageStoreError
from crm_delivery.main import app
from crm_delivery.repositories import MessageRepository

DLR_URL = "/api/webhooks/gupshup/delivery-report"
STATUS_URL = "/api/webhooks/gupshup/status"


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def emit_to_conversation(self, conversation_id, event, data):
        self.events.append(("conversation", conversation_id, event, data))

    async def emit_to_user(self, user_id, event, data):
        self.events.append(("user", user_id, event, data))


@pytest.fixture
def notifier():
    recorder = RecordingNotifier()
    app.dependency_overrides[get_notifier] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_notifier, None)


def _status_of(repo, message_id):
    return repo.get_message_by_external_id(message_id)["status"]


def test_single_delivered_report(client, message_repo, notifier):
    message_repo.create_message("msg-1", conversation_id="conv-1", body="hello")

    response = client.post(
        DLR_URL,
        json={"externalId": "msg-1", "eventType": "DELIVERED", "cause": "SUCCESS", "errCode": "000"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert (payload["processed"], payload["failed"], payload["total"]) == (1, 0, 1)
    assert _status_of(message_repo, "msg-1") == "delivered"
    assert notifier.events == [
        ("conversation", "conv-1", "message-status-updated", {"messageId": "msg-1", "status": "delivered"})
    ]


def test_batch_report_marks_failures(client, message_repo, notifier):
    message_repo.create_message("ok-1", conversation_id="c")
    message_repo.create_message("bad-1", conversation_id="c")

    response = client.post(
        DLR_URL,
        json={
            "response": [
                {"externalId": "ok-1", "eventType": "DELIVERED", "cause": "SUCCESS", "errCode": "000"},
                {"externalId": "bad-1", "eventType": "FAILED", "cause": "UNKNOWN_SUBSCRIBER", "errCode": "003"},
            ]
        },
    )

    assert response.status_code == 200
    assert response.json()["processed"] == 2
    assert _status_of(message_repo, "ok-1") == "delivered"
    assert _status_of(message_repo, "bad-1") == "failed"


def test_unknown_external_ids_are_counted_failed(client, message_repo, notifier):
    for message_id in ("m-1", "m-2", "m-3"):
        message_repo.create_message(message_id, conversation_id="c")
    items = [
        {"externalId": external_id, "eventType": "DELIVERED", "cause": "SUCCESS", "errCode": "000"}
        for external_id in ("m-1", "ghost-1", "m-2", "ghost-2", "m-3")
    ]

    response = client.post(DLR_URL, json={"response": items})

    assert response.status_code == 200
    payload = response.json()
    assert (payload["processed"], payload["failed"], payload["total"]) == (3, 2, 5)


def test_get_query_string_report(client, message_repo, notifier):
    message_repo.create_message("3562707498794989059-1", conversation_id="c")

    response = client.get(
        DLR_URL,
        params={
            "externalId": "3562707498794989059-1",
            "deliveredTS": "1526347800000",
            "status": "SUCCESS",
            "cause": "SUCCESS",
            "phoneNo": "919892488888",
            "errCode": "000",
            "noOfFrags": "1",
            "mask": "TESTIN",
        },
    )

    assert response.status_code == 200
    assert response.json()["processed"] == 1
    assert _status_of(message_repo, "3562707498794989059-1") == "delivered"


def test_form_encoded_post_is_accepted(client, message_repo, notifier):
    message_repo.create_message("form-1", conversation_id="c")

    response = client.post(
        DLR_URL,
        data={"externalId": "form-1", "eventType": "UNDELIV", "cause": "INBOXFULL", "errCode": "011"},
    )

    assert response.status_code == 200
    assert _status_of(message_repo, "form-1") == "failed"


def test_post_with_query_string_only_is_handled_like_get(client, message_repo, notifier):
    message_repo.create_message("q-1", conversation_id="c")

    response = client.post(DLR_URL, params={"externalId": "q-1", "status": "DELIVERED", "cause": "SUCCESS", "errCode": "000"})

    assert response.status_code == 200
    assert _status_of(message_repo, "q-1") == "delivered"


@pytest.mark.parametrize("body", [{}, {"eventType": "DELIVERED"}, {"response": []}, [1, 2]])
def test_malformed_payload_returns_400(client, body):
    response = client.post(DLR_URL, json=body)

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_invalid_json_returns_400(client):
    response = client.post(DLR_URL, content=b"{not json", headers={"content-type": "application/json"})
    assert response.status_code == 400


def test_batch_over_limit_returns_400(client, monkeypatch):
    monkeypatch.setenv("DLR_MAX_BATCH_SIZE", "2")
    items = [{"externalId": f"m-{i}"} for i in range(3)]

    response = client.post(DLR_URL, json={"response": items})

    assert response.status_code == 400


def test_store_failure_returns_500(client, monkeypatch, notifier):
    def broken_lookup(self, external_id):
        raise MessageStoreError("database unavailable")

    monkeypatch.setattr(MessageRepository, "get_message_by_external_id", broken_lookup)

    response = client.post(
        DLR_URL,
        json={"externalId": "msg-1", "eventType": "DELIVERED", "cause": "SUCCESS", "errCode": "000"},
    )

    assert response.status_code == 500
    payload = response.json()
    assert payload["success"] is False
    assert payload["message"] == "Error processing delivery report"


def test_repeated_report_does_not_notify_twice(client, message_repo, notifier):
    message_repo.create_message("msg-1", conversation_id="conv-1")
    body = {
        "externalId": "msg-1",
        "eventType": "DELIVERED",
        "cause": "SUCCESS",
        "errCode": "000",
        "eventTs": 1526347800000,
    }

    first = client.post(DLR_URL, json=body)
    second = client.post(DLR_URL, json=body)

    assert first.status_code == second.status_code == 200
    assert second.json()["processed"] == 1
    assert _status_of(message_repo, "msg-1") == "delivered"
    assert len(notifier.events) == 1


class TestSignature:
    BODY = {"externalId": "msg-1", "eventType": "DELIVERED", "cause": "SUCCESS", "errCode": "000"}

    @pytest.fixture(autouse=True)
    def secret(self, monkeypatch):
        monkeypatch.setenv("GUPSHUP_WEBHOOK_SECRET", "s3cret")

    def test_wrong_signature_is_rejected(self, client):
        response = client.post(DLR_URL, json=self.BODY, headers={"X-Gupshup-Signature": "nope"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Invalid webhook signature"}

    def test_matching_signature_is_accepted(self, client, message_repo, notifier):
        message_repo.create_message("msg-1", conversation_id="c")

        response = client.post(DLR_URL, json=self.BODY, headers={"X-Gupshup-Signature": "s3cret"})

        assert response.status_code == 200

    def test_missing_signature_is_accepted(self, client, notifier):
        response = client.post(DLR_URL, json=self.BODY)

        assert response.status_code == 200

    def test_status_webhook_checks_signature(self, client):
        response = client.post(
            STATUS_URL, json={"messageId": "m", "status": "read"}, headers={"X-Gupshup-Signature": "nope"}
        )

        assert response.status_code == 401


class TestStatusWebhook:
    def test_updates_message_status(self, client, message_repo, notifier):
        message_repo.create_message("msg-1", conversation_id="conv-1", sender_id="agent-7")

        response = client.post(STATUS_URL, json={"messageId": "msg-1", "status": "READ", "timestamp": 1526347800000})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Status updated successfully", "updated": True}
        assert _status_of(message_repo, "msg-1") == "read"
        assert [event[:2] for event in notifier.events] == [("conversation", "conv-1"), ("user", "agent-7")]

    @pytest.mark.parametrize("body", [{}, {"messageId": "msg-1"}, {"status": "read"}])
    def test_missing_fields_return_400(self, client, body):
        response = client.post(STATUS_URL, json=body)

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_unknown_status_is_ignored(self, client, message_repo):
        message_repo.create_message("msg-1", conversation_id="c")

        response = client.post(STATUS_URL, json={"messageId": "msg-1", "status": "teleported"})

        assert response.status_code == 200
        assert response.json()["message"] == "Unknown status, ignored"
        assert _status_of(message_repo, "msg-1") == "sent"

    def test_unknown_message_is_ignored(self, client, notifier):
        response = client.post(STATUS_URL, json={"messageId": "ghost", "status": "delivered"})

        assert response.status_code == 200
        assert response.json()["updated"] is False
        assert notifier.events == []

    def test_same_status_is_not_rewritten(self, client, message_repo, notifier):
        message_repo.create_message("msg-1", conversation_id="c", status="delivered")

        response = client.post(STATUS_URL, json={"messageId": "msg-1", "status": "delivered"})

        assert response.json()["updated"] is False
        assert notifier.events == []


def test_webhook_test_endpoint(client):
    response = client.get("/api/webhooks/gupshup/test")

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["endpoints"]["deliveryReportPost"] == f"POST {DLR_URL}"


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_reports_with_a_vendor_kind_field_are_applied(client, message_repo, notifier):
    message_repo.create_message("msg-g", conversation_id="c")
    message_repo.create_message("msg-k", conversation_id="c")

    get_response = client.get(DLR_URL, params={"externalId": "msg-g", "status": "DELIVERED", "kind": "x"})
    post_response = client.post(
        DLR_URL,
        json={"externalId": "msg-k", "eventType": "DELIVERED", "cause": "SUCCESS", "errCode": "000", "kind": "sms"},
    )

    assert get_response.status_code == post_response.status_code == 200
    assert post_response.json()["processed"] == 1
    assert _status_of(message_repo, "msg-g") == "delivered"
    assert _status_of(message_repo, "msg-k") == "delivered"
