"""Tests for the delivery report history: repository, service and read API."""
from datetime import datetime, timezone

import pytest

from crm_delivery.schemas import DeliveryReport
from crm_delivery.services.delivery_reports import DeliveryReportService, serialize_report

DLR_URL = "/api/webhooks/gupshup/delivery-report"


def _dlr(external_id, event_type, cause, code, event_ts, dest="919892488888"):
    return {
        "externalId": external_id,
        "eventType": event_type,
        "cause": cause,
        "errCode": code,
        "eventTs": event_ts,
        "destAddr": dest,
        "srcAddr": "TESTIN",
        "channel": "SMS",
        "noOfFrags": 1,
    }


@pytest.fixture
def delivered_and_failed(client, message_repo):
    message_repo.create_message("msg-1", conversation_id="conv-1")
    message_repo.create_message("msg-2", conversation_id="conv-1")
    client.post(DLR_URL, json=_dlr("msg-1", "FAILED", "ABSENT_SUBSCRIBER", "001", 1526347800000))
    client.post(DLR_URL, json=_dlr("msg-1", "DELIVERED", "SUCCESS", "000", 1526347860000))
    client.post(DLR_URL, json=_dlr("msg-2", "UNDELIV", "CONGESTION", "012", 1526347900000, dest="+1 555 010 9999"))


def test_message_timeline_lists_reports_oldest_first(client, delivered_and_failed):
    response = client.get("/api/conversations/messages/msg-1/delivery-reports")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["messageId"] == "msg-1"
    assert data["currentStatus"] == "delivered"
    assert [r["eventType"] for r in data["deliveryReports"]] == ["FAILED", "DELIVERED"]
    assert [r["internalStatus"] for r in data["deliveryReports"]] == ["failed", "delivered"]
    first = data["deliveryReports"][0]
    assert first["causeDescription"] == "Absent subscriber"
    assert first["destAddr"] == "+919892488888"
    assert first["eventTs"] == "2018-05-15T01:30:00+00:00"
    assert data["latestReport"]["eventType"] == "DELIVERED"


def test_timeline_for_unknown_message_is_404(client):
    response = client.get("/api/conversations/messages/ghost/delivery-reports")

    assert response.status_code == 404


def test_timeline_without_reports(client, message_repo):
    message_repo.create_message("quiet", conversation_id="c")

    data = client.get("/api/conversations/messages/quiet/delivery-reports").json()["data"]

    assert data["currentStatus"] == "sent"
    assert data["deliveryReports"] == []
    assert data["latestReport"] is None


def test_redelivered_report_is_stored_once(client, message_repo, report_repo):
    message_repo.create_message("msg-1", conversation_id="c")
    body = _dlr("msg-1", "DELIVERED", "SUCCESS", "000", 1526347800000)

    client.post(DLR_URL, json=body)
    client.post(DLR_URL, json=body)

    assert len(report_repo.list_for_message("msg-1")) == 1


def test_reports_without_timestamp_are_all_kept(client, message_repo, report_repo):
    message_repo.create_message("msg-1", conversation_id="c")
    body = {"externalId": "msg-1", "eventType": "DELIVERED", "cause": "SUCCESS", "errCode": "000"}

    client.post(DLR_URL, json=body)
    client.post(DLR_URL, json=body)

    assert len(report_repo.list_for_message("msg-1")) == 2


def test_list_reports_by_phone_accepts_any_format(client, delivered_and_failed):
    response = client.get("/api/delivery-reports", params={"phone": "+91 98924 88888"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert [r["eventType"] for r in data["deliveryReports"]] == ["DELIVERED", "FAILED"]
    assert (data["limit"], data["offset"]) == (50, 0)


def test_list_reports_by_phone_paginates(client, delivered_and_failed):
    data = client.get(
        "/api/delivery-reports", params={"phone": "919892488888", "limit": 1, "offset": 1}
    ).json()["data"]

    assert [r["eventType"] for r in data["deliveryReports"]] == ["FAILED"]


@pytest.mark.parametrize("params", [{}, {"phone": "1", "limit": 0}, {"phone": "1", "limit": 500}])
def test_list_reports_validates_query(client, params):
    assert client.get("/api/delivery-reports", params=params).status_code == 422


def test_stats_across_all_reports(client, delivered_and_failed):
    data = client.get("/api/delivery-reports/stats").json()["data"]

    assert data["total"] == 3
    assert data["delivered"] == 1
    assert data["failed"] == 2
    assert data["successRate"] == pytest.approx(100 / 3)


def test_stats_for_one_phone(client, delivered_and_failed):
    data = client.get("/api/delivery-reports/stats", params={"phone": "15550109999"}).json()["data"]

    assert data["total"] == 1
    assert data["failed"] == 1
    assert data["successRate"] == 0


def test_stats_with_no_reports(client):
    data = client.get("/api/delivery-reports/stats").json()["data"]

    assert data == {"total": 0, "sent": 0, "delivered": 0, "read": 0, "failed": 0, "successRate": 0.0}


def test_service_cleanup_only_removes_old_rows(report_repo, message_repo):
    from crm_delivery.appdb import get_session
    from crm_delivery.models import DeliveryReportRecord

    report_repo.create_report(
        DeliveryReport(external_id="fresh", event_type="DELIVERED", cause="SUCCESS", error_code="000"),
        "delivered",
    )
    with get_session() as session:
        session.add(
            DeliveryReportRecord(
                message_id="stale",
                event_type="DELIVERED",
                event_ts=datetime(2020, 1, 1, tzinfo=timezone.utc),
                internal_status="delivered",
                created_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
            )
        )

    service = DeliveryReportService(report_repo, message_repo=message_repo)

    assert service.cleanup_old_reports(90) == 1
    assert report_repo.list_for_message("stale") == []
    assert len(report_repo.list_for_message("fresh")) == 1


def test_serialize_report_without_cause():
    row = {
        "id": 1,
        "message_id": "m",
        "event_type": "UNKNOWN",
        "internal_status": "failed",
        "event_ts": datetime(2018, 5, 15, 1, 30),
    }

    out = serialize_report(row)

    assert out["causeDescription"] is None
    assert out["eventTs"] == "2018-05-15T01:30:00+00:00"
    assert out["messageId"] == "m"


@pytest.mark.parametrize("phone", ["abc", ""])
def test_stats_for_phone_without_digits_match_nothing(client, delivered_and_failed, phone):
    stats = client.get("/api/delivery-reports/stats", params={"phone": phone}).json()["data"]
    listing = client.get("/api/delivery-reports", params={"phone": "abc"}).json()["data"]

    assert stats["total"] == 0
    assert stats["successRate"] == 0
    assert listing["deliveryReports"] == []
