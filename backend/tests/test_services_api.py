from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from backend.app import models
from backend.app.main import LOCAL_DEVELOPMENT_ORIGIN


def _create(client, **overrides):
    payload = {
        "name": "Arriendo bodega",
        "startDate": "2024-01-10",
        "dueDay": 15,
        "defaultAmount": "100000",
        "monthsToGenerate": 3,
    }
    payload.update(overrides)
    response = client.post("/services/", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_fetch_service(client):
    created = _create(client, emission={"mode": "SPECIFIC_DATE", "exactDate": "2024-01-05"})

    service = created["service"]
    assert service["name"] == "Arriendo bodega"
    assert service["frequency"] == "MONTHLY"
    assert service["emissionMode"] == "SPECIFIC_DATE"
    assert service["emissionDay"] is None
    assert [entry["dueDate"] for entry in created["schedules"]] == [
        "2024-01-15",
        "2024-02-15",
        "2024-03-15",
    ]
    assert {entry["emissionDate"] for entry in created["schedules"]} == {"2024-01-05"}

    fetched = client.get(f"/services/{service['publicId']}")
    assert fetched.status_code == 200
    assert fetched.json()["service"]["id"] == service["id"]


def test_unknown_service_is_404(client):
    response = client.get("/services/srv_missing")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "service_not_found"


def test_invalid_payloads_are_rejected(client):
    inverted = client.post(
        "/services/",
        json={
            "name": "X",
            "startDate": "2024-01-01",
            "defaultAmount": "10",
            "emission": {"mode": "DATE_RANGE", "startDay": 10, "endDay": 5},
        },
    )
    missing_fee = client.post(
        "/services/",
        json={"name": "X", "startDate": "2024-01-01", "defaultAmount": "10", "lateFeeMode": "FIXED"},
    )
    once = client.post(
        "/services/",
        json={"name": "X", "startDate": "2024-01-01", "defaultAmount": "10", "frequency": "ONCE"},
    )

    assert inverted.status_code == 422
    assert missing_fee.status_code == 422
    assert once.status_code == 400
    assert once.json()["detail"]["code"] == "invalid_configuration"


def test_payment_lifecycle(client):
    created = _create(client)
    schedule_id = created["schedules"][0]["id"]
    body = {"transactionId": 42, "paidAmount": "100000", "paidDate": "2024-01-14"}

    paid = client.post(f"/services/schedules/{schedule_id}/pay", json=body)
    assert paid.status_code == 200, paid.text
    assert paid.json()["schedule"]["status"] == "PAID"
    assert paid.json()["schedule"]["transactionId"] == 42

    again = client.post(f"/services/schedules/{schedule_id}/pay", json=body)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "already_paid"

    unlinked = client.post(f"/services/schedules/{schedule_id}/unlink")
    assert unlinked.status_code == 200
    assert unlinked.json()["schedule"]["status"] == "PENDING"

    nothing = client.post(f"/services/schedules/{schedule_id}/unlink")
    assert nothing.status_code == 409
    assert nothing.json()["detail"]["code"] == "nothing_to_unlink"


def test_skip_requires_reason(client):
    created = _create(client)
    schedule_id = created["schedules"][1]["id"]

    empty = client.post(f"/services/schedules/{schedule_id}/skip", json={"reason": "  "})
    skipped = client.post(f"/services/schedules/{schedule_id}/skip", json={"reason": "Condonado"})

    assert empty.status_code == 400
    assert empty.json()["detail"]["field"] == "reason"
    assert skipped.status_code == 200
    assert skipped.json()["schedule"]["note"] == "Condonado"

    detail = client.get(f"/services/{created['service']['publicId']}").json()
    assert Decimal(detail["service"]["totalExpected"]) == Decimal("200000")


def test_missing_schedule_is_404(client):
    response = client.post(
        "/services/schedules/999999/pay",
        json={"transactionId": 1, "paidAmount": "10", "paidDate": "2024-01-01"},
    )

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "schedule_not_found"


def test_suggestions_endpoint(client, db_session):
    created = _create(client)
    schedule = created["schedules"][0]
    db_session.add(
        models.Transaction(
            occurred_on=date(2024, 1, 16),
            amount=Decimal("-100020"),
            description="Transferencia bodega",
        )
    )
    db_session.commit()

    response = client.get(f"/services/schedules/{schedule['id']}/suggestions")

    assert response.status_code == 200
    items = response.json()["items"]
    assert [item["description"] for item in items] == ["Transferencia bodega"]
    assert Decimal(items[0]["amountDifference"]) == Decimal("20")
    assert items[0]["daysFromDue"] == 1


def test_regenerate_with_overrides(client):
    created = _create(client)
    public_id = created["service"]["publicId"]

    response = client.post(
        f"/services/{public_id}/schedules",
        json={"months": 5, "defaultAmount": "90000", "dueDay": 20},
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert len(data["schedules"]) == 5
    assert data["schedules"][0]["dueDate"] == "2024-01-20"
    assert data["service"]["nextGenerationMonths"] == 5
    assert {Decimal(entry["expectedAmount"]) for entry in data["schedules"]} == {Decimal("90000")}


def test_update_schedule_endpoint(client):
    created = _create(client)
    schedule_id = created["schedules"][2]["id"]

    response = client.put(
        f"/services/schedules/{schedule_id}",
        json={"dueDate": "2024-03-25", "expectedAmount": "99000"},
    )

    assert response.status_code == 200
    assert response.json()["schedule"]["dueDate"] == "2024-03-25"


def test_list_update_archive_and_delete(client):
    kept = _create(client, name="Contabilidad")
    removed = _create(client, name="Hosting")

    updated = client.put(
        f"/services/{kept['service']['publicId']}",
        json={"category": "Servicios profesionales", "lateFeeMode": "FIXED", "lateFeeValue": "5000"},
    )
    assert updated.status_code == 200
    assert updated.json()["service"]["category"] == "Servicios profesionales"

    archived = client.post(f"/services/{kept['service']['publicId']}/archive")
    assert archived.json()["service"]["status"] == "ARCHIVED"

    listing = client.get("/services/", params={"status": "ACTIVE"})
    assert [row["name"] for row in listing.json()["items"]] == ["Hosting"]

    deleted = client.delete(f"/services/{removed['service']['publicId']}")
    assert deleted.status_code == 204
    assert client.get(f"/services/{removed['service']['publicId']}").status_code == 404


def test_listing_failure_returns_cors_headers(client, monkeypatch):
    def fail_listing(*_args, **_kwargs):
        raise SQLAlchemyError("boom")

    monkeypatch.setattr(
        "backend.app.services.service_schedules.ServiceScheduleService.list_services",
        fail_listing,
    )

    response = client.get("/services/", headers={"Origin": LOCAL_DEVELOPMENT_ORIGIN})

    assert response.status_code == 500
    assert response.headers.get("access-control-allow-origin") == LOCAL_DEVELOPMENT_ORIGIN
    assert response.json()["detail"]["code"] == "persistence_error"
