from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient

from tests.support import auth_headers


async def _create_plan(client: AsyncClient, student_id, total="900.00", count=3, first_due_date="2025-01-01", **extra):
    payload = {
        "student_id": str(student_id),
        "total_amount": total,
        "installment_count": count,
        "first_due_date": first_due_date,
        **extra,
    }
    return await client.post("/api/v1/payment-plans", json=payload, headers=auth_headers("STAFF"))


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_create_plan_generates_installments(client: AsyncClient, student) -> None:
    response = await _create_plan(client, student, total="1000.00", description="Spring term")

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "Active"
    assert Decimal(data["balance_amount"]) == Decimal("1000.00")
    assert Decimal(data["paid_amount"]) == Decimal("0")
    assert [Decimal(i["amount"]) for i in data["installments"]] == [
        Decimal("333.33"),
        Decimal("333.33"),
        Decimal("333.34"),
    ]
    assert [i["due_date"] for i in data["installments"]] == ["2025-01-01", "2025-02-01", "2025-03-01"]
    assert all(i["status"] == "Pending" for i in data["installments"])


@pytest.mark.asyncio
async def test_first_due_date_defaults_to_thirty_days_out(client: AsyncClient, student) -> None:
    response = await _create_plan(client, student, count=1, first_due_date=None)

    assert response.status_code == 201
    assert response.json()["installments"][0]["due_date"] == (date.today() + timedelta(days=30)).isoformat()


@pytest.mark.asyncio
async def test_create_plan_requires_staff_role(client: AsyncClient, student) -> None:
    payload = {"student_id": str(student), "total_amount": "900.00", "installment_count": 3}

    assert (await client.post("/api/v1/payment-plans", json=payload)).status_code == 401
    forbidden = await client.post("/api/v1/payment-plans", json=payload, headers=auth_headers("STUDENT"))
    assert forbidden.status_code == 403
    allowed = await client.post("/api/v1/payment-plans", json=payload, headers=auth_headers("SUPER_ADMIN"))
    assert allowed.status_code == 201


@pytest.mark.asyncio
async def test_create_plan_validation(client: AsyncClient, student) -> None:
    assert (await _create_plan(client, uuid4())).status_code == 404
    assert (await _create_plan(client, student, count=0)).status_code == 422
    assert (await _create_plan(client, student, total="-10.00")).status_code == 422


@pytest.mark.asyncio
async def test_one_active_plan_per_student_and_course(client: AsyncClient, student) -> None:
    course_id = str(uuid4())
    assert (await _create_plan(client, student, course_id=course_id)).status_code == 201

    duplicate = await _create_plan(client, student, course_id=course_id)
    assert duplicate.status_code == 409

    other_course = await _create_plan(client, student, course_id=str(uuid4()))
    assert other_course.status_code == 201


@pytest.mark.asyncio
async def test_read_plans(client: AsyncClient, student) -> None:
    course_id = str(uuid4())
    plan = (await _create_plan(client, student, course_id=course_id)).json()
    headers = auth_headers("STUDENT")

    by_id = await client.get(f"/api/v1/payment-plans/{plan['id']}", headers=headers)
    assert by_id.status_code == 200
    assert by_id.json()["id"] == plan["id"]

    by_student = await client.get(f"/api/v1/payment-plans/student/{student}", headers=headers)
    assert [p["id"] for p in by_student.json()] == [plan["id"]]

    by_course = await client.get(f"/api/v1/payment-plans/course/{course_id}", headers=auth_headers("ADMIN"))
    assert [p["id"] for p in by_course.json()] == [plan["id"]]

    missing = await client.get(f"/api/v1/payment-plans/{uuid4()}", headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_pay_all_installments_via_api(client: AsyncClient, student) -> None:
    plan = (await _create_plan(client, student)).json()

    for inst in plan["installments"]:
        response = await client.post(
            f"/api/v1/installments/{inst['id']}/pay",
            json={"amount": "300.00", "payment_method": "Cash"},
            headers=auth_headers("STUDENT"),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["applied"] is True
        assert body["receipt_id"] is not None
        assert body["installment"]["status"] == "Paid"

    final = (await client.get(f"/api/v1/payment-plans/{plan['id']}", headers=auth_headers())).json()
    assert final["status"] == "Completed"
    assert Decimal(final["balance_amount"]) == Decimal("0")


@pytest.mark.asyncio
async def test_duplicate_pay_returns_existing_state(client: AsyncClient, student) -> None:
    plan = (await _create_plan(client, student)).json()
    url = f"/api/v1/installments/{plan['installments'][0]['id']}/pay"
    body = {"amount": "300.00", "payment_method": "Cash"}

    first = await client.post(url, json=body, headers=auth_headers())
    second = await client.post(url, json=body, headers=auth_headers())

    assert second.status_code == 200
    assert second.json()["applied"] is False
    assert second.json()["receipt_id"] == first.json()["receipt_id"]
    final = (await client.get(f"/api/v1/payment-plans/{plan['id']}", headers=auth_headers())).json()
    assert Decimal(final["paid_amount"]) == Decimal("300")


@pytest.mark.asyncio
async def test_pay_rejections(client: AsyncClient, student) -> None:
    plan = (await _create_plan(client, student)).json()
    url = f"/api/v1/installments/{plan['installments'][0]['id']}/pay"

    mismatch = await client.post(url, json={"amount": "250.00", "payment_method": "Cash"}, headers=auth_headers())
    assert mismatch.status_code == 400
    overpay = await client.post(url, json={"amount": "950.00", "payment_method": "Cash"}, headers=auth_headers())
    assert overpay.status_code == 400
    assert "exceeds remaining balance" in overpay.json()["detail"]
    missing = await client.post(
        f"/api/v1/installments/{uuid4()}/pay", json={"amount": "300.00", "payment_method": "Cash"}, headers=auth_headers()
    )
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_plan_status_changes(client: AsyncClient, student) -> None:
    plan = (await _create_plan(client, student)).json()
    url = f"/api/v1/payment-plans/{plan['id']}/status"

    suspended = await client.put(url, json={"status": "Suspended"}, headers=auth_headers("STAFF"))
    assert suspended.status_code == 200
    assert suspended.json()["status"] == "Suspended"

    completed = await client.put(url, json={"status": "Completed"}, headers=auth_headers("STAFF"))
    assert completed.status_code == 400

    cancelled = await client.put(url, json={"status": "Cancelled"}, headers=auth_headers("STAFF"))
    assert cancelled.status_code == 200
    reopened = await client.put(url, json={"status": "Active"}, headers=auth_headers("STAFF"))
    assert reopened.status_code == 409

    pay = await client.post(
        f"/api/v1/installments/{plan['installments'][0]['id']}/pay",
        json={"amount": "300.00", "payment_method": "Cash"},
        headers=auth_headers(),
    )
    assert pay.status_code == 400


@pytest.mark.asyncio
async def test_patch_plan_description(client: AsyncClient, student) -> None:
    plan = (await _create_plan(client, student)).json()

    response = await client.patch(
        f"/api/v1/payment-plans/{plan['id']}", json={"description": "Revised"}, headers=auth_headers("ADMIN")
    )

    assert response.status_code == 200
    assert response.json()["description"] == "Revised"
    assert response.json()["status"] == "Active"


@pytest.mark.asyncio
async def test_delete_plan_only_without_payments(client: AsyncClient, student) -> None:
    unpaid = (await _create_plan(client, student, course_id=str(uuid4()))).json()
    paid = (await _create_plan(client, student, course_id=str(uuid4()))).json()
    await client.post(
        f"/api/v1/installments/{paid['installments'][0]['id']}/pay",
        json={"amount": "300.00", "payment_method": "Cash"},
        headers=auth_headers(),
    )

    staff = await client.delete(f"/api/v1/payment-plans/{unpaid['id']}", headers=auth_headers("STAFF"))
    assert staff.status_code == 403
    deleted = await client.delete(f"/api/v1/payment-plans/{unpaid['id']}", headers=auth_headers("ADMIN"))
    assert deleted.status_code == 204
    gone = await client.get(f"/api/v1/installments/{unpaid['installments'][0]['id']}", headers=auth_headers())
    assert gone.status_code == 404

    refused = await client.delete(f"/api/v1/payment-plans/{paid['id']}", headers=auth_headers("ADMIN"))
    assert refused.status_code == 409


@pytest.mark.asyncio
async def test_overdue_queries_and_sweep(client: AsyncClient, student) -> None:
    yesterday = (date.today() - timedelta(days=1)).isoformat()
    plan = (await _create_plan(client, student, count=2, total="600.00", first_due_date=yesterday)).json()
    first_id = plan["installments"][0]["id"]

    overdue = await client.get("/api/v1/installments/overdue", headers=auth_headers("STAFF"))
    assert overdue.status_code == 200
    assert [i["id"] for i in overdue.json()] == [first_id]
    assert overdue.json()[0]["status"] == "Pending"
    assert overdue.json()[0]["is_overdue"] is True
    assert overdue.json()[0]["days_overdue"] == 1

    not_old_enough = await client.get("/api/v1/installments/overdue?days=5", headers=auth_headers("STAFF"))
    assert not_old_enough.json() == []

    sweep = await client.post("/api/v1/installments/overdue/sweep", headers=auth_headers("STAFF"))
    assert sweep.status_code == 200
    assert sweep.json()["promoted"] == 1
    again = await client.post("/api/v1/installments/overdue/sweep", headers=auth_headers("STAFF"))
    assert again.json()["promoted"] == 0

    inst = (await client.get(f"/api/v1/installments/{first_id}", headers=auth_headers())).json()
    assert inst["status"] == "Overdue"

    forbidden = await client.get("/api/v1/installments/overdue", headers=auth_headers("STUDENT"))
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_upcoming_window(client: AsyncClient, student) -> None:
    soon = (date.today() + timedelta(days=3)).isoformat()
    plan = (await _create_plan(client, student, count=2, total="600.00", first_due_date=soon)).json()

    week = await client.get("/api/v1/installments/upcoming", headers=auth_headers("STAFF"))
    assert [i["id"] for i in week.json()] == [plan["installments"][0]["id"]]

    short = await client.get("/api/v1/installments/upcoming?days=1", headers=auth_headers("STAFF"))
    assert short.json() == []


@pytest.mark.asyncio
async def test_receipt_reissue_endpoint(client: AsyncClient, student) -> None:
    plan = (await _create_plan(client, student)).json()
    inst_id = plan["installments"][0]["id"]

    unpaid = await client.post(f"/api/v1/installments/{inst_id}/receipt", headers=auth_headers("STAFF"))
    assert unpaid.status_code == 400

    paid = await client.post(
        f"/api/v1/installments/{inst_id}/pay",
        json={"amount": "300.00", "payment_method": "Cash"},
        headers=auth_headers(),
    )
    reissued = await client.post(f"/api/v1/installments/{inst_id}/receipt", headers=auth_headers("STAFF"))
    assert reissued.status_code == 200
    assert reissued.json()["receipt_id"] == paid.json()["receipt_id"]
