import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.auth import get_current_user
from app.core.dependencies import get_reconciler, get_subscription_service
from app.models.user_model import AuthUser
from main import app

from tests.fakes import callback_body, query_processing, query_result

MOCK_USER_ID = "user-1"


async def mock_get_current_user():
    return AuthUser(uid=MOCK_USER_ID, email="wanjiru@example.com")


@pytest_asyncio.fixture
async def client(service, reconciler):
    app.dependency_overrides[get_current_user] = mock_get_current_user
    app.dependency_overrides[get_subscription_service] = lambda: service
    app.dependency_overrides[get_reconciler] = lambda: reconciler

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_list_all_plans(client):
    response = await client.get("/api/subscriptions/plans")

    assert response.status_code == 200
    plans = response.json()["data"]
    assert {p["category"] for p in plans} == {"gaming", "gym", "movies", "sports"}


@pytest.mark.asyncio
async def test_plans_by_category(client):
    response = await client.get("/api/subscriptions/plans/gym")

    assert response.status_code == 200
    assert [p["plan"] for p in response.json()["data"]][0] == "Daily Workout"

    missing = await client.get("/api/subscriptions/plans/chess")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_subscribe_starts_an_stk_push(client, store):
    response = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "gaming", "plan": "Hourly Pass", "phone": "0712345678"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    subscription = body["data"]["subscription"]
    assert subscription["status"] == "pending"
    assert subscription["owner_id"] == MOCK_USER_ID
    assert body["data"]["mpesa"]["checkout_request_id"] == "ws_CO_16102026120000001"
    assert body["data"]["mpesa"]["customer_message"] == "Success. Request accepted for processing"
    assert subscription["id"] in store.docs


@pytest.mark.asyncio
async def test_subscribe_requires_auth(client):
    del app.dependency_overrides[get_current_user]

    response = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "gaming", "plan": "Hourly Pass", "phone": "0712345678"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_subscribe_with_bad_phone_is_400(client):
    response = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "gaming", "plan": "Hourly Pass", "phone": "12345"},
    )

    assert response.status_code == 400
    assert "12345" in response.json()["detail"]


@pytest.mark.asyncio
async def test_gateway_rejection_is_402_with_friendly_message(client, daraja):
    daraja.push_queue = [httpx.Response(200, json={"ResponseCode": "2001", "ResponseDescription": "Wrong PIN"})]

    response = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "gaming", "plan": "Hourly Pass", "phone": "0712345678"},
    )

    assert response.status_code == 402
    assert response.json()["detail"] == "Wrong M-Pesa PIN entered"


@pytest.mark.asyncio
async def test_token_outage_is_503(client, daraja):
    daraja.token_queue = [httpx.Response(401, text="Unauthorized")]

    response = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "gaming", "plan": "Hourly Pass", "phone": "0712345678"},
    )

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_callback_then_fetch(client):
    created = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "movies", "plan": "Basic", "phone": "0712345678"},
    )
    subscription_id = created.json()["data"]["subscription"]["id"]

    ack = await client.post(
        "/api/subscriptions/mpesa/callback",
        json=callback_body("ws_CO_16102026120000001", receipt="ABC123", amount=100),
    )
    assert ack.status_code == 200
    assert ack.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    fetched = await client.get(f"/api/subscriptions/{subscription_id}")
    assert fetched.status_code == 200
    assert fetched.json()["data"]["status"] == "active"
    assert fetched.json()["data"]["receipt_number"] == "ABC123"


@pytest.mark.asyncio
async def test_failed_subscription_carries_a_failure_message(client):
    created = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "movies", "plan": "Basic", "phone": "0712345678"},
    )
    subscription_id = created.json()["data"]["subscription"]["id"]
    await client.post(
        "/api/subscriptions/mpesa/callback",
        json=callback_body("ws_CO_16102026120000001", result_code=1032, result_desc="Request cancelled by user"),
    )

    fetched = await client.get(f"/api/subscriptions/{subscription_id}")

    assert fetched.json()["data"]["status"] == "failed"
    assert fetched.json()["data"]["failure_message"] == "Payment was cancelled by user"


@pytest.mark.asyncio
async def test_callback_with_invalid_json_is_still_accepted(client):
    response = await client.post(
        "/api/subscriptions/mpesa/callback",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["ResultCode"] == 0


@pytest.mark.asyncio
async def test_callback_with_undecodable_bytes_is_still_accepted(client):
    response = await client.post(
        "/api/subscriptions/mpesa/callback",
        content=b'{"Body": "\xff"}',
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}


@pytest.mark.asyncio
async def test_callback_needs_no_auth(client):
    del app.dependency_overrides[get_current_user]

    response = await client.post("/api/subscriptions/mpesa/callback", json={"Body": {}})

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_list_and_missing(client):
    await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "gym", "plan": "Daily Workout", "phone": "0712345678"},
    )

    listed = await client.get("/api/subscriptions/")
    assert listed.status_code == 200
    assert len(listed.json()["data"]) == 1

    missing = await client.get("/api/subscriptions/does-not-exist")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_refresh_reports_gateway_state(client, daraja):
    created = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "gym", "plan": "Daily Workout", "phone": "0712345678"},
    )
    subscription_id = created.json()["data"]["subscription"]["id"]
    daraja.query_response = query_processing

    response = await client.post(f"/api/subscriptions/{subscription_id}/refresh")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "pending"
    assert response.json()["gateway"]["in_progress"] is True


@pytest.mark.asyncio
async def test_refresh_with_garbled_result_code_is_402(client, daraja):
    created = await client.post(
        "/api/subscriptions/subscribe",
        json={"category": "gym", "plan": "Daily Workout", "phone": "0712345678"},
    )
    subscription_id = created.json()["data"]["subscription"]["id"]
    daraja.query_response = lambda: query_result("abc", "garbled")

    response = await client.post(f"/api/subscriptions/{subscription_id}/refresh")

    assert response.status_code == 402
    assert response.json()["detail"] == "Could not check the payment status. Please try again"
