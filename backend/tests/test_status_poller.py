import httpx
import pytest

from app.core.errors import GatewayError, NetworkError, ValidationError
from app.core.mpesa import STK_QUERY_PATH

from tests.fakes import SHORTCODE, query_processing, query_result


@pytest.mark.asyncio
async def test_success_activates_the_pending_subscription(poller, store, pending_subscription, clock):
    status = await poller.query("ws_CO_16102026120000001")

    assert status.succeeded
    assert not status.in_progress
    saved = await store.find_by_id(pending_subscription.id)
    assert saved.status == "active"
    assert saved.start_date == clock()
    assert saved.result_code == 0


@pytest.mark.asyncio
async def test_query_payload_is_signed(poller, daraja, pending_subscription):
    await poller.query("ws_CO_16102026120000001")

    [(_, body, headers)] = daraja.calls_to(STK_QUERY_PATH)
    assert body["BusinessShortCode"] == SHORTCODE
    assert body["Timestamp"] == "20261016120000"
    assert body["CheckoutRequestID"] == "ws_CO_16102026120000001"
    assert "Password" in body
    assert headers["Authorization"] == "Bearer token-1"


@pytest.mark.asyncio
async def test_still_processing_changes_nothing(poller, daraja, store, pending_subscription):
    daraja.query_response = query_processing

    status = await poller.query("ws_CO_16102026120000001")

    assert status.in_progress
    assert status.result_code is None
    assert (await store.find_by_id(pending_subscription.id)).status == "pending"


@pytest.mark.asyncio
async def test_failure_code_is_reported_not_applied(poller, daraja, store, pending_subscription):
    daraja.query_response = lambda: query_result("1032", "Request cancelled by user")

    status = await poller.query("ws_CO_16102026120000001")

    assert status.result_code == 1032
    assert not status.succeeded
    assert (await store.find_by_id(pending_subscription.id)).status == "pending"


@pytest.mark.asyncio
async def test_success_on_settled_record_is_a_no_op(poller, store, state_machine, pending_subscription):
    await state_machine.fail(pending_subscription, "Request cancelled by user", result_code=1032)
    writes = store.status_writes

    status = await poller.query("ws_CO_16102026120000001")

    assert status.succeeded
    assert (await store.find_by_id(pending_subscription.id)).status == "failed"
    assert store.status_writes == writes


@pytest.mark.asyncio
async def test_success_for_unknown_checkout_is_tolerated(poller, store):
    status = await poller.query("ws_CO_nobody")

    assert status.succeeded
    assert store.status_writes == 0


@pytest.mark.asyncio
async def test_unexpected_response_raises_gateway_error(poller, daraja, pending_subscription):
    daraja.query_response = lambda: httpx.Response(
        400, json={"errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid CheckoutRequestID"}
    )

    with pytest.raises(GatewayError) as exc:
        await poller.query("ws_CO_16102026120000001")

    assert exc.value.result_code == "400.002.02"


@pytest.mark.asyncio
async def test_no_response_is_a_network_error(poller, daraja):
    daraja.query_queue = [httpx.ConnectError]

    with pytest.raises(NetworkError):
        await poller.query("ws_CO_16102026120000001")


@pytest.mark.asyncio
async def test_checkout_id_is_required(poller, daraja):
    with pytest.raises(ValidationError):
        await poller.query("")

    assert daraja.calls == []


@pytest.mark.asyncio
async def test_non_numeric_result_code_raises_gateway_error(poller, daraja, store, pending_subscription):
    daraja.query_response = lambda: query_result("abc", "garbled")

    with pytest.raises(GatewayError) as exc:
        await poller.query("ws_CO_16102026120000001")

    assert exc.value.user_message == "Could not check the payment status. Please try again"
    assert (await store.find_by_id(pending_subscription.id)).status == "pending"
