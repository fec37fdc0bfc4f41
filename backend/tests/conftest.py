import pytest
import pytest_asyncio

from app.core.config import DEFAULT_RESULT_MESSAGES
from app.core.mpesa import MpesaGateway, TokenCache
from app.core.plans import get_plan
from app.core.subscription import SubscriptionStateMachine
from app.services.mpesa_service import PushInitiator, StatusPoller
from app.services.reconciler import CallbackReconciler
from app.services.subscription_service import SubscriptionService

from tests.fakes import (
    CALLBACK_URL,
    DARAJA_URL,
    PASSKEY,
    SHORTCODE,
    DarajaStub,
    FakeClock,
    InMemorySubscriptionStore,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore()


@pytest.fixture
def daraja() -> DarajaStub:
    return DarajaStub()


@pytest.fixture
def token_cache(daraja, clock) -> TokenCache:
    return TokenCache(
        "consumer-key",
        "consumer-secret",
        DARAJA_URL,
        retries=3,
        retry_delay=0,
        safety_margin=30,
        clock=clock,
        transport=daraja.transport,
    )


@pytest.fixture
def gateway(token_cache, daraja, clock) -> MpesaGateway:
    return MpesaGateway(
        token_cache,
        shortcode=SHORTCODE,
        passkey=PASSKEY,
        base_url=DARAJA_URL,
        clock=clock,
        transport=daraja.transport,
    )


@pytest.fixture
def state_machine(store, clock) -> SubscriptionStateMachine:
    return SubscriptionStateMachine(store, clock=clock)


@pytest.fixture
def initiator(gateway) -> PushInitiator:
    return PushInitiator(
        gateway,
        callback_url=CALLBACK_URL,
        result_messages=dict(DEFAULT_RESULT_MESSAGES),
        country_code="254",
        transaction_type="CustomerPayBillOnline",
    )


@pytest.fixture
def poller(gateway, store, state_machine) -> StatusPoller:
    return StatusPoller(gateway, store, state_machine)


@pytest.fixture
def reconciler(store, state_machine) -> CallbackReconciler:
    return CallbackReconciler(store, state_machine)


@pytest.fixture
def service(store, state_machine, initiator, poller) -> SubscriptionService:
    return SubscriptionService(store, state_machine, initiator, poller)


@pytest.fixture
def hourly_plan():
    return get_plan("gaming", "Hourly Pass")


@pytest_asyncio.fixture
async def pending_subscription(state_machine, hourly_plan):
    """A pending subscription with a checkout id already attached."""
    subscription = await state_machine.create_pending("user-1", hourly_plan)
    return await state_machine.attach_checkout(subscription.id, "ws_CO_16102026120000001", "29115-34620561-1")
