# core/dependencies.py
from functools import lru_cache

from app.core.mpesa import MpesaGateway, TokenCache
from app.core.store import FirestoreSubscriptionStore, SubscriptionStore
from app.core.subscription import SubscriptionStateMachine
from app.services.mpesa_service import PushInitiator, StatusPoller
from app.services.reconciler import CallbackReconciler
from app.services.subscription_service import SubscriptionService


# One instance of each per process. The token cache in particular must be
# shared: it is what collapses concurrent token refreshes into one.

@lru_cache
def get_store() -> SubscriptionStore:
    return FirestoreSubscriptionStore()


@lru_cache
def get_token_cache() -> TokenCache:
    return TokenCache.from_settings()


@lru_cache
def get_gateway() -> MpesaGateway:
    return MpesaGateway.from_settings(get_token_cache())


@lru_cache
def get_state_machine() -> SubscriptionStateMachine:
    return SubscriptionStateMachine(get_store())


@lru_cache
def get_reconciler() -> CallbackReconciler:
    return CallbackReconciler(get_store(), get_state_machine())


@lru_cache
def get_subscription_service() -> SubscriptionService:
    state_machine = get_state_machine()
    return SubscriptionService(
        store=get_store(),
        state_machine=state_machine,
        initiator=PushInitiator(get_gateway()),
        poller=StatusPoller(get_gateway(), get_store(), state_machine),
    )
