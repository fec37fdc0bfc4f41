# core/store.py
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from app.core.config import settings
from app.models.subscription_model import Subscription

logger = logging.getLogger("tikiti")

# (field, operator, value), Firestore `where` semantics
Criterion = Tuple[str, str, Any]


def apply_guarded_patch(
    data: Optional[Dict[str, Any]],
    expected_state: str,
    patch: Dict[str, Any],
    guard: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """The merged document, or None when `data` is missing or no longer matches."""
    if data is None or data.get("status") != expected_state:
        return None
    if any(data.get(field) != value for field, value in (guard or {}).items()):
        return None
    return {**data, **patch}


class SubscriptionStore(Protocol):
    """
    What the payment flow needs from persistence, nothing more.

    `update_if_state_matches` is the only way a record changes after
    creation: it applies `patch` atomically iff the stored status still equals
    `expected_state` (and every `guard` field still holds its given value),
    and returns the updated record, or None when the condition no longer holds.
    """

    async def create(self, subscription: Subscription) -> Subscription: ...

    async def find_by_id(self, subscription_id: str) -> Optional[Subscription]: ...

    async def find_by_checkout_id(self, checkout_request_id: str) -> Optional[Subscription]: ...

    async def find(self, criteria: Sequence[Criterion], limit: Optional[int] = None) -> List[Subscription]: ...

    async def update_if_state_matches(
        self,
        subscription_id: str,
        expected_state: str,
        patch: Dict[str, Any],
        guard: Optional[Dict[str, Any]] = None,
    ) -> Optional[Subscription]: ...


class FirestoreSubscriptionStore:
    """SubscriptionStore backed by a Firestore collection (one document per subscription)."""

    def __init__(self, db=None, collection: str = None):
        if db is None:
            from app.core.firebase import get_db
            db = get_db()
        self.db = db
        self.collection = collection or settings.SUBSCRIPTIONS_COLLECTION

    def _ref(self, subscription_id: str):
        return self.db.collection(self.collection).document(subscription_id)

    async def create(self, subscription: Subscription) -> Subscription:
        await asyncio.to_thread(self._ref(subscription.id).create, subscription.to_document())
        return subscription

    async def find_by_id(self, subscription_id: str) -> Optional[Subscription]:
        snap = await asyncio.to_thread(self._ref(subscription_id).get)
        if not snap.exists:
            return None
        return Subscription(**snap.to_dict())

    async def find_by_checkout_id(self, checkout_request_id: str) -> Optional[Subscription]:
        matches = await self.find([("checkout_request_id", "==", checkout_request_id)], limit=2)
        if len(matches) > 1:
            logger.error(f"Duplicate checkout_request_id {checkout_request_id} on {[m.id for m in matches]}")
        return matches[0] if matches else None

    async def find(self, criteria: Sequence[Criterion], limit: Optional[int] = None) -> List[Subscription]:
        query = self.db.collection(self.collection)
        for field, op, value in criteria:
            query = query.where(filter=FieldFilter(field, op, value))
        if limit:
            query = query.limit(limit)

        docs = await asyncio.to_thread(lambda: list(query.stream()))
        return [Subscription(**doc.to_dict()) for doc in docs]

    async def update_if_state_matches(
        self,
        subscription_id: str,
        expected_state: str,
        patch: Dict[str, Any],
        guard: Optional[Dict[str, Any]] = None,
    ) -> Optional[Subscription]:
        ref = self._ref(subscription_id)

        @firestore.transactional
        def txn(transaction):
            snap = ref.get(transaction=transaction)
            updated = apply_guarded_patch(
                snap.to_dict() if snap.exists else None, expected_state, patch, guard
            )
            if updated is not None:
                transaction.update(ref, patch)
            return updated

        transaction = self.db.transaction()
        updated = await asyncio.to_thread(txn, transaction)
        return Subscription(**updated) if updated else None
