"""
Emergency Store

Creates and transitions emergency records and exposes point and
latest-open subscriptions over them.
"""

import logging
from typing import Callable, List, Optional, Union

from ...core.document_store import (
    SERVER_TIMESTAMP, Document, DocumentStore, Query, Subscription
)
from ...models.emergency import (
    AcknowledgeOutcome, Emergency, EmergencyCategory, EmergencyStatus
)
from ...models.location import validate_coordinates


EMERGENCIES_COLLECTION = "emergencies"

EmergencyCallback = Callable[[Optional[Emergency]], None]

LATEST_OPEN_QUERY = (
    Query()
    .where('status', '==', EmergencyStatus.OPEN.value)
    .order('createdAt', descending=True)
    .take(1)
)


class EmergencyStore:
    """Emergency records kept in the 'emergencies' collection"""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.logger = logging.getLogger(__name__)

    async def create(self, category: Union[EmergencyCategory, str],
                     latitude: float, longitude: float) -> str:
        """
        Write a new open emergency.

        Raises:
            ValueError: Unknown category or invalid coordinates
            PersistenceError: The write did not complete
        """
        category = EmergencyCategory.parse(category)
        validate_coordinates(latitude, longitude)

        emergency_id = await self.store.create(EMERGENCIES_COLLECTION, {
            'category': category.value,
            'lat': float(latitude),
            'lng': float(longitude),
            'createdAt': SERVER_TIMESTAMP,
            'status': EmergencyStatus.OPEN.value,
        })

        self.logger.info(f"Created {category.value} emergency {emergency_id}")
        return emergency_id

    async def get(self, emergency_id: str) -> Optional[Emergency]:
        doc = await self.store.get(EMERGENCIES_COLLECTION, emergency_id)
        return _to_emergency(doc)

    async def acknowledge(self, emergency_id: str) -> AcknowledgeOutcome:
        """
        Claim an open emergency.

        Only a write that finds the record open performs the transition;
        every later caller gets ALREADY_ACKNOWLEDGED.

        Raises:
            NotFoundError: No emergency with this id
            PersistenceError: Transport failure
        """
        claimed = await self.store.update_if(
            EMERGENCIES_COLLECTION,
            emergency_id,
            {'status': EmergencyStatus.ACKNOWLEDGED.value},
            expected={'status': EmergencyStatus.OPEN.value}
        )

        if claimed:
            self.logger.info(f"Emergency {emergency_id} acknowledged")
            return AcknowledgeOutcome.ACKNOWLEDGED

        self.logger.debug(f"Emergency {emergency_id} was already acknowledged")
        return AcknowledgeOutcome.ALREADY_ACKNOWLEDGED

    def subscribe_one(self, emergency_id: str, on_update: EmergencyCallback) -> Subscription:
        """Observe one emergency; None is delivered while it does not exist"""
        return self.store.observe(
            EMERGENCIES_COLLECTION,
            emergency_id,
            lambda doc: on_update(_to_emergency(doc))
        )

    def subscribe_latest_open(self, on_update: EmergencyCallback) -> Subscription:
        """Observe the most recently created emergency that is still open"""
        def deliver(docs: List[Document]):
            on_update(_to_emergency(docs[0]) if docs else None)

        return self.store.observe_query(EMERGENCIES_COLLECTION, LATEST_OPEN_QUERY, deliver)


def _to_emergency(doc: Optional[Document]) -> Optional[Emergency]:
    if doc is None:
        return None
    return Emergency.from_document(doc.id, doc.data)
