"""
In-memory document store.

Backs local runs and tests; observation is delivered synchronously after
each write.
"""

import copy
import logging
import uuid
from typing import Any, Dict, List, Optional

from .document_store import (
    Document, NotFoundError, ObservableDocumentStore, Query, resolve_server_values
)


class InMemoryDocumentStore(ObservableDocumentStore):
    """Document store kept in process memory"""

    def __init__(self):
        super().__init__()
        self.logger = logging.getLogger(__name__)
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _documents(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def _read(self, collection: str, doc_id: str) -> Optional[Document]:
        data = self._documents(collection).get(doc_id)
        if data is None:
            return None
        return Document(doc_id, copy.deepcopy(data))

    def _run_query(self, collection: str, query: Query) -> List[Document]:
        docs = (Document(doc_id, copy.deepcopy(data))
                for doc_id, data in self._documents(collection).items())
        return query.apply(docs)

    async def create(self, collection, fields):
        doc_id = uuid.uuid4().hex
        self._documents(collection)[doc_id] = resolve_server_values(fields, self.clock.now())
        self._notify(collection, doc_id)
        return doc_id

    async def get(self, collection, doc_id):
        return self._read(collection, doc_id)

    async def query(self, collection, query):
        return self._run_query(collection, query)

    async def list(self, collection):
        return self._run_query(collection, Query())

    async def update(self, collection, doc_id, fields):
        documents = self._documents(collection)
        if doc_id not in documents:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")

        documents[doc_id].update(resolve_server_values(fields, self.clock.now()))
        self._notify(collection, doc_id)

    async def update_if(self, collection, doc_id, fields, expected):
        documents = self._documents(collection)
        if doc_id not in documents:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")

        current = documents[doc_id]
        if any(current.get(key) != value for key, value in expected.items()):
            return False

        current.update(resolve_server_values(fields, self.clock.now()))
        self._notify(collection, doc_id)
        return True

    async def upsert(self, collection, key, fields):
        self._documents(collection)[key] = resolve_server_values(fields, self.clock.now())
        self._notify(collection, key)

    async def delete(self, collection, doc_id):
        if self._documents(collection).pop(doc_id, None) is not None:
            self._notify(collection, doc_id)
