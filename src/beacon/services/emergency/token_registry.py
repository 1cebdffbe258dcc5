"""
Responder Token Registry

Keeps the set of push-addressable responder endpoints. Raw tokens are
stored as values; the document key is a normalized form safe to use as
a storage identifier.
"""

import logging
import re
from typing import List, Optional, Set

from ...core.config import MAX_TOKEN_KEY_LENGTH
from ...core.document_store import SERVER_TIMESTAMP, DocumentStore
from ...models.emergency import ResponderEndpoint


RESPONDERS_COLLECTION = "responders"

_UNSAFE_KEY_CHARS = re.compile(r'[^A-Za-z0-9_-]')


def normalize_token_key(token: str, max_length: int = MAX_TOKEN_KEY_LENGTH) -> str:
    """
    Turn a raw push token into a storage key.

    Every character outside [A-Za-z0-9_-] becomes '_' and the result is
    cut to max_length characters (never more than 150).
    """
    max_length = min(max_length, MAX_TOKEN_KEY_LENGTH)
    return _UNSAFE_KEY_CHARS.sub('_', token)[:max_length]


class TokenRegistry:
    """Registry of responder push endpoints backed by a document store"""

    def __init__(self, store: DocumentStore, max_key_length: int = MAX_TOKEN_KEY_LENGTH):
        if not 1 <= max_key_length <= MAX_TOKEN_KEY_LENGTH:
            raise ValueError(f"max_key_length must be between 1 and {MAX_TOKEN_KEY_LENGTH}")
        self.store = store
        self.max_key_length = max_key_length
        self.logger = logging.getLogger(__name__)

    async def register(self, token: Optional[str]) -> Optional[str]:
        """
        Register or refresh a responder push token.

        Args:
            token: Raw push token as handed out by the push provider

        Returns:
            The storage key, or None when the token was empty and ignored
        """
        if not isinstance(token, str) or not token.strip():
            self.logger.debug("Ignoring empty responder token")
            return None

        key = normalize_token_key(token, self.max_key_length)
        await self.store.upsert(RESPONDERS_COLLECTION, key, {
            'token': token,
            'updatedAt': SERVER_TIMESTAMP,
        })

        self.logger.info(f"Registered responder endpoint {key[:16]}...")
        return key

    async def endpoints(self) -> List[ResponderEndpoint]:
        """All stored responder endpoints"""
        docs = await self.store.list(RESPONDERS_COLLECTION)
        return [ResponderEndpoint.from_document(doc.id, doc.data) for doc in docs]

    async def list_tokens(self) -> Set[str]:
        """Distinct raw tokens currently registered"""
        docs = await self.store.list(RESPONDERS_COLLECTION)
        tokens = set()
        for doc in docs:
            token = doc.data.get('token')
            if isinstance(token, str) and token:
                tokens.add(token)
        return tokens
