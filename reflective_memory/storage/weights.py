"""
Per-user persistence of reranker weights.

Stored under namespace ``(scope, user_id, "weights")`` with key
``"reranker"``. Loading never raises: a missing, malformed or wrongly
sized payload reads as "no durable state" and the caller starts from a
fresh identity state.
"""

import logging

from pydantic import ValidationError

from reflective_memory.models.memory import now_ms
from reflective_memory.models.reranker import RerankerState
from reflective_memory.storage.base import BaseStore, Namespace

WEIGHTS_KEY = "reranker"


class WeightStorage:
    """Load and save RerankerState for each user."""

    def __init__(
        self,
        store: BaseStore,
        dimension: int,
        scope: str = "rmm",
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.dimension = dimension
        self.scope = scope
        self.logger = logger or logging.getLogger(__name__)

    def namespace(self, user_id: str) -> Namespace:
        return (self.scope, user_id, "weights")

    async def load_weights(self, user_id: str) -> RerankerState | None:
        """Return the stored state, or None if absent, invalid or unreadable."""
        try:
            item = await self.store.get(self.namespace(user_id), WEIGHTS_KEY)
        except Exception as e:
            self.logger.warning(f"Failed to load weights for {user_id}: {e}")
            return None

        if item is None:
            return None

        try:
            return RerankerState.from_payload(item.value, self.dimension)
        except (ValidationError, ValueError, TypeError) as e:
            self.logger.warning(f"Ignoring invalid stored weights for {user_id}: {e}")
            return None

    async def save_weights(self, user_id: str, state: RerankerState) -> bool:
        """Validate and write the state. Returns False without writing on any failure."""
        try:
            state.validate_dimension(self.dimension)
        except ValueError as e:
            self.logger.warning(f"Refusing to save weights for {user_id}: {e}")
            return False

        payload = state.to_payload()
        payload["updatedAt"] = now_ms()

        try:
            await self.store.put(self.namespace(user_id), WEIGHTS_KEY, payload)
        except Exception as e:
            self.logger.warning(f"Failed to save weights for {user_id}: {e}")
            return False

        return True
