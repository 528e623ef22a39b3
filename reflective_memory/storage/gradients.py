"""
Per-user persistence of accumulated reranker gradients.

Only used when ``RMMConfig.update_batch_size`` is above 1. Stored under
namespace ``(scope, user_id, "gradients")`` with key ``"gradient"``. Like
the weights, a missing or invalid record reads as None and the caller
starts an empty batch.
"""

import logging

from pydantic import ValidationError

from reflective_memory.models.memory import now_ms
from reflective_memory.models.reranker import GradientAccumulator
from reflective_memory.storage.base import BaseStore, Namespace

GRADIENT_KEY = "gradient"


class GradientStorage:
    """Load, save and clear GradientAccumulator for each user."""

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
        return (self.scope, user_id, "gradients")

    async def load_accumulator(self, user_id: str) -> GradientAccumulator | None:
        try:
            item = await self.store.get(self.namespace(user_id), GRADIENT_KEY)
        except Exception as e:
            self.logger.warning(f"Failed to load gradients for {user_id}: {e}")
            return None

        if item is None:
            return None

        try:
            return GradientAccumulator.from_payload(item.value, self.dimension)
        except (ValidationError, ValueError, TypeError) as e:
            self.logger.warning(f"Ignoring invalid stored gradients for {user_id}: {e}")
            return None

    async def save_accumulator(self, user_id: str, accumulator: GradientAccumulator) -> bool:
        if accumulator.dimension != self.dimension:
            self.logger.warning(
                f"Refusing to save {accumulator.dimension}-dimensional gradients for {user_id}"
            )
            return False

        payload = accumulator.to_payload()
        payload["lastUpdated"] = now_ms()

        try:
            await self.store.put(self.namespace(user_id), GRADIENT_KEY, payload)
        except Exception as e:
            self.logger.warning(f"Failed to save gradients for {user_id}: {e}")
            return False
        return True

    async def clear_accumulator(self, user_id: str) -> bool:
        return await self.save_accumulator(user_id, GradientAccumulator.empty(self.dimension))
