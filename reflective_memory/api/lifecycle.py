"""
Turn lifecycle for Reflective Memory Management.

The orchestrator that owns the conversation loop calls these stages in
order for every turn:

    ctx = await memory.on_turn_start(user_id)
    await memory.before_model_call(ctx, messages)
    response = await memory.around_model_call(ctx, messages, call_model)
    await memory.after_model_call(ctx)
    await memory.on_turn_end(ctx, [human_message, response])

Turns for the same user must run one after another. Reranker weights are
written last-write-wins, so concurrent turns for one user can lose a weight
update. Background reflection may overlap later turns: only one reflection
runs per user, and its main-buffer release is serialized with turn-end
appends by the buffer storage's per-user lock.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

import numpy as np
from langchain_core.messages import BaseMessage, HumanMessage

from reflective_memory.config import RMMConfig
from reflective_memory.consolidation.actions import UpdateAction
from reflective_memory.consolidation.consolidator import MemoryConsolidator
from reflective_memory.consolidation.extraction import MemoryExtractor
from reflective_memory.consolidation.reflection import ProspectiveReflector
from reflective_memory.encoding.embedder import BaseEmbedder, lazy_dimension_validator
from reflective_memory.encoding.generator import BaseGenerator
from reflective_memory.messages import extract_last_human_message, message_text
from reflective_memory.models.memory import MemoryEntry, RetrievedMemory
from reflective_memory.models.reranker import Citation, RerankerState
from reflective_memory.prompts import format_memories_block
from reflective_memory.reranking.reranker import LearnableReranker, Selection
from reflective_memory.reranking.update import UpdateOutcome, WeightUpdater
from reflective_memory.retrieval.candidates import CandidateRetrieval, MemoryIndex
from reflective_memory.storage.base import BaseStore
from reflective_memory.storage.buffer import MessageBufferStorage
from reflective_memory.storage.gradients import GradientStorage
from reflective_memory.storage.metadata import MetadataStorage
from reflective_memory.storage.weights import WeightStorage

ModelHandler = Callable[[list[BaseMessage]], Awaitable[Any]]


@dataclass
class TurnContext:
    """State carried across the stages of one turn."""

    user_id: str | None
    state: RerankerState
    query: str | None = None
    candidates: list[RetrievedMemory] = field(default_factory=list)
    selection: Selection = field(default_factory=Selection)
    answer: str | None = None
    citations: list[Citation] = field(default_factory=list)
    weights_saved: bool | None = None

    @property
    def shown(self) -> list[RetrievedMemory]:
        return self.selection.selected


class ReflectiveMemory:
    """
    Retrospective and prospective reflection wired into a conversation turn.

    Usage:
        memory = ReflectiveMemory(config, store, index, embedder, generator)
        ctx = await memory.on_turn_start("user-1")
        ...

    Without a generator, prospective reflection is disabled and
    process_new_memory always adds.
    """

    def __init__(
        self,
        config: RMMConfig,
        store: BaseStore,
        index: MemoryIndex,
        embedder: BaseEmbedder,
        generator: BaseGenerator | None = None,
        rng: np.random.Generator | None = None,
        logger: logging.Logger | None = None,
        reflect_in_background: bool = True,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.reflect_in_background = reflect_in_background

        self.weights = WeightStorage(store, config.dimension, config.scope, self.logger)
        self.buffers = MessageBufferStorage(store, config.scope, self.logger)
        self.gradients = GradientStorage(store, config.dimension, config.scope, self.logger)
        self.metadata = MetadataStorage(store, config.scope, self.logger)
        self.retrieval = CandidateRetrieval(index, self.logger)
        self.reranker = LearnableReranker(embedder, config.dimension, rng, self.logger)
        self.updater = WeightUpdater(config.clip_threshold, self.logger, config.update_batch_size)
        self._turn_updater = WeightUpdater(config.clip_threshold, self.logger)
        self._validate_embeddings = lazy_dimension_validator(embedder, config.dimension, self.logger)

        self.consolidator = MemoryConsolidator(index, generator, self.retrieval, logger=self.logger)
        self.reflector: ProspectiveReflector | None = None
        if generator is not None:
            self.reflector = ProspectiveReflector(
                self.buffers,
                MemoryExtractor(generator, embedder, self.logger),
                self.consolidator,
                config.reflection,
                self.logger,
            )

        self._reflections: dict[str, asyncio.Task] = {}

    async def validate_embeddings(self) -> None:
        """
        Check the embedding dimension once.

        Raises:
            ConfigurationError: If the provider's dimension differs from the configured one.
        """
        await self._validate_embeddings()

    async def _reflect(self, user_id: str) -> bool:
        reflected = await self.reflector.maybe_reflect(user_id)
        if reflected:
            await self.metadata.record_session(user_id, self.config.reranker)
        return reflected

    def _schedule_reflection(self, user_id: str) -> None:
        running = self._reflections.get(user_id)
        if running is not None and not running.done():
            self.logger.debug(f"Reflection for {user_id} still running, not scheduling another")
            return

        task = asyncio.create_task(self._reflect(user_id))
        self._reflections[user_id] = task
        task.add_done_callback(lambda done: self._forget_reflection(user_id, done))

    def _forget_reflection(self, user_id: str, task: asyncio.Task) -> None:
        if self._reflections.get(user_id) is task:
            del self._reflections[user_id]

    async def on_turn_start(self, user_id: str | None) -> TurnContext:
        """Load the user's reranker state and kick off reflection if it is due."""
        state = await self.weights.load_weights(user_id) if user_id else None
        if state is None:
            state = RerankerState.initialize(self.config.dimension, self.config.reranker)

        if user_id and self.reflector is not None and self.config.enabled:
            if self.reflect_in_background:
                self._schedule_reflection(user_id)
            else:
                await self._reflect(user_id)

        return TurnContext(user_id=user_id, state=state)

    async def before_model_call(
        self, ctx: TurnContext, messages: Sequence[BaseMessage]
    ) -> list[RetrievedMemory]:
        """Retrieve top-K candidates for the latest human message."""
        if not self.config.enabled:
            return []

        ctx.query = extract_last_human_message(messages)
        if ctx.query is None:
            return []

        ctx.candidates = await self.retrieval.retrieve_for_query(ctx.query, ctx.state.config.top_k)
        return ctx.candidates

    async def around_model_call(
        self,
        ctx: TurnContext,
        messages: Sequence[BaseMessage],
        handler: ModelHandler,
    ) -> Any:
        """
        Rerank the candidates, show the selection to the model and call it.

        The memories go in as one extra human message after the conversation;
        they are not part of the returned history.
        """
        if not ctx.candidates or ctx.query is None:
            return await handler(list(messages))

        await self.validate_embeddings()

        ctx.selection = await self.reranker.select(ctx.query, ctx.candidates, ctx.state)
        if not ctx.selection.selected:
            return await handler(list(messages))

        memories = HumanMessage(content=format_memories_block(ctx.selection.selected))
        response = await handler([*messages, memories])

        ctx.answer = message_text(response) if isinstance(response, BaseMessage) else str(response)
        return response

    async def _update_weights(self, ctx: TurnContext) -> UpdateOutcome:
        trace = ctx.selection.trace
        if not ctx.user_id:
            return self._turn_updater.update(trace, ctx.answer or "", ctx.state)
        if self.updater.batch_size == 1 or trace is None:
            return self.updater.update(trace, ctx.answer or "", ctx.state)

        accumulator = await self.gradients.load_accumulator(ctx.user_id)
        outcome = self.updater.update(trace, ctx.answer or "", ctx.state, accumulator)
        if outcome.accumulator is not None and outcome.accumulator is not accumulator:
            await self.gradients.save_accumulator(ctx.user_id, outcome.accumulator)
        return outcome

    async def after_model_call(self, ctx: TurnContext, answer: str | None = None) -> UpdateOutcome:
        """
        Learn from the answer's citations and persist the new weights.

        With ``update_batch_size`` above 1, turns of a known user add to a
        persisted gradient batch and weights change only when it fills.
        Anonymous turns have nowhere to keep a batch and step every turn.
        """
        if answer is not None:
            ctx.answer = answer

        outcome = await self._update_weights(ctx)
        ctx.citations = outcome.citations
        if not outcome.applied:
            return outcome

        ctx.state = outcome.state
        if ctx.user_id:
            ctx.weights_saved = await self.weights.save_weights(ctx.user_id, ctx.state)
            if not ctx.weights_saved:
                self.logger.warning(
                    f"Reranker weights for {ctx.user_id} not persisted, keeping them for this turn only"
                )
        return outcome

    async def on_turn_end(self, ctx: TurnContext, messages: Sequence[BaseMessage]) -> bool:
        """Append this turn's messages to the user's reflection buffer."""
        if not ctx.user_id or not messages or not self.config.enabled:
            return False

        return await self.buffers.append_messages(ctx.user_id, messages)

    async def process_new_memory(self, memory: MemoryEntry) -> UpdateAction:
        """Consolidate an externally extracted memory into the bank."""
        return await self.consolidator.process_new_memory(memory)

    async def drain(self) -> None:
        """Wait for background reflection tasks to finish."""
        if self._reflections:
            await asyncio.gather(*list(self._reflections.values()), return_exceptions=True)
