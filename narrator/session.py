"""
Narrator — Sessions

A NarratorSession wires one conversation's worth of state and components:
AwarenessState, EngineState, bus, tracker, orchestrator, display and
engine. Nothing in a session is shared with any other session apart from
the stateless collaborators (LLM provider, store, display surface, clock).

SessionManager owns the active session and replaces it wholesale on a
conversation switch. The outgoing session's persisted slice is saved, the
session is shut down, and a brand-new session is built. Only the persisted
slice is loaded into it: escalation, history, cooldowns and counters
always start from zero.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from narrator.clients.llm import create_llm_provider
from narrator.clients.persistence import create_awareness_store
from narrator.primitives.clock import SystemClock
from narrator.systems.awareness.event_bus import AwarenessBus
from narrator.systems.awareness.tracker import AwarenessTracker
from narrator.systems.awareness.types import AwarenessState
from narrator.systems.voice.display import DisplayCoordinator, NullDisplaySurface
from narrator.systems.voice.orchestrator import GenerationOrchestrator
from narrator.systems.voice.service import NarratorEngine
from narrator.systems.voice.types import EngineState
from narrator.telemetry.logging import setup_logging

if TYPE_CHECKING:
    from narrator.clients.llm import LLMProvider
    from narrator.clients.persistence import AwarenessStore
    from narrator.config import NarratorConfig
    from narrator.primitives.clock import Clock
    from narrator.systems.awareness.types import PersistedAwareness
    from narrator.systems.voice.display import DisplaySurface, Sleep

logger = structlog.get_logger()


class NarratorSession:
    """Everything the narrator knows and does for one conversation."""

    def __init__(
        self,
        conversation_id: str,
        config: NarratorConfig,
        llm: LLMProvider,
        store: AwarenessStore,
        surface: DisplaySurface,
        clock: Clock,
        rng: random.Random,
        saved: PersistedAwareness | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.conversation_id = conversation_id
        self._store = store
        self._logger = logger.bind(system="narrator.session", conversation_id=conversation_id)

        self.awareness_state = AwarenessState.from_persisted(saved)
        self.engine_state = EngineState()

        self.bus = AwarenessBus(self.awareness_state, clock, config.awareness)
        self.tracker = AwarenessTracker(
            self.awareness_state,
            self.bus,
            clock,
            config.awareness,
            on_persist=self.schedule_save,
        )
        self.orchestrator = GenerationOrchestrator(
            llm=llm,
            clock=clock,
            rng=rng,
            engine_state=self.engine_state,
            awareness_state=self.awareness_state,
            config=config.generation,
            engine_config=config.engine,
        )
        self.display = DisplayCoordinator(surface, clock, config.display, sleep=sleep)
        self.engine = NarratorEngine(
            state=self.engine_state,
            tracker=self.tracker,
            bus=self.bus,
            orchestrator=self.orchestrator,
            display=self.display,
            clock=clock,
            rng=rng,
            config=config.engine,
            awareness_config=config.awareness,
        )

        self._save_task: asyncio.Task[None] | None = None
        self._dirty: bool = False
        self._closed: bool = False

    async def start(self) -> None:
        await self.engine.initialize()
        self._logger.info("session_started", restored=self.awareness_state.last_interaction is not None)

    # ─── Persistence ─────────────────────────────────────────────────

    def schedule_save(self) -> None:
        """
        Queue a background save of the persisted slice. Calls that arrive
        while a save is running coalesce into one follow-up save.
        """
        if self._closed:
            return
        self._dirty = True
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the dirty flag is flushed by close()
            return
        if self._save_task is None or self._save_task.done():
            self._save_task = asyncio.create_task(self._save_loop(), name="narrator_session_save")

    async def _save_loop(self) -> None:
        while self._dirty:
            self._dirty = False
            try:
                await self._store.save(self.conversation_id, self.awareness_state.to_persisted())
            except Exception:
                self._logger.warning("session_save_failed", exc_info=True)
                return

    async def flush(self) -> None:
        if self._save_task is not None and not self._save_task.done():
            await self._save_task
        if self._dirty:
            await self._save_loop()

    async def close(self) -> None:
        if self._closed:
            return
        self._dirty = True
        await self.flush()
        self._closed = True
        await self.engine.shutdown()
        self._logger.info("session_closed")

    async def health(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "engine": await self.engine.health(),
        }


class SessionManager:
    """
    Holds the one active session and swaps it on conversation change.
    """

    def __init__(
        self,
        config: NarratorConfig,
        llm: LLMProvider,
        store: AwarenessStore,
        surface: DisplaySurface | None = None,
        clock: Clock | None = None,
        rng_factory: Callable[[], random.Random] = random.Random,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self._llm = llm
        self._store = store
        self._surface = surface or NullDisplaySurface()
        self._clock = clock or SystemClock()
        self._rng_factory = rng_factory
        self._sleep = sleep
        self._current: NarratorSession | None = None
        self._total_switches: int = 0
        self._logger = logger.bind(system="narrator.sessions")

    @property
    def current(self) -> NarratorSession | None:
        return self._current

    async def switch(self, conversation_id: str) -> NarratorSession:
        """
        Make ``conversation_id`` the active conversation. Switching to the
        already-active conversation is a no-op.
        """
        outgoing = self._current
        if outgoing is not None and outgoing.conversation_id == conversation_id:
            return outgoing

        if outgoing is not None:
            await outgoing.close()

        saved = await self._store.load(conversation_id)
        session = NarratorSession(
            conversation_id=conversation_id,
            config=self._config,
            llm=self._llm,
            store=self._store,
            surface=self._surface,
            clock=self._clock,
            rng=self._rng_factory(),
            saved=saved,
            sleep=self._sleep,
        )
        structlog.contextvars.bind_contextvars(conversation_id=conversation_id)
        await session.start()
        self._current = session
        self._total_switches += 1

        self._logger.info(
            "conversation_switched",
            from_conversation=outgoing.conversation_id if outgoing else None,
            to_conversation=conversation_id,
            restored=saved is not None,
        )
        return session

    async def close(self) -> None:
        if self._current is not None:
            await self._current.close()
            self._current = None
        await self._llm.close()

    async def health(self) -> dict[str, Any]:
        return {
            "total_switches": self._total_switches,
            "llm_provider": self._llm.name,
            "current": await self._current.health() if self._current else None,
        }


def create_session_manager(
    config: NarratorConfig,
    surface: DisplaySurface | None = None,
    clock: Clock | None = None,
) -> SessionManager:
    """
    Composition root: configure logging, then build a manager with the
    LLM provider and store the config names.
    """
    setup_logging(config.logging)
    return SessionManager(
        config=config,
        llm=create_llm_provider(config.llm),
        store=create_awareness_store(config.persistence),
        surface=surface,
        clock=clock,
    )
