"""
Narrator — Awareness Event Bus

Typed, synchronous publish/subscribe with a per-event-type cooldown.

The cooldown is the bus's only backpressure: an emission of type T that
arrives less than ``cooldown[T]`` after the last *effective* emission of T
is swallowed whole (no handler runs) and counted. The last-reaction stamp
is written before any handler runs, so a handler that re-emits its own
type during dispatch hits the cooldown instead of recursing.

Dispatch is run-to-completion and in subscription order. A handler that
raises is logged and skipped; the remaining handlers still run.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from narrator.errors import UnknownEventType
from narrator.systems.awareness.types import (
    AwarenessEvent,
    AwarenessEventType,
    AwarenessState,
)

if TYPE_CHECKING:
    from narrator.config import AwarenessConfig
    from narrator.primitives.clock import Clock

logger = structlog.get_logger("narrator.systems.awareness.event_bus")

# Handler signature: def handler(event: AwarenessEvent) -> None
EventHandler = Callable[[AwarenessEvent], None]
Unsubscribe = Callable[[], None]


def _noop_unsubscribe() -> None:
    return None


def coerce_event_type(event_type: AwarenessEventType | str) -> AwarenessEventType:
    """Map a string or enum onto a known event type, or raise UnknownEventType."""
    if isinstance(event_type, AwarenessEventType):
        return event_type
    try:
        return AwarenessEventType(event_type)
    except ValueError:
        raise UnknownEventType(event_type) from None


class AwarenessBus:
    """
    Awareness event bus for one conversation.

    Cooldown bookkeeping lives on the session's AwarenessState so that a
    session switch (which replaces the state) also resets every cooldown.
    """

    def __init__(
        self,
        state: AwarenessState,
        clock: Clock,
        config: AwarenessConfig,
    ) -> None:
        self._state = state
        self._clock = clock
        self._default_cooldown = config.default_cooldown_seconds
        self._cooldowns: dict[AwarenessEventType, float] = {}
        for name, seconds in config.cooldown_seconds.items():
            try:
                self._cooldowns[coerce_event_type(name)] = seconds
            except UnknownEventType:
                logger.warning("cooldown_for_unknown_event_type", event_type=name)
        self._logger = logger.bind(system="narrator.awareness.bus")

        self._subscribers: dict[AwarenessEventType, list[EventHandler]] = defaultdict(list)

        # Metrics
        self._total_emitted: int = 0
        self._total_dispatched: int = 0
        self._total_suppressed: int = 0
        self._total_handler_errors: int = 0
        self._suppressed_by_type: dict[AwarenessEventType, int] = defaultdict(int)

    # ─── Subscription ────────────────────────────────────────────────

    def subscribe(
        self,
        event_type: AwarenessEventType | str,
        handler: EventHandler,
    ) -> Unsubscribe:
        """
        Register a handler for one event type.

        Returns a callable that removes the registration. Unknown types are
        logged and get a no-op unsubscribe.
        """
        try:
            et = coerce_event_type(event_type)
        except UnknownEventType:
            self._logger.warning("subscribe_unknown_event_type", event_type=str(event_type))
            return _noop_unsubscribe

        self._subscribers[et].append(handler)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(et)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def cooldown_for(self, event_type: AwarenessEventType) -> float:
        return self._cooldowns.get(event_type, self._default_cooldown)

    # ─── Emission ────────────────────────────────────────────────────

    def emit(
        self,
        event_type: AwarenessEventType | str,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        """
        Publish an event. Returns True when handlers were dispatched,
        False when the emission was swallowed (cooldown or unknown type).
        """
        try:
            et = coerce_event_type(event_type)
        except UnknownEventType:
            self._logger.warning("emit_unknown_event_type", event_type=str(event_type))
            return False

        self._total_emitted += 1
        now = self._clock.now()

        last = self._state.last_reaction.get(et)
        cooldown = self.cooldown_for(et)
        if last is not None and (now - last).total_seconds() < cooldown:
            self._total_suppressed += 1
            self._suppressed_by_type[et] += 1
            self._logger.debug(
                "event_on_cooldown",
                event_type=et.value,
                elapsed_s=round((now - last).total_seconds(), 2),
                cooldown_s=cooldown,
            )
            return False

        # Stamp before dispatch: a reentrant emit of the same type must see it.
        if last is None or now > last:
            self._state.last_reaction[et] = now

        event = AwarenessEvent(event_type=et, payload=payload or {}, timestamp=now)
        self._logger.debug("event_emitted", event_type=et.value)
        self._dispatch(event)
        return True

    def _dispatch(self, event: AwarenessEvent) -> None:
        self._total_dispatched += 1
        for handler in list(self._subscribers.get(event.event_type, [])):
            try:
                handler(event)
            except Exception:
                self._total_handler_errors += 1
                self._logger.error(
                    "event_handler_error",
                    event_type=event.event_type.value,
                    handler=getattr(handler, "__name__", repr(handler)),
                    exc_info=True,
                )

    # ─── Stats ───────────────────────────────────────────────────────

    @property
    def suppressed_count(self) -> int:
        return self._total_suppressed

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_emitted": self._total_emitted,
            "total_dispatched": self._total_dispatched,
            "suppressed_by_cooldown": self._total_suppressed,
            "handler_errors": self._total_handler_errors,
            "suppressed_by_type": {
                et.value: count for et, count in self._suppressed_by_type.items()
            },
            "subscriber_count": sum(len(v) for v in self._subscribers.values()),
        }
