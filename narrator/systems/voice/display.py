"""
Narrator — Display Coordinator

Puts a finished line in front of the user. Waits out a per-trigger
choreography delay first so the line lands after whatever visual the
trigger caused (dice animation, drawer sliding open), then updates the
persistent slot and, when loud enough or asked to, raises a notification.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import structlog

from narrator.systems.voice.personas import PERSONAS
from narrator.systems.voice.types import LastSpoken

if TYPE_CHECKING:
    from narrator.config import DisplayConfig
    from narrator.primitives.clock import Clock
    from narrator.systems.voice.types import GenerationResult, SpeakOptions, Trigger

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[Any]]


@runtime_checkable
class DisplaySurface(Protocol):
    """Whatever the host renders into."""

    def set_persistent_slot(self, text: str, persona_token: str) -> None: ...

    def raise_notification(self, text: str, title: str, duration_ms: int) -> None: ...


class NullDisplaySurface:
    """Renders nothing. Lines still reach ``last_spoken`` and the logs."""

    def set_persistent_slot(self, text: str, persona_token: str) -> None:
        return None

    def raise_notification(self, text: str, title: str, duration_ms: int) -> None:
        return None


class DisplayCoordinator:
    def __init__(
        self,
        surface: DisplaySurface,
        clock: Clock,
        config: DisplayConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._surface = surface
        self._clock = clock
        self._config = config
        self._sleep = sleep
        self._logger = logger.bind(system="narrator.voice.display")

        self._total_displayed: int = 0
        self._total_notifications: int = 0

    def choreography_delay_ms(self, trigger: Trigger) -> int:
        return self._config.choreography_delay_ms.get(trigger.value, self._config.default_delay_ms)

    def should_notify(self, volume: int, toast: bool | None) -> bool:
        if toast is False:
            return False
        return toast is True or volume >= self._config.notification_min_volume

    def notification_duration_ms(self, volume: int) -> int:
        if volume >= 5:
            return self._config.notification_duration_max_ms
        if volume >= 4:
            return self._config.notification_duration_loud_ms
        return self._config.notification_duration_ms

    async def display(
        self,
        result: GenerationResult,
        volume: int,
        options: SpeakOptions,
    ) -> LastSpoken:
        delay_ms = self.choreography_delay_ms(result.trigger)
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000.0)

        persona = PERSONAS[result.persona]
        self._surface.set_persistent_slot(result.text, persona.color)
        self._total_displayed += 1

        notified = self.should_notify(volume, options.toast)
        if notified:
            duration = self.notification_duration_ms(volume)
            self._surface.raise_notification(result.text, persona.display_name, duration)
            self._total_notifications += 1

        self._logger.info(
            "line_displayed",
            trigger=result.trigger.value,
            persona=result.persona.value,
            origin=result.origin.value,
            volume=volume,
            notified=notified,
        )

        return LastSpoken(
            text=result.text,
            persona=result.persona,
            color=persona.color,
            trigger=result.trigger,
            origin=result.origin,
            spoken_at=self._clock.now(),
        )

    def metrics(self) -> dict[str, int]:
        return {
            "displayed": self._total_displayed,
            "notifications": self._total_notifications,
        }
