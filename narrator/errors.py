"""
Narrator -- Error Hierarchy

All exceptions raised within the narrator.

None of these are fatal. Each family is absorbed at a fixed seam:

  GenerationError subclasses -> raised on the generation path, absorbed by
                                GenerationOrchestrator into a fallback line
  SpeechSuppressed subclasses -> raised by the engine's gate checks,
                                absorbed by NarratorEngine.speak (counted)
  UnknownEventType           -> raised by event-type coercion, absorbed by
                                AwarenessBus.subscribe / emit (warning, no-op)
"""

from __future__ import annotations


class NarratorError(RuntimeError):
    """Base for all narrator errors."""


# ─── Generation path ──────────────────────────────────────────────


class GenerationError(NarratorError):
    """The generation service did not produce a usable line."""


class GenerationTimeout(GenerationError):
    """The generation call did not resolve before the deadline."""

    def __init__(self, deadline_s: float) -> None:
        super().__init__(f"generation exceeded {deadline_s:.2f}s deadline")
        self.deadline_s = deadline_s


class GenerationFailure(GenerationError):
    """The generation service raised, or is unavailable."""


class InvalidGenerationOutput(GenerationError):
    """
    The service answered, but nothing usable survived sanitisation
    (empty, too short, or only quotes and attribution).
    """

    def __init__(self, raw: str, cleaned: str) -> None:
        super().__init__(f"unusable generation output ({len(cleaned)} chars after cleanup)")
        self.raw = raw
        self.cleaned = cleaned


# ─── Speech gating ────────────────────────────────────────────────


class SpeechSuppressed(NarratorError):
    """The engine decided not to speak this time."""


class AlreadyGenerating(SpeechSuppressed):
    """Single-flight: a generation is already in progress."""


class CooldownActive(SpeechSuppressed):
    """The inter-generation cooldown has not elapsed."""

    def __init__(self, remaining_s: float) -> None:
        super().__init__(f"generation cooldown active ({remaining_s:.1f}s remaining)")
        self.remaining_s = remaining_s


class ResponseChanceMissed(SpeechSuppressed):
    """The volume-scaled response roll came up empty."""

    def __init__(self, chance: float) -> None:
        super().__init__(f"response chance missed ({chance:.0%})")
        self.chance = chance


# ─── Event bus ────────────────────────────────────────────────────


class UnknownEventType(NarratorError):
    """Subscription or emission named an event type the bus does not know."""

    def __init__(self, event_type: object) -> None:
        super().__init__(f"unknown event type: {event_type!r}")
        self.event_type = event_type
