"""
Narrator — Awareness

Watches what the user does and when, and turns it into typed events on a
cooldown-gated bus.
"""

from narrator.systems.awareness.event_bus import AwarenessBus, EventHandler
from narrator.systems.awareness.patterns import PatternDetector
from narrator.systems.awareness.tracker import AwarenessTracker
from narrator.systems.awareness.types import (
    AbsenceReport,
    AwarenessEvent,
    AwarenessEventType,
    AwarenessState,
    FidgetPattern,
    PatternDetection,
    PendingFortune,
    PersistedAwareness,
    RollOutcome,
    TimePeriod,
)

__all__ = [
    "AwarenessBus",
    "EventHandler",
    "PatternDetector",
    "AwarenessTracker",
    "AbsenceReport",
    "AwarenessEvent",
    "AwarenessEventType",
    "AwarenessState",
    "FidgetPattern",
    "PatternDetection",
    "PendingFortune",
    "PersistedAwareness",
    "RollOutcome",
    "TimePeriod",
]
