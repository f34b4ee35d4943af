"""
Narrator — Voice

Decides whether to speak, who speaks, what gets said, and how it is shown.
"""

from narrator.systems.voice.display import (
    DisplayCoordinator,
    DisplaySurface,
    NullDisplaySurface,
)
from narrator.systems.voice.escalation import calculate_volume
from narrator.systems.voice.orchestrator import GenerationOrchestrator, sanitize_line
from narrator.systems.voice.personas import PERSONAS, VOLUME_LEVELS
from narrator.systems.voice.selector import PersonaSelector
from narrator.systems.voice.service import NarratorEngine
from narrator.systems.voice.types import (
    EngineState,
    GenerationOrigin,
    GenerationResult,
    Persona,
    PersonaId,
    SpeakOptions,
    SpeakOutcome,
    Trigger,
    VolumeLevel,
)

__all__ = [
    "DisplayCoordinator",
    "DisplaySurface",
    "NullDisplaySurface",
    "calculate_volume",
    "GenerationOrchestrator",
    "sanitize_line",
    "PERSONAS",
    "VOLUME_LEVELS",
    "PersonaSelector",
    "NarratorEngine",
    "EngineState",
    "GenerationOrigin",
    "GenerationResult",
    "Persona",
    "PersonaId",
    "SpeakOptions",
    "SpeakOutcome",
    "Trigger",
    "VolumeLevel",
]
