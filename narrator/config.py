"""
Narrator — Configuration System

All configuration is Pydantic-validated and loaded from:
1. An optional YAML file (defaults for a deployment)
2. Environment variables (overrides, secrets)

Every tunable parameter in the narrator lives here.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_EVENT_COOLDOWNS: dict[str, float] = {
    "dice_roll": 0.0,
    "vitals_change": 30.0,
    "time_shift": 60.0,
    "fortune_ready": 0.0,
    "fidget_intervention": 0.0,
}

# ─── Sub-configs ──────────────────────────────────────────────────


class AwarenessConfig(BaseModel):
    # Rolling interaction history (oldest evicted first)
    history_size: int = 10
    # Absences shorter than this are not reported
    absence_threshold_minutes: int = 30
    # Absences at least this long also raise a dedicated "absence" event
    absence_event_minutes: int = 60
    # Rapid: consecutive rolls each within this many seconds of the last
    rapid_window_seconds: float = 10.0
    rapid_min_streak: int = 3
    # Frantic: this many rolls inside the frantic window
    frantic_window_seconds: float = 5.0
    frantic_min_rolls: int = 4
    # Unlucky streak: last N totals all at or below the ceiling
    unlucky_run: int = 3
    unlucky_total_max: int = 5
    # Cursed / blessed: worst / best outcomes within the history window
    cursed_min_count: int = 2
    blessed_min_count: int = 2
    # Minimum spacing between two effective emissions of the same event type.
    # Configured entries are laid over the per-type defaults, not swapped in.
    default_cooldown_seconds: float = 30.0
    cooldown_seconds: dict[str, float] = Field(
        default_factory=lambda: dict(_DEFAULT_EVENT_COOLDOWNS)
    )
    # Vitals deltas
    vitals_drop_threshold: int = 3
    vitals_critical_threshold: int = 3
    # Fidget sessions: a burst of rolls that starts fresh after this long
    fidget_session_timeout_seconds: float = 30.0
    # Late-night fidgeting: this many rolls in one session between 23:00 and 05:00
    late_night_min_rolls: int = 3
    # A session this heavy, followed by a calm period this long, counts as recovery
    recovery_min_rolls: int = 5
    calm_threshold_seconds: float = 120.0
    # Intervention levels 1..5: session rolls needed for each level
    intervention_roll_thresholds: list[int] = Field(
        default_factory=lambda: [4, 6, 9, 12, 15]
    )
    # Peak pattern intensity that lifts the session to levels 3, 4, 5
    intervention_intensity_thresholds: list[int] = Field(
        default_factory=lambda: [5, 7, 9]
    )
    intervention_min_spacing_seconds: float = 15.0

    @field_validator("cooldown_seconds", mode="before")
    @classmethod
    def _merge_cooldowns(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {**_DEFAULT_EVENT_COOLDOWNS, **value}
        return value


class EngineConfig(BaseModel):
    # Minimum spacing between generation attempts, successful or not
    generation_cooldown_seconds: float = 8.0
    # Session minutes at which volume steps up to 1, 2, 3, 4, 5
    volume_breakpoints_minutes: list[float] = Field(
        default_factory=lambda: [2.0, 10.0, 30.0, 60.0, 120.0]
    )
    # Interaction count above which volume gets +1
    density_threshold: int = 15
    # At or below this volume, only notable dice rolls are commented on
    dice_quiet_max_volume: int = 2
    # Location / case changes are ignored below this volume
    context_change_min_volume: int = 2
    # Fidget patterns below this intensity are ignored
    fidget_min_intensity: int = 3
    # Probability of remarking on an ordinary time-of-day shift
    time_shift_comment_chance: float = 0.3
    # How often the background loop checks for a time-of-day shift
    time_watch_interval_seconds: float = 60.0


class GenerationConfig(BaseModel):
    # Hard deadline for the generation call
    deadline_seconds: float = 5.0
    max_output_tokens: int = 80
    temperature: float = 0.9
    # A sanitised line must be strictly longer than this
    min_line_length: int = 5


class DisplayConfig(BaseModel):
    # Pause before display, keyed by trigger, so related visuals land first
    choreography_delay_ms: dict[str, int] = Field(
        default_factory=lambda: {
            "dice_roll": 1500,
            "compartment_open": 1000,
            "absence": 1000,
            "fidget_pattern": 0,
            "vitals_change": 500,
            "time_shift": 0,
            "location_change": 500,
            "case_change": 500,
        }
    )
    default_delay_ms: int = 500
    # Notifications are raised automatically at or above this volume
    notification_min_volume: int = 3
    notification_duration_ms: int = 4000
    notification_duration_loud_ms: int = 6000
    notification_duration_max_ms: int = 8000


class LLMConfig(BaseModel):
    provider: str = "none"  # "none" | "anthropic" | "openai" | "ollama"
    model: str = "claude-3-5-haiku-latest"
    api_key: str = ""
    endpoint: str | None = None
    fallback_provider: str | None = None
    fallback_model: str | None = None

    @model_validator(mode="after")
    def _strip_api_key(self) -> LLMConfig:
        # Secret managers can inject trailing \r\n into env vars
        if self.api_key:
            object.__setattr__(self, "api_key", self.api_key.strip())
        return self


class PersistenceConfig(BaseModel):
    backend: str = "none"  # "none" | "json"
    state_dir: str = ".narrator/state"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class NarratorConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="NARRATOR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    awareness: AwarenessConfig = Field(default_factory=AwarenessConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: str | Path | None = None) -> NarratorConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    if llm_key := os.environ.get("NARRATOR_LLM_API_KEY"):
        raw.setdefault("llm", {})["api_key"] = llm_key
    if llm_provider := os.environ.get("NARRATOR_LLM__PROVIDER"):
        raw.setdefault("llm", {})["provider"] = llm_provider
    if llm_model := os.environ.get("NARRATOR_LLM__MODEL"):
        raw.setdefault("llm", {})["model"] = llm_model
    if state_dir := os.environ.get("NARRATOR_PERSISTENCE__STATE_DIR"):
        raw.setdefault("persistence", {})["state_dir"] = state_dir

    return NarratorConfig(**raw)
