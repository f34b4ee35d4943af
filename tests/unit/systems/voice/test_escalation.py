"""Unit tests for volume escalation."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from narrator.config import EngineConfig
from narrator.systems.voice.escalation import base_volume, calculate_volume


def local(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 5, day, hour, minute).astimezone()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


class TestBaseVolume:
    @pytest.mark.parametrize(
        ("minutes", "expected"),
        [
            (0, 0),
            (1.9, 0),
            (2, 1),
            (9.9, 1),
            (10, 2),
            (30, 3),
            (60, 4),
            (119, 4),
            (120, 5),
            (600, 5),
        ],
    )
    def test_breakpoints(self, minutes: float, expected: int) -> None:
        assert base_volume(minutes, [2.0, 10.0, 30.0, 60.0, 120.0]) == expected


class TestCalculateVolume:
    def test_not_engaged_is_silent(self, config: EngineConfig) -> None:
        assert calculate_volume(None, 50, local(15, 3), config) == 0

    def test_session_age_drives_volume(self, config: EngineConfig) -> None:
        start = local(14, 13)
        assert calculate_volume(start, 0, start + timedelta(minutes=1), config) == 0
        assert calculate_volume(start, 0, start + timedelta(minutes=2), config) == 1
        assert calculate_volume(start, 0, start + timedelta(minutes=45), config) == 3
        assert calculate_volume(start, 0, start + timedelta(minutes=121), config) == 5

    def test_density_bonus_above_threshold(self, config: EngineConfig) -> None:
        start = local(14, 13)
        now = start + timedelta(minutes=3)

        assert calculate_volume(start, 15, now, config) == 1
        assert calculate_volume(start, 16, now, config) == 2

    def test_deep_night_bonus(self, config: EngineConfig) -> None:
        start = local(15, 1, 55)
        assert calculate_volume(start, 0, local(15, 1, 58), config) == 1
        assert calculate_volume(start, 0, local(15, 2, 5), config) == 3

    def test_deep_night_bonus_survives_dawn(self, config: EngineConfig) -> None:
        start = local(15, 5)
        # 65 minutes in, past 06:00: four breakpoints plus the latched bonus
        assert calculate_volume(start, 0, local(15, 6, 5), config) == 5

    def test_clamped_at_maximum(self, config: EngineConfig) -> None:
        start = local(15, 0)
        assert calculate_volume(start, 40, local(15, 4), config) == 5

    def test_never_decreases_over_a_night(self, config: EngineConfig) -> None:
        start = local(14, 20)
        previous = 0
        for step in range(0, 12 * 60, 5):
            volume = calculate_volume(start, step // 20, start + timedelta(minutes=step), config)
            assert volume >= previous
            previous = volume
        assert previous == 5

    def test_custom_breakpoints(self) -> None:
        config = EngineConfig(volume_breakpoints_minutes=[1.0, 2.0, 3.0, 4.0, 5.0])
        start = local(14, 13)
        assert calculate_volume(start, 0, start + timedelta(minutes=3), config) == 3
