import pytest
from pydantic import ValidationError

from scheduler import AvailabilityPolicy, SchedulerConfig, ScoringWeights


def test_defaults():
    config = SchedulerConfig()

    assert config.availability_policy == AvailabilityPolicy.CLOSED_WORLD
    assert config.default_max_students_per_day == 1
    assert config.default_max_students_per_year is None
    assert not config.enable_fallbacks
    assert config.weights.team_rank > config.weights.health_system_continuity > config.weights.earliest_date


def test_from_env(monkeypatch):
    monkeypatch.setenv("CLERKSHIP_AVAILABILITY_POLICY", "OPEN_WORLD")
    monkeypatch.setenv("CLERKSHIP_DEFAULT_MAX_PER_DAY", "3")
    monkeypatch.setenv("CLERKSHIP_DEFAULT_MAX_PER_YEAR", "120")
    monkeypatch.setenv("CLERKSHIP_ENABLE_FALLBACKS", "yes")
    monkeypatch.setenv("CLERKSHIP_FALLBACK_CROSS_SYSTEM", "false")

    config = SchedulerConfig.from_env()

    assert config.availability_policy == AvailabilityPolicy.OPEN_WORLD
    assert config.default_max_students_per_day == 3
    assert config.default_max_students_per_year == 120
    assert config.enable_fallbacks
    assert not config.fallback_allow_cross_system


def test_overrides_win_over_env(monkeypatch):
    monkeypatch.setenv("CLERKSHIP_ENABLE_FALLBACKS", "1")

    config = SchedulerConfig.from_env(enable_fallbacks=False, weights=ScoringWeights(earliest_date=5))

    assert not config.enable_fallbacks
    assert config.weights.earliest_date == 5


def test_invalid_values_are_rejected(monkeypatch):
    monkeypatch.setenv("CLERKSHIP_DEFAULT_MAX_PER_DAY", "0")
    with pytest.raises(ValidationError):
        SchedulerConfig.from_env()

    with pytest.raises(ValidationError):
        ScoringWeights(team_rank=-1)
