import pytest

from wellness.core.activity import activity_label, estimate_calories, round_half_up


def test_estimate_calories_uses_met_and_intensity() -> None:
    assert estimate_calories("run", "medium", 62.0, 30) == 304
    assert estimate_calories("walk", "low", 75.0, 60) == 210
    assert estimate_calories("yoga", "high", 60.0, 45) == 135


def test_estimate_calories_zero_duration() -> None:
    assert estimate_calories("swim", "medium", 80.0, 0) == 0


def test_estimate_calories_unknown_activity() -> None:
    with pytest.raises(KeyError):
        estimate_calories("skydiving", "medium", 70.0, 10)


def test_round_half_up() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2


def test_activity_label() -> None:
    assert activity_label("run", "medium", "ru") == "Бег (средняя)"
    assert activity_label("cycle", "high", "en") == "Cycling (high)"
