import pytest

from tokentrader.models.market_models import Level
from tokentrader.services.market.support_resistance import (
    RESISTANCE,
    SUPPORT,
    compute_levels,
    distance_pct,
    find_pivots,
    near_level,
)

WAVE = [10, 11, 12, 11, 10, 9, 8, 9, 10, 11, 12, 11, 10, 9, 8, 9, 10, 11, 12, 11, 10.5]


def test_find_pivots_uses_two_neighbours_each_side():
    pivots = find_pivots(WAVE)
    assert [(p.kind, p.price) for p in pivots] == [
        (RESISTANCE, 12.0),
        (SUPPORT, 8.0),
        (RESISTANCE, 12.0),
        (SUPPORT, 8.0),
        (RESISTANCE, 12.0),
    ]


def test_compute_levels_clusters_repeated_pivots():
    levels = compute_levels(WAVE)

    assert len(levels.supports) == 1
    assert len(levels.resistances) == 1
    support, resistance = levels.supports[0], levels.resistances[0]
    assert support.price == pytest.approx(8.0)
    assert support.points == 2
    assert support.strength == pytest.approx(2 / 3)
    assert resistance.points == 3
    assert resistance.strength == 1.0

    assert levels.closest_support == support
    assert levels.closest_resistance == resistance


def test_compute_levels_needs_enough_points():
    levels = compute_levels(WAVE[:19])
    assert levels.supports == [] and levels.resistances == []
    assert levels.closest_support is None


def test_distance_and_proximity():
    level = Level(price=98.0, kind=SUPPORT, strength=1.0)
    assert distance_pct(100.0, level) == pytest.approx(2.0)
    assert near_level(100.0, level, 2.0)
    assert not near_level(100.0, level, 1.5)
    assert distance_pct(100.0, None) is None
