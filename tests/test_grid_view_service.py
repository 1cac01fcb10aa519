"""Tests for the grid view projection."""

from datetime import datetime, timezone
from types import MappingProxyType

import pytest

from core.grid_store import Cell, Coordinate
from core.live_feed import GridSnapshot
from services.grid_view_service import (
    is_revealed,
    project_grid_view,
    reveal_progress,
    serialize_cell,
)

PLACED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


def snapshot_of(*coordinates, version=1):
    cells = {
        Coordinate(x, y): Cell(Coordinate(x, y), "red", f"u-{x}-{y}", PLACED_AT)
        for x, y in coordinates
    }
    return GridSnapshot(version=version, cells=MappingProxyType(cells))


def test_serialize_cell():
    cell = Cell(Coordinate(3, 4), "#ff0000", "u1", PLACED_AT)

    assert serialize_cell(cell) == {
        "x": 3,
        "y": 4,
        "color": "#ff0000",
        "placedBy": "u1",
        "placedAt": "2024-01-01T00:00:00+00:00",
    }


def test_projection_counts_and_orders_cells():
    view = project_grid_view(snapshot_of((2, 0), (0, 1), (1, 0), version=7), 4, 4, 10)

    assert view["version"] == 7
    assert view["totalPlaced"] == 3
    assert [(c["x"], c["y"]) for c in view["cells"]] == [(0, 1), (1, 0), (2, 0)]
    assert view["revealed"] is False
    assert view["progress"] == pytest.approx(0.3)


def test_projection_reveals_at_threshold():
    view = project_grid_view(snapshot_of((0, 0), (1, 1)), 4, 4, 2)

    assert view["revealed"] is True
    assert view["progress"] == 1.0


def test_threshold_defaults_to_full_grid():
    view = project_grid_view(snapshot_of((0, 0)), 2, 2)

    assert view["revealThreshold"] == 4
    assert view["revealed"] is False
    assert view["width"] == 2
    assert view["height"] == 2


@pytest.mark.parametrize("total,threshold,expected", [
    (0, 10, False),
    (9, 10, False),
    (10, 10, True),
    (11, 10, True),
])
def test_is_revealed(total, threshold, expected):
    assert is_revealed(total, threshold) is expected


def test_progress_is_capped_and_handles_zero_threshold():
    assert reveal_progress(30, 10) == 1.0
    assert reveal_progress(0, 0) == 1.0
    assert reveal_progress(5, 20) == 0.25
