"""Tests for PlacementArbiter: the two placement rules under sequential and concurrent load."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from core.exceptions import Conflict, StoreUnavailable
from core.grid_store import Coordinate, GridStore
from core.placement_arbiter import NonDecreasingClock, PlacementArbiter


def place_all(arbiter, requests, workers=16):
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(lambda args: arbiter.place_cell(*args), requests))


class TestScenarios:
    def test_identity_places_only_once(self, arbiter):
        first = arbiter.place_cell("u1", 3, 4, "#ff0000")
        second = arbiter.place_cell("u1", 5, 5, "#00ff00")

        assert first.ok
        assert first.cell.coordinate == Coordinate(3, 4)
        assert first.cell.owner_identity == "u1"
        assert not second.ok
        assert second.reason == "AlreadyPlaced"
        assert second.message == "You have already placed a pixel."

    def test_cell_can_only_be_taken_once(self, arbiter, store):
        assert arbiter.place_cell("u1", 2, 2, "red").ok

        result = arbiter.place_cell("u2", 2, 2, "blue")

        assert not result.ok
        assert result.reason == "CellTaken"
        # the loser is still free to place elsewhere
        assert store.get_participant("u2") is None
        assert arbiter.place_cell("u2", 3, 3, "blue").ok

    def test_taken_cell_is_immutable(self, arbiter, store):
        arbiter.place_cell("u1", 2, 2, "red")
        for i in range(5):
            arbiter.place_cell(f"other-{i}", 2, 2, f"color-{i}")

        cell = store.get_cell(Coordinate(2, 2))
        assert cell.color == "red"
        assert cell.owner_identity == "u1"

    def test_repeated_attempts_after_placing_are_always_rejected(self, arbiter):
        arbiter.place_cell("u1", 0, 0, "red")

        results = [arbiter.place_cell("u1", x, 9, "red") for x in range(10)]

        assert all(r.reason == "AlreadyPlaced" for r in results)

    def test_already_placed_checked_before_cell_taken(self, arbiter):
        arbiter.place_cell("u1", 0, 0, "red")

        result = arbiter.place_cell("u1", 0, 0, "red")

        assert result.reason == "AlreadyPlaced"

    def test_registered_participant_can_place(self, arbiter, store):
        store.register_participant("u1")

        assert arbiter.place_cell("u1", 1, 2, "red").ok
        assert store.get_participant("u1").has_placed is True


class TestValidation:
    @pytest.mark.parametrize("identity,x,y,color", [
        ("", -1, 0, ""),
        ("u1", -1, 0, "red"),
        ("u1", 0, 10, "red"),
        ("u1", 10, 0, "red"),
        ("u1", 0, 0, ""),
        ("u1", 0, 0, "   "),
        ("", 0, 0, "red"),
        ("  ", 0, 0, "red"),
        ("u1", 1.5, 0, "red"),
        ("u1", True, 0, "red"),
        ("u1", "1", 0, "red"),
        (None, 0, 0, "red"),
        ("u1", 0, 0, None),
    ])
    def test_invalid_requests_rejected(self, arbiter, identity, x, y, color):
        result = arbiter.place_cell(identity, x, y, color)

        assert not result.ok
        assert result.reason == "InvalidRequest"

    def test_invalid_request_does_not_contact_store(self, arbiter):
        with patch.object(arbiter.store, "begin_transaction") as begin:
            result = arbiter.place_cell("", -1, 0, "")

        assert result.reason == "InvalidRequest"
        begin.assert_not_called()

    def test_boundary_coordinates_accepted(self, arbiter):
        assert arbiter.place_cell("a", 0, 0, "red").ok
        assert arbiter.place_cell("b", 9, 9, "red").ok

    def test_max_attempts_must_be_positive(self, store):
        with pytest.raises(ValueError):
            PlacementArbiter(store, max_attempts=0)


class TestClock:
    def test_placed_at_never_goes_backwards(self, store):
        later = datetime(2024, 1, 1, 12, 0, 5, tzinfo=timezone.utc)
        earlier = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        wall_clock = iter([later, earlier])
        arbiter = PlacementArbiter(store, retry_backoff=0.0, clock=lambda: next(wall_clock))

        first = arbiter.place_cell("u1", 0, 0, "red")
        second = arbiter.place_cell("u2", 1, 0, "red")

        assert first.cell.placed_at == later
        assert second.cell.placed_at >= first.cell.placed_at

    def test_clock_moving_forward_is_passed_through(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        ticks = iter([start, start + timedelta(seconds=1)])
        clock = NonDecreasingClock(lambda: next(ticks))

        assert clock() == start
        assert clock() == start + timedelta(seconds=1)


class ConflictingStore(GridStore):
    """Every commit loses the race."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.commit_attempts = 0

    def _commit(self, txn):
        self.commit_attempts += 1
        raise Conflict("forced")


class TestRetry:
    def test_exhausted_retries_surface_busy(self, store):
        conflicting = ConflictingStore(store.engine, 10, 10)
        arbiter = PlacementArbiter(conflicting, max_attempts=3, retry_backoff=0.0)

        result = arbiter.place_cell("u1", 1, 1, "red")

        assert not result.ok
        assert result.reason == "Busy"
        assert conflicting.commit_attempts == 3
        assert store.count_cells() == 0

    def test_conflict_then_success_commits(self, store):
        arbiter = PlacementArbiter(store, max_attempts=3, retry_backoff=0.0)
        original_commit = store._commit
        calls = []

        def flaky_commit(txn):
            calls.append(txn)
            if len(calls) == 1:
                txn._session.rollback()
                raise Conflict("first attempt loses")
            return original_commit(txn)

        with patch.object(store, "_commit", side_effect=flaky_commit):
            result = arbiter.place_cell("u1", 4, 4, "red")

        assert result.ok
        assert len(calls) == 2
        assert store.count_cells() == 1

    def test_store_unavailable_propagates(self, tmp_path):
        from database import create_db_engine

        engine = create_db_engine(f"sqlite:///{tmp_path / 'nope' / 'grid.db'}", acquire_timeout=0.5)
        arbiter = PlacementArbiter(GridStore(engine, 10, 10), retry_backoff=0.0)

        with pytest.raises(StoreUnavailable):
            arbiter.place_cell("u1", 0, 0, "red")

        engine.dispose()


class TestConcurrency:
    def test_distinct_identities_and_cells_all_commit(self, arbiter, store):
        requests = [(f"user-{i}", i % 10, i // 10, "red") for i in range(50)]

        results = place_all(arbiter, requests)

        assert all(r.ok for r in results), [r.reason for r in results if not r.ok]
        assert store.count_cells() == 50

    def test_two_identities_race_for_one_cell(self, arbiter, store):
        results = place_all(arbiter, [("a", 0, 0, "red"), ("b", 0, 0, "blue")], workers=2)

        committed = [r for r in results if r.ok]
        rejected = [r for r in results if not r.ok]
        assert len(committed) == 1
        assert [r.reason for r in rejected] == ["CellTaken"]
        assert store.get_cell(Coordinate(0, 0)).owner_identity == committed[0].cell.owner_identity

    def test_many_identities_race_for_one_cell(self, arbiter, store):
        requests = [(f"user-{i}", 7, 7, f"color-{i}") for i in range(20)]

        results = place_all(arbiter, requests)

        assert sum(r.ok for r in results) == 1
        assert {r.reason for r in results if not r.ok} == {"CellTaken"}
        assert store.count_cells() == 1

    def test_one_identity_races_for_many_cells(self, arbiter, store):
        requests = [("u1", i % 10, i // 10, "red") for i in range(20)]

        results = place_all(arbiter, requests)

        assert sum(r.ok for r in results) == 1
        assert {r.reason for r in results if not r.ok} == {"AlreadyPlaced"}
        assert store.count_cells() == 1
