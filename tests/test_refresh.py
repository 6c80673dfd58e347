"""
Tests for the refresh coordinator: loading, de-duplication, staleness,
polling, cancellation and standings generation ordering.
"""

import asyncio
import threading
from datetime import datetime, timezone

from conftest import DAY1_A, DAY1_B, DAY2_A, DAY2_B, FakeCompletionStore, make_snapshot
from puzzlerace.data_models.standings import NOT_YET_LOADED
from puzzlerace.services.refresh import RefreshCoordinator
from puzzlerace.utils.scoring import compute_standings

T0 = datetime(2024, 12, 1, 6, 0, tzinfo=timezone.utc)


def make_coordinator(completion_store, roster_store, **kwargs):
    kwargs.setdefault("refresh_interval", 3600)
    kwargs.setdefault("fetch_timeout", 5)
    return RefreshCoordinator(completion_store, roster_store, **kwargs)


class TestRoomLifecycle:
    def test_standings_not_loaded_before_open(self, completion_store, roster_store):
        coordinator = make_coordinator(completion_store, roster_store)

        assert coordinator.standings("r1") is NOT_YET_LOADED
        assert coordinator.current_snapshot("r1") is NOT_YET_LOADED
        assert coordinator.roster("r1") is NOT_YET_LOADED
        assert coordinator.open_puzzles("r1") is NOT_YET_LOADED
        assert coordinator.last_refreshed_at("r1") is None
        assert not coordinator.is_stale("r1")

    def test_open_room_loads_standings(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            try:
                await coordinator.open_room(7)
                return (
                    coordinator.standings("7"),
                    coordinator.open_rooms(),
                    coordinator.last_refreshed_at(7),
                    coordinator.open_puzzles("7"),
                )
            finally:
                await coordinator.close()

        standings, rooms, refreshed_at, open_puzzles = asyncio.run(scenario())
        # Ada beats Bo and Cy on part one and both on part two; Bo beats Cy
        assert [(e.display_name, e.score, e.rank) for e in standings] == [
            ("Ada", 4, 1), ("Bo", 1, 2), ("Cy", 0, 3)
        ]
        assert rooms == ["7"]
        assert refreshed_at == completion_store.snapshot.fetched_at
        assert open_puzzles == [DAY2_A, DAY2_B]

    def test_standings_read_is_a_copy(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            try:
                await coordinator.open_room("r1")
                coordinator.standings("r1").clear()
                return coordinator.standings("r1")
            finally:
                await coordinator.close()

        assert len(asyncio.run(scenario())) == 3

    def test_opening_twice_is_a_no_op(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            try:
                await coordinator.open_room("r1")
                await coordinator.open_room("r1")
            finally:
                await coordinator.close()

        asyncio.run(scenario())
        assert completion_store.calls == 1
        assert roster_store.roster_calls == 1

    def test_close_room_cancels_polling_and_pending_pulls(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store, refresh_interval=0.01)
            await coordinator.open_room("r1")

            completion_store.gate = asyncio.Event()
            while completion_store.calls < 2:
                await asyncio.sleep(0.005)
            calls_at_close = completion_store.calls

            await coordinator.close_room("r1")
            await asyncio.sleep(0.05)
            return coordinator, calls_at_close

        coordinator, calls_at_close = asyncio.run(scenario())
        assert completion_store.calls == calls_at_close
        assert coordinator.open_rooms() == []
        assert coordinator.standings("r1") is NOT_YET_LOADED

    def test_invalidating_closed_room_does_nothing(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            return await coordinator.force_invalidate("r1"), await coordinator.refresh_completions("r1")

        assert asyncio.run(scenario()) == (False, False)
        assert completion_store.calls == 0


class TestPulls:
    def test_concurrent_refreshes_share_one_pull(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            try:
                await coordinator.open_room("r1")
                completion_store.gate = asyncio.Event()

                waiters = [asyncio.create_task(coordinator.refresh_completions("r1")) for _ in range(5)]
                await asyncio.sleep(0.01)
                completion_store.gate.set()
                return await asyncio.gather(*waiters)
            finally:
                await coordinator.close()

        results = asyncio.run(scenario())
        assert results == [True] * 5
        # One pull on open, one shared by the five refreshes
        assert completion_store.calls == 2

    def test_invalidation_joins_in_flight_completion_pull(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            try:
                await coordinator.open_room("r1")
                completion_store.gate = asyncio.Event()

                polled = asyncio.create_task(coordinator.refresh_completions("r1"))
                await asyncio.sleep(0.01)
                invalidated = asyncio.create_task(coordinator.force_invalidate("r1"))
                await asyncio.sleep(0.01)
                completion_store.gate.set()
                return await polled, await invalidated
            finally:
                await coordinator.close()

        assert asyncio.run(scenario()) == (True, True)
        assert completion_store.calls == 2
        assert roster_store.roster_calls == 2
        assert roster_store.puzzle_calls == 2

    def test_failed_pull_keeps_last_good_data(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            try:
                await coordinator.open_room("r1")
                good_snapshot = coordinator.current_snapshot("r1")
                good_standings = coordinator.standings("r1")
                good_refresh = coordinator.last_refreshed_at("r1")

                completion_store.fail = True
                refreshed = await coordinator.refresh_completions("r1")
                failed_state = (
                    refreshed,
                    coordinator.current_snapshot("r1") is good_snapshot,
                    coordinator.standings("r1") == good_standings,
                    coordinator.last_refreshed_at("r1") == good_refresh,
                    coordinator.is_stale("r1"),
                )

                completion_store.fail = False
                recovered = await coordinator.refresh_completions("r1")
                return failed_state, recovered, coordinator.is_stale("r1")
            finally:
                await coordinator.close()

        failed_state, recovered, stale_after = asyncio.run(scenario())
        assert failed_state == (False, True, True, True, True)
        assert recovered
        assert not stale_after

    def test_timed_out_pull_marks_view_stale(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store, fetch_timeout=0.05)
            try:
                await coordinator.open_room("r1")
                completion_store.delay = 1.0
                refreshed = await coordinator.refresh_completions("r1")
                return refreshed, coordinator.is_stale("r1"), coordinator.standings("r1")
            finally:
                await coordinator.close()

        refreshed, stale, standings = asyncio.run(scenario())
        assert not refreshed
        assert stale
        assert len(standings) == 3

    def test_unexpected_store_error_is_contained(self, completion_store, roster_store):
        class ExplodingStore(FakeCompletionStore):
            async def fetch_completions(self, room_id):
                raise KeyError("boom")

        async def scenario():
            coordinator = make_coordinator(ExplodingStore(), roster_store)
            try:
                await coordinator.open_room("r1")
                return coordinator.is_stale("r1"), coordinator.standings("r1"), coordinator.roster("r1")
            finally:
                await coordinator.close()

        stale, standings, roster = asyncio.run(scenario())
        assert stale
        assert standings is NOT_YET_LOADED
        assert roster.enrolled_ids == {1, 2, 3}

    def test_failed_first_load_leaves_nothing_loaded(self, completion_store, roster_store):
        roster_store.fail = True

        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            try:
                await coordinator.open_room("r1")
                return coordinator.standings("r1"), coordinator.is_stale("r1")
            finally:
                await coordinator.close()

        assert asyncio.run(scenario()) == (NOT_YET_LOADED, True)

    def test_polling_pulls_completions_on_interval(self, completion_store, roster_store):
        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store, refresh_interval=0.01)
            try:
                await coordinator.open_room("r1")
                completion_store.snapshot = make_snapshot({3: [(DAY1_A, T0), (DAY1_B, T0)]})
                while completion_store.calls < 3:
                    await asyncio.sleep(0.005)
                await asyncio.sleep(0.02)
                return coordinator.standings("r1")
            finally:
                await coordinator.close()

        standings = asyncio.run(scenario())
        assert standings[0].display_name == "Cy"
        assert roster_store.roster_calls == 1


class TestGenerationOrdering:
    def test_older_generation_never_overwrites_newer(self, roster_store):
        first = make_snapshot({1: [(DAY1_A, T0)]})
        second = make_snapshot({2: [(DAY1_A, T0)]})
        completion_store = FakeCompletionStore(first)
        release_first = threading.Event()
        computed = []

        def slow_first_compute(puzzles, enrolled, snapshot, strategy):
            # The first computation finishes only after the second one
            if snapshot is first:
                release_first.wait(timeout=5)
            standings = compute_standings(puzzles, enrolled, snapshot, strategy)
            computed.append(snapshot)
            if snapshot is second:
                release_first.set()
            return standings

        async def scenario():
            coordinator = make_coordinator(completion_store, roster_store)
            coordinator._compute = slow_first_compute
            try:
                opening = asyncio.create_task(coordinator.open_room("r1"))
                while completion_store.calls < 1:
                    await asyncio.sleep(0.001)
                # Let the roster, puzzles and first completions land and start computing
                await asyncio.sleep(0.05)
                completion_store.snapshot = second
                await coordinator.refresh_completions("r1")
                await opening
                return coordinator.standings("r1")
            finally:
                await coordinator.close()

        standings = asyncio.run(scenario())
        assert computed[-1] is first
        assert standings[0].member_id == 2
