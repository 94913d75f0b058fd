"""
Unit tests for the queue scheduler: batching, de-duplication, flush and replenishment.
Async scenarios run on a fresh event loop per test via asyncio.run.
"""
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np

from fakes import FakePlayer, YieldingPlayer
from stride.catalog import TrackCatalog
from stride.player import RepeatMode
from stride.scheduler import STATE_CLEARED, STATE_INITIAL_BATCH_QUEUED, STATE_STEADY, QueueScheduler

PLACEHOLDER = "placeholder"
TRACKS = {f"t{i:02d}": 160.0 + (i % 5) for i in range(25)}
SEED = 11


def make_scheduler(player, **overrides):
    options = dict(
        initial_batch_size=10,
        refill_batch_size=10,
        low_water_mark=0,
        max_flush_skips=50,
        track_change_timeout=0.01,
        skip_poll_interval=0.001,
        placeholder_track_id=PLACEHOLDER,
    )
    options.update(overrides)
    return QueueScheduler(player, TrackCatalog(rng=np.random.default_rng(SEED)), **options)


def expected_order(tracks=TRACKS):
    twin = TrackCatalog(rng=np.random.default_rng(SEED))
    twin.initialize_batching(tracks)
    return list(twin.unqueued_ids)


def test_refresh_requires_connection():
    player = FakePlayer(connected=False)
    scheduler = make_scheduler(player)
    statuses = []
    scheduler.subscribe_status(statuses.append)

    queued = asyncio.run(scheduler.refresh_songs_and_queue(TRACKS))

    assert queued == 0
    assert player.calls == [], "Nothing may be sent to a disconnected player"
    assert "not connected" in statuses[-1]


def test_refresh_with_no_tracks_reports_status():
    player = FakePlayer()
    scheduler = make_scheduler(player)
    queued = asyncio.run(scheduler.refresh_songs_and_queue({}))
    assert queued == 0
    assert "No songs" in scheduler.last_status
    assert player.calls == []


def test_refresh_flushes_then_queues_initial_batch():
    """Stale queue is skipped through, then the first batch is queued and skipped onto."""
    player = FakePlayer(initial_queue=["old1", "old2"], current="old0")
    scheduler = make_scheduler(player)
    order = expected_order()

    queued = asyncio.run(scheduler.refresh_songs_and_queue(TRACKS))

    assert queued == 10
    assert player.repeat_mode == RepeatMode.OFF
    assert player.enqueued == [PLACEHOLDER] + order[:10]
    # 3 skips to reach the placeholder, 1 past it, 1 onto the first new track
    assert player.skip_count == 5
    first = player.calls.index(("enqueue", order[0]))
    assert player.calls[first + 1] == ("skip_next", None), "Skip follows the first enqueue"
    assert player.calls[first + 2] == ("enqueue", order[1])

    assert player.current == order[0]
    assert scheduler.current_track_id == order[0]
    assert scheduler.current_bpm == TRACKS[order[0]]
    assert scheduler.queued_songs_count == 10
    assert scheduler.state == STATE_INITIAL_BATCH_QUEUED
    assert scheduler.last_status == "Queued 10 of 25 songs"


def test_refresh_survives_repeat_mode_failure():
    player = FakePlayer()
    player.fail_repeat = True
    scheduler = make_scheduler(player)
    assert asyncio.run(scheduler.refresh_songs_and_queue(TRACKS)) == 10


def test_queue_batch_skips_already_queued_ids():
    player = FakePlayer()
    scheduler = make_scheduler(player)
    scheduler.catalog.initialize_batching(TRACKS)
    scheduler.catalog.mark_queued("t01")

    queued = asyncio.run(scheduler.queue_batch({"t01": 160.0, "t02": 162.0}))

    assert queued == 1
    assert player.enqueued == ["t02"]
    assert scheduler.queued_songs_count == 2


def test_queue_batch_requeue_allowed_after_cycle():
    player = FakePlayer()
    scheduler = make_scheduler(player)
    scheduler.catalog.initialize_batching(TRACKS)
    scheduler.catalog.mark_queued("t01")

    queued = asyncio.run(scheduler.queue_batch({"t01": 160.0}, allow_requeue=True))
    assert queued == 1
    assert player.enqueued == ["t01"]


def test_failed_enqueue_does_not_abort_batch():
    player = FakePlayer()
    player.fail_enqueue = {"t02"}
    scheduler = make_scheduler(player)
    scheduler.catalog.initialize_batching(TRACKS)

    queued = asyncio.run(scheduler.queue_batch({"t01": 1.0, "t02": 1.0, "t03": 1.0}))

    assert queued == 2
    assert player.enqueued == ["t01", "t03"]
    assert "t02" not in scheduler.catalog.queued_ids


def test_skip_follows_first_successful_enqueue():
    player = FakePlayer()
    player.fail_enqueue = {"t01"}
    scheduler = make_scheduler(player)
    scheduler.catalog.initialize_batching(TRACKS)

    asyncio.run(scheduler.queue_batch({"t01": 1.0, "t02": 1.0, "t03": 1.0}, skip_after_first=True))

    assert player.calls == [("enqueue", "t02"), ("skip_next", None), ("enqueue", "t03")]


def test_full_cycle_reshuffles_the_pool():
    """25 tracks in batches of 10: the third refill empties the pool and starts a new pass."""
    player = FakePlayer()
    scheduler = make_scheduler(player)
    scheduler.catalog.initialize_batching(TRACKS)

    async def scenario():
        counts = []
        for _ in range(2):
            counts.append(await scheduler.queue_more_songs())
        cycles_before = scheduler.catalog.cycles
        counts.append(await scheduler.queue_more_songs())
        return counts, cycles_before

    counts, cycles_before = asyncio.run(scenario())

    assert counts == [10, 10, 5]
    assert cycles_before == 0
    assert scheduler.catalog.cycles == 1
    assert len(scheduler.catalog.unqueued_ids) == 25
    assert sorted(player.enqueued) == sorted(TRACKS)

    # new pass may bring back tracks that are still marked queued
    assert asyncio.run(scheduler.queue_more_songs()) == 10


def test_refill_is_single_flight():
    player = FakePlayer()
    scheduler = make_scheduler(player)
    scheduler.catalog.initialize_batching(TRACKS)
    scheduler.is_loading_more_songs = True

    assert asyncio.run(scheduler.queue_more_songs()) == 0
    assert player.calls == []


def test_refill_without_candidates_is_noop():
    player = FakePlayer()
    scheduler = make_scheduler(player)
    assert asyncio.run(scheduler.queue_more_songs()) == 0
    assert not scheduler.is_loading_more_songs


def test_track_changes_replenish_at_low_water():
    player = FakePlayer()
    scheduler = make_scheduler(player, low_water_mark=5)
    scheduler.catalog.initialize_batching(TRACKS)

    async def scenario():
        await scheduler.queue_more_songs(6)
        player.finish_current()  # starts the first queued track
        await scheduler.wait_for_pending()
        assert len(player.enqueued) == 6, "Six queued is above the low-water mark"

        player.finish_current()  # first track played, five left
        await scheduler.wait_for_pending()

    asyncio.run(scenario())

    assert len(player.enqueued) == 16
    assert scheduler.queued_songs_count == 15
    assert len(scheduler.catalog.played_ids) == 1


def test_track_change_updates_now_playing_and_state():
    player = FakePlayer()
    scheduler = make_scheduler(player)
    order = expected_order()

    async def scenario():
        await scheduler.refresh_songs_and_queue(TRACKS)
        player.finish_current()

    asyncio.run(scenario())

    assert scheduler.current_track_id == order[1]
    assert scheduler.state == STATE_STEADY
    assert order[0] in scheduler.catalog.played_ids
    assert scheduler.queued_songs_count == 9


def test_flush_gives_up_after_max_skips():
    """A player that never advances is skipped at most max_flush_skips times."""
    player = FakePlayer(initial_queue=["x"], current="x", stuck=True)
    scheduler = make_scheduler(player, max_flush_skips=50, track_change_timeout=0.001)
    scheduler.catalog.initialize_batching(TRACKS)
    scheduler.catalog.mark_queued("t01")
    scheduler.has_queued_songs = True

    reached = asyncio.run(scheduler.flush_queue())

    assert reached is False
    assert player.skip_count == 50
    assert scheduler.queued_songs_count == 0
    assert not scheduler.catalog.queued_ids and not scheduler.catalog.played_ids
    assert not scheduler.has_queued_songs
    assert not scheduler.is_flushing


def test_flush_resets_bookkeeping_on_player_error():
    player = FakePlayer(initial_queue=["x"])
    player.fail_skip = True
    scheduler = make_scheduler(player)
    scheduler.catalog.initialize_batching(TRACKS)
    scheduler.catalog.mark_queued("t01")

    assert asyncio.run(scheduler.flush_queue()) is False
    assert scheduler.queued_songs_count == 0
    assert not scheduler.is_flushing


def test_no_refill_while_flushing():
    player = FakePlayer(initial_queue=["t01", "t02", "t03"])
    scheduler = make_scheduler(player, low_water_mark=5)
    scheduler.catalog.initialize_batching(TRACKS)
    for track_id in ("t01", "t02", "t03"):
        scheduler.catalog.mark_queued(track_id)

    async def scenario():
        reached = await scheduler.flush_queue()
        await scheduler.wait_for_pending()
        return reached

    assert asyncio.run(scenario()) is True
    assert player.enqueued == [PLACEHOLDER]


def test_clear_forgets_selection():
    player = FakePlayer()
    scheduler = make_scheduler(player)
    asyncio.run(scheduler.refresh_songs_and_queue(TRACKS))
    scheduler.clear()

    assert scheduler.state == STATE_CLEARED
    assert len(scheduler.catalog) == 0
    assert scheduler.queued_songs_count == 0


def test_playback_controls():
    player = FakePlayer()
    scheduler = make_scheduler(player)

    async def scenario():
        results = [await scheduler.pause(), await scheduler.resume(), await scheduler.rewind(),
                   await scheduler.skip_to_previous()]
        scheduler.is_skipping = True
        results.append(await scheduler.skip_to_next())
        scheduler.is_skipping = False
        player.connected = False
        results.append(await scheduler.pause())
        return results

    results = asyncio.run(scenario())

    assert results == [True, True, True, True, False, False]
    assert ("seek", 0) in player.calls


def test_status_listener_errors_are_contained():
    player = FakePlayer(connected=False)
    scheduler = make_scheduler(player)
    received = []

    def broken(msg):
        raise RuntimeError("listener down")

    scheduler.subscribe_status(broken)
    scheduler.subscribe_status(received.append)
    asyncio.run(scheduler.refresh_songs_and_queue(TRACKS))
    scheduler.unsubscribe_status(received.append)
    asyncio.run(scheduler.refresh_songs_and_queue(TRACKS))

    assert len(received) == 1


def test_initial_batch_is_not_interleaved_with_refill():
    """A refill triggered by the skip onto the first track must wait for the whole initial batch."""
    player = YieldingPlayer()
    scheduler = make_scheduler(player, low_water_mark=5)
    order = expected_order()

    async def scenario():
        queued = await scheduler.refresh_songs_and_queue(TRACKS)
        await scheduler.wait_for_pending()
        return queued

    assert asyncio.run(scenario()) == 10
    assert player.enqueued == [PLACEHOLDER] + order[:10], "Queue order must match the initial batch"
    assert scheduler.queued_songs_count == 10


def test_small_initial_batch_refills_after_it_is_queued():
    """An initial batch already at the low-water mark is topped up right after, in order."""
    player = YieldingPlayer()
    scheduler = make_scheduler(player, low_water_mark=5, initial_batch_size=3)
    order = expected_order()

    async def scenario():
        await scheduler.refresh_songs_and_queue(TRACKS)
        await scheduler.wait_for_pending()

    asyncio.run(scenario())

    assert player.enqueued == [PLACEHOLDER] + order[:13]
    assert scheduler.queued_songs_count == 13
