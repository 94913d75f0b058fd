"""
Tempo-matched playback queue scheduler.
Keeps a remote player's queue filled with BPM-matched tracks in bounded batches,
clears stale queues with a placeholder-track flush and replenishes the queue
as the player drains it.

All bookkeeping runs on one asyncio task context. The only suspension points
are awaited player calls, except the detached refill triggered on track change.
"""
import asyncio
from typing import Any, Awaitable, Callable, Coroutine, List, Mapping, Optional, Set

from stride import config as cfg
from stride.catalog import TrackCatalog, track_uri
from stride.player import PlayerError, PlayerState, RemotePlayer, RepeatMode

StatusCallback = Callable[[str], None]

STATE_IDLE = "idle"
STATE_INITIALIZED = "initialized"
STATE_FLUSHING = "flushing"
STATE_INITIAL_BATCH_QUEUED = "initial_batch_queued"
STATE_STEADY = "steady"
STATE_CLEARED = "cleared"


class QueueScheduler:
    """
    Owns the TrackCatalog for one tempo selection and drives the remote player.
    `refresh_songs_and_queue` is the only entry point meant for outside callers.
    """

    def __init__(self, player: RemotePlayer, catalog: Optional[TrackCatalog] = None, *,
                 initial_batch_size: int = cfg.INITIAL_BATCH_SIZE,
                 refill_batch_size: int = cfg.REFILL_BATCH_SIZE,
                 low_water_mark: int = cfg.LOW_WATER_MARK,
                 max_flush_skips: int = cfg.MAX_FLUSH_SKIPS,
                 track_change_timeout: float = cfg.TRACK_CHANGE_TIMEOUT_S,
                 skip_poll_interval: float = cfg.SKIP_POLL_INTERVAL_S,
                 placeholder_track_id: str = cfg.PLACEHOLDER_TRACK_ID):
        self.player = player
        self.catalog = catalog if catalog is not None else TrackCatalog()
        self.initial_batch_size = int(initial_batch_size)
        self.refill_batch_size = int(refill_batch_size)
        self.low_water_mark = int(low_water_mark)
        self.max_flush_skips = int(max_flush_skips)
        self.track_change_timeout = float(track_change_timeout)
        self.skip_poll_interval = float(skip_poll_interval)
        self.placeholder_track_id = placeholder_track_id

        # Now playing
        self.current_track_id = ""
        self.current_track_name = ""
        self.current_artist = ""
        self.current_bpm = 0.0
        self.is_playing = False

        # Guards
        self.has_queued_songs = False
        self.is_loading_more_songs = False
        self.is_skipping = False
        self._is_flushing = False
        self._is_initial_batching = False

        self.state = STATE_IDLE
        self.last_status = ""
        self._status_listeners: List[StatusCallback] = []
        self._track_changed: Optional[asyncio.Event] = None
        self._pending: Set[asyncio.Task] = set()

        self.player.subscribe(self.handle_player_state)

    # --- READ-ONLY VIEW ---

    @property
    def queued_songs_count(self) -> int:
        return self.catalog.queued_count

    @property
    def is_flushing(self) -> bool:
        return self._is_flushing

    # --- STATUS CHANNEL ---

    def subscribe_status(self, callback: StatusCallback) -> None:
        if callback not in self._status_listeners:
            self._status_listeners.append(callback)

    def unsubscribe_status(self, callback: StatusCallback) -> None:
        if callback in self._status_listeners:
            self._status_listeners.remove(callback)

    def _report(self, msg: str) -> None:
        self.last_status = msg
        print(f"📣 {msg}")
        for callback in list(self._status_listeners):
            try:
                callback(msg)
            except Exception as e:
                print(f"⚠️ Status listener failed: {e}")

    # --- ORCHESTRATION ---

    async def refresh_songs_and_queue(self, tracks: Mapping[str, float],
                                      initial_batch_size: Optional[int] = None) -> int:
        """
        Replaces the playing selection with a new BPM-matched set:
        flush the player's queue, then queue an initial batch and skip onto it.
        Returns the number of tracks queued initially.
        """
        if not self.player.is_connected:
            self._report("Music player is not connected. Connect and try again.")
            return 0
        if not tracks:
            self._report("No songs found for this tempo. Try other music sources.")
            return 0

        self._report(f"Preparing {len(tracks)} songs...")
        await self._cancel_pending()

        try:
            await self.player.set_repeat_mode(RepeatMode.OFF)
        except PlayerError as e:
            print(f"⚠️ Could not turn off repeat: {e}")

        self.catalog.initialize_batching(tracks)
        self.state = STATE_INITIALIZED
        await self.flush_queue()

        size = initial_batch_size if initial_batch_size is not None else self.initial_batch_size
        queued = await self.queue_initial_batch(size)
        self._report(f"Queued {queued} of {len(tracks)} songs")
        return queued

    async def queue_initial_batch(self, count: int) -> int:
        """
        Queues the first batch and skips onto it.
        Refills stay off until the whole batch is enqueued, then the refill level is re-checked.
        """
        batch = self.catalog.get_next_batch(count)
        if not batch:
            return 0
        self._is_initial_batching = True
        try:
            queued = await self.queue_batch(batch, skip_after_first=True, allow_requeue=False)
        finally:
            self._is_initial_batching = False
        self.state = STATE_INITIAL_BATCH_QUEUED
        if self.catalog.needs_refill(self.low_water_mark):
            self._spawn(self.queue_more_songs)
        return queued

    async def queue_batch(self, batch: Mapping[str, float], skip_after_first: bool = False,
                          allow_requeue: bool = False) -> int:
        """
        Enqueues a batch strictly in order, one call at a time.
        A failed enqueue is logged and the rest of the batch still goes through.
        """
        queued = 0
        skipped = False

        for track_id in batch:
            if track_id in self.catalog.queued_ids and not allow_requeue:
                print(f"↩️ {track_id} already queued. Skipping.")
                continue

            try:
                await self.player.enqueue(track_uri(track_id))
            except PlayerError as e:
                print(f"❌ Failed to enqueue {track_id}: {e}")
                continue

            self.catalog.mark_queued(track_id)
            self.has_queued_songs = True
            queued += 1

            if skip_after_first and not skipped:
                skipped = True
                await self._attempt("skip after first enqueue", self._skip)

        return queued

    async def queue_more_songs(self, count: Optional[int] = None) -> int:
        """Single-flight refill. Starts a new shuffled pass when the pool runs dry."""
        if self.is_loading_more_songs:
            print("⏳ Refill already in progress.")
            return 0
        if not self.catalog.all_available:
            return 0

        self.is_loading_more_songs = True
        self.catalog.is_loading = True
        try:
            if not self.catalog.unqueued_ids:
                self._start_new_pass()
            allow_requeue = self.catalog.cycles > 0
            batch = self.catalog.get_next_batch(count if count is not None else self.refill_batch_size)
            if not self.catalog.unqueued_ids:
                self._start_new_pass()

            queued = await self.queue_batch(batch, skip_after_first=False, allow_requeue=allow_requeue)
            print(f"➕ Refilled {queued}/{len(batch)} songs ({self.catalog.queued_count} in queue)")
            return queued
        finally:
            self.is_loading_more_songs = False
            self.catalog.is_loading = False

    def _start_new_pass(self) -> None:
        self.catalog.reshuffle()
        print(f"🔁 Catalog cycled. Starting pass {self.catalog.cycles + 1} "
              f"over {len(self.catalog)} songs.")

    async def flush_queue(self) -> bool:
        """
        Clears the player's queue by enqueueing a placeholder and skipping until it plays.
        Bookkeeping is always reset, even on timeout or error.
        Returns True when the placeholder was reached.
        """
        placeholder = self.placeholder_track_id
        reached = False
        skips = 0
        self.state = STATE_FLUSHING
        self._is_flushing = True
        try:
            if not self.player.is_connected:
                print("⚠️ Cannot flush queue: player not connected.")
                return False

            print("🧹 Flushing player queue...")
            await self.player.enqueue(track_uri(placeholder))

            while self.current_track_id != placeholder and skips < self.max_flush_skips:
                if self.is_skipping:
                    await asyncio.sleep(self.skip_poll_interval)
                    continue
                changed = self._arm_track_change()
                await self._skip()
                skips += 1
                await self._wait_for_track_change(changed)

            if self.current_track_id == placeholder:
                reached = True
                await self._skip()
                print(f"✅ Queue flushed after {skips} skips.")
            else:
                print(f"⚠️ Placeholder not reached after {skips} skips "
                      f"(current: {self.current_track_id or '-'}).")
        except PlayerError as e:
            print(f"❌ Queue flush error: {e}")
        finally:
            self.catalog.reset_consumption()
            self.has_queued_songs = False
            self._is_flushing = False
            self.state = STATE_INITIALIZED if self.catalog.all_available else STATE_IDLE
        return reached

    def clear(self) -> None:
        """Forgets the current selection (tempo/source change or run end)."""
        for task in list(self._pending):
            task.cancel()
        self.catalog.clear()
        self.has_queued_songs = False
        self.state = STATE_CLEARED

    # --- PLAYER EVENTS ---

    def handle_player_state(self, state: PlayerState) -> None:
        """Subscription callback. Track changes drive played-bookkeeping and refills."""
        previous = self.current_track_id
        self.current_track_id = state.track_id
        self.current_track_name = state.track_name
        self.current_artist = state.artist_name
        self.is_playing = not state.is_paused
        self.current_bpm = self.catalog.bpm_of(state.track_id)

        if state.track_id == previous:
            return

        if previous and self.catalog.mark_played(previous):
            print(f"🎵 Finished {previous} ({self.catalog.queued_count} left in queue)")
        if self._track_changed is not None:
            self._track_changed.set()
        if self.state == STATE_INITIAL_BATCH_QUEUED:
            self.state = STATE_STEADY

        if self._is_flushing or self._is_initial_batching:
            return
        if self.catalog.needs_refill(self.low_water_mark):
            self._spawn(self.queue_more_songs)

    def _spawn(self, factory: Callable[[], Coroutine[Any, Any, Any]]) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            print("⚠️ No running event loop. Refill deferred to next track change.")
            return None
        task = loop.create_task(factory())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_for_pending(self) -> None:
        """Waits for detached refill tasks to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _cancel_pending(self) -> None:
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _arm_track_change(self) -> asyncio.Event:
        self._track_changed = asyncio.Event()
        return self._track_changed

    async def _wait_for_track_change(self, event: asyncio.Event) -> bool:
        try:
            await asyncio.wait_for(event.wait(), timeout=self.track_change_timeout)
            return True
        except asyncio.TimeoutError:
            print(f"⚠️ No track change within {self.track_change_timeout:.1f}s. Assuming skip took effect.")
            return False

    # --- PLAYBACK CONTROLS ---

    async def _skip(self) -> None:
        self.is_skipping = True
        try:
            await self.player.skip_next()
        finally:
            self.is_skipping = False

    async def _attempt(self, description: str, call: Callable[..., Awaitable[None]], *args: Any) -> bool:
        try:
            await call(*args)
            return True
        except PlayerError as e:
            print(f"❌ {description} failed: {e}")
            return False

    async def play(self, uri: str) -> bool:
        ok = await self._attempt("play", self.player.play, uri)
        if ok:
            self.is_skipping = False
        return ok

    async def pause(self) -> bool:
        return await self._attempt("pause", self.player.pause)

    async def resume(self) -> bool:
        return await self._attempt("resume", self.player.resume)

    async def skip_to_next(self) -> bool:
        if self.is_skipping:
            print("⏳ Skip already in progress.")
            return False
        return await self._attempt("skip to next track", self._skip)

    async def skip_to_previous(self) -> bool:
        return await self._attempt("skip to previous track", self.player.skip_previous)

    async def rewind(self) -> bool:
        return await self._attempt("rewind", self.player.seek, 0)
