"""
Local playback engine.
Implements the remote player contract on top of pygame's music mixer so that
simulation and offline runs can drive a real play queue from local files.
"""
import os
import asyncio
import collections
from typing import Any, Deque, Dict, Iterable, List, Optional

import pygame

from stride.catalog import track_id_from_uri
from stride.player import (
    EnqueueFailed,
    NotConnectedError,
    PlaybackFailed,
    PlayerState,
    RemotePlayer,
    RepeatMode,
)


class LocalPlayer(RemotePlayer):
    """
    Plays library tracks through pygame.mixer.music with its own FIFO queue.
    A watcher task advances the queue when the current track ends.
    """

    def __init__(self, library: Dict[str, Dict[str, Any]], mixer: Any = None,
                 silent_ids: Iterable[str] = (), watch_interval: float = 0.25):
        super().__init__()
        self.library = library or {}
        self.silent_ids = set(silent_ids)
        self.watch_interval = float(watch_interval)
        self.repeat_mode = RepeatMode.OFF
        self.current_id = ""
        self.is_paused = False
        self._mixer = mixer
        self._connected = False
        self._queue: Deque[str] = collections.deque()
        self._history: List[str] = []
        self._watcher: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def queue(self) -> List[str]:
        return list(self._queue)

    # --- CONNECTION ---

    async def connect(self) -> None:
        if self._connected:
            return
        if self._mixer is None:
            try:
                pygame.mixer.init(frequency=44100)
            except pygame.error as e:
                raise NotConnectedError(f"Audio output unavailable: {e}") from e
            self._mixer = pygame.mixer.music
        self._connected = True
        if self.watch_interval > 0:
            self._watcher = asyncio.get_running_loop().create_task(self._watch())
        print("🔊 Local player connected.")

    async def disconnect(self) -> None:
        if self._watcher is not None:
            self._watcher.cancel()
            await asyncio.gather(self._watcher, return_exceptions=True)
            self._watcher = None
        if self._connected:
            try:
                self._mixer.stop()
            except Exception as e:
                print(f"⚠️ Mixer stop failed: {e}")
        self._connected = False
        print("🔇 Local player disconnected.")

    def _require_connection(self) -> None:
        if not self._connected:
            raise NotConnectedError()

    # --- TRANSPORT ---

    async def play(self, uri: str) -> None:
        self._require_connection()
        self._start(track_id_from_uri(uri))

    async def pause(self) -> None:
        self._require_connection()
        self._mixer_call("pause", self._mixer.pause)
        self.is_paused = True
        self._emit()

    async def resume(self) -> None:
        self._require_connection()
        self._mixer_call("resume", self._mixer.unpause)
        self.is_paused = False
        self._emit()

    async def skip_next(self) -> None:
        self._require_connection()
        self._advance()

    async def skip_previous(self) -> None:
        self._require_connection()
        if not self._history:
            self._mixer_call("rewind", self._mixer.rewind)
            return
        previous = self._history.pop()
        if self.current_id:
            self._queue.appendleft(self.current_id)
        self._start(previous, remember=False)

    async def seek(self, position_ms: int) -> None:
        self._require_connection()
        if position_ms <= 0:
            self._mixer_call("rewind", self._mixer.rewind)
        else:
            self._mixer_call("seek", self._mixer.set_pos, position_ms / 1000.0)

    async def enqueue(self, uri: str) -> None:
        self._require_connection()
        track_id = track_id_from_uri(uri)
        if track_id not in self.silent_ids and self._audio_path(track_id) is None:
            raise EnqueueFailed(f"No local audio for track {track_id}")
        self._queue.append(track_id)

    async def set_repeat_mode(self, mode: RepeatMode) -> None:
        self._require_connection()
        self.repeat_mode = mode

    # --- INTERNALS ---

    def _audio_path(self, track_id: str) -> Optional[str]:
        meta = self.library.get(track_id)
        if not isinstance(meta, dict):
            return None
        path = meta.get("path")
        if path and os.path.exists(str(path)):
            return str(path)
        return None

    def _mixer_call(self, action: str, fn: Any, *args: Any) -> None:
        try:
            fn(*args)
        except Exception as e:
            raise PlaybackFailed(f"{action} failed: {e}") from e

    def _start(self, track_id: str, remember: bool = True) -> None:
        if track_id in self.silent_ids:
            self._mixer_call("stop", self._mixer.stop)
        else:
            path = self._audio_path(track_id)
            if path is None:
                raise PlaybackFailed(f"Audio missing for track {track_id}")
            self._mixer_call("load", self._mixer.load, path)
            self._mixer_call("play", self._mixer.play)

        if remember and self.current_id:
            self._history.append(self.current_id)
        self.current_id = track_id
        self.is_paused = False
        self._emit()

    def _advance(self) -> None:
        while self._queue:
            next_id = self._queue.popleft()
            try:
                self._start(next_id)
                return
            except PlaybackFailed as e:
                print(f"⚠️ Skipping unplayable track {next_id}: {e}")

        self._mixer_call("stop", self._mixer.stop)
        if self.current_id:
            self._history.append(self.current_id)
        self.current_id = ""
        self._emit()

    def _emit(self) -> None:
        meta = self.library.get(self.current_id) or {}
        self._notify(PlayerState(
            track_id=self.current_id,
            track_name=str(meta.get("title", "")),
            artist_name=str(meta.get("artist", "")),
            is_paused=self.is_paused,
        ))

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self.watch_interval)
            if not self.current_id or self.is_paused:
                continue
            try:
                busy = bool(self._mixer.get_busy())
            except Exception as e:
                print(f"⚠️ Mixer poll failed: {e}")
                continue
            if busy:
                continue
            self.on_track_end()

    def on_track_end(self) -> None:
        """Called when the current track finishes on its own."""
        try:
            if self.repeat_mode == RepeatMode.TRACK and self.current_id not in self.silent_ids:
                self._mixer_call("replay", self._mixer.play)
            else:
                self._advance()
        except PlaybackFailed as e:
            print(f"❌ Mixer error: {e}")
