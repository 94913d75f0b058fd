"""
Track catalog for BPM-matched playback.
Holds the candidate set of one tempo selection and its consumption state
(unqueued work queue, queued ids, played ids).
"""
import collections
from dataclasses import dataclass, field
from typing import Deque, Dict, Mapping, Optional, Set

import numpy as np

TRACK_URI_PREFIX = "spotify:track:"


def track_uri(track_id: str) -> str:
    """Builds the player URI for a track id."""
    return f"{TRACK_URI_PREFIX}{track_id}"


def track_id_from_uri(uri: str) -> str:
    """Extracts the bare id from a player URI. Ids may themselves contain ":"."""
    uri = str(uri or "")
    if uri.startswith(TRACK_URI_PREFIX):
        return uri[len(TRACK_URI_PREFIX):]
    return uri


@dataclass(frozen=True)
class Track:
    """A BPM-matched track. Identity is the id alone."""
    id: str
    bpm: float = field(default=0.0, compare=False)
    name: str = field(default="", compare=False)
    artist: str = field(default="", compare=False)

    @property
    def uri(self) -> str:
        return track_uri(self.id)


class TrackCatalog:
    """
    Consumption bookkeeping for the current candidate set.
    All mutation happens on the scheduler's single logical task.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self._rng = rng if rng is not None else np.random.default_rng()
        self.all_available: Dict[str, float] = {}
        self.unqueued_ids: Deque[str] = collections.deque()
        self.queued_ids: Set[str] = set()
        self.played_ids: Set[str] = set()
        self.queued_count = 0
        self.cycles = 0
        self.is_loading = False

    def __len__(self) -> int:
        return len(self.all_available)

    def initialize_batching(self, tracks: Mapping[str, float]) -> None:
        """Replaces the candidate set and shuffles every id into the work queue."""
        self.all_available = {str(k): float(v) for k, v in tracks.items()}
        self.unqueued_ids = collections.deque(self._shuffled())
        self.cycles = 0
        self.is_loading = False

    def get_next_batch(self, count: int) -> Dict[str, float]:
        """Pops up to `count` ids from the front of the work queue, preserving order."""
        batch: Dict[str, float] = {}
        while self.unqueued_ids and len(batch) < max(0, int(count)):
            track_id = self.unqueued_ids.popleft()
            batch[track_id] = self.all_available.get(track_id, 0.0)
        return batch

    def reshuffle(self) -> None:
        """Starts a new pass over all known ids. Already-played ids may come back."""
        self.unqueued_ids = collections.deque(self._shuffled())
        self.cycles += 1

    def mark_queued(self, track_id: str) -> None:
        self.queued_ids.add(track_id)
        self.queued_count += 1

    def mark_played(self, track_id: str) -> bool:
        """Moves a queued id to played. Returns False when the id was not queued."""
        if track_id not in self.queued_ids:
            return False
        self.queued_ids.discard(track_id)
        self.played_ids.add(track_id)
        self.queued_count = max(0, self.queued_count - 1)
        return True

    def needs_refill(self, low_water: int) -> bool:
        return 0 < self.queued_count <= low_water

    def bpm_of(self, track_id: str) -> float:
        return self.all_available.get(track_id, 0.0)

    def reset_consumption(self) -> None:
        """Forgets queued/played bookkeeping but keeps the candidate set."""
        self.queued_ids.clear()
        self.played_ids.clear()
        self.queued_count = 0

    def clear(self) -> None:
        """Drops the candidate set and all bookkeeping."""
        self.all_available = {}
        self.unqueued_ids.clear()
        self.reset_consumption()
        self.cycles = 0
        self.is_loading = False

    def _shuffled(self) -> list:
        ids = list(self.all_available.keys())
        if not ids:
            return []
        order = self._rng.permutation(len(ids))
        return [ids[i] for i in order]
