"""
Remote player capability contract.
Every mutating call is a coroutine that either completes or raises a PlayerError;
callers treat failure as always possible and never fatal to the session.
"""
import abc
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List


class PlayerError(Exception):
    """Base class for remote player failures."""


class NotConnectedError(PlayerError):
    """The player is not connected."""

    def __init__(self, message: str = "Music player is not connected"):
        super().__init__(message)


class PlaybackFailed(PlayerError):
    """A transport command (play, pause, skip, seek...) failed."""


class EnqueueFailed(PlayerError):
    """A track could not be appended to the play queue."""


class RepeatMode(Enum):
    OFF = "off"
    TRACK = "track"
    CONTEXT = "context"


@dataclass(frozen=True)
class PlayerState:
    """Snapshot delivered to subscribers on every player change."""
    track_id: str
    track_name: str = ""
    artist_name: str = ""
    is_paused: bool = False


StateHandler = Callable[[PlayerState], None]


class RemotePlayer(abc.ABC):
    """Abstract remote-controlled player. Subclasses implement the transport."""

    def __init__(self) -> None:
        self._handlers: List[StateHandler] = []

    @property
    @abc.abstractmethod
    def is_connected(self) -> bool:
        ...

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    async def disconnect(self) -> None:
        ...

    @abc.abstractmethod
    async def play(self, uri: str) -> None:
        ...

    @abc.abstractmethod
    async def pause(self) -> None:
        ...

    @abc.abstractmethod
    async def resume(self) -> None:
        ...

    @abc.abstractmethod
    async def skip_next(self) -> None:
        ...

    @abc.abstractmethod
    async def skip_previous(self) -> None:
        ...

    @abc.abstractmethod
    async def seek(self, position_ms: int) -> None:
        ...

    @abc.abstractmethod
    async def enqueue(self, uri: str) -> None:
        ...

    @abc.abstractmethod
    async def set_repeat_mode(self, mode: RepeatMode) -> None:
        ...

    def subscribe(self, handler: StateHandler) -> None:
        """Registers a handler for player state changes."""
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: StateHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def _notify(self, state: PlayerState) -> None:
        """Delivers a state change to every subscriber, in registration order."""
        for handler in list(self._handlers):
            try:
                handler(state)
            except Exception as e:
                print(f"⚠️ Player state handler failed: {e}")
