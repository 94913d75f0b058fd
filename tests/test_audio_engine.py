"""
Unit tests for the local pygame-backed player, driven through a fake mixer.
"""
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from fakes import FakeMixer
from stride.audio_engine import LocalPlayer
from stride.player import EnqueueFailed, NotConnectedError, PlaybackFailed, RepeatMode


@pytest.fixture
def library(tmp_path):
    lib = {}
    for track_id, title in (("a", "Alpha"), ("b", "Bravo"), ("c", "Charlie")):
        path = tmp_path / f"{track_id}.mp3"
        path.write_bytes(b"\x00")
        lib[track_id] = {"path": str(path), "title": title, "artist": "Band", "bpm_norm": 160.0}
    lib["nofile"] = {"path": str(tmp_path / "missing.mp3")}
    return lib


def make_player(library, **kwargs):
    mixer = FakeMixer()
    player = LocalPlayer(library, mixer=mixer, silent_ids=["ph"], watch_interval=0, **kwargs)
    states = []
    player.subscribe(states.append)
    return player, mixer, states


def test_calls_require_connection(library):
    player, _, _ = make_player(library)

    with pytest.raises(NotConnectedError):
        asyncio.run(player.enqueue("spotify:track:a"))


def test_enqueue_validates_audio(library):
    player, _, _ = make_player(library)

    async def scenario():
        await player.connect()
        await player.enqueue("spotify:track:a")
        await player.enqueue("spotify:track:ph")
        with pytest.raises(EnqueueFailed):
            await player.enqueue("spotify:track:nofile")
        with pytest.raises(EnqueueFailed):
            await player.enqueue("spotify:track:unknown")

    asyncio.run(scenario())
    assert player.queue == ["a", "ph"]


def test_skip_walks_the_queue(library):
    player, mixer, states = make_player(library)

    async def scenario():
        await player.connect()
        for track_id in ("ph", "a", "b"):
            await player.enqueue(f"spotify:track:{track_id}")
        await player.skip_next()
        await player.skip_next()
        await player.skip_next()
        await player.skip_next()

    asyncio.run(scenario())

    assert [s.track_id for s in states] == ["ph", "a", "b", ""]
    assert states[1].track_name == "Alpha" and states[1].artist_name == "Band"
    assert ("load", library["a"]["path"]) in mixer.calls
    assert mixer.calls[0] == ("stop",), "Silent placeholder stops output instead of loading"
    assert mixer.calls[-1] == ("stop",), "Empty queue stops playback"


def test_skip_previous_uses_history(library):
    player, mixer, states = make_player(library)

    async def scenario():
        await player.connect()
        await player.play("spotify:track:a")
        await player.enqueue("spotify:track:b")
        await player.skip_next()
        await player.skip_previous()
        await player.skip_previous()

    asyncio.run(scenario())

    assert [s.track_id for s in states] == ["a", "b", "a"]
    assert player.queue == ["b"]
    assert mixer.calls[-1] == ("rewind",), "No history left means restart the current track"


def test_transport_commands(library):
    player, mixer, states = make_player(library)

    async def scenario():
        await player.connect()
        await player.play("spotify:track:c")
        await player.pause()
        await player.resume()
        await player.seek(0)
        await player.seek(1500)
        await player.set_repeat_mode(RepeatMode.TRACK)

    asyncio.run(scenario())

    assert mixer.calls[-4:] == [("pause",), ("unpause",), ("rewind",), ("set_pos", 1.5)]
    assert [s.is_paused for s in states] == [False, True, False]
    assert player.repeat_mode == RepeatMode.TRACK


def test_mixer_errors_become_playback_failures(library):
    player, mixer, _ = make_player(library)
    mixer.fail.add("pause")

    async def scenario():
        await player.connect()
        with pytest.raises(PlaybackFailed):
            await player.pause()

    asyncio.run(scenario())


def test_unplayable_track_is_skipped(library, tmp_path):
    player, _, states = make_player(library)

    async def scenario():
        await player.connect()
        await player.enqueue("spotify:track:a")
        await player.enqueue("spotify:track:b")
        Path(library["a"]["path"]).unlink()
        await player.skip_next()

    asyncio.run(scenario())
    assert [s.track_id for s in states] == ["b"]


def test_track_end_respects_repeat_mode(library):
    player, mixer, states = make_player(library)

    async def scenario():
        await player.connect()
        await player.play("spotify:track:a")
        await player.enqueue("spotify:track:b")
        await player.set_repeat_mode(RepeatMode.TRACK)
        player.on_track_end()
        await player.set_repeat_mode(RepeatMode.OFF)
        player.on_track_end()

    asyncio.run(scenario())

    assert [s.track_id for s in states] == ["a", "b"]
    assert mixer.calls.count(("play",)) == 3


def test_watcher_advances_when_track_finishes(library):
    mixer = FakeMixer()
    player = LocalPlayer(library, mixer=mixer, watch_interval=0.001)
    states = []
    player.subscribe(states.append)

    async def scenario():
        await player.connect()
        await player.play("spotify:track:a")
        await player.enqueue("spotify:track:b")
        mixer.busy = False
        for _ in range(200):
            if player.current_id == "b":
                break
            await asyncio.sleep(0.001)
        mixer.busy = True
        await player.disconnect()

    asyncio.run(scenario())

    assert states[1].track_id == "b"
    assert not player.is_connected
