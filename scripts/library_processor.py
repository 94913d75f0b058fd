"""
Music Library Processor.
Estimates the tempo of every audio file under the audio root with librosa
and writes the local library database used for offline tempo matching.
"""
import sys
from pathlib import Path

# Ensure Python can find the 'stride' package from the root directory
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import os
import json
import librosa
import numpy as np
from tqdm import tqdm
from typing import Optional, Tuple
from stride import config as cfg

AUDIO_EXTENSIONS = (".mp3", ".wav", ".ogg", ".flac")


def estimate_bpm(filepath: str) -> Optional[float]:
    """Beat-tracks the percussive part of the first two minutes of a file."""
    try:
        y, sr = librosa.load(filepath, duration=120)
    except Exception as e:
        print(f"❌ Could not decode {os.path.basename(filepath)}: {e}")
        return None

    _, y_percussive = librosa.effects.hpss(y)
    onset_env = librosa.onset.onset_strength(y=y_percussive, sr=sr)
    tempo, _ = librosa.beat.beat_track(onset_envelope=onset_env, sr=sr)
    bpm = float(np.atleast_1d(tempo)[0])
    return round(bpm, 2) if bpm > 0 else None


def split_name(filename: str) -> Tuple[str, str]:
    """'Artist - Title.mp3' -> (artist, title). Unknown artist otherwise."""
    stem = os.path.splitext(filename)[0]
    if " - " in stem:
        artist, title = stem.split(" - ", 1)
        return artist.strip(), title.strip()
    return "Unknown", stem


def main() -> None:
    print("--- LIBRARY PROCESSOR ---")

    if not os.path.exists(cfg.AUDIO_ROOT):
        print(f"Error: Directory {cfg.AUDIO_ROOT} not found!")
        return

    files = sorted(f for f in os.listdir(cfg.AUDIO_ROOT) if f.lower().endswith(AUDIO_EXTENSIONS))
    library = []
    print(f"Estimating tempo for {len(files)} files...")

    for f in tqdm(files):
        path = os.path.join(cfg.AUDIO_ROOT, f)
        bpm = estimate_bpm(path)
        if bpm is None:
            continue

        artist, title = split_name(f)
        library.append({
            "id": os.path.splitext(f)[0],
            "path": path,
            "title": title,
            "artist": artist,
            "bpm_norm": bpm,
        })

    os.makedirs(os.path.dirname(cfg.LIBRARY_FILE), exist_ok=True)
    with open(cfg.LIBRARY_FILE, 'w', encoding='utf-8') as f:
        json.dump(library, f, indent=2)

    print(f"\nDONE! {len(library)} tracks analyzed and saved to {cfg.LIBRARY_FILE}.")


if __name__ == "__main__":
    main()
