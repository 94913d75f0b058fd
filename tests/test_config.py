"""
Unit tests for persisted settings and the control file.
"""
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stride import config as cfg


def test_settings_default_when_missing(tmp_path):
    settings = cfg.load_settings(str(tmp_path / "settings.json"))
    assert settings == {"sources": cfg.DEFAULT_SOURCES, "bpm": cfg.DEFAULT_BPM}


def test_settings_roundtrip(tmp_path):
    path = str(tmp_path / "nested" / "settings.json")
    cfg.save_settings(["top_tracks"], 172, path)
    assert cfg.load_settings(path) == {"sources": ["top_tracks"], "bpm": 172.0}


def test_settings_reject_bad_values(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"sources": "top_tracks", "bpm": 260}), encoding="utf-8")
    settings = cfg.load_settings(str(path))
    assert settings["sources"] == cfg.DEFAULT_SOURCES, "Sources must be a list of strings"
    assert settings["bpm"] == cfg.DEFAULT_BPM, "Out-of-range BPM falls back to default"

    path.write_text("{broken", encoding="utf-8")
    assert cfg.load_settings(str(path))["bpm"] == cfg.DEFAULT_BPM


def test_operating_mode(tmp_path):
    control = tmp_path / "control.json"
    assert cfg.get_operating_mode(str(control)) == "live"

    control.write_text(json.dumps({"mode": "sim", "bpm": 170}), encoding="utf-8")
    assert cfg.get_operating_mode(str(control)) == "sim"
    assert cfg.read_control(str(control))["bpm"] == 170

    control.write_text(json.dumps({"mode": "turbo"}), encoding="utf-8")
    assert cfg.get_operating_mode(str(control)) == "live"

    control.write_text("[1, 2]", encoding="utf-8")
    assert cfg.read_control(str(control)) == {}
