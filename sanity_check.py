"""
Diagnostic utility tool for the Stride-DJ project environment.
Verifies the existence of the music library, demo data, dependencies
and path structures prior to application launch.
"""
import sys
from pathlib import Path

# Ensure Python can find the 'stride' package from the root directory
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import os
import importlib.util
import pygame
import requests
from stride import config as cfg

EXPECTED_FILES = {
    "Music Database": cfg.LIBRARY_FILE,
    "Demo Data": cfg.SIM_DATA_FILE,
    "Backend Script": "main.py",
}

REQUIRED_MODULES = ["numpy", "pandas", "pygame", "requests"]


def check_step(name: str, filepath: str) -> bool:
    """Verifies absolute file existence."""
    if os.path.exists(filepath):
        print(f"✅ {name:20} -> FOUND")
        return True

    print(f"❌ {name:20} -> MISSING! (Expected: {filepath})")
    return False


def check_backend() -> bool:
    """Pings the track backend. Any HTTP answer counts as reachable."""
    try:
        requests.get(cfg.BACKEND_URL, timeout=2)
        print(f"✅ {'Track Backend':20} -> REACHABLE ({cfg.BACKEND_URL})")
        return True
    except requests.RequestException:
        print(f"⚠️ {'Track Backend':20} -> OFFLINE (local library will be used)")
        return False


def run_diagnostics() -> None:
    """Executes the master diagnostic suite."""
    print("=" * 50)
    print("   STRIDE-DJ SYSTEM DIAGNOSTICS")
    print("=" * 50 + "\n")

    # 1. Structure Check: Create folders dynamically if they don't exist
    for folder in [cfg.OUT_DIR, cfg.DATA_DIR, cfg.AUDIO_ROOT]:
        os.makedirs(folder, exist_ok=True)

    # 2. File Check
    results = {}
    for label, path in EXPECTED_FILES.items():
        results[label] = check_step(label, path)

    print("\n" + "-" * 30)

    # 3. Dependency Check
    missing = [m for m in REQUIRED_MODULES if importlib.util.find_spec(m) is None]
    if missing:
        print(f"❌ Dependencies        -> MISSING: {', '.join(missing)}")
    else:
        print("✅ Dependencies        -> READY")

    # 4. Audio System Check
    try:
        pygame.mixer.init()
        pygame.mixer.quit()
        print("✅ Audio System        -> READY")
    except pygame.error as e:
        print(f"❌ Audio System        -> ERROR: {e}")

    # 5. Backend Check
    check_backend()

    print("\n" + "=" * 50)

    # 6. Conclusion
    if all(results.values()) and not missing:
        print("STATUS: ALL SYSTEMS GO!")
        print("   Start now: python main.py")
    else:
        print("ACTION REQUIRED:")
        if not results["Music Database"]:
            print("   -> Run: python scripts/library_processor.py to build your database.")
        if not results["Demo Data"]:
            print("   -> Run: python scripts/generate_demo.py")
        if missing:
            print("   -> Run: pip install -e .")


if __name__ == "__main__":
    run_diagnostics()
