#!/usr/bin/env python3
"""
Download the MediaPipe Face Landmarker model used by the liveness check.

The model is saved to MEDIAPIPE_MODEL_PATH (default:
~/.mediapipe_models/face_landmarker.task).
"""

import sys
import urllib.request
from pathlib import Path

from liveness_gate.config import config

MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/latest/face_landmarker.task"


def download_model(model_path: Path) -> bool:
    """Download the face landmarker model unless it is already present."""
    model_path.parent.mkdir(parents=True, exist_ok=True)

    if model_path.exists():
        print(f"✓ Model already exists at {model_path}")
        print(f"✓ Model size: {model_path.stat().st_size / 1024 / 1024:.2f} MB")
        return True

    print(f"Downloading MediaPipe Face Landmarker from {MODEL_URL}...")
    print(f"Saving to {model_path}")

    def report_progress(block_num, block_size, total_size):
        if total_size > 0:
            percent = min(100, block_num * block_size * 100 / total_size)
            print(f"\rProgress: {percent:.1f}%", end="")

    try:
        urllib.request.urlretrieve(MODEL_URL, model_path, reporthook=report_progress)
    except OSError as e:
        print(f"\n✗ Download failed: {e}")
        if model_path.exists():
            model_path.unlink()
        return False

    print("\n✓ Download complete!")
    print(f"✓ Model size: {model_path.stat().st_size / 1024 / 1024:.2f} MB")
    return True


def main():
    model_path = Path(config.MEDIAPIPE_MODEL_PATH)
    if not download_model(model_path):
        print("\nPlease check your internet connection and try again.")
        sys.exit(1)

    print(f"\nThe liveness check will load the model from {model_path}")
    print("To use a different location, set:")
    print(f"  MEDIAPIPE_MODEL_PATH={model_path}")


if __name__ == "__main__":
    main()
