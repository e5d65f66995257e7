#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Run a liveness check against the local webcam.

Prompts and status lines are printed to the console; the exit code is 0
when the check passes and 1 otherwise.
"""

import asyncio
import logging
import sys

import cv2

from liveness_gate.config import config
from liveness_gate.models.data_models import SessionParameters
from liveness_gate.services.landmark_provider import LandmarkProviderError, MediaPipeLandmarkProvider
from liveness_gate.services.session_controller import LivenessSession


class ConsoleFeedbackSink:
    """Prints session feedback to stdout"""

    def on_progress(self, percent: int) -> None:
        print(f"\rLoading... {percent}%", end="" if percent < 100 else "\n")

    def on_status(self, text: str) -> None:
        print(f"[status] {text}")

    def on_prompt(self, message: str) -> None:
        print(f">>> {message}")


async def run_check(camera_index: int = 0) -> bool:
    capture = cv2.VideoCapture(camera_index)
    if not capture.isOpened():
        print(f"❌ Camera {camera_index} could not be opened")
        return False

    async def read_frame():
        ok, frame = await asyncio.to_thread(capture.read)
        if not ok:
            raise LandmarkProviderError("Camera stopped delivering frames")
        return frame

    provider = MediaPipeLandmarkProvider(
        read_frame,
        model_path=config.MEDIAPIPE_MODEL_PATH,
        min_detection_confidence=config.MIN_DETECTION_CONFIDENCE
    )
    session = LivenessSession(
        provider,
        feedback=ConsoleFeedbackSink(),
        parameters=SessionParameters.from_config()
    )

    try:
        await session.start()
        try:
            await asyncio.to_thread(provider.warm_up)
            session.mark_setup_complete()
        except LandmarkProviderError as e:
            print(f"❌ {e}")
            print("   Run: python download_mediapipe_model.py")
            session.abort(e)
        outcome = await session.wait_closed()
    finally:
        session.stop()
        provider.close()
        capture.release()

    print(f"\nResult: {outcome.value}")
    return outcome.verdict


def main():
    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
    camera_index = int(sys.argv[1]) if len(sys.argv) > 1 else 0
    passed = asyncio.run(run_check(camera_index))
    return 0 if passed else 1


if __name__ == "__main__":
    sys.exit(main())
