"""
Unit tests for MediaPipeLandmarkProvider
"""
import asyncio
import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from liveness_gate.models.data_models import LandmarkFrame
from liveness_gate.services.landmark_provider import (
    LandmarkProviderError,
    LivenessError,
    MediaPipeLandmarkProvider,
)


def mesh(num_points=478):
    """Normalized face mesh where point i sits at (i/1000, i/2000)."""
    return [SimpleNamespace(x=i / 1000.0, y=i / 2000.0, z=0.0) for i in range(num_points)]


def bgr_frame(height=240, width=320):
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:, :, 0] = 255  # pure blue in BGR
    return frame


def provider_with_detector(frame_source, faces):
    provider = MediaPipeLandmarkProvider(frame_source, model_path="unused.task")
    detector = MagicMock()
    detector.detect.return_value = SimpleNamespace(face_landmarks=faces)
    provider._face_landmarker = detector
    return provider, detector


class TestMediaPipeLandmarkProvider:
    """Test suite for MediaPipeLandmarkProvider"""

    def test_region_index_counts(self):
        assert len(MediaPipeLandmarkProvider.LEFT_EYE) == 6
        assert len(MediaPipeLandmarkProvider.RIGHT_EYE) == 6
        assert len(MediaPipeLandmarkProvider.MOUTH) == 20
        assert len(MediaPipeLandmarkProvider.NOSE) == 9

    def test_mouth_gate_points_are_inner_lips_and_corners(self):
        mouth = MediaPipeLandmarkProvider.MOUTH
        assert mouth[0] == 61
        assert mouth[6] == 291
        assert mouth[13] == 81
        assert mouth[19] == 178

    def test_to_landmark_frame_scales_to_pixels(self):
        provider = MediaPipeLandmarkProvider(lambda: None, target_size=(640, 480))
        frame = provider.to_landmark_frame(mesh())

        assert isinstance(frame, LandmarkFrame)
        first = frame.left_eye[0]
        assert first.x == pytest.approx(33 / 1000.0 * 640)
        assert first.y == pytest.approx(33 / 2000.0 * 480)
        tip = frame.nose[3]
        assert tip.x == pytest.approx(1 / 1000.0 * 640)
        assert frame.right_eye[3].x == pytest.approx(263 / 1000.0 * 640)

    def test_preprocess_resizes_and_converts_to_rgb(self):
        provider = MediaPipeLandmarkProvider(lambda: None, target_size=(640, 480))
        rgb = provider.preprocess_frame(bgr_frame())
        assert rgb.shape == (480, 640, 3)
        assert rgb[0, 0, 2] == 255
        assert rgb[0, 0, 0] == 0

    @pytest.mark.asyncio
    async def test_detect_once_returns_frame(self):
        provider, detector = provider_with_detector(lambda: bgr_frame(), [mesh()])
        result = await provider.detect_once()
        assert isinstance(result, LandmarkFrame)
        detector.detect.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_face_returns_none(self):
        provider, _ = provider_with_detector(lambda: bgr_frame(), [])
        assert await provider.detect_once() is None

    @pytest.mark.asyncio
    async def test_missing_frame_skips_detector(self):
        provider, detector = provider_with_detector(lambda: None, [mesh()])
        assert await provider.detect_once() is None
        detector.detect.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_frame_source(self):
        async def source():
            return bgr_frame()

        provider, _ = provider_with_detector(source, [mesh()])
        assert isinstance(await provider.detect_once(), LandmarkFrame)

    @pytest.mark.asyncio
    async def test_detector_error_is_wrapped(self):
        provider, detector = provider_with_detector(lambda: bgr_frame(), [])
        detector.detect.side_effect = RuntimeError("graph crashed")
        with pytest.raises(LandmarkProviderError, match="graph crashed"):
            await provider.detect_once()

    @pytest.mark.asyncio
    async def test_frame_source_error_is_wrapped(self):
        def source():
            raise OSError("camera unplugged")

        provider, _ = provider_with_detector(source, [])
        with pytest.raises(LandmarkProviderError, match="camera unplugged"):
            await provider.detect_once()

    @pytest.mark.asyncio
    async def test_frame_source_provider_error_passes_through(self):
        error = LandmarkProviderError("permission denied")

        def source():
            raise error

        provider, _ = provider_with_detector(source, [])
        with pytest.raises(LandmarkProviderError) as exc_info:
            await provider.detect_once()
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_missing_model_raises(self, tmp_path):
        provider = MediaPipeLandmarkProvider(
            lambda: bgr_frame(), model_path=str(tmp_path / "missing.task")
        )
        with pytest.raises(LandmarkProviderError):
            await provider.detect_once()

    def test_warm_up_missing_model_raises(self, tmp_path):
        provider = MediaPipeLandmarkProvider(lambda: None, model_path=str(tmp_path / "missing.task"))
        with pytest.raises(LivenessError):
            provider.warm_up()

    def test_warm_up_wraps_init_errors(self, tmp_path, mocker):
        model = tmp_path / "face_landmarker.task"
        model.write_bytes(b"not a model")
        mocker.patch(
            "liveness_gate.services.landmark_provider.mp.tasks.vision.FaceLandmarker.create_from_options",
            side_effect=RuntimeError("bad model"),
        )
        provider = MediaPipeLandmarkProvider(lambda: None, model_path=str(model))
        with pytest.raises(LandmarkProviderError, match="bad model"):
            provider.warm_up()

    @pytest.mark.asyncio
    async def test_slow_model_load_creates_one_detector_off_loop(self, tmp_path, mocker):
        model = tmp_path / "face_landmarker.task"
        model.write_bytes(b"model")
        loop_thread = threading.get_ident()
        creator_threads = []

        def slow_create(options):
            creator_threads.append(threading.get_ident())
            time.sleep(0.2)
            detector = MagicMock()
            detector.detect.return_value = SimpleNamespace(face_landmarks=[mesh()])
            return detector

        mocker.patch(
            "liveness_gate.services.landmark_provider.mp.tasks.vision.FaceLandmarker.create_from_options",
            side_effect=slow_create,
        )
        provider = MediaPipeLandmarkProvider(lambda: bgr_frame(), model_path=str(model))

        warm = asyncio.create_task(asyncio.to_thread(provider.warm_up))
        await asyncio.sleep(0.05)
        result = await provider.detect_once()
        detector = await warm

        assert isinstance(result, LandmarkFrame)
        assert len(creator_threads) == 1
        assert loop_thread not in creator_threads
        assert provider.face_landmarker is detector

    @pytest.mark.asyncio
    async def test_first_detection_loads_model_off_loop(self, tmp_path, mocker):
        model = tmp_path / "face_landmarker.task"
        model.write_bytes(b"model")
        creator_threads = []

        def create(options):
            creator_threads.append(threading.get_ident())
            detector = MagicMock()
            detector.detect.return_value = SimpleNamespace(face_landmarks=[])
            return detector

        mocker.patch(
            "liveness_gate.services.landmark_provider.mp.tasks.vision.FaceLandmarker.create_from_options",
            side_effect=create,
        )
        provider = MediaPipeLandmarkProvider(lambda: bgr_frame(), model_path=str(model))

        assert await provider.detect_once() is None
        assert await provider.detect_once() is None
        assert len(creator_threads) == 1
        assert creator_threads[0] != threading.get_ident()

    def test_close_releases_detector(self):
        provider, detector = provider_with_detector(lambda: None, [])
        provider.close()
        detector.close.assert_called_once()
        provider.close()
        detector.close.assert_called_once()
