"""
Landmark providers that turn camera frames into LandmarkFrame snapshots
"""
import asyncio
import inspect
import logging
import os
import threading
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Union

import cv2
import mediapipe as mp
import numpy as np

from ..models.data_models import LandmarkFrame, Point

logger = logging.getLogger(__name__)

FrameSource = Callable[[], Union[Optional[np.ndarray], Awaitable[Optional[np.ndarray]]]]


class LivenessError(Exception):
    """Base class for liveness service errors"""


class LandmarkProviderError(LivenessError):
    """The landmark capability itself is unusable (model, camera, permissions)"""


class LandmarkProvider(Protocol):
    """
    One detection per call.

    Returns None when no face is found. Raises LandmarkProviderError when
    detection cannot run at all.
    """

    async def detect_once(self) -> Optional[LandmarkFrame]:
        ...


class MediaPipeLandmarkProvider:
    """
    Detects a single face with MediaPipe FaceLandmarker and maps the
    468-point face mesh onto the 68-point eye/mouth/nose regions.

    Frames are pulled from ``frame_source``, which may be a plain or an
    async callable returning a BGR image (or None when no frame is ready).
    """

    # Face mesh indices in 68-point region order
    LEFT_EYE = (33, 160, 158, 133, 153, 144)
    RIGHT_EYE = (362, 385, 387, 263, 373, 380)
    MOUTH = (
        # outer lip, left corner clockwise
        61, 40, 37, 0, 267, 270, 291, 321, 314, 17, 84, 91,
        # inner lip
        78, 81, 13, 311, 308, 402, 14, 178,
    )
    NOSE = (168, 6, 197, 1, 98, 97, 2, 326, 327)

    def __init__(
        self,
        frame_source: FrameSource,
        model_path: Optional[str] = None,
        min_detection_confidence: float = 0.6,
        target_size: tuple = (640, 480),
    ):
        """
        The FaceLandmarker is created lazily on the first detection so
        the provider can be built before the model file is checked.

        Args:
            frame_source: Callable producing the next BGR frame
            model_path: Path to the MediaPipe face landmarker model file
            min_detection_confidence: Detection and presence threshold
            target_size: (width, height) frames are resized to
        """
        self.frame_source = frame_source
        self.model_path = model_path
        self.min_detection_confidence = min_detection_confidence
        self.target_size = target_size
        self._face_landmarker = None
        self._init_lock = threading.Lock()

    @property
    def face_landmarker(self):
        """
        Lazy initialization of MediaPipe FaceLandmarker.

        Creation is guarded by a lock, so concurrent callers (a warm-up
        thread and the first detection) share a single detector.

        Raises:
            LandmarkProviderError: If the model is missing or cannot be loaded
        """
        if self._face_landmarker is not None:
            return self._face_landmarker

        with self._init_lock:
            if self._face_landmarker is not None:
                return self._face_landmarker

            if self.model_path is None or not os.path.exists(self.model_path):
                logger.warning(
                    f"MediaPipe model not found at {self.model_path}. "
                    "Download it using: python download_mediapipe_model.py"
                )
                raise LandmarkProviderError(f"Face landmarker model not found: {self.model_path}")

            try:
                base_options = mp.tasks.BaseOptions(model_asset_path=self.model_path)
                options = mp.tasks.vision.FaceLandmarkerOptions(
                    base_options=base_options,
                    running_mode=mp.tasks.vision.RunningMode.IMAGE,
                    num_faces=1,
                    min_face_detection_confidence=self.min_detection_confidence,
                    min_face_presence_confidence=self.min_detection_confidence,
                    output_face_blendshapes=False,
                    output_facial_transformation_matrixes=False
                )
                self._face_landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
            except Exception as e:
                logger.error(f"Failed to initialize MediaPipe FaceLandmarker: {e}")
                raise LandmarkProviderError(f"Failed to initialize face landmarker: {e}") from e

        return self._face_landmarker

    def warm_up(self):
        """
        Load the model ahead of the first detection.

        Blocking; run it in a worker thread from async code.

        Returns:
            The FaceLandmarker instance

        Raises:
            LandmarkProviderError: If the model cannot be loaded
        """
        return self.face_landmarker

    def preprocess_frame(self, frame: np.ndarray) -> np.ndarray:
        """
        Resize to the target size and convert BGR (OpenCV) to RGB (MediaPipe).
        """
        resized = cv2.resize(frame, self.target_size, interpolation=cv2.INTER_LINEAR)
        return cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)

    async def detect_once(self) -> Optional[LandmarkFrame]:
        """
        Pull one frame and detect landmarks on it.

        Returns:
            LandmarkFrame in pixel coordinates, or None when there is no
            frame or no face in it

        Raises:
            LandmarkProviderError: If the frame source or detector fails
        """
        try:
            frame = self.frame_source()
            if inspect.isawaitable(frame):
                frame = await frame
        except LandmarkProviderError:
            raise
        except Exception as e:
            logger.error(f"Frame source failed: {e}")
            raise LandmarkProviderError(f"Frame source failed: {e}") from e

        if frame is None:
            return None

        landmarker = self._face_landmarker
        if landmarker is None:
            # Model loading blocks; keep it off the event loop
            landmarker = await asyncio.to_thread(self.warm_up)

        rgb_frame = self.preprocess_frame(frame)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

        try:
            detection_result = await asyncio.to_thread(landmarker.detect, mp_image)
        except Exception as e:
            logger.error(f"Face landmark detection failed: {e}")
            raise LandmarkProviderError(f"Face landmark detection failed: {e}") from e

        if not detection_result.face_landmarks:
            return None

        return self.to_landmark_frame(detection_result.face_landmarks[0])

    def to_landmark_frame(self, landmarks: Sequence[Any]) -> LandmarkFrame:
        """
        Convert normalized face mesh landmarks into a pixel-space LandmarkFrame.

        Scaling by the frame size keeps x and y in the same unit, which
        the distance ratios rely on.
        """
        width, height = self.target_size

        def region(indices):
            return tuple(Point(landmarks[i].x * width, landmarks[i].y * height) for i in indices)

        return LandmarkFrame(
            left_eye=region(self.LEFT_EYE),
            right_eye=region(self.RIGHT_EYE),
            mouth=region(self.MOUTH),
            nose=region(self.NOSE),
        )

    def close(self) -> None:
        """Release MediaPipe resources."""
        with self._init_lock:
            if self._face_landmarker is not None:
                self._face_landmarker.close()
                self._face_landmarker = None

    def __del__(self):
        self.close()
