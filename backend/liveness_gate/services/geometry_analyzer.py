"""
Geometry Analyzer for deriving liveness gates from facial landmarks
"""
import logging
import numpy as np
from typing import Sequence
from ..models.data_models import GateResult, LandmarkFrame, Point

logger = logging.getLogger(__name__)

# Default gate thresholds
EAR_THRESHOLD = 0.25
MOUTH_RATIO_THRESHOLD = 0.35
HEAD_OFFSET_THRESHOLD = 0.35

# Mouth landmark indices (68-point layout, mouth region offset)
MOUTH_LEFT_CORNER = 0
MOUTH_RIGHT_CORNER = 6
MOUTH_TOP_LIP = 13
MOUTH_BOTTOM_LIP = 19

# Outer eye corners and nose tip
LEFT_EYE_OUTER = 0
RIGHT_EYE_OUTER = 3
NOSE_TIP = 3


def _as_array(points: Sequence[Point]) -> np.ndarray:
    return np.array([[p.x, p.y] for p in points], dtype=np.float64)


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


class GeometryAnalyzer:
    """
    Maps a landmark frame to eye, mouth and head-turn gates.

    Every check looks at the current frame only. Remembering which
    challenges were already satisfied is the sequencer's job.
    """

    def __init__(
        self,
        ear_threshold: float = EAR_THRESHOLD,
        mouth_ratio_threshold: float = MOUTH_RATIO_THRESHOLD,
        head_offset_threshold: float = HEAD_OFFSET_THRESHOLD,
    ):
        self.ear_threshold = ear_threshold
        self.mouth_ratio_threshold = mouth_ratio_threshold
        self.head_offset_threshold = head_offset_threshold

    @classmethod
    def from_parameters(cls, parameters) -> "GeometryAnalyzer":
        return cls(
            ear_threshold=parameters.ear_threshold,
            mouth_ratio_threshold=parameters.mouth_ratio_threshold,
            head_offset_threshold=parameters.head_offset_threshold,
        )

    @staticmethod
    def eye_aspect_ratio(eye: Sequence[Point]) -> float:
        """
        Compute the eye aspect ratio (EAR) of a 6-point eye contour.

        EAR = (|p1 - p5| + |p2 - p4|) / (2 * |p0 - p3|)

        The vertical openings are normalized by the eye width, so the
        ratio does not depend on how far the face is from the camera.

        Args:
            eye: Six points running corner, top, top, corner, bottom, bottom

        Returns:
            float: The EAR, or 0.0 if the eye has no width
        """
        pts = _as_array(eye)
        horizontal = _dist(pts[0], pts[3])
        if horizontal == 0.0:
            return 0.0
        vertical1 = _dist(pts[1], pts[5])
        vertical2 = _dist(pts[2], pts[4])
        return (vertical1 + vertical2) / (2.0 * horizontal)

    def average_eye_aspect_ratio(self, left_eye: Sequence[Point], right_eye: Sequence[Point]) -> float:
        return (self.eye_aspect_ratio(left_eye) + self.eye_aspect_ratio(right_eye)) / 2.0

    @staticmethod
    def mouth_aspect_ratio(mouth: Sequence[Point]) -> float:
        """
        Lip opening divided by the corner-to-corner mouth width.

        A zero-width mouth reports 0.0, so the gate stays closed. A plain
        division would give infinity there and fire the gate; collapsed
        landmarks are treated as unmeasurable instead.
        """
        pts = _as_array(mouth)
        width = _dist(pts[MOUTH_LEFT_CORNER], pts[MOUTH_RIGHT_CORNER])
        if width == 0.0:
            return 0.0
        opening = _dist(pts[MOUTH_TOP_LIP], pts[MOUTH_BOTTOM_LIP])
        return opening / width

    @staticmethod
    def head_offset_ratio(frame: LandmarkFrame) -> float:
        """
        Signed horizontal offset of the nose tip from the inter-eye midline.

        The outer eye corners stand in for the cheeks: their distance is
        used as the face width and their midpoint as the face center. The
        offset is normalized by that width, so yaw shows up as a large
        positive or negative ratio without any 3-D pose estimation.

        A zero face width reports 0.0 rather than the infinite ratio a plain
        division would give, so collapsed landmarks never count as a turn.
        """
        left = _as_array(frame.left_eye)[LEFT_EYE_OUTER]
        right = _as_array(frame.right_eye)[RIGHT_EYE_OUTER]
        face_width = _dist(left, right)
        if face_width == 0.0:
            return 0.0
        face_center_x = (left[0] + right[0]) / 2.0
        nose_x = frame.nose[NOSE_TIP].x
        return float((nose_x - face_center_x) / face_width)

    @staticmethod
    def _eyes_measurable(frame: LandmarkFrame) -> bool:
        return all(
            _dist(pts[0], pts[3]) > 0.0
            for pts in (_as_array(frame.left_eye), _as_array(frame.right_eye))
        )

    def is_blink(self, frame: LandmarkFrame) -> bool:
        if not self._eyes_measurable(frame):
            return False
        return self.average_eye_aspect_ratio(frame.left_eye, frame.right_eye) < self.ear_threshold

    def is_mouth_open(self, frame: LandmarkFrame) -> bool:
        return self.mouth_aspect_ratio(frame.mouth) > self.mouth_ratio_threshold

    def is_head_turned(self, frame: LandmarkFrame) -> bool:
        return abs(self.head_offset_ratio(frame)) > self.head_offset_threshold

    def evaluate(self, frame: LandmarkFrame) -> GateResult:
        """
        Run all three gates against one frame.

        An eye with zero width reports an EAR of 0.0; the blink gate
        ignores such frames rather than reading them as closed eyes.

        Args:
            frame: Landmarks for the current detection cycle

        Returns:
            GateResult: Independent gate flags plus the underlying ratios
        """
        ear = self.average_eye_aspect_ratio(frame.left_eye, frame.right_eye)
        mar = self.mouth_aspect_ratio(frame.mouth)
        offset = self.head_offset_ratio(frame)

        result = GateResult(
            blink_detected=self._eyes_measurable(frame) and ear < self.ear_threshold,
            mouth_open_detected=mar > self.mouth_ratio_threshold,
            head_turn_detected=abs(offset) > self.head_offset_threshold,
            eye_aspect_ratio=ear,
            mouth_aspect_ratio=mar,
            head_offset_ratio=offset,
        )
        logger.debug(
            f"gates: EAR={ear:.3f} blink={result.blink_detected}, "
            f"MAR={mar:.3f} mouth_open={result.mouth_open_detected}, "
            f"offset={offset:.3f} head_turn={result.head_turn_detected}"
        )
        return result
