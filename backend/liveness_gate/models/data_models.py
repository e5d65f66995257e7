"""
Data models for liveness verification sessions
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Point:
    """A 2-D landmark coordinate"""
    x: float
    y: float


@dataclass(frozen=True)
class LandmarkFrame:
    """
    Facial geometry for one detection cycle.

    Regions follow the 68-point face layout:
    - eyes: 6 points each, corner -> top -> top -> corner -> bottom -> bottom
    - mouth: 20 points, [0] left corner, [6] right corner,
      [13] inner top lip, [19] inner bottom lip
    - nose: 9 points, [3] is the tip
    """
    left_eye: Tuple[Point, ...]
    right_eye: Tuple[Point, ...]
    mouth: Tuple[Point, ...]
    nose: Tuple[Point, ...]

    EYE_POINTS = 6
    MIN_MOUTH_POINTS = 20
    MIN_NOSE_POINTS = 4

    @classmethod
    def from_coordinates(
        cls,
        left_eye: Sequence[Sequence[float]],
        right_eye: Sequence[Sequence[float]],
        mouth: Sequence[Sequence[float]],
        nose: Sequence[Sequence[float]],
    ) -> "LandmarkFrame":
        """
        Build a frame from raw (x, y) pairs.

        Raises:
            ValueError: If a region has fewer points than the layout requires
        """
        def to_points(region):
            return tuple(Point(float(x), float(y)) for x, y in region)

        frame = cls(
            left_eye=to_points(left_eye),
            right_eye=to_points(right_eye),
            mouth=to_points(mouth),
            nose=to_points(nose),
        )
        frame.validate()
        return frame

    def validate(self) -> None:
        """Check point counts per region."""
        if len(self.left_eye) != self.EYE_POINTS or len(self.right_eye) != self.EYE_POINTS:
            raise ValueError(
                f"Each eye needs {self.EYE_POINTS} points, got "
                f"{len(self.left_eye)} and {len(self.right_eye)}"
            )
        if len(self.mouth) < self.MIN_MOUTH_POINTS:
            raise ValueError(f"Mouth needs at least {self.MIN_MOUTH_POINTS} points, got {len(self.mouth)}")
        if len(self.nose) < self.MIN_NOSE_POINTS:
            raise ValueError(f"Nose needs at least {self.MIN_NOSE_POINTS} points, got {len(self.nose)}")


@dataclass(frozen=True)
class GateResult:
    """Per-frame gate checks and the ratios they were computed from"""
    blink_detected: bool
    mouth_open_detected: bool
    head_turn_detected: bool
    eye_aspect_ratio: float = 0.0
    mouth_aspect_ratio: float = 0.0
    head_offset_ratio: float = 0.0


class ChallengeType(Enum):
    """Challenges in the order they must be performed"""
    BLINK = "blink"
    MOUTH_OPEN = "mouth_open"
    HEAD_TURN = "head_turn"


class SequencerState(Enum):
    """States of the challenge sequence"""
    IDLE = "idle"
    AWAITING_BLINK = "awaiting_blink"
    AWAITING_MOUTH_OPEN = "awaiting_mouth_open"
    AWAITING_HEAD_TURN = "awaiting_head_turn"
    PASSED = "passed"
    FAILED_TIMEOUT = "failed_timeout"
    FAILED_PROVIDER = "failed_provider"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def index(self) -> int:
        """Position along the challenge path; terminal failures have no position."""
        return _CHALLENGE_PATH.index(self) if self in _CHALLENGE_PATH else -1


_CHALLENGE_PATH = (
    SequencerState.IDLE,
    SequencerState.AWAITING_BLINK,
    SequencerState.AWAITING_MOUTH_OPEN,
    SequencerState.AWAITING_HEAD_TURN,
    SequencerState.PASSED,
)

_TERMINAL_STATES = frozenset({
    SequencerState.PASSED,
    SequencerState.FAILED_TIMEOUT,
    SequencerState.FAILED_PROVIDER,
    SequencerState.CANCELLED,
})


@dataclass(frozen=True)
class ChallengeEvent:
    """Emitted when the awaited challenge is satisfied"""
    challenge: ChallengeType
    new_state: SequencerState
    status: str
    prompt: str


class SessionOutcome(Enum):
    """Terminal outcome of a verification session"""
    PASSED = "passed"
    FAILED_TIMEOUT = "failed_timeout"
    FAILED_PROVIDER = "failed_provider"
    CANCELLED = "cancelled"

    @property
    def verdict(self) -> bool:
        return self is SessionOutcome.PASSED

    @property
    def state(self) -> SequencerState:
        return SequencerState(self.value)


@dataclass
class SessionParameters:
    """
    Tunable session timings and gate thresholds.

    All durations are in milliseconds.
    """
    poll_interval_ms: int = 500
    overall_timeout_ms: int = 60000
    success_grace_ms: int = 3000
    ear_threshold: float = 0.25
    mouth_ratio_threshold: float = 0.35
    head_offset_threshold: float = 0.35
    progress_interval_ms: int = 200
    progress_step: int = 10
    progress_cap: int = 90

    def __post_init__(self):
        for name in ("poll_interval_ms", "overall_timeout_ms", "progress_interval_ms", "progress_step"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.success_grace_ms < 0:
            raise ValueError(f"success_grace_ms must not be negative, got {self.success_grace_ms}")
        for name in ("ear_threshold", "mouth_ratio_threshold", "head_offset_threshold"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if not 0 <= self.progress_cap <= 100:
            raise ValueError(f"progress_cap must be within 0..100, got {self.progress_cap}")

    @classmethod
    def from_config(cls, config=None) -> "SessionParameters":
        """Build parameters from the environment-driven application config."""
        if config is None:
            from ..config import config
        return cls(
            poll_interval_ms=config.POLL_INTERVAL_MS,
            overall_timeout_ms=config.OVERALL_TIMEOUT_MS,
            success_grace_ms=config.SUCCESS_GRACE_MS,
            ear_threshold=config.EAR_THRESHOLD,
            mouth_ratio_threshold=config.MOUTH_RATIO_THRESHOLD,
            head_offset_threshold=config.HEAD_OFFSET_THRESHOLD,
            progress_interval_ms=config.PROGRESS_INTERVAL_MS,
        )


class FeedbackType(Enum):
    """Kinds of feedback delivered to the client"""
    PROGRESS = "progress"
    STATUS = "status"
    PROMPT = "prompt"
    RESULT = "result"
    ERROR = "error"


@dataclass
class VerificationFeedback:
    """A single feedback message for the client"""
    type: FeedbackType
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class SessionSnapshot:
    """Read-only view of a session for reporting"""
    session_id: str
    state: SequencerState
    completed: Tuple[ChallengeType, ...]
    ticks: int
    started_at: Optional[float] = None
    deadline: Optional[float] = None
    outcome: Optional[SessionOutcome] = None
