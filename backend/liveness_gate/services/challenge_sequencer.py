"""
Challenge Sequencer for the ordered blink -> mouth-open -> head-turn challenge
"""
from typing import Dict, List, Optional, Tuple
from ..models.data_models import (
    ChallengeEvent,
    ChallengeType,
    GateResult,
    SequencerState,
)


class ChallengeState:
    """
    Per-session record of which challenges have been satisfied.

    Flags only ever go from False to True, and only in challenge order,
    so a later flag is never set while an earlier one is still False.
    """

    def __init__(self, order: Optional[Tuple[ChallengeType, ...]] = None):
        self.order = tuple(order or ChallengeSequencer.CHALLENGE_ORDER)
        self._flags: List[bool] = [False] * len(self.order)

    @property
    def flags(self) -> Tuple[bool, ...]:
        return tuple(self._flags)

    @property
    def completed(self) -> Tuple[ChallengeType, ...]:
        return tuple(c for c, done in zip(self.order, self._flags) if done)

    @property
    def all_satisfied(self) -> bool:
        return all(self._flags)

    @property
    def current_state(self) -> SequencerState:
        """The awaiting state implied by the flags, or PASSED once all are set."""
        for challenge, done in zip(self.order, self._flags):
            if not done:
                return ChallengeSequencer.AWAITING[challenge]
        return SequencerState.PASSED

    def is_satisfied(self, challenge: ChallengeType) -> bool:
        return self._flags[self.order.index(challenge)]

    def apply(self, event: ChallengeEvent) -> None:
        """
        Mark the challenge carried by an event as satisfied.

        Raises:
            ValueError: If an earlier challenge is still unsatisfied
        """
        position = self.order.index(event.challenge)
        if not all(self._flags[:position]):
            raise ValueError(
                f"Cannot satisfy {event.challenge.value} before "
                f"{self.order[self._flags.index(False)].value}"
            )
        self._flags[position] = True


class ChallengeSequencer:
    """
    Finite state machine over the fixed challenge order.

    Only the gate for the challenge currently awaited can move the state
    forward, one step per evaluation. A later gate that happens to fire
    early is ignored, so a still photo that matches one late test never
    gets past the earlier ones.
    """

    CHALLENGE_ORDER = (
        ChallengeType.BLINK,
        ChallengeType.MOUTH_OPEN,
        ChallengeType.HEAD_TURN,
    )

    AWAITING: Dict[ChallengeType, SequencerState] = {
        ChallengeType.BLINK: SequencerState.AWAITING_BLINK,
        ChallengeType.MOUTH_OPEN: SequencerState.AWAITING_MOUTH_OPEN,
        ChallengeType.HEAD_TURN: SequencerState.AWAITING_HEAD_TURN,
    }

    # Spoken/displayed instruction when a challenge becomes the awaited one
    PROMPTS = {
        ChallengeType.BLINK: "Please blink your eyes to start the liveness check.",
        ChallengeType.MOUTH_OPEN: "Good job! Now please open your mouth.",
        ChallengeType.HEAD_TURN: "Nice! Now please turn your head left or right.",
    }

    # Status line after a challenge is satisfied
    STATUS_TEXT = {
        ChallengeType.BLINK: "Blink detected ✅, now open your mouth...",
        ChallengeType.MOUTH_OPEN: "Mouth open detected ✅, now turn your head...",
        ChallengeType.HEAD_TURN: "✅ Liveness check passed!",
    }

    INITIAL_STATUS = "Please blink your eyes..."
    PASSED_PROMPT = "Excellent. Liveness check complete."
    TIMEOUT_STATUS = "Liveness check failed (timeout). Please try again."
    TIMEOUT_PROMPT = "Liveness check failed due to timeout. Please try again."
    PROVIDER_FAILURE_STATUS = "Liveness check failed: face detection unavailable ❌"
    CANCELLED_STATUS = "Liveness check cancelled."

    TERMINAL_FAILURES = (
        SequencerState.FAILED_TIMEOUT,
        SequencerState.FAILED_PROVIDER,
        SequencerState.CANCELLED,
    )

    _GATE_FIELDS = {
        ChallengeType.BLINK: "blink_detected",
        ChallengeType.MOUTH_OPEN: "mouth_open_detected",
        ChallengeType.HEAD_TURN: "head_turn_detected",
    }

    def __init__(self):
        self._awaited_challenge = {state: c for c, state in self.AWAITING.items()}

    def start(self) -> Tuple[SequencerState, str]:
        """
        Enter the first challenge directly, without an idle tick.

        Returns:
            Tuple of the AWAITING_BLINK state and the first prompt
        """
        first = self.CHALLENGE_ORDER[0]
        return self.AWAITING[first], self.PROMPTS[first]

    def awaited(self, state: SequencerState) -> Optional[ChallengeType]:
        """Challenge awaited in a state, or None for idle and terminal states."""
        return self._awaited_challenge.get(state)

    def advance(
        self,
        state: SequencerState,
        gate: GateResult
    ) -> Tuple[SequencerState, Optional[ChallengeEvent]]:
        """
        Apply one gate evaluation to the current state.

        Pure function: no timers, no I/O, no stored state.

        Args:
            state: Current sequencer state
            gate: Gate flags for the current frame

        Returns:
            Tuple of the new state and the event emitted on a transition,
            or the unchanged state and None
        """
        challenge = self.awaited(state)
        if challenge is None:
            return state, None

        if not getattr(gate, self._GATE_FIELDS[challenge]):
            return state, None

        position = self.CHALLENGE_ORDER.index(challenge)
        if position + 1 < len(self.CHALLENGE_ORDER):
            upcoming = self.CHALLENGE_ORDER[position + 1]
            new_state = self.AWAITING[upcoming]
            prompt = self.PROMPTS[upcoming]
        else:
            new_state = SequencerState.PASSED
            prompt = self.PASSED_PROMPT

        return new_state, ChallengeEvent(
            challenge=challenge,
            new_state=new_state,
            status=self.STATUS_TEXT[challenge],
            prompt=prompt,
        )

    def terminate(self, state: SequencerState, terminal: SequencerState) -> SequencerState:
        """
        Move a running sequence into a failure or cancelled state.

        A state that is already terminal is returned unchanged.

        Raises:
            ValueError: If the target is not a failure/cancel state
        """
        if terminal not in self.TERMINAL_FAILURES:
            raise ValueError(f"{terminal.value} is not a failure state")
        if state.is_terminal:
            return state
        return terminal
