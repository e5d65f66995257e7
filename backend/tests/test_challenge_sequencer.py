"""
Unit tests for ChallengeSequencer and ChallengeState
"""
import pytest
from hypothesis import given, strategies as st

from liveness_gate.models.data_models import (
    ChallengeEvent,
    ChallengeType,
    GateResult,
    SequencerState,
)
from liveness_gate.services.challenge_sequencer import ChallengeSequencer, ChallengeState


def gate(blink=False, mouth=False, head=False):
    return GateResult(blink_detected=blink, mouth_open_detected=mouth, head_turn_detected=head)


NONE = gate()
BLINK = gate(blink=True)
MOUTH = gate(mouth=True)
HEAD = gate(head=True)
ALL = gate(True, True, True)


class TestChallengeSequencer:
    """Test suite for ChallengeSequencer transitions"""

    def setup_method(self):
        self.sequencer = ChallengeSequencer()

    def test_challenge_order(self):
        assert self.sequencer.CHALLENGE_ORDER == (
            ChallengeType.BLINK,
            ChallengeType.MOUTH_OPEN,
            ChallengeType.HEAD_TURN,
        )

    def test_start_enters_blink_directly(self):
        state, prompt = self.sequencer.start()
        assert state is SequencerState.AWAITING_BLINK
        assert "blink" in prompt.lower()

    def test_blink_advances_to_mouth_open(self):
        state, event = self.sequencer.advance(SequencerState.AWAITING_BLINK, BLINK)
        assert state is SequencerState.AWAITING_MOUTH_OPEN
        assert isinstance(event, ChallengeEvent)
        assert event.challenge is ChallengeType.BLINK
        assert event.new_state is SequencerState.AWAITING_MOUTH_OPEN
        assert "open your mouth" in event.prompt.lower()
        assert "Blink detected" in event.status

    def test_mouth_open_advances_to_head_turn(self):
        state, event = self.sequencer.advance(SequencerState.AWAITING_MOUTH_OPEN, MOUTH)
        assert state is SequencerState.AWAITING_HEAD_TURN
        assert event.challenge is ChallengeType.MOUTH_OPEN
        assert "turn your head" in event.prompt.lower()

    def test_head_turn_passes(self):
        state, event = self.sequencer.advance(SequencerState.AWAITING_HEAD_TURN, HEAD)
        assert state is SequencerState.PASSED
        assert event.challenge is ChallengeType.HEAD_TURN
        assert event.status == "✅ Liveness check passed!"
        assert event.prompt == ChallengeSequencer.PASSED_PROMPT

    def test_unsatisfied_gate_leaves_state_unchanged(self):
        for state in (
            SequencerState.AWAITING_BLINK,
            SequencerState.AWAITING_MOUTH_OPEN,
            SequencerState.AWAITING_HEAD_TURN,
        ):
            assert self.sequencer.advance(state, NONE) == (state, None)

    def test_head_turn_ignored_while_awaiting_blink(self):
        assert self.sequencer.advance(SequencerState.AWAITING_BLINK, HEAD) == (
            SequencerState.AWAITING_BLINK, None
        )

    def test_mouth_open_ignored_while_awaiting_blink(self):
        assert self.sequencer.advance(SequencerState.AWAITING_BLINK, MOUTH) == (
            SequencerState.AWAITING_BLINK, None
        )

    def test_blink_ignored_after_it_was_satisfied(self):
        assert self.sequencer.advance(SequencerState.AWAITING_MOUTH_OPEN, BLINK) == (
            SequencerState.AWAITING_MOUTH_OPEN, None
        )

    def test_all_gates_firing_advance_only_one_step(self):
        state, event = self.sequencer.advance(SequencerState.AWAITING_BLINK, ALL)
        assert state is SequencerState.AWAITING_MOUTH_OPEN
        assert event.challenge is ChallengeType.BLINK

    def test_full_sequence(self):
        state, _ = self.sequencer.start()
        visited = [state]
        for g in (BLINK, MOUTH, HEAD):
            state, event = self.sequencer.advance(state, g)
            assert event is not None
            visited.append(state)
        assert visited == [
            SequencerState.AWAITING_BLINK,
            SequencerState.AWAITING_MOUTH_OPEN,
            SequencerState.AWAITING_HEAD_TURN,
            SequencerState.PASSED,
        ]

    @pytest.mark.parametrize("state", [
        SequencerState.IDLE,
        SequencerState.PASSED,
        SequencerState.FAILED_TIMEOUT,
        SequencerState.FAILED_PROVIDER,
        SequencerState.CANCELLED,
    ])
    def test_idle_and_terminal_states_ignore_gates(self, state):
        assert self.sequencer.advance(state, ALL) == (state, None)

    def test_advance_is_pure(self):
        first = self.sequencer.advance(SequencerState.AWAITING_BLINK, BLINK)
        second = self.sequencer.advance(SequencerState.AWAITING_BLINK, BLINK)
        assert first == second

    @pytest.mark.parametrize("terminal", ChallengeSequencer.TERMINAL_FAILURES)
    def test_terminate_from_running_state(self, terminal):
        assert self.sequencer.terminate(SequencerState.AWAITING_MOUTH_OPEN, terminal) is terminal

    def test_terminate_keeps_existing_terminal_state(self):
        assert self.sequencer.terminate(
            SequencerState.PASSED, SequencerState.FAILED_TIMEOUT
        ) is SequencerState.PASSED

    def test_terminate_rejects_non_failure_target(self):
        with pytest.raises(ValueError):
            self.sequencer.terminate(SequencerState.AWAITING_BLINK, SequencerState.PASSED)

    def test_every_challenge_has_prompt_and_status(self):
        for challenge in self.sequencer.CHALLENGE_ORDER:
            assert len(self.sequencer.PROMPTS[challenge]) > 0
            assert len(self.sequencer.STATUS_TEXT[challenge]) > 0


class TestChallengeState:
    """Test suite for ChallengeState flags"""

    def setup_method(self):
        self.sequencer = ChallengeSequencer()

    def event_for(self, state, g):
        _, event = self.sequencer.advance(state, g)
        return event

    def test_starts_all_false(self):
        state = ChallengeState()
        assert state.flags == (False, False, False)
        assert state.completed == ()
        assert state.current_state is SequencerState.AWAITING_BLINK
        assert not state.all_satisfied

    def test_apply_in_order(self):
        state = ChallengeState()
        state.apply(self.event_for(SequencerState.AWAITING_BLINK, BLINK))
        assert state.flags == (True, False, False)
        assert state.is_satisfied(ChallengeType.BLINK)
        assert state.current_state is SequencerState.AWAITING_MOUTH_OPEN

        state.apply(self.event_for(SequencerState.AWAITING_MOUTH_OPEN, MOUTH))
        state.apply(self.event_for(SequencerState.AWAITING_HEAD_TURN, HEAD))
        assert state.all_satisfied
        assert state.current_state is SequencerState.PASSED
        assert state.completed == ChallengeSequencer.CHALLENGE_ORDER

    def test_out_of_order_apply_raises(self):
        state = ChallengeState()
        event = self.event_for(SequencerState.AWAITING_HEAD_TURN, HEAD)
        with pytest.raises(ValueError, match="before blink"):
            state.apply(event)
        assert state.flags == (False, False, False)

    def test_reapplying_is_harmless(self):
        state = ChallengeState()
        event = self.event_for(SequencerState.AWAITING_BLINK, BLINK)
        state.apply(event)
        state.apply(event)
        assert state.flags == (True, False, False)


gates = st.builds(gate, st.booleans(), st.booleans(), st.booleans())


class TestChallengeSequencerProperties:
    """Property-based tests for the challenge state machine"""

    @given(st.lists(gates, max_size=60))
    def test_property_state_index_monotonic_by_single_steps(self, gate_stream):
        """State index never decreases and grows by at most one per tick."""
        sequencer = ChallengeSequencer()
        challenge_state = ChallengeState()
        state, _ = sequencer.start()

        for g in gate_stream:
            new_state, event = sequencer.advance(state, g)
            assert 0 <= new_state.index - state.index <= 1
            assert (event is None) == (new_state is state)
            if event is not None:
                challenge_state.apply(event)
            assert challenge_state.current_state is new_state
            state = new_state

    @given(st.lists(gates, max_size=60))
    def test_property_flags_never_out_of_order(self, gate_stream):
        """A later flag is never set while an earlier one is still false."""
        sequencer = ChallengeSequencer()
        challenge_state = ChallengeState()
        state, _ = sequencer.start()

        for g in gate_stream:
            state, event = sequencer.advance(state, g)
            if event is not None:
                challenge_state.apply(event)
            flags = list(challenge_state.flags)
            assert flags == sorted(flags, reverse=True)

    @given(st.lists(gates, max_size=60))
    def test_property_passed_requires_each_gate_in_order(self, gate_stream):
        """PASSED implies a blink, then a mouth-open, then a head-turn gate were seen in that order."""
        sequencer = ChallengeSequencer()
        state, _ = sequencer.start()
        for g in gate_stream:
            state, _ = sequencer.advance(state, g)

        def first_index(predicate, start):
            for i in range(start, len(gate_stream)):
                if predicate(gate_stream[i]):
                    return i
            return None

        b = first_index(lambda g: g.blink_detected, 0)
        m = first_index(lambda g: g.mouth_open_detected, b + 1) if b is not None else None
        h = first_index(lambda g: g.head_turn_detected, m + 1) if m is not None else None
        assert (state is SequencerState.PASSED) == (h is not None)

    @given(st.lists(st.builds(gate, st.just(False), st.booleans(), st.booleans()), max_size=40))
    def test_property_no_progress_without_blink(self, gate_stream):
        sequencer = ChallengeSequencer()
        state, _ = sequencer.start()
        for g in gate_stream:
            state, event = sequencer.advance(state, g)
            assert state is SequencerState.AWAITING_BLINK
            assert event is None
