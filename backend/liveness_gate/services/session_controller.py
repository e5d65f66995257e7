"""
Session Controller that drives one liveness verification attempt.

One LivenessSession owns a polling task, a setup-progress task and a
deadline timer. The poll loop pulls a landmark frame per tick, runs the
geometry gates and the challenge sequencer, and reports through a
feedback sink. Whichever terminal path fires first (pass, timeout,
provider failure or stop) wins; the others become no-ops.
"""
import asyncio
import inspect
import logging
import time
import uuid
from typing import Awaitable, Callable, Optional, Union

from ..models.data_models import (
    ChallengeEvent,
    SequencerState,
    SessionOutcome,
    SessionParameters,
    SessionSnapshot,
)
from .challenge_sequencer import ChallengeSequencer, ChallengeState
from .feedback import FeedbackSink, LoggingFeedbackSink
from .geometry_analyzer import GeometryAnalyzer
from .landmark_provider import LandmarkProvider

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[bool], Union[None, Awaitable[None]]]


class LivenessSession:
    """
    Runs the blink -> mouth-open -> head-turn challenge against a landmark provider.

    Usage:
        session = LivenessSession(provider, feedback, on_complete)
        await session.start()
        ...
        session.mark_setup_complete()
        ...
        session.stop()  # always call on teardown
    """

    def __init__(
        self,
        provider: LandmarkProvider,
        feedback: Optional[FeedbackSink] = None,
        on_complete: Optional[CompletionCallback] = None,
        parameters: Optional[SessionParameters] = None,
        analyzer: Optional[GeometryAnalyzer] = None,
        sequencer: Optional[ChallengeSequencer] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.provider = provider
        self.feedback = feedback if feedback is not None else LoggingFeedbackSink(self.session_id)
        self.on_complete = on_complete
        self.parameters = parameters or SessionParameters()
        self.analyzer = analyzer or GeometryAnalyzer.from_parameters(self.parameters)
        self.sequencer = sequencer or ChallengeSequencer()

        self.challenge_state = ChallengeState(self.sequencer.CHALLENGE_ORDER)
        self._state = SequencerState.IDLE
        self._outcome: Optional[SessionOutcome] = None
        self._ticks = 0
        self._started_at: Optional[float] = None
        self._deadline: Optional[float] = None

        # Handles owned by this instance only
        self._poll_task: Optional[asyncio.Task] = None
        self._progress_task: Optional[asyncio.Task] = None
        self._grace_task: Optional[asyncio.Task] = None
        self._callback_task: Optional[asyncio.Task] = None
        self._deadline_handle: Optional[asyncio.TimerHandle] = None

        self._started = False
        self._terminal = False
        self._delivered = False
        self._setup_complete = False
        self._closed: Optional[asyncio.Event] = None

    @property
    def state(self) -> SequencerState:
        return self._state

    @property
    def outcome(self) -> Optional[SessionOutcome]:
        return self._outcome

    @property
    def is_terminal(self) -> bool:
        return self._terminal

    @property
    def ticks(self) -> int:
        """Number of polls that completed a detection call."""
        return self._ticks

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            state=self._state,
            completed=self.challenge_state.completed,
            ticks=self._ticks,
            started_at=self._started_at,
            deadline=self._deadline,
            outcome=self._outcome,
        )

    async def start(self) -> None:
        """
        Enter the first challenge and begin polling.

        Raises:
            RuntimeError: If the session was already started or stopped
        """
        if self._started or self._terminal:
            raise RuntimeError(f"Session {self.session_id} cannot be started twice")
        self._started = True

        loop = asyncio.get_running_loop()
        self._closed = asyncio.Event()
        params = self.parameters

        self._state, prompt = self.sequencer.start()
        self._started_at = time.time()
        self._deadline = self._started_at + params.overall_timeout_ms / 1000.0

        logger.info(
            f"Liveness session {self.session_id} started: poll={params.poll_interval_ms}ms, "
            f"timeout={params.overall_timeout_ms}ms"
        )

        if not self._setup_complete:
            self._progress_task = loop.create_task(self._progress_loop())
        self._deadline_handle = loop.call_later(params.overall_timeout_ms / 1000.0, self._on_deadline)
        self._poll_task = loop.create_task(self._poll_loop())

        self.feedback.on_status(self.sequencer.INITIAL_STATUS)
        self.feedback.on_prompt(prompt)

    async def run(self) -> bool:
        """Start the session and wait for its verdict."""
        await self.start()
        outcome = await self.wait_closed()
        return outcome.verdict

    async def wait_closed(self) -> SessionOutcome:
        """
        Wait until the verdict has been delivered.

        Returns:
            SessionOutcome: How the session ended
        """
        if self._closed is None:
            if self._outcome is None:
                raise RuntimeError(f"Session {self.session_id} was never started")
            return self._outcome
        await self._closed.wait()
        if self._callback_task is not None:
            try:
                await self._callback_task
            except Exception as e:
                logger.error(f"Completion callback of session {self.session_id} failed: {e}")
        return self._outcome

    def mark_setup_complete(self) -> None:
        """
        Signal that the detection model is ready.

        Stops the warm-up progress timer and reports 100%.
        """
        if self._setup_complete:
            return
        self._setup_complete = True
        self._cancel(self._progress_task)
        if self._terminal:
            return
        self.feedback.on_progress(100)

    def stop(self) -> None:
        """
        Clear all timers of this session. Idempotent.

        A running session ends as CANCELLED with a False verdict. On a
        session that is already terminal this is a no-op apart from the
        timers; a pending success grace period still delivers True when it
        elapses.
        """
        self._cancel_timers()
        if not self._enter_terminal(SessionOutcome.CANCELLED):
            return

        self._state = self.sequencer.terminate(self._state, SequencerState.CANCELLED)
        logger.info(f"Liveness session {self.session_id} cancelled")
        self.feedback.on_status(self.sequencer.CANCELLED_STATUS)
        self._deliver(False)

    def abort(self, error: Exception) -> None:
        """Fail the session because the landmark capability is unusable."""
        self._on_provider_failure(error)

    async def _poll_loop(self) -> None:
        """
        One detection per tick; ticks never overlap.

        If a detection outlasts the interval, the missed ticks are
        skipped instead of queued.
        """
        loop = asyncio.get_running_loop()
        interval = self.parameters.poll_interval_ms / 1000.0
        next_tick = loop.time() + interval

        while not self._terminal:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            if self._terminal:
                return

            try:
                frame = await self.provider.detect_once()
            except Exception as e:
                self._on_provider_failure(e)
                return

            if self._terminal:
                return
            self._ticks += 1

            if frame is None:
                logger.debug(f"Session {self.session_id} tick {self._ticks}: no face detected")
            else:
                gate = self.analyzer.evaluate(frame)
                new_state, event = self.sequencer.advance(self._state, gate)
                if event is not None:
                    self._apply_event(event)
                    if new_state is SequencerState.PASSED:
                        self._on_passed()
                        return

            next_tick += interval
            now = loop.time()
            while next_tick <= now:
                next_tick += interval

    def _apply_event(self, event: ChallengeEvent) -> None:
        self.challenge_state.apply(event)
        self._state = event.new_state
        logger.info(
            f"Session {self.session_id} tick {self._ticks}: "
            f"{event.challenge.value} satisfied -> {event.new_state.value}"
        )
        self.feedback.on_status(event.status)
        self.feedback.on_prompt(event.prompt)

    async def _progress_loop(self) -> None:
        interval = self.parameters.progress_interval_ms / 1000.0
        step = self.parameters.progress_step
        cap = self.parameters.progress_cap
        progress = 0
        reported = None
        while True:
            await asyncio.sleep(interval)
            progress += step
            percent = min(progress, cap)
            if percent != reported:
                reported = percent
                self.feedback.on_progress(percent)

    def _on_passed(self) -> None:
        if not self._enter_terminal(SessionOutcome.PASSED):
            return
        self._cancel_timers()

        grace = self.parameters.success_grace_ms / 1000.0
        logger.info(f"Liveness session {self.session_id} passed after {self._ticks} ticks")
        self._grace_task = asyncio.get_running_loop().create_task(self._complete_after_grace(grace))

    async def _complete_after_grace(self, grace: float) -> None:
        await asyncio.sleep(grace)
        self._deliver(True)

    def _on_deadline(self) -> None:
        self._deadline_handle = None
        if not self._enter_terminal(SessionOutcome.FAILED_TIMEOUT):
            return
        self._cancel_timers()

        self._state = self.sequencer.terminate(self._state, SequencerState.FAILED_TIMEOUT)
        logger.info(
            f"Liveness session {self.session_id} timed out in {self._state.value} "
            f"with {len(self.challenge_state.completed)} challenge(s) completed"
        )
        self.feedback.on_status(self.sequencer.TIMEOUT_STATUS)
        self.feedback.on_prompt(self.sequencer.TIMEOUT_PROMPT)
        self._deliver(False)

    def _on_provider_failure(self, error: Exception) -> None:
        if not self._enter_terminal(SessionOutcome.FAILED_PROVIDER):
            return
        self._cancel_timers()

        self._state = self.sequencer.terminate(self._state, SequencerState.FAILED_PROVIDER)
        logger.error(f"Liveness session {self.session_id} aborted, landmark provider failed: {error}")
        self.feedback.on_status(self.sequencer.PROVIDER_FAILURE_STATUS)
        self._deliver(False)

    def _enter_terminal(self, outcome: SessionOutcome) -> bool:
        """Check-and-set the terminal flag; only the first caller proceeds."""
        if self._terminal:
            logger.debug(
                f"Session {self.session_id}: ignoring {outcome.value}, "
                f"already {self._outcome.value}"
            )
            return False
        self._terminal = True
        self._outcome = outcome
        if outcome is SessionOutcome.PASSED:
            self._state = SequencerState.PASSED
        return True

    def _deliver(self, verdict: bool) -> None:
        if self._delivered:
            return
        self._delivered = True
        logger.info(f"Liveness session {self.session_id} verdict: {verdict}")

        try:
            if self.on_complete is not None:
                result = self.on_complete(verdict)
                if inspect.isawaitable(result):
                    self._callback_task = asyncio.ensure_future(result)
        except Exception as e:
            logger.error(f"Completion callback of session {self.session_id} failed: {e}")
        finally:
            if self._closed is not None:
                self._closed.set()

    def _cancel_timers(self) -> None:
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None
        self._cancel(self._poll_task)
        self._cancel(self._progress_task)

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        # The running task is never cancelled from inside itself
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
