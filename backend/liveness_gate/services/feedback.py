"""
Feedback sinks that receive progress, status and prompt updates from a session
"""
import asyncio
import logging
from typing import Optional, Protocol

from ..models.data_models import FeedbackType, VerificationFeedback

logger = logging.getLogger(__name__)


class FeedbackSink(Protocol):
    """
    Receives session updates.

    Calls are synchronous and must not raise; rendering and speech
    belong to whoever implements the sink.
    """

    def on_progress(self, percent: int) -> None:
        ...

    def on_status(self, text: str) -> None:
        ...

    def on_prompt(self, message: str) -> None:
        ...


class LoggingFeedbackSink:
    """Writes every update to the module logger."""

    def __init__(self, session_id: str = ""):
        self.session_id = session_id

    def on_progress(self, percent: int) -> None:
        logger.debug(f"[{self.session_id}] progress {percent}%")

    def on_status(self, text: str) -> None:
        logger.info(f"[{self.session_id}] status: {text}")

    def on_prompt(self, message: str) -> None:
        logger.info(f"[{self.session_id}] prompt: {message}")


class QueueFeedbackSink:
    """
    Buffers updates as VerificationFeedback messages on an asyncio queue.

    Lets a synchronous sink feed an asynchronous transport: the session
    calls the sink, a separate task drains the queue and sends.
    """

    def __init__(self, queue: Optional[asyncio.Queue] = None):
        self.queue = queue if queue is not None else asyncio.Queue()

    def on_progress(self, percent: int) -> None:
        self.put(VerificationFeedback(
            type=FeedbackType.PROGRESS,
            message=f"Loading... {percent}%",
            data={"percent": percent}
        ))

    def on_status(self, text: str) -> None:
        self.put(VerificationFeedback(type=FeedbackType.STATUS, message=text))

    def on_prompt(self, message: str) -> None:
        self.put(VerificationFeedback(type=FeedbackType.PROMPT, message=message))

    def put(self, feedback: VerificationFeedback) -> None:
        self.queue.put_nowait(feedback)
