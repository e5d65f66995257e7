"""
FastAPI application exposing the liveness check over a WebSocket
"""
import asyncio
import logging

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .config import config
from .models.data_models import FeedbackType, SessionParameters, VerificationFeedback
from .services.feedback import QueueFeedbackSink
from .services.landmark_provider import LandmarkProviderError, MediaPipeLandmarkProvider
from .services.session_controller import LivenessSession
from .services.websocket_handler import LatestFrameBuffer, WebSocketHandler

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Liveness Gate API",
    description="Blink, mouth-open and head-turn liveness check for KYC onboarding",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

websocket_handler = WebSocketHandler()


def create_provider(frame_source):
    """Landmark provider for one connection."""
    return MediaPipeLandmarkProvider(
        frame_source,
        model_path=config.MEDIAPIPE_MODEL_PATH,
        min_detection_confidence=config.MIN_DETECTION_CONFIDENCE
    )


def session_parameters() -> SessionParameters:
    return SessionParameters.from_config()


@app.get("/")
async def root():
    return {
        "message": "Liveness Gate API",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "services": {
            "api": "operational",
            "landmark_model": "available" if config.model_available() else "missing"
        }
    }


@app.websocket("/ws/liveness/{session_id}")
async def liveness_websocket(websocket: WebSocket, session_id: str):
    """
    Run one liveness session over a WebSocket.

    The client streams {"type": "video_frame", "frame": <base64 image>}
    messages and receives progress, status and prompt feedback, then a
    single "result" message carrying the verdict.
    """
    await websocket_handler.handle_connection(websocket, session_id)

    sink = QueueFeedbackSink()
    frames = LatestFrameBuffer()
    provider = create_provider(frames)
    session = LivenessSession(
        provider,
        feedback=sink,
        parameters=session_parameters(),
        session_id=session_id
    )

    await session.start()
    sender = asyncio.create_task(websocket_handler.pump_feedback(websocket, sink.queue))
    receiver = asyncio.create_task(websocket_handler.receive_frames(websocket, frames))
    closed = asyncio.create_task(session.wait_closed())

    try:
        try:
            await asyncio.to_thread(provider.warm_up)
            session.mark_setup_complete()
        except LandmarkProviderError as e:
            logger.error(f"Session {session_id}: landmark model unavailable: {e}")
            sink.put(VerificationFeedback(
                type=FeedbackType.ERROR,
                message="Face detection model unavailable",
                data={"detail": str(e)}
            ))
            session.abort(e)

        done, _ = await asyncio.wait({receiver, closed}, return_when=asyncio.FIRST_COMPLETED)

        if closed in done:
            outcome = closed.result()
            drained = asyncio.create_task(sink.queue.join())
            await asyncio.wait({drained, sender}, return_when=asyncio.FIRST_COMPLETED)
            drained.cancel()
            sender.cancel()
            await websocket_handler.send_feedback(websocket, VerificationFeedback(
                type=FeedbackType.RESULT,
                message="Liveness check passed" if outcome.verdict else "Liveness check failed",
                data={
                    "verdict": outcome.verdict,
                    "outcome": outcome.value,
                    "completed": [c.value for c in session.challenge_state.completed],
                    "ticks": session.ticks
                }
            ))
            await websocket_handler.close_connection(websocket)
        else:
            error = receiver.exception()
            logger.info(f"Session {session_id}: client went away ({type(error).__name__})")
    finally:
        session.stop()
        for task in (sender, receiver, closed):
            task.cancel()
        provider.close()
