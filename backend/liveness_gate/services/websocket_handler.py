"""
WebSocket handler for streaming a liveness check to a browser client.

Frames arrive as base64-encoded images; session feedback goes back as
JSON messages of the form {"type", "message", "data"}.
"""
import asyncio
import base64
import json
import logging
from typing import Optional

import cv2
import numpy as np
from fastapi import WebSocket, WebSocketDisconnect

from ..models.data_models import VerificationFeedback

logger = logging.getLogger(__name__)


class LatestFrameBuffer:
    """
    Holds the most recent decoded frame.

    Used as the frame source of a landmark provider: each frame is
    handed out once, so a stalled client yields "no frame" ticks instead
    of the same image being analyzed over and over.
    """

    def __init__(self):
        self._frame: Optional[np.ndarray] = None
        self.received = 0

    def put(self, frame: np.ndarray) -> None:
        self._frame = frame
        self.received += 1

    def __call__(self) -> Optional[np.ndarray]:
        frame, self._frame = self._frame, None
        return frame


class WebSocketHandler:
    """
    Manages WebSocket communication for a liveness session.

    Handles the connection lifecycle, decoding of incoming video frames
    and delivery of feedback messages.
    """

    async def handle_connection(
        self,
        websocket: WebSocket,
        session_id: str
    ) -> None:
        """
        Accept the WebSocket connection.

        Args:
            websocket: FastAPI WebSocket connection object
            session_id: Unique session identifier
        """
        await websocket.accept()
        logger.info(f"WebSocket connection established for session {session_id}")

    async def receive_video_frame(self, websocket: WebSocket) -> Optional[np.ndarray]:
        """
        Receive and decode a video frame from the client.

        Returns:
            Decoded BGR frame, or None if the message is not a video frame
            or cannot be decoded

        Raises:
            WebSocketDisconnect: If the client disconnects
        """
        try:
            data = await websocket.receive_text()
            message = json.loads(data)

            if not isinstance(message, dict):
                logger.error(f"Ignoring non-object message: {type(message).__name__}")
                return None

            if message.get("type") == "video_frame":
                frame_data = message.get("frame")
                if frame_data:
                    return self._decode_frame(frame_data)

            return None

        except WebSocketDisconnect:
            logger.info("WebSocket disconnected while receiving frame")
            raise

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON received: {e}")
            return None

    async def receive_frames(self, websocket: WebSocket, buffer: LatestFrameBuffer) -> None:
        """
        Keep the frame buffer filled until the client disconnects.

        Raises:
            WebSocketDisconnect: When the client goes away
        """
        while True:
            frame = await self.receive_video_frame(websocket)
            if frame is not None:
                buffer.put(frame)

    async def send_feedback(
        self,
        websocket: WebSocket,
        feedback: VerificationFeedback
    ) -> None:
        """
        Send a feedback message to the client.

        Args:
            websocket: FastAPI WebSocket connection object
            feedback: Message to send
        """
        try:
            await websocket.send_json(feedback.to_dict())
            logger.debug(f"Sent feedback: {feedback.type.value}")

        except Exception as e:
            logger.error(f"Error sending feedback: {e}")
            raise

    async def pump_feedback(self, websocket: WebSocket, queue: asyncio.Queue) -> None:
        """Forward queued feedback to the client until cancelled."""
        while True:
            feedback = await queue.get()
            try:
                await self.send_feedback(websocket, feedback)
            finally:
                queue.task_done()

    async def close_connection(
        self,
        websocket: WebSocket,
        code: int = 1000,
        reason: str = "Normal closure"
    ) -> None:
        """
        Close the WebSocket connection gracefully.

        Args:
            websocket: FastAPI WebSocket connection object
            code: WebSocket close code (default: 1000 for normal closure)
            reason: Human-readable reason for closure
        """
        try:
            await websocket.close(code=code, reason=reason)
            logger.info(f"WebSocket closed: {reason} (code: {code})")
        except Exception as e:
            logger.error(f"Error closing WebSocket: {e}")

    def _decode_frame(self, frame_data: str) -> Optional[np.ndarray]:
        """
        Decode a base64-encoded image (optionally a data URL) into a BGR frame.

        Returns:
            Decoded frame, or None if decoding fails
        """
        try:
            # Remove data URL prefix if present (e.g., "data:image/jpeg;base64,")
            if "," in frame_data:
                frame_data = frame_data.split(",")[1]

            img_bytes = base64.b64decode(frame_data)
            nparr = np.frombuffer(img_bytes, np.uint8)
            frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)

            if frame is None:
                logger.error("Failed to decode frame: cv2.imdecode returned None")
                return None

            return frame

        except (ValueError, cv2.error) as e:
            logger.error(f"Error decoding frame: {e}")
            return None
