"""
Configuration management for the liveness service
"""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration"""

    # Session timing (milliseconds)
    POLL_INTERVAL_MS = int(os.getenv('LIVENESS_POLL_INTERVAL_MS', '500'))
    OVERALL_TIMEOUT_MS = int(os.getenv('LIVENESS_OVERALL_TIMEOUT_MS', '60000'))
    SUCCESS_GRACE_MS = int(os.getenv('LIVENESS_SUCCESS_GRACE_MS', '3000'))
    PROGRESS_INTERVAL_MS = int(os.getenv('LIVENESS_PROGRESS_INTERVAL_MS', '200'))

    # Gate thresholds
    EAR_THRESHOLD = float(os.getenv('LIVENESS_EAR_THRESHOLD', '0.25'))
    MOUTH_RATIO_THRESHOLD = float(os.getenv('LIVENESS_MOUTH_RATIO_THRESHOLD', '0.35'))
    HEAD_OFFSET_THRESHOLD = float(os.getenv('LIVENESS_HEAD_OFFSET_THRESHOLD', '0.35'))

    # ML Model Configuration
    MEDIAPIPE_MODEL_PATH = os.getenv(
        'MEDIAPIPE_MODEL_PATH',
        str(Path.home() / '.mediapipe_models' / 'face_landmarker.task')
    )
    MIN_DETECTION_CONFIDENCE = float(os.getenv('MIN_DETECTION_CONFIDENCE', '0.6'))

    # Server Configuration
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', '8000'))
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    @classmethod
    def model_available(cls) -> bool:
        """Check whether the face landmarker model file is present"""
        return os.path.exists(cls.MEDIAPIPE_MODEL_PATH)


config = Config()
