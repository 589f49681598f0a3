from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # production | development; simulated judge results are development-only
    environment: Literal["production", "development"] = "production"
    allow_simulated_judge_on_failure: bool = False

    # Media bounds
    video_min_bytes: int = 1024
    video_max_bytes: int = 100 * 1024 * 1024
    photo_min_bytes: int = 1024
    photo_max_bytes: int = 10 * 1024 * 1024
    min_resolution: int = 100  # px, both sides
    photo_decode_timeout_s: float = 5.0  # hard: fails the selfie step
    video_open_timeout_s: float = 10.0

    # Frame sampler
    seek_timeout_ms: int = 300  # soft: capture proceeds anyway
    settle_delay_ms: int = 50

    # Step 2: human presence in video
    video_frame_interval_s: float = 0.1
    video_min_confidence: float = 0.5
    video_max_frames: int = 50
    video_consecutive_threshold: int = 2
    video_max_detections: int = 5

    # Step 3: selfie
    selfie_min_confidence: float = 0.6
    selfie_max_faces: int = 3

    # Step 4: frame extraction for the judge
    judge_frames_per_second: float = 3.0
    judge_max_frames: int = 16
    judge_jpeg_quality: float = 0.6
    judge_max_dimension: int = 512

    # Detector models (ultralytics YOLO)
    face_detect_model: str = "models/yolov8n-face.pt"
    person_detect_model: str = "yolov8n.pt"
    detect_device: str = "cpu"
    detect_raw_confidence: float = 0.1  # floor for raw candidates
    preload_models: bool = True

    # Judge transport: "local" runs VisionJudgeService in-process,
    # "http" posts frames to judge_url
    judge_mode: Literal["local", "http"] = "local"
    judge_url: str = "http://localhost:8000/api/v1/ai-challenge-check"
    judge_timeout: float = 60.0

    # Vision LLM (OpenAI-compatible chat completions)
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model_name: str = "gpt-4o"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 300
    llm_timeout: float = 60.0
    llm_max_retries: int = 2
    llm_retry_delay: float = 2.0  # first retry delay (s), doubled each attempt
    llm_max_concurrent: int = 3
    challenge_temperature: float = 0.9

    # Whole-run guard; no stage defines one of its own
    verification_timeout_seconds: float = 180.0

    # Async task store
    task_timeout_seconds: int = 300
    task_max_in_memory: int = 500

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Upload cap; must exceed the media bounds, which the file check reports
    max_upload_size_mb: int = 128
    upload_tmp_dir: Path | None = None

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @model_validator(mode="after")
    def _simulated_judge_is_development_only(self) -> "Settings":
        if self.allow_simulated_judge_on_failure and not self.is_development:
            raise ValueError(
                "allow_simulated_judge_on_failure requires environment=development"
            )
        return self

    @model_validator(mode="after")
    def _upload_cap_above_media_bounds(self) -> "Settings":
        if self.max_upload_size_bytes <= max(self.video_max_bytes, self.photo_max_bytes):
            raise ValueError("max_upload_size_mb must exceed video_max_bytes and photo_max_bytes")
        return self

    def resolve_detect_device(self) -> str:
        if self.detect_device != "auto":
            return self.detect_device
        try:
            import torch

            return "cuda" if torch.cuda.is_available() else "cpu"
        except ImportError:
            return "cpu"


settings = Settings()
