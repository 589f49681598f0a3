"""Challenge judge wire schemas (camelCase on the wire)."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JudgeRequest(_CamelModel):
    challenge_description: str = Field(min_length=1)
    frames: list[str]  # base64 JPEG/PNG payloads, no data-URI prefix
    frame_count: int = 0


class JudgeResponse(_CamelModel):
    success: bool
    score: int = 0
    explanation: str = ""
    confidence: float = 0.0
    frames_analyzed: int = 0
    completed: bool | None = None
    creativity: int | None = None
    authenticity: int | None = None
    error: str | None = None


class JudgeVerdict(BaseModel):
    """Judge score mapped onto the pass/fail bands of the AI challenge step."""

    passed: bool
    challenge_completed: bool
    score: int
    confidence: int  # 0-100, clamped to the pass/fail band
    ai_confidence: float = 0.0
    explanation: str = ""
    details: str = ""
    frames_analyzed: int = 0
    subscores: dict[str, int | bool] = Field(default_factory=dict)
    simulated: bool = False
