from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ChallengeSummary(BaseModel):
    title: str
    description: str = ""


class ChallengeRequest(BaseModel):
    """Recently rejected challenges; the next one should differ from them."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    challenge_history: list[ChallengeSummary] = Field(default_factory=list, max_length=10)


class Challenge(BaseModel):
    title: str = Field(max_length=80)
    description: str
    reward: int = Field(default=1, ge=1, le=10)
    generated: bool = True
