"""Verification steps."""

from vhp.services.pipeline.steps.ai_challenge_check import AIChallengeCheckStep
from vhp.services.pipeline.steps.basic_file_check import BasicFileCheckStep
from vhp.services.pipeline.steps.human_selfie_check import HumanSelfieCheckStep
from vhp.services.pipeline.steps.human_video_check import HumanVideoCheckStep

__all__ = [
    "AIChallengeCheckStep",
    "BasicFileCheckStep",
    "HumanSelfieCheckStep",
    "HumanVideoCheckStep",
]
