from fastapi import Request

from vhp.services.challenge_generator import ChallengeGenerator
from vhp.services.judge import VisionJudgeService
from vhp.services.llm import VisionLLMClient
from vhp.services.model_manager import ModelManager
from vhp.services.pipeline import VerificationService
from vhp.services.task_store import TaskStore


def get_verification(request: Request) -> VerificationService:
    """Retrieve the VerificationService singleton from app state."""
    return request.app.state.verification


def get_task_store(request: Request) -> TaskStore:
    """Retrieve the TaskStore singleton from app state."""
    return request.app.state.task_store


def get_judge_service(request: Request) -> VisionJudgeService:
    """Retrieve the in-process VisionJudgeService from app state."""
    return request.app.state.judge_service


def get_challenge_generator(request: Request) -> ChallengeGenerator:
    return request.app.state.challenge_generator


def get_model_manager(request: Request) -> ModelManager:
    return request.app.state.model_manager


def get_llm_client(request: Request) -> VisionLLMClient:
    return request.app.state.llm_client
