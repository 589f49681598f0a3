import logging
from contextlib import asynccontextmanager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vhp.config import settings
from vhp.exceptions import VHPError
from vhp.routers import challenge, judge, task, verification
from vhp.services.challenge_generator import ChallengeGenerator
from vhp.services.detectors import build_detectors
from vhp.services.human_detector import HumanPresenceClassifier
from vhp.services.judge import HttpJudgeClient, RemoteJudgmentAdapter, VisionJudgeService
from vhp.services.llm import VisionLLMClient
from vhp.services.model_manager import ModelManager
from vhp.services.pipeline import VerificationService
from vhp.services.task_store import TaskStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service singletons and load detector models on startup."""
    logger.info("Starting VHP service (%s) ...", settings.environment)

    llm_client = VisionLLMClient(settings)
    model_manager = ModelManager()
    http_judge: HttpJudgeClient | None = None
    try:
        face_detector, person_detector = build_detectors(model_manager, settings)
        classifier = HumanPresenceClassifier(face_detector, person_detector)

        judge_service = VisionJudgeService(llm_client, max_tokens=settings.llm_max_tokens)
        if settings.judge_mode == "http":
            http_judge = HttpJudgeClient(settings.judge_url, timeout=settings.judge_timeout)
            judge_backend = http_judge
        else:
            judge_backend = judge_service
        adapter = RemoteJudgmentAdapter(
            judge_backend,
            allow_simulated_judge_on_failure=settings.allow_simulated_judge_on_failure,
        )
        if settings.allow_simulated_judge_on_failure:
            logger.warning("Simulated judge results are enabled (development mode)")

        app.state.llm_client = llm_client
        app.state.model_manager = model_manager
        app.state.judge_service = judge_service
        app.state.challenge_generator = ChallengeGenerator(
            llm_client, temperature=settings.challenge_temperature
        )
        app.state.verification = VerificationService(classifier, adapter, settings)
        app.state.task_store = TaskStore(app.state.verification, settings)

        if settings.preload_models:
            await model_manager.preload()

        logger.info("VHP service ready (judge: %s).", settings.judge_mode)
        yield
    finally:
        logger.info("Shutting down VHP service ...")
        await llm_client.close()
        if http_judge is not None:
            await http_judge.close()
        await model_manager.dispose()


app = FastAPI(
    title="VHP",
    description="Verified Human Protocol: camera challenge verification",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(verification.router)
app.include_router(task.router)
app.include_router(judge.router)
app.include_router(challenge.router)


@app.exception_handler(VHPError)
async def vhp_error_handler(request: Request, exc: VHPError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})
