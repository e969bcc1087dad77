import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from refund_agents.api.v1.api import api_router
from refund_agents.core.config import get_settings
from refund_agents.core.logging import configure_logging
from refund_agents.llm.provider import GeminiProvider
from refund_agents.pipeline.errors import ValidationFailed
from refund_agents.pipeline.orchestrator import CaseOrchestrator
from refund_agents.services.analyst import PolicyAnalyst
from refund_agents.services.chat_service import RefundGuideChat
from refund_agents.services.drafter import LetterDrafter
from refund_agents.services.extractor import EvidenceExtractor
from refund_agents.storage.local_store import LocalStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    if not settings.llm_api_key:
        logger.warning("LLM_API_KEY is not set; model calls will fail")
    llm_provider = GeminiProvider(
        settings.llm_api_key or "",
        settings.llm_base_url,
        safety_threshold=settings.safety_threshold,
        timeout=settings.llm_timeout_seconds,
    )
    store = LocalStore(settings.database_path)
    orchestrator = CaseOrchestrator(
        settings,
        store,
        EvidenceExtractor(settings, llm_provider),
        PolicyAnalyst(settings, llm_provider),
        LetterDrafter(settings, llm_provider),
    )
    app.state.orchestrator = orchestrator
    app.state.chat_service = RefundGuideChat(settings, llm_provider, store)
    await orchestrator.start()
    logger.info("Refund pipeline initialized", extra={"database": str(settings.database_path)})
    try:
        yield
    finally:
        await orchestrator.close()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    @app.middleware("http")
    async def request_logger(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response

    @app.exception_handler(ValidationFailed)
    async def validation_failed(request: Request, exc: ValidationFailed) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.message, "kind": exc.kind.value})

    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
