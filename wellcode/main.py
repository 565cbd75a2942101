import hashlib
import hmac
import json
import logging
from typing import Any, Dict

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from .ai_analyzer import AIAnalyzer
from .config import get_settings
from .core.database import close_db, get_session_factory, init_db
from .core.security import ContentCipher
from .github_client import GitHubClientFactory
from .hooks import PipelineHooks
from .processor import EventProcessor, PipelineServices
from .retry import RetryQueue, RetryWorker

# ==========================
# Settings & Logging
# ==========================

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger("wellcode")

app = FastAPI(title="Wellcode")


def build_processor() -> EventProcessor:
    """Wire the production services"""
    services = PipelineServices(
        session_factory=get_session_factory(),
        github_factory=GitHubClientFactory(settings),
        cipher=ContentCipher(settings.encryption_key),
        analyzer=AIAnalyzer(settings),
        hooks=PipelineHooks(),
        retry_queue=RetryQueue.from_settings(settings),
        settings=settings,
    )
    return EventProcessor(services)


# ==========================
# Lifecycle Events
# ==========================

@app.on_event("startup")
async def startup_event():
    """Initialize database, pipeline and retry worker"""
    await init_db()
    logger.info("Database initialized")

    processor = build_processor()
    worker = RetryWorker(processor.services.retry_queue, processor.retry_delivery)
    worker.start()
    app.state.processor = processor
    app.state.retry_worker = worker

    logger.info("Application started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the retry worker and close database connections"""
    worker = getattr(app.state, "retry_worker", None)
    if worker is not None:
        await worker.stop()
    await close_db()
    logger.info("Application shutdown")


# ==========================
# Helpers
# ==========================

def verify_github_signature(
    body: bytes,
    signature_header: str | None,
    secret: str,
) -> None:
    """
    Check the delivery's HMAC SHA-256 signature against the app webhook secret.

    Raises:
        HTTPException: 400 for a missing or malformed header, 401 on mismatch
    """
    if not secret:
        logger.info("Webhook secret not set, accepting unsigned delivery")
        return

    if not signature_header:
        logger.warning("Delivery without X-Hub-Signature-256")
        raise HTTPException(status_code=400, detail="Missing signature header")

    algorithm, sep, received = signature_header.partition("=")
    if not sep or not received:
        raise HTTPException(status_code=400, detail="Invalid signature format")
    if algorithm != "sha256":
        raise HTTPException(status_code=400, detail=f"Unsupported signature algorithm: {algorithm}")

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, received):
        logger.warning("Webhook signature mismatch")
        raise HTTPException(status_code=401, detail="Invalid signature")


def get_processor(request: Request) -> EventProcessor:
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return processor


def get_webhook_secret() -> str:
    return settings.github_app_webhook_secret


# ==========================
# Routes
# ==========================

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/webhook")
async def webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_github_event: str = Header(None, alias="X-GitHub-Event"),
    x_github_delivery: str = Header(None, alias="X-GitHub-Delivery"),
    x_hub_signature_256: str = Header(None, alias="X-Hub-Signature-256"),
    processor: EventProcessor = Depends(get_processor),
    secret: str = Depends(get_webhook_secret),
):
    raw_body = await request.body()

    verify_github_signature(raw_body, x_hub_signature_256, secret)

    try:
        payload: Dict[str, Any] = json.loads(raw_body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.exception("Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Payload must be a JSON object")

    if not x_github_event:
        raise HTTPException(status_code=400, detail="Missing X-GitHub-Event header")

    logger.info(f"Webhook received: {x_github_event} (delivery {x_github_delivery}, action {payload.get('action')})")

    if x_github_delivery:
        if not await processor.register_delivery(x_github_delivery, x_github_event, payload):
            return JSONResponse({"msg": "duplicate delivery", "delivery": x_github_delivery})

    background_tasks.add_task(processor.process_event, x_github_event, payload, x_github_delivery)

    if x_github_event == "ping":
        return JSONResponse({"msg": "pong"})
    return JSONResponse({"msg": "accepted", "event": x_github_event, "delivery": x_github_delivery})
