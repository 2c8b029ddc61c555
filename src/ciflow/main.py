"""FastAPI application entry point for the ciflow push trigger.

This module provides the main FastAPI application. It receives GitHub
webhooks, keeps ciflow tags in sync with pull request labels, and
exposes health and Prometheus endpoints.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

from .config import CiflowSettings, get_settings
from .github.client import GitHubClient
from .metrics import CiflowMetrics, get_metrics
from .permissions import PermissionChecker
from .repo_config import RepoConfigTracker
from .tags.reconciler import TagReconciler
from .trigger import CiflowPushTrigger, EventDispatcher, build_dispatch_table
from .webhook.handler import WebhookHandler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
webhook_handler: Optional[WebhookHandler] = None
dispatcher: Optional[EventDispatcher] = None
config_tracker: Optional[RepoConfigTracker] = None
github_client: Optional[GitHubClient] = None
metrics: Optional[CiflowMetrics] = None


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: CiflowSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("CIFlow push trigger configuration:")
    logger.info(f"  GitHub Base URL: {settings.github_base_url}")
    logger.info(f"  GitHub Token: {_redact_secret(settings.github_token)}")
    logger.info(
        f"  GitHub Webhook Secret: {_redact_secret(settings.github_webhook_secret)}"
    )
    logger.info(f"  GitHub Max Retries: {settings.github_max_retries}")
    logger.info(f"  GitHub Timeout Seconds: {settings.github_timeout_seconds}")
    logger.info(f"  Config File Path: {settings.config_file_path}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


def _build_dispatcher(
    gh_client: GitHubClient,
    tracker: RepoConfigTracker,
    service_metrics: CiflowMetrics,
) -> EventDispatcher:
    """Wire the tag reconciler and its collaborators into a dispatcher."""
    trigger = CiflowPushTrigger(
        reconciler=TagReconciler(ref_store=gh_client, metrics=service_metrics),
        config_tracker=tracker,
        permission_checker=PermissionChecker(source=gh_client),
        commenter=gh_client,
    )
    return EventDispatcher(build_dispatch_table(trigger))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown."""
    global webhook_handler, dispatcher, config_tracker, github_client, metrics

    logger.info("CIFlow push trigger starting up...")

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)
    _log_configuration(settings)

    webhook_handler = WebhookHandler(secret=settings.github_webhook_secret)
    github_client = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
        max_retries=settings.github_max_retries,
        timeout=settings.github_timeout_seconds,
    )
    config_tracker = RepoConfigTracker(
        source=github_client,
        config_path=settings.config_file_path,
    )
    metrics = get_metrics()
    dispatcher = _build_dispatcher(github_client, config_tracker, metrics)

    logger.info("CIFlow push trigger started successfully")

    yield

    logger.info("CIFlow push trigger shutting down...")

    if github_client is not None:
        await github_client.close()

    logger.info("CIFlow push trigger shutdown complete")


app = FastAPI(
    title="CIFlow Push Trigger",
    description="Mirrors ciflow pull request labels into git tags",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Reports whether the GitHub API is reachable with the configured token.

    Raises:
        HTTPException: 503 if the service is not initialized or GitHub
            is unreachable.
    """
    if github_client is None:
        raise HTTPException(status_code=503, detail="Service not initialized")

    github_status = "healthy" if await github_client.health_check() else "unhealthy"
    if github_status != "healthy":
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "dependencies": {"github": github_status}},
        )

    return {"status": "ready", "dependencies": {"github": github_status}}


@app.get("/metrics", response_class=PlainTextResponse)
async def metrics_endpoint():
    """Prometheus metrics endpoint."""
    service_metrics = metrics or get_metrics()
    return PlainTextResponse(
        service_metrics.generate_output(),
        media_type=CONTENT_TYPE_LATEST,
    )


def _record(event: str, result: str) -> None:
    if metrics is not None:
        metrics.record_delivery(event, result)


@app.post("/webhooks/github")
async def github_webhook(request: Request):
    """GitHub webhook receiver endpoint.

    pull_request deliveries are handled before responding, so a failed
    tag operation shows up as a failed delivery (HTTP 500) on GitHub and
    can be redelivered.
    """
    if webhook_handler is None or dispatcher is None or config_tracker is None:
        logger.error("Service not initialized")
        raise HTTPException(status_code=503, detail="Service not initialized")

    body = await request.body()
    if not webhook_handler.verify_signature(
        body, request.headers.get("X-Hub-Signature-256")
    ):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    event_type = request.headers.get("X-GitHub-Event", "")
    delivery_id = request.headers.get("X-GitHub-Delivery")
    try:
        payload = await request.json()
    except ValueError:
        logger.warning(
            "Webhook body is not valid JSON",
            extra={"delivery_id": delivery_id, "event_type": event_type},
        )
        _record(event_type or "unknown", "ignored")
        return {"status": "ignored", "message": "Invalid JSON payload"}

    if event_type == "push":
        push = webhook_handler.parse_push_event(payload)
        if push is None:
            _record("push", "ignored")
            return {"status": "ignored", "message": "Invalid push event"}
        try:
            reloaded = await config_tracker.handle_push(
                push.owner, push.repository, push.ref, push.default_branch
            )
        except Exception:
            logger.exception(
                "Failed to reload ciflow config",
                extra={"delivery_id": delivery_id, "repository": push.full_repository},
            )
            _record("push", "failed")
            return JSONResponse(
                status_code=500,
                content={"status": "error", "message": "Config reload failed"},
            )
        _record("push", "handled" if reloaded else "ignored")
        return {"status": "accepted" if reloaded else "ignored"}

    if event_type != "pull_request":
        return {"status": "ignored", "message": f"Unsupported event: {event_type}"}

    event = webhook_handler.parse_pull_request_event(payload)
    if event is None:
        _record("pull_request", "ignored")
        return {"status": "ignored", "message": "Unsupported or invalid event"}

    try:
        handled = await dispatcher.dispatch(event)
    except Exception:
        logger.exception(
            "Failed to process %s",
            event.event_name,
            extra={"delivery_id": delivery_id, "pr_id": event.pr_id},
        )
        _record(event.event_name, "failed")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "pr_id": event.pr_id},
        )

    _record(event.event_name, "handled" if handled else "ignored")
    return {"status": "accepted", "pr_id": event.pr_id}


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.ciflow.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
