"""FastAPI entry point. Wires collectors -> dedup -> staged triage -> alert
store -> warning presenter. Exposes health, manual triage, the two
collector ingress routes and alert review routes."""

import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from guardian.auth import verify_api_key
from guardian.classifier import ScamClassifier
from guardian.cloud import CloudConfirmationClient
from guardian.collectors import from_notification, from_scan
from guardian.config import Settings
from guardian.detector import HeuristicScorer
from guardian.fusion import EscalationGate, RequireConfirmation, build_failure_policy, build_fusion
from guardian.memory import DedupCache
from guardian.models import (
    Alert,
    AlertOrigin,
    AlertResponse,
    CountEntry,
    EventOutcome,
    EventResponse,
    Explanation,
    NotificationEvent,
    ScanEvent,
    TriageRequest,
    TriageResponse,
    WeeklyStatsResponse,
)
from guardian.notifier import build_presenter
from guardian.orchestrator import TriageOrchestrator
from guardian.service import GuardianService, cached_explanation
from guardian.store import InMemoryAlertStore, parse_tactics

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Guardian Scam Triage API"
VERSION = "1.0.0"

app = FastAPI(
    title=SERVICE_NAME,
    description="Multi-stage scam triage: keyword heuristics, on-device char-CNN, cloud confirmation",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_service(settings: Settings) -> GuardianService:
    """Construct the whole pipeline from settings."""
    classifier = ScamClassifier(settings.model_dir)

    cloud = None
    if settings.cloud_explain_url:
        cloud = CloudConfirmationClient(
            settings.cloud_explain_url,
            api_key=settings.cloud_api_key,
            timeout=settings.cloud_timeout_seconds,
        )

    failure_policy = build_failure_policy(settings.stage3_failure_policy)
    if cloud is None and isinstance(failure_policy, RequireConfirmation):
        logger.warning("STAGE3_FAILURE_POLICY=require_confirmation without CLOUD_EXPLAIN_URL: no alert can ever fire")

    orchestrator = TriageOrchestrator(
        scorer=HeuristicScorer(word_boundaries=settings.keyword_word_boundaries),
        classifier=classifier,
        fusion=build_fusion(settings.fusion_mode, settings.heuristic_weight),
        gate=EscalationGate(settings.alert_threshold, settings.high_risk_threshold),
        cloud=cloud,
        failure_policy=failure_policy,
        language=settings.cloud_language,
    )
    return GuardianService(
        orchestrator=orchestrator,
        store=InMemoryAlertStore(),
        dedup=DedupCache(settings.dedup_capacity, settings.dedup_window_seconds),
        presenter=build_presenter(settings.webhook_url),
    )


def get_service(request: Request) -> GuardianService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up.")
    return service


def get_own_package(request: Request) -> Optional[str]:
    settings = getattr(request.app.state, "settings", None)
    return settings.own_package_name if settings is not None else None


@app.on_event("startup")
async def _on_startup() -> None:
    settings = Settings.from_env()
    logging.getLogger().setLevel(settings.log_level)
    app.state.settings = settings
    app.state.service = build_service(settings)
    classifier = app.state.service.orchestrator.classifier
    logger.info(
        f"{SERVICE_NAME} v{VERSION} started | fusion={settings.fusion_mode} "
        f"threshold={settings.alert_threshold} high={settings.high_risk_threshold} "
        f"stage2={'on' if classifier.is_available else 'off'} "
        f"stage3={'on' if settings.cloud_explain_url else 'off'} | Docs: /docs"
    )


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    service = getattr(app.state, "service", None)
    if service is not None:
        await service.shutdown(cancel=True)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.error(f"422 VALIDATION ERROR | {request.url.path} | {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(), "message": "Invalid request payload."},
    )


# ═══════════════════════════════════════════════════════════════════════
# ROUTES
# ═══════════════════════════════════════════════════════════════════════

@app.get("/")
async def health_check(request: Request) -> dict:
    service = getattr(request.app.state, "service", None)
    stage2 = stage3 = False
    if service is not None:
        classifier = service.orchestrator.classifier
        stage2 = bool(classifier is not None and getattr(classifier, "is_available", False))
        stage3 = service.orchestrator.cloud is not None
    return {
        "status": "online",
        "service": SERVICE_NAME,
        "version": VERSION,
        "classifierAvailable": stage2,
        "cloudConfigured": stage3,
    }


@app.post("/triage", response_model=TriageResponse)
async def triage_text(
    body: TriageRequest,
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
) -> TriageResponse:
    """Stateless manual triage: nothing is deduplicated or stored."""
    result = await service.orchestrator.triage(body.text, AlertOrigin.MANUAL)
    return TriageResponse.from_result(result)


@app.post("/events/notification", response_model=EventResponse)
async def notification_event(
    body: NotificationEvent,
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
    own_package: Optional[str] = Depends(get_own_package),
) -> EventResponse:
    event = from_notification(body, own_package)
    if event is None:
        return EventResponse(status="ignored")
    return _event_response(await service.process(event))


@app.post("/events/scan", response_model=EventResponse)
async def scan_event(
    body: ScanEvent,
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
) -> EventResponse:
    event = from_scan(body)
    if event is None:
        return EventResponse(status="ignored")
    return _event_response(await service.process(event))


@app.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
) -> List[AlertResponse]:
    return [_alert_response(alert) for alert in service.store.list_alerts()]


@app.delete("/alerts")
async def delete_all_alerts(
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
) -> dict:
    return {"deleted": service.store.delete_all()}


@app.get("/alerts/stats/weekly", response_model=WeeklyStatsResponse)
async def weekly_stats(
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
) -> WeeklyStatsResponse:
    stats = service.weekly_stats()
    return WeeklyStatsResponse(
        since=stats["since"],
        total=stats["total"],
        categories=[CountEntry(name=name, count=count) for name, count in stats["categories"]],
        tactics=[CountEntry(name=name, count=count) for name, count in stats["tactics"]],
    )


@app.get("/alerts/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: str,
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
) -> AlertResponse:
    alert = service.store.get_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found.")
    return _alert_response(alert)


@app.delete("/alerts/{alert_id}")
async def delete_alert(
    alert_id: str,
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
) -> dict:
    if not service.store.delete_alert(alert_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found.")
    return {"deleted": alert_id}


@app.post("/alerts/{alert_id}/explain", response_model=Explanation)
async def explain_alert(
    alert_id: str,
    language: Optional[str] = Query(default=None, min_length=2, max_length=10),
    api_key: str = Depends(verify_api_key),
    service: GuardianService = Depends(get_service),
) -> Explanation:
    if service.store.get_alert(alert_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found.")
    explanation = await service.explain_alert(alert_id, language)
    if explanation is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Explanation service unavailable, try again later.",
        )
    return explanation


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def _event_response(outcome: EventOutcome) -> EventResponse:
    result = TriageResponse.from_result(outcome.result) if outcome.result is not None else None
    if outcome.ignored:
        status_label = "ignored"
    elif outcome.duplicate:
        status_label = "duplicate"
    elif outcome.error is not None and outcome.alert_id is None:
        status_label = "error"
    elif outcome.alert_id is not None:
        status_label = "alerted"
    else:
        status_label = "clear"
    return EventResponse(status=status_label, alertId=outcome.alert_id, result=result)


def _alert_response(alert: Alert) -> AlertResponse:
    return AlertResponse(
        id=alert.id,
        createdAt=alert.created_at,
        origin=alert.origin,
        riskLevel=alert.risk_level,
        category=alert.category,
        tactics=parse_tactics(alert.tactics_json),
        snippet=alert.snippet,
        extractedUrl=alert.extracted_url,
        headline=alert.headline,
        sender=alert.sender,
        explanation=cached_explanation(alert),
        analysisLanguage=alert.analysis_language,
        heuristicScore=alert.heuristic_score,
        classifierScore=alert.classifier_score,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("guardian.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
