"""
service.py — Alert Pipeline
============================

Ties the pieces together for every collected event:

    CollectedEvent
        │ blank text?              → ignored
        ▼
    DedupCache.check_and_add      → duplicate (no triage)
        ▼
    TriageOrchestrator.triage
        ▼ LOW                     → nothing persisted
        ▼ MEDIUM / HIGH
    AlertStore.create_alert  →  Presenter.post_warning

Guarantees:
    - At most one alert per distinct text per dedup bucket.
    - A cancelled event persists nothing and its fingerprint is released,
      so the same text can be processed again.
    - Unexpected errors are logged and reported on the outcome; a collector
      never sees an exception from process().
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Set

from guardian.extractor import extract_first_url, make_snippet
from guardian.memory import DedupCache
from guardian.models import (
    Alert,
    CollectedEvent,
    EventOutcome,
    Explanation,
    ExplainRequest,
    TriageResult,
)
from guardian.notifier import Presenter
from guardian.orchestrator import TriageOrchestrator
from guardian.store import AlertStore, parse_tactics, start_of_week

logger = logging.getLogger(__name__)


class GuardianService:
    """One instance per process; safe to call from many tasks at once."""

    def __init__(
        self,
        orchestrator: TriageOrchestrator,
        store: AlertStore,
        dedup: DedupCache,
        presenter: Presenter,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.dedup = dedup
        self.presenter = presenter
        self._tasks: Set[asyncio.Task] = set()

    # ---------------------------------------------------------------
    # Event processing
    # ---------------------------------------------------------------

    async def process(self, event: CollectedEvent) -> EventOutcome:
        if not event.raw_text or not event.raw_text.strip():
            return EventOutcome(ignored=True)

        fingerprint = self.dedup.check_and_add(event.raw_text)
        if fingerprint is None:
            logger.debug(f"Skipping duplicate {event.origin.value} event (same text in this window)")
            return EventOutcome(duplicate=True)

        short_fp = fingerprint[:8]
        try:
            result = await self.orchestrator.triage(event.raw_text, event.origin)
        except asyncio.CancelledError:
            self.dedup.discard(fingerprint)
            logger.info(f"[{short_fp}] Event cancelled before persistence")
            raise
        except Exception as exc:
            self.dedup.discard(fingerprint)
            logger.exception(f"[{short_fp}] Triage failed: {exc}")
            return EventOutcome(error=str(exc) or exc.__class__.__name__)

        if not result.risk_level.is_alertable:
            logger.info(f"[{short_fp}] {event.origin.value} event is LOW, no alert")
            return EventOutcome(result=result)

        try:
            alert_id = self._create_alert(event, result)
        except Exception as exc:
            logger.exception(f"[{short_fp}] Could not store alert: {exc}")
            self.dedup.discard(fingerprint)
            return EventOutcome(result=result, error=str(exc) or exc.__class__.__name__)

        try:
            self.presenter.post_warning(alert_id, result.headline, result.risk_level, event.origin)
        except Exception as exc:
            # The alert is stored; a failed warning must not undo it
            logger.error(f"[{alert_id[:8]}] Presenter failed: {exc}")

        return EventOutcome(result=result, alert_id=alert_id)

    def submit(self, event: CollectedEvent) -> asyncio.Task:
        """Process an event in the background; the task is tracked until done."""
        task = asyncio.get_running_loop().create_task(self.process(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self, cancel: bool = False) -> None:
        """Wait for in-flight events, or cancel them cooperatively first."""
        tasks = list(self._tasks)
        if not tasks:
            return
        if cancel:
            for task in tasks:
                task.cancel()
        logger.info(f"Waiting for {len(tasks)} in-flight event(s) (cancel={cancel})")
        await asyncio.gather(*tasks, return_exceptions=True)

    def _create_alert(self, event: CollectedEvent, result: TriageResult) -> str:
        explanation_json = None
        if result.explanation is not None:
            explanation_json = result.explanation.model_dump_json()

        return self.store.create_alert(
            origin=event.origin,
            risk_level=result.risk_level,
            category=result.category,
            tactics=result.tactics,
            snippet=make_snippet(event.raw_text, event.origin),
            extracted_url=extract_first_url(event.raw_text),
            headline=result.headline,
            sender=event.sender,
            full_message=event.full_message,
            explanation_json=explanation_json,
            analysis_language=result.explanation_language,
            heuristic_score=result.heuristic_score,
            classifier_score=result.classifier_score,
        )

    # ---------------------------------------------------------------
    # Alert review
    # ---------------------------------------------------------------

    async def explain_alert(self, alert_id: str, language: Optional[str] = None) -> Optional[Explanation]:
        """
        Explanation for a stored alert. A cached one in the same language is
        reused; otherwise Stage 3 is asked and the answer cached on the alert.
        Returns None for unknown alerts or when Stage 3 is unavailable.
        """
        alert = self.store.get_alert(alert_id)
        if alert is None:
            return None

        language = language or self.orchestrator.language
        cached = cached_explanation(alert)
        if cached is not None and alert.analysis_language == language:
            return cached

        cloud = self.orchestrator.cloud
        if cloud is None:
            return cached

        request = ExplainRequest(
            alertType=alert.origin.value,
            language=language,
            category=alert.category,
            tactics=parse_tactics(alert.tactics_json),
            snippet=alert.snippet,
            extractedUrl=alert.extracted_url,
            heuristicScore=alert.heuristic_score,
            classifierScore=alert.classifier_score,
        )
        explanation = await cloud.confirm(request)
        if explanation is None:
            return cached

        self.store.attach_explanation(alert_id, explanation.model_dump_json(), language)
        return explanation

    def weekly_stats(self, now: Optional[datetime] = None) -> dict:
        since = start_of_week(now)
        return {
            "since": since,
            "total": self.store.count_since(since),
            "categories": self.store.category_counts(since),
            "tactics": self.store.tactic_counts(since),
        }


def cached_explanation(alert: Alert) -> Optional[Explanation]:
    if not alert.explanation_json:
        return None
    try:
        return Explanation.model_validate_json(alert.explanation_json)
    except ValueError:
        logger.warning(f"[{alert.id[:8]}] Discarding unreadable cached explanation")
        return None
