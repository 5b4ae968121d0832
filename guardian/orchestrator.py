"""
orchestrator.py — Per-Event Triage Sequencing
==============================================

    raw text ──┬─▶ Stage 1 HeuristicScorer  (worker thread) ─┐
               └─▶ Stage 2 ScamClassifier   (worker thread) ─┴─▶ fuse ─▶ gate
                                                                          │
                               LOW ◀── below threshold ───────────────────┤
                                                                          ▼
                                               Stage 3 CloudConfirmationClient (async I/O)
                                                                          │
                                                                          ▼
                                                                    TriageResult

Stage 1 and Stage 2 always run; Stage 3 only for escalated cases and only
changes the final label, never whether local scoring happened.

The orchestrator holds no mutable state. All collaborators are injected
and read-only, so one instance serves concurrent triage() calls.
"""

import asyncio
import logging
from typing import Optional

from guardian.cloud import CloudConfirmationClient
from guardian.detector import HeuristicResult, HeuristicScorer
from guardian.extractor import extract_first_url, redact
from guardian.fusion import (
    ConservativeOnFailure,
    EscalationGate,
    FailurePolicy,
    FusionPolicy,
    WeightedSumFusion,
)
from guardian.models import (
    SNIPPET_MAX_CHARS,
    AlertOrigin,
    Explanation,
    ExplainRequest,
    RiskLevel,
    TriageResult,
)

logger = logging.getLogger(__name__)

AI_CATEGORY = "ai_suspicious"
AI_HEADLINE = "AI detected suspicious content"
UNKNOWN_CATEGORY = "unknown"


class TriageOrchestrator:
    """Runs one raw text through the staged pipeline.

    Usage::

        orchestrator = TriageOrchestrator(HeuristicScorer(), ScamClassifier("models"))
        result = await orchestrator.triage("URGENT: verify now at http://bit.ly/x")
    """

    def __init__(
        self,
        scorer: HeuristicScorer,
        classifier,
        fusion: Optional[FusionPolicy] = None,
        gate: Optional[EscalationGate] = None,
        cloud: Optional[CloudConfirmationClient] = None,
        failure_policy: Optional[FailurePolicy] = None,
        language: str = "en",
    ) -> None:
        self.scorer = scorer
        self.classifier = classifier
        self.fusion = fusion or WeightedSumFusion()
        self.gate = gate or EscalationGate()
        self.cloud = cloud
        self.failure_policy = failure_policy or ConservativeOnFailure()
        self.language = language

    async def triage(self, raw_text: str, origin: AlertOrigin = AlertOrigin.MANUAL) -> TriageResult:
        if not raw_text or not raw_text.strip():
            return TriageResult(
                risk_level=RiskLevel.LOW,
                risk_probability=0.0,
                heuristic_score=0.0,
                classifier_score=None,
                tactics=(),
                category=UNKNOWN_CATEGORY,
                headline=HeuristicScorer.HEADLINE_LOW,
                contains_url=False,
            )

        origin = AlertOrigin(origin)
        heuristic, classifier_score = await asyncio.gather(
            asyncio.to_thread(self.scorer.analyze, raw_text),
            asyncio.to_thread(self._classify, raw_text),
        )

        combined = self.fusion.fuse(heuristic.probability, classifier_score)
        decision = self.gate.decide(combined)

        category = heuristic.category
        if decision.escalate and not heuristic.tactics:
            # Nothing in the keyword tables fired; the model carried it
            category = AI_CATEGORY

        logger.info(
            f"Triage ({origin.value}): heuristic={heuristic.probability:.3f} "
            f"classifier={_fmt(classifier_score)} fused={combined:.3f} "
            f"→ {decision.risk_level.value}"
        )

        if not decision.escalate:
            return self._result(RiskLevel.LOW, combined, heuristic, classifier_score, category)

        explanation = await self._confirm(raw_text, origin, category, heuristic, classifier_score)
        if explanation is None:
            final_level = self.failure_policy.on_unavailable(decision.risk_level)
            if final_level is not decision.risk_level:
                logger.info(
                    f"Stage 3 unavailable, {self.failure_policy.name} policy: "
                    f"{decision.risk_level.value} → {final_level.value}"
                )
            return self._result(final_level, combined, heuristic, classifier_score, category)

        final_level = explanation.riskLevel or decision.risk_level
        if final_level is not decision.risk_level:
            logger.info(f"Stage 3 verdict overrides local label: {decision.risk_level.value} → {final_level.value}")

        return self._result(
            final_level,
            combined,
            heuristic,
            classifier_score,
            explanation.category if explanation.has_category else category,
            explanation=explanation,
        )

    def _classify(self, raw_text: str) -> Optional[float]:
        if self.classifier is None:
            return None
        try:
            score = self.classifier.score(raw_text)
        except Exception as exc:
            logger.warning(f"Stage 2 scoring raised, treating as unavailable: {exc}")
            return None
        if score is None:
            return None
        return min(max(float(score), 0.0), 1.0)

    async def _confirm(
        self,
        raw_text: str,
        origin: AlertOrigin,
        category: str,
        heuristic: HeuristicResult,
        classifier_score: Optional[float],
    ) -> Optional[Explanation]:
        if self.cloud is None:
            return None

        request = ExplainRequest(
            alertType=origin.value,
            language=self.language,
            category=category,
            tactics=list(heuristic.tactics),
            snippet=redact(raw_text.strip())[:SNIPPET_MAX_CHARS],
            extractedUrl=extract_first_url(raw_text),
            heuristicScore=round(heuristic.probability, 4),
            classifierScore=None if classifier_score is None else round(classifier_score, 4),
        )
        try:
            return await self.cloud.confirm(request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Stage 3 client raised unexpectedly, treating as unavailable: {exc}")
            return None

    def _result(
        self,
        level: RiskLevel,
        combined: float,
        heuristic: HeuristicResult,
        classifier_score: Optional[float],
        category: str,
        explanation: Optional[Explanation] = None,
    ) -> TriageResult:
        if explanation is not None and explanation.has_headline:
            headline = explanation.headline
        elif category == AI_CATEGORY and level.is_alertable:
            headline = AI_HEADLINE
        else:
            headline = HeuristicScorer.build_headline(level, heuristic.tactics, heuristic.contains_url)

        return TriageResult(
            risk_level=level,
            risk_probability=combined,
            heuristic_score=heuristic.probability,
            classifier_score=classifier_score,
            tactics=heuristic.tactics,
            category=category,
            headline=headline,
            contains_url=heuristic.contains_url,
            explanation=explanation,
            explanation_language=self.language if explanation is not None else None,
        )


def _fmt(score: Optional[float]) -> str:
    return "n/a" if score is None else f"{score:.3f}"
