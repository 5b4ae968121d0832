"""
Score fusion, escalation gate and Stage 3 failure policies.

fuse(h, c) combines the Stage 1 and Stage 2 probabilities. When the
classifier is unavailable (c is None) every policy returns h unchanged,
so a missing model never changes the heuristic verdict.
"""

from dataclasses import dataclass
from typing import Optional

from guardian.models import RiskLevel


def _clamp(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


class FusionPolicy:
    """Combines heuristic and classifier probabilities into one score."""

    name = "base"

    def fuse(self, heuristic: float, classifier: Optional[float]) -> float:
        if classifier is None:
            return heuristic
        return _clamp(self._combine(_clamp(heuristic), _clamp(classifier)))

    def _combine(self, heuristic: float, classifier: float) -> float:
        raise NotImplementedError


class WeightedSumFusion(FusionPolicy):
    """w*h + (1-w)*c. Default w = 0.20, leaning on the trained model."""

    name = "weighted"

    def __init__(self, heuristic_weight: float = 0.20) -> None:
        if not 0.0 <= heuristic_weight <= 1.0:
            raise ValueError(f"heuristic_weight must be in [0, 1], got {heuristic_weight}")
        self.heuristic_weight = heuristic_weight

    def _combine(self, heuristic: float, classifier: float) -> float:
        w = self.heuristic_weight
        return w * heuristic + (1.0 - w) * classifier


class ProbabilisticOrFusion(FusionPolicy):
    """1 - (1-h)(1-c): either stage alone can push the score up."""

    name = "probabilistic_or"

    def _combine(self, heuristic: float, classifier: float) -> float:
        return 1.0 - (1.0 - heuristic) * (1.0 - classifier)


FUSION_MODES = {
    WeightedSumFusion.name: WeightedSumFusion,
    ProbabilisticOrFusion.name: ProbabilisticOrFusion,
}


def build_fusion(mode: str = "weighted", heuristic_weight: float = 0.20) -> FusionPolicy:
    if mode == WeightedSumFusion.name:
        return WeightedSumFusion(heuristic_weight)
    if mode == ProbabilisticOrFusion.name:
        return ProbabilisticOrFusion()
    raise ValueError(f"unknown fusion mode '{mode}', expected one of {sorted(FUSION_MODES)}")


# ═══════════════════════════════════════════════════════════════════════
# ESCALATION GATE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GateDecision:
    risk_level: RiskLevel
    escalate: bool


class EscalationGate:
    """
    Below threshold → LOW, stop (no cloud call, no alert).
    Otherwise provisional HIGH at or above high_threshold, else MEDIUM,
    and the case goes on to Stage 3.
    """

    def __init__(self, threshold: float = 0.30, high_threshold: float = 0.75) -> None:
        if not 0.0 <= threshold <= 1.0 or not 0.0 <= high_threshold <= 1.0:
            raise ValueError("gate thresholds must be in [0, 1]")
        if high_threshold < threshold:
            raise ValueError(
                f"high_threshold ({high_threshold}) must not be below threshold ({threshold})"
            )
        self.threshold = threshold
        self.high_threshold = high_threshold

    def decide(self, combined: float) -> GateDecision:
        if combined < self.threshold:
            return GateDecision(RiskLevel.LOW, escalate=False)
        if combined >= self.high_threshold:
            return GateDecision(RiskLevel.HIGH, escalate=True)
        return GateDecision(RiskLevel.MEDIUM, escalate=True)


# ═══════════════════════════════════════════════════════════════════════
# STAGE 3 FAILURE POLICIES
# ═══════════════════════════════════════════════════════════════════════

class FailurePolicy:
    """Decides the final label when an escalated case gets no cloud verdict."""

    name = "base"

    def on_unavailable(self, provisional: RiskLevel) -> RiskLevel:
        raise NotImplementedError


class ConservativeOnFailure(FailurePolicy):
    """Keep the locally derived label; an unreachable cloud never hides a warning."""

    name = "conservative"

    def on_unavailable(self, provisional: RiskLevel) -> RiskLevel:
        return provisional


class RequireConfirmation(FailurePolicy):
    """Only alert on cloud-confirmed cases; trades recall for fewer false alarms."""

    name = "require_confirmation"

    def on_unavailable(self, provisional: RiskLevel) -> RiskLevel:
        return RiskLevel.LOW


def build_failure_policy(name: str = "conservative") -> FailurePolicy:
    if name == ConservativeOnFailure.name:
        return ConservativeOnFailure()
    if name == RequireConfirmation.name:
        return RequireConfirmation()
    raise ValueError(
        f"unknown Stage 3 failure policy '{name}', "
        f"expected '{ConservativeOnFailure.name}' or '{RequireConfirmation.name}'"
    )
