"""Everyday messages must stay below the escalation threshold."""

import pytest

from guardian.fusion import EscalationGate
from guardian.models import RiskLevel

from conftest import make_orchestrator

LEGITIMATE_MESSAGES = [
    "Happy birthday! Hope you have a great day.",
    "Lunch at 1pm tomorrow?",
    "Your parcel has been delivered. Thank you for shopping with us.",
    "Meeting moved to 3pm, see you there",
    "Can you confirm dinner at 8 tonight?",
    "Your OTP is 482913. Do not share this code with anyone.",
    "Jom makan malam nanti, saya belanja",
]


@pytest.mark.parametrize("text", LEGITIMATE_MESSAGES)
def test_heuristic_stays_low(scorer, text):
    probability, _ = scorer.score(text)
    assert EscalationGate(0.30, 0.75).decide(probability).risk_level is RiskLevel.LOW


@pytest.mark.asyncio
@pytest.mark.parametrize("text", LEGITIMATE_MESSAGES)
async def test_pipeline_without_classifier_stays_low(text):
    result = await make_orchestrator().triage(text)
    assert result.risk_level is RiskLevel.LOW
    assert result.explanation is None
