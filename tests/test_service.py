"""Alert pipeline: dedup, persistence, presentation, cancellation, review."""

import asyncio

import pytest

from guardian.memory import DedupCache
from guardian.models import AlertOrigin, CollectedEvent, Explanation, RiskLevel
from guardian.store import InMemoryAlertStore, parse_tactics

from conftest import (
    BENIGN_TEXT,
    SCAM_TEXT,
    VERIFY_TEXT,
    FakeClassifier,
    FakeCloud,
    RecordingPresenter,
    make_orchestrator,
    make_service,
)

PRIZE_TEXT = "Congratulations winner! You won a free prize bonus http://x.co"


def notification(text: str) -> CollectedEvent:
    return CollectedEvent(raw_text=text, origin=AlertOrigin.NOTIFICATION, sender="+60123", full_message=text)


class BlockingCloud:
    """Stage 3 that never answers until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def confirm(self, request):
        self.started.set()
        await self.release.wait()
        return None


class ExplodingOrchestrator:
    language = "en"
    cloud = None

    async def triage(self, raw_text, origin=AlertOrigin.MANUAL):
        raise RuntimeError("model exploded")


class FailingStore(InMemoryAlertStore):
    def create_alert(self, **fields):
        raise OSError("disk full")


class FlakyStore(InMemoryAlertStore):
    """Fails the first write, then recovers."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    def create_alert(self, **fields):
        if self.failures:
            self.failures -= 1
            raise OSError("disk full")
        return super().create_alert(**fields)


@pytest.mark.asyncio
async def test_high_risk_event_creates_alert_and_warning():
    presenter = RecordingPresenter()
    service = make_service(make_orchestrator(), presenter=presenter)

    outcome = await service.process(notification(SCAM_TEXT))

    assert outcome.alert_id is not None
    assert outcome.result.risk_level is RiskLevel.HIGH
    alert = service.store.get_alert(outcome.alert_id)
    assert alert.risk_level is RiskLevel.HIGH
    assert alert.category == "phishing"
    assert parse_tactics(alert.tactics_json) == ["urgency", "authority", "threats", "verification"]
    assert alert.extracted_url == "http://bit.ly/x"
    assert alert.snippet == SCAM_TEXT
    assert alert.sender == "+60123"
    assert alert.heuristic_score == pytest.approx(11 / 12)
    assert presenter.warnings == [
        (outcome.alert_id, outcome.result.headline, RiskLevel.HIGH, AlertOrigin.NOTIFICATION)
    ]


@pytest.mark.asyncio
async def test_low_event_persists_nothing():
    presenter = RecordingPresenter()
    service = make_service(make_orchestrator(), presenter=presenter)
    outcome = await service.process(notification(BENIGN_TEXT))
    assert outcome.result.risk_level is RiskLevel.LOW
    assert outcome.alert_id is None
    assert service.store.list_alerts() == []
    assert presenter.warnings == []


@pytest.mark.asyncio
async def test_blank_event_is_ignored():
    service = make_service(make_orchestrator())
    outcome = await service.process(notification("  \n "))
    assert outcome.ignored
    assert len(service.dedup) == 0


@pytest.mark.asyncio
async def test_duplicate_is_not_triaged_again():
    classifier = FakeClassifier(0.5)
    service = make_service(make_orchestrator(classifier=classifier))

    first = await service.process(notification(SCAM_TEXT))
    second = await service.process(notification(SCAM_TEXT))

    assert first.alert_id is not None
    assert second.duplicate
    assert second.result is None
    assert classifier.calls == 1
    assert len(service.store.list_alerts()) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicates_alert_once():
    service = make_service(make_orchestrator())
    outcomes = await asyncio.gather(*(service.process(notification(SCAM_TEXT)) for _ in range(5)))
    assert sum(1 for o in outcomes if o.alert_id) == 1
    assert sum(1 for o in outcomes if o.duplicate) == 4


@pytest.mark.asyncio
async def test_cancelled_event_releases_fingerprint():
    cloud = BlockingCloud()
    service = make_service(make_orchestrator(cloud=cloud))

    task = service.submit(notification(SCAM_TEXT))
    await asyncio.wait_for(cloud.started.wait(), timeout=2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert service.store.list_alerts() == []
    assert len(service.dedup) == 0

    cloud.release.set()
    outcome = await service.process(notification(SCAM_TEXT))
    assert outcome.alert_id is not None


@pytest.mark.asyncio
async def test_triage_error_is_reported_not_raised():
    service = make_service(ExplodingOrchestrator())
    outcome = await service.process(notification(SCAM_TEXT))
    assert outcome.error == "model exploded"
    assert outcome.alert_id is None
    assert len(service.dedup) == 0


@pytest.mark.asyncio
async def test_store_failure_is_reported():
    service = make_service(make_orchestrator())
    service.store = FailingStore()
    outcome = await service.process(notification(SCAM_TEXT))
    assert outcome.result.risk_level is RiskLevel.HIGH
    assert outcome.alert_id is None
    assert "disk full" in outcome.error
    assert len(service.dedup) == 0


@pytest.mark.asyncio
async def test_redelivery_after_store_failure_alerts():
    service = make_service(make_orchestrator())
    service.store = FlakyStore()

    first = await service.process(notification(SCAM_TEXT))
    second = await service.process(notification(SCAM_TEXT))

    assert first.alert_id is None
    assert "disk full" in first.error
    assert not second.duplicate
    assert second.alert_id is not None
    assert len(service.store.list_alerts()) == 1


@pytest.mark.asyncio
async def test_presenter_failure_keeps_alert():
    service = make_service(make_orchestrator(), presenter=RecordingPresenter(error=RuntimeError("no window")))
    outcome = await service.process(notification(SCAM_TEXT))
    assert outcome.alert_id is not None
    assert outcome.error is None
    assert service.store.get_alert(outcome.alert_id) is not None


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_events():
    cloud = BlockingCloud()
    service = make_service(make_orchestrator(cloud=cloud))
    task = service.submit(notification(SCAM_TEXT))
    await asyncio.wait_for(cloud.started.wait(), timeout=2)
    assert service.pending == 1

    await service.shutdown(cancel=True)

    assert task.cancelled()
    assert service.store.list_alerts() == []


@pytest.mark.asyncio
async def test_shutdown_waits_for_in_flight_events():
    service = make_service(make_orchestrator())
    task = service.submit(notification(SCAM_TEXT))
    await service.shutdown()
    assert task.done()
    assert task.result().alert_id is not None


class TestExplainAlert:
    @pytest.mark.asyncio
    async def test_triage_explanation_is_cached_on_alert(self):
        cloud = FakeCloud(Explanation(riskLevel="HIGH", headline="Fake bank verification"))
        service = make_service(make_orchestrator(cloud=cloud))
        outcome = await service.process(notification(SCAM_TEXT))

        alert = service.store.get_alert(outcome.alert_id)
        assert alert.analysis_language == "en"
        assert alert.headline == "Fake bank verification"

        explanation = await service.explain_alert(outcome.alert_id)
        assert explanation.headline == "Fake bank verification"
        assert len(cloud.requests) == 1

    @pytest.mark.asyncio
    async def test_other_language_asks_again(self):
        cloud = FakeCloud(Explanation(riskLevel="HIGH", headline="Penipuan bank"))
        service = make_service(make_orchestrator(cloud=cloud))
        outcome = await service.process(notification(SCAM_TEXT))

        explanation = await service.explain_alert(outcome.alert_id, "ms")

        assert explanation.headline == "Penipuan bank"
        assert len(cloud.requests) == 2
        request = cloud.requests[1]
        assert request.language == "ms"
        assert request.snippet == SCAM_TEXT
        assert request.category == "phishing"
        assert service.store.get_alert(outcome.alert_id).analysis_language == "ms"

    @pytest.mark.asyncio
    async def test_without_cloud_returns_none(self):
        service = make_service(make_orchestrator())
        outcome = await service.process(notification(SCAM_TEXT))
        assert await service.explain_alert(outcome.alert_id) is None

    @pytest.mark.asyncio
    async def test_unknown_alert(self):
        service = make_service(make_orchestrator(cloud=FakeCloud(Explanation())))
        assert await service.explain_alert("does-not-exist") is None


@pytest.mark.asyncio
async def test_weekly_stats():
    service = make_service(make_orchestrator())
    await service.process(notification(SCAM_TEXT))
    await service.process(notification(PRIZE_TEXT))
    await service.process(notification(BENIGN_TEXT))

    stats = service.weekly_stats()
    assert stats["total"] == 2
    assert set(stats["categories"]) == {("phishing", 1), ("lottery_scam", 1)}
    assert ("greed", 1) in stats["tactics"]
    assert stats["since"].weekday() == 0


@pytest.mark.asyncio
async def test_cloud_timeout_keeps_medium_and_still_alerts():
    cloud = FakeCloud(response=None)
    service = make_service(make_orchestrator(classifier=FakeClassifier(0.5), cloud=cloud))
    outcome = await service.process(notification(VERIFY_TEXT))

    assert outcome.result.risk_level is RiskLevel.MEDIUM
    assert outcome.result.explanation is None
    alert = service.store.get_alert(outcome.alert_id)
    assert alert.risk_level is RiskLevel.MEDIUM
    assert alert.explanation_json is None


@pytest.mark.asyncio
async def test_same_text_in_next_bucket_alerts_again():
    now = [1_000_000.0]
    service = make_service(make_orchestrator())
    service.dedup = DedupCache(capacity=50, window_seconds=600, clock=lambda: now[0])

    first = await service.process(notification(SCAM_TEXT))
    same_bucket = await service.process(notification(SCAM_TEXT))
    now[0] += 600
    next_bucket = await service.process(notification(SCAM_TEXT))

    assert first.alert_id is not None
    assert same_bucket.duplicate
    assert next_bucket.alert_id not in (None, first.alert_id)
    assert len(service.store.list_alerts()) == 2
