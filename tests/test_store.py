"""In-memory alert store and weekly aggregates."""

from datetime import datetime, timedelta, timezone

import pytest

from guardian.models import AlertOrigin, RiskLevel
from guardian.store import InMemoryAlertStore, parse_tactics, start_of_week

MONDAY = datetime(2024, 1, 1, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def add(store, category="phishing", tactics=("urgency",), level=RiskLevel.HIGH, **extra):
    return store.create_alert(
        origin=AlertOrigin.NOTIFICATION,
        risk_level=level,
        category=category,
        tactics=tactics,
        snippet="URGENT verify now",
        **extra,
    )


def test_start_of_week_is_monday_midnight():
    wednesday = datetime(2024, 1, 3, 15, 30, 12, tzinfo=timezone.utc)
    assert start_of_week(wednesday) == MONDAY
    assert start_of_week(MONDAY) == MONDAY
    sunday = datetime(2024, 1, 7, 23, 59, tzinfo=timezone.utc)
    assert start_of_week(sunday) == MONDAY


def test_create_and_get():
    store = InMemoryAlertStore()
    alert_id = add(store, extracted_url="http://bit.ly/x", sender="Maybank")
    alert = store.get_alert(alert_id)
    assert alert.id == alert_id
    assert alert.risk_level is RiskLevel.HIGH
    assert alert.origin is AlertOrigin.NOTIFICATION
    assert parse_tactics(alert.tactics_json) == ["urgency"]
    assert alert.extracted_url == "http://bit.ly/x"
    assert alert.sender == "Maybank"
    assert alert.created_at.tzinfo is not None


def test_ids_are_unique():
    store = InMemoryAlertStore()
    assert add(store) != add(store)


def test_low_is_never_stored():
    store = InMemoryAlertStore()
    with pytest.raises(ValueError):
        add(store, level=RiskLevel.LOW)
    assert store.list_alerts() == []


def test_list_is_newest_first():
    clock = Clock(MONDAY)
    store = InMemoryAlertStore(clock=clock)
    first = add(store)
    clock.now = MONDAY + timedelta(hours=1)
    second = add(store)
    assert [a.id for a in store.list_alerts()] == [second, first]


def test_delete():
    store = InMemoryAlertStore()
    alert_id = add(store)
    add(store)
    assert store.delete_alert(alert_id) is True
    assert store.delete_alert(alert_id) is False
    assert store.get_alert(alert_id) is None
    assert store.delete_all() == 1
    assert store.list_alerts() == []


def test_attach_explanation():
    store = InMemoryAlertStore()
    alert_id = add(store)
    assert store.attach_explanation(alert_id, '{"headline": "x"}', "ms") is True
    alert = store.get_alert(alert_id)
    assert alert.explanation_json == '{"headline": "x"}'
    assert alert.analysis_language == "ms"
    assert store.attach_explanation("missing", "{}", "en") is False


def test_weekly_aggregates():
    clock = Clock(MONDAY - timedelta(days=1))
    store = InMemoryAlertStore(clock=clock)
    add(store, category="lottery_scam", tactics=("greed",))  # last week

    clock.now = MONDAY + timedelta(days=2)
    add(store, category="phishing", tactics=("urgency", "verification"))
    add(store, category="phishing", tactics=("urgency",))
    add(store, category="impersonation", tactics=("authority", "urgency"), level=RiskLevel.MEDIUM)

    assert store.count_since(MONDAY) == 3
    assert store.category_counts(MONDAY) == [("phishing", 2), ("impersonation", 1)]
    tactics = store.tactic_counts(MONDAY)
    assert tactics[0] == ("urgency", 3)
    assert sorted(tactics[1:]) == [("authority", 1), ("verification", 1)]


@pytest.mark.parametrize("raw,expected", [
    (None, []),
    ("", []),
    ("not json", []),
    ('{"a": 1}', []),
    ('["urgency", " money ", "", 3]', ["urgency", "money"]),
])
def test_parse_tactics(raw, expected):
    assert parse_tactics(raw) == expected
