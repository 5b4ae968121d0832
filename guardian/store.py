"""Alert store interface and the thread-safe in-memory default.

Only MEDIUM/HIGH results ever reach the store. Records are keyed by a
uuid4 string and carry their creation time in UTC so that weekly
aggregates (count, top categories, top tactics) can be computed.
"""

import json
import logging
import threading
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from guardian.models import Alert, AlertOrigin, RiskLevel

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_week(now: Optional[datetime] = None) -> datetime:
    """Monday 00:00 of the week containing `now` (UTC)."""
    now = now or _utcnow()
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_tactics(tactics_json: Optional[str]) -> List[str]:
    """Decode a stored tactics array; anything unreadable counts as no tactics."""
    if not tactics_json:
        return []
    try:
        raw = json.loads(tactics_json)
    except ValueError:
        return []
    if not isinstance(raw, list):
        return []
    return [str(t).strip() for t in raw if isinstance(t, str) and t.strip()]


class AlertStore:
    """What the pipeline needs from persistence. Subclass for a real database."""

    def create_alert(self, **fields) -> str:
        raise NotImplementedError

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        raise NotImplementedError

    def list_alerts(self) -> List[Alert]:
        raise NotImplementedError

    def attach_explanation(self, alert_id: str, explanation_json: str, language: str) -> bool:
        raise NotImplementedError

    def delete_alert(self, alert_id: str) -> bool:
        raise NotImplementedError

    def delete_all(self) -> int:
        raise NotImplementedError

    def count_since(self, since: datetime) -> int:
        raise NotImplementedError

    def category_counts(self, since: datetime) -> List[Tuple[str, int]]:
        raise NotImplementedError

    def tactic_counts(self, since: datetime) -> List[Tuple[str, int]]:
        raise NotImplementedError


class InMemoryAlertStore(AlertStore):
    """
    Dict-backed store guarded by a single lock.

    Aggregates return (name, count) pairs sorted by count, highest first.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._alerts: Dict[str, Alert] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def create_alert(
        self,
        *,
        origin: AlertOrigin,
        risk_level: RiskLevel,
        category: str,
        tactics: Sequence[str],
        snippet: str,
        extracted_url: Optional[str] = None,
        headline: Optional[str] = None,
        sender: Optional[str] = None,
        full_message: Optional[str] = None,
        explanation_json: Optional[str] = None,
        analysis_language: Optional[str] = None,
        heuristic_score: Optional[float] = None,
        classifier_score: Optional[float] = None,
    ) -> str:
        if not RiskLevel(risk_level).is_alertable:
            raise ValueError("LOW results are never stored as alerts")

        alert = Alert(
            id=str(uuid.uuid4()),
            created_at=self._clock(),
            origin=AlertOrigin(origin),
            risk_level=RiskLevel(risk_level),
            category=category,
            tactics_json=json.dumps(list(tactics)),
            snippet=snippet,
            extracted_url=extracted_url,
            headline=headline,
            sender=sender,
            full_message=full_message,
            explanation_json=explanation_json,
            analysis_language=analysis_language,
            heuristic_score=heuristic_score,
            classifier_score=classifier_score,
        )
        with self._lock:
            self._alerts[alert.id] = alert
        logger.info(f"[{alert.id[:8]}] Alert stored: {alert.risk_level.value} {alert.category}")
        return alert.id

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            return self._alerts.get(alert_id)

    def list_alerts(self) -> List[Alert]:
        """All alerts, newest first."""
        with self._lock:
            alerts = list(self._alerts.values())
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    def attach_explanation(self, alert_id: str, explanation_json: str, language: str) -> bool:
        """Cache a Stage 3 explanation on an existing alert."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return False
            alert.explanation_json = explanation_json
            alert.analysis_language = language
            return True

    def delete_alert(self, alert_id: str) -> bool:
        with self._lock:
            return self._alerts.pop(alert_id, None) is not None

    def delete_all(self) -> int:
        with self._lock:
            count = len(self._alerts)
            self._alerts.clear()
        return count

    def count_since(self, since: datetime) -> int:
        return len(self._since(since))

    def category_counts(self, since: datetime) -> List[Tuple[str, int]]:
        counts = Counter(alert.category for alert in self._since(since))
        return counts.most_common()

    def tactic_counts(self, since: datetime) -> List[Tuple[str, int]]:
        counts: Counter = Counter()
        for alert in self._since(since):
            counts.update(parse_tactics(alert.tactics_json))
        return counts.most_common()

    def _since(self, since: datetime) -> List[Alert]:
        with self._lock:
            return [a for a in self._alerts.values() if a.created_at >= since]
