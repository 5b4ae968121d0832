"""Warning presenters: surface a stored alert to the user.

post_warning() is called exactly once per created alert, after the alert
is persisted, with the alert id so the warning can deep-link to it.

LoggingPresenter only logs. WebhookPresenter POSTs a small JSON payload
from a daemon thread with backoff retry (1s, 2s, 4s); delivery failures
are logged and never reach the triage pipeline.
"""

import logging
import threading
import time
from typing import Optional, Sequence

import requests

from guardian.models import AlertOrigin, RiskLevel

logger = logging.getLogger(__name__)

MAX_RETRIES: int = 3
RETRY_DELAYS: tuple = (1, 2, 4)
REQUEST_TIMEOUT: float = 15.0


class Presenter:
    def post_warning(
        self,
        alert_id: str,
        headline: str,
        risk_level: RiskLevel,
        origin: AlertOrigin,
    ) -> None:
        raise NotImplementedError


class LoggingPresenter(Presenter):
    """Default presenter when no webhook is configured."""

    def post_warning(self, alert_id, headline, risk_level, origin) -> None:
        logger.warning(
            f"[{alert_id[:8]}] {RiskLevel(risk_level).value} warning "
            f"({AlertOrigin(origin).value}): {headline}"
        )


def build_warning_payload(alert_id: str, headline: str, risk_level, origin) -> dict:
    return {
        "alertId": alert_id,
        "headline": headline,
        "riskLevel": RiskLevel(risk_level).value,
        "origin": AlertOrigin(origin).value,
    }


class WebhookPresenter(Presenter):
    """Pushes warnings to an HTTP endpoint without blocking the caller."""

    def __init__(
        self,
        url: str,
        timeout: float = REQUEST_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_delays: Sequence[float] = RETRY_DELAYS,
    ) -> None:
        if not url:
            raise ValueError("webhook URL must not be empty")
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delays = tuple(retry_delays) or (0,)

    def post_warning(self, alert_id, headline, risk_level, origin) -> threading.Thread:
        payload = build_warning_payload(alert_id, headline, risk_level, origin)
        thread = threading.Thread(
            target=self.send_with_retry,
            args=(alert_id, payload),
            name=f"warning-{alert_id[:8]}",
            daemon=True,
        )
        thread.start()
        return thread

    def send_with_retry(self, alert_id: str, payload: dict) -> bool:
        """Blocking delivery with backoff. Returns True once a 2xx is seen."""
        short_id = alert_id[:8]
        attempts = self.max_retries

        for attempt in range(attempts):
            if self._do_send(short_id, payload):
                return True
            if attempt < attempts - 1:
                delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
                logger.info(f"[{short_id}] Warning retry {attempt + 1} in {delay}s")
                time.sleep(delay)

        logger.error(f"[{short_id}] Warning delivery failed after {attempts} attempts")
        return False

    def _do_send(self, short_id: str, payload: dict) -> bool:
        try:
            response = requests.post(
                self.url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        except requests.exceptions.Timeout:
            logger.error(f"[{short_id}] Warning webhook timed out")
            return False
        except requests.exceptions.RequestException as exc:
            logger.error(f"[{short_id}] Warning webhook network error: {exc}")
            return False

        if 200 <= response.status_code < 300:
            logger.info(f"[{short_id}] Warning delivered ({response.status_code})")
            return True
        logger.warning(
            f"[{short_id}] Warning rejected: {response.status_code} {response.text[:200]}"
        )
        return False


def build_presenter(webhook_url: Optional[str]) -> Presenter:
    if webhook_url:
        return WebhookPresenter(webhook_url)
    return LoggingPresenter()
