"""Environment-driven settings. Values may come from a .env file.

Invalid values raise ValueError when Settings.from_env() runs, so a bad
deployment fails at startup instead of mis-triaging quietly.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

FUSION_MODES = ("weighted", "probabilistic_or")
FAILURE_POLICIES = ("conservative", "require_confirmation")


def _get_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _get_float(name: str, default: float, low: float = 0.0, high: float = 1.0) -> float:
    raw = _get_str(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")
    return value


def _get_int(name: str, default: int, low: int = 1) -> int:
    raw = _get_str(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None
    if value < low:
        raise ValueError(f"{name} must be at least {low}, got {value}")
    return value


def _get_bool(name: str, default: bool = False) -> bool:
    raw = _get_str(name)
    if raw is None:
        return default
    if raw.lower() in ("1", "true", "yes", "on"):
        return True
    if raw.lower() in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be true or false, got '{raw}'")


def _get_choice(name: str, default: str, choices) -> str:
    value = (_get_str(name, default) or default).lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got '{value}'")
    return value


@dataclass(frozen=True)
class Settings:
    model_dir: str = "models"
    cloud_explain_url: Optional[str] = None
    cloud_api_key: Optional[str] = None
    cloud_timeout_seconds: float = 10.0
    cloud_language: str = "en"
    fusion_mode: str = "weighted"
    heuristic_weight: float = 0.20
    keyword_word_boundaries: bool = False
    alert_threshold: float = 0.30
    high_risk_threshold: float = 0.75
    stage3_failure_policy: str = "conservative"
    dedup_capacity: int = 50
    dedup_window_seconds: int = 600
    webhook_url: Optional[str] = None
    own_package_name: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        alert_threshold = _get_float("ALERT_THRESHOLD", 0.30)
        high_risk_threshold = _get_float("HIGH_RISK_THRESHOLD", 0.75)
        if high_risk_threshold < alert_threshold:
            raise ValueError(
                f"HIGH_RISK_THRESHOLD ({high_risk_threshold}) must not be below "
                f"ALERT_THRESHOLD ({alert_threshold})"
            )

        log_level = (_get_str("LOG_LEVEL", "INFO") or "INFO").upper()
        if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"LOG_LEVEL '{log_level}' is not a logging level")

        return cls(
            model_dir=_get_str("GUARDIAN_MODEL_DIR", "models"),
            cloud_explain_url=_get_str("CLOUD_EXPLAIN_URL"),
            cloud_api_key=_get_str("CLOUD_API_KEY"),
            cloud_timeout_seconds=_get_float("CLOUD_TIMEOUT_SECONDS", 10.0, low=0.1, high=120.0),
            cloud_language=_get_str("CLOUD_LANGUAGE", "en"),
            fusion_mode=_get_choice("FUSION_MODE", "weighted", FUSION_MODES),
            heuristic_weight=_get_float("HEURISTIC_WEIGHT", 0.20),
            keyword_word_boundaries=_get_bool("KEYWORD_WORD_BOUNDARIES"),
            alert_threshold=alert_threshold,
            high_risk_threshold=high_risk_threshold,
            stage3_failure_policy=_get_choice("STAGE3_FAILURE_POLICY", "conservative", FAILURE_POLICIES),
            dedup_capacity=_get_int("DEDUP_CAPACITY", 50),
            dedup_window_seconds=_get_int("DEDUP_WINDOW_SECONDS", 600),
            webhook_url=_get_str("WEBHOOK_URL"),
            own_package_name=_get_str("OWN_PACKAGE_NAME"),
            log_level=log_level,
        )
