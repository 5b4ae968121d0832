"""
Stage 1 keyword heuristic scorer for scam triage.

Scores raw text against six tactic groups (English + Malay keywords),
adds a bonus for links and for every distinct group that fired, and
normalizes against a practical maximum of 12 points. No model, no I/O.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Pattern, Tuple

from guardian.models import RiskLevel


@dataclass(frozen=True)
class HeuristicResult:
    """Everything Stage 1 knows about one message."""
    probability: float
    tactics: Tuple[str, ...]
    category: str
    contains_url: bool
    group_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))


def _keyword_pattern(keyword: str) -> Pattern:
    # A keyword may touch digits or punctuation but not other letters,
    # so "rm50" hits "rm" while "form" does not.
    body = r'\s+'.join(re.escape(part) for part in keyword.split())
    return re.compile(r'(?<![^\W\d_])' + body + r'(?![^\W\d_])')


def _keyword_matcher(keyword: str, word_boundaries: bool) -> Callable[[str], bool]:
    if word_boundaries:
        return _keyword_pattern(keyword).search
    return lambda lowered: keyword in lowered


class HeuristicScorer:
    """
    Counts distinct keyword hits per tactic group. Each group contributes
    at most MAX_PER_GROUP points, a link adds URL_BONUS, and each group
    that fired adds one more point.
    """

    MAX_PER_GROUP: int = 3
    URL_BONUS: int = 2
    NORMALIZER: float = 12.0

    URGENCY = [
        "segera", "urgent", "immediately", "now", "act now",
        "hurry", "limited time", "expires today", "last chance",
        "deadline", "within 24 hours", "dalam 24 jam",
        "cepat", "sekarang juga", "jangan tunggu", "masa terhad",
    ]

    AUTHORITY = [
        "bank negara", "pdrm", "polis", "police", "lhdn",
        "inland revenue", "court", "mahkamah", "customs",
        "kastam", "officer", "pegawai", "customer service",
        "your account", "akaun anda", "verification required",
        "pengesahan diperlukan", "official", "rasmi",
    ]

    MONEY = [
        "transfer", "rm", "myr", "ringgit", "payment", "bayaran",
        "bayar", "pay", "send money", "wire", "top up", "reload",
        "investment", "pelaburan", "guaranteed returns",
        "pulangan dijamin", "profit", "keuntungan", "commission",
        "komisyen", "withdraw", "pengeluaran",
    ]

    THREATS = [
        "blocked", "disekat", "suspended", "digantung",
        "arrested", "ditangkap", "warrant", "waran",
        "legal action", "tindakan undang", "fine", "denda",
        "penalti", "penalty", "freeze", "beku", "locked",
        "dikunci", "terminated", "ditamatkan",
    ]

    VERIFICATION = [
        "verify", "sahkan", "confirm", "pengesahan",
        "otp", "pin", "tac", "password", "kata laluan",
        "click here", "klik sini", "tap here", "tekan sini",
        "update your", "kemaskini", "log in", "masuk",
        "ssn", "ic number", "nombor ic", "identity",
    ]

    GREED = [
        "congratulations", "tahniah", "winner", "pemenang",
        "won", "menang", "prize", "hadiah", "reward", "ganjaran",
        "free", "percuma", "bonus", "lucky", "bertuah",
        "selected", "terpilih", "exclusive", "eksklusif",
    ]

    URL_PATTERN = re.compile(
        r'(https?://[^\s]+|www\.[^\s]+|bit\.ly/[^\s]+|tinyurl\.com/[^\s]+)',
        re.IGNORECASE,
    )

    CATEGORY_MAP: Dict[str, str] = {
        "urgency": "phishing",
        "authority": "impersonation",
        "money": "investment",
        "threats": "impersonation",
        "verification": "phishing",
        "greed": "lottery_scam",
    }

    HEADLINE_MEDIUM = "Possible suspicious message detected"
    HEADLINE_LOW = "Low risk message"

    def __init__(self, word_boundaries: bool = False) -> None:
        # Plain substring hits by default; word_boundaries=True stops
        # short keywords firing inside longer words.
        self.word_boundaries = word_boundaries
        # Group order is the tactic order reported to callers
        self._groups: List[Tuple[str, List[Callable[[str], bool]]]] = [
            (name, [_keyword_matcher(kw, word_boundaries) for kw in keywords])
            for name, keywords in (
                ("urgency", self.URGENCY),
                ("authority", self.AUTHORITY),
                ("money", self.MONEY),
                ("threats", self.THREATS),
                ("verification", self.VERIFICATION),
                ("greed", self.GREED),
            )
        ]

    def score(self, text: str) -> Tuple[float, Tuple[str, ...]]:
        """Return (probability in [0,1], ordered tactic tags)."""
        result = self.analyze(text)
        return result.probability, result.tactics

    def analyze(self, text: str) -> HeuristicResult:
        if not text or not text.strip():
            return HeuristicResult(0.0, (), "unknown", False)

        lowered = text.lower()
        matched: Dict[str, int] = {}
        for name, matchers in self._groups:
            count = self._score_group(lowered, matchers)
            if count > 0:
                matched[name] = count

        contains_url = self.URL_PATTERN.search(text) is not None

        raw = sum(min(count, self.MAX_PER_GROUP) for count in matched.values())
        total = raw + (self.URL_BONUS if contains_url else 0) + len(matched)
        probability = min(max(total / self.NORMALIZER, 0.0), 1.0)

        return HeuristicResult(
            probability=probability,
            tactics=tuple(matched),
            category=self._classify(matched),
            contains_url=contains_url,
            group_counts=MappingProxyType(dict(matched)),
        )

    @staticmethod
    def _score_group(lowered: str, matchers: List[Callable[[str], bool]]) -> int:
        """Number of distinct keywords of one group present in the text."""
        return sum(1 for hit in matchers if hit(lowered))

    def _classify(self, matched: Dict[str, int]) -> str:
        """Map the dominant group to a coarse category; ties go to the earlier group."""
        if not matched:
            return "unknown"
        dominant = max(matched, key=matched.get)
        return self.CATEGORY_MAP.get(dominant, "unknown")

    @classmethod
    def build_headline(cls, risk_level: RiskLevel, tactics, contains_url: bool) -> str:
        """Short user-facing headline for a locally labelled result."""
        if risk_level is RiskLevel.LOW:
            return cls.HEADLINE_LOW
        if risk_level is RiskLevel.MEDIUM:
            return cls.HEADLINE_MEDIUM

        tactics = set(tactics)
        if "authority" in tactics and "money" in tactics:
            base = "Potential impersonation scam with payment request"
        elif "authority" in tactics:
            base = "Possible authority impersonation detected"
        elif "money" in tactics and "greed" in tactics:
            base = "Potential investment or prize scam"
        elif "money" in tactics:
            base = "Suspicious payment or money request"
        elif "greed" in tactics:
            base = "Potential prize or reward scam"
        elif "verification" in tactics:
            base = "Suspicious verification or phishing attempt"
        else:
            base = "High-risk scam indicators detected"

        if contains_url:
            return f"{base}, contains a link (check it before opening)"
        return base

