"""Pytest configuration and fixtures."""

import json
import math
from typing import List, Optional

import numpy as np
import pytest

from guardian.detector import HeuristicScorer
from guardian.fusion import EscalationGate, WeightedSumFusion
from guardian.memory import DedupCache
from guardian.models import Explanation
from guardian.orchestrator import TriageOrchestrator
from guardian.service import GuardianService
from guardian.store import InMemoryAlertStore

SCAM_TEXT = "URGENT: your account has been suspended, verify now at http://bit.ly/x"
BENIGN_TEXT = "Happy birthday! Hope you have a great day."
VERIFY_TEXT = "Please verify your details"

VOCAB = ["<pad>", "<unk>"] + list("abcdefghijklmnopqrstuvwxyz0123456789 .,:!<>")


def write_model(
    model_dir,
    seq_len: int = 16,
    threshold: float = 0.35,
    output_bias: float = 0.0,
    embed_dim: int = 4,
    conv_width: int = 3,
    vocab: Optional[List[str]] = None,
    embedding_rows: Optional[int] = None,
    skip: tuple = (),
):
    """Write a tiny char-CNN whose output is exactly sigmoid(output_bias)."""
    model_dir.mkdir(parents=True, exist_ok=True)
    vocab = vocab if vocab is not None else VOCAB
    rows = embedding_rows if embedding_rows is not None else len(vocab)
    rng = np.random.default_rng(7)

    if "config" not in skip:
        (model_dir / "model_config.json").write_text(json.dumps({
            "seq_len": seq_len,
            "threshold": threshold,
            "pad_index": 0,
            "unk_index": 1,
            "version": "test",
        }))
    if "vocab" not in skip:
        (model_dir / "char_vocab.json").write_text(json.dumps(vocab))
    if "weights" not in skip:
        np.savez(
            model_dir / "charcnn_weights.npz",
            **{
                "embedding": rng.normal(0, 0.5, (rows, embed_dim)).astype(np.float32),
                "conv0.kernel": rng.normal(0, 0.5, (conv_width, embed_dim, 8)).astype(np.float32),
                "conv0.bias": np.zeros(8, dtype=np.float32),
                "dense0.kernel": rng.normal(0, 0.5, (8, 4)).astype(np.float32),
                "dense0.bias": np.zeros(4, dtype=np.float32),
                "output.kernel": np.zeros((4, 1), dtype=np.float32),
                "output.bias": np.array([output_bias], dtype=np.float32),
            },
        )
    return model_dir


def logit(p: float) -> float:
    return math.log(p / (1.0 - p))


class FakeClassifier:
    """Stage 2 stand-in returning a fixed score (None = unavailable)."""

    def __init__(self, value: Optional[float] = 0.5, error: Optional[Exception] = None):
        self.value = value
        self.error = error
        self.calls = 0

    @property
    def is_available(self) -> bool:
        return self.value is not None

    def score(self, text: str) -> Optional[float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


class FakeCloud:
    """Stage 3 stand-in that records requests."""

    def __init__(self, response: Optional[Explanation] = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.requests = []

    async def confirm(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


class RecordingPresenter:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.warnings = []

    def post_warning(self, alert_id, headline, risk_level, origin):
        self.warnings.append((alert_id, headline, risk_level, origin))
        if self.error is not None:
            raise self.error


def make_orchestrator(classifier=None, cloud=None, failure_policy=None, fusion=None):
    return TriageOrchestrator(
        scorer=HeuristicScorer(),
        classifier=classifier,
        fusion=fusion or WeightedSumFusion(0.20),
        gate=EscalationGate(0.30, 0.75),
        cloud=cloud,
        failure_policy=failure_policy,
    )


def make_service(orchestrator, presenter=None):
    return GuardianService(
        orchestrator=orchestrator,
        store=InMemoryAlertStore(),
        dedup=DedupCache(capacity=50, window_seconds=600),
        presenter=presenter or RecordingPresenter(),
    )


@pytest.fixture
def scorer():
    return HeuristicScorer()


@pytest.fixture
def model_dir(tmp_path):
    return write_model(tmp_path / "models")
