"""
classifier.py — Stage 2 On-Device Char-CNN Scam Classifier
===========================================================

Pure-numpy inference for a small pre-trained character-level CNN.

Architecture:
    ┌────────────┐   ┌──────────────────┐   ┌───────────────┐   ┌──────────────┐
    │ Embedding  │──▶│ Conv1D + ReLU ×N │──▶│ GlobalMaxPool │──▶│ Dense + ReLU │──▶ Dense(1) + sigmoid
    │ (V × E)    │   │ (valid padding)  │   │               │   │ ×M (M ≥ 0)   │
    └────────────┘   └──────────────────┘   └───────────────┘   └──────────────┘

Artifacts (all three loaded once, from one directory):
    model_config.json    — {"seq_len", "threshold", "pad_index", "unk_index", "version"?}
    char_vocab.json      — JSON array, position = token id (0 = pad, 1 = unk)
    charcnn_weights.npz  — embedding, conv{i}.kernel (K, C_in, C_out), conv{i}.bias,
                           dense{i}.kernel (D_in, D_out), dense{i}.bias,
                           output.kernel (D, 1), output.bias (1,)

Failure model:
    - Any missing / malformed artifact, or a warm-up forward pass that does not
      produce a single probability, disables the classifier for its lifetime.
      init_error keeps the reason; loading is never retried.
    - An error inside one score() call is logged and yields None; later calls
      still run.

All weight arrays are read-only after load, so one instance can serve
concurrent score() calls from worker threads without locking.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from guardian.normalizer import normalize

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CONFIG_FILE = "model_config.json"
VOCAB_FILE = "char_vocab.json"
WEIGHTS_FILE = "charcnn_weights.npz"

DEFAULT_SEQ_LEN = 512
DEFAULT_THRESHOLD = 0.35
DEFAULT_PAD_INDEX = 0
DEFAULT_UNK_INDEX = 1


class ArtifactError(Exception):
    """A model artifact is missing, unreadable or inconsistent."""


@dataclass(frozen=True)
class ModelConfig:
    seq_len: int = DEFAULT_SEQ_LEN
    threshold: float = DEFAULT_THRESHOLD
    pad_index: int = DEFAULT_PAD_INDEX
    unk_index: int = DEFAULT_UNK_INDEX
    version: Optional[str] = None

    @classmethod
    def from_dict(cls, raw) -> "ModelConfig":
        if not isinstance(raw, dict):
            raise ArtifactError(f"{CONFIG_FILE} must hold a JSON object")
        try:
            cfg = cls(
                seq_len=int(raw["seq_len"]),
                threshold=float(raw["threshold"]),
                pad_index=int(raw["pad_index"]),
                unk_index=int(raw["unk_index"]),
                version=None if raw.get("version") is None else str(raw["version"]),
            )
        except KeyError as exc:
            raise ArtifactError(f"{CONFIG_FILE} is missing key {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ArtifactError(f"{CONFIG_FILE} has an invalid value: {exc}") from exc

        if cfg.seq_len <= 0:
            raise ArtifactError(f"seq_len must be positive, got {cfg.seq_len}")
        if not 0.0 <= cfg.threshold <= 1.0:
            raise ArtifactError(f"threshold must be in [0, 1], got {cfg.threshold}")
        if cfg.pad_index < 0 or cfg.unk_index < 0:
            raise ArtifactError("pad_index and unk_index must be non-negative")
        return cfg


# ---------------------------------------------------------------------------
# Utility functions (vectorised)
# ---------------------------------------------------------------------------

def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -30, 30)))


def _relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0.0)


# ===================================================================
# Layers
# ===================================================================

class Conv1D:
    """1-D convolution with valid padding followed by ReLU."""

    def __init__(self, kernel: np.ndarray, bias: np.ndarray, name: str) -> None:
        if kernel.ndim != 3:
            raise ArtifactError(f"{name}.kernel must be 3-D (K, C_in, C_out), got {kernel.shape}")
        if bias.shape != (kernel.shape[2],):
            raise ArtifactError(f"{name}.bias shape {bias.shape} does not match kernel {kernel.shape}")
        self.kernel = kernel
        self.bias = bias
        self.width = kernel.shape[0]
        self.in_channels = kernel.shape[1]
        self.out_channels = kernel.shape[2]

    def forward(self, x: np.ndarray) -> np.ndarray:
        # x: (L, C_in) → windows: (L-K+1, C_in, K)
        windows = np.lib.stride_tricks.sliding_window_view(x, self.width, axis=0)
        out = np.einsum("lck,kco->lo", windows, self.kernel) + self.bias
        return _relu(out)


class Dense:
    """Fully-connected layer, optional ReLU."""

    def __init__(self, kernel: np.ndarray, bias: np.ndarray, name: str, activate: bool = True) -> None:
        if kernel.ndim != 2:
            raise ArtifactError(f"{name}.kernel must be 2-D, got {kernel.shape}")
        if bias.shape != (kernel.shape[1],):
            raise ArtifactError(f"{name}.bias shape {bias.shape} does not match kernel {kernel.shape}")
        self.kernel = kernel
        self.bias = bias
        self.activate = activate

    def forward(self, x: np.ndarray) -> np.ndarray:
        out = x @ self.kernel + self.bias
        return _relu(out) if self.activate else out


class CharCNN:
    """Embedding → Conv1D stack → global max pool → Dense stack → sigmoid."""

    def __init__(self, weights: Dict[str, np.ndarray]) -> None:
        if "embedding" not in weights:
            raise ArtifactError("weights are missing 'embedding'")
        self.embedding = weights["embedding"]
        if self.embedding.ndim != 2:
            raise ArtifactError(f"embedding must be 2-D (V, E), got {self.embedding.shape}")

        self.convs: List[Conv1D] = []
        i = 0
        while f"conv{i}.kernel" in weights:
            name = f"conv{i}"
            self.convs.append(Conv1D(weights[f"{name}.kernel"], self._require(weights, f"{name}.bias"), name))
            i += 1
        if not self.convs:
            raise ArtifactError("weights contain no conv layers (expected 'conv0.kernel')")

        self.denses: List[Dense] = []
        i = 0
        while f"dense{i}.kernel" in weights:
            name = f"dense{i}"
            self.denses.append(Dense(weights[f"{name}.kernel"], self._require(weights, f"{name}.bias"), name))
            i += 1

        self.output = Dense(
            self._require(weights, "output.kernel"),
            self._require(weights, "output.bias"),
            "output",
            activate=False,
        )

    @property
    def vocab_rows(self) -> int:
        return self.embedding.shape[0]

    @staticmethod
    def _require(weights: Dict[str, np.ndarray], key: str) -> np.ndarray:
        if key not in weights:
            raise ArtifactError(f"weights are missing '{key}'")
        return weights[key]

    def forward(self, ids: np.ndarray) -> float:
        x = self.embedding[ids]                  # (L, E)
        for conv in self.convs:
            x = conv.forward(x)
        x = x.max(axis=0)                        # (C,)
        for dense in self.denses:
            x = dense.forward(x)
        logit = self.output.forward(x)
        if logit.shape != (1,):
            raise ArtifactError(f"output layer must produce one logit, got shape {logit.shape}")
        return float(_sigmoid(logit)[0])


# ===================================================================
# Artifact loading
# ===================================================================

def load_config(model_dir: str) -> ModelConfig:
    return ModelConfig.from_dict(_read_json(os.path.join(model_dir, CONFIG_FILE)))


def load_vocab(model_dir: str) -> Dict[str, int]:
    """Read the vocabulary array; a token's id is its position."""
    raw = _read_json(os.path.join(model_dir, VOCAB_FILE))
    if not isinstance(raw, list) or not raw:
        raise ArtifactError(f"{VOCAB_FILE} must be a non-empty JSON array")
    vocab: Dict[str, int] = {}
    for idx, token in enumerate(raw):
        if not isinstance(token, str):
            raise ArtifactError(f"{VOCAB_FILE} entry {idx} is not a string")
        vocab.setdefault(token, idx)
    return vocab


def load_weights(model_dir: str) -> Dict[str, np.ndarray]:
    path = os.path.join(model_dir, WEIGHTS_FILE)
    try:
        with np.load(path, allow_pickle=False) as data:
            weights = {key: np.array(data[key], dtype=np.float32) for key in data.files}
    except FileNotFoundError as exc:
        raise ArtifactError(f"missing {WEIGHTS_FILE} in {model_dir}") from exc
    except (OSError, ValueError) as exc:
        raise ArtifactError(f"cannot read {WEIGHTS_FILE}: {exc}") from exc
    for arr in weights.values():
        arr.setflags(write=False)
    return weights


def _read_json(path: str):
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ArtifactError(f"missing {os.path.basename(path)}") from exc
    except (OSError, ValueError) as exc:
        raise ArtifactError(f"cannot read {os.path.basename(path)}: {exc}") from exc


# ===================================================================
# Public classifier
# ===================================================================

class ScamClassifier:
    """Stage 2 scorer. Check is_available, or just treat a None score as "no opinion".

    Usage::

        clf = ScamClassifier("models")
        prob = clf.score("Your parcel is held, pay RM5 at ...")   # float or None
    """

    def __init__(self, model_dir: str) -> None:
        self.model_dir = model_dir
        self.config = ModelConfig()
        self.vocab: Dict[str, int] = {}
        self.init_error: Optional[str] = None
        self._model: Optional[CharCNN] = None

        try:
            config = load_config(model_dir)
            vocab = load_vocab(model_dir)
            model = CharCNN(load_weights(model_dir))
            self._check_indices(config, vocab, model)

            self.config = config
            self.vocab = vocab
            self._model = model

            # Warm-up pass catches kernel/sequence shape mismatches now, not per call
            self._forward(np.full(config.seq_len, config.pad_index, dtype=np.int64))

            logger.info(
                f"ScamClassifier ready: seq_len={config.seq_len} "
                f"threshold={config.threshold} vocab_size={len(vocab)} "
                f"conv_layers={len(model.convs)} dense_layers={len(model.denses)}"
            )
        except Exception as exc:
            self._model = None
            self.init_error = str(exc) or exc.__class__.__name__
            logger.error(f"ScamClassifier failed to load from '{model_dir}', Stage 2 disabled: {self.init_error}")

    @property
    def is_available(self) -> bool:
        return self._model is not None

    @property
    def threshold(self) -> float:
        return self.config.threshold

    def tokenize(self, text: str) -> np.ndarray:
        """Normalize, truncate / right-pad to seq_len, map chars to ids."""
        cfg = self.config
        ids = np.full(cfg.seq_len, cfg.pad_index, dtype=np.int64)
        normalized = normalize(text or "")[: cfg.seq_len]
        for i, ch in enumerate(normalized):
            ids[i] = self.vocab.get(ch, cfg.unk_index)
        return ids

    def score(self, text: str) -> Optional[float]:
        """Scam probability in [0, 1], or None when Stage 2 is unavailable."""
        if self._model is None:
            return None
        try:
            return self._forward(self.tokenize(text))
        except Exception as exc:
            logger.warning(f"ScamClassifier inference failed: {exc}")
            return None

    def is_scam(self, text: str) -> Optional[bool]:
        prob = self.score(text)
        if prob is None:
            return None
        return prob >= self.config.threshold

    def _forward(self, ids: np.ndarray) -> float:
        prob = self._model.forward(ids)
        if not np.isfinite(prob):
            raise ArtifactError("model produced a non-finite probability")
        return min(max(prob, 0.0), 1.0)

    @staticmethod
    def _check_indices(config: ModelConfig, vocab: Dict[str, int], model: CharCNN) -> None:
        rows = model.vocab_rows
        highest = max(max(vocab.values()), config.pad_index, config.unk_index)
        if highest >= rows:
            raise ArtifactError(
                f"token id {highest} out of range for embedding with {rows} rows"
            )
        if model.convs[0].in_channels != model.embedding.shape[1]:
            raise ArtifactError(
                f"conv0 expects {model.convs[0].in_channels} channels, "
                f"embedding has {model.embedding.shape[1]}"
            )
