"""
Configuration for the GPT-2 model.

This module is the SINGLE SOURCE OF TRUTH for the architecture
hyperparameters. Every component receives its dimensions from a ModelConfig
(or from values derived from one), so there are no magic numbers scattered
through the model code.

We use a frozen dataclass because:
  1. Immutability: the config is resolved and validated ONCE at construction.
     A model never sees a half-updated configuration.
  2. Explicit defaults: d_ff (4 × d_model) and dropout (0.0) are filled in by
     __post_init__, not looked up lazily wherever they are needed.
  3. Serialization: dataclasses.asdict() makes JSON round-trips trivial.

ARCHITECTURE OVERVIEW (GPT-2, Radford et al., 2019):
  - Decoder-only transformer (no encoder, no cross-attention)
  - Learned absolute position embeddings (sinusoidal also supported)
  - Pre-normalization with LayerNorm (mean + variance, learned γ and β)
  - GELU activation in the FFN, hidden size 4 × d_model by default
  - Standard multi-head attention (every head has its own Q, K, V)
  - Bias on the FFN layers and on the language-model head
"""

from dataclasses import dataclass, asdict, replace
from typing import Optional
import json
import os

from gpt2_vc.errors import ConfigurationError


POSITIONAL_ENCODINGS = ("learned", "sinusoidal")


@dataclass(frozen=True)
class ModelConfig:
    """
    Architecture hyperparameters for the GPT-2 model.

    PARAMETER COUNT BREAKDOWN (GPT-2 small: vocab 50257, d_model 768,
    12 layers, 12 heads, d_ff 3072, max_seq_len 1024):
    ─────────────────────────────────────────────
    Token embedding (vocab × d_model):          38,597,376
    Position embedding (max_seq_len × d_model):    786,432
    Per layer:
      Attention Q, K, V (all heads) + W_o:       2,359,296
      FFN W1, b1, W2, b2:                        4,722,432
      2× LayerNorm (γ, β):                           3,072
    Final LayerNorm:                                 1,536
    LM head (d_model × vocab + vocab):          38,647,633
    ─────────────────────────────────────────────
    TOTAL:                                     163,050,577
    """

    # ── Vocabulary ──────────────────────────────────────────────────────────
    # Number of distinct token ids. Every id passed to the model must lie in
    # [0, vocab_size). The model knows nothing about text; mapping text to ids
    # is the tokenizer's job.
    vocab_size: int = 50257

    # ── Model Dimensions ───────────────────────────────────────────────────
    # Width of the residual stream: every position is a vector of d_model
    # features from the embedding layer all the way to the final norm.
    d_model: int = 768

    # ── Depth ──────────────────────────────────────────────────────────────
    n_layers: int = 12

    # ── Attention Heads ────────────────────────────────────────────────────
    # d_model is split evenly across heads: d_k = d_v = d_model / n_heads.
    n_heads: int = 12

    # ── Feed-Forward Network ───────────────────────────────────────────────
    # Hidden width of the FFN. None means "use the GPT-2 default 4 × d_model".
    d_ff: Optional[int] = None

    # ── Sequence Length ────────────────────────────────────────────────────
    # Number of positions the model can embed. Longer contexts are rejected by
    # forward(); generation slides a window of this many tokens.
    max_seq_len: int = 1024

    # ── Regularization ─────────────────────────────────────────────────────
    # Accepted for compatibility with GPT-2 configs. This is an inference
    # engine, so no dropout mask is ever applied.
    dropout: float = 0.0

    # ── Normalization ──────────────────────────────────────────────────────
    # Epsilon added to the variance inside the square root of LayerNorm.
    norm_eps: float = 1e-5

    # ── Positional Encoding ────────────────────────────────────────────────
    # "learned": a trainable (max_seq_len × d_model) table, as in GPT-2.
    # "sinusoidal": the fixed sin/cos encoding of the original Transformer.
    positional_encoding: str = "learned"

    def __post_init__(self):
        # Resolve defaults once. object.__setattr__ is the sanctioned way to
        # fill a field of a frozen dataclass during initialization.
        if self.d_ff is None:
            object.__setattr__(self, "d_ff", 4 * self.d_model)
        if self.dropout is None:
            object.__setattr__(self, "dropout", 0.0)
        self.validate()

    @property
    def head_dim(self) -> int:
        """Dimension of each attention head (d_k = d_v = d_model / n_heads)."""
        return self.d_model // self.n_heads

    def validate(self) -> None:
        """
        Validate configuration constraints.

        Called from __post_init__, so an invalid ModelConfig can never exist.
        Catching these here gives a clear message instead of a shape error
        deep inside the attention code.
        """
        for name in ("vocab_size", "d_model", "n_layers", "n_heads", "d_ff", "max_seq_len"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.d_model % self.n_heads != 0:
            raise ConfigurationError(
                f"d_model ({self.d_model}) must be divisible by n_heads ({self.n_heads})"
            )
        if not 0.0 <= self.dropout < 1.0:
            raise ConfigurationError(f"dropout must be in [0, 1), got {self.dropout}")
        if self.norm_eps <= 0.0:
            raise ConfigurationError(f"norm_eps must be positive, got {self.norm_eps}")
        if self.positional_encoding not in POSITIONAL_ENCODINGS:
            raise ConfigurationError(
                f"positional_encoding must be one of {POSITIONAL_ENCODINGS}, "
                f"got {self.positional_encoding!r}"
            )

    def with_overrides(self, **changes) -> "ModelConfig":
        """Return a copy with some fields changed (re-validated)."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "ModelConfig":
        """Reconstruct from dictionary."""
        return cls(**d)

    def save(self, path: str) -> None:
        """Save configuration to JSON file."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "ModelConfig":
        """Load configuration from JSON file."""
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))
