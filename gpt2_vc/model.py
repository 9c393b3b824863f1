"""
GPT-2 Model Architecture: Complete Inference Implementation from Scratch.

This is the CORE of the project. Every sublayer of the GPT-2 decoder is
written out in terms of the primitives in gpt2_vc.ops (matmul, softmax,
causal mask, GELU). No torch.nn layer does the math for us; nn.Module and
nn.Parameter are only used as containers that own and name the weights.

ARCHITECTURE OVERVIEW (bottom-up reading order):
  1. LayerNorm          : Per-position normalization with learned γ, β
  2. AttentionHead      : One scaled dot-product attention head
  3. MultiHeadAttention : n_heads heads, concatenated, then W_o
  4. FeedForward        : Linear → GELU → Linear
  5. TransformerBlock   : Pre-LN block with two residual connections
  6. GPT2               : Embeddings + N blocks + final norm + LM head,
                          plus autoregressive generation

SHAPES:
  The model runs one sequence at a time. Hidden states are 2-D matrices of
  shape (seq_len, d_model). LayerNorm additionally accepts a 3-D batch
  (batch, seq_len, d_model).

WEIGHT LOADING:
  Every component has a set_weights / set_params operation. Incoming tensors
  are validated against the expected shapes FIRST and only then copied in,
  so a bad tensor never leaves a component half-overwritten. GPT2.set_weights
  extends this to the whole model: all tensors for all components are
  checked before any of them is assigned.

REFERENCES:
  - GPT-2: Radford et al., "Language Models are Unsupervised Multitask Learners" (2019)
  - Transformer: Vaswani et al., "Attention Is All You Need" (2017)
  - LayerNorm: Ba et al., "Layer Normalization" (2016)
  - GELU: Hendrycks & Gimpel, "Gaussian Error Linear Units" (2016)
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import torch
import torch.nn as nn

from gpt2_vc.config import ModelConfig
from gpt2_vc.embedding import (
    TokenEmbedding,
    LearnedPositionalEncoding,
    TokenIds,
    as_token_list,
    build_positional_encoding,
)
from gpt2_vc.errors import ConfigurationError, DimensionMismatchError, SequenceTooLongError
from gpt2_vc import ops
from gpt2_vc.sampling import context_window, sample_token, validate_sampling_args


# A validated (destination parameter, new value) pair waiting to be copied.
StagedWeight = Tuple[nn.Parameter, torch.Tensor]


def _stage(param: nn.Parameter, value, name: str) -> StagedWeight:
    return param, ops.check_shape(value, param.shape, name)


def _assign(staged: List[StagedWeight]) -> None:
    with torch.no_grad():
        for param, value in staged:
            param.copy_(value)


def _reject_unknown(weights: dict, allowed: Tuple[str, ...], where: str) -> None:
    unknown = set(weights) - set(allowed)
    if unknown:
        raise ValueError(f"{where}: unknown weight keys {sorted(unknown)}, expected {allowed}")


# ═══════════════════════════════════════════════════════════════════════════
# 1. Layer Normalization
# ═══════════════════════════════════════════════════════════════════════════

class LayerNorm(nn.Module):
    """
    Layer Normalization (Ba et al., 2016).

    WHAT IT DOES:
      Each feature vector v (one position) is standardized on its own:

        mean = (1/d) Σ v_i
        var  = (1/d) Σ (v_i - mean)²         ← population variance
        LN(v) = γ ⊙ (v - mean) / √(var + ε) + β

      After the standardization step (before γ, β) every vector has mean 0
      and variance ≈ 1, whatever the scale of the incoming residual stream.
      γ (init 1) and β (init 0) let the model choose a different scale/shift
      per feature.

    WHY GPT-2 NEEDS IT:
      The residual stream is a running sum of every sublayer's output, so
      its magnitude grows with depth. Normalizing the INPUT of each sublayer
      (pre-norm) keeps attention scores and FFN activations in a sane range.

    CALLING CONVENTIONS:
      forward_sequence(x): x of shape (seq_len, d_model)
      forward_batch(x):    x of shape (batch, seq_len, d_model)
      forward(x):          dispatches on the tensor rank (2 or 3)
      The output always has the same shape as the input.
    """

    def __init__(self, d_model: int, eps: float = 1e-5):
        super().__init__()
        self.d_model = d_model
        self.eps = eps
        self.gamma = nn.Parameter(torch.ones(d_model))
        self.beta = nn.Parameter(torch.zeros(d_model))

    def _normalize(self, x: torch.Tensor) -> torch.Tensor:
        mean = x.mean(dim=-1, keepdim=True)
        variance = (x - mean).pow(2).mean(dim=-1, keepdim=True)
        std = torch.sqrt(variance + self.eps)
        return self.gamma * ((x - mean) / std) + self.beta

    def _check(self, x: torch.Tensor, rank: int, expected: tuple) -> None:
        if x.dim() != rank or x.shape[-1] != self.d_model:
            raise DimensionMismatchError("layer_norm", expected, x.shape)

    def forward_sequence(self, x: torch.Tensor) -> torch.Tensor:
        """Normalize a (seq_len, d_model) matrix."""
        self._check(x, 2, ("seq_len", self.d_model))
        return self._normalize(x)

    def forward_batch(self, x: torch.Tensor) -> torch.Tensor:
        """Normalize a (batch, seq_len, d_model) tensor."""
        self._check(x, 3, ("batch", "seq_len", self.d_model))
        return self._normalize(x)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if x.dim() == 3:
            return self.forward_batch(x)
        return self.forward_sequence(x)

    def _stage_params(self, gamma=None, beta=None, prefix: str = "layer_norm") -> List[StagedWeight]:
        staged = []
        if gamma is not None:
            staged.append(_stage(self.gamma, gamma, f"{prefix}.gamma"))
        if beta is not None:
            staged.append(_stage(self.beta, beta, f"{prefix}.beta"))
        return staged

    def _stage_weights(self, weights: dict, prefix: str = "layer_norm") -> List[StagedWeight]:
        _reject_unknown(weights, ("gamma", "beta"), prefix)
        return self._stage_params(weights.get("gamma"), weights.get("beta"), prefix)

    def set_params(self, gamma: torch.Tensor, beta: torch.Tensor) -> None:
        """Replace γ and β (each of shape (d_model,))."""
        _assign(self._stage_params(gamma, beta))


# ═══════════════════════════════════════════════════════════════════════════
# 2. Scaled Dot-Product Attention Head
# ═══════════════════════════════════════════════════════════════════════════

class AttentionHead(nn.Module):
    """
    A single scaled dot-product attention head.

    Three projections turn each position into three vectors:
      Q (Query):  "What am I looking for?"
      K (Key):    "What do I contain?"
      V (Value):  "What do I hand over if you attend to me?"

    MATH (X is (seq_len × d_model)):
      Q = X·W_q,  K = X·W_k,  V = X·W_v          each (seq_len × d_k)
      scores  = Q·Kᵀ / √d_k                        (seq_len × seq_len)
      scores += causal_mask                        (optional)
      weights = softmax(scores) row by row
      output  = weights·V                          (seq_len × d_v)

    The √d_k divisor keeps the dot products at unit scale. Without it, the
    scores grow with d_k and softmax saturates into a near one-hot vector.
    """

    def __init__(
        self,
        d_model: int,
        d_k: int,
        d_v: int,
        generator: Optional[torch.Generator] = None,
    ):
        super().__init__()
        self.d_model = d_model
        self.d_k = d_k
        self.d_v = d_v
        self.w_q = nn.Parameter(ops.initialize_weights(d_model, d_k, generator))
        self.w_k = nn.Parameter(ops.initialize_weights(d_model, d_k, generator))
        self.w_v = nn.Parameter(ops.initialize_weights(d_model, d_v, generator))

    def forward(self, x: torch.Tensor, causal: bool = True, return_weights: bool = False):
        """
        Args:
            x: Input of shape (seq_len, d_model).
            causal: If True, position i only attends to positions j ≤ i.
            return_weights: Also return the (seq_len × seq_len) attention weights.

        Returns:
            Head output of shape (seq_len, d_v), or (output, weights).
        """
        q = ops.matmul(x, self.w_q)
        k = ops.matmul(x, self.w_k)
        v = ops.matmul(x, self.w_v)

        scores = ops.scale(ops.matmul(q, ops.transpose(k)), 1.0 / math.sqrt(self.d_k))
        if causal:
            scores = ops.apply_mask(scores, ops.causal_mask(x.shape[0]))

        weights = ops.batch_softmax(scores)
        output = ops.matmul(weights, v)
        if return_weights:
            return output, weights
        return output

    def _stage_weights(self, weights: dict, prefix: str) -> List[StagedWeight]:
        _reject_unknown(weights, ("w_q", "w_k", "w_v"), prefix)
        return [
            _stage(getattr(self, name), weights[name], f"{prefix}.{name}")
            for name in ("w_q", "w_k", "w_v")
            if name in weights
        ]


# ═══════════════════════════════════════════════════════════════════════════
# 3. Multi-Head Attention
# ═══════════════════════════════════════════════════════════════════════════

class MultiHeadAttention(nn.Module):
    """
    Multi-head self-attention: n_heads independent heads plus a shared W_o.

    WHY MULTIPLE HEADS?
      One head produces ONE attention pattern per position. Splitting d_model
      into n_heads slices of width d_k = d_model / n_heads lets the layer
      attend to several things at once (the previous token, a matching
      bracket, the subject of the sentence, ...) for the same cost as a
      single full-width head.

    DATA FLOW:
      X (seq, d_model)
        ├─→ head 0 → (seq, d_k) ─┐
        ├─→ head 1 → (seq, d_k) ─┤ concat along features, head 0 first
        │   ...                  │  → (seq, n_heads·d_k) = (seq, d_model)
        └─→ head H-1 → (seq,d_k)─┘
                                   → ·W_o → (seq, d_model)

    The causal flag is threaded through from the model. GPT-2 always uses
    causal attention; causal=False gives encoder-style attention where every
    position sees every other position.
    """

    def __init__(
        self,
        d_model: int,
        n_heads: int,
        generator: Optional[torch.Generator] = None,
    ):
        super().__init__()
        if d_model % n_heads != 0:
            raise ConfigurationError(
                f"d_model ({d_model}) must be divisible by n_heads ({n_heads})"
            )
        self.d_model = d_model
        self.n_heads = n_heads
        self.d_k = d_model // n_heads
        self.d_v = d_model // n_heads

        self.heads = nn.ModuleList([
            AttentionHead(d_model, self.d_k, self.d_v, generator)
            for _ in range(n_heads)
        ])
        self.w_o = nn.Parameter(ops.initialize_weights(d_model, d_model, generator))

    def concatenate_heads(self, head_outputs: List[torch.Tensor]) -> torch.Tensor:
        """Concatenate per-head (seq, d_v) outputs into (seq, d_model), head 0 first."""
        concatenated = torch.cat(head_outputs, dim=-1)
        if concatenated.shape[-1] != self.d_model:
            raise DimensionMismatchError(
                "concatenate_heads", (concatenated.shape[0], self.d_model), concatenated.shape
            )
        return concatenated

    def forward(self, x: torch.Tensor, causal: bool = True) -> torch.Tensor:
        """
        Args:
            x: Input of shape (seq_len, d_model).
            causal: Apply the causal mask in every head.

        Returns:
            Output of shape (seq_len, d_model).
        """
        head_outputs = [head(x, causal) for head in self.heads]
        return ops.matmul(self.concatenate_heads(head_outputs), self.w_o)

    def attention_weights(self, x: torch.Tensor, causal: bool = True) -> List[torch.Tensor]:
        """Per-head (seq_len × seq_len) attention weight matrices, for analysis."""
        return [head(x, causal, return_weights=True)[1] for head in self.heads]

    def _stage_weights(self, weights: dict, prefix: str = "attention") -> List[StagedWeight]:
        _reject_unknown(weights, ("heads", "w_o"), prefix)
        staged = []
        if "heads" in weights:
            head_weights = weights["heads"]
            if len(head_weights) != self.n_heads:
                raise DimensionMismatchError(f"{prefix}.heads", (self.n_heads,), (len(head_weights),))
            for i, (head, hw) in enumerate(zip(self.heads, head_weights)):
                staged.extend(head._stage_weights(hw, f"{prefix}.heads.{i}"))
        if "w_o" in weights:
            staged.append(_stage(self.w_o, weights["w_o"], f"{prefix}.w_o"))
        return staged

    def set_weights(self, weights: dict) -> None:
        """
        Load pretrained attention weights.

        Args:
            weights: {"heads": [{"w_q", "w_k", "w_v"}, ...], "w_o"}. Any subset
                of keys may be given; every tensor must have the exact shape
                of the tensor it replaces.
        """
        _assign(self._stage_weights(weights))


# ═══════════════════════════════════════════════════════════════════════════
# 4. Feed-Forward Network
# ═══════════════════════════════════════════════════════════════════════════

class FeedForward(nn.Module):
    """
    Position-wise feed-forward network with GELU.

      FFN(x) = GELU(x·W₁ + b₁)·W₂ + b₂

      W₁: (d_model × d_ff)   expand   (d_ff is 4 × d_model in GPT-2)
      W₂: (d_ff × d_model)   project back

    Attention MOVES information between positions; the FFN PROCESSES the
    information at each position on its own. It is written as whole-matrix
    products for speed, but row t of the output depends only on row t of
    the input.
    """

    def __init__(
        self,
        d_model: int,
        d_ff: int,
        generator: Optional[torch.Generator] = None,
    ):
        super().__init__()
        self.d_model = d_model
        self.d_ff = d_ff
        self.w1 = nn.Parameter(ops.initialize_weights(d_model, d_ff, generator))
        self.b1 = nn.Parameter(torch.zeros(d_ff))
        self.w2 = nn.Parameter(ops.initialize_weights(d_ff, d_model, generator))
        self.b2 = nn.Parameter(torch.zeros(d_model))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        hidden = ops.batch_gelu(ops.add_bias(ops.matmul(x, self.w1), self.b1))
        return ops.add_bias(ops.matmul(hidden, self.w2), self.b2)

    def _stage_weights(self, weights: dict, prefix: str = "feed_forward") -> List[StagedWeight]:
        names = ("w1", "b1", "w2", "b2")
        _reject_unknown(weights, names, prefix)
        return [
            _stage(getattr(self, name), weights[name], f"{prefix}.{name}")
            for name in names
            if name in weights
        ]

    def set_weights(self, weights: dict) -> None:
        """Load any subset of {"w1", "b1", "w2", "b2"}."""
        _assign(self._stage_weights(weights))


# ═══════════════════════════════════════════════════════════════════════════
# 5. Transformer Block
# ═══════════════════════════════════════════════════════════════════════════

class TransformerBlock(nn.Module):
    """
    A single GPT-2 decoder layer.

    ARCHITECTURE (pre-normalization):
      Input x
        │
        ├─→ LayerNorm₁ ─→ MultiHeadAttention ─→ + ─→ a
        │                                       │
        └───────────────────────────────────────┘  ← residual
        │
        ├─→ LayerNorm₂ ─→ FeedForward ─→ + ─→ y
        │                                │
        └────────────────────────────────┘  ← residual

      a = x + MHA(LN₁(x))
      y = a + FFN(LN₂(a))

    Each block owns its own two LayerNorms, its attention and its FFN;
    nothing is shared between blocks or between the two norm positions.
    """

    def __init__(
        self,
        d_model: int,
        n_heads: int,
        d_ff: int,
        dropout: float = 0.0,
        norm_eps: float = 1e-5,
        generator: Optional[torch.Generator] = None,
    ):
        super().__init__()
        self.d_model = d_model
        # Kept for config compatibility; no dropout is applied at inference.
        self.dropout = dropout

        self.ln_1 = LayerNorm(d_model, norm_eps)
        self.attention = MultiHeadAttention(d_model, n_heads, generator)
        self.ln_2 = LayerNorm(d_model, norm_eps)
        self.feed_forward = FeedForward(d_model, d_ff, generator)

    def forward(self, x: torch.Tensor, causal: bool = True) -> torch.Tensor:
        """
        Args:
            x: Hidden states of shape (seq_len, d_model).
            causal: Passed through to the attention sublayer.

        Returns:
            New hidden states of shape (seq_len, d_model).
        """
        attn_output = self.attention(self.ln_1.forward_sequence(x), causal)
        x = ops.add(x, attn_output)

        ffn_output = self.feed_forward(self.ln_2.forward_sequence(x))
        return ops.add(x, ffn_output)

    def _stage_weights(self, weights: dict, prefix: str = "block") -> List[StagedWeight]:
        _reject_unknown(weights, ("attention", "feed_forward", "ln_1", "ln_2"), prefix)
        staged = []
        if "attention" in weights:
            staged.extend(self.attention._stage_weights(weights["attention"], f"{prefix}.attention"))
        if "feed_forward" in weights:
            staged.extend(
                self.feed_forward._stage_weights(weights["feed_forward"], f"{prefix}.feed_forward")
            )
        for name in ("ln_1", "ln_2"):
            if name in weights:
                staged.extend(getattr(self, name)._stage_weights(weights[name], f"{prefix}.{name}"))
        return staged

    def set_weights(self, weights: dict) -> None:
        """Load any subset of {"attention", "feed_forward", "ln_1", "ln_2"}."""
        _assign(self._stage_weights(weights))


# ═══════════════════════════════════════════════════════════════════════════
# 6. Complete GPT-2 Model
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ModelOutput:
    """Result of a GPT2 forward pass."""
    logits: torch.Tensor                          # (seq_len, vocab_size)
    hidden_states: torch.Tensor                   # (seq_len, d_model), after the final norm
    probabilities: Optional[torch.Tensor] = None  # (seq_len, vocab_size), if requested


class GPT2(nn.Module):
    """
    Complete GPT-2 decoder-only language model (inference only).

    FULL ARCHITECTURE:
      Token IDs (seq_len,)
        │
        ▼
      Token Embedding + Positional Encoding  → (seq_len, d_model)
        │
        ▼
      N × TransformerBlock (causal)
        │
        ▼
      Final LayerNorm                        → hidden_states
        │
        ▼
      LM head: ·W_lm + b_lm                  → logits (seq_len, vocab_size)

    Logit row t scores every vocabulary entry as the token at position t+1.
    The LAST row is the prediction for the token following the sequence,
    which is what generation samples from.

    RANDOMNESS:
      Weight initialization and sampling draw from explicitly passed
      torch.Generator objects, never from hidden global state, so a fixed
      seed reproduces both the weights and the sampled sequence.

    All parameters are created with requires_grad=False: this engine has no
    training path, and weights only change through set_weights().
    """

    def __init__(self, config: ModelConfig, generator: Optional[torch.Generator] = None):
        """
        Args:
            config: Validated ModelConfig.
            generator: Optional seeded generator for weight initialization.
        """
        super().__init__()
        self.config = config

        self.token_embedding = TokenEmbedding(config.vocab_size, config.d_model, generator)
        self.positional_encoding = build_positional_encoding(config, generator)

        self.blocks = nn.ModuleList([
            TransformerBlock(
                config.d_model,
                config.n_heads,
                config.d_ff,
                config.dropout,
                config.norm_eps,
                generator,
            )
            for _ in range(config.n_layers)
        ])

        self.final_layer_norm = LayerNorm(config.d_model, config.norm_eps)

        # Language-model head: d_model → vocab_size
        self.lm_head = nn.Parameter(
            ops.initialize_weights(config.d_model, config.vocab_size, generator)
        )
        self.lm_bias = nn.Parameter(torch.zeros(config.vocab_size))

        self.requires_grad_(False)

    # ── Forward pass ──────────────────────────────────────────────────────

    def forward(self, token_ids: TokenIds, return_logits: bool = True) -> ModelOutput:
        """
        Run the full model over one sequence.

        Args:
            token_ids: Sequence of ints in [0, vocab_size), at most max_seq_len long.
            return_logits: If False, also compute the softmax probabilities
                for every position.

        Returns:
            ModelOutput with logits (seq_len, vocab_size), hidden_states
            (seq_len, d_model) and, if requested, probabilities.
        """
        ids = as_token_list(token_ids)
        seq_len = len(ids)
        if seq_len > self.config.max_seq_len:
            raise SequenceTooLongError(seq_len, self.config.max_seq_len, "forward")
        if seq_len == 0:
            raise ValueError("forward: token_ids must contain at least one token")

        # ── Step 1: Embeddings ─────────────────────────────────────────────
        h = ops.add(self.token_embedding(ids), self.positional_encoding(seq_len))

        # ── Step 2: Transformer blocks, always causal ──────────────────────
        for block in self.blocks:
            h = block(h, causal=True)

        # ── Step 3: Final normalization ────────────────────────────────────
        hidden_states = self.final_layer_norm.forward_sequence(h)

        # ── Step 4: LM head ────────────────────────────────────────────────
        logits = ops.add_bias(ops.matmul(hidden_states, self.lm_head), self.lm_bias)

        probabilities = None if return_logits else ops.batch_softmax(logits)
        return ModelOutput(logits=logits, hidden_states=hidden_states, probabilities=probabilities)

    # ── Generation ────────────────────────────────────────────────────────

    @torch.inference_mode()
    def generate_next_token(
        self,
        token_ids: TokenIds,
        temperature: float = 1.0,
        top_k: Optional[int] = None,
        generator: Optional[torch.Generator] = None,
    ) -> int:
        """
        Sample the token that follows token_ids.

        Pipeline: last logits row → top-k filter (optional) → / temperature
        → softmax → inverse-CDF draw. See gpt2_vc.sampling for each step.

        Args:
            token_ids: Current context (at most max_seq_len tokens).
            temperature: > 0. Below 1 sharpens, above 1 flattens.
            top_k: Keep only the k highest logits (None = whole vocabulary).
            generator: Random source for the draw.

        Returns:
            The sampled token id.
        """
        validate_sampling_args(temperature, top_k)
        logits = self.forward(token_ids, return_logits=True).logits
        return sample_token(logits[-1], temperature, top_k, generator)

    @torch.inference_mode()
    def generate(
        self,
        initial_tokens: TokenIds,
        max_length: int,
        temperature: float = 1.0,
        top_k: Optional[int] = None,
        generator: Optional[torch.Generator] = None,
    ) -> List[int]:
        """
        Autoregressive generation of exactly max_length new tokens.

        Each step feeds at most the last max_seq_len tokens (a sliding
        window) to the model; the returned list keeps the full history,
        initial tokens first. There is no end-of-sequence stop.

        Returns:
            List of len(initial_tokens) + max_length token ids.
        """
        tokens = as_token_list(initial_tokens)
        if not tokens:
            raise ValueError("generate: initial_tokens must contain at least one token")
        if max_length < 0:
            raise ValueError(f"generate: max_length must be >= 0, got {max_length}")
        validate_sampling_args(temperature, top_k)

        for _ in range(max_length):
            context = context_window(tokens, self.config.max_seq_len)
            tokens.append(self.generate_next_token(context, temperature, top_k, generator))
        return tokens

    # ── Introspection ─────────────────────────────────────────────────────

    def get_parameter_count(self) -> int:
        """
        Closed-form parameter count.

          embeddings:  vocab·d (+ max_seq_len·d for learned positions)
          per block:   attention 4·d²  (Q, K, V over all heads, plus W_o)
                       FFN       2·d·d_ff + d_ff + d
                       norms     4·d
          final norm:  2·d
          LM head:     d·vocab + vocab
        """
        c = self.config
        d = c.d_model
        count = c.vocab_size * d
        if c.positional_encoding == "learned":
            count += c.max_seq_len * d
        per_block = 4 * d * d + (2 * d * c.d_ff + c.d_ff + d) + 4 * d
        count += c.n_layers * per_block
        count += 2 * d
        count += d * c.vocab_size + c.vocab_size
        return count

    # ── Weight loading ────────────────────────────────────────────────────

    def set_weights(self, weights: dict) -> None:
        """
        Load pretrained weights for any subset of the model.

        Args:
            weights: {
                "token_embedding":     (vocab_size, d_model),
                "positional_encoding": (max_seq_len, d_model)  [learned only],
                "blocks":              [block weight dicts, one per layer],
                "final_layer_norm":    {"gamma": (d,), "beta": (d,)},
                "lm_head":             (d_model, vocab_size),
                "lm_bias":             (vocab_size,),
            }

        Every tensor is validated before ANY of them is copied in. A shape
        error leaves the model exactly as it was.
        """
        allowed = (
            "token_embedding", "positional_encoding", "blocks",
            "final_layer_norm", "lm_head", "lm_bias",
        )
        _reject_unknown(weights, allowed, "model")

        staged: List[StagedWeight] = []
        if "token_embedding" in weights:
            staged.append(_stage(self.token_embedding.weight, weights["token_embedding"], "token_embedding"))
        if "positional_encoding" in weights:
            if not isinstance(self.positional_encoding, LearnedPositionalEncoding):
                raise ValueError("model: sinusoidal positional encoding has no weights to load")
            staged.append(_stage(
                self.positional_encoding.weight, weights["positional_encoding"], "positional_encoding"
            ))
        if "blocks" in weights:
            blocks = weights["blocks"]
            if len(blocks) != len(self.blocks):
                raise DimensionMismatchError("blocks", (len(self.blocks),), (len(blocks),))
            for i, (block, bw) in enumerate(zip(self.blocks, blocks)):
                staged.extend(block._stage_weights(bw, f"blocks.{i}"))
        if "final_layer_norm" in weights:
            staged.extend(self.final_layer_norm._stage_weights(weights["final_layer_norm"], "final_layer_norm"))
        if "lm_head" in weights:
            staged.append(_stage(self.lm_head, weights["lm_head"], "lm_head"))
        if "lm_bias" in weights:
            staged.append(_stage(self.lm_bias, weights["lm_bias"], "lm_bias"))

        _assign(staged)
