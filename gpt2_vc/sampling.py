"""
Sampling policy: turning one row of logits into one token id.

The model outputs logits (raw scores) for every vocabulary token. How we
convert those scores into a single choice is the "sampling strategy".

  1. TOP-K: keep only the K highest logits, set the rest to -inf.
     After softmax the removed tokens have probability exactly 0, which cuts
     off the long tail of unlikely tokens. Dividing by a positive
     temperature never changes which K logits are highest, so the filter
     runs on the raw scores.

  2. TEMPERATURE: logits = logits / temperature
     - temperature < 1.0: sharper distribution → more deterministic
     - temperature > 1.0: flatter distribution → more random
     - temperature → 0:   approaches greedy decoding (argmax)

  3. SOFTMAX: logits → probability distribution.

  4. INVERSE-CDF DRAW: draw r ~ U[0, 1), walk the cumulative distribution in
     index order and return the first token whose cumulative probability
     reaches r.

Applied in that order. Every random draw comes from an explicitly passed
torch.Generator so that sampled sequences can be reproduced with a seed.
"""

from typing import List, Optional, Sequence

import torch

from gpt2_vc import ops


def validate_sampling_args(temperature: float, top_k: Optional[int]) -> None:
    """Reject sampling parameters that have no meaning."""
    if not temperature > 0.0:
        raise ValueError(f"temperature must be > 0, got {temperature}")
    if top_k is not None and top_k <= 0:
        raise ValueError(f"top_k must be a positive integer or None, got {top_k}")


def apply_temperature(logits: torch.Tensor, temperature: float) -> torch.Tensor:
    """Divide every logit by the temperature."""
    return logits / temperature


def top_k_filter(logits: torch.Tensor, top_k: Optional[int]) -> torch.Tensor:
    """
    Keep the top_k highest logits and set every other entry to -inf.

    Ties are broken by a stable descending sort (lower index wins), so
    exactly top_k entries survive. A top_k of None, or one that covers the
    whole vocabulary, returns the logits unchanged (as a copy).
    """
    if top_k is None or top_k >= logits.shape[-1]:
        return logits.clone()
    keep = torch.sort(logits, descending=True, stable=True).indices[:top_k]
    filtered = torch.full_like(logits, float("-inf"))
    filtered[keep] = logits[keep]
    return filtered


def sample_from_probs(probs: torch.Tensor, generator: Optional[torch.Generator] = None) -> int:
    """
    Inverse-CDF sampling from a probability vector.

    HOW IT WORKS:
      probs  = [0.1, 0.6, 0.3]
      cumsum = [0.1, 0.7, 1.0]
      r = 0.42 → first cumsum ≥ 0.42 is index 1

    Zero-probability entries are never returned: a draw of exactly 0.0
    would otherwise "reach" the cumulative sum of a masked leading token.
    If rounding leaves the total just below r, the last token that carries
    probability is returned.
    """
    r = torch.rand(1, generator=generator).item()
    cumulative = torch.cumsum(probs, dim=0)
    support = probs > 0
    hits = torch.nonzero((cumulative >= r) & support).flatten()
    if hits.numel() > 0:
        return int(hits[0])
    nonzero = torch.nonzero(support).flatten()
    if nonzero.numel() > 0:
        return int(nonzero[-1])
    return probs.shape[0] - 1


def token_distribution(
    logits: torch.Tensor,
    temperature: float = 1.0,
    top_k: Optional[int] = None,
) -> torch.Tensor:
    """
    Probabilities over the vocabulary for one row of logits.

    Top-k is selected on the raw logits: dividing by a positive temperature
    never changes the order, and two large logits cannot collapse into a tie
    after overflowing. Scaling and softmax run in float64.

    When the temperature is so small that the scaled row still overflows
    (a +inf entry, or every entry at -inf), the distribution is the
    temperature → 0 limit: all mass on the argmax of the surviving
    candidates.
    """
    validate_sampling_args(temperature, top_k)
    candidates = top_k_filter(logits, top_k)
    scaled = apply_temperature(candidates.to(torch.float64), temperature)
    if torch.isposinf(scaled).any() or not torch.isfinite(scaled).any():
        probs = torch.zeros_like(scaled)
        probs[greedy_token(candidates)] = 1.0
        return probs
    return ops.softmax(scaled)


def sample_token(
    logits: torch.Tensor,
    temperature: float = 1.0,
    top_k: Optional[int] = None,
    generator: Optional[torch.Generator] = None,
) -> int:
    """
    Sample one token from a single row of logits (shape (vocab_size,)).

    Pipeline: top-k → temperature → softmax → inverse-CDF draw.
    """
    return sample_from_probs(token_distribution(logits, temperature, top_k), generator)


def greedy_token(logits: torch.Tensor) -> int:
    """Argmax decoding: the highest-scoring token (lowest index on ties)."""
    return int(torch.argmax(logits))


def context_window(tokens: Sequence[int], max_seq_len: int) -> List[int]:
    """The last max_seq_len tokens, i.e. what the model can actually see."""
    tokens = list(tokens)
    if len(tokens) > max_seq_len:
        return tokens[-max_seq_len:]
    return tokens
