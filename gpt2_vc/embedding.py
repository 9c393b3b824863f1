"""
Input representations: token embeddings and positional encodings.

A transformer has no recurrence and no convolution, so by itself it sees its
input as an unordered SET of vectors. The input to the first block is
therefore the sum of two things:

  h₀[t] = token_embedding[token_ids[t]] + position_encoding[t]

  - The token embedding says WHAT is at position t.
  - The positional encoding says WHERE position t is.

Two positional encodings are provided:
  1. LearnedPositionalEncoding: a trainable (max_seq_len × d_model) table.
     This is what GPT-2 uses.
  2. SinusoidalPositionalEncoding: the fixed sin/cos functions from
     "Attention Is All You Need" (Vaswani et al., 2017). No parameters.

Both expose the same forward(seq_len) → (seq_len × d_model) interface and
reject sequences longer than max_seq_len.
"""

import math
from typing import Optional, Sequence, Union

import torch
import torch.nn as nn

from gpt2_vc.config import ModelConfig
from gpt2_vc.errors import DimensionMismatchError, SequenceTooLongError, TokenOutOfRangeError
from gpt2_vc.ops import check_shape, uniform_table


TokenIds = Union[Sequence[int], torch.Tensor]


def _as_token_id(value) -> int:
    if isinstance(value, bool):
        raise ValueError(f"token ids must be integers, got {value!r}")
    token_id = int(value)
    if token_id != value:
        raise ValueError(f"token ids must be integers, got {value!r}")
    return token_id


def as_token_list(token_ids: TokenIds) -> list:
    """
    Normalize a list / tuple / 1-D tensor of token ids to a list of ints.

    Non-integral values (1.9) and tensors that are not 1-D are rejected
    rather than truncated or flattened.
    """
    if isinstance(token_ids, torch.Tensor):
        if token_ids.dim() != 1:
            raise DimensionMismatchError(
                "token_ids", ("seq_len",), token_ids.shape, "expected a 1-D tensor of token ids"
            )
        token_ids = token_ids.tolist()
    return [_as_token_id(t) for t in token_ids]


# ═══════════════════════════════════════════════════════════════════════════
# Token Embedding
# ═══════════════════════════════════════════════════════════════════════════

class TokenEmbedding(nn.Module):
    """
    Lookup table mapping token ids to dense vectors.

    The table has one row per vocabulary entry. Looking up a token is just
    selecting its row; the returned matrix is a COPY, so adding positional
    encodings (or anything else) downstream can never change the table.

    Initialization: uniform in [-√(1/d_model), √(1/d_model)].
    """

    def __init__(
        self,
        vocab_size: int,
        d_model: int,
        generator: Optional[torch.Generator] = None,
    ):
        super().__init__()
        self.vocab_size = vocab_size
        self.d_model = d_model
        limit = math.sqrt(1.0 / d_model)
        self.weight = nn.Parameter(uniform_table(vocab_size, d_model, limit, generator))

    def forward(self, token_ids: TokenIds) -> torch.Tensor:
        """
        Args:
            token_ids: Sequence of ints in [0, vocab_size).

        Returns:
            Tensor of shape (len(token_ids), d_model).
        """
        ids = as_token_list(token_ids)
        for position, token_id in enumerate(ids):
            if token_id < 0 or token_id >= self.vocab_size:
                raise TokenOutOfRangeError(token_id, self.vocab_size, position)
        index = torch.tensor(ids, dtype=torch.long)
        # Advanced indexing always allocates, so the rows are independent
        # of the stored table.
        return self.weight[index].detach().clone()

    def set_embedding(self, table: torch.Tensor) -> None:
        """Replace the table with a pretrained one of shape (vocab_size, d_model)."""
        table = check_shape(table, (self.vocab_size, self.d_model), "token_embedding")
        with torch.no_grad():
            self.weight.copy_(table)


# ═══════════════════════════════════════════════════════════════════════════
# Positional Encodings
# ═══════════════════════════════════════════════════════════════════════════

class LearnedPositionalEncoding(nn.Module):
    """
    GPT-2 style learned position embeddings.

    Position t simply has its own trainable vector, row t of a
    (max_seq_len × d_model) table. The model can only embed max_seq_len
    positions; this is where GPT-2's hard context limit comes from.
    """

    def __init__(
        self,
        max_seq_len: int,
        d_model: int,
        generator: Optional[torch.Generator] = None,
    ):
        super().__init__()
        self.max_seq_len = max_seq_len
        self.d_model = d_model
        limit = math.sqrt(1.0 / d_model)
        self.weight = nn.Parameter(uniform_table(max_seq_len, d_model, limit, generator))

    def forward(self, seq_len: int) -> torch.Tensor:
        """Return the first seq_len rows, shape (seq_len, d_model)."""
        if seq_len < 0:
            raise ValueError(f"positional encoding: seq_len must be >= 0, got {seq_len}")
        if seq_len > self.max_seq_len:
            raise SequenceTooLongError(seq_len, self.max_seq_len, "positional encoding")
        return self.weight[:seq_len].detach().clone()

    def set_position_embedding(self, table: torch.Tensor) -> None:
        """Replace the table with a pretrained one of shape (max_seq_len, d_model)."""
        table = check_shape(table, (self.max_seq_len, self.d_model), "positional_encoding")
        with torch.no_grad():
            self.weight.copy_(table)


def sinusoidal_table(max_seq_len: int, d_model: int) -> torch.Tensor:
    """
    Precompute the fixed sinusoidal encoding.

      PE[pos, i] = sin(pos / 10000^(i / d_model))          for even i
      PE[pos, i] = cos(pos / 10000^((i - 1) / d_model))    for odd i

    Feature pairs (i, i+1) share a frequency. Low feature indices oscillate
    quickly along the sequence, high ones slowly, so every position gets a
    distinct multi-scale "fingerprint".
    """
    positions = torch.arange(max_seq_len, dtype=torch.float64).unsqueeze(1)
    features = torch.arange(d_model)
    # For odd i the exponent uses i - 1, i.e. the even index of the pair.
    pair_base = (features - features % 2).to(torch.float64)
    div_term = torch.pow(10000.0, pair_base / d_model)
    angles = positions / div_term
    table = torch.where(features % 2 == 0, torch.sin(angles), torch.cos(angles))
    return table.to(torch.get_default_dtype())


class SinusoidalPositionalEncoding(nn.Module):
    """
    Fixed sinusoidal positional encoding (Vaswani et al., 2017).

    The table is a buffer, not a parameter: it is part of the module's state
    but has nothing to learn and is not counted as a model parameter.
    """

    def __init__(self, max_seq_len: int, d_model: int):
        super().__init__()
        self.max_seq_len = max_seq_len
        self.d_model = d_model
        self.register_buffer("table", sinusoidal_table(max_seq_len, d_model), persistent=False)

    def forward(self, seq_len: int) -> torch.Tensor:
        if seq_len < 0:
            raise ValueError(f"positional encoding: seq_len must be >= 0, got {seq_len}")
        if seq_len > self.max_seq_len:
            raise SequenceTooLongError(seq_len, self.max_seq_len, "positional encoding")
        return self.table[:seq_len].clone()


def build_positional_encoding(
    config: ModelConfig,
    generator: Optional[torch.Generator] = None,
) -> nn.Module:
    """Create the positional encoding selected by config.positional_encoding."""
    if config.positional_encoding == "sinusoidal":
        return SinusoidalPositionalEncoding(config.max_seq_len, config.d_model)
    return LearnedPositionalEncoding(config.max_seq_len, config.d_model, generator)
