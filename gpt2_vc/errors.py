"""
Exceptions raised by the inference engine.

Every error here is a contract violation by the caller (bad configuration,
bad input, or mis-wired tensors), never a transient condition, so nothing in
the package retries or recovers from them. They abort the current operation
and carry enough context (the offending value and the bound it broke) to be
diagnosed without re-running.

The classes also inherit from the closest builtin exception so that callers
who only know about ValueError / IndexError still catch them.
"""

from typing import Optional, Sequence


class GPT2Error(Exception):
    """Base class for every error raised by gpt2_vc."""


class ConfigurationError(GPT2Error, ValueError):
    """The model configuration is internally inconsistent."""


class SequenceTooLongError(GPT2Error, ValueError):
    """A sequence is longer than the number of positions the model embeds."""

    def __init__(self, seq_len: int, max_seq_len: int, where: str = "forward"):
        self.seq_len = seq_len
        self.max_seq_len = max_seq_len
        self.where = where
        super().__init__(
            f"{where}: sequence length {seq_len} exceeds max_seq_len {max_seq_len}"
        )


class TokenOutOfRangeError(GPT2Error, IndexError):
    """A token id falls outside [0, vocab_size)."""

    def __init__(self, token_id: int, vocab_size: int, position: Optional[int] = None):
        self.token_id = token_id
        self.vocab_size = vocab_size
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(
            f"token id {token_id}{where} is outside the vocabulary range [0, {vocab_size})"
        )


class DimensionMismatchError(GPT2Error, ValueError):
    """Two operands (or a tensor and its expected shape) are incompatible."""

    def __init__(
        self,
        op: str,
        expected: Sequence,
        actual: Sequence,
        detail: str = "",
    ):
        self.op = op
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        msg = f"{op}: expected shape {self.expected}, got {self.actual}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
