"""
Math kernel: the numeric primitives every layer is built from.

All functions are pure. They take tensors, return FRESH tensors, and never
modify their inputs, so a stage of the model can never corrupt the weights or
activations of another stage through aliasing.

Shapes are checked explicitly. A mismatch raises DimensionMismatchError with
both shapes in the message, instead of whatever broadcasting or indexing error
torch would produce further down the line.

Conventions:
  - Matrices are 2-D tensors (rows × cols).
  - "Row-wise" means along the last dimension.
"""

import math
from typing import Optional, Sequence

import torch

from gpt2_vc.errors import DimensionMismatchError


# ═══════════════════════════════════════════════════════════════════════════
# SHAPE CHECKS
# ═══════════════════════════════════════════════════════════════════════════

def check_shape(tensor: torch.Tensor, expected: Sequence[int], name: str) -> torch.Tensor:
    """
    Validate that a tensor has exactly the expected shape.

    Used by every weight-loading operation so that a pretrained tensor of the
    wrong size is rejected before anything is overwritten.

    Returns:
        The tensor as a float tensor of the default dtype (a new tensor if a
        conversion was needed).
    """
    tensor = torch.as_tensor(tensor, dtype=torch.get_default_dtype())
    if tuple(tensor.shape) != tuple(expected):
        raise DimensionMismatchError(name, expected, tensor.shape)
    return tensor


def _require_matrix(m: torch.Tensor, op: str) -> None:
    if m.dim() != 2:
        raise DimensionMismatchError(op, ("rows", "cols"), m.shape, "expected a 2-D matrix")


# ═══════════════════════════════════════════════════════════════════════════
# LINEAR ALGEBRA
# ═══════════════════════════════════════════════════════════════════════════

def matmul(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    """
    Dense matrix product: (m × n) · (n × p) → (m × p).

    result[i, j] = Σ_k a[i, k] · b[k, j]
    """
    _require_matrix(a, "matmul")
    _require_matrix(b, "matmul")
    if a.shape[1] != b.shape[0]:
        raise DimensionMismatchError(
            "matmul", (a.shape[1], b.shape[1]), b.shape,
            f"inner dimensions differ: left is {tuple(a.shape)}",
        )
    return a @ b


def transpose(m: torch.Tensor) -> torch.Tensor:
    """(r × c) → (c × r). The result is a new contiguous tensor, not a view."""
    _require_matrix(m, "transpose")
    return m.t().contiguous()


def add(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    """Element-wise sum of two tensors with identical shapes."""
    if a.shape != b.shape:
        raise DimensionMismatchError("add", a.shape, b.shape)
    return a + b


def add_bias(m: torch.Tensor, bias: torch.Tensor) -> torch.Tensor:
    """Add a bias vector of length cols to every row of an (r × c) matrix."""
    _require_matrix(m, "add_bias")
    if bias.dim() != 1 or bias.shape[0] != m.shape[1]:
        raise DimensionMismatchError("add_bias", (m.shape[1],), bias.shape)
    return m + bias


def scale(m: torch.Tensor, factor: float) -> torch.Tensor:
    """Multiply every element by a scalar."""
    return m * factor


# ═══════════════════════════════════════════════════════════════════════════
# SOFTMAX
# ═══════════════════════════════════════════════════════════════════════════

def softmax(row: torch.Tensor) -> torch.Tensor:
    """
    Convert a vector of scores into a probability distribution.

      softmax(x)_i = exp(x_i - max(x)) / Σ_j exp(x_j - max(x))

    Subtracting the max does not change the result (it cancels between the
    numerator and denominator) but keeps every exponent ≤ 0, so exp() can
    never overflow. Entries equal to -inf become exactly 0.
    """
    if row.dim() != 1:
        raise DimensionMismatchError("softmax", ("n",), row.shape, "expected a 1-D row")
    shifted = row - row.max()
    exp = torch.exp(shifted)
    return exp / exp.sum()


def batch_softmax(matrix: torch.Tensor) -> torch.Tensor:
    """Apply softmax independently to every row of a matrix."""
    _require_matrix(matrix, "batch_softmax")
    shifted = matrix - matrix.max(dim=-1, keepdim=True).values
    exp = torch.exp(shifted)
    return exp / exp.sum(dim=-1, keepdim=True)


# ═══════════════════════════════════════════════════════════════════════════
# CAUSAL MASKING
# ═══════════════════════════════════════════════════════════════════════════

def causal_mask(n: int) -> torch.Tensor:
    """
    Additive causal mask of shape (n × n).

      mask[i, j] = 0      if j ≤ i   (position i may look at j)
      mask[i, j] = -inf   if j > i   (j is in the future of i)

    Example for n = 3:
      [[0, -inf, -inf],
       [0,    0, -inf],
       [0,    0,    0]]

    Added to attention scores before softmax, the -inf entries become
    exp(-inf) = 0, so no position receives information from a later one.
    The diagonal is always 0, which guarantees every row keeps at least one
    finite score.
    """
    mask = torch.zeros(n, n)
    future = torch.triu(torch.ones(n, n, dtype=torch.bool), diagonal=1)
    return mask.masked_fill(future, float("-inf"))


def apply_mask(scores: torch.Tensor, mask: torch.Tensor) -> torch.Tensor:
    """Element-wise scores + mask."""
    if scores.shape != mask.shape:
        raise DimensionMismatchError("apply_mask", scores.shape, mask.shape)
    return scores + mask


# ═══════════════════════════════════════════════════════════════════════════
# ACTIVATIONS
# ═══════════════════════════════════════════════════════════════════════════

_GELU_COEF = math.sqrt(2.0 / math.pi)


def gelu(x: torch.Tensor) -> torch.Tensor:
    """
    Gaussian Error Linear Unit, tanh approximation (as used by GPT-2):

      GELU(x) = 0.5 · x · (1 + tanh(√(2/π) · (x + 0.044715 · x³)))

    Works element-wise on a tensor of any shape.
    """
    return 0.5 * x * (1.0 + torch.tanh(_GELU_COEF * (x + 0.044715 * x.pow(3))))


def batch_gelu(matrix: torch.Tensor) -> torch.Tensor:
    """GELU applied to every element of a matrix."""
    _require_matrix(matrix, "batch_gelu")
    return gelu(matrix)


# ═══════════════════════════════════════════════════════════════════════════
# INITIALIZATION
# ═══════════════════════════════════════════════════════════════════════════

def uniform_table(
    rows: int,
    cols: int,
    limit: float,
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    """Matrix with entries drawn uniformly from [-limit, limit]."""
    return (torch.rand(rows, cols, generator=generator) * 2.0 - 1.0) * limit


def initialize_weights(
    rows: int,
    cols: int,
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    """
    Xavier/Glorot uniform initialization.

      W ~ U[-L, L],  L = √(6 / (rows + cols))

    This keeps the variance of activations roughly constant from layer to
    layer: Var(W) = L² / 3 = 2 / (fan_in + fan_out).

    Pass a seeded torch.Generator to make the weights reproducible.
    """
    limit = math.sqrt(6.0 / (rows + cols))
    return uniform_table(rows, cols, limit, generator)
