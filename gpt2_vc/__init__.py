"""
gpt2-vc: Educational GPT-2 inference engine from first principles in PyTorch.

This package implements the forward pass of a decoder-only GPT-2 style
transformer and autoregressive generation on top of it. Every matrix
operation, mask, normalization and sampling step is written out explicitly.

Key modules:
  - config:    Model configuration (frozen, validated dataclass)
  - errors:    Exception hierarchy for contract violations
  - ops:       Math kernel (matmul, softmax, causal mask, GELU, init)
  - embedding: Token embedding and learned / sinusoidal positional encodings
  - model:     LayerNorm, attention, FFN, TransformerBlock, GPT2
  - sampling:  Temperature, top-k and inverse-CDF sampling
  - generate:  Instrumented generation with metrics and logging
  - utils:     Seeding, parameter summaries, timing, logging
"""

__version__ = "0.1.0"
