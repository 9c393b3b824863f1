"""
Utility functions for the GPT-2 inference engine.

This module contains cross-cutting concerns that don't belong in any
specific component: reproducibility (seeding, generators), diagnostics
(parameter counting, model summaries), timing, and logging.

These utilities are intentionally simple: no frameworks and no dependencies
beyond PyTorch, NumPy and the standard library.
"""

import os
import time
import random
from typing import Optional
from datetime import datetime

import numpy as np
import torch
import torch.nn as nn


# ═══════════════════════════════════════════════════════════════════════════
# REPRODUCIBILITY
# ═══════════════════════════════════════════════════════════════════════════

def set_seed(seed: int) -> None:
    """
    Seed Python's random, NumPy and PyTorch's global generators.

    The model itself never reads global random state (initialization and
    sampling take an explicit torch.Generator). This is for scripts and
    notebooks that mix in their own randomness.
    """
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)


def make_generator(seed: Optional[int] = None) -> torch.Generator:
    """
    Create a torch.Generator for weight initialization or sampling.

    Args:
        seed: If given, the generator is seeded with it and every draw is
            reproducible. If None, the generator is seeded non-deterministically.
    """
    generator = torch.Generator()
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(seed)
    return generator


# ═══════════════════════════════════════════════════════════════════════════
# MODEL DIAGNOSTICS
# ═══════════════════════════════════════════════════════════════════════════

def count_parameters(model: nn.Module) -> int:
    """
    Count the parameters registered in a module.

    Buffers (such as the sinusoidal positional table) are not parameters
    and are not counted. For a GPT2 model this agrees with the closed form
    in GPT2.get_parameter_count().
    """
    return sum(p.numel() for p in model.parameters())


def print_model_summary(model: nn.Module) -> str:
    """
    Print a breakdown of parameters by tensor.

    Example output:
      =================================================================
      Model Parameter Summary
      =================================================================
      Name                                     Params       %
      -----------------------------------------------------------------
        token_embedding.weight                    400 (  8.6%)
        blocks.0.attention.heads.0.w_q              8 (  0.2%)
        ...
      -----------------------------------------------------------------
        TOTAL                                   4,652
        Memory (fp32 weights)                     0.0 MB

    Returns:
        The summary as a string (also printed to stdout).
    """
    lines = []
    lines.append("=" * 65)
    lines.append("Model Parameter Summary")
    lines.append("=" * 65)
    lines.append(f"{'Name':<40} {'Params':>12} {'%':>7}")
    lines.append("-" * 65)

    param_list = list(model.named_parameters())
    total_params = sum(p.numel() for _, p in param_list)

    for name, param in param_list:
        n = param.numel()
        pct = 100.0 * n / total_params if total_params > 0 else 0
        lines.append(f"  {name:<38} {n:>12,d} ({pct:>5.1f}%)")

    lines.append("-" * 65)
    lines.append(f"  {'TOTAL':<38} {total_params:>12,d}")

    # Each fp32 parameter = 4 bytes
    fp32_mb = total_params * 4 / 1024**2
    lines.append(f"  {'Memory (fp32 weights)':<38} {fp32_mb:>10.1f} MB")
    lines.append("=" * 65)

    summary = "\n".join(lines)
    print(summary)
    return summary


# ═══════════════════════════════════════════════════════════════════════════
# TIMING
# ═══════════════════════════════════════════════════════════════════════════

class Timer:
    """
    Simple context manager for timing code blocks.

    Usage:
        with Timer("Forward pass") as t:
            output = model(tokens)
        print(t)  # "Forward pass: 0.0234s"
    """

    def __init__(self, name: str = "Block"):
        self.name = name
        self.elapsed: float = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed = time.perf_counter() - self.start

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed * 1000

    def __str__(self):
        return f"{self.name}: {self.elapsed:.4f}s"


# ═══════════════════════════════════════════════════════════════════════════
# GENERATION LOGGER
# ═══════════════════════════════════════════════════════════════════════════

class GenerationLogger:
    """
    Lightweight logger that writes to console and an optional log file.

    Records what happens during autoregressive generation:
      - Each sampled token, its probability and the context length used.
      - Window slides, once the sequence outgrows max_seq_len.
      - Free-form informational messages.

    WHY NOT the logging module / wandb?
      The output is meant to be read by a person stepping through generation.
      Printing one line per step is easier to follow than configuring
      handlers, and the file copy makes runs easy to diff.
    """

    def __init__(self, log_dir: Optional[str] = None, verbose: bool = True):
        """
        Args:
            log_dir: Directory for log files. If None, only console output.
            verbose: If False, nothing is printed to the console (the log file,
                if any, still receives every line).
        """
        self.verbose = verbose
        self.lines: list = []
        self.log_file = None
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_path = os.path.join(log_dir, f"generate_{timestamp}.log")
            self.log_file = open(log_path, "w")
            self._write(f"Logging to: {log_path}")

    def _write(self, msg: str) -> None:
        """Write message to console and optionally to log file."""
        self.lines.append(msg)
        if self.verbose:
            print(msg)
        if self.log_file:
            self.log_file.write(msg + "\n")
            self.log_file.flush()  # Ensure immediate write (don't lose data on crash)

    def log_step(
        self,
        step: int,
        total_steps: int,
        token: int,
        probability: float,
        context_len: int,
    ) -> None:
        """
        Log one generation step.

        Example output:
          step    3/10 | token    42 | p 0.0312 | context 8
        """
        self._write(
            f"step {step:>4d}/{total_steps} | "
            f"token {token:>5d} | "
            f"p {probability:.4f} | "
            f"context {context_len}"
        )

    def log_info(self, msg: str) -> None:
        """Log an informational message."""
        self._write(f"[INFO] {msg}")

    def close(self) -> None:
        """Close the log file if open."""
        if self.log_file:
            self.log_file.close()
            self.log_file = None
