"""
Inference pipeline: instrumented autoregressive generation.

GPT2.generate() is the bare decoding loop. This module wraps the same loop
with the things you want when actually running it: a sampling config,
timing metrics, per-step logging, a progress bar, greedy decoding and
multi-prompt generation.

GENERATION ALGORITHM:
  tokens = prompt
  repeat max_new_tokens times:
    1. context = last max_seq_len tokens          (sliding window)
    2. logits  = model.forward(context).logits[-1]
    3. token   = sample(logits)                   (top-k → temperature → draw)
    4. tokens.append(token)

  There is NO KV cache: every step re-runs the full forward pass over the
  context. This is O(N²) work for N tokens, which is fine for a reference
  engine whose point is to show every operation.

  There is also NO end-of-sequence stop: exactly max_new_tokens tokens are
  produced. Deciding when to stop belongs to whoever owns the tokenizer.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

import torch
from tqdm import tqdm

from gpt2_vc.embedding import TokenIds, as_token_list
from gpt2_vc.model import GPT2
from gpt2_vc.sampling import (
    context_window,
    greedy_token,
    sample_from_probs,
    token_distribution,
    validate_sampling_args,
)
from gpt2_vc.utils import GenerationLogger, make_generator


@dataclass
class SamplingConfig:
    """
    Sampling hyperparameters for one generation run.

    These control HOW tokens are chosen, not the architecture, so the same
    model can be sampled with many different configs.
    """
    max_new_tokens: int = 20
    temperature: float = 1.0
    top_k: Optional[int] = None
    # Seed for the sampling generator. None = non-deterministic.
    seed: Optional[int] = None

    def __post_init__(self):
        validate_sampling_args(self.temperature, self.top_k)
        if self.max_new_tokens < 0:
            raise ValueError(f"max_new_tokens must be >= 0, got {self.max_new_tokens}")


@dataclass
class GenerateResult:
    """Result of a generation run with inference metrics."""
    tokens: List[int]           # prompt followed by generated tokens
    prompt_tokens: int          # number of tokens in the prompt
    generated_tokens: int       # number of tokens generated
    window_slides: int          # steps whose context was truncated to max_seq_len
    total_ms: float             # total wall time (ms)
    temperature: float
    top_k: Optional[int]
    step_probabilities: List[float] = field(default_factory=list)

    @property
    def new_tokens(self) -> List[int]:
        """Only the generated part of the sequence."""
        return self.tokens[self.prompt_tokens:]

    @property
    def tok_per_sec(self) -> float:
        if self.total_ms <= 0:
            return 0.0
        return self.generated_tokens / (self.total_ms / 1000)

    def stats_string(self) -> str:
        """Formatted summary of inference metrics."""
        lines = [
            f"Sampling       : temp={self.temperature}, top_k={self.top_k}",
            f"Prompt tokens  : {self.prompt_tokens}",
            f"Output tokens  : {self.generated_tokens}",
            f"Window slides  : {self.window_slides}",
            f"Speed          : {self.tok_per_sec:.1f} tok/s",
            f"Total time     : {self.total_ms:.1f} ms",
        ]
        return "\n".join(lines)


def _step_distribution(
    model: GPT2,
    context: List[int],
    temperature: float,
    top_k: Optional[int],
) -> torch.Tensor:
    """Probabilities over the vocabulary for the token after context."""
    logits = model(context, return_logits=True).logits[-1]
    return token_distribution(logits, temperature, top_k)


@torch.inference_mode()
def generate(
    model: GPT2,
    prompt_tokens: TokenIds,
    config: Optional[SamplingConfig] = None,
    generator: Optional[torch.Generator] = None,
    logger: Optional[GenerationLogger] = None,
    progress: bool = False,
) -> GenerateResult:
    """
    Generate config.max_new_tokens tokens after prompt_tokens.

    Produces the same sequence as model.generate() for the same generator
    state; on top of that it records timings and per-step probabilities.

    Args:
        model: A GPT2 model.
        prompt_tokens: Non-empty sequence of token ids.
        config: Sampling parameters (defaults to SamplingConfig()).
        generator: Random source for sampling. If None, one is created from
            config.seed.
        logger: If given, every step is logged.
        progress: Show a tqdm progress bar.

    Returns:
        GenerateResult with the full token sequence and metrics.
    """
    config = config or SamplingConfig()
    if generator is None:
        generator = make_generator(config.seed)

    tokens = as_token_list(prompt_tokens)
    if not tokens:
        raise ValueError("generate: prompt_tokens must contain at least one token")
    prompt_len = len(tokens)
    max_seq_len = model.config.max_seq_len

    t_start = time.perf_counter()
    window_slides = 0
    step_probabilities = []

    steps = range(config.max_new_tokens)
    if progress:
        steps = tqdm(steps, desc="Generating", unit="tok")

    for step in steps:
        context = context_window(tokens, max_seq_len)
        if len(context) < len(tokens):
            if window_slides == 0 and logger is not None:
                logger.log_info(
                    f"sequence exceeded max_seq_len={max_seq_len}, sliding the context window"
                )
            window_slides += 1

        probs = _step_distribution(model, context, config.temperature, config.top_k)
        token = sample_from_probs(probs, generator)
        tokens.append(token)
        step_probabilities.append(float(probs[token]))

        if logger is not None:
            logger.log_step(step + 1, config.max_new_tokens, token, step_probabilities[-1], len(context))

    total_ms = (time.perf_counter() - t_start) * 1000

    return GenerateResult(
        tokens=tokens,
        prompt_tokens=prompt_len,
        generated_tokens=len(tokens) - prompt_len,
        window_slides=window_slides,
        total_ms=total_ms,
        temperature=config.temperature,
        top_k=config.top_k,
        step_probabilities=step_probabilities,
    )


@torch.inference_mode()
def generate_greedy(
    model: GPT2,
    prompt_tokens: TokenIds,
    max_new_tokens: int,
) -> List[int]:
    """
    Greedy decoding: always take the argmax token.

    This is the temperature → 0 limit of sampling and involves no randomness.
    """
    tokens = as_token_list(prompt_tokens)
    if not tokens:
        raise ValueError("generate_greedy: prompt_tokens must contain at least one token")
    if max_new_tokens < 0:
        raise ValueError(f"generate_greedy: max_new_tokens must be >= 0, got {max_new_tokens}")
    for _ in range(max_new_tokens):
        context = context_window(tokens, model.config.max_seq_len)
        tokens.append(greedy_token(model(context).logits[-1]))
    return tokens


def generate_batch(
    model: GPT2,
    prompts: List[TokenIds],
    config: Optional[SamplingConfig] = None,
    generator: Optional[torch.Generator] = None,
) -> List[GenerateResult]:
    """
    Generate a continuation for each prompt, one prompt after another.

    There is no padded batching: each prompt is an independent run. With a
    shared generator the runs consume random draws in prompt order.
    """
    config = config or SamplingConfig()
    if generator is None:
        generator = make_generator(config.seed)
    return [generate(model, prompt, config, generator=generator) for prompt in prompts]
