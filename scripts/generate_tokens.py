"""
Token generation demo CLI.

USAGE:
    # Small randomly initialized model, default prompt
    python scripts/generate_tokens.py

    # Custom prompt and sampling parameters
    python scripts/generate_tokens.py --prompt 15496 11 --max-new-tokens 10 \
        --temperature 0.8 --top-k 5 --seed 0

    # GPT-2 small dimensions (slow: every step is a full forward pass)
    python scripts/generate_tokens.py --vocab-size 50257 --d-model 768 \
        --n-layers 12 --n-heads 12 --max-seq-len 1024

WHAT THIS SCRIPT DOES:
    1. Builds a GPT2 model with random weights from the given dimensions
    2. Prints the parameter summary
    3. Runs one forward pass over the prompt and shows the top-5 next tokens
    4. Generates a continuation and prints the token ids with timing

There is no tokenizer here: prompts and outputs are raw token ids.
"""

import os
import sys
import argparse

import torch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gpt2_vc.config import ModelConfig
from gpt2_vc.model import GPT2
from gpt2_vc.generate import SamplingConfig, generate
from gpt2_vc.utils import GenerationLogger, Timer, make_generator, print_model_summary


def main():
    parser = argparse.ArgumentParser(
        description="Generate token ids with a randomly initialized GPT-2 model",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--vocab-size", type=int, default=1000)
    parser.add_argument("--d-model", type=int, default=64)
    parser.add_argument("--n-layers", type=int, default=2)
    parser.add_argument("--n-heads", type=int, default=4)
    parser.add_argument("--d-ff", type=int, default=None, help="FFN width (default 4 × d_model)")
    parser.add_argument("--max-seq-len", type=int, default=32)
    parser.add_argument(
        "--positional-encoding", choices=["learned", "sinusoidal"], default="learned",
    )
    parser.add_argument(
        "--prompt", type=int, nargs="+", default=[1, 2, 3],
        help="Prompt as token ids",
    )
    parser.add_argument("--max-new-tokens", type=int, default=20)
    parser.add_argument(
        "--temperature", type=float, default=1.0,
        help="Sampling temperature (>0; small = near greedy, >1 = more random)",
    )
    parser.add_argument("--top-k", type=int, default=None, help="Top-k sampling (default: off)")
    parser.add_argument("--seed", type=int, default=None, help="Seed for weights and sampling")
    parser.add_argument("--log-dir", type=str, default=None, help="Also write the step log here")
    parser.add_argument("--quiet", action="store_true", help="Do not log every step")

    args = parser.parse_args()

    config = ModelConfig(
        vocab_size=args.vocab_size,
        d_model=args.d_model,
        n_layers=args.n_layers,
        n_heads=args.n_heads,
        d_ff=args.d_ff,
        max_seq_len=args.max_seq_len,
        positional_encoding=args.positional_encoding,
    )

    model = GPT2(config, generator=make_generator(args.seed))
    print_model_summary(model)
    print(f"Closed-form parameter count: {model.get_parameter_count():,}")

    # Forward pass over the prompt
    with Timer("Forward pass") as t:
        output = model(args.prompt)
    print(f"\n{t}")
    print(f"Logits shape: {tuple(output.logits.shape)}")
    print(f"Hidden states shape: {tuple(output.hidden_states.shape)}")

    top = torch.topk(output.logits[-1], k=min(5, config.vocab_size))
    print("Top-5 next-token predictions:")
    for rank, (value, idx) in enumerate(zip(top.values.tolist(), top.indices.tolist()), 1):
        print(f"  {rank}. token {idx:>6d}  logit {value:.4f}")

    # Generation
    sampling = SamplingConfig(
        max_new_tokens=args.max_new_tokens,
        temperature=args.temperature,
        top_k=args.top_k,
        seed=args.seed,
    )
    logger = None if args.quiet and not args.log_dir else GenerationLogger(
        args.log_dir, verbose=not args.quiet
    )
    print()
    result = generate(model, args.prompt, sampling, logger=logger, progress=args.quiet)
    if logger is not None:
        logger.close()

    print(f"\nTokens: {result.tokens}")
    print(result.stats_string())


if __name__ == "__main__":
    main()
