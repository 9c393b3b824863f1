"""
Unit tests for the GPT-2 model components.

Tests verify:
  1. LayerNorm standardizes every position (2-D and 3-D inputs)
  2. Attention heads, concatenation and causality
  3. Feed-forward network shapes and per-position independence
  4. Transformer block residual connections
  5. Full model shapes, determinism, parameter count and weight loading
"""

import sys
import os

import torch
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gpt2_vc import ops
from gpt2_vc.config import ModelConfig
from gpt2_vc.errors import (
    ConfigurationError,
    DimensionMismatchError,
    SequenceTooLongError,
    TokenOutOfRangeError,
)
from gpt2_vc.model import (
    GPT2,
    AttentionHead,
    FeedForward,
    LayerNorm,
    MultiHeadAttention,
    TransformerBlock,
)
from gpt2_vc.utils import count_parameters, make_generator


@pytest.fixture
def tiny_config():
    """The smallest useful configuration."""
    return ModelConfig(
        vocab_size=100,
        d_model=4,
        n_layers=2,
        n_heads=2,
        d_ff=8,
        max_seq_len=10,
    )


@pytest.fixture
def tiny_model(tiny_config):
    return GPT2(tiny_config, generator=make_generator(0))


def random_input(seq_len, d_model, seed=0):
    return torch.randn(seq_len, d_model, generator=make_generator(seed))


# ═══════════════════════════════════════════════════════════════════════════
# LayerNorm
# ═══════════════════════════════════════════════════════════════════════════

class TestLayerNorm:
    """Tests for Layer Normalization."""

    def test_output_shape(self):
        norm = LayerNorm(16)
        assert norm(random_input(5, 16)).shape == (5, 16)
        assert norm(torch.randn(2, 5, 16)).shape == (2, 5, 16)

    def test_zero_mean_unit_variance(self):
        """With γ=1, β=0 every position has mean 0 and variance ≈ 1."""
        norm = LayerNorm(16)
        x = random_input(5, 16) * 7.0 + 3.0
        out = norm.forward_sequence(x)
        mean = out.mean(dim=-1)
        var = out.var(dim=-1, unbiased=False)
        assert torch.allclose(mean, torch.zeros(5), atol=1e-5)
        assert torch.allclose(var, torch.ones(5), atol=1e-3)

    def test_constant_vector_maps_to_beta(self):
        """A constant vector has zero deviation, so only β survives."""
        norm = LayerNorm(4)
        norm.set_params(torch.full((4,), 2.0), torch.tensor([1.0, 2.0, 3.0, 4.0]))
        out = norm.forward_sequence(torch.full((1, 4), 5.0))
        assert torch.allclose(out, torch.tensor([[1.0, 2.0, 3.0, 4.0]]))

    def test_gamma_beta_applied(self):
        norm = LayerNorm(8)
        x = random_input(3, 8)
        base = norm(x)
        norm.set_params(torch.full((8,), 2.0), torch.ones(8))
        assert torch.allclose(norm(x), 2.0 * base + 1.0, atol=1e-6)

    def test_batch_matches_sequence(self):
        norm = LayerNorm(8)
        batch = torch.randn(3, 4, 8, generator=make_generator(1))
        out = norm.forward_batch(batch)
        for b in range(3):
            assert torch.allclose(out[b], norm.forward_sequence(batch[b]), atol=1e-6)

    def test_wrong_rank_or_width(self):
        norm = LayerNorm(8)
        with pytest.raises(DimensionMismatchError):
            norm(torch.zeros(8))
        with pytest.raises(DimensionMismatchError):
            norm.forward_sequence(torch.zeros(3, 6))
        with pytest.raises(DimensionMismatchError):
            norm.forward_batch(torch.zeros(3, 8))

    def test_set_params_wrong_shape_leaves_params(self):
        norm = LayerNorm(4)
        with pytest.raises(DimensionMismatchError):
            norm.set_params(torch.full((4,), 3.0), torch.zeros(5))
        assert torch.equal(norm.gamma.detach(), torch.ones(4))


# ═══════════════════════════════════════════════════════════════════════════
# Attention
# ═══════════════════════════════════════════════════════════════════════════

class TestAttention:
    """Tests for attention heads and multi-head attention."""

    def test_head_output_shape(self):
        head = AttentionHead(8, 2, 2, make_generator(0))
        assert head(random_input(5, 8)).shape == (5, 2)

    def test_head_dimensions(self):
        mha = MultiHeadAttention(8, 4, make_generator(0))
        assert len(mha.heads) == 4
        assert mha.d_k == 2
        for head in mha.heads:
            assert head.w_q.shape == (8, 2)
            assert head.w_v.shape == (8, 2)
        assert mha.w_o.shape == (8, 8)

    def test_output_shape(self):
        mha = MultiHeadAttention(8, 4, make_generator(0))
        assert mha(random_input(6, 8)).shape == (6, 8)

    def test_indivisible_heads(self):
        with pytest.raises(ConfigurationError):
            MultiHeadAttention(6, 4)

    def test_concatenation_order(self):
        """With W_o = I the output is the head outputs side by side, head 0 first."""
        mha = MultiHeadAttention(4, 2, make_generator(0))
        mha.set_weights({"w_o": torch.eye(4)})
        x = random_input(3, 4)
        expected = torch.cat([mha.heads[0](x), mha.heads[1](x)], dim=-1)
        assert torch.allclose(mha(x), expected, atol=1e-6)

    def test_concatenate_heads_width(self):
        mha = MultiHeadAttention(4, 2)
        with pytest.raises(DimensionMismatchError):
            mha.concatenate_heads([torch.zeros(3, 2)])

    def test_causal_weights(self):
        """Causal attention weights are lower triangular and rows sum to 1."""
        mha = MultiHeadAttention(8, 2, make_generator(0))
        for weights in mha.attention_weights(random_input(5, 8)):
            upper = torch.triu(torch.ones(5, 5, dtype=torch.bool), diagonal=1)
            assert torch.all(weights[upper] == 0.0)
            assert torch.allclose(weights.sum(dim=-1), torch.ones(5), atol=1e-6)

    def test_causal_output_ignores_future(self):
        """Changing positions 3.. must not change the outputs at positions 0..2."""
        mha = MultiHeadAttention(8, 2, make_generator(0))
        x = random_input(6, 8)
        x_changed = x.clone()
        x_changed[3:] = random_input(3, 8, seed=99)
        assert torch.allclose(mha(x)[:3], mha(x_changed)[:3], atol=1e-6)

    def test_non_causal_sees_future(self):
        mha = MultiHeadAttention(8, 2, make_generator(0))
        x = random_input(6, 8)
        x_changed = x.clone()
        x_changed[3:] = random_input(3, 8, seed=99)
        assert not torch.allclose(
            mha(x, causal=False)[:3], mha(x_changed, causal=False)[:3], atol=1e-6
        )

    def test_set_weights_wrong_head_count(self):
        mha = MultiHeadAttention(4, 2)
        with pytest.raises(DimensionMismatchError):
            mha.set_weights({"heads": [{"w_q": torch.zeros(4, 2)}]})

    def test_set_weights_is_atomic(self):
        """A bad tensor for head 1 leaves head 0 untouched."""
        mha = MultiHeadAttention(4, 2, make_generator(0))
        before = mha.heads[0].w_q.detach().clone()
        with pytest.raises(DimensionMismatchError):
            mha.set_weights({"heads": [
                {"w_q": torch.zeros(4, 2)},
                {"w_q": torch.zeros(2, 4)},
            ]})
        assert torch.equal(mha.heads[0].w_q.detach(), before)

    def test_set_weights_unknown_key(self):
        mha = MultiHeadAttention(4, 2)
        with pytest.raises(ValueError):
            mha.set_weights({"w_out": torch.eye(4)})


# ═══════════════════════════════════════════════════════════════════════════
# Feed-Forward
# ═══════════════════════════════════════════════════════════════════════════

class TestFeedForward:
    """Tests for the position-wise FFN."""

    def test_output_shape(self):
        ffn = FeedForward(8, 32, make_generator(0))
        assert ffn(random_input(5, 8)).shape == (5, 8)

    def test_known_weights(self):
        """W1 = W2 = I, b1 = 0, b2 = 1 gives GELU(x) + 1."""
        ffn = FeedForward(2, 2)
        ffn.set_weights({"w1": torch.eye(2), "b1": torch.zeros(2), "w2": torch.eye(2), "b2": torch.ones(2)})
        x = torch.tensor([[1.0, -2.0], [0.0, 3.0]])
        assert torch.allclose(ffn(x), ops.gelu(x) + 1.0, atol=1e-6)

    def test_positions_independent(self):
        ffn = FeedForward(8, 16, make_generator(0))
        x = random_input(4, 8)
        x_changed = x.clone()
        x_changed[1:] = 0.0
        assert torch.allclose(ffn(x)[0], ffn(x_changed)[0], atol=1e-6)

    def test_set_weights_wrong_shape(self):
        ffn = FeedForward(4, 8)
        with pytest.raises(DimensionMismatchError):
            ffn.set_weights({"w1": torch.zeros(8, 4)})


# ═══════════════════════════════════════════════════════════════════════════
# Transformer Block
# ═══════════════════════════════════════════════════════════════════════════

class TestTransformerBlock:
    """Tests for a single pre-LN decoder block."""

    def test_output_shape(self):
        block = TransformerBlock(8, 2, 32, generator=make_generator(0))
        assert block(random_input(5, 8)).shape == (5, 8)

    def test_residual_identity(self):
        """If both sublayers output zero, the block is the identity."""
        block = TransformerBlock(4, 2, 8, generator=make_generator(0))
        block.set_weights({
            "attention": {"w_o": torch.zeros(4, 4)},
            "feed_forward": {"w2": torch.zeros(8, 4), "b2": torch.zeros(4)},
        })
        x = random_input(3, 4)
        assert torch.allclose(block(x), x)

    def test_separate_norms(self):
        block = TransformerBlock(4, 2, 8)
        assert block.ln_1 is not block.ln_2
        block.set_weights({"ln_1": {"gamma": torch.full((4,), 2.0)}})
        assert torch.equal(block.ln_2.gamma.detach(), torch.ones(4))

    def test_norm_unknown_key(self):
        """Layer-norm dicts only accept gamma and beta."""
        block = TransformerBlock(4, 2, 8)
        with pytest.raises(ValueError):
            block.set_weights({"ln_1": {"weight": torch.full((4,), 2.0)}})
        assert torch.equal(block.ln_1.gamma.detach(), torch.ones(4))

    def test_causal_block(self):
        block = TransformerBlock(8, 2, 16, generator=make_generator(0))
        x = random_input(5, 8)
        x_changed = x.clone()
        x_changed[4] = 10.0
        assert torch.allclose(block(x)[:4], block(x_changed)[:4], atol=1e-5)


# ═══════════════════════════════════════════════════════════════════════════
# Full Model
# ═══════════════════════════════════════════════════════════════════════════

class TestGPT2:
    """End-to-end tests for the complete model."""

    def test_forward_shapes(self, tiny_model):
        """vocab 100, d_model 4: input [1, 2, 3] → logits (3, 100), hidden (3, 4)."""
        output = tiny_model([1, 2, 3])
        assert output.logits.shape == (3, 100)
        assert output.hidden_states.shape == (3, 4)
        assert output.probabilities is None

    def test_every_length_up_to_max(self, tiny_model):
        for seq_len in range(1, 11):
            output = tiny_model(list(range(seq_len)))
            assert output.logits.shape == (seq_len, 100)

    def test_probabilities(self, tiny_model):
        output = tiny_model([5, 6, 7], return_logits=False)
        assert output.probabilities.shape == (3, 100)
        assert torch.allclose(output.probabilities.sum(dim=-1), torch.ones(3), atol=1e-5)

    def test_sequence_too_long(self, tiny_model):
        with pytest.raises(SequenceTooLongError):
            tiny_model(list(range(11)))

    def test_token_out_of_range(self, tiny_model):
        with pytest.raises(TokenOutOfRangeError):
            tiny_model([1, 100])
        with pytest.raises(TokenOutOfRangeError):
            tiny_model([-1])

    def test_empty_input(self, tiny_model):
        with pytest.raises(ValueError):
            tiny_model([])

    def test_indivisible_heads_rejected(self):
        with pytest.raises(ConfigurationError):
            GPT2(ModelConfig(vocab_size=100, d_model=6, n_layers=1, n_heads=4, max_seq_len=10))

    def test_forward_is_deterministic(self, tiny_model):
        a = tiny_model([1, 2, 3])
        b = tiny_model([1, 2, 3])
        assert torch.equal(a.logits, b.logits)
        assert torch.equal(a.hidden_states, b.hidden_states)

    def test_same_seed_same_model(self, tiny_config):
        a = GPT2(tiny_config, generator=make_generator(123))
        b = GPT2(tiny_config, generator=make_generator(123))
        c = GPT2(tiny_config, generator=make_generator(124))
        assert torch.equal(a([4, 5]).logits, b([4, 5]).logits)
        assert not torch.equal(a([4, 5]).logits, c([4, 5]).logits)

    def test_prefix_logits_unchanged_by_suffix(self, tiny_model):
        """Logits for a prefix do not depend on tokens appended after it."""
        short = tiny_model([1, 2, 3]).logits
        long = tiny_model([1, 2, 3, 4, 5]).logits
        assert torch.allclose(short, long[:3], atol=1e-5)

    def test_hidden_states_are_normalized(self, tiny_model):
        hidden = tiny_model([1, 2, 3]).hidden_states
        assert torch.allclose(hidden.mean(dim=-1), torch.zeros(3), atol=1e-5)

    def test_blocks_are_independent(self, tiny_model):
        w0 = tiny_model.blocks[0].attention.w_o
        w1 = tiny_model.blocks[1].attention.w_o
        assert w0 is not w1
        assert not torch.equal(w0, w1)

    def test_no_gradients(self, tiny_model):
        assert all(not p.requires_grad for p in tiny_model.parameters())

    def test_sinusoidal_model(self, tiny_config):
        model = GPT2(tiny_config.with_overrides(positional_encoding="sinusoidal"), make_generator(0))
        assert model([1, 2, 3]).logits.shape == (3, 100)


class TestParameterCount:
    """Tests for the closed-form parameter count."""

    def test_tiny_value(self, tiny_model):
        # embeddings 400 + 40, blocks 2 × 156, final norm 8, head 500
        assert tiny_model.get_parameter_count() == 1260

    def test_matches_registered_parameters(self, tiny_model):
        assert tiny_model.get_parameter_count() == count_parameters(tiny_model)

    def test_sinusoidal_has_no_position_parameters(self, tiny_config):
        model = GPT2(tiny_config.with_overrides(positional_encoding="sinusoidal"))
        assert model.get_parameter_count() == 1260 - 40
        assert model.get_parameter_count() == count_parameters(model)

    def test_larger_config(self):
        config = ModelConfig(vocab_size=300, d_model=32, n_layers=3, n_heads=4, max_seq_len=16)
        model = GPT2(config)
        assert model.get_parameter_count() == count_parameters(model)


class TestSetWeights:
    """Tests for loading weights into the full model."""

    def test_lm_head_and_bias(self, tiny_model):
        """With a zero head the logits of every position are the bias."""
        bias = torch.arange(100.0)
        tiny_model.set_weights({"lm_head": torch.zeros(4, 100), "lm_bias": bias})
        logits = tiny_model([1, 2, 3]).logits
        assert torch.allclose(logits, bias.expand(3, 100))

    def test_token_embedding(self, tiny_model):
        table = torch.zeros(100, 4)
        tiny_model.set_weights({"token_embedding": table})
        assert torch.equal(tiny_model.token_embedding.weight.detach(), table)

    def test_atomic_on_shape_error(self, tiny_model):
        """A bad lm_head leaves the (valid) lm_bias unapplied."""
        before = tiny_model.lm_bias.detach().clone()
        with pytest.raises(DimensionMismatchError):
            tiny_model.set_weights({
                "lm_bias": torch.ones(100),
                "lm_head": torch.zeros(100, 4),
            })
        assert torch.equal(tiny_model.lm_bias.detach(), before)

    def test_block_count_mismatch(self, tiny_model):
        with pytest.raises(DimensionMismatchError):
            tiny_model.set_weights({"blocks": [{}]})

    def test_block_weights(self, tiny_model):
        tiny_model.set_weights({"blocks": [{}, {"ln_2": {"beta": torch.ones(4)}}]})
        assert torch.equal(tiny_model.blocks[1].ln_2.beta.detach(), torch.ones(4))
        assert torch.equal(tiny_model.blocks[0].ln_2.beta.detach(), torch.zeros(4))

    def test_final_layer_norm(self, tiny_model):
        tiny_model.set_weights({"final_layer_norm": {"gamma": torch.zeros(4), "beta": torch.ones(4)}})
        assert torch.allclose(tiny_model([1, 2]).hidden_states, torch.ones(2, 4))

    def test_unknown_key(self, tiny_model):
        with pytest.raises(ValueError):
            tiny_model.set_weights({"wte": torch.zeros(100, 4)})

    def test_final_norm_unknown_key(self, tiny_model):
        with pytest.raises(ValueError):
            tiny_model.set_weights({"final_layer_norm": {"g": torch.zeros(4)}})
        with pytest.raises(ValueError):
            tiny_model.set_weights({"blocks": [{"ln_2": {"bias": torch.zeros(4)}}, {}]})
        assert torch.equal(tiny_model.final_layer_norm.gamma.detach(), torch.ones(4))

    def test_positions_on_sinusoidal_model(self, tiny_config):
        model = GPT2(tiny_config.with_overrides(positional_encoding="sinusoidal"))
        with pytest.raises(ValueError):
            model.set_weights({"positional_encoding": torch.zeros(10, 4)})

    def test_learned_positions(self, tiny_model):
        tiny_model.set_weights({"positional_encoding": torch.zeros(10, 4)})
        assert torch.equal(tiny_model.positional_encoding(3), torch.zeros(3, 4))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
