import pytest

torch = pytest.importorskip("torch", reason="torch not installed")

from lua_llama.engine.chat_types import Greedy, Temperature, TopP  # noqa: E402
from lua_llama.engine.sampling import _top_p_probs, sample_token  # noqa: E402


def test_greedy_is_argmax() -> None:
    logits = torch.tensor([0.1, 3.0, -1.0])
    assert sample_token(logits) == 1
    assert sample_token(logits, Greedy()) == 1


def test_zero_temperature_is_greedy() -> None:
    logits = torch.tensor([0.1, 3.0, -1.0])
    assert sample_token(logits, Temperature(0.0)) == 1


def test_negative_temperature_rejected() -> None:
    with pytest.raises(ValueError):
        sample_token(torch.tensor([0.0, 1.0]), Temperature(-0.5))


def test_temperature_fp16_extremes_stay_finite() -> None:
    # Extreme logits that are likely to overflow in fp16 softmax.
    logits = torch.tensor([10000.0, -10000.0, 0.0], dtype=torch.float16)
    assert sample_token(logits, Temperature(0.1)) in {0, 1, 2}


def test_all_nan_logits_fall_back_to_greedy() -> None:
    logits = torch.tensor([float("nan")] * 3, dtype=torch.float16)
    assert sample_token(logits, Temperature(0.7)) == 0


def test_top_p_keeps_smallest_nucleus() -> None:
    probs = torch.tensor([0.5, 0.3, 0.15, 0.05])
    filtered = _top_p_probs(probs, p=0.7, min_keep=1)
    assert filtered[2] == 0 and filtered[3] == 0
    assert torch.isclose(filtered.sum(), torch.tensor(1.0))


def test_top_p_min_keep() -> None:
    probs = torch.tensor([0.9, 0.05, 0.05])
    filtered = _top_p_probs(probs, p=0.1, min_keep=2)
    assert (filtered > 0).sum() == 2


def test_top_p_tiny_p_samples_best_token() -> None:
    gen = torch.Generator().manual_seed(0)
    logits = torch.tensor([0.0, 5.0, 1.0])
    for _ in range(5):
        assert sample_token(logits, TopP(0.01), generator=gen) == 1


@pytest.mark.parametrize("policy", [TopP(0.0), TopP(1.5), TopP(0.5, min_keep=0)])
def test_top_p_rejects_invalid_parameters(policy) -> None:
    with pytest.raises(ValueError):
        sample_token(torch.tensor([0.0, 1.0]), policy)
