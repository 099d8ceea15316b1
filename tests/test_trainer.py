"""
Trainer tests
=============

Orchestration of a step (clip -> update -> decay), the lazy weight-decay
invariant, counters and learning-rate schedule, plus convergence of every
rule on a quadratic objective.
"""
import dataclasses

import numpy as np
import pytest

from nnopt import Model, Trainer, get_trainer
from nnopt.demo import train_xor
from nnopt.optim import SimpleSGD

from conftest import RULE_NAMES, dense_model, plain_trainer


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_defaults_follow_rule():
    model = Model()
    assert get_trainer('simple_sgd', model).eta == 0.1
    assert get_trainer('momentum_sgd', model).eta == 0.01
    assert get_trainer('adam', model).eta == 0.001
    trainer = get_trainer('sgd', model)
    assert trainer.config.lam == 1e-6
    assert trainer.config.clipping_enabled
    assert trainer.config.clip_threshold == 5.0


def test_get_trainer_splits_kwargs():
    trainer = get_trainer('momentum', Model(), eta0=0.5, lam=0.0, momentum=0.5)
    assert trainer.eta == 0.5
    assert trainer.weight_decay.lam == 0.0
    assert trainer.rule.momentum == 0.5


def test_get_trainer_unknown_name():
    with pytest.raises(ValueError):
        get_trainer('nesterov', Model())


def test_config_is_immutable():
    trainer = get_trainer('adam', Model())
    with pytest.raises(dataclasses.FrozenInstanceError):
        trainer.config.eta0 = 1.0


@pytest.mark.parametrize("kwargs", [{'eta0': -1.0}, {'lam': 1.0}, {'clip_threshold': 0.0}, {'eta_decay': -0.1}])
def test_invalid_trainer_options(kwargs):
    with pytest.raises(ValueError):
        Trainer(Model(), SimpleSGD(), **kwargs)


# ---------------------------------------------------------------------------
# Step orchestration
# ---------------------------------------------------------------------------


def test_shadow_state_allocated_on_first_update(mixed_model):
    trainer = get_trainer('adam', mixed_model)
    assert not trainer.shadow.allocated
    trainer.update(1.0)
    state = trainer.shadow.state
    trainer.update(1.0)
    assert trainer.shadow.state is state


def test_adding_parameters_after_first_update_is_rejected():
    model = Model(rng=np.random.default_rng(0))
    model.add_parameters(3)
    trainer = get_trainer('adam', model)
    trainer.update(1.0)
    late = model.add_parameters(2)
    late.accumulate_grad([1.0, 1.0])
    before = late.to_numpy().copy()
    with pytest.raises(ValueError, match="added after the first update"):
        trainer.update(1.0)
    np.testing.assert_array_equal(late.to_numpy(), before)
    assert trainer.updates == 1


def test_counters(mixed_model):
    trainer = get_trainer('simple_sgd', mixed_model, clip_threshold=1.0)
    p = mixed_model.parameters_list()[1]
    p.accumulate_grad([10.0, 0.0, 0.0, 0.0])
    trainer.update(1.0)
    p.accumulate_grad([0.1, 0.0, 0.0, 0.0])
    trainer.update(1.0)
    trainer.update(1.0)
    assert trainer.updates == 3
    assert trainer.clips == 1


def test_update_advances_decay():
    model, _ = dense_model([1.0])
    trainer = plain_trainer(model, 'simple_sgd', lam=0.1)
    for _ in range(3):
        trainer.update(1.0)
    assert trainer.weight_decay.current_scale == pytest.approx(0.9 ** 3)


def test_update_writes_deltas_in_true_coordinates():
    model, p = dense_model([1.0], grad=[1.0])
    trainer = plain_trainer(model, 'simple_sgd', eta0=0.1, lam=0.5)
    trainer.update(1.0)
    np.testing.assert_allclose(p.to_numpy(), [0.9], rtol=1e-6)
    np.testing.assert_allclose(trainer.effective_value(p), [0.45], rtol=1e-6)

    # the second delta is divided by the pending scale 0.5
    p.accumulate_grad([1.0])
    trainer.update(1.0)
    np.testing.assert_allclose(p.to_numpy(), [0.7], rtol=1e-6)
    np.testing.assert_allclose(trainer.effective_value(p), [(0.45 - 0.1) * 0.5], rtol=1e-6)


def test_rescale_materializes_decay_into_dense_and_lookup():
    model = Model(rng=np.random.default_rng(2))
    p = model.add_parameters((2, 3))
    table = model.add_lookup_parameters(4, 3)
    dense_before = p.to_numpy().copy()
    table_before = table.to_numpy().copy()
    trainer = plain_trainer(model, 'simple_sgd', lam=0.5)

    trainer.update(1.0)
    trainer.update(1.0)
    assert trainer.weight_decay.current_scale == 0.25
    np.testing.assert_array_equal(p.to_numpy(), dense_before)

    trainer.update(1.0)
    assert trainer.weight_decay.current_scale == 1.0
    assert trainer.weight_decay.rescales == 1
    np.testing.assert_allclose(p.to_numpy(), dense_before * 0.125, rtol=1e-6)
    np.testing.assert_allclose(table.to_numpy(), table_before * 0.125, rtol=1e-6)


def test_explicit_rescale_keeps_effective_values(mixed_model):
    trainer = get_trainer('simple_sgd', mixed_model, lam=0.1)
    for _ in range(4):
        trainer.update(1.0)
    effective = [trainer.effective_value(p).copy() for p in mixed_model.parameters_list()]
    trainer.rescale_and_reset_weight_decay()
    assert trainer.weight_decay.current_scale == 1.0
    for e, p in zip(effective, mixed_model.parameters_list()):
        np.testing.assert_allclose(p.to_numpy(), e, rtol=1e-6)


def test_update_epoch_decays_learning_rate():
    trainer = get_trainer('simple_sgd', Model(), eta0=0.2, eta_decay=0.5)
    trainer.update_epoch()
    assert trainer.epoch == 1.0
    assert trainer.eta == pytest.approx(0.2 / 1.5)
    trainer.update_epoch(2.0)
    assert trainer.eta == pytest.approx(0.2 / 2.5)


def test_update_epoch_without_decay_keeps_eta():
    trainer = get_trainer('adagrad', Model())
    trainer.update_epoch()
    assert trainer.eta == 0.1


def test_status_line():
    trainer = get_trainer('simple_sgd', Model())
    trainer.update(1.0)
    assert trainer.status() == "[epoch=0 eta=0.1 clips=0 updates=1] "


# ---------------------------------------------------------------------------
# Convergence
# ---------------------------------------------------------------------------

QUADRATIC_ETA = {
    'simple_sgd': 0.1,
    'momentum_sgd': 0.01,
    'adagrad': 0.5,
    'adadelta': None,
    'rmsprop': 0.05,
    'adam': 0.05,
}


def _quadratic_loss(value, target):
    return float(np.sum((value - target) ** 2))


@pytest.mark.parametrize("rule", RULE_NAMES)
def test_quadratic_convergence(rule):
    """Minimise ||w - target||^2 over a dense parameter and one lookup row."""
    rng = np.random.default_rng(42)
    model = Model(rng=np.random.default_rng(0))
    w = model.add_parameters(10)
    table = model.add_lookup_parameters(3, 10)
    target = rng.normal(size=10).astype(np.float32)
    trainer = get_trainer(rule, model, eta0=QUADRATIC_ETA[rule])

    def loss():
        return (_quadratic_loss(trainer.effective_value(w), target)
                + _quadratic_loss(trainer.effective_value(table)[1], target))

    initial = loss()
    for _ in range(300):
        w.accumulate_grad(2.0 * (trainer.effective_value(w) - target))
        table.accumulate_grad(1, 2.0 * (trainer.effective_value(table)[1] - target))
        trainer.update(1.0)
    final = loss()

    assert final < initial
    if rule != 'adadelta':
        assert final < 0.1 * initial, f"{rule}: loss {initial:.4f} -> {final:.4f}"


def test_xor_demo_learns():
    history = train_xor('simple_sgd', iterations=60, verbose=False)
    assert len(history) == 60
    assert history[-1] < history[0]
