"""Shared fixtures and helpers for the nnopt test-suite."""
import os

# host arrays only, so results can be compared with numpy.testing directly
os.environ.setdefault("NNOPT_DISABLE_CUDA", "1")

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from nnopt import Model, Trainer, get_rule  # noqa: E402
from nnopt.optim import NAME2RULE  # noqa: E402

# one registry name per rule class
RULE_NAMES = sorted({cls.name for cls in NAME2RULE.values()})
KERNEL_RULE_NAMES = [name for name in RULE_NAMES if name != 'rmsprop']


def dense_model(values, grad=None):
    """A model holding a single dense parameter with the given value and gradient."""
    values = np.asarray(values, dtype=np.float32)
    model = Model(rng=np.random.default_rng(0))
    p = model.add_parameters(values.shape, init='zeros')
    p.values[...] = values
    if grad is not None:
        p.accumulate_grad(np.asarray(grad, dtype=np.float32))
    return model, p


def plain_trainer(model, rule, **kwargs):
    """A trainer with clipping and weight decay switched off unless asked for."""
    kwargs.setdefault('clipping_enabled', False)
    kwargs.setdefault('lam', 0.0)
    if isinstance(rule, str):
        rule = get_rule(rule)
    return Trainer(model, rule, **kwargs)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def mixed_model():
    """Two dense parameters and one 5x3 lookup table."""
    model = Model(rng=np.random.default_rng(7))
    model.add_parameters((4, 3))
    model.add_parameters((4,))
    model.add_lookup_parameters(5, (3,))
    return model
