"""XOR with a two-layer tanh network, trained by any registered rule.

    python -m nnopt.demo [rule]

Gradients are computed by hand here; in a full framework the autodiff
engine fills them through `accumulate_grad` in the same way.
"""
from __future__ import annotations
import sys
import numpy as np
from typing import List, Optional
from tqdm import tqdm
from . import cuda
from .params import Model
from .trainer import get_trainer

HIDDEN_SIZE = 8


def xor_examples():
    """The four XOR cases with inputs and targets coded as +-1."""
    for mi in range(4):
        x1 = mi % 2
        x2 = (mi // 2) % 2
        x = np.array([1.0 if x1 else -1.0, 1.0 if x2 else -1.0], dtype=np.float32)
        y = 1.0 if x1 != x2 else -1.0
        yield x, y


def train_xor(rule: str = 'simple_sgd', iterations: int = 30, seed: Optional[int] = 0,
              verbose: bool = True, **trainer_kwargs) -> List[float]:
    """Train on XOR for `iterations` epochs; returns the mean loss of each epoch."""
    model = Model(rng=np.random.default_rng(seed))
    p_W = model.add_parameters((HIDDEN_SIZE, 2))
    p_b = model.add_parameters((HIDDEN_SIZE,))
    p_V = model.add_parameters((1, HIDDEN_SIZE))
    p_a = model.add_parameters((1,))
    trainer = get_trainer(rule, model, **trainer_kwargs)

    history = []
    pbar = tqdm(range(iterations), desc=f"xor/{rule}", disable=not verbose)
    for _ in pbar:
        loss = 0.0
        for x, y in xor_examples():
            W, b, V, a = (cuda.to_cpu(trainer.effective_value(p)) for p in (p_W, p_b, p_V, p_a))
            h = np.tanh(W @ x + b)
            y_pred = V @ h + a
            err = y_pred - y
            loss += float(err @ err)

            d_pred = 2.0 * err
            d_h = (V.T @ d_pred) * (1.0 - h ** 2)
            p_V.accumulate_grad(np.outer(d_pred, h))
            p_a.accumulate_grad(d_pred)
            p_W.accumulate_grad(np.outer(d_h, x))
            p_b.accumulate_grad(d_h)
            trainer.update(1.0)
        trainer.update_epoch()
        loss /= 4
        history.append(loss)
        pbar.set_postfix(E=loss)
    if verbose:
        print(trainer.status())
    return history


if __name__ == "__main__":
    train_xor(sys.argv[1] if len(sys.argv) > 1 else 'simple_sgd')
