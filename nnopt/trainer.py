"""Trainer: one optimisation step over a model.

A step is always the same sequence, whatever the rule:

1. compute the clip scale from the global gradient norm,
2. let the rule update every dense parameter and the touched rows of every
   lookup parameter, clearing their gradients,
3. advance the weight-decay scale and materialise it if it got too small.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional
from .clipping import GradientClipper
from .optim import UpdateRule, get_rule
from .shadow import LazyShadow
from .weight_decay import WeightDecay

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainerConfig:
    eta0: float
    lam: float = 1e-6
    clipping_enabled: bool = True
    clip_threshold: float = 5.0
    eta_decay: float = 0.0


class Trainer:
    """Drives one `UpdateRule` over one model.

    The model is borrowed and must outlive the trainer. Shadow state, the
    weight-decay scale and the counters belong to the trainer alone.

    Args:
        model: Object exposing ``parameters_list()``, ``lookup_parameters_list()``
            and ``gradient_l2_norm()``.
        rule: The update rule to apply.
        eta0: Initial learning rate; defaults to the rule's ``default_eta``.
        lam: Per-step L2 weight-decay rate.
        clipping_enabled: Whether to cap the global gradient norm.
        clip_threshold: Norm above which gradients are scaled down.
        eta_decay: Learning-rate decay per epoch, see `update_epoch`.
    """

    def __init__(self, model, rule: UpdateRule, eta0: Optional[float] = None, lam: float = 1e-6,
                 clipping_enabled: bool = True, clip_threshold: float = 5.0, eta_decay: float = 0.0):
        eta0 = rule.default_eta if eta0 is None else float(eta0)
        if eta0 < 0.0:
            raise ValueError(f"Invalid learning rate: {eta0}")
        if eta_decay < 0.0:
            raise ValueError(f"Invalid learning rate decay: {eta_decay}")
        self.config = TrainerConfig(eta0=eta0, lam=lam, clipping_enabled=clipping_enabled,
                                    clip_threshold=clip_threshold, eta_decay=eta_decay)
        self.model = model
        self.rule = rule
        self.eta = eta0
        self.epoch = 0.0
        self.weight_decay = WeightDecay(lam)
        self.clipper = GradientClipper(clip_threshold, enabled=clipping_enabled)
        self.shadow = LazyShadow(rule.allocate)
        self._updates = 0

    @property
    def updates(self) -> int:
        return self._updates

    @property
    def clips(self) -> int:
        return self.clipper.clips

    def update(self, scale: float = 1.0):
        """Apply one step with every gradient multiplied by `scale`."""
        gscale = self.clipper.clip_scale(self.model)
        state = self.shadow.get(self.model)
        self._check_model_size(state)
        self.rule.begin_step(state)
        gs = scale * gscale
        decay = self.weight_decay.current_scale
        for i, p in enumerate(self.model.parameters_list()):
            self.rule.update_dense(state, i, p, gs * p.grad, self.eta, decay)
            p.clear()
        for i, p in enumerate(self.model.lookup_parameters_list()):
            if p.non_zero_grads:
                rows = p.touched_rows()
                self.rule.update_lookup(state, i, p, rows, gs * p.grads[rows], self.eta, decay)
            p.clear()
        self._updates += 1

        self.weight_decay.advance()
        if self.weight_decay.needs_rescale():
            self.rescale_and_reset_weight_decay()

    def _check_model_size(self, state):
        n_dense = len(self.model.parameters_list())
        n_lookup = len(self.model.lookup_parameters_list())
        if (n_dense, n_lookup) != (state.n_dense, state.n_lookup):
            raise ValueError(
                f"model has {n_dense} dense / {n_lookup} lookup parameters but shadow state was allocated "
                f"for {state.n_dense} / {state.n_lookup}; parameters cannot be added after the first update")

    def rescale_and_reset_weight_decay(self):
        self.weight_decay.rescale_and_reset(self._scale_parameters)

    def _scale_parameters(self, factor: float):
        for p in self.model.parameters_list():
            p.scale_parameters(factor)
        for p in self.model.lookup_parameters_list():
            p.scale_parameters(factor)

    def update_epoch(self, r: float = 1.0):
        self.epoch += r
        self.eta = self.config.eta0 / (1.0 + self.epoch * self.config.eta_decay)
        logger.info("Epoch %g: eta=%.6g", self.epoch, self.eta)

    def effective_value(self, p):
        """The value the rest of the framework must read: stored value times the decay scale."""
        return p.values * self.weight_decay.current_scale

    def status(self) -> str:
        return f"[epoch={self.epoch:g} eta={self.eta:g} clips={self.clips} updates={self.updates}] "

    def __repr__(self):
        return f"Trainer(rule={self.rule!r}, eta={self.eta:g}, {self.weight_decay!r})"


TRAINER_KWARGS = ('eta0', 'lam', 'clipping_enabled', 'clip_threshold', 'eta_decay')


def get_trainer(name: str, model, **kwargs) -> Trainer:
    """Build a Trainer for a rule given by registry name.

    Trainer options (see `Trainer`) are taken from ``kwargs``; everything else
    goes to the rule's constructor.

        trainer = get_trainer("adam", model, eta0=1e-3, beta_1=0.9)
    """
    trainer_kwargs = {k: kwargs.pop(k) for k in TRAINER_KWARGS if k in kwargs}
    rule = get_rule(name, **kwargs)
    return Trainer(model, rule, **trainer_kwargs)
