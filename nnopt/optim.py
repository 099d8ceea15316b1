"""Update rules.

A rule holds only its hyperparameters. Its per-parameter state lives in a
`ShadowState` owned by the trainer and is passed into every call, so one rule
object never carries anything from one model or trainer to another.

Each rule writes its recurrence once, in `apply`, against arrays of any
shape: dense parameters pass their whole value tensor, lookup tables pass the
gathered touched rows, which are scattered back afterwards.
"""
from __future__ import annotations
import math
from typing import Dict, List, Tuple, Type
from . import cuda, kernels
from .shadow import ShadowState, allocate_state


def _check_unit_interval(name: str, value: float):
    if not 0.0 <= value < 1.0:
        raise ValueError(f"Invalid {name}: {value}")


class UpdateRule:
    """One first-order recurrence over dense parameters and sparse lookup rows."""

    name = 'rule'
    default_eta = 0.1
    slots: Tuple[str, ...] = ()
    scalar_slots: Tuple[str, ...] = ()

    def __init__(self, use_kernels: bool = False):
        self.use_kernels = use_kernels

    def allocate(self, model) -> ShadowState:
        return allocate_state(model, self.slots, self.scalar_slots)

    def begin_step(self, state: ShadowState):
        """Called once per trainer update, before any parameter is visited."""

    def update_dense(self, state: ShadowState, index: int, p, g, eta: float, decay: float):
        shadows = [state.dense[name][index] for name in self.slots]
        self.apply(state, p.values, g, shadows, eta, decay)

    def update_lookup(self, state: ShadowState, index: int, p, rows, g, eta: float, decay: float):
        tables = [state.lookup[name][index] for name in self.slots]
        x = p.values[rows]
        shadows = [t[rows] for t in tables]
        self.apply(state, x, g, shadows, eta, decay)
        p.values[rows] = x
        for table, rows_state in zip(tables, shadows):
            table[rows] = rows_state

    def apply(self, state: ShadowState, x, g, shadows: List, eta: float, decay: float):
        """Update `x` and `shadows` in place from the effective gradient `g`."""
        raise NotImplementedError

    def _use_kernel(self, x) -> bool:
        return self.use_kernels and not cuda.is_cuda_array(x)

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class SimpleSGD(UpdateRule):
    name = 'simple_sgd'
    default_eta = 0.1

    def apply(self, state, x, g, shadows, eta, decay):
        if self._use_kernel(x):
            kernels.sgd_kernel(x.ravel(), g.ravel(), eta, decay)
            return
        x -= (eta / decay) * g


class MomentumSGD(UpdateRule):
    """Heavy-ball momentum: v = momentum * v - eta * g; value += v."""

    name = 'momentum_sgd'
    default_eta = 0.01
    slots = ('v',)

    def __init__(self, momentum: float = 0.9, use_kernels: bool = False):
        super().__init__(use_kernels)
        if momentum < 0.0:
            raise ValueError(f"Invalid momentum value: {momentum}")
        self.momentum = momentum

    def apply(self, state, x, g, shadows, eta, decay):
        v, = shadows
        if self._use_kernel(x):
            kernels.momentum_kernel(x.ravel(), v.ravel(), g.ravel(), self.momentum, eta, decay)
            return
        v *= self.momentum
        v -= eta * g
        x += v / decay


class Adagrad(UpdateRule):
    name = 'adagrad'
    default_eta = 0.1
    slots = ('v',)

    def __init__(self, eps: float = 1e-20, use_kernels: bool = False):
        super().__init__(use_kernels)
        self.eps = eps

    def apply(self, state, x, g, shadows, eta, decay):
        v, = shadows
        if self._use_kernel(x):
            kernels.adagrad_kernel(x.ravel(), v.ravel(), g.ravel(), eta, self.eps, decay)
            return
        xp = cuda.get_array_module(x)
        v += g * g
        x -= eta * g / xp.sqrt(v + self.eps) / decay


class Adadelta(UpdateRule):
    """Adadelta (Zeiler, 2012). Uses no learning rate; both accumulators start at zero."""

    name = 'adadelta'
    default_eta = 1.0
    slots = ('hg', 'hd')

    def __init__(self, eps: float = 1e-6, rho: float = 0.95, use_kernels: bool = False):
        super().__init__(use_kernels)
        _check_unit_interval('rho', rho)
        self.eps = eps
        self.rho = rho

    def apply(self, state, x, g, shadows, eta, decay):
        hg, hd = shadows
        if self._use_kernel(x):
            kernels.adadelta_kernel(x.ravel(), hg.ravel(), hd.ravel(), g.ravel(), self.rho, self.eps, decay)
            return
        xp = cuda.get_array_module(x)
        rho = self.rho
        hg *= rho
        hg += (1.0 - rho) * g * g
        delta = -g * xp.sqrt(hd + self.eps) / xp.sqrt(hg + self.eps)
        hd *= rho
        hd += (1.0 - rho) * delta * delta
        x += delta / decay


class RMSProp(UpdateRule):
    """RMSProp with one squared-norm accumulator per dense parameter and per lookup row.

    The accumulator tracks the squared L2 norm of the whole gradient tensor,
    not each element, so every element of a parameter shares one step size.
    """

    name = 'rmsprop'
    default_eta = 0.1
    scalar_slots = ('d2',)

    def __init__(self, eps: float = 1e-20, rho: float = 0.95, use_kernels: bool = False):
        super().__init__(use_kernels)
        _check_unit_interval('rho', rho)
        self.eps = eps
        self.rho = rho

    def update_dense(self, state, index, p, g, eta, decay):
        xp = cuda.get_array_module(g)
        g2 = cuda.to_float(xp.sum(g.astype(xp.float64) ** 2))
        d2 = self.rho * state.dense['d2'][index] + (1.0 - self.rho) * g2
        state.dense['d2'][index] = d2
        p.values -= (eta / math.sqrt(d2 + self.eps) / decay) * g

    def update_lookup(self, state, index, p, rows, g, eta, decay):
        xp = cuda.get_array_module(g)
        table = state.lookup['d2'][index]
        g2 = (g.astype(xp.float64) ** 2).reshape(len(rows), -1).sum(axis=1)
        d2 = self.rho * table[rows] + (1.0 - self.rho) * g2
        table[rows] = d2
        coef = (eta / xp.sqrt(d2 + self.eps) / decay).reshape((len(rows),) + (1,) * (g.ndim - 1))
        x = p.values[rows]
        x -= coef * g
        p.values[rows] = x


class Adam(UpdateRule):
    """Adam (Kingma & Ba, 2014).

    The step count ``t`` advances once per trainer update and is shared by
    every dense parameter and lookup row touched in that update, so all of
    them use the same bias-correction pair.
    """

    name = 'adam'
    default_eta = 0.001
    slots = ('m', 'v')

    def __init__(self, beta_1: float = 0.9, beta_2: float = 0.999, eps: float = 1e-8, use_kernels: bool = False):
        super().__init__(use_kernels)
        _check_unit_interval('beta_1', beta_1)
        _check_unit_interval('beta_2', beta_2)
        self.beta_1 = beta_1
        self.beta_2 = beta_2
        self.eps = eps

    def begin_step(self, state):
        state.step += 1

    def apply(self, state, x, g, shadows, eta, decay):
        m, v = shadows
        s1 = 1.0 - self.beta_1 ** state.step
        s2 = 1.0 - self.beta_2 ** state.step
        if self._use_kernel(x):
            kernels.adam_kernel(x.ravel(), m.ravel(), v.ravel(), g.ravel(),
                                self.beta_1, self.beta_2, s1, s2, eta, self.eps, decay)
            return
        xp = cuda.get_array_module(x)
        m *= self.beta_1
        m += (1.0 - self.beta_1) * g
        v *= self.beta_2
        v += (1.0 - self.beta_2) * (g * g)
        mhat = m / s1
        vhat = v / s2
        x += (-eta * mhat) / (xp.sqrt(vhat) + self.eps) / decay


NAME2RULE: Dict[str, Type[UpdateRule]] = {
    'simple_sgd': SimpleSGD,
    'sgd': SimpleSGD,
    'momentum_sgd': MomentumSGD,
    'momentum': MomentumSGD,
    'adagrad': Adagrad,
    'adadelta': Adadelta,
    'rmsprop': RMSProp,
    'adam': Adam,
}


def get_rule(name: str, **kwargs) -> UpdateRule:
    if name not in NAME2RULE:
        available = ", ".join(list_rules())
        raise ValueError(f"Unknown update rule '{name}'. Available: {available}")
    return NAME2RULE[name](**kwargs)


def list_rules() -> List[str]:
    return sorted(NAME2RULE)
