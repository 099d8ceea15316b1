"""Auxiliary per-parameter state kept by update rules across steps.

Every dense parameter gets one tensor per named slot, shaped like the
parameter; every lookup table gets one table per slot, shaped like the
lookup table so that row ``i`` of the slot shadows row ``i`` of the values.
Scalar slots hold a single number per dense parameter and per lookup row.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence
from . import cuda

logger = logging.getLogger(__name__)


def allocate_dense(model) -> list:
    return [cuda.zeros_like(p.values) for p in model.parameters_list()]


def allocate_lookup(model) -> list:
    return [cuda.zeros_like(p.values) for p in model.lookup_parameters_list()]


def allocate_dense_scalars(model) -> List[float]:
    return [0.0 for _ in model.parameters_list()]


def allocate_lookup_scalars(model) -> list:
    out = []
    for p in model.lookup_parameters_list():
        xp = cuda.get_array_module(p.values)
        out.append(xp.zeros((p.n_rows,), dtype=p.values.dtype))
    return out


@dataclass
class ShadowState:
    """Slots by name. ``step`` counts update calls for rules that need it (Adam).

    ``n_dense`` and ``n_lookup`` record how many parameters the slots cover.
    """
    dense: Dict[str, list] = field(default_factory=dict)
    lookup: Dict[str, list] = field(default_factory=dict)
    step: int = 0
    n_dense: int = 0
    n_lookup: int = 0


def allocate_state(model, slots: Sequence[str] = (), scalar_slots: Sequence[str] = ()) -> ShadowState:
    state = ShadowState(n_dense=len(model.parameters_list()),
                        n_lookup=len(model.lookup_parameters_list()))
    for name in slots:
        state.dense[name] = allocate_dense(model)
        state.lookup[name] = allocate_lookup(model)
    for name in scalar_slots:
        state.dense[name] = allocate_dense_scalars(model)
        state.lookup[name] = allocate_lookup_scalars(model)
    return state


class LazyShadow:
    """Either unallocated or holding exactly one ShadowState.

    The first `get` builds the state from the model; every later call returns
    that same object, so shadow tensors are never allocated twice.
    """

    def __init__(self, factory: Callable[..., ShadowState]):
        self._factory = factory
        self._state: Optional[ShadowState] = None

    @property
    def allocated(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> Optional[ShadowState]:
        return self._state

    def get(self, model) -> ShadowState:
        if self._state is None:
            self._state = self._factory(model)
            logger.debug("Allocated shadow slots %s for %d dense / %d lookup parameters",
                         sorted(self._state.dense), len(model.parameters_list()),
                         len(model.lookup_parameters_list()))
        return self._state
