"""Lazy L2 weight decay.

Instead of shrinking every parameter on every step, the accumulator keeps a
single multiplicative scale. The effective value of any parameter is its
stored value times `current_scale`; updates divide their deltas by the same
scale so they land in true coordinates. When the scale gets small enough to
cost precision, the pending decay is written into the parameters once and
the scale goes back to 1.
"""
from __future__ import annotations
import logging
from typing import Callable

logger = logging.getLogger(__name__)

# below this the stored values have grown by 4x relative to their true values
RESCALE_THRESHOLD = 0.25


class WeightDecay:
    def __init__(self, lam: float = 0.0, rescale_threshold: float = RESCALE_THRESHOLD):
        if not 0.0 < rescale_threshold < 1.0:
            raise ValueError(f"rescale_threshold must be in (0, 1), got {rescale_threshold}")
        self.rescale_threshold = rescale_threshold
        self.set_lambda(lam)
        self._scale = 1.0
        self.rescales = 0

    def set_lambda(self, lam: float):
        if not 0.0 <= lam < 1.0:
            raise ValueError(f"weight decay lambda must be in [0, 1), got {lam}")
        self.lam = float(lam)

    @property
    def current_scale(self) -> float:
        return self._scale

    def advance(self, num_updates: int = 1):
        """Apply `num_updates` steps of decay: scale *= (1 - lambda) ** num_updates."""
        self._scale *= (1.0 - self.lam) ** num_updates

    def needs_rescale(self) -> bool:
        return self._scale < self.rescale_threshold

    def rescale_and_reset(self, scale_parameters: Callable[[float], None]):
        """Hand the pending scale to `scale_parameters`, then reset to identity."""
        scale = self._scale
        logger.info("Materializing weight decay scale %.6g into parameters", scale)
        scale_parameters(scale)
        self._scale = 1.0
        self.rescales += 1

    def __repr__(self):
        return f"WeightDecay(lam={self.lam}, current_scale={self._scale:.6g})"
