"""Global gradient-norm clipping."""
from __future__ import annotations
import logging
import math

logger = logging.getLogger(__name__)


class NonFiniteGradientError(FloatingPointError):
    """The global gradient norm is NaN or infinite; training cannot continue."""


class GradientClipper:
    """Derives one multiplier that caps the L2 norm of all gradients at `threshold`.

    The clipper never touches gradients itself; the trainer folds the returned
    scale into every update of the step.
    """

    def __init__(self, threshold: float = 5.0, enabled: bool = True):
        if threshold <= 0.0:
            raise ValueError(f"clip threshold must be > 0, got {threshold}")
        self.threshold = float(threshold)
        self.enabled = enabled
        self.clips = 0

    def clip_scale(self, model) -> float:
        if not self.enabled:
            return 1.0
        gg = model.gradient_l2_norm()
        if math.isnan(gg) or math.isinf(gg):
            logger.critical("Magnitude of gradient is bad: %s", gg)
            raise NonFiniteGradientError(f"Magnitude of gradient is bad: {gg}")
        if gg > self.threshold:
            self.clips += 1
            scale = self.threshold / gg
            logger.debug("Clipping gradient norm %.6g to %.6g (scale %.6g)", gg, self.threshold, scale)
            return scale
        return 1.0
