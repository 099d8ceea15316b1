"""nnopt - parameter-update core for NumPy/CuPy neural-network training.

Provides:
- Dense and lookup (embedding) parameter storage with sparse row gradients
- Update rules: SimpleSGD, MomentumSGD, Adagrad, Adadelta, RMSProp, Adam
- Global gradient-norm clipping, lazy shadow state, lazy multiplicative weight decay
- A Trainer that runs clip -> update -> decay for any rule
- Optional numba kernels for the host path; CuPy arrays on the device path
"""
import os as _os


def _auto_configure_threads():
    """Set BLAS / OpenMP thread counts to all available CPU cores if the user
    hasn't specified them. Must run before NumPy loads heavy backends.

    Disable by setting NNOPT_DISABLE_AUTO_THREADS=1.
    """
    if _os.environ.get('NNOPT_DISABLE_AUTO_THREADS') == '1':
        return
    cores = _os.cpu_count() or 1
    for var in ['OMP_NUM_THREADS', 'OPENBLAS_NUM_THREADS', 'MKL_NUM_THREADS']:
        if var not in _os.environ:
            _os.environ[var] = str(cores)


_auto_configure_threads()

from . import cuda, optim, params  # noqa: E402
from .params import Model, Parameter, LookupParameter  # noqa: E402
from .clipping import GradientClipper, NonFiniteGradientError  # noqa: E402
from .weight_decay import WeightDecay  # noqa: E402
from .optim import (  # noqa: E402
    UpdateRule, SimpleSGD, MomentumSGD, Adagrad, Adadelta, RMSProp, Adam, NAME2RULE, get_rule, list_rules
)
from .trainer import Trainer, TrainerConfig, get_trainer  # noqa: E402

__version__ = "0.1.0"

__all__ = [
    'Model', 'Parameter', 'LookupParameter',
    'GradientClipper', 'NonFiniteGradientError', 'WeightDecay',
    'UpdateRule', 'SimpleSGD', 'MomentumSGD', 'Adagrad', 'Adadelta', 'RMSProp', 'Adam',
    'NAME2RULE', 'get_rule', 'list_rules',
    'Trainer', 'TrainerConfig', 'get_trainer',
    'cuda', 'optim', 'params',
]
