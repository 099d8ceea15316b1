"""
Device support for parameter and shadow-state arrays.

Arrays live on the GPU (CuPy) when a CUDA device is usable and on the host
(NumPy) otherwise. Update rules never branch on the device: they ask
`get_array_module` for the module that owns an array and write their
recurrences against it.
"""
import os
import warnings

try:
    import cupy as cp
    CUDA_AVAILABLE = True
    try:
        cp.cuda.Device(0).use()
        cp.zeros((1,), dtype=cp.float32)
    except Exception:
        CUDA_AVAILABLE = False
        cp = None
except ImportError:
    cp = None
    CUDA_AVAILABLE = False

import numpy as np

# NNOPT_DISABLE_CUDA=1 keeps every array on the host even with a GPU present
USE_CUDA = CUDA_AVAILABLE and os.environ.get('NNOPT_DISABLE_CUDA', '0') != '1'


def get_array_module(arr=None):
    """Return cupy or numpy: the owner of `arr`, or the default module."""
    if USE_CUDA and cp is not None:
        return cp.get_array_module(arr) if arr is not None else cp
    return np


def is_cuda_array(arr) -> bool:
    return USE_CUDA and cp is not None and isinstance(arr, cp.ndarray)


def asarray(arr, dtype=np.float32):
    """Place `arr` on the default device with the given dtype."""
    if USE_CUDA and cp is not None:
        return cp.asarray(arr, dtype=dtype)
    return np.asarray(arr, dtype=dtype)


def zeros_like(arr):
    return get_array_module(arr).zeros_like(arr)


def to_cpu(arr):
    """Move an array to the host; host arrays are returned as-is."""
    if is_cuda_array(arr):
        return cp.asnumpy(arr)
    return arr


def to_float(value) -> float:
    """Convert a 0-d array (host or device) or a scalar to a Python float."""
    return float(to_cpu(value))


if os.environ.get('NNOPT_FORCE_CUDA', '0') == '1' and not CUDA_AVAILABLE:
    warnings.warn("CUDA was requested but is not available. Falling back to CPU.")
