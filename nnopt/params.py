"""Trainable parameter storage: dense parameters, lookup tables and the model that owns them.

The autodiff engine that fills gradients lives outside this package. It talks to
these classes only through `accumulate_grad`; the trainer talks to them through
`values`/`grad(s)`, `clear`, `scale_parameters` and the model's list accessors.
"""
from __future__ import annotations
import numpy as np
from typing import List, Optional, Sequence, Tuple, Union
from . import cuda

Shape = Union[int, Sequence[int]]


def _as_shape(shape: Shape) -> Tuple[int, ...]:
    if isinstance(shape, (int, np.integer)):
        return (int(shape),)
    return tuple(int(d) for d in shape)


def uniform_init(shape: Tuple[int, ...], rng: np.random.Generator,
                 fan_shape: Optional[Tuple[int, ...]] = None) -> np.ndarray:
    """Uniform in +-sqrt(6 / sum(fan_shape)), the Glorot-style scale used for every tensor.

    `fan_shape` defaults to `shape`; lookup tables pass their row shape. A
    scalar shape counts as one unit.
    """
    fan_shape = shape if fan_shape is None else fan_shape
    limit = np.sqrt(6.0 / max(sum(fan_shape), 1))
    return rng.uniform(-limit, limit, size=shape)


class Parameter:
    """A dense trainable tensor with a gradient accumulator of the same shape."""

    def __init__(self, shape: Shape, rng: Optional[np.random.Generator] = None, init: str = 'glorot'):
        self.shape = _as_shape(shape)
        if init == 'glorot':
            rng = rng or np.random.default_rng()
            values = uniform_init(self.shape, rng)
        elif init == 'zeros':
            values = np.zeros(self.shape)
        else:
            raise ValueError(f"Unknown initializer {init!r}")
        self.values = cuda.asarray(values)
        self.grad = cuda.zeros_like(self.values)

    @property
    def size(self) -> int:
        return int(self.values.size)

    def accumulate_grad(self, g) -> None:
        g = cuda.asarray(g)
        if g.shape != self.shape:
            raise ValueError(f"gradient shape {g.shape} does not match parameter shape {self.shape}")
        self.grad += g

    def clear(self) -> None:
        self.grad[...] = 0

    def scale_parameters(self, factor: float) -> None:
        self.values *= factor

    def squared_grad_norm(self) -> float:
        xp = cuda.get_array_module(self.grad)
        return cuda.to_float(xp.sum(self.grad.astype(xp.float64) ** 2))

    def to_numpy(self) -> np.ndarray:
        return cuda.to_cpu(self.values)

    def __repr__(self):
        return f"Parameter(shape={self.shape})"


class LookupParameter:
    """An embedding table: `n_rows` rows, each a dense tensor of `row_shape`.

    Only rows recorded in `non_zero_grads` carry gradient; sparse updates read
    that set and never walk the whole table.
    """

    def __init__(self, n_rows: int, row_shape: Shape, rng: Optional[np.random.Generator] = None, init: str = 'glorot'):
        self.row_shape = _as_shape(row_shape)
        self.n_rows = int(n_rows)
        shape = (self.n_rows,) + self.row_shape
        if init == 'glorot':
            values = uniform_init(shape, rng or np.random.default_rng(), fan_shape=self.row_shape)
        elif init == 'zeros':
            values = np.zeros(shape)
        else:
            raise ValueError(f"Unknown initializer {init!r}")
        self.values = cuda.asarray(values)
        self.grads = cuda.zeros_like(self.values)
        self.non_zero_grads: set = set()

    def __len__(self):
        return self.n_rows

    @property
    def size(self) -> int:
        return int(self.values.size)

    def row(self, index: int):
        return self.values[index]

    def accumulate_grad(self, index: int, g) -> None:
        index = int(index)
        if not 0 <= index < self.n_rows:
            raise IndexError(f"row {index} out of range for lookup table of {self.n_rows} rows")
        g = cuda.asarray(g)
        if g.shape != self.row_shape:
            raise ValueError(f"gradient shape {g.shape} does not match row shape {self.row_shape}")
        self.grads[index] += g
        self.non_zero_grads.add(index)

    def touched_rows(self) -> np.ndarray:
        """Sorted indices of the rows holding gradient."""
        return np.fromiter(sorted(self.non_zero_grads), dtype=np.int64, count=len(self.non_zero_grads))

    def clear(self) -> None:
        if self.non_zero_grads:
            self.grads[self.touched_rows()] = 0
        self.non_zero_grads.clear()

    def scale_parameters(self, factor: float) -> None:
        self.values *= factor

    def squared_grad_norm(self) -> float:
        if not self.non_zero_grads:
            return 0.0
        xp = cuda.get_array_module(self.grads)
        g = self.grads[self.touched_rows()].astype(xp.float64)
        return cuda.to_float(xp.sum(g ** 2))

    def to_numpy(self) -> np.ndarray:
        return cuda.to_cpu(self.values)

    def __repr__(self):
        return f"LookupParameter(n_rows={self.n_rows}, row_shape={self.row_shape})"


class Model:
    """Owns parameters in creation order; trainers hold an unowned reference."""

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng or np.random.default_rng()
        self._params: List[Parameter] = []
        self._lookup_params: List[LookupParameter] = []

    def add_parameters(self, shape: Shape, init: str = 'glorot') -> Parameter:
        p = Parameter(shape, rng=self.rng, init=init)
        self._params.append(p)
        return p

    def add_lookup_parameters(self, n_rows: int, row_shape: Shape, init: str = 'glorot') -> LookupParameter:
        p = LookupParameter(n_rows, row_shape, rng=self.rng, init=init)
        self._lookup_params.append(p)
        return p

    def parameters_list(self) -> List[Parameter]:
        return list(self._params)

    def lookup_parameters_list(self) -> List[LookupParameter]:
        return list(self._lookup_params)

    def gradient_l2_norm(self) -> float:
        total = sum(p.squared_grad_norm() for p in self._params)
        total += sum(p.squared_grad_norm() for p in self._lookup_params)
        return float(np.sqrt(total))

    def parameter_count(self) -> int:
        return sum(p.size for p in self._params) + sum(p.size for p in self._lookup_params)
