"""Fused in-place update kernels compiled with numba.

Each kernel walks flat, contiguous host arrays once and applies one rule's
recurrence elementwise, without the temporaries the NumPy expressions
allocate. ``g`` is always the effective gradient (already multiplied by the
caller's scale and the clip scale) and ``decay`` the current weight-decay
scale the written delta is divided by.
"""
import math
from numba import njit


@njit
def sgd_kernel(x, g, eta, decay):
    for i in range(x.size):
        x[i] -= eta * g[i] / decay


@njit
def momentum_kernel(x, v, g, momentum, eta, decay):
    for i in range(x.size):
        v[i] = momentum * v[i] - eta * g[i]
        x[i] += v[i] / decay


@njit
def adagrad_kernel(x, v, g, eta, eps, decay):
    for i in range(x.size):
        v[i] += g[i] * g[i]
        x[i] -= eta * g[i] / math.sqrt(v[i] + eps) / decay


@njit
def adadelta_kernel(x, hg, hd, g, rho, eps, decay):
    for i in range(x.size):
        hg[i] = rho * hg[i] + (1.0 - rho) * g[i] * g[i]
        delta = -g[i] * math.sqrt(hd[i] + eps) / math.sqrt(hg[i] + eps)
        hd[i] = rho * hd[i] + (1.0 - rho) * delta * delta
        x[i] += delta / decay


@njit
def adam_kernel(x, m, v, g, beta_1, beta_2, s1, s2, eta, eps, decay):
    for i in range(x.size):
        m[i] = beta_1 * m[i] + (1.0 - beta_1) * g[i]
        v[i] = beta_2 * v[i] + (1.0 - beta_2) * g[i] * g[i]
        mhat = m[i] / s1
        vhat = v[i] / s2
        x[i] += -eta * mhat / (math.sqrt(vhat) + eps) / decay
