"""
Dimension-3 vector helpers.

``dot``, ``cross``, ``mag`` and ``distance`` accept a single 3-vector or an
(n,3) array of row vectors and reduce over the last axis.
"""
from __future__ import annotations

from typing import Tuple

import numpy as np

TOL = 1e-16


def dot(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.einsum("...i,...i->...", np.asarray(a, dtype=float), np.asarray(b, dtype=float))


def cross(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.cross(np.asarray(a, dtype=float), np.asarray(b, dtype=float))


def mag(a: np.ndarray) -> np.ndarray:
    return np.linalg.norm(np.asarray(a, dtype=float), axis=-1)


def distance(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return mag(np.asarray(a, dtype=float) - np.asarray(b, dtype=float))


def normalize(v) -> Tuple[np.ndarray, float]:
    """Return ``(unit_vector, original_length)`` of a single 3-vector.

    A zero-length vector is returned unchanged with length 0.0 instead of
    being divided into NaNs.
    """
    v = np.asarray(v, dtype=float)
    if v.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {v.shape}")
    m = float(mag(v))
    if m <= TOL:
        return v.copy(), m
    return v / m, m


def normalize_rows(a: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Row-wise normalisation of an (n,3) array; zero rows stay zero."""
    norms = mag(a)
    safe = np.where(norms > TOL, norms, 1.0)
    out = a / safe[:, None]
    out[norms <= TOL] = 0.0
    return out, norms
