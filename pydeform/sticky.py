"""
Establishing sticky links between two meshes.

Pairing runs once (or once per host iteration for the proximity variant); the
links it creates are ``StickyVertex`` terms registered on both meshes.
"""
from __future__ import annotations

import logging
from typing import List, MutableSet, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from .energies import StickyVertex
from .mesh import DeformableMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

Pair = Tuple[int, int]


def pair_vertices(
    a_positions: np.ndarray,
    b_positions: np.ndarray,
    *,
    axis: int = 0,
    a_min: float = -0.05,
    b_max: float = 0.05,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> List[Pair]:
    """Greedy nearest-pair matching of two node sets facing each other along ``axis``.

    Candidates are nodes of A with coordinate ``> a_min`` and nodes of B with
    coordinate ``< b_max`` along ``axis``. Every candidate pair is ranked by
    its squared distance in the two remaining axes (ascending, ties keep
    enumeration order) and accepted when neither end has been claimed yet.

    Returns
    -------
    list of (i, j)
        Node index in A and node index in B of every accepted pair, in
        acceptance order. No index appears twice on either side.
    """
    if axis not in (0, 1, 2):
        raise ValueError("axis must be 0, 1 or 2")
    A = np.asarray(a_positions, dtype=float)
    B = np.asarray(b_positions, dtype=float)
    if A.ndim != 2 or A.shape[1] != 3 or B.ndim != 2 or B.shape[1] != 3:
        raise ValueError("positions must have shape (n,3)")

    _log = log or logger
    ia = np.flatnonzero(A[:, axis] > a_min)
    jb = np.flatnonzero(B[:, axis] < b_max)
    if verbose:
        _log.info("pair_vertices: %d candidates in A, %d in B", ia.size, jb.size)
    if ia.size == 0 or jb.size == 0:
        return []

    perp = [k for k in range(3) if k != axis]
    d2 = np.zeros((ia.size, jb.size))
    for k in perp:
        diff = A[ia, k][:, None] - B[jb, k][None, :]
        d2 += diff * diff

    order = np.argsort(d2, axis=None, kind="stable")
    free_a = np.ones(ia.size, dtype=bool)
    free_b = np.ones(jb.size, dtype=bool)
    limit = min(ia.size, jb.size)
    pairs: List[Pair] = []
    for flat in order:
        r, c = divmod(int(flat), jb.size)
        if free_a[r] and free_b[c]:
            free_a[r] = False
            free_b[c] = False
            pairs.append((int(ia[r]), int(jb[c])))
            if len(pairs) == limit:
                break

    if verbose:
        _log.info("pair_vertices: accepted %d pairs", len(pairs))
    return pairs


def stick_vertices(
    a: DeformableMesh,
    b: DeformableMesh,
    k: float,
    **pairing,
) -> List[Pair]:
    """Pair facing nodes of ``a`` and ``b`` and link each pair with springs both ways."""
    pairs = pair_vertices(a.positions, b.positions, **pairing)
    for i, j in pairs:
        a.add_external_energy(StickyVertex(i, b, j, k))
        b.add_external_energy(StickyVertex(j, a, i, k))
    return pairs


def stick_close_vertices(
    a: DeformableMesh,
    b: DeformableMesh,
    k: float,
    cutoff: float,
    stuck_a: MutableSet[int],
    stuck_b: MutableSet[int],
) -> List[Pair]:
    """Link unclaimed node pairs whose squared distance is below ``cutoff``.

    Nodes of ``a`` are visited in index order and each takes the first
    unclaimed node of ``b`` (in index order) within range. ``stuck_a`` and
    ``stuck_b`` record claimed nodes across calls and are updated in place.
    """
    if cutoff <= 0:
        return []
    B = np.asarray(b.positions)
    if B.shape[0] == 0 or a.node_count == 0:
        return []
    A = np.asarray(a.positions)
    tree = cKDTree(B)
    hits = tree.query_ball_point(A, np.sqrt(cutoff))

    linked: List[Pair] = []
    for i in range(A.shape[0]):
        if i in stuck_a or not hits[i]:
            continue
        for j in sorted(hits[i]):
            if j in stuck_b:
                continue
            d = B[j] - A[i]
            if float(d @ d) < cutoff:
                stuck_a.add(i)
                stuck_b.add(j)
                a.add_external_energy(StickyVertex(i, b, j, k))
                b.add_external_energy(StickyVertex(j, a, i, k))
                linked.append((i, j))
                break
    if linked:
        logger.debug("stick_close_vertices: linked %d new pairs", len(linked))
    return linked
