from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp

from .vector import cross, dot, mag

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# Relative tolerance on |e1 x e2| below which a triangle counts as degenerate.
DEGENERATE_EPS = 1e-12


@dataclass
class CornerGeometry:
    """Per-corner edge data of every triangle.

    Arrays are indexed ``[triangle, corner]``. For corner ``k`` of a triangle
    the node is ``a = F[:, k]``, followed by ``b = F[:, (k+1)%3]`` and
    ``c = F[:, (k+2)%3]`` in winding order.
    """

    ab: np.ndarray  # (m,3,3) b - a
    ca: np.ndarray  # (m,3,3) a - c
    mab: np.ndarray  # (m,3) |ab|^2
    mbc: np.ndarray  # (m,3) |bc|^2
    mca: np.ndarray  # (m,3) |ca|^2
    cot_b: np.ndarray  # (m,3) cotangent of the angle at b
    cot_c: np.ndarray  # (m,3) cotangent of the angle at c
    degenerate: np.ndarray  # (m,) bool


def face_areas(V: np.ndarray, F: np.ndarray) -> np.ndarray:
    v0 = V[F[:, 0]]
    v1 = V[F[:, 1]]
    v2 = V[F[:, 2]]
    return 0.5 * mag(cross(v1 - v0, v2 - v0))


def signed_volume(V: np.ndarray, F: np.ndarray) -> float:
    """Enclosed volume by the divergence theorem; positive for outward winding."""
    if F.shape[0] == 0:
        return 0.0
    a, b, c = V[F[:, 0]], V[F[:, 1]], V[F[:, 2]]
    return float(dot(a, cross(b, c)).sum() / 6.0)


def corner_geometry(V: np.ndarray, F: np.ndarray) -> CornerGeometry:
    """Edge vectors, squared lengths and corner cotangents for all triangles.

    Cotangents come from cross/dot products of the edge vectors:
    ``cotB = -ab.bc / |ab x bc|`` and ``cotC = -bc.ca / |bc x ca|``. Triangles
    whose cross product vanishes relative to their edge lengths get zero
    cotangents and are flagged in ``degenerate``.
    """
    m = F.shape[0]
    ab = np.empty((m, 3, 3))
    ca = np.empty((m, 3, 3))
    mab = np.empty((m, 3))
    mbc = np.empty((m, 3))
    mca = np.empty((m, 3))
    cot_b = np.zeros((m, 3))
    cot_c = np.zeros((m, 3))
    degenerate = np.zeros(m, dtype=bool)

    for k in range(3):
        a = V[F[:, k]]
        b = V[F[:, (k + 1) % 3]]
        c = V[F[:, (k + 2) % 3]]
        e_ab = b - a
        e_bc = c - b
        e_ca = a - c
        ab[:, k] = e_ab
        ca[:, k] = e_ca
        mab[:, k] = dot(e_ab, e_ab)
        mbc[:, k] = dot(e_bc, e_bc)
        mca[:, k] = dot(e_ca, e_ca)

        mx1 = mag(cross(e_ab, e_bc))
        mx2 = mag(cross(e_bc, e_ca))
        scale = mab[:, k] + mbc[:, k] + mca[:, k]
        bad = (mx1 <= DEGENERATE_EPS * scale) | (mx2 <= DEGENERATE_EPS * scale) | ~np.isfinite(scale)
        degenerate |= bad

        ok = ~bad
        cot_b[ok, k] = -dot(e_ab[ok], e_bc[ok]) / mx1[ok]
        cot_c[ok, k] = -dot(e_bc[ok], e_ca[ok]) / mx2[ok]

    cot_b[degenerate] = 0.0
    cot_c[degenerate] = 0.0
    if degenerate.any():
        logger.debug("corner_geometry: %d degenerate triangles", int(degenerate.sum()))
    return CornerGeometry(ab, ca, mab, mbc, mca, cot_b, cot_c, degenerate)


def cotangent_laplacian(V: np.ndarray, F: np.ndarray, *, verbose: bool = False) -> sp.csr_matrix:
    """Build symmetric cotangent Laplacian L for a triangle mesh.

    L(i,j) = -(cot alpha + cot beta)/2 for edge (i,j), L(i,i) = -sum_{j!=i} L(i,j),
    so that ``(L V)_i = 1/2 sum_j (cot alpha + cot beta)(x_i - x_j)``, the
    numerator of the mean-curvature normal at node i (see
    ``curvature.mean_curvature_normals``). Degenerate triangles contribute no
    weights.

    Parameters
    ----------
    V : (n,3) float array
    F : (m,3) int array (triangles)

    Returns
    -------
    L : (n,n) csr_matrix
    """
    n = V.shape[0]
    if verbose:
        logger.info("Building cotangent Laplacian for %d vertices, %d faces", n, F.shape[0])
    g = corner_geometry(V, F)

    I = []
    J = []
    W = []
    for k in range(3):
        a = F[:, k]
        b = F[:, (k + 1) % 3]
        c = F[:, (k + 2) % 3]
        # edge a-b is opposite c, edge a-c is opposite b
        I.append(a)
        J.append(b)
        W.append(g.cot_c[:, k])
        I.append(a)
        J.append(c)
        W.append(g.cot_b[:, k])

    C = sp.coo_matrix(
        (np.concatenate(W), (np.concatenate(I), np.concatenate(J))), shape=(n, n)
    ).tocsr()

    L = -0.5 * C
    diag = -np.array(L.sum(axis=1)).ravel()
    L = L + sp.diags(diag, format="csr")
    if verbose:
        logger.info("Laplacian built: nnz=%d", L.nnz)
    return L


def unique_edges(F: np.ndarray) -> np.ndarray:
    """Sorted unique undirected edges (e,2) of a triangle array."""
    if F.shape[0] == 0:
        return np.zeros((0, 2), dtype=np.int64)
    E = np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]], axis=0)
    E = np.sort(E, axis=1)
    return np.unique(E, axis=0)


def umbrella_laplacian(n: int, edges: np.ndarray) -> sp.csr_matrix:
    """Graph (umbrella) Laplacian L = D - A over the given undirected edges.

    ``(L X)_i = sum_j (x_i - x_j)`` over the neighbours j of i.
    """
    if edges.shape[0] == 0:
        return sp.csr_matrix((n, n))
    i, j = edges[:, 0], edges[:, 1]
    data = np.ones(2 * edges.shape[0])
    A = sp.coo_matrix((data, (np.concatenate([i, j]), np.concatenate([j, i]))), shape=(n, n)).tocsr()
    deg = np.array(A.sum(axis=1)).ravel()
    return (sp.diags(deg, format="csr") - A).tocsr()
