"""
Discrete mean curvature on a triangle mesh.

Follows "Discrete Differential-Geometry Operators for Triangulated
2-Manifolds" (Meyer, Desbrun, Schroeder, Barr): per node, a mixed Voronoi
area, a cotangent-weighted mean-curvature normal and an area-weighted mean
normal. For a node ``a`` of a triangle with the next corners ``b``, ``c`` in
winding order:

- angle at ``a`` obtuse (``|bc|^2 > |ab|^2 + |ca|^2``): area / 2
- angle at ``b`` or ``c`` obtuse: area / 4
- otherwise: ``(|ab|^2 cotB + |ca|^2 cotC) / 8``

and the curvature normal accumulates ``0.5 cotC (a - b) + 0.5 cotB (a - c)``
before being divided by the total mixed area. The mean curvature is half the
projection of the curvature normal onto the unit mean normal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Set, Tuple

import numpy as np

from .laplacian import CornerGeometry, corner_geometry, cotangent_laplacian
from .mesh import DeformableMesh
from .vector import dot, normalize, normalize_rows

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

HISTOGRAM_BINS = 50


def mixed_area_terms(g: CornerGeometry, areas: np.ndarray) -> np.ndarray:
    """Mixed-area contribution of every triangle corner, shape (m,3).

    Degenerate triangles contribute 0. Negative contributions are clamped
    to 0 and reported.
    """
    A = np.broadcast_to(areas[:, None], g.mab.shape)
    obtuse_here = g.mbc > g.mab + g.mca
    obtuse_other = (g.mca > g.mab + g.mbc) | (g.mab > g.mbc + g.mca)
    voronoi = 0.125 * (g.mab * g.cot_b + g.mca * g.cot_c)
    v = np.where(obtuse_here, A / 2.0, np.where(obtuse_other, A / 4.0, voronoi))
    v[g.degenerate] = 0.0
    negative = v < 0
    if negative.any():
        logger.warning("mixed area: clamped %d negative corner contributions to 0", int(negative.sum()))
        v[negative] = 0.0
    return v


def _local(positions: np.ndarray, triangles: np.ndarray, areas: np.ndarray, node: int, incident: np.ndarray):
    """Corner data of ``node`` in each incident triangle."""
    F = triangles[incident]
    g = corner_geometry(positions, F)
    dex = np.argmax(F == node, axis=1)
    rows = np.arange(F.shape[0])
    v = mixed_area_terms(g, areas[incident])[rows, dex]
    return g.ab[rows, dex], g.ca[rows, dex], g.cot_b[rows, dex], g.cot_c[rows, dex], v


# =================================================================
# PER-NODE FORMS
#
# Each takes (positions, triangles, normals, areas, node, incident) where
# ``normals`` and ``areas`` are the current per-triangle geometry and
# ``incident`` lists the triangles containing ``node``.
# =================================================================


def node_mixed_area(positions, triangles, normals, areas, node: int, incident: np.ndarray) -> float:
    """Mixed area of ``node``; 0.0 when it has no incident triangles."""
    if len(incident) == 0:
        return 0.0
    *_, v = _local(positions, triangles, areas, node, incident)
    return float(v.sum())


def node_mean_normal(positions, triangles, normals, areas, node: int, incident: np.ndarray) -> np.ndarray:
    """Mixed-area weighted average of the incident face normals (unit length)."""
    if len(incident) == 0:
        return np.zeros(3)
    *_, v = _local(positions, triangles, areas, node, incident)
    n, _ = normalize((normals[incident] * v[:, None]).sum(axis=0))
    return n


def node_mean_curvature_normal(positions, triangles, normals, areas, node: int, incident: np.ndarray) -> np.ndarray:
    """Cotangent curvature normal divided by the mixed area (twice H along the normal).

    Raises ValueError when ``node`` has no incident triangles; returns zeros
    when its mixed area is 0.
    """
    if len(incident) == 0:
        raise ValueError(f"node {node} has no incident triangles")
    ab, ca, cot_b, cot_c, v = _local(positions, triangles, areas, node, incident)
    kappa = (0.5 * cot_c[:, None] * (-ab) + 0.5 * cot_b[:, None] * ca).sum(axis=0)
    area = float(v.sum())
    if area <= 0:
        return np.zeros(3)
    return kappa / area


def node_normal_and_curvature(positions, triangles, normals, areas, node: int, incident: np.ndarray) -> np.ndarray:
    """``(nx, ny, nz, kappa.n)``; the mean curvature is half the last entry."""
    kappa = node_mean_curvature_normal(positions, triangles, normals, areas, node, incident)
    normal = node_mean_normal(positions, triangles, normals, areas, node, incident)
    return np.array([normal[0], normal[1], normal[2], float(kappa @ normal)])


@dataclass
class CurvatureStatistics:
    mean: float
    std: float
    min: float
    max: float
    display_min: float  # min clipped to mean - std
    display_max: float  # max clipped to mean + std


def curvature_statistics(values: np.ndarray) -> CurvatureStatistics:
    """Summary of a curvature sample, including a one-sigma display range."""
    k = np.asarray(values, dtype=float).ravel()
    if k.size == 0:
        raise ValueError("no curvature values")
    mean = float(k.mean())
    std = float(np.sqrt(max(float(np.mean(k * k)) - mean * mean, 0.0)))
    kmin = float(k.min())
    kmax = float(k.max())
    return CurvatureStatistics(
        mean=mean,
        std=std,
        min=kmin,
        max=kmax,
        display_min=max(kmin, mean - std),
        display_max=min(kmax, mean + std),
    )


class CurvatureCalculator:
    """
    Curvature of a mesh snapshot.

    The calculator only reads the mesh. Triangle geometry is refreshed when it
    is stale, so the positions may change between calls.
    """

    def __init__(self, mesh: DeformableMesh):
        self.mesh = mesh
        self.min_curv = -1.0
        self.max_curv = -1.0
        self.prepare_map()

    def prepare_map(self) -> None:
        """Refresh triangle geometry and the node -> triangle index."""
        self.mesh.refresh_triangles()
        self.mesh.rebuild_adjacency()

    def _geometry(self) -> None:
        if not self.mesh.geometry_current:
            self.mesh.refresh_triangles()

    def _incident(self, index: int) -> np.ndarray:
        self._geometry()
        return self.mesh.incident_triangles(index)

    def _args(self, index: int):
        incident = self._incident(index)
        m = self.mesh
        return (
            np.asarray(m.positions),
            m.triangles,
            np.asarray(m.triangle_normals),
            np.asarray(m.triangle_areas),
            index,
            incident,
        )

    # =================================================================
    # PER-NODE QUANTITIES
    # =================================================================

    def calculate_mixed_area(self, index: int) -> float:
        return node_mixed_area(*self._args(index))

    def calculate_mean_normal(self, index: int) -> np.ndarray:
        return node_mean_normal(*self._args(index))

    def calculate_mean_curvature_normal(self, index: int) -> np.ndarray:
        return node_mean_curvature_normal(*self._args(index))

    def get_normal_and_curvature(self, index: int) -> np.ndarray:
        return node_normal_and_curvature(*self._args(index))

    def get_neighbors(self, index: int) -> Set[int]:
        incident = self._incident(index)
        neighbors = set(int(i) for i in np.unique(self.mesh.triangles[incident]))
        neighbors.discard(index)
        return neighbors

    # =================================================================
    # WHOLE MESH
    # =================================================================

    def calculate_curvature(self, *, verbose: bool = False, log: Optional[logging.Logger] = None) -> np.ndarray:
        """Curvature at every node that has incident triangles.

        Returns
        -------
        (k,7) array
            Rows ``x, y, z, kappa.n, nx, ny, nz``. Nodes without triangles are
            skipped.
        """
        _log = log or logger
        self._geometry()
        X = self.mesh.positions
        rows = []
        for i in range(self.mesh.node_count):
            if self.mesh.node_to_triangles[i].size == 0:
                continue
            nk = self.get_normal_and_curvature(i)
            rows.append([X[i, 0], X[i, 1], X[i, 2], nk[3], nk[0], nk[1], nk[2]])
        if verbose:
            _log.info("calculate_curvature: %d of %d nodes", len(rows), self.mesh.node_count)
        return np.asarray(rows, dtype=float).reshape(-1, 7)

    def mean_curvatures(self) -> Tuple[np.ndarray, np.ndarray]:
        """``(node_indices, H)`` for every node with incident triangles."""
        kappa = mean_curvature_normals(self.mesh)
        normals = mean_normals(self.mesh)
        nodes = np.flatnonzero([t.size > 0 for t in self.mesh.node_to_triangles])
        dots = dot(kappa[nodes], normals[nodes])
        return nodes, 0.5 * dots

    # =================================================================
    # HISTOGRAM
    # =================================================================

    def set_min_curvature(self, value: float) -> None:
        self.min_curv = float(value)

    def set_max_curvature(self, value: float) -> None:
        self.max_curv = float(value)

    def create_curvature_histogram(self, curvatures: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
        """50-bin histogram of ``kappa.n`` values.

        Parameters
        ----------
        curvatures : array, optional
            Rows from ``calculate_curvature`` (2-D with at least four
            columns; column 3 is used), or values of any other shape, which
            are flattened. Computed from the mesh when omitted.

        Returns
        -------
        centres, counts : (50,) arrays
            The range is ``[min_curv, max_curv]``, or the data range when the
            two are equal. A value equal to the maximum is counted in the last
            bin; values outside the range are dropped.
        """
        if curvatures is None:
            curvatures = self.calculate_curvature()
        c = np.asarray(curvatures, dtype=float)
        values = c[:, 3] if c.ndim == 2 and c.shape[1] >= 4 else c.ravel()
        values = values[np.isfinite(values)]
        n = HISTOGRAM_BINS

        lo, hi = self.min_curv, self.max_curv
        if lo == hi:
            if values.size == 0:
                raise ValueError("no curvature values to derive a histogram range from")
            lo, hi = float(values.min()), float(values.max())

        dk = (hi - lo) / n
        centres = (np.arange(n) + 0.5) * dk + lo
        counts = np.zeros(n)
        if dk > 0:
            index = np.floor((values - lo) / dk).astype(np.int64)
        else:
            index = np.where(values == hi, n, -1)
        index[(index == n) & (values <= hi)] = n - 1
        keep = (index >= 0) & (index < n)
        np.add.at(counts, index[keep], 1.0)
        return centres, counts


# =================================================================
# VECTORISED FORMS
# =================================================================


def _corner_data(mesh: DeformableMesh):
    if not mesh.geometry_current:
        mesh.refresh_triangles()
    g = corner_geometry(np.asarray(mesh.positions), mesh.triangles)
    v = mixed_area_terms(g, np.asarray(mesh.triangle_areas))
    return g, v


def mixed_areas(mesh: DeformableMesh) -> np.ndarray:
    """Mixed area of every node, shape (n,); 0 for nodes without triangles."""
    _, v = _corner_data(mesh)
    A = np.zeros(mesh.node_count)
    np.add.at(A, mesh.triangles.ravel(), v.ravel())
    return A


def mean_curvature_normals(mesh: DeformableMesh) -> np.ndarray:
    """Mean-curvature normal of every node, shape (n,3); zero where the mixed area is 0.

    Computed as ``(L X)_i / A_i`` with the cotangent Laplacian ``L``.
    """
    A = mixed_areas(mesh)
    X = np.asarray(mesh.positions)
    K = np.asarray(cotangent_laplacian(X, mesh.triangles) @ X)
    ok = A > 0
    K[ok] /= A[ok, None]
    K[~ok] = 0.0
    return K


def mean_normals(mesh: DeformableMesh) -> np.ndarray:
    """Unit mixed-area weighted normal of every node, shape (n,3)."""
    _, v = _corner_data(mesh)
    weighted = np.asarray(mesh.triangle_normals)[:, None, :] * v[..., None]
    N = np.zeros((mesh.node_count, 3))
    np.add.at(N, mesh.triangles.ravel(), weighted.reshape(-1, 3))
    N, _ = normalize_rows(N)
    return N


def calculate_average_curvature(mesh: DeformableMesh) -> float:
    """Mixed-area weighted mean of the mean curvature over the whole mesh."""
    A = mixed_areas(mesh)
    K = mean_curvature_normals(mesh)
    N = mean_normals(mesh)
    total = float(A.sum())
    if total <= 0:
        raise ValueError("mesh has no mixed area")
    h = 0.5 * dot(K, N)
    return float(np.sum(h * A) / total)
