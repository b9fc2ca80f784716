"""
Deformable triangle mesh: node positions, triangles and cached triangle geometry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
import trimesh

from .laplacian import face_areas, signed_volume, umbrella_laplacian, unique_edges
from .vector import cross, normalize_rows

if TYPE_CHECKING:
    from .energies import ExternalEnergy

# Module-level logger
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class TopologyError(ValueError):
    """Malformed mesh input rejected at construction."""


class StaleGeometryError(RuntimeError):
    """Cached triangle normals/areas were read after the positions changed."""


@dataclass(frozen=True)
class Triangle:
    index: int
    nodes: Tuple[int, int, int]
    normal: np.ndarray
    area: float


def _validate_topology(F: np.ndarray, n: int) -> None:
    if F.shape[0] == 0:
        return
    if F.min() < 0 or F.max() >= n:
        bad = np.where((F < 0) | (F >= n))[0]
        raise TopologyError(
            f"triangle {int(bad[0])} references a node outside [0, {n}): {F[bad[0]].tolist()}"
        )
    repeated = (F[:, 0] == F[:, 1]) | (F[:, 1] == F[:, 2]) | (F[:, 2] == F[:, 0])
    if repeated.any():
        j = int(np.argmax(repeated))
        raise TopologyError(f"triangle {j} repeats a node: {F[j].tolist()}")

    directed = np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]], axis=0)
    # an edge shared by three or more triangles always repeats a direction
    edges, counts = np.unique(directed, axis=0, return_counts=True)
    if np.any(counts > 1):
        e = edges[np.argmax(counts)]
        raise TopologyError(
            f"edge {e.tolist()} is traversed twice in the same direction "
            "(inconsistent winding or non-manifold edge)"
        )


class DeformableMesh:
    """
    Triangle mesh whose node positions evolve under internal and external forces.

    Nodes and triangles live in flat arrays addressed by stable integer indices.
    Topology is fixed at construction; positions change every integration step.

    Parameters
    ----------
    positions : (n,3) float array
        Initial node coordinates.
    triangles : (m,3) int array
        Node indices of each triangle, wound consistently (outward normals for
        a closed surface).
    alpha : float, default 1.0
        Edge tension. Every edge acts as a zero-rest-length spring.
    beta : float, default 0.0
        Bending stiffness, applied through the umbrella bi-Laplacian.
    gamma : float, default 1.0
        Viscous drag. An explicit step moves each node by ``F / gamma``.
    """

    def __init__(
        self,
        positions: np.ndarray,
        triangles: np.ndarray,
        *,
        alpha: float = 1.0,
        beta: float = 0.0,
        gamma: float = 1.0,
    ):
        V = np.array(positions, dtype=np.float64, copy=True)
        if V.ndim != 2 or V.shape[1] != 3:
            raise ValueError("positions must have shape (n,3)")
        if not np.all(np.isfinite(V)):
            raise ValueError("positions must be finite")

        F_in = np.asarray(triangles)
        if F_in.size == 0:
            F_in = F_in.reshape(0, 3)
        if F_in.ndim != 2 or F_in.shape[1] != 3:
            raise ValueError("triangles must have shape (m,3)")
        F = F_in.astype(np.int64)
        if not np.array_equal(F, F_in):
            raise TopologyError("triangle indices must be integers")
        _validate_topology(F, V.shape[0])

        self._positions = V
        self._triangles = F
        self._triangles.setflags(write=False)
        self._edges = unique_edges(F)
        self._edges.setflags(write=False)
        self._laplacian: Optional[sp.csr_matrix] = None

        self._normals = np.zeros((F.shape[0], 3))
        self._areas = np.zeros(F.shape[0])
        self._geometry_valid = False

        self._alpha = 0.0
        self._beta = 0.0
        self._gamma = 1.0
        self.alpha = alpha
        self.beta = beta
        self.gamma = gamma

        self._energies: List["ExternalEnergy"] = []
        self.node_to_triangles: Tuple[np.ndarray, ...] = ()
        self.rebuild_adjacency()
        self.refresh_triangles()

        logger.debug("DeformableMesh: %d nodes, %d triangles", self.node_count, self.triangle_count)

    # =================================================================
    # CONSTRUCTION HELPERS
    # =================================================================

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh, **coefficients) -> "DeformableMesh":
        """Build from a ``trimesh.Trimesh`` (vertices and faces are copied)."""
        return cls(
            np.asarray(mesh.vertices, dtype=float),
            np.asarray(mesh.faces, dtype=np.int64),
            **coefficients,
        )

    def to_trimesh(self) -> trimesh.Trimesh:
        return trimesh.Trimesh(
            vertices=self._positions.copy(), faces=np.array(self._triangles), process=False
        )

    def copy(self) -> "DeformableMesh":
        """Copy positions, topology and coefficients; energy terms are not copied."""
        return DeformableMesh(
            self._positions, self._triangles, alpha=self.alpha, beta=self.beta, gamma=self.gamma
        )

    # =================================================================
    # COEFFICIENTS
    # =================================================================

    @property
    def alpha(self) -> float:
        return self._alpha

    @alpha.setter
    def alpha(self, value: float) -> None:
        value = float(value)
        if not np.isfinite(value):
            raise ValueError("alpha must be finite")
        self._alpha = value

    @property
    def beta(self) -> float:
        return self._beta

    @beta.setter
    def beta(self, value: float) -> None:
        value = float(value)
        if not np.isfinite(value):
            raise ValueError("beta must be finite")
        self._beta = value

    @property
    def gamma(self) -> float:
        return self._gamma

    @gamma.setter
    def gamma(self, value: float) -> None:
        value = float(value)
        if not np.isfinite(value) or value <= 0:
            raise ValueError("gamma must be finite and > 0")
        self._gamma = value

    # =================================================================
    # TOPOLOGY
    # =================================================================

    @property
    def node_count(self) -> int:
        return self._positions.shape[0]

    @property
    def triangle_count(self) -> int:
        return self._triangles.shape[0]

    @property
    def triangles(self) -> np.ndarray:
        return self._triangles

    @property
    def edges(self) -> np.ndarray:
        return self._edges

    def rebuild_adjacency(self) -> None:
        """Rebuild the node -> incident triangle index."""
        n = self.node_count
        if n == 0:
            self.node_to_triangles = ()
            return
        F = self._triangles
        flat = F.ravel()
        owner = np.repeat(np.arange(F.shape[0]), 3)
        order = np.argsort(flat, kind="stable")
        counts = np.bincount(flat, minlength=n)
        splits = np.cumsum(counts)[:-1]
        self.node_to_triangles = tuple(np.split(owner[order], splits))

    def umbrella_laplacian(self) -> sp.csr_matrix:
        """Graph Laplacian over the mesh edges, built once per topology."""
        if self._laplacian is None:
            self._laplacian = umbrella_laplacian(self.node_count, self._edges)
        return self._laplacian

    def incident_triangles(self, index: int) -> np.ndarray:
        self._check_node(index)
        return self.node_to_triangles[index]

    # =================================================================
    # POSITIONS
    # =================================================================

    def _check_node(self, index: int) -> None:
        if not 0 <= index < self.node_count:
            raise IndexError(f"node index {index} out of range [0, {self.node_count})")

    @property
    def positions(self) -> np.ndarray:
        """Read-only (n,3) view of the node coordinates."""
        view = self._positions.view()
        view.setflags(write=False)
        return view

    @property
    def positions_flat(self) -> np.ndarray:
        """Read-only flat buffer x0, y0, z0, x1, ... of length 3n."""
        view = self._positions.reshape(-1)
        view.setflags(write=False)
        return view

    def get_coordinates(self, index: int) -> np.ndarray:
        self._check_node(index)
        return self._positions[index].copy()

    def set_coordinates(self, index: int, xyz: Sequence[float]) -> None:
        self._check_node(index)
        p = np.asarray(xyz, dtype=float)
        if p.shape != (3,):
            raise ValueError("xyz must be a 3-vector")
        self._positions[index] = p
        self._geometry_valid = False

    def set_positions(self, positions: np.ndarray) -> None:
        P = np.asarray(positions, dtype=float)
        if P.shape != self._positions.shape:
            raise ValueError(f"positions must have shape {self._positions.shape}")
        self._positions[:] = P
        self._geometry_valid = False

    def translate(self, displacement: Sequence[float]) -> None:
        d = np.asarray(displacement, dtype=float)
        if d.shape != (3,):
            raise ValueError("displacement must be a 3-vector")
        self._positions += d
        self._geometry_valid = False

    # =================================================================
    # TRIANGLE GEOMETRY
    # =================================================================

    def refresh_triangles(self) -> None:
        """Recompute every triangle's unit normal and area from current positions.

        Degenerate triangles get area 0 and a zero normal.
        """
        V = self._positions
        F = self._triangles
        if F.shape[0]:
            n = cross(V[F[:, 1]] - V[F[:, 0]], V[F[:, 2]] - V[F[:, 0]])
            self._normals, _ = normalize_rows(n)
            self._areas = face_areas(V, F)
        self._geometry_valid = True

    @property
    def geometry_current(self) -> bool:
        return self._geometry_valid

    def _require_geometry(self) -> None:
        if not self._geometry_valid:
            raise StaleGeometryError("triangle geometry is stale; call refresh_triangles() first")

    @property
    def triangle_normals(self) -> np.ndarray:
        self._require_geometry()
        view = self._normals.view()
        view.setflags(write=False)
        return view

    @property
    def triangle_areas(self) -> np.ndarray:
        self._require_geometry()
        view = self._areas.view()
        view.setflags(write=False)
        return view

    def get_triangle(self, index: int) -> Triangle:
        if not 0 <= index < self.triangle_count:
            raise IndexError(f"triangle index {index} out of range [0, {self.triangle_count})")
        self._require_geometry()
        a, b, c = (int(i) for i in self._triangles[index])
        return Triangle(index, (a, b, c), self._normals[index].copy(), float(self._areas[index]))

    # =================================================================
    # GLOBAL MEASURES
    # =================================================================

    def calculate_volume(self) -> float:
        """Signed enclosed volume; positive for a closed surface with outward winding."""
        return signed_volume(self._positions, self._triangles)

    def calculate_area(self) -> float:
        return float(face_areas(self._positions, self._triangles).sum())

    def centroid(self) -> np.ndarray:
        return self._positions.mean(axis=0)

    # =================================================================
    # EXTERNAL ENERGIES
    # =================================================================

    @property
    def external_energies(self) -> Tuple["ExternalEnergy", ...]:
        return tuple(self._energies)

    def add_external_energy(self, energy: "ExternalEnergy") -> None:
        self._energies.append(energy)

    def remove_external_energy(self, energy: "ExternalEnergy") -> None:
        """Remove a registered term; raises ValueError if it is not registered."""
        self._energies.remove(energy)

    def clear_external_energies(self) -> None:
        self._energies.clear()

    def __repr__(self) -> str:
        return (
            f"DeformableMesh(nodes={self.node_count}, triangles={self.triangle_count}, "
            f"alpha={self.alpha}, beta={self.beta}, gamma={self.gamma}, "
            f"energies={len(self._energies)})"
        )
