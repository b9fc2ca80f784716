"""
External energy terms.

Each term adds its force contribution into three per-node accumulators and
reports a scalar energy for diagnostics. Forces and energies are computed
independently; several terms here (steric repulsion, sticky links, area
redistribution) are not gradients of the energy they report.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from .mesh import DeformableMesh
from .laplacian import signed_volume
from .vector import cross, dot, mag, normalize

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class ExternalEnergy(ABC):
    """Base class for forces applied to a mesh on top of its internal elasticity."""

    @abstractmethod
    def update_forces(
        self, positions: np.ndarray, fx: np.ndarray, fy: np.ndarray, fz: np.ndarray
    ) -> None:
        """Add this term's force on every node of ``positions`` (n,3) into fx, fy, fz."""

    @abstractmethod
    def get_energy(self, positions: np.ndarray) -> float:
        """Scalar potential energy for diagnostics and termination checks."""

    def update(self) -> None:
        """Refresh any snapshot of another mesh; called once per host iteration."""


def _add_forces(fx, fy, fz, index, f) -> None:
    np.add.at(fx, index, f[:, 0])
    np.add.at(fy, index, f[:, 1])
    np.add.at(fz, index, f[:, 2])


class UniformField(ExternalEnergy):
    """Constant force ``magnitude * direction`` on every node (e.g. gravity)."""

    def __init__(self, magnitude: float, direction: Sequence[float] = (0.0, 0.0, -1.0)):
        unit, length = normalize(direction)
        if length == 0:
            raise ValueError("direction must be non-zero")
        self.magnitude = float(magnitude)
        self.direction = unit

    def update_forces(self, positions, fx, fy, fz):
        f = self.magnitude * self.direction
        fx += f[0]
        fy += f[1]
        fz += f[2]

    def get_energy(self, positions):
        return float(-self.magnitude * np.sum(positions @ self.direction))


class HardSurface(ExternalEnergy):
    """Penalty floor: nodes below ``height`` along ``axis`` are pushed back.

    A node at coordinate ``z < height`` receives ``(height - z) * (factor + offset)``
    along ``axis``. ``offset`` lets a constant body force (e.g. gravity) be
    cancelled inside the floor.
    """

    def __init__(self, factor: float, height: float = 0.0, axis: int = 2, offset: float = 0.0):
        if axis not in (0, 1, 2):
            raise ValueError("axis must be 0, 1 or 2")
        self.factor = float(factor)
        self.height = float(height)
        self.offset = float(offset)
        self.axis = axis

    def update_forces(self, positions, fx, fy, fz):
        depth = self.height - positions[:, self.axis]
        below = depth > 0
        if not below.any():
            return
        (fx, fy, fz)[self.axis][below] += depth[below] * (self.factor + self.offset)

    def get_energy(self, positions):
        return 0.0


class VolumeConservation(ExternalEnergy):
    """Pressure that drives the enclosed volume back toward a target.

    The pressure ``weight * (V0 - V) / V0`` acts along each triangle's area
    vector, split evenly between its three nodes.

    Parameters
    ----------
    mesh : DeformableMesh
        Mesh whose triangles enclose the volume.
    weight : float
        Pressure coefficient.
    target_volume : float, optional
        Defaults to the mesh volume at construction. Settable afterwards.
    """

    def __init__(self, mesh: DeformableMesh, weight: float, target_volume: Optional[float] = None):
        self.mesh = mesh
        self.weight = float(weight)
        self._target = 0.0
        self.target_volume = mesh.calculate_volume() if target_volume is None else target_volume

    @property
    def target_volume(self) -> float:
        return self._target

    @target_volume.setter
    def target_volume(self, value: float) -> None:
        value = float(value)
        if not np.isfinite(value) or value <= 0:
            raise ValueError("target volume must be finite and positive")
        self._target = value

    def update_forces(self, positions, fx, fy, fz):
        F = self.mesh.triangles
        if F.shape[0] == 0:
            return
        v = signed_volume(positions, F)
        pressure = self.weight * (self._target - v) / self._target
        a, b, c = positions[F[:, 0]], positions[F[:, 1]], positions[F[:, 2]]
        # area * normal / 3 for each corner
        share = pressure * cross(b - a, c - a) / 6.0
        for k in range(3):
            _add_forces(fx, fy, fz, F[:, k], share)

    def get_energy(self, positions):
        v = signed_volume(positions, self.mesh.triangles)
        return 0.5 * self.weight * (v - self._target) ** 2 / self._target


class StericMesh(ExternalEnergy):
    """Short-range repulsion from the nodes of a neighbouring mesh.

    Each node closer than ``threshold`` to a neighbour node is pushed away
    from it with magnitude ``weight * (1 - d / threshold)``. The neighbour's
    positions are a snapshot that only changes when ``update()`` is called,
    so two meshes stepped in turn see each other one iteration late.
    """

    def __init__(self, mesh: DeformableMesh, neighbor: DeformableMesh, weight: float, threshold: float):
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        self.mesh = mesh
        self.neighbor = neighbor
        self.weight = float(weight)
        self.threshold = float(threshold)
        self._snapshot = np.zeros((0, 3))
        self._tree: Optional[cKDTree] = None
        self.update()

    def update(self):
        self._snapshot = np.array(self.neighbor.positions, copy=True)
        self._tree = cKDTree(self._snapshot) if self._snapshot.shape[0] else None

    def _close_pairs(self, positions: np.ndarray):
        if self._tree is None or positions.shape[0] == 0:
            return None
        hits = self._tree.query_ball_point(positions, self.threshold)
        counts = np.fromiter((len(h) for h in hits), dtype=np.int64, count=len(hits))
        if counts.sum() == 0:
            return None
        i = np.repeat(np.arange(positions.shape[0]), counts)
        j = np.concatenate([np.asarray(h, dtype=np.int64) for h in hits if len(h)])
        diff = positions[i] - self._snapshot[j]
        d = mag(diff)
        keep = (d > 0) & (d < self.threshold)
        return i[keep], diff[keep], d[keep]

    def update_forces(self, positions, fx, fy, fz):
        pairs = self._close_pairs(positions)
        if pairs is None:
            return
        i, diff, d = pairs
        f = (self.weight * (1.0 - d / self.threshold) / d)[:, None] * diff
        _add_forces(fx, fy, fz, i, f)

    def get_energy(self, positions):
        pairs = self._close_pairs(positions)
        if pairs is None:
            return 0.0
        _, _, d = pairs
        return float(0.5 * self.weight * np.sum((self.threshold - d) ** 2))


class PointAnchor(ExternalEnergy):
    """Spring pulling one node toward a fixed point (e.g. a user-dragged cursor)."""

    def __init__(self, node: int, point: Sequence[float], k: float):
        if node < 0:
            raise IndexError(f"node index {node} must be >= 0")
        self.node = int(node)
        self.k = float(k)
        self.point = np.asarray(point, dtype=float)
        if self.point.shape != (3,):
            raise ValueError("point must be a 3-vector")

    def _delta(self, positions):
        if self.node >= positions.shape[0]:
            raise IndexError(f"node index {self.node} out of range [0, {positions.shape[0]})")
        return positions[self.node] - self.point

    def update_forces(self, positions, fx, fy, fz):
        d = self._delta(positions)
        fx[self.node] += -d[0] * self.k
        fy[self.node] += -d[1] * self.k
        fz[self.node] += -d[2] * self.k

    def get_energy(self, positions):
        d = self._delta(positions)
        return 0.5 * self.k * float(dot(d, d))


class StickyVertex(PointAnchor):
    """Spring tying one node to a node of a partner mesh.

    The partner node's position is a snapshot refreshed by ``update()``. The
    reported energy is the value cached by the last force evaluation.
    """

    def __init__(self, node: int, partner: DeformableMesh, partner_node: int, k: float):
        self.partner = partner
        self.partner_node = int(partner_node)
        super().__init__(node, partner.get_coordinates(self.partner_node), k)
        self.potential_energy = 0.0

    def update(self):
        self.point = self.partner.get_coordinates(self.partner_node)

    def update_forces(self, positions, fx, fy, fz):
        super().update_forces(positions, fx, fy, fz)
        self.potential_energy = super().get_energy(positions)

    def get_energy(self, positions):
        return self.potential_energy


class TriangleAreaDistributor(ExternalEnergy):
    """Pushes triangle areas toward a common target.

    Each triangle with area ``A`` moves its three nodes along
    ``(x - centroid)`` with factor ``weight * (A* - A) / A*``, so small
    triangles grow and large ones shrink. ``A*`` is the mean triangle area
    unless ``target_area`` is given.
    """

    def __init__(self, mesh: DeformableMesh, weight: float, target_area: Optional[float] = None):
        if target_area is not None and target_area <= 0:
            raise ValueError("target_area must be > 0")
        self.mesh = mesh
        self.weight = float(weight)
        self.target_area = target_area

    def _areas(self, positions):
        F = self.mesh.triangles
        a, b, c = positions[F[:, 0]], positions[F[:, 1]], positions[F[:, 2]]
        areas = 0.5 * mag(cross(b - a, c - a))
        target = float(areas.mean()) if self.target_area is None else float(self.target_area)
        return areas, target

    def update_forces(self, positions, fx, fy, fz):
        F = self.mesh.triangles
        if F.shape[0] == 0:
            return
        areas, target = self._areas(positions)
        if target <= 0:
            return
        factor = self.weight * (target - areas) / target
        centroid = positions[F].mean(axis=1)
        for k in range(3):
            f = factor[:, None] * (positions[F[:, k]] - centroid)
            _add_forces(fx, fy, fz, F[:, k], f)

    def get_energy(self, positions):
        if self.mesh.triangle_count == 0:
            return 0.0
        areas, target = self._areas(positions)
        if target <= 0:
            return 0.0
        return float(0.5 * self.weight * np.sum(((areas - target) / target) ** 2))
