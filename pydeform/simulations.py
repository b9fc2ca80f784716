"""
Host loops that advance several meshes together.

Coupling terms (steric repulsion, sticky links) read a snapshot of their
partner mesh taken at the start of each iteration, so every mesh sees the
others as they were after the previous iteration regardless of stepping
order.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional, Sequence, Set

import numpy as np
import trimesh

from .energies import HardSurface, StericMesh, TriangleAreaDistributor, UniformField, VolumeConservation
from .integrator import step
from .mesh import DeformableMesh
from .sticky import Pair, stick_close_vertices, stick_vertices

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class MeshEnsemble:
    """Meshes stepped in a fixed order with one-iteration-lagged coupling."""

    def __init__(self, meshes: Sequence[DeformableMesh]):
        self.meshes: List[DeformableMesh] = list(meshes)

    def snapshot(self) -> None:
        for mesh in self.meshes:
            for energy in mesh.external_energies:
                energy.update()

    def step(self) -> List[np.ndarray]:
        """Snapshot all coupling terms, then step every mesh; returns the forces per mesh."""
        self.snapshot()
        return [step(mesh) for mesh in self.meshes]

    def run(self, iterations: int) -> None:
        for _ in range(iterations):
            self.step()


@dataclass
class TwoDropsParameters:
    gravity_magnitude: float = 0.001
    surface_factor: float = 1.0
    volume_conservation: float = 0.5
    steric: float = 0.01
    steric_threshold: float = 0.02
    sticky: float = 1.0
    sticky_cutoff: float = 0.0001
    normalize: float = 0.0
    radius: float = 0.1
    separation: float = 0.21
    height: float = 0.2
    subdivisions: int = 2
    alpha: float = 0.1
    beta: float = 0.01
    gamma: float = 100.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TwoDropsParameters":
        known = {f.name for f in fields(TwoDropsParameters)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown TwoDrops parameters: {sorted(unknown)}")
        return TwoDropsParameters(**data)


class TwoDrops:
    """
    Two drops falling side by side onto a hard floor.

    Each drop carries gravity, the floor, volume conservation, steric
    repulsion from the other drop and, optionally, area normalisation. Nodes
    that come within the sticky cutoff of the other drop are linked by
    springs as the simulation runs.
    """

    def __init__(self, parameters: Optional[TwoDropsParameters] = None):
        self.parameters = parameters or TwoDropsParameters()
        p = self.parameters
        offset = 0.5 * p.separation
        self.a = self._drop((-offset, 0.0, p.height))
        self.b = self._drop((offset, 0.0, p.height))
        self.ensemble = MeshEnsemble([self.a, self.b])
        self.colliders: List[StericMesh] = []
        self.stuck_a: Set[int] = set()
        self.stuck_b: Set[int] = set()
        self.links: List[Pair] = []
        self.prepare_energies()

    def _drop(self, center: Sequence[float]) -> DeformableMesh:
        p = self.parameters
        sphere = trimesh.creation.icosphere(subdivisions=p.subdivisions, radius=p.radius)
        mesh = DeformableMesh.from_trimesh(sphere, alpha=p.alpha, beta=p.beta, gamma=p.gamma)
        mesh.translate(center)
        mesh.refresh_triangles()
        return mesh

    def prepare_energies(self) -> None:
        p = self.parameters
        for mesh in (self.a, self.b):
            if p.normalize != 0:
                mesh.add_external_energy(TriangleAreaDistributor(mesh, p.normalize))
            if p.gravity_magnitude != 0:
                mesh.add_external_energy(UniformField(p.gravity_magnitude))
            if p.surface_factor != 0:
                mesh.add_external_energy(HardSurface(p.surface_factor, offset=-p.gravity_magnitude))
            if p.volume_conservation != 0:
                mesh.add_external_energy(VolumeConservation(mesh, p.volume_conservation))

        if p.steric != 0:
            asm = StericMesh(self.a, self.b, p.steric, p.steric_threshold)
            bsm = StericMesh(self.b, self.a, p.steric, p.steric_threshold)
            self.a.add_external_energy(asm)
            self.b.add_external_energy(bsm)
            self.colliders.extend([asm, bsm])

    def stick(self, **pairing) -> List[Pair]:
        """One-shot greedy pairing of the facing sides of the two drops."""
        pairs = stick_vertices(self.a, self.b, self.parameters.sticky, **pairing)
        for i, j in pairs:
            self.stuck_a.add(i)
            self.stuck_b.add(j)
        self.links.extend(pairs)
        return pairs

    def step(self) -> List[Pair]:
        """Advance both drops once and link newly touching nodes."""
        self.ensemble.step()
        linked: List[Pair] = []
        if self.parameters.sticky != 0:
            linked = stick_close_vertices(
                self.a,
                self.b,
                self.parameters.sticky,
                self.parameters.sticky_cutoff,
                self.stuck_a,
                self.stuck_b,
            )
            if linked:
                logger.info("TwoDrops: stuck %d new node pairs", len(linked))
            self.links.extend(linked)
        return linked

    def run(self, iterations: int, *, verbose: bool = False, log: Optional[logging.Logger] = None) -> None:
        _log = log or logger
        for k in range(iterations):
            self.step()
            if verbose and ((k + 1) % max(1, iterations // 5) == 0 or k == iterations - 1):
                _log.info(
                    "TwoDrops: step %d/%d, volumes %.4g / %.4g, links %d",
                    k + 1,
                    iterations,
                    self.a.calculate_volume(),
                    self.b.calculate_volume(),
                    len(self.links),
                )
