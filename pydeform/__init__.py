"""pydeform: deformable triangle meshes driven by internal and external forces.

Public API:
- DeformableMesh(positions, triangles, alpha=1.0, beta=0.0, gamma=1.0)
- step(mesh), relax(mesh, iterations=100, tolerance=None)
- ExternalEnergy and the terms UniformField, HardSurface, VolumeConservation,
  StericMesh, PointAnchor, StickyVertex, TriangleAreaDistributor
- pair_vertices(a_positions, b_positions), stick_vertices(a, b, k)
- CurvatureCalculator(mesh), calculate_average_curvature(mesh)
- MeshEnsemble(meshes), TwoDrops(parameters)

"""
from .mesh import DeformableMesh, StaleGeometryError, TopologyError, Triangle
from .energies import (
    ExternalEnergy,
    HardSurface,
    PointAnchor,
    StericMesh,
    StickyVertex,
    TriangleAreaDistributor,
    UniformField,
    VolumeConservation,
)
from .integrator import RelaxResult, internal_forces, relax, step, total_energy
from .sticky import pair_vertices, stick_close_vertices, stick_vertices
from .curvature import CurvatureCalculator, calculate_average_curvature, curvature_statistics
from .simulations import MeshEnsemble, TwoDrops, TwoDropsParameters

__all__ = [
    "DeformableMesh",
    "StaleGeometryError",
    "TopologyError",
    "Triangle",
    "ExternalEnergy",
    "HardSurface",
    "PointAnchor",
    "StericMesh",
    "StickyVertex",
    "TriangleAreaDistributor",
    "UniformField",
    "VolumeConservation",
    "RelaxResult",
    "internal_forces",
    "relax",
    "step",
    "total_energy",
    "pair_vertices",
    "stick_close_vertices",
    "stick_vertices",
    "CurvatureCalculator",
    "calculate_average_curvature",
    "curvature_statistics",
    "MeshEnsemble",
    "TwoDrops",
    "TwoDropsParameters",
]
