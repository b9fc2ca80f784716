from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import logging
import numpy as np

from .mesh import DeformableMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass
class RelaxResult:
    vertices: np.ndarray  # (n,3) final vertex positions
    iterations: int = 0  # steps actually taken
    energies: List[float] = field(default_factory=list)  # total external energy after each step
    history: Optional[List[np.ndarray]] = None  # optional list of intermediate vertices


def internal_forces(mesh: DeformableMesh) -> np.ndarray:
    """Elastic forces of the mesh itself, shape (n,3).

    ``-alpha * L X - beta * L (L X)`` with the umbrella Laplacian L of the mesh
    edges: alpha pulls every node toward its neighbours (edge tension), beta
    resists the discrete curvature (bending). Both vanish under rigid
    translation.
    """
    X = np.asarray(mesh.positions)
    F = np.zeros_like(X)
    if mesh.alpha == 0.0 and mesh.beta == 0.0:
        return F
    L = mesh.umbrella_laplacian()
    LX = L @ X
    if mesh.alpha != 0.0:
        F -= mesh.alpha * LX
    if mesh.beta != 0.0:
        F -= mesh.beta * (L @ LX)
    return F


def total_energy(mesh: DeformableMesh) -> float:
    """Sum of the diagnostic energies of all registered external terms."""
    X = mesh.positions
    return float(sum(e.get_energy(X) for e in mesh.external_energies))


def step(mesh: DeformableMesh) -> np.ndarray:
    """Advance ``mesh`` by one explicit step and return the applied forces (n,3).

    Order: refresh triangle geometry, zero the accumulators, add the internal
    elastic forces, add every registered external term, then move each node
    by ``F / gamma``. Non-finite force entries are zeroed before the update so
    a degenerate region cannot poison the whole mesh. Triangle geometry is
    refreshed again before returning.
    """
    mesh.refresh_triangles()
    n = mesh.node_count
    X = mesh.positions

    fx = np.zeros(n)
    fy = np.zeros(n)
    fz = np.zeros(n)

    internal = internal_forces(mesh)
    fx += internal[:, 0]
    fy += internal[:, 1]
    fz += internal[:, 2]

    for energy in mesh.external_energies:
        energy.update_forces(X, fx, fy, fz)

    forces = np.column_stack([fx, fy, fz])
    bad = ~np.isfinite(forces)
    if bad.any():
        logger.debug("step: zeroed %d non-finite force components", int(bad.sum()))
        forces[bad] = 0.0

    mesh.set_positions(X + forces / mesh.gamma)
    mesh.refresh_triangles()
    return forces


def relax(
    mesh: DeformableMesh,
    *,
    iterations: int = 100,
    tolerance: Optional[float] = None,
    record_history: bool = False,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> RelaxResult:
    """Repeated explicit steps of a single mesh.

    Each step moves node i by ``F_i / gamma`` where F is the sum of the internal
    elastic forces and all registered external energies. The caller chooses
    coefficients that keep the explicit update stable; no step size adaptation
    is attempted.

    Parameters
    ----------
    mesh : DeformableMesh
        Mesh to advance in place.
    iterations : int, default 100
        Maximum number of steps.
    tolerance : float, optional
        Stop early once the largest node displacement of a step falls below
        this value.
    record_history : bool, default False
        If True, return a copy of the vertices after each step in ``history``.
    verbose : bool, default False
        If True, log basic progress information.
    log : logging.Logger, optional
        Custom logger. If None, use module logger.

    Returns
    -------
    RelaxResult
    """
    if iterations < 0:
        raise ValueError("iterations must be >= 0")

    _log = log or logger
    if verbose:
        _log.info(
            "relax: %d nodes, %d energies; gamma=%.3g, iters=%d",
            mesh.node_count,
            len(mesh.external_energies),
            mesh.gamma,
            iterations,
        )

    hist: list[np.ndarray] | None = [] if record_history else None
    energies: list[float] = []
    k = 0
    for k in range(1, iterations + 1):
        forces = step(mesh)
        energies.append(total_energy(mesh))
        if hist is not None:
            hist.append(np.array(mesh.positions, copy=True))
        moved = float(np.max(np.linalg.norm(forces, axis=1))) / mesh.gamma if forces.size else 0.0
        if verbose and (k % max(1, iterations // 5) == 0 or k == iterations):
            _log.info("relax: step %d/%d, max displacement %.3g, energy %.6g", k, iterations, moved, energies[-1])
        if tolerance is not None and moved < tolerance:
            if verbose:
                _log.info("relax: converged after %d steps", k)
            break

    return RelaxResult(
        vertices=np.array(mesh.positions, copy=True), iterations=k, energies=energies, history=hist
    )
