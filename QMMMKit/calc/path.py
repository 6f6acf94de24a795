"""
Reaction path optimization with the climbing-image nudged elastic band.

Beads of the store are the images of the path; bead 0 and bead n-1 are the
end states.
"""

import numpy as np
from dataclasses import dataclass
from pydantic import BaseModel
from typing import List

from ..errors import GeometryError
from ..geom.store import ReplicaStore
from ..models.datatypes import Settings
from ..optimize.convergence import (
    MAX_FORCE_FACTOR, OptStatus, clamp_step, force_norms
)
from ..utils.logconfig import get_logger
from .aggregator import EnergyAggregator

logger = get_logger(__name__)

@dataclass
class NEBForces:
    """Projected forces of every image, each (n_beads, n_atoms, 3)."""
    effective: np.ndarray
    perpendicular: np.ndarray
    spring: np.ndarray
    ts_bead: int

class NEBResult(BaseModel):
    """Summary of a climbing-image NEB run."""
    status: OptStatus
    iterations: int
    energies: List[float]   # eV
    ts_bead: int
    barrier: float          # eV, relative to bead 0

    @property
    def converged(self) -> bool:
        return self.status == OptStatus.CONVERGED

def linear_interpolate(store: ReplicaStore, start, end) -> None:
    """
    Place the beads on a straight line between two geometries.

    Args:
        store: Replicated store
        start: (n_atoms, 3) reactant geometry (bead 0)
        end: (n_atoms, 3) product geometry (last bead)
    """
    start = np.asarray(start, dtype=float)
    end = np.asarray(end, dtype=float)
    n_beads = store.n_beads
    for k in range(n_beads):
        alpha = k / (n_beads - 1) if n_beads > 1 else 0.0
        store.set_positions(k, (1 - alpha) * start + alpha * end)

def path_tangent(coords: np.ndarray, energies: np.ndarray, bead: int,
                 active: np.ndarray) -> np.ndarray:
    """
    Unit tangent of an interior image.

    Uses the neighbour with the higher energy; at an energy extremum both
    neighbours are mixed with energy-difference weights.

    Args:
        coords: (n_beads, n_atoms, 3) path
        energies: (n_beads,) image energies
        bead: Interior bead index
        active: Atoms included in the tangent

    Returns:
        (n_atoms, 3) unit tangent (zero on inactive atoms)
    """
    tau_plus = coords[bead + 1] - coords[bead]
    tau_minus = coords[bead] - coords[bead - 1]
    e_prev, e_cur, e_next = energies[bead - 1], energies[bead], energies[bead + 1]

    if e_next > e_cur > e_prev:
        tau = tau_plus
    elif e_next < e_cur < e_prev:
        tau = tau_minus
    else:
        d_max = max(abs(e_next - e_cur), abs(e_prev - e_cur))
        d_min = min(abs(e_next - e_cur), abs(e_prev - e_cur))
        if e_next > e_prev:
            tau = tau_plus * d_max + tau_minus * d_min
        else:
            tau = tau_plus * d_min + tau_minus * d_max

    tau = np.where(active[:, None], tau, 0.0)
    norm = np.linalg.norm(tau)
    if norm < 1e-12:
        # Flat energies: central difference
        tau = np.where(active[:, None], coords[bead + 1] - coords[bead - 1], 0.0)
        norm = np.linalg.norm(tau)
        if norm < 1e-12:
            raise GeometryError("Neighbouring path images coincide", bead=bead)
    return tau / norm

def neb_forces(coords: np.ndarray, forces: np.ndarray, energies: np.ndarray, ts_bead: int,
               k_spring: float, active: np.ndarray, frozen: np.ndarray,
               frozen_ends: bool) -> NEBForces:
    """
    Nudged elastic band forces with a climbing image.

    Interior images feel the true force perpendicular to the tangent plus a
    spring force along it. The climbing image has its tangential force
    inverted and no spring.
    """
    n_beads = coords.shape[0]
    effective = np.zeros_like(forces)
    perpendicular = np.zeros_like(forces)
    spring = np.zeros_like(forces)

    for k in (0, n_beads - 1):
        if not frozen_ends:
            effective[k] = forces[k]
            perpendicular[k] = forces[k]

    for k in range(1, n_beads - 1):
        tau = path_tangent(coords, energies, k, active)
        f_par = np.sum(forces[k] * tau)
        perpendicular[k] = forces[k] - f_par * tau
        if k == ts_bead:
            effective[k] = forces[k] - 2.0 * f_par * tau
        else:
            d_next = np.linalg.norm(np.where(active[:, None], coords[k + 1] - coords[k], 0.0))
            d_prev = np.linalg.norm(np.where(active[:, None], coords[k] - coords[k - 1], 0.0))
            spring[k] = k_spring * (d_next - d_prev) * tau
            effective[k] = perpendicular[k] + spring[k]

    effective[:, frozen] = 0.0
    perpendicular[:, frozen] = 0.0
    spring[:, frozen] = 0.0
    return NEBForces(effective=effective, perpendicular=perpendicular, spring=spring,
                     ts_bead=ts_bead)

def path_converged(nf: NEBForces, tol: float, frozen_ends: bool = True) -> bool:
    """
    Force-based path convergence.

    Every image must have RMS perpendicular force < 10 tol, max component
    < 20 tol and spring force norm < 20 tol; the climbing image is tested on
    its full effective force. Free end images are tested on their true force.
    """
    n_beads = nf.effective.shape[0]
    beads = range(n_beads) if not frozen_ends else range(1, n_beads - 1)
    for k in beads:
        if k == nf.ts_bead or k in (0, n_beads - 1):
            rms_force, max_force = force_norms(nf.effective[k])
        else:
            rms_force, max_force = force_norms(nf.perpendicular[k])
            if np.linalg.norm(nf.spring[k]) >= MAX_FORCE_FACTOR * tol:
                return False
        if rms_force >= 10.0 * tol or max_force >= MAX_FORCE_FACTOR * tol:
            return False
    return True

def highest_interior_bead(energies: np.ndarray) -> int:
    """Index of the highest-energy interior image."""
    if len(energies) < 3:
        return int(np.argmax(energies))
    return 1 + int(np.argmax(energies[1:-1]))

def climbing_image_neb(store: ReplicaStore, aggregator: EnergyAggregator,
                       settings: Settings) -> NEBResult:
    """
    Optimize the path held in the store's beads.

    Images move along their effective forces with the steepest-descent step
    rules. The climbing image is re-selected every iteration as the highest
    interior image. With frozen_ends the end images are never written.

    Args:
        store: Replicated store holding the initial path
        aggregator: Energy/force provider
        settings: Simulation settings (k_spring, tolerances, step sizes)

    Returns:
        NEBResult; the store holds the final path
    """
    n_beads = store.n_beads
    frozen = store.frozen_mask()
    active = store.active_mask()
    tol = settings.qm_opt_tol
    moving = range(1, n_beads - 1) if settings.frozen_ends else range(n_beads)
    ts_bead = settings.ts_bead
    status = OptStatus.ITERATION_LIMIT
    energies = np.zeros(n_beads)

    logger.info(f"Climbing-image NEB with {n_beads} beads, k = {settings.k_spring} eV/Å^2")

    iteration = 0
    while True:
        energies, forces = aggregator.all_bead_forces(store)
        ts_bead = highest_interior_bead(energies)
        coords = store.all_positions()
        nf = neb_forces(coords, forces, energies, ts_bead, settings.k_spring,
                        active, frozen, settings.frozen_ends)

        if path_converged(nf, tol, settings.frozen_ends):
            status = OptStatus.CONVERGED
            break
        if iteration >= settings.max_opt_steps:
            break

        step = clamp_step(settings.step_scale * nf.effective, settings.max_step)
        for k in moving:
            store.set_positions(k, coords[k] + step[k])
        iteration += 1
        logger.debug(f"NEB step {iteration}: TS bead {ts_bead}, E_TS = {energies[ts_bead]:.6f} eV")

    barrier = float(energies[ts_bead] - energies[0])
    if status == OptStatus.CONVERGED:
        logger.info(f"NEB converged in {iteration} steps; TS bead {ts_bead}, barrier {barrier:.4f} eV")
    else:
        logger.warning(f"NEB reached the iteration limit ({iteration} steps); "
                       f"TS bead {ts_bead}, barrier {barrier:.4f} eV")

    return NEBResult(status=status, iterations=iteration, energies=[float(e) for e in energies],
                     ts_bead=ts_bead, barrier=barrier)
