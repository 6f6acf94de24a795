"""
Steepest descent geometry optimization of one bead.
"""

import numpy as np
from typing import Optional

from ..calc.aggregator import EnergyAggregator
from ..geom.store import ReplicaStore
from ..models.datatypes import Settings
from ..utils.logconfig import get_logger
from .convergence import (
    OptResult, OptState, OptStatus, clamp_step, force_norms, opt_converged, rms_displacement
)

logger = get_logger(__name__)

ENERGY_TOL = 1e-6  # eV allowed increase before a step is halved
MAX_RETRIES = 5

def optimization_result(state: OptState, mask: np.ndarray) -> OptResult:
    """Build the OptResult for a finished state."""
    rms_force, max_force = force_norms(state.forces, mask) if state.forces is not None else (0.0, 0.0)
    return OptResult(
        status=state.status,
        iterations=state.iteration,
        energy=float(state.energy),
        rmsd=rms_displacement(state.old_coords, state.coords, mask),
        rms_force=rms_force,
        max_force=max_force,
    )

def log_finish(method: str, state: OptState, bead: int) -> None:
    if state.status == OptStatus.CONVERGED:
        logger.info(f"{method} converged in {state.iteration} steps, E = {state.energy:.6f} eV")
    else:
        logger.warning(f"{method} on bead {bead} reached the iteration limit "
                       f"({state.iteration} steps) without converging, E = {state.energy:.6f} eV")

def steepest_descent(store: ReplicaStore, aggregator: EnergyAggregator, settings: Settings,
                     bead: int = 0, tol: Optional[float] = None) -> OptResult:
    """
    Minimize one bead along the forces.

    Each step is step_scale * F clipped to max_step per component. A step that
    raises the energy is halved and retried a few times before it is accepted
    anyway.

    Args:
        store: Replica store (positions updated in place)
        aggregator: Energy/force provider
        settings: Simulation settings
        bead: Bead to optimize
        tol: RMSD tolerance (defaults to settings.qm_opt_tol)

    Returns:
        OptResult; the store holds the last accepted geometry
    """
    tol = settings.qm_opt_tol if tol is None else tol
    mask = ~store.frozen_mask()
    coords = store.positions(bead)
    state = OptState(coords=coords, old_coords=coords.copy())
    state.energy, state.forces = aggregator.bead_forces(store, bead)
    logger.info(f"Steepest descent: bead {bead}, initial E = {state.energy:.6f} eV")

    while state.iteration < settings.max_opt_steps:
        step = clamp_step(settings.step_scale * state.forces, settings.max_step)
        step[~mask] = 0.0

        scale = 1.0
        for attempt in range(MAX_RETRIES + 1):
            trial = state.coords + scale * step
            store.set_positions(bead, trial)
            energy, forces = aggregator.bead_forces(store, bead)
            if energy <= state.energy + ENERGY_TOL:
                break
            if attempt < MAX_RETRIES:
                scale *= 0.5

        state.advance(trial)
        state.old_forces = state.forces
        state.forces = forces
        state.energy = energy
        logger.debug(f"SD step {state.iteration}: E = {energy:.6f} eV, scale = {scale:.3f}")

        if opt_converged(state.old_coords, state.coords, forces, tol, mask):
            state.status = OptStatus.CONVERGED
            break
    else:
        state.status = OptStatus.ITERATION_LIMIT

    log_finish("Steepest descent", state, bead)
    return optimization_result(state, mask)
