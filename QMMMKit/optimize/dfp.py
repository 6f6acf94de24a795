"""
Davidon-Fletcher-Powell quasi-Newton optimization of one bead.
"""

import numpy as np
from typing import Optional

from ..calc.aggregator import EnergyAggregator
from ..geom.store import ReplicaStore
from ..models.datatypes import Settings
from ..utils.logconfig import get_logger
from .convergence import OptState, OptStatus, OptResult, clamp_step, opt_converged
from .steepest import log_finish, optimization_result

logger = get_logger(__name__)

SECANT_EPS = 1e-8

def dfp_update(hess_inv: np.ndarray, s: np.ndarray, y: np.ndarray) -> Optional[np.ndarray]:
    """
    DFP update of an inverse Hessian.

    Args:
        hess_inv: Current inverse Hessian
        s: Displacement x_new - x_old
        y: Gradient difference g_new - g_old

    Returns:
        Updated inverse Hessian, or None when the secant pair is degenerate
    """
    sy = float(s @ y)
    hy = hess_inv @ y
    yhy = float(y @ hy)
    if sy <= SECANT_EPS * np.linalg.norm(s) * np.linalg.norm(y) or yhy <= SECANT_EPS * float(y @ y):
        return None
    return hess_inv + np.outer(s, s) / sy - np.outer(hy, hy) / yhy

def dfp(store: ReplicaStore, aggregator: EnergyAggregator, settings: Settings,
        bead: int = 0, tol: Optional[float] = None) -> OptResult:
    """
    Minimize one bead with a DFP inverse-Hessian update.

    The inverse Hessian starts as step_scale * I over the unfrozen
    coordinates. Steps are clipped like steepest descent; a degenerate secant
    pair or a non-descent direction resets the Hessian, which makes the next
    step a steepest-descent step.

    Returns:
        OptResult; the store holds the last geometry
    """
    tol = settings.qm_opt_tol if tol is None else tol
    mask = ~store.frozen_mask()
    coords = store.positions(bead)
    state = OptState(coords=coords, old_coords=coords.copy())
    state.energy, state.forces = aggregator.bead_forces(store, bead)
    logger.info(f"DFP: bead {bead}, initial E = {state.energy:.6f} eV")

    n = 3 * int(np.sum(mask))
    identity = settings.step_scale * np.eye(n)
    hess_inv = identity.copy()
    grad = -state.forces[mask].ravel()

    while state.iteration < settings.max_opt_steps:
        direction = -hess_inv @ grad
        if direction @ grad > 0:
            logger.debug("DFP direction is uphill, resetting the inverse Hessian")
            hess_inv = identity.copy()
            direction = -hess_inv @ grad
        step = clamp_step(direction, settings.max_step)

        trial = state.coords.copy()
        trial[mask] += step.reshape(-1, 3)
        store.set_positions(bead, trial)
        energy, forces = aggregator.bead_forces(store, bead)
        new_grad = -forces[mask].ravel()

        updated = dfp_update(hess_inv, step, new_grad - grad)
        if updated is None:
            logger.debug("Degenerate DFP secant pair, falling back to steepest descent")
            hess_inv = identity.copy()
        else:
            hess_inv = updated
        grad = new_grad

        state.advance(trial)
        state.old_forces = state.forces
        state.forces = forces
        state.energy = energy
        logger.debug(f"DFP step {state.iteration}: E = {energy:.6f} eV")

        if opt_converged(state.old_coords, state.coords, forces, tol, mask):
            state.status = OptStatus.CONVERGED
            break
    else:
        state.status = OptStatus.ITERATION_LIMIT

    log_finish("DFP", state, bead)
    return optimization_result(state, mask)
