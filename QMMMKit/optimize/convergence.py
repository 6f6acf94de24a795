"""
Optimizer state and convergence tests.
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from pydantic import BaseModel
from typing import Optional

# Force tolerances relative to the RMSD tolerance
MAX_FORCE_FACTOR = 20.0
RMS_FORCE_FACTOR = 10.0

class OptStatus(str, Enum):
    RUNNING = "running"
    CONVERGED = "converged"
    ITERATION_LIMIT = "iteration_limit"

@dataclass
class OptState:
    """Mutable bookkeeping of one optimization run."""
    coords: np.ndarray
    old_coords: np.ndarray
    forces: Optional[np.ndarray] = None
    old_forces: Optional[np.ndarray] = None
    energy: float = np.inf
    iteration: int = 0
    status: OptStatus = OptStatus.RUNNING

    def advance(self, coords: np.ndarray) -> None:
        self.old_coords = self.coords
        self.coords = coords
        self.iteration += 1

class OptResult(BaseModel):
    """Summary of a finished optimization."""
    status: OptStatus
    iterations: int
    energy: float           # eV
    rmsd: float             # Å
    rms_force: float        # eV/Å
    max_force: float        # eV/Å

    @property
    def converged(self) -> bool:
        return self.status == OptStatus.CONVERGED

def rms_displacement(old: np.ndarray, new: np.ndarray, mask: Optional[np.ndarray] = None) -> float:
    """Root-mean-square atomic displacement over the masked atoms."""
    diff = np.asarray(new) - np.asarray(old)
    if mask is not None:
        diff = diff[mask]
    if diff.size == 0:
        return 0.0
    return float(np.sqrt(np.sum(diff * diff) / len(diff)))

def force_norms(forces: np.ndarray, mask: Optional[np.ndarray] = None):
    """(RMS, max |component|) of the masked forces."""
    forces = np.asarray(forces)
    if mask is not None:
        forces = forces[mask]
    if forces.size == 0:
        return 0.0, 0.0
    return float(np.sqrt(np.mean(forces * forces))), float(np.max(np.abs(forces)))

def opt_converged(old: np.ndarray, new: np.ndarray, forces: Optional[np.ndarray],
                  tol: float, mask: Optional[np.ndarray] = None) -> bool:
    """
    Joint displacement and force convergence test.

    Args:
        old, new: (n, 3) geometries of consecutive iterations
        forces: (n, 3) forces at the new geometry, or None when unknown
        tol: RMSD tolerance (Å)
        mask: Atoms taking part (unfrozen)

    Returns:
        True if converged
    """
    if rms_displacement(old, new, mask) >= tol:
        return False
    if forces is None:
        return True
    rms_force, max_force = force_norms(forces, mask)
    return rms_force < RMS_FORCE_FACTOR * tol and max_force < MAX_FORCE_FACTOR * tol

def clamp_step(step: np.ndarray, max_step: float) -> np.ndarray:
    """Clip every Cartesian component to [-max_step, max_step]."""
    return np.clip(step, -max_step, max_step)
