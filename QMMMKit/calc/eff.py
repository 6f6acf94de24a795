"""
Electron force field (eFF) energies for Gaussian wavepacket electrons.

Reference: Su and Goddard, Phys. Rev. Lett. 99, 185003 (2007).
"""

import numpy as np
from pydantic import BaseModel, ConfigDict
from scipy.special import erf
from typing import Optional, Sequence

from ..models.records import Atom, Electron
from ..orchestrators.runners import WorkerPool, parallel_for
from ..utils.logconfig import get_logger
from ..utils.units import BOHR_TO_ANG, C2EV, ELECTRON_MASS_AMU, HARTREE_TO_EV, HUGE_NUM, PI, SQRT2

logger = get_logger(__name__)

# Hartree·Bohr^2 -> eV·Å^2
KINETIC_PREFACTOR = HARTREE_TO_EV * BOHR_TO_ANG * BOHR_TO_ANG

class EFFParameters(BaseModel):
    """Compile-time style options of the eFF model."""
    model_config = ConfigDict(frozen=True)

    rad_init: float = 0.10      # Initial electron radius (Å)
    rho: float = 1.0            # Valence-bond mixing
    sbar: float = 1.0           # Radius scaling
    rbar: float = 1.0           # Distance scaling
    rad_min: float = 0.01       # Å
    rad_max: float = 25.0       # Å
    cutoff: float = 15.0        # Electrostatic cutoff (Å)
    scale_kinetic: bool = False # Divide kinetic energy by n_beads**scale_pow
    scale_pow: float = 0.5

DEFAULT_PARAMS = EFFParameters()

def atom_electron_energy(atom: Atom, electron: Electron, bead: int,
                         params: EFFParameters = DEFAULT_PARAMS) -> float:
    """
    Screened Coulomb energy between an atomic charge and an electron.

    Args:
        atom: Atom whose bead monopole is used
        electron: eFF electron
        bead: Bead index

    Returns:
        Energy (eV); zero beyond the cutoff
    """
    r2 = float(np.sum((atom.position(bead) - electron.position(bead))**2))
    if r2 > params.cutoff * params.cutoff:
        return 0.0
    q = atom.multipole(bead).q
    rad = electron.radius(bead)
    if r2 == 0.0:
        return float(C2EV * q * electron.charge * np.sqrt(8.0 / PI) / rad)
    r = np.sqrt(r2)
    return float((C2EV * q * electron.charge / r) * erf(SQRT2 * r / rad))

def pauli_energy(rad1: float, rad2: float, r: float, same_spin: bool,
                 params: EFFParameters = DEFAULT_PARAMS) -> float:
    """Pauli repulsion from overlap and kinetic-energy mismatch (eV)."""
    s1sq = rad1 * rad1
    s2sq = rad2 * rad2
    ssum = s1sq + s2sq
    sbar2 = params.sbar * params.sbar
    rbar2 = params.rbar * params.rbar

    # Overlap
    overlap = (2.0 / (rad1 / rad2 + rad2 / rad1))**1.5
    overlap *= np.exp(-rbar2 * r * r / (ssum * sbar2))
    s2 = overlap * overlap

    # Kinetic energy difference
    kinetic = 1.5 / sbar2 * (1.0 / s1sq + 1.0 / s2sq)
    kinetic -= (6.0 * sbar2 * ssum - 4.0 * rbar2 * r * r) / (sbar2 * ssum)**2
    kinetic *= KINETIC_PREFACTOR

    if same_spin:
        # Symmetric valence-bond spin orbital
        return float(kinetic * (s2 / (1.0 - s2) + (1.0 - params.rho) * s2 / (1.0 + s2)))
    # Antisymmetric valence-bond spin orbital
    return float(-params.rho * s2 * kinetic / (1.0 + s2))

def electron_electron_energy(elec1: Electron, elec2: Electron, bead: int,
                             params: EFFParameters = DEFAULT_PARAMS) -> float:
    """
    Coulomb plus Pauli energy of two electrons in one bead.

    The Pauli term only applies to electrons of the same type. Coincident
    electrons return HUGE_NUM so samplers and optimizers move away.
    """
    r2 = float(np.sum((elec1.position(bead) - elec2.position(bead))**2))
    if r2 > params.cutoff * params.cutoff:
        return 0.0
    rad1 = elec1.radius(bead)
    rad2 = elec2.radius(bead)
    radij = np.sqrt(rad1 * rad1 + rad2 * rad2)
    r = np.sqrt(r2)

    if r == 0.0:
        finite = C2EV * elec1.charge * elec2.charge * np.sqrt(8.0 / PI) / radij
        logger.debug(f"Coincident electrons (finite Coulomb limit {finite:.4f} eV), returning HUGE_NUM")
        return HUGE_NUM

    energy = C2EV * elec1.charge * elec2.charge / r * erf(SQRT2 * r / radij)
    if elec1.typ == elec2.typ:
        energy += pauli_energy(rad1, rad2, r, elec1.spin == elec2.spin, params)
    return float(energy)

def electron_kinetic_energy(electrons: Sequence[Electron], n_beads: int,
                            params: EFFParameters = DEFAULT_PARAMS) -> float:
    """
    Kinetic energy of all electrons summed over beads (eV).

    Each electron's share is left in its scratch accumulator.
    """
    scale = n_beads**params.scale_pow if params.scale_kinetic else 1.0
    total = 0.0
    for elec in electrons:
        elec.energy = 0.0
        for k in range(n_beads):
            rad = elec.radius(k)
            ekin = 1.5 / (rad * rad) * (ELECTRON_MASS_AMU / elec.mass) * KINETIC_PREFACTOR
            elec.energy += ekin / scale
        total += elec.energy
    return total

def total_eff_energy(atoms: Sequence[Atom], electrons: Sequence[Electron], n_beads: int,
                     params: EFFParameters = DEFAULT_PARAMS,
                     pool: Optional[WorkerPool] = None) -> float:
    """
    Atom-electron plus electron-electron eFF energy averaged over beads.

    Every interaction is evaluated once per bead, so the bead sum is divided
    by n_beads.
    """
    atoms = list(atoms)
    electrons = list(electrons)

    def atom_slot(i):
        atom = atoms[i]
        atom.energy = 0.0
        for elec in electrons:
            for k in range(n_beads):
                atom.energy += atom_electron_energy(atom, elec, k, params)

    def electron_slot(i):
        elec = electrons[i]
        elec.energy = 0.0
        for k in range(n_beads):
            for j in range(i):
                elec.energy += electron_electron_energy(elec, electrons[j], k, params)

    parallel_for(atom_slot, len(atoms), pool)
    parallel_for(electron_slot, len(electrons), pool)

    energy = sum(atom.energy for atom in atoms) + sum(elec.energy for elec in electrons)
    return energy / n_beads
