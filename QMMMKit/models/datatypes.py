"""
Pydantic data models for QMMMKit package.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import List, Tuple

from ..utils.units import inverse_temperature

class Region(str, Enum):
    """Mutually exclusive QM/MM region of an atom."""
    QM = "qm"
    MM = "mm"
    PSEUDO_BOND = "pseudobond"
    BOUNDARY = "boundary"

class QMEngineKind(str, Enum):
    GAUSSIAN = "gaussian"
    PSI4 = "psi4"
    NWCHEM = "nwchem"
    NONE = "none"

class MMEngineKind(str, Enum):
    TINKER = "tinker"
    LAMMPS = "lammps"
    NONE = "none"

class Potential(str, Enum):
    QM = "qm"
    MM = "mm"
    QMMM = "qmmm"

class Electrostatics(str, Enum):
    """Form of the MM electrostatics seen by the QM region."""
    CHARGES = "charges"     # fixed point charges
    AMOEBA = "amoeba"       # polarizable multipoles, passed as octahedral grids

class Ensemble(str, Enum):
    NVT = "NVT"
    NPT = "NPT"

class Calculation(str, Enum):
    SINGLE_POINT = "single-point"
    STEEPEST = "steep"
    DFP = "dfp"
    NEB = "neb"
    PIMC = "pimc"
    FBNEB = "fbneb"
    MD = "md"

class Geometry(BaseModel):
    """Molecular geometry representation."""
    symbols: List[str]
    coords: List[Tuple[float, float, float]]  # Å
    comment: str = ""

class MoveProbabilities(BaseModel):
    """Relative Monte Carlo move weights."""
    model_config = ConfigDict(frozen=True)

    bead: float = 0.55
    centroid: float = 0.55
    volume: float = 0.10
    electron_bead: float = 0.25
    electron_centroid: float = 0.25
    radius: float = 0.0
    spin_swap: float = 0.05
    spin_flip: float = 0.05

class Settings(BaseModel):
    """Immutable simulation settings shared by every core component."""
    model_config = ConfigDict(frozen=True)

    # Replicas
    n_beads: int = Field(1, ge=1)

    # Thermodynamics
    temperature: float = 298.15         # K
    pressure: float = 1.0               # atm
    ensemble: Ensemble = Ensemble.NVT

    # Optimization and reaction paths
    qm_opt_tol: float = 5e-3            # RMSD tolerance (Å)
    mm_opt_tol: float = 1e-2            # RMSD tolerance (Å)
    step_scale: float = 0.5             # Å per eV/Å
    max_step: float = 0.1               # Å
    max_opt_steps: int = 200
    k_spring: float = 1.0               # eV/Å^2
    frozen_ends: bool = False

    # Sampling and dynamics
    n_eq: int = 0
    n_steps: int = 0
    n_print: int = 100
    acc_ratio: float = 0.5
    acc_check: int = 2000
    dt: float = 1.0                     # fs
    tau_temp: float = 100.0             # fs
    random_seed: int = 0
    moves: MoveProbabilities = Field(default_factory=MoveProbabilities)

    # System description
    calculation: Calculation = Calculation.SINGLE_POINT
    potential: Potential = Potential.QMMM
    electrostatics: Electrostatics = Electrostatics.CHARGES
    qm_engine: QMEngineKind = QMEngineKind.NONE
    mm_engine: MMEngineKind = MMEngineKind.NONE
    pbc: bool = False
    box: Tuple[float, float, float] = (10000.0, 10000.0, 10000.0)  # Å

    # Threads
    n_threads: int = 1
    n_cpus_qm: int = 1

    @computed_field
    @property
    def beta(self) -> float:
        """Inverse temperature (1/eV)."""
        return inverse_temperature(self.temperature)

    @computed_field
    @property
    def ts_bead(self) -> int:
        """Initial transition-state bead for reaction paths."""
        return ts_bead_index(self.n_beads)

def ts_bead_index(n_beads: int) -> int:
    """Middle bead; slightly on the product side for an even count."""
    if n_beads % 2 == 0:
        return n_beads // 2
    return (n_beads - 1) // 2
