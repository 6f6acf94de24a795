"""
Per-atom and per-electron records holding replica (bead) data.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from .datatypes import Region

class FrameKind(str, Enum):
    """Local reference frame convention of a multipole."""
    NONE = "none"
    BISECTOR = "bisector"
    Z_THEN_X = "z-then-x"
    Z_ONLY = "z-only"
    THREE_FOLD = "3-fold"
    Z_BISECT = "z-bisect"

def _vec(values=None) -> np.ndarray:
    if values is None:
        return np.zeros(3)
    return np.asarray(values, dtype=float).reshape(3)

@dataclass
class Multipole:
    """Cartesian multipole in a local frame.

    The dipole and quadrupole are expressed in the local frame defined by
    the reference atoms; the induced dipole is in the global frame.
    """
    q: float = 0.0
    dipole: np.ndarray = field(default_factory=_vec)
    induced: np.ndarray = field(default_factory=_vec)
    quadrupole: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    frame: FrameKind = FrameKind.NONE
    atom_z: Optional[int] = None
    atom_x: Optional[int] = None
    atom_y: Optional[int] = None
    chiral_flip: bool = False

    def __post_init__(self):
        self.dipole = _vec(self.dipole)
        self.induced = _vec(self.induced)
        quad = np.asarray(self.quadrupole, dtype=float).reshape(3, 3)
        # Qij = Qji
        self.quadrupole = 0.5 * (quad + quad.T)

@dataclass
class ReducedMultipole:
    """Multipole in its principal (spherical-harmonic) frame."""
    q00: float
    q10: float      # z dipole
    q11c: float     # x dipole
    q11s: float     # y dipole
    q20: float      # z^2 quadrupole
    q22c: float     # x^2-y^2 quadrupole
    vecx: np.ndarray
    vecy: np.ndarray
    vecz: np.ndarray

    @property
    def frame(self) -> np.ndarray:
        """Rows are the frame axes in global coordinates."""
        return np.vstack([self.vecx, self.vecy, self.vecz])

@dataclass
class OctCharges:
    """Six point charges on the +x, +y, +z, -x, -y, -z grid sites."""
    charges: np.ndarray     # (6,)
    positions: np.ndarray   # (6, 3), global frame

    @property
    def total(self) -> float:
        return float(np.sum(self.charges))

@dataclass
class AtomBead:
    """Position, multipole and point-charge grid of one atom in one bead."""
    position: np.ndarray
    multipole: Multipole = field(default_factory=Multipole)
    charges: Optional[OctCharges] = None

    def __post_init__(self):
        self.position = _vec(self.position)

@dataclass
class Atom:
    """Atomic record with one AtomBead per replica."""
    index: int
    qm_type: str
    mass: float
    beads: List[AtomBead]
    mm_type: str = ""
    num_type: int = 0
    num_class: int = 0
    region: Region = Region.MM
    frozen: bool = False
    neb_active: bool = True
    bonds: List[int] = field(default_factory=list)
    energy: float = 0.0

    @classmethod
    def create(cls, index: int, qm_type: str, mass: float, position, q: float = 0.0,
               **kwargs) -> "Atom":
        """Build a single-bead atom carrying a point charge."""
        bead = AtomBead(position=position, multipole=Multipole(q=q))
        return cls(index=index, qm_type=qm_type, mass=mass, beads=[bead], **kwargs)

    @property
    def n_beads(self) -> int:
        return len(self.beads)

    @property
    def charge(self) -> float:
        """Monopole of the first bead."""
        return self.beads[0].multipole.q

    def position(self, bead: int) -> np.ndarray:
        return self.beads[bead].position

    def multipole(self, bead: int) -> Multipole:
        return self.beads[bead].multipole

@dataclass
class ElectronBead:
    position: np.ndarray
    radius: float

    def __post_init__(self):
        self.position = _vec(self.position)

@dataclass
class Electron:
    """Gaussian wavepacket electron of the eFF model."""
    typ: str
    beads: List[ElectronBead]
    mass: float          # amu
    charge: float = -1.0
    spin: int = 1
    energy: float = 0.0

    @property
    def n_beads(self) -> int:
        return len(self.beads)

    def position(self, bead: int) -> np.ndarray:
        return self.beads[bead].position

    def radius(self, bead: int) -> float:
        return self.beads[bead].radius

    def set_radius(self, bead: int, radius: float, rad_min: float, rad_max: float) -> None:
        """Set a bead radius, clamped to [rad_min, rad_max]."""
        self.beads[bead].radius = float(min(max(radius, rad_min), rad_max))

def clone_bead(bead):
    """Independent copy of an atom or electron bead."""
    return copy.deepcopy(bead)
