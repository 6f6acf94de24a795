"""
Geometry/replica store: the single owner of per-bead atom and electron data.
"""

import copy
import numpy as np
from typing import Dict, List, Optional, Sequence

from ..errors import GeometryError, ReplicaError
from ..models.datatypes import Region, ts_bead_index
from ..models.records import Atom, Electron, clone_bead

class ReplicaStore:
    """
    Atoms and eFF electrons with aligned bead sequences.

    Positions may be written by optimizers, samplers and integrators, but
    bead sequences are only resized by :meth:`replicate`.
    """

    def __init__(self, atoms: Sequence[Atom], electrons: Sequence[Electron] = (),
                 box=None):
        self.atoms: List[Atom] = list(atoms)
        self.electrons: List[Electron] = list(electrons)
        self.box = np.array(box if box is not None else (10000.0, 10000.0, 10000.0), dtype=float)
        self._replicated = False

        beads = {atom.n_beads for atom in self.atoms} | {e.n_beads for e in self.electrons}
        if len(beads) > 1:
            raise ReplicaError(f"Inconsistent bead counts in store: {sorted(beads)}")

    @property
    def n_atoms(self) -> int:
        return len(self.atoms)

    @property
    def n_electrons(self) -> int:
        return len(self.electrons)

    @property
    def n_beads(self) -> int:
        if self.atoms:
            return self.atoms[0].n_beads
        if self.electrons:
            return self.electrons[0].n_beads
        return 1

    @property
    def volume(self) -> float:
        return float(np.prod(self.box))

    def replicate(self, n_beads: int) -> None:
        """Copy bead 0 of every atom and electron into n_beads replicas."""
        if self._replicated or self.n_beads != 1:
            raise ReplicaError("Replica arrays can only be created once, from a single bead")
        if n_beads < 1:
            raise ReplicaError(f"Invalid number of beads: {n_beads}")
        for atom in self.atoms:
            atom.beads = [atom.beads[0]] + [clone_bead(atom.beads[0]) for _ in range(n_beads - 1)]
        for elec in self.electrons:
            elec.beads = [elec.beads[0]] + [clone_bead(elec.beads[0]) for _ in range(n_beads - 1)]
        self._replicated = True

    def ts_bead(self) -> int:
        return ts_bead_index(self.n_beads)

    # Positions

    def positions(self, bead: int) -> np.ndarray:
        """Copy of the (n_atoms, 3) positions of one bead."""
        self._check_bead(bead)
        if not self.atoms:
            return np.zeros((0, 3))
        return np.array([atom.beads[bead].position for atom in self.atoms])

    def set_positions(self, bead: int, coords) -> None:
        self._check_bead(bead)
        coords = np.asarray(coords, dtype=float)
        if coords.shape != (self.n_atoms, 3):
            raise GeometryError(f"Expected {self.n_atoms}x3 coordinates, got {coords.shape}", bead=bead)
        for atom, pos in zip(self.atoms, coords):
            atom.beads[bead].position = pos.copy()

    def all_positions(self) -> np.ndarray:
        """(n_beads, n_atoms, 3) positions."""
        return np.array([self.positions(k) for k in range(self.n_beads)]).reshape(
            self.n_beads, self.n_atoms, 3)

    def set_all_positions(self, coords) -> None:
        coords = np.asarray(coords, dtype=float)
        for k in range(self.n_beads):
            self.set_positions(k, coords[k])

    def centroid(self, atom: int) -> np.ndarray:
        self._check_atom(atom)
        return np.mean([b.position for b in self.atoms[atom].beads], axis=0)

    def electron_positions(self, bead: int) -> np.ndarray:
        self._check_bead(bead)
        if not self.electrons:
            return np.zeros((0, 3))
        return np.array([e.beads[bead].position for e in self.electrons])

    def radii(self, bead: int) -> np.ndarray:
        self._check_bead(bead)
        return np.array([e.beads[bead].radius for e in self.electrons])

    # Regions and masks

    def indices(self, *regions: Region) -> List[int]:
        return [atom.index for atom in self.atoms if atom.region in regions]

    def frozen_mask(self) -> np.ndarray:
        return np.array([atom.frozen for atom in self.atoms], dtype=bool)

    def active_mask(self) -> np.ndarray:
        """Atoms included in reaction-path tangents."""
        return np.array([atom.neb_active for atom in self.atoms], dtype=bool)

    def masses(self) -> np.ndarray:
        return np.array([atom.mass for atom in self.atoms], dtype=float)

    def region_counts(self) -> Dict[Region, int]:
        return {region: len(self.indices(region)) for region in Region}

    def check_connectivity(self) -> None:
        """Raise GeometryError for out-of-range or one-sided bonds."""
        for i, atom in enumerate(self.atoms):
            if atom.index != i:
                raise GeometryError("Atoms are out of order", atom=atom.index)
            for j in atom.bonds:
                if j < 0 or j >= self.n_atoms:
                    raise GeometryError(f"Bond to non-existent atom {j}", atom=i)
                if i not in self.atoms[j].bonds:
                    raise GeometryError(f"Bond to atom {j} is not symmetric", atom=i)

    # Monte Carlo support

    def snapshot(self) -> dict:
        """Positions, radii, spins and box for rollback."""
        return {
            "atoms": self.all_positions(),
            "electrons": [[(b.position.copy(), b.radius) for b in e.beads] for e in self.electrons],
            "spins": [e.spin for e in self.electrons],
            "box": self.box.copy(),
        }

    def restore(self, snap: dict) -> None:
        self.set_all_positions(snap["atoms"])
        for elec, beads, spin in zip(self.electrons, snap["electrons"], snap["spins"]):
            for bead, (pos, rad) in zip(elec.beads, beads):
                bead.position = pos.copy()
                bead.radius = rad
            elec.spin = spin
        self.box = snap["box"].copy()

    def displace_beads(self, rng: np.random.Generator, step_min: float = 0.01,
                       cent_ratio: float = 5.0) -> None:
        """Spread path-integral beads around bead 0 for a PIMC start."""
        for atom in self.atoms:
            if atom.frozen:
                continue
            # Relative to carbon
            scale = np.sqrt(12.0 / atom.mass) * 2 * step_min * cent_ratio
            for bead in atom.beads[1:]:
                bead.position = bead.position + 2 * (rng.random(3) - 0.5) * scale

    def copy(self) -> "ReplicaStore":
        return copy.deepcopy(self)

    def _check_bead(self, bead: int) -> None:
        if bead < 0 or bead >= self.n_beads:
            raise GeometryError(f"Bead index out of range [0, {self.n_beads})", bead=bead)

    def _check_atom(self, atom: int) -> None:
        if atom < 0 or atom >= self.n_atoms:
            raise GeometryError(f"Atom index out of range [0, {self.n_atoms})", atom=atom)

def build_store(symbols: Sequence[str], coords, masses: Sequence[float],
                charges: Optional[Sequence[float]] = None,
                regions: Optional[Sequence[Region]] = None,
                frozen: Sequence[int] = (), bonds: Optional[Sequence[Sequence[int]]] = None,
                electrons: Sequence[Electron] = (), box=None) -> ReplicaStore:
    """Convenience constructor for single-bead stores."""
    coords = np.asarray(coords, dtype=float)
    n = len(symbols)
    atoms = []
    for i in range(n):
        atoms.append(Atom.create(
            i, symbols[i], masses[i], coords[i],
            q=0.0 if charges is None else charges[i],
            region=Region.MM if regions is None else regions[i],
            frozen=i in set(frozen),
            bonds=[] if bonds is None else list(bonds[i]),
        ))
    return ReplicaStore(atoms, electrons, box=box)
