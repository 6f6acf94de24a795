"""
Geometry, connectivity and trajectory file I/O.
"""

import numpy as np
from ase.data import atomic_masses, atomic_numbers
from typing import List, Optional, Sequence

from ..errors import GeometryError
from ..geom.store import ReplicaStore
from ..models.datatypes import Geometry, Region
from ..models.records import Atom

def load_xyz(path: str) -> Geometry:
    """Load geometry from XYZ file.

    Tolerates leading blank lines and UTF-8 BOM.
    """
    with open(path, 'r', encoding='utf-8') as f:
        raw = f.read()

    if raw.startswith('\ufeff'):
        raw = raw.lstrip('\ufeff')

    lines = raw.splitlines()
    i = 0
    while i < len(lines) and lines[i].strip() == "":
        i += 1
    if i >= len(lines):
        raise ValueError(f"Empty XYZ file: {path}")

    try:
        n_atoms = int(lines[i].strip())
    except ValueError as e:
        raise ValueError(f"Invalid XYZ header in {path!r}: expected an atom count, got {lines[i]!r}") from e

    if i + 1 >= len(lines):
        raise ValueError(f"Missing XYZ comment line in {path!r}")
    comment = lines[i + 1].strip()

    start = i + 2
    if start + n_atoms > len(lines):
        raise ValueError(f"XYZ file {path!r} truncated: need {n_atoms} atom lines, have {len(lines) - start}")
    symbols = []
    coords = []
    for j in range(start, start + n_atoms):
        parts = lines[j].split()
        if len(parts) < 4:
            raise ValueError(f"Malformed atom line {j - start + 1} in {path!r}: {lines[j]!r}")
        symbols.append(parts[0])
        coords.append((float(parts[1]), float(parts[2]), float(parts[3])))

    return Geometry(symbols=symbols, coords=coords, comment=comment)

def save_xyz(g: Geometry, path: str) -> None:
    """Save geometry to XYZ file."""
    with open(path, 'w') as f:
        f.write(f"{len(g.symbols)}\n")
        f.write(f"{g.comment}\n")
        for symbol, coord in zip(g.symbols, g.coords):
            f.write(f"{symbol} {coord[0]:.6f} {coord[1]:.6f} {coord[2]:.6f}\n")

def element_mass(symbol: str) -> float:
    """Standard atomic mass (amu) of an element symbol."""
    key = symbol.strip().capitalize()
    if key not in atomic_numbers:
        raise GeometryError(f"Unknown element symbol {symbol!r}")
    return float(atomic_masses[atomic_numbers[key]])

def store_geometry(store: ReplicaStore, bead: int = 0, comment: str = "") -> Geometry:
    """Geometry model of one bead."""
    coords = [tuple(float(x) for x in pos) for pos in store.positions(bead)]
    return Geometry(symbols=[a.qm_type for a in store.atoms], coords=coords, comment=comment)

def load_connectivity(path: str, geometry: Geometry) -> List[Atom]:
    """
    Build atoms from a geometry and a connectivity file.

    Each non-blank line reads ``id mm_type num_type mass charge n_bonds
    bond_1 ... bond_n``. Lines must appear in atom order.

    Raises:
        GeometryError: on out-of-order ids, bad bond indices or a line count
            that does not match the geometry
    """
    n_atoms = len(geometry.symbols)
    with open(path, 'r', encoding='utf-8') as f:
        lines = [line.split() for line in f if line.strip()]
    if len(lines) != n_atoms:
        raise GeometryError(f"Connectivity file {path!r} has {len(lines)} atoms, geometry has {n_atoms}")

    atoms = []
    for i, parts in enumerate(lines):
        if len(parts) < 6:
            raise GeometryError(f"Malformed connectivity line {parts!r}", atom=i)
        if int(parts[0]) != i:
            raise GeometryError(f"Connectivity entries out of order: found id {parts[0]}", atom=i)
        n_bonds = int(parts[5])
        bonds = [int(b) for b in parts[6:6 + n_bonds]]
        if len(bonds) != n_bonds:
            raise GeometryError(f"Expected {n_bonds} bonds, found {len(bonds)}", atom=i)
        for j in bonds:
            if j < 0 or j >= n_atoms:
                raise GeometryError(f"Bond to non-existent atom {j}", atom=i)
        atoms.append(Atom.create(
            i, geometry.symbols[i], float(parts[3]), geometry.coords[i], q=float(parts[4]),
            mm_type=parts[1], num_type=int(parts[2]), bonds=bonds,
        ))
    return atoms

def atoms_from_geometry(geometry: Geometry) -> List[Atom]:
    """Atoms with element masses and no bonds or charges."""
    return [Atom.create(i, s, element_mass(s), c)
            for i, (s, c) in enumerate(zip(geometry.symbols, geometry.coords))]

def assign_regions(store: ReplicaStore, qm: Sequence[int] = (), pseudo_bonds: Sequence[int] = (),
                   boundary: Sequence[int] = (), frozen: Sequence[int] = ()) -> None:
    """Tag atoms by region; untagged atoms are MM."""
    for region, indices in ((Region.QM, qm), (Region.PSEUDO_BOND, pseudo_bonds),
                            (Region.BOUNDARY, boundary)):
        for i in indices:
            if i < 0 or i >= store.n_atoms:
                raise GeometryError(f"{region.value} atom index out of range", atom=i)
            store.atoms[i].region = region
    for i in frozen:
        if i < 0 or i >= store.n_atoms:
            raise GeometryError("Frozen atom index out of range", atom=i)
        store.atoms[i].frozen = True

def load_bead_structures(path: str, store: ReplicaStore) -> None:
    """
    Read a starting structure for every bead.

    The file holds ``n_atoms * n_beads`` lines of ``symbol x y z``, grouped
    by atom: all beads of atom 0 first.
    """
    with open(path, 'r', encoding='utf-8') as f:
        rows = [line.split() for line in f if line.strip()]
    expected = store.n_atoms * store.n_beads
    if len(rows) != expected:
        raise GeometryError(f"Bead structure file {path!r} has {len(rows)} lines, expected {expected}")
    coords = np.array([[float(x) for x in row[1:4]] for row in rows])
    coords = coords.reshape(store.n_atoms, store.n_beads, 3).transpose(1, 0, 2)
    store.set_all_positions(coords)

class XYZTrajectory:
    """Trajectory sink writing every atom of every bead as one XYZ frame."""

    def __init__(self, path: str, comment: Optional[str] = None):
        self.path = path
        self.comment = comment
        self.frames = 0
        open(path, 'w').close()

    def __call__(self, store: ReplicaStore) -> None:
        coords = store.all_positions()
        with open(self.path, 'a') as f:
            f.write(f"{store.n_atoms * store.n_beads}\n")
            f.write(f"{self.comment or 'frame'} {self.frames}\n")
            for k in range(store.n_beads):
                for atom, pos in zip(store.atoms, coords[k]):
                    f.write(f"{atom.qm_type} {pos[0]:.6f} {pos[1]:.6f} {pos[2]:.6f}\n")
        self.frames += 1
