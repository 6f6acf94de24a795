"""
Multipole reduction, octahedral point-charge grids and electrostatic energies.

Quadrupoles follow the traceless (Buckingham) convention
Theta = sum q (3/2 r r - 1/2 r^2 I), so the potential of a multipole at a
displacement r is q/R + mu.r/R^3 + r.Theta.r/R^5.
"""

import numpy as np
from typing import Optional, Tuple
from scipy.spatial.distance import pdist

from ..errors import FrameError, GeometryError
from ..geom.frames import local_frame
from ..geom.regions import capped_boundary_atoms
from ..geom.store import ReplicaStore
from ..models.datatypes import Electrostatics, Region
from ..models.records import Multipole, OctCharges, ReducedMultipole
from ..utils.units import BOHR_TO_ANG, C2EV

OCT_SPACING = 0.5 * BOHR_TO_ANG  # Distance of grid charges from the atom (Å)
SQRT3 = np.sqrt(3.0)

def reduce_multipole(mpole: Multipole, center, z_pos=None, x_pos=None,
                     y_pos=None) -> ReducedMultipole:
    """
    Convert a local-frame Cartesian multipole into its reduced form.

    Args:
        mpole: Cartesian multipole
        center: Position of the atom carrying the multipole
        z_pos, x_pos, y_pos: Positions of the frame reference atoms

    Returns:
        ReducedMultipole in the principal frame of the quadrupole

    Raises:
        FrameError: if the local frame is degenerate
    """
    frame = local_frame(mpole.frame, center, z_pos, x_pos, y_pos, mpole.chiral_flip)

    # Local -> global
    dipole = frame.T @ mpole.dipole + mpole.induced
    quad = frame.T @ mpole.quadrupole @ frame
    quad = quad - np.trace(quad) / 3.0 * np.eye(3)

    evals, evecs = np.linalg.eigh(quad)
    if np.max(np.abs(evals)) < 1e-12:
        # No quadrupole: keep the local frame orientation
        vecx, vecz = frame[0], frame[2]
    else:
        iz = int(np.argmax(np.abs(evals)))
        rest = [i for i in range(3) if i != iz]
        vecz = evecs[:, iz]
        vecx = evecs[:, rest[0]]
    vecy = np.cross(vecz, vecx)

    theta_xx = vecx @ quad @ vecx
    theta_yy = vecy @ quad @ vecy
    theta_zz = vecz @ quad @ vecz

    return ReducedMultipole(
        q00=float(mpole.q),
        q10=float(dipole @ vecz),
        q11c=float(dipole @ vecx),
        q11s=float(dipole @ vecy),
        q20=float(theta_zz),
        q22c=float((theta_xx - theta_yy) / SQRT3),
        vecx=vecx.copy(),
        vecy=vecy.copy(),
        vecz=vecz.copy(),
    )

def principal_quadrupole(reduced: ReducedMultipole) -> np.ndarray:
    """Diagonal (xx, yy, zz) of the quadrupole in the reduced frame."""
    half = 0.5 * SQRT3 * reduced.q22c
    return np.array([-0.5 * reduced.q20 + half, -0.5 * reduced.q20 - half, reduced.q20])

def reduced_to_cartesian(reduced: ReducedMultipole,
                         frame: Optional[np.ndarray] = None) -> Tuple[float, np.ndarray, np.ndarray]:
    """
    Expand a reduced multipole back to Cartesian moments.

    Args:
        reduced: Reduced multipole
        frame: Optional 3x3 frame (rows = axes); moments are returned in that
            frame instead of the global one

    Returns:
        (charge, dipole, quadrupole)
    """
    axes = reduced.frame
    dipole = axes.T @ np.array([reduced.q11c, reduced.q11s, reduced.q10])
    quad = axes.T @ np.diag(principal_quadrupole(reduced)) @ axes
    if frame is not None:
        dipole = frame @ dipole
        quad = frame @ quad @ frame.T
    return reduced.q00, dipole, quad

def expand_to_charges(reduced: ReducedMultipole, center=None,
                      spacing: float = OCT_SPACING) -> OctCharges:
    """
    Replace a reduced multipole by six charges on its frame axes.

    Each axis pair carries q/3 + 2 Theta_aa/(3 d^2) in total and differs by
    mu_a/d, which reproduces the monopole, dipole and principal quadrupole.

    Args:
        reduced: Reduced multipole
        center: Grid origin (defaults to the origin, giving offsets)
        spacing: Distance of each charge from the center (Å)

    Returns:
        OctCharges in +x, +y, +z, -x, -y, -z order
    """
    center = np.zeros(3) if center is None else np.asarray(center, dtype=float)
    theta = principal_quadrupole(reduced)
    mu = np.array([reduced.q11c, reduced.q11s, reduced.q10])

    pair_sum = reduced.q00 / 3.0 + 2.0 * theta / (3.0 * spacing**2)
    pair_diff = mu / spacing
    plus = 0.5 * (pair_sum + pair_diff)
    minus = 0.5 * (pair_sum - pair_diff)

    axes = reduced.frame
    positions = center + spacing * np.vstack([axes, -axes])
    return OctCharges(charges=np.concatenate([plus, minus]), positions=positions)

def update_bead_multipoles(store: ReplicaStore, bead: int) -> None:
    """Recompute the point-charge grid of every atom for one bead."""
    for atom in store.atoms:
        mpole = atom.multipole(bead)
        refs = []
        for ref in (mpole.atom_z, mpole.atom_x, mpole.atom_y):
            if ref is None:
                refs.append(None)
                continue
            if ref < 0 or ref >= store.n_atoms:
                raise GeometryError(f"Frame reference atom {ref} out of range",
                                    atom=atom.index, bead=bead)
            refs.append(store.atoms[ref].position(bead))
        try:
            reduced = reduce_multipole(mpole, atom.position(bead), *refs)
        except FrameError as err:
            raise FrameError(str(err), atom=atom.index, bead=bead) from err
        atom.beads[bead].charges = expand_to_charges(reduced, atom.position(bead))

def point_charge_energy(charges, positions) -> float:
    """
    Coulomb energy of a set of point charges.

    Args:
        charges: (n,) charges (e)
        positions: (n, 3) positions (Å)

    Returns:
        Energy (eV)
    """
    charges = np.asarray(charges, dtype=float)
    positions = np.asarray(positions, dtype=float).reshape(-1, 3)
    if len(charges) < 2:
        return 0.0
    dist = pdist(positions)
    if np.any(dist == 0.0):
        raise GeometryError("Coincident point charges")
    i, j = np.triu_indices(len(charges), k=1)
    return float(C2EV * np.sum(charges[i] * charges[j] / dist))

def multipole_pair_energy(a: ReducedMultipole, center_a, b: ReducedMultipole, center_b) -> float:
    """
    Interaction energy of two multipoles through R^-3.

    Includes charge-charge, charge-dipole, dipole-dipole and
    charge-quadrupole terms.
    """
    qa, mua, tha = reduced_to_cartesian(a)
    qb, mub, thb = reduced_to_cartesian(b)
    r = np.asarray(center_b, dtype=float) - np.asarray(center_a, dtype=float)
    dist = np.linalg.norm(r)
    if dist == 0.0:
        raise GeometryError("Coincident multipole sites")
    r3 = dist**3
    r5 = dist**5

    energy = qa * qb / dist
    energy += (qb * (mua @ r) - qa * (mub @ r)) / r3
    energy += ((mua @ mub) * dist**2 - 3.0 * (mua @ r) * (mub @ r)) / r5
    energy += (qb * (r @ tha @ r) + qa * (r @ thb @ r)) / r5
    return float(C2EV * energy)

def charge_energy(store: ReplicaStore, bead: int, indices=None) -> float:
    """Monopole Coulomb energy of a subset of atoms in one bead."""
    if indices is None:
        indices = range(store.n_atoms)
    indices = list(indices)
    charges = [store.atoms[i].multipole(bead).q for i in indices]
    positions = [store.atoms[i].position(bead) for i in indices]
    return point_charge_energy(charges, positions)

def embedding_charges(store: ReplicaStore, bead: int,
                      electrostatics: Electrostatics = Electrostatics.CHARGES):
    """
    Background charges for a QM calculation on one bead.

    Boundary atoms capped by a pseudo-bond chain are left out.

    Args:
        store: Replica store
        bead: Bead index
        electrostatics: Point charges or polarizable multipole grids

    Returns:
        (n, 4) array of x, y, z, q and the (n,) index of the owning atom
    """
    capped = capped_boundary_atoms(store)
    rows = []
    owners = []
    for atom in store.atoms:
        if atom.region == Region.MM or (atom.region == Region.BOUNDARY and atom.index not in capped):
            if electrostatics == Electrostatics.AMOEBA:
                grid = atom.beads[bead].charges
                if grid is None:
                    raise GeometryError("Point-charge grid not initialized", atom=atom.index, bead=bead)
                for pos, q in zip(grid.positions, grid.charges):
                    rows.append((*pos, q))
                    owners.append(atom.index)
            else:
                rows.append((*atom.position(bead), atom.multipole(bead).q))
                owners.append(atom.index)
    return np.array(rows, dtype=float).reshape(-1, 4), np.array(owners, dtype=int)
