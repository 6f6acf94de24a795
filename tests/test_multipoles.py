"""
Tests for multipole reduction, octahedral charge grids and QM/MM electrostatics.
"""

import pytest
import numpy as np

from QMMMKit.calc.engines import ChargeEngine, EmbeddingEngine
from QMMMKit.calc.multipoles import (
    OCT_SPACING, charge_energy, embedding_charges, expand_to_charges, multipole_pair_energy,
    point_charge_energy, reduce_multipole, reduced_to_cartesian, update_bead_multipoles
)
from QMMMKit.errors import GeometryError
from QMMMKit.geom.store import build_store
from QMMMKit.models.datatypes import Electrostatics, Region, Settings
from QMMMKit.models.records import FrameKind, Multipole
from QMMMKit.utils.units import C2EV

def grid_moments(oct_charges, center):
    """Charge, dipole and traceless quadrupole of a point-charge grid."""
    r = oct_charges.positions - center
    q = oct_charges.charges
    dipole = np.sum(q[:, None] * r, axis=0)
    quad = np.zeros((3, 3))
    for qi, ri in zip(q, r):
        quad += qi * (1.5 * np.outer(ri, ri) - 0.5 * (ri @ ri) * np.eye(3))
    return float(np.sum(q)), dipole, quad

@pytest.fixture
def general_multipole():
    """Multipole with dipole and traceless quadrupole in a Z-then-X frame."""
    quad = np.array([[0.3, 0.1, -0.05], [0.1, -0.5, 0.2], [-0.05, 0.2, 0.2]])
    return Multipole(q=-0.4, dipole=[0.1, -0.2, 0.3], quadrupole=quad,
                     frame=FrameKind.Z_THEN_X, atom_z=1, atom_x=2)

@pytest.fixture
def frame_atoms():
    center = np.array([0.5, 0.2, -0.1])
    return center, center + np.array([0.3, 0.9, 0.2]), center + np.array([1.0, -0.2, 0.4])

class TestReduction:
    """Test multipole reduction."""

    def test_point_charge(self):
        """A bare charge reduces to its monopole."""
        reduced = reduce_multipole(Multipole(q=0.7), np.zeros(3))
        assert reduced.q00 == 0.7
        assert reduced.q10 == reduced.q11c == reduced.q11s == 0.0
        assert reduced.q20 == reduced.q22c == 0.0

    def test_dipole_rotated(self):
        """A local z dipole follows the z reference atom."""
        mpole = Multipole(q=0.0, dipole=[0.0, 0.0, 0.5], frame=FrameKind.Z_ONLY)
        reduced = reduce_multipole(mpole, np.zeros(3), z_pos=[0.0, 2.0, 0.0])
        _, dipole, _ = reduced_to_cartesian(reduced)
        assert np.allclose(dipole, [0.0, 0.5, 0.0])

    def test_principal_frame(self, general_multipole, frame_atoms):
        """Reduced frames are right handed and reproduce the global moments."""
        center, z_pos, x_pos = frame_atoms
        reduced = reduce_multipole(general_multipole, center, z_pos, x_pos)
        frame = reduced.frame
        assert np.allclose(frame @ frame.T, np.eye(3), atol=1e-10)
        assert np.linalg.det(frame) == pytest.approx(1.0)

        q, dipole, quad = reduced_to_cartesian(reduced)
        assert q == pytest.approx(-0.4)
        assert np.linalg.norm(dipole) == pytest.approx(np.linalg.norm(general_multipole.dipole))
        assert np.trace(quad) == pytest.approx(0.0, abs=1e-12)
        assert np.allclose(np.linalg.eigvalsh(quad),
                           np.linalg.eigvalsh(general_multipole.quadrupole), atol=1e-10)

    def test_no_off_diagonal_terms(self, general_multipole, frame_atoms):
        """The quadrupole is diagonal in the reduced frame."""
        center, z_pos, x_pos = frame_atoms
        reduced = reduce_multipole(general_multipole, center, z_pos, x_pos)
        _, _, quad = reduced_to_cartesian(reduced, frame=reduced.frame)
        off = quad - np.diag(np.diag(quad))
        assert np.allclose(off, 0.0, atol=1e-10)

class TestOctahedralGrid:
    """Test the six-charge expansion."""

    def test_grid_moments(self, general_multipole, frame_atoms):
        """The grid reproduces monopole, dipole and quadrupole exactly."""
        center, z_pos, x_pos = frame_atoms
        reduced = reduce_multipole(general_multipole, center, z_pos, x_pos)
        grid = expand_to_charges(reduced, center)
        q, dipole, quad = grid_moments(grid, center)
        q_ref, dipole_ref, quad_ref = reduced_to_cartesian(reduced)

        assert q == pytest.approx(q_ref)
        assert np.allclose(dipole, dipole_ref, atol=1e-10)
        assert np.allclose(quad, quad_ref, atol=1e-10)
        assert grid.total == pytest.approx(-0.4)

    def test_grid_geometry(self):
        """Grid charges sit at the octahedral spacing."""
        reduced = reduce_multipole(Multipole(q=1.2), np.zeros(3))
        grid = expand_to_charges(reduced)
        assert np.allclose(np.linalg.norm(grid.positions, axis=1), OCT_SPACING)
        assert np.allclose(grid.charges, 0.2)

    def test_update_bead_multipoles(self, general_multipole):
        """Every atom of a bead receives a grid."""
        store = build_store(["C", "O", "H"], [[0, 0, 0], [0, 0, 1.2], [1.0, 0, 0]], [12.0, 16.0, 1.0])
        store.atoms[0].beads[0].multipole = general_multipole
        update_bead_multipoles(store, 0)
        assert all(atom.beads[0].charges is not None for atom in store.atoms)
        assert store.atoms[0].beads[0].charges.total == pytest.approx(-0.4)

    def test_bad_frame_reference(self, general_multipole):
        """A missing frame atom names the atom and bead."""
        store = build_store(["C", "O"], [[0, 0, 0], [0, 0, 1.2]], [12.0, 16.0])
        store.atoms[0].beads[0].multipole = general_multipole
        with pytest.raises(GeometryError, match="atom 0, bead 0"):
            update_bead_multipoles(store, 0)

class TestElectrostatics:
    """Test point-charge and multipole energies."""

    def test_point_charges(self):
        """Unit charges 1 Å apart."""
        energy = point_charge_energy([1.0, -1.0], [[0, 0, 0], [1.0, 0, 0]])
        assert energy == pytest.approx(-14.3996, abs=1e-3)

    def test_coincident_charges(self):
        with pytest.raises(GeometryError):
            point_charge_energy([1.0, 1.0], [[0, 0, 0], [0, 0, 0]])

    def test_multipole_pair_matches_grid(self, general_multipole, frame_atoms):
        """Far-field multipole energy agrees with the point-charge grid."""
        center, z_pos, x_pos = frame_atoms
        a = reduce_multipole(general_multipole, center, z_pos, x_pos)
        b = reduce_multipole(Multipole(q=1.0), np.zeros(3))
        far = center + np.array([30.0, 10.0, -20.0])

        grid = expand_to_charges(a, center)
        direct = C2EV * np.sum(grid.charges / np.linalg.norm(grid.positions - far, axis=1))
        assert multipole_pair_energy(a, center, b, far) == pytest.approx(direct, rel=1e-4)

    def test_charge_energy(self):
        store = build_store(["Na", "Cl"], [[0, 0, 0], [2.0, 0, 0]], [23.0, 35.45],
                            charges=[1.0, -1.0])
        assert charge_energy(store, 0) == pytest.approx(-C2EV / 2.0)

    def test_charge_engine_forces(self):
        """Opposite charges attract with equal and opposite forces."""
        store = build_store(["Na", "Cl"], [[0, 0, 0], [2.0, 0, 0]], [23.0, 35.45],
                            charges=[1.0, -1.0])
        energy, forces = ChargeEngine().forces(store, Settings(), 0)
        assert energy == pytest.approx(-C2EV / 2.0)
        assert forces[0, 0] > 0
        assert np.allclose(forces[0], -forces[1])
        assert forces[0, 0] == pytest.approx(C2EV / 4.0)

class TestEmbedding:
    """Test the QM/MM background charges."""

    @pytest.fixture
    def qmmm_store(self):
        regions = [Region.QM, Region.PSEUDO_BOND, Region.BOUNDARY, Region.MM, Region.BOUNDARY]
        bonds = [[1], [0, 2], [1], [4], [3]]
        coords = [(0, 0, 0), (1.5, 0, 0), (3.0, 0, 0), (0, 4.0, 0), (0, 5.5, 0)]
        return build_store(["C", "C", "C", "O", "H"], coords, [12.0, 12.0, 12.0, 16.0, 1.0],
                           charges=[0.5, 0.0, 0.3, -0.6, 0.4], regions=regions, bonds=bonds)

    def test_capped_boundary_excluded(self, qmmm_store):
        """Boundary atoms behind a pseudo-bond are not background charges."""
        charges, owners = embedding_charges(qmmm_store, 0)
        assert list(owners) == [3, 4]
        assert np.allclose(charges[:, 3], [-0.6, 0.4])

    def test_grid_background(self, qmmm_store):
        """Polarizable electrostatics pass six charges per background atom."""
        update_bead_multipoles(qmmm_store, 0)
        charges, owners = embedding_charges(qmmm_store, 0, Electrostatics.AMOEBA)
        assert charges.shape == (12, 4)
        assert list(owners) == [3] * 6 + [4] * 6

    def test_missing_grid(self, qmmm_store):
        with pytest.raises(GeometryError):
            embedding_charges(qmmm_store, 0, Electrostatics.AMOEBA)

    def test_embedding_engine(self, qmmm_store):
        """Coupling forces obey Newton's third law."""
        energy, forces = EmbeddingEngine().forces(qmmm_store, Settings(), 0)
        expected = C2EV * 0.5 * (-0.6 / 4.0 + 0.4 / 5.5)
        assert energy == pytest.approx(expected)
        assert np.allclose(np.sum(forces, axis=0), 0.0, atol=1e-12)
        assert np.allclose(forces[1], 0.0)
