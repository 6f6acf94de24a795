"""
Tests for the electron force field.
"""

import pytest
import numpy as np
from scipy.special import erf

from QMMMKit.calc.aggregator import EnergyAggregator
from QMMMKit.calc.eff import (
    KINETIC_PREFACTOR, EFFParameters, atom_electron_energy, electron_electron_energy,
    electron_kinetic_energy, pauli_energy, total_eff_energy
)
from QMMMKit.geom.store import build_store
from QMMMKit.models.datatypes import Settings
from QMMMKit.models.records import Electron, ElectronBead
from QMMMKit.orchestrators.runners import WorkerPool
from QMMMKit.utils.units import C2EV, ELECTRON_MASS_AMU, HUGE_NUM

def make_electron(position, radius=0.5, typ="e", spin=1):
    return Electron(typ=typ, beads=[ElectronBead(position=position, radius=radius)],
                    mass=ELECTRON_MASS_AMU, spin=spin)

@pytest.fixture
def hydrogen_molecule():
    """Two protons and two opposite-spin electrons."""
    electrons = [make_electron((0.35, 0.0, 0.0), 0.9, spin=1),
                 make_electron((-0.35, 0.1, 0.0), 0.8, spin=-1)]
    return build_store(["H", "H"], [[0.37, 0, 0], [-0.37, 0, 0]], [1.008, 1.008],
                       charges=[1.0, 1.0], electrons=electrons)

class TestPairTerms:
    """Test individual eFF interactions."""

    def test_atom_electron(self, hydrogen_molecule):
        """Screened Coulomb attraction between a proton and an electron."""
        atom = hydrogen_molecule.atoms[0]
        elec = hydrogen_molecule.electrons[0]
        r = 0.02
        expected = -C2EV / r * erf(np.sqrt(2.0) * r / 0.9)
        assert atom_electron_energy(atom, elec, 0) == pytest.approx(expected)

    def test_atom_on_electron(self):
        """An atom at the electron center has a finite energy."""
        store = build_store(["H"], [[0, 0, 0]], [1.008], charges=[1.0],
                            electrons=[make_electron((0, 0, 0), 0.5)])
        energy = atom_electron_energy(store.atoms[0], store.electrons[0], 0)
        assert energy == pytest.approx(-C2EV * np.sqrt(8.0 / np.pi) / 0.5)

    def test_cutoff(self):
        params = EFFParameters(cutoff=5.0)
        a = make_electron((0, 0, 0))
        b = make_electron((6.0, 0, 0))
        assert electron_electron_energy(a, b, 0, params) == 0.0

    def test_different_types_coulomb_only(self):
        """Electrons of different types see no Pauli repulsion."""
        a = make_electron((0, 0, 0), 0.6, typ="e")
        b = make_electron((0.4, 0, 0), 0.7, typ="p")
        radij = np.sqrt(0.6**2 + 0.7**2)
        expected = C2EV / 0.4 * erf(np.sqrt(2.0) * 0.4 / radij)
        assert electron_electron_energy(a, b, 0) == pytest.approx(expected)

    def test_coincident_electrons(self):
        """Coincident electrons return the rejection sentinel in both orders."""
        a = make_electron((1.0, 1.0, 1.0))
        b = make_electron((1.0, 1.0, 1.0), 0.7)
        assert electron_electron_energy(a, b, 0) == HUGE_NUM
        assert electron_electron_energy(b, a, 0) == HUGE_NUM

    def test_pauli_spin_dependence(self):
        """Same-spin electrons repel, opposite spins are slightly attractive."""
        same = pauli_energy(0.8, 0.8, 0.3, same_spin=True)
        opposite = pauli_energy(0.8, 0.8, 0.3, same_spin=False)
        assert same > 0.0
        assert opposite < 0.0

    def test_pauli_symmetric(self):
        assert pauli_energy(0.6, 0.9, 0.4, True) == pytest.approx(pauli_energy(0.9, 0.6, 0.4, True))

class TestKineticEnergy:
    """Test the electron kinetic energy."""

    def test_single_electron(self):
        """3/(2 s^2) in atomic units."""
        elec = make_electron((0, 0, 0), 0.5)
        energy = electron_kinetic_energy([elec], 1)
        assert energy == pytest.approx(1.5 / 0.25 * KINETIC_PREFACTOR)
        assert energy > 0.0
        assert elec.energy == pytest.approx(energy)

    def test_heavier_particle(self):
        """Kinetic energy falls with the particle mass."""
        light = make_electron((0, 0, 0), 0.5)
        heavy = Electron(typ="mu", beads=[ElectronBead(position=(0, 0, 0), radius=0.5)],
                         mass=200 * ELECTRON_MASS_AMU)
        assert electron_kinetic_energy([heavy], 1) == pytest.approx(
            electron_kinetic_energy([light], 1) / 200)

    def test_bead_scaling(self):
        params = EFFParameters(scale_kinetic=True, scale_pow=0.5)
        store = build_store([], np.zeros((0, 3)), [], electrons=[make_electron((0, 0, 0), 0.5)])
        store.replicate(4)
        unscaled = electron_kinetic_energy(store.electrons, 4)
        scaled = electron_kinetic_energy(store.electrons, 4, params)
        assert scaled == pytest.approx(unscaled / 2.0)

class TestTotalEnergy:
    """Test bead-summed eFF totals."""

    def test_single_bead_naive_sum(self, hydrogen_molecule):
        """With one bead the total is the plain sum of pair terms."""
        atoms, electrons = hydrogen_molecule.atoms, hydrogen_molecule.electrons
        expected = sum(atom_electron_energy(a, e, 0) for a in atoms for e in electrons)
        expected += electron_electron_energy(electrons[0], electrons[1], 0)
        assert total_eff_energy(atoms, electrons, 1) == pytest.approx(expected)

    def test_identical_beads(self, hydrogen_molecule):
        """Identical replicas give the single-bead energy."""
        single = total_eff_energy(hydrogen_molecule.atoms, hydrogen_molecule.electrons, 1)
        hydrogen_molecule.replicate(3)
        replicated = total_eff_energy(hydrogen_molecule.atoms, hydrogen_molecule.electrons, 3)
        assert replicated == pytest.approx(single)

    def test_pool_matches_serial(self, hydrogen_molecule):
        serial = total_eff_energy(hydrogen_molecule.atoms, hydrogen_molecule.electrons, 1)
        with WorkerPool(max_workers=2) as pool:
            threaded = total_eff_energy(hydrogen_molecule.atoms, hydrogen_molecule.electrons, 1,
                                        pool=pool)
        assert threaded == pytest.approx(serial)

    def test_aggregator_includes_kinetic(self, hydrogen_molecule):
        """The aggregator adds the kinetic energy to the interaction terms."""
        aggregator = EnergyAggregator(Settings())
        interaction = total_eff_energy(hydrogen_molecule.atoms, hydrogen_molecule.electrons, 1)
        kinetic = electron_kinetic_energy(hydrogen_molecule.electrons, 1)
        assert aggregator.eff_energy(hydrogen_molecule) == pytest.approx(interaction + kinetic)
        assert aggregator.ensemble_energy(hydrogen_molecule) == pytest.approx(interaction + kinetic)
