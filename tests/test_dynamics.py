"""
Tests for velocity Verlet dynamics.
"""

import pytest
import numpy as np

from QMMMKit.calc.aggregator import EnergyAggregator
from QMMMKit.calc.engines import PotentialEngine
from QMMMKit.dynamics.verlet import (
    berendsen_scale, instantaneous_temperature, kinetic_energy, maxwell_boltzmann_velocities,
    ring_kinetic_energy, velocity_verlet
)
from QMMMKit.geom.store import build_store
from QMMMKit.models.datatypes import Settings

def spring(coords):
    """k = 1 eV/Å^2 around the origin."""
    return float(0.5 * np.sum(coords**2))

def spring_forces(coords):
    return -coords

class TestThermostat:
    """Test the Berendsen thermostat."""

    def test_at_target(self):
        assert berendsen_scale(300.0, 300.0, 1.0, 100.0) == pytest.approx(1.0)

    def test_direction(self):
        """Hot systems are slowed down, cold ones sped up."""
        assert berendsen_scale(400.0, 300.0, 1.0, 100.0) < 1.0
        assert berendsen_scale(200.0, 300.0, 1.0, 100.0) > 1.0

    def test_zero_temperature(self):
        assert berendsen_scale(0.0, 300.0, 1.0, 100.0) == 1.0

class TestVelocities:
    """Test initial velocities and kinetic temperature."""

    def test_maxwell_boltzmann(self):
        rng = np.random.default_rng(2)
        coords = rng.uniform(0, 50, size=(3000, 3))
        store = build_store(["Ar"] * 3000, coords, [39.948] * 3000)
        velocities = maxwell_boltzmann_velocities(store, 300.0, rng)

        assert instantaneous_temperature(store, velocities) == pytest.approx(300.0, rel=0.05)
        assert np.allclose(np.sum(velocities[0], axis=0), 0.0, atol=1e-10)

    def test_frozen_at_rest(self):
        store = build_store(["Ar", "Ar", "Ar"], np.eye(3), [39.948] * 3, frozen=[1])
        velocities = maxwell_boltzmann_velocities(store, 300.0, np.random.default_rng(0))
        assert np.allclose(velocities[0, 1], 0.0)
        assert kinetic_energy(store, velocities) > 0.0

class TestVerlet:
    """Test the integrator."""

    def test_energy_conservation(self):
        """A harmonic oscillator keeps its total energy without a thermostat."""
        store = build_store(["X"], [[0.1, 0.0, 0.0]], [1.0])
        settings = Settings(dt=0.5, n_steps=400, n_print=10)
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(spring, spring_forces))
        velocities = np.zeros((1, 1, 3))

        result = velocity_verlet(store, aggregator, settings, velocities, thermostat=False)

        assert result.n_steps == 400
        assert result.average_energy == pytest.approx(0.005, abs=1e-4)
        assert not np.allclose(store.positions(0)[0, 0], 0.1)

    def test_frozen_atom_fixed(self):
        store = build_store(["X", "X"], [[0.1, 0.0, 0.0], [0.0, 0.2, 0.0]], [1.0, 1.0], frozen=[1])
        settings = Settings(dt=0.5, n_steps=50, n_print=10)
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(spring, spring_forces))
        velocities = np.ones((1, 2, 3)) * 0.01

        velocity_verlet(store, aggregator, settings, velocities)

        assert np.array_equal(store.positions(0)[1], [0.0, 0.2, 0.0])
        assert np.allclose(velocities[0, 1], 0.0)

    def test_sink_only_in_production(self):
        store = build_store(["X"], [[0.1, 0.0, 0.0]], [1.0])
        settings = Settings(dt=0.5, n_eq=20, n_steps=20, n_print=10)
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(spring, spring_forces))
        velocities = np.zeros((1, 1, 3))
        frames = []

        velocity_verlet(store, aggregator, settings, velocities, production=False,
                        sink=frames.append)
        assert frames == []

        velocity_verlet(store, aggregator, settings, velocities, sink=frames.append)
        assert len(frames) == 3

def stiff(coords):
    """k = 5 eV/Å^2 around the origin."""
    return float(2.5 * np.sum(coords**2))

def stiff_forces(coords):
    return -5.0 * coords

class TestRingPolymerDynamics:
    """Test path-integral forces and dynamics with more than one bead."""

    def two_bead_store(self):
        store = build_store(["X"], [[0.1, 0.0, 0.0]], [1.0])
        store.replicate(2)
        coords = store.positions(1)
        coords[0, 0] += 0.05
        store.set_positions(1, coords)
        return store

    def test_forces_are_energy_gradient(self):
        """Ensemble forces are minus the gradient of the bead mean plus springs."""
        store = self.two_bead_store()
        settings = Settings(n_beads=2, temperature=300.0)
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(stiff, stiff_forces))

        energy, forces = aggregator.ensemble_forces(store)
        assert energy == pytest.approx(aggregator.potential_energy(store)
                                       + aggregator.spring_energy(store))

        delta = 1e-5
        coords = store.positions(1)
        shifted = []
        for sign in (1.0, -1.0):
            moved = coords.copy()
            moved[0, 0] += sign * delta
            store.set_positions(1, moved)
            shifted.append(aggregator.potential_energy(store) + aggregator.spring_energy(store))
        store.set_positions(1, coords)

        assert forces[1, 0, 0] == pytest.approx(-(shifted[0] - shifted[1]) / (2 * delta), rel=1e-5)
        assert np.allclose(forces[:, 0, 1:], 0.0)

    def test_single_bead_forces_unchanged(self):
        store = build_store(["X"], [[0.1, 0.0, 0.0]], [1.0])
        aggregator = EnergyAggregator(Settings(), mm=PotentialEngine(stiff, stiff_forces))
        energy, forces = aggregator.ensemble_forces(store)
        assert energy == pytest.approx(0.025)
        assert np.allclose(forces[0, 0], [-0.5, 0.0, 0.0])

    def test_energy_conservation(self):
        """Two beads released from rest keep the ring-polymer energy."""
        store = self.two_bead_store()
        settings = Settings(n_beads=2, temperature=300.0, dt=0.5, n_steps=400, n_print=5)
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(spring, spring_forces))
        start, _ = aggregator.ensemble_forces(store)
        velocities = np.zeros((2, 1, 3))

        result = velocity_verlet(store, aggregator, settings, velocities, thermostat=False)

        assert result.average_energy == pytest.approx(start, rel=1e-2)
        assert ring_kinetic_energy(store, velocities) == pytest.approx(
            2 * kinetic_energy(store, velocities))
