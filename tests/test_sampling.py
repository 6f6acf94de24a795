"""
Tests for path-integral Monte Carlo, ring-polymer springs and force-bias NEB.
"""

import pytest
import numpy as np

from QMMMKit.calc.aggregator import EnergyAggregator
from QMMMKit.calc.engines import PotentialEngine
from QMMMKit.calc.path import linear_interpolate
from QMMMKit.geom.store import build_store
from QMMMKit.models.datatypes import Ensemble, MoveProbabilities, Settings
from QMMMKit.sampling.monte_carlo import (
    STEP_MAX, STEP_MIN, MCState, MoveKind, MoveSampler, adapt_step, mc_move,
    metropolis_accept, run_fbneb, run_pimc
)

def harmonic(k):
    def energy(coords):
        return float(0.5 * k * np.sum(coords**2))
    return energy

def flat(coords):
    return 0.0

class TestMetropolis:
    """Test the acceptance rule."""

    def test_downhill_always_accepted(self):
        rng = np.random.default_rng(0)
        assert all(metropolis_accept(1.0, 0.5, 40.0, rng) for _ in range(100))

    def test_uphill_frequency(self):
        """Uphill moves are accepted with probability exp(-beta dE)."""
        rng = np.random.default_rng(42)
        n = 20000
        accepted = sum(metropolis_accept(0.0, 0.5, 1.0, rng) for _ in range(n))
        assert accepted / n == pytest.approx(np.exp(-0.5), abs=0.02)

class TestMoveSampler:
    """Test move selection."""

    def test_nvt_without_electrons(self):
        sampler = MoveSampler(MoveProbabilities())
        assert set(sampler.kinds) == {MoveKind.BEAD, MoveKind.CENTROID}
        assert sampler.probability(MoveKind.BEAD) == pytest.approx(0.5)
        assert sampler.probability(MoveKind.VOLUME) == 0.0

    def test_npt(self):
        sampler = MoveSampler(MoveProbabilities(), Ensemble.NPT)
        assert sampler.probability(MoveKind.VOLUME) == pytest.approx(0.10 / 1.20)

    def test_electron_moves(self):
        """Electron moves appear only with electrons; zero weights never do."""
        sampler = MoveSampler(MoveProbabilities(), has_electrons=True)
        assert sampler.probability(MoveKind.ELECTRON_BEAD) == pytest.approx(0.25 / 1.70)
        assert sampler.probability(MoveKind.SPIN_FLIP) == pytest.approx(0.05 / 1.70)
        assert MoveKind.RADIUS not in sampler.kinds
        assert np.sum(sampler.probabilities) == pytest.approx(1.0)

    def test_sample_frequencies(self):
        sampler = MoveSampler(MoveProbabilities(bead=0.75, centroid=0.25))
        rng = np.random.default_rng(7)
        draws = [sampler.sample(rng) for _ in range(10000)]
        assert draws.count(MoveKind.BEAD) / len(draws) == pytest.approx(0.75, abs=0.02)

    def test_no_moves(self):
        with pytest.raises(ValueError):
            MoveSampler(MoveProbabilities(bead=0.0, centroid=0.0))

class TestStepAdaptation:
    """Test acceptance-driven step control."""

    def test_increase_and_reset(self):
        state = MCState(energy=0.0, step=0.5, accepted=8, attempted=10)
        adapt_step(state, 0.5)
        assert state.step == pytest.approx(0.55)
        assert state.accepted == 0
        assert state.attempted == 0

    def test_decrease(self):
        state = MCState(energy=0.0, step=0.5, accepted=1, attempted=10)
        adapt_step(state, 0.5)
        assert state.step == pytest.approx(0.455)

    def test_clamped(self):
        high = MCState(energy=0.0, step=0.95, accepted=10, attempted=10)
        adapt_step(high, 0.5)
        assert high.step == STEP_MAX
        low = MCState(energy=0.0, step=0.0105, accepted=0, attempted=10)
        adapt_step(low, 0.5)
        assert low.step == STEP_MIN

class TestMonteCarloMoves:
    """Test individual moves on small systems."""

    def test_rejection_restores_positions(self):
        """Rejected moves leave the store exactly as it was."""
        store = build_store(["Ar", "Ar"], [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]], [39.9, 39.9])
        settings = Settings()
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(harmonic(1e8)))
        before = store.all_positions()
        state = MCState(energy=aggregator.ensemble_energy(store), step=0.1)
        sampler = MoveSampler(settings.moves)
        rng = np.random.default_rng(1)

        results = [mc_move(store, aggregator, settings, state, sampler, rng) for _ in range(50)]

        assert not any(results)
        assert np.array_equal(store.all_positions(), before)
        assert state.attempted == 50
        assert state.energy == 0.0

    def test_volume_move_scales_centroids(self):
        """Volume moves keep fractional coordinates."""
        store = build_store(["Ar"], [[1.0, 2.0, 3.0]], [39.9], box=(10.0, 10.0, 10.0))
        settings = Settings(ensemble="NPT", pbc=True, box=(10.0, 10.0, 10.0),
                            moves=MoveProbabilities(bead=0.0, centroid=0.0, volume=1.0))
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(flat))
        state = MCState(energy=0.0)
        sampler = MoveSampler(settings.moves, settings.ensemble)
        rng = np.random.default_rng(5)

        accepted = [mc_move(store, aggregator, settings, state, sampler, rng) for _ in range(20)]

        assert any(accepted)
        assert store.volume != pytest.approx(1000.0, abs=1e-9)
        assert np.allclose(store.positions(0)[0] / store.box, [0.1, 0.2, 0.3])

class TestRingPolymer:
    """Test the harmonic bead springs."""

    @pytest.fixture
    def polymer(self):
        store = build_store(["H", "He"], [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]], [1.008, 4.0026])
        store.replicate(4)
        return store

    def test_identical_beads(self, polymer):
        aggregator = EnergyAggregator(Settings(n_beads=4))
        assert aggregator.spring_energy(polymer) == 0.0
        assert np.allclose(aggregator.spring_forces(polymer), 0.0)

    def test_forces_are_gradient(self, polymer):
        """Spring forces are minus the gradient of the spring energy."""
        rng = np.random.default_rng(11)
        coords = polymer.all_positions() + 0.05 * rng.standard_normal((4, 2, 3))
        polymer.set_all_positions(coords)
        aggregator = EnergyAggregator(Settings(n_beads=4))
        forces = aggregator.spring_forces(polymer)

        delta = 1e-5
        shifted = coords.copy()
        shifted[2, 0, 1] += delta
        polymer.set_all_positions(shifted)
        e_plus = aggregator.spring_energy(polymer)
        shifted[2, 0, 1] -= 2 * delta
        polymer.set_all_positions(shifted)
        e_minus = aggregator.spring_energy(polymer)

        assert forces[2, 0, 1] == pytest.approx(-(e_plus - e_minus) / (2 * delta), rel=1e-5)
        assert np.allclose(np.sum(forces, axis=0), 0.0, atol=1e-10)

    def test_heavier_atoms_stiffer(self, polymer):
        """The spring constant grows with the atomic mass."""
        coords = polymer.all_positions()
        coords[1, :, 0] += 0.1
        polymer.set_all_positions(coords)
        forces = EnergyAggregator(Settings(n_beads=4)).spring_forces(polymer)
        ratio = forces[1, 1, 0] / forces[1, 0, 0]
        assert ratio == pytest.approx(4.0026 / 1.008)

class TestRunners:
    """Test the PIMC and force-bias NEB drivers."""

    def test_pimc(self):
        store = build_store(["H"], [[0.0, 0.0, 0.0]], [1.008])
        store.replicate(2)
        settings = Settings(n_beads=2, calculation="pimc", n_eq=100, n_steps=200, n_print=50,
                            acc_check=50, random_seed=3)
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(harmonic(1.0)))
        frames = []

        result = run_pimc(store, aggregator, settings, sink=frames.append)

        assert result.n_steps == 200
        assert len(frames) == 4
        assert 0.0 < result.acceptance <= 1.0
        assert STEP_MIN <= result.step <= STEP_MAX
        assert np.isfinite(result.average_energy)
        assert result.average_energy >= 0.0
        assert store.n_beads == 2

    def test_fbneb_needs_interior_images(self):
        store = build_store(["Ar"], [[0.0, 0.0, 0.0]], [39.9])
        store.replicate(2)
        settings = Settings(n_beads=2)
        aggregator = EnergyAggregator(settings, mm=PotentialEngine(flat))
        with pytest.raises(ValueError):
            run_fbneb(store, aggregator, settings)

    def test_fbneb_keeps_ends(self):
        """End images are never moved by force-bias sampling."""
        store = build_store(["Ar"], [[-1.0, 0.0, 0.0]], [39.9])
        store.replicate(5)
        linear_interpolate(store, [[-1.0, 0.0, 0.0]], [[1.0, 0.0, 0.0]])
        settings = Settings(n_beads=5, calculation="fbneb", n_eq=5, n_steps=20, n_print=10,
                            acc_check=5, random_seed=9)

        def double_well(coords):
            x, y, z = coords[0]
            return (x * x - 1.0)**2 + 2.0 * y * y + z * z

        aggregator = EnergyAggregator(settings, mm=PotentialEngine(double_well))
        frames = []
        result = run_fbneb(store, aggregator, settings, sink=frames.append)

        assert np.allclose(store.positions(0), [[-1.0, 0.0, 0.0]])
        assert np.allclose(store.positions(4), [[1.0, 0.0, 0.0]])
        assert len(result.energies) == 5
        assert result.n_steps == 20
        assert len(frames) == 2
        assert 0.0 <= result.acceptance <= 1.0
