"""
Energy/force aggregation over engines, beads and eFF electrons.
"""

import threading
import time
import numpy as np
from typing import Optional, Tuple

from ..geom.store import ReplicaStore
from ..models.datatypes import Electrostatics, Settings
from ..orchestrators.runners import WorkerPool, parallel_for
from ..utils.units import AMU_ANG2_S2_TO_EV, HBAR_EV_S
from .eff import DEFAULT_PARAMS, EFFParameters, electron_kinetic_energy, total_eff_energy
from .engines import Engine
from .multipoles import update_bead_multipoles

class EnergyAggregator:
    """
    Sum QM, MM and eFF contributions for single beads and whole ensembles.

    QM/MM totals are subtractive: E = E_QM(QM) + E_MM(all) - E_MM(QM), where
    ``mm_correction`` is the MM engine restricted to the QM region. Ensemble
    potentials are bead averages: each bead is a separate imaginary-time
    slice evaluated independently.
    """

    def __init__(self, settings: Settings, qm: Optional[Engine] = None,
                 mm: Optional[Engine] = None, pool: Optional[WorkerPool] = None,
                 eff_params: EFFParameters = DEFAULT_PARAMS, coupling: Optional[Engine] = None,
                 mm_correction: Optional[Engine] = None):
        self.settings = settings
        self.qm = qm
        self.mm = mm
        self.coupling = coupling
        self.mm_correction = mm_correction
        self.pool = pool
        self.eff_params = eff_params
        self.qm_time = 0.0
        self.mm_time = 0.0
        self._timer_lock = threading.Lock()

    def _timed(self, engine: Engine, method: str, store: ReplicaStore, bead: int):
        start = time.perf_counter()
        result = getattr(engine, method)(store, self.settings, bead)
        elapsed = time.perf_counter() - start
        with self._timer_lock:
            if engine is self.mm or engine is self.mm_correction:
                self.mm_time += elapsed
            else:
                self.qm_time += elapsed
        return result

    @property
    def engines(self):
        """(engine, sign) pairs summed into every bead."""
        terms = [(e, 1.0) for e in (self.qm, self.mm, self.coupling) if e is not None]
        if self.mm_correction is not None:
            terms.append((self.mm_correction, -1.0))
        return terms

    def _prepare(self, store: ReplicaStore, bead: int) -> None:
        # Polarizable MM charges reach the QM engine as octahedral grids
        uses_qm = self.qm is not None or self.coupling is not None
        if uses_qm and self.settings.electrostatics == Electrostatics.AMOEBA:
            update_bead_multipoles(store, bead)

    def bead_energy(self, store: ReplicaStore, bead: int) -> float:
        """Total engine energy of one bead (eV)."""
        self._prepare(store, bead)
        energy = 0.0
        for engine, sign in self.engines:
            energy += sign * self._timed(engine, "energy", store, bead)
        return energy

    def bead_forces(self, store: ReplicaStore, bead: int) -> Tuple[float, np.ndarray]:
        """Total engine energy and (n_atoms, 3) forces of one bead."""
        self._prepare(store, bead)
        energy = 0.0
        forces = np.zeros((store.n_atoms, 3))
        for engine, sign in self.engines:
            e, f = self._timed(engine, "forces", store, bead)
            energy += sign * e
            forces += sign * f
        return energy, forces

    def bead_energies(self, store: ReplicaStore) -> np.ndarray:
        """Engine energy of every bead, evaluated in parallel."""
        return np.array(parallel_for(lambda k: self.bead_energy(store, k),
                                     store.n_beads, self.pool))

    def potential_energy(self, store: ReplicaStore) -> float:
        """Bead-averaged engine energy."""
        return float(np.sum(self.bead_energies(store)) / store.n_beads)

    def _spring_constant(self, store: ReplicaStore) -> np.ndarray:
        # m * omega_P^2 with omega_P = sqrt(P)/(beta hbar), in eV/Å^2
        omega2 = store.n_beads / (self.settings.beta * HBAR_EV_S)**2
        return store.masses() * omega2 * AMU_ANG2_S2_TO_EV

    def spring_energy(self, store: ReplicaStore) -> float:
        """Harmonic ring-polymer energy between neighbouring beads."""
        if store.n_beads < 2:
            return 0.0
        coords = store.all_positions()
        diff = coords - np.roll(coords, -1, axis=0)
        per_atom = np.sum(diff * diff, axis=(0, 2))
        return float(0.5 * np.sum(self._spring_constant(store) * per_atom))

    def spring_forces(self, store: ReplicaStore) -> np.ndarray:
        """(n_beads, n_atoms, 3) ring-polymer forces."""
        coords = store.all_positions()
        if store.n_beads < 2:
            return np.zeros_like(coords)
        lap = 2 * coords - np.roll(coords, 1, axis=0) - np.roll(coords, -1, axis=0)
        return -self._spring_constant(store)[None, :, None] * lap

    def eff_energy(self, store: ReplicaStore) -> float:
        """eFF interaction plus bead-averaged electron kinetic energy."""
        if not store.electrons:
            return 0.0
        n_beads = store.n_beads
        energy = total_eff_energy(store.atoms, store.electrons, n_beads, self.eff_params, self.pool)
        kinetic = electron_kinetic_energy(store.electrons, n_beads, self.eff_params)
        return energy + kinetic / n_beads

    def ensemble_energy(self, store: ReplicaStore) -> float:
        """Potential, ring-polymer and eFF energy of the whole ensemble."""
        return self.potential_energy(store) + self.spring_energy(store) + self.eff_energy(store)

    def all_bead_forces(self, store: ReplicaStore) -> Tuple[np.ndarray, np.ndarray]:
        """Per-bead energies (n_beads,) and engine forces (n_beads, n_atoms, 3)."""
        results = parallel_for(lambda k: self.bead_forces(store, k), store.n_beads, self.pool)
        energies = np.array([e for e, _ in results])
        forces = np.array([f for _, f in results]).reshape(store.n_beads, store.n_atoms, 3)
        return energies, forces

    def ensemble_forces(self, store: ReplicaStore) -> Tuple[float, np.ndarray]:
        """
        Ring-polymer potential and its (n_beads, n_atoms, 3) forces.

        The potential is the bead-averaged engine energy plus the spring
        energy, so each bead feels 1/P of its engine force plus the springs.
        For a single bead this is the plain engine energy and force.
        """
        energies, forces = self.all_bead_forces(store)
        n_beads = store.n_beads
        energy = float(np.sum(energies) / n_beads) + self.spring_energy(store)
        return energy, forces / n_beads + self.spring_forces(store)
