"""
Velocity Verlet molecular dynamics with a Berendsen thermostat.

Units: fs, amu, eV, Å. Velocities are (n_beads, n_atoms, 3) in Å/fs.
"""

import numpy as np
from pydantic import BaseModel
from typing import Callable, Optional

from ..calc.aggregator import EnergyAggregator
from ..geom.store import ReplicaStore
from ..models.datatypes import Settings
from ..utils.logconfig import get_logger
from ..utils.units import AMU_ANG2_FS2_TO_EV, BOLTZMANN_EV_K, FORCE_TO_ACCEL

logger = get_logger(__name__)

class MDResult(BaseModel):
    """Averages of a dynamics run."""
    average_energy: float       # eV, ring-polymer potential plus kinetic
    average_temperature: float  # K
    n_steps: int

def maxwell_boltzmann_velocities(store: ReplicaStore, temperature: float,
                                 rng: np.random.Generator) -> np.ndarray:
    """
    Random velocities at the given temperature, frozen atoms at rest.

    The centre-of-mass drift of the mobile atoms is removed per bead.
    """
    masses = store.masses()
    mobile = ~store.frozen_mask()
    sigma = np.sqrt(BOLTZMANN_EV_K * temperature / (masses * AMU_ANG2_FS2_TO_EV))
    velocities = rng.standard_normal((store.n_beads, store.n_atoms, 3)) * sigma[None, :, None]
    velocities[:, ~mobile] = 0.0
    if np.sum(mobile) > 1:
        m = masses[mobile]
        for k in range(store.n_beads):
            drift = np.sum(velocities[k, mobile] * m[:, None], axis=0) / np.sum(m)
            velocities[k, mobile] -= drift
    return velocities

def kinetic_energy(store: ReplicaStore, velocities: np.ndarray) -> float:
    """Bead-averaged kinetic energy (eV)."""
    masses = store.masses()
    ke = 0.5 * np.sum(masses[None, :, None] * velocities**2) * AMU_ANG2_FS2_TO_EV
    return float(ke / store.n_beads)

def ring_kinetic_energy(store: ReplicaStore, velocities: np.ndarray) -> float:
    """Kinetic energy summed over beads, conserved together with the ring-polymer potential."""
    return kinetic_energy(store, velocities) * store.n_beads

def instantaneous_temperature(store: ReplicaStore, velocities: np.ndarray) -> float:
    """Kinetic temperature from the mobile degrees of freedom (K)."""
    dof = 3 * int(np.sum(~store.frozen_mask()))
    if dof == 0:
        return 0.0
    return 2.0 * kinetic_energy(store, velocities) / (dof * BOLTZMANN_EV_K)

def berendsen_scale(temperature: float, target: float, dt: float, tau: float) -> float:
    """Berendsen velocity scaling factor."""
    if temperature <= 0:
        return 1.0
    return float(np.sqrt(1.0 + dt / tau * (target / temperature - 1.0)))

def velocity_verlet(store: ReplicaStore, aggregator: EnergyAggregator, settings: Settings,
                    velocities: np.ndarray, production: bool = True,
                    sink: Optional[Callable[[ReplicaStore], None]] = None,
                    thermostat: bool = True) -> MDResult:
    """
    Integrate n_steps (production) or n_eq (equilibration) steps.

    Args:
        store: Store holding the initial positions (updated in place)
        aggregator: Energy/force provider
        settings: dt, tau_temp, temperature, step counts
        velocities: (n_beads, n_atoms, 3) velocities, updated in place
        production: Production runs call the sink
        sink: Optional trajectory callback
        thermostat: Apply Berendsen scaling once per step

    Returns:
        MDResult with averages over the sampled steps
    """
    n_steps = settings.n_steps if production else settings.n_eq
    dt = settings.dt
    mobile = ~store.frozen_mask()
    inv_mass = FORCE_TO_ACCEL / store.masses()
    velocities[:, ~mobile] = 0.0

    energy, forces = aggregator.ensemble_forces(store)
    accel = forces * inv_mass[None, :, None]
    accel[:, ~mobile] = 0.0

    e_sum = 0.0
    t_sum = 0.0
    n_samples = 0

    def sample(step):
        nonlocal e_sum, t_sum, n_samples
        temp = instantaneous_temperature(store, velocities)
        total = energy + ring_kinetic_energy(store, velocities)
        e_sum += total
        t_sum += temp
        n_samples += 1
        logger.info(f"MD step {step}: E = {total:.6f} eV, T = {temp:.2f} K")
        if production and sink is not None:
            sink(store)

    sample(0)
    for step in range(1, n_steps + 1):
        coords = store.all_positions() + velocities * dt + 0.5 * accel * dt * dt
        store.set_all_positions(coords)

        energy, forces = aggregator.ensemble_forces(store)
        new_accel = forces * inv_mass[None, :, None]
        new_accel[:, ~mobile] = 0.0
        velocities += 0.5 * (accel + new_accel) * dt
        accel = new_accel

        if thermostat:
            velocities *= berendsen_scale(instantaneous_temperature(store, velocities),
                                          settings.temperature, dt, settings.tau_temp)
        if settings.n_print and step % settings.n_print == 0:
            sample(step)

    return MDResult(average_energy=e_sum / n_samples, average_temperature=t_sum / n_samples,
                    n_steps=n_steps)
