"""
Path-integral Monte Carlo and force-bias NEB Monte Carlo.
"""

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from pydantic import BaseModel
from typing import Callable, Dict, List, Optional

from ..calc.aggregator import EnergyAggregator
from ..calc.path import path_tangent
from ..geom.store import ReplicaStore
from ..models.datatypes import Ensemble, MoveProbabilities, Settings
from ..utils.logconfig import get_logger
from ..utils.units import ATM_TO_EV_ANG3

logger = get_logger(__name__)

STEP_MIN = 0.01      # Å
STEP_MAX = 1.0       # Å
STEP_UP = 1.10
STEP_DOWN = 0.91
CENT_RATIO = 5.0     # Centroid step relative to the bead step
VOLUME_STEP = 0.01   # Maximum change of ln V per move
RADIUS_RATIO = 0.1   # Radius step relative to the bead step

Sink = Callable[[ReplicaStore], None]

class MoveKind(str, Enum):
    BEAD = "bead"
    CENTROID = "centroid"
    VOLUME = "volume"
    ELECTRON_BEAD = "electron_bead"
    ELECTRON_CENTROID = "electron_centroid"
    RADIUS = "radius"
    SPIN_FLIP = "spin_flip"
    SPIN_SWAP = "spin_swap"

ELECTRON_MOVES = (MoveKind.ELECTRON_BEAD, MoveKind.ELECTRON_CENTROID, MoveKind.RADIUS,
                  MoveKind.SPIN_FLIP, MoveKind.SPIN_SWAP)

class MoveSampler:
    """
    Discrete distribution over Monte Carlo move kinds.

    Volume moves are only drawn under NPT and electron moves only when the
    system has electrons. The remaining weights are normalized.
    """

    def __init__(self, probabilities: MoveProbabilities, ensemble: Ensemble = Ensemble.NVT,
                 has_electrons: bool = False):
        weights: Dict[MoveKind, float] = {kind: getattr(probabilities, kind.value) for kind in MoveKind}
        if ensemble != Ensemble.NPT:
            weights[MoveKind.VOLUME] = 0.0
        if not has_electrons:
            for kind in ELECTRON_MOVES:
                weights[kind] = 0.0

        self.kinds = [kind for kind, w in weights.items() if w > 0]
        total = sum(weights[kind] for kind in self.kinds)
        if total <= 0:
            raise ValueError("No Monte Carlo move has a positive probability")
        self.probabilities = np.array([weights[kind] / total for kind in self.kinds])

    def probability(self, kind: MoveKind) -> float:
        if kind not in self.kinds:
            return 0.0
        return float(self.probabilities[self.kinds.index(kind)])

    def sample(self, rng: np.random.Generator) -> MoveKind:
        return self.kinds[rng.choice(len(self.kinds), p=self.probabilities)]

def metropolis_accept(current: float, proposed: float, beta: float,
                      rng: np.random.Generator) -> bool:
    """
    Metropolis acceptance criterion.

    Args:
        current: Current energy (eV)
        proposed: Proposed energy (eV)
        beta: Inverse temperature (1/eV)
        rng: Random generator

    Returns:
        True if the move should be accepted
    """
    if proposed <= current:
        return True
    if beta <= 0:
        return True
    prob = np.exp(-beta * (proposed - current))
    return rng.random() < prob

@dataclass
class MCState:
    """Running Monte Carlo bookkeeping."""
    energy: float
    step: float = 0.1
    accepted: int = 0
    attempted: int = 0
    total_accepted: int = 0
    total_attempted: int = 0
    move_counts: Dict[MoveKind, int] = field(default_factory=dict)

    @property
    def acceptance(self) -> float:
        return self.accepted / self.attempted if self.attempted else 0.0

    def record(self, kind: MoveKind, accepted: bool) -> None:
        self.attempted += 1
        self.total_attempted += 1
        self.move_counts[kind] = self.move_counts.get(kind, 0) + 1
        if accepted:
            self.accepted += 1
            self.total_accepted += 1

class MCResult(BaseModel):
    """Averages of a Monte Carlo run."""
    average_energy: float       # eV
    average_volume: float       # Å^3
    acceptance: float
    step: float                 # Å
    n_steps: int

def _random_vector(rng: np.random.Generator, scale: float) -> np.ndarray:
    return 2.0 * (rng.random(3) - 0.5) * scale

def _mobile_atoms(store: ReplicaStore) -> List[int]:
    return [atom.index for atom in store.atoms if not atom.frozen]

def _propose(store: ReplicaStore, kind: MoveKind, step: float, rng: np.random.Generator,
             rad_min: float, rad_max: float) -> bool:
    """Apply a trial move in place; False when no candidate exists."""
    if kind in (MoveKind.BEAD, MoveKind.CENTROID):
        mobile = _mobile_atoms(store)
        if not mobile:
            return False
        atom = store.atoms[mobile[rng.integers(len(mobile))]]
        if kind == MoveKind.BEAD:
            bead = atom.beads[rng.integers(atom.n_beads)]
            bead.position = bead.position + _random_vector(rng, step)
        else:
            shift = _random_vector(rng, CENT_RATIO * step)
            for bead in atom.beads:
                bead.position = bead.position + shift
        return True

    if kind in (MoveKind.ELECTRON_BEAD, MoveKind.ELECTRON_CENTROID, MoveKind.RADIUS):
        if not store.electrons:
            return False
        elec = store.electrons[rng.integers(store.n_electrons)]
        if kind == MoveKind.ELECTRON_BEAD:
            bead = elec.beads[rng.integers(elec.n_beads)]
            bead.position = bead.position + _random_vector(rng, step)
        elif kind == MoveKind.ELECTRON_CENTROID:
            shift = _random_vector(rng, CENT_RATIO * step)
            for bead in elec.beads:
                bead.position = bead.position + shift
        else:
            k = rng.integers(elec.n_beads)
            delta = 2.0 * (rng.random() - 0.5) * RADIUS_RATIO * step
            elec.set_radius(k, elec.radius(k) + delta, rad_min, rad_max)
        return True

    if kind == MoveKind.SPIN_FLIP:
        if not store.electrons:
            return False
        elec = store.electrons[rng.integers(store.n_electrons)]
        elec.spin = -elec.spin
        return True

    if kind == MoveKind.SPIN_SWAP:
        up = [e for e in store.electrons if e.spin > 0]
        down = [e for e in store.electrons if e.spin < 0]
        if not up or not down:
            return False
        e_up = up[rng.integers(len(up))]
        e_down = down[rng.integers(len(down))]
        e_up.spin, e_down.spin = e_down.spin, e_up.spin
        return True

    raise ValueError(f"Unsupported move: {kind}")

def _scale_volume(store: ReplicaStore, new_volume: float) -> None:
    """Isotropic rescaling of box and centroids; ring-polymer shapes are kept."""
    factor = (new_volume / store.volume)**(1.0 / 3.0)
    for atom in store.atoms:
        if atom.frozen:
            continue
        shift = (factor - 1.0) * np.mean([b.position for b in atom.beads], axis=0)
        for bead in atom.beads:
            bead.position = bead.position + shift
    for elec in store.electrons:
        shift = (factor - 1.0) * np.mean([b.position for b in elec.beads], axis=0)
        for bead in elec.beads:
            bead.position = bead.position + shift
    store.box = store.box * factor

def mc_move(store: ReplicaStore, aggregator: EnergyAggregator, settings: Settings,
            state: MCState, sampler: MoveSampler, rng: np.random.Generator) -> bool:
    """
    Attempt one Monte Carlo move on the whole ensemble.

    Volume moves sample ln V and accept on the enthalpy change
    dE + P dV - (N + 1) kT ln(V'/V).

    Returns:
        True if the move was accepted
    """
    kind = sampler.sample(rng)
    snap = store.snapshot()
    beta = settings.beta
    params = aggregator.eff_params

    if kind == MoveKind.VOLUME:
        old_volume = store.volume
        new_volume = old_volume * np.exp(2.0 * (rng.random() - 0.5) * VOLUME_STEP)
        _scale_volume(store, new_volume)
        energy = aggregator.ensemble_energy(store)
        n_particles = store.n_atoms + store.n_electrons
        delta = energy - state.energy
        delta += settings.pressure * ATM_TO_EV_ANG3 * (new_volume - old_volume)
        delta -= (n_particles + 1) / beta * np.log(new_volume / old_volume)
        accepted = metropolis_accept(0.0, delta, beta, rng)
    elif not _propose(store, kind, state.step, rng, params.rad_min, params.rad_max):
        accepted = False
    else:
        energy = aggregator.ensemble_energy(store)
        accepted = metropolis_accept(state.energy, energy, beta, rng)

    if accepted:
        state.energy = energy
    else:
        store.restore(snap)
    state.record(kind, accepted)
    return accepted

def adapt_step(state: MCState, target: float) -> None:
    """Scale the step towards the target acceptance ratio and reset counters."""
    if state.attempted == 0:
        return
    ratio = state.acceptance
    if ratio > target:
        state.step *= STEP_UP
    elif ratio < target:
        state.step *= STEP_DOWN
    state.step = float(min(max(state.step, STEP_MIN), STEP_MAX))
    state.accepted = 0
    state.attempted = 0

def run_pimc(store: ReplicaStore, aggregator: EnergyAggregator, settings: Settings,
             rng: Optional[np.random.Generator] = None, sink: Optional[Sink] = None,
             step: float = 0.1) -> MCResult:
    """
    Path-integral Monte Carlo: equilibration followed by production.

    The step size adapts every acc_check steps during equilibration only.
    Averages are taken over every production step; the sink receives the
    store every n_print production steps.

    Args:
        store: Replicated store (modified in place)
        aggregator: Energy provider
        settings: Simulation settings
        rng: Random generator (seeded from settings when omitted)
        sink: Optional trajectory callback
        step: Initial bead step (Å)

    Returns:
        MCResult with production averages
    """
    rng = rng if rng is not None else np.random.default_rng(settings.random_seed)
    sampler = MoveSampler(settings.moves, settings.ensemble, store.n_electrons > 0)
    state = MCState(energy=aggregator.ensemble_energy(store), step=step)
    logger.info(f"PIMC: {store.n_beads} beads, T = {settings.temperature} K, "
                f"initial E = {state.energy:.6f} eV")

    for i in range(1, settings.n_eq + 1):
        mc_move(store, aggregator, settings, state, sampler, rng)
        if i % settings.acc_check == 0:
            ratio = state.acceptance
            adapt_step(state, settings.acc_ratio)
            logger.debug(f"Equilibration step {i}: acceptance {ratio:.3f}, step {state.step:.4f} Å")
        if settings.n_print and i % settings.n_print == 0:
            logger.info(f"Equilibration {i}/{settings.n_eq}: E = {state.energy:.6f} eV")

    state.accepted = 0
    state.attempted = 0
    e_sum = 0.0
    v_sum = 0.0
    for i in range(1, settings.n_steps + 1):
        mc_move(store, aggregator, settings, state, sampler, rng)
        e_sum += state.energy
        v_sum += store.volume
        if settings.n_print and i % settings.n_print == 0:
            logger.info(f"Production {i}/{settings.n_steps}: E = {state.energy:.6f} eV, "
                        f"<E> = {e_sum / i:.6f} eV, acceptance {state.acceptance:.3f}")
            if sink is not None:
                sink(store)

    n = max(settings.n_steps, 1)
    average_energy = e_sum / n if settings.n_steps else state.energy
    average_volume = v_sum / n if settings.n_steps else store.volume
    return MCResult(average_energy=float(average_energy), average_volume=float(average_volume),
                    acceptance=state.acceptance, step=state.step, n_steps=settings.n_steps)

class FBNEBResult(BaseModel):
    """Per-image averages of a force-bias NEB Monte Carlo run."""
    energies: List[float]       # eV, averaged over production
    acceptance: float
    step: float                 # Å
    n_steps: int

def _perpendicular(vec: np.ndarray, tau: np.ndarray, mobile: np.ndarray) -> np.ndarray:
    vec = np.where(mobile[:, None], vec, 0.0)
    return vec - np.sum(vec * tau) * tau

def _proposal_log_density(x_to: np.ndarray, x_from: np.ndarray, f_from: np.ndarray,
                          a: float, beta: float) -> float:
    mean = x_from + a * beta * f_from
    return float(-np.sum((x_to - mean)**2) / (4.0 * a))

def fbneb_move(store: ReplicaStore, aggregator: EnergyAggregator, settings: Settings,
               bead: int, energies: np.ndarray, forces: np.ndarray, state: MCState,
               rng: np.random.Generator) -> bool:
    """
    Force-bias move of one path image in the plane perpendicular to the path.

    The proposal x' = x + A beta F + sqrt(2A) eta uses A = step^2 / 2; force
    and noise are projected off the tangent. The Metropolis-Hastings ratio
    includes the asymmetry of the forward and reverse proposals.
    """
    mobile = ~store.frozen_mask()
    coords = store.all_positions()
    tau = path_tangent(coords, energies, bead, store.active_mask())
    beta = settings.beta
    a = 0.5 * state.step * state.step

    x_old = coords[bead]
    f_old = _perpendicular(forces[bead], tau, mobile)
    noise = _perpendicular(rng.standard_normal(x_old.shape), tau, mobile)
    x_new = x_old + a * beta * f_old + np.sqrt(2.0 * a) * noise

    store.set_positions(bead, x_new)
    e_new, f_new_full = aggregator.bead_forces(store, bead)
    f_new = _perpendicular(f_new_full, tau, mobile)

    log_ratio = -beta * (e_new - energies[bead])
    log_ratio += _proposal_log_density(x_old, x_new, f_new, a, beta)
    log_ratio -= _proposal_log_density(x_new, x_old, f_old, a, beta)
    accepted = log_ratio >= 0 or rng.random() < np.exp(log_ratio)

    if accepted:
        energies[bead] = e_new
        forces[bead] = f_new_full
    else:
        store.set_positions(bead, x_old)
    state.record(MoveKind.BEAD, accepted)
    return accepted

def run_fbneb(store: ReplicaStore, aggregator: EnergyAggregator, settings: Settings,
              rng: Optional[np.random.Generator] = None, sink: Optional[Sink] = None,
              step: float = 0.1) -> FBNEBResult:
    """
    Sample every interior path image with force-bias Monte Carlo.

    Each sweep attempts one move per interior image. End images stay fixed.
    """
    rng = rng if rng is not None else np.random.default_rng(settings.random_seed)
    n_beads = store.n_beads
    if n_beads < 3:
        raise ValueError("Force-bias NEB needs at least three path images")

    energies, forces = aggregator.all_bead_forces(store)
    state = MCState(energy=float(np.mean(energies)), step=step)
    logger.info(f"Force-bias NEB: {n_beads} images, T = {settings.temperature} K")

    def sweep():
        for k in range(1, n_beads - 1):
            fbneb_move(store, aggregator, settings, k, energies, forces, state, rng)

    for i in range(1, settings.n_eq + 1):
        sweep()
        if i % settings.acc_check == 0:
            adapt_step(state, settings.acc_ratio)
        if settings.n_print and i % settings.n_print == 0:
            logger.info(f"Equilibration {i}/{settings.n_eq}: E_max = {np.max(energies):.6f} eV")

    state.accepted = 0
    state.attempted = 0
    e_sum = np.zeros(n_beads)
    for i in range(1, settings.n_steps + 1):
        sweep()
        e_sum += energies
        if settings.n_print and i % settings.n_print == 0:
            logger.info(f"Production {i}/{settings.n_steps}: E_max = {np.max(energies):.6f} eV, "
                        f"acceptance {state.acceptance:.3f}")
            if sink is not None:
                sink(store)

    averages = e_sum / settings.n_steps if settings.n_steps else energies.copy()
    return FBNEBResult(energies=[float(e) for e in averages], acceptance=state.acceptance,
                       step=state.step, n_steps=settings.n_steps)
