"""
Energy/force engines behind a single capability interface.

Engines receive the whole store and pick the atoms of their own region.
Energies are in eV and forces in eV/Å; force arrays always cover every atom
of the store, with zeros outside the engine's region.
"""

import threading
import numpy as np
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from ..errors import GeometryError
from ..geom.store import ReplicaStore
from ..io.ase_helpers import make_calculator, store_to_atoms
from ..models.datatypes import Electrostatics, MMEngineKind, QMEngineKind, Region, Settings
from ..utils.units import C2EV
from .multipoles import embedding_charges

QM_REGIONS = (Region.QM, Region.PSEUDO_BOND)
ALL_REGIONS = tuple(Region)

class Engine(ABC):
    """Energy/force provider for one region of the system."""

    name = "engine"

    def __init__(self, regions: Sequence[Region] = ALL_REGIONS):
        self.regions = tuple(regions)

    def atom_indices(self, store: ReplicaStore):
        return store.indices(*self.regions)

    @abstractmethod
    def energy(self, store: ReplicaStore, settings: Settings, bead: int) -> float:
        """Energy of this engine's atoms in one bead."""

    @abstractmethod
    def forces(self, store: ReplicaStore, settings: Settings,
               bead: int) -> Tuple[float, np.ndarray]:
        """Energy and (n_atoms, 3) forces of one bead."""

    def optimize(self, store: ReplicaStore, settings: Settings, bead: int) -> float:
        """
        Relax this engine's atoms with its native optimizer; returns the energy.

        Library API for relaxing a region on its own before a coupled run;
        the calculations of a configuration file use the aggregator optimizers.
        """
        raise NotImplementedError(f"{self.name} has no native optimizer")

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"

class ASEEngine(Engine):
    """
    Engine backed by an ASE calculator.

    A separate calculator is created for each bead so beads can be evaluated
    concurrently.
    """

    def __init__(self, factory: Callable[[], object], regions: Sequence[Region] = ALL_REGIONS,
                 name: str = "ase"):
        super().__init__(regions)
        self.factory = factory
        self.name = name
        self._calculators: Dict[int, object] = {}
        self._lock = threading.Lock()

    def _atoms(self, store: ReplicaStore, bead: int):
        indices = self.atom_indices(store)
        atoms = store_to_atoms(store, bead, indices)
        with self._lock:
            if bead not in self._calculators:
                self._calculators[bead] = self.factory()
            atoms.calc = self._calculators[bead]
        return atoms, indices

    def energy(self, store, settings, bead):
        atoms, _ = self._atoms(store, bead)
        return float(atoms.get_potential_energy())

    def forces(self, store, settings, bead):
        atoms, indices = self._atoms(store, bead)
        forces = np.zeros((store.n_atoms, 3))
        forces[indices] = atoms.get_forces()
        return float(atoms.get_potential_energy()), forces

    def optimize(self, store, settings, bead):
        from ase.constraints import FixAtoms
        from ase.optimize import BFGS

        atoms, indices = self._atoms(store, bead)
        frozen = [n for n, i in enumerate(indices) if store.atoms[i].frozen]
        if frozen:
            atoms.set_constraint(FixAtoms(indices=frozen))
        opt = BFGS(atoms, logfile=None)
        tol = settings.qm_opt_tol if self.regions == QM_REGIONS else settings.mm_opt_tol
        opt.run(fmax=20 * tol, steps=settings.max_opt_steps)

        coords = store.positions(bead)
        coords[indices] = atoms.get_positions()
        store.set_positions(bead, coords)
        return float(atoms.get_potential_energy())

class ChargeEngine(Engine):
    """Point-charge Coulomb electrostatics with analytic forces."""

    name = "charges"

    def _charges(self, store, bead):
        indices = self.atom_indices(store)
        q = np.array([store.atoms[i].multipole(bead).q for i in indices])
        pos = np.array([store.atoms[i].position(bead) for i in indices]).reshape(-1, 3)
        return indices, q, pos

    def energy(self, store, settings, bead):
        return self.forces(store, settings, bead)[0]

    def forces(self, store, settings, bead):
        indices, q, pos = self._charges(store, bead)
        forces = np.zeros((store.n_atoms, 3))
        if len(indices) < 2:
            return 0.0, forces

        rij = pos[:, None, :] - pos[None, :, :]
        dist = np.linalg.norm(rij, axis=-1)
        np.fill_diagonal(dist, np.inf)
        qq = np.outer(q, q)
        energy = 0.5 * C2EV * np.sum(qq / dist)
        forces[indices] = C2EV * np.sum((qq / dist**3)[:, :, None] * rij, axis=1)
        return float(energy), forces

class EmbeddingEngine(Engine):
    """
    Coulomb coupling between QM-region charges and the MM background.

    The background comes from :func:`embedding_charges`; with polarizable
    multipoles every grid charge pushes back on the atom that owns it.
    """

    name = "embedding"

    def __init__(self, electrostatics: Electrostatics = Electrostatics.CHARGES):
        super().__init__(QM_REGIONS)
        self.electrostatics = electrostatics

    def energy(self, store, settings, bead):
        return self.forces(store, settings, bead)[0]

    def forces(self, store, settings, bead):
        forces = np.zeros((store.n_atoms, 3))
        qm = self.atom_indices(store)
        background, owners = embedding_charges(store, bead, self.electrostatics)
        if not qm or len(background) == 0:
            return 0.0, forces

        q_qm = np.array([store.atoms[i].multipole(bead).q for i in qm])
        pos_qm = np.array([store.atoms[i].position(bead) for i in qm]).reshape(-1, 3)
        rij = pos_qm[:, None, :] - background[None, :, :3]
        dist = np.linalg.norm(rij, axis=-1)
        if np.any(dist == 0.0):
            raise GeometryError("QM atom coincides with a background charge", bead=bead)
        qq = np.outer(q_qm, background[:, 3])
        energy = C2EV * np.sum(qq / dist)
        pair = C2EV * (qq / dist**3)[:, :, None] * rij
        forces[qm] = np.sum(pair, axis=1)
        np.add.at(forces, owners, -np.sum(pair, axis=0))
        return float(energy), forces

class PotentialEngine(Engine):
    """
    Engine wrapping plain Python functions of the (n_atoms, 3) positions.

    Forces default to central finite differences of the energy.
    """

    name = "potential"

    def __init__(self, energy_fn: Callable[[np.ndarray], float],
                 forces_fn: Optional[Callable[[np.ndarray], np.ndarray]] = None,
                 regions: Sequence[Region] = ALL_REGIONS, delta: float = 1e-4):
        super().__init__(regions)
        self.energy_fn = energy_fn
        self.forces_fn = forces_fn
        self.delta = delta

    def energy(self, store, settings, bead):
        return float(self.energy_fn(store.positions(bead)))

    def forces(self, store, settings, bead):
        coords = store.positions(bead)
        energy = float(self.energy_fn(coords))
        if self.forces_fn is not None:
            return energy, np.asarray(self.forces_fn(coords), dtype=float).reshape(coords.shape)

        forces = np.zeros_like(coords)
        for i in self.atom_indices(store):
            for a in range(3):
                shifted = coords.copy()
                shifted[i, a] += self.delta
                e_plus = self.energy_fn(shifted)
                shifted[i, a] -= 2 * self.delta
                e_minus = self.energy_fn(shifted)
                forces[i, a] = -(e_plus - e_minus) / (2 * self.delta)
        return energy, forces

def make_engine(kind: Union[QMEngineKind, MMEngineKind], calc_kwargs: Optional[dict] = None,
                regions: Optional[Sequence[Region]] = None) -> Optional[Engine]:
    """
    Build the engine for a QM or MM variant.

    Args:
        kind: Engine variant; NONE gives None
        calc_kwargs: Calculator options
        regions: Atoms the engine sees; defaults to the QM region for QM
            engines and every atom for MM engines

    Returns:
        ASEEngine or None
    """
    if kind in (QMEngineKind.NONE, MMEngineKind.NONE):
        return None
    if kind == MMEngineKind.TINKER:
        raise ValueError("TINKER has no ASE calculator; pass a custom Engine instance")
    calc_kwargs = dict(calc_kwargs or {})
    # Fail early if the calculator is missing
    make_calculator(kind.value, **calc_kwargs)
    if regions is None:
        regions = QM_REGIONS if isinstance(kind, QMEngineKind) else ALL_REGIONS
    return ASEEngine(lambda: make_calculator(kind.value, **calc_kwargs),
                     regions=regions, name=kind.value)
