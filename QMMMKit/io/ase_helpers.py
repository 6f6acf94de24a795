"""
ASE integration helpers and calculator factory.
"""

import numpy as np
from ase import Atoms
from importlib import import_module
from typing import Optional, Sequence

from ..geom.store import ReplicaStore

# Calculator imports are deferred into make_calculator() so the package loads
# without optional engine dependencies.
CALCULATORS = {
    "gaussian": ("ase.calculators.gaussian", "Gaussian"),
    "psi4": ("ase.calculators.psi4", "Psi4"),
    "nwchem": ("ase.calculators.nwchem", "NWChem"),
    "lammps": ("ase.calculators.lammpsrun", "LAMMPS"),
    "emt": ("ase.calculators.emt", "EMT"),
    "morse": ("ase.calculators.morse", "MorsePotential"),
    "lennardjones": ("ase.calculators.lj", "LennardJones"),
    "lj": ("ase.calculators.lj", "LennardJones"),
}

def store_to_atoms(store: ReplicaStore, bead: int,
                   indices: Optional[Sequence[int]] = None) -> Atoms:
    """ASE Atoms for a subset of the store's atoms in one bead."""
    if indices is None:
        indices = range(store.n_atoms)
    indices = list(indices)
    symbols = [store.atoms[i].qm_type for i in indices]
    positions = np.array([store.atoms[i].position(bead) for i in indices]).reshape(-1, 3)
    atoms = Atoms(symbols=symbols, positions=positions,
                  masses=[store.atoms[i].mass for i in indices])
    if store.box is not None and np.all(store.box < 1000.0):
        atoms.set_cell(store.box)
    return atoms

def make_calculator(name: str, **calc_kwargs):
    """
    Return an ASE calculator instance.

    Args:
        name: Engine name (gaussian, psi4, nwchem, lammps, emt, morse, lj)
        **calc_kwargs: Passed to the calculator constructor

    Raises:
        ValueError: if no ASE calculator is known or importable for name
    """
    key = (name or "").lower()
    if key not in CALCULATORS:
        raise ValueError(f"No ASE calculator registered for engine {name!r}")

    mod_name, class_name = CALCULATORS[key]
    try:
        cls = getattr(import_module(mod_name), class_name)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"ASE calculator {mod_name}.{class_name} is unavailable: {e}") from e
    return cls(**calc_kwargs)
