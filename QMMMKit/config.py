"""
Configuration management for QMMMKit package.
"""

from dataclasses import dataclass
from pydantic import ValidationError
from typing import Dict, Any, List, Optional
import yaml
import os

from .errors import ConfigError
from .models.datatypes import (
    Calculation, Electrostatics, Ensemble, MMEngineKind, Potential, QMEngineKind, Settings
)

REPLICA_PATH_RUNS = (Calculation.NEB, Calculation.FBNEB)

@dataclass
class QMMMConfig:
    """Central configuration class for QMMMKit runs."""

    # System files and regions
    xyz: str = "system.xyz"
    connectivity: Optional[str] = None
    bead_structures: Optional[str] = None
    end_xyz: Optional[str] = None
    qm_atoms: List[int] = None
    pseudo_bonds: List[int] = None
    boundary_atoms: List[int] = None
    frozen_atoms: List[int] = None
    electrons: List[Dict[str, Any]] = None

    # Engines
    qm_engine: str = "none"
    mm_engine: str = "none"
    qm_calc_kwargs: Dict[str, Any] = None
    mm_calc_kwargs: Dict[str, Any] = None

    # Simulation keywords passed to Settings
    simulation: Dict[str, Any] = None

    # Output
    workdir: str = "qmmm_run"
    logfile: Optional[str] = "qmmmkit.log"
    trajectory: Optional[str] = "trajectory.xyz"

    def __post_init__(self):
        """Set default values for mutable fields."""
        for name in ("qm_atoms", "pseudo_bonds", "boundary_atoms", "frozen_atoms", "electrons"):
            if getattr(self, name) is None:
                setattr(self, name, [])
        if self.qm_calc_kwargs is None:
            self.qm_calc_kwargs = {}
        if self.mm_calc_kwargs is None:
            self.mm_calc_kwargs = {}
        if self.simulation is None:
            self.simulation = {}

    @classmethod
    def from_yaml(cls, config_file: str) -> 'QMMMConfig':
        """Load configuration from YAML file."""
        with open(config_file, 'r') as f:
            data = yaml.safe_load(f) or {}

        config_args = {}

        if 'system' in data:
            system = data['system']
            config_args.update({
                'xyz': system.get('xyz', 'system.xyz'),
                'connectivity': system.get('connectivity'),
                'bead_structures': system.get('bead_structures'),
                'end_xyz': system.get('end_xyz'),
                'electrons': system.get('electrons'),
            })

        if 'regions' in data:
            regions = data['regions']
            config_args.update({
                'qm_atoms': regions.get('qm'),
                'pseudo_bonds': regions.get('pseudo_bonds'),
                'boundary_atoms': regions.get('boundary'),
                'frozen_atoms': regions.get('frozen'),
            })

        if 'engines' in data:
            engines = data['engines']
            config_args.update({
                'qm_engine': engines.get('qm', 'none'),
                'mm_engine': engines.get('mm', 'none'),
                'qm_calc_kwargs': engines.get('qm_calc_kwargs'),
                'mm_calc_kwargs': engines.get('mm_calc_kwargs'),
            })

        config_args['simulation'] = data.get('simulation')

        if 'output' in data:
            output = data['output']
            config_args.update({
                'workdir': output.get('workdir', 'qmmm_run'),
                'logfile': output.get('logfile', 'qmmmkit.log'),
                'trajectory': output.get('trajectory', 'trajectory.xyz'),
            })

        return cls(**config_args)

    def to_yaml(self, config_file: str):
        """Save configuration to YAML file."""
        data = {
            'system': {
                'xyz': self.xyz,
                'connectivity': self.connectivity,
                'bead_structures': self.bead_structures,
                'end_xyz': self.end_xyz,
                'electrons': self.electrons,
            },
            'regions': {
                'qm': self.qm_atoms,
                'pseudo_bonds': self.pseudo_bonds,
                'boundary': self.boundary_atoms,
                'frozen': self.frozen_atoms,
            },
            'engines': {
                'qm': self.qm_engine,
                'mm': self.mm_engine,
                'qm_calc_kwargs': self.qm_calc_kwargs,
                'mm_calc_kwargs': self.mm_calc_kwargs,
            },
            'simulation': self.simulation,
            'output': {
                'workdir': self.workdir,
                'logfile': self.logfile,
                'trajectory': self.trajectory,
            },
        }

        with open(config_file, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, indent=2)

    def to_settings(self) -> Settings:
        """Build the immutable Settings of the run."""
        values = dict(self.simulation)
        values.setdefault('qm_engine', self.qm_engine)
        values.setdefault('mm_engine', self.mm_engine)
        try:
            return Settings(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid simulation settings: {e}") from e

    def _n_atoms(self) -> Optional[int]:
        try:
            with open(self.xyz, 'r', encoding='utf-8-sig') as f:
                for line in f:
                    if line.strip():
                        return int(line.strip())
        except (OSError, ValueError):
            return None
        return None

    def validate(self) -> Settings:
        """
        Check the configuration for missing files and conflicting features.

        Returns:
            The validated Settings

        Raises:
            ConfigError: listing every problem found
        """
        errors = []

        if not os.path.exists(self.xyz):
            errors.append(f"Geometry file not found: {self.xyz}")
        for label, path in (("Connectivity", self.connectivity),
                            ("Bead structure", self.bead_structures),
                            ("End geometry", self.end_xyz)):
            if path and not os.path.exists(path):
                errors.append(f"{label} file not found: {path}")

        settings = self.to_settings()

        # Engines and potentials
        has_electrons = bool(self.electrons)
        if settings.potential in (Potential.QM, Potential.QMMM):
            if settings.qm_engine == QMEngineKind.NONE and not has_electrons:
                errors.append("A QM potential needs a QM engine or eFF electrons")
            if not self.qm_atoms and settings.potential == Potential.QMMM:
                errors.append("QM/MM runs need at least one QM atom")
        if settings.potential == Potential.QM and settings.mm_engine != MMEngineKind.NONE:
            errors.append("Pure QM runs cannot use an MM engine")
        if settings.potential == Potential.QMMM and settings.mm_engine == MMEngineKind.NONE:
            errors.append("QM/MM runs need an MM engine")
        if settings.potential == Potential.MM and self.qm_atoms:
            errors.append("Pure MM runs cannot have QM atoms")
        if settings.mm_engine == MMEngineKind.TINKER:
            errors.append("TINKER has no ASE calculator; use LAMMPS or a custom engine")
        if settings.electrostatics == Electrostatics.AMOEBA and settings.potential != Potential.QMMM:
            errors.append("Polarizable multipoles are only used in QM/MM runs")
        if (self.pseudo_bonds or self.boundary_atoms) and settings.potential != Potential.QMMM:
            errors.append("Pseudo-bond and boundary atoms require a QM/MM potential")

        # Calculation type
        if settings.calculation in REPLICA_PATH_RUNS:
            if settings.n_beads < 3:
                errors.append("Reaction paths need at least three beads")
            if not self.end_xyz and not self.bead_structures:
                errors.append("Reaction paths need an end geometry or bead structures")
        elif settings.frozen_ends:
            errors.append("Frozen path ends only apply to reaction path runs")
        if settings.calculation == Calculation.PIMC and settings.temperature <= 0:
            errors.append("PIMC needs a positive temperature")
        if settings.ensemble == Ensemble.NPT:
            if settings.calculation != Calculation.PIMC:
                errors.append("NPT is only available for Monte Carlo runs")
            if not settings.pbc:
                errors.append("NPT requires periodic boundaries")
        if any(p < 0 for p in settings.moves.model_dump().values()):
            errors.append("Move probabilities must be non-negative")

        # Region counts
        n_atoms = self._n_atoms()
        if n_atoms is not None:
            for label, indices in (("QM", self.qm_atoms), ("pseudo-bond", self.pseudo_bonds),
                                   ("boundary", self.boundary_atoms), ("frozen", self.frozen_atoms)):
                bad = [i for i in indices if i < 0 or i >= n_atoms]
                if bad:
                    errors.append(f"{label} atom indices out of range: {bad}")
        tagged = list(self.qm_atoms) + list(self.pseudo_bonds) + list(self.boundary_atoms)
        if len(tagged) != len(set(tagged)):
            errors.append("An atom is assigned to more than one region")

        if errors:
            raise ConfigError("Configuration validation failed:\n" +
                              "\n".join(f"  - {error}" for error in errors))

        return settings

def load_config(config_file: str) -> QMMMConfig:
    """Load and validate QMMMKit configuration."""
    config = QMMMConfig.from_yaml(config_file)
    config.validate()
    return config
