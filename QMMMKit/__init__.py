"""
QMMMKit: QM/MM simulation driver

A Python package that couples external QM and MM engines through a shared
atom/electron model and runs geometry optimization, climbing-image NEB,
path-integral Monte Carlo and molecular dynamics on top of them.
"""

__version__ = "0.1.0"
__author__ = "QMMMKit Development Team"

from .models.datatypes import Geometry, Region, Settings, MoveProbabilities
from .models.records import Atom, Electron, Multipole, ReducedMultipole
from .errors import GeometryError, FrameError, ReplicaError, ConfigError

from .geom.store import ReplicaStore, build_store
from .calc.aggregator import EnergyAggregator
from .calc.engines import Engine, PotentialEngine
from .config import QMMMConfig, load_config
from .orchestrators.pipeline import run

__all__ = [
    "Geometry", "Region", "Settings", "MoveProbabilities",
    "Atom", "Electron", "Multipole", "ReducedMultipole",
    "GeometryError", "FrameError", "ReplicaError", "ConfigError",
    "ReplicaStore", "build_store", "EnergyAggregator", "Engine", "PotentialEngine",
    "QMMMConfig", "load_config", "run",
]
