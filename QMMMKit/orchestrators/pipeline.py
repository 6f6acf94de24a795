"""
Main pipeline orchestration: build the system, pick engines and run one calculation.
"""

import os
import json
import time
import numpy as np
from pydantic import BaseModel
from typing import Any, Dict, Optional

from ..calc.aggregator import EnergyAggregator
from ..calc.eff import DEFAULT_PARAMS
from ..calc.engines import QM_REGIONS, EmbeddingEngine, make_engine
from ..calc.path import climbing_image_neb, linear_interpolate
from ..config import QMMMConfig
from ..dynamics.verlet import maxwell_boltzmann_velocities, velocity_verlet
from ..geom.store import ReplicaStore
from ..io.geometry import (
    XYZTrajectory, assign_regions, atoms_from_geometry, load_bead_structures,
    load_connectivity, load_xyz, save_xyz, store_geometry
)
from ..models.datatypes import Calculation, Potential, Settings
from ..models.records import Electron, ElectronBead
from ..optimize.dfp import dfp
from ..optimize.steepest import steepest_descent
from ..sampling.monte_carlo import run_fbneb, run_pimc
from ..utils.logconfig import get_logger, setup_logging
from ..utils.units import ELECTRON_MASS_AMU
from .runners import WorkerPool, thread_policy

logger = get_logger(__name__)

REPLICA_MODES = (Calculation.PIMC, Calculation.FBNEB)

class RunSummary(BaseModel):
    """Outcome of one pipeline run."""
    calculation: Calculation
    energy: float                   # eV, final ensemble energy
    result: Dict[str, Any] = {}
    qm_time: float = 0.0            # s
    mm_time: float = 0.0            # s
    wall_time: float = 0.0          # s

def build_electrons(entries, rad_init: float = DEFAULT_PARAMS.rad_init):
    """eFF electrons from configuration entries (position, radius, spin, typ)."""
    electrons = []
    for entry in entries:
        bead = ElectronBead(position=entry["position"], radius=float(entry.get("radius", rad_init)))
        electrons.append(Electron(typ=str(entry.get("typ", "e")), beads=[bead],
                                  mass=float(entry.get("mass", ELECTRON_MASS_AMU)),
                                  spin=int(entry.get("spin", 1))))
    return electrons

def build_system(config: QMMMConfig, settings: Settings) -> ReplicaStore:
    """
    Load the geometry, tag regions and create the bead replicas.

    Reaction paths are filled by linear interpolation to the end geometry
    unless explicit bead structures are given; PIMC beads are spread around
    the input structure.
    """
    geometry = load_xyz(config.xyz)
    if config.connectivity:
        atoms = load_connectivity(config.connectivity, geometry)
    else:
        atoms = atoms_from_geometry(geometry)

    store = ReplicaStore(atoms, build_electrons(config.electrons), box=settings.box)
    if settings.potential == Potential.QM:
        assign_regions(store, qm=range(store.n_atoms), frozen=config.frozen_atoms)
    else:
        assign_regions(store, qm=config.qm_atoms, pseudo_bonds=config.pseudo_bonds,
                       boundary=config.boundary_atoms, frozen=config.frozen_atoms)
    store.check_connectivity()
    logger.info("Atoms per region: " + ", ".join(
        f"{region.value} {count}" for region, count in store.region_counts().items()))

    if settings.n_beads > 1:
        store.replicate(settings.n_beads)
    if config.bead_structures:
        load_bead_structures(config.bead_structures, store)
    elif settings.calculation in (Calculation.NEB, Calculation.FBNEB):
        end = np.array(load_xyz(config.end_xyz).coords)
        linear_interpolate(store, store.positions(0), end)
    elif settings.calculation == Calculation.PIMC and settings.n_beads > 1:
        store.displace_beads(np.random.default_rng(settings.random_seed))
    return store

def build_aggregator(config: QMMMConfig, settings: Settings,
                     pool: Optional[WorkerPool] = None) -> EnergyAggregator:
    """
    Engines for the requested potential behind one aggregator.

    QM/MM runs subtract the MM engine's own view of the QM region so the
    QM-QM interactions are only counted by the QM engine.
    """
    qm = mm = coupling = mm_correction = None
    if settings.potential in (Potential.QM, Potential.QMMM):
        qm = make_engine(settings.qm_engine, config.qm_calc_kwargs)
    if settings.potential in (Potential.MM, Potential.QMMM):
        mm = make_engine(settings.mm_engine, config.mm_calc_kwargs)
    if settings.potential == Potential.QMMM and qm is not None:
        coupling = EmbeddingEngine(settings.electrostatics)
        if mm is not None:
            mm_correction = make_engine(settings.mm_engine, config.mm_calc_kwargs, QM_REGIONS)
    return EnergyAggregator(settings, qm=qm, mm=mm, pool=pool, coupling=coupling,
                            mm_correction=mm_correction)

def run_calculation(store: ReplicaStore, aggregator: EnergyAggregator, settings: Settings,
                    sink=None) -> Dict[str, Any]:
    """Dispatch on the calculation type; returns a JSON-friendly result."""
    calc = settings.calculation
    rng = np.random.default_rng(settings.random_seed)

    if calc == Calculation.SINGLE_POINT:
        energies = aggregator.bead_energies(store)
        return {"bead_energies": [float(e) for e in energies]}

    if calc in (Calculation.STEEPEST, Calculation.DFP):
        optimizer = steepest_descent if calc == Calculation.STEEPEST else dfp
        results = [optimizer(store, aggregator, settings, bead=k) for k in range(store.n_beads)]
        return {"beads": [r.model_dump(mode="json") for r in results]}

    if calc == Calculation.NEB:
        return climbing_image_neb(store, aggregator, settings).model_dump(mode="json")

    if calc == Calculation.PIMC:
        return run_pimc(store, aggregator, settings, rng, sink).model_dump(mode="json")

    if calc == Calculation.FBNEB:
        return run_fbneb(store, aggregator, settings, rng, sink).model_dump(mode="json")

    if calc == Calculation.MD:
        velocities = maxwell_boltzmann_velocities(store, settings.temperature, rng)
        if settings.n_eq:
            velocity_verlet(store, aggregator, settings, velocities, production=False)
        return velocity_verlet(store, aggregator, settings, velocities, production=True,
                               sink=sink).model_dump(mode="json")

    raise ValueError(f"Unsupported calculation: {calc}")

def run(config: QMMMConfig) -> RunSummary:
    """
    Run the calculation described by a configuration.

    Args:
        config: Run configuration (validated here)

    Returns:
        RunSummary; the final geometry and a JSON summary are written to
        the working directory
    """
    settings = config.validate()
    os.makedirs(config.workdir, exist_ok=True)
    setup_logging(os.path.join(config.workdir, config.logfile) if config.logfile else None)

    logger.info(f"{'='*60}")
    logger.info(f"QMMMKit: {settings.calculation.value} calculation, {settings.n_beads} bead(s)")
    logger.info(f"{'='*60}")
    start = time.perf_counter()

    store = build_system(config, settings)
    replica_threads, engine_threads = thread_policy(
        settings.n_beads, settings.calculation in REPLICA_MODES, settings.n_cpus_qm,
        settings.n_threads if settings.n_threads > 1 else None)
    logger.info(f"Threads: {replica_threads} replica, {engine_threads} per engine call")

    sink = XYZTrajectory(os.path.join(config.workdir, config.trajectory)) if config.trajectory else None

    with WorkerPool(replica_threads) as pool:
        aggregator = build_aggregator(config, settings, pool)
        result = run_calculation(store, aggregator, settings, sink)
        energy = aggregator.ensemble_energy(store)

    for k in range(store.n_beads):
        save_xyz(store_geometry(store, k, f"Final bead {k}"),
                 os.path.join(config.workdir, f"final_bead_{k}.xyz"))

    summary = RunSummary(calculation=settings.calculation, energy=energy, result=result,
                         qm_time=aggregator.qm_time, mm_time=aggregator.mm_time,
                         wall_time=time.perf_counter() - start)
    summary_path = os.path.join(config.workdir, "summary.json")
    with open(summary_path, 'w') as f:
        json.dump(summary.model_dump(mode="json"), f, indent=2)

    logger.info(f"Final energy: {energy:.6f} eV")
    logger.info(f"QM time: {summary.qm_time:.2f} s, MM time: {summary.mm_time:.2f} s, "
                f"total: {summary.wall_time:.2f} s")
    logger.info(f"Summary saved to {summary_path}")
    return summary
