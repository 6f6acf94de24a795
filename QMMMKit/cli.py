"""
Command-line interface for QMMMKit package.
"""

import typer
import yaml
from pathlib import Path
from typing import Optional

from .config import QMMMConfig
from .errors import ConfigError, GeometryError, ReplicaError
from .orchestrators.pipeline import run as run_pipeline

app = typer.Typer(help="QMMMKit: QM/MM optimization, reaction paths and path-integral sampling")

@app.command()
def init(
    config: str = typer.Option("config.yml", help="Configuration file to create"),
    force: bool = typer.Option(False, help="Overwrite existing config")
):
    """Initialize a new QMMMKit configuration file."""

    config_path = Path(config)

    if config_path.exists() and not force:
        typer.echo(f"Configuration file {config} already exists. Use --force to overwrite.")
        raise typer.Exit(1)

    example_config = {
        'system': {
            'xyz': 'system.xyz',
            'connectivity': 'connect.inp',
            'bead_structures': None,
            'end_xyz': None,
            'electrons': [],
        },
        'regions': {
            'qm': [0, 1, 2],
            'pseudo_bonds': [],
            'boundary': [],
            'frozen': [],
        },
        'engines': {
            'qm': 'psi4',
            'mm': 'lammps',
            'qm_calc_kwargs': {'method': 'b3lyp', 'basis': '6-31g*'},
            'mm_calc_kwargs': {},
        },
        'simulation': {
            'calculation': 'steep',
            'potential': 'qmmm',
            'electrostatics': 'charges',
            'n_beads': 1,
            'temperature': 298.15,
            'qm_opt_tol': 5e-3,
            'max_opt_steps': 200,
            'step_scale': 0.5,
            'max_step': 0.1,
            'n_cpus_qm': 1,
        },
        'output': {
            'workdir': 'qmmm_run',
            'logfile': 'qmmmkit.log',
            'trajectory': 'trajectory.xyz',
        },
    }

    with open(config_path, 'w') as f:
        yaml.dump(example_config, f, default_flow_style=False, indent=2, sort_keys=False)

    typer.echo(f"Created configuration file: {config}")
    typer.echo("Edit this file with your system details and run 'qmmmkit run' to start.")

@app.command()
def run(
    config: str = typer.Option("config.yml", help="Configuration file"),
    workdir: Optional[str] = typer.Option(None, help="Override working directory")
):
    """Run the calculation described by a configuration file."""

    config_path = Path(config)

    if not config_path.exists():
        typer.echo(f"Configuration file {config} not found.")
        typer.echo("Run 'qmmmkit init' to create an example configuration.")
        raise typer.Exit(1)

    typer.echo(f"Loading configuration from {config}")
    run_config = QMMMConfig.from_yaml(str(config_path))
    if workdir:
        run_config.workdir = workdir

    try:
        summary = run_pipeline(run_config)
    except ConfigError as e:
        typer.echo(str(e))
        raise typer.Exit(1)
    except (GeometryError, ReplicaError) as e:
        typer.echo(f"Error running QMMMKit: {e}")
        raise typer.Exit(1)

    typer.echo(f"\n{summary.calculation.value} finished: E = {summary.energy:.6f} eV")
    typer.echo(f"Results saved to {run_config.workdir}")

if __name__ == "__main__":
    app()
