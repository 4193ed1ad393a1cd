"""amberqs command line interface.

Two independent commands: ``amber-quickstart`` runs the single-protein MD
workflow and ``amber-rebuild-cuda`` rebuilds AmberTools with CUDA. Both are
also available as subcommands of the ``amberqs`` group.
"""
import sys

import click
import yaml

from .. import __version__
from ..build.rebuild import CudaRebuilder, RebuildLayout
from ..config.options import load_config
from ..errors import AmberQSError, ConfigError
from ..logging_config import configure_logging
from ..md.workflow import MDWorkflow, prepare_environment
from ..utils.reporting import echo, log_error

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


class _ExitOneMixin:
    """Report usage errors (unknown flag, bad number) with exit status 1."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


class ExitOneCommand(_ExitOneMixin, click.Command):
    pass


class ExitOneGroup(_ExitOneMixin, click.Group):
    pass


@click.command("run", cls=ExitOneCommand, context_settings=CONTEXT_SETTINGS)
@click.argument("structure", required=False, type=click.Path(dir_okay=False))
@click.option("-n", "--name", "job_name", help="Job name (default: from PDB filename)")
@click.option("-t", "--time", "sim_time_ns", type=float, help="Production simulation time in ns (default: 10)")
@click.option("-T", "--temp", "temperature", help="Temperature in Kelvin (default: 300)")
@click.option("-b", "--box", "box_buffer", type=float, help="Box buffer size in Angstrom (default: 12)")
@click.option("-s", "--salt", "salt_conc", type=float, help="Salt concentration in M (default: 0.15)")
@click.option("-f", "--forcefield", help="Force field: ff14SB, ff19SB (default: ff19SB)")
@click.option("-w", "--water", "water_model", help="Water model: tip3p, opc, tip4pew (default: opc)")
@click.option("-c", "--cpu", is_flag=True, help="Force CPU execution (no GPU)")
@click.option("-d", "--dry-run", is_flag=True, help="Generate files but don't run simulations")
@click.option("-o", "--outdir", "output_dir", type=click.Path(file_okay=False), help="Output directory (default: ./md_<name>)")
@click.option("-C", "--config", "config_file", type=click.Path(dir_okay=False), help="YAML file with default run options")
def quick_start(structure, job_name, sim_time_ns, temperature, box_buffer, salt_conc,
                forcefield, water_model, cpu, dry_run, output_dir, config_file):
    """Run a single protein MD simulation with Amber.

    \b
    Steps:
      1. System preparation (tleap)
      2. Energy minimization (with, then without restraints)
      3. Heating
      4. Equilibration (NPT)
      5. Production MD (NPT)

    \b
    Examples:
      amber-quickstart protein.pdb
      amber-quickstart protein.pdb -n my_sim -t 100 -T 310
      amber-quickstart protein.pdb --forcefield ff14SB --water tip3p
    """
    configure_logging()
    try:
        config = load_config(
            config_file,
            structure=structure,
            job_name=job_name,
            sim_time_ns=sim_time_ns,
            temperature=temperature,
            box_buffer=box_buffer,
            salt_conc=salt_conc,
            forcefield=forcefield,
            water_model=water_model,
            use_gpu=False if cpu else None,
            dry_run=True if dry_run else None,
            output_dir=output_dir,
        )
        engine, env = prepare_environment(config)
        configure_logging(config.output_dir / "amberqs.log")
        MDWorkflow(config, engine, env).run()
    except ConfigError as exc:
        log_error(str(exc))
        if structure is None and config_file is None:
            echo()
            echo("Usage: amber-quickstart <protein.pdb> [options]")
            echo("Use -h or --help for more information")
        sys.exit(1)
    except (AmberQSError, OSError, yaml.YAMLError) as exc:
        log_error(str(exc))
        sys.exit(1)


@click.command("rebuild-cuda", cls=ExitOneCommand, context_settings=CONTEXT_SETTINGS)
def rebuild_with_cuda():
    """Rebuild AmberTools + PMEMD with CUDA/GPU support.

    \b
    Prerequisites:
      - Existing AmberTools build tree (run quick_setup.sh first)
      - CUDA toolkit installed (nvcc available)
      - NVIDIA GPU with compute capability 6.0+ (Pascal or newer)

    The installation root is taken from AMBERQS_ROOT (default: current directory).
    """
    layout = RebuildLayout.from_environment()
    configure_logging()
    try:
        CudaRebuilder(layout).run()
    except (AmberQSError, OSError) as exc:
        log_error(str(exc))
        sys.exit(1)


@click.group(cls=ExitOneGroup, context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__)
def cli():
    """amberqs: Amber MD quick-start workflow and CUDA rebuild tools"""
    pass


cli.add_command(quick_start)
cli.add_command(rebuild_with_cuda)

if __name__ == "__main__":
    cli()
