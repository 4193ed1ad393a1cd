"""Stage sequencer for the single-protein Amber MD workflow."""

from __future__ import annotations

import enum
import json
import logging
import platform
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from ..config.options import RunConfig
from ..errors import ExternalToolError, StageFailedError
from ..utils import toolchain
from ..utils.process import Runner, run_command
from ..utils.reporting import banner, echo, log_error, log_info, log_step, log_success
from ..utils.toolchain import EngineChoice
from .inputs import SYSTEM_PDB, format_number, write_control_files, write_leap_script
from .stages import CHAIN, ENGINE_STAGES, EngineStage, Stage, describe

logger = logging.getLogger(__name__)

MANIFEST = "run_manifest.json"


class SequencerState(enum.Enum):
    PREP = "prep"
    MIN1 = "min1"
    MIN2 = "min2"
    HEAT = "heat"
    EQUIL = "equil"
    PROD = "prod"
    DONE = "done"
    FAILED = "failed"


@dataclass
class WorkflowResult:
    """Outcome of one driver invocation."""

    output_dir: Path
    engine: EngineChoice
    state: SequencerState
    dry_run: bool
    completed_stages: List[str] = field(default_factory=list)
    control_files: Dict[str, Path] = field(default_factory=dict)
    last_restart: Optional[str] = None
    atom_count: Optional[int] = None


def prepare_environment(
    config: RunConfig,
    environ: Optional[Mapping[str, str]] = None,
    which: Callable[..., Optional[str]] = shutil.which,
) -> Tuple[EngineChoice, Dict[str, str]]:
    """Source the Amber environment and pick the simulation engine.

    Raises :class:`~amberqs.errors.PrerequisiteError` before anything is
    written when ``amber.sh`` cannot be found.
    """
    script = toolchain.find_amber_env(environ)
    env = toolchain.load_amber_environment(script)
    engine = toolchain.select_engine(config.use_gpu, which=which, path=env.get("PATH"))
    return engine, env


def count_atoms(pdb_path: Path) -> Optional[int]:
    """Number of lines mentioning ATOM in the tleap PDB (None if unreadable)."""
    try:
        with Path(pdb_path).open("r", errors="ignore") as fh:
            return sum(1 for line in fh if "ATOM" in line)
    except OSError:
        return None


def _has_content(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


class MDWorkflow:
    """Generate inputs and run the fixed six-step chain, stopping at the first failure."""

    def __init__(
        self,
        config: RunConfig,
        engine: EngineChoice,
        env: Optional[Mapping[str, str]] = None,
        runner: Optional[Runner] = None,
        stages: Tuple[Stage, ...] = CHAIN,
    ):
        self.config = config
        self.engine = engine
        self.env = dict(env) if env is not None else None
        self.runner = runner or run_command
        self.stages = stages
        self.output_dir = Path(config.output_dir)
        self.state = SequencerState.PREP
        self.completed: List[str] = []
        self.last_restart: Optional[str] = None
        self.atom_count: Optional[int] = None
        self.control_files: Dict[str, Path] = {}
        self.start_time = time.time()

    def run(self) -> WorkflowResult:
        logger.info("Starting workflow for %s in %s", self.config.structure, self.output_dir)
        self.print_configuration()

        self.output_dir.mkdir(parents=True, exist_ok=True)
        log_step(f"Working directory: {self.output_dir}")

        self.generate_inputs()

        if self.config.dry_run:
            self.report_plan()
            return self._result(SequencerState.DONE)

        try:
            self._run_chain()
        finally:
            self._write_manifest()

        self.print_summary()
        return self._result(self.state)

    # ------------------------------------------------------------------
    # Input generation
    # ------------------------------------------------------------------
    def generate_inputs(self) -> Dict[str, Path]:
        log_step("Creating tleap and simulation input files...")
        write_leap_script(self.config, self.output_dir)
        self.control_files = write_control_files(self.config, self.output_dir)
        log_success("Input files created")
        return self.control_files

    def report_plan(self) -> None:
        temp = self.config.temperature_text
        ns = format_number(self.config.sim_time_ns)
        log_info("[DRY-RUN] Would run tleap")
        log_info("[DRY-RUN] Would run the following simulations:")
        for index, stage in enumerate(ENGINE_STAGES, 1):
            echo(f"  {index}. {describe(stage, ns, temp)}")
        echo()
        log_info(f"Files created in: {self.output_dir}")

    # ------------------------------------------------------------------
    # Sequencer
    # ------------------------------------------------------------------
    def _run_chain(self) -> None:
        temp = self.config.temperature_text
        ns = format_number(self.config.sim_time_ns)
        for index, stage in enumerate(self.stages, 1):
            self.state = SequencerState(stage.key)
            log_step(f"{index}. {describe(stage, ns, temp)}...")
            self._run_stage(stage)
            self.completed.append(stage.key)
            if isinstance(stage, EngineStage):
                self.last_restart = stage.restart
                log_success(f"{stage.title} completed")
            else:
                self.atom_count = count_atoms(self.output_dir / SYSTEM_PDB)
                atoms = self.atom_count if self.atom_count is not None else "unknown"
                log_success(f"System prepared: {atoms} atoms")
        self.state = SequencerState.DONE

    def _run_stage(self, stage: Stage) -> None:
        cmd = stage.command(self.engine.path)
        log_path = self.output_dir / stage.log_file
        logger.info("Stage %s: %s", stage.key, " ".join(cmd))
        try:
            returncode = self.runner(cmd, cwd=self.output_dir, env=self.env, log_path=log_path)
        except ExternalToolError as exc:
            raise self._failure(stage, cmd, None, str(exc)) from exc

        missing = [name for name in stage.required_outputs if not _has_content(self.output_dir / name)]
        if returncode != 0 or missing:
            detail = f"exit code {returncode}"
            if missing:
                detail += f", missing {', '.join(missing)}"
            raise self._failure(stage, cmd, returncode, detail)

    def _failure(self, stage: Stage, cmd: List[str], returncode: Optional[int], detail: str) -> StageFailedError:
        self.state = SequencerState.FAILED
        logger.error("Stage %s failed (%s)", stage.key, detail)
        report = self.output_dir / stage.report_file
        if isinstance(stage, EngineStage):
            message = f"{stage.title} failed! Check {stage.report_file}"
        else:
            message = f"tleap failed. Check {stage.report_file} for details."
            if report.is_file():
                echo(report.read_text(errors="replace"))
        return StageFailedError(
            stage.key,
            stage.title,
            message,
            cmd=cmd,
            returncode=returncode,
            log_path=report,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def print_configuration(self) -> None:
        cfg = self.config
        banner("Amber MD Simulation Setup")
        rows = [
            ("Input PDB:", cfg.structure),
            ("Job name:", cfg.job_name),
            ("Output dir:", cfg.output_dir),
            ("Force field:", cfg.forcefield),
            ("Water model:", cfg.water_model),
            ("Temperature:", f"{cfg.temperature_text} K"),
            ("Box buffer:", f"{format_number(cfg.box_buffer)} Å"),
            ("Salt conc:", f"{format_number(cfg.salt_conc)} M"),
            ("Simulation:", f"{format_number(cfg.sim_time_ns)} ns"),
            ("MD engine:", self.engine.name),
        ]
        for label, value in rows:
            echo(f"{label:<17}{value}")
        echo()

    def print_summary(self) -> None:
        banner("MD Simulation Complete!")
        echo(f"Output files in: {self.output_dir}")
        echo()
        echo("Key files:")
        echo("  - system.prmtop    : Topology file")
        echo("  - system.inpcrd    : Initial coordinates")
        echo("  - prod.rst7        : Final restart file")
        echo("  - prod.nc          : Production trajectory")
        echo("  - prod.out         : Production output")
        echo()
        echo("Analysis commands:")
        echo("  # Load trajectory in cpptraj")
        echo("  cpptraj -p system.prmtop -y prod.nc")
        echo()
        echo("  # Calculate RMSD")
        echo("  cpptraj << EOF")
        echo("  parm system.prmtop")
        echo("  trajin prod.nc")
        echo("  rms first @CA out rmsd.dat")
        echo("  run")
        echo("  EOF")
        echo()
        echo("  # Extract frames as PDB")
        echo("  cpptraj -p system.prmtop -y prod.nc -x frames.pdb")
        echo()

    def _write_manifest(self) -> None:
        manifest = {
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
            "host": platform.node(),
            "params": self.config.as_dict(),
            "engine": {"name": self.engine.name, "path": self.engine.path, "kind": self.engine.kind},
            "state": self.state.value,
            "completed_stages": self.completed,
            "last_restart": self.last_restart,
            "elapsed_sec": round(time.time() - self.start_time, 2),
        }
        manifest_path = self.output_dir / MANIFEST
        try:
            manifest_path.write_text(json.dumps(manifest, indent=2))
            logger.info("Wrote manifest: %s", manifest_path)
        except OSError as e:
            log_error(f"Failed to write manifest {manifest_path}: {e}")

    def _result(self, state: SequencerState) -> WorkflowResult:
        return WorkflowResult(
            output_dir=self.output_dir,
            engine=self.engine,
            state=state,
            dry_run=self.config.dry_run,
            completed_stages=list(self.completed),
            control_files=dict(self.control_files),
            last_restart=self.last_restart,
            atom_count=self.atom_count,
        )
