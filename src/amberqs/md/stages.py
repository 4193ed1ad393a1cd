"""Descriptors for the fixed prepare -> minimize -> heat -> equilibrate -> produce chain."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .inputs import CONTROL_FILES, COORDINATES, LEAP_SCRIPT, TOPOLOGY


@dataclass(frozen=True)
class Stage:
    """One external invocation in the chain.

    ``required_outputs`` must exist and be non-empty after the process exits
    for the stage to count as done. ``report_file`` is what the operator is
    pointed at on failure.
    """

    key: str
    title: str
    control_file: str
    required_outputs: Tuple[str, ...]
    report_file: str
    log_file: str

    def command(self, engine: str) -> List[str]:
        raise NotImplementedError


@dataclass(frozen=True)
class LeapStage(Stage):
    """System preparation with tleap."""

    program: str = "tleap"

    def command(self, engine: str) -> List[str]:
        return [self.program, "-f", self.control_file]


@dataclass(frozen=True)
class EngineStage(Stage):
    """A pmemd/sander run reading the previous stage's restart file."""

    prefix: str = ""
    coordinates: str = ""
    restart: str = ""
    trajectory: Optional[str] = None
    reference: Optional[str] = None

    def command(self, engine: str) -> List[str]:
        cmd = [
            engine, "-O",
            "-i", self.control_file,
            "-o", f"{self.prefix}.out",
            "-p", TOPOLOGY,
            "-c", self.coordinates,
            "-r", self.restart,
        ]
        if self.trajectory:
            cmd += ["-x", self.trajectory]
        if self.reference:
            cmd += ["-ref", self.reference]
        return cmd


def _engine_stage(
    key: str,
    title: str,
    prefix: str,
    coordinates: str,
    trajectory: bool = False,
    reference: Optional[str] = None,
) -> EngineStage:
    restart = f"{prefix}.rst7"
    return EngineStage(
        key=key,
        title=title,
        control_file=CONTROL_FILES[key],
        required_outputs=(restart,),
        report_file=f"{prefix}.out",
        log_file=f"{prefix}.log",
        prefix=prefix,
        coordinates=coordinates,
        restart=restart,
        trajectory=f"{prefix}.nc" if trajectory else None,
        reference=reference,
    )


PREP = LeapStage(
    key="prep",
    title="System preparation",
    control_file=LEAP_SCRIPT,
    required_outputs=(TOPOLOGY, COORDINATES),
    report_file="tleap.log",
    log_file="tleap.log",
)

MIN1 = _engine_stage("min1", "Minimization 1", "min", COORDINATES, reference=COORDINATES)
MIN2 = _engine_stage("min2", "Minimization 2", "min2", MIN1.restart)
HEAT = _engine_stage("heat", "Heating", "heat", MIN2.restart, trajectory=True, reference=MIN2.restart)
EQUIL = _engine_stage("equil", "Equilibration", "equil", HEAT.restart, trajectory=True, reference=HEAT.restart)
PROD = _engine_stage("prod", "Production", "prod", EQUIL.restart, trajectory=True)

ENGINE_STAGES: Tuple[EngineStage, ...] = (MIN1, MIN2, HEAT, EQUIL, PROD)
CHAIN: Tuple[Stage, ...] = (PREP,) + ENGINE_STAGES


def describe(stage: Stage, sim_time_ns: str, temperature: str) -> str:
    """Human-readable step label used by the step log and the dry-run plan."""
    labels = {
        "prep": "Preparing system with tleap",
        "min1": "Minimization with restraints",
        "min2": "Minimization without restraints",
        "heat": f"Heating (0 -> {temperature} K)",
        "equil": "Equilibration (NPT, 500 ps)",
        "prod": f"Production (NPT, {sim_time_ns} ns)",
    }
    return labels[stage.key]
