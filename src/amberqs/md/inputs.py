"""tleap script and pmemd/sander control-file templates.

All values that are not substituted from the run configuration are fixed by
the protocol: 2 fs steps with SHAKE, Langevin thermostat, 10 Å cutoff.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict

from ..config.options import RunConfig

logger = logging.getLogger(__name__)

TIMESTEP_PS = 0.002
STEPS_PER_NS = 500_000  # 1e6 fs / 2 fs
HEAT_STEPS = 25_000  # 50 ps
EQUIL_STEPS = 250_000  # 500 ps

LEAP_SCRIPT = "tleap.in"
TOPOLOGY = "system.prmtop"
COORDINATES = "system.inpcrd"
SYSTEM_PDB = "system.pdb"

CONTROL_FILES = {
    "min1": "min.in",
    "min2": "min2.in",
    "heat": "heat.in",
    "equil": "equil.in",
    "prod": "prod.in",
}


def format_number(value: float) -> str:
    """Shortest text for a number: ``300.0 -> "300"``, ``310.5 -> "310.5"``."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return f"{value:.10g}"


def production_steps(sim_time_ns: float) -> int:
    """Number of 2 fs steps in ``sim_time_ns`` nanoseconds."""
    return int(round(float(sim_time_ns) * STEPS_PER_NS))


LEAP_TEMPLATE = """\
# Load force field
source {ff_source}
source {water_source}

# Load protein
mol = loadpdb {structure}

# Check for problems
check mol

# Solvate with water box
solvatebox mol {water_box} {box_buffer}

# Add ions to neutralize the system
# addIons2 handles both positive and negative systems automatically
# Requested salt concentration: {salt_conc} M (neutralization only)
addIons2 mol Na+ 0
addIons2 mol Cl- 0

# Save topology and coordinates
saveamberparm mol {topology} {coordinates}

# Save PDB for visualization
savepdb mol {system_pdb}

quit
"""

MIN1_TEMPLATE = """\
Minimization
 &cntrl
   imin=1,           ! Minimization
   maxcyc=5000,      ! Max cycles
   ncyc=2500,        ! Steepest descent cycles, then conjugate gradient
   ntb=1,            ! Constant volume PBC
   ntr=1,            ! Restrain heavy atoms
   restraint_wt=10.0,
   restraintmask='!@H=',
   cut=10.0,
   ntpr=100,
 /
"""

MIN2_TEMPLATE = """\
Minimization (no restraints)
 &cntrl
   imin=1,
   maxcyc=5000,
   ncyc=2500,
   ntb=1,
   ntr=0,
   cut=10.0,
   ntpr=100,
 /
"""

HEAT_TEMPLATE = """\
Heating from 0 to {temp} K
 &cntrl
   imin=0,           ! MD
   irest=0,          ! New simulation
   ntx=1,            ! Read coordinates only
   ntb=1,            ! Constant volume PBC
   cut=10.0,
   ntr=1,            ! Restrain protein
   restraint_wt=5.0,
   restraintmask='@CA',
   nstlim={nsteps},
   dt={dt},         ! 2 fs timestep
   ntc=2,            ! SHAKE on hydrogens
   ntf=2,            ! No force calc on H bonds
   tempi=0.0,
   temp0={temp},
   ntt=3,            ! Langevin thermostat
   gamma_ln=2.0,
   ig=-1,            ! Random seed
   ntpr=500,
   ntwx=500,
   ntwr=5000,
   iwrap=1,
   nmropt=1,         ! NMR restraints for temperature ramp
 /
 &wt type='TEMP0', istep1=0, istep2={nsteps}, value1=0.0, value2={temp}, /
 &wt type='END' /
"""

EQUIL_TEMPLATE = """\
Equilibration (NPT)
 &cntrl
   imin=0,
   irest=1,          ! Restart
   ntx=5,            ! Read coordinates and velocities
   ntb=2,            ! Constant pressure PBC
   pres0=1.0,        ! 1 atm
   ntp=1,            ! Isotropic pressure scaling
   taup=2.0,         ! Pressure relaxation time
   cut=10.0,
   ntr=1,            ! Restrain CA atoms
   restraint_wt=2.0,
   restraintmask='@CA',
   nstlim={nsteps},
   dt={dt},
   ntc=2,
   ntf=2,
   temp0={temp},
   ntt=3,
   gamma_ln=2.0,
   ig=-1,
   ntpr=500,
   ntwx=500,
   ntwr=10000,
   iwrap=1,
 /
"""

PROD_TEMPLATE = """\
Production MD (NPT)
 &cntrl
   imin=0,
   irest=1,
   ntx=5,
   ntb=2,
   pres0=1.0,
   ntp=1,
   taup=2.0,
   cut=10.0,
   ntr=0,            ! No restraints
   nstlim={nsteps},
   dt={dt},
   ntc=2,
   ntf=2,
   temp0={temp},
   ntt=3,
   gamma_ln=2.0,
   ig=-1,
   ntpr=5000,        ! Energy output every 10 ps
   ntwx=5000,        ! Trajectory every 10 ps
   ntwr=50000,       ! Restart every 100 ps
   iwrap=1,
   ioutfm=1,         ! NetCDF trajectory format
 /
"""


def render_leap_script(config: RunConfig) -> str:
    return LEAP_TEMPLATE.format(
        ff_source=config.ff.leaprc,
        water_source=config.water.leaprc,
        structure=config.structure,
        water_box=config.water.box,
        box_buffer=format_number(config.box_buffer),
        salt_conc=format_number(config.salt_conc),
        topology=TOPOLOGY,
        coordinates=COORDINATES,
        system_pdb=SYSTEM_PDB,
    )


def render_control_files(config: RunConfig) -> Dict[str, str]:
    """Return ``{stage_key: text}`` for the five engine stages."""
    temp = config.temperature_text
    dt = format_number(TIMESTEP_PS)
    return {
        "min1": MIN1_TEMPLATE,
        "min2": MIN2_TEMPLATE,
        "heat": HEAT_TEMPLATE.format(temp=temp, nsteps=HEAT_STEPS, dt=dt),
        "equil": EQUIL_TEMPLATE.format(temp=temp, nsteps=EQUIL_STEPS, dt=dt),
        "prod": PROD_TEMPLATE.format(temp=temp, nsteps=production_steps(config.sim_time_ns), dt=dt),
    }


def write_leap_script(config: RunConfig, outdir: Path) -> Path:
    path = Path(outdir) / LEAP_SCRIPT
    path.write_text(render_leap_script(config))
    logger.info("Wrote %s", path)
    return path


def write_control_files(config: RunConfig, outdir: Path) -> Dict[str, Path]:
    """Write min.in, min2.in, heat.in, equil.in and prod.in into ``outdir``."""
    outdir = Path(outdir)
    written: Dict[str, Path] = {}
    for key, text in render_control_files(config).items():
        path = outdir / CONTROL_FILES[key]
        path.write_text(text)
        written[key] = path
    logger.info("Wrote control files: %s", ", ".join(p.name for p in written.values()))
    return written
