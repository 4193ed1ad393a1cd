"""Toolchain utilities: Amber environment activation, engine selection, CUDA probing."""
from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from ..errors import PrerequisiteError
from .process import capture_output
from .reporting import log_info, log_warning

logger = logging.getLogger(__name__)

AMBER_ENV_VAR = "AMBERQS_ENV"
AMBER_SCRIPT = "amber.sh"

GPU_ENGINE = "pmemd.cuda"
CPU_ENGINE = "pmemd"
FALLBACK_ENGINE = "sander"

Which = Callable[..., Optional[str]]


@dataclass(frozen=True)
class EngineChoice:
    """Selected simulation executable."""

    name: str
    path: str
    kind: str  # "gpu", "cpu" or "fallback"


def _need(bin_name: str, which: Which = shutil.which, path: Optional[str] = None) -> Optional[str]:
    """Check if an external binary is available on PATH, return path or None."""
    return which(bin_name, path=path) if path is not None else which(bin_name)


def amber_env_candidates(environ: Optional[Mapping[str, str]] = None) -> List[Path]:
    """Directories searched for ``amber.sh``, most specific first."""
    environ = os.environ if environ is None else environ
    candidates: List[Path] = []
    for key in (AMBER_ENV_VAR, "AMBERHOME"):
        value = environ.get(key)
        if value:
            candidates.append(Path(value).expanduser())
    candidates.append(Path("env"))
    return candidates


def find_amber_env(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return the absolute path of the Amber activation script."""
    for directory in amber_env_candidates(environ):
        script = directory / AMBER_SCRIPT
        if script.is_file():
            return script.resolve()
    raise PrerequisiteError("Amber environment not found. Run quick_setup.sh first.")


def load_amber_environment(script: Path) -> Dict[str, str]:
    """Source ``amber.sh`` in bash and return the resulting environment."""
    cmd = ["bash", "-c", f'source "{script}" >/dev/null 2>&1 && env -0']
    try:
        process = subprocess.run(cmd, capture_output=True, check=True)
    except FileNotFoundError:
        raise PrerequisiteError("bash is required to source the Amber environment")
    except subprocess.CalledProcessError as e:
        raise PrerequisiteError(
            f"Sourcing {script} failed ({e.returncode}): {e.stderr.decode(errors='replace').strip()}"
        )

    environ: Dict[str, str] = {}
    for entry in process.stdout.decode(errors="replace").split("\0"):
        if "=" not in entry:
            continue
        key, value = entry.split("=", 1)
        environ[key] = value
    logger.info("Loaded Amber environment from %s (AMBERHOME=%s)", script, environ.get("AMBERHOME"))
    return environ


def select_engine(
    use_gpu: bool = True,
    which: Which = shutil.which,
    path: Optional[str] = None,
) -> EngineChoice:
    """Pick pmemd.cuda, then pmemd, then sander.

    ``which`` and ``path`` are passed through to the lookup so callers can
    search the sourced Amber PATH or stub availability entirely.
    """
    if use_gpu:
        found = _need(GPU_ENGINE, which, path)
        if found:
            log_info(f"Using GPU-accelerated {GPU_ENGINE}")
            return EngineChoice(GPU_ENGINE, found, "gpu")

    found = _need(CPU_ENGINE, which, path)
    if found:
        log_info(f"Using CPU {CPU_ENGINE}")
        return EngineChoice(CPU_ENGINE, found, "cpu")

    log_warning(f"Using {FALLBACK_ENGINE} (slower than {CPU_ENGINE})")
    return EngineChoice(FALLBACK_ENGINE, _need(FALLBACK_ENGINE, which, path) or FALLBACK_ENGINE, "fallback")


# ---------- CUDA ----------

def cuda_version(nvcc: str) -> Optional[str]:
    """Parse ``release X.Y`` from ``nvcc --version``."""
    match = re.search(r"release (\d+\.\d+)", capture_output([nvcc, "--version"]))
    return match.group(1) if match else None


def cuda_root(nvcc: str) -> Path:
    """CUDA toolkit root: the directory above ``bin/nvcc``."""
    return Path(nvcc).parent.parent


def list_gpus(which: Which = shutil.which) -> List[str]:
    """Return ``index, name, memory`` lines from nvidia-smi (empty without it)."""
    smi = _need("nvidia-smi", which)
    if not smi:
        return []
    out = capture_output([smi, "--query-gpu=index,name,memory.total", "--format=csv,noheader"])
    return [line.strip() for line in out.splitlines() if line.strip()]


def gpu_compute_capability(which: Which = shutil.which) -> Optional[str]:
    """Compute capability of the first GPU, e.g. ``"8.0"``."""
    smi = _need("nvidia-smi", which)
    if not smi:
        return None
    out = capture_output([smi, "--query-gpu=compute_cap", "--format=csv,noheader"])
    for line in out.splitlines():
        if re.fullmatch(r"\d+\.\d+", line.strip()):
            return line.strip()
    return None


def cpu_count(default: int = 4) -> int:
    return os.cpu_count() or default
