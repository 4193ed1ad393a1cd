"""Thin wrapper around ``subprocess`` used for every external Amber/CMake call."""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, TextIO

from ..errors import ExternalToolError
from .reporting import echo

logger = logging.getLogger(__name__)

# Signature shared by run_command and the stubs used in tests.
Runner = Callable[..., int]


def run_command(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    log_path: Optional[Path] = None,
    echo_output: bool = False,
) -> int:
    """Run ``cmd`` to completion and return its exit code.

    stdout and stderr are merged into ``log_path`` when given (the equivalent
    of ``cmd > log 2>&1``), otherwise they are captured and logged at debug
    level. With ``echo_output`` each line is also printed as it arrives, like
    piping through ``tee``. Only a missing executable raises; a non-zero exit
    is the caller's decision.
    """
    cmd = [str(c) for c in cmd]
    logger.info("Running: %s", " ".join(cmd))
    cwd_arg = str(cwd) if cwd else None
    env_arg = dict(env) if env is not None else None
    try:
        if log_path is not None:
            log_path = Path(log_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("w") as fh:
                if echo_output:
                    returncode = _tee(cmd, cwd_arg, env_arg, fh)
                else:
                    returncode = subprocess.run(
                        cmd,
                        cwd=cwd_arg,
                        env=env_arg,
                        stdout=fh,
                        stderr=subprocess.STDOUT,
                        text=True,
                    ).returncode
        else:
            process = subprocess.run(
                cmd,
                cwd=cwd_arg,
                env=env_arg,
                text=True,
                capture_output=True,
            )
            returncode = process.returncode
            logger.debug("--- stdout ---\n%s\n--- stderr ---\n%s", process.stdout, process.stderr)
    except FileNotFoundError:
        raise ExternalToolError(
            f"Command not found: {cmd[0]}. Ensure it's installed and in PATH.",
            cmd=cmd,
            log_path=log_path,
        )
    logger.info("Return code %d: %s", returncode, cmd[0])
    return returncode


def _tee(cmd: List[str], cwd: Optional[str], env: Optional[Dict[str, str]], fh: TextIO) -> int:
    with subprocess.Popen(
        cmd,
        cwd=cwd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1,
    ) as process:
        for line in process.stdout:
            fh.write(line)
            echo(line.rstrip("\n"))
    return process.returncode


def capture_output(cmd: Sequence[str], env: Optional[Mapping[str, str]] = None) -> str:
    """Run a short probe command and return its stdout ('' on failure)."""
    try:
        process = subprocess.run(
            [str(c) for c in cmd],
            env=dict(env) if env is not None else None,
            text=True,
            capture_output=True,
        )
    except (FileNotFoundError, PermissionError) as exc:
        logger.debug("Probe %s failed: %s", cmd[0], exc)
        return ""
    if process.returncode != 0:
        logger.debug("Probe %s exited %d: %s", cmd[0], process.returncode, process.stderr)
        return ""
    return process.stdout
