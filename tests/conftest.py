"""Shared pytest configuration, fixtures, and helpers."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

REPO = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO / "src"))

from amberqs.config.options import RunConfig  # noqa: E402
from amberqs.utils.toolchain import EngineChoice  # noqa: E402

PDB_TEXT = """\
ATOM      1  N   ALA A   1      11.104   6.134  -6.504  1.00  0.00           N
ATOM      2  CA  ALA A   1      11.639   6.071  -5.147  1.00  0.00           C
ATOM      3  C   ALA A   1      13.149   5.916  -5.181  1.00  0.00           C
END
"""


def _arg(cmd: List[str], flag: str) -> Optional[str]:
    if flag in cmd:
        return cmd[cmd.index(flag) + 1]
    return None


class FakeRunner:
    """Stands in for ``run_command``: records calls and fakes each stage's outputs.

    ``fail`` names a control file whose run exits with ``returncode``;
    ``skip_outputs`` names control files whose run exits 0 without writing
    anything.
    """

    def __init__(self, fail: Optional[str] = None, returncode: int = 1, skip_outputs: Iterable[str] = ()):
        self.fail = fail
        self.returncode = returncode
        self.skip_outputs = set(skip_outputs)
        self.calls: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []

    def __call__(self, cmd, cwd=None, env=None, log_path=None) -> int:
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        self.envs.append(env)
        workdir = Path(cwd)
        if log_path is not None:
            Path(log_path).write_text("fake log\n")

        control = _arg(cmd, "-f") or _arg(cmd, "-i")
        if control == self.fail:
            return self.returncode
        if control in self.skip_outputs:
            return 0

        if Path(cmd[0]).name == "tleap":
            (workdir / "system.prmtop").write_text("%VERSION\n")
            (workdir / "system.inpcrd").write_text("coords\n")
            (workdir / "system.pdb").write_text(PDB_TEXT)
        else:
            (workdir / _arg(cmd, "-r")).write_text("restart\n")
            (workdir / _arg(cmd, "-o")).write_text("output\n")
            if "-x" in cmd:
                (workdir / _arg(cmd, "-x")).write_text("trajectory\n")
        return 0

    @property
    def control_files(self) -> List[str]:
        return [_arg(c, "-f") or _arg(c, "-i") for c in self.calls]


@pytest.fixture
def pdb_file(tmp_path: Path) -> Path:
    path = tmp_path / "protein.pdb"
    path.write_text(PDB_TEXT)
    return path


@pytest.fixture
def make_config(pdb_file: Path, tmp_path: Path):
    """Factory for a valid RunConfig writing into ``tmp_path/out``."""

    def _make(**overrides) -> RunConfig:
        values = {"structure": pdb_file, "output_dir": tmp_path / "out"}
        values.update(overrides)
        return RunConfig(**values)

    return _make


@pytest.fixture
def gpu_engine() -> EngineChoice:
    return EngineChoice("pmemd.cuda", "pmemd.cuda", "gpu")


@pytest.fixture
def amber_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A fake Amber install: env/amber.sh plus a ``pmemd`` executable on its PATH."""

    env_dir = tmp_path / "amber_env"
    bin_dir = env_dir / "bin"
    bin_dir.mkdir(parents=True)
    (env_dir / "amber.sh").write_text("export AMBERHOME=%s\n" % env_dir)
    pmemd = bin_dir / "pmemd"
    pmemd.write_text("#!/bin/sh\nexit 0\n")
    os.chmod(pmemd, 0o755)

    monkeypatch.setenv("AMBERQS_ENV", str(env_dir))
    monkeypatch.setattr(
        "amberqs.utils.toolchain.load_amber_environment",
        lambda script: {"PATH": str(bin_dir), "AMBERHOME": str(env_dir)},
    )
    return env_dir


@pytest.fixture
def runner_factory():
    """The FakeRunner class, for tests that need to configure or subclass it."""
    return FakeRunner


@pytest.fixture(autouse=True)
def _reset_logging():
    """Close file handlers the CLI attaches to the root logger."""
    yield
    from amberqs.logging_config import configure_logging

    configure_logging()
