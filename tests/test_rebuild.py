"""CUDA rebuild: prerequisite checks, cleaning, CMake hints and verification."""

from pathlib import Path
from typing import List, Optional

import pytest

from amberqs.build.rebuild import (
    CLEAN_DIRS,
    CLEAN_FILES,
    CudaRebuilder,
    RebuildLayout,
    build_environment,
    cmake_arguments,
    cuda_arch_flag,
)
from amberqs.errors import ExternalToolError, PrerequisiteError
from amberqs.utils import toolchain


class BuildRunner:
    """Records cmake/make invocations; ``fail`` is the first two argv items to fail on."""

    def __init__(self, layout: RebuildLayout, fail: Optional[tuple] = None, install_binaries=("pmemd.cuda", "pmemd.cuda.MPI")):
        self.layout = layout
        self.fail = fail
        self.install_binaries = install_binaries
        self.calls: List[List[str]] = []
        self.cwds: List[Path] = []
        self.echoed: List[bool] = []

    def __call__(self, cmd, cwd=None, env=None, log_path=None, echo_output=False) -> int:
        cmd = list(cmd)
        self.calls.append(cmd)
        self.cwds.append(Path(cwd))
        self.echoed.append(echo_output)
        Path(log_path).write_text("log\n")
        if self.fail and tuple(cmd[:2]) == self.fail:
            return 2
        if cmd[:2] == ["make", "install"]:
            bin_dir = self.layout.install_prefix / "bin"
            bin_dir.mkdir(parents=True, exist_ok=True)
            for name in self.install_binaries:
                (bin_dir / name).write_text("")
        return 0


def _which(*available: str):
    def which(name, path=None):
        return f"/usr/local/cuda/bin/{name}" if name in available else None
    return which


@pytest.fixture
def layout(tmp_path: Path) -> RebuildLayout:
    layout = RebuildLayout(tmp_path)
    layout.build_dir.mkdir(parents=True)
    return layout


@pytest.fixture(autouse=True)
def _no_probes(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(toolchain, "cuda_version", lambda nvcc: "12.4")


def test_layout_paths(tmp_path: Path) -> None:
    layout = RebuildLayout.from_environment({"AMBERQS_ROOT": str(tmp_path)})
    assert layout.source_dir == tmp_path.resolve() / "repo" / "ambertools25_src"
    assert layout.build_dir == layout.source_dir / "build"
    assert layout.install_prefix == tmp_path.resolve() / "env"


def test_missing_nvcc_is_prerequisite_error(layout: RebuildLayout) -> None:
    marker = layout.build_dir / "CMakeCache.txt"
    marker.write_text("cache")
    runner = BuildRunner(layout)

    with pytest.raises(PrerequisiteError, match="nvcc not found"):
        CudaRebuilder(layout, runner=runner, which=_which()).run()

    assert marker.exists()
    assert runner.calls == []
    assert not (layout.build_dir / "rebuild_cuda.log").exists()


def test_missing_build_tree_is_prerequisite_error(tmp_path: Path) -> None:
    layout = RebuildLayout(tmp_path)
    with pytest.raises(PrerequisiteError, match="Build directory not found"):
        CudaRebuilder(layout, runner=BuildRunner(layout), which=_which("nvcc")).run()


def test_clean_removes_only_generated_state(layout: RebuildLayout) -> None:
    for name in CLEAN_FILES:
        (layout.build_dir / name).write_text("x")
    for name in CLEAN_DIRS:
        (layout.build_dir / name / "nested").mkdir(parents=True)
    keep = layout.build_dir / "keep.txt"
    keep.write_text("keep")

    removed = CudaRebuilder(layout, runner=BuildRunner(layout), which=_which("nvcc")).clean()

    assert len(removed) == len(CLEAN_FILES) + len(CLEAN_DIRS)
    assert sorted(p.name for p in layout.build_dir.iterdir()) == ["keep.txt"]


def test_successful_rebuild(layout: RebuildLayout, capsys: pytest.CaptureFixture) -> None:
    runner = BuildRunner(layout)

    result = CudaRebuilder(layout, runner=runner, which=_which("nvcc"), jobs=3).run()

    assert [c[0] for c in runner.calls] == ["cmake", "make", "make"]
    assert runner.calls[1] == ["make", "-j3"]
    assert runner.calls[2] == ["make", "install"]
    assert set(runner.cwds) == {layout.build_dir}
    assert result.cuda_version == "12.4"
    assert result.cuda_root == Path("/usr/local/cuda")
    assert result.installed == ["pmemd.cuda", "pmemd.cuda.MPI"]
    assert result.missing == []
    assert (layout.build_dir / "cmake_cuda_output.log").exists()
    assert runner.echoed == [True, True, True]
    assert "CUDA 12.4" in (layout.build_dir / "rebuild_cuda.log").read_text()
    assert "Existing installation not found" in capsys.readouterr().out


def test_missing_cuda_binaries_only_warn(layout: RebuildLayout, capsys: pytest.CaptureFixture) -> None:
    runner = BuildRunner(layout, install_binaries=("pmemd.cuda",))

    result = CudaRebuilder(layout, runner=runner, which=_which("nvcc")).run()

    assert result.installed == ["pmemd.cuda"]
    assert result.missing == ["pmemd.cuda.MPI"]
    assert "[WARNING] pmemd.cuda.MPI not found" in capsys.readouterr().out


@pytest.mark.parametrize("fail, message, calls", [
    (("cmake", ".."), "CMake configuration failed", 1),
    (("make", "-j4"), "Build failed", 2),
    (("make", "install"), "Installation failed", 3),
])
def test_step_failures_abort(layout: RebuildLayout, fail, message: str, calls: int) -> None:
    runner = BuildRunner(layout, fail=fail)

    with pytest.raises(ExternalToolError, match=message) as excinfo:
        CudaRebuilder(layout, runner=runner, which=_which("nvcc"), jobs=4).run()

    assert len(runner.calls) == calls
    assert excinfo.value.returncode == 2


def test_cmake_arguments_carry_library_hints(tmp_path: Path) -> None:
    prefix = tmp_path / "env"
    args = cmake_arguments(prefix, Path("/usr/local/cuda"), cuda_arch_flag("8.0"))

    assert args[:2] == ["cmake", ".."]
    for expected in (
        "-DCUDA=ON",
        "-DMPI=ON",
        "-DCOMPILER=MANUAL",
        "-DCUDA_TOOLKIT_ROOT_DIR=/usr/local/cuda",
        "-DCUDA_NVCC_FLAGS=-gencode;arch=compute_80,code=sm_80",
        f"-DARPACK_LIBRARY={prefix}/lib/libarpack.so",
        f"-DNetCDF_LIBRARY={prefix}/lib/libnetcdf.so",
        f"-DNetCDF_LIBRARY_F90={prefix}/lib/libnetcdff.so",
        f"-DMPI_Fortran_COMPILER={prefix}/bin/mpifort",
        "-DFORCE_EXTERNAL_LIBS=kmmd;netcdf;netcdf-fortran;arpack;blas;lapack",
        "-DBUILD_RISM=OFF",
    ):
        assert expected in args


def test_no_arch_flag_without_gpu_query() -> None:
    assert cuda_arch_flag(None) is None
    assert cuda_arch_flag("8.6") == "-DCUDA_NVCC_FLAGS=-gencode;arch=compute_86,code=sm_86"
    assert not any(a.startswith("-DCUDA_NVCC_FLAGS") for a in cmake_arguments(Path("/p"), Path("/c")))


def test_build_environment_prefers_prefix() -> None:
    env = build_environment(Path("/opt/env"), {"PATH": "/usr/bin", "LDFLAGS": "-O2"})

    assert env["PATH"] == "/opt/env/bin:/usr/bin"
    assert env["LD_LIBRARY_PATH"] == "/opt/env/lib"
    assert env["OPAL_PREFIX"] == "/opt/env"
    assert env["NetCDF_ROOT"] == env["HDF5_ROOT"] == "/opt/env"
    assert env["PKG_CONFIG_PATH"] == "/opt/env/lib/pkgconfig"
    assert env["LDFLAGS"] == "-L/opt/env/lib -Wl,-rpath,/opt/env/lib -O2"
