"""Reconfigure and rebuild AmberTools/PMEMD with CUDA enabled.

The CMake auto-detection is unreliable inside a conda prefix, so every
library and compiler location is passed explicitly.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from ..errors import ExternalToolError, PrerequisiteError
from ..logging_config import configure_logging
from ..utils import toolchain
from ..utils.process import Runner, run_command
from ..utils.reporting import banner, echo, log_info, log_success, log_warning

logger = logging.getLogger(__name__)

ROOT_ENV = "AMBERQS_ROOT"
SOURCE_SUBDIR = Path("repo") / "ambertools25_src"

CLEAN_FILES = (
    "CMakeCache.txt",
    "CMakeFiles",
    "cmake_install.cmake",
    "Makefile",
    "CPackConfig.cmake",
    "CPackSourceConfig.cmake",
)
CLEAN_DIRS = ("AmberTools", "src", "cmake-packaging")

CUDA_BINARIES = ("pmemd.cuda", "pmemd.cuda.MPI")
FORCE_EXTERNAL_LIBS = "kmmd;netcdf;netcdf-fortran;arpack;blas;lapack"

SYSTEM_COMPILERS = {
    "C": "/usr/bin/gcc",
    "CXX": "/usr/bin/g++",
    "Fortran": "/usr/bin/gfortran",
}

CMAKE_LOG = "cmake_cuda_output.log"
BUILD_LOG = "build_cuda_output.log"
INSTALL_LOG = "install_cuda_output.log"
REBUILD_LOG = "rebuild_cuda.log"


@dataclass(frozen=True)
class RebuildLayout:
    root: Path

    @property
    def source_dir(self) -> Path:
        return self.root / SOURCE_SUBDIR

    @property
    def build_dir(self) -> Path:
        return self.source_dir / "build"

    @property
    def install_prefix(self) -> Path:
        return self.root / "env"

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "RebuildLayout":
        environ = os.environ if environ is None else environ
        return cls(Path(environ.get(ROOT_ENV) or Path.cwd()).expanduser().resolve())


@dataclass
class RebuildResult:
    cuda_version: Optional[str]
    cuda_root: Path
    jobs: int
    installed: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


def _prepend(value: str, existing: Optional[str]) -> str:
    return f"{value}:{existing}" if existing else value


def build_environment(prefix: Path, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Environment for CMake/make with the conda prefix searched first."""
    env = dict(os.environ if base is None else base)
    lib = f"{prefix}/lib"
    rpath = f"-L{lib} -Wl,-rpath,{lib}"

    env["OPAL_PREFIX"] = str(prefix)
    env["PATH"] = _prepend(f"{prefix}/bin", env.get("PATH"))
    env["LD_LIBRARY_PATH"] = _prepend(lib, env.get("LD_LIBRARY_PATH"))
    env["LIBRARY_PATH"] = _prepend(lib, env.get("LIBRARY_PATH"))
    env["CPATH"] = _prepend(f"{prefix}/include", env.get("CPATH"))

    env["CMAKE_PREFIX_PATH"] = _prepend(str(prefix), env.get("CMAKE_PREFIX_PATH"))
    env["PKG_CONFIG_PATH"] = _prepend(f"{lib}/pkgconfig", env.get("PKG_CONFIG_PATH"))
    env["NetCDF_ROOT"] = str(prefix)
    env["HDF5_ROOT"] = str(prefix)

    existing = env.get("LDFLAGS")
    env["LDFLAGS"] = f"{rpath} {existing}" if existing else rpath
    return env


def cuda_arch_flag(compute_capability: Optional[str]) -> Optional[str]:
    """``"8.0" -> -DCUDA_NVCC_FLAGS=-gencode;arch=compute_80,code=sm_80``."""
    if not compute_capability:
        return None
    sm = compute_capability.replace(".", "")
    return f"-DCUDA_NVCC_FLAGS=-gencode;arch=compute_{sm},code=sm_{sm}"


def cmake_arguments(prefix: Path, cuda_path: Path, arch_flag: Optional[str] = None) -> List[str]:
    lib = f"{prefix}/lib"
    linker = f"-L{lib} -Wl,-rpath,{lib}"
    args = [
        "cmake", "..",
        f"-DCMAKE_INSTALL_PREFIX={prefix}",
        "-DCOMPILER=MANUAL",
        "-DMPI=ON",
        "-DCUDA=ON",
        f"-DCUDA_TOOLKIT_ROOT_DIR={cuda_path}",
    ]
    if arch_flag:
        args.append(arch_flag)
    args += [
        "-DBUILD_PYTHON=ON",
        "-DDOWNLOAD_MINICONDA=OFF",
        f"-DPYTHON_EXECUTABLE={prefix}/bin/python",
        f"-DCMAKE_C_COMPILER={SYSTEM_COMPILERS['C']}",
        f"-DCMAKE_CXX_COMPILER={SYSTEM_COMPILERS['CXX']}",
        f"-DCMAKE_Fortran_COMPILER={SYSTEM_COMPILERS['Fortran']}",
        f"-DMPI_C_COMPILER={prefix}/bin/mpicc",
        f"-DMPI_CXX_COMPILER={prefix}/bin/mpicxx",
        f"-DMPI_Fortran_COMPILER={prefix}/bin/mpifort",
        f"-DARPACK_LIBRARY={lib}/libarpack.so",
        f"-DNetCDF_LIBRARY={lib}/libnetcdf.so",
        f"-DNetCDF_INCLUDE_DIR={prefix}/include",
        f"-DNetCDF_LIBRARY_F77={lib}/libnetcdff.so",
        f"-DNetCDF_LIBRARY_F90={lib}/libnetcdff.so",
        f"-DCMAKE_EXE_LINKER_FLAGS={linker}",
        f"-DCMAKE_SHARED_LINKER_FLAGS={linker}",
        f"-DFORCE_EXTERNAL_LIBS={FORCE_EXTERNAL_LIBS}",
        "-DBUILD_RISM=OFF",
        "-Wno-dev",
    ]
    return args


class CudaRebuilder:
    """Wipe the previous CMake build and rebuild it with CUDA enabled."""

    def __init__(
        self,
        layout: RebuildLayout,
        runner: Runner = run_command,
        which: Optional[Callable[..., Optional[str]]] = None,
        jobs: Optional[int] = None,
        base_env: Optional[Mapping[str, str]] = None,
        log_file: Optional[str] = REBUILD_LOG,
    ):
        self.layout = layout
        self.runner = runner
        self.which = which or shutil.which
        self.jobs = jobs or toolchain.cpu_count()
        self.base_env = base_env
        self.log_file = log_file

    def run(self) -> RebuildResult:
        banner("Rebuild AmberTools with CUDA/GPU Support")

        nvcc = self.check_cuda()
        version = toolchain.cuda_version(nvcc)
        cuda_path = toolchain.cuda_root(nvcc)
        log_success(f"CUDA {version or 'unknown'} found at {cuda_path}")
        self.report_gpus()

        self.check_build_tree()
        if self.log_file:
            configure_logging(self.layout.build_dir / self.log_file)
            logger.info("CUDA %s at %s, building with %d jobs", version, cuda_path, self.jobs)

        self.clean()

        log_info("Configuring with CUDA support...")
        env = build_environment(self.layout.install_prefix, self.base_env)
        log_info(f"Using MPI from: {self.layout.install_prefix / 'bin'}")
        arch_flag = self.detect_arch()
        self._step(
            cmake_arguments(self.layout.install_prefix, cuda_path, arch_flag),
            env,
            CMAKE_LOG,
            "CMake configuration failed",
        )
        log_success("CMake configuration completed with CUDA")

        echo()
        log_info("Building with CUDA support (this may take a while)...")
        self._step(["make", f"-j{self.jobs}"], env, BUILD_LOG, "Build failed")
        log_success("Build completed")

        echo()
        log_info("Installing...")
        self._step(["make", "install"], env, INSTALL_LOG, "Installation failed")
        log_success("Installation completed")

        result = RebuildResult(cuda_version=version, cuda_root=cuda_path, jobs=self.jobs)
        self.verify(result)
        self.print_summary()
        return result

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------
    def check_cuda(self) -> str:
        log_info("Checking CUDA installation...")
        nvcc = self.which("nvcc")
        if not nvcc:
            echo()
            echo("On Ubuntu/Debian:")
            echo("  sudo apt install nvidia-cuda-toolkit")
            echo()
            echo("Or download from NVIDIA:")
            echo("  https://developer.nvidia.com/cuda-downloads")
            raise PrerequisiteError("nvcc not found. Please install CUDA toolkit first.")
        return nvcc

    def report_gpus(self) -> None:
        gpus = toolchain.list_gpus(self.which)
        if gpus:
            echo()
            log_info("Detected GPUs:")
            for line in gpus:
                echo(f"  GPU {line}")
        echo()

    def check_build_tree(self) -> None:
        if not self.layout.build_dir.is_dir():
            raise PrerequisiteError("Build directory not found. Run quick_setup.sh first.")
        if not (self.layout.install_prefix / "bin" / "sander").is_file():
            log_warning("Existing installation not found. Will do full build.")

    def detect_arch(self) -> Optional[str]:
        capability = toolchain.gpu_compute_capability(self.which)
        flag = cuda_arch_flag(capability)
        if flag:
            log_info(f"Detected compute capability {capability}, using sm_{capability.replace('.', '')}")
        return flag

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def clean(self) -> List[Path]:
        """Delete CMake state and generated subdirectories; returns what was removed."""
        log_info("Cleaning build directory...")
        removed: List[Path] = []
        for name in CLEAN_FILES + CLEAN_DIRS:
            path = self.layout.build_dir / name
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
            else:
                continue
            removed.append(path)
        logger.info("Removed %d build artifacts from %s", len(removed), self.layout.build_dir)
        return removed

    def _step(self, cmd: List[str], env: Mapping[str, str], log_name: str, failure: str) -> None:
        log_path = self.layout.build_dir / log_name
        returncode = self.runner(cmd, cwd=self.layout.build_dir, env=env, log_path=log_path, echo_output=True)
        if returncode != 0:
            raise ExternalToolError(
                f"{failure}. Check {log_name}",
                cmd=cmd,
                returncode=returncode,
                log_path=log_path,
            )

    def verify(self, result: RebuildResult) -> RebuildResult:
        echo()
        log_info("Verifying CUDA-enabled binaries...")
        bin_dir = self.layout.install_prefix / "bin"
        for tool in CUDA_BINARIES:
            path = bin_dir / tool
            if path.is_file():
                log_success(f"{tool} installed: {path}")
                result.installed.append(tool)
            else:
                log_warning(f"{tool} not found")
                result.missing.append(tool)
        return result

    def print_summary(self) -> None:
        banner("CUDA Build Complete!")
        echo("New GPU-accelerated binaries:")
        echo("  - pmemd.cuda      (single GPU)")
        echo("  - pmemd.cuda.MPI  (multi-GPU)")
        echo()
        echo("Usage example:")
        echo("  pmemd.cuda -O -i prod.in -o prod.out -p system.prmtop -c equil.rst7 -r prod.rst7 -x prod.nc")
        echo()
        echo("For multi-GPU (e.g., 2 GPUs):")
        echo("  mpirun -np 2 pmemd.cuda.MPI -O -i prod.in -o prod.out -p system.prmtop -c equil.rst7 -r prod.rst7 -x prod.nc")
        echo()
        echo("Performance notes:")
        echo("  - GPU version is typically 10-100x faster than CPU for large systems")
        echo("  - Best performance with systems > 10,000 atoms")
        echo("  - Use 'CUDA_VISIBLE_DEVICES=0' to select specific GPU")
        echo()
