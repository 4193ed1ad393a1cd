"""Run configuration for the MD workflow driver."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..errors import ConfigError


@dataclass(frozen=True)
class ForceField:
    name: str
    leaprc: str


@dataclass(frozen=True)
class WaterModel:
    name: str
    leaprc: str
    box: str


FORCEFIELDS: Dict[str, ForceField] = {
    "ff14sb": ForceField("ff14SB", "leaprc.protein.ff14SB"),
    "ff19sb": ForceField("ff19SB", "leaprc.protein.ff19SB"),
}

WATER_MODELS: Dict[str, WaterModel] = {
    "tip3p": WaterModel("tip3p", "leaprc.water.tip3p", "TIP3PBOX"),
    "opc": WaterModel("opc", "leaprc.water.opc", "OPCBOX"),
    "tip4pew": WaterModel("tip4pew", "leaprc.water.tip4pew", "TIP4PEWBOX"),
}

DEFAULTS: Dict[str, Any] = {
    "sim_time_ns": 10.0,
    "temperature": 300,
    "box_buffer": 12.0,
    "salt_conc": 0.15,
    "forcefield": "ff19SB",
    "water_model": "opc",
    "use_gpu": True,
    "dry_run": False,
}


def resolve_forcefield(name: str) -> ForceField:
    """Map a user force-field name onto its leaprc source (case-insensitive)."""
    try:
        return FORCEFIELDS[str(name).lower()]
    except KeyError:
        supported = ", ".join(ff.name for ff in FORCEFIELDS.values())
        raise ConfigError(f"Unknown force field: {name} (supported: {supported})")


def resolve_water_model(name: str) -> WaterModel:
    """Map a user water-model name onto its leaprc source and box."""
    try:
        return WATER_MODELS[str(name).lower()]
    except KeyError:
        supported = ", ".join(wm.name for wm in WATER_MODELS.values())
        raise ConfigError(f"Unknown water model: {name} (supported: {supported})")


def _number(key: str, value: Any, *, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {key}: {value!r} (expected a number)")
    if not math.isfinite(number):
        raise ConfigError(f"Invalid value for {key}: {value!r} (must be finite)")
    if number < 0 or (number == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise ConfigError(f"Invalid value for {key}: {value!r} (must be {bound})")
    return number


_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def _flag(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ConfigError(f"Invalid value for {key}: {value!r} (expected true or false)")


@dataclass
class RunConfig:
    """Normalized options for one workflow run.

    Construction validates everything the driver needs before touching the
    filesystem: the structure must exist, names must belong to the supported
    sets and numbers must be in range. Paths are made absolute here so later
    directory changes do not affect them.
    """

    structure: Path
    job_name: Optional[str] = None
    sim_time_ns: float = DEFAULTS["sim_time_ns"]
    temperature: float = DEFAULTS["temperature"]
    box_buffer: float = DEFAULTS["box_buffer"]
    salt_conc: float = DEFAULTS["salt_conc"]
    forcefield: str = DEFAULTS["forcefield"]
    water_model: str = DEFAULTS["water_model"]
    use_gpu: bool = DEFAULTS["use_gpu"]
    dry_run: bool = DEFAULTS["dry_run"]
    output_dir: Optional[Path] = None
    ff: ForceField = field(init=False, repr=False)
    water: WaterModel = field(init=False, repr=False)
    # temperature as the user wrote it; substituted into the control files
    temperature_text: str = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.structure is None or str(self.structure) == "":
            raise ConfigError("No PDB file specified")
        structure = Path(self.structure).expanduser()
        if not structure.is_file():
            raise ConfigError(f"PDB file not found: {structure}")
        self.structure = structure.resolve()

        self.ff = resolve_forcefield(self.forcefield)
        self.water = resolve_water_model(self.water_model)
        self.forcefield = self.ff.name
        self.water_model = self.water.name

        self.sim_time_ns = _number("sim_time_ns", self.sim_time_ns)
        raw_temperature = self.temperature
        self.temperature = _number("temperature", raw_temperature)
        self.temperature_text = str(raw_temperature).strip()
        self.box_buffer = _number("box_buffer", self.box_buffer)
        self.salt_conc = _number("salt_conc", self.salt_conc, allow_zero=True)
        self.use_gpu = _flag("use_gpu", self.use_gpu)
        self.dry_run = _flag("dry_run", self.dry_run)

        if not self.job_name:
            self.job_name = self.structure.stem
        if self.output_dir is None or str(self.output_dir) == "":
            self.output_dir = Path(f"md_{self.job_name}")
        self.output_dir = Path(self.output_dir).expanduser().resolve()

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("ff", None)
        data.pop("water", None)
        data.pop("temperature_text", None)
        data["structure"] = str(self.structure)
        data["output_dir"] = str(self.output_dir)
        return data


FIELDS = (
    "structure",
    "job_name",
    "sim_time_ns",
    "temperature",
    "box_buffer",
    "salt_conc",
    "forcefield",
    "water_model",
    "use_gpu",
    "dry_run",
    "output_dir",
)


def _coerce_mapping(config: Any, *, source: str) -> Mapping[str, Any]:
    if isinstance(config, Mapping):
        return config
    raise ConfigError(f"Expected mapping for {source}, got {type(config).__name__}")


def load_config(source: Optional[Any] = None, **overrides: Any) -> RunConfig:
    """Load a run config from a YAML file, a mapping, or keyword overrides.

    Overrides whose value is ``None`` are ignored so unset CLI options do not
    mask values from the file.
    """

    data: Dict[str, Any] = {}

    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Run config not found: {path}")
        loaded = yaml.safe_load(path.read_text()) or {}
        data = dict(_coerce_mapping(loaded, source=str(path)))
    elif source is not None:
        data = dict(_coerce_mapping(source, source="config"))

    data.update({k: v for k, v in overrides.items() if v is not None})

    unknown = sorted(set(data) - set(FIELDS))
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
    if not data.get("structure"):
        raise ConfigError("No PDB file specified")

    return RunConfig(**{key: data[key] for key in FIELDS if key in data})
