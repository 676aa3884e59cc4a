"""
Configuration loading and validation for membrane simulations.

Loads YAML config and validates all parameters against physical constraints.
Validation is exhaustive: every group reports all of its violations, and
``Parameters.check`` raises a single ConfigurationError listing them all.

Units are reduced (k_B = 1); lengths, energies and times only need to be
consistent with each other.
"""

import yaml
from dataclasses import dataclass, field, fields
from typing import List, Optional, Literal, Tuple
from pathlib import Path
import numpy as np

from .exceptions import ConfigurationError


def _finite(value) -> bool:
    try:
        return bool(np.isfinite(value))
    except TypeError:
        return False


@dataclass(frozen=True)
class BendingConfig:
    """Helfrich bending with protein-dependent modulus and spontaneous curvature."""
    Kb: float = 0.0
    Kbc: float = 0.0
    H0c: float = 0.0
    relation: Literal["linear", "hill"] = "linear"

    @property
    def enabled(self) -> bool:
        return self.Kb != 0 or self.Kbc != 0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        for name in ("Kb", "Kbc", "H0c"):
            if not _finite(getattr(self, name)):
                errors.append(f"{name} must be finite")
        if self.Kb < 0:
            errors.append("Kb must be non-negative")
        if self.Kb + self.Kbc < 0:
            errors.append("Kb + Kbc must be non-negative (modulus at full coverage)")
        if self.relation not in ("linear", "hill"):
            errors.append(f"Unknown bending relation: {self.relation}")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class TensionConfig:
    """Surface tension, either constant or a harmonic area penalty."""
    Ksg: float = 0.0
    At: float = 0.0
    lambdaSG: float = 0.0
    is_constant_surface_tension: bool = True

    @property
    def enabled(self) -> bool:
        return self.Ksg != 0 or self.lambdaSG != 0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if not _finite(self.Ksg):
            errors.append("Ksg must be finite")
        if self.enabled and not self.is_constant_surface_tension:
            if self.At <= 0:
                errors.append("At must be positive for area-penalty tension")
            if self.Ksg < 0:
                errors.append("Ksg must be non-negative for area-penalty tension")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class OsmoticConfig:
    """
    Osmotic pressure.

    Modes:
        is_preferred_volume: harmonic penalty around the target volume Vt.
        is_constant_osmotic_pressure: constant pressure Kv.
        otherwise: van 't Hoff pressure Kv * (n / V - cam).
    """
    Kv: float = 0.0
    Vt: float = 0.0
    cam: float = 0.0
    n: float = 1.0
    lambdaV: float = 0.0
    is_preferred_volume: bool = True
    is_constant_osmotic_pressure: bool = False

    @property
    def enabled(self) -> bool:
        return self.Kv != 0 or self.lambdaV != 0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if not _finite(self.Kv):
            errors.append("Kv must be finite")
        if not self.enabled:
            return len(errors) == 0, errors
        if self.is_preferred_volume and self.is_constant_osmotic_pressure:
            errors.append("is_preferred_volume and is_constant_osmotic_pressure are exclusive")
        if self.is_preferred_volume:
            if self.Vt <= 0:
                errors.append("Vt must be positive when osmotic strength is set")
            if self.Kv < 0:
                errors.append("Kv must be non-negative in preferred-volume mode")
        elif not self.is_constant_osmotic_pressure:
            if self.cam <= 0:
                errors.append("cam must be positive for van 't Hoff pressure")
            if self.n <= 0:
                errors.append("n must be positive for van 't Hoff pressure")
            if self.Kv < 0:
                errors.append("Kv must be non-negative for van 't Hoff pressure")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class AdsorptionConfig:
    """Protein adsorption (adhesion) energy per unit area and coverage."""
    epsilon: float = 0.0

    @property
    def enabled(self) -> bool:
        return self.epsilon != 0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if not _finite(self.epsilon):
            errors.append("epsilon must be finite")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class AggregationConfig:
    """Protein-protein interaction coefficient."""
    chi: float = 0.0

    @property
    def enabled(self) -> bool:
        return self.chi != 0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if not _finite(self.chi):
            errors.append("chi must be finite")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class DirichletConfig:
    """Line tension of protein domains (Dirichlet energy of the density)."""
    eta: float = 0.0

    @property
    def enabled(self) -> bool:
        return self.eta != 0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.eta < 0:
            errors.append("eta must be non-negative")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class ProteinConfig:
    """Protein density dynamics."""
    mobility: float = 1.0
    entropy_weight: float = 0.0
    initial_density: float = 0.5

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.mobility <= 0:
            errors.append("mobility (diffusivity) must be positive when protein variation is on")
        if self.entropy_weight < 0:
            errors.append("entropy_weight must be non-negative")
        if not (0.0 < self.initial_density < 1.0):
            errors.append("initial_density must lie in (0, 1)")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class DPDConfig:
    """Dissipative particle dynamics thermostat."""
    gamma: float = 0.0
    temperature: float = 0.0
    seed: int = 42

    @property
    def enabled(self) -> bool:
        return self.gamma != 0 or self.temperature != 0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.gamma < 0:
            errors.append("gamma (damping) must be non-negative")
        if self.temperature < 0:
            errors.append("temperature must be non-negative")
        if self.temperature > 0 and self.gamma <= 0:
            errors.append("temperature > 0 requires gamma > 0")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class ExternalConfig:
    """Anchored external force decaying in time."""
    Kf: float = 0.0
    anchor: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    direction: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    std_dev: float = 0.02
    decay_time: float = 500.0

    @property
    def enabled(self) -> bool:
        return self.Kf != 0

    @property
    def direction_unit(self) -> np.ndarray:
        d = np.asarray(self.direction, dtype=np.float64)
        return d / np.linalg.norm(d)

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if not self.enabled:
            return True, errors
        if len(self.anchor) != 3:
            errors.append("anchor must have 3 components")
        if len(self.direction) != 3:
            errors.append("direction must have 3 components")
        elif np.linalg.norm(self.direction) < 1e-12:
            errors.append("direction must be non-zero")
        if self.std_dev <= 0:
            errors.append("std_dev must be positive")
        if self.decay_time <= 0:
            errors.append("decay_time must be positive")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class RegularizationConfig:
    """Mesh regularization against the reference edge lengths and face areas."""
    Kse: float = 0.0
    Ksl: float = 0.0

    @property
    def enabled(self) -> bool:
        return self.Kse != 0 or self.Ksl != 0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.Kse < 0:
            errors.append("Kse must be non-negative")
        if self.Ksl < 0:
            errors.append("Ksl must be non-negative")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class VariationConfig:
    """Which state fields evolve."""
    is_shape_variation: bool = True
    is_protein_variation: bool = False

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if not (self.is_shape_variation or self.is_protein_variation):
            errors.append("at least one of shape or protein variation must be on")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class BoundaryConfig:
    """Boundary conditions for open meshes."""
    shape_boundary_condition: Literal["none", "pin", "roller"] = "pin"
    protein_boundary_condition: Literal["none", "pin"] = "pin"

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.shape_boundary_condition not in ("none", "pin", "roller"):
            errors.append(f"Unknown shape boundary condition: {self.shape_boundary_condition}")
        if self.protein_boundary_condition not in ("none", "pin"):
            errors.append(f"Unknown protein boundary condition: {self.protein_boundary_condition}")
        return len(errors) == 0, errors


# Group name -> dataclass field on Parameters
PARAMETER_GROUPS = (
    "bending", "tension", "osmotic", "adsorption", "aggregation", "dirichlet",
    "protein", "dpd", "external", "regularization", "variation", "boundary",
)


@dataclass(frozen=True)
class Parameters:
    """
    Immutable physical parameter set.

    Replace with ``dataclasses.replace`` between steps; never mutate.
    """
    bending: BendingConfig = field(default_factory=BendingConfig)
    tension: TensionConfig = field(default_factory=TensionConfig)
    osmotic: OsmoticConfig = field(default_factory=OsmoticConfig)
    adsorption: AdsorptionConfig = field(default_factory=AdsorptionConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    dirichlet: DirichletConfig = field(default_factory=DirichletConfig)
    protein: ProteinConfig = field(default_factory=ProteinConfig)
    dpd: DPDConfig = field(default_factory=DPDConfig)
    external: ExternalConfig = field(default_factory=ExternalConfig)
    regularization: RegularizationConfig = field(default_factory=RegularizationConfig)
    variation: VariationConfig = field(default_factory=VariationConfig)
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)

    def is_enabled(self, group: str) -> bool:
        """Whether a parameter group contributes to the energy/forces."""
        if group == "protein":
            return self.variation.is_protein_variation
        if group == "entropy":
            return self.variation.is_protein_variation and self.protein.entropy_weight != 0
        if group == "shape":
            return self.variation.is_shape_variation
        section = getattr(self, group, None)
        if section is None:
            raise KeyError(f"Unknown parameter group: {group}")
        return bool(getattr(section, "enabled", True))

    def validate(self) -> Tuple[bool, List[str]]:
        errors: List[str] = []
        for name in PARAMETER_GROUPS:
            if name == "protein" and not self.variation.is_protein_variation:
                continue
            _, section_errors = getattr(self, name).validate()
            errors.extend(f"{name}: {e}" for e in section_errors)
        return len(errors) == 0, errors

    def check(self) -> None:
        """Raise ConfigurationError listing every violated constraint."""
        is_valid, errors = self.validate()
        if not is_valid:
            raise ConfigurationError(errors)


@dataclass(frozen=True)
class IntegrationConfig:
    """Time stepping / optimization controls."""
    method: Literal["euler", "velocity_verlet", "conjugate_gradient", "bfgs"] = "euler"
    time_step: float = 1e-3
    total_time: float = float("inf")
    max_steps: int = 1000
    tolerance: float = 1e-6
    is_adaptive_step: bool = False
    is_backtrack: bool = True
    rho: float = 0.5
    c1: float = 1e-4
    min_step_fraction: float = 1e-5
    divergence_factor: float = 10.0
    restart_period: int = 20
    is_augmented_lagrangian: bool = True
    constraint_tolerance: float = 0.0
    penalty_increment: float = 1.3
    max_wall_time_s: Optional[float] = None
    abort_on_chemical_failure: bool = False

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.method not in ("euler", "velocity_verlet", "conjugate_gradient", "bfgs"):
            errors.append(f"Unknown integration method: {self.method}")
        if not self.time_step > 0:
            errors.append("time_step must be positive")
        if not self.total_time > 0:
            errors.append("total_time must be positive")
        if self.max_steps < 1:
            errors.append("max_steps must be >= 1")
        if self.tolerance < 0:
            errors.append("tolerance must be non-negative")
        if not (0 < self.rho < 1):
            errors.append("rho (shrink factor) must lie in (0, 1)")
        if not (0 < self.c1 < 1):
            errors.append("c1 (sufficient decrease) must lie in (0, 1)")
        if not (0 < self.min_step_fraction < 1):
            errors.append("min_step_fraction must lie in (0, 1)")
        if self.divergence_factor <= 0:
            errors.append("divergence_factor must be positive")
        if self.restart_period < 1:
            errors.append("restart_period must be >= 1")
        if self.constraint_tolerance < 0:
            errors.append("constraint_tolerance must be non-negative")
        if self.penalty_increment <= 1:
            errors.append("penalty_increment must be > 1")
        if self.max_wall_time_s is not None and self.max_wall_time_s <= 0:
            errors.append("max_wall_time_s must be positive")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class OutputConfig:
    """Output configuration."""
    out_dir: str = "output"
    run_name: str = "membrane_run"
    frame_every_steps: int = 10
    fail_on_sink_error: bool = False

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.frame_every_steps < 1:
            errors.append("frame_every_steps must be >= 1")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class MeshConfig:
    """Initial mesh recipe."""
    kind: Literal["icosphere", "hexagon"] = "icosphere"
    subdivisions: int = 2
    radius: float = 1.0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.kind not in ("icosphere", "hexagon"):
            errors.append(f"Unknown mesh kind: {self.kind}")
        if self.subdivisions < 0:
            errors.append("subdivisions must be non-negative")
        if self.kind == "hexagon" and self.subdivisions < 1:
            errors.append("hexagon patch needs at least 1 ring")
        if self.radius <= 0:
            errors.append("radius must be positive")
        return len(errors) == 0, errors


@dataclass(frozen=True)
class SimulationConfig:
    """Complete simulation configuration."""
    parameters: Parameters = field(default_factory=Parameters)
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    mesh: MeshConfig = field(default_factory=MeshConfig)

    def validate(self) -> Tuple[bool, List[str]]:
        _, errors = self.parameters.validate()
        errors = list(errors)
        for section_name in ("integration", "output", "mesh"):
            _, section_errors = getattr(self, section_name).validate()
            errors.extend(f"{section_name}: {e}" for e in section_errors)
        return len(errors) == 0, errors


def _build(cls, raw: Optional[dict], section: str):
    """Instantiate a config dataclass, rejecting unknown keys."""
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigurationError([f"{section}: expected a mapping, got {type(raw).__name__}"])
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError([f"{section}: unknown keys {unknown}"])
    kwargs = {}
    for key, value in raw.items():
        kwargs[key] = tuple(value) if isinstance(value, list) else value
    return cls(**kwargs)


_GROUP_CLASSES = {
    "bending": BendingConfig,
    "tension": TensionConfig,
    "osmotic": OsmoticConfig,
    "adsorption": AdsorptionConfig,
    "aggregation": AggregationConfig,
    "dirichlet": DirichletConfig,
    "protein": ProteinConfig,
    "dpd": DPDConfig,
    "external": ExternalConfig,
    "regularization": RegularizationConfig,
    "variation": VariationConfig,
    "boundary": BoundaryConfig,
}


def config_from_dict(raw: dict) -> SimulationConfig:
    """
    Build and validate a SimulationConfig from a plain dict.

    Raises:
        ConfigurationError: If config is invalid (all violations listed).
    """
    raw = raw or {}
    params_raw = raw.get("parameters", {}) or {}
    groups = {
        name: _build(cls, params_raw.get(name), name)
        for name, cls in _GROUP_CLASSES.items()
    }
    unknown = sorted(set(params_raw) - set(_GROUP_CLASSES))
    if unknown:
        raise ConfigurationError([f"parameters: unknown groups {unknown}"])

    config = SimulationConfig(
        parameters=Parameters(**groups),
        integration=_build(IntegrationConfig, raw.get("integration"), "integration"),
        output=_build(OutputConfig, raw.get("output"), "output"),
        mesh=_build(MeshConfig, raw.get("mesh"), "mesh"),
    )

    is_valid, errors = config.validate()
    if not is_valid:
        raise ConfigurationError(errors)
    return config


def load_config(path: Path) -> SimulationConfig:
    """
    Load and validate configuration from YAML file.

    Args:
        path: Path to YAML config file.

    Returns:
        Validated SimulationConfig.

    Raises:
        ConfigurationError: If config is invalid.
        FileNotFoundError: If file doesn't exist.
    """
    with open(path, 'r') as f:
        raw = yaml.safe_load(f)
    return config_from_dict(raw or {})


def config_to_dict(config: SimulationConfig) -> dict:
    """Convert config to a serializable dict (inverse of config_from_dict)."""
    def section(obj):
        out = {}
        for f in fields(obj):
            value = getattr(obj, f.name)
            out[f.name] = list(value) if isinstance(value, tuple) else value
        return out

    return {
        "parameters": {name: section(getattr(config.parameters, name)) for name in PARAMETER_GROUPS},
        "integration": section(config.integration),
        "output": section(config.output),
        "mesh": section(config.mesh),
    }
