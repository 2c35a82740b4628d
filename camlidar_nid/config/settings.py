"""
Calibration settings dataclasses.

Each section of the YAML configuration maps onto one dataclass. Values are
validated once, before any optimization starts.
"""

import math
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, Optional

from camlidar_nid.core.exceptions import ConfigurationError

BINNING_MODES = ("hard", "soft")
OPTIMIZER_MODES = ("powell", "least_squares")


def _cast(value: Any, kind: type, path: str) -> Any:
    """
    Convert a YAML or environment value to the declared field type.

    Numeric strings are accepted. Booleans, fractional values for integer
    fields and non-finite numbers are not.
    """
    try:
        if isinstance(value, bool) or isinstance(value, (list, dict)) or value is None:
            raise TypeError(f"unexpected {type(value).__name__}")
        if kind is int:
            number = float(value)
            if not number.is_integer():
                raise ValueError("not an integer")
            return int(number)
        if kind is float:
            number = float(value)
            if not math.isfinite(number):
                raise ValueError("not finite")
            return number
        if kind is str:
            if not isinstance(value, str):
                raise TypeError(f"unexpected {type(value).__name__}")
            return value
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            field=path, value=str(value),
            message=f"{path} must be {kind.__name__}, got {value!r} ({e})"
        )
    return value


def _from_section(cls, section: Optional[Dict[str, Any]], name: str):
    section = section or {}
    if not isinstance(section, dict):
        raise ConfigurationError(field=name, value=str(section),
                                 message=f"'{name}' section must be a mapping")
    types = {f.name: f.type for f in fields(cls)}
    unknown = set(section) - set(types)
    if unknown:
        raise ConfigurationError(
            field=name,
            value=", ".join(sorted(unknown)),
            message=f"Unknown keys in '{name}' section: {sorted(unknown)}"
        )
    values = {key: _cast(value, types[key], f"{name}.{key}") for key, value in section.items()}
    return cls(**values)


@dataclass
class ProjectionConfig:
    """LiDAR point visibility thresholds."""
    min_depth: float = 0.0
    max_range: float = 30.0
    image_margin: int = 2

    def validate(self) -> None:
        if self.max_range <= self.min_depth:
            raise ConfigurationError(
                field="projection.max_range", value=str(self.max_range),
                message=f"projection.max_range ({self.max_range}) must exceed min_depth ({self.min_depth})"
            )
        if self.image_margin < 0:
            raise ConfigurationError(
                field="projection.image_margin", value=str(self.image_margin),
                message="projection.image_margin must be non-negative"
            )


@dataclass
class HistogramConfig:
    """Joint histogram layout."""
    num_bins: int = 256
    binning: str = "hard"

    def validate(self) -> None:
        if not 2 <= int(self.num_bins) <= 256:
            raise ConfigurationError(
                field="histogram.num_bins", value=str(self.num_bins),
                message="histogram.num_bins must be between 2 and 256"
            )
        if self.binning not in BINNING_MODES:
            raise ConfigurationError(
                field="histogram.binning", value=str(self.binning),
                message=f"histogram.binning must be one of {BINNING_MODES}"
            )


@dataclass
class CostConfig:
    """NID cost function settings."""
    num_workers: int = 1
    degenerate_penalty: float = 2.0
    joint_entropy_epsilon: float = 1e-12

    def validate(self) -> None:
        if int(self.num_workers) < 1:
            raise ConfigurationError(
                field="cost.num_workers", value=str(self.num_workers),
                message="cost.num_workers must be at least 1"
            )
        if self.joint_entropy_epsilon <= 0:
            raise ConfigurationError(
                field="cost.joint_entropy_epsilon", value=str(self.joint_entropy_epsilon),
                message="cost.joint_entropy_epsilon must be positive"
            )


@dataclass
class OptimizerConfig:
    """
    Manifold optimizer settings.

    Step sizes are given per tangent block: rotation_step_deg for the three
    rotation axes and translation_step (sensor units) for the translation
    axes. The trust radius bounds the inner solver's step in those units
    and starts at 1.0. inner_max_evaluations caps the cost evaluations of
    one inner solve; fd_epsilon is the finite-difference step of the
    least_squares Jacobian, also in step units.
    """
    mode: str = "powell"
    max_iterations: int = 100
    inner_max_evaluations: int = 60
    rotation_step_deg: float = 0.5
    translation_step: float = 0.05
    step_tolerance: float = 1e-3
    cost_tolerance: float = 1e-9
    radius_shrink: float = 0.5
    radius_grow: float = 2.0
    max_radius: float = 4.0
    fd_epsilon: float = 0.05

    def validate(self) -> None:
        if self.mode not in OPTIMIZER_MODES:
            raise ConfigurationError(
                field="optimizer.mode", value=str(self.mode),
                message=f"optimizer.mode must be one of {OPTIMIZER_MODES}"
            )
        if int(self.max_iterations) < 1:
            raise ConfigurationError(
                field="optimizer.max_iterations", value=str(self.max_iterations),
                message="optimizer.max_iterations must be at least 1"
            )
        if int(self.inner_max_evaluations) < 1:
            raise ConfigurationError(
                field="optimizer.inner_max_evaluations", value=str(self.inner_max_evaluations),
                message="optimizer.inner_max_evaluations must be at least 1"
            )
        if self.rotation_step_deg <= 0 or self.translation_step <= 0:
            raise ConfigurationError(
                field="optimizer", message="Optimizer step sizes must be positive"
            )
        if not 0.0 < self.radius_shrink < 1.0:
            raise ConfigurationError(
                field="optimizer.radius_shrink", value=str(self.radius_shrink),
                message="optimizer.radius_shrink must be in (0, 1)"
            )
        if self.radius_grow < 1.0 or self.max_radius < 1.0:
            raise ConfigurationError(
                field="optimizer.radius_grow",
                message="optimizer.radius_grow and max_radius must be >= 1"
            )
        if self.step_tolerance <= 0 or self.cost_tolerance < 0 or self.fd_epsilon <= 0:
            raise ConfigurationError(
                field="optimizer", message="Optimizer tolerances must be positive"
            )


@dataclass
class CalibrationSettings:
    """All settings consumed by the calibration core."""
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    histogram: HistogramConfig = field(default_factory=HistogramConfig)
    cost: CostConfig = field(default_factory=CostConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    def validate(self) -> 'CalibrationSettings':
        self.projection.validate()
        self.histogram.validate()
        self.cost.validate()
        self.optimizer.validate()
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CalibrationSettings':
        """Build validated settings from a nested dict (e.g. a YAML section)."""
        data = data or {}
        settings = cls(
            projection=_from_section(ProjectionConfig, data.get('projection'), 'projection'),
            histogram=_from_section(HistogramConfig, data.get('histogram'), 'histogram'),
            cost=_from_section(CostConfig, data.get('cost'), 'cost'),
            optimizer=_from_section(OptimizerConfig, data.get('optimizer'), 'optimizer'),
        )
        return settings.validate()

    @classmethod
    def from_config(cls, config=None, overrides: Optional[Dict[str, Any]] = None) -> 'CalibrationSettings':
        """Build validated settings from the global configuration plus optional overrides."""
        if config is None:
            from camlidar_nid.config.config_loader import get_config
            config = get_config()
        return cls.from_dict(config.effective(overrides=overrides))
