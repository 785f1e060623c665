"""Run configuration for the RUSLE soil-loss pipeline.

Defaults reproduce the calibration the model was built with: the Hurni
(1985) rainfall regression ``R = 0.562 * P - 8.12``, the exponential NDVI
scaling with ``alpha = -2``, a constant flow accumulation of 500 for the LS
factor and the 10/40/70/100 t/ha/yr severity cut points.

``summary_resolution`` is the resolution in metres at which the mean and
the class areas are reduced (converted to degrees on geographic grids).
Leaving it at ``None`` reduces at native resolution; a coarser value bounds
memory and compute for large regions at the cost of resampling error in the
reported areas.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

PathLike = Union[str, Path]

INPUT_KEYS = ("precipitation", "soil_class", "elevation", "land_cover", "nir", "red", "ndvi")


@dataclass(frozen=True)
class SeverityThresholds:
    """Ascending soil-loss cut points (t/ha/yr) between the five classes."""

    slight: float = 10.0
    moderate: float = 40.0
    high: float = 70.0
    very_high: float = 100.0

    def __post_init__(self):
        values = self.as_tuple()
        if any(b <= a for a, b in zip(values, values[1:])):
            raise ValueError(f"Severity thresholds must be strictly ascending, got {values}")

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.slight, self.moderate, self.high, self.very_high)

    @classmethod
    def from_value(cls, value: Any) -> "SeverityThresholds":
        if isinstance(value, SeverityThresholds):
            return value
        if isinstance(value, Mapping):
            return cls(**{k: float(v) for k, v in value.items()})
        values = [float(v) for v in value]
        if len(values) != 4:
            raise ValueError(f"Expected four severity thresholds, got {len(values)}")
        return cls(*values)


def _parse_date(value: Union[str, date], name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValueError(f"'{name}' must be an ISO date (YYYY-MM-DD), got {value!r}") from exc


@dataclass(frozen=True)
class RusleConfig:
    """Options recognised by :func:`rusle_leaf.pipeline.run_rusle`."""

    start_date: str = "2020-07-01"
    end_date: str = "2021-07-01"
    region: Optional[str] = None
    r_coefficients: Tuple[float, float] = (0.562, -8.12)
    c_alpha: float = -2.0
    ls_flow_accumulation: float = 500.0
    thresholds: SeverityThresholds = field(default_factory=SeverityThresholds)
    summary_resolution: Optional[float] = None
    area_decimals: int = 0
    inputs: Dict[str, str] = field(default_factory=dict)
    log_file: Optional[str] = None

    def __post_init__(self):
        start = _parse_date(self.start_date, "start_date")
        end = _parse_date(self.end_date, "end_date")
        if end <= start:
            raise ValueError(f"end_date ({end}) must be after start_date ({start})")
        if len(self.r_coefficients) != 2:
            raise ValueError("r_coefficients must hold exactly (a, b)")
        if self.ls_flow_accumulation <= 0:
            raise ValueError("ls_flow_accumulation must be positive")
        if self.summary_resolution is not None and self.summary_resolution <= 0:
            raise ValueError("summary_resolution must be positive when given")
        if self.area_decimals < 0:
            raise ValueError("area_decimals must not be negative")
        unknown = set(self.inputs) - set(INPUT_KEYS)
        if unknown:
            raise ValueError(f"Unknown input keys: {sorted(unknown)}. Valid keys: {list(INPUT_KEYS)}")

    @property
    def start(self) -> date:
        return _parse_date(self.start_date, "start_date")

    @property
    def end(self) -> date:
        return _parse_date(self.end_date, "end_date")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "RusleConfig":
        """Build a configuration from a plain mapping (e.g. parsed JSON)."""

        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = dict(values)
        if "thresholds" in kwargs:
            kwargs["thresholds"] = SeverityThresholds.from_value(kwargs["thresholds"])
        if "r_coefficients" in kwargs:
            kwargs["r_coefficients"] = tuple(float(v) for v in kwargs["r_coefficients"])
        if "inputs" in kwargs:
            kwargs["inputs"] = {str(k): str(v) for k, v in kwargs["inputs"].items()}
        for name in ("c_alpha", "ls_flow_accumulation"):
            if name in kwargs:
                kwargs[name] = float(kwargs[name])
        if kwargs.get("summary_resolution") is not None:
            kwargs["summary_resolution"] = float(kwargs["summary_resolution"])
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: PathLike) -> "RusleConfig":
        with Path(path).open("r", encoding="utf-8") as fp:
            return cls.from_mapping(json.load(fp))

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["r_coefficients"] = list(self.r_coefficients)
        return out
