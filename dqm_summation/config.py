"""
Summation Engine: Manager Configuration
=======================================

Immutable, validated configuration of one HistogramManager: the enable and
strict-booking flags, naming and labeling defaults, default dimensionality
and axis ranges, and the ordered specification list.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple, Union
import json

from .specification import Specification, SummationSpecification

SpecDefinition = Union[SummationSpecification, Specification, Mapping[str, Any]]


@dataclass(frozen=True)
class HistogramManagerConfig:
    """Immutable configuration with validation."""
    name: str
    title: str = ""
    xlabel: str = ""
    ylabel: str = ""
    top_folder_name: str = "PixelPhase1"
    enabled: bool = True
    book_undefined: bool = True
    dimensions: int = 1
    range_nbins: int = 100
    range_min: float = 0.0
    range_max: float = 100.0
    range_y_nbins: int = 100
    range_y_min: float = 0.0
    range_y_max: float = 100.0
    specs: Tuple[SpecDefinition, ...] = field(default_factory=tuple)
    debug: bool = False

    def __post_init__(self):
        if self.dimensions not in (0, 1, 2):
            raise ValueError(f"dimensions must be 0, 1 or 2, got {self.dimensions}")
        if self.range_nbins <= 0 or self.range_y_nbins <= 0:
            raise ValueError("Bin counts must be positive")
        if self.range_max <= self.range_min:
            raise ValueError(f"Invalid x range [{self.range_min}, {self.range_max}]")
        if self.range_y_max <= self.range_y_min:
            raise ValueError(f"Invalid y range [{self.range_y_min}, {self.range_y_max}]")
        if not self.name:
            raise ValueError("Histogram name must not be empty")
        object.__setattr__(self, 'specs', tuple(self.specs))

    def enabled_specs(self) -> Tuple[SummationSpecification, ...]:
        """Specifications to run, disabled ones dropped."""
        out = []
        for definition in self.specs:
            if isinstance(definition, Specification):
                out.append(definition.build())
            elif isinstance(definition, SummationSpecification):
                out.append(definition)
            elif definition.get('enabled', True):
                out.append(SummationSpecification.from_dict(definition))
        return tuple(out)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> HistogramManagerConfig:
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**dict(config))

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> HistogramManagerConfig:
        with open(path) as f:
            return cls.from_mapping(json.load(f))

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out['specs'] = [s.to_dict() for s in self.enabled_specs()]
        return out
