"""
Summation Engine: Specifications
================================

A specification is the ordered step list defining one derived view of the
samples. It is immutable once built and shared read-only by the executors.

Specifications are written with the fluent Specification builder, which
assigns stages and rejects illegal sequences up front:

    spec = (Specification()
            .group_by("PXBarrel/PXLayer/PXLadder/PXModuleName")
            .save()
            .reduce("MEAN")
            .group_by("PXBarrel/PXLayer/PXLadder", "EXTEND_X")
            .save()
            .build())
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .core_types import Column, SpecificationError, StepStage, StepType, SummationStep

REDUCTIONS = ("MEAN", "COUNT")


def parse_columns(columns: Union[str, Sequence[Column]]) -> Tuple[Column, ...]:
    """``"A/B/C"`` or ``["A", "B", "C"]`` -> ``("A", "B", "C")``."""
    if isinstance(columns, str):
        return tuple(c for c in columns.split('/') if c)
    return tuple(columns)


# ==============================================================================
# IMMUTABLE SPECIFICATION
# ==============================================================================

class SummationSpecification:
    """Ordered, immutable sequence of steps."""

    __slots__ = ('_steps', '_by_stage')

    def __init__(self, steps: Iterable[SummationStep]):
        steps = tuple(steps)
        if not steps or steps[0].stage != StepStage.FIRST or steps[0].type != StepType.GROUPBY:
            raise SpecificationError("First step must be the key-selecting GROUPBY")
        self._steps = steps
        # per-stage (index, step) lists, walked once per sample
        self._by_stage = {
            stage: tuple((i, s) for i, s in enumerate(steps) if s.stage == stage)
            for stage in StepStage
        }

    @property
    def steps(self) -> Tuple[SummationStep, ...]:
        return self._steps

    @property
    def key_columns(self) -> Tuple[Column, ...]:
        return self._steps[0].columns

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[SummationStep]:
        return iter(self._steps)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SummationSpecification):
            return NotImplemented
        return self._steps == other._steps

    def __hash__(self) -> int:
        return hash(self._steps)

    def __repr__(self) -> str:
        return f"SummationSpecification({' '.join(s.describe() for s in self._steps)})"

    def steps_in(self, stage: StepStage) -> Tuple[Tuple[int, SummationStep], ...]:
        return self._by_stage[stage]

    def next_stage(self, index: int) -> Optional[StepStage]:
        """Stage of the step after ``index``, None past the end."""
        if index + 1 < len(self._steps):
            return self._steps[index + 1].stage
        return None

    def dump(self, pretty=None) -> str:
        """One line per step, columns shown by pretty name when given."""
        lines = []
        for step in self._steps:
            cols = [pretty(c) if pretty else c for c in step.columns]
            line = f"  {step.stage.name:<15}{step.type.name:<9}{'/'.join(cols)}"
            if step.arg:
                line += f" [{step.arg}]"
            lines.append(line.rstrip())
        return '\n'.join(lines)

    # ------------------------------------------------------------------
    # Mapping form used by configuration files
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': True,
            'steps': [
                {'stage': s.stage.name, 'type': s.type.name,
                 'columns': '/'.join(s.columns), 'arg': s.arg}
                for s in self._steps
            ],
        }

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> SummationSpecification:
        steps = []
        for entry in config['steps']:
            try:
                stage = StepStage[entry['stage']]
                type_ = StepType[entry.get('type', 'NO_TYPE')]
            except KeyError as e:
                raise SpecificationError(f"Unknown stage or step type in {entry}") from e
            steps.append(SummationStep(stage, type_,
                                       parse_columns(entry.get('columns', ())),
                                       entry.get('arg', "")))
        return cls(steps)


# ==============================================================================
# FLUENT BUILDER
# ==============================================================================

class Specification:
    """
    Fluent builder enforcing legal step sequences.

    Online steps run per sample until ``save()``; everything after runs in
    offline harvesting. ``reduce("COUNT")`` in the online stage counts
    samples; it may be followed by EXTENDs (count per extended column) or by
    one SUM ``group_by``, which runs in per-event harvesting and turns the
    per-event counts into histogram fills.
    """

    def __init__(self):
        self._steps: List[SummationStep] = []
        self._stage = StepStage.FIRST
        self._active: Tuple[Column, ...] = ()
        self._counted = False

    def _append(self, type_: StepType, columns: Sequence[Column] = (),
                arg: str = "") -> None:
        self._steps.append(SummationStep(self._stage, type_, tuple(columns), arg))

    def group_by(self, columns: Union[str, Sequence[Column]], mode: str = "SUM") -> Specification:
        cnames = parse_columns(columns)

        if self._stage == StepStage.FIRST:
            if mode != "SUM":
                raise SpecificationError("First grouping must be SUM")
            self._append(StepType.GROUPBY, cnames)
            self._active = cnames
            self._stage = StepStage.ONLINE
            return self

        if self._stage == StepStage.ONLINE_HARVEST:
            raise SpecificationError("Per-event grouping is final, use save() first")
        if not set(cnames).issubset(self._active):
            raise SpecificationError(
                f"Only a subset of {'/'.join(self._active)} can be used in grouping, "
                f"got {'/'.join(cnames)}")

        if mode == "SUM":
            if self._stage == StepStage.ONLINE:
                if self._steps[-1].type is not StepType.COUNT:
                    raise SpecificationError(
                        "Online GROUPBY must directly follow reduce('COUNT'); "
                        "use save() first to group in harvesting")
                if set(cnames) == set(self._active):
                    raise SpecificationError("Per-event group_by must drop at least one column")
                self._stage = StepStage.ONLINE_HARVEST
            self._append(StepType.GROUPBY, cnames)
        elif mode in ("EXTEND_X", "EXTEND_Y"):
            dropped = [c for c in self._active if c not in cnames]
            if len(dropped) != 1:
                raise SpecificationError(f"{mode} must drop exactly one column, dropped {dropped}")
            self._append(StepType.EXTEND_X if mode == "EXTEND_X" else StepType.EXTEND_Y, dropped)
        else:
            raise SpecificationError(f"Unknown grouping mode '{mode}'")

        self._active = cnames
        return self

    def reduce(self, sort: str) -> Specification:
        if self._stage == StepStage.FIRST:
            raise SpecificationError("First statement must be group_by")
        if sort not in REDUCTIONS:
            raise SpecificationError(f"reduce() supports {REDUCTIONS}, got '{sort}'")

        if self._stage == StepStage.OFFLINE:
            self._append(StepType.REDUCE, arg=sort)
            return self
        if sort != "COUNT":
            raise SpecificationError(f"reduce('{sort}') needs save() first")
        if self._counted or len(self._steps) > 1:
            raise SpecificationError("reduce('COUNT') must directly follow the first group_by")
        self._append(StepType.COUNT, arg=sort)
        self._counted = True
        return self

    def save(self) -> Specification:
        if self._stage == StepStage.FIRST:
            raise SpecificationError("First statement must be group_by")
        self._append(StepType.SAVE)
        self._stage = StepStage.OFFLINE
        return self

    def custom(self, arg: str = "") -> Specification:
        if self._stage != StepStage.OFFLINE:
            raise SpecificationError("custom() steps run in harvesting, use save() first")
        self._append(StepType.CUSTOM, arg=arg)
        return self

    def build(self) -> SummationSpecification:
        if not self._steps:
            raise SpecificationError("Empty specification")
        return SummationSpecification(self._steps)
