"""
Summation Engine: Online Execution
==================================

Per-sample side of the engine. Two walks over the same online step list:

- execute_online: the hot path. Updates exactly one cell per sample.
- describe_online: booking. Computes key, name, labels and ranges of the
  histogram a sample context would land in, without touching any table.

Reloading at harvest time reuses describe_online, so booked names and reloaded
names cannot drift apart.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple, TYPE_CHECKING

from .core_types import BookingError, SpecificationError, StepStage, StepType, SummationStep, Values
from .histograms import Cell, Table

if TYPE_CHECKING:
    from .geometry import AttributeProvider
    from .specification import SummationSpecification

ONLINE_STAGES = (StepStage.ONLINE, StepStage.ONLINE_HARVEST)


# ==============================================================================
# FAST-PATH CACHE
# ==============================================================================

class FastPathCache:
    """
    Single-slot memo of the cell the last sample ended up in.

    Two states: empty, or valid with the final key and its cell. Anything that
    changes the key of the current walk must call ``invalidate()`` first.
    """

    __slots__ = ('_key', '_cell')

    def __init__(self):
        self._key: Optional[Values] = None
        self._cell: Optional[Cell] = None

    @property
    def valid(self) -> bool:
        return self._cell is not None

    @property
    def cell(self) -> Optional[Cell]:
        return self._cell

    @property
    def key(self) -> Optional[Values]:
        return self._key

    def set(self, key: Values, cell: Cell) -> None:
        self._key = key
        self._cell = cell

    def invalidate(self) -> None:
        self._key = None
        self._cell = None

    def __repr__(self) -> str:
        return f"FastPathCache({self._key!r})" if self.valid else "FastPathCache(empty)"


# ==============================================================================
# FILL WALK
# ==============================================================================

def execute_online(spec: SummationSpecification, table: Table, key: Values,
                   stage: StepStage, cache: FastPathCache,
                   x: float = 0.0, y: float = 0.0, dimensions: int = 1,
                   book_undefined: bool = False) -> bool:
    """
    Run the ``stage`` steps of ``spec`` for one sample and update its cell.

    Returns False when the sample was dropped because no histogram is booked
    for its key (only possible with ``book_undefined`` off).
    """
    for index, step in spec.steps_in(stage):
        kind = step.type
        if kind is StepType.SAVE:
            continue

        if kind is StepType.COUNT:
            # COUNT/EXTEND: no-op here. COUNT/GROUPBY: bump the counter and
            # leave the fill to per-event harvesting.
            x = y = 0.0
            dimensions = 0
            if spec.next_stage(index) is StepStage.ONLINE_HARVEST:
                counter = cache.cell
                if counter is None:
                    counter = table.counter(key)
                    cache.set(key, counter)
                counter.count += 1
                return True

        elif kind is StepType.EXTEND_X:
            if dimensions == 1 or x != 0.0:
                raise SpecificationError("Can only EXTEND on COUNTs in the online stage", step)
            column = step.columns[0]
            x = float(key.get(column))
            # a cached cell already belongs to the reduced key
            if not cache.valid:
                key = key.erase(column)
            dimensions = 1 if dimensions == 0 else 2

        elif kind is StepType.EXTEND_Y:
            if y != 0.0:
                raise SpecificationError("Can only EXTEND on COUNTs in the online stage", step)
            column = step.columns[0]
            y = float(key.get(column))
            if not cache.valid:
                key = key.erase(column)
            dimensions = 2

        elif kind is StepType.GROUPBY:
            if stage is not StepStage.ONLINE_HARVEST:
                raise SpecificationError(
                    "Only COUNT/GROUPBY with per-event harvesting allowed online", step)
            counter = cache.cell if cache.valid else table.counter(key)
            x = float(counter.count)
            counter.count = 0
            cache.invalidate()
            key = key.project(step.columns)
            dimensions = 1

        else:
            raise SpecificationError(
                f"Illegal {kind.name} step online; booking should have caught this", step)

    cell = cache.cell
    if cell is None:
        cell = table.find(key)
        if cell is None or not cell.has_histogram:
            if book_undefined:
                raise BookingError(
                    f"All histograms were booked but {key} is missing. "
                    f"This is a problem in the booking process.", key=key)
            return False
        cache.set(key, cell)
    cell.fill(dimensions, x, y)
    return True


# ==============================================================================
# DESCRIBE WALK (BOOKING)
# ==============================================================================

@dataclass
class BookingPlan:
    """Shape and labels of the histogram one sample context is booked into."""
    key: Values
    dimensions: int
    name: str
    title: str
    xlabel: str
    ylabel: str
    x_nbins: int
    x_min: float
    x_max: float
    y_nbins: int
    y_min: float
    y_max: float
    counter_keys: List[Values] = field(default_factory=list)

    @property
    def booking_title(self) -> str:
        if self.dimensions == 2:
            return f"{self.title};{self.xlabel};{self.ylabel}"
        return f"{self.title};{self.xlabel}"

    def extend_x(self, label: str, low: float, high: float) -> None:
        self.xlabel = label
        self.x_min, self.x_max = low - 0.5, high + 0.5
        self.x_nbins = int(round(self.x_max - self.x_min))

    def extend_y(self, label: str, low: float, high: float) -> None:
        self.ylabel = label
        self.y_min, self.y_max = low - 0.5, high + 0.5
        self.y_nbins = int(round(self.y_max - self.y_min))


def describe_online(spec: SummationSpecification, key: Values, defaults: Any,
                    provider: AttributeProvider) -> BookingPlan:
    """
    Replay the online steps in describe mode.

    ``defaults`` carries the configured name, title, labels, dimensionality
    and ranges (a HistogramManagerConfig).
    """
    plan = BookingPlan(
        key=key, dimensions=defaults.dimensions,
        name=defaults.name, title=defaults.title,
        xlabel=defaults.xlabel, ylabel=defaults.ylabel,
        x_nbins=defaults.range_nbins, x_min=defaults.range_min, x_max=defaults.range_max,
        y_nbins=defaults.range_y_nbins, y_min=defaults.range_y_min, y_max=defaults.range_y_max,
    )
    for index, step in _online_steps(spec):
        kind = step.type
        if kind is StepType.SAVE:
            continue

        if kind is StepType.COUNT:
            plan.dimensions = 0
            plan.title = "Count of " + plan.title
            plan.name = "num_" + plan.name
            plan.ylabel = "#" + plan.xlabel
            plan.xlabel = ""
            plan.x_nbins = plan.y_nbins = 1
            plan.x_min = plan.y_min = 0.0
            plan.x_max = plan.y_max = 1.0
            if spec.next_stage(index) is StepStage.ONLINE_HARVEST:
                plan.counter_keys.append(plan.key)

        elif kind is StepType.EXTEND_X:
            column = step.columns[0]
            colname = provider.pretty(column)
            if plan.dimensions == 1:
                raise SpecificationError("1D to 1D reduce NYI in the online stage", step)
            plan.dimensions = 1 if plan.dimensions == 0 else 2
            plan.title += " per " + colname
            plan.name += "_per_" + colname
            plan.extend_x(colname, provider.min_value(column), provider.max_value(column))
            plan.key = plan.key.erase(column)

        elif kind is StepType.EXTEND_Y:
            column = step.columns[0]
            colname = provider.pretty(column)
            if plan.dimensions == 2:
                raise SpecificationError("2D to 2D reduce NYI in the online stage", step)
            plan.dimensions = 2
            plan.title += " per " + colname
            plan.name += "_per_" + colname
            plan.extend_y(colname, provider.min_value(column), provider.max_value(column))
            plan.key = plan.key.erase(column)

        elif kind is StepType.GROUPBY:
            if plan.dimensions != 0 or step.stage is not StepStage.ONLINE_HARVEST:
                raise SpecificationError(
                    "Only COUNT/GROUPBY with per-event harvesting allowed online", step)
            if set(step.columns) == set(plan.key.columns):
                raise SpecificationError(
                    "Per-event GROUPBY must drop at least one column, "
                    "counters and histograms would share keys", step)
            plan.dimensions = 1
            plan.x_nbins = defaults.range_nbins
            plan.x_min, plan.x_max = defaults.range_min, defaults.range_max
            plan.xlabel = plan.ylabel + " per Event"
            if spec.key_columns:
                plan.xlabel += " and " + provider.pretty(spec.key_columns[-1])
            plan.ylabel = "#Entries"
            plan.key = plan.key.project(step.columns)

        else:
            raise SpecificationError(
                f"{kind.name} not supported online. Try save() before to switch to harvesting.",
                step)
    return plan


def _online_steps(spec: SummationSpecification) -> Iterable[Tuple[int, SummationStep]]:
    steps = [e for stage in ONLINE_STAGES for e in spec.steps_in(stage)]
    return sorted(steps, key=lambda e: e[0])
