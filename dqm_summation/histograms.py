"""
Summation Engine: Histograms, Cells and Tables
==============================================

numpy-backed fixed-binning histograms and the per-key cell storage of the
summation engine.

- Axis: uniform binning descriptor with a title
- Histogram: 1-D or 2-D bin array with ROOT-style under/overflow bins
- Cell variants: EmptyCell, CounterCell, HistogramCell, PersistedCell
- Table: Values -> Cell mapping with lazy creation
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, TYPE_CHECKING
import numpy as np

from .core_types import BookingError, Values

if TYPE_CHECKING:
    from .store import MonitorElement


# ==============================================================================
# AXIS
# ==============================================================================

@dataclass
class Axis:
    """Uniform binning on [low, high) with ``nbins`` in-range bins."""
    nbins: int
    low: float
    high: float
    title: str = ""

    def __post_init__(self):
        self.nbins = int(self.nbins)
        if self.nbins <= 0:
            raise ValueError(f"Axis needs at least one bin, got {self.nbins}")
        if not self.high > self.low:
            raise ValueError(f"Invalid axis range [{self.low}, {self.high})")

    @property
    def width(self) -> float:
        return (self.high - self.low) / self.nbins

    def find_bin(self, value: float) -> int:
        """Bin index of ``value``; 0 is underflow, nbins + 1 overflow."""
        if value < self.low:
            return 0
        if value >= self.high:
            return self.nbins + 1
        return int(self.nbins * (value - self.low) / (self.high - self.low)) + 1

    def centers(self) -> np.ndarray:
        return self.low + (np.arange(self.nbins) + 0.5) * self.width

    def same_binning(self, other: Axis) -> bool:
        return (self.nbins == other.nbins
                and np.isclose(self.low, other.low)
                and np.isclose(self.high, other.high))


def split_title(title: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split a ``"title;xlabel;ylabel"`` string, ROOT style."""
    parts = title.split(';')
    main = parts[0]
    xlabel = parts[1] if len(parts) > 1 else None
    ylabel = parts[2] if len(parts) > 2 else None
    return main, xlabel, ylabel


# ==============================================================================
# HISTOGRAM
# ==============================================================================

class Histogram:
    """
    Fixed-binning histogram with one or two axes.

    Contents are stored with under- and overflow, so in-range bins are
    addressed 1..nbins as in ROOT. ``entries`` counts fills and is summed
    by ``add``.
    """

    def __init__(self, name: str, title: str, x_axis: Axis,
                 y_axis: Optional[Axis] = None):
        main, xlabel, ylabel = split_title(title)
        self.name = name
        self.title = main
        self.x_axis = x_axis
        self.y_axis = y_axis
        # label of the bin contents, used by 1-D histograms only
        self.value_title = ""
        if xlabel is not None:
            self.x_axis.title = xlabel
        if ylabel is not None:
            if self.y_axis is not None:
                self.y_axis.title = ylabel
            else:
                self.value_title = ylabel
        shape = (x_axis.nbins + 2,) if y_axis is None else (x_axis.nbins + 2, y_axis.nbins + 2)
        self.contents = np.zeros(shape, dtype=np.float64)
        self.entries = 0.0

    @classmethod
    def book1d(cls, name: str, title: str, nbins: int,
               low: float, high: float) -> Histogram:
        return cls(name, title, Axis(nbins, low, high))

    @classmethod
    def book2d(cls, name: str, title: str,
               nbins_x: int, low_x: float, high_x: float,
               nbins_y: int, low_y: float, high_y: float) -> Histogram:
        return cls(name, title, Axis(nbins_x, low_x, high_x), Axis(nbins_y, low_y, high_y))

    def __repr__(self) -> str:
        return f"Histogram({self.name!r}, dim={self.dimension}, entries={self.entries:g})"

    @property
    def dimension(self) -> int:
        return 1 if self.y_axis is None else 2

    @property
    def full_title(self) -> str:
        """Title with axis labels appended, the form the store books with."""
        if self.y_axis is None:
            return f"{self.title};{self.x_axis.title};{self.value_title}"
        return f"{self.title};{self.x_axis.title};{self.y_axis.title}"

    # ------------------------------------------------------------------
    # Filling and bin access
    # ------------------------------------------------------------------

    def fill(self, x: float, y: Optional[float] = None, weight: float = 1.0) -> None:
        i = self.x_axis.find_bin(x)
        if self.y_axis is None:
            self.contents[i] += weight
        else:
            if y is None:
                raise ValueError(f"2D histogram {self.name} needs a y coordinate")
            self.contents[i, self.y_axis.find_bin(y)] += weight
        self.entries += 1

    def get_bin_content(self, i: int, j: Optional[int] = None) -> float:
        if j is None:
            return float(self.contents[i])
        return float(self.contents[i, j])

    def set_bin_content(self, i: int, *args: float) -> None:
        """``set_bin_content(i, value)`` or ``set_bin_content(i, j, value)``."""
        if len(args) == 1:
            self.contents[i] = args[0]
        else:
            j, value = args
            self.contents[i, j] = value

    def in_range(self) -> np.ndarray:
        """Contents without under/overflow bins."""
        if self.y_axis is None:
            return self.contents[1:-1]
        return self.contents[1:-1, 1:-1]

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def same_binning(self, other: Histogram) -> bool:
        if self.dimension != other.dimension:
            return False
        if not self.x_axis.same_binning(other.x_axis):
            return False
        return self.y_axis is None or self.y_axis.same_binning(other.y_axis)

    def add(self, other: Histogram) -> None:
        if not self.same_binning(other):
            raise ValueError(f"Cannot add {other!r} to {self!r}: binning differs")
        self.contents += other.contents
        self.entries += other.entries

    def clone(self, name: Optional[str] = None) -> Histogram:
        copy = Histogram(
            name or self.name, self.full_title,
            Axis(self.x_axis.nbins, self.x_axis.low, self.x_axis.high, self.x_axis.title),
            None if self.y_axis is None else
            Axis(self.y_axis.nbins, self.y_axis.low, self.y_axis.high, self.y_axis.title),
        )
        copy.contents = self.contents.copy()
        copy.entries = self.entries
        return copy

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def integral(self) -> float:
        return float(self.in_range().sum())

    def mean(self) -> float:
        """Content-weighted mean of the x bin centres, in-range bins only."""
        weights = self.in_range()
        if self.y_axis is not None:
            weights = weights.sum(axis=1)
        total = weights.sum()
        if total == 0:
            return 0.0
        return float(np.dot(weights, self.x_axis.centers()) / total)


# ==============================================================================
# CELLS
# ==============================================================================

class Cell:
    """
    State of one table entry. Exactly one concrete variant is live per key;
    switching variant means replacing the table entry.
    """

    __slots__ = ()

    @property
    def histogram(self) -> Histogram:
        raise BookingError(f"{type(self).__name__} carries no histogram")

    @property
    def has_histogram(self) -> bool:
        return False

    def fill(self, dimensions: int, x: float, y: float) -> None:
        raise BookingError(f"Cannot fill {type(self).__name__}")


class EmptyCell(Cell):
    __slots__ = ()

    def __repr__(self) -> str:
        return "EmptyCell()"


class CounterCell(Cell):
    """Running sample counter, turned into histogram fills per event."""

    __slots__ = ('count',)

    def __init__(self, count: int = 0):
        self.count = count

    def __repr__(self) -> str:
        return f"CounterCell({self.count})"


class _HistogramBacked(Cell):
    __slots__ = ()

    @property
    def has_histogram(self) -> bool:
        return True

    def fill(self, dimensions: int, x: float, y: float) -> None:
        histogram = self.histogram
        if dimensions == 0:
            histogram.fill(0.0)
        elif dimensions == 1:
            histogram.fill(x)
        else:
            histogram.fill(x, y)


class HistogramCell(_HistogramBacked):
    """In-memory histogram, not (yet) known to the store."""

    __slots__ = ('_histogram',)

    def __init__(self, histogram: Histogram):
        self._histogram = histogram

    @property
    def histogram(self) -> Histogram:
        return self._histogram

    def __repr__(self) -> str:
        return f"HistogramCell({self._histogram!r})"


class PersistedCell(_HistogramBacked):
    """Handle of a histogram owned by the store."""

    __slots__ = ('element',)

    def __init__(self, element: MonitorElement):
        self.element = element

    @property
    def histogram(self) -> Histogram:
        return self.element.histogram

    def __repr__(self) -> str:
        return f"PersistedCell({self.element.path!r})"


# ==============================================================================
# TABLE
# ==============================================================================

class Table:
    """Values -> Cell mapping driven by one specification."""

    def __init__(self):
        self._cells: Dict[Values, Cell] = {}

    def __len__(self) -> int:
        return len(self._cells)

    def __contains__(self, key: object) -> bool:
        return key in self._cells

    def __iter__(self) -> Iterator[Values]:
        return iter(self._cells)

    def __getitem__(self, key: Values) -> Cell:
        return self._cells[key]

    def __setitem__(self, key: Values, cell: Cell) -> None:
        self._cells[key] = cell

    def items(self):
        return self._cells.items()

    def sorted_items(self) -> List[Tuple[Values, Cell]]:
        return sorted(self._cells.items(), key=lambda e: e[0].sort_key())

    def find(self, key: Values) -> Optional[Cell]:
        """Lookup that never creates an entry."""
        return self._cells.get(key)

    def get_or_create(self, key: Values) -> Cell:
        cell = self._cells.get(key)
        if cell is None:
            cell = self._cells[key] = EmptyCell()
        return cell

    def counter(self, key: Values) -> CounterCell:
        """Counter at ``key``, created (or promoted from empty) on first use."""
        cell = self.get_or_create(key)
        if isinstance(cell, CounterCell):
            return cell
        if isinstance(cell, EmptyCell):
            cell = self._cells[key] = CounterCell()
            return cell
        raise BookingError(f"Expected a counter at {key}, found {cell!r}", key=key)

    def counters(self) -> List[Tuple[Values, CounterCell]]:
        return [(k, c) for k, c in self._cells.items() if isinstance(c, CounterCell)]

    def empty_keys(self) -> List[Values]:
        return [k for k, c in self._cells.items() if isinstance(c, EmptyCell)]

    def swap(self, other: Table) -> None:
        self._cells, other._cells = other._cells, self._cells
