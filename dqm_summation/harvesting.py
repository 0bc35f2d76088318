"""
Summation Engine: Offline Harvesting
====================================

Whole-table transformations run once, after all samples were filled:

- execute_save: move in-memory histograms into the store
- execute_group_by: merge histograms sharing a projected key
- execute_reduce: collapse histograms to one-bin scalars
- execute_extend: concatenate histograms along x or y, dropping one column

Every function builds the new table aside and swaps it in, so a failing step
leaves the previous table intact. Tables are walked in key order, which fixes
the bin order EXTEND produces.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict
import time
import warnings
import psutil

from .core_types import BookingError, Column, SpecificationError, SummationStep, Values
from .histograms import Axis, Histogram, HistogramCell, PersistedCell, Table
from .store import HistogramStore


# ==============================================================================
# SAVE
# ==============================================================================

def execute_save(table: Table, store: HistogramStore,
                 make_path: Callable[[Values], str],
                 book_undefined: bool = False) -> int:
    """Book a store element for every in-memory histogram. Returns the number booked."""
    booked = 0
    for key, cell in table.sorted_items():
        if isinstance(cell, PersistedCell):
            continue
        if not isinstance(cell, HistogramCell):
            if book_undefined:
                raise BookingError(f"Missing histogram at {key}. Something is broken.", key=key)
            continue

        h = cell.histogram
        store.set_current_folder(make_path(key))
        if h.dimension == 1:
            element = store.book1d(h.name, h.title,
                                   h.x_axis.nbins, h.x_axis.low, h.x_axis.high)
            element.set_axis_title(h.x_axis.title)
            element.set_axis_title(h.value_title, 2)
        else:
            element = store.book2d(h.name, h.title,
                                   h.x_axis.nbins, h.x_axis.low, h.x_axis.high,
                                   h.y_axis.nbins, h.y_axis.low, h.y_axis.high)
            element.set_axis_title(h.x_axis.title)
            element.set_axis_title(h.y_axis.title, 2)
        element.histogram.add(h)
        table[key] = PersistedCell(element)
        booked += 1
    return booked


# ==============================================================================
# GROUPBY
# ==============================================================================

def execute_group_by(step: SummationStep, table: Table) -> None:
    """Project keys onto ``step.columns``; histograms landing together are summed."""
    out = Table()
    for key, cell in table.sorted_items():
        histogram = cell.histogram
        new_key = key.project(step.columns)
        target = out.find(new_key)
        if target is None:
            out[new_key] = HistogramCell(histogram.clone())
        else:
            target.histogram.add(histogram)
    table.swap(out)


# ==============================================================================
# REDUCE
# ==============================================================================

@dataclass(frozen=True)
class Reduction:
    """Named histogram -> scalar function with its naming rules."""
    prefix: str
    label: str
    fn: Callable[[Histogram], float]


REDUCTIONS: Dict[str, Reduction] = {
    "MEAN": Reduction("mean_", "mean of {}", lambda h: h.mean()),
    "COUNT": Reduction("num_", "# of {} entries", lambda h: h.entries),
}


def execute_reduce(step: SummationStep, table: Table) -> None:
    """
    Replace each histogram by a one-bin histogram holding the reduced value.

    An unknown reduction is reported and leaves the table untouched.
    """
    reduction = REDUCTIONS.get(step.arg)
    if reduction is None:
        warnings.warn(f"Reduction '{step.arg}' not yet implemented, step skipped")
        return

    out = Table()
    for key, cell in table.sorted_items():
        h = cell.histogram
        label = reduction.label.format(h.x_axis.title)
        reduced = Histogram(reduction.prefix + h.name, f"{h.title};;{label}", Axis(1, 0.0, 1.0))
        reduced.set_bin_content(1, reduction.fn(h))
        reduced.entries = 1.0
        out[key] = HistogramCell(reduced)
    table.swap(out)


# ==============================================================================
# EXTEND
# ==============================================================================

def _extent(h: Histogram, is_x: bool) -> int:
    if is_x:
        return h.x_axis.nbins
    return h.y_axis.nbins if h.y_axis is not None else 1


def _copy_axis(axis: Axis) -> Axis:
    return Axis(axis.nbins, axis.low, axis.high, axis.title)


def _book_extended(h: Histogram, colname: str, nbins: int, is_x: bool) -> Histogram:
    xtitle = h.x_axis.title
    ytitle = h.y_axis.title if h.y_axis is not None else h.value_title
    extended = Axis(nbins, 0.5, nbins + 0.5)
    if is_x:
        title = f"{h.title} per {colname};{colname}/{xtitle};{ytitle}"
        if h.dimension == 1:
            return Histogram(h.name, title, extended)
        return Histogram(h.name, title, extended, _copy_axis(h.y_axis))
    title = f"{h.title} per {colname};{xtitle};{colname}/{ytitle}"
    return Histogram(h.name, title, _copy_axis(h.x_axis), extended)


def _copy_block(src: Histogram, dst: Histogram, start: int, is_x: bool) -> int:
    """Copy in-range bins of ``src`` into ``dst`` from bin ``start`` on; returns next free bin."""
    nx = src.x_axis.nbins
    if dst.dimension == 1:
        dst.contents[start:start + nx] = src.contents[1:nx + 1]
        stop = start + nx
    elif is_x:
        ny = src.y_axis.nbins
        if ny != dst.y_axis.nbins:
            raise SpecificationError(f"Cannot EXTEND_X {src.name}: y binning differs within group")
        dst.contents[start:start + nx, 1:ny + 1] = src.contents[1:nx + 1, 1:ny + 1]
        stop = start + nx
    else:
        if nx != dst.x_axis.nbins:
            raise SpecificationError(f"Cannot EXTEND_Y {src.name}: x binning differs within group")
        if src.dimension == 1:
            dst.contents[1:nx + 1, start] = src.contents[1:nx + 1]
            stop = start + 1
        else:
            ny = src.y_axis.nbins
            dst.contents[1:nx + 1, start:start + ny] = src.contents[1:nx + 1, 1:ny + 1]
            stop = start + ny
    dst.entries += src.entries
    return stop


def execute_extend(step: SummationStep, table: Table, is_x: bool,
                   pretty: Callable[[Column], str]) -> None:
    """
    Drop ``step.columns[0]`` from the keys and lay the histograms of each
    resulting group side by side along x (or y).
    """
    column = step.columns[0]
    colname = pretty(column)
    entries = table.sorted_items()

    # first pass: total extent per group
    nbins: Dict[Values, int] = {}
    for key, cell in entries:
        reduced = key.erase(column)
        nbins[reduced] = nbins.get(reduced, 0) + _extent(cell.histogram, is_x)

    out = Table()
    fill_pointer: Dict[Values, int] = {}
    for key, cell in entries:
        h = cell.histogram
        reduced = key.erase(column)
        target = out.find(reduced)
        if target is None:
            target = out[reduced] = HistogramCell(_book_extended(h, colname, nbins[reduced], is_x))
            fill_pointer[reduced] = 1
        fill_pointer[reduced] = _copy_block(h, target.histogram, fill_pointer[reduced], is_x)
    table.swap(out)


# ==============================================================================
# HARVEST REPORTING
# ==============================================================================

@dataclass
class HarvestReport:
    """What offline harvesting did for one specification."""
    spec_index: int
    loaded: int
    missing: int
    steps_run: int = 0
    final_entries: int = 0
    execution_time: float = 0.0
    memory_delta_mb: float = 0.0

    @property
    def load_efficiency(self) -> float:
        total = self.loaded + self.missing
        return self.loaded / total if total else 1.0


def _rss_mb(process: psutil.Process) -> float:
    try:
        return process.memory_info().rss / (1024.0 * 1024.0)
    except psutil.Error:
        return 0.0


@contextmanager
def harvest_monitor(report: HarvestReport):
    """Record wall time and resident-memory growth of a harvesting block."""
    process = psutil.Process()
    initial_mb = _rss_mb(process)
    start = time.perf_counter()
    try:
        yield report
    finally:
        report.execution_time = time.perf_counter() - start
        report.memory_delta_mb = max(0.0, _rss_mb(process) - initial_mb)
