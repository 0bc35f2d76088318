"""
Summation Engine: Histogram Store
=================================

Narrow booking/lookup interface the engine persists results through, and an
in-memory reference store that can be written to and read back from parquet,
so that booking/filling and offline harvesting may run in separate processes.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Union, runtime_checkable
import numpy as np
import polars as pl

from .histograms import Axis, Histogram


# ==============================================================================
# MONITOR ELEMENT
# ==============================================================================

@dataclass
class MonitorElement:
    """Store-owned handle of a booked histogram."""
    path: str
    histogram: Histogram

    @property
    def name(self) -> str:
        return self.histogram.name

    def set_axis_title(self, title: str, axis: int = 1) -> None:
        """Axis 1 is x; axis 2 is y (or the content label for 1-D)."""
        if axis == 1:
            self.histogram.x_axis.title = title
        elif self.histogram.y_axis is not None:
            self.histogram.y_axis.title = title
        else:
            self.histogram.value_title = title


# ==============================================================================
# STORE PROTOCOL
# ==============================================================================

@runtime_checkable
class HistogramStore(Protocol):
    """Everything the engine needs from the persistent store."""

    def get(self, path: str) -> Optional[MonitorElement]: ...

    def set_current_folder(self, path: str) -> None: ...

    def book1d(self, name: str, title: str, nbins: int,
               low: float, high: float) -> MonitorElement: ...

    def book2d(self, name: str, title: str,
               nbins_x: int, low_x: float, high_x: float,
               nbins_y: int, low_y: float, high_y: float) -> MonitorElement: ...


# ==============================================================================
# IN-MEMORY STORE
# ==============================================================================

_FRAME_SCHEMA = {
    'path': pl.Utf8,
    'name': pl.Utf8,
    'title': pl.Utf8,
    'dimension': pl.Int8,
    'entries': pl.Float64,
    'x_nbins': pl.Int32,
    'x_low': pl.Float64,
    'x_high': pl.Float64,
    'x_title': pl.Utf8,
    'y_nbins': pl.Int32,
    'y_low': pl.Float64,
    'y_high': pl.Float64,
    'y_title': pl.Utf8,
    'ix': pl.Int32,
    'iy': pl.Int32,
    'content': pl.Float64,
}


class DQMStore:
    """
    Folder-organised element registry.

    Booking a path that already exists hands back the existing element, so
    repeated booking runs are harmless.
    """

    def __init__(self):
        self._elements: Dict[str, MonitorElement] = {}
        self._folder = ""

    def __len__(self) -> int:
        return len(self._elements)

    def __contains__(self, path: object) -> bool:
        return path in self._elements

    def __iter__(self) -> Iterator[MonitorElement]:
        return iter(self._elements.values())

    @property
    def current_folder(self) -> str:
        return self._folder

    def paths(self) -> List[str]:
        return sorted(self._elements)

    def set_current_folder(self, path: str) -> None:
        self._folder = path if path.endswith('/') or not path else path + '/'

    def get(self, path: str) -> Optional[MonitorElement]:
        return self._elements.get(path)

    def _register(self, histogram: Histogram) -> MonitorElement:
        path = self._folder + histogram.name
        existing = self._elements.get(path)
        if existing is not None:
            return existing
        element = MonitorElement(path, histogram)
        self._elements[path] = element
        return element

    def book1d(self, name: str, title: str, nbins: int,
               low: float, high: float) -> MonitorElement:
        return self._register(Histogram.book1d(name, title, nbins, low, high))

    def book2d(self, name: str, title: str,
               nbins_x: int, low_x: float, high_x: float,
               nbins_y: int, low_y: float, high_y: float) -> MonitorElement:
        return self._register(Histogram.book2d(name, title, nbins_x, low_x, high_x,
                                               nbins_y, low_y, high_y))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_frame(self) -> pl.DataFrame:
        """Long format: one row per bin (under/overflow included)."""
        rows: Dict[str, list] = {k: [] for k in _FRAME_SCHEMA}
        for path in self.paths():
            h = self._elements[path].histogram
            contents = h.contents if h.dimension == 2 else h.contents[:, np.newaxis]
            nx, ny = contents.shape
            ix, iy = np.meshgrid(np.arange(nx), np.arange(ny), indexing='ij')
            n = nx * ny
            y = h.y_axis
            rows['path'].extend([path] * n)
            rows['name'].extend([h.name] * n)
            rows['title'].extend([h.title if y is not None else f"{h.title};;{h.value_title}"] * n)
            rows['dimension'].extend([h.dimension] * n)
            rows['entries'].extend([h.entries] * n)
            rows['x_nbins'].extend([h.x_axis.nbins] * n)
            rows['x_low'].extend([h.x_axis.low] * n)
            rows['x_high'].extend([h.x_axis.high] * n)
            rows['x_title'].extend([h.x_axis.title] * n)
            rows['y_nbins'].extend([y.nbins if y else 0] * n)
            rows['y_low'].extend([y.low if y else 0.0] * n)
            rows['y_high'].extend([y.high if y else 0.0] * n)
            rows['y_title'].extend([y.title if y else ""] * n)
            rows['ix'].extend(ix.ravel().tolist())
            rows['iy'].extend(iy.ravel().tolist())
            rows['content'].extend(contents.ravel().tolist())
        return pl.DataFrame(rows, schema=_FRAME_SCHEMA)

    @classmethod
    def from_frame(cls, frame: pl.DataFrame) -> DQMStore:
        store = cls()
        for (path,), group in frame.sort('path', 'ix', 'iy').group_by(['path'], maintain_order=True):
            head = group.row(0, named=True)
            if head['dimension'] == 2:
                histogram = Histogram.book2d(head['name'], head['title'],
                                             head['x_nbins'], head['x_low'], head['x_high'],
                                             head['y_nbins'], head['y_low'], head['y_high'])
                histogram.y_axis.title = head['y_title']
            else:
                histogram = Histogram(head['name'], head['title'],
                                      Axis(head['x_nbins'], head['x_low'], head['x_high']))
            histogram.x_axis.title = head['x_title']
            values = group['content'].to_numpy()
            histogram.contents = values.reshape(histogram.contents.shape).copy()
            histogram.entries = head['entries']
            store._elements[path] = MonitorElement(path, histogram)
        return store

    def write_parquet(self, file: Union[str, Path]) -> Path:
        file = Path(file)
        file.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().write_parquet(file)
        return file

    @classmethod
    def read_parquet(cls, file: Union[str, Path]) -> DQMStore:
        return cls.from_frame(pl.read_parquet(file))
