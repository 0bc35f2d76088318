"""
Summation Engine: Attribute Provider
====================================

The engine does not know which categorical attributes exist. It asks an
attribute provider to turn a sample context into a key, to name columns and
to enumerate every module at booking time.

This module defines that contract and ships GeometryInterface, a provider
backed by a polars module table plus per-sample extractor callables.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union,
    runtime_checkable
)
import warnings
import polars as pl

from .core_types import Column, UNDEFINED, Values

# Module id carried by samples that have no stable module identity.
NO_MODULE = 0


@dataclass(frozen=True)
class InterestingQuantities:
    """Identifying context of one sample."""
    source_module: Optional[int] = NO_MODULE
    source_event: Any = None
    col: int = 0
    row: int = 0

    @property
    def has_stable_identity(self) -> bool:
        return has_stable_identity(self.source_module)


def has_stable_identity(source_module: Optional[int]) -> bool:
    """Samples without a module identity must never reuse a cached key."""
    return source_module is not None and source_module != NO_MODULE


# ==============================================================================
# PROVIDER PROTOCOL
# ==============================================================================

@runtime_checkable
class AttributeProvider(Protocol):
    """Contract consumed by the summation engine."""

    def extract_columns(self, columns: Sequence[Column],
                        iq: InterestingQuantities) -> Values: ...

    def pretty(self, column: Column) -> str: ...

    def min_value(self, column: Column) -> float: ...

    def max_value(self, column: Column) -> float: ...

    def all_modules(self) -> Iterable[InterestingQuantities]: ...

    def loaded(self) -> bool: ...

    def load(self, setup: Any) -> None: ...


# ==============================================================================
# POLARS-BACKED PROVIDER
# ==============================================================================

Extractor = Callable[[InterestingQuantities], int]


@dataclass
class _ExtractorEntry:
    fn: Extractor
    min_value: float
    max_value: float
    # pixels that reach every value in [min_value, max_value]
    pixels: Tuple[Tuple[int, int], ...] = ((0, 0),)


class GeometryInterface:
    """
    Attribute provider over a module table.

    The table has one row per module: a ``module`` id column and one integer
    column per module-level attribute. Attributes that vary inside a module
    or per event (readout chip, lumisection, ...) are registered as extractor
    callables over the sample context.
    """

    MODULE_COLUMN = 'module'

    def __init__(self, pretty_names: Optional[Dict[Column, str]] = None):
        self._modules: Dict[int, Dict[Column, int]] = {}
        self._ranges: Dict[Column, tuple] = {}
        self._extractors: Dict[Column, _ExtractorEntry] = {}
        self._pretty: Dict[Column, str] = dict(pretty_names or {})
        self._loaded = False

    def loaded(self) -> bool:
        return self._loaded

    def load(self, setup: Union[pl.DataFrame, str, Path]) -> None:
        """One-time initialisation from a module table or a parquet/CSV file."""
        if isinstance(setup, pl.DataFrame):
            frame = setup
        else:
            path = Path(setup)
            frame = pl.read_csv(path) if path.suffix == '.csv' else pl.read_parquet(path)

        if self.MODULE_COLUMN not in frame.columns:
            raise ValueError(f"Module table needs a '{self.MODULE_COLUMN}' column, "
                             f"got {frame.columns}")
        attributes = [c for c in frame.columns if c != self.MODULE_COLUMN]
        frame = frame.with_columns(pl.col(attributes).fill_null(UNDEFINED).cast(pl.Int64))

        for record in frame.iter_rows(named=True):
            module = int(record.pop(self.MODULE_COLUMN))
            if module == NO_MODULE:
                warnings.warn(f"Module id {NO_MODULE} is reserved, row skipped")
                continue
            self._modules[module] = record

        for column in attributes:
            defined = frame.filter(pl.col(column) != UNDEFINED)[column]
            if defined.len() > 0:
                self._ranges[column] = (float(defined.min()), float(defined.max()))
        self._loaded = True

    def add_extractor(self, column: Column, fn: Extractor,
                      min_value: float, max_value: float,
                      pretty_name: Optional[str] = None,
                      pixels: Optional[Iterable[Tuple[int, int]]] = None) -> None:
        """
        Register a column computed from the sample context.

        ``pixels`` lists (col, row) positions at which the extractor takes
        every value of its range; booking visits each of them in every
        module. Without it only pixel (0, 0) is visited.
        """
        entry = _ExtractorEntry(fn, min_value, max_value)
        if pixels is not None:
            entry.pixels = tuple((int(c), int(r)) for c, r in pixels)
            if not entry.pixels:
                raise ValueError(f"Extractor {column} needs at least one pixel")
        elif max_value > min_value:
            warnings.warn(f"Extractor {column} has no pixels; booking only reaches "
                          f"the value it takes at pixel (0, 0)")
        self._extractors[column] = entry
        if pretty_name is not None:
            self._pretty[column] = pretty_name

    def set_pretty_name(self, column: Column, name: str) -> None:
        self._pretty[column] = name

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    def extract_columns(self, columns: Sequence[Column],
                        iq: InterestingQuantities) -> Values:
        record = self._modules.get(iq.source_module)
        return Values((c, self._extract(c, iq, record)) for c in columns)

    def _extract(self, column: Column, iq: InterestingQuantities,
                 record: Optional[Dict[Column, int]]) -> int:
        entry = self._extractors.get(column)
        if entry is not None:
            return entry.fn(iq)
        if record is None:
            return UNDEFINED
        return record.get(column, UNDEFINED)

    def pretty(self, column: Column) -> str:
        return self._pretty.get(column, column)

    def min_value(self, column: Column) -> float:
        if column in self._extractors:
            return self._extractors[column].min_value
        return self._ranges.get(column, (0.0, 0.0))[0]

    def max_value(self, column: Column) -> float:
        if column in self._extractors:
            return self._extractors[column].max_value
        return self._ranges.get(column, (0.0, 0.0))[1]

    def all_modules(self) -> List[InterestingQuantities]:
        """One context per module and extractor pixel, modules in id order."""
        pixels = sorted({p for e in self._extractors.values() for p in e.pixels}) or [(0, 0)]
        return [InterestingQuantities(module, col=col, row=row)
                for module in sorted(self._modules)
                for col, row in pixels]
