"""
Summation Engine: Core Types
============================

Shared vocabulary of the summation engine:

- Column identifiers and the UNDEFINED sentinel
- Values: the immutable, hashable grouping key
- StepStage / StepType: closed set of pipeline stages and operations
- SummationStep: one declarative operation of a specification
- Exceptions raised for configuration and booking bugs
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterable, Iterator, Optional, Tuple

# ==============================================================================
# COLUMNS
# ==============================================================================

Column = str

UNDEFINED = 999999999


# ==============================================================================
# KEY TYPE
# ==============================================================================

class Values:
    """
    Ordered column -> value mapping used as the grouping key of a table.

    Keys are compared and hashed on every fill, so the instance is immutable,
    slot-based and caches its hash. Equality ignores column order; iteration
    keeps it, since folder paths are derived from it.
    """

    __slots__ = ('_items', '_lookup', '_hash')

    def __init__(self, items: Iterable[Tuple[Column, int]] = ()):
        self._items: Tuple[Tuple[Column, int], ...] = tuple(items)
        self._lookup = dict(self._items)
        if len(self._lookup) != len(self._items):
            raise ValueError(f"Duplicate column in key: {self._items}")
        self._hash = hash(frozenset(self._items))

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Values):
            return NotImplemented
        return self._hash == other._hash and self._lookup == other._lookup

    def __iter__(self) -> Iterator[Tuple[Column, int]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, column: object) -> bool:
        return column in self._lookup

    def __repr__(self) -> str:
        inner = ', '.join(f"{c}={v}" for c, v in self._items)
        return f"Values({inner})"

    @property
    def columns(self) -> Tuple[Column, ...]:
        return tuple(c for c, _ in self._items)

    def get(self, column: Column) -> int:
        """Value of ``column``, UNDEFINED when the key does not carry it."""
        return self._lookup.get(column, UNDEFINED)

    def erase(self, column: Column) -> Values:
        if column not in self._lookup:
            return self
        return Values((c, v) for c, v in self._items if c != column)

    def project(self, columns: Iterable[Column]) -> Values:
        """New key with exactly ``columns``, in that order."""
        return Values((c, self.get(c)) for c in columns)

    def has_undefined(self) -> bool:
        return any(v == UNDEFINED for _, v in self._items)

    def sort_key(self) -> Tuple[Tuple[Column, int], ...]:
        return self._items


# ==============================================================================
# STEP ENUMERATIONS
# ==============================================================================

class StepStage(Enum):
    """When a step runs."""
    FIRST = auto()           # key column selection, never executed
    ONLINE = auto()          # per sample, inside fill()
    ONLINE_HARVEST = auto()  # per event, counters -> histograms
    OFFLINE = auto()         # once, after all samples


class StepType(Enum):
    """Closed set of pipeline operations."""
    NO_TYPE = auto()
    GROUPBY = auto()
    EXTEND_X = auto()
    EXTEND_Y = auto()
    COUNT = auto()
    REDUCE = auto()
    SAVE = auto()
    CUSTOM = auto()


@dataclass(frozen=True)
class SummationStep:
    """One operation of a specification."""
    stage: StepStage
    type: StepType
    columns: Tuple[Column, ...] = field(default_factory=tuple)
    arg: str = ""

    def __post_init__(self):
        columns = self.columns
        if isinstance(columns, str):
            columns = [c for c in columns.split('/') if c]
        if not isinstance(columns, tuple):
            object.__setattr__(self, 'columns', tuple(columns))

    def describe(self) -> str:
        cols = '/'.join(self.columns)
        text = f"{self.stage.name}:{self.type.name}({cols})"
        if self.arg:
            text += f"[{self.arg}]"
        return text


# ==============================================================================
# EXCEPTIONS
# ==============================================================================

class SummationError(Exception):
    """Base class for summation engine errors."""


class SpecificationError(SummationError):
    """Illegal step for its stage, or an inconsistent step sequence."""

    def __init__(self, message: str, step: Optional[SummationStep] = None):
        super().__init__(message)
        self.step = step


class BookingError(SummationError):
    """Booking and filling disagree about which histograms exist."""

    def __init__(self, message: str, key: Optional[Values] = None):
        super().__init__(message)
        self.key = key
