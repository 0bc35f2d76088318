# dqm_summation/__init__.py
from __future__ import annotations
from .core_types import (
    Column, UNDEFINED, Values, StepStage, StepType, SummationStep,
    SummationError, SpecificationError, BookingError,
)
from .histograms import (
    Axis, Histogram, Cell, EmptyCell, CounterCell, HistogramCell, PersistedCell, Table,
)
from .specification import Specification, SummationSpecification, parse_columns
from .geometry import (
    AttributeProvider, GeometryInterface, InterestingQuantities, NO_MODULE,
)
from .store import DQMStore, HistogramStore, MonitorElement
from .path_naming import PathNamer, SHELL_CODES
from .online import BookingPlan, FastPathCache, describe_online, execute_online
from .harvesting import (
    HarvestReport, REDUCTIONS, execute_extend, execute_group_by, execute_reduce, execute_save,
)
from .config import HistogramManagerConfig
from .manager import HistogramManager, SpecSlot

__all__ = [
    'Column', 'UNDEFINED', 'Values', 'StepStage', 'StepType', 'SummationStep',
    'SummationError', 'SpecificationError', 'BookingError',
    'Axis', 'Histogram', 'Cell', 'EmptyCell', 'CounterCell', 'HistogramCell',
    'PersistedCell', 'Table',
    'Specification', 'SummationSpecification', 'parse_columns',
    'AttributeProvider', 'GeometryInterface', 'InterestingQuantities', 'NO_MODULE',
    'DQMStore', 'HistogramStore', 'MonitorElement',
    'PathNamer', 'SHELL_CODES',
    'BookingPlan', 'FastPathCache', 'describe_online', 'execute_online',
    'HarvestReport', 'REDUCTIONS', 'execute_extend', 'execute_group_by',
    'execute_reduce', 'execute_save',
    'HistogramManagerConfig',
    'HistogramManager', 'SpecSlot',
]
