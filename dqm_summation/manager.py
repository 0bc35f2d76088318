"""
Summation Engine: Histogram Manager
===================================

Entry point of the engine. One manager measures one quantity; it owns one
table per specification and drives the three phases:

1. book():                       pre-register every reachable histogram
2. fill() / execute_per_event_harvesting(): online, once per sample / event
3. execute_harvesting_offline(): reload from the store and run offline steps

Usage:
    manager = HistogramManager(config, geometry)
    manager.book(store, module_table)
    for event in events:
        for digi in event.digis:
            manager.fill(digi.adc, source_module=digi.module, source_event=event,
                         col=digi.col, row=digi.row)
        manager.execute_per_event_harvesting()
    reports = manager.execute_harvesting_offline(store)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set, Tuple
import warnings

from .config import HistogramManagerConfig
from .core_types import BookingError, SpecificationError, StepStage, StepType, SummationStep, Values
from .geometry import AttributeProvider, InterestingQuantities, NO_MODULE, has_stable_identity
from .harvesting import (
    HarvestReport, execute_extend, execute_group_by, execute_reduce, execute_save,
    harvest_monitor
)
from .histograms import PersistedCell, Table
from .online import FastPathCache, describe_online, execute_online
from .path_naming import PathNamer
from .specification import SummationSpecification
from .store import HistogramStore

CustomHandler = Callable[[SummationStep, Table], None]


@dataclass
class SpecSlot:
    """A specification with the mutable state it drives."""
    spec: SummationSpecification
    table: Table = field(default_factory=Table)
    significant_values: Values = field(default_factory=Values)
    fastpath: FastPathCache = field(default_factory=FastPathCache)


class HistogramManager:
    """Staged aggregation of one measured quantity over all specifications."""

    def __init__(self, config: HistogramManagerConfig, geometry_interface: AttributeProvider,
                 custom_handler: Optional[CustomHandler] = None):
        self.config = config
        self.geometry_interface = geometry_interface
        self.custom_handler = custom_handler
        self.path_namer = PathNamer(config.top_folder_name, geometry_interface.pretty)
        self._slots: List[SpecSlot] = []
        self._iq: Optional[InterestingQuantities] = None
        for spec in config.enabled_specs():
            self.add_spec(spec)

    def __repr__(self) -> str:
        return f"HistogramManager({self.config.name!r}, specs={len(self._slots)})"

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def slots(self) -> Tuple[SpecSlot, ...]:
        return tuple(self._slots)

    @property
    def tables(self) -> Tuple[Table, ...]:
        return tuple(s.table for s in self._slots)

    def add_spec(self, spec: SummationSpecification) -> SpecSlot:
        slot = SpecSlot(spec)
        self._slots.append(slot)
        return slot

    def ensure_loaded(self, setup: Any = None) -> None:
        if not self.geometry_interface.loaded():
            if setup is None:
                raise RuntimeError("Attribute provider is not loaded and no setup was given")
            self.geometry_interface.load(setup)

    def make_path(self, key: Values) -> str:
        return self.path_namer.make_path(key)

    # ==========================================================================
    # ONLINE
    # ==========================================================================

    def fill(self, *coords: float, source_module: Optional[int] = NO_MODULE,
             source_event: Any = None, col: int = 0, row: int = 0) -> None:
        """
        Account one sample with 0, 1 or 2 coordinates, matching the
        configured dimensionality.

        Consecutive samples with the same module, event, col and row reuse the
        keys and cells found for the previous one.
        """
        assert len(coords) == self.config.dimensions, (
            f"{self.config.name} is {self.config.dimensions}D, got {len(coords)} coordinates")
        if not self.config.enabled:
            return
        x = coords[0] if coords else 0.0
        y = coords[1] if len(coords) > 1 else 0.0

        last = self._iq
        cached = (last is not None
                  and has_stable_identity(source_module)
                  and col == last.col and row == last.row
                  and source_module == last.source_module
                  and source_event is last.source_event)
        if not cached:
            self._iq = InterestingQuantities(source_module, source_event, col, row)

        for slot in self._slots:
            if not cached:
                slot.significant_values = self.geometry_interface.extract_columns(
                    slot.spec.key_columns, self._iq)
                slot.fastpath.invalidate()
            execute_online(slot.spec, slot.table, slot.significant_values,
                           StepStage.ONLINE, slot.fastpath, x, y,
                           self.config.dimensions, self.config.book_undefined)

    def execute_per_event_harvesting(self) -> None:
        """Turn this event's counters into histogram fills and reset them."""
        if not self.config.enabled:
            return
        for slot in self._slots:
            if not slot.spec.steps_in(StepStage.ONLINE_HARVEST):
                continue
            for key, counter in slot.table.counters():
                cache = FastPathCache()
                cache.set(key, counter)
                execute_online(slot.spec, slot.table, key, StepStage.ONLINE_HARVEST, cache,
                               dimensions=self.config.dimensions,
                               book_undefined=self.config.book_undefined)

    # ==========================================================================
    # BOOKING
    # ==========================================================================

    def book(self, store: HistogramStore, setup: Any = None) -> int:
        """Book every histogram reachable from the provider's modules. Returns the number booked."""
        self.ensure_loaded(setup)
        if not self.config.enabled:
            return 0

        booked = 0
        for slot in self._slots:
            for iq in self.geometry_interface.all_modules():
                key = self.geometry_interface.extract_columns(slot.spec.key_columns, iq)
                if not self.config.book_undefined and key.has_undefined():
                    continue
                plan = describe_online(slot.spec, key, self.config, self.geometry_interface)
                for counter_key in plan.counter_keys:
                    slot.table.counter(counter_key)

                existing = slot.table.find(plan.key)
                if existing is not None and existing.has_histogram:
                    continue
                store.set_current_folder(self.make_path(plan.key))
                if plan.dimensions == 2:
                    element = store.book2d(plan.name, plan.booking_title,
                                           plan.x_nbins, plan.x_min, plan.x_max,
                                           plan.y_nbins, plan.y_min, plan.y_max)
                else:
                    element = store.book1d(plan.name, plan.booking_title,
                                           plan.x_nbins, plan.x_min, plan.x_max)
                slot.table[plan.key] = PersistedCell(element)
                booked += 1

            empty = slot.table.empty_keys()
            if empty and self.config.book_undefined:
                raise BookingError(f"Booking left {len(empty)} empty cells, e.g. {empty[0]}",
                                   key=empty[0])

        if self.config.debug:
            print(f"📊 {self.config.name}: booked {booked} histograms "
                  f"for {len(self._slots)} specifications")
        return booked

    # ==========================================================================
    # HARVESTING
    # ==========================================================================

    def execute_harvesting_online(self, setup: Any = None) -> None:
        """Online harvesting has nothing to do beyond having the provider ready."""
        if not self.config.enabled:
            return
        self.ensure_loaded(setup)

    def load_from_store(self, slot: SpecSlot, store: HistogramStore) -> Tuple[int, int]:
        """
        Rebuild ``slot.table`` from the store by recomputing booked names.
        Returns (found, missing) counts of distinct paths.
        """
        table = Table()
        found: Set[str] = set()
        missing: Set[str] = set()
        for iq in self.geometry_interface.all_modules():
            key = self.geometry_interface.extract_columns(slot.spec.key_columns, iq)
            # never booked, so never missing
            if not self.config.book_undefined and key.has_undefined():
                continue
            plan = describe_online(slot.spec, key, self.config, self.geometry_interface)
            path = self.make_path(plan.key) + plan.name
            if path in found or path in missing:
                continue
            element = store.get(path)
            if element is None:
                missing.add(path)
                # without strict booking gaps are expected
                if self.config.book_undefined:
                    warnings.warn(f"ME {path} not found")
                continue
            found.add(path)
            table[plan.key] = PersistedCell(element)
        slot.table.swap(table)
        slot.fastpath.invalidate()
        return len(found), len(missing)

    def execute_offline_step(self, step: SummationStep, table: Table,
                             store: HistogramStore) -> None:
        kind = step.type
        if kind is StepType.SAVE:
            execute_save(table, store, self.make_path, self.config.book_undefined)
        elif kind is StepType.GROUPBY:
            execute_group_by(step, table)
        elif kind is StepType.REDUCE:
            execute_reduce(step, table)
        elif kind is StepType.EXTEND_X:
            execute_extend(step, table, True, self.geometry_interface.pretty)
        elif kind is StepType.EXTEND_Y:
            execute_extend(step, table, False, self.geometry_interface.pretty)
        elif kind is StepType.CUSTOM:
            if self.custom_handler is not None:
                self.custom_handler(step, table)
        else:
            raise SpecificationError(f"{kind.name} not supported in harvesting", step)

    def execute_harvesting_offline(self, store: HistogramStore,
                                   setup: Any = None) -> List[HarvestReport]:
        """Reload every specification's table and run its offline steps."""
        self.ensure_loaded(setup)
        if not self.config.enabled:
            return []

        if self.config.debug:
            for slot in self._slots:
                print(f"🔎 Specs for {self.config.name}:\n"
                      f"{slot.spec.dump(self.geometry_interface.pretty)}")

        reports = []
        for index, slot in enumerate(self._slots):
            report = HarvestReport(spec_index=index, loaded=0, missing=0)
            with harvest_monitor(report):
                report.loaded, report.missing = self.load_from_store(slot, store)
                for _, step in slot.spec.steps_in(StepStage.OFFLINE):
                    self.execute_offline_step(step, slot.table, store)
                    report.steps_run += 1
                report.final_entries = len(slot.table)
            if self.config.debug:
                print(f"   spec {index}: {report.loaded} loaded, {report.missing} missing, "
                      f"{report.final_entries} final entries in {report.execution_time:.3f}s")
            reports.append(report)
        return reports
