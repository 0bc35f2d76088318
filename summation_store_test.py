"""
Summation Engine: Paths, Store and Attribute Provider Tests
===========================================================
"""

import pytest
import polars as pl
from hypothesis import given, strategies as st

from dqm_summation import (
    AttributeProvider, DQMStore, GeometryInterface, Histogram, HistogramStore,
    InterestingQuantities, PathNamer, UNDEFINED, Values,
)

pytestmark = pytest.mark.summation


def identity(column):
    return column


# ============================================================================
# Folder paths
# ============================================================================

class TestPathNamer:

    @pytest.fixture
    def namer(self):
        return PathNamer("PixelPhase1", identity)

    def test_zero_value_hidden(self, namer):
        key = Values([("PXBarrel", 0), ("PXLayer", 1), ("PXLadder", 12)])
        assert namer(key) == "PixelPhase1/PXBarrel/PXLayer_1/PXLadder_12/"

    def test_signed_disk(self, namer):
        assert namer(Values([("PXForward", 0), ("PXDisk", 2)])) == "PixelPhase1/PXForward/PXDisk_+2/"
        assert namer(Values([("PXForward", 0), ("PXDisk", -3)])) == "PixelPhase1/PXForward/PXDisk_-3/"

    def test_shell_codes(self, namer):
        assert namer.segment("HalfCylinder", 11) == "HalfCylinder_mI"
        assert namer.segment("Shell", 22) == "Shell_pO"
        assert namer.segment("Shell", 5) == "Shell"

    def test_undefined_spelled_out(self, namer):
        assert namer.segment("PXLayer", UNDEFINED) == "PXLayer_UNDEFINED"
        assert namer.segment("Shell", UNDEFINED) == "Shell_UNDEFINED"

    def test_nameless_columns_skipped(self):
        namer = PathNamer("Top", lambda c: "" if c == "ROC" else c)
        assert namer(Values([("PXLayer", 1), ("ROC", 3)])) == "Top/PXLayer_1/"

    def test_empty_key(self, namer):
        assert namer(Values()) == "PixelPhase1/"

    def test_pretty_names_from_provider(self, module_table):
        geo = GeometryInterface(pretty_names={"PXLayer": "Layer"})
        geo.load(module_table)
        namer = PathNamer("Top", geo.pretty)
        assert namer(Values([("PXLayer", 2)])) == "Top/Layer_2/"

    @given(st.lists(st.integers(-4, 4) | st.just(UNDEFINED), min_size=3, max_size=3),
           st.lists(st.integers(-4, 4) | st.just(UNDEFINED), min_size=3, max_size=3))
    def test_property_paths_identify_keys(self, a, b):
        namer = PathNamer("Top", identity)
        columns = ("PXLayer", "PXLadder", "PXDisk")
        key_a, key_b = Values(zip(columns, a)), Values(zip(columns, b))
        assert namer(key_a) == namer(Values(zip(columns, a)))
        assert (namer(key_a) == namer(key_b)) == (key_a == key_b)


# ============================================================================
# Store
# ============================================================================

class TestDQMStore:

    def test_booking_under_current_folder(self, store):
        store.set_current_folder("A/B")
        element = store.book1d("h", "T;x;y", 3, 0, 3)
        assert element.path == "A/B/h"
        assert store.get("A/B/h") is element
        assert store.current_folder == "A/B/"

    def test_rebooking_returns_existing(self, store):
        store.set_current_folder("A/")
        first = store.book1d("h", "", 3, 0, 3)
        first.histogram.fill(1.0)
        assert store.book1d("h", "", 3, 0, 3) is first
        assert len(store) == 1

    def test_axis_titles(self, store):
        one = store.book1d("h", "T", 3, 0, 3)
        one.set_axis_title("x")
        one.set_axis_title("count", 2)
        assert one.histogram.full_title == "T;x;count"
        two = store.book2d("g", "T", 2, 0, 2, 2, 0, 2)
        two.set_axis_title("row", 2)
        assert two.histogram.y_axis.title == "row"

    def test_frame_has_one_row_per_bin(self, store):
        store.book1d("h", "", 3, 0, 3)
        store.book2d("g", "", 2, 0, 2, 4, 0, 4)
        frame = store.to_frame()
        assert frame.height == 5 + 4 * 6
        assert set(frame['path'].unique().to_list()) == {"h", "g"}

    def test_parquet_round_trip(self, store, tmp_path):
        store.set_current_folder("Top/Layer_1")
        one = store.book1d("adc", "ADC;adc;#digis", 4, 0, 4)
        for x in (-1.0, 0.5, 2.5, 2.5, 9.0):
            one.histogram.fill(x)
        two = store.book2d("hits", "Hits;col;row", 2, 0, 2, 3, 0, 3)
        two.histogram.fill(1.5, 2.5)

        reloaded = DQMStore.read_parquet(store.write_parquet(tmp_path / "dqm.parquet"))
        assert reloaded.paths() == store.paths()
        for path in store.paths():
            a, b = store.get(path).histogram, reloaded.get(path).histogram
            assert b.contents.tolist() == a.contents.tolist()
            assert b.entries == a.entries
            assert b.full_title == a.full_title
            assert b.same_binning(a)

    def test_empty_store_round_trip(self, tmp_path):
        file = DQMStore().write_parquet(tmp_path / "empty.parquet")
        assert len(DQMStore.read_parquet(file)) == 0

    def test_satisfies_protocol(self, store):
        assert isinstance(store, HistogramStore)


# ============================================================================
# Attribute provider
# ============================================================================

class TestGeometryInterface:

    def test_extracts_module_attributes(self, geometry):
        key = geometry.extract_columns(("PXBarrel", "PXLayer", "PXLadder"),
                                       InterestingQuantities(103))
        assert list(key) == [("PXBarrel", 0), ("PXLayer", 2), ("PXLadder", 1)]

    def test_missing_attributes_are_undefined(self, geometry):
        key = geometry.extract_columns(("PXLayer", "PXDisk", "Nope"), InterestingQuantities(201))
        assert list(key) == [("PXLayer", UNDEFINED), ("PXDisk", -1), ("Nope", UNDEFINED)]
        unknown = geometry.extract_columns(("PXLayer",), InterestingQuantities(999))
        assert unknown.get("PXLayer") == UNDEFINED

    def test_extractors_see_sample_context(self, geometry):
        key = geometry.extract_columns(("ROC",), InterestingQuantities(101, col=37))
        assert key.get("ROC") == 3
        assert geometry.min_value("ROC") == 0
        assert geometry.max_value("ROC") == 3

    def test_ranges_ignore_undefined(self, geometry):
        assert (geometry.min_value("PXDisk"), geometry.max_value("PXDisk")) == (-1, 1)
        assert (geometry.min_value("PXLayer"), geometry.max_value("PXLayer")) == (1, 2)

    def test_all_modules_sorted(self, geometry):
        modules = [iq.source_module for iq in geometry.all_modules()]
        assert modules == sorted(modules)
        assert sorted(set(modules)) == [101, 102, 103, 104, 201, 202]

    def test_all_modules_visit_extractor_pixels(self, geometry):
        contexts = [iq for iq in geometry.all_modules() if iq.source_module == 101]
        assert [(iq.col, iq.row) for iq in contexts] == [(0, 0), (10, 0), (20, 0), (30, 0)]
        rocs = {geometry.extract_columns(("ROC",), iq).get("ROC") for iq in contexts}
        assert rocs == {0, 1, 2, 3}

    def test_extractor_without_pixels_warns(self, module_table):
        geo = GeometryInterface()
        with pytest.warns(UserWarning, match="no pixels"):
            geo.add_extractor("ROC", lambda iq: iq.col // 10, 0, 3)
        geo.load(module_table)
        assert len(geo.all_modules()) == 6
        with pytest.raises(ValueError):
            geo.add_extractor("ROC", lambda iq: 0, 0, 3, pixels=[])

    def test_load_from_csv(self, module_table, tmp_path):
        path = tmp_path / "modules.csv"
        module_table.write_csv(path)
        geo = GeometryInterface()
        geo.load(path)
        assert geo.loaded()
        key = geo.extract_columns(("PXForward", "PXDisk"), InterestingQuantities(202))
        assert list(key) == [("PXForward", 0), ("PXDisk", 1)]

    def test_reserved_module_id_skipped(self):
        geo = GeometryInterface()
        with pytest.warns(UserWarning, match="reserved"):
            geo.load(pl.DataFrame({'module': [0, 5], 'PXLayer': [1, 2]}))
        assert [iq.source_module for iq in geo.all_modules()] == [5]

    def test_module_column_required(self):
        with pytest.raises(ValueError):
            GeometryInterface().load(pl.DataFrame({'PXLayer': [1]}))

    def test_stable_identity(self):
        assert InterestingQuantities(101).has_stable_identity
        assert not InterestingQuantities(0).has_stable_identity
        assert not InterestingQuantities(None).has_stable_identity

    def test_satisfies_protocol(self, geometry):
        assert isinstance(geometry, AttributeProvider)


# ============================================================================
# Histogram identity helpers
# ============================================================================

def test_full_title_of_2d():
    h = Histogram.book2d("h", "T;x;y", 1, 0, 1, 1, 0, 1)
    assert h.full_title == "T;x;y"
