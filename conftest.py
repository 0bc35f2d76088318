import pytest
import polars as pl
from hypothesis import settings

from dqm_summation import (
    DQMStore, GeometryInterface, HistogramManager, HistogramManagerConfig, UNDEFINED,
)

# Hypothesis profiles
settings.register_profile("ci", max_examples=50, deadline=None)
settings.register_profile("dev", max_examples=10)
settings.register_profile("debug", max_examples=1)
settings.load_profile("ci")

BARREL_MODULES = (101, 102, 103, 104)
FORWARD_MODULES = (201, 202)

# ============================================================================
# Geometry fixtures
# ============================================================================

@pytest.fixture
def module_table():
    """
    Small pixel detector: two barrel layers with two ladders each, and two
    forward disks. Attributes a module does not have are null.
    """
    return pl.DataFrame({
        'module':       [101, 102, 103, 104, 201, 202],
        'PXModuleName': [101, 102, 103, 104, 201, 202],
        'PXBarrel':     [0, 0, 0, 0, None, None],
        'PXLayer':      [1, 1, 2, 2, None, None],
        'PXLadder':     [1, 2, 1, 2, None, None],
        'PXForward':    [None, None, None, None, 0, 0],
        'PXDisk':       [None, None, None, None, -1, 1],
    })


def roc_of(iq):
    """Readout chip from the pixel column, 10 columns per chip."""
    if not iq.source_module:
        return UNDEFINED
    return iq.col // 10


@pytest.fixture
def geometry(module_table):
    """Loaded attribute provider with a per-pixel ROC column."""
    geo = GeometryInterface()
    geo.add_extractor("ROC", roc_of, 0, 3, pixels=[(10 * roc, 0) for roc in range(4)])
    geo.load(module_table)
    return geo


@pytest.fixture
def store():
    return DQMStore()


# ============================================================================
# Manager fixtures
# ============================================================================

@pytest.fixture
def make_config():
    """Factory for configs measuring a 1D 'adc' quantity on 10 unit bins."""
    def _make(*specs, **overrides):
        params = dict(
            name="adc", title="ADC", xlabel="adc readout", ylabel="#digis",
            top_folder_name="PixelPhase1/Digis",
            dimensions=1, range_nbins=10, range_min=0.0, range_max=10.0,
            range_y_nbins=4, range_y_min=0.0, range_y_max=4.0,
            book_undefined=False,
        )
        params.update(overrides)
        return HistogramManagerConfig(specs=specs, **params)
    return _make


@pytest.fixture
def make_manager(make_config, geometry, store):
    """Factory for managers booked into the shared ``store`` fixture."""
    def _make(*specs, book=True, **overrides):
        manager = HistogramManager(make_config(*specs, **overrides), geometry)
        if book:
            manager.book(store)
        return manager
    return _make
