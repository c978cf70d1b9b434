"""
Tests for master catalog and selection.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from datetime import datetime

import numpy as np
import pytest

from lightcal.catalog import (
    MasterCatalog,
    same_exposure,
    select_dark,
    select_flat,
    select_masters,
    select_offset,
)
from lightcal.config import MasterKind
from lightcal.errors import NoMatchingMaster


@pytest.fixture
def frame():
    return np.zeros((8, 8), dtype=np.float32)


class TestMasterCatalog:
    """Tests for the catalog container."""

    def test_add_and_of_kind(self, make_master, frame):
        offset = make_master("offset", frame)
        dark = make_master("dark", frame)
        catalog = MasterCatalog([offset, dark])

        assert len(catalog) == 2
        assert catalog.of_kind(MasterKind.OFFSET) == [offset]
        assert catalog.of_kind(MasterKind.FLAT) == []
        assert catalog.summary() == {"offset": 1, "dark": 1, "flat": 0}

    def test_rejects_non_master(self):
        with pytest.raises(TypeError, match="MasterFrame"):
            MasterCatalog().add(np.zeros((4, 4)))


class TestSelectOffset:
    """Tests for offset selection."""

    def test_closest_in_time(self, make_master, make_info, frame):
        early = make_master("offset", frame, "early", timestamp=datetime(2024, 1, 1, 12, 0))
        late = make_master("offset", frame, "late", timestamp=datetime(2024, 1, 1, 21, 0))
        catalog = MasterCatalog([early, late])

        assert select_offset(catalog, make_info()) is late

    def test_any_exposure_accepted(self, make_master, make_info, frame):
        offset = make_master("offset", frame, exposure_s=0.0, temperature_c=25.0)
        assert select_offset(MasterCatalog([offset]), make_info()) is offset

    def test_empty(self, make_info):
        assert select_offset(MasterCatalog(), make_info()) is None


class TestSelectDark:
    """Tests for dark selection and scaling flag."""

    def test_exact_match(self, make_master, make_info, frame):
        dark30 = make_master("dark", frame, "d30", exposure_s=30.0)
        dark60 = make_master("dark", frame, "d60", exposure_s=60.0)
        dark, needs_scaling = select_dark(MasterCatalog([dark30, dark60]), make_info(exposure_s=60.0))

        assert dark is dark60
        assert not needs_scaling

    def test_closest_exposure_needs_scaling(self, make_master, make_info, frame):
        dark30 = make_master("dark", frame, "d30", exposure_s=30.0)
        dark300 = make_master("dark", frame, "d300", exposure_s=300.0)
        dark, needs_scaling = select_dark(MasterCatalog([dark300, dark30]), make_info(exposure_s=60.0))

        assert dark is dark30
        assert needs_scaling

    def test_temperature_mismatch_not_exact(self, make_master, make_info, frame):
        warm = make_master("dark", frame, "warm", exposure_s=60.0, temperature_c=5.0)
        dark, needs_scaling = select_dark(MasterCatalog([warm]), make_info(temperature_c=-10.0))

        # Same exposure, so no scaling even though temperature differs
        assert dark is warm
        assert not needs_scaling

    def test_temperature_breaks_exposure_tie(self, make_master, make_info, frame):
        warm = make_master("dark", frame, "warm", exposure_s=120.0, temperature_c=5.0)
        cold = make_master("dark", frame, "cold", exposure_s=120.0, temperature_c=-9.0)
        dark, _ = select_dark(MasterCatalog([warm, cold]), make_info(temperature_c=-10.0))

        assert dark is cold

    def test_unknown_temperature_ranks_last(self, make_master, make_info, frame):
        unknown = make_master("dark", frame, "unknown", exposure_s=120.0, temperature_c=None)
        close = make_master("dark", frame, "close", exposure_s=120.0, temperature_c=-9.5)
        dark, _ = select_dark(MasterCatalog([unknown, close]), make_info(temperature_c=-10.0))

        assert dark is close

    def test_unknown_temperature_matches(self, make_master, make_info, frame):
        dark60 = make_master("dark", frame, exposure_s=60.0, temperature_c=None)
        dark, needs_scaling = select_dark(MasterCatalog([dark60]), make_info())
        assert dark is dark60
        assert not needs_scaling

    def test_empty(self, make_info):
        assert select_dark(MasterCatalog(), make_info()) == (None, False)

    def test_same_exposure_tolerance(self):
        assert same_exposure(60.0, 60.0005)
        assert not same_exposure(60.0, 60.01)
        assert not same_exposure(None, 60.0)


class TestSelectFlat:
    """Tests for flat selection by filter and binning."""

    def test_filter_case_insensitive(self, make_master, make_info, frame):
        flat = make_master("flat", np.ones((8, 8)), filter_name=" ha ")
        assert select_flat(MasterCatalog([flat]), make_info(filter_name="Ha")) is flat

    def test_filter_mismatch(self, make_master, make_info):
        flat = make_master("flat", np.ones((8, 8)), filter_name="OIII")
        assert select_flat(MasterCatalog([flat]), make_info(filter_name="Ha")) is None

    def test_binning_mismatch(self, make_master, make_info):
        flat = make_master("flat", np.ones((8, 8)), binning=(2, 2))
        assert select_flat(MasterCatalog([flat]), make_info()) is None

    def test_exposure_ignored(self, make_master, make_info):
        flat = make_master("flat", np.ones((8, 8)), exposure_s=0.5)
        assert select_flat(MasterCatalog([flat]), make_info()) is flat


class TestSelectMasters:
    """Tests for full selection."""

    def test_complete_selection(self, make_master, make_info, frame):
        catalog = MasterCatalog([
            make_master("offset", frame),
            make_master("dark", frame, exposure_s=30.0),
            make_master("flat", np.ones((8, 8))),
        ])
        selection = select_masters(make_info(), catalog)

        assert selection.offset is not None
        assert selection.dark is not None
        assert selection.flat is not None
        assert selection.dark_needs_scaling
        assert selection.missing == []
        assert not selection.empty

    def test_missing_recorded_not_raised(self, make_master, make_info, frame):
        catalog = MasterCatalog([make_master("offset", frame)])
        selection = select_masters(make_info(frame_id="l1"), catalog)

        assert selection.missing_kinds() == [MasterKind.DARK, MasterKind.FLAT]
        assert all(isinstance(m, NoMatchingMaster) for m in selection.missing)
        assert selection.missing[0].frame_id == "l1"
        assert selection.get(MasterKind.OFFSET) is catalog.of_kind(MasterKind.OFFSET)[0]

    def test_empty_catalog(self, make_info):
        selection = select_masters(make_info(), MasterCatalog())
        assert selection.empty
        assert len(selection.missing) == 3
