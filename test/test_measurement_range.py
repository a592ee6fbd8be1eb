import numpy as np
import pytest

from thorpm.hw.drivers.thorlabsvisa import (
    MeasurementRange as MR,
    convert_scpi_inf,
    decrement_range,
    increment_range,
    parse_scpi_float,
)

INCREMENT_TABLE = {
    MR.UNKNOWN: MR.UNKNOWN,
    MR.RANGE_OVERFLOW: MR.RANGE_OVERFLOW,
    MR.RANGE_03: MR.RANGE_03,
    MR.RANGE_04: MR.RANGE_03,
    MR.RANGE_05: MR.RANGE_04,
    MR.RANGE_06: MR.RANGE_05,
    MR.RANGE_07: MR.RANGE_06,
    MR.RANGE_08: MR.RANGE_07,
}

DECREMENT_TABLE = {
    MR.UNKNOWN: MR.UNKNOWN,
    MR.RANGE_OVERFLOW: MR.RANGE_OVERFLOW,
    MR.RANGE_03: MR.RANGE_04,
    MR.RANGE_04: MR.RANGE_05,
    MR.RANGE_05: MR.RANGE_06,
    MR.RANGE_06: MR.RANGE_07,
    MR.RANGE_07: MR.RANGE_08,
    MR.RANGE_08: MR.RANGE_08,
}


@pytest.mark.parametrize("start, expected", INCREMENT_TABLE.items())
def test_increment(start, expected):
    assert start.increment() is expected
    assert increment_range(start) is expected


@pytest.mark.parametrize("start, expected", DECREMENT_TABLE.items())
def test_decrement(start, expected):
    assert start.decrement() is expected
    assert decrement_range(start) is expected


@pytest.mark.parametrize("bogus", [None, 3, "RANGE_04"])
def test_unrecognized_input_collapses_to_unknown(bogus):
    assert increment_range(bogus) is MR.UNKNOWN
    assert decrement_range(bogus) is MR.UNKNOWN


def test_increment_undoes_decrement_inside_the_ladder():
    for r in [MR.RANGE_03, MR.RANGE_04, MR.RANGE_05, MR.RANGE_06, MR.RANGE_07]:
        assert r.decrement().increment() is r
    for r in [MR.RANGE_04, MR.RANGE_05, MR.RANGE_06, MR.RANGE_07, MR.RANGE_08]:
        assert r.increment().decrement() is r


@pytest.mark.parametrize("current, expected", [
    (6e-3, MR.RANGE_OVERFLOW),
    (-6e-3, MR.RANGE_OVERFLOW),
    (5.5e-4 * 1.001, MR.RANGE_03),
    (5.5e-4, MR.RANGE_04),
    (1e-5, MR.RANGE_05),
    (-1e-5, MR.RANGE_05),
    (5.5e-6, MR.RANGE_06),
    (1e-7, MR.RANGE_07),
    (5.5e-8, MR.RANGE_08),
    (0.0, MR.RANGE_08),
    (np.nan, MR.UNKNOWN),
])
def test_estimate(current, expected):
    assert MR.estimate(current) is expected


def test_upper_currents():
    assert MR.RANGE_03.upper_current == 5.5e-3
    assert MR.RANGE_08.upper_current == 5.5e-8
    assert MR.RANGE_OVERFLOW.upper_current == np.inf
    assert np.isnan(MR.UNKNOWN.upper_current)
    # the upper bound of a range classifies into that same range
    for r in [MR.RANGE_03, MR.RANGE_04, MR.RANGE_05, MR.RANGE_06, MR.RANGE_07, MR.RANGE_08]:
        assert MR.estimate(r.upper_current) is r


def test_scpi_sentinels():
    assert convert_scpi_inf(9.9e37) == np.inf
    assert convert_scpi_inf(-9.9e37) == -np.inf
    assert np.isnan(convert_scpi_inf(9.91e37))
    assert convert_scpi_inf(1.23e-6) == 1.23e-6
    # only the exact marker values are mapped
    assert convert_scpi_inf(9.8e37) == 9.8e37


def test_parse_scpi_float():
    assert parse_scpi_float("1.000000E-05") == 1e-5
    assert parse_scpi_float(" 6.330000E+02") == 633.0
    assert np.isnan(parse_scpi_float(""))
    assert np.isnan(parse_scpi_float("garbage"))
    assert np.isnan(parse_scpi_float(None))
