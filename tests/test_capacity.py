"""Unit tests for the capacity estimator."""

import pytest
from qrcode.exceptions import DataOverflowError
from qrcode.util import MODE_ALPHA_NUM, QRData, create_data

from qrgen.capacity import ALPHANUMERIC_CAPACITY, estimate, estimate_version, modules
from qrgen.errors import InvalidFormat
from qrgen.render import ECC_NAMES


@pytest.mark.parametrize("length,ecc,version", [
    (0, "M", 1),
    (20, "M", 1),
    (21, "M", 2),
    (600, "M", 15),
    (601, "M", 16),
    (3391, "M", 40),
    (25, "L", 1),
    (26, "L", 2),
    (10, "H", 1),
    (4296, "L", 40),
    (10_000, "L", 40),
])
def test_estimate_version(length, ecc, version):
    assert estimate_version(length, ecc) == version


@pytest.mark.parametrize("ecc", ["L", "M", "Q", "H"])
def test_version_is_monotone_in_length(ecc):
    versions = [estimate_version(n, ecc) for n in range(0, 5000, 7)]
    assert versions == sorted(versions)


def test_higher_ecc_never_needs_a_smaller_version():
    for n in range(0, 1900, 13):
        assert estimate_version(n, "L") <= estimate_version(n, "M") <= estimate_version(n, "Q") <= estimate_version(n, "H")


def test_tables_cover_forty_versions():
    assert all(len(t) == 40 for t in ALPHANUMERIC_CAPACITY.values())


def test_modules():
    assert modules(1) == 21
    assert modules(2) == 25
    assert modules(40) == 177


@pytest.mark.parametrize("version", [0, 41, -3])
def test_modules_out_of_range(version):
    with pytest.raises(ValueError):
        modules(version)


def test_negative_length():
    with pytest.raises(ValueError):
        estimate_version(-1)


def test_unknown_ecc():
    with pytest.raises(InvalidFormat):
        estimate_version(10, "X")


def test_estimate():
    est = estimate("https://example.com/", "M")
    assert (est.version, est.modules, est.capacity, est.length) == (1, 21, 20, 20)
    assert est.fits
    assert not estimate("a" * 5000, "H").fits


@pytest.mark.parametrize("ecc", ["L", "M", "Q", "H"])
def test_tables_match_the_symbol_library(ecc):
    """Each entry is the largest alphanumeric run qrcode fits into that version."""
    level = ECC_NAMES[ecc].value
    for version, capacity in enumerate(ALPHANUMERIC_CAPACITY[ecc], start=1):
        create_data(version, level, [QRData("A" * capacity, MODE_ALPHA_NUM)])
        with pytest.raises(DataOverflowError):
            create_data(version, level, [QRData("A" * (capacity + 1), MODE_ALPHA_NUM)])
