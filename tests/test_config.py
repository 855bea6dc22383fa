"""Unit tests for environment-driven settings."""

import pytest

from qrgen.config import Settings


def test_defaults():
    s = Settings.from_env({})
    assert s.base_url == "http://localhost:3000"
    assert s.short_code_length == 8
    assert s.max_allocation_attempts == 10
    assert s.generation_budget_ms == 500.0
    assert (s.batch_max_concurrency, s.batch_timeout) == (10, 30.0)
    assert s.store_path is None


def test_overrides():
    s = Settings.from_env({
        "QRGEN_BASE_URL": "https://qr.example.com/",
        "QRGEN_BATCH_TIMEOUT": "12.5",
        "QRGEN_CACHE_MAX_ENTRIES": "64",
        "QRGEN_STORE_PATH": "/tmp/codes.json",
        "QRGEN_LOG_LEVEL": "",
    })
    assert s.public_base_url == "https://qr.example.com"
    assert s.batch_timeout == 12.5
    assert s.cache_max_entries == 64
    assert s.store_path == "/tmp/codes.json"
    assert s.log_level == "INFO"


def test_invalid_number_names_the_variable():
    with pytest.raises(ValueError, match="QRGEN_SHORT_CODE_LENGTH"):
        Settings.from_env({"QRGEN_SHORT_CODE_LENGTH": "eight"})


@pytest.mark.parametrize("env", [
    {"QRGEN_BATCH_MAX_CONCURRENCY": "0"},
    {"QRGEN_BATCH_TIMEOUT": "-1"},
    {"QRGEN_SHORT_CODE_LENGTH": "2"},
])
def test_out_of_range_values(env):
    with pytest.raises(ValueError):
        Settings.from_env(env)
