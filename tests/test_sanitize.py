"""Unit tests for URL sanitising and content checks."""

import pytest

from qrgen.errors import InvalidFormat, LengthExceeded, MissingField, UnsafeContent
from qrgen.sanitize import (
    check_character_encoding,
    find_unsafe_pattern,
    is_private_host,
    is_safe_url,
    parse_legacy_ipv4,
    sanitize_url,
)


@pytest.mark.parametrize("raw,expected", [
    ("example.com", "https://example.com/"),
    ("HTTPS://Example.COM", "https://example.com/"),
    ("http://example.com/Path?q=1#top", "http://example.com/Path?q=1#top"),
    ("example.com:8080/path", "https://example.com:8080/path"),
    ("  https://example.com/a  ", "https://example.com/a"),
])
def test_normalisation(raw, expected):
    assert sanitize_url(raw) == expected


@pytest.mark.parametrize("raw", [
    "javascript:alert(1)",
    "JaVaScRiPt:alert(1)",
    "data:text/html,<b>hi</b>",
    "vbscript:msgbox",
    "file:///etc/passwd",
    "https://example.com/?q=<script>alert(1)</script>",
    "https://example.com/#onerror=alert(1)",
    "https://example.com/?next=javascript%3Aalert(1)",
    "ftp://example.com/file",
])
def test_unsafe_urls(raw):
    with pytest.raises(UnsafeContent):
        sanitize_url(raw)


@pytest.mark.parametrize("raw", [
    "http://localhost:8080",
    "localhost:3000",
    "http://127.0.0.1/admin",
    "http://10.0.0.5",
    "http://192.168.1.1",
    "http://172.16.0.1",
    "http://172.31.255.255",
    "http://169.254.169.254/latest/meta-data",
    "http://[::1]/",
    "http://0.0.0.0",
])
def test_private_hosts(raw):
    with pytest.raises(UnsafeContent):
        sanitize_url(raw)


def test_public_neighbour_of_private_range():
    assert sanitize_url("http://172.32.0.1") == "http://172.32.0.1/"


def test_empty_is_missing():
    with pytest.raises(MissingField):
        sanitize_url("   ")


def test_whitespace_inside_is_invalid():
    with pytest.raises(InvalidFormat):
        sanitize_url("https://exa mple.com")


def test_bad_port_is_invalid():
    with pytest.raises(InvalidFormat):
        sanitize_url("https://example.com:99999/")


def test_length_limit():
    with pytest.raises(LengthExceeded):
        sanitize_url("https://example.com/" + "a" * 3000)


def test_is_safe_url():
    assert is_safe_url("example.com")
    assert not is_safe_url("javascript:alert(1)")
    assert not is_safe_url("http://localhost")


def test_find_unsafe_pattern_ignores_words_containing_on():
    """Query keys such as 'version=' are not event handlers."""
    assert find_unsafe_pattern("https://example.com/?version=2&session=1") is None


def test_is_private_host():
    assert is_private_host("LOCALHOST")
    assert is_private_host("127.1")
    assert not is_private_host("example.com")


@pytest.mark.parametrize("host", [
    "2130706433",
    "0x7f000001",
    "0X7F000001",
    "0177.0.0.1",
    "0x7f.1",
    "10.1",
    "167772161",
    "0xa9fea9fe",
    "0",
])
def test_numeric_host_forms_are_private(host):
    assert is_private_host(host)
    with pytest.raises(UnsafeContent):
        sanitize_url(f"http://{host}/logo.png")


def test_parse_legacy_ipv4():
    assert str(parse_legacy_ipv4("2130706433")) == "127.0.0.1"
    assert str(parse_legacy_ipv4("0x7f.1")) == "127.0.0.1"
    assert str(parse_legacy_ipv4("134744072")) == "8.8.8.8"
    assert parse_legacy_ipv4("example.com") is None
    assert parse_legacy_ipv4("4294967296") is None
    assert parse_legacy_ipv4("08.1.1.1") is None


def test_public_numeric_host_is_allowed():
    assert not is_private_host("134744072")
    assert sanitize_url("http://134744072/") == "http://134744072/"


def test_character_encoding():
    assert check_character_encoding("héllo").encoding == "ISO-8859-1"
    assert check_character_encoding("日本").encoding == "UTF-8"
    check = check_character_encoding("bell\x07")
    assert not check.is_valid and check.errors
    assert check_character_encoding("line1\r\nline2\tx").is_valid
