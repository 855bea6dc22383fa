"""URL sanitizer and content checks applied before anything is encoded."""

import ipaddress
import re
from dataclasses import dataclass, field
from urllib.parse import unquote, urlsplit, urlunsplit

from qrgen.errors import InvalidFormat, LengthExceeded, MissingField, UnsafeContent
from qrgen.logging import audit, get_logger

log = get_logger("sanitize")

MAX_URL_LENGTH = 2953
ALLOWED_SCHEMES = ("http", "https")

_SCHEME = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):(?!\d)")
_UNSAFE_SCHEME = re.compile(r"(?<![a-z0-9])(javascript|data|vbscript|file)\s*:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(
    r"(?<![a-z0-9])on(load|error|click|dblclick|mouse[a-z]*|key[a-z]*|focus|blur|change|"
    r"submit|input|abort|unload|resize|scroll|toggle|animation[a-z]*|pointer[a-z]*|touch[a-z]*)\s*=",
    re.IGNORECASE,
)
_SCRIPT_TAG = re.compile(r"<\s*/?\s*script", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s")
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

# One dotted part of a resolver-style IPv4 host: decimal, 0x-hex or 0-octal
_IPV4_PART = re.compile(r"^(?:0x[0-9a-f]+|[0-9]+)$")


def _unsafe(reason: str, value: str):
    audit("sanitize.rejected", logger=log, reason=reason, value=value[:80])
    raise UnsafeContent(reason)


def find_unsafe_pattern(value: str) -> str | None:
    """Return a description of the first injection pattern in ``value``, if any.

    The value is checked both raw and percent-decoded.
    """
    for probe in (value, unquote(value)):
        m = _UNSAFE_SCHEME.search(probe)
        if m:
            return f"{m.group(1).lower()}: protocol is not allowed"
        m = _EVENT_HANDLER.search(probe)
        if m:
            return f"event handler on{m.group(1).lower()}= is not allowed"
        if _SCRIPT_TAG.search(probe):
            return "script tags are not allowed"
    return None


def parse_legacy_ipv4(host: str) -> ipaddress.IPv4Address | None:
    """Read the IPv4 forms resolvers accept beyond dotted quads.

    ``2130706433``, ``0x7f000001``, ``0177.0.0.1`` and ``127.1`` all mean
    127.0.0.1. Returns None when ``host`` is not a numeric address.
    """
    parts = host.lower().split(".")
    if parts[-1] == "":
        parts.pop()
    if not 1 <= len(parts) <= 4 or not all(_IPV4_PART.match(p) for p in parts):
        return None
    values = []
    for part in parts:
        try:
            if part.startswith("0x"):
                values.append(int(part, 16))
            elif len(part) > 1 and part.startswith("0"):
                values.append(int(part, 8))
            else:
                values.append(int(part))
        except ValueError:
            return None
    *head, last = values
    # The last part fills every byte the leading parts leave over
    if any(v > 255 for v in head) or last >= 256 ** (4 - len(head)):
        return None
    number = 0
    for v in head:
        number = number << 8 | v
    return ipaddress.IPv4Address(number << 8 * (4 - len(head)) | last)


def is_private_host(host: str) -> bool:
    host = host.lower().strip("[]")
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        addr = parse_legacy_ipv4(host)
        if addr is None:
            return False
    return addr.is_loopback or addr.is_private or addr.is_link_local or addr.is_unspecified


def sanitize_url(raw, field_name: str = "url", max_length: int = MAX_URL_LENGTH) -> str:
    """Normalise and vet a user-supplied URL.

    ``example.com`` becomes ``https://example.com/``. Only http(s) URLs to
    public hosts survive.

    Raises:
        MissingField: empty value.
        InvalidFormat: unparseable URL.
        UnsafeContent: dangerous protocol, injection pattern or private host.
        LengthExceeded: longer than ``max_length`` after normalisation.
    """
    if raw is None or not str(raw).strip():
        raise MissingField(field_name)
    url = str(raw).strip()

    reason = find_unsafe_pattern(url)
    if reason:
        _unsafe(reason, url)

    m = _SCHEME.match(url)
    if m and "." not in m.group(1):
        scheme = m.group(1).lower()
        if scheme not in ALLOWED_SCHEMES:
            _unsafe(f"{scheme}: protocol is not allowed, only http and https", url)
    else:
        url = f"https://{url}"

    if _WHITESPACE.search(url) or CONTROL_CHARS.search(url):
        raise InvalidFormat(f"{field_name} must not contain whitespace or control characters")

    try:
        parts = urlsplit(url)
        host = parts.hostname
        parts.port  # raises on a malformed port
    except ValueError:
        raise InvalidFormat(f"Invalid URL format: {field_name}") from None
    if not host:
        raise InvalidFormat(f"Invalid URL format: {field_name}")

    if is_private_host(host):
        _unsafe("Private/local URLs are not allowed", url)

    userinfo, _, hostport = parts.netloc.rpartition("@")
    netloc = f"{userinfo}@{hostport.lower()}" if userinfo else hostport.lower()
    normalized = urlunsplit((parts.scheme.lower(), netloc, parts.path or "/", parts.query, parts.fragment))

    if len(normalized) > max_length:
        raise LengthExceeded(field_name, len(normalized), max_length)
    return normalized


def is_safe_url(url: str) -> bool:
    """Boolean form of :func:`sanitize_url`, for redirect decisions."""
    try:
        sanitize_url(url)
    except (MissingField, InvalidFormat, UnsafeContent, LengthExceeded):
        return False
    return True


@dataclass
class EncodingCheck:
    is_valid: bool
    encoding: str
    errors: list[str] = field(default_factory=list)


def check_character_encoding(content: str) -> EncodingCheck:
    """Report which text encoding a scanner needs and flag control characters.

    Tab, LF and CR are allowed since vCard and iCalendar use them.
    """
    errors = []
    if CONTROL_CHARS.search(content):
        errors.append("Data contains control characters that may cause scanning issues")
    try:
        content.encode("iso-8859-1")
        encoding = "ISO-8859-1"
    except UnicodeEncodeError:
        encoding = "UTF-8"
    return EncodingCheck(is_valid=not errors, encoding=encoding, errors=errors)
